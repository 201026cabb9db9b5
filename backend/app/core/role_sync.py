import logging
import threading
import time
from dataclasses import dataclass, field

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.errors import UpstreamError
from app.core.identity_provider import IdentityProvider
from app.core.metrics import increment_counter
from app.db.models.role import UserRole

logger = logging.getLogger(__name__)

SYNC_RESULT_SYNCED = "synced"
SYNC_RESULT_THROTTLED = "throttled"
SYNC_RESULT_STORAGE_ERROR = "storage_error"


class SyncThrottle:
    """Advisory per-user limiter. Two callers racing on the boundary may both pass."""

    def __init__(self, window_seconds: int = 10) -> None:
        self._window_seconds = window_seconds
        self._lock = threading.Lock()
        self._last_attempt: dict[str, float] = {}

    def should_sync(self, user_id: str, now: float) -> bool:
        with self._lock:
            last = self._last_attempt.get(user_id)
            if last is not None and now - last < self._window_seconds:
                return False
            self._last_attempt[user_id] = now
            self._prune(now)
            return True

    def _prune(self, now: float) -> None:
        # Entries past the window no longer throttle anything.
        expired = [key for key, seen in self._last_attempt.items() if now - seen >= self._window_seconds]
        for key in expired:
            del self._last_attempt[key]

    def __len__(self) -> int:
        with self._lock:
            return len(self._last_attempt)


@dataclass
class RoleSyncResult:
    status: str
    role_ids: list[str] = field(default_factory=list)


def replace_user_roles(db: Session, user_id: str, role_ids: list[str]) -> None:
    """Delete-then-insert in a single transaction; rolls back on failure."""
    try:
        db.query(UserRole).filter(UserRole.user_id == user_id).delete(synchronize_session=False)
        db.add_all([UserRole(user_id=user_id, role_id=role_id) for role_id in role_ids])
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise


class RoleSyncEngine:
    def __init__(
        self,
        provider: IdentityProvider,
        throttle: SyncThrottle,
        guild_id: str,
        clock=time.monotonic,
    ) -> None:
        self._provider = provider
        self._throttle = throttle
        self._guild_id = guild_id
        self._clock = clock

    def sync(self, db: Session, user_id: str) -> RoleSyncResult:
        """Reconcile the user's local role rows with the guild.

        Raises UpstreamError when the member lookup fails; local rows are left as they were.
        """
        if not self._throttle.should_sync(user_id, self._clock()):
            increment_counter("role_sync_total", result=SYNC_RESULT_THROTTLED)
            return RoleSyncResult(status=SYNC_RESULT_THROTTLED)

        try:
            fetched = self._provider.fetch_member_role_ids(self._guild_id, user_id)
        except UpstreamError:
            increment_counter("role_sync_total", result="upstream_error")
            raise
        role_ids = list(dict.fromkeys(fetched))

        try:
            replace_user_roles(db, user_id, role_ids)
        except SQLAlchemyError:
            increment_counter("role_sync_total", result=SYNC_RESULT_STORAGE_ERROR)
            logger.exception("role_sync_storage_failed user_id=%s", user_id)
            return RoleSyncResult(status=SYNC_RESULT_STORAGE_ERROR)

        increment_counter("role_sync_total", result=SYNC_RESULT_SYNCED)
        logger.debug("role_sync_done user_id=%s roles=%s", user_id, len(role_ids))
        return RoleSyncResult(status=SYNC_RESULT_SYNCED, role_ids=role_ids)
