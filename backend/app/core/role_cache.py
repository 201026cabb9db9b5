import logging
import threading
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

from app.core.errors import UpstreamError
from app.core.identity_provider import IdentityProvider
from app.core.metrics import increment_counter

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RoleSnapshot:
    names: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    fetched_at: float | None = None


class RoleCache:
    """Process-wide role id -> role name map for the bound guild.

    The snapshot is replaced wholesale, so readers see either the old or the new
    naming, never a mix of both.
    """

    def __init__(
        self,
        provider: IdentityProvider,
        ttl_seconds: int = 300,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._provider = provider
        self._ttl_seconds = ttl_seconds
        self._clock = clock
        self._refresh_lock = threading.Lock()
        self._snapshot = RoleSnapshot()

    @property
    def snapshot(self) -> RoleSnapshot:
        return self._snapshot

    def get(self, role_id: str) -> str | None:
        return self._snapshot.names.get(role_id)

    def is_fresh(self, now: float | None = None) -> bool:
        snap = self._snapshot
        if snap.fetched_at is None or not snap.names:
            return False
        current = self._clock() if now is None else now
        return current - snap.fetched_at < self._ttl_seconds

    def refresh(self, guild_id: str, force: bool = False) -> bool:
        if not force and self.is_fresh():
            return False

        if force:
            self._refresh_lock.acquire()
        elif not self._refresh_lock.acquire(blocking=False):
            # A fetch is already in flight; callers keep the current snapshot.
            increment_counter("role_cache_refresh_total", result="in_flight")
            return False
        try:
            if not force and self.is_fresh():
                return False
            try:
                roles = self._provider.fetch_guild_roles(guild_id)
            except UpstreamError:
                increment_counter("role_cache_refresh_total", result="upstream_error")
                raise
            names = {role.role_id: role.name for role in roles}
            self._snapshot = RoleSnapshot(names=MappingProxyType(names), fetched_at=self._clock())
        finally:
            self._refresh_lock.release()

        increment_counter("role_cache_refresh_total", result="refreshed")
        logger.info("role_cache_refreshed guild_id=%s roles=%s", guild_id, len(names))
        return True
