import logging
from dataclasses import dataclass, field

from sqlalchemy.orm import Session

from app.core import admin_access
from app.core.badges import Badge
from app.core.container import ForumServices
from app.core.errors import UpstreamError
from app.core.role_sync import RoleSyncResult
from app.db.models.user import User

logger = logging.getLogger(__name__)


@dataclass
class ViewerContext:
    user: User | None = None
    badges: list[Badge] = field(default_factory=list)
    can_admin: bool = False


def sync_user_roles_from_discord(services: ForumServices, db: Session, user_id: str) -> RoleSyncResult | None:
    """Run a role sync; upstream failures are logged and reported as None."""
    try:
        return services.role_sync.sync(db, user_id)
    except UpstreamError as exc:
        logger.warning("role_sync_upstream_failed user_id=%s status=%s error=%s", user_id, exc.status_code, exc)
        return None


def get_user_badges(services: ForumServices, db: Session, user_id: str) -> list[Badge]:
    return services.badges.resolve(db, user_id)


def user_has_admin_access(db: Session, user_id: str) -> bool:
    return admin_access.user_has_admin_access(db, user_id)


def load_viewer_context(services: ForumServices, db: Session, user: User | None) -> ViewerContext:
    if user is None:
        return ViewerContext()
    sync_user_roles_from_discord(services, db, user.id)
    return ViewerContext(
        user=user,
        badges=get_user_badges(services, db, user.id),
        can_admin=user_has_admin_access(db, user.id),
    )
