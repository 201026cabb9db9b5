import logging
import unicodedata
from dataclasses import asdict, dataclass

from sqlalchemy.orm import Session

from app.core.errors import UpstreamError
from app.core.role_cache import RoleCache
from app.db.models.role import ROLE_STYLES, RoleLabel, UserRole

logger = logging.getLogger(__name__)

# Checked in order; the first match wins.
STYLE_KEYWORDS: list[tuple[tuple[str, ...], str]] = [
    (("owner", "founder"), "owner"),
    (("admin",), "admin"),
    (("mod",), "mod"),
    (("verify",), "verified"),
    (("seller", "vendor"), "seller"),
]


@dataclass(frozen=True)
class Badge:
    role_id: str
    label: str
    style: str

    def to_dict(self) -> dict:
        return asdict(self)


def normalize_style(style: str | None) -> str:
    if style in ROLE_STYLES:
        return style
    return "neutral"


def guess_style_from_name(name: str | None) -> str:
    lowered = (name or "").lower()
    for keywords, style in STYLE_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return style
    return "neutral"


def label_sort_key(label: str) -> str:
    decomposed = unicodedata.normalize("NFKD", label)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return stripped.casefold()


def build_badges(
    role_ids: list[str],
    overrides: dict[str, RoleLabel],
    role_cache: RoleCache,
) -> list[Badge]:
    badges: list[Badge] = []
    for role_id in role_ids:
        override = overrides.get(role_id)
        if override is not None:
            badges.append(Badge(role_id=role_id, label=override.label, style=normalize_style(override.style)))
            continue
        name = role_cache.get(role_id)
        if not name:
            continue
        badges.append(Badge(role_id=role_id, label=name, style=guess_style_from_name(name)))
    # sorted() is stable, so equal labels keep membership order.
    return sorted(badges, key=lambda badge: label_sort_key(badge.label))


class BadgeResolver:
    def __init__(self, role_cache: RoleCache, guild_id: str) -> None:
        self._role_cache = role_cache
        self._guild_id = guild_id

    def _ensure_cache(self) -> None:
        try:
            self._role_cache.refresh(self._guild_id)
        except UpstreamError as exc:
            logger.warning("role_cache_refresh_failed guild_id=%s error=%s", self._guild_id, exc)

    @staticmethod
    def _load_overrides(db: Session) -> dict[str, RoleLabel]:
        return {row.role_id: row for row in db.query(RoleLabel).all()}

    def resolve(self, db: Session, user_id: str) -> list[Badge]:
        role_ids = [
            row.role_id
            for row in db.query(UserRole).filter(UserRole.user_id == user_id).order_by(UserRole.role_id.asc()).all()
        ]
        overrides = self._load_overrides(db)
        self._ensure_cache()
        return build_badges(role_ids, overrides, self._role_cache)

    def resolve_many(self, db: Session, user_ids: list[str]) -> dict[str, list[Badge]]:
        unique_ids = list(dict.fromkeys(user_ids))
        if not unique_ids:
            return {}
        role_ids_by_user: dict[str, list[str]] = {user_id: [] for user_id in unique_ids}
        rows = (
            db.query(UserRole)
            .filter(UserRole.user_id.in_(unique_ids))
            .order_by(UserRole.user_id.asc(), UserRole.role_id.asc())
            .all()
        )
        for row in rows:
            role_ids_by_user[row.user_id].append(row.role_id)
        overrides = self._load_overrides(db)
        self._ensure_cache()
        return {
            user_id: build_badges(role_ids, overrides, self._role_cache)
            for user_id, role_ids in role_ids_by_user.items()
        }
