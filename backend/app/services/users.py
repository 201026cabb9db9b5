from datetime import datetime, timezone

from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.core.identity_provider import avatar_url
from app.db.models.user import User


class IdentityProfile(BaseModel):
    id: str = Field(min_length=1, max_length=32)
    username: str = Field(min_length=1, max_length=100)
    discriminator: str | None = Field(default=None, max_length=8)
    avatar: str | None = Field(default=None, max_length=255)


def utc_now_naive() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def upsert_user_from_profile(db: Session, profile: IdentityProfile) -> User:
    """Create the user on first login, refresh display fields on later ones."""
    now = utc_now_naive()
    user = db.get(User, profile.id)
    if user is None:
        user = User(
            id=profile.id,
            username=profile.username,
            discriminator=profile.discriminator or None,
            avatar=profile.avatar or None,
            created_at=now,
            last_seen_at=now,
        )
        db.add(user)
    else:
        user.username = profile.username
        user.discriminator = profile.discriminator or None
        user.avatar = profile.avatar or None
        user.last_seen_at = now
    db.commit()
    db.refresh(user)
    return user


def touch_last_seen(user: User) -> None:
    user.last_seen_at = utc_now_naive()


def serialize_user(user: User) -> dict:
    return {
        "id": user.id,
        "username": user.username,
        "discriminator": user.discriminator,
        "avatar_url": avatar_url(user.id, user.avatar, user.discriminator),
        "created_at": user.created_at.isoformat() if user.created_at else None,
        "last_seen_at": user.last_seen_at.isoformat() if user.last_seen_at else None,
    }
