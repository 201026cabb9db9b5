from sqlalchemy import ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base

ROLE_STYLES = ("owner", "admin", "mod", "verified", "seller", "neutral")


class UserRole(Base):
    __tablename__ = "user_roles"

    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), primary_key=True)
    role_id: Mapped[str] = mapped_column(String(32), primary_key=True)


class RoleLabel(Base):
    __tablename__ = "role_labels"

    role_id: Mapped[str] = mapped_column(String(32), primary_key=True)
    label: Mapped[str] = mapped_column(String(100))
    style: Mapped[str] = mapped_column(String(20), default="neutral")


class AdminAccessRole(Base):
    __tablename__ = "admin_access_roles"

    role_id: Mapped[str] = mapped_column(String(32), primary_key=True)
