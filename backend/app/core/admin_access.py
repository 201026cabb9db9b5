from sqlalchemy.orm import Session

from app.core.badges import normalize_style
from app.core.errors import ValidationError
from app.db.models.role import AdminAccessRole, RoleLabel, UserRole


def user_has_admin_access(db: Session, user_id: str) -> bool:
    hit = (
        db.query(UserRole.role_id)
        .join(AdminAccessRole, AdminAccessRole.role_id == UserRole.role_id)
        .filter(UserRole.user_id == user_id)
        .first()
    )
    return hit is not None


def _clean_role_id(role_id: str | None) -> str:
    value = (role_id or "").strip()
    if not value or len(value) > 32:
        raise ValidationError("Role id is required")
    return value


def list_admin_access_roles(db: Session) -> list[str]:
    return [row.role_id for row in db.query(AdminAccessRole).order_by(AdminAccessRole.role_id.asc()).all()]


def add_admin_access_role(db: Session, role_id: str) -> bool:
    value = _clean_role_id(role_id)
    if db.get(AdminAccessRole, value) is not None:
        return False
    db.add(AdminAccessRole(role_id=value))
    db.flush()
    return True


def remove_admin_access_role(db: Session, role_id: str) -> bool:
    value = _clean_role_id(role_id)
    row = db.get(AdminAccessRole, value)
    if row is None:
        return False
    db.delete(row)
    db.flush()
    return True


def list_role_labels(db: Session) -> list[RoleLabel]:
    return db.query(RoleLabel).order_by(RoleLabel.label.asc()).all()


def upsert_role_label(db: Session, role_id: str, label: str, style: str | None) -> RoleLabel:
    value = _clean_role_id(role_id)
    clean_label = (label or "").strip()
    if not clean_label or len(clean_label) > 100:
        raise ValidationError("Label is required")
    row = db.get(RoleLabel, value)
    if row is None:
        row = RoleLabel(role_id=value, label=clean_label, style=normalize_style(style))
        db.add(row)
    else:
        row.label = clean_label
        row.style = normalize_style(style)
    db.flush()
    return row


def delete_role_label(db: Session, role_id: str) -> bool:
    value = _clean_role_id(role_id)
    row = db.get(RoleLabel, value)
    if row is None:
        return False
    db.delete(row)
    db.flush()
    return True
