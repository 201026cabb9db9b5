from app.db.models.admin_audit_log import AdminAuditLog
from app.db.models.category import Category
from app.db.models.post import Post, Reply
from app.db.models.role import AdminAccessRole, RoleLabel, UserRole
from app.db.models.user import User

__all__ = [
    "AdminAccessRole",
    "AdminAuditLog",
    "Category",
    "Post",
    "Reply",
    "RoleLabel",
    "User",
    "UserRole",
]
