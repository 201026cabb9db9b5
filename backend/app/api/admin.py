import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.core import admin_access
from app.core.api_response import success_response_payload
from app.core.container import ForumServices, get_forum_services
from app.core.errors import UpstreamError
from app.core.metrics import increment_counter
from app.core.observability import log_business_event
from app.core.security import get_synced_user
from app.db.models.admin_audit_log import AdminAuditLog
from app.db.models.user import User
from app.db.session import get_db
from app.services.member_roles import user_has_admin_access
from app.services.users import serialize_user

router = APIRouter(prefix="/admin", tags=["admin"])
logger = logging.getLogger(__name__)

ADMIN_USERS_LIMIT = 200


class AccessRoleIn(BaseModel):
    role_id: str


class RoleLabelIn(BaseModel):
    label: str
    style: str = "neutral"


def require_staff(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_synced_user),
) -> User:
    if not user_has_admin_access(db, current_user.id):
        raise HTTPException(status_code=403, detail="This page is for staff only.")
    return current_user


def _utc_now_naive() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("x-forwarded-for", "")
    if forwarded:
        return forwarded.split(",")[0].strip()[:64]
    if request.client and request.client.host:
        return request.client.host[:64]
    return None


def _log_admin_action(
    db: Session,
    request: Request,
    actor: User,
    action: str,
    meta_json: dict | None = None,
) -> None:
    db.add(
        AdminAuditLog(
            actor_user_id=actor.id,
            action=action,
            meta_json=meta_json,
            ip=_client_ip(request),
            user_agent=request.headers.get("user-agent", "")[:255] or None,
            created_at=_utc_now_naive(),
        )
    )
    increment_counter("admin_action_total", action=action)
    log_business_event(logger, request, event="admin.action", action=action, actor_id=actor.id, **(meta_json or {}))


@router.get("/users")
def list_users(
    request: Request,
    db: Session = Depends(get_db),
    services: ForumServices = Depends(get_forum_services),
    _admin: User = Depends(require_staff),
):
    users = db.query(User).order_by(User.created_at.desc()).limit(ADMIN_USERS_LIMIT).all()
    badges_by_user = services.badges.resolve_many(db, [user.id for user in users])
    items = []
    for user in users:
        data = serialize_user(user)
        data["badges"] = [badge.to_dict() for badge in badges_by_user.get(user.id, [])]
        items.append(data)
    return success_response_payload(request, data={"items": items, "total": len(items)})


@router.get("/access-roles")
def list_access_roles(
    request: Request,
    db: Session = Depends(get_db),
    _admin: User = Depends(require_staff),
):
    return success_response_payload(request, data={"role_ids": admin_access.list_admin_access_roles(db)})


@router.post("/access-roles")
def add_access_role(
    payload: AccessRoleIn,
    request: Request,
    db: Session = Depends(get_db),
    admin: User = Depends(require_staff),
):
    created = admin_access.add_admin_access_role(db, payload.role_id)
    if created:
        _log_admin_action(db, request, admin, "access_role.add", {"role_id": payload.role_id.strip()})
    db.commit()
    return success_response_payload(request, data={"ok": True, "created": created})


@router.delete("/access-roles/{role_id}")
def remove_access_role(
    role_id: str,
    request: Request,
    db: Session = Depends(get_db),
    admin: User = Depends(require_staff),
):
    removed = admin_access.remove_admin_access_role(db, role_id)
    if removed:
        _log_admin_action(db, request, admin, "access_role.remove", {"role_id": role_id.strip()})
    db.commit()
    return success_response_payload(request, data={"ok": True, "removed": removed})


@router.get("/role-labels")
def list_role_labels(
    request: Request,
    db: Session = Depends(get_db),
    _admin: User = Depends(require_staff),
):
    items = [
        {"role_id": row.role_id, "label": row.label, "style": row.style}
        for row in admin_access.list_role_labels(db)
    ]
    return success_response_payload(request, data={"items": items})


@router.put("/role-labels/{role_id}")
def upsert_role_label(
    role_id: str,
    payload: RoleLabelIn,
    request: Request,
    db: Session = Depends(get_db),
    admin: User = Depends(require_staff),
):
    row = admin_access.upsert_role_label(db, role_id, payload.label, payload.style)
    _log_admin_action(db, request, admin, "role_label.upsert", {"role_id": row.role_id, "style": row.style})
    db.commit()
    return success_response_payload(request, data={"role_id": row.role_id, "label": row.label, "style": row.style})


@router.delete("/role-labels/{role_id}")
def delete_role_label(
    role_id: str,
    request: Request,
    db: Session = Depends(get_db),
    admin: User = Depends(require_staff),
):
    removed = admin_access.delete_role_label(db, role_id)
    if removed:
        _log_admin_action(db, request, admin, "role_label.delete", {"role_id": role_id.strip()})
    db.commit()
    return success_response_payload(request, data={"ok": True, "removed": removed})


@router.post("/role-cache/refresh")
def refresh_role_cache(
    request: Request,
    services: ForumServices = Depends(get_forum_services),
    admin: User = Depends(require_staff),
):
    try:
        services.role_cache.refresh(services.settings.guild_id, force=True)
    except UpstreamError as exc:
        logger.warning("role_cache_forced_refresh_failed actor_id=%s error=%s", admin.id, exc)
        raise HTTPException(status_code=502, detail="Could not reach the identity provider") from exc
    snapshot = services.role_cache.snapshot
    log_business_event(logger, request, event="admin.role_cache.refresh", actor_id=admin.id, roles=len(snapshot.names))
    return success_response_payload(request, data={"roles": len(snapshot.names)})
