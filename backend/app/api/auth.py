import hmac
import logging

from fastapi import APIRouter, Depends, Header, HTTPException, Request
from sqlalchemy.orm import Session

from app.core.api_response import success_response_payload
from app.core.container import ForumServices, get_forum_services
from app.core.metrics import increment_counter
from app.core.observability import log_business_event
from app.core.security import create_access_token, get_current_user
from app.db.models.user import User
from app.db.session import get_db
from app.services.member_roles import load_viewer_context, sync_user_roles_from_discord
from app.services.users import IdentityProfile, serialize_user, upsert_user_from_profile

router = APIRouter(prefix="/auth", tags=["auth"])
logger = logging.getLogger(__name__)


def _check_bridge_secret(services: ForumServices, provided: str | None) -> None:
    expected = services.settings.identity_bridge_secret
    if not expected:
        raise HTTPException(status_code=503, detail="Identity bridge is not configured")
    if not provided or not hmac.compare_digest(provided, expected):
        raise HTTPException(status_code=401, detail="Invalid identity bridge secret")


@router.post("/identity")
def accept_identity(
    profile: IdentityProfile,
    request: Request,
    x_identity_secret: str | None = Header(default=None),
    db: Session = Depends(get_db),
    services: ForumServices = Depends(get_forum_services),
):
    _check_bridge_secret(services, x_identity_secret)
    user = upsert_user_from_profile(db, profile)
    sync_result = sync_user_roles_from_discord(services, db, user.id)
    token = create_access_token({"sub": user.id})

    increment_counter("auth_identity_total")
    log_business_event(
        logger,
        request,
        event="auth.identity",
        user_id=user.id,
        role_sync=sync_result.status if sync_result else "upstream_error",
    )
    return success_response_payload(
        request,
        data={
            "access_token": token,
            "token_type": "bearer",
            "user": serialize_user(user),
        },
    )


@router.get("/me")
def me(
    request: Request,
    db: Session = Depends(get_db),
    services: ForumServices = Depends(get_forum_services),
    current_user: User = Depends(get_current_user),
):
    context = load_viewer_context(services, db, current_user)
    return success_response_payload(
        request,
        data={
            "user": serialize_user(current_user),
            "badges": [badge.to_dict() for badge in context.badges],
            "can_admin": context.can_admin,
        },
    )
