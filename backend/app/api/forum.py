import logging

from anyio import from_thread
from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.core.api_response import success_response_payload
from app.core.badges import Badge
from app.core.container import ForumServices, get_forum_services
from app.core.metrics import increment_counter
from app.core.observability import log_business_event
from app.core.paging import build_paged_response, paginate_query
from app.core.security import get_optional_user, get_synced_user
from app.db.models.category import Category
from app.db.models.post import Post, Reply
from app.db.models.user import User
from app.db.session import get_db
from app.realtime.events import post_summary, reply_summary
from app.services import forum
from app.services.member_roles import load_viewer_context, user_has_admin_access
from app.services.users import serialize_user

router = APIRouter(prefix="/forum", tags=["forum"])
logger = logging.getLogger(__name__)


class PostIn(BaseModel):
    title: str = ""
    body: str = ""


class ReplyIn(BaseModel):
    body: str = ""


def _serialize_category(category: Category) -> dict:
    return {
        "id": category.id,
        "key": category.key,
        "name": category.name,
        "description": category.description,
        "is_locked": bool(category.is_locked),
    }


def _serialize_author(user: User, badges: list[Badge]) -> dict:
    data = serialize_user(user)
    data["badges"] = [badge.to_dict() for badge in badges]
    return data


def _serialize_post(post: Post, author: User, badges: list[Badge]) -> dict:
    return {
        "id": post.id,
        "category_id": post.category_id,
        "title": post.title,
        "body": post.body,
        "created_at": post.created_at.isoformat(),
        "is_closed": bool(post.is_closed),
        "closed_by": post.closed_by,
        "closed_at": post.closed_at.isoformat() if post.closed_at else None,
        "author": _serialize_author(author, badges),
    }


def _serialize_reply(reply: Reply, author: User, badges: list[Badge]) -> dict:
    return {
        "id": reply.id,
        "post_id": reply.post_id,
        "body": reply.body,
        "created_at": reply.created_at.isoformat(),
        "author": _serialize_author(author, badges),
    }


def _publish(func, *args) -> None:
    # Sync endpoints run in a worker thread; hand the coroutine back to the event loop.
    from_thread.run(func, *args)


@router.get("/categories")
def list_categories(request: Request, db: Session = Depends(get_db)):
    items = [_serialize_category(category) for category in forum.list_categories(db)]
    return success_response_payload(request, data={"items": items})


@router.get("/categories/{key}/posts")
def list_category_posts(
    key: str,
    request: Request,
    page: int = 1,
    page_size: int = 20,
    db: Session = Depends(get_db),
    services: ForumServices = Depends(get_forum_services),
):
    category = forum.get_category(db, key)
    rows, total, safe_page, safe_page_size = paginate_query(
        forum.category_posts_query(db, category),
        page=page,
        page_size=page_size,
    )
    badges_by_user = services.badges.resolve_many(db, [author.id for _, author in rows])
    paged = build_paged_response(
        items=rows,
        total=total,
        page=safe_page,
        page_size=safe_page_size,
        serializer=lambda row: _serialize_post(row[0], row[1], badges_by_user.get(row[1].id, [])),
    )
    return success_response_payload(request, data={"category": _serialize_category(category), **paged})


@router.get("/posts/{post_id}")
def get_post(
    post_id: int,
    request: Request,
    db: Session = Depends(get_db),
    services: ForumServices = Depends(get_forum_services),
    viewer: User | None = Depends(get_optional_user),
):
    post = forum.get_post(db, post_id)
    category = db.get(Category, post.category_id)
    context = load_viewer_context(services, db, viewer)
    author = db.get(User, post.author_id)
    replies = forum.list_post_replies(db, post.id)
    badges_by_user = services.badges.resolve_many(db, [post.author_id] + [r_author.id for _, r_author in replies])
    return success_response_payload(
        request,
        data={
            "post": _serialize_post(post, author, badges_by_user.get(post.author_id, [])),
            "category": _serialize_category(category) if category else None,
            "replies": [
                _serialize_reply(reply, r_author, badges_by_user.get(r_author.id, []))
                for reply, r_author in replies
            ],
            "viewer": {
                "can_admin": context.can_admin,
                "can_close": context.user is not None and (context.can_admin or context.user.id == post.author_id),
            },
        },
    )


@router.post("/categories/{key}/posts")
def create_post(
    key: str,
    payload: PostIn,
    request: Request,
    db: Session = Depends(get_db),
    services: ForumServices = Depends(get_forum_services),
    current_user: User = Depends(get_synced_user),
):
    category = forum.get_category(db, key)
    post = forum.create_post(
        db,
        category=category,
        author=current_user,
        title=payload.title,
        body=payload.body,
        is_admin=bool(category.is_locked) and user_has_admin_access(db, current_user.id),
    )
    summary = post_summary(
        post_id=post.id,
        category_key=category.key,
        title=post.title,
        author=current_user.username,
        created_at=post.created_at,
    )
    _publish(services.hub.publish_new_post, category.key, summary)

    increment_counter("forum_action_total", action="post.create")
    log_business_event(logger, request, event="forum.post.create", post_id=post.id, category=category.key)
    return success_response_payload(request, data={"id": post.id, "redirect": f"/p/{post.id}"})


@router.post("/posts/{post_id}/replies")
def create_reply(
    post_id: int,
    payload: ReplyIn,
    request: Request,
    db: Session = Depends(get_db),
    services: ForumServices = Depends(get_forum_services),
    current_user: User = Depends(get_synced_user),
):
    post = forum.get_post(db, post_id)
    reply = forum.add_reply(db, post=post, author=current_user, body=payload.body)
    summary = reply_summary(
        reply_id=reply.id,
        post_id=post.id,
        body=reply.body,
        author=current_user.username,
        created_at=reply.created_at,
    )
    _publish(services.hub.publish_new_reply, post.id, summary)

    increment_counter("forum_action_total", action="reply.create")
    log_business_event(logger, request, event="forum.reply.create", post_id=post.id, reply_id=reply.id)
    return success_response_payload(request, data={"id": reply.id, "redirect": f"/p/{post.id}#replies"})


def _set_closed(
    post_id: int,
    closed: bool,
    request: Request,
    db: Session,
    services: ForumServices,
    current_user: User,
) -> dict:
    post = forum.get_post(db, post_id)
    is_admin = post.author_id != current_user.id and user_has_admin_access(db, current_user.id)
    outcome = forum.set_post_closed(db, post=post, actor=current_user, closed=closed, is_admin=is_admin)
    if outcome.changed:
        publish = services.hub.publish_closed if closed else services.hub.publish_reopened
        _publish(publish, post.id, outcome.category_key or None)
        action = "post.close" if closed else "post.reopen"
        increment_counter("forum_action_total", action=action)
        log_business_event(logger, request, event=f"forum.{action}", post_id=post.id, actor_id=current_user.id)
    return success_response_payload(
        request,
        data={"id": post.id, "is_closed": bool(outcome.post.is_closed), "changed": outcome.changed},
    )


@router.post("/posts/{post_id}/close")
def close_post(
    post_id: int,
    request: Request,
    db: Session = Depends(get_db),
    services: ForumServices = Depends(get_forum_services),
    current_user: User = Depends(get_synced_user),
):
    return _set_closed(post_id, True, request, db, services, current_user)


@router.post("/posts/{post_id}/reopen")
def reopen_post(
    post_id: int,
    request: Request,
    db: Session = Depends(get_db),
    services: ForumServices = Depends(get_forum_services),
    current_user: User = Depends(get_synced_user),
):
    return _set_closed(post_id, False, request, db, services, current_user)
