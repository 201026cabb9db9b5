import logging
from dataclasses import dataclass

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.core.errors import NotFoundError, PermissionDeniedError, ValidationError
from app.db.models.category import Category
from app.db.models.post import Post, Reply
from app.db.models.user import User
from app.services.users import touch_last_seen, utc_now_naive

logger = logging.getLogger(__name__)

DEFAULT_CATEGORIES: list[tuple[str, str, str]] = [
    ("feedback", "Feedback", "Share your thoughts, short and clear is perfect."),
    ("bugs", "Bugs", "Tell us what broke. Screenshots help a lot."),
    ("suggestions", "Suggestions", "Ideas you want us to build next."),
    ("refunds", "Refunds", "Refund help and dispute questions."),
]

MIN_TITLE_LENGTH = 3
MAX_TITLE_LENGTH = 200
MIN_BODY_LENGTH = 5
MAX_BODY_LENGTH = 20000


@dataclass
class CloseOutcome:
    post: Post
    category_key: str
    changed: bool


def seed_categories(db: Session) -> int:
    if db.query(func.count(Category.id)).scalar():
        return 0
    db.add_all([Category(key=key, name=name, description=description) for key, name, description in DEFAULT_CATEGORIES])
    db.commit()
    logger.info("categories_seeded count=%s", len(DEFAULT_CATEGORIES))
    return len(DEFAULT_CATEGORIES)


def list_categories(db: Session) -> list[Category]:
    return db.query(Category).order_by(Category.id.asc()).all()


def get_category(db: Session, key: str) -> Category:
    category = db.query(Category).filter(Category.key == key).first()
    if category is None:
        raise NotFoundError("That section doesn't exist.")
    return category


def get_post(db: Session, post_id: int) -> Post:
    post = db.get(Post, post_id)
    if post is None:
        raise NotFoundError("That post doesn't exist.")
    return post


def category_posts_query(db: Session, category: Category):
    return (
        db.query(Post, User)
        .join(User, User.id == Post.author_id)
        .filter(Post.category_id == category.id)
        .order_by(Post.created_at.desc(), Post.id.desc())
    )


def list_post_replies(db: Session, post_id: int) -> list[tuple[Reply, User]]:
    return (
        db.query(Reply, User)
        .join(User, User.id == Reply.author_id)
        .filter(Reply.post_id == post_id)
        .order_by(Reply.created_at.asc(), Reply.id.asc())
        .all()
    )


def _clean_text(value: str | None) -> str:
    return (value or "").strip()


def create_post(
    db: Session,
    *,
    category: Category,
    author: User,
    title: str,
    body: str,
    is_admin: bool = False,
) -> Post:
    clean_title = _clean_text(title)
    clean_body = _clean_text(body)
    if len(clean_title) < MIN_TITLE_LENGTH:
        raise ValidationError("Give it a slightly longer title.")
    if len(clean_title) > MAX_TITLE_LENGTH:
        raise ValidationError("That title is too long.")
    if len(clean_body) < MIN_BODY_LENGTH:
        raise ValidationError("Write a bit more detail so we can help.")
    if len(clean_body) > MAX_BODY_LENGTH:
        raise ValidationError("That post is too long.")
    if category.is_locked and not is_admin:
        raise PermissionDeniedError("This section is locked.")

    post = Post(
        category_id=category.id,
        author_id=author.id,
        title=clean_title,
        body=clean_body,
        created_at=utc_now_naive(),
        is_closed=False,
    )
    db.add(post)
    touch_last_seen(author)
    db.commit()
    db.refresh(post)
    return post


def add_reply(db: Session, *, post: Post, author: User, body: str) -> Reply:
    clean_body = _clean_text(body)
    if not clean_body:
        raise ValidationError("Write something first.")
    if len(clean_body) > MAX_BODY_LENGTH:
        raise ValidationError("That reply is too long.")
    if post.is_closed:
        raise ValidationError("This thread is closed.")

    reply = Reply(post_id=post.id, author_id=author.id, body=clean_body, created_at=utc_now_naive())
    db.add(reply)
    touch_last_seen(author)
    db.commit()
    db.refresh(reply)
    return reply


def set_post_closed(db: Session, *, post: Post, actor: User, closed: bool, is_admin: bool) -> CloseOutcome:
    if post.author_id != actor.id and not is_admin:
        raise PermissionDeniedError("Only the author or staff can do that.")
    category = db.get(Category, post.category_id)
    category_key = category.key if category else ""
    if post.is_closed == closed:
        return CloseOutcome(post=post, category_key=category_key, changed=False)

    post.is_closed = closed
    post.closed_by = actor.id if closed else None
    post.closed_at = utc_now_naive() if closed else None
    db.commit()
    db.refresh(post)
    return CloseOutcome(post=post, category_key=category_key, changed=True)
