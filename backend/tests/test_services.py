import pytest

from app.core.container import build_forum_services
from app.core.errors import PermissionDeniedError, ValidationError
from app.core.forum_settings import ForumSettings
from app.db.models.category import Category
from app.db.models.user import User
from app.services import forum
from app.services.member_roles import load_viewer_context, sync_user_roles_from_discord
from app.services.users import IdentityProfile, upsert_user_from_profile
from tests.conftest import make_user


def test_seed_categories_runs_once(db_session):
    assert forum.seed_categories(db_session) == 4
    assert forum.seed_categories(db_session) == 0
    assert db_session.query(Category).count() == 4


def test_upsert_user_keeps_created_at(db_session):
    first = upsert_user_from_profile(db_session, IdentityProfile(id="9", username="old"))
    created_at = first.created_at

    second = upsert_user_from_profile(db_session, IdentityProfile(id="9", username="new", avatar="a1"))

    assert second.username == "new"
    assert second.avatar == "a1"
    assert second.created_at == created_at


def test_post_validation_and_lock(db_session):
    forum.seed_categories(db_session)
    author = make_user("u1")
    db_session.add(author)
    db_session.commit()
    bugs = forum.get_category(db_session, "bugs")

    with pytest.raises(ValidationError):
        forum.create_post(db_session, category=bugs, author=author, title="  ab  ", body="long enough body")
    with pytest.raises(ValidationError):
        forum.create_post(db_session, category=bugs, author=author, title="Valid title", body="tiny")

    bugs.is_locked = True
    db_session.commit()
    with pytest.raises(PermissionDeniedError):
        forum.create_post(db_session, category=bugs, author=author, title="Valid title", body="long enough body")
    post = forum.create_post(
        db_session, category=bugs, author=author, title=" Valid title ", body="long enough body", is_admin=True
    )
    assert post.title == "Valid title"


def test_viewer_context_for_anonymous_and_failing_upstream(db_session, provider):
    services = build_forum_services(ForumSettings(guild_id="g1"), provider=provider)
    assert load_viewer_context(services, db_session, None).badges == []

    db_session.add(make_user("u1"))
    db_session.commit()
    provider.fail_members = True
    assert sync_user_roles_from_discord(services, db_session, "u1") is None
    context = load_viewer_context(services, db_session, db_session.get(User, "u1"))
    assert context.can_admin is False
