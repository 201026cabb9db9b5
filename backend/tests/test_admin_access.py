import pytest

from app.core import admin_access
from app.core.errors import ValidationError
from app.db.models.role import AdminAccessRole, RoleLabel, UserRole
from tests.conftest import make_user


def test_admin_gate_requires_overlap(db_session):
    db_session.add_all([make_user("staff"), make_user("member"), make_user("fresh")])
    db_session.add_all(
        [
            UserRole(user_id="staff", role_id="r-admin"),
            UserRole(user_id="staff", role_id="r-member"),
            UserRole(user_id="member", role_id="r-member"),
            AdminAccessRole(role_id="r-admin"),
        ]
    )
    db_session.commit()

    assert admin_access.user_has_admin_access(db_session, "staff") is True
    assert admin_access.user_has_admin_access(db_session, "member") is False
    assert admin_access.user_has_admin_access(db_session, "fresh") is False


def test_access_roles_add_and_remove(db_session):
    assert admin_access.add_admin_access_role(db_session, " 42 ") is True
    assert admin_access.add_admin_access_role(db_session, "42") is False
    db_session.commit()
    assert admin_access.list_admin_access_roles(db_session) == ["42"]

    assert admin_access.remove_admin_access_role(db_session, "42") is True
    assert admin_access.remove_admin_access_role(db_session, "42") is False
    db_session.commit()
    assert admin_access.list_admin_access_roles(db_session) == []


def test_blank_role_id_rejected(db_session):
    with pytest.raises(ValidationError):
        admin_access.add_admin_access_role(db_session, "   ")


def test_role_label_upsert_coerces_style(db_session):
    row = admin_access.upsert_role_label(db_session, "7", "  Staff ", "glitter")
    db_session.commit()
    assert (row.label, row.style) == ("Staff", "neutral")

    admin_access.upsert_role_label(db_session, "7", "Moderators", "mod")
    db_session.commit()
    stored = db_session.get(RoleLabel, "7")
    assert (stored.label, stored.style) == ("Moderators", "mod")

    admin_access.upsert_role_label(db_session, "7", "Moderators", "MOD")
    db_session.commit()
    assert db_session.get(RoleLabel, "7").style == "neutral"

    assert admin_access.delete_role_label(db_session, "7") is True
    db_session.commit()
    assert admin_access.list_role_labels(db_session) == []
