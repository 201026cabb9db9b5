from app.core.identity_provider import GuildRole
from app.db.models.admin_audit_log import AdminAuditLog
from app.db.models.role import AdminAccessRole, UserRole
from app.db.models.user import User
from tests.conftest import auth_header, make_user

BRIDGE = {"X-Identity-Secret": "bridge-secret"}


def _extract_success_data(response):
    payload = response.json()
    assert payload["ok"] is True
    return payload["data"]


def _make_staff(api, user_id: str = "staff") -> None:
    with api.session_factory() as db:
        db.add(make_user(user_id))
        db.add(AdminAccessRole(role_id="r-staff"))
        db.commit()
    api.provider.member_roles[user_id] = ["r-staff"]


def test_identity_bridge_creates_then_updates_user(api):
    api.provider.member_roles["42"] = ["r1", "r2"]
    profile = {"id": "42", "username": "alice", "discriminator": "0007", "avatar": None}

    first = api.client.post("/auth/identity", json=profile, headers=BRIDGE)
    assert first.status_code == 200
    data = _extract_success_data(first)
    assert data["token_type"] == "bearer"
    assert data["user"]["avatar_url"] == "https://cdn.discordapp.com/embed/avatars/2.png"

    second = api.client.post("/auth/identity", json={**profile, "username": "alice2", "avatar": "abc"}, headers=BRIDGE)
    assert _extract_success_data(second)["user"]["avatar_url"].startswith("https://cdn.discordapp.com/avatars/42/abc.png")

    with api.session_factory() as db:
        user = db.get(User, "42")
        assert user.username == "alice2"
        assert {row.role_id for row in db.query(UserRole).filter(UserRole.user_id == "42")} == {"r1", "r2"}


def test_identity_bridge_rejects_wrong_secret(api):
    response = api.client.post(
        "/auth/identity",
        json={"id": "42", "username": "alice"},
        headers={"X-Identity-Secret": "nope"},
    )
    assert response.status_code == 401


def test_identity_bridge_survives_upstream_failure(api):
    api.provider.fail_members = True
    response = api.client.post("/auth/identity", json={"id": "7", "username": "bob"}, headers=BRIDGE)
    assert response.status_code == 200


def test_me_returns_badges_and_admin_flag(api):
    _make_staff(api)
    api.provider.roles = [GuildRole("r-staff", "Server Admin")]

    response = api.client.get("/auth/me", headers=auth_header("staff"))
    data = _extract_success_data(response)

    assert data["can_admin"] is True
    assert data["badges"] == [{"role_id": "r-staff", "label": "Server Admin", "style": "admin"}]


def test_me_degrades_when_identity_provider_is_down(api):
    with api.session_factory() as db:
        db.add(make_user("u1"))
        db.add(UserRole(user_id="u1", role_id="r1"))
        db.commit()
    api.provider.fail_members = True
    api.provider.fail_roles = True

    response = api.client.get("/auth/me", headers=auth_header("u1"))
    data = _extract_success_data(response)

    assert data["badges"] == []
    assert data["can_admin"] is False


def test_admin_routes_forbidden_for_members(api):
    with api.session_factory() as db:
        db.add(make_user("member"))
        db.commit()
    api.provider.member_roles["member"] = ["r-member"]

    response = api.client.get("/admin/users", headers=auth_header("member"))
    assert response.status_code == 403
    assert response.json()["error"]["code"] == "http_403"


def test_admin_manages_access_roles_and_labels(api):
    _make_staff(api)
    headers = auth_header("staff")

    added = api.client.post("/admin/access-roles", json={"role_id": "r-mods"}, headers=headers)
    assert _extract_success_data(added)["created"] is True
    listed = _extract_success_data(api.client.get("/admin/access-roles", headers=headers))
    assert listed["role_ids"] == ["r-mods", "r-staff"]

    upserted = api.client.put("/admin/role-labels/r-mods", json={"label": "Mods", "style": "rainbow"}, headers=headers)
    assert _extract_success_data(upserted) == {"role_id": "r-mods", "label": "Mods", "style": "neutral"}

    removed = api.client.delete("/admin/access-roles/r-mods", headers=headers)
    assert _extract_success_data(removed)["removed"] is True

    blank = api.client.post("/admin/access-roles", json={"role_id": "  "}, headers=headers)
    assert blank.status_code == 400

    with api.session_factory() as db:
        actions = [row.action for row in db.query(AdminAuditLog).order_by(AdminAuditLog.id.asc())]
    assert actions == ["access_role.add", "role_label.upsert", "access_role.remove"]


def test_admin_user_list_includes_badges(api):
    _make_staff(api)
    with api.session_factory() as db:
        db.add(make_user("seller"))
        db.add(UserRole(user_id="seller", role_id="r-seller"))
        db.commit()
    api.provider.roles = [GuildRole("r-seller", "Verified Vendor")]

    data = _extract_success_data(api.client.get("/admin/users", headers=auth_header("staff")))
    by_id = {item["id"]: item for item in data["items"]}

    assert by_id["seller"]["badges"] == [{"role_id": "r-seller", "label": "Verified Vendor", "style": "seller"}]


def test_forced_role_cache_refresh(api):
    _make_staff(api)
    api.provider.roles = [GuildRole("1", "A"), GuildRole("2", "B")]

    ok = api.client.post("/admin/role-cache/refresh", headers=auth_header("staff"))
    assert _extract_success_data(ok)["roles"] == 2

    api.provider.fail_roles = True
    failed = api.client.post("/admin/role-cache/refresh", headers=auth_header("staff"))
    assert failed.status_code == 502
    assert api.services.role_cache.get("1") == "A"


def test_prometheus_metrics_exposed(api):
    api.client.get("/forum/categories")
    response = api.client.get("/metrics/prometheus")
    assert response.status_code == 200
    assert "http_requests_total" in response.text
