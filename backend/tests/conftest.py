import os
from collections.abc import Generator
from dataclasses import dataclass
from datetime import datetime, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("SECRET_KEY", "test-secret-key")

from app.core.errors import UpstreamError
from app.core.identity_provider import GuildRole
from app.db.base import Base
from app.db import models  # noqa: F401
from app.db.models.user import User


class FakeIdentityProvider:
    def __init__(self) -> None:
        self.roles: list[GuildRole] = []
        self.member_roles: dict[str, list[str]] = {}
        self.fail_roles = False
        self.fail_members = False
        self.role_calls = 0
        self.member_calls = 0

    def fetch_guild_roles(self, guild_id: str) -> list[GuildRole]:
        self.role_calls += 1
        if self.fail_roles:
            raise UpstreamError("Discord API failed 503", status_code=503)
        return list(self.roles)

    def fetch_member_role_ids(self, guild_id: str, user_id: str) -> list[str]:
        self.member_calls += 1
        if self.fail_members:
            raise UpstreamError("Discord API request failed: ConnectTimeout")
        return list(self.member_roles.get(user_id, []))


class FakeConnection:
    def __init__(self, connection_id: str) -> None:
        self.connection_id = connection_id
        self.messages: list[dict] = []

    async def send_json(self, message: dict) -> None:
        self.messages.append(message)

    def events(self, name: str) -> list[dict]:
        return [m["data"] for m in self.messages if m["event"] == name]


class BrokenConnection(FakeConnection):
    async def send_json(self, message: dict) -> None:
        raise RuntimeError("socket closed")


@dataclass
class FakeClock:
    now: float = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_user(user_id: str, username: str | None = None) -> User:
    now = datetime.now(timezone.utc).replace(tzinfo=None)
    return User(id=user_id, username=username or f"user{user_id}", created_at=now, last_seen_at=now)


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    TestingSessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def provider() -> FakeIdentityProvider:
    return FakeIdentityProvider()


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@dataclass
class ApiContext:
    client: object
    session_factory: sessionmaker
    services: object
    provider: FakeIdentityProvider


def auth_header(user_id: str) -> dict[str, str]:
    from app.core.security import create_access_token

    token = create_access_token({"sub": user_id})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def api(provider) -> Generator[ApiContext, None, None]:
    from fastapi.testclient import TestClient

    from app.core.container import build_forum_services
    from app.core.forum_settings import ForumSettings
    from app.db.session import get_db
    from app.main import app
    from app.services.forum import seed_categories

    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)

    def _get_db() -> Generator[Session, None, None]:
        db = SessionLocal()
        try:
            yield db
        finally:
            db.close()

    settings = ForumSettings(guild_id="guild-1", bot_token="bot", identity_bridge_secret="bridge-secret")
    services = build_forum_services(settings, provider=provider)
    app.state.forum = services
    app.dependency_overrides[get_db] = _get_db
    with SessionLocal() as db:
        seed_categories(db)

    try:
        yield ApiContext(
            client=TestClient(app),
            session_factory=SessionLocal,
            services=services,
            provider=provider,
        )
    finally:
        app.dependency_overrides.clear()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()
