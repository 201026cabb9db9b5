import threading
import time

import pytest

from app.core.errors import UpstreamError
from app.core.identity_provider import GuildRole
from app.core.role_cache import RoleCache


def test_cold_cache_refreshes_on_first_call(provider, clock):
    provider.roles = [GuildRole("1", "Founder"), GuildRole("2", "Member")]
    cache = RoleCache(provider, ttl_seconds=300, clock=clock)

    assert cache.get("1") is None
    assert cache.refresh("guild") is True
    assert provider.role_calls == 1
    assert cache.get("1") == "Founder"
    assert cache.get("2") == "Member"


def test_warm_cache_does_not_refetch_within_ttl(provider, clock):
    provider.roles = [GuildRole("1", "Founder")]
    cache = RoleCache(provider, ttl_seconds=300, clock=clock)
    cache.refresh("guild")

    clock.advance(299)
    assert cache.refresh("guild") is False
    assert provider.role_calls == 1

    clock.advance(1)
    assert cache.refresh("guild") is True
    assert provider.role_calls == 2


def test_empty_cache_always_refetches(provider, clock):
    cache = RoleCache(provider, ttl_seconds=300, clock=clock)

    cache.refresh("guild")
    cache.refresh("guild")
    assert provider.role_calls == 2


def test_failed_refresh_keeps_previous_snapshot(provider, clock):
    provider.roles = [GuildRole("1", "Moderator")]
    cache = RoleCache(provider, ttl_seconds=300, clock=clock)
    cache.refresh("guild")
    before = cache.snapshot

    provider.fail_roles = True
    clock.advance(301)
    with pytest.raises(UpstreamError):
        cache.refresh("guild")

    assert cache.snapshot is before
    assert cache.get("1") == "Moderator"


def test_refresh_replaces_snapshot_wholesale(provider, clock):
    provider.roles = [GuildRole("1", "Old"), GuildRole("2", "Gone")]
    cache = RoleCache(provider, ttl_seconds=300, clock=clock)
    cache.refresh("guild")

    provider.roles = [GuildRole("1", "New")]
    assert cache.refresh("guild", force=True) is True
    assert cache.get("1") == "New"
    assert cache.get("2") is None


def test_concurrent_refresh_serves_current_snapshot(provider, clock):
    provider.roles = [GuildRole("1", "Founder")]
    cache = RoleCache(provider, ttl_seconds=300, clock=clock)
    entered = threading.Event()
    release = threading.Event()
    fetch = provider.fetch_guild_roles

    def slow_fetch(guild_id):
        entered.set()
        release.wait(5)
        return fetch(guild_id)

    provider.fetch_guild_roles = slow_fetch
    worker = threading.Thread(target=cache.refresh, args=("guild",))
    worker.start()
    try:
        assert entered.wait(5)
        started = time.monotonic()
        assert cache.refresh("guild") is False
        assert time.monotonic() - started < 1
        assert cache.get("1") is None
    finally:
        release.set()
        worker.join(5)

    assert provider.role_calls == 1
    assert cache.get("1") == "Founder"
