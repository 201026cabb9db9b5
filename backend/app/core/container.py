from dataclasses import dataclass

from fastapi import Request

from app.core.badges import BadgeResolver
from app.core.forum_settings import ForumSettings
from app.core.identity_provider import DiscordIdentityProvider, IdentityProvider
from app.core.role_cache import RoleCache
from app.core.role_sync import RoleSyncEngine, SyncThrottle
from app.realtime.hub import RealtimeHub


@dataclass
class ForumServices:
    settings: ForumSettings
    provider: IdentityProvider
    role_cache: RoleCache
    throttle: SyncThrottle
    role_sync: RoleSyncEngine
    badges: BadgeResolver
    hub: RealtimeHub


def build_forum_services(settings: ForumSettings, provider: IdentityProvider | None = None) -> ForumServices:
    identity = provider if provider is not None else DiscordIdentityProvider(settings)
    role_cache = RoleCache(identity, ttl_seconds=settings.role_cache_ttl_seconds)
    throttle = SyncThrottle(window_seconds=settings.role_sync_throttle_seconds)
    return ForumServices(
        settings=settings,
        provider=identity,
        role_cache=role_cache,
        throttle=throttle,
        role_sync=RoleSyncEngine(identity, throttle, settings.guild_id),
        badges=BadgeResolver(role_cache, settings.guild_id),
        hub=RealtimeHub(),
    )


def get_forum_services(request: Request) -> ForumServices:
    services = getattr(request.app.state, "forum", None)
    if services is None:
        raise RuntimeError("Forum services are not initialised")
    return services
