import logging
from dataclasses import dataclass
from typing import Protocol

import httpx

from app.core.errors import UpstreamError
from app.core.forum_settings import ForumSettings

logger = logging.getLogger(__name__)

# 429 and 5xx are worth one more attempt; anything else is a hard rejection.
RETRYABLE_STATUS = {429, 500, 502, 503, 504}


@dataclass(frozen=True)
class GuildRole:
    role_id: str
    name: str


class IdentityProvider(Protocol):
    def fetch_guild_roles(self, guild_id: str) -> list[GuildRole]: ...

    def fetch_member_role_ids(self, guild_id: str, user_id: str) -> list[str]: ...


class DiscordIdentityProvider:
    """Bot-token client for the two guild lookups the forum needs."""

    def __init__(self, settings: ForumSettings, transport: httpx.BaseTransport | None = None) -> None:
        self._base_url = settings.discord_api_base
        self._bot_token = settings.bot_token
        self._timeout = settings.discord_timeout_seconds
        self._transport = transport

    def _get_json(self, path: str):
        if not self._bot_token:
            raise UpstreamError("DISCORD_BOT_TOKEN is not configured")

        headers = {"Authorization": f"Bot {self._bot_token}"}
        last_error: UpstreamError | None = None
        for attempt in (1, 2):
            try:
                with httpx.Client(
                    base_url=self._base_url,
                    timeout=self._timeout,
                    transport=self._transport,
                ) as client:
                    res = client.get(path, headers=headers)
            except httpx.HTTPError as exc:
                last_error = UpstreamError(f"Discord API request failed: {exc.__class__.__name__}")
                logger.warning("discord_request_failed path=%s attempt=%s error=%s", path, attempt, exc)
                continue

            if res.status_code in RETRYABLE_STATUS:
                last_error = UpstreamError(f"Discord API failed {res.status_code}", status_code=res.status_code)
                logger.warning("discord_request_retryable path=%s attempt=%s status=%s", path, attempt, res.status_code)
                continue
            if res.status_code >= 400:
                raise UpstreamError(
                    f"Discord API failed {res.status_code}: {res.text[:200]}",
                    status_code=res.status_code,
                )
            try:
                return res.json()
            except ValueError as exc:
                raise UpstreamError("Discord API returned invalid JSON", status_code=res.status_code) from exc

        if last_error is None:
            raise UpstreamError("Discord API request failed")
        raise last_error

    def fetch_guild_roles(self, guild_id: str) -> list[GuildRole]:
        if not guild_id:
            raise UpstreamError("DISCORD_GUILD_ID is not configured")
        payload = self._get_json(f"/guilds/{guild_id}/roles")
        if not isinstance(payload, list):
            raise UpstreamError("Unexpected guild roles payload")
        roles: list[GuildRole] = []
        for item in payload:
            if not isinstance(item, dict) or "id" not in item:
                continue
            roles.append(GuildRole(role_id=str(item["id"]), name=str(item.get("name") or "")))
        return roles

    def fetch_member_role_ids(self, guild_id: str, user_id: str) -> list[str]:
        if not guild_id:
            raise UpstreamError("DISCORD_GUILD_ID is not configured")
        payload = self._get_json(f"/guilds/{guild_id}/members/{user_id}")
        roles = payload.get("roles") if isinstance(payload, dict) else None
        if not isinstance(roles, list):
            return []
        return [str(role_id) for role_id in roles]


def avatar_url(user_id: str, avatar: str | None, discriminator: str | None) -> str:
    if avatar:
        return f"https://cdn.discordapp.com/avatars/{user_id}/{avatar}.png?size=96"
    try:
        disc = int(discriminator or "0")
    except ValueError:
        disc = 0
    return f"https://cdn.discordapp.com/embed/avatars/{disc % 5}.png"
