import os
from dataclasses import dataclass


def _int_from_env(name: str, default: int) -> int:
    try:
        raw = int(os.getenv(name, str(default)).strip())
        return max(0, raw)
    except ValueError:
        return default


def _float_from_env(name: str, default: float) -> float:
    try:
        raw = float(os.getenv(name, str(default)).strip())
        return max(0.0, raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class ForumSettings:
    guild_id: str = ""
    bot_token: str = ""
    discord_api_base: str = "https://discord.com/api/v10"
    discord_timeout_seconds: float = 8.0
    role_sync_throttle_seconds: int = 10
    role_cache_ttl_seconds: int = 300
    identity_bridge_secret: str = ""
    port: int = 3000


def load_forum_settings() -> ForumSettings:
    return ForumSettings(
        guild_id=os.getenv("DISCORD_GUILD_ID", "").strip(),
        bot_token=os.getenv("DISCORD_BOT_TOKEN", "").strip(),
        discord_api_base=os.getenv("DISCORD_API_BASE", "https://discord.com/api/v10").rstrip("/"),
        discord_timeout_seconds=_float_from_env("DISCORD_TIMEOUT_SECONDS", 8.0),
        role_sync_throttle_seconds=_int_from_env("ROLE_SYNC_THROTTLE_SECONDS", 10),
        role_cache_ttl_seconds=_int_from_env("ROLE_CACHE_TTL_SECONDS", 300),
        identity_bridge_secret=os.getenv("IDENTITY_BRIDGE_SECRET", ""),
        port=_int_from_env("PORT", 3000),
    )
