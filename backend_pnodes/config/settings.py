"""
Application settings and environment configuration.

Responsibilities:
- Load configuration from environment variables and .env files.
- Validate settings and provide defaults for optional ones.
- Expose a typed, immutable Settings object for the collector, store and API.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from backend_pnodes.config.env import (
    DEFAULT_POD_CREDITS_URL,
    env_bool,
    env_float,
    env_int,
    env_str,
    get_database_url,
    get_networks,
    load_pnodes_env,
)
from backend_pnodes.rpc.models import NetworkConfig

DEFAULT_CRON = "*/5 * * * *"
DEFAULT_SAMPLE_SIZE = 20
DEFAULT_BATCH_SIZE = 5
DEFAULT_HOT_CACHE_TTL_SEC = 60.0
DEFAULT_INITIAL_DELAY_SEC = 5.0
DEFAULT_API_PORT = 3001
SAMPLE_ALL = "all"


@dataclass(frozen=True)
class Settings:
    """Process-wide configuration. Built once at startup; never mutated."""

    networks: tuple[NetworkConfig, ...] = ()
    collector_cron: str = DEFAULT_CRON
    collector_enabled: bool = True
    initial_delay_sec: float = DEFAULT_INITIAL_DELAY_SEC
    sample_size: int | None = DEFAULT_SAMPLE_SIZE
    """None probes the whole registry."""
    batch_size: int = DEFAULT_BATCH_SIZE
    batch_delay_sec: float = 0.0
    cycle_deadline_sec: float | None = None
    cors_origins: tuple[str, ...] = ("*",)
    database_url: str | None = None
    """None disables persistence (history endpoints return empty results)."""
    hot_cache_ttl_sec: float = DEFAULT_HOT_CACHE_TTL_SEC
    pod_credits_url: str = DEFAULT_POD_CREDITS_URL
    telegram_bot_token: str | None = field(default=None, repr=False)
    ai_api_key: str | None = field(default=None, repr=False)
    api_host: str = "0.0.0.0"
    api_port: int = DEFAULT_API_PORT

    def __post_init__(self) -> None:
        if self.batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        if self.sample_size is not None and self.sample_size < 1:
            raise ValueError("sample_size must be >= 1 or None")

    @property
    def ai_enabled(self) -> bool:
        return bool(self.ai_api_key)

    @property
    def alerts_channel_enabled(self) -> bool:
        return bool(self.telegram_bot_token)

    def network(self, network_id: str) -> NetworkConfig | None:
        for net in self.networks:
            if net.id == network_id:
                return net
        return None


def _parse_sample_size(raw: str) -> int | None:
    if not raw:
        return DEFAULT_SAMPLE_SIZE
    if raw.lower() == SAMPLE_ALL:
        return None
    try:
        return max(1, int(raw))
    except ValueError:
        return DEFAULT_SAMPLE_SIZE


def get_settings() -> Settings:
    """Return application settings read from the environment (and .env)."""
    load_pnodes_env()
    origins = tuple(o.strip() for o in env_str("CORS_ORIGINS", "*").split(",") if o.strip()) or ("*",)
    return Settings(
        networks=get_networks(),
        collector_cron=env_str("COLLECTOR_CRON", DEFAULT_CRON),
        collector_enabled=env_bool("COLLECTOR_ENABLED", True),
        initial_delay_sec=env_float("COLLECTOR_INITIAL_DELAY_SEC", DEFAULT_INITIAL_DELAY_SEC) or 0.0,
        sample_size=_parse_sample_size(env_str("SAMPLE_SIZE")),
        batch_size=max(1, env_int("BATCH_SIZE", DEFAULT_BATCH_SIZE)),
        batch_delay_sec=max(0.0, env_float("BATCH_DELAY_SEC", 0.0) or 0.0),
        cycle_deadline_sec=env_float("CYCLE_DEADLINE_SEC", None),
        cors_origins=origins,
        database_url=get_database_url(),
        hot_cache_ttl_sec=env_float("HOT_CACHE_TTL_SEC", DEFAULT_HOT_CACHE_TTL_SEC) or DEFAULT_HOT_CACHE_TTL_SEC,
        pod_credits_url=env_str("POD_CREDITS_URL", DEFAULT_POD_CREDITS_URL),
        telegram_bot_token=env_str("TELEGRAM_BOT_TOKEN") or None,
        ai_api_key=env_str("GEMINI_API_KEY") or None,
        api_host=env_str("API_HOST", "0.0.0.0"),
        api_port=env_int("API_PORT", DEFAULT_API_PORT),
    )
