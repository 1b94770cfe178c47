"""
Environment variable loading for Backend pNodes.

- NETWORK_RPC_ENDPOINTS: "id=url,id=url" registry endpoints (default: the four pNode networks)
- DATABASE_URL: snapshot store connection string ("disabled" turns persistence off)
- COLLECTOR_CRON: collection cadence as a cron expression
- Loads .env from project root when available.
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

from backend_pnodes.rpc.models import TIER_DEVNET, TIER_MAINNET, NetworkConfig

# Project root: config is backend_pnodes/config/, root is 2 levels up
_CONFIG_DIR = Path(__file__).resolve().parent
_BACKEND_DIR = _CONFIG_DIR.parent
_ROOT = _BACKEND_DIR.parent
_ENV_PATH = _ROOT / ".env"

DEFAULT_NETWORK_ENDPOINTS: dict[str, str] = {
    "devnet1": "https://rpc1.pchednode.com/rpc",
    "devnet2": "https://rpc2.pchednode.com/rpc",
    "mainnet1": "https://rpc3.pchednode.com/rpc",
    "mainnet2": "https://rpc4.pchednode.com/rpc",
}
DEFAULT_POD_CREDITS_URL = "https://podcredits.xandeum.network/api/pods-credits"
DEFAULT_DATABASE_URL = "sqlite:///pnodes.db"
DISABLED_DATABASE_VALUES = frozenset({"disabled", "none", "off"})

_TRUE_VALUES = ("1", "true", "yes", "on")


def load_pnodes_env() -> None:
    """Load .env from project root. Safe to call multiple times."""
    load_dotenv(_ENV_PATH)


def env_str(name: str, default: str = "") -> str:
    return (os.getenv(name) or "").strip() or default


def env_int(name: str, default: int) -> int:
    raw = env_str(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def env_float(name: str, default: float | None) -> float | None:
    raw = env_str(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def env_bool(name: str, default: bool) -> bool:
    raw = env_str(name).lower()
    if not raw:
        return default
    return raw in _TRUE_VALUES


def _display_name(network_id: str) -> str:
    """devnet1 -> Devnet 1."""
    head = network_id.rstrip("0123456789")
    tail = network_id[len(head):]
    name = head.replace("-", " ").replace("_", " ").strip().title() or network_id
    return f"{name} {tail}".strip()


def _tier(network_id: str) -> str:
    return TIER_MAINNET if network_id.lower().startswith("mainnet") else TIER_DEVNET


def parse_network_endpoints(raw: str) -> tuple[NetworkConfig, ...]:
    """
    Parse "devnet1=https://...,mainnet1=https://..." into NetworkConfig records.
    Entries without '=' or with an empty URL are skipped. Order is preserved.
    """
    networks: list[NetworkConfig] = []
    seen: set[str] = set()
    for part in raw.split(","):
        if "=" not in part:
            continue
        network_id, url = (s.strip() for s in part.split("=", 1))
        if not network_id or not url or network_id in seen:
            continue
        seen.add(network_id)
        networks.append(
            NetworkConfig(id=network_id, name=_display_name(network_id), rpc_url=url, tier=_tier(network_id))
        )
    return tuple(networks)


def get_networks() -> tuple[NetworkConfig, ...]:
    """Return configured networks from NETWORK_RPC_ENDPOINTS, or the defaults."""
    load_pnodes_env()
    raw = env_str("NETWORK_RPC_ENDPOINTS")
    if raw:
        parsed = parse_network_endpoints(raw)
        if parsed:
            return parsed
    return parse_network_endpoints(",".join(f"{k}={v}" for k, v in DEFAULT_NETWORK_ENDPOINTS.items()))


def get_database_url() -> str | None:
    """Return DATABASE_URL, the default SQLite URL, or None when persistence is disabled."""
    load_pnodes_env()
    url = env_str("DATABASE_URL", DEFAULT_DATABASE_URL)
    if url.lower() in DISABLED_DATABASE_VALUES:
        return None
    return url
