"""
Domain models for networks, registry pods, and node measurements.

All records are frozen dataclasses: a collection cycle replaces them wholesale
and never mutates one in place.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any

from backend_pnodes.core.exceptions import PnodeError

STATUS_ONLINE = "online"
STATUS_OFFLINE = "offline"

TIER_DEVNET = "devnet"
TIER_MAINNET = "mainnet"

DEFAULT_NODE_PORT = 6000


@dataclass(frozen=True)
class NetworkConfig:
    """One monitored network and its registry entry endpoint."""

    id: str
    name: str
    rpc_url: str
    tier: str = TIER_DEVNET
    """devnet (test) or mainnet (production)."""

    def to_dict(self) -> dict[str, str]:
        return {"id": self.id, "name": self.name, "rpc_url": self.rpc_url, "tier": self.tier}


@dataclass(frozen=True)
class PodRecord:
    """Single registry entry as returned by get-pods."""

    address: str
    pubkey: str | None = None
    last_seen_timestamp: int | None = None
    version: str | None = None

    @classmethod
    def from_rpc(cls, raw: dict[str, Any]) -> "PodRecord":
        ts = raw.get("last_seen_timestamp")
        try:
            ts = int(ts) if ts is not None else None
        except (TypeError, ValueError):
            ts = None
        return cls(
            address=str(raw.get("address") or ""),
            pubkey=raw.get("pubkey") or None,
            last_seen_timestamp=ts,
            version=raw.get("version") or None,
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class RpcResult:
    """Outcome of one transport call: exactly one of result / error is set."""

    result: Any = None
    error: PnodeError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict[str, Any]:
        if self.error is not None:
            return self.error.to_dict()
        return {"result": self.result}


@dataclass(frozen=True)
class RegistryResult:
    """get-pods outcome for one network."""

    network: str
    pods: tuple[PodRecord, ...] = ()
    total_count: int = 0
    error: PnodeError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "network": self.network,
            "pods": [p.to_dict() for p in self.pods],
            "total_count": self.total_count,
        }
        if self.error is not None:
            out.update(self.error.to_dict())
        return out


@dataclass(frozen=True)
class NodeStats:
    """Point-in-time measurement of one node; optional fields are None when unavailable."""

    address: str
    status: str
    pubkey: str | None = None
    network: str | None = None
    version: str | None = None
    cpu_percent: float | None = None
    ram_used: int | None = None
    ram_total: int | None = None
    ram_percent: float | None = None
    file_size: int | None = None
    uptime_seconds: int | None = None
    active_streams: int | None = None
    packets_received: int | None = None
    packets_sent: int | None = None
    peers_count: int | None = None
    error: str | None = None

    @property
    def is_online(self) -> bool:
        return self.status == STATUS_ONLINE

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class NetworkSnapshot:
    """
    Aggregate for one network at one time.

    online_nodes / offline_nodes count the probed sample only; estimated_* scale
    the sample ratio to the registry size. Both are estimates, not a census.
    """

    network: str
    total_pods: int = 0
    sampled: int = 0
    online_nodes: int = 0
    offline_nodes: int = 0
    estimated_online: int = 0
    estimated_offline: int = 0
    online_ratio: int = 0
    total_storage: int = 0
    avg_cpu: float = 0.0
    avg_ram: float = 0.0
    avg_uptime: float = 0.0
    total_streams: int = 0
    total_bytes_transferred: int = 0
    version_distribution: dict[str, int] = field(default_factory=dict)
    timestamp: int | None = None
    """Unix seconds, assigned by the store (or the collector when not persisted)."""

    def to_dict(self) -> dict[str, Any]:
        out = asdict(self)
        out["version_distribution"] = dict(self.version_distribution)
        out["estimate"] = True
        return out
