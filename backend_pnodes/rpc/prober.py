"""
Probe one node for version, stats and peers, and classify it online or offline.

Rules:
- get-version, get-stats and get-pods are issued concurrently; all three settle.
- offline iff both get-version and get-stats failed; peer data is best-effort.
- RAM percent is omitted when ram_total is missing or zero.
- probe() never raises.
"""

from __future__ import annotations

import asyncio
from typing import Any

from backend_pnodes.pnodes_logging import get_logger
from backend_pnodes.rpc.models import (
    DEFAULT_NODE_PORT,
    STATUS_OFFLINE,
    STATUS_ONLINE,
    NodeStats,
    RpcResult,
)
from backend_pnodes.rpc.transport import RpcTransport

logger = get_logger(__name__)

METHOD_GET_VERSION = "get-version"
METHOD_GET_STATS = "get-stats"
METHOD_GET_PODS = "get-pods"


def node_endpoint(address: str, default_port: int = DEFAULT_NODE_PORT) -> str:
    """host:port (or bare host) -> http://host:port/rpc."""
    address = address.strip()
    if address.startswith("[") and "]" in address:
        host, _, rest = address[1:].partition("]")
        port = rest.lstrip(":") or str(default_port)
        return f"http://[{host}]:{port}/rpc"
    host, sep, port = address.rpartition(":")
    if not sep or not port.isdigit():
        host, port = address, str(default_port)
    return f"http://{host}:{port}/rpc"


def _num(stats: dict[str, Any], key: str) -> Any:
    value = stats.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return value


def _int(stats: dict[str, Any], key: str) -> int | None:
    value = _num(stats, key)
    return int(value) if value is not None else None


def ram_percent(ram_used: float | None, ram_total: float | None) -> float | None:
    if ram_used is None or not ram_total:
        return None
    return ram_used / ram_total * 100


def build_node_stats(
    address: str,
    version_res: RpcResult,
    stats_res: RpcResult,
    pods_res: RpcResult,
    *,
    pubkey: str | None = None,
    network: str | None = None,
) -> NodeStats:
    """Classify one node from its three call results."""
    if not version_res.ok and not stats_res.ok:
        err = stats_res.error or version_res.error
        return NodeStats(
            address=address,
            status=STATUS_OFFLINE,
            pubkey=pubkey,
            network=network,
            error=err.message if err else None,
        )

    version: str | None = None
    if version_res.ok and isinstance(version_res.result, dict):
        version = version_res.result.get("version") or None

    stats: dict[str, Any] = stats_res.result if stats_res.ok and isinstance(stats_res.result, dict) else {}
    ram_used = _int(stats, "ram_used")
    ram_total = _int(stats, "ram_total")
    cpu = _num(stats, "cpu_percent")

    peers: int | None = None
    if pods_res.ok and isinstance(pods_res.result, dict):
        total = pods_res.result.get("total_count")
        if isinstance(total, int) and not isinstance(total, bool):
            peers = total
        elif isinstance(pods_res.result.get("pods"), list):
            peers = len(pods_res.result["pods"])

    return NodeStats(
        address=address,
        status=STATUS_ONLINE,
        pubkey=pubkey,
        network=network,
        version=version,
        cpu_percent=float(cpu) if cpu is not None else None,
        ram_used=ram_used,
        ram_total=ram_total,
        ram_percent=ram_percent(ram_used, ram_total),
        file_size=_int(stats, "file_size"),
        uptime_seconds=_int(stats, "uptime"),
        active_streams=_int(stats, "active_streams"),
        packets_received=_int(stats, "packets_received"),
        packets_sent=_int(stats, "packets_sent"),
        peers_count=peers,
    )


class NodeProber:
    """Probes one node address through the transport layer."""

    def __init__(self, transport: RpcTransport, *, default_port: int = DEFAULT_NODE_PORT) -> None:
        self._transport = transport
        self._default_port = default_port

    async def probe(
        self,
        address: str,
        *,
        pubkey: str | None = None,
        network: str | None = None,
    ) -> NodeStats:
        endpoint = node_endpoint(address, self._default_port)
        try:
            version_res, stats_res, pods_res = await asyncio.gather(
                self._transport.call(endpoint, METHOD_GET_VERSION),
                self._transport.call(endpoint, METHOD_GET_STATS),
                self._transport.call(endpoint, METHOD_GET_PODS),
            )
        except Exception as e:
            logger.warning("node_probe_failed", address=address, error=str(e))
            return NodeStats(address=address, status=STATUS_OFFLINE, pubkey=pubkey, network=network, error=str(e))
        node = build_node_stats(address, version_res, stats_res, pods_res, pubkey=pubkey, network=network)
        logger.debug("node_probed", address=address, network=network, status=node.status)
        return node
