"""pNode JSON-RPC access: transport, registry and node probing."""

from backend_pnodes.rpc.models import (
    DEFAULT_NODE_PORT,
    STATUS_OFFLINE,
    STATUS_ONLINE,
    NetworkConfig,
    NetworkSnapshot,
    NodeStats,
    PodRecord,
    RegistryResult,
    RpcResult,
)
from backend_pnodes.rpc.prober import NodeProber, build_node_stats, node_endpoint
from backend_pnodes.rpc.registry import RegistryClient, sort_freshest_first
from backend_pnodes.rpc.transport import RpcTransport

__all__ = [
    "DEFAULT_NODE_PORT",
    "STATUS_OFFLINE",
    "STATUS_ONLINE",
    "NetworkConfig",
    "NetworkSnapshot",
    "NodeProber",
    "NodeStats",
    "PodRecord",
    "RegistryClient",
    "RegistryResult",
    "RpcResult",
    "RpcTransport",
    "build_node_stats",
    "node_endpoint",
    "sort_freshest_first",
]
