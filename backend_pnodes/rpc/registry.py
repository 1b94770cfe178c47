"""
Fetch the full pod list of one network via get-pods.

An empty pod list is reported as RegistryEmpty, distinct from transport
failures (RegistryUnavailable), so callers can tell a healthy-but-empty
registry from an unreachable one.
"""

from __future__ import annotations

from typing import Iterable

from backend_pnodes.core.exceptions import MalformedResponse, RegistryEmpty, RegistryUnavailable
from backend_pnodes.pnodes_logging import get_logger
from backend_pnodes.rpc.models import NetworkConfig, PodRecord, RegistryResult
from backend_pnodes.rpc.transport import RpcTransport

logger = get_logger(__name__)

METHOD_GET_PODS = "get-pods"


def parse_pods(result: object) -> tuple[list[PodRecord], int | None]:
    """Extract pods and reported total_count from a get-pods result."""
    if not isinstance(result, dict):
        raise MalformedResponse("get-pods result is not an object")
    raw_pods = result.get("pods")
    if raw_pods is None:
        return [], None
    if not isinstance(raw_pods, list):
        raise MalformedResponse("get-pods 'pods' is not a list")
    pods = [PodRecord.from_rpc(p) for p in raw_pods if isinstance(p, dict) and p.get("address")]
    total = result.get("total_count")
    try:
        total = int(total) if total is not None else None
    except (TypeError, ValueError):
        total = None
    return pods, total


def sort_freshest_first(pods: Iterable[PodRecord]) -> list[PodRecord]:
    """Order by last_seen_timestamp descending; pods without a timestamp go last (stable)."""
    return sorted(
        pods,
        key=lambda p: (p.last_seen_timestamp is not None, p.last_seen_timestamp or 0),
        reverse=True,
    )


class RegistryClient:
    """Fetches a network's registry through the transport layer."""

    def __init__(self, transport: RpcTransport) -> None:
        self._transport = transport

    async def get_pods(self, network: NetworkConfig) -> RegistryResult:
        """Return the registry for `network`; failures are carried in RegistryResult.error."""
        res = await self._transport.call(network.rpc_url, METHOD_GET_PODS)
        if not res.ok:
            logger.warning(
                "registry_unavailable",
                network=network.id,
                error=res.error.message,
                error_type=res.error.kind,
            )
            return RegistryResult(
                network=network.id,
                error=RegistryUnavailable(res.error.message, cause=res.error),
            )
        try:
            pods, total = parse_pods(res.result)
        except MalformedResponse as e:
            logger.warning("registry_malformed", network=network.id, error=e.message)
            return RegistryResult(network=network.id, error=RegistryUnavailable(e.message, cause=e))
        if not pods:
            logger.info("registry_empty", network=network.id)
            return RegistryResult(network=network.id, error=RegistryEmpty("No pods found"))
        return RegistryResult(
            network=network.id,
            pods=tuple(pods),
            total_count=total if total is not None else len(pods),
        )
