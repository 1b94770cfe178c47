"""
Live passthrough routes: registry listings, raw JSON-RPC proxy, node probes.

These call the networks directly on each request and never touch the store.
"""

from __future__ import annotations

import asyncio
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from backend_pnodes.api_server.state import AppState, get_state
from backend_pnodes.collector.aggregator import probe_in_waves
from backend_pnodes.core.exceptions import UnknownNetwork
from backend_pnodes.pnodes_logging import get_logger
from backend_pnodes.rpc.models import DEFAULT_NODE_PORT, NetworkConfig, PodRecord

logger = get_logger(__name__)

router = APIRouter(prefix="/api", tags=["pods"])

MAX_BATCH_ADDRESSES = 50


class RpcRequest(BaseModel):
    """POST /api/rpc body. Both fields are required; missing ones are rejected with 400."""

    endpoint: str | None = Field(None, description="JSON-RPC URL to call")
    method: str | None = Field(None, description="Method name, e.g. get-version")


class BatchNodesRequest(BaseModel):
    addresses: list[str] = Field(..., min_length=1, max_length=MAX_BATCH_ADDRESSES)


def require_network(state: AppState, network_id: str) -> NetworkConfig:
    net = state.settings.network(network_id)
    if net is None:
        raise UnknownNetwork(f"Unknown network '{network_id}'")
    return net


async def _registry_payload(state: AppState, net: NetworkConfig) -> dict[str, Any]:
    res = await state.registry.get_pods(net)
    out = res.to_dict()
    out["name"] = net.name
    out["tier"] = net.tier
    return out


@router.get("/networks")
def list_networks(state: AppState = Depends(get_state)) -> dict[str, Any]:
    return {"networks": [n.to_dict() for n in state.settings.networks]}


@router.get("/pods/{network}")
async def get_pods(network: str, state: AppState = Depends(get_state)) -> dict[str, Any]:
    """Registry listing for one network. A registry failure is a 200 carrying `error`."""
    net = require_network(state, network)
    return await _registry_payload(state, net)


@router.get("/pods")
async def get_all_pods(state: AppState = Depends(get_state)) -> dict[str, Any]:
    nets = state.settings.networks
    payloads = await asyncio.gather(*(_registry_payload(state, n) for n in nets))
    return {n.id: p for n, p in zip(nets, payloads)}


@router.post("/rpc")
async def proxy_rpc(body: RpcRequest, state: AppState = Depends(get_state)) -> dict[str, Any]:
    endpoint = (body.endpoint or "").strip()
    method = (body.method or "").strip()
    if not endpoint or not method:
        raise HTTPException(status_code=400, detail="Missing endpoint or method")
    if not endpoint.startswith(("http://", "https://")):
        raise HTTPException(status_code=400, detail="endpoint must be an http(s) URL")
    res = await state.transport.call(endpoint, method)
    if not res.ok:
        logger.info("rpc_proxy_failed", endpoint=endpoint, method=method, error_type=res.error.kind)
    return res.to_dict()


@router.get("/node/{ip}")
async def get_node(
    ip: str,
    port: int = Query(DEFAULT_NODE_PORT, ge=1, le=65535),
    state: AppState = Depends(get_state),
) -> dict[str, Any]:
    """Probe one node now. Offline nodes are a 200 with status=offline and `error`."""
    stats = await state.prober.probe(f"{ip}:{port}")
    return stats.to_dict()


@router.post("/nodes/batch")
async def get_nodes_batch(body: BatchNodesRequest, state: AppState = Depends(get_state)) -> dict[str, Any]:
    addresses = [a.strip() for a in body.addresses if a and a.strip()]
    if not addresses:
        raise HTTPException(status_code=400, detail="addresses must contain at least one address")
    stats, _ = await probe_in_waves(
        [PodRecord(address=a) for a in addresses],
        state.prober.probe,
        batch_size=state.settings.batch_size,
    )
    online = sum(1 for s in stats if s.is_online)
    return {
        "nodes": [s.to_dict() for s in stats],
        "total": len(stats),
        "online": online,
        "offline": len(stats) - online,
    }
