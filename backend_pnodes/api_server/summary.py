"""
Network summary, node rankings and pod-credit passthrough.

These are the read models the chat bot and AI assistant consume. Online
counts are estimates scaled from the probed sample and are flagged as such.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query

from backend_pnodes.api_server.state import AppState, get_state
from backend_pnodes.core.exceptions import PnodeError, StoreUnavailable
from backend_pnodes.pnodes_logging import get_logger
from backend_pnodes.rpc.models import NodeStats

logger = get_logger(__name__)

router = APIRouter(prefix="/api", tags=["summary"])

TOP_VERSIONS = 3


def _latest_snapshots(state: AppState) -> dict[str, dict[str, Any]]:
    """Hot Cache entries, falling back to the store per network."""
    out: dict[str, dict[str, Any]] = {}
    stored: dict[str, dict[str, Any]] | None = None
    for net in state.settings.networks:
        entry = state.hot_cache.get(net.id)
        if entry is not None:
            snap = entry.snapshot.to_dict()
            snap["stale"] = entry.is_stale
            out[net.id] = snap
            continue
        if stored is None:
            try:
                stored = state.store.get_latest_snapshots()
            except StoreUnavailable as e:
                logger.warning("summary_store_read_failed", error=e.message)
                stored = {}
        if net.id in stored:
            out[net.id] = stored[net.id]
    return out


def top_versions(distribution: dict[str, int], limit: int = TOP_VERSIONS) -> list[dict[str, Any]]:
    ranked = sorted(distribution.items(), key=lambda kv: (-kv[1], kv[0]))[:limit]
    return [{"version": v, "count": c} for v, c in ranked]


def build_summary(snapshots: dict[str, dict[str, Any]]) -> dict[str, Any]:
    networks: list[dict[str, Any]] = []
    total_pods = total_online = total_storage = total_streams = 0
    for network, snap in snapshots.items():
        total_pods += snap.get("total_pods") or 0
        total_online += snap.get("estimated_online") or 0
        total_storage += snap.get("total_storage") or 0
        total_streams += snap.get("total_streams") or 0
        networks.append(
            {
                "network": network,
                "total_pods": snap.get("total_pods") or 0,
                "estimated_online": snap.get("estimated_online") or 0,
                "estimated_offline": snap.get("estimated_offline") or 0,
                "online_ratio": snap.get("online_ratio") or 0,
                "sampled": snap.get("sampled") or 0,
                "avg_cpu": round(snap.get("avg_cpu") or 0.0, 2),
                "avg_ram": round(snap.get("avg_ram") or 0.0, 2),
                "avg_uptime": round(snap.get("avg_uptime") or 0.0),
                "total_storage": snap.get("total_storage") or 0,
                "total_streams": snap.get("total_streams") or 0,
                "top_versions": top_versions(snap.get("version_distribution") or {}),
                "timestamp": snap.get("timestamp"),
                "stale": bool(snap.get("stale")),
            }
        )
    return {
        "estimate": True,
        "totals": {
            "networks": len(networks),
            "total_pods": total_pods,
            "estimated_online": total_online,
            "online_ratio": round(total_online / total_pods * 100) if total_pods else 0,
            "total_storage": total_storage,
            "total_streams": total_streams,
        },
        "networks": networks,
    }


def rank_nodes(
    nodes: list[NodeStats],
    credits: dict[str, int],
    limit: int,
) -> dict[str, list[dict[str, Any]]]:
    """Top online nodes by credits, uptime and storage."""
    online = [n for n in nodes if n.is_online]

    def row(n: NodeStats) -> dict[str, Any]:
        return {
            "address": n.address,
            "pubkey": n.pubkey,
            "network": n.network,
            "version": n.version,
            "credits": credits.get(n.pubkey or "", 0),
            "uptime_seconds": n.uptime_seconds or 0,
            "file_size": n.file_size or 0,
            "cpu_percent": n.cpu_percent,
        }

    rows = [row(n) for n in online]
    return {
        "by_credits": sorted(rows, key=lambda r: -r["credits"])[:limit],
        "by_uptime": sorted(rows, key=lambda r: -r["uptime_seconds"])[:limit],
        "by_storage": sorted(rows, key=lambda r: -r["file_size"])[:limit],
    }


@router.get("/summary")
def summary(state: AppState = Depends(get_state)) -> dict[str, Any]:
    out = build_summary(_latest_snapshots(state))
    out["ai_enabled"] = state.settings.ai_enabled
    return out


@router.get("/rankings")
async def rankings(
    limit: int = Query(10, ge=1, le=100),
    state: AppState = Depends(get_state),
) -> dict[str, Any]:
    """Rank nodes from the last cycle. Credits default to 0 when the credit service is down."""
    nodes: list[NodeStats] = []
    for entry in state.hot_cache.all().values():
        nodes.extend(entry.node_stats)
    try:
        credits = await state.pod_credits.credits_map()
    except PnodeError as e:
        logger.warning("rankings_credits_unavailable", error=e.message)
        credits = {}
    return {"limit": limit, "online_nodes": sum(1 for n in nodes if n.is_online), **rank_nodes(nodes, credits, limit)}


@router.get("/pod-credits")
async def pod_credits(state: AppState = Depends(get_state)) -> dict[str, Any]:
    try:
        return await state.pod_credits.fetch()
    except PnodeError as e:
        logger.warning("pod_credits_upstream_failed", error=e.message, error_type=e.kind)
        raise HTTPException(status_code=502, detail=f"Pod credits unavailable: {e.message}") from e
