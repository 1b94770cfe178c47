"""Chart-ready series derived from bucketed network history."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query

from backend_pnodes.api_server.history import run_query, validate_window
from backend_pnodes.api_server.pods import require_network
from backend_pnodes.api_server.state import AppState, get_state

router = APIRouter(prefix="/api/charts", tags=["charts"])


def build_series(points: list[dict[str, Any]]) -> dict[str, list[dict[str, Any]]]:
    """Split history buckets into node-count, resource and storage series."""
    return {
        "nodes": [
            {
                "timestamp": p["timestamp"],
                "online": p["online_nodes"],
                "offline": p["offline_nodes"],
                "total": p["total_pods"],
                "estimated_online": p["estimated_online"],
            }
            for p in points
        ],
        "resources": [
            {"timestamp": p["timestamp"], "cpu": p["avg_cpu"], "ram": p["avg_ram"]}
            for p in points
        ],
        "storage": [
            {
                "timestamp": p["timestamp"],
                "storage": p["total_storage"],
                "streams": p["total_streams"],
                "bytes_transferred": p["total_bytes_transferred"],
            }
            for p in points
        ],
    }


@router.get("/network/{network}")
def network_chart(
    network: str,
    period: str = Query("24h"),
    interval: str | None = Query(None),
    state: AppState = Depends(get_state),
) -> dict[str, Any]:
    require_network(state, network)
    period, interval = validate_window(period, interval)
    points = run_query(lambda: state.store.get_network_history(network, period, interval))
    return {"network": network, "period": period, "interval": interval, **build_series(points)}


@router.get("/comparison")
def comparison_chart(
    period: str = Query("24h"),
    interval: str | None = Query(None),
    state: AppState = Depends(get_state),
) -> dict[str, Any]:
    period, interval = validate_window(period, interval)
    networks: dict[str, Any] = {}
    for net in state.settings.networks:
        points = run_query(lambda: state.store.get_network_history(net.id, period, interval))
        networks[net.id] = {"name": net.name, "tier": net.tier, **build_series(points)}
    return {"period": period, "interval": interval, "networks": networks}
