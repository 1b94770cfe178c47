"""
History routes over the snapshot store, plus the latest-snapshot view that
prefers the Hot Cache.

Unknown period/interval values are 400; store faults surface as 503 through
the StoreUnavailable handler in server.py.
"""

from __future__ import annotations

from typing import Any, Callable, TypeVar

from fastapi import APIRouter, Depends, HTTPException, Query

from backend_pnodes.api_server.pods import require_network
from backend_pnodes.api_server.state import AppState, get_state
from backend_pnodes.collector.hot_cache import entry_to_dict
from backend_pnodes.core.exceptions import StoreUnavailable
from backend_pnodes.database import resolve_window
from backend_pnodes.pnodes_logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/api/history", tags=["history"])

T = TypeVar("T")


def run_query(fn: Callable[[], T]) -> T:
    """Call a store read, mapping invalid window parameters to 400."""
    try:
        return fn()
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e


def validate_window(period: str, interval: str | None = None) -> tuple[str, str]:
    period, interval, _, _ = run_query(lambda: resolve_window(period, interval))
    return period, interval


@router.get("/network/{network}")
def network_history(
    network: str,
    period: str = Query("24h"),
    interval: str | None = Query(None),
    state: AppState = Depends(get_state),
) -> dict[str, Any]:
    require_network(state, network)
    period, interval = validate_window(period, interval)
    data = run_query(lambda: state.store.get_network_history(network, period, interval))
    return {"network": network, "period": period, "interval": interval, "data": data, "count": len(data)}


@router.get("/node/{address:path}")
def node_history(
    address: str,
    period: str = Query("24h"),
    state: AppState = Depends(get_state),
) -> dict[str, Any]:
    data = run_query(lambda: state.store.get_node_history(address, period))
    return {"address": address, "period": period, "data": data, "count": len(data)}


@router.get("/stats")
def aggregated_stats(period: str = Query("24h"), state: AppState = Depends(get_state)) -> dict[str, Any]:
    stats = run_query(lambda: state.store.get_aggregated_stats(period))
    return {"period": period, "stats": stats}


def _latest_for(state: AppState, network: str) -> dict[str, Any] | None:
    entry = state.hot_cache.get(network)
    if entry is not None:
        out = entry_to_dict(entry, state.hot_cache.now())
        out["source"] = "cache"
        return out
    row = state.store.get_latest_snapshot(network)
    if row is None:
        return None
    row["cached"] = False
    row["stale"] = False
    row["source"] = "store"
    return row


@router.get("/latest")
def latest(network: str | None = Query(None), state: AppState = Depends(get_state)) -> dict[str, Any]:
    """Latest snapshot: Hot Cache first (flagged stale past its TTL), else the store's newest row."""
    if network:
        require_network(state, network)
        snap = _latest_for(state, network)
        if snap is None:
            raise HTTPException(status_code=404, detail=f"No snapshot yet for '{network}'")
        return snap
    out: dict[str, Any] = {}
    for net in state.settings.networks:
        try:
            snap = _latest_for(state, net.id)
        except StoreUnavailable as e:
            # cached networks are still served
            logger.warning("latest_store_read_failed", network=net.id, error=e.message)
            continue
        if snap is not None:
            out[net.id] = snap
    return {"networks": out}
