"""
FastAPI server — read API over the Hot Cache and snapshot store, plus live
passthroughs to the networks.

create_app() attaches an AppState and, when the collector is enabled, starts
the scheduler thread from the lifespan so collection never blocks reads.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from backend_pnodes import __version__
from backend_pnodes.api_server import alerts, charts, history, pods, summary
from backend_pnodes.api_server.middleware import RequestLoggingMiddleware
from backend_pnodes.api_server.state import AppState, build_app_state, get_state
from backend_pnodes.core.exceptions import PnodeError, StoreUnavailable, UnknownNetwork
from backend_pnodes.pnodes_logging import get_logger

logger = get_logger(__name__)


# -----------------------------------------------------------------------------
# Lifespan: start the collector thread (never blocks the API)
# -----------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI):
    state: AppState = app.state.pnodes
    if state.settings.collector_enabled and state.settings.networks:
        state.scheduler.start_in_thread()
        logger.info(
            "collector_thread_started",
            cron=state.settings.collector_cron,
            networks=len(state.settings.networks),
        )
    else:
        logger.info("collector_disabled")

    yield

    state.close()
    logger.info("api_shutdown")


# -----------------------------------------------------------------------------
# Error handlers
# -----------------------------------------------------------------------------


def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Consistent JSON error response for HTTPException."""
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


def store_unavailable_handler(request: Request, exc: StoreUnavailable) -> JSONResponse:
    logger.warning("store_unavailable_response", path=request.url.path, error=exc.message)
    return JSONResponse(status_code=503, content={"detail": exc.message, "error_type": exc.kind})


def unknown_network_handler(request: Request, exc: UnknownNetwork) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": exc.message, "error_type": exc.kind})


def pnode_error_handler(request: Request, exc: PnodeError) -> JSONResponse:
    logger.warning("pnode_error_response", path=request.url.path, error=exc.message, error_type=exc.kind)
    return JSONResponse(status_code=502, content={"detail": exc.message, "error_type": exc.kind})


# -----------------------------------------------------------------------------
# App factory
# -----------------------------------------------------------------------------


def create_app(state: AppState | None = None) -> FastAPI:
    state = state or build_app_state()
    app = FastAPI(
        title="Backend pNodes API",
        description="pNode network collector: live registry passthrough, cached snapshots and history.",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.pnodes = state

    app.add_middleware(RequestLoggingMiddleware)
    origins = list(state.settings.cors_origins)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials="*" not in origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(StoreUnavailable, store_unavailable_handler)
    app.add_exception_handler(UnknownNetwork, unknown_network_handler)
    app.add_exception_handler(PnodeError, pnode_error_handler)

    @app.get("/health")
    def health(state: AppState = Depends(get_state)) -> dict[str, Any]:
        report = state.scheduler.last_report
        return {
            "status": "ok",
            "version": __version__,
            "scheduler": state.scheduler.state,
            "current_network": state.scheduler.current_network,
            "store_enabled": state.store.enabled,
            "networks": [n.id for n in state.settings.networks],
            "cached_networks": sorted(state.hot_cache.all()),
            "last_cycle": report.to_dict() if report else None,
        }

    app.include_router(pods.router)
    app.include_router(history.router)
    app.include_router(charts.router)
    app.include_router(summary.router)
    app.include_router(alerts.router)
    return app
