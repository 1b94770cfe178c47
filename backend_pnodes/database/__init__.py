"""Snapshot persistence."""

from __future__ import annotations

import time
from typing import Callable

from sqlalchemy.exc import SQLAlchemyError

from backend_pnodes.core.exceptions import StoreUnavailable
from backend_pnodes.database.snapshot_store import (
    DEFAULT_INTERVAL,
    INTERVAL_SECONDS,
    PERIOD_SECONDS,
    RETENTION_SEC,
    NullSnapshotStore,
    SnapshotStore,
    resolve_window,
)
from backend_pnodes.pnodes_logging import get_logger

logger = get_logger(__name__)

__all__ = [
    "DEFAULT_INTERVAL",
    "INTERVAL_SECONDS",
    "PERIOD_SECONDS",
    "RETENTION_SEC",
    "NullSnapshotStore",
    "SnapshotStore",
    "create_snapshot_store",
    "resolve_window",
]


def create_snapshot_store(
    url: str | None,
    *,
    clock: Callable[[], float] = time.time,
) -> SnapshotStore | NullSnapshotStore:
    """Build and initialise the store for `url`; falls back to NullSnapshotStore when disabled or unreachable."""
    if not url:
        logger.info("snapshot_store_disabled")
        return NullSnapshotStore(clock=clock)
    try:
        store = SnapshotStore(url, clock=clock)
        store.init_db()
        return store
    except (SQLAlchemyError, StoreUnavailable, ImportError) as e:
        # ImportError: the URL names a driver that is not installed
        logger.error("snapshot_store_unavailable", error=str(e), error_class=type(e).__name__)
        return NullSnapshotStore(clock=clock)
