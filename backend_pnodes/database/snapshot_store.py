"""
Snapshot store — durable time series of network snapshots, node history and
registry listings, backed by SQLAlchemy.

DATABASE_URL selects the driver (sqlite:///pnodes.db by default, PostgreSQL
supported). Every write gets a store-assigned timestamp from the injected
clock; rows older than RETENTION_SEC are physically deleted by purge_expired().

History queries bucket rows by `interval` seconds, aligned to epoch multiples,
and average each bucket. Rounding: counts, storage and streams to whole
numbers; CPU and RAM percentages to 2 decimals.
"""

from __future__ import annotations

import json
import time
from contextlib import contextmanager
from typing import Any, Callable, Iterable, Iterator, Sequence

from sqlalchemy import create_engine, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from backend_pnodes.core.exceptions import StoreUnavailable
from backend_pnodes.database.models import Base, NetworkSnapshotRow, NodeHistoryRow, PodsSnapshotRow
from backend_pnodes.pnodes_logging import get_logger
from backend_pnodes.rpc.models import NetworkSnapshot, NodeStats, RegistryResult

logger = get_logger(__name__)

RETENTION_SEC = 30 * 24 * 3600

PERIOD_SECONDS: dict[str, int] = {
    "1h": 3600,
    "6h": 6 * 3600,
    "24h": 24 * 3600,
    "7d": 7 * 24 * 3600,
    "30d": 30 * 24 * 3600,
}

INTERVAL_SECONDS: dict[str, int] = {
    "1m": 60,
    "5m": 300,
    "15m": 900,
    "1h": 3600,
    "6h": 6 * 3600,
}

DEFAULT_INTERVAL: dict[str, str] = {
    "1h": "1m",
    "6h": "5m",
    "24h": "15m",
    "7d": "1h",
    "30d": "6h",
}

DEFAULT_PERIOD = "24h"

# Bucket fields and the number of decimals each is rounded to.
_BUCKET_FIELDS: dict[str, int] = {
    "total_pods": 0,
    "online_nodes": 0,
    "offline_nodes": 0,
    "estimated_online": 0,
    "estimated_offline": 0,
    "online_ratio": 0,
    "total_storage": 0,
    "total_streams": 0,
    "total_bytes_transferred": 0,
    "avg_uptime": 0,
    "avg_cpu": 2,
    "avg_ram": 2,
}


def period_seconds(period: str) -> int:
    try:
        return PERIOD_SECONDS[period]
    except KeyError:
        raise ValueError(f"Invalid period '{period}'; expected one of {', '.join(PERIOD_SECONDS)}") from None


def interval_seconds(interval: str) -> int:
    try:
        return INTERVAL_SECONDS[interval]
    except KeyError:
        raise ValueError(
            f"Invalid interval '{interval}'; expected one of {', '.join(INTERVAL_SECONDS)}"
        ) from None


def resolve_window(period: str | None, interval: str | None) -> tuple[str, str, int, int]:
    """Validate period/interval, filling in defaults. Returns (period, interval, period_s, interval_s)."""
    period = period or DEFAULT_PERIOD
    p_sec = period_seconds(period)
    interval = interval or DEFAULT_INTERVAL[period]
    return period, interval, p_sec, interval_seconds(interval)


def _round(value: float, ndigits: int) -> int | float:
    if ndigits == 0:
        return int(round(value))
    return round(value, ndigits)


def bucket_rows(rows: Iterable[dict[str, Any]], interval_sec: int) -> list[dict[str, Any]]:
    """
    Group snapshot dicts (ascending by timestamp) into epoch-aligned buckets and
    average each field. Output is ascending by bucket timestamp.
    """
    buckets: dict[int, list[dict[str, Any]]] = {}
    for row in rows:
        start = (int(row["timestamp"]) // interval_sec) * interval_sec
        buckets.setdefault(start, []).append(row)

    out: list[dict[str, Any]] = []
    for start in sorted(buckets):
        members = buckets[start]
        point: dict[str, Any] = {"timestamp": start, "snapshot_count": len(members)}
        for name, ndigits in _BUCKET_FIELDS.items():
            values = [float(m.get(name) or 0) for m in members]
            point[name] = _round(sum(values) / len(values), ndigits)
        out.append(point)
    return out


class SnapshotStore:
    """SQLAlchemy-backed store; one session per operation."""

    enabled = True

    def __init__(self, url: str, *, clock: Callable[[], float] = time.time, engine: Any = None) -> None:
        self._url = url
        self._clock = clock
        if engine is None:
            connect_args: dict[str, Any] = {}
            if url.startswith("sqlite"):
                connect_args["check_same_thread"] = False
            engine = create_engine(url, connect_args=connect_args, pool_pre_ping=True)
        self._engine = engine
        self._session_factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    @property
    def url(self) -> str:
        return self._url

    def _now(self) -> int:
        return int(self._clock())

    def init_db(self) -> None:
        """Create tables if missing. Safe to call on every startup."""
        try:
            Base.metadata.create_all(bind=self._engine)
        except SQLAlchemyError as e:
            logger.exception("snapshot_store_init_failed", error=str(e))
            raise StoreUnavailable(f"Cannot initialise store: {e}") from e
        logger.info("snapshot_store_ready", url=self._url.split("?")[0].split("//")[-1])

    def close(self) -> None:
        self._engine.dispose()

    @contextmanager
    def _session_scope(self) -> Iterator[Session]:
        """Commits on success, rolls back on error; driver errors surface as StoreUnavailable."""
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            logger.error("snapshot_store_error", error=str(e))
            raise StoreUnavailable(f"Store error: {e}") from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def save_network_snapshot(self, network: str, snapshot: NetworkSnapshot) -> int:
        """Insert one snapshot; returns the store-assigned timestamp."""
        ts = self._now()
        with self._session_scope() as session:
            session.add(
                NetworkSnapshotRow(
                    network=network,
                    timestamp=ts,
                    total_pods=snapshot.total_pods,
                    sampled=snapshot.sampled,
                    online_nodes=snapshot.online_nodes,
                    offline_nodes=snapshot.offline_nodes,
                    estimated_online=snapshot.estimated_online,
                    estimated_offline=snapshot.estimated_offline,
                    online_ratio=snapshot.online_ratio,
                    total_storage=snapshot.total_storage,
                    avg_cpu=snapshot.avg_cpu,
                    avg_ram=snapshot.avg_ram,
                    avg_uptime=snapshot.avg_uptime,
                    total_streams=snapshot.total_streams,
                    total_bytes_transferred=snapshot.total_bytes_transferred,
                    version_distribution=json.dumps(snapshot.version_distribution, sort_keys=True),
                )
            )
        logger.debug("network_snapshot_saved", network=network, timestamp=ts)
        return ts

    def save_node_history(self, node_stats: Sequence[NodeStats]) -> int:
        """Bulk insert with one shared timestamp; returns the number of rows written."""
        if not node_stats:
            return 0
        ts = self._now()
        with self._session_scope() as session:
            session.add_all(
                NodeHistoryRow(
                    address=n.address,
                    pubkey=n.pubkey,
                    network=n.network,
                    timestamp=ts,
                    status=n.status,
                    version=n.version,
                    cpu_percent=n.cpu_percent,
                    ram_used=n.ram_used,
                    ram_total=n.ram_total,
                    ram_percent=n.ram_percent,
                    file_size=n.file_size,
                    uptime_seconds=n.uptime_seconds,
                    active_streams=n.active_streams,
                    packets_received=n.packets_received,
                    packets_sent=n.packets_sent,
                    peers_count=n.peers_count,
                    error=n.error[:512] if n.error else None,
                )
                for n in node_stats
            )
        logger.debug("node_history_saved", rows=len(node_stats), timestamp=ts)
        return len(node_stats)

    def save_pods_snapshot(self, network: str, registry: RegistryResult) -> int:
        ts = self._now()
        with self._session_scope() as session:
            session.add(
                PodsSnapshotRow(
                    network=network,
                    timestamp=ts,
                    total_count=registry.total_count,
                    pods=json.dumps([p.to_dict() for p in registry.pods]),
                )
            )
        return ts

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get_network_history(
        self,
        network: str,
        period: str = DEFAULT_PERIOD,
        interval: str | None = None,
    ) -> list[dict[str, Any]]:
        """Bucketed history for one network, ascending. Raises ValueError on unknown period/interval."""
        _, _, p_sec, i_sec = resolve_window(period, interval)
        since = self._now() - p_sec
        with self._session_scope() as session:
            rows = (
                session.query(NetworkSnapshotRow)
                .filter(NetworkSnapshotRow.network == network, NetworkSnapshotRow.timestamp >= since)
                .order_by(NetworkSnapshotRow.timestamp, NetworkSnapshotRow.id)
                .all()
            )
            data = [r.to_dict() for r in rows]
        return bucket_rows(data, i_sec)

    def get_node_history(self, address: str, period: str = DEFAULT_PERIOD) -> list[dict[str, Any]]:
        since = self._now() - period_seconds(period)
        with self._session_scope() as session:
            rows = (
                session.query(NodeHistoryRow)
                .filter(NodeHistoryRow.address == address, NodeHistoryRow.timestamp >= since)
                .order_by(NodeHistoryRow.timestamp, NodeHistoryRow.id)
                .all()
            )
            return [r.to_dict() for r in rows]

    def get_aggregated_stats(self, period: str = DEFAULT_PERIOD) -> dict[str, Any] | None:
        """Cross-network rollup over the period; None when there are no rows."""
        since = self._now() - period_seconds(period)
        with self._session_scope() as session:
            row = (
                session.query(
                    func.count(NetworkSnapshotRow.id),
                    func.avg(NetworkSnapshotRow.total_pods),
                    func.avg(NetworkSnapshotRow.online_nodes),
                    func.min(NetworkSnapshotRow.online_nodes),
                    func.max(NetworkSnapshotRow.online_nodes),
                    func.avg(NetworkSnapshotRow.avg_cpu),
                    func.avg(NetworkSnapshotRow.avg_ram),
                )
                .filter(NetworkSnapshotRow.timestamp >= since)
                .one()
            )
        count, avg_pods, avg_online, min_online, max_online, avg_cpu, avg_ram = row
        if not count:
            return None
        return {
            "period": period,
            "avg_total_pods": int(round(avg_pods or 0)),
            "avg_online": int(round(avg_online or 0)),
            "min_online": int(min_online or 0),
            "max_online": int(max_online or 0),
            "avg_cpu": round(float(avg_cpu or 0), 2),
            "avg_ram": round(float(avg_ram or 0), 2),
            "snapshot_count": int(count),
        }

    def get_latest_snapshot(self, network: str) -> dict[str, Any] | None:
        with self._session_scope() as session:
            row = (
                session.query(NetworkSnapshotRow)
                .filter(NetworkSnapshotRow.network == network)
                .order_by(NetworkSnapshotRow.timestamp.desc(), NetworkSnapshotRow.id.desc())
                .first()
            )
            return row.to_dict() if row else None

    def get_latest_snapshots(self) -> dict[str, dict[str, Any]]:
        """Most recent snapshot per network, keyed by network id."""
        with self._session_scope() as session:
            networks = [r[0] for r in session.query(NetworkSnapshotRow.network).distinct().all()]
        out: dict[str, dict[str, Any]] = {}
        for network in sorted(networks):
            latest = self.get_latest_snapshot(network)
            if latest is not None:
                out[network] = latest
        return out

    def get_latest_pods_snapshot(self, network: str) -> dict[str, Any] | None:
        with self._session_scope() as session:
            row = (
                session.query(PodsSnapshotRow)
                .filter(PodsSnapshotRow.network == network)
                .order_by(PodsSnapshotRow.timestamp.desc(), PodsSnapshotRow.id.desc())
                .first()
            )
            return row.to_dict() if row else None

    # -------------------------------------------------------------------------
    # Retention
    # -------------------------------------------------------------------------

    def purge_expired(self, now: float | None = None) -> dict[str, int]:
        """Delete rows older than RETENTION_SEC from every table; returns deleted counts per table."""
        cutoff = int(now if now is not None else self._clock()) - RETENTION_SEC
        counts: dict[str, int] = {}
        with self._session_scope() as session:
            for model in (NetworkSnapshotRow, NodeHistoryRow, PodsSnapshotRow):
                counts[model.__tablename__] = (
                    session.query(model).filter(model.timestamp < cutoff).delete(synchronize_session=False)
                )
        if any(counts.values()):
            logger.info("snapshot_store_purged", cutoff=cutoff, **counts)
        return counts


class NullSnapshotStore:
    """Used when persistence is disabled: writes are no-ops, reads are empty."""

    enabled = False
    url = None

    def __init__(self, *, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock

    def init_db(self) -> None:
        return None

    def close(self) -> None:
        return None

    def save_network_snapshot(self, network: str, snapshot: NetworkSnapshot) -> int:
        return int(self._clock())

    def save_node_history(self, node_stats: Sequence[NodeStats]) -> int:
        return 0

    def save_pods_snapshot(self, network: str, registry: RegistryResult) -> int:
        return int(self._clock())

    def get_network_history(
        self,
        network: str,
        period: str = DEFAULT_PERIOD,
        interval: str | None = None,
    ) -> list[dict[str, Any]]:
        resolve_window(period, interval)
        return []

    def get_node_history(self, address: str, period: str = DEFAULT_PERIOD) -> list[dict[str, Any]]:
        period_seconds(period)
        return []

    def get_aggregated_stats(self, period: str = DEFAULT_PERIOD) -> dict[str, Any] | None:
        period_seconds(period)
        return None

    def get_latest_snapshot(self, network: str) -> dict[str, Any] | None:
        return None

    def get_latest_snapshots(self) -> dict[str, dict[str, Any]]:
        return {}

    def get_latest_pods_snapshot(self, network: str) -> dict[str, Any] | None:
        return None

    def purge_expired(self, now: float | None = None) -> dict[str, int]:
        return {}
