"""
Collector scheduler — one periodic driver for all networks.

A cycle walks the configured networks one after another. A network whose
registry fails is logged and skipped, leaving its Hot Cache entry and the
store untouched. Successful networks are persisted, then cached. After the
walk, node statuses go to the alert engine and the expiry pass runs.

run_forever() is meant for a daemon thread (started from the FastAPI lifespan):
each cycle runs under its own asyncio.run(), so collection never shares the
event loop serving reads. Cycles never overlap; a cycle that overruns the next
fire time simply waits for the one after.
"""

from __future__ import annotations

import asyncio
import dataclasses
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Sequence

from apscheduler.triggers.cron import CronTrigger

from backend_pnodes.alerts.engine import AlertEngine
from backend_pnodes.collector.aggregator import CollectionResult, FanOutAggregator
from backend_pnodes.collector.hot_cache import HotCache
from backend_pnodes.core.exceptions import PnodeError, StoreUnavailable
from backend_pnodes.pnodes_logging import bind_network, get_logger
from backend_pnodes.rpc.models import NetworkConfig, NodeStats

logger = get_logger(__name__)

DEFAULT_CRON = "*/5 * * * *"
DEFAULT_INITIAL_DELAY_SEC = 5.0
SHUTDOWN_JOIN_TIMEOUT_SEC = 15.0

STATE_IDLE = "idle"
STATE_COLLECTING = "collecting"


@dataclass
class NetworkOutcome:
    network: str
    ok: bool
    error: str | None = None
    error_type: str | None = None
    total_pods: int = 0
    online_nodes: int = 0
    sampled: int = 0
    store_error: str | None = None
    duration_sec: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return dataclasses.asdict(self)


@dataclass
class CycleReport:
    started_at: datetime
    finished_at: datetime | None = None
    networks: list[NetworkOutcome] = field(default_factory=list)
    alerts: int = 0
    purged: dict[str, int] = field(default_factory=dict)

    @property
    def duration_sec(self) -> float:
        if self.finished_at is None:
            return 0.0
        return (self.finished_at - self.started_at).total_seconds()

    @property
    def ok_count(self) -> int:
        return sum(1 for n in self.networks if n.ok)

    def to_dict(self) -> dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "duration_sec": round(self.duration_sec, 2),
            "networks": [n.to_dict() for n in self.networks],
            "alerts": self.alerts,
            "purged": dict(self.purged),
        }


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CollectorScheduler:
    def __init__(
        self,
        networks: Sequence[NetworkConfig],
        aggregator: FanOutAggregator,
        store: Any,
        hot_cache: HotCache,
        alert_engine: AlertEngine | None = None,
        *,
        cron: str = DEFAULT_CRON,
        initial_delay_sec: float = DEFAULT_INITIAL_DELAY_SEC,
        clock: Callable[[], datetime] = _utcnow,
        wait: Callable[[float], bool] | None = None,
    ) -> None:
        """
        `store` is a SnapshotStore or NullSnapshotStore. `wait(timeout)` must
        return True when the loop should stop; it defaults to the stop event's
        wait(), and tests inject a fake to drive the loop without sleeping.
        """
        self.networks = list(networks)
        self._aggregator = aggregator
        self._store = store
        self._hot_cache = hot_cache
        self._alert_engine = alert_engine
        self._trigger = CronTrigger.from_crontab(cron, timezone=timezone.utc)
        self.cron = cron
        self.initial_delay_sec = max(0.0, float(initial_delay_sec))
        self._clock = clock
        self._wait = wait
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self.state = STATE_IDLE
        self.current_network: str | None = None
        self.last_report: CycleReport | None = None
        self.cycle_count = 0

    # -------------------------------------------------------------------------
    # One cycle
    # -------------------------------------------------------------------------

    async def run_cycle(self) -> CycleReport:
        report = CycleReport(started_at=self._clock())
        all_stats: list[NodeStats] = []
        self.cycle_count += 1
        logger.info("collection_cycle_started", cycle=self.cycle_count, networks=len(self.networks))
        try:
            for network in self.networks:
                self.state = STATE_COLLECTING
                self.current_network = network.id
                outcome = await self._collect_one(network, all_stats)
                report.networks.append(outcome)
        finally:
            self.state = STATE_IDLE
            self.current_network = None

        if self._alert_engine is not None and all_stats:
            transitions = await self._alert_engine.process(all_stats)
            report.alerts = len(transitions)

        try:
            report.purged = self._store.purge_expired()
        except StoreUnavailable as e:
            logger.warning("purge_failed", error=e.message)

        report.finished_at = self._clock()
        self.last_report = report
        logger.info(
            "collection_cycle_finished",
            cycle=self.cycle_count,
            ok=report.ok_count,
            failed=len(report.networks) - report.ok_count,
            alerts=report.alerts,
            duration_sec=round(report.duration_sec, 2),
        )
        return report

    async def _collect_one(self, network: NetworkConfig, all_stats: list[NodeStats]) -> NetworkOutcome:
        log = bind_network(network.id)
        started = time.monotonic()
        try:
            result = await self._aggregator.collect_network(network)
        except PnodeError as e:
            log.warning("network_skipped", error=e.message, error_type=e.kind)
            return NetworkOutcome(
                network=network.id,
                ok=False,
                error=e.message,
                error_type=e.kind,
                duration_sec=time.monotonic() - started,
            )
        except Exception as e:
            log.exception("network_collect_crashed", error=str(e))
            return NetworkOutcome(
                network=network.id,
                ok=False,
                error=str(e),
                error_type="internal_error",
                duration_sec=time.monotonic() - started,
            )

        store_error = self._persist(result)
        all_stats.extend(result.node_stats)
        return NetworkOutcome(
            network=network.id,
            ok=True,
            total_pods=result.snapshot.total_pods,
            online_nodes=result.snapshot.online_nodes,
            sampled=result.snapshot.sampled,
            store_error=store_error,
            duration_sec=time.monotonic() - started,
        )

    def _persist(self, result: CollectionResult) -> str | None:
        """Write the store rows, then replace the Hot Cache entry. Returns the store error, if any."""
        snapshot = result.snapshot
        store_error: str | None = None
        try:
            ts = self._store.save_network_snapshot(result.network, snapshot)
            snapshot = dataclasses.replace(snapshot, timestamp=ts)
            self._store.save_node_history(result.node_stats)
            self._store.save_pods_snapshot(result.network, result.registry)
        except StoreUnavailable as e:
            store_error = e.message
            logger.warning("snapshot_persist_failed", network=result.network, error=e.message)
        self._hot_cache.set(result.network, snapshot, result.node_stats)
        return store_error

    # -------------------------------------------------------------------------
    # Periodic loop
    # -------------------------------------------------------------------------

    def next_run_after(self, now: datetime) -> datetime:
        """Next cron fire time strictly after `now`."""
        nxt = self._trigger.get_next_fire_time(None, now)
        if nxt is not None and nxt <= now:
            nxt = self._trigger.get_next_fire_time(None, now + timedelta(seconds=1))
        return nxt

    def run_forever(self, stop_event: threading.Event | None = None) -> None:
        """Run cycles until stop_event is set. Never raises."""
        stop_event = stop_event or self._stop_event
        wait = self._wait or stop_event.wait
        logger.info("collector_scheduler_started", cron=self.cron, initial_delay_sec=self.initial_delay_sec)
        if self.initial_delay_sec and wait(self.initial_delay_sec):
            logger.info("collector_scheduler_stopped", cycles=self.cycle_count)
            return
        while not stop_event.is_set():
            try:
                asyncio.run(self.run_cycle())
            except Exception as e:
                logger.exception("collection_cycle_failed", error=str(e))
            now = self._clock()
            nxt = self.next_run_after(now)
            delay = max(0.0, (nxt - now).total_seconds())
            logger.debug("collector_next_run", next_run=nxt.isoformat(), delay_sec=round(delay, 1))
            if wait(delay):
                break
        logger.info("collector_scheduler_stopped", cycles=self.cycle_count)

    def start_in_thread(self) -> threading.Thread:
        if self._thread is not None and self._thread.is_alive():
            return self._thread
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self.run_forever,
            args=(self._stop_event,),
            name="pnodes-collector",
            daemon=True,
        )
        self._thread.start()
        return self._thread

    def stop(self, timeout: float = SHUTDOWN_JOIN_TIMEOUT_SEC) -> None:
        self._stop_event.set()
        if self._thread is None:
            return
        self._thread.join(timeout=timeout)
        if self._thread.is_alive():
            logger.warning("collector_scheduler_shutdown_timeout", timeout_sec=timeout)
        self._thread = None

    def status(self) -> dict[str, Any]:
        return {
            "state": self.state,
            "current_network": self.current_network,
            "cron": self.cron,
            "cycles": self.cycle_count,
            "last_cycle": self.last_report.to_dict() if self.last_report else None,
        }
