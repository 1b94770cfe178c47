"""
Composition root — builds every long-lived object once and hands the bundle
to the FastAPI app. Route handlers reach it through get_state(); nothing is a
module-level singleton.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import httpx
from fastapi import Request

from backend_pnodes.alerts import AlertEngine, LogNotifier, SubscriptionTable, TelegramNotifier
from backend_pnodes.collector.aggregator import AggregatorConfig, FanOutAggregator
from backend_pnodes.collector.hot_cache import HotCache
from backend_pnodes.collector.scheduler import CollectorScheduler
from backend_pnodes.config import Settings, get_settings
from backend_pnodes.database import NullSnapshotStore, SnapshotStore, create_snapshot_store
from backend_pnodes.pnodes_logging import get_logger
from backend_pnodes.rpc.pod_credits import PodCreditsClient
from backend_pnodes.rpc.prober import NodeProber
from backend_pnodes.rpc.registry import RegistryClient
from backend_pnodes.rpc.transport import RpcTransport

logger = get_logger(__name__)


@dataclass
class AppState:
    settings: Settings
    transport: RpcTransport
    registry: RegistryClient
    prober: NodeProber
    aggregator: FanOutAggregator
    store: SnapshotStore | NullSnapshotStore
    hot_cache: HotCache
    subscriptions: SubscriptionTable
    alert_engine: AlertEngine
    scheduler: CollectorScheduler
    pod_credits: PodCreditsClient

    def close(self) -> None:
        self.scheduler.stop()
        self.store.close()


def build_app_state(
    settings: Settings | None = None,
    *,
    http_transport: httpx.AsyncBaseTransport | None = None,
    store: SnapshotStore | NullSnapshotStore | None = None,
    hot_cache: HotCache | None = None,
) -> AppState:
    """
    Wire the collector, store, caches and alerting from settings.

    http_transport replaces the network for every outbound httpx call (tests
    pass an httpx.MockTransport).
    """
    settings = settings or get_settings()
    transport = RpcTransport(http_transport=http_transport)
    registry = RegistryClient(transport)
    prober = NodeProber(transport)
    aggregator = FanOutAggregator(
        registry,
        prober,
        AggregatorConfig(
            sample_size=settings.sample_size,
            batch_size=settings.batch_size,
            batch_delay_sec=settings.batch_delay_sec,
            deadline_sec=settings.cycle_deadline_sec,
        ),
    )
    if store is None:
        store = create_snapshot_store(settings.database_url)
    hot_cache = hot_cache or HotCache(ttl_sec=settings.hot_cache_ttl_sec)

    subscriptions = SubscriptionTable()
    notifier: Any
    if settings.telegram_bot_token:
        notifier = TelegramNotifier(settings.telegram_bot_token, http_transport=http_transport)
    else:
        notifier = LogNotifier()
    alert_engine = AlertEngine(subscriptions, notifier)

    scheduler = CollectorScheduler(
        settings.networks,
        aggregator,
        store,
        hot_cache,
        alert_engine,
        cron=settings.collector_cron,
        initial_delay_sec=settings.initial_delay_sec,
    )
    pod_credits = PodCreditsClient(settings.pod_credits_url, http_transport=http_transport)

    logger.info(
        "app_state_built",
        networks=[n.id for n in settings.networks],
        store_enabled=store.enabled,
        alerts_channel="telegram" if settings.telegram_bot_token else "log",
    )
    return AppState(
        settings=settings,
        transport=transport,
        registry=registry,
        prober=prober,
        aggregator=aggregator,
        store=store,
        hot_cache=hot_cache,
        subscriptions=subscriptions,
        alert_engine=alert_engine,
        scheduler=scheduler,
        pod_credits=pod_credits,
    )


def get_state(request: Request) -> AppState:
    """Dependency: the AppState attached by create_app()."""
    return request.app.state.pnodes
