"""
Tests for the collector scheduler: per-network isolation, persistence and
cache refresh, alert hand-off, cron timing and the stop-aware loop.
"""

from __future__ import annotations

import asyncio
import threading
from datetime import datetime, timezone

import httpx

from backend_pnodes.alerts import AlertEngine, SubscriptionTable
from backend_pnodes.collector.aggregator import AggregatorConfig, FanOutAggregator
from backend_pnodes.collector.hot_cache import HotCache
from backend_pnodes.collector.scheduler import STATE_IDLE, CollectorScheduler
from backend_pnodes.database import NullSnapshotStore, SnapshotStore
from backend_pnodes.rpc.models import NetworkSnapshot
from backend_pnodes.rpc.prober import NodeProber
from backend_pnodes.rpc.registry import RegistryClient
from backend_pnodes.rpc.transport import RpcTransport

from conftest import DEVNET_URL, MAINNET_URL, T0, node_stats_payload, pods_payload

NODE = "10.0.0.1:6000"
NODE_PUBKEY = "PubKey0000xxxxxxxx"


class RecordingNotifier:
    def __init__(self) -> None:
        self.sent: list[tuple[str, str, list[str]]] = []

    async def notify(self, transition, chat_ids):
        self.sent.append((transition.pubkey, transition.current, chat_ids))


def _scheduler(rpc_routes, networks, store, cache, alert_engine=None, **kwargs) -> CollectorScheduler:
    transport = RpcTransport(http_transport=rpc_routes.transport())
    aggregator = FanOutAggregator(RegistryClient(transport), NodeProber(transport), AggregatorConfig())
    return CollectorScheduler(networks, aggregator, store, cache, alert_engine, **kwargs)


def test_registry_refusal_leaves_cache_and_store_untouched(rpc_routes, networks, store):
    rpc_routes.add(DEVNET_URL, "get-pods", status=503, text="down")
    rpc_routes.add(MAINNET_URL, "get-pods", status=403, text="<title>Just a moment...</title>")
    cache = HotCache()
    cache.set("devnet1", NetworkSnapshot(network="devnet1", total_pods=4))
    before = cache.get("devnet1")

    report = asyncio.run(_scheduler(rpc_routes, networks, store, cache).run_cycle())

    assert [n.ok for n in report.networks] == [False, False]
    assert report.networks[0].error_type == "registry_unavailable"
    assert cache.get("devnet1") is before
    assert cache.get("mainnet1") is None
    assert store.get_latest_snapshots() == {}


def test_successful_network_is_persisted_then_cached(rpc_routes, networks, store):
    rpc_routes.add(DEVNET_URL, "get-pods", result=pods_payload([NODE]))
    rpc_routes.add_node(NODE, stats=node_stats_payload(cpu=25.0))
    # mainnet1 registry unrouted: fails, devnet1 still collected
    cache = HotCache()
    sched = _scheduler(rpc_routes, networks, store, cache)

    report = asyncio.run(sched.run_cycle())

    assert report.ok_count == 1
    assert report.networks[0].online_nodes == 1
    assert report.networks[1].ok is False
    entry = cache.get("devnet1")
    assert entry.snapshot.timestamp == T0
    assert entry.snapshot.avg_cpu == 25.0
    assert entry.node_stats[0].address == NODE
    assert store.get_latest_snapshot("devnet1")["online_nodes"] == 1
    assert len(store.get_node_history(NODE)) == 1
    assert store.get_latest_pods_snapshot("devnet1")["total_count"] == 1
    assert sched.state == STATE_IDLE
    assert sched.last_report is report
    assert report.to_dict()["networks"][0]["network"] == "devnet1"


def test_store_failure_still_refreshes_cache(rpc_routes, networks, database_url, clock):
    rpc_routes.add(DEVNET_URL, "get-pods", result=pods_payload([NODE]))
    rpc_routes.add_node(NODE, stats=node_stats_payload())
    broken = SnapshotStore(database_url, clock=clock)  # tables never created
    cache = HotCache()

    report = asyncio.run(_scheduler(rpc_routes, networks[:1], broken, cache).run_cycle())

    assert report.networks[0].ok is True
    assert report.networks[0].store_error
    assert cache.get("devnet1") is not None
    assert report.purged == {}
    broken.close()


def test_status_change_triggers_one_alert(rpc_routes, networks):
    rpc_routes.add(DEVNET_URL, "get-pods", result=pods_payload([NODE]))
    rpc_routes.add_node(NODE, stats=node_stats_payload())
    subs = SubscriptionTable()
    subs.subscribe("chat-1", NODE_PUBKEY)
    notifier = RecordingNotifier()
    sched = _scheduler(rpc_routes, networks[:1], NullSnapshotStore(), HotCache(), AlertEngine(subs, notifier))

    first = asyncio.run(sched.run_cycle())
    assert first.alerts == 0

    rpc_routes.add(f"http://{NODE}/rpc", "get-version", exc=httpx.ConnectError("down"))
    rpc_routes.add(f"http://{NODE}/rpc", "get-stats", exc=httpx.ConnectError("down"))
    second = asyncio.run(sched.run_cycle())
    assert second.alerts == 1
    assert notifier.sent == [(NODE_PUBKEY, "offline", ["chat-1"])]

    third = asyncio.run(sched.run_cycle())
    assert third.alerts == 0


def test_next_run_after_follows_cron(networks):
    sched = CollectorScheduler(networks, None, NullSnapshotStore(), HotCache(), cron="*/5 * * * *")
    now = datetime(2024, 1, 1, 12, 3, 20, tzinfo=timezone.utc)
    assert sched.next_run_after(now) == datetime(2024, 1, 1, 12, 5, tzinfo=timezone.utc)
    on_tick = datetime(2024, 1, 1, 12, 5, tzinfo=timezone.utc)
    assert sched.next_run_after(on_tick) == datetime(2024, 1, 1, 12, 10, tzinfo=timezone.utc)


def test_run_forever_waits_initial_delay_then_cron(rpc_routes, networks):
    fixed_now = datetime(2024, 1, 1, 12, 3, 20, tzinfo=timezone.utc)
    waits: list[float] = []

    def fake_wait(timeout: float) -> bool:
        waits.append(timeout)
        return len(waits) >= 2  # stop after the first cycle

    sched = _scheduler(
        rpc_routes,
        networks,
        NullSnapshotStore(),
        HotCache(),
        initial_delay_sec=5,
        clock=lambda: fixed_now,
        wait=fake_wait,
    )
    sched.run_forever(threading.Event())

    assert waits == [5.0, 100.0]
    assert sched.cycle_count == 1
    assert sched.last_report is not None


def test_run_forever_stops_during_initial_delay(rpc_routes, networks):
    sched = _scheduler(rpc_routes, networks, NullSnapshotStore(), HotCache(), wait=lambda timeout: True)
    sched.run_forever(threading.Event())
    assert sched.cycle_count == 0


def test_thread_start_and_stop(rpc_routes, networks):
    sched = _scheduler(rpc_routes, networks, NullSnapshotStore(), HotCache(), initial_delay_sec=60)
    thread = sched.start_in_thread()
    assert thread.daemon
    assert sched.start_in_thread() is thread
    sched.stop(timeout=5)
    assert not thread.is_alive()
    assert sched.cycle_count == 0
