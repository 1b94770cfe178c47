"""
Tests for the fan-out aggregator: sampling, bounded waves, deadline and
aggregate arithmetic.
"""

from __future__ import annotations

import asyncio
import math

import pytest

from backend_pnodes.collector.aggregator import (
    AggregatorConfig,
    FanOutAggregator,
    aggregate_snapshot,
    probe_in_waves,
    select_sample,
)
from backend_pnodes.core.exceptions import RegistryEmpty, RegistryUnavailable
from backend_pnodes.rpc.models import NetworkConfig, NodeStats, PodRecord
from backend_pnodes.rpc.prober import NodeProber
from backend_pnodes.rpc.registry import RegistryClient
from backend_pnodes.rpc.transport import RpcTransport

from conftest import DEVNET_URL, T0, node_stats_payload, pods_payload

NET = NetworkConfig(id="devnet1", name="Devnet 1", rpc_url=DEVNET_URL)


def _aggregator(rpc_routes, **config) -> FanOutAggregator:
    transport = RpcTransport(http_transport=rpc_routes.transport())
    return FanOutAggregator(RegistryClient(transport), NodeProber(transport), AggregatorConfig(**config))


def test_three_pods_one_unreachable(rpc_routes):
    """Registry of 3; one node times out: online=2, offline=1, avg_cpu is the mean of the two."""
    addresses = ["10.0.0.1:6000", "10.0.0.2:6000", "10.0.0.3:6000"]
    rpc_routes.add(DEVNET_URL, "get-pods", result=pods_payload(addresses))
    rpc_routes.add_node(addresses[0], stats=node_stats_payload(cpu=10.0))
    rpc_routes.add_node(addresses[1], stats=node_stats_payload(cpu=30.0))
    # third node: nothing routed, every call fails

    result = asyncio.run(_aggregator(rpc_routes).collect_network(NET))
    snap = result.snapshot
    assert snap.total_pods == 3
    assert snap.sampled == 3
    assert snap.online_nodes == 2
    assert snap.offline_nodes == 1
    assert snap.avg_cpu == pytest.approx(20.0)
    assert snap.estimated_online == 2
    assert snap.online_ratio == 67
    assert snap.total_storage == 2_000_000
    assert snap.total_bytes_transferred == 300
    # offline node still counted under its registry version
    assert snap.version_distribution == {"0.8.0": 3}
    assert len(result.node_stats) == 3


def test_snapshot_timestamp_comes_from_wall_clock(rpc_routes):
    rpc_routes.add(DEVNET_URL, "get-pods", result=pods_payload(["10.0.0.1:6000"]))
    rpc_routes.add_node("10.0.0.1:6000", stats=node_stats_payload())
    result = asyncio.run(_aggregator(rpc_routes, wall_clock=lambda: T0 + 0.9).collect_network(NET))
    assert result.snapshot.timestamp == T0


def test_registry_failure_raises(rpc_routes):
    rpc_routes.add(DEVNET_URL, "get-pods", status=500, text="boom")
    with pytest.raises(RegistryUnavailable):
        asyncio.run(_aggregator(rpc_routes).collect_network(NET))


def test_empty_registry_raises(rpc_routes):
    rpc_routes.add(DEVNET_URL, "get-pods", result={"pods": []})
    with pytest.raises(RegistryEmpty):
        asyncio.run(_aggregator(rpc_routes).collect_network(NET))


def test_sample_is_freshest_prefix(rpc_routes):
    addresses = [f"10.0.1.{i}:6000" for i in range(30)]
    rpc_routes.add(DEVNET_URL, "get-pods", result=pods_payload(addresses))
    result = asyncio.run(_aggregator(rpc_routes, sample_size=20).collect_network(NET))
    assert result.snapshot.sampled == 20
    assert result.snapshot.total_pods == 30
    # pods_payload makes earlier addresses fresher
    assert [n.address for n in result.node_stats] == addresses[:20]


def test_sample_all_probes_whole_registry(rpc_routes):
    addresses = [f"10.0.1.{i}:6000" for i in range(25)]
    rpc_routes.add(DEVNET_URL, "get-pods", result=pods_payload(addresses))
    result = asyncio.run(_aggregator(rpc_routes).collect_network(NET, sample_size="all"))
    assert result.snapshot.sampled == 25


def test_zero_online_gives_zero_averages():
    stats = [NodeStats(address=f"n{i}", status="offline", error="timeout") for i in range(4)]
    snap = aggregate_snapshot("devnet1", stats, total_pods=40)
    assert snap.online_nodes == 0
    assert snap.offline_nodes == 4
    assert snap.avg_cpu == 0.0
    assert snap.avg_ram == 0.0
    assert snap.avg_uptime == 0.0
    assert snap.estimated_online == 0
    assert snap.estimated_offline == 40


def test_averages_use_online_nodes_only():
    stats = [
        NodeStats(address="a", status="online", cpu_percent=50.0, ram_percent=40.0, file_size=10),
        NodeStats(address="b", status="offline", cpu_percent=99.0, file_size=1000),
    ]
    snap = aggregate_snapshot("devnet1", stats, total_pods=10)
    assert snap.avg_cpu == 50.0
    assert snap.avg_ram == 40.0
    assert snap.total_storage == 10
    assert snap.estimated_online == 5
    assert snap.to_dict()["estimate"] is True


def test_waves_bound_in_flight_probes():
    """N probes with batch B run in ceil(N/B) waves and never exceed B in flight."""
    in_flight = 0
    max_in_flight = 0

    async def fake_probe(address, *, pubkey=None, network=None):
        nonlocal in_flight, max_in_flight
        in_flight += 1
        max_in_flight = max(max_in_flight, in_flight)
        await asyncio.sleep(0.001)
        in_flight -= 1
        return NodeStats(address=address, status="online")

    pods = [PodRecord(address=f"n{i}") for i in range(12)]
    stats, waves = asyncio.run(probe_in_waves(pods, fake_probe, batch_size=5))
    assert waves == math.ceil(12 / 5)
    assert max_in_flight == 5
    assert [s.address for s in stats] == [p.address for p in pods]


def test_deadline_stops_new_waves():
    now = [0.0]

    async def slow_probe(address, *, pubkey=None, network=None):
        now[0] += 10.0
        return NodeStats(address=address, status="online")

    pods = [PodRecord(address=f"n{i}") for i in range(15)]
    stats, waves = asyncio.run(
        probe_in_waves(pods, slow_probe, batch_size=5, deadline_sec=15.0, clock=lambda: now[0])
    )
    assert waves == 1
    assert len(stats) == 5


def test_select_sample_without_cap():
    pods = [PodRecord(address="a", last_seen_timestamp=1), PodRecord(address="b", last_seen_timestamp=2)]
    assert [p.address for p in select_sample(pods, None)] == ["b", "a"]
    assert [p.address for p in select_sample(pods, 1)] == ["b"]
