"""Tests for the in-memory Hot Cache and the generic TTL cache."""

from __future__ import annotations

from backend_pnodes.collector.hot_cache import HotCache, TTLCache, entry_to_dict
from backend_pnodes.rpc.models import NetworkSnapshot, NodeStats

from conftest import FakeClock


def test_fresh_then_stale():
    clock = FakeClock(0)
    cache = HotCache(ttl_sec=60, clock=clock)
    snap = NetworkSnapshot(network="devnet1", total_pods=5, online_nodes=3)
    cache.set("devnet1", snap, [NodeStats(address="a", status="online")])

    entry = cache.get("devnet1")
    assert entry is not None
    assert entry.is_stale is False
    assert entry.snapshot is snap
    assert cache.get_fresh("devnet1") is entry

    clock.advance(61)
    stale = cache.get("devnet1")
    assert stale is not None and stale.is_stale is True
    assert stale.snapshot is snap
    assert cache.get_fresh("devnet1") is None


def test_missing_network_and_replace():
    clock = FakeClock(0)
    cache = HotCache(ttl_sec=60, clock=clock)
    assert cache.get("devnet1") is None
    cache.set("devnet1", NetworkSnapshot(network="devnet1", total_pods=1))
    old = cache.get("devnet1")
    cache.set("devnet1", NetworkSnapshot(network="devnet1", total_pods=2))
    new = cache.get("devnet1")
    assert old.snapshot.total_pods == 1
    assert new.snapshot.total_pods == 2
    assert set(cache.all()) == {"devnet1"}
    cache.clear()
    assert cache.all() == {}


def test_entry_to_dict_flags():
    clock = FakeClock(100)
    cache = HotCache(ttl_sec=60, clock=clock)
    cache.set("devnet1", NetworkSnapshot(network="devnet1", total_pods=4))
    clock.advance(30)
    out = entry_to_dict(cache.get("devnet1"), cache.now())
    assert out["cached"] is True
    assert out["stale"] is False
    assert out["age_sec"] == 30.0
    assert out["total_pods"] == 4


def test_ttl_cache_expiry():
    clock = FakeClock(0)
    cache: TTLCache[str] = TTLCache(ttl_sec=10, clock=clock)
    cache.set("k", "v")
    assert cache.get("k") == "v"
    clock.advance(10)
    assert cache.get("k") is None
    assert cache.get("other") is None
