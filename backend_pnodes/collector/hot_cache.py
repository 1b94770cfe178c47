"""
Latest snapshot per network, in memory.

A derived, disposable view: rebuildable from the snapshot store or the next
collection cycle, lost on restart with no correctness impact. Writes replace a
whole frozen entry, so readers see either the old or the new entry, never a mix.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable, Generic, Hashable, TypeVar

from backend_pnodes.rpc.models import NetworkSnapshot, NodeStats

DEFAULT_TTL_SEC = 60.0

V = TypeVar("V")


@dataclass(frozen=True)
class CacheEntry:
    network: str
    snapshot: NetworkSnapshot
    node_stats: tuple[NodeStats, ...]
    stored_at: float
    """Clock reading (monotonic seconds by default) when the entry was written."""
    is_stale: bool = False

    def age(self, now: float) -> float:
        return max(0.0, now - self.stored_at)


class HotCache:
    """Per-network latest snapshot with a staleness TTL."""

    def __init__(self, ttl_sec: float = DEFAULT_TTL_SEC, clock: Callable[[], float] = time.monotonic) -> None:
        self._ttl = ttl_sec
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}

    @property
    def ttl_sec(self) -> float:
        return self._ttl

    def now(self) -> float:
        return self._clock()

    def set(self, network: str, snapshot: NetworkSnapshot, node_stats: tuple[NodeStats, ...] | list[NodeStats] = ()) -> None:
        self._entries[network] = CacheEntry(
            network=network,
            snapshot=snapshot,
            node_stats=tuple(node_stats),
            stored_at=self._clock(),
        )

    def get(self, network: str) -> CacheEntry | None:
        """Return the entry (possibly stale, flagged via is_stale) or None when never set."""
        entry = self._entries.get(network)
        if entry is None:
            return None
        stale = entry.age(self._clock()) > self._ttl
        if stale == entry.is_stale:
            return entry
        return CacheEntry(
            network=entry.network,
            snapshot=entry.snapshot,
            node_stats=entry.node_stats,
            stored_at=entry.stored_at,
            is_stale=stale,
        )

    def get_fresh(self, network: str) -> CacheEntry | None:
        entry = self.get(network)
        if entry is None or entry.is_stale:
            return None
        return entry

    def all(self) -> dict[str, CacheEntry]:
        return {network: entry for network in list(self._entries) if (entry := self.get(network)) is not None}

    def clear(self) -> None:
        self._entries = {}


class TTLCache(Generic[V]):
    """Small key -> value cache with expiry; used for upstream passthroughs."""

    def __init__(self, ttl_sec: float = DEFAULT_TTL_SEC, clock: Callable[[], float] = time.monotonic) -> None:
        self._ttl = ttl_sec
        self._clock = clock
        self._items: dict[Hashable, tuple[float, V]] = {}

    def get(self, key: Hashable) -> V | None:
        item = self._items.get(key)
        if item is None:
            return None
        expires_at, value = item
        if self._clock() >= expires_at:
            return None
        return value

    def set(self, key: Hashable, value: V) -> None:
        self._items[key] = (self._clock() + self._ttl, value)

    def clear(self) -> None:
        self._items = {}


def entry_to_dict(entry: CacheEntry, now: float | None = None) -> dict[str, Any]:
    out = entry.snapshot.to_dict()
    out["cached"] = True
    out["stale"] = entry.is_stale
    if now is not None:
        out["age_sec"] = round(entry.age(now), 1)
    return out
