"""Collection pipeline: fan-out aggregation, hot cache and the periodic scheduler."""

from backend_pnodes.collector.aggregator import (
    AggregatorConfig,
    CollectionResult,
    FanOutAggregator,
    aggregate_snapshot,
    probe_in_waves,
    select_sample,
)
from backend_pnodes.collector.hot_cache import CacheEntry, HotCache, TTLCache, entry_to_dict
from backend_pnodes.collector.scheduler import CollectorScheduler, CycleReport, NetworkOutcome

__all__ = [
    "AggregatorConfig",
    "CacheEntry",
    "CollectionResult",
    "CollectorScheduler",
    "CycleReport",
    "FanOutAggregator",
    "HotCache",
    "NetworkOutcome",
    "TTLCache",
    "aggregate_snapshot",
    "entry_to_dict",
    "probe_in_waves",
    "select_sample",
]
