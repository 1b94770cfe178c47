"""
Fan-out aggregator: registry -> freshest-N sample -> bounded probe waves -> snapshot.

Sampling: only the `sample_size` freshest pods (by last_seen_timestamp) are
probed; online/offline counts are therefore estimates over the sample, scaled
to the registry size in estimated_online / estimated_offline.

Concurrency: probes run in sequential waves of `batch_size`; every probe of a
wave settles (asyncio.gather) before the next wave starts, and the snapshot is
computed only after the last wave. An optional deadline stops scheduling new
waves but lets the in-flight wave finish.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Mapping, Sequence

from backend_pnodes.pnodes_logging import get_logger
from backend_pnodes.rpc.models import (
    NetworkConfig,
    NetworkSnapshot,
    NodeStats,
    PodRecord,
    RegistryResult,
)
from backend_pnodes.rpc.prober import NodeProber
from backend_pnodes.rpc.registry import RegistryClient, sort_freshest_first

logger = get_logger(__name__)

DEFAULT_SAMPLE_SIZE = 20
DEFAULT_BATCH_SIZE = 5
SAMPLE_FROM_CONFIG = "config"
SAMPLE_ALL = "all"


@dataclass(frozen=True)
class CollectionResult:
    """One network's cycle output: the snapshot plus the per-node detail behind it."""

    network: str
    snapshot: NetworkSnapshot
    node_stats: tuple[NodeStats, ...]
    registry: RegistryResult
    duration_sec: float = 0.0
    waves: int = 0


@dataclass
class AggregatorConfig:
    sample_size: int | None = DEFAULT_SAMPLE_SIZE
    """None probes the whole registry."""
    batch_size: int = DEFAULT_BATCH_SIZE
    batch_delay_sec: float = 0.0
    deadline_sec: float | None = None
    """Outer wall-clock budget per network; no new wave starts after it elapses."""
    clock: Callable[[], float] = field(default=time.monotonic, repr=False)
    """Measures durations and the deadline."""
    wall_clock: Callable[[], float] = field(default=time.time, repr=False)
    """Stamps snapshot timestamps (epoch seconds)."""

    def __post_init__(self) -> None:
        self.batch_size = max(1, int(self.batch_size))
        if self.sample_size is not None:
            self.sample_size = max(1, int(self.sample_size))


def select_sample(pods: Sequence[PodRecord], sample_size: int | None) -> list[PodRecord]:
    """Freshest-first prefix of the registry."""
    ordered = sort_freshest_first(pods)
    if sample_size is None:
        return ordered
    return ordered[:sample_size]


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def aggregate_snapshot(
    network: str,
    node_stats: Sequence[NodeStats],
    total_pods: int,
    *,
    timestamp: int | None = None,
    registry_versions: Mapping[str, str] | None = None,
) -> NetworkSnapshot:
    """
    Aggregate sampled node stats into one NetworkSnapshot.

    Storage, CPU, RAM, uptime, streams and bytes use online nodes only; averages
    are 0 when no node is online. version_distribution counts every sampled node
    with a known version; an offline node counts under the version the registry
    last listed for it (`registry_versions`, keyed by address).
    """
    online = [n for n in node_stats if n.is_online]
    sampled = len(node_stats)
    offline_count = sampled - len(online)

    versions: dict[str, int] = {}
    known = registry_versions or {}
    for n in node_stats:
        version = n.version or known.get(n.address)
        if version:
            versions[version] = versions.get(version, 0) + 1

    ratio = len(online) / sampled if sampled else 0.0
    estimated_online = round(ratio * total_pods) if sampled else 0
    estimated_offline = max(0, total_pods - estimated_online) if sampled else 0

    return NetworkSnapshot(
        network=network,
        total_pods=total_pods,
        sampled=sampled,
        online_nodes=len(online),
        offline_nodes=offline_count,
        estimated_online=estimated_online,
        estimated_offline=estimated_offline,
        online_ratio=round(ratio * 100),
        total_storage=sum(n.file_size or 0 for n in online),
        avg_cpu=_mean([n.cpu_percent or 0.0 for n in online]),
        avg_ram=_mean([n.ram_percent or 0.0 for n in online]),
        avg_uptime=_mean([float(n.uptime_seconds or 0) for n in online]),
        total_streams=sum(n.active_streams or 0 for n in online),
        total_bytes_transferred=sum((n.packets_received or 0) + (n.packets_sent or 0) for n in online),
        version_distribution=versions,
        timestamp=timestamp,
    )


ProbeFn = Callable[..., Awaitable[NodeStats]]


async def probe_in_waves(
    pods: Sequence[PodRecord],
    probe: ProbeFn,
    *,
    network: str | None = None,
    batch_size: int = DEFAULT_BATCH_SIZE,
    batch_delay_sec: float = 0.0,
    deadline_sec: float | None = None,
    clock: Callable[[], float] = time.monotonic,
) -> tuple[list[NodeStats], int]:
    """
    Probe pods in sequential waves of at most batch_size. Returns (stats, waves run).
    Order of stats follows the order of pods.
    """
    results: list[NodeStats] = []
    waves = 0
    start = clock()
    for i in range(0, len(pods), batch_size):
        if deadline_sec is not None and waves > 0 and clock() - start >= deadline_sec:
            logger.warning(
                "collect_deadline_reached",
                network=network,
                probed=len(results),
                skipped=len(pods) - len(results),
            )
            break
        if waves > 0 and batch_delay_sec > 0:
            await asyncio.sleep(batch_delay_sec)
        wave = pods[i:i + batch_size]
        results.extend(
            await asyncio.gather(*(probe(p.address, pubkey=p.pubkey, network=network) for p in wave))
        )
        waves += 1
    return results, waves


class FanOutAggregator:
    """Collects one network: registry, sample, probe waves, aggregate."""

    def __init__(
        self,
        registry: RegistryClient,
        prober: NodeProber,
        config: AggregatorConfig | None = None,
    ) -> None:
        self._registry = registry
        self._prober = prober
        self.config = config or AggregatorConfig()

    async def collect_network(
        self,
        network: NetworkConfig,
        sample_size: int | str | None = SAMPLE_FROM_CONFIG,
    ) -> CollectionResult:
        """
        Run one collection for `network`. Raises the registry error (RegistryUnavailable
        or RegistryEmpty) when the registry cannot be used; node failures never raise.
        """
        cfg = self.config
        if sample_size == SAMPLE_FROM_CONFIG:
            size = cfg.sample_size
        elif sample_size == SAMPLE_ALL or sample_size is None:
            size = None
        else:
            size = max(1, int(sample_size))
        start = cfg.clock()

        registry = await self._registry.get_pods(network)
        if registry.error is not None:
            raise registry.error

        sample = select_sample(registry.pods, size)
        node_stats, waves = await probe_in_waves(
            sample,
            self._prober.probe,
            network=network.id,
            batch_size=cfg.batch_size,
            batch_delay_sec=cfg.batch_delay_sec,
            deadline_sec=cfg.deadline_sec,
            clock=cfg.clock,
        )
        snapshot = aggregate_snapshot(
            network.id,
            node_stats,
            registry.total_count,
            timestamp=int(cfg.wall_clock()),
            registry_versions={p.address: p.version for p in sample if p.version},
        )
        duration = cfg.clock() - start
        logger.info(
            "network_collected",
            network=network.id,
            total_pods=snapshot.total_pods,
            sampled=snapshot.sampled,
            online=snapshot.online_nodes,
            offline=snapshot.offline_nodes,
            waves=waves,
            duration_sec=round(duration, 2),
        )
        return CollectionResult(
            network=network.id,
            snapshot=snapshot,
            node_stats=tuple(node_stats),
            registry=registry,
            duration_sec=duration,
            waves=waves,
        )
