"""
Backend pNodes — collection and caching backend for pNode network monitoring.

Polls the pod registry of every configured network, probes a sample of the
freshest nodes, aggregates their health into per-network snapshots, keeps the
latest snapshot in a hot cache and a 30-day time series in the snapshot store,
and serves both through a read-only HTTP API.
"""

__version__ = "0.1.0"
