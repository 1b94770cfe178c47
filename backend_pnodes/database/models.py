"""
SQLAlchemy tables for the snapshot store.

All three tables are append-only time series keyed by unix-seconds `timestamp`;
the expiry pass deletes by that column.
"""

from __future__ import annotations

import json
from typing import Any

from sqlalchemy import BigInteger, Column, Float, Index, Integer, String, Text
from sqlalchemy.orm import declarative_base

Base = declarative_base()

# -----------------------------------------------------------------------------
# Tables
# -----------------------------------------------------------------------------


class NetworkSnapshotRow(Base):
    """One aggregate per network per cycle."""

    __tablename__ = "network_snapshots"

    id = Column(Integer, primary_key=True, autoincrement=True)
    network = Column(String(64), nullable=False)
    timestamp = Column(Integer, nullable=False, index=True)  # Unix seconds
    total_pods = Column(Integer, nullable=False, default=0)
    sampled = Column(Integer, nullable=False, default=0)
    online_nodes = Column(Integer, nullable=False, default=0)
    offline_nodes = Column(Integer, nullable=False, default=0)
    estimated_online = Column(Integer, nullable=False, default=0)
    estimated_offline = Column(Integer, nullable=False, default=0)
    online_ratio = Column(Integer, nullable=False, default=0)
    total_storage = Column(BigInteger, nullable=False, default=0)
    avg_cpu = Column(Float, nullable=False, default=0.0)
    avg_ram = Column(Float, nullable=False, default=0.0)
    avg_uptime = Column(Float, nullable=False, default=0.0)
    total_streams = Column(Integer, nullable=False, default=0)
    total_bytes_transferred = Column(BigInteger, nullable=False, default=0)
    version_distribution = Column(Text, nullable=True)  # JSON object

    __table_args__ = (Index("ix_network_snapshots_network_ts", "network", "timestamp"),)

    def versions(self) -> dict[str, int]:
        if not self.version_distribution:
            return {}
        try:
            data = json.loads(self.version_distribution)
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "network": self.network,
            "timestamp": self.timestamp,
            "total_pods": self.total_pods,
            "sampled": self.sampled,
            "online_nodes": self.online_nodes,
            "offline_nodes": self.offline_nodes,
            "estimated_online": self.estimated_online,
            "estimated_offline": self.estimated_offline,
            "online_ratio": self.online_ratio,
            "total_storage": self.total_storage,
            "avg_cpu": self.avg_cpu,
            "avg_ram": self.avg_ram,
            "avg_uptime": self.avg_uptime,
            "total_streams": self.total_streams,
            "total_bytes_transferred": self.total_bytes_transferred,
            "version_distribution": self.versions(),
            "estimate": True,
        }


class NodeHistoryRow(Base):
    """Flattened NodeStats, one row per probed node per cycle."""

    __tablename__ = "node_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    address = Column(String(128), nullable=False)
    pubkey = Column(String(64), nullable=True, index=True)
    network = Column(String(64), nullable=True)
    timestamp = Column(Integer, nullable=False, index=True)
    status = Column(String(16), nullable=False)
    version = Column(String(64), nullable=True)
    cpu_percent = Column(Float, nullable=True)
    ram_used = Column(BigInteger, nullable=True)
    ram_total = Column(BigInteger, nullable=True)
    ram_percent = Column(Float, nullable=True)
    file_size = Column(BigInteger, nullable=True)
    uptime_seconds = Column(BigInteger, nullable=True)
    active_streams = Column(Integer, nullable=True)
    packets_received = Column(BigInteger, nullable=True)
    packets_sent = Column(BigInteger, nullable=True)
    peers_count = Column(Integer, nullable=True)
    error = Column(String(512), nullable=True)

    __table_args__ = (Index("ix_node_history_address_ts", "address", "timestamp"),)

    def to_dict(self) -> dict[str, Any]:
        return {
            "address": self.address,
            "pubkey": self.pubkey,
            "network": self.network,
            "timestamp": self.timestamp,
            "status": self.status,
            "version": self.version,
            "cpu_percent": self.cpu_percent,
            "ram_used": self.ram_used,
            "ram_total": self.ram_total,
            "ram_percent": self.ram_percent,
            "file_size": self.file_size,
            "uptime_seconds": self.uptime_seconds,
            "active_streams": self.active_streams,
            "packets_received": self.packets_received,
            "packets_sent": self.packets_sent,
            "peers_count": self.peers_count,
            "error": self.error,
        }


class PodsSnapshotRow(Base):
    """Raw registry listing per network per cycle."""

    __tablename__ = "pods_snapshots"

    id = Column(Integer, primary_key=True, autoincrement=True)
    network = Column(String(64), nullable=False)
    timestamp = Column(Integer, nullable=False, index=True)
    total_count = Column(Integer, nullable=False, default=0)
    pods = Column(Text, nullable=True)  # JSON array of PodRecord dicts

    __table_args__ = (Index("ix_pods_snapshots_network_ts", "network", "timestamp"),)

    def to_dict(self) -> dict[str, Any]:
        try:
            pods = json.loads(self.pods) if self.pods else []
        except ValueError:
            pods = []
        return {
            "network": self.network,
            "timestamp": self.timestamp,
            "total_count": self.total_count,
            "pods": pods,
        }
