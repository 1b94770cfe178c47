"""
Node status alerts.

SubscriptionTable maps chat ids to watched pubkeys. AlertEngine remembers the
last status seen per pubkey and, after each collection cycle, emits exactly
one StatusTransition per watched pubkey whose status changed. A pubkey seen for
the first time only seeds the history. A pubkey sampled by more than one network
in the same cycle is reduced to a single status first.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable, Iterable, Protocol

from backend_pnodes.pnodes_logging import get_logger
from backend_pnodes.rpc.models import NodeStats

logger = get_logger(__name__)

MIN_PUBKEY_LENGTH = 10


@dataclass(frozen=True)
class StatusTransition:
    pubkey: str
    previous: str
    current: str
    network: str | None = None
    address: str | None = None
    timestamp: int = 0

    def to_dict(self) -> dict[str, object]:
        return {
            "pubkey": self.pubkey,
            "previous": self.previous,
            "current": self.current,
            "network": self.network,
            "address": self.address,
            "timestamp": self.timestamp,
        }


class Notifier(Protocol):
    async def notify(self, transition: StatusTransition, chat_ids: list[str]) -> None: ...


def _validate_pubkey(pubkey: str) -> str:
    pubkey = (pubkey or "").strip()
    if len(pubkey) < MIN_PUBKEY_LENGTH:
        raise ValueError("pubkey must be at least 10 characters")
    return pubkey


class SubscriptionTable:
    """chat_id -> set of watched pubkeys. Shared between API handlers and the scheduler thread."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._by_chat: dict[str, set[str]] = {}

    def subscribe(self, chat_id: str, pubkey: str) -> bool:
        """Returns False when the subscription already existed."""
        pubkey = _validate_pubkey(pubkey)
        chat_id = str(chat_id)
        with self._lock:
            subs = self._by_chat.setdefault(chat_id, set())
            if pubkey in subs:
                return False
            subs.add(pubkey)
        logger.info("alert_subscribed", chat_id=chat_id, pubkey=pubkey)
        return True

    def unsubscribe(self, chat_id: str, pubkey: str) -> bool:
        """Returns False when there was nothing to remove."""
        chat_id = str(chat_id)
        pubkey = (pubkey or "").strip()
        with self._lock:
            subs = self._by_chat.get(chat_id)
            if not subs or pubkey not in subs:
                return False
            subs.discard(pubkey)
            if not subs:
                del self._by_chat[chat_id]
        logger.info("alert_unsubscribed", chat_id=chat_id, pubkey=pubkey)
        return True

    def subscriptions(self, chat_id: str) -> list[str]:
        with self._lock:
            return sorted(self._by_chat.get(str(chat_id), ()))

    def subscribers_for(self, pubkey: str) -> list[str]:
        with self._lock:
            return sorted(chat for chat, subs in self._by_chat.items() if pubkey in subs)

    def is_watched(self, pubkey: str) -> bool:
        with self._lock:
            return any(pubkey in subs for subs in self._by_chat.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._by_chat)


def collapse_by_pubkey(node_stats: Iterable[NodeStats]) -> list[NodeStats]:
    """
    One status per pubkey for a cycle, in first-seen order.

    A pubkey sampled in several networks counts as online when any of them
    reached it; nodes without a pubkey are dropped.
    """
    chosen: dict[str, NodeStats] = {}
    for node in node_stats:
        if not node.pubkey:
            continue
        current = chosen.get(node.pubkey)
        if current is None or (node.is_online and not current.is_online):
            chosen[node.pubkey] = node
    return list(chosen.values())


class AlertEngine:
    def __init__(
        self,
        subscriptions: SubscriptionTable,
        notifier: Notifier,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.subscriptions = subscriptions
        self._notifier = notifier
        self._clock = clock
        self._last_status: dict[str, str] = {}

    def last_status(self, pubkey: str) -> str | None:
        return self._last_status.get(pubkey)

    async def process(self, node_stats: Iterable[NodeStats]) -> list[StatusTransition]:
        """Record statuses and notify subscribers of changes; notifier failures are logged."""
        transitions: list[StatusTransition] = []
        now = int(self._clock())
        for node in collapse_by_pubkey(node_stats):
            previous = self._last_status.get(node.pubkey)
            self._last_status[node.pubkey] = node.status
            if previous is None or previous == node.status:
                continue
            chat_ids = self.subscriptions.subscribers_for(node.pubkey)
            if not chat_ids:
                continue
            transition = StatusTransition(
                pubkey=node.pubkey,
                previous=previous,
                current=node.status,
                network=node.network,
                address=node.address,
                timestamp=now,
            )
            transitions.append(transition)
            try:
                await self._notifier.notify(transition, chat_ids)
            except Exception as e:
                logger.error("alert_notify_failed", pubkey=node.pubkey, error=str(e))
        if transitions:
            logger.info("alerts_emitted", count=len(transitions))
        return transitions
