"""Tests for alert subscriptions, transition detection and delivery channels."""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from backend_pnodes.alerts import AlertEngine, LogNotifier, StatusTransition, SubscriptionTable, TelegramNotifier
from backend_pnodes.alerts.engine import collapse_by_pubkey
from backend_pnodes.alerts.notifiers import format_alert
from backend_pnodes.rpc.models import NodeStats

PUBKEY = "PubKeyAAAAAAAAAAAA"
OTHER = "PubKeyBBBBBBBBBBBB"


class RecordingNotifier:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.calls: list[tuple[StatusTransition, list[str]]] = []

    async def notify(self, transition, chat_ids):
        self.calls.append((transition, chat_ids))
        if self.fail:
            raise RuntimeError("channel down")


def _node(pubkey: str | None, status: str) -> NodeStats:
    return NodeStats(address="10.0.0.1:6000", status=status, pubkey=pubkey, network="devnet1")


def test_subscription_table():
    subs = SubscriptionTable()
    assert subs.subscribe("chat-1", PUBKEY) is True
    assert subs.subscribe("chat-1", PUBKEY) is False
    subs.subscribe("chat-2", PUBKEY)
    assert subs.subscriptions("chat-1") == [PUBKEY]
    assert subs.subscribers_for(PUBKEY) == ["chat-1", "chat-2"]
    assert subs.is_watched(PUBKEY)
    assert subs.unsubscribe("chat-1", PUBKEY) is True
    assert subs.unsubscribe("chat-1", PUBKEY) is False
    assert subs.subscribers_for(PUBKEY) == ["chat-2"]
    assert not subs.is_watched(OTHER)


def test_subscribe_rejects_short_pubkey():
    with pytest.raises(ValueError):
        SubscriptionTable().subscribe("chat-1", "short")


def test_offline_to_online_with_subscriber_emits_exactly_one():
    subs = SubscriptionTable()
    subs.subscribe("chat-1", PUBKEY)
    notifier = RecordingNotifier()
    engine = AlertEngine(subs, notifier)

    assert asyncio.run(engine.process([_node(PUBKEY, "offline")])) == []  # first sighting seeds history
    transitions = asyncio.run(engine.process([_node(PUBKEY, "online")]))
    assert len(transitions) == 1
    t = transitions[0]
    assert (t.previous, t.current) == ("offline", "online")
    assert notifier.calls[0][1] == ["chat-1"]
    assert asyncio.run(engine.process([_node(PUBKEY, "online")])) == []


def test_pubkey_in_two_networks_emits_one_alert_per_cycle():
    subs = SubscriptionTable()
    subs.subscribe("chat-1", PUBKEY)
    notifier = RecordingNotifier()
    engine = AlertEngine(subs, notifier, clock=lambda: 1_700_000_000.5)

    asyncio.run(engine.process([_node(PUBKEY, "offline")]))
    mixed = [
        NodeStats(address="10.0.0.1:6000", status="online", pubkey=PUBKEY, network="devnet1"),
        NodeStats(address="10.0.0.2:6000", status="offline", pubkey=PUBKEY, network="devnet2"),
    ]
    transitions = asyncio.run(engine.process(mixed))

    assert [(t.previous, t.current, t.network) for t in transitions] == [("offline", "online", "devnet1")]
    assert transitions[0].timestamp == 1_700_000_000
    assert engine.last_status(PUBKEY) == "online"
    assert len(notifier.calls) == 1
    assert asyncio.run(engine.process(list(reversed(mixed)))) == []


def test_collapse_by_pubkey_prefers_online_and_drops_anonymous():
    nodes = [_node(PUBKEY, "offline"), _node(None, "online"), _node(OTHER, "offline"), _node(PUBKEY, "online")]
    collapsed = collapse_by_pubkey(nodes)
    assert [(n.pubkey, n.status) for n in collapsed] == [(PUBKEY, "online"), (OTHER, "offline")]


def test_unwatched_and_anonymous_nodes_emit_nothing():
    engine = AlertEngine(SubscriptionTable(), RecordingNotifier())
    asyncio.run(engine.process([_node(OTHER, "online"), _node(None, "online")]))
    out = asyncio.run(engine.process([_node(OTHER, "offline"), _node(None, "offline")]))
    assert out == []
    assert engine.last_status(OTHER) == "offline"


def test_notifier_failure_is_not_fatal():
    subs = SubscriptionTable()
    subs.subscribe("chat-1", PUBKEY)
    engine = AlertEngine(subs, RecordingNotifier(fail=True))
    asyncio.run(engine.process([_node(PUBKEY, "online")]))
    out = asyncio.run(engine.process([_node(PUBKEY, "offline")]))
    assert len(out) == 1


def test_log_notifier_runs():
    t = StatusTransition(pubkey=PUBKEY, previous="online", current="offline")
    asyncio.run(LogNotifier().notify(t, ["chat-1"]))


def test_telegram_notifier_posts_send_message():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        if json.loads(request.content)["chat_id"] == "chat-bad":
            return httpx.Response(403, json={"ok": False})
        return httpx.Response(200, json={"ok": True})

    notifier = TelegramNotifier("123:abc", http_transport=httpx.MockTransport(handler))
    t = StatusTransition(pubkey=PUBKEY, previous="offline", current="online", network="devnet1", address="1.2.3.4:6000")
    asyncio.run(notifier.notify(t, ["chat-1", "chat-bad"]))

    assert len(seen) == 2
    assert str(seen[0].url) == "https://api.telegram.org/bot123:abc/sendMessage"
    body = json.loads(seen[0].content)
    assert body["chat_id"] == "chat-1"
    assert body["parse_mode"] == "Markdown"
    assert "ONLINE" in body["text"]


def test_format_alert_mentions_network():
    t = StatusTransition(pubkey=PUBKEY, previous="online", current="offline", network="mainnet1", address="a:1")
    text = format_alert(t)
    assert "OFFLINE" in text
    assert "Network: mainnet1" in text
