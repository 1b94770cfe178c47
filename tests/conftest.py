"""
Pytest fixtures for pNodes tests.

Network calls go through httpx.MockTransport (RpcRoutes below); the snapshot
store is a temporary SQLite file per test with an injectable clock.
"""

from __future__ import annotations

import json
from typing import Any, Callable

import httpx
import pytest

from backend_pnodes.config.settings import Settings
from backend_pnodes.rpc.models import NetworkConfig

DEVNET_URL = "https://rpc1.example.test/rpc"
MAINNET_URL = "https://rpc3.example.test/rpc"
POD_CREDITS_URL = "https://credits.example.test/api/pods-credits"
T0 = 1_699_200_000  # multiple of 900 and 3600


class FakeClock:
    """Manually advanced clock returning unix seconds."""

    def __init__(self, start: float = T0) -> None:
        self.now = float(start)

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RpcRoutes:
    """
    Routing table for httpx.MockTransport: (url, JSON-RPC method) -> response.
    Unrouted requests fail with ConnectError, like an unreachable node.
    """

    def __init__(self) -> None:
        self._routes: dict[tuple[str, str | None], Callable[[httpx.Request], httpx.Response]] = {}
        self.calls: list[tuple[str, str | None]] = []
        self.requests: list[httpx.Request] = []

    def add(
        self,
        url: str,
        method: str | None = None,
        *,
        result: Any = None,
        status: int = 200,
        json_body: Any = None,
        text: str | None = None,
        headers: dict[str, str] | None = None,
        exc: Exception | None = None,
    ) -> None:
        def respond(request: httpx.Request) -> httpx.Response:
            if exc is not None:
                raise exc
            if text is not None:
                return httpx.Response(status, text=text, headers=headers)
            body = json_body if json_body is not None else {"jsonrpc": "2.0", "id": 1, "result": result}
            return httpx.Response(status, json=body, headers=headers)

        self._routes[(url, method)] = respond

    def add_node(
        self,
        address: str,
        *,
        version: str | None = "0.8.0",
        stats: dict[str, Any] | None = None,
        peers: int | None = 4,
    ) -> None:
        """Route get-version / get-stats / get-pods for one node; None leaves that call unrouted."""
        url = f"http://{address}/rpc"
        if version is not None:
            self.add(url, "get-version", result={"version": version})
        if stats is not None:
            self.add(url, "get-stats", result=stats)
        if peers is not None:
            self.add(url, "get-pods", result={"pods": [], "total_count": peers})

    def handler(self, request: httpx.Request) -> httpx.Response:
        method = None
        if request.content:
            try:
                method = json.loads(request.content).get("method")
            except ValueError:
                method = None
        url = str(request.url)
        self.calls.append((url, method))
        self.requests.append(request)
        respond = self._routes.get((url, method)) or self._routes.get((url, None))
        if respond is None:
            raise httpx.ConnectError(f"no route to {url}", request=request)
        return respond(request)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


def node_stats_payload(cpu: float = 10.0, **overrides: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "cpu_percent": cpu,
        "ram_used": 2_000,
        "ram_total": 8_000,
        "file_size": 1_000_000,
        "uptime": 3_600,
        "active_streams": 2,
        "packets_received": 100,
        "packets_sent": 50,
    }
    payload.update(overrides)
    return payload


def pods_payload(addresses: list[str], *, total_count: int | None = None) -> dict[str, Any]:
    pods = [
        {"address": a, "pubkey": f"PubKey{i:04d}xxxxxxxx", "last_seen_timestamp": T0 - i, "version": "0.8.0"}
        for i, a in enumerate(addresses)
    ]
    out: dict[str, Any] = {"pods": pods}
    if total_count is not None:
        out["total_count"] = total_count
    return out


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def rpc_routes() -> RpcRoutes:
    return RpcRoutes()


@pytest.fixture
def networks() -> tuple[NetworkConfig, ...]:
    return (
        NetworkConfig(id="devnet1", name="Devnet 1", rpc_url=DEVNET_URL, tier="devnet"),
        NetworkConfig(id="mainnet1", name="Mainnet 1", rpc_url=MAINNET_URL, tier="mainnet"),
    )


@pytest.fixture
def database_url(tmp_path) -> str:
    return f"sqlite:///{tmp_path / 'pnodes.db'}"


@pytest.fixture
def settings(networks, database_url) -> Settings:
    return Settings(
        networks=networks,
        collector_enabled=False,
        initial_delay_sec=0,
        database_url=database_url,
        pod_credits_url=POD_CREDITS_URL,
    )


@pytest.fixture
def store(database_url, clock):
    """Initialised SnapshotStore on a temporary SQLite file, driven by the fake clock."""
    from backend_pnodes.database import SnapshotStore

    s = SnapshotStore(database_url, clock=clock)
    s.init_db()
    yield s
    s.close()


@pytest.fixture
def app_state(settings, rpc_routes, store):
    from backend_pnodes.api_server.state import build_app_state

    return build_app_state(settings, http_transport=rpc_routes.transport(), store=store)


@pytest.fixture
def client(app_state):
    """FastAPI TestClient over an app whose collector thread is disabled."""
    from fastapi.testclient import TestClient

    from backend_pnodes.api_server.server import create_app

    return TestClient(create_app(app_state))
