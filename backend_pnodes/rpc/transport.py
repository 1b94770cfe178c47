"""
JSON-RPC transport — one call to one endpoint with a deadline.

Responsibilities:
- Pick a strategy from the endpoint scheme: https registries sit behind edge
  protection and get a browser-like header set and a 10 s budget; plain http
  node endpoints get minimal headers and fail fast (5 s).
- Detect edge-protection interstitials in the response and report them as
  ChallengeBlocked rather than a parse failure.
- Never raise: every outcome is an RpcResult carrying either result or a typed error.
"""

from __future__ import annotations

import asyncio
import itertools
import json
from typing import Any
from urllib.parse import urlparse

import httpx

from backend_pnodes.core.exceptions import (
    ChallengeBlocked,
    MalformedResponse,
    TransportError,
    TransportTimeout,
)
from backend_pnodes.pnodes_logging import get_logger
from backend_pnodes.rpc.models import RpcResult

logger = get_logger(__name__)

PLAIN_TIMEOUT_SEC = 5.0
SECURE_TIMEOUT_SEC = 10.0

STRATEGY_PLAIN = "plain"
STRATEGY_SECURE = "secure"

# Body fragments of known edge-protection interstitials (lowercase)
CHALLENGE_MARKERS: tuple[str, ...] = (
    "just a moment...",
    "cf-browser-verification",
    "challenge-platform",
    "cf_chl_opt",
    "attention required! | cloudflare",
    "checking your browser before accessing",
    "ddos protection by",
)
CHALLENGE_HEADER = "cf-mitigated"

BROWSER_HEADERS: dict[str, str] = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
    ),
    "Accept": "application/json, text/plain, */*",
    "Accept-Language": "en-US,en;q=0.9",
    "Content-Type": "application/json",
    "Cache-Control": "no-cache",
    "Pragma": "no-cache",
    "Sec-Fetch-Dest": "empty",
    "Sec-Fetch-Mode": "cors",
    "Sec-Fetch-Site": "same-site",
}
PLAIN_HEADERS: dict[str, str] = {
    "Content-Type": "application/json",
    "Accept": "application/json",
    "User-Agent": "pnodes-collector/0.1",
}

MAX_ERROR_BODY_CHARS = 200

_request_ids = itertools.count(1)


def build_rpc_body(method: str) -> dict[str, Any]:
    return {"jsonrpc": "2.0", "method": method, "id": next(_request_ids)}


def choose_strategy(endpoint: str) -> str:
    """https endpoints use the challenge-tolerant path; everything else is plain."""
    return STRATEGY_SECURE if urlparse(endpoint).scheme.lower() == "https" else STRATEGY_PLAIN


def _origin(endpoint: str) -> str:
    parsed = urlparse(endpoint)
    return f"{parsed.scheme}://{parsed.netloc}"


def is_challenge_response(text: str, headers: httpx.Headers | dict[str, str] | None = None) -> bool:
    """True when the response is an automated-traffic interstitial instead of API output."""
    if headers is not None:
        mitigated = headers.get(CHALLENGE_HEADER) or ""
        if mitigated.lower() == "challenge":
            return True
    lowered = (text or "")[:20_000].lower()
    return any(marker in lowered for marker in CHALLENGE_MARKERS)


def parse_rpc_payload(text: str) -> RpcResult:
    """Decode a JSON-RPC response body into an RpcResult."""
    try:
        data = json.loads(text)
    except (json.JSONDecodeError, TypeError, ValueError):
        return RpcResult(error=MalformedResponse(f"Invalid JSON response: {text[:MAX_ERROR_BODY_CHARS]}"))
    if not isinstance(data, dict):
        return RpcResult(error=MalformedResponse("JSON-RPC response is not an object"))
    err = data.get("error")
    if err:
        message = err.get("message") if isinstance(err, dict) else str(err)
        return RpcResult(error=TransportError(f"RPC error: {message}"))
    if data.get("result") is None:
        return RpcResult(error=MalformedResponse("JSON-RPC response has no result"))
    return RpcResult(result=data["result"])


class RpcTransport:
    """
    Stateless JSON-RPC caller.

    http_transport: optional httpx transport (e.g. httpx.MockTransport in tests);
    a fresh AsyncClient is opened per call so the transport can be shared across
    event loops (scheduler thread and API server).
    """

    def __init__(
        self,
        *,
        http_transport: httpx.AsyncBaseTransport | None = None,
        plain_timeout_sec: float = PLAIN_TIMEOUT_SEC,
        secure_timeout_sec: float = SECURE_TIMEOUT_SEC,
    ) -> None:
        self._http_transport = http_transport
        self._plain_timeout = plain_timeout_sec
        self._secure_timeout = secure_timeout_sec

    def timeout_for(self, endpoint: str) -> float:
        if choose_strategy(endpoint) == STRATEGY_SECURE:
            return self._secure_timeout
        return self._plain_timeout

    def _headers_for(self, endpoint: str) -> dict[str, str]:
        if choose_strategy(endpoint) == STRATEGY_PLAIN:
            return dict(PLAIN_HEADERS)
        headers = dict(BROWSER_HEADERS)
        origin = _origin(endpoint)
        headers["Origin"] = origin
        headers["Referer"] = origin + "/"
        return headers

    async def call(self, endpoint: str, method: str, timeout_sec: float | None = None) -> RpcResult:
        """POST one JSON-RPC method (no params) and return its result or a typed error."""
        endpoint = (endpoint or "").strip()
        if not endpoint or not method:
            return RpcResult(error=TransportError("endpoint and method are required"))
        timeout = timeout_sec if timeout_sec is not None else self.timeout_for(endpoint)
        try:
            return await asyncio.wait_for(self._post(endpoint, method, timeout), timeout=timeout)
        except (asyncio.TimeoutError, httpx.TimeoutException):
            logger.debug("rpc_timeout", endpoint=endpoint, method=method, timeout_sec=timeout)
            return RpcResult(error=TransportTimeout(f"Request timeout after {timeout:g}s"))
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.debug("rpc_transport_error", endpoint=endpoint, method=method, error=str(e))
            return RpcResult(error=TransportError(f"Request error: {e}"))

    def call_sync(self, endpoint: str, method: str, timeout_sec: float | None = None) -> RpcResult:
        """Blocking call() for scripts; must not be used from inside a running event loop."""
        return asyncio.run(self.call(endpoint, method, timeout_sec))

    async def _post(self, endpoint: str, method: str, timeout: float) -> RpcResult:
        async with httpx.AsyncClient(
            timeout=httpx.Timeout(timeout),
            transport=self._http_transport,
            follow_redirects=True,
        ) as client:
            resp = await client.post(endpoint, json=build_rpc_body(method), headers=self._headers_for(endpoint))
        text = resp.text
        if is_challenge_response(text, resp.headers):
            logger.warning("rpc_challenge_blocked", endpoint=endpoint, method=method, status=resp.status_code)
            return RpcResult(error=ChallengeBlocked(f"Challenge page returned by {_origin(endpoint)}"))
        if not resp.is_success:
            return RpcResult(
                error=TransportError(f"HTTP {resp.status_code}", status_code=resp.status_code)
            )
        return parse_rpc_payload(text)
