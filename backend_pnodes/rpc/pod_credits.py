"""
Passthrough to the external reputation-credit service.

Responses are cached for about a minute; failures are raised as PnodeError
subclasses and are never cached.
"""

from __future__ import annotations

from typing import Any

import httpx

from backend_pnodes.collector.hot_cache import TTLCache
from backend_pnodes.core.exceptions import MalformedResponse, TransportError, TransportTimeout
from backend_pnodes.pnodes_logging import get_logger

logger = get_logger(__name__)

POD_CREDITS_CACHE_TTL_SEC = 60.0
POD_CREDITS_TIMEOUT_SEC = 10.0
_CACHE_KEY = "pod_credits"


class PodCreditsClient:
    def __init__(
        self,
        url: str,
        *,
        ttl_sec: float = POD_CREDITS_CACHE_TTL_SEC,
        http_transport: httpx.AsyncBaseTransport | None = None,
        cache: TTLCache[dict[str, Any]] | None = None,
    ) -> None:
        self._url = url
        self._http_transport = http_transport
        self._cache: TTLCache[dict[str, Any]] = cache or TTLCache(ttl_sec)

    async def fetch(self) -> dict[str, Any]:
        """Return the upstream payload, from cache when fresh."""
        cached = self._cache.get(_CACHE_KEY)
        if cached is not None:
            return cached
        try:
            async with httpx.AsyncClient(
                timeout=POD_CREDITS_TIMEOUT_SEC,
                transport=self._http_transport,
            ) as client:
                resp = await client.get(
                    self._url,
                    headers={"Accept": "application/json", "User-Agent": "pnodes-proxy/0.1"},
                )
        except httpx.TimeoutException as e:
            raise TransportTimeout(f"Pod credits timeout: {e}") from e
        except httpx.HTTPError as e:
            raise TransportError(f"Pod credits request failed: {e}") from e
        if not resp.is_success:
            raise TransportError(f"Pod credits HTTP {resp.status_code}", status_code=resp.status_code)
        try:
            data = resp.json()
        except ValueError as e:
            raise MalformedResponse("Pod credits response is not JSON") from e
        if not isinstance(data, dict):
            raise MalformedResponse("Pod credits response is not an object")
        self._cache.set(_CACHE_KEY, data)
        logger.debug("pod_credits_refreshed", entries=len(data.get("pods_credits") or []))
        return data

    async def credits_map(self) -> dict[str, int]:
        """pod_id (pubkey) -> credits."""
        data = await self.fetch()
        out: dict[str, int] = {}
        for item in data.get("pods_credits") or []:
            if isinstance(item, dict) and item.get("pod_id"):
                try:
                    out[str(item["pod_id"])] = int(item.get("credits") or 0)
                except (TypeError, ValueError):
                    continue
        return out
