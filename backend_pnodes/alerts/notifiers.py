"""Alert delivery channels."""

from __future__ import annotations

from datetime import datetime, timezone

import httpx

from backend_pnodes.alerts.engine import StatusTransition
from backend_pnodes.core.exceptions import TransportError
from backend_pnodes.pnodes_logging import get_logger
from backend_pnodes.rpc.models import STATUS_ONLINE

logger = get_logger(__name__)

TELEGRAM_API_BASE = "https://api.telegram.org"
TELEGRAM_TIMEOUT_SEC = 10.0


def format_alert(transition: StatusTransition) -> str:
    marker = "\U0001F7E2" if transition.current == STATUS_ONLINE else "\U0001F534"
    lines = [
        f"{marker} *Node Status Alert*",
        "",
        f"Node `{transition.pubkey[:30]}...` is now *{transition.current.upper()}*",
    ]
    if transition.network or transition.address:
        lines += ["", f"Network: {transition.network}", f"Address: {transition.address}"]
    when = datetime.fromtimestamp(transition.timestamp or 0, tz=timezone.utc).isoformat()
    lines += ["", f"_{when}_"]
    return "\n".join(lines)


class LogNotifier:
    """Default channel: alerts go to the structured log only."""

    async def notify(self, transition: StatusTransition, chat_ids: list[str]) -> None:
        logger.info(
            "node_status_alert",
            pubkey=transition.pubkey,
            previous=transition.previous,
            current=transition.current,
            network=transition.network,
            subscribers=len(chat_ids),
        )


class TelegramNotifier:
    """Posts alerts through the Bot API sendMessage call, one message per chat."""

    def __init__(
        self,
        token: str,
        *,
        api_base: str = TELEGRAM_API_BASE,
        http_transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = f"{api_base.rstrip('/')}/bot{token}/sendMessage"
        self._http_transport = http_transport

    async def notify(self, transition: StatusTransition, chat_ids: list[str]) -> None:
        text = format_alert(transition)
        failed = 0
        async with httpx.AsyncClient(timeout=TELEGRAM_TIMEOUT_SEC, transport=self._http_transport) as client:
            for chat_id in chat_ids:
                try:
                    resp = await client.post(
                        self._url,
                        json={"chat_id": chat_id, "text": text, "parse_mode": "Markdown"},
                    )
                    if not resp.is_success:
                        raise TransportError(f"sendMessage HTTP {resp.status_code}", status_code=resp.status_code)
                except (httpx.HTTPError, TransportError) as e:
                    failed += 1
                    logger.warning("telegram_send_failed", chat_id=chat_id, error=str(e))
        logger.info(
            "telegram_alert_sent",
            pubkey=transition.pubkey,
            current=transition.current,
            delivered=len(chat_ids) - failed,
            failed=failed,
        )
