"""
Structured logging for the collector and API.

Every line is one JSON object (LOG_FORMAT=json, default) or a console line
(LOG_FORMAT=console) with `event_type`, `level`, `timestamp` and `logger`,
plus the keyword context of the call (network, address, pubkey, error...).
Pubkeys are shortened to their first PUBKEY_LOG_CHARS characters.

The collector issues hundreds of HTTP requests per cycle, so the stdlib
loggers of httpx/httpcore are held at WARNING unless LOG_LEVEL is DEBUG.

Imports nothing from backend_pnodes.
"""

from __future__ import annotations

import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any

import structlog

PUBKEY_LOG_CHARS = 16
NOISY_LIBRARY_LOGGERS = ("httpx", "httpcore")


def _level_from_env(level: str | None = None) -> int:
    name = (level or os.getenv("LOG_LEVEL", "INFO")).strip().upper()
    return getattr(logging, name, logging.INFO)


def _add_timestamp(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    event_dict.setdefault("timestamp", datetime.now(timezone.utc).isoformat())
    return event_dict


def _normalize_event(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """structlog's `event` becomes `event_type`, mirrored into `message`."""
    if "event" in event_dict and "event_type" not in event_dict:
        event_dict["event_type"] = event_dict.pop("event")
    if "message" not in event_dict and "event_type" in event_dict:
        event_dict["message"] = str(event_dict["event_type"])
    return event_dict


def _shorten_pubkey(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    pubkey = event_dict.get("pubkey")
    if isinstance(pubkey, str) and len(pubkey) > PUBKEY_LOG_CHARS:
        event_dict["pubkey"] = pubkey[:PUBKEY_LOG_CHARS]
    return event_dict


def configure_logging(level: str | None = None, fmt: str | None = None) -> None:
    """(Re)configure structlog; arguments override LOG_LEVEL / LOG_FORMAT."""
    level_value = _level_from_env(level)
    fmt = (fmt or os.getenv("LOG_FORMAT", "json")).strip().lower()

    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        _add_timestamp,
        _normalize_event,
        _shorten_pubkey,
    ]
    if fmt == "console":
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()))
    else:
        processors.append(structlog.processors.JSONRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level_value),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )
    library_level = logging.DEBUG if level_value <= logging.DEBUG else logging.WARNING
    for name in NOISY_LIBRARY_LOGGERS:
        logging.getLogger(name).setLevel(library_level)


if not structlog.is_configured():
    configure_logging()


def get_logger(name: str) -> structlog.BoundLogger:
    """
    Logger for a module; the first positional argument is the event name.

        logger = get_logger(__name__)
        logger.info("network_collected", network="devnet1", online=12, offline=3)
    """
    return structlog.get_logger(name).bind(logger=name)


def bind_network(network: str, **context: Any) -> structlog.BoundLogger:
    """Logger with `network` (and any extra context, e.g. address) bound to every call."""
    return get_logger("backend_pnodes.collector").bind(network=network, **context)
