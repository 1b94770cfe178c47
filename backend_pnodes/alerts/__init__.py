"""Node status alerts and delivery channels."""

from backend_pnodes.alerts.engine import AlertEngine, Notifier, StatusTransition, SubscriptionTable, collapse_by_pubkey
from backend_pnodes.alerts.notifiers import LogNotifier, TelegramNotifier, format_alert

__all__ = [
    "AlertEngine",
    "LogNotifier",
    "Notifier",
    "StatusTransition",
    "SubscriptionTable",
    "TelegramNotifier",
    "collapse_by_pubkey",
    "format_alert",
]
