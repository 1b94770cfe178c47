"""
Structured logging for Backend pNodes.

JSON logs with timestamp, event_type, network and address context.
Use get_logger() in all modules.
"""

from backend_pnodes.pnodes_logging.logger import bind_network, configure_logging, get_logger

__all__ = ["bind_network", "configure_logging", "get_logger"]
