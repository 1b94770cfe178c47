"""
Error taxonomy shared by transport, collector, store and API.
"""

from backend_pnodes.core.exceptions import (
    ChallengeBlocked,
    MalformedResponse,
    PnodeError,
    RegistryEmpty,
    RegistryUnavailable,
    StoreUnavailable,
    TransportError,
    TransportTimeout,
    UnknownNetwork,
)

__all__ = [
    "ChallengeBlocked",
    "MalformedResponse",
    "PnodeError",
    "RegistryEmpty",
    "RegistryUnavailable",
    "StoreUnavailable",
    "TransportError",
    "TransportTimeout",
    "UnknownNetwork",
]
