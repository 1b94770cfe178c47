"""
Application-level exceptions.

Every failure the collection pipeline can observe is one of these kinds.
Transport errors are normally carried as values (RpcResult.error) rather than
raised; registry and store errors are raised to the scheduler or API layer.
"""

from __future__ import annotations


class PnodeError(Exception):
    """Base error; `kind` is the stable name exposed in API payloads and logs."""

    kind = "error"

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.kind)
        self.message = message or self.kind

    def to_dict(self) -> dict[str, str]:
        return {"error": self.message, "error_type": self.kind}


class TransportTimeout(PnodeError):
    kind = "transport_timeout"


class TransportError(PnodeError):
    """Connection-level failure, non-2xx status, or a JSON-RPC error member."""

    kind = "transport_error"

    def __init__(self, message: str = "", status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ChallengeBlocked(PnodeError):
    """Edge-protection interstitial returned in place of the API response."""

    kind = "challenge_blocked"


class MalformedResponse(PnodeError):
    kind = "malformed_response"


class RegistryEmpty(PnodeError):
    """Registry answered but listed no pods."""

    kind = "registry_empty"


class RegistryUnavailable(PnodeError):
    """Registry call failed at the transport level."""

    kind = "registry_unavailable"

    def __init__(self, message: str = "", cause: PnodeError | None = None) -> None:
        super().__init__(message)
        self.cause = cause


class StoreUnavailable(PnodeError):
    """Persistence layer not configured or unreachable."""

    kind = "store_unavailable"


class UnknownNetwork(PnodeError):
    kind = "unknown_network"
