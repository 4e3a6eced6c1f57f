"""Error taxonomy shared by the poller, result retrieval and studio session."""
from __future__ import annotations

from typing import Optional


_AUTH_MARKERS = (
    "permission",
    "billing",
    "api key not valid",
    "api_key_invalid",
    "unauthenticated",
    "permission_denied",
)


def is_auth_flavored(message: Optional[str]) -> bool:
    """Return True when a remote failure message points at credentials or billing."""
    lowered = (message or "").lower()
    return any(marker in lowered for marker in _AUTH_MARKERS)


class LuminaError(RuntimeError):
    """Base class for failures surfaced by a generation flow."""

    retryable = False


class ValidationError(LuminaError):
    """Raised for missing media, missing consent or a malformed request."""


class AuthError(LuminaError):
    """Raised when the credential is rejected or billing is not enabled."""


class TransportError(LuminaError):
    """Raised when the remote service is unreachable or temporarily unavailable."""

    retryable = True

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class NotFoundError(LuminaError):
    """Raised when an operation handle or asset is unknown or expired."""


class MissingResultError(LuminaError):
    """Raised when an operation reports done but carries no asset reference."""


class OperationFailedError(LuminaError):
    """Raised when the remote job finished with an error payload."""


class GenerationTimeoutError(LuminaError, TimeoutError):
    """Raised when polling exhausts its attempt bound or deadline."""


class GenerationInProgressError(LuminaError):
    """Raised when a submission arrives while another one is processing."""


class InvalidTransitionError(LuminaError):
    """Raised on a status change the studio state machine does not allow."""
