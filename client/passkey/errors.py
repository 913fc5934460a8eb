"""Error taxonomy for the passkey ceremony client."""
from __future__ import annotations

from typing import Optional

__all__ = [
    "CapabilityError",
    "CeremonyError",
    "CeremonyInProgressError",
    "DecodeError",
    "MalformedAuthenticatorDataError",
    "ServerError",
    "TransportError",
    "ValidationError",
]


class CeremonyError(Exception):
    """Base exception for every failure surfaced by a ceremony."""

    kind = "ceremony"

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason

    def describe(self) -> str:
        return f"{self.kind}: {self.reason}"


class ValidationError(CeremonyError):
    """Caller input was rejected before any network call."""

    kind = "validation"


class ServerError(CeremonyError):
    """The relying party answered with a non-success response."""

    kind = "server"

    def __init__(
        self,
        reason: str,
        *,
        status: Optional[int] = None,
        body: str = "",
    ) -> None:
        super().__init__(reason)
        self.status = status
        self.body = body

    def describe(self) -> str:
        if self.status is None:
            return f"{self.kind}: {self.reason}"
        return f"{self.kind} (HTTP {self.status}): {self.reason}"


class TransportError(CeremonyError):
    """The relying party could not be reached."""

    kind = "transport"


class CapabilityError(CeremonyError):
    """The platform capability refused, was cancelled or timed out."""

    kind = "capability"

    def __init__(self, reason: str, *, cause: Optional[BaseException] = None) -> None:
        super().__init__(reason)
        self.cause = cause


class DecodeError(CeremonyError, ValueError):
    """Text could not be decoded as URL-safe base64 (or JSON)."""

    kind = "decode"


class MalformedAuthenticatorDataError(CeremonyError, ValueError):
    """Authenticator data is too short or structurally invalid."""

    kind = "authenticator-data"


class CeremonyInProgressError(CeremonyError):
    """Another ceremony is already pending on the same orchestrator."""

    kind = "in-progress"
