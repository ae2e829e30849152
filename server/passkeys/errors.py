import enum
from dataclasses import dataclass
from typing import Any, Optional


class ErrorKind(enum.Enum):
    USERNAME_TAKEN = "username_taken"
    UNKNOWN_USERNAME = "unknown_username"
    UNKNOWN_CREDENTIAL = "unknown_credential"
    ATTESTATION_REJECTED = "attestation_rejected"
    ASSERTION_REJECTED = "assertion_rejected"


@dataclass(frozen=True)
class Outcome:
    """Result of a flow operation: either ``value`` or ``error``, never both.

    ``detail`` is for server-side logs only and must not be sent to clients.
    """

    value: Any = None
    error: Optional[ErrorKind] = None
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value=None) -> "Outcome":
        return cls(value=value)

    @classmethod
    def failure(cls, error: ErrorKind, detail: str = "") -> "Outcome":
        return cls(error=error, detail=detail)


class VerificationError(Exception):
    """The verification engine declined an attestation or assertion."""
