"""Error taxonomy shared by the ceremony engine, stores and orchestrator."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Optional

if TYPE_CHECKING:
    from .credentials import StoredCredential


class ErrorKind(str, Enum):
    INVALID_INPUT = "invalid-input"
    SESSION_EXPIRED = "session-expired"
    CHALLENGE_MISMATCH = "challenge-mismatch"
    ORIGIN_MISMATCH = "origin-mismatch"
    RPID_MISMATCH = "rpid-mismatch"
    USER_NOT_VERIFIED = "user-not-verified"
    SIGNATURE_INVALID = "signature-invalid"
    POSSIBLE_CLONE = "possible-clone"
    UNRECOGNIZED_CREDENTIAL = "unrecognized-credential"
    CREDENTIAL_ALREADY_REGISTERED = "credential-already-registered"


class StoreUnavailableError(RuntimeError):
    """The challenge or credential store could not be reached."""


class StoreConflictError(StoreUnavailableError):
    """A write collided with a uniqueness constraint."""


class CeremonyError(Exception):
    """Raised inside the ceremony engine and turned into a failed result at its boundary."""

    def __init__(self, kind: ErrorKind, detail: str) -> None:
        super().__init__(detail)
        self.kind = kind
        self.detail = detail


@dataclass
class VerificationResult:
    verified: bool
    credential: Optional["StoredCredential"] = None
    new_counter: Optional[int] = None
    error: Optional[ErrorKind] = None
    detail: Optional[str] = None

    @classmethod
    def failure(cls, kind: ErrorKind, detail: str) -> "VerificationResult":
        return cls(verified=False, error=kind, detail=detail)


@dataclass
class CeremonyOutcome:
    """Result of a finished ceremony as seen by the HTTP layer."""

    ok: bool
    error: Optional[ErrorKind] = None
    user_id: Optional[str] = None
    username: Optional[str] = None
    session_token: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def failure(cls, kind: ErrorKind) -> "CeremonyOutcome":
        return cls(ok=False, error=kind)
