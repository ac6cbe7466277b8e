"""Value types for OTP challenges and verification outcomes."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum


class ExchangeState(StrEnum):
    """Lifecycle of one OTP exchange."""

    IDLE = "idle"
    REQUESTING = "requesting"
    AWAITING_CODE = "awaiting_code"
    VERIFYING = "verifying"
    VERIFIED = "verified"
    REJECTED = "rejected"
    EXPIRED = "expired"


class OutcomeStatus(StrEnum):
    """Tag of a ``VerificationOutcome``."""

    PENDING = "pending"
    VERIFYING = "verifying"
    VERIFIED = "verified"
    REJECTED = "rejected"
    EXPIRED = "expired"


TERMINAL_OUTCOMES = {
    OutcomeStatus.VERIFIED,
    OutcomeStatus.REJECTED,
    OutcomeStatus.EXPIRED,
}


@dataclass(frozen=True)
class PrincipalRef:
    """Verified identity returned by the gateway after an OTP match."""

    principal_id: str
    role: str = ""
    identifier: str = ""
    display_name: str = ""
    token: str = ""


@dataclass(frozen=True)
class OtpDispatch:
    """Receipt of a successful send-OTP call.

    ``expires_in`` and ``resend_after`` are server hints in seconds; ``None``
    means the configured defaults apply.
    """

    identifier: str
    expires_in: int | None = None
    resend_after: int | None = None


@dataclass(frozen=True)
class OtpChallenge:
    """Issued OTP awaiting a matching submission.

    Times are clock readings in seconds. ``generation`` tags the challenge so
    results from a superseded one can be told apart.
    """

    identifier: str
    issued_at: float
    expires_at: float
    resend_available_at: float
    attempts_consumed: int = 0
    generation: int = 0


@dataclass(frozen=True)
class VerificationOutcome:
    """Tagged verification result."""

    status: OutcomeStatus
    principal: PrincipalRef | None = None
    reason: str = ""

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_OUTCOMES

    @property
    def is_verified(self) -> bool:
        return self.status is OutcomeStatus.VERIFIED

    @classmethod
    def pending(cls) -> "VerificationOutcome":
        return cls(status=OutcomeStatus.PENDING)

    @classmethod
    def verifying(cls) -> "VerificationOutcome":
        return cls(status=OutcomeStatus.VERIFYING)

    @classmethod
    def verified(cls, principal: PrincipalRef) -> "VerificationOutcome":
        return cls(status=OutcomeStatus.VERIFIED, principal=principal)

    @classmethod
    def rejected(cls, reason: str) -> "VerificationOutcome":
        return cls(status=OutcomeStatus.REJECTED, reason=reason)

    @classmethod
    def expired(cls) -> "VerificationOutcome":
        return cls(status=OutcomeStatus.EXPIRED, reason="OTP expired")
