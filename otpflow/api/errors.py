"""Shared error types for OTP exchanges, wizards and sessions."""

from __future__ import annotations

from enum import StrEnum
from typing import Any, Iterable

from otpflow.api.contracts.models import ApiErrorResponse


class FlowErrorCode(StrEnum):
    """Machine-readable error codes surfaced to callers."""

    RATE_LIMITED = "RATE_LIMITED"
    INVALID_CODE = "INVALID_CODE"
    OTP_EXPIRED = "OTP_EXPIRED"
    NETWORK_ERROR = "NETWORK_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    DUPLICATE_CONTACT = "DUPLICATE_CONTACT"
    INVALID_STATE = "INVALID_STATE"
    REMOTE_REJECTED = "REMOTE_REJECTED"


class FlowError(Exception):
    """Base error carrying a stable code and a human-readable message."""

    def __init__(
        self,
        *,
        error_code: FlowErrorCode,
        message: str,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.error_code = error_code
        self.message = message
        self.status_code = status_code

    def to_payload(self) -> dict[str, str]:
        """Return the error envelope shown to the user."""
        return ApiErrorResponse(
            error_code=str(self.error_code), message=self.message
        ).model_dump()


class RateLimitedError(FlowError):
    """Another OTP cannot be requested yet."""

    def __init__(
        self,
        retry_after_seconds: int,
        *,
        message: str = "",
        status_code: int | None = None,
    ) -> None:
        self.retry_after_seconds = max(0, int(retry_after_seconds))
        super().__init__(
            error_code=FlowErrorCode.RATE_LIMITED,
            message=message
            or f"Please wait {self.retry_after_seconds} seconds before requesting a new code.",
            status_code=status_code,
        )


class InvalidCodeError(FlowError):
    """The submitted code did not match; the same challenge stays usable."""

    def __init__(self, message: str = "", *, status_code: int | None = None) -> None:
        super().__init__(
            error_code=FlowErrorCode.INVALID_CODE,
            message=message or "Invalid OTP. Please try again.",
            status_code=status_code,
        )


class OtpExpiredError(FlowError):
    """The challenge expired; a new code must be requested."""

    def __init__(self, message: str = "", *, status_code: int | None = None) -> None:
        super().__init__(
            error_code=FlowErrorCode.OTP_EXPIRED,
            message=message or "The code has expired. Request a new one.",
            status_code=status_code,
        )


class NetworkError(FlowError):
    """Transport failure or server outage; the same action may be retried."""

    def __init__(self, message: str = "", *, status_code: int | None = None) -> None:
        super().__init__(
            error_code=FlowErrorCode.NETWORK_ERROR,
            message=message or "Could not reach the server. Check your connection and retry.",
            status_code=status_code,
        )


class ValidationError(FlowError):
    """Input rejected locally or by the gateway before any challenge exists."""

    def __init__(
        self,
        message: str,
        *,
        field: str = "",
        status_code: int | None = None,
    ) -> None:
        self.field = field
        super().__init__(
            error_code=FlowErrorCode.VALIDATION_ERROR,
            message=message,
            status_code=status_code,
        )


class DuplicateContactError(FlowError):
    """Two or more contact numbers on one identity are the same."""

    def __init__(self, roles: Iterable[str]) -> None:
        self.roles = tuple(roles)
        super().__init__(
            error_code=FlowErrorCode.DUPLICATE_CONTACT,
            message=(
                "Primary Mobile, Secondary Mobile, and Emergency Contact Number "
                "must be different"
            ),
        )


class InvalidStateError(FlowError):
    """Operation is not allowed in the current state."""

    def __init__(self, message: str) -> None:
        super().__init__(error_code=FlowErrorCode.INVALID_STATE, message=message)


class RemoteRejectedError(FlowError):
    """Remote business call failed; the server message is kept verbatim."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(
            error_code=FlowErrorCode.REMOTE_REJECTED,
            message=message,
            status_code=status_code,
        )


def message_from_error_body(body: Any, fallback: str) -> str:
    """Extract a human-readable message from a remote error body."""
    if isinstance(body, dict):
        errors = body.get("errors")
        if isinstance(errors, list):
            messages = [
                str(item.get("msg") or "").strip()
                for item in errors
                if isinstance(item, dict)
            ]
            messages = [msg for msg in messages if msg]
            if messages:
                return "\n".join(messages)
        message = str(body.get("message") or body.get("detail") or "").strip()
        if message:
            return message
    if isinstance(body, str) and body.strip():
        return body.strip()
    return fallback


def to_error_payload(error: BaseException) -> dict[str, str]:
    """Normalize any exception into the stable user-facing error envelope."""
    if isinstance(error, FlowError):
        return error.to_payload()
    return {
        "error_code": "UNEXPECTED_ERROR",
        "message": str(error) or error.__class__.__name__,
    }
