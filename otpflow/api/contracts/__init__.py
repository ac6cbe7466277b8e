"""Remote API contracts."""

from otpflow.api.contracts.models import (
    ApiErrorResponse,
    CustomerLookupResponse,
    InterestQuoteResponse,
    PrincipalPayload,
    RateLimitedResponse,
    SendOtpResponse,
    VerifyOtpResponse,
)

__all__ = [
    "ApiErrorResponse",
    "CustomerLookupResponse",
    "InterestQuoteResponse",
    "PrincipalPayload",
    "RateLimitedResponse",
    "SendOtpResponse",
    "VerifyOtpResponse",
]
