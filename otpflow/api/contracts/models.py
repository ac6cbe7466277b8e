"""Pydantic models for the remote verification and origination contracts."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _blank_if_none(value: Any) -> Any:
    return "" if value is None else value


class ApiErrorResponse(BaseModel):
    """Stable error envelope for user-facing errors."""

    error_code: str = Field(description="Machine-readable error code")
    message: str = Field(description="Human-readable error message")


class PrincipalPayload(BaseModel):
    """User or customer record returned after a successful OTP match."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", coerce_numbers_to_str=True)

    id: str = Field(default="", alias="_id")
    role: str = ""
    email: str = ""
    name: str = ""
    primary_mobile: str = Field(default="", alias="primaryMobile")

    @field_validator("id", "role", "email", "name", "primary_mobile", mode="before")
    @classmethod
    def _nulls_to_blank(cls, value: Any) -> Any:
        return _blank_if_none(value)


class SendOtpResponse(BaseModel):
    """Body of a successful send-OTP call; all fields are optional hints."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    expires_in: float | None = Field(default=None, alias="expiresIn")
    resend_after: float | None = Field(default=None, alias="resendAfter")


class RateLimitedResponse(BaseModel):
    """Body of a 429 answer to a send-OTP call."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    time_left: float | None = Field(default=None, alias="timeLeft")
    message: str = ""

    @field_validator("message", mode="before")
    @classmethod
    def _null_message(cls, value: Any) -> Any:
        return _blank_if_none(value)


class VerifyOtpResponse(BaseModel):
    """Body of a successful verify-OTP call."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    token: str = ""
    user: PrincipalPayload | None = None
    customer: PrincipalPayload | None = None

    @field_validator("token", mode="before")
    @classmethod
    def _null_token(cls, value: Any) -> Any:
        return _blank_if_none(value)


class CustomerLookupResponse(BaseModel):
    """Existing-customer lookup by Aadhar number."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    exists: bool = False
    customer_details: dict[str, Any] = Field(default_factory=dict, alias="customerDetails")

    @field_validator("customer_details", mode="before")
    @classmethod
    def _null_details(cls, value: Any) -> Any:
        return {} if value is None else value


class InterestQuoteResponse(BaseModel):
    """Opaque interest calculation result."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    total_amount: float = Field(alias="totalAmount")
