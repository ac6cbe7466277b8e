"""HTTP client for the remote OTP verification gateway."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, Callable, Mapping, Protocol, TypeVar

import requests
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from otpflow.api.contracts import RateLimitedResponse, SendOtpResponse, VerifyOtpResponse
from otpflow.api.errors import (
    FlowError,
    InvalidCodeError,
    NetworkError,
    OtpExpiredError,
    RateLimitedError,
    ValidationError,
    message_from_error_body,
)
from otpflow.core.logging import mask_identifier
from otpflow.gateway.endpoints import LOGIN_ENDPOINTS, SESSION_VALIDATE_PATH, OtpEndpoints
from otpflow.otp.models import OtpDispatch, PrincipalRef

LOGGER = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


class SessionCheck(StrEnum):
    """Tri-state answer of a session revalidation."""

    VALID = "valid"
    INVALID = "invalid"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class GatewayReply:
    """Decoded HTTP response."""

    status_code: int
    body: Any = None
    headers: Mapping[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


class GatewayTransport:
    """Thin ``requests`` wrapper that turns transport failures into ``NetworkError``."""

    def __init__(
        self,
        *,
        base_url: str,
        timeout_seconds: float = 10.0,
        auth_header: str = "x-auth-token",
        token_provider: Callable[[], str | None] | None = None,
        session: requests.Session | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout_seconds = timeout_seconds
        self._auth_header = auth_header
        self._token_provider = token_provider
        self._session = session or requests.Session()

    def set_token_provider(self, token_provider: Callable[[], str | None]) -> None:
        self._token_provider = token_provider

    def request(
        self,
        method: str,
        path: str,
        *,
        json_body: dict[str, Any] | None = None,
        token: str | None = None,
    ) -> GatewayReply:
        """Send one request and decode its body; never retries."""
        headers = {"Accept": "application/json"}
        auth_token = token if token is not None else self._current_token()
        if auth_token:
            headers[self._auth_header] = auth_token
        url = f"{self._base_url}{path}"
        try:
            response = self._session.request(
                method,
                url,
                json=json_body,
                headers=headers,
                timeout=self._timeout_seconds,
            )
        except requests.RequestException as exc:
            LOGGER.warning("gateway_transport_failed: %s %s (%s)", method, path, exc)
            raise NetworkError() from exc

        try:
            body: Any = response.json()
        except ValueError:
            body = response.text
        return GatewayReply(
            status_code=int(response.status_code),
            body=body,
            headers=dict(response.headers or {}),
        )

    def _current_token(self) -> str | None:
        if self._token_provider is None:
            return None
        return self._token_provider()


class OtpChannel(Protocol):
    """Send/verify pair bound to one endpoint set."""

    def request_otp(self, identifier: str) -> OtpDispatch:
        """Ask the gateway to issue a code for ``identifier``."""

    def verify_otp(self, identifier: str, code: str) -> PrincipalRef:
        """Check ``code`` against the live challenge for ``identifier``."""


class VerificationGatewayClient:
    """Stateless client for send-OTP, verify-OTP and session validation."""

    def __init__(
        self,
        transport: GatewayTransport,
        *,
        default_retry_after_seconds: int = 60,
    ) -> None:
        self._transport = transport
        self._default_retry_after_seconds = default_retry_after_seconds

    def channel(
        self,
        endpoints: OtpEndpoints,
        extra: Mapping[str, str] | None = None,
    ) -> "GatewayOtpChannel":
        """Bind an endpoint set and fixed body fields into an ``OtpChannel``."""
        return GatewayOtpChannel(self, endpoints, dict(extra or {}))

    def request_otp(
        self,
        identifier: str,
        *,
        endpoints: OtpEndpoints = LOGIN_ENDPOINTS,
        extra: Mapping[str, str] | None = None,
    ) -> OtpDispatch:
        """Request a new OTP for ``identifier``."""
        body = {**dict(extra or {}), endpoints.identifier_field: identifier}
        reply = self._transport.request("POST", endpoints.send_path, json_body=body)
        log_extra = {"flow": endpoints.name, "identifier": mask_identifier(identifier)}

        if reply.status_code == 429:
            try:
                limited = parse_reply_body(RateLimitedResponse, reply, "Failed to send OTP")
            except NetworkError:
                limited = RateLimitedResponse()
            retry_after = _whole_seconds(limited.time_left)
            if retry_after is None:
                retry_after = _retry_after_header(reply.headers)
            if retry_after is None:
                retry_after = self._default_retry_after_seconds
            LOGGER.info(
                "otp_request_rate_limited",
                extra={**log_extra, "status_code": reply.status_code},
            )
            raise RateLimitedError(
                retry_after,
                message=limited.message,
                status_code=reply.status_code,
            )
        if reply.status_code >= 500:
            raise NetworkError(
                message_from_error_body(reply.body, "Failed to send OTP"),
                status_code=reply.status_code,
            )
        if not reply.ok:
            raise ValidationError(
                message_from_error_body(reply.body, "Failed to send OTP"),
                field=endpoints.identifier_field,
                status_code=reply.status_code,
            )

        sent = parse_reply_body(SendOtpResponse, reply, "Failed to send OTP")
        LOGGER.info("otp_requested", extra=log_extra)
        return OtpDispatch(
            identifier=identifier,
            expires_in=_whole_seconds(sent.expires_in),
            resend_after=_whole_seconds(sent.resend_after),
        )

    def verify_otp(
        self,
        identifier: str,
        code: str,
        *,
        endpoints: OtpEndpoints = LOGIN_ENDPOINTS,
        extra: Mapping[str, str] | None = None,
    ) -> PrincipalRef:
        """Verify ``code`` and return the matched principal."""
        fixed = dict(extra or {})
        body = {**fixed, endpoints.identifier_field: identifier, "otp": code}
        reply = self._transport.request("POST", endpoints.verify_path, json_body=body)

        if reply.status_code >= 500:
            raise NetworkError(
                message_from_error_body(reply.body, "OTP verification failed"),
                status_code=reply.status_code,
            )
        if not reply.ok:
            message = message_from_error_body(reply.body, "Invalid OTP")
            if reply.status_code == 410 or "expire" in message.lower():
                raise OtpExpiredError(message, status_code=reply.status_code)
            raise InvalidCodeError(message, status_code=reply.status_code)

        verified = parse_reply_body(VerifyOtpResponse, reply, "OTP verification failed")
        payload = None
        if endpoints.principal_key:
            payload = getattr(verified, endpoints.principal_key, None)
        principal_id = (payload.id if payload else "") or fixed.get("customerId", "")
        return PrincipalRef(
            principal_id=principal_id,
            role=payload.role if payload else "",
            identifier=(payload.email if payload else "") or identifier,
            display_name=payload.name if payload else "",
            token=verified.token,
        )

    def check_session(self, token: str | None) -> SessionCheck:
        """Ask the gateway whether ``token`` is still accepted."""
        if not token:
            return SessionCheck.INVALID
        try:
            reply = self._transport.request("GET", SESSION_VALIDATE_PATH, token=token)
        except NetworkError:
            return SessionCheck.UNKNOWN
        if reply.ok:
            return SessionCheck.VALID
        if reply.status_code >= 500:
            return SessionCheck.UNKNOWN
        return SessionCheck.INVALID

    def validate_session(self, token: str | None) -> bool:
        """Return ``True`` only when the gateway confirms the token."""
        return self.check_session(token) is SessionCheck.VALID


class GatewayOtpChannel:
    """``OtpChannel`` bound to one endpoint set of a gateway client."""

    def __init__(
        self,
        client: VerificationGatewayClient,
        endpoints: OtpEndpoints,
        extra: dict[str, str],
    ) -> None:
        self._client = client
        self._endpoints = endpoints
        self._extra = extra

    @property
    def endpoints(self) -> OtpEndpoints:
        return self._endpoints

    def request_otp(self, identifier: str) -> OtpDispatch:
        return self._client.request_otp(
            identifier, endpoints=self._endpoints, extra=self._extra
        )

    def verify_otp(self, identifier: str, code: str) -> PrincipalRef:
        return self._client.verify_otp(
            identifier, code, endpoints=self._endpoints, extra=self._extra
        )


def _retry_after_header(headers: Mapping[str, str]) -> int | None:
    for key, value in headers.items():
        if key.lower() == "retry-after":
            try:
                return int(float(value))
            except ValueError:
                return None
    return None


def _whole_seconds(value: float | None) -> int | None:
    if value is None:
        return None
    return max(0, math.ceil(value))


def parse_reply_body(
    model: type[ModelT],
    reply: GatewayReply,
    fallback: str,
    *,
    error_type: type[FlowError] = NetworkError,
) -> ModelT:
    """Validate a decoded body; a malformed answer raises ``error_type``."""
    body = reply.body if isinstance(reply.body, dict) else {}
    try:
        return model.model_validate(body)
    except PydanticValidationError as exc:
        LOGGER.warning(
            "gateway_reply_malformed: %s (%d issues)",
            model.__name__,
            exc.error_count(),
            extra={"status_code": reply.status_code},
        )
        raise error_type(
            f"{fallback}: unexpected server response", status_code=reply.status_code
        ) from exc
