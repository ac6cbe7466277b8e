"""Endpoint sets for login and role-parameterized loan origination."""

from __future__ import annotations

from dataclasses import dataclass

from otpflow.core.config import CHANNEL_BINDINGS, ORIGINATION_ROLES


@dataclass(frozen=True)
class OtpEndpoints:
    """Send/verify pair of one OTP channel.

    ``identifier_field`` names the body field carrying the identifier and
    ``principal_key`` the response object holding the verified principal.
    """

    name: str
    send_path: str
    verify_path: str
    identifier_field: str = "identifier"
    principal_key: str = ""


LOGIN_ENDPOINTS = OtpEndpoints(
    name="login",
    send_path="/auth/send-login-otp",
    verify_path="/auth/verify-otp",
    identifier_field="identifier",
    principal_key="user",
)

SESSION_VALIDATE_PATH = "/auth/validate"

_BINDING_BODY_FIELDS = {"email": "email", "mobile": "primaryMobile"}


def binding_field(binding: str) -> str:
    """Return the request body field used for a channel binding."""
    if binding not in CHANNEL_BINDINGS:
        raise ValueError(f"Unsupported channel binding: {binding}")
    return _BINDING_BODY_FIELDS[binding]


@dataclass(frozen=True)
class OriginationEndpoints:
    """Role-specific endpoint strategy for the loan origination wizard."""

    role: str
    create_customer_path: str
    lookup_customer_path: str
    create_loan_path: str
    identity_otp: OtpEndpoints
    loan_otp: OtpEndpoints
    interest_quote_path: str = "/loans/calculate-interest"
    identity_binding: str = "email"
    loan_otp_binding: str = "mobile"
    creation_issues_otp: bool = True

    @staticmethod
    def for_role(
        role: str,
        *,
        identity_binding: str = "email",
        loan_otp_binding: str = "mobile",
        creation_issues_otp: bool = True,
    ) -> "OriginationEndpoints":
        """Build the endpoint set for ``admin`` or ``employee``."""
        normalized = (role or "").strip().lower()
        if normalized not in ORIGINATION_ROLES:
            raise ValueError(f"Unsupported origination role: {role}")
        return OriginationEndpoints(
            role=normalized,
            create_customer_path=f"/{normalized}/customers",
            lookup_customer_path=f"/{normalized}/check-aadhar/{{aadhar}}",
            create_loan_path=f"/{normalized}/loans",
            identity_otp=OtpEndpoints(
                name=f"{normalized}-identity",
                send_path=f"/{normalized}/send-customer-otp",
                verify_path=f"/{normalized}/verify-customer-otp",
                identifier_field=binding_field(identity_binding),
                principal_key="customer",
            ),
            loan_otp=OtpEndpoints(
                name=f"{normalized}-loan",
                send_path="/loans/send-otp",
                verify_path="/loans/verify-otp",
                identifier_field=binding_field(loan_otp_binding),
                principal_key="customer",
            ),
            identity_binding=identity_binding,
            loan_otp_binding=loan_otp_binding,
            creation_issues_otp=creation_issues_otp,
        )
