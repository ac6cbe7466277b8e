"""Controller configuration loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

CHANNEL_BINDINGS = {"email", "mobile"}
ORIGINATION_ROLES = {"admin", "employee"}


@dataclass(frozen=True)
class GatewayConfig:
    """Remote verification gateway settings."""

    base_url: str
    timeout_seconds: float
    auth_header: str


@dataclass(frozen=True)
class OtpConfig:
    """OTP exchange timing and input policy."""

    resend_cooldown_seconds: int = 60
    expiry_seconds: int = 180
    code_length: int = 6
    max_attempts: int = 5
    auto_submit: bool = True


@dataclass(frozen=True)
class SessionConfig:
    """Persisted session and background revalidation settings."""

    state_path: Path
    storage_key: str = "authState"
    revalidate_interval_seconds: float = 300.0


@dataclass(frozen=True)
class OriginationConfig:
    """Loan origination wizard channel configuration."""

    role: str = "admin"
    identity_binding: str = "email"
    loan_otp_binding: str = "mobile"
    creation_issues_otp: bool = True


@dataclass(frozen=True)
class LoggingConfig:
    """Structured logging configuration."""

    level: str


@dataclass(frozen=True)
class AppConfig:
    """Top-level controller configuration."""

    gateway: GatewayConfig
    otp: OtpConfig
    session: SessionConfig
    origination: OriginationConfig
    logging: LoggingConfig

    @staticmethod
    def from_env() -> "AppConfig":
        """Build controller config from process environment."""
        base_url = (
            os.getenv("OTPFLOW_API_URL", "").strip() or "http://localhost:5001/api"
        ).rstrip("/")
        timeout_seconds = float(os.getenv("OTPFLOW_HTTP_TIMEOUT_SECONDS", "10"))
        auth_header = (
            os.getenv("OTPFLOW_AUTH_HEADER", "x-auth-token").strip() or "x-auth-token"
        )

        resend_cooldown = int(os.getenv("OTPFLOW_RESEND_COOLDOWN_SECONDS", "60"))
        expiry = int(os.getenv("OTPFLOW_OTP_EXPIRY_SECONDS", "180"))
        code_length = int(os.getenv("OTPFLOW_OTP_CODE_LENGTH", "6"))
        max_attempts = int(os.getenv("OTPFLOW_OTP_MAX_ATTEMPTS", "5"))
        auto_submit = _env_flag("OTPFLOW_OTP_AUTO_SUBMIT", default=True)

        state_path = Path(
            os.getenv("OTPFLOW_STATE_PATH", "runtime/client_state.json").strip()
            or "runtime/client_state.json"
        )
        storage_key = os.getenv("OTPFLOW_SESSION_KEY", "authState").strip() or "authState"
        revalidate_interval = float(
            os.getenv("OTPFLOW_SESSION_REVALIDATE_SECONDS", str(5 * 60))
        )

        role = os.getenv("OTPFLOW_ORIGINATION_ROLE", "admin").strip().lower() or "admin"
        if role not in ORIGINATION_ROLES:
            raise ValueError(f"Unsupported origination role: {role}")
        identity_binding = _binding_from_env("OTPFLOW_IDENTITY_OTP_BINDING", "email")
        loan_otp_binding = _binding_from_env("OTPFLOW_LOAN_OTP_BINDING", "mobile")
        creation_issues_otp = _env_flag("OTPFLOW_CREATION_ISSUES_OTP", default=True)

        log_level = os.getenv("LOG_LEVEL", "INFO").strip() or "INFO"

        return AppConfig(
            gateway=GatewayConfig(
                base_url=base_url,
                timeout_seconds=max(0.1, timeout_seconds),
                auth_header=auth_header,
            ),
            otp=OtpConfig(
                resend_cooldown_seconds=max(0, resend_cooldown),
                expiry_seconds=max(1, expiry),
                code_length=max(1, code_length),
                max_attempts=max(1, max_attempts),
                auto_submit=auto_submit,
            ),
            session=SessionConfig(
                state_path=state_path,
                storage_key=storage_key,
                revalidate_interval_seconds=max(0.01, revalidate_interval),
            ),
            origination=OriginationConfig(
                role=role,
                identity_binding=identity_binding,
                loan_otp_binding=loan_otp_binding,
                creation_issues_otp=creation_issues_otp,
            ),
            logging=LoggingConfig(level=log_level),
        )


def _env_flag(name: str, *, default: bool) -> bool:
    raw = os.getenv(name, "").strip().lower()
    if not raw:
        return default
    return raw in {"1", "true", "yes", "on"}


def _binding_from_env(name: str, default: str) -> str:
    value = os.getenv(name, default).strip().lower() or default
    if value not in CHANNEL_BINDINGS:
        raise ValueError(f"{name} must be one of {sorted(CHANNEL_BINDINGS)}, got {value!r}")
    return value
