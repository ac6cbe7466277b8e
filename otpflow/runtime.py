"""Composition root wiring config, gateway, sessions and flows."""

from __future__ import annotations

import logging
from dataclasses import dataclass

import requests
from dotenv import load_dotenv

from otpflow.auth.login import LoginFlow
from otpflow.auth.repository import SessionRepository
from otpflow.auth.session_manager import SessionLifecycleManager
from otpflow.core.clock import Clock, LoopClock
from otpflow.core.config import AppConfig
from otpflow.core.executor import BlockingRunner, run_blocking
from otpflow.core.logging import setup_logging
from otpflow.gateway.client import GatewayTransport, VerificationGatewayClient
from otpflow.gateway.endpoints import LOGIN_ENDPOINTS, OriginationEndpoints
from otpflow.gateway.origination_client import OriginationClient
from otpflow.origination.orchestrator import OriginationWizard
from otpflow.otp.exchange import OtpExchangeUnit

LOGGER = logging.getLogger(__name__)


@dataclass
class ControllerRuntime:
    """Shared collaborators for every login flow and origination wizard."""

    config: AppConfig
    transport: GatewayTransport
    gateway: VerificationGatewayClient
    sessions: SessionLifecycleManager
    clock: Clock
    run_blocking: BlockingRunner

    def new_login_flow(self) -> LoginFlow:
        unit = OtpExchangeUnit(
            channel=self.gateway.channel(LOGIN_ENDPOINTS),
            clock=self.clock,
            settings=self.config.otp,
            run_blocking=self.run_blocking,
            name=LOGIN_ENDPOINTS.name,
        )
        return LoginFlow(unit, self.sessions)

    def new_origination_wizard(self, role: str | None = None) -> OriginationWizard:
        """Create a wizard for ``role`` (defaults to the configured role)."""
        settings = self.config.origination
        endpoints = OriginationEndpoints.for_role(
            role or settings.role,
            identity_binding=settings.identity_binding,
            loan_otp_binding=settings.loan_otp_binding,
            creation_issues_otp=settings.creation_issues_otp,
        )
        return OriginationWizard(
            endpoints=endpoints,
            gateway=self.gateway,
            client=OriginationClient(self.transport, endpoints),
            clock=self.clock,
            otp_settings=self.config.otp,
            run_blocking=self.run_blocking,
            current_user_id=self._current_user_id,
        )

    def _current_user_id(self) -> str | None:
        user = self.sessions.session.user
        return user.id if user is not None else None


def build_runtime(
    config: AppConfig,
    *,
    http_session: requests.Session | None = None,
    clock: Clock | None = None,
    blocking_runner: BlockingRunner = run_blocking,
) -> ControllerRuntime:
    """Wire collaborators from an explicit config."""
    transport = GatewayTransport(
        base_url=config.gateway.base_url,
        timeout_seconds=config.gateway.timeout_seconds,
        auth_header=config.gateway.auth_header,
        session=http_session,
    )
    gateway = VerificationGatewayClient(
        transport,
        default_retry_after_seconds=config.otp.resend_cooldown_seconds,
    )
    sessions = SessionLifecycleManager(
        repository=SessionRepository(
            config.session.state_path, config.session.storage_key
        ),
        validator=gateway,
        interval_seconds=config.session.revalidate_interval_seconds,
        run_blocking=blocking_runner,
    )
    transport.set_token_provider(sessions.current_token)
    sessions.restore()
    return ControllerRuntime(
        config=config,
        transport=transport,
        gateway=gateway,
        sessions=sessions,
        clock=clock or LoopClock(),
        run_blocking=blocking_runner,
    )


def from_env() -> ControllerRuntime:
    """Load ``.env``, configure logging and build the runtime."""
    load_dotenv()
    config = AppConfig.from_env()
    setup_logging(config.logging.level)
    LOGGER.info("runtime_configured", extra={"role": config.origination.role})
    return build_runtime(config)
