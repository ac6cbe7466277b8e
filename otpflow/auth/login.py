"""Login screen controller binding one OTP exchange to the session owner."""

from __future__ import annotations

import logging

from otpflow.auth.models import Session
from otpflow.auth.session_manager import SessionLifecycleManager
from otpflow.otp.exchange import OtpExchangeUnit
from otpflow.otp.models import OtpChallenge, VerificationOutcome

LOGGER = logging.getLogger(__name__)

ROLE_LANDING_ROUTES: dict[str, str] = {
    "admin": "/admin/dashboard",
    "employee": "/employee/dashboard",
    "customer": "/customer/dashboard",
}
DEFAULT_LANDING_ROUTE = "/"


def landing_route_for(role: str) -> str:
    """Return the route a freshly logged-in user is sent to."""
    return ROLE_LANDING_ROUTES.get((role or "").strip().lower(), DEFAULT_LANDING_ROUTE)


class LoginFlow:
    """Drives the login OTP exchange and installs the session once verified."""

    def __init__(self, unit: OtpExchangeUnit, sessions: SessionLifecycleManager) -> None:
        self._unit = unit
        self._sessions = sessions
        self._session: Session | None = None
        self._unsubscribe = unit.subscribe(self._on_unit_change)

    @property
    def unit(self) -> OtpExchangeUnit:
        return self._unit

    @property
    def session(self) -> Session | None:
        return self._session

    @property
    def landing_route(self) -> str | None:
        if self._session is None or self._session.user is None:
            return None
        return landing_route_for(self._session.user.role)

    async def request_code(self, identifier: str) -> OtpChallenge | None:
        return await self._unit.request_code(identifier)

    async def submit_code(self, code: str | None = None) -> VerificationOutcome:
        return await self._unit.submit_code(code)

    def update_code_input(self, value: str) -> str:
        return self._unit.update_code_input(value)

    async def resend(self) -> OtpChallenge | None:
        return await self._unit.resend()

    def dispose(self) -> None:
        """Tear the exchange down when the login view goes away."""
        self._unsubscribe()
        self._unit.dispose()

    def _on_unit_change(self, unit: OtpExchangeUnit) -> None:
        if self._session is not None or not unit.outcome.is_verified:
            return
        self._session = self._sessions.login(unit.outcome)
        LOGGER.info("login_completed", extra={"flow": unit.name, "role": self._session.user.role})
