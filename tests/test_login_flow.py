from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from otpflow.api.errors import InvalidStateError, OtpExpiredError
from otpflow.auth.login import LoginFlow, landing_route_for
from otpflow.auth.repository import SessionRepository
from otpflow.auth.session_manager import SessionLifecycleManager
from otpflow.core.config import OtpConfig
from otpflow.otp.exchange import OtpExchangeUnit
from otpflow.otp.models import ExchangeState, PrincipalRef
from tests.fakes import LOGIN_PRINCIPAL, FakeChannel, FakeGateway, ManualClock, immediate_runner


def _build_flow(tmp_path: Path, channel: FakeChannel, clock: ManualClock):
    sessions = SessionLifecycleManager(
        repository=SessionRepository(tmp_path / "state.json"),
        validator=FakeGateway(),
        interval_seconds=300,
        run_blocking=immediate_runner,
    )
    unit = OtpExchangeUnit(
        channel=channel,
        clock=clock,
        settings=OtpConfig(),
        run_blocking=immediate_runner,
        name="login",
    )
    return LoginFlow(unit, sessions), sessions


def test_login_happy_path_installs_session_once(tmp_path: Path) -> None:
    async def scenario() -> None:
        channel = FakeChannel(LOGIN_PRINCIPAL)
        flow, sessions = _build_flow(tmp_path, channel, ManualClock())
        installed: list[str | None] = []
        sessions.subscribe(lambda session: installed.append(session.token))

        await flow.request_code("admin@example.com")
        outcome = await flow.submit_code("123456")
        await flow.submit_code("123456")

        assert outcome.is_verified
        assert installed == ["t1"]
        assert sessions.session.token == "t1"
        assert sessions.session.user.role == "admin"
        assert flow.landing_route == "/admin/dashboard"
        assert len(channel.verifications) == 1
        await sessions.stop()

    asyncio.run(scenario())


def test_login_expiry_blocks_verification(tmp_path: Path) -> None:
    async def scenario() -> None:
        channel = FakeChannel(LOGIN_PRINCIPAL)
        clock = ManualClock()
        flow, sessions = _build_flow(tmp_path, channel, clock)

        await flow.request_code("admin@example.com")
        clock.advance(181)

        assert flow.unit.state is ExchangeState.EXPIRED
        with pytest.raises(OtpExpiredError):
            await flow.submit_code("123456")
        assert channel.verifications == []
        assert sessions.is_authenticated is False
        assert flow.landing_route is None

    asyncio.run(scenario())


def test_login_without_token_is_refused(tmp_path: Path) -> None:
    async def scenario() -> None:
        channel = FakeChannel(PrincipalRef(principal_id="u-1", role="admin"))
        flow, sessions = _build_flow(tmp_path, channel, ManualClock())
        await flow.request_code("admin@example.com")

        with pytest.raises(InvalidStateError):
            await flow.submit_code("123456")

        assert sessions.is_authenticated is False

    asyncio.run(scenario())


def test_dispose_tears_down_exchange(tmp_path: Path) -> None:
    async def scenario() -> None:
        clock = ManualClock()
        flow, _ = _build_flow(tmp_path, FakeChannel(LOGIN_PRINCIPAL), clock)
        await flow.request_code("admin@example.com")

        flow.dispose()

        assert clock.pending == []
        with pytest.raises(InvalidStateError):
            flow.update_code_input("123456")

    asyncio.run(scenario())


def test_landing_routes_by_role() -> None:
    assert landing_route_for("admin") == "/admin/dashboard"
    assert landing_route_for("Employee") == "/employee/dashboard"
    assert landing_route_for("customer") == "/customer/dashboard"
    assert landing_route_for("auditor") == "/"
