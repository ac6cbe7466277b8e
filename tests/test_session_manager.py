from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest

from otpflow.api.errors import InvalidStateError
from otpflow.auth.models import Session
from otpflow.auth.repository import SessionRepository
from otpflow.auth.session_manager import SessionLifecycleManager
from otpflow.gateway.client import SessionCheck
from otpflow.otp.models import PrincipalRef, VerificationOutcome
from tests.fakes import LOGIN_PRINCIPAL, FakeGateway, immediate_runner


def _build_manager(tmp_path: Path, gateway: FakeGateway, interval: float = 0.01):
    repository = SessionRepository(tmp_path / "state.json", "authState")
    manager = SessionLifecycleManager(
        repository=repository,
        validator=gateway,
        interval_seconds=interval,
        run_blocking=immediate_runner,
    )
    return manager, repository


def _stored(tmp_path: Path) -> dict:
    return json.loads((tmp_path / "state.json").read_text(encoding="utf-8"))


async def _wait_for(predicate, attempts: int = 200) -> None:
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0.01)
    raise AssertionError("Condition was not reached in time")


def test_login_persists_and_publishes_session(tmp_path: Path) -> None:
    manager, _ = _build_manager(tmp_path, FakeGateway())
    seen: list[Session] = []
    manager.subscribe(seen.append)

    session = manager.login(VerificationOutcome.verified(LOGIN_PRINCIPAL))

    assert session.is_authenticated
    assert manager.current_token() == "t1"
    assert seen == [session]
    assert _stored(tmp_path) == {
        "authState": {
            "token": "t1",
            "user": {
                "id": "u-1",
                "role": "admin",
                "email": "admin@example.com",
                "name": "Admin",
            },
            "isAuthenticated": True,
        }
    }


def test_login_requires_verified_outcome_with_token(tmp_path: Path) -> None:
    manager, _ = _build_manager(tmp_path, FakeGateway())

    with pytest.raises(InvalidStateError):
        manager.login(VerificationOutcome.pending())
    with pytest.raises(InvalidStateError):
        manager.login(VerificationOutcome.verified(PrincipalRef(principal_id="u-1")))

    assert manager.is_authenticated is False
    assert not (tmp_path / "state.json").exists()


def test_logout_persists_empty_session_and_notifies(tmp_path: Path) -> None:
    manager, repository = _build_manager(tmp_path, FakeGateway())
    manager.login(VerificationOutcome.verified(LOGIN_PRINCIPAL))
    seen: list[bool] = []
    unsubscribe = manager.subscribe(lambda session: seen.append(session.is_authenticated))

    manager.logout()
    unsubscribe()
    manager.logout()

    assert seen == [False]
    assert manager.current_token() is None
    assert _stored(tmp_path)["authState"] == {
        "token": None,
        "user": None,
        "isAuthenticated": False,
    }
    assert repository.load().is_authenticated is False


def test_rejected_token_logs_out_in_background(tmp_path: Path) -> None:
    async def scenario() -> None:
        gateway = FakeGateway()
        gateway.session_results = [SessionCheck.VALID, SessionCheck.INVALID]
        manager, _ = _build_manager(tmp_path, gateway)
        notices: list[bool] = []
        manager.subscribe(lambda session: notices.append(session.is_authenticated))

        manager.login(VerificationOutcome.verified(LOGIN_PRINCIPAL))
        assert manager.revalidation_running

        await _wait_for(lambda: not manager.is_authenticated)
        checks_at_logout = len(gateway.session_checks)
        await asyncio.sleep(0.05)

        assert checks_at_logout == 2
        assert len(gateway.session_checks) == 2
        assert gateway.session_checks == ["t1", "t1"]
        assert notices == [True, False]
        assert manager.revalidation_running is False
        assert _stored(tmp_path)["authState"]["isAuthenticated"] is False

    asyncio.run(scenario())


def test_inconclusive_check_keeps_session(tmp_path: Path) -> None:
    async def scenario() -> None:
        gateway = FakeGateway()
        gateway.default_check = SessionCheck.UNKNOWN
        manager, _ = _build_manager(tmp_path, gateway)

        manager.login(VerificationOutcome.verified(LOGIN_PRINCIPAL))
        await _wait_for(lambda: len(gateway.session_checks) >= 3)

        assert manager.is_authenticated
        await manager.stop()
        assert manager.revalidation_running is False

    asyncio.run(scenario())


def test_logout_stops_revalidation(tmp_path: Path) -> None:
    async def scenario() -> None:
        gateway = FakeGateway()
        manager, _ = _build_manager(tmp_path, gateway, interval=0.02)

        manager.login(VerificationOutcome.verified(LOGIN_PRINCIPAL))
        manager.logout(reason="user")
        await asyncio.sleep(0.06)

        assert gateway.session_checks == []
        assert manager.revalidation_running is False

    asyncio.run(scenario())


def test_relogin_replaces_revalidation_loop(tmp_path: Path) -> None:
    async def scenario() -> None:
        gateway = FakeGateway()
        manager, _ = _build_manager(tmp_path, gateway)

        manager.login(VerificationOutcome.verified(LOGIN_PRINCIPAL))
        second = PrincipalRef(principal_id="u-2", role="employee", token="t2")
        manager.login(VerificationOutcome.verified(second))
        await _wait_for(lambda: len(gateway.session_checks) >= 2)
        await manager.stop()

        assert set(gateway.session_checks) == {"t2"}

    asyncio.run(scenario())


def test_restore_treats_corrupt_state_as_logged_out(tmp_path: Path) -> None:
    manager, _ = _build_manager(tmp_path, FakeGateway())
    state_path = tmp_path / "state.json"

    state_path.write_text("{not json", encoding="utf-8")
    assert manager.restore().is_authenticated is False

    state_path.write_text(json.dumps({"authState": {"isAuthenticated": True}}), encoding="utf-8")
    assert manager.restore().is_authenticated is False

    state_path.write_text(json.dumps({"authState": ["unexpected"]}), encoding="utf-8")
    assert manager.restore().is_authenticated is False


def test_restore_accepts_serialized_record_and_starts_revalidation(tmp_path: Path) -> None:
    async def scenario() -> None:
        gateway = FakeGateway()
        manager, _ = _build_manager(tmp_path, gateway)
        record = {
            "token": "t1",
            "user": {"id": "u-1", "role": "admin", "email": "admin@example.com", "name": "Admin"},
            "isAuthenticated": True,
        }
        (tmp_path / "state.json").write_text(
            json.dumps({"authState": json.dumps(record), "theme": "dark"}), encoding="utf-8"
        )

        session = manager.restore()

        assert session.is_authenticated
        assert session.user.identifier == "admin@example.com"
        assert manager.revalidation_running
        await manager.stop()

        manager.logout()
        assert _stored(tmp_path)["theme"] == "dark"

    asyncio.run(scenario())
