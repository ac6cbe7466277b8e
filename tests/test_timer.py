from __future__ import annotations

from otpflow.otp.timer import CountdownTimer
from tests.fakes import ManualClock


def test_countdown_fires_once_after_duration() -> None:
    clock = ManualClock()
    timer = CountdownTimer(clock, name="expiry")
    fired: list[float] = []
    timer.add_listener(lambda: fired.append(clock.now()))

    timer.start(10)
    clock.advance(9.5)
    assert fired == []
    assert timer.remaining() == 0.5

    clock.advance(1)
    assert fired == [10.0]
    assert timer.fired is True
    assert timer.running is False
    assert timer.remaining() == 0.0

    clock.advance(30)
    assert fired == [10.0]


def test_restart_replaces_running_countdown() -> None:
    clock = ManualClock()
    timer = CountdownTimer(clock, name="resend")
    fired: list[float] = []
    timer.add_listener(lambda: fired.append(clock.now()))

    timer.start(10)
    clock.advance(4)
    timer.start(10)
    clock.advance(7)

    assert fired == []
    assert timer.remaining() == 3.0

    clock.advance(3)
    assert fired == [14.0]


def test_cancel_prevents_firing() -> None:
    clock = ManualClock()
    timer = CountdownTimer(clock, name="expiry")
    fired: list[bool] = []
    timer.add_listener(lambda: fired.append(True))

    timer.start(5)
    timer.cancel()
    clock.advance(10)

    assert fired == []
    assert timer.fired is False
    assert timer.running is False
    assert clock.pending == []


def test_remaining_never_increases_while_running() -> None:
    clock = ManualClock()
    timer = CountdownTimer(clock, name="expiry")
    timer.start(3)

    readings = []
    for _ in range(6):
        readings.append(timer.remaining())
        clock.advance(0.5)

    assert readings == sorted(readings, reverse=True)
    assert readings[-1] == 0.5
