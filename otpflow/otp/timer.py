"""Cancellable countdown used for resend cooldown and OTP expiry."""

from __future__ import annotations

import logging
from typing import Callable

from otpflow.core.clock import Clock, TimerHandle

LOGGER = logging.getLogger(__name__)

ElapsedListener = Callable[[], None]


class CountdownTimer:
    """Single-purpose countdown that fires its listeners once per ``start``.

    Restarting before the deadline replaces the running countdown; the
    replaced one never fires.
    """

    def __init__(self, clock: Clock, *, name: str) -> None:
        self._clock = clock
        self._name = name
        self._listeners: list[ElapsedListener] = []
        self._handle: TimerHandle | None = None
        self._deadline: float | None = None
        self._run_id = 0
        self._fired = False

    @property
    def name(self) -> str:
        return self._name

    @property
    def running(self) -> bool:
        return self._handle is not None

    @property
    def fired(self) -> bool:
        """Whether the latest countdown ran to completion."""
        return self._fired

    def add_listener(self, listener: ElapsedListener) -> None:
        self._listeners.append(listener)

    def start(self, duration_seconds: float) -> None:
        """Start or replace the countdown."""
        self._cancel_handle()
        self._run_id += 1
        run_id = self._run_id
        duration = max(0.0, float(duration_seconds))
        self._fired = False
        self._deadline = self._clock.now() + duration
        self._handle = self._clock.call_later(duration, lambda: self._elapse(run_id))

    def cancel(self) -> None:
        """Stop the countdown without firing."""
        self._cancel_handle()
        self._run_id += 1
        self._deadline = None

    def remaining(self) -> float:
        """Seconds left on the running countdown, ``0.0`` otherwise."""
        if self._handle is None or self._deadline is None:
            return 0.0
        return max(0.0, self._deadline - self._clock.now())

    def _cancel_handle(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _elapse(self, run_id: int) -> None:
        if run_id != self._run_id or self._handle is None:
            return
        self._handle = None
        self._deadline = None
        self._fired = True
        LOGGER.debug("countdown_elapsed", extra={"flow": self._name})
        for listener in list(self._listeners):
            listener()
