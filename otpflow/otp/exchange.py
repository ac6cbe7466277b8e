"""One request/verify OTP exchange racing a resend cooldown and an expiry."""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import replace
from typing import Callable

from otpflow.api.errors import (
    FlowError,
    InvalidCodeError,
    InvalidStateError,
    OtpExpiredError,
    RateLimitedError,
    ValidationError,
)
from otpflow.core.clock import Clock
from otpflow.core.config import OtpConfig
from otpflow.core.executor import BlockingRunner, run_blocking
from otpflow.core.logging import mask_identifier
from otpflow.gateway.client import OtpChannel
from otpflow.otp.models import ExchangeState, OtpChallenge, VerificationOutcome
from otpflow.otp.timer import CountdownTimer

LOGGER = logging.getLogger(__name__)

ExchangeListener = Callable[["OtpExchangeUnit"], None]

_REQUESTABLE_STATES = {
    ExchangeState.IDLE,
    ExchangeState.AWAITING_CODE,
    ExchangeState.REJECTED,
    ExchangeState.EXPIRED,
}
_RESENDABLE_STATES = {
    ExchangeState.AWAITING_CODE,
    ExchangeState.VERIFYING,
    ExchangeState.REJECTED,
    ExchangeState.EXPIRED,
}


class OtpExchangeUnit:
    """State machine for a single OTP exchange.

    Every request bumps ``generation``; a gateway result is applied only when
    the unit is still live, on the same generation and in the state that
    issued the call. Anything else is a late or stale response and is dropped.
    """

    def __init__(
        self,
        *,
        channel: OtpChannel,
        clock: Clock,
        settings: OtpConfig | None = None,
        run_blocking: BlockingRunner = run_blocking,
        name: str = "otp",
    ) -> None:
        self._channel = channel
        self._clock = clock
        self._settings = settings or OtpConfig()
        self._run_blocking = run_blocking
        self._name = name

        self._resend_timer = CountdownTimer(clock, name=f"{name}-resend")
        self._expiry_timer = CountdownTimer(clock, name=f"{name}-expiry")
        self._resend_timer.add_listener(self._notify)
        self._expiry_timer.add_listener(self._on_expired)

        self._state = ExchangeState.IDLE
        self._outcome = VerificationOutcome.pending()
        self._challenge: OtpChallenge | None = None
        self._identifier = ""
        self._cooldown_identifier = ""
        self._code_input = ""
        self._generation = 0
        self._last_error: FlowError | None = None
        self._disposed = False
        self._listeners: list[ExchangeListener] = []
        self._auto_submit_task: asyncio.Task | None = None

    @property
    def name(self) -> str:
        return self._name

    @property
    def state(self) -> ExchangeState:
        return self._state

    @property
    def outcome(self) -> VerificationOutcome:
        return self._outcome

    @property
    def challenge(self) -> OtpChallenge | None:
        return self._challenge

    @property
    def identifier(self) -> str:
        return self._identifier

    @property
    def code_input(self) -> str:
        return self._code_input

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def last_error(self) -> FlowError | None:
        return self._last_error

    @property
    def disposed(self) -> bool:
        return self._disposed

    def resend_remaining(self) -> float:
        return self._resend_timer.remaining()

    def expiry_remaining(self) -> float:
        return self._expiry_timer.remaining()

    @property
    def can_resend(self) -> bool:
        return (
            not self._disposed
            and self._state in _RESENDABLE_STATES
            and not self._resend_timer.running
        )

    def subscribe(self, listener: ExchangeListener) -> Callable[[], None]:
        """Register a change listener; returns the matching unsubscribe."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def request_code(self, identifier: str) -> OtpChallenge | None:
        """Ask the gateway for a code; ``None`` when the answer went stale."""
        self._ensure_active()
        if self._state is ExchangeState.REQUESTING:
            raise RateLimitedError(self._in_flight_retry_after())
        if self._state not in _REQUESTABLE_STATES:
            raise InvalidStateError(f"Cannot request a code while {self._state}")
        return await self._request(identifier)

    async def resend(self) -> OtpChallenge | None:
        """Request a fresh code for the same identifier once the cooldown is over."""
        self._ensure_active()
        if self._state is ExchangeState.REQUESTING:
            raise RateLimitedError(self._in_flight_retry_after())
        if self._state not in _RESENDABLE_STATES or not self._identifier:
            raise InvalidStateError(f"Cannot resend a code while {self._state}")
        if self._resend_timer.running:
            raise RateLimitedError(math.ceil(self._resend_timer.remaining()))
        self._code_input = ""
        return await self._request(self._identifier)

    def attach_issued_challenge(
        self,
        identifier: str,
        *,
        expires_in: int | None = None,
        resend_after: int | None = None,
    ) -> OtpChallenge:
        """Adopt a code already sent by another remote call."""
        self._ensure_active()
        if self._state not in _REQUESTABLE_STATES:
            raise InvalidStateError(f"Cannot attach a challenge while {self._state}")
        identifier = _clean_identifier(identifier)
        self._generation += 1
        return self._install_challenge(identifier, expires_in, resend_after)

    async def submit_code(self, code: str | None = None) -> VerificationOutcome:
        """Verify ``code`` (or the current input) against the live challenge."""
        self._ensure_active()
        if self._state in (ExchangeState.VERIFYING, ExchangeState.VERIFIED):
            return self._outcome
        if self._state is ExchangeState.EXPIRED or (
            self._state is ExchangeState.AWAITING_CODE and self._challenge_expired()
        ):
            self._mark_expired()
            raise OtpExpiredError()
        if self._state is not ExchangeState.AWAITING_CODE or self._challenge is None:
            raise InvalidStateError(f"Cannot submit a code while {self._state}")

        candidate = (self._code_input if code is None else code).strip()
        if not candidate:
            raise ValidationError("Please enter the OTP", field="otp")
        if len(candidate) != self._settings.code_length or not candidate.isdigit():
            raise ValidationError(
                f"Enter the {self._settings.code_length}-digit code", field="otp"
            )

        generation = self._generation
        self._code_input = candidate
        self._outcome = VerificationOutcome.verifying()
        self._set_state(ExchangeState.VERIFYING)
        try:
            principal = await self._run_blocking(
                self._channel.verify_otp, self._identifier, candidate
            )
        except InvalidCodeError as exc:
            if self._is_stale(generation, ExchangeState.VERIFYING):
                return self._discard("verify_failure", generation)
            self._on_invalid_code(exc)
            raise
        except OtpExpiredError as exc:
            if self._is_stale(generation, ExchangeState.VERIFYING):
                return self._discard("verify_failure", generation)
            self._last_error = exc
            self._mark_expired()
            raise
        except Exception as exc:
            if self._is_stale(generation, ExchangeState.VERIFYING):
                return self._discard("verify_failure", generation)
            if isinstance(exc, FlowError):
                self._last_error = exc
            self._outcome = VerificationOutcome.pending()
            self._set_state(ExchangeState.AWAITING_CODE)
            raise

        if self._is_stale(generation, ExchangeState.VERIFYING):
            return self._discard("verify_success", generation)
        self._resend_timer.cancel()
        self._expiry_timer.cancel()
        self._last_error = None
        self._outcome = VerificationOutcome.verified(principal)
        LOGGER.info(
            "otp_verified",
            extra={
                "flow": self._name,
                "identifier": mask_identifier(self._identifier),
                "generation": generation,
            },
        )
        self._set_state(ExchangeState.VERIFIED)
        return self._outcome

    def update_code_input(self, value: str) -> str:
        """Store the typed code; a complete code triggers auto-submit."""
        self._ensure_active()
        digits = "".join(ch for ch in (value or "") if ch.isdigit())
        digits = digits[: self._settings.code_length]
        self._code_input = digits
        self._notify()
        if (
            self._settings.auto_submit
            and len(digits) == self._settings.code_length
            and self._state is ExchangeState.AWAITING_CODE
        ):
            self._schedule_auto_submit()
        return digits

    def dispose(self) -> None:
        """Cancel timers and ignore every call still in flight."""
        if self._disposed:
            return
        self._disposed = True
        self._generation += 1
        self._resend_timer.cancel()
        self._expiry_timer.cancel()
        self._code_input = ""
        LOGGER.debug("exchange_disposed", extra={"flow": self._name})

    async def _request(self, identifier: str) -> OtpChallenge | None:
        identifier = _clean_identifier(identifier)
        if identifier == self._cooldown_identifier and self._resend_timer.running:
            raise RateLimitedError(math.ceil(self._resend_timer.remaining()))

        prior_state = self._state
        self._generation += 1
        generation = self._generation
        self._set_state(ExchangeState.REQUESTING)
        try:
            dispatch = await self._run_blocking(self._channel.request_otp, identifier)
        except RateLimitedError as exc:
            if self._is_stale(generation, ExchangeState.REQUESTING):
                self._discard("request_failure", generation)
                return None
            self._last_error = exc
            self._cooldown_identifier = identifier
            self._resend_timer.start(exc.retry_after_seconds)
            self._restore_state(prior_state)
            raise
        except Exception as exc:
            if self._is_stale(generation, ExchangeState.REQUESTING):
                self._discard("request_failure", generation)
                return None
            if isinstance(exc, FlowError):
                self._last_error = exc
            self._restore_state(prior_state)
            raise

        if self._is_stale(generation, ExchangeState.REQUESTING):
            self._discard("request_success", generation)
            return None
        return self._install_challenge(
            identifier, dispatch.expires_in, dispatch.resend_after
        )

    def _install_challenge(
        self,
        identifier: str,
        expires_in: int | None,
        resend_after: int | None,
    ) -> OtpChallenge:
        expiry = self._settings.expiry_seconds if expires_in is None else expires_in
        cooldown = self._settings.resend_cooldown_seconds if resend_after is None else resend_after
        now = self._clock.now()
        self._challenge = OtpChallenge(
            identifier=identifier,
            issued_at=now,
            expires_at=now + expiry,
            resend_available_at=now + cooldown,
            generation=self._generation,
        )
        self._identifier = identifier
        self._cooldown_identifier = identifier
        self._code_input = ""
        self._last_error = None
        self._outcome = VerificationOutcome.pending()
        self._expiry_timer.start(expiry)
        self._resend_timer.start(cooldown)
        LOGGER.info(
            "otp_challenge_issued",
            extra={
                "flow": self._name,
                "identifier": mask_identifier(identifier),
                "generation": self._generation,
            },
        )
        self._set_state(ExchangeState.AWAITING_CODE)
        return self._challenge

    def _on_invalid_code(self, exc: InvalidCodeError) -> None:
        if self._challenge is None:
            raise InvalidStateError("No code has been issued yet")
        self._challenge = replace(
            self._challenge, attempts_consumed=self._challenge.attempts_consumed + 1
        )
        self._code_input = ""
        self._last_error = exc
        if self._challenge.attempts_consumed >= self._settings.max_attempts:
            self._expiry_timer.cancel()
            self._outcome = VerificationOutcome.rejected(exc.message)
            LOGGER.info(
                "otp_rejected",
                extra={"flow": self._name, "generation": self._generation},
            )
            self._set_state(ExchangeState.REJECTED)
            return
        self._outcome = VerificationOutcome.pending()
        self._set_state(ExchangeState.AWAITING_CODE)

    def _on_expired(self) -> None:
        if self._disposed:
            return
        if self._state in (ExchangeState.AWAITING_CODE, ExchangeState.VERIFYING):
            self._mark_expired()

    def _mark_expired(self) -> None:
        self._expiry_timer.cancel()
        self._code_input = ""
        self._outcome = VerificationOutcome.expired()
        if self._state is not ExchangeState.EXPIRED:
            LOGGER.info(
                "otp_expired",
                extra={"flow": self._name, "generation": self._generation},
            )
        self._set_state(ExchangeState.EXPIRED)

    def _restore_state(self, prior_state: ExchangeState) -> None:
        if prior_state is ExchangeState.VERIFYING:
            prior_state = ExchangeState.AWAITING_CODE
        if prior_state is ExchangeState.AWAITING_CODE:
            if self._challenge is None:
                prior_state = ExchangeState.IDLE
            elif self._challenge_expired():
                self._mark_expired()
                return
            else:
                self._outcome = VerificationOutcome.pending()
        self._set_state(prior_state)

    def _in_flight_retry_after(self) -> int:
        if self._resend_timer.running:
            return math.ceil(self._resend_timer.remaining())
        return self._settings.resend_cooldown_seconds

    def _challenge_expired(self) -> bool:
        if self._challenge is None:
            return False
        return self._clock.now() >= self._challenge.expires_at

    def _is_stale(self, generation: int, expected_state: ExchangeState) -> bool:
        return (
            self._disposed
            or generation != self._generation
            or self._state is not expected_state
        )

    def _discard(self, kind: str, generation: int) -> VerificationOutcome:
        LOGGER.debug(
            "stale_response_discarded: %s",
            kind,
            extra={
                "flow": self._name,
                "generation": generation,
                "state": str(self._state),
            },
        )
        return self._outcome

    def _schedule_auto_submit(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            LOGGER.debug("auto_submit_skipped_without_loop", extra={"flow": self._name})
            return
        task = loop.create_task(self.submit_code())
        task.add_done_callback(self._on_auto_submit_done)
        self._auto_submit_task = task

    def _on_auto_submit_done(self, task: asyncio.Task) -> None:
        if self._auto_submit_task is task:
            self._auto_submit_task = None
        if task.cancelled():
            return
        error = task.exception()
        if error is None:
            return
        if isinstance(error, FlowError):
            LOGGER.info(
                "auto_submit_failed",
                extra={"flow": self._name, "error_code": str(error.error_code)},
            )
            return
        LOGGER.error(
            "auto_submit_crashed",
            exc_info=(type(error), error, error.__traceback__),
            extra={"flow": self._name},
        )

    def _ensure_active(self) -> None:
        if self._disposed:
            raise InvalidStateError("OTP exchange is no longer active")

    def _set_state(self, state: ExchangeState) -> None:
        self._state = state
        LOGGER.debug(
            "exchange_state_changed",
            extra={"flow": self._name, "state": str(state), "generation": self._generation},
        )
        self._notify()

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener(self)


def _clean_identifier(identifier: str) -> str:
    cleaned = (identifier or "").strip()
    if not cleaned:
        raise ValidationError("Please enter your email or phone number", field="identifier")
    return cleaned
