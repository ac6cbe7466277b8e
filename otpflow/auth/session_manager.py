"""Session ownership and background revalidation."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Protocol

from otpflow.api.errors import InvalidStateError
from otpflow.auth.models import Principal, Session
from otpflow.auth.repository import SessionRepository
from otpflow.core.executor import BlockingRunner, run_blocking
from otpflow.core.logging import mask_identifier
from otpflow.gateway.client import SessionCheck
from otpflow.otp.models import VerificationOutcome

LOGGER = logging.getLogger(__name__)

SessionListener = Callable[[Session], None]


class SessionValidator(Protocol):
    """Remote check of a session token."""

    def check_session(self, token: str | None) -> SessionCheck:
        """Return whether the backend still accepts ``token``."""


class SessionLifecycleManager:
    """Single writer of the authenticated session.

    While a session is authenticated a background loop asks the backend every
    ``interval_seconds`` whether the token is still accepted and logs out as
    soon as it is not. Inconclusive checks keep the session.
    """

    def __init__(
        self,
        *,
        repository: SessionRepository,
        validator: SessionValidator,
        interval_seconds: float = 300.0,
        run_blocking: BlockingRunner = run_blocking,
    ) -> None:
        self._repository = repository
        self._validator = validator
        self._interval_seconds = interval_seconds
        self._run_blocking = run_blocking
        self._session = Session.empty()
        self._listeners: list[SessionListener] = []
        self._stop_event: asyncio.Event | None = None
        self._worker_task: asyncio.Task[None] | None = None

    @property
    def session(self) -> Session:
        return self._session

    @property
    def is_authenticated(self) -> bool:
        return self._session.is_authenticated

    @property
    def revalidation_running(self) -> bool:
        return self._worker_task is not None and not self._worker_task.done()

    def current_token(self) -> str | None:
        return self._session.token if self._session.is_authenticated else None

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        """Register a session listener; returns the matching unsubscribe."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def restore(self) -> Session:
        """Load the persisted session; bad state is treated as logged out."""
        self._session = self._repository.load()
        if self._session.is_authenticated:
            LOGGER.info(
                "session_restored",
                extra={"role": self._session.user.role if self._session.user else ""},
            )
            self._start_loop()
        self._notify()
        return self._session

    def login(self, outcome: VerificationOutcome) -> Session:
        """Install the session produced by a verified login exchange."""
        principal = outcome.principal
        if not outcome.is_verified or principal is None:
            raise InvalidStateError("Login requires a verified code")
        if not principal.token:
            raise InvalidStateError("Login failed: No token received from server")

        session = Session(
            token=principal.token,
            user=Principal(
                id=principal.principal_id,
                role=principal.role,
                identifier=principal.identifier,
                display_name=principal.display_name,
            ),
            is_authenticated=True,
        )
        self._repository.save(session)
        self._session = session
        LOGGER.info(
            "session_started",
            extra={"role": principal.role, "identifier": mask_identifier(principal.identifier)},
        )
        self._notify()
        self._start_loop()
        return session

    def logout(self, reason: str = "user") -> None:
        """Drop the session, persist the empty state and stop revalidation."""
        self._stop_loop()
        was_authenticated = self._session.is_authenticated
        self._session = Session.empty()
        self._repository.save(self._session)
        if was_authenticated:
            LOGGER.info("session_ended: %s", reason)
        self._notify()

    async def start(self) -> None:
        """Start revalidation for the current session if none is running."""
        if self._session.is_authenticated and not self.revalidation_running:
            self._start_loop()

    async def stop(self) -> None:
        """Stop revalidation and wait for the loop to finish."""
        task = self._worker_task
        self._stop_loop()
        if task is not None and task is not asyncio.current_task():
            await task

    async def revalidate_now(self) -> SessionCheck:
        """Run one revalidation against the backend."""
        token = self.current_token()
        if not token:
            return SessionCheck.INVALID
        result = await self._run_blocking(self._validator.check_session, token)
        if self.current_token() != token:
            LOGGER.debug("stale_revalidation_discarded")
            return result
        if result is SessionCheck.INVALID:
            self.logout(reason="session_rejected")
        elif result is SessionCheck.UNKNOWN:
            LOGGER.warning("session_revalidation_inconclusive")
        return result

    def _start_loop(self) -> None:
        self._stop_loop()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            LOGGER.debug("revalidation_deferred_without_loop")
            return
        stop_event = asyncio.Event()
        task = loop.create_task(self._revalidation_loop(stop_event))
        task.add_done_callback(_log_worker_failure)
        self._stop_event = stop_event
        self._worker_task = task

    def _stop_loop(self) -> None:
        if self._stop_event is not None:
            self._stop_event.set()
        self._stop_event = None
        self._worker_task = None

    async def _revalidation_loop(self, stop_event: asyncio.Event) -> None:
        """Revalidate on every interval until ``stop_event`` is set."""
        while not stop_event.is_set():
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self._interval_seconds)
            except asyncio.TimeoutError:
                await self.revalidate_now()

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener(self._session)


def _log_worker_failure(task: asyncio.Task[None]) -> None:
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        LOGGER.error(
            "revalidation_loop_crashed",
            exc_info=(type(error), error, error.__traceback__),
        )
