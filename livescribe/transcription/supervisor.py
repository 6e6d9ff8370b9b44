"""Retry/backoff state machine shared by every transcription backend.

States::

    idle -> connecting -> connected -> disconnected -> idle
              |    ^          |
              v    |          v
             errored <--------+
                |
                +-> connecting (retry scheduled)   or   idle (terminal)

Any success resets the retry budget. ``cancel()`` clears pending retry
timers, cancels a restart that is already running and returns to idle
from any state; a cancelled retry never fires.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from ..errors import BackendError, TranscriptionError, TransportError
from ..models.connection import ConnectionState, RetryBudget, RetryPolicy

logger = logging.getLogger(__name__)

RestartCallable = Callable[[], Awaitable[None]]


class ConnectionSupervisor:
    """Owns connection state and the retry budget for one backend instance."""

    def __init__(
        self,
        name: str,
        policy: RetryPolicy,
        restart: RestartCallable,
        on_state_change: Optional[Callable[[ConnectionState], None]] = None,
        on_retry: Optional[Callable[[int, float, TranscriptionError], None]] = None,
        on_terminal: Optional[Callable[[BackendError], None]] = None,
    ):
        self.name = name
        self.policy = policy
        self.budget = RetryBudget(policy)
        self._restart = restart
        self.on_state_change = on_state_change
        self.on_retry = on_retry
        self.on_terminal = on_terminal

        self.state = ConnectionState.IDLE
        self._retry_handle: Optional[asyncio.TimerHandle] = None
        self._restart_task: Optional[asyncio.Task] = None
        self._generation = 0

    @property
    def retry_pending(self) -> bool:
        return self._retry_handle is not None

    @property
    def is_active(self) -> bool:
        return self.state is not ConnectionState.IDLE

    def begin(self) -> None:
        """User-initiated start: fresh budget, idle -> connecting."""
        self._cancel_pending()
        self.budget.reset()
        self._transition(ConnectionState.CONNECTING)

    def mark_connected(self) -> None:
        if self.state is ConnectionState.IDLE:
            logger.debug(f"[{self.name}] Ignoring connect event while idle")
            return
        self.budget.reset()
        self._transition(ConnectionState.CONNECTED)

    def mark_success(self) -> None:
        """A provider result arrived: reset the budget."""
        if self.state is ConnectionState.IDLE:
            return
        self.budget.reset()
        if self.state is ConnectionState.CONNECTING:
            self._transition(ConnectionState.CONNECTED)

    def mark_disconnected(self) -> None:
        """Clean close: connected -> disconnected -> idle."""
        if self.state is ConnectionState.IDLE:
            return
        self._cancel_pending()
        self._transition(ConnectionState.DISCONNECTED)
        self._transition(ConnectionState.IDLE)

    def report_failure(self, error: TranscriptionError, delay: Optional[float] = None) -> bool:
        """Handle a transport failure. Returns True if a restart was scheduled.

        Args:
            error: The classified failure
            delay: Override for the backoff delay (e.g. fixed auto-restart pacing)
        """
        if self.state is ConnectionState.IDLE:
            logger.debug(f"[{self.name}] Ignoring failure while idle: {error.message}")
            return False

        self._cancel_pending()
        self._transition(ConnectionState.ERRORED)

        if error.retryable and not self.budget.exhausted:
            attempt = self.budget.consume()
            wait = self.policy.delay_for(attempt) if delay is None else delay
            logger.warning(f"[{self.name}] {error.message} - retry {attempt}/{self.policy.max_attempts} "
                           f"in {wait:.2f}s")
            self._schedule(wait)
            self._transition(ConnectionState.CONNECTING)
            if self.on_retry:
                self.on_retry(attempt, wait, error)
            return True

        exhausted = error.retryable and self.budget.attempts > 0
        backend_error = BackendError(
            error=error,
            fatal=True,
            retries_exhausted=exhausted,
            attempts=self.budget.attempts,
        )
        logger.error(f"[{self.name}] Terminal failure: {backend_error.message}")
        self.budget.reset()
        self._transition(ConnectionState.IDLE)
        if self.on_terminal:
            self.on_terminal(backend_error)
        return False

    def cancel(self) -> None:
        """Stop: drop any pending or running retry and go idle."""
        self._cancel_pending()
        self._generation += 1
        task, self._restart_task = self._restart_task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            logger.debug(f"[{self.name}] Cancelling restart in progress")
            task.cancel()
        if self.state is not ConnectionState.IDLE:
            self._transition(ConnectionState.IDLE)

    def _schedule(self, delay: float) -> None:
        loop = asyncio.get_running_loop()
        generation = self._generation
        self._retry_handle = loop.call_later(delay, self._fire, generation)

    def _fire(self, generation: int) -> None:
        self._retry_handle = None
        if generation != self._generation or self.state is ConnectionState.IDLE:
            return
        logger.info(f"[{self.name}] Restarting (attempt {self.budget.attempts})")
        self._restart_task = asyncio.get_running_loop().create_task(self._run_restart(generation))

    async def _run_restart(self, generation: int) -> None:
        try:
            await self._restart()
        except TranscriptionError as e:
            if generation == self._generation:
                self.report_failure(e)
        except Exception as e:
            logger.error(f"[{self.name}] Unexpected error during restart: {e}", exc_info=True)
            if generation == self._generation:
                self.report_failure(TransportError(f"Restart failed: {e}"))

    def _cancel_pending(self) -> None:
        if self._retry_handle is not None:
            self._retry_handle.cancel()
            self._retry_handle = None

    def _transition(self, state: ConnectionState) -> None:
        if state is self.state:
            return
        logger.debug(f"[{self.name}] {self.state.value} -> {state.value}")
        self.state = state
        if self.on_state_change:
            self.on_state_change(state)
