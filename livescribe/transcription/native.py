"""Backend wrapping a continuous recognition engine.

Engine events are posted into an asyncio.Queue and handled one at a time by
a pump task, so all backend state is only touched from the event loop.
"""

import asyncio
import logging
from typing import Callable, Optional

from ..errors import (
    DeviceUnavailable,
    PermissionDenied,
    TranscriptionError,
    TransportError,
)
from ..models.connection import ConnectionState, RetryPolicy
from ..models.transcription import TranscriptFragment
from .base import AbstractTranscriptionBackend, ErrorCallback, FragmentCallback
from .recognition import (
    ABORTED,
    AUDIO_CAPTURE,
    NETWORK,
    NO_SPEECH,
    NOT_ALLOWED,
    SERVICE_NOT_ALLOWED,
    EngineEnded,
    EngineError,
    EngineMessage,
    EngineResults,
    EngineStarted,
    RecognitionEngine,
)
from .speakers import SpeakerRegistry

logger = logging.getLogger(__name__)


def classify_engine_error(code: str, message: str = "") -> TranscriptionError:
    """Map an engine error code onto the error taxonomy."""
    detail = f": {message}" if message else ""
    if code == NOT_ALLOWED:
        return PermissionDenied("Speech recognition permission was denied")
    if code == NETWORK:
        return TransportError(f"Network error during speech recognition{detail}")
    if code == AUDIO_CAPTURE:
        return TransportError(f"Microphone could not be captured{detail}")
    if code == SERVICE_NOT_ALLOWED:
        return TransportError(f"Speech recognition service is unavailable{detail}")
    return TransportError(f"Speech recognition error: {code}{detail}")


class NativeRecognitionBackend(AbstractTranscriptionBackend):
    """Continuous recognition with auto-restart and graduated retry."""

    name = "native"
    default_retry_policy = RetryPolicy(max_attempts=3, base_delay_seconds=1.0, multiplier=2.0)

    def __init__(
        self,
        engine: RecognitionEngine,
        on_fragment: FragmentCallback,
        on_error: Optional[ErrorCallback] = None,
        speakers: Optional[SpeakerRegistry] = None,
        retry_policy: Optional[RetryPolicy] = None,
        continuous: bool = True,
        interim_results: bool = True,
        restart_delay: float = 0.1,
        on_state_change: Optional[Callable[[ConnectionState], None]] = None,
    ):
        super().__init__(on_fragment, on_error, speakers, retry_policy, on_state_change)
        self.engine = engine
        self.continuous = continuous
        self.interim_results = interim_results
        self.restart_delay = restart_delay
        self.engine.bind(self._post)

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._queue: Optional[asyncio.Queue] = None
        self._pump_task: Optional[asyncio.Task] = None
        self._generation = 0

    def is_supported(self) -> bool:
        return self.engine.is_supported()

    async def start(self) -> None:
        if self.is_listening:
            logger.info(f"[{self.name}] Already listening")
            return
        if not self.is_supported():
            self._fail_terminally(DeviceUnavailable("Speech recognition is not supported in this environment"))
            return
        await self._wait_for_release()

        self._generation += 1
        generation = self._generation
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        self.is_listening = True
        self.supervisor.begin()
        self._pump_task = self._loop.create_task(self._pump(self._queue))
        logger.info(f"[{self.name}] Starting recognition (continuous={self.continuous})")

        try:
            await self.engine.start()
        except TranscriptionError as e:
            if generation == self._generation:
                self._handle_failure(e)
            return
        await self._abort_if_stopped(generation)

    async def stop(self) -> None:
        self.supervisor.cancel()
        self._generation += 1
        await self._wait_for_release()
        if not self.is_listening and self._pump_task is None:
            return
        logger.info(f"[{self.name}] Stopping recognition")
        self.is_listening = False
        await self._release()

    def _post(self, message: EngineMessage) -> None:
        """EngineSink: safe to call from any thread."""
        loop, queue = self._loop, self._queue
        if loop is None or queue is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(queue.put_nowait, message)

    async def _pump(self, queue: asyncio.Queue) -> None:
        while True:
            message = await queue.get()
            self._dispatch(message)

    def _dispatch(self, message: EngineMessage) -> None:
        if not self.is_listening:
            logger.debug(f"[{self.name}] Dropping {type(message).__name__} after stop")
            return

        if isinstance(message, EngineStarted):
            logger.info(f"[{self.name}] Recognition engine listening")
            self.supervisor.mark_connected()
        elif isinstance(message, EngineResults):
            self._handle_results(message)
        elif isinstance(message, EngineError):
            self._handle_engine_error(message)
        elif isinstance(message, EngineEnded):
            self._handle_end()

    def _handle_results(self, message: EngineResults) -> None:
        for result in message.results[message.result_index:]:
            if result.is_final:
                fragment = TranscriptFragment.final(result.transcript, result.confidence, source=self.name)
            elif self.interim_results:
                fragment = TranscriptFragment.interim(result.transcript, result.confidence, source=self.name)
            else:
                continue
            self._emit(fragment)
        self.supervisor.mark_success()

    def _handle_engine_error(self, message: EngineError) -> None:
        if message.code == NO_SPEECH:
            logger.debug(f"[{self.name}] No speech detected, continuing")
            return
        if message.code == ABORTED:
            logger.debug(f"[{self.name}] Engine aborted")
            return
        logger.error(f"[{self.name}] Engine error: {message.code} {message.message}")
        self._handle_failure(classify_engine_error(message.code, message.message))

    def _handle_failure(self, error: TranscriptionError) -> None:
        self.supervisor.report_failure(error)

    def _handle_end(self) -> None:
        if self.supervisor.retry_pending:
            # the error that ended the session already scheduled a restart
            return
        if self.continuous:
            logger.info(f"[{self.name}] Engine ended on its own, restarting in {self.restart_delay}s")
            self.supervisor.report_failure(
                TransportError("Speech recognition session ended unexpectedly"),
                delay=self.restart_delay,
            )
            return

        logger.info(f"[{self.name}] Recognition finished")
        self.is_listening = False
        self.supervisor.mark_disconnected()
        self._release_task = asyncio.get_running_loop().create_task(self._release())

    async def _restart(self) -> None:
        if not self.is_listening:
            return
        generation = self._generation
        await self.engine.abort()
        if not self.is_listening or generation != self._generation:
            return
        await self.engine.start()
        await self._abort_if_stopped(generation)

    async def _abort_if_stopped(self, generation: int) -> None:
        """The engine finished starting after stop(); shut it down again."""
        if generation == self._generation or self.is_listening:
            return
        logger.info(f"[{self.name}] Stopped while the engine was starting, aborting it")
        await self.engine.abort()

    async def _release(self) -> None:
        try:
            await self.engine.abort()
        except TranscriptionError as e:
            logger.warning(f"[{self.name}] Error aborting engine: {e.message}")

        task, self._pump_task = self._pump_task, None
        self._queue = None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
