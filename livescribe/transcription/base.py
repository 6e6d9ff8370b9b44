"""Abstract base class for transcription backends."""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Callable, List, Optional

from ..errors import BackendError, TranscriptionError
from ..models.connection import ConnectionState, RetryPolicy
from ..models.provider import TranscriptionPayload
from ..models.transcription import Finality, TranscriptFragment
from .speakers import SpeakerRegistry
from .supervisor import ConnectionSupervisor

logger = logging.getLogger(__name__)

FragmentCallback = Callable[[TranscriptFragment], None]
ErrorCallback = Callable[[BackendError], None]


class AbstractTranscriptionBackend(ABC):
    """Common contract: ``start()``, ``stop()``, ``is_supported()``.

    Backends emit fragments through ``on_fragment`` and problems through
    ``on_error``; neither callback is allowed to raise into the backend.
    Connection state and retries are delegated to a ConnectionSupervisor.
    """

    name = "backend"
    default_retry_policy = RetryPolicy()

    def __init__(
        self,
        on_fragment: FragmentCallback,
        on_error: Optional[ErrorCallback] = None,
        speakers: Optional[SpeakerRegistry] = None,
        retry_policy: Optional[RetryPolicy] = None,
        on_state_change: Optional[Callable[[ConnectionState], None]] = None,
    ):
        self.on_fragment = on_fragment
        self.on_error = on_error
        self.speakers = speakers if speakers is not None else SpeakerRegistry()
        self.on_state_change = on_state_change
        self.supervisor = ConnectionSupervisor(
            name=self.name,
            policy=retry_policy or self.default_retry_policy,
            restart=self._restart,
            on_state_change=self._state_changed,
            on_terminal=self._on_terminal,
        )
        self.is_listening = False
        self._release_task: Optional[asyncio.Task] = None

    @property
    def state(self) -> ConnectionState:
        return self.supervisor.state

    @abstractmethod
    def is_supported(self) -> bool:
        """Whether this backend can run in the current environment."""

    @abstractmethod
    async def start(self) -> None:
        pass

    @abstractmethod
    async def stop(self) -> None:
        """Tear everything down. Idempotent."""

    @abstractmethod
    async def _restart(self) -> None:
        """Re-open the transport after a retryable failure."""

    @abstractmethod
    async def _release(self) -> None:
        """Free device/transport resources after a terminal failure."""

    def _emit(self, fragment: TranscriptFragment) -> None:
        try:
            self.on_fragment(fragment)
        except Exception as e:
            logger.error(f"[{self.name}] Fragment callback failed: {e}", exc_info=True)

    def _report(self, error: TranscriptionError, fatal: bool = False) -> None:
        self._deliver_error(BackendError(error=error, fatal=fatal))

    def _deliver_error(self, backend_error: BackendError) -> None:
        if not self.on_error:
            return
        try:
            self.on_error(backend_error)
        except Exception as e:
            logger.error(f"[{self.name}] Error callback failed: {e}", exc_info=True)

    def _fail_terminally(self, error: TranscriptionError) -> None:
        """Surface a non-retryable failure through the supervisor."""
        if self.supervisor.state is ConnectionState.IDLE:
            self.supervisor.begin()
        self.supervisor.report_failure(error)

    def _on_terminal(self, backend_error: BackendError) -> None:
        self.is_listening = False
        self._release_task = asyncio.get_running_loop().create_task(self._release())
        self._deliver_error(backend_error)

    async def _wait_for_release(self) -> None:
        """Let a release started by a terminal failure or a natural end finish."""
        task, self._release_task = self._release_task, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            await task

    def _state_changed(self, state: ConnectionState) -> None:
        if self.on_state_change:
            self.on_state_change(state)

    def fragments_from_payload(self, payload: TranscriptionPayload,
                               finality: Finality = Finality.FINAL) -> List[TranscriptFragment]:
        return fragments_from_payload(payload, self.speakers, finality, source=self.name)


def fragments_from_payload(payload: TranscriptionPayload, speakers: SpeakerRegistry,
                           finality: Finality = Finality.FINAL, source: str = "") -> List[TranscriptFragment]:
    """Turn a provider payload into fragments, resolving speakers in provider order."""
    build = TranscriptFragment.final if finality is Finality.FINAL else TranscriptFragment.interim
    # providers send 0 when they have no score
    result_confidence = payload.confidence or None
    if payload.speakers:
        return [
            build(
                text=segment.text,
                confidence=segment.confidence or result_confidence,
                speaker=speakers.ref(segment.speaker_tag),
                source=source,
            )
            for segment in payload.speakers
        ]
    if payload.flat_text:
        return [build(text=payload.flat_text, confidence=result_confidence, source=source)]
    return []
