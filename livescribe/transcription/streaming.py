"""Near-real-time transcription by relaying short audio chunks over HTTP."""

import asyncio
import logging
import time
import uuid
from dataclasses import replace
from typing import Callable, List, Optional

from ..audio.capture import AudioCaptureSession, CaptureFactory
from ..audio.clip import encode_wav
from ..errors import TranscriptionError, UnsupportedBackend
from ..models.audio import AudioChunk, CaptureConfig
from ..models.connection import ConnectionState, RetryPolicy
from ..providers.transcription_api import TranscriptionProviderClient
from .base import AbstractTranscriptionBackend, ErrorCallback, FragmentCallback
from .speakers import SpeakerRegistry

logger = logging.getLogger(__name__)


def new_session_id() -> str:
    return f"session-{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}"


class StreamingBackend(AbstractTranscriptionBackend):
    """Sends everything captured since the last tick on a fixed cadence.

    Capture emits chunks at half the send interval so each tick has data.
    Sends are sequential; a failed send is reported as non-fatal and the
    next tick proceeds normally.
    """

    name = "streaming"
    default_retry_policy = RetryPolicy(max_attempts=2, base_delay_seconds=1.0, multiplier=2.0)

    def __init__(
        self,
        client: TranscriptionProviderClient,
        on_fragment: FragmentCallback,
        on_error: Optional[ErrorCallback] = None,
        speakers: Optional[SpeakerRegistry] = None,
        retry_policy: Optional[RetryPolicy] = None,
        send_interval: float = 1.0,
        capture_config: Optional[CaptureConfig] = None,
        capture_factory: CaptureFactory = AudioCaptureSession,
        on_state_change: Optional[Callable[[ConnectionState], None]] = None,
    ):
        super().__init__(on_fragment, on_error, speakers, retry_policy, on_state_change)
        self.client = client
        self.send_interval = send_interval
        self.capture_config = replace(capture_config or CaptureConfig(),
                                      chunk_interval_seconds=send_interval / 2)
        self.capture_factory = capture_factory

        self.session_id: Optional[str] = None
        self.sends_completed = 0
        self._chunks: List[bytes] = []
        self._capture: Optional[AudioCaptureSession] = None
        self._send_task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()
        self._generation = 0

    def is_supported(self) -> bool:
        return bool(self.client.stream_url)

    async def start(self) -> None:
        if self.is_listening:
            logger.info(f"[{self.name}] Already listening")
            return
        if not self.is_supported():
            self._fail_terminally(UnsupportedBackend("No streaming endpoint configured"))
            return

        await self._wait_for_release()
        self._generation += 1
        generation = self._generation
        self.session_id = new_session_id()
        self._chunks = []
        self._stop_event = asyncio.Event()
        self.is_listening = True
        self.supervisor.begin()
        logger.info(f"[{self.name}] Starting session {self.session_id}, send every {self.send_interval}s")

        try:
            opened = await self._open_capture(generation)
        except TranscriptionError as e:
            logger.error(f"[{self.name}] Could not capture audio: {e.message}")
            if generation == self._generation:
                self.supervisor.report_failure(e)
            return

        if opened:
            self._send_task = asyncio.get_running_loop().create_task(self._send_loop(generation))

    async def stop(self) -> None:
        """Cancel the send timer, stop capture and flush what is left."""
        self.supervisor.cancel()
        await self._wait_for_release()
        if not self.is_listening and self._send_task is None and self._capture is None:
            self._generation += 1
            return
        logger.info(f"[{self.name}] Stopping session {self.session_id}")
        self.is_listening = False
        await self._shutdown()
        await self._send_pending(self._generation)
        self._generation += 1

    async def _open_capture(self, generation: int) -> bool:
        """Acquire the microphone. False if the session was stopped meanwhile."""
        capture = self.capture_factory(
            on_chunk=self._on_chunk,
            config=self.capture_config,
            on_error=self._on_capture_error,
            name=self.name,
        )
        await capture.start()
        if generation != self._generation or not self.is_listening:
            logger.info(f"[{self.name}] Stopped while the microphone was opening, releasing it")
            await capture.stop()
            return False
        self._capture = capture
        self.supervisor.mark_connected()
        return True

    def _on_chunk(self, chunk: AudioChunk) -> None:
        if chunk.audio_data:
            self._chunks.append(chunk.audio_data)

    def _on_capture_error(self, error: TranscriptionError) -> None:
        logger.error(f"[{self.name}] Capture failed: {error.message}")
        self.supervisor.report_failure(error)

    async def _send_loop(self, generation: int) -> None:
        loop = asyncio.get_running_loop()
        next_tick = loop.time() + self.send_interval
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), max(0.0, next_tick - loop.time()))
                break
            except asyncio.TimeoutError:
                pass
            next_tick += self.send_interval
            if next_tick < loop.time():
                # a slow send overran one or more ticks; skip them
                next_tick = loop.time() + self.send_interval
            await self._send_pending(generation)

    async def _send_pending(self, generation: int) -> None:
        if not self._chunks:
            return
        pending, self._chunks = self._chunks, []
        clip = encode_wav(pending, self.capture_config.sample_rate, self.capture_config.channels)

        try:
            payload = await self.client.transcribe_stream_chunk(clip, self.session_id)
        except TranscriptionError as e:
            logger.warning(f"[{self.name}] Send failed ({e.kind.value}): {e.message}")
            if generation == self._generation:
                self._report(e, fatal=False)
            return

        self.sends_completed += 1
        if generation != self._generation:
            logger.debug(f"[{self.name}] Discarding result from a previous session")
            return
        for fragment in self.fragments_from_payload(payload):
            self._emit(fragment)
        self.supervisor.mark_success()

    async def _shutdown(self) -> None:
        self._stop_event.set()
        task, self._send_task = self._send_task, None
        if task is not None and task is not asyncio.current_task():
            await task
        capture, self._capture = self._capture, None
        if capture is not None:
            await capture.stop()

    async def _restart(self) -> None:
        if not self.is_listening:
            return
        generation = self._generation
        stale, self._capture = self._capture, None
        if stale is not None:
            await stale.stop()
        if not await self._open_capture(generation):
            return
        if self._send_task is None or self._send_task.done():
            self._stop_event = asyncio.Event()
            self._send_task = asyncio.get_running_loop().create_task(self._send_loop(generation))

    async def _release(self) -> None:
        await self._shutdown()
        self._chunks = []
