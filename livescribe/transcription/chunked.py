"""Record-a-clip, upload, repeat."""

import asyncio
import logging
from typing import Callable, List, Optional

from ..audio.capture import AudioCaptureSession, CaptureFactory
from ..audio.clip import WAV_MIME_TYPE, encode_wav
from ..errors import TranscriptionError, UnsupportedBackend
from ..models.audio import AudioChunk, CaptureConfig
from ..models.connection import ConnectionState, RetryPolicy
from ..providers.transcription_api import TranscriptionProviderClient
from .base import AbstractTranscriptionBackend, ErrorCallback, FragmentCallback
from .speakers import SpeakerRegistry

logger = logging.getLogger(__name__)


class ChunkedUploadBackend(AbstractTranscriptionBackend):
    """Captures fixed-length clips and uploads each one for transcription.

    Upload failures are reported as non-fatal and never stop the loop.
    Only capture failures (opening the microphone, or losing it mid-clip)
    go through the supervisor.
    """

    name = "chunked"
    default_retry_policy = RetryPolicy(max_attempts=2, base_delay_seconds=1.0, multiplier=2.0)

    def __init__(
        self,
        client: TranscriptionProviderClient,
        on_fragment: FragmentCallback,
        on_error: Optional[ErrorCallback] = None,
        speakers: Optional[SpeakerRegistry] = None,
        retry_policy: Optional[RetryPolicy] = None,
        recording_duration: float = 5.0,
        continuous: bool = True,
        restart_delay: float = 0.1,
        capture_config: Optional[CaptureConfig] = None,
        capture_factory: CaptureFactory = AudioCaptureSession,
        on_state_change: Optional[Callable[[ConnectionState], None]] = None,
    ):
        super().__init__(on_fragment, on_error, speakers, retry_policy, on_state_change)
        self.client = client
        self.recording_duration = recording_duration
        self.continuous = continuous
        self.restart_delay = restart_delay
        self.capture_config = capture_config or CaptureConfig()
        self.capture_factory = capture_factory

        self.cycles_completed = 0
        self._capture: Optional[AudioCaptureSession] = None
        self._loop_task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()
        self._clip_over = asyncio.Event()
        self._acquiring = False
        self._generation = 0

    def is_supported(self) -> bool:
        return bool(self.client.url)

    async def start(self) -> None:
        if self.is_listening:
            logger.info(f"[{self.name}] Already listening")
            return
        if not self.is_supported():
            self._fail_terminally(UnsupportedBackend("No transcription provider URL configured"))
            return
        await self._wait_for_release()

        self._generation += 1
        self._stop_event = asyncio.Event()
        self.is_listening = True
        self.supervisor.begin()
        logger.info(f"[{self.name}] Starting: {self.recording_duration}s clips, continuous={self.continuous}")
        self._loop_task = asyncio.get_running_loop().create_task(self._run(self._generation))

    async def stop(self) -> None:
        """Finish the current clip, upload it, and go idle."""
        self.supervisor.cancel()
        await self._wait_for_release()
        if not self.is_listening and self._loop_task is None:
            return
        logger.info(f"[{self.name}] Stopping")
        self.is_listening = False
        self._stop_event.set()
        self._clip_over.set()
        task, self._loop_task = self._loop_task, None
        if task is not None and task is not asyncio.current_task():
            if self._acquiring:
                # nothing recorded yet; don't wait on a pending permission prompt
                task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                logger.info(f"[{self.name}] Stopped while the microphone was opening")
        await self._release()

    async def _run(self, generation: int) -> None:
        while self.is_listening and generation == self._generation:
            try:
                await self._cycle(generation)
            except TranscriptionError as e:
                logger.error(f"[{self.name}] Could not capture audio: {e.message}")
                self.supervisor.report_failure(e)
                return

            self.cycles_completed += 1
            if not self.continuous:
                break
            if await self._wait_for_stop(self.restart_delay):
                break

        if not self.continuous and self.is_listening and generation == self._generation:
            logger.info(f"[{self.name}] Single clip finished")
            self.is_listening = False
            self.supervisor.mark_disconnected()

    async def _cycle(self, generation: int) -> None:
        """Record one clip and upload it.

        Raises:
            TranscriptionError: the microphone could not be opened, or failed
                mid-clip (after whatever was recorded has been uploaded)
        """
        chunks: List[bytes] = []
        failures: List[TranscriptionError] = []
        clip_over = self._clip_over = asyncio.Event()
        if self._stop_event.is_set():
            clip_over.set()

        def collect(chunk: AudioChunk) -> None:
            chunks.append(chunk.audio_data)

        def capture_failed(error: TranscriptionError) -> None:
            logger.error(f"[{self.name}] Capture failed mid-clip: {error.message}")
            failures.append(error)
            clip_over.set()

        capture = self.capture_factory(on_chunk=collect, config=self.capture_config,
                                       on_error=capture_failed, name=self.name)
        self._acquiring = True
        try:
            await capture.start()
        finally:
            self._acquiring = False
        self._capture = capture
        self.supervisor.mark_connected()
        try:
            await self._wait_for(clip_over, self.recording_duration)
        finally:
            await capture.stop()
            self._capture = None

        clip = encode_wav(chunks, self.capture_config.sample_rate, self.capture_config.channels)
        if clip:
            await self._upload(clip, generation)
        else:
            logger.debug(f"[{self.name}] Empty clip, skipping upload")
        if failures:
            raise failures[0]

    async def _upload(self, clip: bytes, generation: int) -> None:
        try:
            payload = await self.client.transcribe(clip, WAV_MIME_TYPE)
        except TranscriptionError as e:
            logger.warning(f"[{self.name}] Upload failed ({e.kind.value}): {e.message}")
            if generation == self._generation:
                self._report(e, fatal=False)
            return

        if generation != self._generation:
            logger.debug(f"[{self.name}] Discarding result from a previous session")
            return
        fragments = self.fragments_from_payload(payload)
        logger.debug(f"[{self.name}] Clip of {len(clip)} bytes -> {len(fragments)} fragment(s)")
        for fragment in fragments:
            self._emit(fragment)
        self.supervisor.mark_success()

    async def _wait_for_stop(self, timeout: float) -> bool:
        """Sleep up to ``timeout``; True if stop was requested meanwhile."""
        return await self._wait_for(self._stop_event, timeout)

    @staticmethod
    async def _wait_for(event: asyncio.Event, timeout: float) -> bool:
        try:
            await asyncio.wait_for(event.wait(), timeout)
            return True
        except asyncio.TimeoutError:
            return False

    async def _restart(self) -> None:
        if not self.is_listening:
            return
        if self._loop_task is None or self._loop_task.done():
            self._loop_task = asyncio.get_running_loop().create_task(self._run(self._generation))

    async def _release(self) -> None:
        capture, self._capture = self._capture, None
        if capture is not None:
            await capture.stop()
