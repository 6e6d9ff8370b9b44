"""WebSocket transcription against a StreamingConnection provider."""

import asyncio
import base64
import json
import logging
import time
from dataclasses import replace
from typing import Any, Awaitable, Callable, List, Optional

import aiohttp
from pydantic import ValidationError

from ..audio.capture import AudioCaptureSession, CaptureFactory
from ..errors import TranscriptionError, TransportError, UnsupportedBackend
from ..models.audio import AudioChunk, CaptureConfig
from ..models.connection import ConnectionState, RetryPolicy
from ..models.provider import StreamingMessage
from ..models.transcription import TranscriptFragment
from .base import AbstractTranscriptionBackend, ErrorCallback, FragmentCallback
from .speakers import SpeakerRegistry

logger = logging.getLogger(__name__)

# Anything with aiohttp.ClientWebSocketResponse's async iteration, send_str and close
SocketConnector = Callable[[str], Awaitable[Any]]

INFORMATIONAL_EVENTS = frozenset({"utterance_end", "speech_started", "heartbeat"})


class RealtimeSocketBackend(AbstractTranscriptionBackend):
    """Streams base64 PCM frames over a socket and receives transcript events.

    Capture keeps running across reconnects; audio captured while the
    socket is down is dropped.
    """

    name = "realtime"
    default_retry_policy = RetryPolicy(max_attempts=3, base_delay_seconds=1.0, multiplier=2.0)

    def __init__(
        self,
        url: Optional[str],
        on_fragment: FragmentCallback,
        on_error: Optional[ErrorCallback] = None,
        speakers: Optional[SpeakerRegistry] = None,
        retry_policy: Optional[RetryPolicy] = None,
        send_interval: float = 0.3,
        capture_config: Optional[CaptureConfig] = None,
        capture_factory: CaptureFactory = AudioCaptureSession,
        connector: Optional[SocketConnector] = None,
        connect_timeout: float = 10.0,
        on_state_change: Optional[Callable[[ConnectionState], None]] = None,
    ):
        super().__init__(on_fragment, on_error, speakers, retry_policy, on_state_change)
        self.url = url
        self.send_interval = send_interval
        self.capture_config = replace(capture_config or CaptureConfig(), chunk_interval_seconds=0.25)
        self.capture_factory = capture_factory
        self.connector = connector or self._aiohttp_connect
        self.connect_timeout = connect_timeout

        self.frames_sent = 0
        self._http: Optional[aiohttp.ClientSession] = None
        self._ws: Optional[Any] = None
        self._chunks: List[bytes] = []
        self._capture: Optional[AudioCaptureSession] = None
        self._send_task: Optional[asyncio.Task] = None
        self._receive_task: Optional[asyncio.Task] = None
        self._generation = 0

    def is_supported(self) -> bool:
        return bool(self.url)

    @property
    def is_connected(self) -> bool:
        return self._ws is not None and not self._ws.closed

    async def start(self) -> None:
        if self.is_listening:
            logger.info(f"[{self.name}] Already listening")
            return
        if not self.is_supported():
            self._fail_terminally(UnsupportedBackend("No realtime socket URL configured"))
            return

        await self._wait_for_release()
        self._generation += 1
        generation = self._generation
        self._chunks = []
        self.is_listening = True
        self.supervisor.begin()
        logger.info(f"[{self.name}] Starting, socket {self.url}")

        capture = self.capture_factory(
            on_chunk=self._on_chunk,
            config=self.capture_config,
            on_error=self._on_capture_error,
            name=self.name,
        )
        try:
            await capture.start()
        except TranscriptionError as e:
            logger.error(f"[{self.name}] Could not capture audio: {e.message}")
            if generation == self._generation:
                self.supervisor.report_failure(e)
            return
        if self._stopped_since(generation):
            logger.info(f"[{self.name}] Stopped while the microphone was opening, releasing it")
            await capture.stop()
            return
        self._capture = capture

        loop = asyncio.get_running_loop()
        self._send_task = loop.create_task(self._send_loop(generation))
        try:
            await self._connect(generation)
        except TranscriptionError as e:
            if generation == self._generation:
                self.supervisor.report_failure(e)

    async def stop(self) -> None:
        self.supervisor.cancel()
        await self._wait_for_release()
        self._generation += 1
        if not self.is_listening and self._capture is None and self._ws is None:
            return
        logger.info(f"[{self.name}] Stopping")
        self.is_listening = False
        await self._teardown()

    def _stopped_since(self, generation: int) -> bool:
        return generation != self._generation or not self.is_listening

    async def _aiohttp_connect(self, url: str) -> aiohttp.ClientWebSocketResponse:
        if self._http is None or self._http.closed:
            self._http = aiohttp.ClientSession()
        return await self._http.ws_connect(url, heartbeat=30.0)

    async def _connect(self, generation: int) -> None:
        if self._stopped_since(generation):
            return
        try:
            ws = await asyncio.wait_for(self.connector(self.url), self.connect_timeout)
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            raise TransportError(f"Could not open realtime socket: {e}") from e

        if self._stopped_since(generation):
            await ws.close()
            return
        self._ws = ws
        logger.info(f"[{self.name}] Socket open, waiting for provider")
        self._receive_task = asyncio.get_running_loop().create_task(self._receive_loop(ws, generation))

    async def _receive_loop(self, ws: Any, generation: int) -> None:
        try:
            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    self._handle_message(msg.data)
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    logger.warning(f"[{self.name}] Socket error: {ws.exception()}")
                    break
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning(f"[{self.name}] Socket receive failed: {e}")

        if generation != self._generation or not self.is_listening or self._ws is not ws:
            return
        self._ws = None
        self.supervisor.report_failure(TransportError("Realtime connection closed unexpectedly"))

    def _handle_message(self, raw: str) -> None:
        try:
            message = StreamingMessage.model_validate_json(raw)
        except ValidationError as e:
            logger.warning(f"[{self.name}] Dropping unparseable message: {e.error_count()} error(s)")
            return

        if message.type == "connected":
            logger.info(f"[{self.name}] Provider connected")
            self.supervisor.mark_connected()
        elif message.type == "transcript":
            self._handle_transcript(message)
        elif message.type == "error":
            logger.error(f"[{self.name}] Provider error: {message.error}")
            self._drop_connection(TransportError(message.error or "Realtime provider error"))
        elif message.type in INFORMATIONAL_EVENTS:
            logger.debug(f"[{self.name}] {message.type}")
        else:
            logger.debug(f"[{self.name}] Ignoring message type {message.type}")

    def _handle_transcript(self, message: StreamingMessage) -> None:
        build = TranscriptFragment.final if message.is_final else TranscriptFragment.interim
        confidence = message.confidence or None
        if message.speakers:
            fragments = [
                build(
                    text=segment.text,
                    confidence=segment.confidence or confidence,
                    speaker=self.speakers.ref(segment.speaker_tag),
                    source=self.name,
                )
                for segment in message.speakers
            ]
        elif message.transcript:
            fragments = [build(text=message.transcript, confidence=confidence, source=self.name)]
        else:
            fragments = []

        for fragment in fragments:
            self._emit(fragment)
        self.supervisor.mark_success()

    def _drop_connection(self, error: TranscriptionError) -> None:
        ws, self._ws = self._ws, None
        if ws is not None:
            asyncio.get_running_loop().create_task(ws.close())
        self.supervisor.report_failure(error)

    def _on_chunk(self, chunk: AudioChunk) -> None:
        if chunk.audio_data:
            self._chunks.append(chunk.audio_data)

    def _on_capture_error(self, error: TranscriptionError) -> None:
        logger.error(f"[{self.name}] Capture failed: {error.message}")
        self._fail_terminally(error)

    async def _send_loop(self, generation: int) -> None:
        while self.is_listening and generation == self._generation:
            await asyncio.sleep(self.send_interval)
            await self._send_pending()

    async def _send_pending(self) -> None:
        if not self._chunks:
            return
        pending, self._chunks = self._chunks, []
        ws = self._ws
        if ws is None or ws.closed:
            logger.debug(f"[{self.name}] Socket not open, dropping {len(pending)} chunk(s)")
            return

        frame = {
            "type": "audio",
            "audio": base64.b64encode(b"".join(pending)).decode("ascii"),
            "timestamp": int(time.time() * 1000),
        }
        try:
            await ws.send_str(json.dumps(frame))
            self.frames_sent += 1
        except (aiohttp.ClientError, OSError) as e:
            # the receive loop notices the closed socket and reconnects
            logger.warning(f"[{self.name}] Send failed: {e}")

    async def _restart(self) -> None:
        if not self.is_listening:
            return
        generation = self._generation
        await self._close_socket()
        await self._connect(generation)

    async def _close_socket(self) -> None:
        ws, self._ws = self._ws, None
        if ws is not None and not ws.closed:
            await ws.close()
        task, self._receive_task = self._receive_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _teardown(self) -> None:
        task, self._send_task = self._send_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        await self._close_socket()
        capture, self._capture = self._capture, None
        if capture is not None:
            await capture.stop()
        self._chunks = []
        if self._http is not None and not self._http.closed:
            await self._http.close()
        self._http = None

    async def _release(self) -> None:
        await self._teardown()
