"""Pytest configuration and fixtures for LiveScribe tests."""

import asyncio
import json
import logging
from collections import deque
from types import SimpleNamespace
from typing import Any, List, Optional
from unittest.mock import Mock, patch

import aiohttp
import numpy as np
import pytest
from pubsub import pub

from livescribe.errors import TranscriptionError
from livescribe.models.audio import AudioChunk, CaptureConfig
from livescribe.models.provider import SpeakerSegment, TranscriptionPayload
from livescribe.transcription.recognition import RecognitionEngine

# Configure logging for tests
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: fast tests with no hardware or network")
    config.addinivalue_line("markers", "hardware: tests that need a real microphone")


async def settle(seconds: float = 0.0, spins: int = 10) -> None:
    """Let scheduled callbacks and tasks run."""
    if seconds:
        await asyncio.sleep(seconds)
    for _ in range(spins):
        await asyncio.sleep(0)


class FakeCaptureSession:
    """Stands in for AudioCaptureSession; tests push audio with ``feed``."""

    def __init__(self, on_chunk, config: Optional[CaptureConfig] = None, on_error=None,
                 name: str = "capture", final_audio: bytes = b"",
                 start_error: Optional[TranscriptionError] = None, gate: Optional[asyncio.Event] = None):
        self.on_chunk = on_chunk
        self.on_error = on_error
        self.config = config or CaptureConfig()
        self.name = name
        self.final_audio = final_audio
        self.start_error = start_error
        self.gate = gate
        self.is_active = False
        self.sequence = 0
        self.stop_calls = 0

    async def start(self) -> None:
        if self.gate is not None:
            await self.gate.wait()
        if self.start_error is not None:
            raise self.start_error
        self.is_active = True

    async def stop(self) -> None:
        self.stop_calls += 1
        if not self.is_active:
            return
        self.is_active = False
        self._emit(self.final_audio, final=True)

    def feed(self, audio: bytes) -> None:
        self._emit(audio)

    def fail(self, error: TranscriptionError) -> None:
        self.on_error(error)

    def _emit(self, audio: bytes, final: bool = False) -> None:
        self.sequence += 1
        self.on_chunk(AudioChunk(
            chunk_id=f"{self.name}_chunk_{self.sequence}",
            audio_data=audio,
            timestamp=0.0,
            sequence_number=self.sequence,
            final=final,
        ))


class FakeCaptureFactory:
    """Callable with AudioCaptureSession's signature; remembers every session built.

    While ``gate`` is set to an unset asyncio.Event, new sessions block in
    ``start()`` until it is set, like a pending permission prompt.
    """

    def __init__(self, final_audio: bytes = b"", start_errors: Optional[List[TranscriptionError]] = None):
        self.final_audio = final_audio
        self.start_errors = deque(start_errors or [])
        self.sessions: List[FakeCaptureSession] = []
        self.gate: Optional[asyncio.Event] = None

    def __call__(self, on_chunk, config=None, on_error=None, name="capture", **kwargs) -> FakeCaptureSession:
        error = self.start_errors.popleft() if self.start_errors else None
        session = FakeCaptureSession(on_chunk, config, on_error, name,
                                     final_audio=self.final_audio, start_error=error, gate=self.gate)
        self.sessions.append(session)
        return session

    @property
    def last(self) -> FakeCaptureSession:
        return self.sessions[-1]


class FakeProviderClient:
    """Scripted TranscriptionProviderClient. Responses are payloads or exceptions."""

    def __init__(self, responses: Optional[List[Any]] = None,
                 url: str = "http://provider.test/transcribe",
                 stream_url: str = "http://provider.test/stream"):
        self.url = url
        self.stream_url = stream_url
        self.responses = deque(responses or [])
        self.calls: List[dict] = []
        self.closed = False

    async def transcribe(self, audio: bytes, mime_type: str = "audio/wav",
                         session_id: Optional[str] = None, interim: bool = False) -> TranscriptionPayload:
        self.calls.append({"audio": audio, "mime_type": mime_type, "session_id": session_id})
        return self._next()

    async def transcribe_stream_chunk(self, audio: bytes, session_id: str,
                                      mime_type: str = "audio/wav") -> TranscriptionPayload:
        self.calls.append({"audio": audio, "mime_type": mime_type, "session_id": session_id})
        return self._next()

    async def close(self) -> None:
        self.closed = True

    def _next(self) -> TranscriptionPayload:
        if not self.responses:
            return TranscriptionPayload()
        response = self.responses.popleft()
        if isinstance(response, Exception):
            raise response
        return response


class FakeRecognitionEngine(RecognitionEngine):
    """RecognitionEngine driven by the test. ``on_start`` runs after each start."""

    def __init__(self, supported: bool = True, start_errors: Optional[List[TranscriptionError]] = None,
                 on_start=None):
        super().__init__()
        self.supported = supported
        self.start_errors = deque(start_errors or [])
        self.on_start = on_start
        self.start_calls = 0
        self.abort_calls = 0
        self.stop_calls = 0
        self.running = False
        self.gate: Optional[asyncio.Event] = None

    def is_supported(self) -> bool:
        return self.supported

    async def start(self) -> None:
        self.start_calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.start_errors:
            raise self.start_errors.popleft()
        self.running = True
        if self.on_start:
            self.on_start(self)

    async def stop(self) -> None:
        self.stop_calls += 1
        self.running = False

    async def abort(self) -> None:
        self.abort_calls += 1
        self.running = False


class FakeSocket:
    """Minimal stand-in for aiohttp's ClientWebSocketResponse."""

    def __init__(self):
        self.incoming: asyncio.Queue = asyncio.Queue()
        self.sent: List[dict] = []
        self.closed = False

    def push(self, message: Any) -> None:
        data = message if isinstance(message, str) else json.dumps(message)
        self.incoming.put_nowait(SimpleNamespace(type=aiohttp.WSMsgType.TEXT, data=data))

    def drop(self) -> None:
        """Server-side close."""
        self.closed = True
        self.incoming.put_nowait(None)

    def __aiter__(self):
        return self

    async def __anext__(self):
        message = await self.incoming.get()
        if message is None:
            raise StopAsyncIteration
        return message

    async def send_str(self, data: str) -> None:
        if self.closed:
            raise ConnectionResetError("socket closed")
        self.sent.append(json.loads(data))

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            self.incoming.put_nowait(None)

    def exception(self):
        return None


class FakeConnector:
    """Socket connector returning FakeSockets, or raising scripted errors."""

    def __init__(self, errors: Optional[List[Exception]] = None):
        self.errors = deque(errors or [])
        self.sockets: List[FakeSocket] = []
        self.urls: List[str] = []
        self.gate: Optional[asyncio.Event] = None

    async def __call__(self, url: str) -> FakeSocket:
        self.urls.append(url)
        if self.gate is not None:
            await self.gate.wait()
        if self.errors:
            raise self.errors.popleft()
        socket = FakeSocket()
        self.sockets.append(socket)
        return socket

    @property
    def last(self) -> FakeSocket:
        return self.sockets[-1]


def speaker_payload(*segments, confidence: Optional[float] = None) -> TranscriptionPayload:
    """Payload with one SpeakerSegment per (tag, text) pair."""
    return TranscriptionPayload(
        transcript=" ".join(text for _, text in segments),
        confidence=confidence,
        speakers=[SpeakerSegment(speaker_tag=tag, text=text) for tag, text in segments],
    )


@pytest.fixture(autouse=True)
def clean_pubsub():
    """Drop pubsub listeners between tests."""
    yield
    pub.unsubAll()


@pytest.fixture
def capture_factory():
    return FakeCaptureFactory()


@pytest.fixture
def speech_audio(sample_audio_chunk):
    """Half a second of non-silent PCM."""
    return sample_audio_chunk * 8


@pytest.fixture
def sample_audio_chunk():
    """Generate a sample audio chunk for testing."""
    # 1024 samples of 16-bit audio (sine wave)
    sample_rate = 16000
    duration = 1024 / sample_rate
    t = np.linspace(0, duration, 1024, False)
    wave_data = np.sin(2 * np.pi * 440 * t)
    audio_data = (wave_data * 32767).astype(np.int16)
    return audio_data.tobytes()


@pytest.fixture
def config_file(tmp_path):
    """Write YAML text to a config file and return its path."""
    def write(text: str) -> str:
        path = tmp_path / "livescribe.yaml"
        path.write_text(text, encoding="utf-8")
        return str(path)
    return write


@pytest.fixture
def mock_pyaudio():
    """Mock PyAudio for testing without actual audio hardware."""
    with patch('pyaudio.PyAudio') as mock_pyaudio_class:
        mock_pyaudio_instance = Mock()
        mock_stream = Mock()

        mock_stream.read.return_value = b'\x00' * 2048  # Silent audio
        mock_pyaudio_instance.open.return_value = mock_stream
        mock_pyaudio_instance.get_default_input_device_info.return_value = {'name': 'Mock Microphone'}
        mock_pyaudio_class.return_value = mock_pyaudio_instance

        yield {
            'class': mock_pyaudio_class,
            'instance': mock_pyaudio_instance,
            'stream': mock_stream
        }
