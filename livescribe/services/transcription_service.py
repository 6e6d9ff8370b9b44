"""Transcription service that owns the active backend and the shared transcript."""

import logging
from typing import Callable, List, Optional

from ..audio.capture import AudioCaptureSession, CaptureFactory
from ..audio.clip import guess_mime_type, read_audio_file
from ..config import BACKEND_KINDS, LiveScribeConfig
from ..errors import BackendError, UnsupportedBackend
from ..models.connection import ConnectionState
from ..models.transcription import TranscriptEntry
from ..providers.transcription_api import (
    DEFAULT_MAX_PAYLOAD_BYTES,
    DEFAULT_MIN_PAYLOAD_BYTES,
    TranscriptionProviderClient,
)
from ..transcription.assembler import DEFAULT_SPEAKER, TranscriptAssembler
from ..transcription.base import AbstractTranscriptionBackend, fragments_from_payload
from ..transcription.chunked import ChunkedUploadBackend
from ..transcription.google_engine import GoogleStreamingRecognitionEngine
from ..transcription.native import NativeRecognitionBackend
from ..transcription.publisher import TranscriptPublisher
from ..transcription.realtime import RealtimeSocketBackend, SocketConnector
from ..transcription.recognition import RecognitionEngine
from ..transcription.speakers import SpeakerRegistry
from ..transcription.streaming import StreamingBackend

logger = logging.getLogger(__name__)


class TranscriptionService:
    """Service that manages the transcription backend and its lifecycle.

    At most one backend is active; starting a different kind stops the
    current one first. All backends share one SpeakerRegistry and one
    TranscriptAssembler.
    """

    def __init__(self,
                 config: LiveScribeConfig,
                 publisher: Optional[TranscriptPublisher] = None,
                 client: Optional[TranscriptionProviderClient] = None,
                 capture_factory: CaptureFactory = AudioCaptureSession,
                 engine_factory: Optional[Callable[[], RecognitionEngine]] = None,
                 socket_connector: Optional[SocketConnector] = None):
        """Initialize transcription service.

        Args:
            config: Application configuration
            publisher: Publisher for transcript and error events
            client: Transcription provider client (built from config if omitted)
            capture_factory: Builds capture sessions for the backends
            engine_factory: Builds the recognition engine for the native backend
            socket_connector: Opens sockets for the realtime backend
        """
        self.config = config
        self.publisher = publisher or TranscriptPublisher()
        self.speakers = SpeakerRegistry()
        self.assembler = TranscriptAssembler(
            default_speaker=config.get('transcription.default_speaker', DEFAULT_SPEAKER),
            publisher=self.publisher,
        )
        self.client = client or self._create_provider_client()
        self.capture_factory = capture_factory
        self.engine_factory = engine_factory or self._create_google_engine
        self.socket_connector = socket_connector

        self.backend: Optional[AbstractTranscriptionBackend] = None
        self.last_error: Optional[BackendError] = None

    @property
    def is_listening(self) -> bool:
        return self.backend is not None and self.backend.is_listening

    @property
    def connection_state(self) -> ConnectionState:
        return self.backend.state if self.backend else ConnectionState.IDLE

    @property
    def entries(self) -> List[TranscriptEntry]:
        return self.assembler.entries

    async def start(self, kind: Optional[str] = None) -> None:
        """Start listening with the given backend kind (default from config)."""
        kind = kind or self.config.backend_kind
        if self.is_listening:
            if self.backend.name == kind:
                logger.info(f"Backend '{kind}' already listening")
                return
            logger.info(f"Switching backend: {self.backend.name} -> {kind}")
            await self.stop()

        self.last_error = None
        self.backend = self.create_backend(kind)
        logger.info(f"🎙️ Starting transcription with '{kind}' backend")
        await self.backend.start()

    async def stop(self) -> None:
        if self.backend is not None:
            await self.backend.stop()
        self.assembler.clear_interim()

    async def switch(self, kind: str) -> None:
        await self.stop()
        await self.start(kind)

    async def close(self) -> None:
        await self.stop()
        await self.client.close()

    async def transcribe_file(self, path: str) -> List[TranscriptEntry]:
        """Upload an audio file and append its entries to the transcript.

        Raises:
            PayloadError: file too small, too large or of an unsupported type
            TransportError: the provider could not be reached or failed
            ParseError: the provider's response could not be interpreted
        """
        audio = read_audio_file(path)
        mime_type = guess_mime_type(path)
        logger.info(f"Transcribing file {path} ({len(audio)} bytes, {mime_type})")
        payload = await self.client.transcribe(audio, mime_type)

        entries = []
        for fragment in fragments_from_payload(payload, self.speakers, source="file"):
            entry = self.assembler.on_fragment(fragment)
            if entry is not None:
                entries.append(entry)
        logger.info(f"File transcription produced {len(entries)} entries")
        return entries

    def create_backend(self, kind: str) -> AbstractTranscriptionBackend:
        if kind not in BACKEND_KINDS:
            raise UnsupportedBackend(f"Unknown transcription backend: {kind}")

        section = f'transcription.{kind}'
        continuous = bool(self.config.get('transcription.continuous', True))
        common = dict(
            on_fragment=self.assembler.on_fragment,
            on_error=self._on_backend_error,
            speakers=self.speakers,
            retry_policy=self.config.retry_policy(kind),
        )

        if kind == 'native':
            return NativeRecognitionBackend(
                engine=self.engine_factory(),
                continuous=continuous,
                restart_delay=float(self.config.get(f'{section}.restart_delay_seconds', 0.1)),
                **common,
            )
        if kind == 'chunked':
            return ChunkedUploadBackend(
                client=self.client,
                recording_duration=float(self.config.get(f'{section}.recording_duration_seconds', 5.0)),
                continuous=continuous,
                restart_delay=float(self.config.get(f'{section}.restart_delay_seconds', 0.1)),
                capture_config=self.config.capture_config(),
                capture_factory=self.capture_factory,
                **common,
            )
        if kind == 'streaming':
            return StreamingBackend(
                client=self.client,
                send_interval=float(self.config.get(f'{section}.send_interval_seconds', 1.0)),
                capture_config=self.config.capture_config(),
                capture_factory=self.capture_factory,
                **common,
            )
        return RealtimeSocketBackend(
            url=self.config.get('providers.transcription.socket_url'),
            send_interval=float(self.config.get(f'{section}.send_interval_seconds', 0.3)),
            capture_config=self.config.capture_config(),
            capture_factory=self.capture_factory,
            connector=self.socket_connector,
            **common,
        )

    def _on_backend_error(self, error: BackendError) -> None:
        if error.fatal:
            logger.error(f"Transcription stopped: {error.message}")
            self.last_error = error
            self.assembler.clear_interim()
        else:
            logger.warning(f"Transcription hiccup ({error.kind.value}): {error.message}")
        self.publisher.publish_error(error)

    def _create_provider_client(self) -> TranscriptionProviderClient:
        return TranscriptionProviderClient(
            url=self.config.get('providers.transcription.url', ''),
            stream_url=self.config.get('providers.transcription.stream_url'),
            timeout_seconds=float(self.config.get('providers.transcription.timeout_seconds', 30.0)),
            min_payload_bytes=int(self.config.get('providers.transcription.min_payload_bytes',
                                                  DEFAULT_MIN_PAYLOAD_BYTES)),
            max_payload_bytes=int(self.config.get('providers.transcription.max_payload_bytes',
                                                  DEFAULT_MAX_PAYLOAD_BYTES)),
        )

    def _create_google_engine(self) -> GoogleStreamingRecognitionEngine:
        credentials_path = self.config.get('google_cloud.credentials_path')
        language = self.config.get('transcription.language', 'en-US')
        logger.info(f"Initializing Google streaming engine ({language})")
        return GoogleStreamingRecognitionEngine(
            credentials_path=credentials_path,
            language=language,
            capture_factory=self.capture_factory,
        )
