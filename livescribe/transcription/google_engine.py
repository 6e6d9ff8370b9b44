"""Google Speech-to-Text streaming recognition engine."""

import logging
import queue
import threading
from pathlib import Path
from typing import Iterator, Optional

from google.api_core import exceptions as gax_exceptions
from google.cloud import speech
from google.oauth2 import service_account

from ..audio.capture import AudioCaptureSession, CaptureFactory
from ..errors import PermissionDenied, TranscriptionError
from ..models.audio import AudioChunk, CaptureConfig
from .recognition import (
    AUDIO_CAPTURE,
    NETWORK,
    NO_SPEECH,
    NOT_ALLOWED,
    SERVICE_NOT_ALLOWED,
    EngineEnded,
    EngineError,
    EngineResults,
    EngineStarted,
    RecognitionAlternative,
    RecognitionEngine,
)

logger = logging.getLogger(__name__)


class GoogleStreamingRecognitionEngine(RecognitionEngine):
    """Streams microphone audio to Google and posts interim/final results.

    The gRPC stream is blocking, so it runs on a worker thread fed by a
    queue of PCM chunks from this engine's own capture session.
    """

    def __init__(self,
                 credentials_path: Optional[str],
                 language: str = "en-US",
                 capture_config: Optional[CaptureConfig] = None,
                 capture_factory: CaptureFactory = AudioCaptureSession,
                 interim_results: bool = True,
                 enable_automatic_punctuation: bool = True,
                 model: str = "latest_long",
                 connect_grace_seconds: float = 2.0):
        """Initialize Google streaming engine.

        Args:
            credentials_path: Path to Google Cloud service account JSON file
            language: Language code (e.g., 'en-US', 'ja-JP')
            capture_config: Capture settings; chunks of 100ms keep latency low
            capture_factory: Builds the capture session (injectable for tests)
            connect_grace_seconds: A stream that survives this long without an
                error counts as listening even if nobody has spoken yet
        """
        super().__init__()
        self.credentials_path = credentials_path
        self.language = language
        self.capture_config = capture_config or CaptureConfig(chunk_interval_seconds=0.1)
        self.capture_factory = capture_factory
        self.connect_grace_seconds = connect_grace_seconds
        self.client = None

        self.streaming_config = speech.StreamingRecognitionConfig(
            config=speech.RecognitionConfig(
                encoding=speech.RecognitionConfig.AudioEncoding.LINEAR16,
                sample_rate_hertz=self.capture_config.sample_rate,
                audio_channel_count=self.capture_config.channels,
                language_code=language,
                enable_automatic_punctuation=enable_automatic_punctuation,
                model=model,
            ),
            interim_results=interim_results,
        )

        self.capture: Optional[AudioCaptureSession] = None
        self._audio_queue: "queue.Queue[Optional[bytes]]" = queue.Queue()
        self._aborted = threading.Event()
        self._started_lock = threading.Lock()
        self._started = False
        self._worker: Optional[threading.Thread] = None

    def is_supported(self) -> bool:
        return bool(self.credentials_path) and Path(self.credentials_path).is_file()

    def _ensure_client(self) -> None:
        if self.client is not None:
            return
        logger.info(f"Loading Google credentials from: {self.credentials_path}")
        credentials = service_account.Credentials.from_service_account_file(self.credentials_path)
        self.client = speech.SpeechClient(credentials=credentials)
        logger.info(f"Using Google Cloud project: {credentials.project_id}")

    async def start(self) -> None:
        if self._worker is not None and self._worker.is_alive():
            logger.warning("Google stream already running")
            return

        self._ensure_client()
        self._audio_queue = queue.Queue()
        self._aborted = aborted = threading.Event()
        self._started = False

        capture = self.capture = self.capture_factory(
            on_chunk=self._on_chunk,
            config=self.capture_config,
            on_error=self._on_capture_error,
            name="google",
        )
        try:
            await capture.start()
        except PermissionDenied:
            raise
        except TranscriptionError as e:
            logger.error(f"Microphone unavailable for Google stream: {e.message}")
            self.post(EngineError(AUDIO_CAPTURE, e.message))
            self.post(EngineEnded())
            return

        if aborted.is_set():
            logger.info("Google stream aborted while the microphone was opening, releasing it")
            await capture.stop()
            if self.capture is capture:
                self.capture = None
            return

        self._worker = threading.Thread(
            target=self._stream,
            args=(self._audio_queue, aborted),
            daemon=True,
            name="GoogleStream",
        )
        self._worker.start()

    async def stop(self) -> None:
        """Stop capture; the stream drains, posts its last results and ends."""
        if self.capture is not None:
            await self.capture.stop()
            self.capture = None

    async def abort(self) -> None:
        self._aborted.set()
        self._audio_queue.put(None)
        if self.capture is not None:
            await self.capture.stop()
            self.capture = None

    def _on_chunk(self, chunk: AudioChunk) -> None:
        if chunk.audio_data:
            self._audio_queue.put(chunk.audio_data)
        if chunk.final:
            self._audio_queue.put(None)

    def _on_capture_error(self, error: TranscriptionError) -> None:
        self.post(EngineError(AUDIO_CAPTURE, error.message))
        self._audio_queue.put(None)

    def _mark_started(self, aborted: threading.Event) -> None:
        with self._started_lock:
            if self._started or aborted.is_set():
                return
            self._started = True
        self.post(EngineStarted())

    def _requests(self, audio_queue: "queue.Queue[Optional[bytes]]",
                  aborted: threading.Event) -> Iterator[speech.StreamingRecognizeRequest]:
        while True:
            data = audio_queue.get()
            if data is None or aborted.is_set():
                return
            yield speech.StreamingRecognizeRequest(audio_content=data)

    def _stream(self, audio_queue: "queue.Queue[Optional[bytes]]", aborted: threading.Event) -> None:
        """Worker thread: run one streaming_recognize call to completion."""
        heard_speech = False
        grace_timer = threading.Timer(self.connect_grace_seconds, self._mark_started, args=(aborted,))
        grace_timer.daemon = True
        grace_timer.start()
        try:
            responses = self.client.streaming_recognize(
                config=self.streaming_config,
                requests=self._requests(audio_queue, aborted),
            )
            for response in responses:
                if aborted.is_set():
                    break
                self._mark_started(aborted)
                results = [
                    RecognitionAlternative(
                        transcript=result.alternatives[0].transcript,
                        is_final=result.is_final,
                        # 0.0 means "no score" for interim results
                        confidence=result.alternatives[0].confidence or None,
                    )
                    for result in response.results
                    if result.alternatives
                ]
                if results:
                    heard_speech = True
                    logger.debug(f"Google stream results: {[r.transcript for r in results]}")
                    self.post(EngineResults(results=results))
        except (gax_exceptions.PermissionDenied, gax_exceptions.Unauthenticated) as e:
            logger.error(f"Google Speech rejected credentials: {e}")
            self.post(EngineError(NOT_ALLOWED, str(e)))
        except (gax_exceptions.OutOfRange, gax_exceptions.DeadlineExceeded) as e:
            # stream duration limit reached; treated as a natural end
            logger.info(f"Google stream reached its time limit: {e}")
        except gax_exceptions.ServiceUnavailable as e:
            logger.error(f"Google Speech service unavailable: {e}")
            self.post(EngineError(NETWORK, str(e)))
        except gax_exceptions.GoogleAPICallError as e:
            logger.error(f"Google Speech API call error: {e}")
            self.post(EngineError(SERVICE_NOT_ALLOWED, str(e)))
        finally:
            grace_timer.cancel()
            if not aborted.is_set():
                if not heard_speech:
                    self.post(EngineError(NO_SPEECH))
                self.post(EngineEnded())
