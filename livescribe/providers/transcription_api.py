"""HTTP client for the transcription provider (batch and streaming chunk endpoints)."""

import asyncio
import json
import logging
from typing import Optional

import aiohttp
from pydantic import ValidationError

from ..audio.clip import WAV_MIME_TYPE
from ..errors import ParseError, PayloadError, TransportError
from ..models.provider import TranscriptionPayload, TranscriptionResponse

logger = logging.getLogger(__name__)

DEFAULT_MIN_PAYLOAD_BYTES = 100
DEFAULT_MAX_PAYLOAD_BYTES = 20 * 1024 * 1024

ALLOWED_MIME_TYPES = frozenset({
    "audio/webm",
    "audio/wav",
    "audio/mp3",
    "audio/mpeg",
    "audio/aac",
    "audio/ogg",
    "audio/flac",
})

PAYLOAD_STATUSES = frozenset({400, 413, 415, 422})
AUTH_STATUSES = frozenset({401, 403})

_FILE_EXTENSIONS = {
    "audio/webm": "webm",
    "audio/wav": "wav",
    "audio/mp3": "mp3",
    "audio/mpeg": "mp3",
    "audio/aac": "aac",
    "audio/ogg": "ogg",
    "audio/flac": "flac",
}


def parse_transcription_response(body: str) -> TranscriptionPayload:
    """Parse a ``{success, result, error}`` body.

    Raises:
        ParseError: body is not JSON or does not match the schema
        TransportError: provider reported ``success: false``
    """
    try:
        response = TranscriptionResponse.model_validate(json.loads(body))
    except (json.JSONDecodeError, ValidationError) as e:
        raise ParseError(f"Malformed transcription response: {e}") from e

    if not response.success:
        raise TransportError(f"Transcription failed: {response.error or 'unknown provider error'}")
    return response.result or TranscriptionPayload()


class TranscriptionProviderClient:
    """Uploads audio clips and returns parsed provider payloads.

    Owns one aiohttp session, created lazily and released by ``close()``.
    """

    def __init__(self,
                 url: str,
                 stream_url: Optional[str] = None,
                 timeout_seconds: float = 30.0,
                 min_payload_bytes: int = DEFAULT_MIN_PAYLOAD_BYTES,
                 max_payload_bytes: int = DEFAULT_MAX_PAYLOAD_BYTES):
        """Initialize provider client.

        Args:
            url: Batch transcription endpoint
            stream_url: Endpoint for streaming chunk uploads (defaults to ``url``)
            timeout_seconds: Total timeout per request
        """
        self.url = url
        self.stream_url = stream_url or url
        self.timeout_seconds = timeout_seconds
        self.min_payload_bytes = min_payload_bytes
        self.max_payload_bytes = max_payload_bytes
        self._session: Optional[aiohttp.ClientSession] = None
        self.total_requests = 0

    async def open(self) -> None:
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
            self._session = aiohttp.ClientSession(timeout=timeout)

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def __aenter__(self) -> "TranscriptionProviderClient":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    def validate_payload(self, audio: bytes, mime_type: str) -> None:
        size = len(audio)
        if size < self.min_payload_bytes:
            raise PayloadError(f"Audio clip too small ({size} bytes, minimum {self.min_payload_bytes})")
        if size > self.max_payload_bytes:
            raise PayloadError(f"Audio clip too large ({size} bytes, maximum {self.max_payload_bytes})")
        base_type = mime_type.split(";", 1)[0].strip().lower()
        if base_type not in ALLOWED_MIME_TYPES:
            raise PayloadError(f"Unsupported audio type: {mime_type}")

    async def transcribe(self, audio: bytes, mime_type: str = WAV_MIME_TYPE,
                         session_id: Optional[str] = None,
                         interim: bool = False) -> TranscriptionPayload:
        """Upload a clip to the batch endpoint."""
        return await self._upload(self.url, audio, mime_type, session_id, interim)

    async def transcribe_stream_chunk(self, audio: bytes, session_id: str,
                                      mime_type: str = WAV_MIME_TYPE) -> TranscriptionPayload:
        """Upload one streaming chunk, tagged with its session id."""
        return await self._upload(self.stream_url, audio, mime_type, session_id, True)

    async def _upload(self, url: str, audio: bytes, mime_type: str,
                      session_id: Optional[str], interim: bool) -> TranscriptionPayload:
        self.validate_payload(audio, mime_type)
        await self.open()

        base_type = mime_type.split(";", 1)[0].strip().lower()
        data = aiohttp.FormData()
        data.add_field(
            "audio",
            audio,
            filename=f"recording.{_FILE_EXTENSIONS.get(base_type, 'bin')}",
            content_type=mime_type,
        )
        if session_id:
            data.add_field("sessionId", session_id)
        if interim:
            data.add_field("interim", "true")

        self.total_requests += 1
        logger.debug(f"POST {url}: {len(audio)} bytes ({mime_type}), session={session_id}")
        try:
            async with self._session.post(url, data=data) as response:
                body = await response.text()
                status = response.status
        except asyncio.TimeoutError as e:
            raise TransportError(f"Transcription request timed out after {self.timeout_seconds}s") from e
        except aiohttp.ClientError as e:
            raise TransportError(f"Network error: {e}") from e

        if status != 200:
            self._raise_for_status(status, body)
        return parse_transcription_response(body)

    def _raise_for_status(self, status: int, body: str) -> None:
        detail = body.strip()[:200]
        if status in PAYLOAD_STATUSES:
            raise PayloadError(f"Provider rejected audio ({status}): {detail}")
        if status in AUTH_STATUSES:
            raise TransportError(f"Provider refused credentials ({status}): {detail}",
                                 retryable=False, status=status)
        if status == 408 or status == 429 or status >= 500:
            raise TransportError(f"Provider unavailable ({status}): {detail}", retryable=True, status=status)
        raise TransportError(f"Unexpected provider response ({status}): {detail}",
                             retryable=False, status=status)
