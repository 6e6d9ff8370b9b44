"""Packaging of captured PCM chunks into uploadable clips."""

import io
import logging
import wave
from typing import Iterable

logger = logging.getLogger(__name__)

WAV_MIME_TYPE = "audio/wav"


def encode_wav(chunks: Iterable[bytes], sample_rate: int = 16000, channels: int = 1,
               sample_width: int = 2) -> bytes:
    """Concatenate PCM chunks into a single WAV clip.

    Returns ``b""`` when no audio was captured so callers can treat a
    zero-byte clip as "nothing to send".
    """
    pcm = b"".join(chunks)
    if not pcm:
        return b""

    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wf:
        wf.setnchannels(channels)
        wf.setsampwidth(sample_width)
        wf.setframerate(sample_rate)
        wf.writeframes(pcm)

    clip = buffer.getvalue()
    logger.debug(f"Encoded WAV clip: {len(pcm)} PCM bytes -> {len(clip)} bytes")
    return clip


def read_audio_file(path: str) -> bytes:
    with open(path, "rb") as f:
        return f.read()


def guess_mime_type(path: str) -> str:
    suffix = path.rsplit(".", 1)[-1].lower() if "." in path else ""
    return {
        "wav": "audio/wav",
        "webm": "audio/webm",
        "mp3": "audio/mp3",
        "ogg": "audio/ogg",
        "flac": "audio/flac",
        "aac": "audio/aac",
    }.get(suffix, "application/octet-stream")
