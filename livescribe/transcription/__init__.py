"""Transcription backends, assembly and speaker resolution for LiveScribe."""

from .assembler import TranscriptAssembler
from .base import AbstractTranscriptionBackend
from .chunked import ChunkedUploadBackend
from .native import NativeRecognitionBackend
from .publisher import ENTRY_TOPIC, ERROR_TOPIC, INTERIM_TOPIC, TranscriptPublisher
from .realtime import RealtimeSocketBackend
from .recognition import RecognitionEngine
from .speakers import SpeakerRegistry
from .streaming import StreamingBackend
from .supervisor import ConnectionSupervisor

__all__ = [
    "AbstractTranscriptionBackend",
    "ChunkedUploadBackend",
    "ConnectionSupervisor",
    "NativeRecognitionBackend",
    "RealtimeSocketBackend",
    "RecognitionEngine",
    "SpeakerRegistry",
    "StreamingBackend",
    "TranscriptAssembler",
    "TranscriptPublisher",
    "ENTRY_TOPIC",
    "ERROR_TOPIC",
    "INTERIM_TOPIC",
]
