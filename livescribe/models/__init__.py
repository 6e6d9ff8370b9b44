"""Data models for the LiveScribe application."""

from .audio import AudioChunk, AudioStats, CaptureConfig
from .connection import ConnectionState, RetryBudget, RetryPolicy
from .provider import SpeakerSegment, StreamingMessage, TranscriptionPayload, TranscriptionResponse
from .transcription import (
    DEFAULT_CONFIDENCE,
    Finality,
    SpeakerRef,
    TranscriptEntry,
    TranscriptFragment,
)

__all__ = [
    "AudioChunk",
    "AudioStats",
    "CaptureConfig",
    "ConnectionState",
    "RetryBudget",
    "RetryPolicy",
    "SpeakerSegment",
    "StreamingMessage",
    "TranscriptionPayload",
    "TranscriptionResponse",
    "DEFAULT_CONFIDENCE",
    "Finality",
    "SpeakerRef",
    "TranscriptEntry",
    "TranscriptFragment",
]
