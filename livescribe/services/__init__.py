"""Services layer for LiveScribe."""

from .transcription_service import TranscriptionService

__all__ = [
    'TranscriptionService',
]
