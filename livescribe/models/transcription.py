"""Transcription-related data models."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

DEFAULT_CONFIDENCE = 0.8


class Finality(Enum):
    INTERIM = "interim"
    FINAL = "final"


@dataclass(frozen=True)
class SpeakerRef:
    """A diarized speaker: provider tag (1-based) and its resolved name."""
    tag: int
    name: str


@dataclass(frozen=True)
class TranscriptFragment:
    """One piece of transcribed text as produced by a backend."""
    text: str
    finality: Finality
    confidence: float = DEFAULT_CONFIDENCE
    timestamp: datetime = field(default_factory=datetime.now)
    speaker: Optional[SpeakerRef] = None
    source: str = ""  # backend name, for logging

    @property
    def is_final(self) -> bool:
        return self.finality is Finality.FINAL

    @classmethod
    def final(cls, text: str, confidence: Optional[float] = None,
              speaker: Optional[SpeakerRef] = None, source: str = "") -> "TranscriptFragment":
        return cls(
            text=text,
            finality=Finality.FINAL,
            confidence=DEFAULT_CONFIDENCE if confidence is None else confidence,
            speaker=speaker,
            source=source,
        )

    @classmethod
    def interim(cls, text: str, confidence: Optional[float] = None,
                speaker: Optional[SpeakerRef] = None, source: str = "") -> "TranscriptFragment":
        return cls(
            text=text,
            finality=Finality.INTERIM,
            confidence=DEFAULT_CONFIDENCE if confidence is None else confidence,
            speaker=speaker,
            source=source,
        )


@dataclass(frozen=True)
class TranscriptEntry:
    """A finalized transcript line, as shown to the user."""
    id: int
    speaker: str
    text: str
    timestamp: datetime
    is_current_user: bool
    confidence: float = DEFAULT_CONFIDENCE
    speaker_tag: Optional[int] = None

    @property
    def display_time(self) -> str:
        return self.timestamp.strftime("%H:%M:%S")
