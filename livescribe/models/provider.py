"""Wire models for transcription provider payloads."""

from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class SpeakerSegment(BaseModel):
    """One diarized segment. ``speakerTag`` is 1-based."""
    model_config = ConfigDict(populate_by_name=True)

    speaker_tag: int = Field(alias="speakerTag")
    text: str = ""
    start_time: Optional[Union[str, float]] = Field(default=None, alias="startTime")
    end_time: Optional[Union[str, float]] = Field(default=None, alias="endTime")
    confidence: Optional[float] = None


class TranscriptionPayload(BaseModel):
    transcript: Optional[str] = None
    text: Optional[str] = None  # some providers use "text" for the flat transcript
    confidence: Optional[float] = None
    speakers: Optional[List[SpeakerSegment]] = None

    @property
    def flat_text(self) -> str:
        return self.transcript or self.text or ""


class TranscriptionResponse(BaseModel):
    """Batch endpoint response: ``{success, result, error}``."""
    success: bool = False
    result: Optional[TranscriptionPayload] = None
    error: Optional[str] = None
    source: Optional[str] = None


class StreamingMessage(BaseModel):
    """Server-push event from a StreamingConnection."""
    type: str
    transcript: Optional[str] = None
    is_final: bool = False
    confidence: Optional[float] = None
    speakers: List[SpeakerSegment] = Field(default_factory=list)
    error: Optional[str] = None
    timestamp: Optional[Union[str, float]] = None


class TokenizerWord(BaseModel):
    """One morpheme. Missing reading/baseForm mean "same as surface"."""
    model_config = ConfigDict(populate_by_name=True)

    surface: str
    reading: Optional[str] = None
    pos: str = ""
    base_form: Optional[str] = Field(default=None, alias="baseForm")
    is_content: bool = Field(default=False, alias="isContent")


class TokenizerResponse(BaseModel):
    words: List[TokenizerWord]
