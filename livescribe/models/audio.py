"""Audio-related data models."""

from dataclasses import dataclass
from typing import Optional


@dataclass
class CaptureConfig:
    """Fixed capture constraints plus the chunk emission cadence."""
    sample_rate: int = 16000
    channels: int = 1
    chunk_interval_seconds: float = 1.0
    frames_per_read: int = 1024
    echo_cancellation: bool = True
    noise_suppression: bool = True
    auto_gain_control: bool = True

    @property
    def bytes_per_second(self) -> int:
        # 16-bit samples
        return self.sample_rate * self.channels * 2


@dataclass
class AudioChunk:
    """Raw PCM chunk emitted by a capture session."""
    chunk_id: str
    audio_data: bytes
    timestamp: float  # Unix timestamp when chunk was emitted
    sequence_number: int
    sample_rate: int = 16000
    channels: int = 1
    chunk_duration_ms: Optional[int] = None
    peak_level: float = 0.0
    final: bool = False  # True for the chunk flushed by stop()

    def __post_init__(self):
        """Calculate chunk duration if not provided."""
        if self.chunk_duration_ms is None:
            bytes_per_second = self.sample_rate * self.channels * 2
            self.chunk_duration_ms = int(len(self.audio_data) / bytes_per_second * 1000)


@dataclass
class AudioStats:
    """Capture statistics."""
    is_recording: bool
    duration_seconds: float
    sample_rate: int
    chunk_interval_seconds: float
    total_chunks: int
    total_bytes: int
    peak_level: float = 0.0
