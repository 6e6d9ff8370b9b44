"""Audio capture and clip packaging."""

from .capture import AudioCaptureSession, AudioInputDevice
from .clip import encode_wav

__all__ = [
    'AudioCaptureSession',
    'AudioInputDevice',
    'encode_wav',
]
