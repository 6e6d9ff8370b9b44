"""Error taxonomy shared by capture, backends and provider clients."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class ErrorKind(Enum):
    """Coarse classification driving retry decisions."""
    PERMISSION = "permission"
    DEVICE = "device"
    TRANSPORT = "transport"
    PAYLOAD = "payload"
    PARSE = "parse"
    NO_SPEECH = "no_speech"
    UNSUPPORTED = "unsupported"


class TranscriptionError(Exception):
    """Base class for every error that crosses a backend boundary."""

    kind: ErrorKind = ErrorKind.TRANSPORT
    retryable: bool = False

    def __init__(self, message: str, retryable: Optional[bool] = None):
        super().__init__(message)
        self.message = message
        if retryable is not None:
            self.retryable = retryable


class PermissionDenied(TranscriptionError):
    """Microphone or recognition permission was refused."""
    kind = ErrorKind.PERMISSION
    retryable = False


class DeviceUnavailable(TranscriptionError):
    """No compatible capture device or capture API."""
    kind = ErrorKind.DEVICE
    retryable = False


class TransportError(TranscriptionError):
    """Network drop, socket error or provider-side failure."""
    kind = ErrorKind.TRANSPORT
    retryable = True

    def __init__(self, message: str, retryable: Optional[bool] = None, status: Optional[int] = None):
        super().__init__(message, retryable)
        self.status = status


class PayloadError(TranscriptionError):
    """Clip rejected for size or type. Terminal for that upload only."""
    kind = ErrorKind.PAYLOAD
    retryable = False


class ParseError(TranscriptionError):
    """Provider returned something we could not interpret."""
    kind = ErrorKind.PARSE
    retryable = False


class NoSpeech(TranscriptionError):
    """Benign: the provider heard nothing."""
    kind = ErrorKind.NO_SPEECH
    retryable = True


class UnsupportedBackend(TranscriptionError):
    kind = ErrorKind.UNSUPPORTED
    retryable = False


@dataclass
class BackendError:
    """What a backend hands to its ``on_error`` callback."""
    error: TranscriptionError
    fatal: bool
    retries_exhausted: bool = False
    attempts: int = 0

    @property
    def kind(self) -> ErrorKind:
        return self.error.kind

    @property
    def message(self) -> str:
        if self.retries_exhausted:
            return f"{self.error.message} (gave up after {self.attempts} reconnection attempts)"
        return self.error.message
