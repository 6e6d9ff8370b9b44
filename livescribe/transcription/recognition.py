"""Continuous recognition engine contract and the messages engines post to backends.

Engines may run on worker threads; they talk to their backend only by
posting these messages through the ``EngineSink`` they were given.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Union

# Error codes understood by NativeRecognitionBackend
NO_SPEECH = "no-speech"
ABORTED = "aborted"
NETWORK = "network"
AUDIO_CAPTURE = "audio-capture"
NOT_ALLOWED = "not-allowed"
SERVICE_NOT_ALLOWED = "service-not-allowed"


@dataclass
class RecognitionAlternative:
    """One result slot. ``confidence`` is None when the engine gave no score."""
    transcript: str
    is_final: bool
    confidence: Optional[float] = None


@dataclass
class EngineStarted:
    pass


@dataclass
class EngineResults:
    """A batch of results; only indices >= ``result_index`` are new."""
    results: List[RecognitionAlternative] = field(default_factory=list)
    result_index: int = 0


@dataclass
class EngineError:
    code: str
    message: str = ""


@dataclass
class EngineEnded:
    pass


EngineMessage = Union[EngineStarted, EngineResults, EngineError, EngineEnded]
EngineSink = Callable[[EngineMessage], None]


class RecognitionEngine(ABC):
    """A continuous speech recognizer that reports through an EngineSink.

    After ``start()`` the engine posts EngineStarted once it is really
    listening, EngineResults for every provider batch, EngineError for
    failures, and EngineEnded when the session is over for any reason.
    """

    def __init__(self):
        self.sink: Optional[EngineSink] = None

    def bind(self, sink: EngineSink) -> None:
        self.sink = sink

    def post(self, message: EngineMessage) -> None:
        if self.sink is not None:
            self.sink(message)

    @abstractmethod
    def is_supported(self) -> bool:
        pass

    @abstractmethod
    async def start(self) -> None:
        """Begin recognition. Raises TranscriptionError if it cannot start."""

    @abstractmethod
    async def stop(self) -> None:
        """Finish gracefully; EngineEnded follows."""

    @abstractmethod
    async def abort(self) -> None:
        """Tear down immediately; pending results are dropped."""
