"""Provider results tagged with the path that produced them."""

from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar

T = TypeVar("T")


class ResultSource(Enum):
    PRIMARY = "primary"
    FALLBACK = "fallback"
    MOCK = "mock"


@dataclass(frozen=True)
class ProviderResult(Generic[T]):
    """A provider value plus where it came from."""
    value: T
    source: ResultSource

    @property
    def is_fallback(self) -> bool:
        return self.source is not ResultSource.PRIMARY
