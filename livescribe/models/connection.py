"""Connection state and retry budget models."""

from dataclasses import dataclass
from enum import Enum


class ConnectionState(Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    ERRORED = "errored"


@dataclass(frozen=True)
class RetryPolicy:
    """Backoff parameters. Delay for attempt n is base_delay * multiplier ** (n - 1)."""
    max_attempts: int = 3
    base_delay_seconds: float = 1.0
    multiplier: float = 2.0

    def delay_for(self, attempt: int) -> float:
        return self.base_delay_seconds * (self.multiplier ** (attempt - 1))


@dataclass
class RetryBudget:
    """Counts consecutive retryable failures against a policy."""
    policy: RetryPolicy
    attempts: int = 0

    @property
    def remaining(self) -> int:
        return max(0, self.policy.max_attempts - self.attempts)

    @property
    def exhausted(self) -> bool:
        return self.remaining == 0

    def consume(self) -> int:
        """Use one attempt and return its 1-based number."""
        if self.exhausted:
            raise RuntimeError("Retry budget exhausted")
        self.attempts += 1
        return self.attempts

    def reset(self) -> None:
        self.attempts = 0
