"""Interface for time sources.

Admission windows and breaker cooldowns use a monotonic clock; budget
periods use UTC wall-clock time. Tests inject a manually advanced clock.
"""

import abc
from datetime import datetime


class Clock(abc.ABC):
    """Abstract Base Class for reading the current time."""

    @abc.abstractmethod
    def monotonic_ms(self) -> float:
        """Milliseconds from an arbitrary, never-decreasing origin."""
        pass

    @abc.abstractmethod
    def now(self) -> datetime:
        """Timezone-aware current UTC time."""
        pass
