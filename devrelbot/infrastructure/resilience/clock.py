"""System clock used outside of tests."""

import time
from datetime import datetime, timezone

from devrelbot.domain.interfaces.clock import Clock


class SystemClock(Clock):
    """Clock backed by time.monotonic() and the UTC wall clock."""

    def monotonic_ms(self) -> float:
        return time.monotonic() * 1000

    def now(self) -> datetime:
        return datetime.now(timezone.utc)
