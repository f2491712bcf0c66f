import asyncio
from datetime import datetime, timedelta, timezone
from typing import Callable, List

import pytest
from typer.testing import CliRunner

from devrelbot.domain.events.resilience_events import DomainEvent
from devrelbot.domain.interfaces.clock import Clock
from devrelbot.domain.models.settings import CircuitBreakerSettings, ResilienceSettings
from devrelbot.infrastructure.config.settings import clear_test_config, reset_configuration
from devrelbot.infrastructure.monitoring.audit import InMemoryAuditSink
from devrelbot.infrastructure.monitoring.event_dispatcher import EventDispatcher


class FakeClock(Clock):
    """Manually advanced clock; monotonic and wall time move together."""

    def __init__(self, start: datetime = datetime(2025, 3, 14, 12, 0, tzinfo=timezone.utc)):
        self._mono_ms = 1_000_000.0
        self._now = start

    def monotonic_ms(self) -> float:
        return self._mono_ms

    def now(self) -> datetime:
        return self._now

    def advance(self, ms: float) -> None:
        self._mono_ms += ms
        self._now += timedelta(milliseconds=ms)

    def set_now(self, when: datetime) -> None:
        self._now = when


class RecordingSleep:
    """Async sleep replacement: records the delay and advances the fake clock."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.calls: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        self.clock.advance(seconds * 1000)
        await asyncio.sleep(0)

    @property
    def delays_ms(self) -> List[float]:
        return [seconds * 1000 for seconds in self.calls]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleep(clock: FakeClock) -> RecordingSleep:
    return RecordingSleep(clock)


@pytest.fixture
def dispatcher() -> EventDispatcher:
    return EventDispatcher()


@pytest.fixture
def captured_events(dispatcher: EventDispatcher) -> List[object]:
    """Every event published on the dispatcher fixture, in order."""
    events: List[object] = []
    dispatcher.subscribe(DomainEvent, events.append)
    return events


@pytest.fixture
def audit_sink() -> InMemoryAuditSink:
    return InMemoryAuditSink()


@pytest.fixture
def settings() -> ResilienceSettings:
    return ResilienceSettings(circuit_breaker=CircuitBreakerSettings(cooldown_ms=30_000))


@pytest.fixture
def fixed_rng() -> Callable[[], float]:
    """Jitter source that always returns 0.5."""
    return lambda: 0.5


@pytest.fixture(scope="session")
def runner():
    """Provides a Typer CliRunner instance."""
    return CliRunner()


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch, tmp_path):
    """Keeps tests away from the developer's ~/.devrelbot and .env files."""
    monkeypatch.setenv("DEVRELBOT_CONFIG", str(tmp_path / "missing-config.yaml"))
    monkeypatch.chdir(tmp_path)
    reset_configuration()
    clear_test_config()
    yield
    reset_configuration()
    clear_test_config()
