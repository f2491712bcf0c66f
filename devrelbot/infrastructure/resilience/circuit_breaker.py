"""Circuit breaker for external dependencies.

Prevents a failing dependency from being hammered by retries. Three states:

- CLOSED: normal operation, calls pass through.
- OPEN: the dependency looks unhealthy; calls fail fast with CircuitOpenError.
- HALF_OPEN: after the cooldown, exactly one probe call is let through.

Bookkeeping before and after the awaited operation is synchronous, so the
probe slot can never be handed to two coroutines.
"""

import asyncio
import logging
from dataclasses import replace
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, TypeVar

from devrelbot.domain.errors import CircuitOpenError
from devrelbot.domain.events.resilience_events import CircuitStateChanged
from devrelbot.domain.interfaces.clock import Clock
from devrelbot.domain.interfaces.pause import PauseController
from devrelbot.domain.models.resilience import CircuitBreakerState, CircuitState, PauseCategory
from devrelbot.infrastructure.monitoring.event_dispatcher import EventDispatcher
from devrelbot.infrastructure.resilience.clock import SystemClock

logger = logging.getLogger(__name__)

DEFAULT_FAILURE_THRESHOLD = 5

T = TypeVar("T")
StateChangeCallback = Callable[[str, CircuitState, CircuitState], None]


class CircuitBreaker:
    """Consecutive-failure circuit breaker for one dependency."""

    def __init__(
        self,
        service_name: str,
        cooldown_ms: float,
        failure_threshold: int = DEFAULT_FAILURE_THRESHOLD,
        clock: Optional[Clock] = None,
        on_state_change: Optional[StateChangeCallback] = None,
        dispatcher: Optional[EventDispatcher] = None,
    ):
        """Initializes the breaker in the CLOSED state.

        Args:
            service_name: Dependency this breaker protects.
            cooldown_ms: Time spent OPEN before a probe is allowed. Required;
                it depends on how the dependency recovers.
            failure_threshold: Consecutive failures that open the circuit.
            clock: Time source (defaults to the system clock).
            on_state_change: Called with (service_name, old, new) on every transition.
            dispatcher: Optional event dispatcher for CircuitStateChanged events.
        """
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        if cooldown_ms <= 0:
            raise ValueError("cooldown_ms must be > 0")
        self.service_name = service_name
        self.cooldown_ms = cooldown_ms
        self.failure_threshold = failure_threshold
        self.clock = clock or SystemClock()
        self.on_state_change = on_state_change
        self.dispatcher = dispatcher
        self._state = CircuitBreakerState(
            service_name=service_name,
            last_state_change_at_ms=self.clock.monotonic_ms(),
        )
        logger.info(
            f"Circuit breaker initialized for {service_name}: "
            f"threshold={failure_threshold}, cooldown={cooldown_ms}ms"
        )

    @property
    def state(self) -> CircuitState:
        """Current state, with an elapsed cooldown reported as HALF_OPEN."""
        if self._state.state == CircuitState.OPEN and self._cooldown_elapsed():
            return CircuitState.HALF_OPEN
        return self._state.state

    def get_stats(self) -> CircuitBreakerState:
        """Returns a snapshot copy of the breaker state."""
        return replace(self._state)

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Runs `operation` under breaker protection.

        Raises:
            CircuitOpenError: If the circuit is OPEN, or a HALF_OPEN probe is
                already in flight. The operation is not invoked.
        """
        is_probe = self._before_call()
        try:
            result = await operation()
        except asyncio.CancelledError:
            # Abandoned attempts (deadline, shutdown) say nothing about health.
            if is_probe:
                self._state.half_open_probe_in_flight = False
            raise
        except Exception as e:
            self._on_failure(e, is_probe)
            raise
        self._on_success(is_probe)
        return result

    def ensure_available(self) -> None:
        """Raises CircuitOpenError if a call made now would be rejected.

        Does not change state or take the probe slot.
        """
        state = self._state
        if state.state == CircuitState.OPEN and not self._cooldown_elapsed():
            retry_after = state.last_state_change_at_ms + self.cooldown_ms - self.clock.monotonic_ms()
            raise CircuitOpenError(self.service_name, retry_after, state.last_error)
        if state.state == CircuitState.HALF_OPEN and state.half_open_probe_in_flight:
            raise CircuitOpenError(self.service_name, None, state.last_error)

    # --- Synchronous bookkeeping ---

    def _cooldown_elapsed(self) -> bool:
        return self.clock.monotonic_ms() - self._state.last_state_change_at_ms >= self.cooldown_ms

    def _before_call(self) -> bool:
        """Admits or rejects a call. Returns True when the caller is the probe."""
        state = self._state
        if state.state == CircuitState.OPEN:
            if not self._cooldown_elapsed():
                retry_after = state.last_state_change_at_ms + self.cooldown_ms - self.clock.monotonic_ms()
                raise CircuitOpenError(self.service_name, retry_after, state.last_error)
            self._transition(CircuitState.HALF_OPEN)

        if state.state == CircuitState.HALF_OPEN:
            if state.half_open_probe_in_flight:
                logger.debug(f"Probe already in flight for {self.service_name}; rejecting call")
                raise CircuitOpenError(self.service_name, None, state.last_error)
            state.half_open_probe_in_flight = True
            state.total_requests += 1
            return True

        state.total_requests += 1
        return False

    def _on_success(self, is_probe: bool) -> None:
        state = self._state
        state.last_success_at_ms = self.clock.monotonic_ms()
        if is_probe:
            state.half_open_probe_in_flight = False
            self._transition(CircuitState.CLOSED)
        elif state.state == CircuitState.CLOSED:
            state.consecutive_failures = 0

    def _on_failure(self, error: BaseException, is_probe: bool) -> None:
        state = self._state
        state.last_failure_at_ms = self.clock.monotonic_ms()
        state.last_error = error
        state.consecutive_failures += 1
        logger.warning(
            f"Circuit breaker: call to {self.service_name} failed "
            f"({state.consecutive_failures} consecutive): {type(error).__name__}: {error}"
        )
        if is_probe:
            state.half_open_probe_in_flight = False
            self._transition(CircuitState.OPEN)
        elif state.state == CircuitState.CLOSED and state.consecutive_failures >= self.failure_threshold:
            self._transition(CircuitState.OPEN)

    def _transition(self, new_state: CircuitState) -> None:
        state = self._state
        old_state = state.state
        if old_state == new_state:
            return
        state.state = new_state
        state.last_state_change_at_ms = self.clock.monotonic_ms()
        if new_state == CircuitState.CLOSED:
            state.consecutive_failures = 0
            state.half_open_probe_in_flight = False

        if new_state == CircuitState.OPEN:
            logger.error(
                f"Circuit breaker OPENING for {self.service_name} after "
                f"{state.consecutive_failures} consecutive failures"
            )
        elif new_state == CircuitState.HALF_OPEN:
            logger.info(f"Circuit breaker HALF-OPEN for {self.service_name} (testing recovery)")
        else:
            logger.info(f"Circuit breaker CLOSED for {self.service_name} (service recovered)")

        if self.dispatcher is not None:
            self.dispatcher.publish(CircuitStateChanged(
                service_name=self.service_name,
                previous_state=old_state.value,
                new_state=new_state.value,
                consecutive_failures=state.consecutive_failures,
            ))
        if self.on_state_change is not None:
            try:
                self.on_state_change(self.service_name, old_state, new_state)
            except Exception as e:
                logger.error(f"Circuit state-change callback failed for {self.service_name}: {e}", exc_info=True)

    # --- Maintenance ---

    def force_open(self) -> None:
        """Opens the circuit manually (maintenance); the cooldown starts now."""
        self._state.half_open_probe_in_flight = False
        if self._state.state == CircuitState.OPEN:
            self._state.last_state_change_at_ms = self.clock.monotonic_ms()
        else:
            self._transition(CircuitState.OPEN)

    def force_close(self) -> None:
        self._transition(CircuitState.CLOSED)

    def reset(self) -> None:
        """Closes the circuit and clears all counters."""
        self._transition(CircuitState.CLOSED)
        self._state = CircuitBreakerState(
            service_name=self.service_name,
            last_state_change_at_ms=self.clock.monotonic_ms(),
        )


class CircuitBreakerRegistry:
    """One breaker per dependency name, created lazily and shared by all callers."""

    def __init__(
        self,
        cooldown_ms: float,
        failure_threshold: int = DEFAULT_FAILURE_THRESHOLD,
        clock: Optional[Clock] = None,
        dispatcher: Optional[EventDispatcher] = None,
        pause_controller: Optional[PauseController] = None,
        pause_on_open: Iterable[str] = (),
    ):
        """Initializes the registry.

        Args:
            cooldown_ms: Cooldown given to every breaker created here.
            failure_threshold: Threshold given to every breaker created here.
            clock: Shared time source.
            dispatcher: Shared event dispatcher.
            pause_controller: Paused when a breaker listed in pause_on_open opens.
            pause_on_open: Dependencies whose outage must pause the whole service.
        """
        self.cooldown_ms = cooldown_ms
        self.failure_threshold = failure_threshold
        self.clock = clock or SystemClock()
        self.dispatcher = dispatcher
        self.pause_controller = pause_controller
        self.pause_on_open = set(pause_on_open)
        self._breakers: Dict[str, CircuitBreaker] = {}

    def get_or_create(self, service_name: str) -> CircuitBreaker:
        breaker = self._breakers.get(service_name)
        if breaker is None:
            breaker = CircuitBreaker(
                service_name,
                cooldown_ms=self.cooldown_ms,
                failure_threshold=self.failure_threshold,
                clock=self.clock,
                on_state_change=self._handle_state_change,
                dispatcher=self.dispatcher,
            )
            self._breakers[service_name] = breaker
        return breaker

    async def execute(self, service_name: str, operation: Callable[[], Awaitable[T]]) -> T:
        return await self.get_or_create(service_name).execute(operation)

    def names(self) -> List[str]:
        return sorted(self._breakers)

    def get_all_stats(self) -> Dict[str, Dict[str, Any]]:
        stats: Dict[str, Dict[str, Any]] = {}
        for name, breaker in self._breakers.items():
            snapshot = breaker.get_stats()
            stats[name] = {
                "state": breaker.state.value,
                "consecutive_failures": snapshot.consecutive_failures,
                "total_requests": snapshot.total_requests,
                "last_failure_at_ms": snapshot.last_failure_at_ms,
            }
        return stats

    def reset_all(self) -> None:
        for breaker in self._breakers.values():
            breaker.reset()

    def _handle_state_change(self, service_name: str, old: CircuitState, new: CircuitState) -> None:
        if new != CircuitState.OPEN or service_name not in self.pause_on_open:
            return
        if self.pause_controller is not None:
            self.pause_controller.pause(
                reason=f"circuit open for {service_name}",
                paused_by="circuit-breaker",
                category=PauseCategory.CIRCUIT,
            )
