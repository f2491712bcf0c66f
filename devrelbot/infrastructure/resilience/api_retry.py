"""Service for executing outbound calls with automatic retries.

Implements exponential backoff with jitter for transient errors (timeouts,
5xx, rate limits). Every attempt goes through the dependency's circuit
breaker; an open circuit stops the retry loop at once. Metered cost of
each attempt is reported to the CostMonitor.
"""

import asyncio
import logging
import random
import time
import uuid
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, List, Optional, TypeVar

from devrelbot.domain.errors import CircuitOpenError, DeadlineExceededError, MaxRetriesExceededError
from devrelbot.domain.events.resilience_events import ApiCallFailed, ApiCallSucceeded, RetryScheduled
from devrelbot.domain.interfaces.clock import Clock
from devrelbot.domain.interfaces.pause import PauseController
from devrelbot.domain.models.resilience import AttemptOutcome, RetryAttempt
from devrelbot.infrastructure.monitoring.event_dispatcher import EventDispatcher
from devrelbot.infrastructure.resilience.api_throttler import APIThrottler
from devrelbot.infrastructure.resilience.backoff import RandomSource, backoff_delay_ms
from devrelbot.infrastructure.resilience.circuit_breaker import CircuitBreakerRegistry
from devrelbot.infrastructure.resilience.clock import SystemClock
from devrelbot.infrastructure.resilience.cost_monitor import CostMonitor
from devrelbot.infrastructure.resilience.error_classifier import (
    ErrorClass,
    classify_error,
    is_rate_limit_signal,
    retry_after_ms_of,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")
CostFunc = Callable[[Any], Any]
SleepFunc = Callable[[float], Awaitable[None]]
Classifier = Callable[[BaseException], ErrorClass]


@dataclass(frozen=True)
class RetryPolicy:
    """Retry configuration for one call (or the handler default).

    attempt_timeout_ms bounds each attempt; a timed-out attempt is a transient
    failure the breaker records. deadline_ms bounds the whole call, throttle
    waits included; past it the in-flight attempt is abandoned.
    """
    max_attempts: int = 3
    base_delay_ms: float = 1000
    max_delay_ms: Optional[float] = 10_000
    attempt_timeout_ms: Optional[float] = 30_000
    deadline_ms: Optional[float] = None

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.attempt_timeout_ms is not None and self.attempt_timeout_ms <= 0:
            raise ValueError("attempt_timeout_ms must be > 0")
        if self.deadline_ms is not None and self.deadline_ms <= 0:
            raise ValueError("deadline_ms must be > 0")


class RetryHandler:
    """Runs operations with circuit breaking, throttling, retries and cost reporting."""

    def __init__(
        self,
        breakers: CircuitBreakerRegistry,
        cost_monitor: Optional[CostMonitor] = None,
        throttler: Optional[APIThrottler] = None,
        pause_controller: Optional[PauseController] = None,
        default_policy: RetryPolicy = RetryPolicy(),
        classifier: Classifier = classify_error,
        clock: Optional[Clock] = None,
        sleep: SleepFunc = asyncio.sleep,
        rng: RandomSource = random.random,
        dispatcher: Optional[EventDispatcher] = None,
    ):
        """Initializes the RetryHandler.

        Args:
            breakers: Registry supplying one breaker per dependency.
            cost_monitor: Receives metered spend of every attempt, if any.
            throttler: Outbound gate acquired before each attempt.
            pause_controller: Consulted before each attempt; a pause stops retrying.
                Defaults to the cost monitor's controller.
            default_policy: Policy used when with_retry() gets none.
            classifier: Maps an exception to TRANSIENT or FATAL.
            clock: Time source for deadlines.
            sleep: Coroutine used for backoff waits, in seconds.
            rng: Jitter source returning floats in [0, 1).
            dispatcher: Receives retry and call outcome events.
        """
        self.breakers = breakers
        self.cost_monitor = cost_monitor
        self.throttler = throttler
        if pause_controller is None and cost_monitor is not None:
            pause_controller = cost_monitor.pause_controller
        self.pause_controller = pause_controller
        self.default_policy = default_policy
        self.classifier = classifier
        self.clock = clock or SystemClock()
        self._sleep = sleep
        self._rng = rng
        self.dispatcher = dispatcher
        logger.info(
            f"RetryHandler initialized: max_attempts={default_policy.max_attempts}, "
            f"base_delay={default_policy.base_delay_ms}ms, max_delay={default_policy.max_delay_ms}ms"
        )

    async def with_retry(
        self,
        service_name: str,
        operation: Callable[[], Awaitable[T]],
        policy: Optional[RetryPolicy] = None,
        *,
        cost_of: Optional[CostFunc] = None,
        operation_id: Optional[str] = None,
    ) -> T:
        """Executes `operation` against `service_name` with retries.

        Args:
            service_name: Dependency name (selects breaker and throttle budget).
            operation: Zero-argument coroutine factory; called once per attempt.
            policy: Overrides the handler's default policy.
            cost_of: Maps a successful result to its metered cost in dollars.
            operation_id: Correlation id for logs and events.

        Returns:
            The operation's result.

        Raises:
            CircuitOpenError: The dependency's circuit is open.
            MaxRetriesExceededError: Every attempt failed transiently.
            DeadlineExceededError: The policy deadline was reached, including while
                waiting for a throttle slot.
            ServicePausedError: The service was paused between attempts.
            BudgetExceededError: A spend ceiling was reached (raised before the attempt).
            Exception: Fatal errors from the operation, unchanged.
        """
        policy = policy or self.default_policy
        op_id = operation_id or uuid.uuid4().hex[:12]
        started_ms = self.clock.monotonic_ms()
        deadline_at = started_ms + policy.deadline_ms if policy.deadline_ms is not None else None
        attempts: List[RetryAttempt] = []
        delay_ms = 0.0

        for attempt_number in range(1, policy.max_attempts + 1):
            attempt = RetryAttempt(operation_id=op_id, attempt_number=attempt_number, delay_ms=delay_ms)
            attempts.append(attempt)

            if self.cost_monitor is not None:
                self.cost_monitor.enforce_ceiling()
            if self.pause_controller is not None:
                self.pause_controller.ensure_not_paused()
            try:
                # An open circuit must not use up throttle capacity.
                self.breakers.get_or_create(service_name).ensure_available()
            except CircuitOpenError:
                attempt.outcome = AttemptOutcome.CIRCUIT_OPEN
                logger.warning(f"[{op_id}] Circuit open for {service_name}; not retrying")
                raise
            if self.throttler is not None:
                await self._acquire_slot(service_name, deadline_at, policy, attempt)

            logger.debug(f"[{op_id}] {service_name} attempt {attempt_number}/{policy.max_attempts}")
            attempt_started = time.perf_counter()
            try:
                result = await self._run_attempt(service_name, operation, deadline_at, policy, attempt_number)
            except CircuitOpenError:
                attempt.outcome = AttemptOutcome.CIRCUIT_OPEN
                logger.warning(f"[{op_id}] Circuit open for {service_name}; not retrying")
                raise
            except DeadlineExceededError:
                attempt.outcome = AttemptOutcome.ABANDONED
                self._publish_failed(service_name, op_id, attempt_number, "DeadlineExceededError", "deadline")
                raise
            except Exception as e:
                self._report_cost(getattr(e, "incurred_cost", None), service_name, f"failed attempt {attempt_number}")
                if self.classifier(e) == ErrorClass.FATAL:
                    attempt.outcome = AttemptOutcome.FATAL_FAILURE
                    logger.error(
                        f"[{op_id}] Non-retryable error calling {service_name} on attempt "
                        f"{attempt_number}: {type(e).__name__}: {e}"
                    )
                    self._publish_failed(service_name, op_id, attempt_number, type(e).__name__, str(e))
                    raise

                attempt.outcome = AttemptOutcome.TRANSIENT_FAILURE
                if attempt_number >= policy.max_attempts:
                    logger.error(
                        f"[{op_id}] Max retries ({policy.max_attempts}) reached for {service_name}. "
                        f"Last error: {type(e).__name__}: {e}"
                    )
                    self._publish_failed(service_name, op_id, attempt_number, type(e).__name__, str(e))
                    raise MaxRetriesExceededError(service_name, attempt_number, e) from e

                delay_ms = backoff_delay_ms(attempt_number, policy.base_delay_ms, policy.max_delay_ms, self._rng)
                if is_rate_limit_signal(e) and self.throttler is not None:
                    self.throttler.penalize(service_name, retry_after_ms_of(e) or delay_ms)
                if deadline_at is not None and self.clock.monotonic_ms() + delay_ms >= deadline_at:
                    logger.error(f"[{op_id}] Backoff of {delay_ms:.0f}ms would cross the deadline for {service_name}")
                    self._publish_failed(service_name, op_id, attempt_number, "DeadlineExceededError", str(e))
                    raise DeadlineExceededError(service_name, policy.deadline_ms, attempt_number) from e

                logger.warning(
                    f"[{op_id}] Retryable error calling {service_name} on attempt "
                    f"{attempt_number}/{policy.max_attempts}: {type(e).__name__}. Waiting {delay_ms:.0f}ms..."
                )
                if self.dispatcher is not None:
                    self.dispatcher.publish(RetryScheduled(
                        service_name=service_name,
                        operation_id=op_id,
                        attempt_number=attempt_number,
                        delay_ms=delay_ms,
                    ))
                await self._sleep(delay_ms / 1000)
                continue

            attempt.outcome = AttemptOutcome.SUCCESS
            latency_ms = (time.perf_counter() - attempt_started) * 1000
            cost = cost_of(result) if cost_of is not None else None
            self._report_cost(cost, service_name, f"attempt {attempt_number}")
            if self.dispatcher is not None:
                self.dispatcher.publish(ApiCallSucceeded(
                    service_name=service_name,
                    operation_id=op_id,
                    attempts=attempt_number,
                    latency_ms=latency_ms,
                    cost=float(cost) if cost is not None else None,
                ))
            if attempt_number > 1:
                logger.info(f"[{op_id}] {service_name} succeeded after {attempt_number} attempts")
            return result

        # max_attempts >= 1 guarantees the loop returns or raises
        raise AssertionError("unreachable")

    async def _acquire_slot(
        self,
        service_name: str,
        deadline_at: Optional[float],
        policy: RetryPolicy,
        attempt: RetryAttempt,
    ) -> None:
        """Takes a throttle slot, waiting no longer than the policy deadline."""
        if deadline_at is None:
            await self.throttler.acquire(service_name)
            return

        remaining_ms = deadline_at - self.clock.monotonic_ms()
        try:
            if remaining_ms <= 0:
                raise TimeoutError(f"deadline passed before {service_name} attempt {attempt.attempt_number}")
            await asyncio.wait_for(
                self.throttler.acquire(service_name, deadline_at_ms=deadline_at),
                timeout=remaining_ms / 1000,
            )
        except (TimeoutError, asyncio.TimeoutError) as e:
            attempt.outcome = AttemptOutcome.ABANDONED
            completed = attempt.attempt_number - 1
            logger.error(
                f"[{attempt.operation_id}] Deadline of {policy.deadline_ms}ms reached "
                f"waiting for a {service_name} slot"
            )
            self._publish_failed(service_name, attempt.operation_id, completed, "DeadlineExceededError", str(e))
            raise DeadlineExceededError(service_name, policy.deadline_ms, completed) from e

    async def _run_attempt(
        self,
        service_name: str,
        operation: Callable[[], Awaitable[T]],
        deadline_at: Optional[float],
        policy: RetryPolicy,
        attempt_number: int,
    ) -> T:
        call = self.breakers.execute(service_name, self._bounded(service_name, operation, policy))
        if deadline_at is None:
            return await call

        remaining_ms = deadline_at - self.clock.monotonic_ms()
        if remaining_ms <= 0:
            call.close()
            raise DeadlineExceededError(service_name, policy.deadline_ms, attempt_number - 1)
        task = asyncio.ensure_future(call)
        try:
            done, _ = await asyncio.wait({task}, timeout=remaining_ms / 1000)
            if task in done:
                return task.result()
        finally:
            # Also reached when with_retry itself is cancelled.
            if not task.done():
                task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            logger.debug(f"Abandoned attempt for {service_name} finished with {type(e).__name__}: {e}")
        logger.error(f"Deadline of {policy.deadline_ms}ms exceeded for {service_name}; attempt abandoned")
        raise DeadlineExceededError(service_name, policy.deadline_ms, attempt_number)

    @staticmethod
    def _bounded(
        service_name: str,
        operation: Callable[[], Awaitable[T]],
        policy: RetryPolicy,
    ) -> Callable[[], Awaitable[T]]:
        """Wraps `operation` so a hung attempt fails with TimeoutError."""
        if policy.attempt_timeout_ms is None:
            return operation

        async def bounded() -> T:
            try:
                return await asyncio.wait_for(operation(), timeout=policy.attempt_timeout_ms / 1000)
            except asyncio.TimeoutError as e:
                raise TimeoutError(
                    f"{service_name} attempt timed out after {policy.attempt_timeout_ms:.0f}ms"
                ) from e

        return bounded

    def _report_cost(self, cost: Any, service_name: str, description: str) -> None:
        if cost is None or self.cost_monitor is None:
            return
        self.cost_monitor.record_spend(cost, service_name=service_name, description=description)

    def _publish_failed(self, service_name: str, op_id: str, attempts: int, error_type: str, message: str) -> None:
        if self.dispatcher is not None:
            self.dispatcher.publish(ApiCallFailed(
                service_name=service_name,
                operation_id=op_id,
                attempts=attempts,
                error_type=error_type,
                error_message=message,
            ))
