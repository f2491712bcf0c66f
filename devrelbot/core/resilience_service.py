"""Application service that gates bot commands and outbound calls.

The command dispatcher calls admit_command() before running any user
command; dependency clients route every outbound call through call().
build_resilience_service() is the composition root for the layer.
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from devrelbot.domain.errors import (
    BudgetExceededError,
    CircuitOpenError,
    DeadlineExceededError,
    MaxRetriesExceededError,
    QueueFullError,
    RateLimitExceededError,
    ServicePausedError,
)
from devrelbot.domain.interfaces.audit import AuditSink
from devrelbot.domain.interfaces.clock import Clock
from devrelbot.domain.models.resilience import RateLimitDecision
from devrelbot.domain.models.settings import ResilienceSettings
from devrelbot.infrastructure.monitoring.event_dispatcher import EventDispatcher
from devrelbot.infrastructure.resilience.api_retry import CostFunc, RetryHandler, RetryPolicy, SleepFunc
from devrelbot.infrastructure.resilience.api_throttler import APIThrottler
from devrelbot.infrastructure.resilience.backoff import RandomSource
from devrelbot.infrastructure.resilience.circuit_breaker import CircuitBreakerRegistry
from devrelbot.infrastructure.resilience.clock import SystemClock
from devrelbot.infrastructure.resilience.cost_monitor import CostMonitor
from devrelbot.infrastructure.resilience.rate_limiter import RateLimiter
from devrelbot.infrastructure.resilience.service_pause import ServicePauseController

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class ResilienceService:
    """Facade over the resilience components; one instance per process."""
    rate_limiter: RateLimiter
    throttler: APIThrottler
    breakers: CircuitBreakerRegistry
    retry_handler: RetryHandler
    cost_monitor: CostMonitor
    pause_controller: ServicePauseController
    dispatcher: EventDispatcher

    def admit_command(self, user_id: str, command: str) -> RateLimitDecision:
        """Checks the pause switch, then the user's rate limit for `command`.

        Raises:
            ServicePausedError: Service is paused (BudgetExceededError for budget pauses).
            RateLimitExceededError: The user must wait before retrying.
        """
        self.cost_monitor.enforce_ceiling()
        self.pause_controller.ensure_not_paused()
        return self.rate_limiter.enforce(user_id, command)

    async def call(
        self,
        service_name: str,
        operation: Callable[[], Awaitable[T]],
        policy: Optional[RetryPolicy] = None,
        *,
        cost_of: Optional[CostFunc] = None,
        operation_id: Optional[str] = None,
    ) -> T:
        """Runs an outbound call with pause check, throttling, breaker and retries."""
        self.cost_monitor.enforce_ceiling()
        self.pause_controller.ensure_not_paused()
        return await self.retry_handler.with_retry(
            service_name,
            operation,
            policy,
            cost_of=cost_of,
            operation_id=operation_id,
        )


def describe_denial(error: BaseException) -> str:
    """User-facing text for errors the command dispatcher shows instead of a result."""
    if isinstance(error, RateLimitExceededError):
        if error.retry_after_ms is None:
            return "That command isn't available right now."
        seconds = max(1, round(error.retry_after_ms / 1000))
        return f"You're sending requests too quickly. Please wait {seconds}s and try again."
    if isinstance(error, BudgetExceededError):
        return "The service is paused because the spending limit was reached. An administrator has been notified."
    if isinstance(error, ServicePausedError):
        return "The service is temporarily paused. Please try again later."
    if isinstance(error, (CircuitOpenError, QueueFullError)):
        return "That integration is temporarily unavailable. Please try again in a few minutes."
    if isinstance(error, (MaxRetriesExceededError, DeadlineExceededError)):
        return "The request could not be completed right now. Please try again later."
    return "Something went wrong while processing your request."


def build_resilience_service(
    settings: ResilienceSettings,
    clock: Optional[Clock] = None,
    sleep: SleepFunc = asyncio.sleep,
    rng: RandomSource = random.random,
    audit_sink: Optional[AuditSink] = None,
    dispatcher: Optional[EventDispatcher] = None,
) -> ResilienceService:
    """Wires every component from one ResilienceSettings object."""
    clock = clock or SystemClock()
    dispatcher = dispatcher or EventDispatcher()

    pause_controller = ServicePauseController(clock=clock, audit_sink=audit_sink, dispatcher=dispatcher)
    rate_limiter = RateLimiter(limits=settings.rate_limits, clock=clock, dispatcher=dispatcher)
    throttler = APIThrottler(
        service_limits=settings.throttle.service_limits,
        default_limit=settings.throttle.default_limit,
        max_queue_depth=settings.throttle.max_queue_depth,
        clock=clock,
        sleep=sleep,
        dispatcher=dispatcher,
    )
    breakers = CircuitBreakerRegistry(
        cooldown_ms=settings.circuit_breaker.cooldown_ms,
        failure_threshold=settings.circuit_breaker.failure_threshold,
        clock=clock,
        dispatcher=dispatcher,
        pause_controller=pause_controller,
        pause_on_open=settings.circuit_breaker.pause_on_open,
    )
    cost_monitor = CostMonitor(
        pause_controller=pause_controller,
        daily_limit=settings.budget.daily_limit,
        monthly_limit=settings.budget.monthly_limit,
        alert_thresholds=settings.budget.alert_thresholds,
        clock=clock,
        dispatcher=dispatcher,
    )
    retry_handler = RetryHandler(
        breakers=breakers,
        cost_monitor=cost_monitor,
        throttler=throttler,
        pause_controller=pause_controller,
        default_policy=RetryPolicy(
            max_attempts=settings.retry.max_attempts,
            base_delay_ms=settings.retry.base_delay_ms,
            max_delay_ms=settings.retry.max_delay_ms,
            attempt_timeout_ms=settings.retry.attempt_timeout_ms,
            deadline_ms=settings.retry.deadline_ms,
        ),
        clock=clock,
        sleep=sleep,
        rng=rng,
        dispatcher=dispatcher,
    )
    logger.info("Resilience layer initialized.")
    return ResilienceService(
        rate_limiter=rate_limiter,
        throttler=throttler,
        breakers=breakers,
        retry_handler=retry_handler,
        cost_monitor=cost_monitor,
        pause_controller=pause_controller,
        dispatcher=dispatcher,
    )
