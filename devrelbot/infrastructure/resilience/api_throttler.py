"""Per-dependency outbound call throttler.

Caps the total call volume to each external service (e.g. 100/min to the
document store, 10/min to the AI completion API) regardless of which user
triggered the call. Unlike the RateLimiter it queues callers instead of
rejecting them, up to a bounded queue depth.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Mapping, Optional

from devrelbot.domain.errors import QueueFullError
from devrelbot.domain.events.resilience_events import ApiCallDeferred
from devrelbot.domain.interfaces.clock import Clock
from devrelbot.domain.models.resilience import RateLimitRule, ThrottleBudget
from devrelbot.domain.models.settings import DEFAULT_SERVICE_LIMITS
from devrelbot.infrastructure.monitoring.event_dispatcher import EventDispatcher
from devrelbot.infrastructure.resilience.clock import SystemClock

logger = logging.getLogger(__name__)

DEFAULT_MAX_QUEUE_DEPTH = 50
DEFAULT_SERVICE_LIMIT = RateLimitRule(max_requests=60, window_ms=60_000)

SleepFunc = Callable[[float], Awaitable[None]]


class APIThrottler:
    """Fixed-window outbound gate with a bounded FIFO wait queue per service."""

    def __init__(
        self,
        service_limits: Optional[Mapping[str, RateLimitRule]] = None,
        default_limit: RateLimitRule = DEFAULT_SERVICE_LIMIT,
        max_queue_depth: int = DEFAULT_MAX_QUEUE_DEPTH,
        clock: Optional[Clock] = None,
        sleep: SleepFunc = asyncio.sleep,
        dispatcher: Optional[EventDispatcher] = None,
    ):
        """Initializes the throttler.

        Args:
            service_limits: Per-dependency rules.
            default_limit: Rule applied to dependencies missing from service_limits.
            max_queue_depth: Waiters allowed per service before QueueFullError.
            clock: Time source (defaults to the system clock).
            sleep: Coroutine used to wait, in seconds (injectable for tests).
            dispatcher: Optional event dispatcher for ApiCallDeferred events.
        """
        if max_queue_depth < 0:
            raise ValueError("max_queue_depth must be >= 0")
        self.service_limits: Dict[str, RateLimitRule] = dict(
            DEFAULT_SERVICE_LIMITS if service_limits is None else service_limits
        )
        self.default_limit = default_limit
        self.max_queue_depth = max_queue_depth
        self.clock = clock or SystemClock()
        self._sleep = sleep
        self.dispatcher = dispatcher
        self._budgets: Dict[str, ThrottleBudget] = {}
        self._queued: Dict[str, int] = {}
        self._queue_locks: Dict[str, asyncio.Lock] = {}
        logger.info(
            f"APIThrottler initialized: {len(self.service_limits)} service limits, "
            f"max_queue_depth={max_queue_depth}"
        )

    def _budget(self, service_name: str) -> ThrottleBudget:
        budget = self._budgets.get(service_name)
        if budget is None:
            rule = self.service_limits.get(service_name, self.default_limit)
            budget = ThrottleBudget(
                service_name=service_name,
                window_start_ms=self.clock.monotonic_ms(),
                limit=rule.max_requests,
                window_ms=rule.window_ms,
            )
            self._budgets[service_name] = budget
        return budget

    def _try_reserve(self, service_name: str) -> float:
        """Takes one slot if available. Returns 0 on success, else ms to wait."""
        budget = self._budget(service_name)
        now = self.clock.monotonic_ms()
        if now < budget.blocked_until_ms:
            return budget.blocked_until_ms - now
        if now - budget.window_start_ms >= budget.window_ms:
            budget.window_start_ms = now
            budget.count = 0
        if budget.count < budget.limit:
            budget.count += 1
            return 0.0
        return max(1.0, budget.window_start_ms + budget.window_ms - now)

    async def acquire(self, service_name: str, deadline_at_ms: Optional[float] = None) -> None:
        """Waits until `service_name` has capacity, then consumes one slot.

        Args:
            service_name: Dependency to take a slot from.
            deadline_at_ms: Monotonic time (clock.monotonic_ms) the caller
                cannot wait past.

        Raises:
            QueueFullError: If max_queue_depth callers are already waiting.
            TimeoutError: If the slot would only free up after deadline_at_ms.
        """
        queued = self._queued.get(service_name, 0)
        if queued == 0 and self._try_reserve(service_name) == 0:
            return
        if queued >= self.max_queue_depth:
            logger.warning(f"Throttle queue full for '{service_name}' ({queued} waiting)")
            raise QueueFullError(service_name, self.max_queue_depth)

        self._queued[service_name] = queued + 1
        if self.dispatcher is not None:
            self.dispatcher.publish(ApiCallDeferred(service_name=service_name, queue_depth=queued + 1))
        lock = self._queue_locks.setdefault(service_name, asyncio.Lock())
        try:
            async with lock:
                while True:
                    wait_ms = self._try_reserve(service_name)
                    if wait_ms == 0:
                        return
                    if deadline_at_ms is not None and self.clock.monotonic_ms() + wait_ms > deadline_at_ms:
                        logger.warning(
                            f"Throttle wait of {wait_ms:.0f}ms for '{service_name}' would pass the caller's deadline"
                        )
                        raise TimeoutError(f"no throttle slot for {service_name} before the deadline")
                    logger.debug(f"Throttling '{service_name}': waiting {wait_ms:.0f}ms")
                    await self._sleep(wait_ms / 1000)
        finally:
            self._queued[service_name] -= 1

    def penalize(self, service_name: str, cooldown_ms: float) -> None:
        """Blocks new acquisitions for `service_name` for `cooldown_ms`.

        Called when the dependency answers with a rate-limit signal (429).
        An existing longer block is kept.
        """
        if cooldown_ms <= 0:
            return
        budget = self._budget(service_name)
        until = self.clock.monotonic_ms() + cooldown_ms
        if until > budget.blocked_until_ms:
            budget.blocked_until_ms = until
            logger.warning(f"Throttler penalized '{service_name}' for {cooldown_ms:.0f}ms")

    def queue_depth(self, service_name: str) -> int:
        return self._queued.get(service_name, 0)

    def get_status(self, service_name: str) -> Dict[str, float]:
        budget = self._budget(service_name)
        now = self.clock.monotonic_ms()
        in_window = now - budget.window_start_ms < budget.window_ms
        return {
            "limit": budget.limit,
            "window_ms": budget.window_ms,
            "used": budget.count if in_window else 0,
            "queued": self.queue_depth(service_name),
            "blocked_for_ms": max(0.0, budget.blocked_until_ms - now),
        }

    def reset(self, service_name: Optional[str] = None) -> None:
        if service_name is None:
            self._budgets.clear()
        else:
            self._budgets.pop(service_name, None)
