"""Error taxonomy for the resilience and cost-control layer.

Callers (command dispatchers, dependency clients) catch these to decide
between a polite user message, a fail-fast, or a retry.
"""

from typing import Optional


class ResilienceError(Exception):
    """Base class for every error raised by the resilience layer."""


class ConfigurationError(ResilienceError):
    """Raised when the static startup configuration is missing or invalid."""


class RateLimitExceededError(ResilienceError):
    """Raised when an identity exceeds its per-action admission limit."""

    def __init__(self, identity: str, action: str, retry_after_ms: Optional[int]):
        self.identity = identity
        self.action = action
        self.retry_after_ms = retry_after_ms
        if retry_after_ms is None:
            message = f"Action '{action}' is not permitted for {identity}."
        else:
            message = (
                f"Rate limit exceeded for {identity} on '{action}'. "
                f"Try again in {retry_after_ms / 1000:.1f}s."
            )
        super().__init__(message)


class QueueFullError(ResilienceError):
    """Raised when the outbound throttle queue for a dependency is saturated."""

    def __init__(self, service_name: str, max_queue_depth: int):
        self.service_name = service_name
        self.max_queue_depth = max_queue_depth
        super().__init__(
            f"Throttle queue for '{service_name}' is full ({max_queue_depth} waiting)."
        )


class CircuitOpenError(ResilienceError):
    """Raised when a dependency's circuit breaker refuses a call."""

    def __init__(
        self,
        service_name: str,
        retry_after_ms: Optional[float] = None,
        last_error: Optional[BaseException] = None,
    ):
        self.service_name = service_name
        self.retry_after_ms = retry_after_ms
        self.last_error = last_error
        message = f"Circuit breaker is OPEN for {service_name}. Service is temporarily unavailable."
        if last_error is not None:
            message += f" Last error: {last_error}"
        super().__init__(message)


class TransientError(ResilienceError):
    """Marks a failure worth retrying (timeouts, 5xx, rate-limit signals).

    Clients may raise this directly; `incurred_cost` carries metered spend
    consumed by the failed attempt, `retry_after_ms` a server-provided hint.
    """

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        retry_after_ms: Optional[float] = None,
        incurred_cost: Optional[float] = None,
    ):
        self.status_code = status_code
        self.retry_after_ms = retry_after_ms
        self.incurred_cost = incurred_cost
        super().__init__(message)


class FatalError(ResilienceError):
    """Marks a failure that must never be retried (validation, auth, 4xx)."""

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        incurred_cost: Optional[float] = None,
    ):
        self.status_code = status_code
        self.incurred_cost = incurred_cost
        super().__init__(message)


class MaxRetriesExceededError(ResilienceError):
    """Raised when every attempt of a retried operation failed transiently."""

    def __init__(self, service_name: str, attempts: int, last_error: BaseException):
        self.service_name = service_name
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"Max retries ({attempts}) exceeded for {service_name}. Last error: {last_error}"
        )


class DeadlineExceededError(ResilienceError):
    """Raised when a retried operation runs past its overall deadline."""

    def __init__(self, service_name: str, deadline_ms: float, attempts: int):
        self.service_name = service_name
        self.deadline_ms = deadline_ms
        self.attempts = attempts
        super().__init__(
            f"Deadline of {deadline_ms:.0f}ms exceeded for {service_name} after {attempts} attempt(s)."
        )


class ServicePausedError(ResilienceError):
    """Raised when privileged work is attempted while the service is paused."""

    def __init__(self, reason: Optional[str]):
        self.reason = reason
        super().__init__(f"Service is paused: {reason}")


class BudgetExceededError(ServicePausedError):
    """Raised when the service is paused because the spend ceiling was reached."""


class NotPausedError(ResilienceError):
    """Raised by resume() when the service is not paused."""

    def __init__(self) -> None:
        super().__init__("Service is not paused")
