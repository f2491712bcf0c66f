"""Domain Events related to admission control, retries, breakers and budget.

Examples include events for when calls are deferred, retried, fail, or
succeed, when a breaker changes state, and when spend crosses a threshold.
"""

import time
from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass
class DomainEvent:
    """Base class for domain events."""
    pass


@dataclass
class RateLimitDenied(DomainEvent):
    """An identity was refused admission for an action."""
    identity: str
    action: str
    retry_after_ms: Optional[int]
    timestamp: float = field(default_factory=time.time)


@dataclass
class ApiCallDeferred(DomainEvent):
    """An outbound call was queued by the throttler."""
    service_name: str
    queue_depth: int
    timestamp: float = field(default_factory=time.time)


@dataclass
class ApiCallSucceeded(DomainEvent):
    service_name: str
    operation_id: str
    attempts: int
    latency_ms: float
    cost: Optional[float] = None
    timestamp: float = field(default_factory=time.time)


@dataclass
class ApiCallFailed(DomainEvent):
    """An outbound call failed definitively (fatal, or after retries)."""
    service_name: str
    operation_id: str
    attempts: int
    error_type: str
    error_message: str
    timestamp: float = field(default_factory=time.time)


@dataclass
class RetryScheduled(DomainEvent):
    service_name: str
    operation_id: str
    attempt_number: int
    delay_ms: float
    timestamp: float = field(default_factory=time.time)


@dataclass
class CircuitStateChanged(DomainEvent):
    service_name: str
    previous_state: str
    new_state: str
    consecutive_failures: int
    timestamp: float = field(default_factory=time.time)


@dataclass
class BudgetThresholdCrossed(DomainEvent):
    """Spend in a period crossed an alert threshold (fires once per period)."""
    period: str
    threshold: int
    spent_amount: float
    limit_amount: float
    pct_used: float
    timestamp: float = field(default_factory=time.time)


@dataclass
class ServicePaused(DomainEvent):
    reason: str
    category: str
    paused_by: str
    timestamp: float = field(default_factory=time.time)


@dataclass
class ServiceResumed(DomainEvent):
    resumed_by: str
    note: Optional[str] = None
    previous_reason: Optional[Any] = None
    timestamp: float = field(default_factory=time.time)
