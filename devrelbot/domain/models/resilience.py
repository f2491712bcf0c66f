"""Domain models for the resilience and cost-control bounded context.

Plain state records. Components own and mutate them synchronously; nothing
here performs I/O.
"""

import enum
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, Optional, Set


# --- Admission control ---

@dataclass(frozen=True)
class RateLimitRule:
    """Admission limit for one logical action (or one dependency)."""
    max_requests: int
    window_ms: int = 60_000

    def __post_init__(self) -> None:
        if self.max_requests <= 0:
            raise ValueError("max_requests must be > 0")
        if self.window_ms <= 0:
            raise ValueError("window_ms must be > 0")


@dataclass
class RateLimitBucket:
    """Fixed-window counter for one (identity, action) pair."""
    identity: str
    action: str
    window_start_ms: float
    count: int = 0


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of RateLimiter.check_and_consume()."""
    allowed: bool
    remaining: int
    limit: int
    retry_after_ms: Optional[int] = None


@dataclass(frozen=True)
class RateLimitStatus:
    """Read-only view of an identity's bucket for an action."""
    identity: str
    action: str
    requests_in_window: int
    max_requests: int
    window_ms: int
    reset_in_ms: Optional[int] = None


@dataclass
class ThrottleBudget:
    """Fixed-window outbound call budget for one dependency."""
    service_name: str
    window_start_ms: float
    limit: int
    window_ms: int
    count: int = 0
    blocked_until_ms: float = 0.0


# --- Circuit breaking ---

class CircuitState(str, enum.Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


@dataclass
class CircuitBreakerState:
    """Mutable state of one dependency's breaker."""
    service_name: str
    state: CircuitState = CircuitState.CLOSED
    consecutive_failures: int = 0
    last_failure_at_ms: Optional[float] = None
    last_success_at_ms: Optional[float] = None
    last_state_change_at_ms: float = 0.0
    half_open_probe_in_flight: bool = False
    total_requests: int = 0
    last_error: Optional[BaseException] = None


# --- Retry ---

class AttemptOutcome(str, enum.Enum):
    SUCCESS = "success"
    TRANSIENT_FAILURE = "transient_failure"
    FATAL_FAILURE = "fatal_failure"
    CIRCUIT_OPEN = "circuit_open"
    ABANDONED = "abandoned"


@dataclass
class RetryAttempt:
    """One attempt of a RetryHandler invocation (never persisted)."""
    operation_id: str
    attempt_number: int
    delay_ms: float
    outcome: Optional[AttemptOutcome] = None


# --- Budget ---

class BudgetPeriod(str, enum.Enum):
    DAILY = "daily"
    MONTHLY = "monthly"


@dataclass
class BudgetLedger:
    """Spend accumulated in the current period against its ceiling."""
    period: BudgetPeriod
    period_start: date
    limit_amount: Decimal
    spent_amount: Decimal = Decimal("0")
    alerts_sent: Set[int] = field(default_factory=set)

    @property
    def pct_used(self) -> float:
        if self.limit_amount <= 0:
            return 100.0
        return float(self.spent_amount / self.limit_amount * 100)

    @property
    def exceeded(self) -> bool:
        return self.spent_amount >= self.limit_amount


@dataclass(frozen=True)
class BudgetStatus:
    """Result of CostMonitor.check_budget()."""
    within_budget: bool
    pct_used: float
    daily: Dict[str, Any]
    monthly: Dict[str, Any]


# --- Pause ---

class PauseCategory(str, enum.Enum):
    MANUAL = "manual"
    BUDGET = "budget"
    CIRCUIT = "circuit"
    SECURITY = "security"


@dataclass
class ServicePauseRecord:
    """The single active pause record."""
    paused: bool = False
    reason: Optional[str] = None
    category: Optional[PauseCategory] = None
    paused_at: Optional[datetime] = None
    paused_by: Optional[str] = None
    resumed_at: Optional[datetime] = None
    resumed_by: Optional[str] = None
    resume_note: Optional[str] = None


@dataclass(frozen=True)
class PauseStatus:
    paused: bool
    reason: Optional[str] = None
    category: Optional[PauseCategory] = None
