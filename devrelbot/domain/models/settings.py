"""Static startup configuration for the resilience layer.

Built once by the settings loader and handed to the composition root;
reloading at runtime is not supported.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from .resilience import RateLimitRule

DEFAULT_ACTION_LIMITS: Dict[str, RateLimitRule] = {
    "generate-summary": RateLimitRule(max_requests=5, window_ms=60_000),
    "translate": RateLimitRule(max_requests=5, window_ms=60_000),
    "google-docs-fetch": RateLimitRule(max_requests=100, window_ms=60_000),
    "discord-post": RateLimitRule(max_requests=10, window_ms=60_000),
    "feedback-capture": RateLimitRule(max_requests=3, window_ms=60_000),
    "doc-request": RateLimitRule(max_requests=10, window_ms=60_000),
    "command": RateLimitRule(max_requests=5, window_ms=60_000),
}

DEFAULT_SERVICE_LIMITS: Dict[str, RateLimitRule] = {
    "drive": RateLimitRule(max_requests=100, window_ms=60_000),
    "docs": RateLimitRule(max_requests=20, window_ms=60_000),
    "ai-completion": RateLimitRule(max_requests=10, window_ms=60_000),
    "chat-post": RateLimitRule(max_requests=30, window_ms=60_000),
}

DEFAULT_ALERT_THRESHOLDS: Tuple[int, ...] = (75, 90, 100)


@dataclass
class ThrottleSettings:
    service_limits: Dict[str, RateLimitRule] = field(default_factory=lambda: dict(DEFAULT_SERVICE_LIMITS))
    default_limit: RateLimitRule = field(default_factory=lambda: RateLimitRule(max_requests=60, window_ms=60_000))
    max_queue_depth: int = 50


@dataclass
class CircuitBreakerSettings:
    # No default: the cooldown is a per-deployment decision.
    cooldown_ms: int
    failure_threshold: int = 5
    pause_on_open: List[str] = field(default_factory=list)


@dataclass
class RetrySettings:
    max_attempts: int = 3
    base_delay_ms: int = 1000
    max_delay_ms: int = 10_000
    attempt_timeout_ms: Optional[int] = 30_000
    deadline_ms: Optional[int] = None


@dataclass
class BudgetSettings:
    daily_limit: Decimal = Decimal("100")
    monthly_limit: Decimal = Decimal("3000")
    alert_thresholds: Tuple[int, ...] = DEFAULT_ALERT_THRESHOLDS


@dataclass
class ResilienceSettings:
    """Everything the composition root needs to build the layer."""
    circuit_breaker: CircuitBreakerSettings
    rate_limits: Dict[str, RateLimitRule] = field(default_factory=lambda: dict(DEFAULT_ACTION_LIMITS))
    throttle: ThrottleSettings = field(default_factory=ThrottleSettings)
    retry: RetrySettings = field(default_factory=RetrySettings)
    budget: BudgetSettings = field(default_factory=BudgetSettings)
    ai_model: str = "gpt-4o-mini"
