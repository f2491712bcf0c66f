"""Implementation of the per-user rate limiter.

Controls how often a single identity may trigger a logical action (e.g. 5
summary requests per minute per chat user). Uses fixed-window counting;
each (identity, action) pair has its own bucket.

All methods are synchronous: the check and the increment happen with no
suspension point in between, so interleaved coroutines cannot double-admit.
"""

import logging
from typing import Dict, Mapping, Optional, Set, Tuple

from devrelbot.domain.errors import RateLimitExceededError
from devrelbot.domain.events.resilience_events import RateLimitDenied
from devrelbot.domain.interfaces.clock import Clock
from devrelbot.domain.models.resilience import (
    RateLimitBucket,
    RateLimitDecision,
    RateLimitRule,
    RateLimitStatus,
)
from devrelbot.domain.models.settings import DEFAULT_ACTION_LIMITS
from devrelbot.infrastructure.monitoring.event_dispatcher import EventDispatcher
from devrelbot.infrastructure.resilience.clock import SystemClock

logger = logging.getLogger(__name__)

DEFAULT_CLEANUP_INTERVAL_MS = 5 * 60 * 1000

BucketKey = Tuple[str, str]


class RateLimiter:
    """Fixed-window rate limiter keyed by (identity, action)."""

    def __init__(
        self,
        limits: Optional[Mapping[str, RateLimitRule]] = None,
        clock: Optional[Clock] = None,
        dispatcher: Optional[EventDispatcher] = None,
        cleanup_interval_ms: int = DEFAULT_CLEANUP_INTERVAL_MS,
    ):
        """Initializes the rate limiter.

        Args:
            limits: Per-action rules. Actions missing from this map are denied.
            clock: Time source (defaults to the system clock).
            dispatcher: Optional event dispatcher for RateLimitDenied events.
            cleanup_interval_ms: How often stale buckets are swept during checks.
        """
        self.limits: Dict[str, RateLimitRule] = dict(DEFAULT_ACTION_LIMITS if limits is None else limits)
        self.clock = clock or SystemClock()
        self.dispatcher = dispatcher
        self.cleanup_interval_ms = cleanup_interval_ms
        self._buckets: Dict[BucketKey, RateLimitBucket] = {}
        self._pending: Set[BucketKey] = set()
        self._last_cleanup_ms = self.clock.monotonic_ms()
        self._admitted = 0
        self._denied = 0
        logger.info(f"RateLimiter initialized with {len(self.limits)} action limits")

    def _rule_for(self, action: str) -> Optional[RateLimitRule]:
        return self.limits.get(action)

    @staticmethod
    def _validate(identity: str, action: str) -> None:
        if not identity:
            raise ValueError("identity must be a non-empty string")
        if not action:
            raise ValueError("action must be a non-empty string")

    def check_and_consume(self, identity: str, action: str) -> RateLimitDecision:
        """Admits one request for (identity, action) if the window has room.

        Args:
            identity: Stable external-user key.
            action: Logical operation name; must be configured.

        Returns:
            A RateLimitDecision. Denials carry a positive retry_after_ms,
            except for unknown actions, which are denied with None.
        """
        self._validate(identity, action)
        now = self.clock.monotonic_ms()
        self._maybe_cleanup(now)

        rule = self._rule_for(action)
        if rule is None:
            logger.warning(f"No rate limit configured for action '{action}'; denying request from {identity}")
            self._denied += 1
            self._publish_denied(identity, action, None)
            return RateLimitDecision(allowed=False, remaining=0, limit=0, retry_after_ms=None)

        key = (identity, action)
        bucket = self._buckets.get(key)
        if bucket is None or now - bucket.window_start_ms >= rule.window_ms:
            bucket = RateLimitBucket(identity=identity, action=action, window_start_ms=now)
            self._buckets[key] = bucket

        if bucket.count < rule.max_requests:
            bucket.count += 1
            self._admitted += 1
            return RateLimitDecision(
                allowed=True,
                remaining=rule.max_requests - bucket.count,
                limit=rule.max_requests,
            )

        retry_after_ms = max(1, int(bucket.window_start_ms + rule.window_ms - now))
        self._denied += 1
        logger.info(f"Rate limit exceeded for {identity} on '{action}'; retry in {retry_after_ms}ms")
        self._publish_denied(identity, action, retry_after_ms)
        return RateLimitDecision(
            allowed=False,
            remaining=0,
            limit=rule.max_requests,
            retry_after_ms=retry_after_ms,
        )

    def enforce(self, identity: str, action: str) -> RateLimitDecision:
        """Like check_and_consume() but raises RateLimitExceededError on denial."""
        decision = self.check_and_consume(identity, action)
        if not decision.allowed:
            raise RateLimitExceededError(identity, action, decision.retry_after_ms)
        return decision

    def get_status(self, identity: str, action: str) -> RateLimitStatus:
        """Returns the bucket state without consuming anything."""
        self._validate(identity, action)
        rule = self._rule_for(action)
        if rule is None:
            return RateLimitStatus(identity, action, requests_in_window=0, max_requests=0, window_ms=0)

        now = self.clock.monotonic_ms()
        bucket = self._buckets.get((identity, action))
        if bucket is None or now - bucket.window_start_ms >= rule.window_ms:
            return RateLimitStatus(identity, action, 0, rule.max_requests, rule.window_ms)
        return RateLimitStatus(
            identity,
            action,
            requests_in_window=bucket.count,
            max_requests=rule.max_requests,
            window_ms=rule.window_ms,
            reset_in_ms=max(1, int(bucket.window_start_ms + rule.window_ms - now)),
        )

    def reset(self, identity: str, action: Optional[str] = None) -> int:
        """Clears an identity's bucket for one action, or for all actions.

        Returns:
            The number of buckets removed.
        """
        if action is not None:
            removed = 1 if self._buckets.pop((identity, action), None) is not None else 0
        else:
            keys = [key for key in self._buckets if key[0] == identity]
            for key in keys:
                del self._buckets[key]
            removed = len(keys)
        logger.info(f"Reset {removed} rate limit bucket(s) for {identity} (action={action or '*'})")
        return removed

    # --- Pending requests (one in-flight request per user and action) ---

    def mark_pending(self, identity: str, action: str) -> bool:
        """Marks a request as in flight. Returns False if one already was."""
        self._validate(identity, action)
        key = (identity, action)
        if key in self._pending:
            return False
        self._pending.add(key)
        return True

    def is_pending(self, identity: str, action: str) -> bool:
        return (identity, action) in self._pending

    def clear_pending(self, identity: str, action: str) -> None:
        self._pending.discard((identity, action))

    # --- Housekeeping ---

    def cleanup_expired(self) -> int:
        """Evicts buckets whose window has elapsed. Returns the number evicted."""
        now = self.clock.monotonic_ms()
        self._last_cleanup_ms = now
        stale = [
            key for key, bucket in self._buckets.items()
            if key[1] not in self.limits
            or now - bucket.window_start_ms >= self.limits[key[1]].window_ms
        ]
        for key in stale:
            del self._buckets[key]
        if stale:
            logger.debug(f"Evicted {len(stale)} stale rate limit bucket(s)")
        return len(stale)

    def _maybe_cleanup(self, now: float) -> None:
        if now - self._last_cleanup_ms >= self.cleanup_interval_ms:
            self.cleanup_expired()

    def get_statistics(self) -> Dict[str, int]:
        return {
            "active_buckets": len(self._buckets),
            "pending_requests": len(self._pending),
            "admitted": self._admitted,
            "denied": self._denied,
        }

    def _publish_denied(self, identity: str, action: str, retry_after_ms: Optional[int]) -> None:
        if self.dispatcher is not None:
            self.dispatcher.publish(RateLimitDenied(identity=identity, action=action, retry_after_ms=retry_after_ms))
