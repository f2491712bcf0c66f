"""Metered spend tracking and budget enforcement.

Keeps a daily and a monthly BudgetLedger, raises threshold alerts exactly
once per threshold and period, and pauses the service when either ceiling
is reached. Amounts are Decimals so that spends summing to the limit hit
it exactly.
"""

import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Dict, Iterable, Optional, Set, Union

from devrelbot.domain.events.resilience_events import BudgetThresholdCrossed
from devrelbot.domain.interfaces.clock import Clock
from devrelbot.domain.interfaces.pause import PauseController
from devrelbot.domain.models.common import TokenUsage
from devrelbot.domain.models.resilience import BudgetLedger, BudgetPeriod, BudgetStatus, PauseCategory
from devrelbot.domain.models.settings import DEFAULT_ALERT_THRESHOLDS
from devrelbot.infrastructure.monitoring.event_dispatcher import EventDispatcher
from devrelbot.infrastructure.resilience.clock import SystemClock

logger = logging.getLogger(__name__)

Amount = Union[int, float, str, Decimal]

COST_MONITOR_ACTOR = "cost-monitor"

# USD per million tokens: (input, output)
MODEL_PRICING: Dict[str, tuple] = {
    "gpt-4o": (Decimal("2.50"), Decimal("10.00")),
    "gpt-4o-mini": (Decimal("0.15"), Decimal("0.60")),
    "gpt-4.1": (Decimal("2.00"), Decimal("8.00")),
    "gpt-4.1-mini": (Decimal("0.40"), Decimal("1.60")),
    "claude-sonnet": (Decimal("3.00"), Decimal("15.00")),
    "claude-haiku": (Decimal("0.80"), Decimal("4.00")),
    "claude-opus": (Decimal("15.00"), Decimal("75.00")),
}
DEFAULT_PRICING_MODEL = "gpt-4o-mini"


def estimate_completion_cost(token_usage: Optional[TokenUsage], model: Optional[str] = None) -> Decimal:
    """Converts token usage to dollars using MODEL_PRICING.

    Unknown models are priced by the longest matching prefix in the table,
    then by the default model.
    """
    if not token_usage:
        return Decimal("0")
    name = model or DEFAULT_PRICING_MODEL
    pricing = MODEL_PRICING.get(name)
    if pricing is None:
        prefixes = [key for key in MODEL_PRICING if name.startswith(key)]
        pricing = MODEL_PRICING[max(prefixes, key=len)] if prefixes else MODEL_PRICING[DEFAULT_PRICING_MODEL]
    input_price, output_price = pricing
    million = Decimal(1_000_000)
    return (
        Decimal(token_usage.get("prompt_tokens", 0)) / million * input_price
        + Decimal(token_usage.get("completion_tokens", 0)) / million * output_price
    )


def _period_start(period: BudgetPeriod, now: datetime) -> date:
    today = now.date()
    if period == BudgetPeriod.DAILY:
        return today
    return today.replace(day=1)


def _to_decimal(amount: Amount) -> Decimal:
    if isinstance(amount, Decimal):
        return amount
    return Decimal(str(amount))


class CostMonitor:
    """Accumulates spend and enforces daily/monthly ceilings."""

    def __init__(
        self,
        pause_controller: PauseController,
        daily_limit: Amount = Decimal("100"),
        monthly_limit: Amount = Decimal("3000"),
        alert_thresholds: Iterable[int] = DEFAULT_ALERT_THRESHOLDS,
        clock: Optional[Clock] = None,
        dispatcher: Optional[EventDispatcher] = None,
    ):
        """Initializes both ledgers for the current period.

        Args:
            pause_controller: Paused when a ceiling is reached.
            daily_limit: Daily spend ceiling in dollars.
            monthly_limit: Monthly spend ceiling in dollars.
            alert_thresholds: Percentages that raise an alert; 100 always pauses.
            clock: Time source (defaults to the system clock).
            dispatcher: Receives BudgetThresholdCrossed events.
        """
        self.pause_controller = pause_controller
        self.clock = clock or SystemClock()
        self.dispatcher = dispatcher
        self.alert_thresholds = sorted(set(alert_thresholds) | {100})
        # Periods whose ceiling was crossed but whose budget pause has not taken hold yet.
        self._pause_pending: Set[BudgetPeriod] = set()
        now = self.clock.now()
        self._ledgers: Dict[BudgetPeriod, BudgetLedger] = {
            BudgetPeriod.DAILY: BudgetLedger(
                period=BudgetPeriod.DAILY,
                period_start=_period_start(BudgetPeriod.DAILY, now),
                limit_amount=_to_decimal(daily_limit),
            ),
            BudgetPeriod.MONTHLY: BudgetLedger(
                period=BudgetPeriod.MONTHLY,
                period_start=_period_start(BudgetPeriod.MONTHLY, now),
                limit_amount=_to_decimal(monthly_limit),
            ),
        }
        logger.info(f"CostMonitor initialized: daily=${daily_limit}, monthly=${monthly_limit}")

    def ledger(self, period: BudgetPeriod) -> BudgetLedger:
        self._rollover()
        return self._ledgers[period]

    def record_spend(
        self,
        amount: Amount,
        *,
        service_name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> None:
        """Adds `amount` dollars to both ledgers and applies alerts/pausing.

        Raises:
            ValueError: If amount is negative.
        """
        value = _to_decimal(amount)
        if value < 0:
            raise ValueError("spend amount must be >= 0")
        if value == 0:
            return

        self._rollover()
        for ledger in self._ledgers.values():
            ledger.spent_amount += value
        logger.debug(
            f"Recorded spend ${value} ({service_name or 'unknown'}: {description or '-'}); "
            f"daily=${self._ledgers[BudgetPeriod.DAILY].spent_amount}, "
            f"monthly=${self._ledgers[BudgetPeriod.MONTHLY].spent_amount}"
        )
        for ledger in self._ledgers.values():
            self._apply_thresholds(ledger)

    def check_budget(self) -> BudgetStatus:
        self._rollover()
        daily = self._ledgers[BudgetPeriod.DAILY]
        monthly = self._ledgers[BudgetPeriod.MONTHLY]
        return BudgetStatus(
            within_budget=not daily.exceeded and not monthly.exceeded,
            pct_used=max(daily.pct_used, monthly.pct_used),
            daily=self._summary(daily),
            monthly=self._summary(monthly),
        )

    def enforce_ceiling(self) -> None:
        """Pauses the service if a crossed ceiling has not paused it yet.

        Called before metered work. A budget pause that an operator resumed
        is not re-taken in the same period.
        """
        self._rollover()
        for ledger in self._ledgers.values():
            self._enforce_ceiling(ledger)

    # --- Synchronous bookkeeping ---

    def _rollover(self) -> None:
        now = self.clock.now()
        for period, ledger in self._ledgers.items():
            start = _period_start(period, now)
            if start != ledger.period_start:
                logger.info(
                    f"Budget period rollover ({period.value}): {ledger.period_start} -> {start}; "
                    f"closing spend ${ledger.spent_amount}"
                )
                ledger.period_start = start
                ledger.spent_amount = Decimal("0")
                ledger.alerts_sent = set()
                self._pause_pending.discard(period)

    def _apply_thresholds(self, ledger: BudgetLedger) -> None:
        pct = ledger.pct_used
        for threshold in self.alert_thresholds:
            if pct < threshold or threshold in ledger.alerts_sent:
                continue
            ledger.alerts_sent.add(threshold)
            message = (
                f"{ledger.period.value.capitalize()} budget {threshold}% threshold crossed: "
                f"${ledger.spent_amount} of ${ledger.limit_amount} ({pct:.1f}%)"
            )
            if threshold >= 100:
                logger.error(message)
            else:
                logger.warning(message)
            if self.dispatcher is not None:
                self.dispatcher.publish(BudgetThresholdCrossed(
                    period=ledger.period.value,
                    threshold=threshold,
                    spent_amount=float(ledger.spent_amount),
                    limit_amount=float(ledger.limit_amount),
                    pct_used=pct,
                ))
            if threshold >= 100:
                self._pause_pending.add(ledger.period)
        self._enforce_ceiling(ledger)

    def _enforce_ceiling(self, ledger: BudgetLedger) -> None:
        """Takes the budget pause for a crossed ceiling, once per period.

        If the service is already paused for another reason the pause stays
        pending and is taken on the next spend or enforce_ceiling() call.
        """
        if ledger.period not in self._pause_pending:
            return
        status = self.pause_controller.is_paused()
        if status.paused:
            if status.category == PauseCategory.BUDGET:
                self._pause_pending.discard(ledger.period)
            else:
                logger.warning(
                    f"{ledger.period.value.capitalize()} budget exhausted while paused for "
                    f"'{status.reason}'; budget pause deferred"
                )
            return
        if self.pause_controller.pause(
            reason=(
                f"budget exceeded: {ledger.period.value} spend ${ledger.spent_amount} "
                f"reached limit ${ledger.limit_amount}"
            ),
            paused_by=COST_MONITOR_ACTOR,
            category=PauseCategory.BUDGET,
        ):
            self._pause_pending.discard(ledger.period)

    @staticmethod
    def _summary(ledger: BudgetLedger) -> Dict[str, object]:
        return {
            "period_start": ledger.period_start.isoformat(),
            "spent": float(ledger.spent_amount),
            "limit": float(ledger.limit_amount),
            "pct_used": round(ledger.pct_used, 2),
            "alerts_sent": sorted(ledger.alerts_sent),
        }
