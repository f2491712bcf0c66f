from datetime import datetime, timezone
from decimal import Decimal

import pytest

from devrelbot.domain.errors import BudgetExceededError
from devrelbot.domain.events.resilience_events import BudgetThresholdCrossed, ServicePaused
from devrelbot.domain.models.resilience import BudgetPeriod, PauseCategory
from devrelbot.infrastructure.resilience.cost_monitor import CostMonitor, estimate_completion_cost
from devrelbot.infrastructure.resilience.service_pause import ServicePauseController


@pytest.fixture
def pause_controller(clock, audit_sink, dispatcher):
    return ServicePauseController(clock=clock, audit_sink=audit_sink, dispatcher=dispatcher)


@pytest.fixture
def monitor(pause_controller, clock, dispatcher):
    return CostMonitor(
        pause_controller,
        daily_limit=Decimal("100"),
        monthly_limit=Decimal("3000"),
        alert_thresholds=(75, 90),
        clock=clock,
        dispatcher=dispatcher,
    )


def thresholds_crossed(events, period="daily"):
    return [e.threshold for e in events if isinstance(e, BudgetThresholdCrossed) and e.period == period]


def test_spend_below_limit_stays_within_budget(monitor, pause_controller):
    monitor.record_spend(Decimal("40"))

    status = monitor.check_budget()
    assert status.within_budget
    assert status.pct_used == pytest.approx(40.0)
    assert not pause_controller.is_paused().paused


def test_exact_limit_pauses_once(monitor, pause_controller, captured_events):
    for _ in range(10):
        monitor.record_spend("10.00")

    status = pause_controller.is_paused()
    assert status.paused
    assert status.category == PauseCategory.BUDGET
    assert not monitor.check_budget().within_budget
    assert len([e for e in captured_events if isinstance(e, ServicePaused)]) == 1


def test_fractional_spend_sums_exactly(monitor, pause_controller):
    for _ in range(1000):
        monitor.record_spend(0.1)

    assert monitor.ledger(BudgetPeriod.DAILY).spent_amount == Decimal("100.0")
    assert pause_controller.is_paused().paused


def test_large_drill_blocked_at_limit(monitor, pause_controller):
    charged = Decimal("0")
    for _ in range(100):
        try:
            pause_controller.ensure_not_paused()
        except BudgetExceededError:
            break
        monitor.record_spend(50)
        charged += 50

    assert charged == Decimal("100")


def test_alerts_fire_once_per_threshold(monitor, captured_events):
    monitor.record_spend(76)
    monitor.record_spend(1)
    monitor.record_spend(1)
    monitor.record_spend(13)

    assert thresholds_crossed(captured_events) == [75, 90]


def test_single_spend_crossing_several_thresholds(monitor, captured_events):
    monitor.record_spend(120)

    assert thresholds_crossed(captured_events) == [75, 90, 100]


def test_threshold_100_always_enforced(pause_controller, clock):
    monitor = CostMonitor(pause_controller, daily_limit=10, alert_thresholds=(), clock=clock)

    monitor.record_spend(10)

    assert monitor.alert_thresholds == [100]
    assert pause_controller.is_paused().paused


def test_monthly_limit_pauses(pause_controller, clock):
    monitor = CostMonitor(pause_controller, daily_limit=1000, monthly_limit=50, clock=clock)

    monitor.record_spend(50)

    status = pause_controller.is_paused()
    assert status.paused
    assert "monthly" in status.reason


def test_daily_rollover_resets_spend_and_alerts(monitor, clock, captured_events):
    monitor.record_spend(80)
    clock.set_now(datetime(2025, 3, 15, 0, 0, 1, tzinfo=timezone.utc))

    status = monitor.check_budget()
    assert status.daily["spent"] == 0
    assert status.monthly["spent"] == 80

    monitor.record_spend(80)
    assert thresholds_crossed(captured_events) == [75, 75]


def test_monthly_rollover(monitor, clock):
    monitor.record_spend(80)
    clock.set_now(datetime(2025, 4, 1, 9, 0, tzinfo=timezone.utc))

    status = monitor.check_budget()
    assert status.monthly["spent"] == 0
    assert status.monthly["period_start"] == "2025-04-01"


def test_resume_after_budget_pause_is_not_repaused_in_same_period(monitor, pause_controller):
    monitor.record_spend(100)
    pause_controller.resume("admin", note="limit raised by finance")

    monitor.record_spend(5)
    monitor.enforce_ceiling()

    assert not pause_controller.is_paused().paused


def test_ceiling_crossed_during_other_pause_pauses_after_resume(monitor, pause_controller, captured_events):
    pause_controller.pause("leaked token in public repo", paused_by="leak-detector", category=PauseCategory.SECURITY)
    monitor.record_spend(150)

    assert pause_controller.is_paused().category == PauseCategory.SECURITY
    pause_controller.resume("admin", note="token rotated")
    monitor.enforce_ceiling()

    status = pause_controller.is_paused()
    assert status.paused
    assert status.category == PauseCategory.BUDGET
    assert thresholds_crossed(captured_events).count(100) == 1


def test_ceiling_crossed_during_other_pause_pauses_on_next_spend(monitor, pause_controller):
    pause_controller.pause("maintenance", paused_by="ops")
    monitor.record_spend(100)
    pause_controller.resume("ops")

    monitor.record_spend(1)

    assert pause_controller.is_paused().category == PauseCategory.BUDGET


def test_deferred_budget_pause_dropped_at_rollover(monitor, pause_controller, clock):
    pause_controller.pause("maintenance", paused_by="ops")
    monitor.record_spend(100)
    pause_controller.resume("ops")
    clock.set_now(datetime(2025, 3, 15, 0, 0, 1, tzinfo=timezone.utc))

    monitor.enforce_ceiling()

    assert not pause_controller.is_paused().paused


def test_zero_and_negative_spend(monitor):
    monitor.record_spend(0)
    assert monitor.check_budget().daily["spent"] == 0

    with pytest.raises(ValueError):
        monitor.record_spend(-1)


def test_estimate_completion_cost():
    usage = {"prompt_tokens": 1_000_000, "completion_tokens": 1_000_000, "total_tokens": 2_000_000}

    assert estimate_completion_cost(usage, "gpt-4o-mini") == Decimal("0.75")
    assert estimate_completion_cost(usage, "gpt-4o-2024-08-06") == Decimal("12.50")
    assert estimate_completion_cost(usage, "claude-sonnet-4") == Decimal("18.00")
    assert estimate_completion_cost(None, "gpt-4o") == Decimal("0")
