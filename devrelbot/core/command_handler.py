"""Command Handler: Orchestrates CLI command execution.

Receives commands from the main entry point (main.py) and runs them
against the ResilienceService, rendering results through the
UserInterface. The drill commands exercise budget enforcement and circuit
breaking with simulated dependencies so operators can see the guards
trip without spending real money.
"""

import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

from devrelbot.core.resilience_service import ResilienceService, describe_denial
from devrelbot.domain.errors import ResilienceError, TransientError
from devrelbot.domain.events.resilience_events import CircuitStateChanged
from devrelbot.domain.interfaces.ai_model import AIModel
from devrelbot.domain.interfaces.user_interface import UserInterface
from devrelbot.domain.models.ai import ChatMessage
from devrelbot.domain.models.common import MessageRole
from devrelbot.domain.models.settings import ResilienceSettings
from devrelbot.infrastructure.resilience.api_retry import RetryPolicy

logger = logging.getLogger(__name__)

CLI_USER = "cli"
COMPLETE_ACTION = "generate-summary"
DRILL_SERVICE = "drill"


class CommandHandler:
    """Handles incoming commands and delegates to the resilience layer."""

    def __init__(
        self,
        resilience: ResilienceService,
        settings: ResilienceSettings,
        ui: UserInterface,
        ai_model: Optional[AIModel] = None,
    ):
        self.resilience = resilience
        self.settings = settings
        self.ui = ui
        self.ai_model = ai_model

    def handle_status(self) -> None:
        """Shows configured limits plus live breaker, budget and pause state."""
        self.ui.display_table(
            "Per-user rate limits",
            ["Action", "Max requests", "Window (s)"],
            [
                [action, rule.max_requests, rule.window_ms / 1000]
                for action, rule in sorted(self.settings.rate_limits.items())
            ],
        )

        throttler = self.resilience.throttler
        self.ui.display_table(
            "Outbound throttles",
            ["Service", "Limit", "Window (s)", "Used", "Queued"],
            [
                [
                    name,
                    status["limit"],
                    status["window_ms"] / 1000,
                    status["used"],
                    status["queued"],
                ]
                for name, status in (
                    (name, throttler.get_status(name))
                    for name in sorted(self.settings.throttle.service_limits)
                )
            ],
        )

        breaker_settings = self.settings.circuit_breaker
        stats = self.resilience.breakers.get_all_stats()
        self.ui.display_table(
            f"Circuit breakers (threshold {breaker_settings.failure_threshold}, "
            f"cooldown {breaker_settings.cooldown_ms / 1000:g}s)",
            ["Service", "State", "Consecutive failures", "Total requests"],
            [
                [name, s["state"], s["consecutive_failures"], s["total_requests"]]
                for name, s in sorted(stats.items())
            ],
        )

        budget = self.resilience.cost_monitor.check_budget()
        values: Dict[str, Any] = {
            "Within budget": budget.within_budget,
            "Daily": f"${budget.daily['spent']:.2f} of ${budget.daily['limit']:.2f}",
            "Monthly": f"${budget.monthly['spent']:.2f} of ${budget.monthly['limit']:.2f}",
            "Alert thresholds": ", ".join(f"{t}%" for t in self.resilience.cost_monitor.alert_thresholds),
        }
        pause = self.resilience.pause_controller.is_paused()
        values["Paused"] = f"yes ({pause.category.value}: {pause.reason})" if pause.paused else "no"
        self.ui.display_mapping("Budget", values)

    async def handle_complete(self, prompt: str, user_id: str = CLI_USER) -> bool:
        """Runs one AI completion through the full guard.

        A user gets one completion in flight at a time; a second one is
        turned away before it spends rate-limit budget.

        Returns:
            True if an answer was shown, False if a guard denied the request.
        """
        if self.ai_model is None:
            self.ui.display_error("No AI provider configured. Set OPENAI_API_KEY or ai.api_key.")
            return False
        rate_limiter = self.resilience.rate_limiter
        if not rate_limiter.mark_pending(user_id, COMPLETE_ACTION):
            logger.info(f"Completion for {user_id} rejected: previous request still in flight")
            self.ui.display_warning("Your previous request is still being processed. Please wait for it to finish.")
            return False
        try:
            self.resilience.admit_command(user_id, COMPLETE_ACTION)
            messages: List[ChatMessage] = [ChatMessage(role=MessageRole("user"), content=prompt)]
            response = await self.ai_model.send_messages(messages)
        except ResilienceError as e:
            logger.warning(f"Completion denied: {type(e).__name__}: {e}")
            self.ui.display_error(describe_denial(e))
            return False
        finally:
            rate_limiter.clear_pending(user_id, COMPLETE_ACTION)

        self.ui.display_output(response.content, title=response.model_name or "AI")
        budget = self.resilience.cost_monitor.check_budget()
        self.ui.display_info(
            f"Cost ${response.cost or 0:.6f} · daily budget {budget.daily['pct_used']:.2f}% used"
        )
        return True

    async def handle_drill_budget(
        self,
        spend_per_call: float,
        calls: int,
        resume_as: Optional[str] = None,
    ) -> Decimal:
        """Simulates metered calls until the budget pauses the service.

        Args:
            spend_per_call: Dollars charged by each simulated call.
            calls: Number of calls to attempt.
            resume_as: If set, resumes the service as this actor afterwards.

        Returns:
            Total dollars actually charged.
        """
        charged = Decimal("0")
        amount = Decimal(str(spend_per_call))
        policy = RetryPolicy(max_attempts=1)

        async def metered_call() -> Decimal:
            return amount

        for number in range(1, calls + 1):
            try:
                await self.resilience.call(DRILL_SERVICE, metered_call, policy, cost_of=lambda cost: cost)
            except ResilienceError as e:
                self.ui.display_warning(f"Call {number} blocked: {describe_denial(e)}")
                break
            charged += amount
        else:
            self.ui.display_info(f"All {calls} calls completed without hitting the budget.")

        self.ui.display_mapping("Budget drill", {
            "Attempted spend": f"${amount * calls:.2f}",
            "Charged": f"${charged:.2f}",
            "Paused": self.resilience.pause_controller.is_paused().paused,
        })
        if resume_as and self.resilience.pause_controller.is_paused().paused:
            self.resilience.pause_controller.resume(resume_as, note="budget drill finished")
            self.ui.display_info(f"Service resumed by {resume_as}.")
        return charged

    async def handle_drill_breaker(self, failures: int) -> List[str]:
        """Feeds a failing dependency into its breaker and reports transitions.

        Returns:
            The transitions observed, as "OLD -> NEW" strings.
        """
        transitions: List[str] = []

        def on_change(event: CircuitStateChanged) -> None:
            if event.service_name == DRILL_SERVICE:
                transitions.append(f"{event.previous_state} -> {event.new_state}")

        async def failing_call() -> None:
            raise TransientError("simulated dependency outage", status_code=503)

        dispatcher = self.resilience.dispatcher
        dispatcher.subscribe(CircuitStateChanged, on_change)
        rejected = 0
        try:
            for _ in range(failures):
                try:
                    await self.resilience.breakers.execute(DRILL_SERVICE, failing_call)
                except TransientError:
                    pass
                except ResilienceError:
                    rejected += 1
        finally:
            dispatcher.unsubscribe(CircuitStateChanged, on_change)

        stats = self.resilience.breakers.get_all_stats()[DRILL_SERVICE]
        self.ui.display_mapping("Breaker drill", {
            "Failures injected": failures,
            "Rejected while open": rejected,
            "State": stats["state"],
            "Transitions": ", ".join(transitions) or "none",
        })
        return transitions
