"""Process-wide pause/resume switch.

Budget enforcement, circuit breakers and leak detectors pause the service
through this controller; bot commands and document processing call
ensure_not_paused() before doing privileged work. Only a human resumes.

Pausing an already-paused service keeps the first reason: the original
cause is what the operator has to investigate before resuming.
"""

import logging
from dataclasses import replace
from typing import Optional

from devrelbot.domain.errors import BudgetExceededError, NotPausedError, ServicePausedError
from devrelbot.domain.events.resilience_events import ServicePaused, ServiceResumed
from devrelbot.domain.interfaces.audit import AuditSink
from devrelbot.domain.interfaces.clock import Clock
from devrelbot.domain.interfaces.pause import PauseController
from devrelbot.domain.models.resilience import PauseCategory, PauseStatus, ServicePauseRecord
from devrelbot.infrastructure.monitoring.audit import LoggingAuditSink
from devrelbot.infrastructure.monitoring.event_dispatcher import EventDispatcher
from devrelbot.infrastructure.resilience.clock import SystemClock

logger = logging.getLogger(__name__)


class ServicePauseController(PauseController):
    """Holds the single active ServicePauseRecord."""

    def __init__(
        self,
        clock: Optional[Clock] = None,
        audit_sink: Optional[AuditSink] = None,
        dispatcher: Optional[EventDispatcher] = None,
    ):
        self.clock = clock or SystemClock()
        self.audit_sink = audit_sink or LoggingAuditSink()
        self.dispatcher = dispatcher
        self._record = ServicePauseRecord()

    @property
    def record(self) -> ServicePauseRecord:
        """Snapshot copy of the active record."""
        return replace(self._record)

    def pause(
        self,
        reason: str,
        paused_by: str = "system",
        category: PauseCategory = PauseCategory.MANUAL,
    ) -> bool:
        """Pauses the service.

        Args:
            reason: Human-readable cause, shown to users and operators.
            paused_by: Component or person that triggered the pause.
            category: Kind of pause; BUDGET pauses surface as BudgetExceededError.

        Returns:
            True if the service was running and is now paused, False if it
            was already paused (the existing record is left untouched).
        """
        if self._record.paused:
            logger.info(
                f"Pause requested by {paused_by} ({reason}) while already paused "
                f"for '{self._record.reason}'; keeping original reason"
            )
            return False

        now = self.clock.now()
        self._record = ServicePauseRecord(
            paused=True,
            reason=reason,
            category=category,
            paused_at=now,
            paused_by=paused_by,
        )
        logger.error(f"SERVICE PAUSED by {paused_by} [{category.value}]: {reason}")
        self.audit_sink.record(
            "SERVICE_PAUSED",
            paused_by,
            now,
            {"reason": reason, "category": category.value},
        )
        if self.dispatcher is not None:
            self.dispatcher.publish(ServicePaused(reason=reason, category=category.value, paused_by=paused_by))
        return True

    def resume(self, actor: str, note: Optional[str] = None) -> None:
        """Resumes the service.

        Raises:
            NotPausedError: If the service is not paused.
        """
        if not self._record.paused:
            raise NotPausedError()
        if not actor:
            raise ValueError("actor must be a non-empty string")

        now = self.clock.now()
        previous_reason = self._record.reason
        self._record.paused = False
        self._record.resumed_at = now
        self._record.resumed_by = actor
        self._record.resume_note = note
        logger.warning(f"Service resumed by {actor} (was paused for '{previous_reason}'): {note or ''}")
        self.audit_sink.record(
            "SERVICE_RESUMED",
            actor,
            now,
            {"note": note, "previous_reason": previous_reason},
        )
        if self.dispatcher is not None:
            self.dispatcher.publish(ServiceResumed(resumed_by=actor, note=note, previous_reason=previous_reason))

    def is_paused(self) -> PauseStatus:
        if not self._record.paused:
            return PauseStatus(paused=False)
        return PauseStatus(paused=True, reason=self._record.reason, category=self._record.category)

    def ensure_not_paused(self) -> None:
        record = self._record
        if not record.paused:
            return
        if record.category == PauseCategory.BUDGET:
            raise BudgetExceededError(record.reason)
        raise ServicePausedError(record.reason)
