"""Interface for the cross-cutting pause/resume primitive.

Budget enforcement, circuit breakers and leak detectors all pause through
this contract; privileged callers consult it before doing any work.
"""

import abc
from typing import Optional

from ..models.resilience import PauseCategory, PauseStatus


class PauseController(abc.ABC):
    """Abstract Base Class for a process-wide pause switch."""

    @abc.abstractmethod
    def pause(
        self,
        reason: str,
        paused_by: str = "system",
        category: PauseCategory = PauseCategory.MANUAL,
    ) -> bool:
        """Pauses the service. Returns True only if it was not already paused."""
        pass

    @abc.abstractmethod
    def resume(self, actor: str, note: Optional[str] = None) -> None:
        """Resumes a paused service.

        Raises:
            NotPausedError: If the service is not paused.
        """
        pass

    @abc.abstractmethod
    def is_paused(self) -> PauseStatus:
        pass

    @abc.abstractmethod
    def ensure_not_paused(self) -> None:
        """Raises ServicePausedError (or BudgetExceededError) when paused."""
        pass
