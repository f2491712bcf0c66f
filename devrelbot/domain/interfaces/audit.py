"""Interface for the audit sink that receives pause/resume records."""

import abc
from datetime import datetime
from typing import Any, Dict


class AuditSink(abc.ABC):
    """Abstract Base Class for recording security-relevant state changes."""

    @abc.abstractmethod
    def record(self, event_type: str, actor: str, timestamp: datetime, details: Dict[str, Any]) -> None:
        """Records one audit entry.

        Args:
            event_type: Short upper-case tag (e.g. 'SERVICE_PAUSED').
            actor: Who triggered the change.
            timestamp: When the change happened (UTC).
            details: Free-form context (reason, note, category).
        """
        pass
