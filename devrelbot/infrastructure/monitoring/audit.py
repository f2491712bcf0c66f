"""Audit sink that writes pause/resume records to a dedicated logger.

The `devrelbot.audit` logger can be routed to its own handler (file, SIEM
forwarder) by the logging configuration.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Tuple

from devrelbot.domain.interfaces.audit import AuditSink

AUDIT_LOGGER_NAME = "devrelbot.audit"

audit_logger = logging.getLogger(AUDIT_LOGGER_NAME)


class LoggingAuditSink(AuditSink):
    """AuditSink backed by the standard logging module."""

    def __init__(self, audit_log: logging.Logger = audit_logger):
        self._log = audit_log

    def record(self, event_type: str, actor: str, timestamp: datetime, details: Dict[str, Any]) -> None:
        detail_str = ", ".join(f"{key}={value!r}" for key, value in details.items())
        self._log.warning(f"AUDIT {event_type} actor={actor} at={timestamp.isoformat()} {detail_str}")


class InMemoryAuditSink(AuditSink):
    """Keeps audit entries in a list; used by drills and tests."""

    def __init__(self) -> None:
        self.entries: List[Tuple[str, str, datetime, Dict[str, Any]]] = []

    def record(self, event_type: str, actor: str, timestamp: datetime, details: Dict[str, Any]) -> None:
        self.entries.append((event_type, actor, timestamp, dict(details)))
