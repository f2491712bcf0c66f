import logging
from datetime import datetime, timezone

from devrelbot.infrastructure.monitoring.audit import AUDIT_LOGGER_NAME, InMemoryAuditSink, LoggingAuditSink
from devrelbot.infrastructure.monitoring.logger_setup import level_from_name, setup_logging

WHEN = datetime(2025, 3, 14, 12, 0, tzinfo=timezone.utc)


def test_logging_audit_sink_writes_to_audit_logger(caplog):
    sink = LoggingAuditSink()

    with caplog.at_level(logging.WARNING, logger=AUDIT_LOGGER_NAME):
        sink.record("SERVICE_PAUSED", "cost-monitor", WHEN, {"reason": "budget exceeded"})

    record = caplog.records[-1]
    assert record.name == AUDIT_LOGGER_NAME
    assert "SERVICE_PAUSED actor=cost-monitor" in record.getMessage()
    assert "reason='budget exceeded'" in record.getMessage()


def test_in_memory_audit_sink_copies_details():
    sink = InMemoryAuditSink()
    details = {"note": "ok"}

    sink.record("SERVICE_RESUMED", "alice", WHEN, details)
    details["note"] = "changed"

    assert sink.entries == [("SERVICE_RESUMED", "alice", WHEN, {"note": "ok"})]


def test_level_from_name():
    assert level_from_name("debug") == logging.DEBUG
    assert level_from_name("WARNING") == logging.WARNING
    assert level_from_name("nonsense") == logging.INFO
    assert level_from_name(None, default=logging.ERROR) == logging.ERROR


def test_setup_logging_adds_rotating_file_handler(tmp_path):
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    log_file = tmp_path / "devrelbot.log"
    try:
        setup_logging(log_level=logging.DEBUG, log_file=str(log_file))

        handler_types = {type(h).__name__ for h in root.handlers}
        assert "RotatingFileHandler" in handler_types
        assert root.level == logging.DEBUG
    finally:
        for handler in root.handlers[:]:
            root.removeHandler(handler)
            handler.close()
        for handler in saved_handlers:
            root.addHandler(handler)
        root.setLevel(saved_level)
    assert log_file.exists()
