import logging

from devrelbot.domain.events.resilience_events import DomainEvent, RateLimitDenied, ServicePaused
from devrelbot.infrastructure.monitoring.event_dispatcher import EventDispatcher


def test_handlers_receive_matching_events():
    dispatcher = EventDispatcher()
    received = []
    dispatcher.subscribe(RateLimitDenied, received.append)

    event = RateLimitDenied(identity="user-1", action="translate", retry_after_ms=100)
    dispatcher.publish(event)
    dispatcher.publish(ServicePaused(reason="manual", category="manual", paused_by="ops"))

    assert received == [event]


def test_base_type_subscription_sees_everything():
    dispatcher = EventDispatcher()
    received = []
    dispatcher.subscribe(DomainEvent, received.append)

    dispatcher.publish(RateLimitDenied(identity="user-1", action="translate", retry_after_ms=None))
    dispatcher.publish(ServicePaused(reason="manual", category="manual", paused_by="ops"))

    assert len(received) == 2


def test_failing_handler_is_logged_not_raised(caplog):
    dispatcher = EventDispatcher()
    received = []

    def broken(event):
        raise RuntimeError("handler bug")

    dispatcher.subscribe(ServicePaused, broken)
    dispatcher.subscribe(ServicePaused, received.append)

    with caplog.at_level(logging.ERROR):
        dispatcher.publish(ServicePaused(reason="manual", category="manual", paused_by="ops"))

    assert len(received) == 1
    assert "handler bug" in caplog.text


def test_unsubscribe():
    dispatcher = EventDispatcher()
    received = []
    dispatcher.subscribe(ServicePaused, received.append)
    dispatcher.unsubscribe(ServicePaused, received.append)

    dispatcher.publish(ServicePaused(reason="manual", category="manual", paused_by="ops"))

    assert received == []
