"""Synchronous in-process publisher for domain events.

Publishing happens inside bookkeeping sections, so handlers run inline and
must not await. A failing handler is logged and skipped; it never breaks
the component that published the event.
"""

import logging
from collections import defaultdict
from typing import Callable, DefaultDict, List, Type

from devrelbot.domain.events.resilience_events import DomainEvent

logger = logging.getLogger(__name__)

EventHandler = Callable[[DomainEvent], None]


class EventDispatcher:
    """Routes published events to handlers subscribed to their type (or a base type)."""

    def __init__(self) -> None:
        self._handlers: DefaultDict[Type[DomainEvent], List[EventHandler]] = defaultdict(list)

    def subscribe(self, event_type: Type[DomainEvent], handler: EventHandler) -> None:
        self._handlers[event_type].append(handler)
        logger.debug(f"Subscribed {getattr(handler, '__name__', handler)} to {event_type.__name__}")

    def unsubscribe(self, event_type: Type[DomainEvent], handler: EventHandler) -> None:
        handlers = self._handlers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)

    def publish(self, event: DomainEvent) -> None:
        logger.debug(f"EVENT: {event}")
        for event_type in type(event).__mro__:
            for handler in list(self._handlers.get(event_type, ())):
                try:
                    handler(event)
                except Exception as e:
                    logger.error(
                        f"Event handler {getattr(handler, '__name__', handler)} failed for "
                        f"{type(event).__name__}: {e}",
                        exc_info=True,
                    )
