"""In-process publish/subscribe for events released from the outbox."""

from __future__ import annotations

from collections import defaultdict
from typing import Any, Callable, DefaultDict, List

EventHandler = Callable[[Any], None]

# Handlers registered under this key receive every event.
ALL_EVENTS = "*"


class EventBus:
    """Routes published events to handlers by their `event_type` attribute."""

    def __init__(self) -> None:
        self._handlers: DefaultDict[str, List[EventHandler]] = defaultdict(list)

    def subscribe(self, event_type: str, handler: EventHandler) -> None:
        self._handlers[event_type].append(handler)

    def unsubscribe(self, event_type: str, handler: EventHandler) -> None:
        if handler in self._handlers.get(event_type, ()):
            self._handlers[event_type].remove(handler)

    def handlers_for(self, event_type: str) -> List[EventHandler]:
        return [*self._handlers.get(event_type, ()), *self._handlers.get(ALL_EVENTS, ())]

    def publish(self, event: Any) -> None:
        # A failing handler propagates; the outbox keeps the message for retry.
        for handler in self.handlers_for(event.event_type):
            handler(event)


event_bus = EventBus()
