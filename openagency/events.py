"""
OpenAgency - Notification stream.

Every lifecycle and execution step publishes a structured event to an
explicitly injected sink. The sink is the only channel observers (console,
log collectors, UIs) use; nothing in the control flow depends on it.

Usage:
    ```python
    bus = EventBus()
    bus.subscribe(lambda event: print(event.type, event.message))

    agent = Agent("helper", instructions="...", events=bus)
    ```
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Iterable, Optional, Protocol, Union, runtime_checkable

logger = logging.getLogger("openagency.events")


class EventType(str, Enum):
    """Kinds of events published by agents, capabilities, memory and providers."""

    CREATED = "created"
    INITIALISED = "initialised"
    MESSAGE = "message"
    RESPONSE = "response"
    EXECUTE = "execute"
    RESULT = "result"
    PROBLEM = "problem"
    MEMORY_UPDATED = "memoryupdated"
    ASSISTANT_CREATED = "assistantcreated"
    THREAD_CREATED = "threadcreated"
    RUN_CREATED = "runcreated"
    RUN_COMPLETED = "runcompleted"


@dataclass
class Event:
    """A published notification."""

    type: str
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def message(self) -> str:
        """Human readable summary of the event."""
        return str(self.data.get("message", ""))

    @property
    def name(self) -> Optional[str]:
        """Name of the entity that published the event."""
        return self.data.get("name")

    @property
    def source_type(self) -> Optional[str]:
        """Kind of entity that published the event (Agent, Provider, ...)."""
        return self.data.get("type")


@runtime_checkable
class EventSink(Protocol):
    """Anything events can be published to."""

    def publish(self, event_type: Union[str, EventType], payload: dict[str, Any]) -> None:
        ...


EventCallback = Callable[[Event], None]


class Subscription:
    """Handle returned by :meth:`EventBus.subscribe`."""

    def __init__(
        self,
        bus: "EventBus",
        callback: EventCallback,
        types: Optional[frozenset[str]] = None,
    ):
        self._bus = bus
        self.callback = callback
        self.types = types

    def matches(self, event: Event) -> bool:
        return self.types is None or event.type in self.types

    def unsubscribe(self) -> None:
        self._bus.unsubscribe(self)


class EventBus:
    """Default :class:`EventSink`.

    Logs every event and fans it out to subscribers. Subscriber exceptions
    are logged and never reach the publisher.

    Args:
        history: Number of recent events to retain in :attr:`history`.
            0 disables retention.
    """

    def __init__(self, history: int = 0):
        self._subscriptions: list[Subscription] = []
        self._history: Optional[deque[Event]] = deque(maxlen=history) if history else None

    @property
    def history(self) -> list[Event]:
        """Recently published events, oldest first."""
        return list(self._history) if self._history is not None else []

    def subscribe(
        self,
        callback: EventCallback,
        types: Optional[Iterable[Union[str, EventType]]] = None,
    ) -> Subscription:
        """Register a callback, optionally restricted to some event kinds."""
        wanted = frozenset(_kind(t) for t in types) if types is not None else None
        subscription = Subscription(self, callback, wanted)
        self._subscriptions.append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    def publish(self, event_type: Union[str, EventType], payload: dict[str, Any]) -> None:
        event = Event(type=_kind(event_type), data=dict(payload))

        logger.info("%s: %s", event.type, event.message)

        if self._history is not None:
            self._history.append(event)

        for subscription in list(self._subscriptions):
            if not subscription.matches(event):
                continue
            try:
                subscription.callback(event)
            except Exception:
                logger.exception("Event subscriber failed while handling %s", event.type)


def _kind(event_type: Union[str, EventType]) -> str:
    return event_type.value if isinstance(event_type, EventType) else str(event_type)
