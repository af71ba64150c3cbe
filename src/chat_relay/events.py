"""Bounded conversation event log with subscribers.

Usage:
    log = EventLog()

    def on_event(event):
        print(event.name, event.data)

    log.subscribe(on_event)
    await log.publish(MESSAGE_APPENDED, {"id": "...", "role": "user"})
"""

from __future__ import annotations

from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
import inspect
import logging
from typing import Any

LOGGER = logging.getLogger(__name__)

MESSAGE_APPENDED = "message.appended"
MESSAGE_UPDATED = "message.updated"
HISTORY_CLEARED = "history.cleared"
STATE_CHANGED = "state.changed"

DEFAULT_RETAINED_EVENTS = 1000

EventHandler = Callable[["ConversationEvent"], Awaitable[None] | None]


@dataclass(frozen=True)
class ConversationEvent:
    """One entry of the event log."""

    sequence: int
    name: str
    data: dict[str, Any] = field(default_factory=dict)


class EventLog:
    """Record conversation events in order and fan them out to subscribers.

    Only the most recent ``max_events`` are retained; sequence numbers keep
    counting across drops and resets. Subscriber failures are logged and
    never interrupt the conversation.
    """

    def __init__(self, max_events: int = DEFAULT_RETAINED_EVENTS) -> None:
        self._events: deque[ConversationEvent] = deque(maxlen=max_events)
        self._next_sequence = 0
        self._subscribers: list[EventHandler] = []

    @property
    def events(self) -> list[ConversationEvent]:
        return list(self._events)

    def names(self) -> list[str]:
        return [event.name for event in self._events]

    def reset(self) -> None:
        """Forget retained events; subscribers stay attached."""
        self._events.clear()

    def subscribe(self, handler: EventHandler) -> None:
        self._subscribers.append(handler)

    def unsubscribe(self, handler: EventHandler) -> None:
        try:
            self._subscribers.remove(handler)
        except ValueError:
            pass

    async def publish(self, name: str, data: dict[str, Any] | None = None) -> ConversationEvent:
        event = ConversationEvent(sequence=self._next_sequence, name=name, data=data or {})
        self._next_sequence += 1
        self._events.append(event)
        for handler in list(self._subscribers):
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:  # noqa: BLE001 - renderers must not break the turn.
                LOGGER.error(
                    "events.handler.failed",
                    extra={
                        "event": "events.handler.failed",
                        "name": name,
                        "error": str(exc),
                    },
                )
        return event
