"""Event bus that decouples the pipeline from the chat UI.

Usage:
    bus = EventBus()

    async def on_added(event):
        print(f"Attached: {event.data['filename']}")

    bus.subscribe(ATTACHMENT_ADDED, on_added)
    await bus.publish(ATTACHMENT_ADDED, {"filename": "notes.txt"})
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
import inspect
import logging
from typing import Any

LOGGER = logging.getLogger(__name__)

ATTACHMENT_ADDED = "attachment-added"
ATTACHMENT_REMOVED = "attachment-removed"
DRAG_SESSION_STARTED = "drag-session-started"
DRAG_SESSION_PROGRESS = "drag-session-progress"
DRAG_SESSION_COMPLETED = "drag-session-completed"
DRAG_SESSION_ERROR = "drag-session-error"

EVENT_NAMES = frozenset(
    {
        ATTACHMENT_ADDED,
        ATTACHMENT_REMOVED,
        DRAG_SESSION_STARTED,
        DRAG_SESSION_PROGRESS,
        DRAG_SESSION_COMPLETED,
        DRAG_SESSION_ERROR,
    }
)


@dataclass
class Event:
    """Event data container."""

    name: str
    data: dict[str, Any]
    source: str | None = None


class EventBus:
    """Publish/subscribe bus owned by one pipeline instance.

    Handlers may be plain callables or coroutine functions. A failing
    handler is logged and never interrupts the publisher. ``history`` keeps
    the most recent events so a UI that polls instead of subscribing can
    still catch up.
    """

    def __init__(self, history_limit: int = 100) -> None:
        self.history_limit = history_limit
        self._subscribers: dict[str, list[Callable]] = {}
        self.history: list[Event] = []

    def subscribe(self, event_name: str, handler: Callable) -> None:
        """Subscribe to an event.

        Args:
            event_name: Event to listen for (e.g., ``attachment-added``)
            handler: Function or coroutine function called with the Event
        """
        self._subscribers.setdefault(event_name, []).append(handler)
        LOGGER.debug("Subscribed to event: %s", event_name)

    def unsubscribe(self, event_name: str, handler: Callable) -> None:
        if event_name in self._subscribers:
            try:
                self._subscribers[event_name].remove(handler)
            except ValueError:
                pass

    async def publish(
        self, event_name: str, data: dict[str, Any], source: str | None = None
    ) -> Event:
        """Publish an event to all subscribers and return it."""
        event = Event(name=event_name, data=data, source=source)
        self.history.append(event)
        if len(self.history) > self.history_limit:
            del self.history[: len(self.history) - self.history_limit]

        for handler in list(self._subscribers.get(event_name, [])):
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception as exc:  # noqa: BLE001 - observers must not break the pipeline.
                LOGGER.error("Event handler failed for %s: %s", event_name, exc)
        return event

    def drain(self) -> list[Event]:
        """Return and forget the buffered events."""
        events = list(self.history)
        self.history.clear()
        return events

    def clear(self, event_name: str | None = None) -> None:
        if event_name:
            self._subscribers.pop(event_name, None)
        else:
            self._subscribers.clear()
