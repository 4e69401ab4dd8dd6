"""Observer interface between the pipeline and the chat UI."""

from .bus import (
    ATTACHMENT_ADDED,
    ATTACHMENT_REMOVED,
    DRAG_SESSION_COMPLETED,
    DRAG_SESSION_ERROR,
    DRAG_SESSION_PROGRESS,
    DRAG_SESSION_STARTED,
    EVENT_NAMES,
    Event,
    EventBus,
)

__all__ = [
    "ATTACHMENT_ADDED",
    "ATTACHMENT_REMOVED",
    "DRAG_SESSION_COMPLETED",
    "DRAG_SESSION_ERROR",
    "DRAG_SESSION_PROGRESS",
    "DRAG_SESSION_STARTED",
    "EVENT_NAMES",
    "Event",
    "EventBus",
]
