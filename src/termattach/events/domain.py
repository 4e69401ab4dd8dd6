from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any


@dataclass
class AttachmentAddedEvent:
    attachment_id: str
    filename: str
    kind: str
    size_bytes: int
    origin: str
    session_id: str | None = None


@dataclass
class AttachmentRemovedEvent:
    attachment_id: str
    filename: str
    reason: str  # "remove", "clear", "shutdown"


@dataclass
class DragSessionStartedEvent:
    session_id: str
    trigger: str  # "mouse", "protocol", "uri", "path", "poll"
    position: tuple[int, int] | None = None


@dataclass
class DragSessionProgressEvent:
    session_id: str
    message: str
    candidate_paths: list[str] = field(default_factory=list)
    position: tuple[int, int] | None = None


@dataclass
class DragSessionCompletedEvent:
    session_id: str
    attachment_ids: list[str]
    rejected: int = 0


@dataclass
class DragSessionErrorEvent:
    session_id: str
    message: str


def payload(event: Any) -> dict[str, Any]:
    return asdict(event)
