"""Attachment, clipboard, and detection-session state containers."""

from __future__ import annotations

import base64
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any

from .exceptions import ErrorKind


class AttachmentKind(str, Enum):
    IMAGE = "image"
    FILE = "file"


class SourceOrigin(str, Enum):
    PASTE = "paste"
    DRAG = "drag"
    UPLOAD = "upload"
    FILE_REFERENCE = "file-reference"


class ClipboardKind(str, Enum):
    TEXT = "text"
    FILE = "file"
    FILES = "files"
    IMAGE = "image"


class SessionStatus(str, Enum):
    COLLECTING = "collecting"
    SETTLING = "settling"
    COMMITTED = "committed"
    EXPIRED = "expired"


def format_size(size_bytes: int) -> str:
    """Render a byte count as ``1.5 KB`` style text."""
    units = ("B", "KB", "MB", "GB")
    size = float(size_bytes)
    index = 0
    while size >= 1024 and index < len(units) - 1:
        size /= 1024
        index += 1
    return f"{size:.1f} {units[index]}"


def utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class AttachmentSource:
    """Where an attachment came from."""

    origin: SourceOrigin
    original_path: str | None = None
    observed_at: datetime = field(default_factory=utcnow)


@dataclass
class Attachment:
    """A registered, quota-counted file or image.

    Exactly one of ``content`` and ``temp_path`` is set. When
    ``is_temp_file`` is true the registry owns ``temp_path`` and deletes it
    when the attachment is removed.
    """

    id: str
    filename: str
    mime_type: str
    size_bytes: int
    kind: AttachmentKind
    source: AttachmentSource
    content: bytes | None = None
    temp_path: Path | None = None
    is_temp_file: bool = False

    def __post_init__(self) -> None:
        if (self.content is None) == (self.temp_path is None):
            raise ValueError("Attachment needs exactly one of content or temp_path.")
        if self.is_temp_file and self.temp_path is None:
            raise ValueError("Temp-file attachments must carry a temp_path.")

    def read_bytes(self) -> bytes:
        """Return the attachment payload regardless of where it is stored."""
        if self.content is not None:
            return self.content
        assert self.temp_path is not None
        return self.temp_path.read_bytes()

    def to_base64(self) -> str:
        return base64.b64encode(self.read_bytes()).decode("ascii")

    def describe(self) -> str:
        return f"{self.kind.value} {self.filename} ({format_size(self.size_bytes)})"

    def to_dict(self, include_content: bool = False) -> dict[str, Any]:
        """Serializable summary; the payload is added base64-encoded on request."""
        data = {
            "id": self.id,
            "filename": self.filename,
            "mime_type": self.mime_type,
            "size_bytes": self.size_bytes,
            "kind": self.kind.value,
            "origin": self.source.origin.value,
            "original_path": self.source.original_path,
            "observed_at": self.source.observed_at.isoformat(),
            "temp_path": str(self.temp_path) if self.temp_path else None,
            "is_temp_file": self.is_temp_file,
        }
        if include_content:
            data["content_base64"] = self.to_base64()
        return data


@dataclass(frozen=True)
class FileContent:
    """Validated file payload produced by the content reader."""

    path: Path
    filename: str
    data: bytes
    mime_type: str
    size_bytes: int
    kind: AttachmentKind


@dataclass
class ClipboardContent:
    """Classified clipboard payload."""

    kind: ClipboardKind
    text: str = ""
    paths: list[Path] = field(default_factory=list)
    image_path: Path | None = None
    mime_type: str | None = None

    def paste_syntax(self) -> str:
        """Inline reference inserted into the input line for this payload."""
        if self.kind is ClipboardKind.IMAGE and self.image_path is not None:
            return f"@image({self.image_path.name})"
        if self.kind in (ClipboardKind.FILE, ClipboardKind.FILES):
            return "\n".join(f"@file({path.name})" for path in self.paths)
        return self.text

    def is_empty(self) -> bool:
        return self.kind is ClipboardKind.TEXT and not self.text.strip()


@dataclass
class DetectionSession:
    """Bookkeeping for one drag or paste gesture."""

    session_id: str
    started_at: float
    trigger: str
    candidate_paths: list[Path] = field(default_factory=list)
    status: SessionStatus = SessionStatus.COLLECTING
    attachment_ids: list[str] = field(default_factory=list)

    def add_candidate(self, path: Path) -> bool:
        if path in self.candidate_paths:
            return False
        self.candidate_paths.append(path)
        return True

    @property
    def is_open(self) -> bool:
        return self.status in (SessionStatus.COLLECTING, SessionStatus.SETTLING)


@dataclass(frozen=True)
class AttachmentStats:
    count: int = 0
    total_size: int = 0
    file_count: int = 0
    image_count: int = 0
    temp_file_count: int = 0


@dataclass(frozen=True)
class Candidate:
    """A path proposed by a detector, not yet validated or committed.

    ``owned`` marks temp files the pipeline materialized itself; ownership
    passes to the registry on success and the file is unlinked on rejection.
    """

    path: Path
    origin: SourceOrigin
    session_id: str | None = None
    initial_size: int | None = None
    owned: bool = False
    original_name: str | None = None
    mime_type: str | None = None


@dataclass(frozen=True)
class Rejected:
    """Typed refusal returned instead of an attachment."""

    kind: ErrorKind
    message: str
    path: str | None = None

    def __bool__(self) -> bool:
        return False
