"""Stateless file validation and reading for attachment candidates."""

from __future__ import annotations

import asyncio
import logging
import mimetypes
import os
from pathlib import Path

from .exceptions import (
    IoFailureError,
    NotAFileError,
    NotFoundError,
    TooLargeError,
    UnsupportedTypeError,
)
from .models import AttachmentKind, FileContent, format_size

LOGGER = logging.getLogger(__name__)

DEFAULT_MIME_TYPE = "application/octet-stream"

IMAGE_EXTENSIONS: frozenset[str] = frozenset(
    {".png", ".jpg", ".jpeg", ".gif", ".bmp", ".webp", ".svg"}
)

SUPPORTED_IMAGE_MIME_TYPES: frozenset[str] = frozenset(
    {
        "image/jpeg",
        "image/png",
        "image/gif",
        "image/webp",
        "image/bmp",
        "image/svg+xml",
    }
)

MIME_TYPES: dict[str, str] = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".bmp": "image/bmp",
    ".svg": "image/svg+xml",
    ".pdf": "application/pdf",
    ".txt": "text/plain",
    ".md": "text/markdown",
    ".js": "application/javascript",
    ".ts": "application/typescript",
    ".json": "application/json",
    ".html": "text/html",
    ".css": "text/css",
    ".py": "text/x-python",
    ".java": "text/x-java-source",
    ".cpp": "text/x-c++",
    ".c": "text/x-c",
    ".go": "text/x-go",
    ".rs": "text/x-rust",
    ".php": "text/x-php",
    ".rb": "text/x-ruby",
    ".swift": "text/x-swift",
    ".kt": "text/x-kotlin",
    ".scala": "text/x-scala",
    ".sql": "text/x-sql",
    ".xml": "application/xml",
    ".yaml": "application/x-yaml",
    ".yml": "application/x-yaml",
    ".csv": "text/csv",
    ".xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    ".docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    ".pptx": "application/vnd.openxmlformats-officedocument.presentationml.presentation",
}


def guess_mime_type(filename: str | os.PathLike[str]) -> str:
    """Map a file name to a mime type by extension."""
    suffix = Path(filename).suffix.lower()
    if suffix in MIME_TYPES:
        return MIME_TYPES[suffix]
    mime, _ = mimetypes.guess_type(str(filename))
    return mime or DEFAULT_MIME_TYPE


def is_image_path(path: str | os.PathLike[str]) -> bool:
    """Check if path has an image file extension."""
    return Path(path).suffix.lower() in IMAGE_EXTENSIONS


def kind_for_mime(mime_type: str) -> AttachmentKind:
    if mime_type.startswith("image/"):
        return AttachmentKind.IMAGE
    return AttachmentKind.FILE


def resolve_path(path: str | os.PathLike[str]) -> Path:
    """Expand ``~`` and make the path absolute without following symlinks away."""
    return Path(os.path.abspath(Path(path).expanduser()))


def preview(data: bytes | str, max_length: int = 500) -> str:
    """Short text preview of a payload, or a marker for binary content."""
    if isinstance(data, bytes):
        text = data.decode("utf-8", errors="replace")
        if text:
            non_ascii = sum(1 for char in text if ord(char) > 0x7F)
            if non_ascii / len(text) > 0.3:
                return "[binary content]"
    else:
        text = data
    if len(text) <= max_length:
        return text
    return text[:max_length] + "...\n[content truncated]"


class FileContentReader:
    """Validate a path against size ceilings and return its content.

    ``max_file_bytes`` applies to generic files, ``max_image_bytes`` to
    images; callers may pass an explicit ``max_bytes`` (drag-sourced files
    use a larger ceiling). The reader holds no state between calls.
    """

    def __init__(
        self,
        *,
        max_file_bytes: int = 10 * 1024 * 1024,
        max_image_bytes: int = 5 * 1024 * 1024,
    ) -> None:
        self.max_file_bytes = max_file_bytes
        self.max_image_bytes = max_image_bytes

    def ceiling_for(self, kind: AttachmentKind) -> int:
        if kind is AttachmentKind.IMAGE:
            return self.max_image_bytes
        return self.max_file_bytes

    @staticmethod
    def validate_path(path: str | os.PathLike[str]) -> bool:
        try:
            return resolve_path(path).is_file()
        except OSError:
            return False

    def read(
        self,
        path: str | os.PathLike[str],
        *,
        kind: AttachmentKind | None = None,
        max_bytes: int | None = None,
    ) -> FileContent:
        """Read ``path`` into a FileContent.

        Raises:
            NotFoundError: the path does not exist
            NotAFileError: the path is not a regular file
            UnsupportedTypeError: ``kind`` is image but the file is not one
            TooLargeError: the file exceeds the applicable ceiling
            IoFailureError: the file could not be read
        """
        resolved = resolve_path(path)
        label = str(path)
        try:
            stat = resolved.stat()
        except FileNotFoundError as exc:
            raise NotFoundError(f"File not found: {label}", path=label) from exc
        except OSError as exc:
            raise IoFailureError(f"Cannot access {label}: {exc}", path=label) from exc

        if not resolved.is_file():
            raise NotAFileError(f"Not a file: {label}", path=label)

        mime_type = guess_mime_type(resolved.name)
        detected = kind_for_mime(mime_type)
        if kind is AttachmentKind.IMAGE and mime_type not in SUPPORTED_IMAGE_MIME_TYPES:
            raise UnsupportedTypeError(
                f"Unsupported image type {mime_type}: {label}", path=label
            )
        effective_kind = kind or detected

        ceiling = max_bytes if max_bytes is not None else self.ceiling_for(effective_kind)
        if stat.st_size > ceiling:
            raise TooLargeError(
                f"{resolved.name} is too large ({format_size(stat.st_size)}, "
                f"max {format_size(ceiling)})",
                path=label,
            )

        try:
            data = resolved.read_bytes()
        except FileNotFoundError as exc:
            raise NotFoundError(f"File not found: {label}", path=label) from exc
        except OSError as exc:
            raise IoFailureError(f"Cannot read {label}: {exc}", path=label) from exc

        # The file may have grown between stat and read.
        if len(data) > ceiling:
            raise TooLargeError(
                f"{resolved.name} is too large ({format_size(len(data))}, "
                f"max {format_size(ceiling)})",
                path=label,
            )

        return FileContent(
            path=resolved,
            filename=resolved.name,
            data=data,
            mime_type=mime_type,
            size_bytes=len(data),
            kind=effective_kind,
        )

    async def aread(
        self,
        path: str | os.PathLike[str],
        *,
        kind: AttachmentKind | None = None,
        max_bytes: int | None = None,
    ) -> FileContent:
        """Same as :meth:`read`, off the event loop."""
        return await asyncio.to_thread(self.read, path, kind=kind, max_bytes=max_bytes)
