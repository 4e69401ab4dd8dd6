"""Clipboard access and classification.

Clipboard text is classified in a fixed order: an inline base64 image
first (its payload may contain path-like substrings), then a single file
path, then a list of file paths, and finally plain text. Image payloads are
written to the scratch directory so they can be registered like any other
owned temp file.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
from collections.abc import Callable, Sequence
import logging
import os
from pathlib import Path
import re
import shutil
import subprocess
import sys
from typing import Protocol

from .content_reader import resolve_path
from .drag.filters import looks_like_file_path, strip_quotes
from .models import ClipboardContent, ClipboardKind

LOGGER = logging.getLogger(__name__)

DATA_URI_PATTERN = re.compile(r"^data:image/([a-zA-Z+.-]+);base64,([A-Za-z0-9+/=\s]+)$")

IMAGE_EXTENSIONS_BY_MIME: dict[str, str] = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/webp": ".webp",
    "image/bmp": ".bmp",
}

MAX_CLIPBOARD_BYTES = 10 * 1024 * 1024

TEXT_COMMANDS: tuple[tuple[str, ...], ...] = (
    ("wl-paste", "--no-newline"),
    ("xclip", "-selection", "clipboard", "-o"),
    ("xsel", "--clipboard", "--output"),
    ("pbpaste",),
    ("powershell", "-NoProfile", "-Command", "Get-Clipboard"),
)

IMAGE_COMMANDS: tuple[tuple[str, ...], ...] = (
    ("wl-paste", "--type", "image/png"),
    ("xclip", "-selection", "clipboard", "-t", "image/png", "-o"),
    ("pngpaste", "-"),
)

PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"

Materializer = Callable[[bytes, str], Path]


class ClipboardReader(Protocol):
    def read_text(self) -> str: ...


def _run(command: Sequence[str], timeout: float) -> bytes | None:
    if shutil.which(command[0]) is None:
        return None
    try:
        proc = subprocess.run(
            list(command),
            check=False,
            capture_output=True,
            timeout=timeout,
        )
    except (OSError, subprocess.SubprocessError) as exc:
        LOGGER.debug("clipboard command %s failed: %s", command[0], exc)
        return None
    if proc.returncode != 0 or not proc.stdout:
        return None
    return proc.stdout


class SystemClipboard:
    """Read the clipboard through whatever platform tool is installed."""

    def __init__(self, timeout: float = 1.0) -> None:
        self.timeout = timeout

    def read_text(self) -> str:
        for command in TEXT_COMMANDS:
            if command[0] == "powershell" and sys.platform != "win32":
                continue
            output = _run(command, self.timeout)
            if output is not None:
                return output.decode("utf-8", errors="replace")
        return ""

    def read_image(self) -> bytes | None:
        for command in IMAGE_COMMANDS:
            output = _run(command, self.timeout)
            if output and output.startswith(PNG_SIGNATURE):
                return output
        return None


def _sanitize_surrogates(text: str) -> str:
    return text.encode("utf-8", errors="surrogatepass").decode("utf-8", errors="replace")


class ClipboardSource:
    """Classify clipboard content into text, file, files, or image.

    ``reader`` supplies the raw text (and optionally image bytes through a
    ``read_image`` method); ``materialize`` writes image payloads to an
    owned temp file and returns its path.
    """

    def __init__(
        self,
        materialize: Materializer,
        *,
        reader: ClipboardReader | None = None,
        max_bytes: int = MAX_CLIPBOARD_BYTES,
    ) -> None:
        self._materialize = materialize
        self._reader = reader or SystemClipboard()
        self.max_bytes = max_bytes

    def read_clipboard(self) -> ClipboardContent:
        """Read and classify the clipboard. Never raises."""
        try:
            raw = self._reader.read_text()
            content = self.classify(_sanitize_surrogates(raw or ""))
            if content.is_empty():
                image = self._read_binary_image()
                if image is not None:
                    return image
            return content
        except Exception as exc:  # noqa: BLE001 - clipboard failures must not surface.
            LOGGER.warning(
                "clipboard.read_failed",
                extra={"event": "clipboard.read_failed", "reason": str(exc)},
            )
            return ClipboardContent(kind=ClipboardKind.TEXT, text="")

    async def aread_clipboard(self) -> ClipboardContent:
        return await asyncio.to_thread(self.read_clipboard)

    def classify(self, raw: str) -> ClipboardContent:
        text = raw.strip()
        if not text:
            return ClipboardContent(kind=ClipboardKind.TEXT, text="")

        image = self._try_image(text)
        if image is not None:
            return image

        single = self._try_file(text)
        if single is not None:
            return single

        many = self._try_files(text)
        if many is not None:
            return many

        return ClipboardContent(kind=ClipboardKind.TEXT, text=text)

    def _try_image(self, text: str) -> ClipboardContent | None:
        match = DATA_URI_PATTERN.match(text)
        if match is None:
            return None
        mime_type = f"image/{match.group(1).lower()}"
        extension = IMAGE_EXTENSIONS_BY_MIME.get(mime_type)
        if extension is None:
            LOGGER.info("Unsupported clipboard image type %s", mime_type)
            return None
        try:
            data = base64.b64decode("".join(match.group(2).split()), validate=True)
        except binascii.Error as exc:
            LOGGER.warning("Invalid base64 image on clipboard: %s", exc)
            return None
        if len(data) > self.max_bytes:
            LOGGER.warning("Clipboard image too large (%d bytes)", len(data))
            return None
        path = self._materialize(data, f"pasted-image{extension}")
        return ClipboardContent(
            kind=ClipboardKind.IMAGE, image_path=path, mime_type=mime_type
        )

    def _read_binary_image(self) -> ClipboardContent | None:
        read_image = getattr(self._reader, "read_image", None)
        if read_image is None:
            return None
        data = read_image()
        if not data or len(data) > self.max_bytes:
            return None
        path = self._materialize(data, "pasted-image.png")
        return ClipboardContent(
            kind=ClipboardKind.IMAGE, image_path=path, mime_type="image/png"
        )

    @staticmethod
    def _existing_file(line: str) -> Path | None:
        candidate = strip_quotes(line)
        if not looks_like_file_path(candidate):
            return None
        if candidate.startswith("file://"):
            return None
        path = resolve_path(candidate)
        try:
            return path if path.is_file() else None
        except OSError:
            return None

    def _try_file(self, text: str) -> ClipboardContent | None:
        if "\n" in text:
            return None
        path = self._existing_file(text)
        if path is None:
            return None
        return ClipboardContent(kind=ClipboardKind.FILE, text=text, paths=[path])

    def _try_files(self, text: str) -> ClipboardContent | None:
        lines = [line for line in text.splitlines() if line.strip()]
        if len(lines) < 2:
            return None
        paths: list[Path] = []
        for line in lines:
            path = self._existing_file(line)
            if path is not None and path not in paths:
                paths.append(path)
        if len(paths) < 2:
            return None
        return ClipboardContent(kind=ClipboardKind.FILES, text=text, paths=paths)


def is_clipboard_available() -> bool:
    """True when at least one clipboard tool is on PATH."""
    return any(shutil.which(command[0]) for command in TEXT_COMMANDS) or os.name == "nt"
