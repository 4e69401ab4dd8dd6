"""Path heuristics and the ignore filter shared by every detector."""

from __future__ import annotations

import os
from pathlib import Path
import re

PATH_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"^[a-zA-Z]:[\\/]"),  # Windows drive path
    re.compile(r"^/[^/\s]"),  # Unix absolute path
    re.compile(r"^~[\\/]"),  # home-relative path
    re.compile(r"^\.\.?[\\/]"),  # ./ or ../
    re.compile(r"^[^/\\\s]+\.[a-zA-Z0-9]+$"),  # name.ext
    re.compile(r"^[^/\\]+[\\/][^/\\]+"),  # contains a separator
)

# Names produced by this pipeline or by tools that share the temp dir.
INTERNAL_NAME_MARKERS: tuple[str, ...] = ("claude-", "cwd", "temp", "tmp")
INTERNAL_NAME_PREFIXES: tuple[str, ...] = ("pasted-image-", "iterm-drop-")
TIMESTAMP_PREFIX = re.compile(r"^\d{13}-")
HEX_PREFIX = re.compile(r"^[a-f0-9]{8,}-")

MAX_EXTENSIONLESS_NAME = 20
MIN_NAME_LENGTH = 3


def strip_quotes(text: str) -> str:
    """Remove surrounding whitespace and any quote characters."""
    return text.strip().replace('"', "").replace("'", "")


def looks_like_file_path(text: str) -> bool:
    """Return True when ``text`` is plausibly a single file path."""
    candidate = strip_quotes(text)
    if not candidate or "\n" in candidate:
        return False
    return any(pattern.search(candidate) for pattern in PATH_PATTERNS)


def is_hidden(name: str) -> bool:
    return name.startswith(".")


def should_ignore(name: str) -> bool:
    """Return True for file names that are never genuine drops.

    Without this filter the directory poller would re-discover the temp
    files written by this pipeline and by other terminal tooling.
    """
    if not name or is_hidden(name):
        return True

    ext = os.path.splitext(name)[1]
    if not ext and len(name) > MAX_EXTENSIONLESS_NAME:
        return True
    if not ext and len(name) < MIN_NAME_LENGTH:
        return True

    lowered = name.lower()
    if any(marker in lowered for marker in INTERNAL_NAME_MARKERS):
        return True
    if lowered.startswith(INTERNAL_NAME_PREFIXES):
        return True
    if TIMESTAMP_PREFIX.match(name) or HEX_PREFIX.match(lowered):
        return True
    return False


def is_within(path: Path, directory: Path) -> bool:
    """True when ``path`` lies inside ``directory`` (after resolution)."""
    try:
        path.resolve(strict=False).relative_to(directory.resolve(strict=False))
    except ValueError:
        return False
    return True
