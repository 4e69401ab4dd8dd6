"""Drag-and-drop detection: terminal input scanning and directory polling."""

from __future__ import annotations

from .engine import (
    DragDetectionEngine,
    TerminalCapabilities,
    detect_terminal_capabilities,
    mouse_tracking_sequences,
)
from .filters import looks_like_file_path, should_ignore
from .poller import DirectoryPoller, PolledFile
from .sequences import (
    InlineFile,
    MouseReport,
    PathMatch,
    TerminalInputScanner,
    scan_terminal_input,
)
from .sessions import SessionTracker

__all__ = [
    "DirectoryPoller",
    "DragDetectionEngine",
    "InlineFile",
    "MouseReport",
    "PathMatch",
    "PolledFile",
    "SessionTracker",
    "TerminalCapabilities",
    "TerminalInputScanner",
    "detect_terminal_capabilities",
    "looks_like_file_path",
    "mouse_tracking_sequences",
    "scan_terminal_input",
    "should_ignore",
]
