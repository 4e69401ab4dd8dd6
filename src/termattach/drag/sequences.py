"""Scanner for drag-and-drop signals hidden in raw terminal input.

Terminals report a drop in several incompatible ways: mouse-tracking
press/drag/release reports (SGR ``ESC [ < b ; x ; y M|m`` or legacy X10
``ESC [ M cb cx cy``), iTerm2's inline file transfer
(``ESC ] 1337 ; File=args : base64 BEL``), a bracketed paste of the
dropped path, a ``file://`` URI, or simply the path typed out as a burst
of keystrokes with spaces escaped. :class:`TerminalInputScanner` turns a
stream of reads into a list of tokens describing those signals.
"""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass
import logging
import os
from pathlib import Path
import re
import shlex
from urllib.parse import unquote, urlparse

from .filters import PATH_PATTERNS, strip_quotes

LOGGER = logging.getLogger(__name__)

SGR_MOUSE = re.compile(r"\x1b\[<(\d+);(\d+);(\d+)([Mm])")
X10_MOUSE = re.compile(r"\x1b\[M(.)(.)(.)", re.DOTALL)
ITERM2_FILE = re.compile(
    r"\x1b\]1337;File=([^:\x07\x1b]*):([A-Za-z0-9+/=\s]*)(?:\x07|\x1b\\)"
)
BRACKETED_PASTE = re.compile(r"\x1b\[200~(.*?)\x1b\[201~", re.DOTALL)
FILE_URI = re.compile(r"file://[^\s\x00\x1b'\"]+")
WINDOWS_PATH = re.compile(r"[a-zA-Z]:\\[^\s\"'\x00\x1b]+")
# Anything else that starts with ESC: CSI, SS3, or a lone ESC.
OTHER_ESCAPE = re.compile(r"\x1b(?:\[[0-9;?<>=]*[ -/]*[@-~]|O.|.)?", re.DOTALL)

INCOMPLETE_TAILS: tuple[re.Pattern[str], ...] = (
    re.compile(r"\x1b$"),
    re.compile(r"\x1b\[$"),
    re.compile(r"\x1b\[<[\d;]*$"),
    re.compile(r"\x1b\[M.{0,2}$", re.DOTALL),
    re.compile(r"\x1b\[2(?:0(?:[01]~?)?)?$"),
    re.compile(r"\x1b\][^\x07]*$", re.DOTALL),
    re.compile(r"\x1b\[200~(?:(?!\x1b\[201~).)*$", re.DOTALL),
)

COMBINED = re.compile(
    "|".join(
        f"(?P<{name}>{pattern.pattern})"
        for name, pattern in (
            ("paste", BRACKETED_PASTE),
            ("iterm", ITERM2_FILE),
            ("sgr", SGR_MOUSE),
            ("x10", X10_MOUSE),
            ("escape", OTHER_ESCAPE),
        )
    ),
    re.DOTALL,
)

MOUSE_MOTION_FLAG = 32
MOUSE_WHEEL_FLAG = 64
X10_RELEASE = 3
DEFAULT_MAX_BUFFER = 16 * 1024 * 1024


@dataclass(frozen=True)
class MouseReport:
    """One decoded mouse-tracking report."""

    button: int
    x: int
    y: int
    action: str  # "press", "drag", "release", "move", "wheel"

    @property
    def is_left(self) -> bool:
        return self.button == 0


@dataclass(frozen=True)
class InlineFile:
    """File payload delivered in-band by the terminal."""

    name: str
    data: bytes


@dataclass(frozen=True)
class PathMatch:
    """Path named by a URI, a paste, or a burst of typed text."""

    path: Path
    via: str  # "uri", "paste", "path"


Token = MouseReport | InlineFile | PathMatch


def decode_input(data: bytes | str) -> str:
    """Decode raw terminal bytes, keeping undecodable bytes reversible."""
    if isinstance(data, str):
        return data
    return data.decode("utf-8", errors="surrogateescape")


def _x10_coordinate(char: str) -> int:
    code = ord(char)
    if code >= 0xDC80:  # surrogate-escaped byte
        code -= 0xDC00
    return code - 32


def _sgr_action(code: int, final: str) -> tuple[int, str]:
    button = code & 0b11
    if code & MOUSE_WHEEL_FLAG:
        return button, "wheel"
    if final == "m":
        return button, "release"
    if code & MOUSE_MOTION_FLAG:
        return button, "drag" if button != 3 else "move"
    return button, "press"


def parse_sgr_mouse(match: re.Match[str]) -> MouseReport:
    code, x, y, final = match.groups()
    button, action = _sgr_action(int(code), final)
    return MouseReport(button=button, x=int(x), y=int(y), action=action)


def parse_x10_mouse(match: re.Match[str]) -> MouseReport:
    raw_cb, raw_x, raw_y = match.groups()
    code = _x10_coordinate(raw_cb)
    x, y = _x10_coordinate(raw_x), _x10_coordinate(raw_y)
    button = code & 0b11
    if code & MOUSE_WHEEL_FLAG:
        action = "wheel"
    elif button == X10_RELEASE:
        # X10 does not say which button was released; assume the left one.
        return MouseReport(button=0, x=x, y=y, action="release")
    elif code & MOUSE_MOTION_FLAG:
        action = "drag"
    else:
        action = "press"
    return MouseReport(button=button, x=x, y=y, action=action)


def parse_iterm2_file(args: str, payload: str) -> InlineFile | None:
    """Decode an OSC 1337 ``File=`` transfer; ``None`` if it is malformed."""
    params: dict[str, str] = {}
    for part in args.split(";"):
        key, sep, value = part.partition("=")
        if sep:
            params[key.strip()] = value.strip()

    name = "iterm-file"
    if "name" in params:
        try:
            name = base64.b64decode(params["name"], validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError):
            name = params["name"]
    name = os.path.basename(name.replace("\\", "/")) or "iterm-file"

    try:
        data = base64.b64decode("".join(payload.split()), validate=True)
    except binascii.Error:
        LOGGER.warning("drag.iterm2.decode_failed", extra={"event": "drag.iterm2.decode_failed"})
        return None
    return InlineFile(name=name, data=data)


def file_uri_to_path(uri: str) -> Path | None:
    parsed = urlparse(uri)
    if parsed.scheme != "file" or parsed.netloc not in ("", "localhost"):
        return None
    path = unquote(parsed.path)
    if not path:
        return None
    if re.match(r"^/[a-zA-Z]:/", path):  # file:///C:/...
        path = path[1:]
    return Path(path).expanduser()


def _split_words(text: str) -> list[str]:
    try:
        return shlex.split(text, posix=True)
    except ValueError:
        return text.split()


def extract_paths(text: str, via: str) -> list[PathMatch]:
    """Find every plausible path in a chunk of plain text.

    Handles ``file://`` URIs, Windows drive paths, and shell-style words,
    which covers quoted paths and backslash-escaped spaces. Existence is
    not checked here.
    """
    found: list[PathMatch] = []
    seen: set[Path] = set()

    def _add(path: Path | None, kind: str) -> None:
        if path is not None and path not in seen:
            seen.add(path)
            found.append(PathMatch(path=path, via=kind))

    remainder = text
    for uri in FILE_URI.findall(text):
        _add(file_uri_to_path(uri), "uri")
        remainder = remainder.replace(uri, " ")

    for win_path in WINDOWS_PATH.findall(remainder):
        _add(Path(win_path), via)
        remainder = remainder.replace(win_path, " ")

    for line in remainder.splitlines():
        stripped = line.strip()
        # A raw line naming a path with unescaped, unquoted spaces.
        raw = stripped == strip_quotes(line) and "\\" not in line
        if raw and " " in stripped and stripped.startswith(("/", "~/")):
            _add(Path(stripped).expanduser(), via)
        for word in _split_words(line):
            word = word.strip()
            if word and any(pattern.search(word) for pattern in PATH_PATTERNS):
                _add(Path(word).expanduser(), via)
    return found


class TerminalInputScanner:
    """Incremental scanner over terminal input.

    Sequences split across reads are held back until they complete. The
    held-back tail is bounded by ``max_buffer`` characters; an oversized
    tail (a runaway inline transfer) is discarded.
    """

    def __init__(self, max_buffer: int = DEFAULT_MAX_BUFFER) -> None:
        self.max_buffer = max_buffer
        self._pending = ""

    @property
    def pending(self) -> str:
        return self._pending

    def reset(self) -> None:
        self._pending = ""

    def feed(self, data: bytes | str) -> list[Token]:
        text = self._pending + decode_input(data)
        self._pending = ""

        text, tail = self._split_incomplete_tail(text)
        if tail:
            if len(tail) > self.max_buffer:
                LOGGER.warning(
                    "drag.scanner.overflow",
                    extra={"event": "drag.scanner.overflow", "size": len(tail)},
                )
            else:
                self._pending = tail
        return self._scan(text)

    @staticmethod
    def _split_incomplete_tail(text: str) -> tuple[str, str]:
        start = text.rfind("\x1b[200~")
        if start != -1 and text.find("\x1b[201~", start) == -1:
            return text[:start], text[start:]
        index = text.rfind("\x1b")
        if index == -1:
            return text, ""
        tail = text[index:]
        for pattern in INCOMPLETE_TAILS:
            if pattern.fullmatch(tail):
                return text[:index], tail
        return text, ""

    def _scan(self, text: str) -> list[Token]:
        spans: list[tuple[int, Token]] = []
        plain_parts: list[str] = []
        position = 0

        # Group names shift the numbered groups, so each piece is re-matched.
        for match in COMBINED.finditer(text):
            plain_parts.append(text[position : match.start()])
            position = match.end()
            chunk = match.group(0)
            kind = match.lastgroup
            if kind == "paste":
                inner = BRACKETED_PASTE.fullmatch(chunk)
                assert inner is not None
                for path_match in extract_paths(inner.group(1), "paste"):
                    spans.append((match.start(), path_match))
            elif kind == "iterm":
                inner = ITERM2_FILE.fullmatch(chunk)
                assert inner is not None
                inline = parse_iterm2_file(inner.group(1), inner.group(2))
                if inline is not None:
                    spans.append((match.start(), inline))
            elif kind == "sgr":
                inner = SGR_MOUSE.fullmatch(chunk)
                assert inner is not None
                spans.append((match.start(), parse_sgr_mouse(inner)))
            elif kind == "x10":
                inner = X10_MOUSE.fullmatch(chunk)
                assert inner is not None
                spans.append((match.start(), parse_x10_mouse(inner)))
            plain_parts.append(" ")
        plain_parts.append(text[position:])

        plain = "".join(plain_parts).replace("\r", "\n")
        if plain.strip():
            for path_match in extract_paths(plain, "path"):
                spans.append((len(text), path_match))

        spans.sort(key=lambda item: item[0])
        return [token for _, token in spans]


def scan_terminal_input(data: bytes | str) -> list[Token]:
    """One-shot scan of a complete chunk; incomplete tails are dropped."""
    return TerminalInputScanner().feed(data)
