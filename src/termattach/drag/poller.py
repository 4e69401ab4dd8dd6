"""Directory-poll fallback for terminals that report nothing on drop."""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass
import logging
import os
from pathlib import Path
import stat as stat_module
import threading
import time

from .filters import is_within, should_ignore

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class PolledFile:
    path: Path
    size_bytes: int
    mtime: float


class DirectoryPoller:
    """Find files that appeared recently in the usual drop locations.

    A file is proposed once: the poller remembers what it has already
    reported and forgets it after twice the detection window, so a file
    touched again later can be proposed again. Directories that do not
    exist or cannot be listed are skipped silently.
    """

    def __init__(
        self,
        directories: Iterable[Path],
        *,
        detection_window_seconds: float = 3.0,
        max_file_bytes: int | None = None,
        excluded_directories: Iterable[Path] = (),
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.directories = [Path(item) for item in directories]
        self.detection_window_seconds = detection_window_seconds
        self.max_file_bytes = max_file_bytes
        self.excluded_directories = [Path(item) for item in excluded_directories]
        self._clock = clock
        self._known: dict[Path, float] = {}
        self._lock = threading.Lock()

    @property
    def known_count(self) -> int:
        return len(self._known)

    def forget(self, path: Path) -> None:
        with self._lock:
            self._known.pop(path, None)

    def _excluded(self, path: Path) -> bool:
        return any(is_within(path, directory) for directory in self.excluded_directories)

    def _iter_directory(self, directory: Path) -> Iterable[os.DirEntry[str]]:
        try:
            with os.scandir(directory) as entries:
                return list(entries)
        except OSError:
            return []

    def scan(self) -> list[PolledFile]:
        """Return files modified within the window that were not seen before.

        Scans are serialized; concurrent callers never share a file.
        """
        with self._lock:
            return self._scan(self._clock())

    def _scan(self, now: float) -> list[PolledFile]:
        found: list[PolledFile] = []
        for directory in self.directories:
            if self._excluded(directory):
                continue
            for entry in self._iter_directory(directory):
                if should_ignore(entry.name):
                    continue
                try:
                    info = entry.stat(follow_symlinks=False)
                except OSError:
                    continue
                if not stat_module.S_ISREG(info.st_mode):
                    continue
                age = now - info.st_mtime
                if age < 0 or age > self.detection_window_seconds:
                    continue
                path = Path(entry.path)
                if path in self._known or self._excluded(path):
                    continue
                if self.max_file_bytes is not None and info.st_size > self.max_file_bytes:
                    LOGGER.warning(
                        "drag.poll.too_large",
                        extra={
                            "event": "drag.poll.too_large",
                            "path": str(path),
                            "size": info.st_size,
                        },
                    )
                    self._known[path] = now
                    continue
                self._known[path] = now
                found.append(PolledFile(path=path, size_bytes=info.st_size, mtime=info.st_mtime))
        self._expire_known(now)
        return found

    def _expire_known(self, now: float) -> None:
        max_age = self.detection_window_seconds * 2
        for path, seen_at in list(self._known.items()):
            if now - seen_at > max_age:
                del self._known[path]
