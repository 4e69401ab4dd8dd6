"""Wait for a dropped file to stop growing before it is read.

A drop is often observed before the producing process has finished
writing, so a candidate is sampled repeatedly and only handed on once two
consecutive samples agree.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
import logging
import os
from pathlib import Path

from .exceptions import IoFailureError, NotFoundError, StabilityTimeoutError

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class StableFile:
    path: Path
    size_bytes: int
    mtime_ns: int
    checks: int


def _sample(path: Path) -> tuple[int, int]:
    try:
        info = os.stat(path)
    except FileNotFoundError as exc:
        raise NotFoundError(f"File disappeared while settling: {path}", path=str(path)) from exc
    except OSError as exc:
        raise IoFailureError(f"Cannot stat {path}: {exc}", path=str(path)) from exc
    return info.st_size, info.st_mtime_ns


class StabilityTracker:
    """Sample ``(size, mtime)`` until a file settles or retries run out."""

    def __init__(
        self,
        *,
        settle_delay: float = 1.0,
        backoff_factor: float = 1.5,
        max_delay: float = 3.0,
        max_retries: int = 4,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ) -> None:
        self.settle_delay = settle_delay
        self.backoff_factor = backoff_factor
        self.max_delay = max(max_delay, settle_delay)
        self.max_retries = max_retries
        self._sleep = sleep

    def delays(self) -> list[float]:
        """Every settle interval the tracker may wait, in order."""
        values: list[float] = []
        delay = self.settle_delay
        for _ in range(self.max_retries + 1):
            values.append(delay)
            delay = min(delay * self.backoff_factor, self.max_delay)
        return values

    async def await_stable(
        self, path: str | os.PathLike[str], initial_size: int | None = None
    ) -> StableFile:
        """Return once the file has stopped changing.

        Raises:
            StabilityTimeoutError: the file kept changing on every re-check
            NotFoundError: the file vanished while settling
        """
        target = Path(path)
        size, mtime_ns = _sample(target)
        if initial_size is not None:
            # Growth since the detector looked counts as a change.
            size = initial_size

        checks = 0
        for delay in self.delays():
            await self._sleep(delay)
            checks += 1
            new_size, new_mtime_ns = _sample(target)
            if new_size == size and new_mtime_ns == mtime_ns:
                return StableFile(
                    path=target, size_bytes=new_size, mtime_ns=new_mtime_ns, checks=checks
                )
            LOGGER.debug(
                "stability.changed",
                extra={
                    "event": "stability.changed",
                    "path": str(target),
                    "previous_size": size,
                    "size": new_size,
                },
            )
            size, mtime_ns = new_size, new_mtime_ns

        raise StabilityTimeoutError(
            f"{target.name} was still changing after {checks} checks", path=str(target)
        )
