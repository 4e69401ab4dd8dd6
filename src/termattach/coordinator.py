"""Route candidates through stability, validation, and registration.

Every detector hands its candidates to one :class:`IngestionCoordinator`.
The coordinator keeps two pieces of bookkeeping under a single asyncio
lock: the paths currently being processed, and the paths ingested within
the recent detection window. A path therefore becomes at most one
attachment per window no matter how many detectors report it.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
import logging
import os
from pathlib import Path
import time

from .content_reader import (
    SUPPORTED_IMAGE_MIME_TYPES,
    FileContentReader,
    kind_for_mime,
    resolve_path,
)
from .events import ATTACHMENT_ADDED, EventBus
from .events.domain import AttachmentAddedEvent, payload
from .exceptions import (
    AttachmentError,
    ErrorKind,
    QuotaExceededError,
    UnsupportedTypeError,
)
from .models import (
    Attachment,
    AttachmentKind,
    AttachmentSource,
    Candidate,
    Rejected,
    SourceOrigin,
)
from .registry import AttachmentRegistry, unlink_quietly
from .stability import StabilityTracker

LOGGER = logging.getLogger(__name__)


def _display_name(candidate: Candidate, path: Path) -> str:
    if candidate.original_name:
        return os.path.basename(candidate.original_name)
    return path.name


class IngestionCoordinator:
    """Single entry point that turns candidates into attachments.

    ``submit`` never raises for an ordinary refusal: it returns a
    :class:`~termattach.models.Rejected` carrying the typed reason instead.
    Owned candidates (temp files the pipeline wrote itself) are handed to
    the registry on success and unlinked on any rejection.
    """

    def __init__(
        self,
        registry: AttachmentRegistry,
        reader: FileContentReader,
        stability: StabilityTracker,
        events: EventBus,
        *,
        detection_window_seconds: float = 3.0,
        max_drag_file_bytes: int = 50 * 1024 * 1024,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.registry = registry
        self.reader = reader
        self.stability = stability
        self.events = events
        self.detection_window_seconds = detection_window_seconds
        self.max_drag_file_bytes = max_drag_file_bytes
        self._clock = clock
        self._lock = asyncio.Lock()
        self._processing: set[Path] = set()
        self._known_paths: dict[Path, float] = {}

    @property
    def processing(self) -> frozenset[Path]:
        return frozenset(self._processing)

    def is_known(self, path: str | os.PathLike[str]) -> bool:
        """True when ``path`` is in flight or was ingested within the window."""
        key = resolve_path(path)
        self._expire_known()
        return key in self._processing or key in self._known_paths

    def forget(self, path: str | os.PathLike[str]) -> None:
        """Drop ``path`` from the recent-ingest window (e.g. after removal)."""
        self._known_paths.pop(resolve_path(path), None)

    def _expire_known(self) -> None:
        cutoff = self._clock() - self.detection_window_seconds
        for key, seen_at in list(self._known_paths.items()):
            if seen_at < cutoff:
                del self._known_paths[key]

    async def _claim(self, candidate: Candidate, key: Path) -> Rejected | None:
        async with self._lock:
            self._expire_known()
            label = str(candidate.path)
            if key in self._processing:
                return Rejected(ErrorKind.ALREADY_REGISTERED, f"Already processing {label}", label)
            if not candidate.owned:
                if key in self._known_paths:
                    return Rejected(
                        ErrorKind.ALREADY_REGISTERED,
                        f"{key.name} was attached moments ago",
                        label,
                    )
                if self.registry.contains_path(key):
                    return Rejected(
                        ErrorKind.ALREADY_REGISTERED, f"Already attached: {key.name}", label
                    )
            self._processing.add(key)
        return None

    async def submit(self, candidate: Candidate) -> Attachment | Rejected:
        """Stabilize, read, and register one candidate."""
        key = resolve_path(candidate.path)
        refusal = await self._claim(candidate, key)
        if refusal is not None:
            self._log_rejection(candidate, refusal)
            if candidate.owned:
                unlink_quietly(key)
            return refusal

        try:
            attachment = await self._ingest(candidate, key)
        except AttachmentError as exc:
            if candidate.owned:
                unlink_quietly(key)
            rejected = Rejected(exc.kind, str(exc), exc.path or str(candidate.path))
            self._log_rejection(candidate, rejected)
            return rejected
        except BaseException:
            if candidate.owned:
                unlink_quietly(key)
            raise
        finally:
            async with self._lock:
                self._processing.discard(key)

        if not candidate.owned:
            async with self._lock:
                self._known_paths[key] = self._clock()

        await self.events.publish(
            ATTACHMENT_ADDED,
            payload(
                AttachmentAddedEvent(
                    attachment_id=attachment.id,
                    filename=attachment.filename,
                    kind=attachment.kind.value,
                    size_bytes=attachment.size_bytes,
                    origin=attachment.source.origin.value,
                    session_id=candidate.session_id,
                )
            ),
            source="coordinator",
        )
        return attachment

    async def _ingest(self, candidate: Candidate, path: Path) -> Attachment:
        if not candidate.owned:
            stable = await self.stability.await_stable(path, candidate.initial_size)
            if not self.registry.can_add(stable.size_bytes):
                raise QuotaExceededError(
                    f"No room for {path.name} ({len(self.registry)} attachments, "
                    f"{self.registry.total_size} bytes in use)",
                    path=str(path),
                )

        max_bytes: int | None = None
        if candidate.mime_type is not None:
            max_bytes = self.reader.ceiling_for(kind_for_mime(candidate.mime_type))
        if candidate.origin is SourceOrigin.DRAG:
            max_bytes = self.max_drag_file_bytes
        content = await self.reader.aread(path, max_bytes=max_bytes)

        mime_type = candidate.mime_type or content.mime_type
        kind = kind_for_mime(mime_type)
        if kind is AttachmentKind.IMAGE and mime_type not in SUPPORTED_IMAGE_MIME_TYPES:
            raise UnsupportedTypeError(
                f"Unsupported image type {mime_type}: {_display_name(candidate, path)}",
                path=str(candidate.path),
            )
        if candidate.owned:
            attachment = Attachment(
                id=self.registry.next_id(),
                filename=_display_name(candidate, path),
                mime_type=mime_type,
                size_bytes=content.size_bytes,
                kind=kind,
                source=AttachmentSource(origin=candidate.origin),
                temp_path=path,
                is_temp_file=True,
            )
        else:
            attachment = Attachment(
                id=self.registry.next_id(),
                filename=content.filename,
                mime_type=mime_type,
                size_bytes=content.size_bytes,
                kind=kind,
                source=AttachmentSource(origin=candidate.origin, original_path=str(path)),
                content=content.data,
            )
        return self.registry.add(attachment)

    async def submit_buffer(
        self,
        data: bytes,
        filename: str,
        mime_type: str | None = None,
        *,
        origin: SourceOrigin = SourceOrigin.UPLOAD,
        session_id: str | None = None,
    ) -> Attachment | Rejected:
        """Materialize an in-memory payload as an owned temp file and submit it."""
        try:
            path = await asyncio.to_thread(self.registry.materialize, data, filename)
        except AttachmentError as exc:
            rejected = Rejected(exc.kind, str(exc), filename)
            LOGGER.warning(
                "coordinator.buffer_failed",
                extra={"event": "coordinator.buffer_failed", "filename": filename, "reason": str(exc)},
            )
            return rejected
        return await self.submit(
            Candidate(
                path=path,
                origin=origin,
                session_id=session_id,
                owned=True,
                original_name=filename,
                mime_type=mime_type,
            )
        )

    @staticmethod
    def _log_rejection(candidate: Candidate, rejected: Rejected) -> None:
        level = logging.WARNING
        if rejected.kind in (ErrorKind.STABILITY_TIMEOUT, ErrorKind.ALREADY_REGISTERED):
            level = logging.INFO
        LOGGER.log(
            level,
            "coordinator.rejected",
            extra={
                "event": "coordinator.rejected",
                "path": str(candidate.path),
                "origin": candidate.origin.value,
                "kind": rejected.kind.value,
                "reason": rejected.message,
            },
        )

