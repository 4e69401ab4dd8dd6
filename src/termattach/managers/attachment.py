"""Attachment ingestion facade for the chat client.

Wires the content reader, clipboard source, stability tracker, drag
engine, coordinator and registry together and exposes the handful of
entry points the command layer needs. Also owns the pipeline lifecycle:
``start()`` enables drag detection and ``shutdown()`` tears everything
down and sweeps the scratch directory.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
import logging
import os
import signal
from typing import Any

from ..clipboard import (
    ClipboardReader,
    ClipboardSource,
    SystemClipboard,
    is_clipboard_available,
)
from ..config import Config
from ..content_reader import FileContentReader, is_image_path, resolve_path
from ..coordinator import IngestionCoordinator
from ..drag import DirectoryPoller, DragDetectionEngine, SessionTracker
from ..events import ATTACHMENT_REMOVED, EventBus
from ..events.domain import AttachmentRemovedEvent, payload
from ..models import (
    Attachment,
    AttachmentKind,
    AttachmentStats,
    Candidate,
    ClipboardKind,
    Rejected,
    SourceOrigin,
)
from ..registry import AttachmentRegistry
from ..stability import StabilityTracker
from ..task_manager import TaskManager

LOGGER = logging.getLogger(__name__)

SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class AttachmentManager:
    """Single entry point for every way an attachment can arrive.

    Responsibilities:
    - Explicit file references typed by the user
    - Clipboard pastes (text paths, inline images, binary image grabs)
    - Raw terminal input forwarded to the drag engine
    - In-memory buffers handed over by the UI
    - Removal, status messages, and termination cleanup
    """

    def __init__(
        self,
        config: Config | None = None,
        *,
        events: EventBus | None = None,
        clipboard_reader: ClipboardReader | None = None,
        stability: StabilityTracker | None = None,
        env: dict[str, str] | None = None,
    ) -> None:
        """Build the pipeline from configuration.

        Args:
            config: Validated configuration; defaults are used when omitted
            events: Bus to publish on; a private one is created when omitted
            clipboard_reader: Text source for the clipboard (tests inject one)
            stability: Pre-built stability tracker (tests inject fast timings)
            env: Environment used for terminal capability detection
        """
        self.config = config or Config()
        attachments = self.config.attachments
        drag = self.config.drag
        settle = self.config.stability

        self.events = events or EventBus()
        self.tasks = TaskManager()
        self.registry = AttachmentRegistry(
            attachments.scratch_path,
            max_attachments=attachments.max_attachments,
            max_total_size_bytes=attachments.max_total_size_bytes,
        )
        self.reader = FileContentReader(
            max_file_bytes=attachments.max_file_size_bytes,
            max_image_bytes=attachments.max_image_size_bytes,
        )
        self.stability = stability or StabilityTracker(
            settle_delay=settle.settle_delay_seconds,
            backoff_factor=settle.backoff_factor,
            max_delay=settle.max_delay_seconds,
            max_retries=settle.max_retries,
        )
        self.coordinator = IngestionCoordinator(
            self.registry,
            self.reader,
            self.stability,
            self.events,
            detection_window_seconds=drag.detection_window_ms / 1000,
            max_drag_file_bytes=attachments.max_drag_file_size_bytes,
        )
        self._system_clipboard = clipboard_reader is None
        self.clipboard = ClipboardSource(
            self.registry.materialize,
            reader=clipboard_reader
            or SystemClipboard(timeout=self.config.clipboard.command_timeout_seconds),
            max_bytes=attachments.max_image_size_bytes,
        )

        poller: DirectoryPoller | None = None
        if drag.filesystem_fallback:
            poller = DirectoryPoller(
                drag.resolved_watch_directories(),
                detection_window_seconds=drag.detection_window_ms / 1000,
                max_file_bytes=attachments.max_drag_file_size_bytes,
                excluded_directories=[self.registry.scratch_root],
            )
        self.drag = DragDetectionEngine(
            submit=self.coordinator.submit,
            materialize=self.registry.materialize,
            events=self.events,
            tasks=self.tasks,
            sessions=SessionTracker(timeout_seconds=drag.session_timeout_seconds),
            poller=poller,
            scratch_directory=self.registry.scratch_root,
            poll_interval=drag.poll_interval_seconds,
            ansi_detection=drag.ansi_detection,
            max_inline_bytes=attachments.max_drag_file_size_bytes,
            env=env,
        )

        self._on_status_update: Callable[[str], None] | None = None
        self._started = False
        self._shutdown_started = False
        self._shutdown_complete = asyncio.Event()
        self._signal_task: asyncio.Task[None] | None = None

    # ------------------------------------------------------------------
    # Status reporting
    # ------------------------------------------------------------------

    def on_status_update(self, callback: Callable[[str], None]) -> None:
        """Register callback for short human-readable status messages.

        Args:
            callback: Function to call with status messages
        """
        self._on_status_update = callback

    def _status(self, message: str) -> None:
        if self._on_status_update is not None:
            try:
                self._on_status_update(message)
            except Exception as exc:  # noqa: BLE001 - a broken UI hook must not stop ingestion.
                LOGGER.warning("Status callback failed: %s", exc)

    def _report(self, result: Attachment | Rejected) -> None:
        if isinstance(result, Attachment):
            label = "Image" if result.kind is AttachmentKind.IMAGE else "File"
            self._status(f"{label} attached: {result.filename} ({len(self.registry)} total)")
        else:
            self._status(result.message)

    @staticmethod
    def is_image_path(path: str) -> bool:
        """Check if path has an image file extension.

        Args:
            path: File path to check

        Returns:
            True if path ends with image extension
        """
        return is_image_path(path)

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    async def submit_file_path(self, path: str | os.PathLike[str]) -> Attachment | Rejected:
        """Attach a file the user referenced explicitly.

        Args:
            path: Path as typed; ``~`` and relative paths are resolved

        Returns:
            The new attachment, or the typed rejection
        """
        candidate = Candidate(path=resolve_path(path), origin=SourceOrigin.FILE_REFERENCE)
        result = await self.coordinator.submit(candidate)
        self._report(result)
        return result

    async def submit_from_clipboard_command(self) -> list[Attachment]:
        """Read the clipboard and attach whatever files or images it holds.

        Plain text yields no attachments. Rejections are reported through
        the status callback and left out of the result.
        """
        if not self.config.clipboard.enabled:
            self._status("Clipboard access is disabled")
            return []
        if self._system_clipboard and not is_clipboard_available():
            self._status("No clipboard tool found (install wl-clipboard, xclip or xsel)")
            return []

        content = await self.clipboard.aread_clipboard()
        candidates: list[Candidate] = []
        if content.kind is ClipboardKind.IMAGE and content.image_path is not None:
            candidates.append(
                Candidate(
                    path=content.image_path,
                    origin=SourceOrigin.PASTE,
                    owned=True,
                    original_name="pasted-image" + content.image_path.suffix,
                    mime_type=content.mime_type,
                )
            )
        elif content.kind in (ClipboardKind.FILE, ClipboardKind.FILES):
            candidates.extend(
                Candidate(path=path, origin=SourceOrigin.PASTE) for path in content.paths
            )
        else:
            self._status("Clipboard holds no file or image")
            return []

        attachments: list[Attachment] = []
        for candidate in candidates:
            result = await self.coordinator.submit(candidate)
            self._report(result)
            if isinstance(result, Attachment):
                attachments.append(result)
        return attachments

    def submit_raw_terminal_bytes(self, data: bytes | str) -> None:
        """Forward a chunk of raw terminal input to drag detection."""
        if not self.config.drag.enabled or self._shutdown_started:
            return
        self.drag.feed(data)

    async def submit_buffer(
        self, data: bytes, filename: str, mime_type: str | None = None
    ) -> Attachment | Rejected:
        """Attach an in-memory payload (uploads, UI-provided images).

        Args:
            data: Raw payload
            filename: Display name; also used for the temp file name
            mime_type: Explicit type; guessed from ``filename`` when omitted
        """
        result = await self.coordinator.submit_buffer(data, filename, mime_type)
        self._report(result)
        return result

    # ------------------------------------------------------------------
    # Removal
    # ------------------------------------------------------------------

    async def _announce_removed(self, attachment: Attachment, reason: str) -> None:
        await self.events.publish(
            ATTACHMENT_REMOVED,
            payload(
                AttachmentRemovedEvent(
                    attachment_id=attachment.id, filename=attachment.filename, reason=reason
                )
            ),
            source="manager",
        )

    async def remove(self, attachment_id: str) -> bool:
        """Remove one attachment, deleting its temp file if it owns one."""
        attachment = self.registry.remove(attachment_id)
        if attachment is None:
            return False
        if attachment.source.original_path is not None:
            self.coordinator.forget(attachment.source.original_path)
        await self._announce_removed(attachment, "remove")
        self._status(f"Removed {attachment.describe()}")
        return True

    async def clear(self) -> int:
        """Remove every attachment; returns how many were dropped."""
        removed = self.registry.clear()
        for attachment in removed:
            if attachment.source.original_path is not None:
                self.coordinator.forget(attachment.source.original_path)
            await self._announce_removed(attachment, "clear")
        if removed:
            self._status(f"Cleared {len(removed)} attachment(s)")
        return len(removed)

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    def list_attachments(self) -> list[Attachment]:
        return self.registry.list()

    def get(self, attachment_id: str) -> Attachment | None:
        return self.registry.get(attachment_id)

    def stats(self) -> AttachmentStats:
        return self.registry.stats()

    def drag_stats(self) -> dict[str, Any]:
        return self.drag.stats()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def started(self) -> bool:
        return self._started

    @property
    def is_shut_down(self) -> bool:
        return self._shutdown_complete.is_set()

    async def start(self) -> None:
        """Prepare the scratch directory and enable drag detection."""
        if self._started or self._shutdown_started:
            return
        self.registry.ensure_scratch_directory()
        if self.config.drag.enabled:
            self.drag.start()
        self._started = True
        LOGGER.info(
            "manager.started",
            extra={
                "event": "manager.started",
                "scratch_directory": str(self.registry.scratch_directory),
                "drag": self.config.drag.enabled,
            },
        )

    async def shutdown(self) -> None:
        """Stop detection, cancel every task, and sweep the registry.

        Safe to call more than once; later calls wait for the first.
        """
        if self._shutdown_started:
            await self._shutdown_complete.wait()
            return
        self._shutdown_started = True
        try:
            await self.drag.stop()
            await self.tasks.close()
            removed = self.registry.sweep()
            for attachment in removed:
                await self._announce_removed(attachment, "shutdown")
            LOGGER.info(
                "manager.shutdown",
                extra={"event": "manager.shutdown", "removed": len(removed)},
            )
        finally:
            self._shutdown_complete.set()

    async def wait_for_shutdown(self) -> None:
        """Block until :meth:`shutdown` has finished, whoever started it."""
        await self._shutdown_complete.wait()

    def install_signal_handlers(self, loop: asyncio.AbstractEventLoop) -> None:
        """Route SIGINT/SIGTERM to :meth:`shutdown` on ``loop``."""
        for sig in SHUTDOWN_SIGNALS:
            try:
                loop.add_signal_handler(sig, self._on_signal, sig)
            except (NotImplementedError, RuntimeError):
                # Windows event loops have no signal handler support.
                LOGGER.debug("Signal handlers unavailable for %s", sig.name)

    def _on_signal(self, sig: signal.Signals) -> None:
        LOGGER.info("manager.signal", extra={"event": "manager.signal", "signal": sig.name})
        if self._signal_task is None:
            self._signal_task = asyncio.get_running_loop().create_task(self.shutdown())

    async def __aenter__(self) -> AttachmentManager:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.shutdown()
