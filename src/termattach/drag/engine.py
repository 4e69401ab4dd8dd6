"""Drag-and-drop detection engine.

Two strategies feed one candidate stream: a scanner over the raw terminal
input (mouse reports, inline file transfers, pasted paths and URIs) and a
directory poller for terminals that say nothing at all on drop. Both
report into per-gesture detection sessions and hand their candidates to
the ingestion coordinator, which deduplicates across strategies.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
import logging
import os
from pathlib import Path
from typing import Any

from ..events import (
    DRAG_SESSION_COMPLETED,
    DRAG_SESSION_ERROR,
    DRAG_SESSION_PROGRESS,
    DRAG_SESSION_STARTED,
    EventBus,
)
from ..events.domain import (
    DragSessionCompletedEvent,
    DragSessionErrorEvent,
    DragSessionProgressEvent,
    DragSessionStartedEvent,
    payload,
)
from ..exceptions import AttachmentError
from ..models import Attachment, Candidate, DetectionSession, Rejected, SourceOrigin
from ..registry import unlink_quietly
from ..task_manager import TaskManager
from .filters import is_within, should_ignore
from .poller import DirectoryPoller, PolledFile
from .sequences import InlineFile, MouseReport, PathMatch, TerminalInputScanner, Token
from .sessions import SessionTracker

LOGGER = logging.getLogger(__name__)

POLL_TASK = "drag.poll"
REAPER_TASK = "drag.reaper"

MOUSE_TRACKING_MODES = ("1000", "1003", "1006")

Submit = Callable[[Candidate], Awaitable["Attachment | Rejected"]]
Materializer = Callable[[bytes, str], Path]


@dataclass(frozen=True)
class TerminalCapabilities:
    """What the hosting terminal is likely to report on a drop."""

    program: str
    term: str
    is_iterm2: bool
    is_apple_terminal: bool
    supports_mouse: bool
    supports_truecolor: bool


def detect_terminal_capabilities(env: Mapping[str, str] | None = None) -> TerminalCapabilities:
    environ = os.environ if env is None else env
    program = environ.get("TERM_PROGRAM", "")
    term = environ.get("TERM", "")
    colorterm = environ.get("COLORTERM", "").lower()
    return TerminalCapabilities(
        program=program,
        term=term,
        is_iterm2=program == "iTerm.app" or environ.get("LC_TERMINAL") == "iTerm2",
        is_apple_terminal=program == "Apple_Terminal",
        supports_mouse=bool(term) and term != "dumb",
        supports_truecolor=colorterm in ("truecolor", "24bit"),
    )


def mouse_tracking_sequences(enable: bool) -> str:
    """Escape sequences that turn button, any-motion and SGR reporting on or off."""
    final = "h" if enable else "l"
    return "".join(f"\x1b[?{mode}{final}" for mode in MOUSE_TRACKING_MODES)


class DragDetectionEngine:
    """Turn terminal input and directory changes into drag candidates.

    ``submit`` is the coordinator's entry point and ``materialize`` writes
    inline payloads into the scratch directory. Either strategy may be
    disabled: pass ``poller=None`` to skip the directory fallback, or
    ``ansi_detection=False`` to ignore terminal input.
    """

    def __init__(
        self,
        *,
        submit: Submit,
        materialize: Materializer,
        events: EventBus,
        tasks: TaskManager,
        sessions: SessionTracker | None = None,
        poller: DirectoryPoller | None = None,
        scanner: TerminalInputScanner | None = None,
        scratch_directory: Path | None = None,
        poll_interval: float = 0.5,
        ansi_detection: bool = True,
        max_inline_bytes: int = 50 * 1024 * 1024,
        env: Mapping[str, str] | None = None,
    ) -> None:
        self._submit = submit
        self._materialize = materialize
        self.events = events
        self.tasks = tasks
        self.sessions = sessions or SessionTracker()
        self.poller = poller
        self.scanner = scanner or TerminalInputScanner()
        self.scratch_directory = scratch_directory
        self.poll_interval = poll_interval
        self.ansi_detection = ansi_detection
        self.max_inline_bytes = max_inline_bytes
        self.capabilities = detect_terminal_capabilities(env)
        self._active = False
        self._stopped = False

    @property
    def active(self) -> bool:
        return self._active

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Launch the poll loop and the session reaper."""
        if self._active or self._stopped:
            return
        if self.poller is not None:
            self.tasks.spawn(self._poll_loop(), name=POLL_TASK)
        self.tasks.spawn(self._reap_loop(), name=REAPER_TASK)
        self._active = True
        LOGGER.info(
            "drag.engine.started",
            extra={
                "event": "drag.engine.started",
                "poll": self.poller is not None,
                "ansi": self.ansi_detection,
                "terminal": self.capabilities.program or self.capabilities.term,
            },
        )

    async def stop(self) -> None:
        """Stop both loops and expire whatever sessions are still open."""
        self._stopped = True
        self._active = False
        await self.tasks.cancel(POLL_TASK)
        await self.tasks.cancel(REAPER_TASK)
        for session in self.sessions.open_sessions():
            self.sessions.cancel(session.session_id)
        self.sessions.clear()
        self.scanner.reset()
        LOGGER.info("drag.engine.stopped", extra={"event": "drag.engine.stopped"})

    @staticmethod
    def mouse_tracking_sequences(enable: bool) -> str:
        return mouse_tracking_sequences(enable)

    def stats(self) -> dict[str, Any]:
        return {
            "active": self._active,
            "open_sessions": len(self.sessions.open_sessions()),
            "known_files": self.poller.known_count if self.poller is not None else 0,
            "pending_input": len(self.scanner.pending),
            "terminal": {
                "program": self.capabilities.program,
                "term": self.capabilities.term,
                "iterm2": self.capabilities.is_iterm2,
                "apple_terminal": self.capabilities.is_apple_terminal,
                "mouse": self.capabilities.supports_mouse,
                "truecolor": self.capabilities.supports_truecolor,
            },
        }

    # ------------------------------------------------------------------
    # Raw-stream strategy
    # ------------------------------------------------------------------

    def feed(self, data: bytes | str) -> asyncio.Task[None] | None:
        """Scan a chunk of terminal input and schedule its handling.

        Scanning happens synchronously so chunks are consumed in arrival
        order; the returned task (if any) finishes once every candidate
        found in this chunk has been submitted.
        """
        if self._stopped or not self.ansi_detection or self.tasks.closed:
            return None
        tokens = self.scanner.feed(data)
        if not tokens:
            return None
        return self.tasks.spawn(self.handle_tokens(tokens))

    async def handle_tokens(self, tokens: list[Token]) -> None:
        pending: list[Candidate] = []
        for token in tokens:
            if isinstance(token, MouseReport):
                await self._handle_mouse(token)
            elif isinstance(token, InlineFile):
                candidate = await self._handle_inline(token)
                if candidate is not None:
                    pending.append(candidate)
            elif isinstance(token, PathMatch):
                candidate = await self._handle_path(token)
                if candidate is not None:
                    pending.append(candidate)

        # An explicit file signal closes the gesture.
        for session_id in dict.fromkeys(c.session_id for c in pending if c.session_id):
            await self._commit(session_id, [c for c in pending if c.session_id == session_id])

    async def _ensure_session(
        self, trigger: str, position: tuple[int, int] | None = None
    ) -> DetectionSession:
        session, opened = self.sessions.ensure(trigger)
        if opened:
            await self.events.publish(
                DRAG_SESSION_STARTED,
                payload(
                    DragSessionStartedEvent(
                        session_id=session.session_id, trigger=trigger, position=position
                    )
                ),
                source="drag",
            )
        return session

    async def _handle_mouse(self, report: MouseReport) -> None:
        position = (report.x, report.y)
        active = self.sessions.active
        if report.action == "press":
            if not report.is_left:
                if active is not None:
                    await self._expire(active, "Drag cancelled")
                return
            if active is None:
                await self._ensure_session("mouse", position)
            return
        if report.action == "drag" and report.is_left and active is not None:
            await self.events.publish(
                DRAG_SESSION_PROGRESS,
                payload(
                    DragSessionProgressEvent(
                        session_id=active.session_id,
                        message="Dragging",
                        candidate_paths=[str(path) for path in active.candidate_paths],
                        position=position,
                    )
                ),
                source="drag",
            )
            return
        if report.action == "release" and active is not None:
            # The drop itself: look for files right away instead of waiting a tick.
            await self.poll_once()

    async def _handle_inline(self, inline: InlineFile) -> Candidate | None:
        if len(inline.data) > self.max_inline_bytes:
            LOGGER.warning(
                "drag.inline.too_large",
                extra={"event": "drag.inline.too_large", "name": inline.name, "size": len(inline.data)},
            )
            return None
        try:
            path = await asyncio.to_thread(self._materialize, inline.data, inline.name)
        except AttachmentError as exc:
            LOGGER.warning(
                "drag.inline.write_failed",
                extra={"event": "drag.inline.write_failed", "name": inline.name, "reason": str(exc)},
            )
            return None
        session = await self._ensure_session("protocol")
        self.sessions.add_candidate(session.session_id, path)
        return Candidate(
            path=path,
            origin=SourceOrigin.DRAG,
            session_id=session.session_id,
            initial_size=len(inline.data),
            owned=True,
            original_name=inline.name,
        )

    def _accepts(self, path: Path) -> bool:
        if self.scratch_directory is not None and is_within(path, self.scratch_directory):
            return False
        if should_ignore(path.name):
            return False
        try:
            return path.is_file()
        except OSError:
            return False

    async def _handle_path(self, match: PathMatch) -> Candidate | None:
        path = match.path
        if not self._accepts(path):
            LOGGER.debug(
                "drag.path.skipped",
                extra={"event": "drag.path.skipped", "path": str(path), "via": match.via},
            )
            return None
        try:
            size = path.stat().st_size
        except OSError:
            return None
        session = await self._ensure_session(match.via)
        if not self.sessions.add_candidate(session.session_id, path):
            return None
        return Candidate(
            path=path,
            origin=SourceOrigin.DRAG,
            session_id=session.session_id,
            initial_size=size,
        )

    # ------------------------------------------------------------------
    # Directory-poll strategy
    # ------------------------------------------------------------------

    async def poll_once(self) -> list[Attachment | Rejected]:
        """Scan the watch directories once and submit whatever appeared."""
        if self.poller is None or self._stopped:
            return []
        found: list[PolledFile] = await asyncio.to_thread(self.poller.scan)
        if not found:
            return []
        session = await self._ensure_session("poll")
        candidates: list[Candidate] = []
        for item in found:
            if self.sessions.add_candidate(session.session_id, item.path):
                candidates.append(
                    Candidate(
                        path=item.path,
                        origin=SourceOrigin.DRAG,
                        session_id=session.session_id,
                        initial_size=item.size_bytes,
                    )
                )
        return await self._commit(session.session_id, candidates)

    async def _poll_loop(self) -> None:
        while True:
            try:
                await self.poll_once()
            except asyncio.CancelledError:
                raise
            except Exception as exc:  # noqa: BLE001 - the loop must outlive one bad scan.
                LOGGER.warning(
                    "drag.poll.failed",
                    extra={"event": "drag.poll.failed", "error_type": type(exc).__name__, "error": str(exc)},
                )
            await asyncio.sleep(self.poll_interval)

    async def _reap_loop(self) -> None:
        interval = max(0.1, min(self.sessions.timeout_seconds / 4, 1.0))
        while True:
            await asyncio.sleep(interval)
            await self.reap()

    async def reap(self) -> list[DetectionSession]:
        """Expire collecting sessions that outlived the timeout."""
        expired = self.sessions.expire_stale()
        for session in expired:
            await self._publish_error(session.session_id, "No files detected before the drag timed out")
        return expired

    # ------------------------------------------------------------------
    # Session completion
    # ------------------------------------------------------------------

    async def _expire(self, session: DetectionSession, message: str) -> None:
        self.sessions.cancel(session.session_id)
        await self._publish_error(session.session_id, message)

    async def _publish_error(self, session_id: str, message: str) -> None:
        LOGGER.info(
            "drag.session.expired",
            extra={"event": "drag.session.expired", "session_id": session_id, "reason": message},
        )
        await self.events.publish(
            DRAG_SESSION_ERROR,
            payload(DragSessionErrorEvent(session_id=session_id, message=message)),
            source="drag",
        )

    async def _commit(
        self, session_id: str, candidates: list[Candidate]
    ) -> list[Attachment | Rejected]:
        session = self.sessions.settle(session_id)
        if session is None:
            # Cancelled or expired before it could settle.
            for candidate in candidates:
                if candidate.owned:
                    unlink_quietly(candidate.path)
            return []
        await self.events.publish(
            DRAG_SESSION_PROGRESS,
            payload(
                DragSessionProgressEvent(
                    session_id=session_id,
                    message=f"Processing {len(candidates)} file(s)",
                    candidate_paths=[str(c.path) for c in candidates],
                )
            ),
            source="drag",
        )

        results = list(await asyncio.gather(*(self._submit(c) for c in candidates)))
        attachment_ids = [r.id for r in results if isinstance(r, Attachment)]
        rejected = len(results) - len(attachment_ids)

        committed = self.sessions.commit(session_id, attachment_ids)
        if committed is None:
            return results
        if not attachment_ids:
            await self._publish_error(session_id, "No files could be attached")
            return results
        LOGGER.info(
            "drag.session.completed",
            extra={
                "event": "drag.session.completed",
                "session_id": session_id,
                "attached": len(attachment_ids),
                "rejected": rejected,
            },
        )
        await self.events.publish(
            DRAG_SESSION_COMPLETED,
            payload(
                DragSessionCompletedEvent(
                    session_id=session_id, attachment_ids=attachment_ids, rejected=rejected
                )
            ),
            source="drag",
        )
        return results
