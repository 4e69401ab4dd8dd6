"""Per-gesture detection-session bookkeeping."""

from __future__ import annotations

from collections.abc import Callable
import itertools
import logging
from pathlib import Path
import time

from ..models import DetectionSession, SessionStatus

LOGGER = logging.getLogger(__name__)


class SessionTracker:
    """Open, advance, and expire detection sessions.

    At most one session is *active* (collecting a gesture) at a time;
    sessions that moved to ``settling`` stay tracked until they commit or
    time out. Finished sessions are dropped from the tracker.
    """

    def __init__(
        self,
        timeout_seconds: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.timeout_seconds = timeout_seconds
        self._clock = clock
        self._counter = itertools.count(1)
        self._sessions: dict[str, DetectionSession] = {}
        self._active_id: str | None = None

    @property
    def active(self) -> DetectionSession | None:
        if self._active_id is None:
            return None
        return self._sessions.get(self._active_id)

    def get(self, session_id: str) -> DetectionSession | None:
        return self._sessions.get(session_id)

    def open_sessions(self) -> list[DetectionSession]:
        return [session for session in self._sessions.values() if session.is_open]

    def open(self, trigger: str) -> DetectionSession:
        """Start a new session; a still-active one is handed to settling first."""
        current = self.active
        if current is not None:
            self.settle(current.session_id)
        now = self._clock()
        session = DetectionSession(
            session_id=f"drag-{int(now * 1000)}-{next(self._counter)}",
            started_at=now,
            trigger=trigger,
        )
        self._sessions[session.session_id] = session
        self._active_id = session.session_id
        LOGGER.debug(
            "drag.session.opened",
            extra={"event": "drag.session.opened", "session_id": session.session_id},
        )
        return session

    def ensure(self, trigger: str) -> tuple[DetectionSession, bool]:
        """Return the active session, opening one if needed.

        The flag is True when a new session was opened.
        """
        current = self.active
        if current is not None and current.status is SessionStatus.COLLECTING:
            return current, False
        return self.open(trigger), True

    def add_candidate(self, session_id: str, path: Path) -> bool:
        session = self._sessions.get(session_id)
        if session is None or not session.is_open:
            return False
        return session.add_candidate(path)

    def settle(self, session_id: str) -> DetectionSession | None:
        session = self._sessions.get(session_id)
        if session is None or not session.is_open:
            return None
        session.status = SessionStatus.SETTLING
        if self._active_id == session_id:
            self._active_id = None
        return session

    def commit(self, session_id: str, attachment_ids: list[str]) -> DetectionSession | None:
        session = self._sessions.pop(session_id, None)
        if session is None:
            return None
        if self._active_id == session_id:
            self._active_id = None
        if session.status is SessionStatus.EXPIRED:
            return None
        session.status = SessionStatus.COMMITTED
        session.attachment_ids = list(attachment_ids)
        return session

    def cancel(self, session_id: str) -> DetectionSession | None:
        """Expire a session immediately (cancelled gesture)."""
        session = self._sessions.pop(session_id, None)
        if session is None:
            return None
        if self._active_id == session_id:
            self._active_id = None
        session.status = SessionStatus.EXPIRED
        session.candidate_paths.clear()
        return session

    def expire_stale(self) -> list[DetectionSession]:
        """Expire collecting sessions older than the timeout.

        Settling sessions are bounded by the stability tracker instead.
        """
        now = self._clock()
        expired: list[DetectionSession] = []
        for session_id, session in list(self._sessions.items()):
            if session.status is SessionStatus.COLLECTING and now - session.started_at >= self.timeout_seconds:
                cancelled = self.cancel(session_id)
                if cancelled is not None:
                    expired.append(cancelled)
        return expired

    def is_expired(self, session_id: str) -> bool:
        session = self._sessions.get(session_id)
        return session is None or session.status is SessionStatus.EXPIRED

    def clear(self) -> None:
        self._sessions.clear()
        self._active_id = None
