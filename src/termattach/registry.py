"""The attachment registry: confirmed attachments, quotas, and temp files."""

from __future__ import annotations

import itertools
import logging
import os
from pathlib import Path
import re
import secrets
import threading
import time

from .exceptions import AlreadyRegisteredError, IoFailureError, QuotaExceededError
from .models import Attachment, AttachmentKind, AttachmentStats, format_size

LOGGER = logging.getLogger(__name__)

UNSAFE_FILENAME_CHARS = re.compile(r"[^\w.\- ]+")
MAX_FILENAME_LENGTH = 120


def safe_filename(filename: str) -> str:
    """Reduce an untrusted name to a single safe path component."""
    name = os.path.basename(filename.replace("\\", "/")).strip()
    name = UNSAFE_FILENAME_CHARS.sub("_", name).lstrip(".")
    if not name:
        name = "attachment"
    if len(name) > MAX_FILENAME_LENGTH:
        stem, ext = os.path.splitext(name)
        name = stem[: MAX_FILENAME_LENGTH - len(ext)] + ext
    return name


def unlink_quietly(path: Path) -> bool:
    """Delete ``path``; failures are logged and never raised."""
    try:
        path.unlink(missing_ok=True)
    except OSError as exc:
        LOGGER.warning(
            "registry.unlink_failed",
            extra={"event": "registry.unlink_failed", "path": str(path), "reason": str(exc)},
        )
        return False
    return True


class AttachmentRegistry:
    """Own every confirmed attachment and the scratch directory.

    Both quotas are checked and applied under one lock, so concurrent
    submissions can never push the registry past ``max_attachments`` or
    ``max_total_size_bytes``. A ``threading.Lock`` is used rather than an
    asyncio lock because the termination sweep may run from a signal
    handler outside the event loop.

    Temp files handed to :meth:`add` become owned by their attachment and
    are deleted on :meth:`remove`, :meth:`clear` and :meth:`sweep`.

    ``scratch_root`` may be shared by several processes. Each registry
    writes into its own ``<pid>-<token>`` subdirectory of it and only ever
    sweeps that subdirectory.
    """

    def __init__(
        self,
        scratch_root: str | os.PathLike[str],
        *,
        max_attachments: int = 10,
        max_total_size_bytes: int = 50 * 1024 * 1024,
    ) -> None:
        self.scratch_root = Path(scratch_root).expanduser()
        self.scratch_directory = self.scratch_root / f"{os.getpid()}-{secrets.token_hex(4)}"
        self.max_attachments = max_attachments
        self.max_total_size_bytes = max_total_size_bytes
        self._lock = threading.Lock()
        self._attachments: dict[str, Attachment] = {}
        self._temp_owners: dict[Path, str] = {}
        self._original_paths: dict[str, str] = {}
        self._total_size = 0
        self._sequence = itertools.count(1)

    # ------------------------------------------------------------------
    # Identity and scratch space
    # ------------------------------------------------------------------

    def next_id(self) -> str:
        """Return an id that this registry will never hand out again."""
        with self._lock:
            sequence = next(self._sequence)
        return f"att_{sequence}_{secrets.token_hex(4)}"

    def ensure_scratch_directory(self) -> Path:
        try:
            self.scratch_root.mkdir(parents=True, exist_ok=True)
            self.scratch_directory.mkdir(mode=0o700, exist_ok=True)
            if os.name == "posix":
                self.scratch_directory.chmod(0o700)
        except OSError as exc:
            raise IoFailureError(
                f"Cannot create scratch directory {self.scratch_directory}: {exc}",
                path=str(self.scratch_directory),
            ) from exc
        return self.scratch_directory

    def materialize(self, data: bytes, filename: str) -> Path:
        """Write ``data`` to a fresh ``<timestamp>-<filename>`` scratch file.

        The file is created exclusively, so two calls never share a path.
        The caller owns the result until it is registered via :meth:`add`.
        """
        directory = self.ensure_scratch_directory()
        name = safe_filename(filename)
        stamp = int(time.time() * 1000)
        for attempt in itertools.count():
            suffix = f"-{attempt}" if attempt else ""
            target = directory / f"{stamp}{suffix}-{name}"
            try:
                fd = os.open(target, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
            except FileExistsError:
                continue
            except OSError as exc:
                raise IoFailureError(
                    f"Cannot create temp file for {name}: {exc}", path=str(target)
                ) from exc
            try:
                with os.fdopen(fd, "wb") as handle:
                    handle.write(data)
            except OSError as exc:
                unlink_quietly(target)
                raise IoFailureError(
                    f"Cannot write temp file for {name}: {exc}", path=str(target)
                ) from exc
            return target
        raise AssertionError("unreachable")

    def owns(self, path: str | os.PathLike[str]) -> bool:
        return Path(path) in self._temp_owners

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def can_add(self, size_bytes: int) -> bool:
        with self._lock:
            return self._fits(size_bytes)

    def _fits(self, size_bytes: int) -> bool:
        return (
            len(self._attachments) < self.max_attachments
            and self._total_size + size_bytes <= self.max_total_size_bytes
        )

    def add(self, attachment: Attachment) -> Attachment:
        """Register ``attachment`` or raise without changing any state.

        Raises:
            QuotaExceededError: count or total-size quota would be exceeded
            AlreadyRegisteredError: the id, temp file, or original path is taken
        """
        original = attachment.source.original_path
        with self._lock:
            if attachment.id in self._attachments:
                raise AlreadyRegisteredError(f"Duplicate attachment id {attachment.id}")
            if attachment.temp_path is not None and attachment.temp_path in self._temp_owners:
                raise AlreadyRegisteredError(
                    f"Temp file already owned: {attachment.temp_path}",
                    path=str(attachment.temp_path),
                )
            if original is not None and original in self._original_paths:
                raise AlreadyRegisteredError(
                    f"Already attached: {attachment.filename}", path=original
                )
            if len(self._attachments) >= self.max_attachments:
                raise QuotaExceededError(
                    f"Attachment limit reached ({self.max_attachments})",
                    path=original,
                )
            if self._total_size + attachment.size_bytes > self.max_total_size_bytes:
                raise QuotaExceededError(
                    f"Total attachment size would exceed {format_size(self.max_total_size_bytes)}",
                    path=original,
                )

            self._attachments[attachment.id] = attachment
            self._total_size += attachment.size_bytes
            if attachment.temp_path is not None:
                self._temp_owners[attachment.temp_path] = attachment.id
            if original is not None:
                self._original_paths[original] = attachment.id

        LOGGER.info(
            "registry.add",
            extra={
                "event": "registry.add",
                "attachment_id": attachment.id,
                "filename": attachment.filename,
                "size": attachment.size_bytes,
            },
        )
        return attachment

    def _detach(self, attachment_id: str) -> Attachment | None:
        attachment = self._attachments.pop(attachment_id, None)
        if attachment is None:
            return None
        self._total_size -= attachment.size_bytes
        if attachment.temp_path is not None:
            self._temp_owners.pop(attachment.temp_path, None)
        original = attachment.source.original_path
        if original is not None and self._original_paths.get(original) == attachment_id:
            del self._original_paths[original]
        return attachment

    @staticmethod
    def _release(attachment: Attachment) -> None:
        if attachment.is_temp_file and attachment.temp_path is not None:
            unlink_quietly(attachment.temp_path)

    def remove(self, attachment_id: str) -> Attachment | None:
        """Drop an attachment, deleting its temp file first."""
        with self._lock:
            attachment = self._attachments.get(attachment_id)
            if attachment is None:
                return None
            self._release(attachment)
            self._detach(attachment_id)
        LOGGER.info(
            "registry.remove",
            extra={"event": "registry.remove", "attachment_id": attachment_id},
        )
        return attachment

    def clear(self) -> list[Attachment]:
        """Drop every attachment, best-effort deleting each temp file."""
        with self._lock:
            removed = list(self._attachments.values())
            for attachment in removed:
                self._release(attachment)
            self._attachments.clear()
            self._temp_owners.clear()
            self._original_paths.clear()
            self._total_size = 0
        return removed

    def sweep(self) -> list[Attachment]:
        """Termination cleanup: clear, then empty this registry's scratch directory.

        The shared root is removed too once no other registry uses it.
        """
        removed = self.clear()
        directory = self.scratch_directory
        if directory.is_dir():
            try:
                entries = list(directory.iterdir())
            except OSError as exc:
                LOGGER.warning("Unable to list scratch directory %s: %s", directory, exc)
                entries = []
            for entry in entries:
                if entry.is_file() or entry.is_symlink():
                    unlink_quietly(entry)
            try:
                directory.rmdir()
            except OSError:
                pass  # not empty or already gone
        try:
            self.scratch_root.rmdir()
        except OSError:
            pass  # still used by another registry
        return removed

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, attachment_id: str) -> Attachment | None:
        return self._attachments.get(attachment_id)

    def list(self) -> list[Attachment]:
        with self._lock:
            return list(self._attachments.values())

    def by_kind(self, kind: AttachmentKind) -> list[Attachment]:
        return [attachment for attachment in self.list() if attachment.kind is kind]

    def contains_path(self, path: str | os.PathLike[str]) -> bool:
        """True when ``path`` is already registered as an original path."""
        return str(path) in self._original_paths

    @property
    def total_size(self) -> int:
        return self._total_size

    def __len__(self) -> int:
        return len(self._attachments)

    def stats(self) -> AttachmentStats:
        attachments = self.list()
        return AttachmentStats(
            count=len(attachments),
            total_size=sum(item.size_bytes for item in attachments),
            file_count=sum(1 for item in attachments if item.kind is AttachmentKind.FILE),
            image_count=sum(1 for item in attachments if item.kind is AttachmentKind.IMAGE),
            temp_file_count=sum(1 for item in attachments if item.is_temp_file),
        )
