"""Tests for the AttachmentManager facade."""

from __future__ import annotations

import asyncio
import base64
import signal
import tempfile
from pathlib import Path
import unittest
from unittest.mock import patch

from termattach.config import AttachmentsConfig, ClipboardConfig, Config, DragConfig
from termattach.events import ATTACHMENT_ADDED, ATTACHMENT_REMOVED
from termattach.exceptions import ErrorKind
from termattach.managers import AttachmentManager
from termattach.models import Attachment, AttachmentKind, Rejected, SourceOrigin
from termattach.stability import StabilityTracker

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32


class FakeClipboard:
    def __init__(self, text: str = "", image: bytes | None = None) -> None:
        self.text = text
        self.image = image

    def read_text(self) -> str:
        return self.text

    def read_image(self) -> bytes | None:
        return self.image


class FakeLoop:
    def __init__(self, error: type[Exception] | None = None) -> None:
        self.error = error
        self.handlers: dict[signal.Signals, tuple] = {}

    def add_signal_handler(self, sig, callback, *args) -> None:
        if self.error is not None:
            raise self.error
        self.handlers[sig] = (callback, args)


class ManagerTestCase(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.base = Path(self._tmp.name)
        self.scratch = self.base / "scratch"
        self.clipboard = FakeClipboard()
        self.messages: list[str] = []
        self.manager = self._manager()

    async def asyncTearDown(self) -> None:
        await self.manager.shutdown()
        self._tmp.cleanup()

    def _config(self, **sections) -> Config:
        sections.setdefault(
            "attachments", AttachmentsConfig(scratch_directory=str(self.scratch))
        )
        sections.setdefault("drag", DragConfig(filesystem_fallback=False))
        return Config(**sections)

    def _manager(self, config: Config | None = None) -> AttachmentManager:
        manager = AttachmentManager(
            config or self._config(),
            clipboard_reader=self.clipboard,
            stability=StabilityTracker(settle_delay=0.0, max_retries=1),
            env={"TERM": "xterm-256color"},
        )
        manager.on_status_update(self.messages.append)
        return manager

    def _file(self, name: str, data: bytes = b"content") -> Path:
        path = self.base / name
        path.write_bytes(data)
        return path


class FileReferenceTests(ManagerTestCase):
    async def test_submit_file_path_reports_status(self) -> None:
        path = self._file("notes.txt", b"hello")
        result = await self.manager.submit_file_path(str(path))
        self.assertIsInstance(result, Attachment)
        assert isinstance(result, Attachment)
        self.assertIs(result.source.origin, SourceOrigin.FILE_REFERENCE)
        self.assertEqual(self.messages, ["File attached: notes.txt (1 total)"])
        self.assertEqual(self.manager.stats().count, 1)
        self.assertIs(self.manager.get(result.id), result)

    async def test_missing_file_is_rejected_with_message(self) -> None:
        result = await self.manager.submit_file_path(str(self.base / "missing.txt"))
        self.assertIsInstance(result, Rejected)
        assert isinstance(result, Rejected)
        self.assertIs(result.kind, ErrorKind.NOT_FOUND)
        self.assertEqual(self.messages, [result.message])

    async def test_broken_status_callback_does_not_stop_ingestion(self) -> None:
        def explode(message: str) -> None:
            raise RuntimeError("ui gone")

        self.manager.on_status_update(explode)
        path = self._file("notes.txt")
        with self.assertLogs("termattach.managers.attachment", level="WARNING"):
            result = await self.manager.submit_file_path(path)
        self.assertIsInstance(result, Attachment)

    def test_is_image_path(self) -> None:
        self.assertTrue(AttachmentManager.is_image_path("photo.JPG"))
        self.assertFalse(AttachmentManager.is_image_path("notes.txt"))


class ClipboardTests(ManagerTestCase):
    async def test_two_pasted_paths_become_two_file_attachments(self) -> None:
        first = self._file("a.txt")
        second = self._file("b.txt")
        self.clipboard.text = f"{first}\n{second}"
        attachments = await self.manager.submit_from_clipboard_command()
        self.assertEqual(len(attachments), 2)
        self.assertEqual([a.kind for a in attachments], [AttachmentKind.FILE] * 2)
        self.assertEqual({a.source.origin for a in attachments}, {SourceOrigin.PASTE})
        self.assertEqual(self.manager.stats().count, 2)

    async def test_pasted_image_is_owned_and_removed_with_its_file(self) -> None:
        self.clipboard.text = "data:image/png;base64," + base64.b64encode(PNG_BYTES).decode()
        removed_events = []
        self.manager.events.subscribe(ATTACHMENT_REMOVED, removed_events.append)

        attachments = await self.manager.submit_from_clipboard_command()
        self.assertEqual(len(attachments), 1)
        image = attachments[0]
        self.assertIs(image.kind, AttachmentKind.IMAGE)
        self.assertEqual(image.mime_type, "image/png")
        self.assertTrue(image.is_temp_file)
        assert image.temp_path is not None
        self.assertEqual(image.temp_path.parent, self.manager.registry.scratch_directory)
        self.assertEqual(image.temp_path.parent.parent, self.scratch)
        self.assertTrue(image.temp_path.exists())
        self.assertTrue(self.messages[-1].startswith("Image attached: "))

        self.assertTrue(await self.manager.remove(image.id))
        self.assertFalse(image.temp_path.exists())
        self.assertEqual(len(removed_events), 1)
        self.assertEqual(removed_events[0].data["reason"], "remove")
        self.assertFalse(await self.manager.remove(image.id))

    async def test_plain_text_attaches_nothing(self) -> None:
        self.clipboard.text = "just some words"
        self.assertEqual(await self.manager.submit_from_clipboard_command(), [])
        self.assertEqual(self.messages, ["Clipboard holds no file or image"])

    async def test_disabled_clipboard_is_not_read(self) -> None:
        manager = self._manager(self._config(clipboard=ClipboardConfig(enabled=False)))
        self.clipboard.text = str(self._file("a.txt"))
        self.assertEqual(await manager.submit_from_clipboard_command(), [])
        self.assertEqual(self.messages[-1], "Clipboard access is disabled")
        await manager.shutdown()

    async def test_missing_clipboard_tool_is_reported(self) -> None:
        manager = AttachmentManager(
            self._config(),
            stability=StabilityTracker(settle_delay=0.0, max_retries=1),
            env={"TERM": "xterm-256color"},
        )
        manager.on_status_update(self.messages.append)
        with patch(
            "termattach.managers.attachment.is_clipboard_available", return_value=False
        ), patch.object(manager.clipboard, "read_clipboard") as read_mock:
            self.assertEqual(await manager.submit_from_clipboard_command(), [])
        read_mock.assert_not_called()
        self.assertTrue(self.messages[-1].startswith("No clipboard tool found"))
        await manager.shutdown()

    async def test_injected_reader_skips_the_tool_lookup(self) -> None:
        self.clipboard.text = "just some words"
        with patch(
            "termattach.managers.attachment.is_clipboard_available", return_value=False
        ) as available_mock:
            await self.manager.submit_from_clipboard_command()
        available_mock.assert_not_called()


class BufferAndRemovalTests(ManagerTestCase):
    async def test_submit_buffer_creates_temp_attachment(self) -> None:
        result = await self.manager.submit_buffer(PNG_BYTES, "upload.png")
        self.assertIsInstance(result, Attachment)
        assert isinstance(result, Attachment)
        self.assertIs(result.source.origin, SourceOrigin.UPLOAD)
        self.assertIs(result.kind, AttachmentKind.IMAGE)

    async def test_remove_forgets_the_path_so_it_can_be_attached_again(self) -> None:
        path = self._file("notes.txt")
        first = await self.manager.submit_file_path(path)
        assert isinstance(first, Attachment)
        self.assertTrue(await self.manager.remove(first.id))
        self.assertEqual(self.messages[-1], "Removed file notes.txt (7.0 B)")
        again = await self.manager.submit_file_path(path)
        self.assertIsInstance(again, Attachment)

    async def test_clear_removes_everything(self) -> None:
        await self.manager.submit_file_path(self._file("a.txt"))
        await self.manager.submit_buffer(b"data", "b.bin")
        reasons = []
        self.manager.events.subscribe(ATTACHMENT_REMOVED, lambda e: reasons.append(e.data["reason"]))
        self.assertEqual(await self.manager.clear(), 2)
        self.assertEqual(reasons, ["clear", "clear"])
        self.assertEqual(self.manager.list_attachments(), [])
        self.assertEqual(await self.manager.clear(), 0)


class DragTests(ManagerTestCase):
    async def test_raw_terminal_bytes_attach_a_dropped_file(self) -> None:
        path = self._file("dropped.txt")
        added = []
        self.manager.events.subscribe(ATTACHMENT_ADDED, added.append)
        await self.manager.start()
        self.manager.submit_raw_terminal_bytes(f"\x1b[200~{path}\x1b[201~".encode())

        for _ in range(200):
            if self.manager.list_attachments():
                break
            await asyncio.sleep(0.01)
        attachments = self.manager.list_attachments()
        self.assertEqual(len(attachments), 1)
        self.assertIs(attachments[0].source.origin, SourceOrigin.DRAG)
        self.assertEqual(len(added), 1)
        self.assertIsNotNone(added[0].data["session_id"])

    async def test_drag_stats(self) -> None:
        await self.manager.start()
        stats = self.manager.drag_stats()
        self.assertTrue(stats["active"])
        self.assertEqual(stats["known_files"], 0)


class LifecycleTests(ManagerTestCase):
    async def test_context_manager_starts_and_shuts_down(self) -> None:
        async with self.manager as manager:
            self.assertTrue(manager.started)
            self.assertTrue(self.scratch.is_dir())
        self.assertTrue(self.manager.is_shut_down)

    async def test_shutdown_sweeps_scratch_and_is_idempotent(self) -> None:
        await self.manager.start()
        await self.manager.submit_buffer(b"data", "upload.bin")
        (self.manager.registry.scratch_directory / "stray.tmp").write_bytes(b"left behind")
        reasons = []
        self.manager.events.subscribe(ATTACHMENT_REMOVED, lambda e: reasons.append(e.data["reason"]))

        await asyncio.gather(self.manager.shutdown(), self.manager.shutdown())
        self.assertTrue(self.manager.is_shut_down)
        self.assertFalse(self.scratch.exists())
        self.assertEqual(reasons, ["shutdown"])
        self.assertEqual(self.manager.list_attachments(), [])

        path = self._file("late.txt")
        self.manager.submit_raw_terminal_bytes(f"\x1b[200~{path}\x1b[201~")
        await asyncio.sleep(0)
        self.assertEqual(self.manager.list_attachments(), [])

    async def test_shutdown_keeps_another_clients_temp_files(self) -> None:
        other = self._manager()
        await self.manager.start()
        await other.start()
        mine = await self.manager.submit_buffer(b"A's bytes", "a.txt")
        theirs = await other.submit_buffer(b"B's bytes", "b.txt")
        assert isinstance(mine, Attachment) and isinstance(theirs, Attachment)
        assert mine.temp_path is not None and theirs.temp_path is not None

        await self.manager.shutdown()
        self.assertFalse(mine.temp_path.exists())
        self.assertTrue(theirs.temp_path.exists())
        self.assertEqual(other.get(theirs.id).read_bytes(), b"B's bytes")

        await other.shutdown()
        self.assertFalse(self.scratch.exists())

    async def test_signal_triggers_shutdown(self) -> None:
        await self.manager.start()
        self.manager._on_signal(signal.SIGTERM)
        task = self.manager._signal_task
        self.assertIsNotNone(task)
        assert task is not None
        await task
        self.assertTrue(self.manager.is_shut_down)

    def test_install_signal_handlers(self) -> None:
        loop = FakeLoop()
        self.manager.install_signal_handlers(loop)
        self.assertEqual(set(loop.handlers), {signal.SIGINT, signal.SIGTERM})
        callback, args = loop.handlers[signal.SIGINT]
        self.assertEqual(args, (signal.SIGINT,))

        unsupported = FakeLoop(error=NotImplementedError)
        self.manager.install_signal_handlers(unsupported)
        self.assertEqual(unsupported.handlers, {})


if __name__ == "__main__":
    unittest.main()
