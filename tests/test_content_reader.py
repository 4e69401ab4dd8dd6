"""Tests for file validation and reading."""

from __future__ import annotations

import tempfile
from pathlib import Path
import unittest

from termattach.content_reader import (
    DEFAULT_MIME_TYPE,
    FileContentReader,
    guess_mime_type,
    is_image_path,
    kind_for_mime,
    preview,
)
from termattach.exceptions import (
    NotAFileError,
    NotFoundError,
    TooLargeError,
    UnsupportedTypeError,
)
from termattach.models import AttachmentKind, format_size


class MimeHelperTests(unittest.TestCase):
    """Validate extension based type detection."""

    def test_known_extensions(self) -> None:
        self.assertEqual(guess_mime_type("photo.JPG"), "image/jpeg")
        self.assertEqual(guess_mime_type("report.pdf"), "application/pdf")
        self.assertEqual(guess_mime_type("main.rs"), "text/x-rust")

    def test_unknown_extension_falls_back_to_octet_stream(self) -> None:
        self.assertEqual(guess_mime_type("blob.qqqzz"), DEFAULT_MIME_TYPE)

    def test_kind_for_mime(self) -> None:
        self.assertIs(kind_for_mime("image/png"), AttachmentKind.IMAGE)
        self.assertIs(kind_for_mime("image/tiff"), AttachmentKind.IMAGE)
        self.assertIs(kind_for_mime("text/plain"), AttachmentKind.FILE)

    def test_is_image_path(self) -> None:
        self.assertTrue(is_image_path("/tmp/a.webp"))
        self.assertFalse(is_image_path("/tmp/a.txt"))

    def test_preview_truncates_and_flags_binary(self) -> None:
        self.assertEqual(preview("short"), "short")
        long_text = preview("x" * 20, max_length=5)
        self.assertTrue(long_text.startswith("xxxxx..."))
        self.assertIn("[content truncated]", long_text)
        self.assertEqual(preview("éèê".encode("utf-8")), "[binary content]")

    def test_format_size(self) -> None:
        self.assertEqual(format_size(512), "512.0 B")
        self.assertEqual(format_size(1536), "1.5 KB")
        self.assertEqual(format_size(5 * 1024 * 1024), "5.0 MB")


class FileContentReaderTests(unittest.TestCase):
    """Validate the read path and each failure kind."""

    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.base = Path(self._tmp.name)
        self.reader = FileContentReader(max_file_bytes=64, max_image_bytes=16)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def test_reads_text_file(self) -> None:
        path = self.base / "notes.txt"
        path.write_bytes(b"hello world")
        content = self.reader.read(path)
        self.assertEqual(content.data, b"hello world")
        self.assertEqual(content.filename, "notes.txt")
        self.assertEqual(content.mime_type, "text/plain")
        self.assertEqual(content.size_bytes, 11)
        self.assertIs(content.kind, AttachmentKind.FILE)

    def test_missing_path_is_not_found(self) -> None:
        with self.assertRaises(NotFoundError) as ctx:
            self.reader.read(self.base / "missing.txt")
        self.assertTrue(ctx.exception.path.endswith("missing.txt"))

    def test_directory_is_not_a_file(self) -> None:
        with self.assertRaises(NotAFileError):
            self.reader.read(self.base)

    def test_generic_file_over_ceiling_is_too_large(self) -> None:
        path = self.base / "big.txt"
        path.write_bytes(b"x" * 65)
        with self.assertRaises(TooLargeError):
            self.reader.read(path)

    def test_images_use_their_own_ceiling(self) -> None:
        path = self.base / "pic.png"
        path.write_bytes(b"x" * 32)
        with self.assertRaises(TooLargeError):
            self.reader.read(path)
        # An explicit ceiling (drag sources) overrides the per-kind one.
        content = self.reader.read(path, max_bytes=1024)
        self.assertIs(content.kind, AttachmentKind.IMAGE)

    def test_image_kind_requires_supported_image_type(self) -> None:
        path = self.base / "notes.txt"
        path.write_bytes(b"hi")
        with self.assertRaises(UnsupportedTypeError):
            self.reader.read(path, kind=AttachmentKind.IMAGE)

    def test_validate_path(self) -> None:
        path = self.base / "ok.md"
        path.write_text("# hi", encoding="utf-8")
        self.assertTrue(FileContentReader.validate_path(path))
        self.assertFalse(FileContentReader.validate_path(self.base / "nope.md"))
        self.assertFalse(FileContentReader.validate_path(self.base))


class AsyncReadTests(unittest.IsolatedAsyncioTestCase):
    async def test_aread_matches_read(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "data.json"
            path.write_text('{"a": 1}', encoding="utf-8")
            content = await FileContentReader().aread(path)
            self.assertEqual(content.data, b'{"a": 1}')
            self.assertEqual(content.mime_type, "application/json")


if __name__ == "__main__":
    unittest.main()
