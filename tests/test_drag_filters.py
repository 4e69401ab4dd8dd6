"""Tests for path heuristics and the ignore filter."""

from __future__ import annotations

import tempfile
from pathlib import Path
import unittest

from termattach.drag.filters import is_within, looks_like_file_path, should_ignore, strip_quotes


class LooksLikeFilePathTests(unittest.TestCase):
    def test_accepted_shapes(self) -> None:
        for text in (
            "/tmp/report.pdf",
            "~/notes.txt",
            "./build/out.log",
            "../sibling/file",
            "C:\\Users\\me\\a.docx",
            "report.pdf",
            "dir/file",
            '"/tmp/quoted name.txt"',
        ):
            self.assertTrue(looks_like_file_path(text), text)

    def test_rejected_shapes(self) -> None:
        for text in ("", "hello world", "just-words", "/tmp/a\n/tmp/b"):
            self.assertFalse(looks_like_file_path(text), text)

    def test_strip_quotes(self) -> None:
        self.assertEqual(strip_quotes("  '/tmp/a b'  "), "/tmp/a b")


class ShouldIgnoreTests(unittest.TestCase):
    """Names that are never genuine drops."""

    def test_ignored_names(self) -> None:
        for name in (
            ".DS_Store",
            "claude-session.json",
            "tmpabc123.txt",
            "my-temp-file.txt",
            "cwd-snapshot",
            "pasted-image-1.png",
            "iterm-drop-notes.txt",
            "1712345678901-report.pdf",
            "deadbeefcafe-upload.bin",
            "ab",
            "averyveryverylongextensionlessname",
        ):
            self.assertTrue(should_ignore(name), name)

    def test_accepted_names(self) -> None:
        for name in ("report.pdf", "Screenshot 2024-05-01.png", "Makefile", "a.c"):
            self.assertFalse(should_ignore(name), name)


class IsWithinTests(unittest.TestCase):
    def test_is_within(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            base = Path(tmp)
            self.assertTrue(is_within(base / "scratch" / "a.txt", base / "scratch"))
            self.assertTrue(is_within(base / "scratch", base / "scratch"))
            self.assertFalse(is_within(base / "other" / "a.txt", base / "scratch"))


if __name__ == "__main__":
    unittest.main()
