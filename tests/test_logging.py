"""Tests for structured logging behavior."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
import unittest

import structlog

from termattach.config import LoggingConfig
from termattach.logging_utils import app_only_filter, build_formatter, configure_logging


def _record(name: str, msg: str, **extra: object) -> logging.LogRecord:
    record = logging.LogRecord(
        name=name,
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg=msg,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class FormatterTests(unittest.TestCase):
    """Validate the JSON formatter output."""

    def test_structured_formatter_includes_extra_fields(self) -> None:
        formatter = build_formatter(structured=True)
        record = _record(
            "termattach.registry",
            "registry.add",
            event="registry.add",
            attachment_id="att_1_abcd",
            size=42,
        )

        data = json.loads(formatter.format(record))
        self.assertEqual(data["event"], "registry.add")
        self.assertEqual(data["attachment_id"], "att_1_abcd")
        self.assertEqual(data["size"], 42)
        self.assertEqual(data["logger"], "termattach.registry")
        self.assertEqual(data["level"], "info")
        self.assertIn("timestamp", data)

    def test_app_only_filter(self) -> None:
        self.assertTrue(app_only_filter(_record("termattach.drag.engine", "x")))
        self.assertFalse(app_only_filter(_record("asyncio", "x")))


class ConfigureLoggingTests(unittest.TestCase):
    """Validate configure_logging() handler setup behavior."""

    def setUp(self) -> None:
        # Preserve root logger state so tests do not pollute each other.
        root = logging.getLogger()
        self._original_level = root.level
        self._original_handlers = list(root.handlers)

    def tearDown(self) -> None:
        root = logging.getLogger()
        for handler in root.handlers:
            if handler not in self._original_handlers:
                handler.close()
        root.setLevel(self._original_level)
        root.handlers.clear()
        root.handlers.extend(self._original_handlers)

    def test_configure_logging_adds_stderr_handler(self) -> None:
        configure_logging(LoggingConfig(level="DEBUG", structured=False))
        root = logging.getLogger()
        stream_handlers = [
            h
            for h in root.handlers
            if isinstance(h, logging.StreamHandler)
            and not isinstance(h, logging.FileHandler)
        ]
        self.assertEqual(len(stream_handlers), 1)
        # The terminal belongs to the UI: only warnings and worse reach it.
        self.assertEqual(stream_handlers[0].level, logging.WARNING)

    def test_configure_logging_structured_uses_processor_formatter(self) -> None:
        configure_logging(LoggingConfig(level="DEBUG", structured=True))
        formatters = [h.formatter for h in logging.getLogger().handlers]
        self.assertTrue(
            any(isinstance(f, structlog.stdlib.ProcessorFormatter) for f in formatters)
        )

    def test_configure_logging_plain_formatter_when_not_structured(self) -> None:
        configure_logging(LoggingConfig(level="DEBUG", structured=False))
        formatters = [h.formatter for h in logging.getLogger().handlers]
        self.assertFalse(
            any(isinstance(f, structlog.stdlib.ProcessorFormatter) for f in formatters)
        )

    def test_configure_logging_sets_root_level(self) -> None:
        configure_logging(LoggingConfig(level="DEBUG", structured=False))
        self.assertEqual(logging.getLogger().level, logging.DEBUG)

    def test_configure_logging_file_handler_created(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            log_path = Path(tmp) / "logs" / "test.log"
            configure_logging(
                LoggingConfig(
                    level="DEBUG",
                    structured=False,
                    log_to_file=True,
                    log_file_path=str(log_path),
                )
            )
            root = logging.getLogger()
            file_handlers = [
                h for h in root.handlers if isinstance(h, logging.FileHandler)
            ]
            self.assertEqual(len(file_handlers), 1)
            self.assertTrue(log_path.exists())
            if os.name == "posix":
                self.assertEqual(log_path.stat().st_mode & 0o777, 0o600)
            for handler in file_handlers:
                handler.close()
                root.removeHandler(handler)


if __name__ == "__main__":
    unittest.main()
