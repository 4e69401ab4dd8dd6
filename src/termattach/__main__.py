"""CLI entrypoint for termattach."""

from __future__ import annotations

import argparse
import asyncio
from importlib import metadata
import json
import os
from pathlib import Path
import sys
from typing import AsyncIterator, BinaryIO, Sequence

from .config import ensure_config_dir, load_config
from .events import (
    ATTACHMENT_ADDED,
    DRAG_SESSION_COMPLETED,
    DRAG_SESSION_ERROR,
    DRAG_SESSION_STARTED,
    Event,
)
from .logging_utils import configure_logging
from .managers import AttachmentManager
from .models import Attachment

READ_CHUNK = 4096


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="termattach", description="Attach files, pastes and drops from a terminal"
    )
    parser.add_argument("--version", action="store_true", help="Print version and exit")
    parser.add_argument("--config", type=Path, default=None, help="Path to config.toml")
    parser.add_argument("paths", nargs="*", help="Files to attach")
    parser.add_argument(
        "--clipboard", action="store_true", help="Attach whatever the clipboard holds"
    )
    parser.add_argument(
        "--watch",
        action="store_true",
        help="Read raw terminal input from stdin and attach dropped files until EOF",
    )
    parser.add_argument(
        "--include-content",
        action="store_true",
        help="Add each payload, base64-encoded, to the printed summary",
    )
    return parser


def _print_event(event: Event) -> None:
    print(json.dumps({"event": event.name, **event.data}, default=str), flush=True)


async def _input_chunks(stream: BinaryIO) -> AsyncIterator[bytes]:
    """Yield raw chunks from ``stream`` until EOF.

    Terminals and pipes are read through the event loop so the read can be
    cancelled; regular files cannot be, and are read in a worker thread.
    """
    loop = asyncio.get_running_loop()
    reader = asyncio.StreamReader()
    try:
        transport, _ = await loop.connect_read_pipe(
            lambda: asyncio.StreamReaderProtocol(reader), stream
        )
    except (ValueError, NotImplementedError):
        while True:
            chunk = await asyncio.to_thread(stream.read, READ_CHUNK)
            if not chunk:
                return
            yield chunk

    try:
        while True:
            chunk = await reader.read(READ_CHUNK)
            if not chunk:
                return
            yield chunk
    finally:
        try:
            # The loop switched the descriptor to non-blocking; the shell shares it.
            os.set_blocking(stream.fileno(), True)
        except (OSError, ValueError):
            pass
        transport.close()


async def _forward_input(manager: AttachmentManager, stream: BinaryIO) -> None:
    async for chunk in _input_chunks(stream):
        manager.submit_raw_terminal_bytes(chunk)


async def _watch_stdin(manager: AttachmentManager, stream: BinaryIO | None = None) -> None:
    """Feed terminal input to drag detection until EOF or shutdown."""
    tracking = manager.drag.capabilities.supports_mouse and sys.stdout.isatty()
    if tracking:
        sys.stdout.write(manager.drag.mouse_tracking_sequences(True))
        sys.stdout.flush()
    forward = asyncio.create_task(_forward_input(manager, stream or sys.stdin.buffer))
    stopped = asyncio.create_task(manager.wait_for_shutdown())
    try:
        done, _ = await asyncio.wait({forward, stopped}, return_when=asyncio.FIRST_COMPLETED)
        if forward in done:
            forward.result()
    finally:
        for task in (forward, stopped):
            task.cancel()
        await asyncio.gather(forward, stopped, return_exceptions=True)
        if tracking:
            sys.stdout.write(manager.drag.mouse_tracking_sequences(False))
            sys.stdout.flush()


async def _run(args: argparse.Namespace) -> int:
    config = load_config(args.config)
    configure_logging(config.logging)
    manager = AttachmentManager(config)
    manager.on_status_update(lambda message: print(message, file=sys.stderr))
    for name in (ATTACHMENT_ADDED, DRAG_SESSION_STARTED, DRAG_SESSION_COMPLETED, DRAG_SESSION_ERROR):
        manager.events.subscribe(name, _print_event)

    failures = 0
    async with manager:
        manager.install_signal_handlers(asyncio.get_running_loop())
        for raw in args.paths:
            result = await manager.submit_file_path(raw)
            if not isinstance(result, Attachment):
                failures += 1
        if args.clipboard:
            await manager.submit_from_clipboard_command()
        if args.watch:
            await _watch_stdin(manager)
        summary = [item.to_dict(args.include_content) for item in manager.list_attachments()]
        print(json.dumps(summary, indent=2))
    return 1 if failures else 0


def main(argv: Sequence[str] | None = None) -> None:
    """Ensure configuration exists, handle CLI flags, and run the pipeline."""

    parser = _build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    if args.version:
        try:
            version = metadata.version("termattach")
        except metadata.PackageNotFoundError:
            version = "0.0.0"
        print(f"termattach {version}")
        return

    ensure_config_dir()
    raise SystemExit(asyncio.run(_run(args)))


if __name__ == "__main__":
    main()
