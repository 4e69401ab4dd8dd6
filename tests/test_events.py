"""Tests for the event bus and its payloads."""

from __future__ import annotations

import unittest

from termattach.events import (
    ATTACHMENT_ADDED,
    DRAG_SESSION_STARTED,
    EVENT_NAMES,
    Event,
    EventBus,
)
from termattach.events.domain import (
    AttachmentAddedEvent,
    DragSessionStartedEvent,
    payload,
)


class EventBusTests(unittest.IsolatedAsyncioTestCase):
    """Subscribe, publish, and history behavior."""

    async def test_sync_and_async_handlers_receive_the_event(self) -> None:
        bus = EventBus()
        seen: list[str] = []

        def sync_handler(event: Event) -> None:
            seen.append(f"sync:{event.data['filename']}")

        async def async_handler(event: Event) -> None:
            seen.append(f"async:{event.data['filename']}")

        bus.subscribe(ATTACHMENT_ADDED, sync_handler)
        bus.subscribe(ATTACHMENT_ADDED, async_handler)
        event = await bus.publish(ATTACHMENT_ADDED, {"filename": "notes.txt"}, source="test")

        self.assertEqual(seen, ["sync:notes.txt", "async:notes.txt"])
        self.assertEqual(event.source, "test")
        self.assertEqual(bus.history, [event])

    async def test_failing_handler_is_logged_and_others_still_run(self) -> None:
        bus = EventBus()
        seen: list[Event] = []

        def broken(event: Event) -> None:
            raise ValueError("boom")

        bus.subscribe(ATTACHMENT_ADDED, broken)
        bus.subscribe(ATTACHMENT_ADDED, seen.append)
        with self.assertLogs("termattach.events.bus", level="ERROR") as logs:
            await bus.publish(ATTACHMENT_ADDED, {})
        self.assertEqual(len(seen), 1)
        self.assertIn("boom", logs.output[0])

    async def test_unsubscribe_and_clear(self) -> None:
        bus = EventBus()
        seen: list[Event] = []
        bus.subscribe(ATTACHMENT_ADDED, seen.append)
        bus.unsubscribe(ATTACHMENT_ADDED, seen.append)
        bus.unsubscribe(ATTACHMENT_ADDED, seen.append)
        await bus.publish(ATTACHMENT_ADDED, {})
        self.assertEqual(seen, [])

        bus.subscribe(DRAG_SESSION_STARTED, seen.append)
        bus.clear(DRAG_SESSION_STARTED)
        await bus.publish(DRAG_SESSION_STARTED, {})
        self.assertEqual(seen, [])

    async def test_history_is_bounded_and_drainable(self) -> None:
        bus = EventBus(history_limit=3)
        for index in range(5):
            await bus.publish(ATTACHMENT_ADDED, {"index": index})
        self.assertEqual([event.data["index"] for event in bus.history], [2, 3, 4])

        drained = bus.drain()
        self.assertEqual(len(drained), 3)
        self.assertEqual(bus.history, [])


class DomainPayloadTests(unittest.TestCase):
    def test_payload_flattens_dataclass(self) -> None:
        data = payload(
            AttachmentAddedEvent(
                attachment_id="att_1",
                filename="notes.txt",
                kind="file",
                size_bytes=5,
                origin="drag",
                session_id="drag-1",
            )
        )
        self.assertEqual(data["attachment_id"], "att_1")
        self.assertEqual(data["session_id"], "drag-1")

    def test_started_event_defaults(self) -> None:
        data = payload(DragSessionStartedEvent(session_id="drag-1", trigger="poll"))
        self.assertIsNone(data["position"])

    def test_event_names_are_distinct(self) -> None:
        self.assertEqual(len(EVENT_NAMES), 6)


if __name__ == "__main__":
    unittest.main()
