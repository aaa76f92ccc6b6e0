import json
import sys
from pathlib import Path
import unittest

sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from narrative.application.services.event_bus import EventBus
from narrative.domain.events import ChoicePresented, ChoiceSelectedUi, NodeEntered, PresentedChoice
from narrative.domain.repositories import TelemetrySink
from narrative.infrastructure.db.inmemory.repos import InMemoryTelemetrySink
from narrative.infrastructure.telemetry_queue import TelemetryQueue


class _FailingSink(TelemetrySink):
    def __init__(self) -> None:
        self.calls = 0

    def write_batch(self, rows) -> None:
        self.calls += 1
        raise ConnectionError("outbox unavailable")


def _presented(event_id: str = "e1") -> ChoicePresented:
    return ChoicePresented(
        event_id=event_id,
        player_id="p1",
        node_id="maya_introduction",
        character_id="maya",
        ordering_variant="gravity_shuffle",
        choices=(
            PresentedChoice(
                choice_id="maya_ask_studies",
                index=0,
                pattern="analytical",
                locked=False,
                mercy_unlocked=False,
                gravity_bucket=0,
                gravity_weight=0.0,
            ),
        ),
        occurred_at=1.0,
    )


def _selected(event_id: str = "e2") -> ChoiceSelectedUi:
    return ChoiceSelectedUi(
        event_id=event_id,
        presented_event_id="e1",
        player_id="p1",
        node_id="maya_introduction",
        choice_id="maya_ask_studies",
        selected_index=0,
        reaction_time_ms=850,
        occurred_at=2.0,
    )


class TelemetryQueueTests(unittest.TestCase):
    def test_attached_queue_collects_telemetry_events_only(self) -> None:
        sink = InMemoryTelemetrySink()
        bus = EventBus()
        queue = TelemetryQueue(sink, batch_size=10)
        queue.attach(bus)

        bus.publish(_presented())
        bus.publish(_selected())
        bus.publish(NodeEntered(player_id="p1", node_id="maya_introduction", character_id="maya", node_entry_count=1))

        self.assertEqual(2, queue.pending)
        self.assertEqual(2, queue.flush())
        self.assertEqual(["choice_presented", "choice_selected_ui"], [row[0] for row in sink.rows])
        payload = json.loads(sink.rows[1][1])
        self.assertEqual("e1", payload["presented_event_id"])
        self.assertEqual(850, payload["reaction_time_ms"])

    def test_batch_size_triggers_flush(self) -> None:
        sink = InMemoryTelemetrySink()
        queue = TelemetryQueue(sink, batch_size=2)
        queue.enqueue(_presented("a"))
        self.assertEqual([], sink.rows)
        queue.enqueue(_presented("b"))
        self.assertEqual(2, len(sink.rows))
        self.assertEqual(0, queue.pending)

    def test_full_queue_drops_oldest(self) -> None:
        sink = InMemoryTelemetrySink()
        queue = TelemetryQueue(sink, max_size=2, batch_size=10)
        with self.assertLogs("narrative.infrastructure.telemetry_queue", level="WARNING"):
            for event_id in ("a", "b", "c"):
                queue.enqueue(_presented(event_id))

        self.assertEqual(1, queue.dropped)
        queue.flush()
        self.assertEqual(["b", "c"], [json.loads(row[1])["event_id"] for row in sink.rows])

    def test_sink_failure_drops_batch_without_raising(self) -> None:
        sink = _FailingSink()
        queue = TelemetryQueue(sink, batch_size=10)
        queue.enqueue(_presented())
        queue.enqueue(_selected())

        with self.assertLogs("narrative.infrastructure.telemetry_queue", level="ERROR"):
            written = queue.flush()

        self.assertEqual(0, written)
        self.assertEqual(2, queue.dropped)
        self.assertEqual(0, queue.pending)
        self.assertEqual(1, sink.calls)

    def test_disabled_queue_ignores_events(self) -> None:
        sink = InMemoryTelemetrySink()
        queue = TelemetryQueue(sink, enabled=False)
        queue.enqueue(_presented())
        self.assertEqual(0, queue.pending)


if __name__ == "__main__":
    unittest.main()
