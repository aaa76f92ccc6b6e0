import sys
from pathlib import Path
import unittest

sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from narrative.application.services.event_bus import EventBus
from narrative.domain.events import NodeEntered, QuestStatusChanged


def _entered(node_id: str = "maya_introduction") -> NodeEntered:
    return NodeEntered(player_id="p1", node_id=node_id, character_id="maya", node_entry_count=1)


class EventBusTests(unittest.TestCase):
    def test_publish_notifies_all_handlers_for_event_type(self) -> None:
        bus = EventBus()
        seen: list[str] = []

        bus.subscribe(NodeEntered, lambda evt: seen.append("first"))
        bus.subscribe(NodeEntered, lambda evt: seen.append("second"))

        self.assertEqual(2, bus.publish(_entered()))
        self.assertEqual(["first", "second"], seen)

    def test_publish_filters_handlers_by_event_class(self) -> None:
        bus = EventBus()
        seen: list[str] = []

        bus.subscribe(NodeEntered, lambda evt: seen.append("entered"))
        bus.subscribe(QuestStatusChanged, lambda evt: seen.append("quest"))

        bus.publish(_entered())

        self.assertEqual(["entered"], seen)

    def test_publish_honors_priority_order(self) -> None:
        bus = EventBus()
        seen: list[str] = []

        bus.subscribe(NodeEntered, lambda evt: seen.append("normal"), priority=100)
        bus.subscribe(NodeEntered, lambda evt: seen.append("early"), priority=10)
        bus.subscribe(NodeEntered, lambda evt: seen.append("late"), priority=200)

        bus.publish(_entered())

        self.assertEqual(["early", "normal", "late"], seen)

    def test_publish_continues_when_one_handler_raises(self) -> None:
        bus = EventBus()
        seen: list[str] = []

        def _broken(_evt) -> None:
            raise RuntimeError("boom")

        bus.subscribe(NodeEntered, _broken, priority=10)
        bus.subscribe(NodeEntered, lambda evt: seen.append("still-runs"), priority=20)

        with self.assertLogs("narrative.application.services.event_bus", level="ERROR"):
            delivered = bus.publish(_entered())

        self.assertEqual(1, delivered)
        self.assertEqual(["still-runs"], seen)
        self.assertEqual(1, len(bus.last_publish_errors()))

    def test_unsubscribe_removes_handler(self) -> None:
        bus = EventBus()
        seen: list[str] = []

        def _handler(evt) -> None:
            seen.append(evt.node_id)

        bus.subscribe(NodeEntered, _handler)
        self.assertTrue(bus.has_subscribers(NodeEntered))
        self.assertTrue(bus.unsubscribe(NodeEntered, _handler))
        self.assertFalse(bus.unsubscribe(NodeEntered, _handler))

        bus.publish(_entered())
        self.assertEqual([], seen)
        self.assertFalse(bus.has_subscribers(NodeEntered))


if __name__ == "__main__":
    unittest.main()
