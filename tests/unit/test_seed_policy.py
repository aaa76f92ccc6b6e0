import sys
from enum import Enum
from pathlib import Path
import unittest

sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from narrative.application.services.seed_policy import CHOICE_ORDER_NAMESPACE, derive_rng, derive_seed


class _Mood(Enum):
    CALM = "calm"


class SeedPolicyTests(unittest.TestCase):
    def test_same_context_same_seed(self) -> None:
        context = {
            "player_id": "p1",
            "node_id": "maya_introduction",
            "node_entry": 4,
            "scene": {"platform": 7, "hour": "late"},
        }
        self.assertEqual(derive_seed(CHOICE_ORDER_NAMESPACE, context), derive_seed(CHOICE_ORDER_NAMESPACE, context))

    def test_context_key_order_does_not_change_seed(self) -> None:
        context_a = {"a": 1, "b": {"x": 2, "y": 3}}
        context_b = {"b": {"y": 3, "x": 2}, "a": 1}
        self.assertEqual(derive_seed("node.content_variant", context_a), derive_seed("node.content_variant", context_b))

    def test_namespace_changes_seed(self) -> None:
        context = {"value": 10}
        self.assertNotEqual(derive_seed("node.content_variant", context), derive_seed("choice.gravity_order", context))

    def test_unordered_set_values_produce_stable_seed(self) -> None:
        context_a = {"flags": {"met_maya", "met_samuel", "letters_examined"}}
        context_b = {"flags": {"letters_examined", "met_maya", "met_samuel"}}
        self.assertEqual(derive_seed("voice.line", context_a), derive_seed("voice.line", context_b))

    def test_enum_values_seed_like_their_value(self) -> None:
        self.assertEqual(derive_seed("voice.line", {"mood": _Mood.CALM}), derive_seed("voice.line", {"mood": "calm"}))

    def test_non_finite_float_in_context_raises(self) -> None:
        with self.assertRaises(ValueError):
            derive_seed("voice.line", {"weight": float("nan")})

    def test_derive_rng_is_deterministic_for_same_context(self) -> None:
        context = {"player_id": "p1", "node_id": "samuel_letters"}
        rng_a = derive_rng(CHOICE_ORDER_NAMESPACE, context)
        rng_b = derive_rng(CHOICE_ORDER_NAMESPACE, context)
        self.assertEqual(rng_a.randint(1, 1000), rng_b.randint(1, 1000))

    def test_derive_rng_changes_with_namespace(self) -> None:
        context = {"player_id": "p1", "node_id": "samuel_letters", "node_entry": 2}
        rng_a = derive_rng("node.content_variant", context)
        rng_b = derive_rng("voice.line", context)
        self.assertNotEqual([rng_a.random() for _ in range(3)], [rng_b.random() for _ in range(3)])


if __name__ == "__main__":
    unittest.main()
