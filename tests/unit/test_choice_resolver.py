import sys
from pathlib import Path
import unittest
from dataclasses import replace

sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from narrative.application.services.choice_resolver import (
    ORDERING_AUTHORED,
    ORDERING_GRAVITY_SHUFFLE,
    SUNK_BUCKET,
    UNGROUPED_BUCKET,
    ChoiceResolver,
    gravity_weight,
    group_choices,
    orb_fill_level,
)
from narrative.domain.errors import DeadEndError
from narrative.domain.models.condition import StateCondition
from narrative.domain.models.dialogue import Choice, DialogueContent, DialogueNode, OrbRequirement
from narrative.domain.models.state import create_default_state


def _state(**patterns):
    state = create_default_state("p1", character_ids=["maya"], start_node_id="hub", start_character_id="maya")
    scores = dict(state.patterns)
    scores.update(patterns)
    return replace(state, patterns=scores)


def _choice(choice_id: str, *, threshold: int | None = None, pattern: str | None = "analytical", **kwargs) -> Choice:
    orb = OrbRequirement(pattern="analytical", threshold=threshold) if threshold is not None else None
    return Choice(choice_id=choice_id, text=choice_id, next_node_id="next", pattern=pattern, required_orb_fill=orb, **kwargs)


def _node(*choices: Choice, terminal: bool = False) -> DialogueNode:
    return DialogueNode(
        node_id="hub",
        speaker="Maya",
        content=(DialogueContent(text="...", variation_id="hub_0"),),
        choices=tuple(choices),
        is_terminal=terminal,
    )


class ChoiceResolverTests(unittest.TestCase):
    def test_orb_fill_is_pattern_score_capped_at_full(self) -> None:
        self.assertEqual(10, orb_fill_level(_state(analytical=10), "analytical"))
        self.assertEqual(100, orb_fill_level(_state(analytical=250), "analytical"))
        self.assertEqual(0, orb_fill_level(_state(), "analytical"))

    def test_gated_choices_lock_without_mercy_when_an_open_choice_exists(self) -> None:
        node = _node(_choice("a", threshold=25), _choice("b", threshold=25), _choice("c"))
        resolved = ChoiceResolver(ordering_variant=ORDERING_AUTHORED).resolve(node, _state(analytical=10))

        self.assertFalse(resolved.mercy_applied)
        self.assertTrue(resolved.get("a").locked)
        self.assertTrue(resolved.get("b").locked)
        self.assertFalse(resolved.get("c").locked)
        self.assertFalse(any(row.mercy_unlocked for row in resolved.choices))

    def test_mercy_unlocks_lowest_threshold_when_everything_is_locked(self) -> None:
        node = _node(_choice("high", threshold=60), _choice("low", threshold=25), _choice("mid", threshold=40))
        resolved = ChoiceResolver(ordering_variant=ORDERING_AUTHORED).resolve(node, _state(analytical=10))

        self.assertTrue(resolved.mercy_applied)
        low = resolved.get("low")
        self.assertTrue(low.mercy_unlocked)
        self.assertTrue(low.selectable)
        self.assertTrue(resolved.get("mid").locked)
        self.assertTrue(resolved.get("high").locked)

    def test_mercy_tie_breaks_on_authored_order(self) -> None:
        node = _node(_choice("first", threshold=30), _choice("second", threshold=30))
        resolved = ChoiceResolver(ordering_variant=ORDERING_AUTHORED).resolve(node, _state())
        self.assertTrue(resolved.get("first").mercy_unlocked)
        self.assertFalse(resolved.get("second").mercy_unlocked)

    def test_met_threshold_is_not_locked(self) -> None:
        node = _node(_choice("a", threshold=25))
        resolved = ChoiceResolver().resolve(node, _state(analytical=25))
        self.assertFalse(resolved.get("a").locked)
        self.assertFalse(resolved.mercy_applied)

    def test_invisible_choices_are_not_offered(self) -> None:
        hidden = _choice("hidden", visible_condition=StateCondition(has_global_flags=("never",)))
        resolved = ChoiceResolver().resolve(_node(hidden, _choice("shown")), _state())
        self.assertEqual(["shown"], resolved.choice_ids)

    def test_disabled_choices_sink_below_selectable_ones(self) -> None:
        disabled = _choice("disabled", enabled_condition=StateCondition(trust_min=5))
        node = _node(disabled, _choice("one"), _choice("two"))
        resolved = ChoiceResolver().resolve(node, _state())

        self.assertEqual("disabled", resolved.choice_ids[-1])
        self.assertEqual(SUNK_BUCKET, resolved.get("disabled").gravity_bucket)
        self.assertFalse(resolved.get("disabled").selectable)

    def test_shuffle_is_deterministic_per_player_and_node(self) -> None:
        node = _node(*(_choice(f"c{index}") for index in range(6)))
        resolver = ChoiceResolver(ordering_variant=ORDERING_GRAVITY_SHUFFLE)
        first = resolver.resolve(node, _state())
        second = resolver.resolve(node, _state())
        self.assertEqual(first.choice_ids, second.choice_ids)
        self.assertEqual(sorted(first.choice_ids), sorted(f"c{index}" for index in range(6)))

    def test_players_see_different_orders_for_the_same_node(self) -> None:
        node = _node(*(_choice(f"c{index}") for index in range(6)))
        resolver = ChoiceResolver(ordering_variant=ORDERING_GRAVITY_SHUFFLE)
        orders = {
            tuple(resolver.resolve(node, _state(), player_id=f"player-{number}").choice_ids)
            for number in range(8)
        }
        self.assertGreater(len(orders), 1)

    def test_authored_variant_keeps_content_order(self) -> None:
        node = _node(*(_choice(f"c{index}") for index in range(6)))
        resolved = ChoiceResolver(ordering_variant=ORDERING_AUTHORED).resolve(node, _state())
        self.assertEqual([f"c{index}" for index in range(6)], resolved.choice_ids)

    def test_unknown_ordering_variant_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            ChoiceResolver(ordering_variant="random")

    def test_gravity_weight_is_pattern_share(self) -> None:
        state = _state(analytical=3, patience=1)
        self.assertEqual(0.75, gravity_weight(_choice("a"), state))
        self.assertEqual(0.0, gravity_weight(_choice("b", pattern=None), state))
        self.assertEqual(0.0, gravity_weight(_choice("c"), _state()))

    def test_non_terminal_node_without_visible_choices_is_a_dead_end(self) -> None:
        hidden = _choice("hidden", visible_condition=StateCondition(has_global_flags=("never",)))
        with self.assertRaises(DeadEndError) as ctx:
            ChoiceResolver().resolve(_node(hidden), _state())
        self.assertEqual("hub", ctx.exception.node_id)

    def test_every_choice_disabled_is_a_dead_end(self) -> None:
        disabled = _choice("disabled", enabled_condition=StateCondition(trust_min=5))
        with self.assertRaises(DeadEndError):
            ChoiceResolver().resolve(_node(disabled), _state())

    def test_terminal_node_resolves_to_empty_set(self) -> None:
        resolved = ChoiceResolver().resolve(_node(terminal=True), _state())
        self.assertEqual((), resolved.choices)

    def test_grouping_only_above_threshold(self) -> None:
        few = ChoiceResolver(ordering_variant=ORDERING_AUTHORED).resolve(
            _node(_choice("a"), _choice("b", pattern="helping")), _state()
        )
        self.assertEqual([UNGROUPED_BUCKET], list(group_choices(few.choices)))

        many = ChoiceResolver(ordering_variant=ORDERING_AUTHORED).resolve(
            _node(
                _choice("a", category="questions"),
                _choice("b", pattern="helping"),
                _choice("c", category="questions"),
                _choice("d", pattern="helping"),
                _choice("e", pattern=None),
            ),
            _state(),
        )
        groups = group_choices(many.choices, threshold=4)
        self.assertEqual(["questions", "helping", "general"], list(groups))
        self.assertEqual(["a", "c"], [row.choice_id for row in groups["questions"]])


if __name__ == "__main__":
    unittest.main()
