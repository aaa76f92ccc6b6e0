import sys
from pathlib import Path
import unittest

sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from narrative.domain.models.condition import PatternCombo, PatternRange, StateCondition
from narrative.domain.models.state import CharacterState, PlayerState, RelationshipStatus
from narrative.domain.services.condition_evaluator import evaluate, failed_clauses, is_combo_unlocked


def _state(**overrides) -> PlayerState:
    base = dict(
        player_id="p1",
        patterns={"analytical": 2, "patience": 4, "exploring": 0, "helping": 1, "building": 0},
        global_flags=frozenset({"met_samuel"}),
        characters={
            "maya": CharacterState(
                character_id="maya",
                trust=3,
                knowledge_flags=frozenset({"knows_robotics"}),
                relationship_status=RelationshipStatus.ACQUAINTANCE,
            )
        },
        mysteries={"letter_sender": "unknown"},
        current_node_id="maya_introduction",
        current_character_id="maya",
    )
    base.update(overrides)
    return PlayerState(**base)


class ConditionEvaluatorTests(unittest.TestCase):
    def test_absent_condition_always_holds(self) -> None:
        self.assertTrue(evaluate(None, _state()))
        self.assertTrue(evaluate(StateCondition(), _state()))

    def test_trust_bounds_are_inclusive(self) -> None:
        state = _state()
        self.assertTrue(evaluate(StateCondition(trust_min=3, trust_max=3), state))
        self.assertFalse(evaluate(StateCondition(trust_min=4), state))
        self.assertEqual(["trust_max:2"], failed_clauses(StateCondition(trust_max=2), state))

    def test_character_scope_defaults_to_current_character(self) -> None:
        state = _state()
        condition = StateCondition(has_knowledge_flags=("knows_robotics",))
        self.assertTrue(evaluate(condition, state))

        other = StateCondition(character_id="samuel", has_knowledge_flags=("knows_robotics",))
        self.assertEqual(["character_state:samuel"], failed_clauses(other, state))

    def test_explicit_scope_argument_is_used_when_condition_has_none(self) -> None:
        state = _state()
        condition = StateCondition(trust_min=1)
        self.assertFalse(evaluate(condition, state, character_id="samuel"))
        self.assertTrue(evaluate(condition, state, character_id="maya"))

    def test_knowledge_and_global_flags(self) -> None:
        state = _state()
        condition = StateCondition(
            lacks_knowledge_flags=("knows_robotics",),
            has_global_flags=("met_devon",),
            lacks_global_flags=("met_samuel",),
        )
        self.assertEqual(
            [
                "lacks_knowledge_flags:knows_robotics",
                "has_global_flags:met_devon",
                "lacks_global_flags:met_samuel",
            ],
            failed_clauses(condition, state),
        )

    def test_relationship_membership(self) -> None:
        state = _state()
        self.assertTrue(evaluate(StateCondition(relationship=("acquaintance", "confidant")), state))
        self.assertFalse(evaluate(StateCondition(relationship=("confidant",)), state))

    def test_pattern_ranges(self) -> None:
        state = _state()
        self.assertTrue(evaluate(StateCondition(patterns={"patience": PatternRange(min=4)}), state))
        self.assertFalse(evaluate(StateCondition(patterns={"patience": PatternRange(max=3)}), state))
        self.assertEqual(
            ["patterns.analytical.min:5"],
            failed_clauses(StateCondition(patterns={"analytical": PatternRange(min=5, max=9)}), state),
        )

    def test_mystery_values_must_match_exactly(self) -> None:
        state = _state()
        self.assertTrue(evaluate(StateCondition(mysteries={"letter_sender": "unknown"}), state))
        self.assertFalse(evaluate(StateCondition(mysteries={"letter_sender": "samuel"}), state))
        self.assertFalse(evaluate(StateCondition(mysteries={"missing_key": "unknown"}), state))

    def test_required_combos(self) -> None:
        combo = PatternCombo(id="quiet_observer", name="Quiet Observer", pattern_requirements={"patience": 2, "analytical": 2})
        state = _state()
        self.assertTrue(is_combo_unlocked(combo, state))

        condition = StateCondition(required_combos=("quiet_observer",))
        self.assertTrue(evaluate(condition, state, combos={"quiet_observer": combo}))
        self.assertFalse(evaluate(condition, state))

        gated = PatternCombo(id="gated", name="Gated", required_flags=("met_devon",))
        self.assertFalse(is_combo_unlocked(gated, state))

    def test_missing_character_state_fails_with_warning(self) -> None:
        state = _state(characters={}, current_character_id="maya")
        with self.assertLogs("narrative.domain.services.condition_evaluator", level="WARNING"):
            self.assertFalse(evaluate(StateCondition(trust_min=0), state))

    def test_global_only_condition_does_not_need_character_state(self) -> None:
        state = _state(characters={}, current_character_id="")
        self.assertTrue(evaluate(StateCondition(has_global_flags=("met_samuel",)), state))


if __name__ == "__main__":
    unittest.main()
