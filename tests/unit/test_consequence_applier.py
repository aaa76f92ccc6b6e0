import sys
from pathlib import Path
import unittest
from dataclasses import replace

sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from narrative.application.services.consequence_applier import ConsequenceApplier, apply_change, apply_changes
from narrative.domain.errors import NarrativeIntegrityError, RequiredStateViolation
from narrative.domain.models.condition import StateCondition
from narrative.domain.models.dialogue import Choice, DialogueContent, DialogueGraph, DialogueNode, StateChange
from narrative.domain.models.state import RelationshipStatus, create_default_state
from narrative.infrastructure.content.graph_registry import GraphRegistry


def _node(node_id: str, *choices: Choice, **kwargs) -> DialogueNode:
    return DialogueNode(
        node_id=node_id,
        speaker="Speaker",
        content=(DialogueContent(text=node_id, variation_id=f"{node_id}_0"),),
        choices=tuple(choices),
        is_terminal=not choices,
        **kwargs,
    )


def _registry(*maya_nodes: DialogueNode, samuel_nodes: tuple[DialogueNode, ...] = ()) -> GraphRegistry:
    graphs = {
        "maya": DialogueGraph(
            character_id="maya",
            start_node_id=maya_nodes[0].node_id,
            nodes={node.node_id: node for node in maya_nodes},
        )
    }
    if samuel_nodes:
        graphs["samuel"] = DialogueGraph(
            character_id="samuel",
            start_node_id=samuel_nodes[0].node_id,
            nodes={node.node_id: node for node in samuel_nodes},
        )
    return GraphRegistry(graphs)


def _state(trust: int = 0, node_id: str = "start"):
    state = create_default_state(
        "p1",
        character_ids=["maya", "samuel"],
        start_node_id=node_id,
        start_character_id="maya",
    )
    row = state.character("maya")
    return state.with_character(replace(row, trust=trust))


class ApplyChangeTests(unittest.TestCase):
    def test_negative_trust_delta_clamps_at_floor(self) -> None:
        state = _state(trust=1)
        next_state = apply_change(StateChange(character_id="maya", trust_change=-3), state)
        self.assertEqual(0, next_state.trust_for("maya"))

    def test_positive_trust_delta_clamps_at_ceiling(self) -> None:
        state = _state(trust=9)
        next_state = apply_change(StateChange(trust_change=5), state)
        self.assertEqual(10, next_state.trust_for("maya"))

    def test_input_state_is_left_untouched(self) -> None:
        state = _state(trust=2)
        change = StateChange(
            trust_change=1,
            add_knowledge_flags=("knows_robotics",),
            add_global_flags=("met_maya",),
            pattern_changes={"patience": 2},
            set_mysteries={"letter_sender": "samuel_suspected"},
        )
        next_state = apply_change(change, state)

        self.assertEqual(2, state.trust_for("maya"))
        self.assertEqual(frozenset(), state.global_flags)
        self.assertEqual(0, state.pattern("patience"))
        self.assertEqual({}, dict(state.mysteries))

        self.assertEqual(3, next_state.trust_for("maya"))
        self.assertIn("knows_robotics", next_state.character("maya").knowledge_flags)
        self.assertIn("met_maya", next_state.global_flags)
        self.assertEqual(2, next_state.pattern("patience"))
        self.assertEqual("samuel_suspected", next_state.mysteries["letter_sender"])

    def test_pattern_scores_never_drop_below_zero(self) -> None:
        next_state = apply_change(StateChange(pattern_changes={"helping": -4}), _state())
        self.assertEqual(0, next_state.pattern("helping"))

    def test_unknown_pattern_change_is_ignored(self) -> None:
        with self.assertLogs("narrative.application.services.consequence_applier", level="WARNING"):
            next_state = apply_change(StateChange(pattern_changes={"charisma": 3}), _state())
        self.assertNotIn("charisma", next_state.patterns)

    def test_relationship_status_and_flag_removal(self) -> None:
        state = apply_change(StateChange(add_global_flags=("a", "b")), _state())
        next_state = apply_changes(
            [
                StateChange(set_relationship_status="confidant"),
                StateChange(remove_global_flags=("a",)),
            ],
            state,
        )
        self.assertEqual(RelationshipStatus.CONFIDANT, next_state.character("maya").relationship_status)
        self.assertEqual(frozenset({"b"}), next_state.global_flags)

    def test_empty_change_returns_same_state(self) -> None:
        state = _state()
        self.assertIs(state, apply_change(StateChange(), state))


class ConsequenceApplierTests(unittest.TestCase):
    def test_apply_moves_to_target_and_records_history(self) -> None:
        choice = Choice(
            choice_id="go",
            text="Go on",
            next_node_id="end",
            pattern="patience",
            consequence=StateChange(trust_change=2),
        )
        registry = _registry(_node("start", choice), _node("end"))
        applier = ConsequenceApplier(registry)

        result = applier.apply(choice, _state(trust=1))

        self.assertEqual("end", result.next_node_id)
        self.assertEqual("end", result.next_state.current_node_id)
        self.assertEqual("maya", result.next_state.current_character_id)
        self.assertEqual(2, result.trust_delta)
        self.assertEqual({"patience": 1}, result.pattern_deltas)
        self.assertEqual(("end",), result.next_state.character("maya").conversation_history)
        self.assertEqual(("end",), result.next_state.visited_nodes)

    def test_exit_then_consequence_then_enter_effects(self) -> None:
        choice = Choice(choice_id="go", text="Go", next_node_id="end", consequence=StateChange(add_global_flags=("chose",)))
        start = _node("start", choice, on_exit=(StateChange(add_global_flags=("left_start",)),))
        end = _node(
            "end",
            on_enter=(StateChange(remove_global_flags=("chose",), add_global_flags=("arrived",)),),
        )
        applier = ConsequenceApplier(_registry(start, end))

        result = applier.apply(choice, _state())

        self.assertEqual(frozenset({"left_start", "arrived"}), result.next_state.global_flags)

    def test_crossing_into_another_graph_switches_character(self) -> None:
        choice = Choice(choice_id="go", text="Go", next_node_id="samuel_intro")
        registry = _registry(_node("start", choice), samuel_nodes=(_node("samuel_intro"),))
        result = ConsequenceApplier(registry).apply(choice, _state())

        self.assertEqual("samuel", result.next_state.current_character_id)
        self.assertTrue(result.next_state.character("samuel").has_met)

    def test_dangling_target_raises_integrity_error_and_leaves_state(self) -> None:
        choice = Choice(choice_id="broken", text="Broken", next_node_id="missing")
        registry = _registry(_node("start", Choice(choice_id="ok", text="ok", next_node_id="start")))
        state = _state()

        with self.assertRaises(NarrativeIntegrityError) as ctx:
            ConsequenceApplier(registry).apply(choice, state)
        self.assertEqual({"next_node_id": "missing"}, ctx.exception.condition)
        self.assertEqual("start", state.current_node_id)

    def test_required_state_only_warns_by_default(self) -> None:
        gated = _node("gated", required_state=StateCondition(trust_min=5))
        choice = Choice(choice_id="go", text="Go", next_node_id="gated")
        registry = _registry(_node("start", choice), gated)

        with self.assertLogs("narrative.application.services.consequence_applier", level="WARNING"):
            result = ConsequenceApplier(registry).apply(choice, _state(trust=1))
        self.assertEqual("gated", result.next_node_id)

    def test_required_state_raises_when_enforced(self) -> None:
        gated = _node("gated", required_state=StateCondition(trust_min=5))
        choice = Choice(choice_id="go", text="Go", next_node_id="gated")
        registry = _registry(_node("start", choice), gated)

        with self.assertRaises(RequiredStateViolation) as ctx:
            ConsequenceApplier(registry, enforce_required_state=True).apply(choice, _state(trust=1))
        self.assertEqual(["trust_min:5"], ctx.exception.condition["failed"])


if __name__ == "__main__":
    unittest.main()
