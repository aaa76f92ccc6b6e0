from __future__ import annotations

import logging
from dataclasses import replace
from typing import Iterable, Mapping

from narrative.application.dtos import AppliedConsequence
from narrative.domain.errors import NarrativeIntegrityError, RequiredStateViolation
from narrative.domain.models.condition import PatternCombo
from narrative.domain.models.dialogue import Choice, DialogueNode, StateChange
from narrative.domain.models.state import (
    PATTERN_IDS,
    CharacterState,
    PlayerState,
    RelationshipStatus,
    clamp_pattern,
    clamp_trust,
    create_character_state,
    is_pattern_id,
)
from narrative.domain.repositories import GraphLookup
from narrative.domain.services.condition_evaluator import failed_clauses


logger = logging.getLogger(__name__)

PATTERN_GAIN_PER_CHOICE = 1


def apply_change(change: StateChange, state: PlayerState, *, default_character_id: str | None = None) -> PlayerState:
    """Return a new state with ``change`` applied; ``state`` is left untouched."""
    if change.is_empty:
        return state

    character_id = change.character_id or default_character_id or state.current_character_id
    touches_character = bool(
        change.trust_change
        or change.set_relationship_status
        or change.add_knowledge_flags
        or change.remove_knowledge_flags
    )

    next_state = state
    if touches_character:
        if not character_id:
            logger.warning(
                "Character-scoped change has no character to apply to",
                extra={"node_id": state.current_node_id},
            )
        else:
            row = state.character(character_id) or create_character_state(character_id)
            next_state = next_state.with_character(_apply_character_change(row, change))

    if change.add_global_flags or change.remove_global_flags:
        flags = (set(next_state.global_flags) | set(change.add_global_flags)) - set(change.remove_global_flags)
        next_state = replace(next_state, global_flags=frozenset(flags))

    if change.pattern_changes:
        patterns = dict(next_state.patterns)
        for pattern, delta in change.pattern_changes.items():
            if not is_pattern_id(pattern):
                logger.warning("Ignoring change to unknown pattern", extra={"pattern": pattern})
                continue
            key = str(pattern).strip().lower()
            patterns[key] = clamp_pattern(int(patterns.get(key, 0)) + int(delta))
        next_state = replace(next_state, patterns=patterns)

    if change.set_mysteries:
        mysteries = dict(next_state.mysteries)
        mysteries.update({str(key): str(value) for key, value in change.set_mysteries.items()})
        next_state = replace(next_state, mysteries=mysteries)

    return next_state


def _apply_character_change(row: CharacterState, change: StateChange) -> CharacterState:
    knowledge = (set(row.knowledge_flags) | set(change.add_knowledge_flags)) - set(change.remove_knowledge_flags)
    status = row.relationship_status
    if change.set_relationship_status:
        try:
            status = RelationshipStatus(str(change.set_relationship_status).strip().lower())
        except ValueError:
            logger.warning(
                "Ignoring unknown relationship status",
                extra={"character_id": row.character_id, "status": change.set_relationship_status},
            )
    return replace(
        row,
        trust=clamp_trust(row.trust + int(change.trust_change)),
        knowledge_flags=frozenset(knowledge),
        relationship_status=status,
    )


def apply_changes(
    changes: Iterable[StateChange],
    state: PlayerState,
    *,
    default_character_id: str | None = None,
) -> PlayerState:
    for change in changes:
        state = apply_change(change, state, default_character_id=default_character_id)
    return state


class ConsequenceApplier:
    """The single reducer through which player state moves forward."""

    def __init__(
        self,
        graph: GraphLookup,
        *,
        combos: Mapping[str, PatternCombo] | None = None,
        enforce_required_state: bool = False,
    ) -> None:
        self._graph = graph
        self._combos = dict(combos or {})
        self._enforce_required_state = bool(enforce_required_state)

    def apply(self, choice: Choice, state: PlayerState) -> AppliedConsequence:
        target = self._graph.get_node(choice.next_node_id)
        if target is None:
            raise NarrativeIntegrityError(
                f"Choice '{choice.choice_id}' points at missing node '{choice.next_node_id}'",
                node_id=state.current_node_id,
                character_id=state.current_character_id,
                condition={"next_node_id": choice.next_node_id},
            )

        working = state
        source = self._graph.get_node(state.current_node_id) if state.current_node_id else None
        if source is not None and source.on_exit:
            working = apply_changes(source.on_exit, working, default_character_id=state.current_character_id)

        if choice.consequence is not None:
            working = apply_change(choice.consequence, working, default_character_id=state.current_character_id)

        if choice.pattern:
            if is_pattern_id(choice.pattern):
                working = apply_change(
                    StateChange(pattern_changes={choice.pattern: PATTERN_GAIN_PER_CHOICE}),
                    working,
                )
            else:
                logger.warning(
                    "Choice carries unknown pattern tag",
                    extra={"choice_id": choice.choice_id, "pattern": choice.pattern},
                )

        next_state = self.enter(target, working)
        acting_character = (
            choice.consequence.character_id if choice.consequence and choice.consequence.character_id else None
        ) or state.current_character_id
        return AppliedConsequence(
            next_state=next_state,
            next_node_id=target.node_id,
            trust_delta=next_state.trust_for(acting_character) - state.trust_for(acting_character)
            if acting_character
            else 0,
            pattern_deltas={
                pattern: next_state.pattern(pattern) - state.pattern(pattern)
                for pattern in PATTERN_IDS
                if next_state.pattern(pattern) != state.pattern(pattern)
            },
        )

    def enter(self, node: DialogueNode, state: PlayerState) -> PlayerState:
        """Move ``state`` onto ``node``, applying its arrival effects."""
        character_id = self._graph.find_character_for_node(node.node_id) or state.current_character_id

        if node.required_state is not None:
            failures = failed_clauses(node.required_state, state, character_id=character_id, combos=self._combos)
            if failures:
                if self._enforce_required_state:
                    raise RequiredStateViolation(
                        f"Node '{node.node_id}' entered without its required state",
                        node_id=node.node_id,
                        character_id=character_id,
                        condition={"failed": failures, "required": node.required_state.describe()},
                    )
                logger.warning(
                    "Entering node whose required state does not hold",
                    extra={"node_id": node.node_id, "character_id": character_id, "failed": failures},
                )

        working = apply_changes(node.on_enter, state, default_character_id=character_id)
        if character_id:
            row = working.character(character_id) or create_character_state(character_id)
            working = working.with_character(
                replace(row, conversation_history=row.conversation_history + (node.node_id,))
            )
        return replace(
            working,
            current_node_id=node.node_id,
            current_character_id=character_id or "",
            visited_nodes=working.visited_nodes + (node.node_id,),
        )
