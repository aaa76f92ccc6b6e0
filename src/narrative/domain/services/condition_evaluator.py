from __future__ import annotations

import logging
from typing import Mapping

from narrative.domain.models.condition import PatternCombo, StateCondition
from narrative.domain.models.state import PlayerState


logger = logging.getLogger(__name__)


def is_combo_unlocked(combo: PatternCombo, state: PlayerState) -> bool:
    for pattern, minimum in combo.pattern_requirements.items():
        if state.pattern(pattern) < int(minimum):
            return False
    return all(flag in state.global_flags for flag in combo.required_flags)


def failed_clauses(
    condition: StateCondition | None,
    state: PlayerState,
    *,
    character_id: str | None = None,
    combos: Mapping[str, PatternCombo] | None = None,
) -> list[str]:
    """Return a label for every clause of ``condition`` that does not hold.

    An empty list means the condition is satisfied. Labels are meant for
    diagnostics (``"trust_min:3"``, ``"has_global_flags:met_samuel"``).
    """
    if condition is None or condition.is_empty:
        return []

    failures: list[str] = []
    scope = condition.character_id or character_id or state.current_character_id

    if condition.is_character_scoped:
        row = state.character(scope)
        if row is None:
            logger.warning(
                "Character-scoped condition evaluated without character state",
                extra={"character_id": scope, "node_id": state.current_node_id},
            )
            failures.append(f"character_state:{scope or '<none>'}")
        else:
            if condition.trust_min is not None and row.trust < condition.trust_min:
                failures.append(f"trust_min:{condition.trust_min}")
            if condition.trust_max is not None and row.trust > condition.trust_max:
                failures.append(f"trust_max:{condition.trust_max}")
            if condition.relationship:
                allowed = {str(status) for status in condition.relationship}
                if row.relationship_status.value not in allowed:
                    failures.append(f"relationship:{'|'.join(sorted(allowed))}")
            for flag in condition.has_knowledge_flags:
                if flag not in row.knowledge_flags:
                    failures.append(f"has_knowledge_flags:{flag}")
            for flag in condition.lacks_knowledge_flags:
                if flag in row.knowledge_flags:
                    failures.append(f"lacks_knowledge_flags:{flag}")

    for flag in condition.has_global_flags:
        if flag not in state.global_flags:
            failures.append(f"has_global_flags:{flag}")
    for flag in condition.lacks_global_flags:
        if flag in state.global_flags:
            failures.append(f"lacks_global_flags:{flag}")

    for pattern, bounds in condition.patterns.items():
        score = state.pattern(pattern)
        if bounds.min is not None and score < bounds.min:
            failures.append(f"patterns.{pattern}.min:{bounds.min}")
        if bounds.max is not None and score > bounds.max:
            failures.append(f"patterns.{pattern}.max:{bounds.max}")

    for key, expected in condition.mysteries.items():
        if state.mysteries.get(key) != expected:
            failures.append(f"mysteries.{key}:{expected}")

    known_combos = combos or {}
    for combo_id in condition.required_combos:
        combo = known_combos.get(combo_id)
        if combo is None or not is_combo_unlocked(combo, state):
            failures.append(f"required_combos:{combo_id}")

    return failures


def evaluate(
    condition: StateCondition | None,
    state: PlayerState,
    *,
    character_id: str | None = None,
    combos: Mapping[str, PatternCombo] | None = None,
) -> bool:
    return not failed_clauses(condition, state, character_id=character_id, combos=combos)
