from __future__ import annotations

import logging
from dataclasses import replace
from typing import Mapping, Sequence

from narrative.application.dtos import ResolvedChoice, ResolvedChoiceSet
from narrative.application.services.seed_policy import CHOICE_ORDER_NAMESPACE, derive_rng
from narrative.domain.errors import DeadEndError
from narrative.domain.models.condition import PatternCombo
from narrative.domain.models.dialogue import Choice, DialogueNode
from narrative.domain.models.state import PATTERN_IDS, PlayerState
from narrative.domain.services.condition_evaluator import evaluate


logger = logging.getLogger(__name__)

ORDERING_GRAVITY_SHUFFLE = "gravity_shuffle"
ORDERING_AUTHORED = "authored"
ORDERING_VARIANTS = (ORDERING_GRAVITY_SHUFFLE, ORDERING_AUTHORED)
DEFAULT_GROUPING_THRESHOLD = 4
UNGROUPED_BUCKET = "all"

# Orb balance at which a pattern orb reads as full.
ORB_CAPACITY = 100

OPEN_BUCKET = 0
SUNK_BUCKET = 1


def orb_fill_level(state: PlayerState, pattern: str) -> int:
    balance = max(0, state.pattern(pattern))
    return min(100, round(balance / ORB_CAPACITY * 100))


def orb_fill_levels(state: PlayerState) -> dict[str, int]:
    return {pattern: orb_fill_level(state, pattern) for pattern in PATTERN_IDS}


def gravity_weight(choice: Choice, state: PlayerState) -> float:
    """Share of the player's total pattern score held by the choice's pattern."""
    if not choice.pattern:
        return 0.0
    total = sum(max(0, state.pattern(pattern)) for pattern in PATTERN_IDS)
    if total <= 0:
        return 0.0
    return round(max(0, state.pattern(choice.pattern)) / total, 3)


def group_choices(
    choices: Sequence[ResolvedChoice],
    threshold: int = DEFAULT_GROUPING_THRESHOLD,
) -> dict[str, list[ResolvedChoice]]:
    """Bucket choices by category once there are more than ``threshold`` of them.

    Buckets keep the order in which their first member appears; members keep
    their resolved order.
    """
    rows = list(choices)
    if len(rows) <= int(threshold):
        return {UNGROUPED_BUCKET: rows}
    groups: dict[str, list[ResolvedChoice]] = {}
    for row in rows:
        groups.setdefault(row.category, []).append(row)
    return groups


class ChoiceResolver:
    def __init__(
        self,
        *,
        combos: Mapping[str, PatternCombo] | None = None,
        ordering_variant: str = ORDERING_GRAVITY_SHUFFLE,
        grouping_threshold: int = DEFAULT_GROUPING_THRESHOLD,
    ) -> None:
        if ordering_variant not in ORDERING_VARIANTS:
            raise ValueError(f"Unknown ordering variant: {ordering_variant}")
        self._combos = dict(combos or {})
        self.ordering_variant = ordering_variant
        self.grouping_threshold = int(grouping_threshold)

    def resolve(
        self,
        node: DialogueNode,
        state: PlayerState,
        *,
        player_id: str | None = None,
        character_id: str | None = None,
    ) -> ResolvedChoiceSet:
        owner = str(player_id or state.player_id)
        scope = character_id or state.current_character_id

        offered = [
            choice
            for choice in node.choices
            if evaluate(choice.visible_condition, state, character_id=scope, combos=self._combos)
        ]
        if not offered:
            if node.is_terminal:
                return ResolvedChoiceSet(node_id=node.node_id, player_id=owner, ordering_variant=self.ordering_variant)
            raise DeadEndError(
                f"Node '{node.node_id}' has no visible choices",
                node_id=node.node_id,
                character_id=scope,
                condition={"authored_choices": [choice.choice_id for choice in node.choices]},
            )

        rows = [self._annotate(choice, state, scope) for choice in offered]
        rows, mercy_applied = self._apply_mercy_unlock(rows)

        if not any(row.selectable for row in rows):
            raise DeadEndError(
                f"Node '{node.node_id}' has no selectable choices",
                node_id=node.node_id,
                character_id=scope,
                condition={"disabled": [row.choice_id for row in rows if row.disabled]},
            )

        ordered = self._order(rows, player_id=owner, node_id=node.node_id)
        return ResolvedChoiceSet(
            node_id=node.node_id,
            player_id=owner,
            ordering_variant=self.ordering_variant,
            choices=tuple(ordered),
            mercy_applied=mercy_applied,
        )

    def group(self, resolved: ResolvedChoiceSet) -> dict[str, list[ResolvedChoice]]:
        return group_choices(resolved.choices, self.grouping_threshold)

    def _annotate(self, choice: Choice, state: PlayerState, scope: str | None) -> ResolvedChoice:
        disabled = not evaluate(choice.enabled_condition, state, character_id=scope, combos=self._combos)
        fill = None
        locked = False
        if choice.required_orb_fill is not None:
            fill = orb_fill_level(state, choice.required_orb_fill.pattern)
            locked = fill < int(choice.required_orb_fill.threshold)
        return ResolvedChoice(
            choice=choice,
            locked=locked,
            disabled=disabled,
            orb_fill=fill,
            gravity_weight=gravity_weight(choice, state),
        )

    @staticmethod
    def _apply_mercy_unlock(rows: list[ResolvedChoice]) -> tuple[list[ResolvedChoice], bool]:
        candidates = [row for row in rows if not row.disabled]
        if not candidates or not all(row.locked for row in candidates):
            return rows, False

        # min() keeps the first row on equal thresholds, i.e. authored order.
        target = min(candidates, key=lambda row: int(row.choice.required_orb_fill.threshold))
        logger.info(
            "Mercy unlock applied",
            extra={"choice_id": target.choice_id, "threshold": target.choice.required_orb_fill.threshold},
        )
        return [
            replace(row, locked=False, mercy_unlocked=True) if row is target else row
            for row in rows
        ], True

    def _order(self, rows: list[ResolvedChoice], *, player_id: str, node_id: str) -> list[ResolvedChoice]:
        buckets: dict[int, list[ResolvedChoice]] = {OPEN_BUCKET: [], SUNK_BUCKET: []}
        for row in rows:
            bucket = OPEN_BUCKET if row.selectable else SUNK_BUCKET
            buckets[bucket].append(replace(row, gravity_bucket=bucket))

        if self.ordering_variant == ORDERING_GRAVITY_SHUFFLE:
            rng = derive_rng(CHOICE_ORDER_NAMESPACE, {"player_id": player_id, "node_id": node_id})
            for bucket in (OPEN_BUCKET, SUNK_BUCKET):
                rng.shuffle(buckets[bucket])

        return buckets[OPEN_BUCKET] + buckets[SUNK_BUCKET]
