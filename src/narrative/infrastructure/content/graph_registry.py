from __future__ import annotations

import logging
from typing import Iterator, Mapping

from narrative.domain.errors import ContentValidationError
from narrative.domain.models.dialogue import Choice, DialogueGraph, DialogueNode, StateChange
from narrative.domain.models.state import is_pattern_id
from narrative.domain.repositories import GraphLookup


logger = logging.getLogger(__name__)


class GraphRegistry(GraphLookup):
    """Immutable index of every character's dialogue graph, keyed by node id."""

    def __init__(self, graphs: Mapping[str, DialogueGraph]) -> None:
        self._graphs = dict(graphs)
        self._node_owner: dict[str, str] = {}
        self._duplicate_nodes: list[tuple[str, str, str]] = []
        for character_id, graph in self._graphs.items():
            for node_id in graph.nodes:
                owner = self._node_owner.get(node_id)
                if owner is not None:
                    self._duplicate_nodes.append((node_id, owner, character_id))
                    continue
                self._node_owner[node_id] = character_id

    @classmethod
    def build(cls, graphs: Mapping[str, DialogueGraph], *, strict: bool = True) -> "GraphRegistry":
        registry = cls(graphs)
        errors = registry.validate_integrity()
        if errors:
            if strict:
                raise ContentValidationError(errors)
            for message in errors:
                logger.error("Dialogue graph integrity error", extra={"detail": message})
        return registry

    def characters(self) -> list[str]:
        return list(self._graphs)

    def graph(self, character_id: str) -> DialogueGraph | None:
        return self._graphs.get(character_id)

    def entry_point(self, character_id: str) -> str | None:
        graph = self._graphs.get(character_id)
        return graph.start_node_id if graph is not None else None

    def entry_points(self) -> dict[str, str]:
        return {character_id: graph.start_node_id for character_id, graph in self._graphs.items()}

    def node_ids(self) -> list[str]:
        return list(self._node_owner)

    def get_node(self, node_id: str) -> DialogueNode | None:
        owner = self._node_owner.get(node_id)
        if owner is None:
            return None
        return self._graphs[owner].nodes.get(node_id)

    def find_character_for_node(self, node_id: str) -> str | None:
        return self._node_owner.get(node_id)

    def iter_nodes(self) -> Iterator[tuple[str, DialogueNode]]:
        for character_id, graph in self._graphs.items():
            for node in graph.nodes.values():
                yield character_id, node

    def validate_integrity(self) -> list[str]:
        errors: list[str] = []
        for node_id, first, second in self._duplicate_nodes:
            errors.append(f"node '{node_id}' is defined by both '{first}' and '{second}'")

        for character_id, graph in self._graphs.items():
            if graph.character_id != character_id:
                errors.append(f"graphs.{character_id}.character_id is '{graph.character_id}'")
            if graph.start_node_id not in graph.nodes:
                errors.append(f"graphs.{character_id}.start_node_id '{graph.start_node_id}' does not exist")
            for node_key, node in graph.nodes.items():
                prefix = f"graphs.{character_id}.nodes.{node_key}"
                if node.node_id != node_key:
                    errors.append(f"{prefix}.node_id is '{node.node_id}'")
                if not node.content:
                    errors.append(f"{prefix}.content must not be empty")
                if not node.choices and not node.is_terminal:
                    errors.append(f"{prefix} has no choices and is not terminal")
                for change_index, change in enumerate(node.on_enter):
                    errors.extend(self._validate_change(f"{prefix}.on_enter[{change_index}]", change))
                for change_index, change in enumerate(node.on_exit):
                    errors.extend(self._validate_change(f"{prefix}.on_exit[{change_index}]", change))
                seen_choices: set[str] = set()
                for choice in node.choices:
                    if choice.choice_id in seen_choices:
                        errors.append(f"{prefix}.choices.{choice.choice_id} is duplicated")
                    seen_choices.add(choice.choice_id)
                    errors.extend(self._validate_choice(f"{prefix}.choices.{choice.choice_id}", choice))
        return errors

    def integrity_warnings(self) -> list[str]:
        """Soft findings: content that is legal but likely to gate the player out."""
        warnings: list[str] = []
        for character_id, node in self.iter_nodes():
            if node.is_terminal or not node.choices:
                continue
            if all(choice.visible_condition is not None for choice in node.choices):
                warnings.append(f"graphs.{character_id}.nodes.{node.node_id} gates every choice")
        reachable = self._reachable_nodes()
        for character_id, node in self.iter_nodes():
            if node.node_id not in reachable:
                warnings.append(f"graphs.{character_id}.nodes.{node.node_id} is unreachable from any entry point")
        return warnings

    def _reachable_nodes(self) -> set[str]:
        pending = [graph.start_node_id for graph in self._graphs.values()]
        seen: set[str] = set()
        while pending:
            node_id = pending.pop()
            if node_id in seen:
                continue
            node = self.get_node(node_id)
            if node is None:
                continue
            seen.add(node_id)
            pending.extend(choice.next_node_id for choice in node.choices)
        return seen

    def _validate_choice(self, prefix: str, choice: Choice) -> list[str]:
        errors: list[str] = []
        if choice.next_node_id not in self._node_owner:
            errors.append(f"{prefix}.next_node_id '{choice.next_node_id}' does not exist")
        if choice.pattern and not is_pattern_id(choice.pattern):
            errors.append(f"{prefix}.pattern '{choice.pattern}' is not a known pattern")
        orb = choice.required_orb_fill
        if orb is not None:
            if not is_pattern_id(orb.pattern):
                errors.append(f"{prefix}.required_orb_fill.pattern '{orb.pattern}' is not a known pattern")
            if not 0 <= int(orb.threshold) <= 100:
                errors.append(f"{prefix}.required_orb_fill.threshold must be between 0 and 100")
        if choice.consequence is not None:
            errors.extend(self._validate_change(f"{prefix}.consequence", choice.consequence))
        return errors

    def _validate_change(self, prefix: str, change: StateChange) -> list[str]:
        errors: list[str] = []
        if change.character_id and change.character_id not in self._graphs:
            errors.append(f"{prefix}.character_id '{change.character_id}' has no graph")
        for pattern in change.pattern_changes:
            if not is_pattern_id(pattern):
                errors.append(f"{prefix}.pattern_changes.{pattern} is not a known pattern")
        return errors
