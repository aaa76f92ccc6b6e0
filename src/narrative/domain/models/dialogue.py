from __future__ import annotations

from dataclasses import dataclass, field
from typing import Mapping

from narrative.domain.models.condition import StateCondition


@dataclass(frozen=True)
class StateChange:
    """Description of a state mutation; only the consequence applier executes it."""

    character_id: str | None = None
    trust_change: int = 0
    set_relationship_status: str | None = None
    add_knowledge_flags: tuple[str, ...] = ()
    remove_knowledge_flags: tuple[str, ...] = ()
    add_global_flags: tuple[str, ...] = ()
    remove_global_flags: tuple[str, ...] = ()
    pattern_changes: Mapping[str, int] = field(default_factory=dict)
    set_mysteries: Mapping[str, str] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not any(
            (
                self.trust_change,
                self.set_relationship_status,
                self.add_knowledge_flags,
                self.remove_knowledge_flags,
                self.add_global_flags,
                self.remove_global_flags,
                any(self.pattern_changes.values()),
                self.set_mysteries,
            )
        )


@dataclass(frozen=True)
class OrbRequirement:
    pattern: str
    threshold: int


@dataclass(frozen=True)
class Choice:
    choice_id: str
    text: str
    next_node_id: str
    pattern: str | None = None
    consequence: StateChange | None = None
    visible_condition: StateCondition | None = None
    enabled_condition: StateCondition | None = None
    required_orb_fill: OrbRequirement | None = None
    skills: tuple[str, ...] = ()
    category: str | None = None
    preview: str | None = None


@dataclass(frozen=True)
class PatternReflection:
    pattern: str
    min_level: int
    alt_text: str
    alt_emotion: str | None = None


@dataclass(frozen=True)
class DialogueContent:
    text: str
    variation_id: str
    emotion: str | None = None
    condition: StateCondition | None = None
    pattern_reflections: tuple[PatternReflection, ...] = ()


@dataclass(frozen=True)
class SimulationContext:
    label: str
    content: str
    display_style: str = "text"


@dataclass(frozen=True)
class SimulationDescriptor:
    type: str
    title: str
    task_description: str
    initial_context: SimulationContext
    success_feedback: str = ""


@dataclass(frozen=True)
class DialogueNode:
    node_id: str
    speaker: str
    content: tuple[DialogueContent, ...]
    choices: tuple[Choice, ...] = ()
    required_state: StateCondition | None = None
    on_enter: tuple[StateChange, ...] = ()
    on_exit: tuple[StateChange, ...] = ()
    tags: tuple[str, ...] = ()
    simulation: SimulationDescriptor | None = None
    is_terminal: bool = False

    def choice(self, choice_id: str) -> Choice | None:
        for row in self.choices:
            if row.choice_id == choice_id:
                return row
        return None


@dataclass(frozen=True)
class DialogueGraph:
    character_id: str
    start_node_id: str
    nodes: Mapping[str, DialogueNode]
    version: str = "1"

    def get(self, node_id: str) -> DialogueNode | None:
        return self.nodes.get(node_id)
