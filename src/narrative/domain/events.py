from dataclasses import dataclass, field
from typing import Optional, Tuple


@dataclass(frozen=True)
class PresentedChoice:
    choice_id: str
    index: int
    pattern: Optional[str]
    locked: bool
    mercy_unlocked: bool
    gravity_bucket: int
    gravity_weight: float


@dataclass(frozen=True)
class ChoicePresented:
    event_id: str
    player_id: str
    node_id: str
    character_id: str
    ordering_variant: str
    choices: Tuple[PresentedChoice, ...] = field(default_factory=tuple)
    occurred_at: float = 0.0


@dataclass(frozen=True)
class ChoiceSelectedUi:
    event_id: str
    presented_event_id: str
    player_id: str
    node_id: str
    choice_id: str
    selected_index: int
    reaction_time_ms: Optional[int] = None
    occurred_at: float = 0.0


@dataclass(frozen=True)
class NodeEntered:
    player_id: str
    node_id: str
    character_id: str
    node_entry_count: int


@dataclass(frozen=True)
class PlayerReset:
    player_id: str


@dataclass(frozen=True)
class VulnerabilityDiscovered:
    player_id: str
    character_id: str
    vulnerability_id: str
    knowledge_flag: str


@dataclass(frozen=True)
class GrowthArcTriggered:
    player_id: str
    character_id: str
    arc_id: str
    flags_set: Tuple[str, ...]


@dataclass(frozen=True)
class QuestStatusChanged:
    player_id: str
    quest_id: str
    from_status: str
    to_status: str
