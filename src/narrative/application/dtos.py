from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from narrative.domain.models.depth import GrowthArc, Strength, TrustBand, Vulnerability
from narrative.domain.models.dialogue import Choice, SimulationDescriptor, StateChange
from narrative.domain.models.quest import QuestWithStatus
from narrative.domain.models.state import PlayerState
from narrative.domain.models.voice import VoiceConflict, VoiceLine


@dataclass(frozen=True)
class ResolvedChoice:
    choice: Choice
    locked: bool = False
    disabled: bool = False
    mercy_unlocked: bool = False
    orb_fill: Optional[int] = None
    gravity_bucket: int = 0
    gravity_weight: float = 0.0

    @property
    def choice_id(self) -> str:
        return self.choice.choice_id

    @property
    def selectable(self) -> bool:
        return not self.locked and not self.disabled

    @property
    def category(self) -> str:
        return self.choice.category or self.choice.pattern or "general"


@dataclass(frozen=True)
class ResolvedChoiceSet:
    node_id: str
    player_id: str
    ordering_variant: str
    choices: Tuple[ResolvedChoice, ...] = ()
    mercy_applied: bool = False

    @property
    def choice_ids(self) -> List[str]:
        return [row.choice_id for row in self.choices]

    def get(self, choice_id: str) -> Optional[ResolvedChoice]:
        return next((row for row in self.choices if row.choice_id == choice_id), None)

    def index_of(self, choice_id: str) -> int:
        for index, row in enumerate(self.choices):
            if row.choice_id == choice_id:
                return index
        return -1


@dataclass(frozen=True)
class AppliedConsequence:
    next_state: PlayerState
    next_node_id: str
    trust_delta: int = 0
    pattern_deltas: Dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class VulnerabilityMatch:
    character_id: str
    vulnerability: Vulnerability
    band: TrustBand
    response: str
    matched_phrase: str

    def reward_change(self) -> StateChange:
        reward = self.vulnerability.reward
        return StateChange(
            character_id=self.character_id,
            trust_change=int(reward.trust_bonus),
            add_knowledge_flags=(reward.knowledge_flag,),
        )


@dataclass(frozen=True)
class GrowthArcMatch:
    character_id: str
    arc: GrowthArc
    vulnerability: Vulnerability
    strength: Strength

    def result_change(self) -> StateChange:
        return StateChange(add_global_flags=tuple(self.arc.result.global_flags_set))


@dataclass(frozen=True)
class DiscoveryHint:
    vulnerability_id: str
    vulnerability_name: str
    trust_gap: int


@dataclass(frozen=True)
class QuestProgress:
    quest_id: str
    satisfied: int
    total: int

    @property
    def percent(self) -> int:
        if self.total <= 0:
            return 100
        return round(self.satisfied / self.total * 100)


@dataclass(frozen=True)
class ArcProgress:
    arc_id: str
    unlocked: bool
    completed_chapters: Tuple[str, ...]
    current_chapter_id: Optional[str]
    total_chapters: int

    @property
    def is_complete(self) -> bool:
        return self.total_chapters > 0 and len(self.completed_chapters) >= self.total_chapters


@dataclass
class NodeView:
    player_id: str
    node_id: str
    character_id: str
    speaker: str
    text: str
    emotion: Optional[str] = None
    variation_id: Optional[str] = None
    choices: Optional[ResolvedChoiceSet] = None
    choice_groups: Dict[str, List[ResolvedChoice]] = field(default_factory=dict)
    simulation: Optional[SimulationDescriptor] = None
    voice: Optional[VoiceLine] = None
    voice_conflict: Optional[VoiceConflict] = None
    presented_event_id: Optional[str] = None
    is_terminal: bool = False
    paused: bool = False
    pause_reason: str = ""


@dataclass
class ChoiceOutcome:
    view: NodeView
    state: PlayerState
    trust_delta: int = 0
    vulnerability: Optional[VulnerabilityMatch] = None
    growth_arc: Optional[GrowthArcMatch] = None
    quest_updates: List[Tuple[str, str, str]] = field(default_factory=list)
    replayed: bool = False


@dataclass
class QuestBoardView:
    quests: List[QuestWithStatus] = field(default_factory=list)
    primary_quest_id: Optional[str] = None
