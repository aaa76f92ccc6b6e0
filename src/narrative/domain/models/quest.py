from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping

from narrative.domain.models.state import PlayerState


class QuestType(str, Enum):
    CHARACTER_ARC = "character_arc"
    DISCOVERY = "discovery"
    RETURN_HOOK = "return_hook"


class QuestStatus(str, Enum):
    LOCKED = "locked"
    UNLOCKED = "unlocked"
    ACTIVE = "active"
    COMPLETED = "completed"


# Display order: active first, locked last.
QUEST_STATUS_ORDER: Mapping[QuestStatus, int] = {
    QuestStatus.ACTIVE: 0,
    QuestStatus.UNLOCKED: 1,
    QuestStatus.COMPLETED: 2,
    QuestStatus.LOCKED: 3,
}


@dataclass(frozen=True)
class QuestCondition:
    has_global_flags: tuple[str, ...] = ()
    has_knowledge_flags: tuple[str, ...] = ()
    met_characters: tuple[str, ...] = ()
    min_trust: Mapping[str, int] = field(default_factory=dict)
    min_patterns: Mapping[str, int] = field(default_factory=dict)

    @property
    def clause_count(self) -> int:
        return (
            len(self.has_global_flags)
            + len(self.has_knowledge_flags)
            + len(self.met_characters)
            + len(self.min_trust)
            + (1 if self.min_patterns else 0)
        )


@dataclass(frozen=True)
class QuestReward:
    description: str
    unlocks: tuple[str, ...] = ()


@dataclass(frozen=True)
class Quest:
    id: str
    title: str
    description: str
    type: QuestType
    unlock_condition: QuestCondition
    complete_condition: QuestCondition
    character_id: str | None = None
    reward: QuestReward | None = None


@dataclass(frozen=True)
class QuestWithStatus:
    quest: Quest
    status: QuestStatus
    progress: int = 0


@dataclass(frozen=True)
class StoryChapter:
    id: str
    title: str
    description: str
    node_ids: tuple[str, ...]
    completion_flag: str
    next_chapter_trigger: str | None = None


@dataclass(frozen=True)
class ArcUnlockCondition:
    required_flags: tuple[str, ...] = ()
    min_trust: Mapping[str, int] = field(default_factory=dict)
    min_patterns: Mapping[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class StoryArc:
    id: str
    title: str
    description: str
    required_characters: tuple[str, ...]
    chapters: tuple[StoryChapter, ...]
    unlock_condition: ArcUnlockCondition = ArcUnlockCondition()


def quest_condition_checks(condition: QuestCondition, state: PlayerState) -> list[bool]:
    """Evaluate each clause of a quest condition, in declaration order."""
    checks: list[bool] = []
    knowledge = state.all_knowledge_flags()
    for flag in condition.has_global_flags:
        checks.append(flag in state.global_flags)
    for flag in condition.has_knowledge_flags:
        checks.append(flag in knowledge)
    for character_id in condition.met_characters:
        row = state.character(character_id)
        checks.append(row is not None and row.has_met)
    for character_id, trust in condition.min_trust.items():
        row = state.character(character_id)
        checks.append(row is not None and row.trust >= int(trust))
    if condition.min_patterns:
        # The pattern clause passes when any one listed pattern reaches its minimum.
        checks.append(
            any(state.pattern(pattern) >= int(minimum) for pattern, minimum in condition.min_patterns.items())
        )
    return checks


def is_quest_condition_met(condition: QuestCondition, state: PlayerState) -> bool:
    return all(quest_condition_checks(condition, state))


def is_arc_unlock_met(condition: ArcUnlockCondition, state: PlayerState) -> bool:
    if any(flag not in state.global_flags for flag in condition.required_flags):
        return False
    for character_id, trust in condition.min_trust.items():
        if state.trust_for(character_id) < int(trust):
            return False
    for pattern, minimum in condition.min_patterns.items():
        if state.pattern(pattern) < int(minimum):
            return False
    return True
