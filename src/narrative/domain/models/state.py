from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Iterable, Mapping


TRUST_MIN = 0
TRUST_MAX = 10
DEFAULT_TRUST = 0


class PatternId(str, Enum):
    ANALYTICAL = "analytical"
    PATIENCE = "patience"
    EXPLORING = "exploring"
    HELPING = "helping"
    BUILDING = "building"


PATTERN_IDS: tuple[str, ...] = tuple(pattern.value for pattern in PatternId)


class RelationshipStatus(str, Enum):
    STRANGER = "stranger"
    ACQUAINTANCE = "acquaintance"
    CONFIDANT = "confidant"


def clamp_trust(value: int) -> int:
    return max(TRUST_MIN, min(TRUST_MAX, int(value)))


def clamp_pattern(value: int) -> int:
    return max(0, int(value))


def is_pattern_id(value: object) -> bool:
    return str(value or "").strip().lower() in PATTERN_IDS


@dataclass(frozen=True)
class CharacterState:
    character_id: str
    trust: int = DEFAULT_TRUST
    knowledge_flags: frozenset[str] = frozenset()
    relationship_status: RelationshipStatus = RelationshipStatus.STRANGER
    conversation_history: tuple[str, ...] = ()

    @property
    def has_met(self) -> bool:
        return bool(self.conversation_history)


@dataclass(frozen=True)
class PlayerState:
    """Snapshot of one player's narrative progress.

    Instances are never mutated in place; every transition produces a new
    snapshot through the consequence applier.
    """

    player_id: str
    patterns: Mapping[str, int] = field(default_factory=lambda: {pattern: 0 for pattern in PATTERN_IDS})
    global_flags: frozenset[str] = frozenset()
    characters: Mapping[str, CharacterState] = field(default_factory=dict)
    mysteries: Mapping[str, str] = field(default_factory=dict)
    current_node_id: str = ""
    current_character_id: str = ""
    visited_nodes: tuple[str, ...] = ()

    def character(self, character_id: str | None) -> CharacterState | None:
        if not character_id:
            return None
        return self.characters.get(str(character_id))

    def trust_for(self, character_id: str) -> int:
        row = self.character(character_id)
        return row.trust if row is not None else DEFAULT_TRUST

    def pattern(self, pattern: str | PatternId) -> int:
        key = pattern.value if isinstance(pattern, PatternId) else str(pattern)
        return int(self.patterns.get(key, 0))

    def all_knowledge_flags(self) -> frozenset[str]:
        flags: set[str] = set()
        for row in self.characters.values():
            flags.update(row.knowledge_flags)
        return frozenset(flags)

    def with_character(self, row: CharacterState) -> "PlayerState":
        characters = dict(self.characters)
        characters[row.character_id] = row
        return replace(self, characters=characters)


def create_character_state(character_id: str, *, trust: int = DEFAULT_TRUST) -> CharacterState:
    return CharacterState(character_id=str(character_id), trust=clamp_trust(trust))


def create_default_state(
    player_id: str,
    *,
    character_ids: Iterable[str] = (),
    start_node_id: str = "",
    start_character_id: str = "",
    mysteries: Mapping[str, str] | None = None,
) -> PlayerState:
    characters = {str(cid): create_character_state(cid) for cid in character_ids}
    if start_character_id and start_character_id not in characters:
        characters[start_character_id] = create_character_state(start_character_id)
    return PlayerState(
        player_id=str(player_id),
        characters=characters,
        mysteries=dict(mysteries or {}),
        current_node_id=str(start_node_id or ""),
        current_character_id=str(start_character_id or ""),
    )
