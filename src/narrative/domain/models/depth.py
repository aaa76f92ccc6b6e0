from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping


class TrustBand(str, Enum):
    EARLY = "early_trust"
    MID = "mid_trust"
    HIGH = "high_trust"


def trust_band(trust: int) -> TrustBand:
    if trust < 4:
        return TrustBand.EARLY
    if trust < 8:
        return TrustBand.MID
    return TrustBand.HIGH


@dataclass(frozen=True)
class DiscoveryCondition:
    trust_min: int = 0
    required_flags: tuple[str, ...] = ()
    pattern_requirements: Mapping[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class VulnerabilityResponses:
    early_trust: str
    mid_trust: str
    high_trust: str

    def for_band(self, band: TrustBand) -> str:
        if band == TrustBand.EARLY:
            return self.early_trust
        if band == TrustBand.MID:
            return self.mid_trust
        return self.high_trust


@dataclass(frozen=True)
class VulnerabilityReward:
    knowledge_flag: str
    unlocked_dialogue_nodes: tuple[str, ...] = ()
    trust_bonus: int = 0
    thought_id: str | None = None


@dataclass(frozen=True)
class Vulnerability:
    id: str
    name: str
    trigger_phrases: tuple[str, ...]
    discovery: DiscoveryCondition
    responses: VulnerabilityResponses
    reward: VulnerabilityReward
    description: str = ""


@dataclass(frozen=True)
class RevealCondition:
    trust_min: int = 0
    required_flags: tuple[str, ...] = ()


@dataclass(frozen=True)
class Strength:
    id: str
    name: str
    reveal: RevealCondition
    help_dialogue: str
    ability: str | None = None
    description: str = ""


@dataclass(frozen=True)
class GrowthTrigger:
    trust_min: int = 0
    required_flags: tuple[str, ...] = ()


@dataclass(frozen=True)
class GrowthResult:
    global_flags_set: tuple[str, ...]
    new_dialogue_unlocked: tuple[str, ...] = ()


@dataclass(frozen=True)
class GrowthArc:
    id: str
    name: str
    vulnerability_id: str
    strength_id: str
    trigger: GrowthTrigger
    transformation_lines: tuple[str, ...]
    result: GrowthResult


@dataclass(frozen=True)
class CharacterDepthProfile:
    character_id: str
    vulnerabilities: tuple[Vulnerability, ...] = ()
    strengths: tuple[Strength, ...] = ()
    growth_arcs: tuple[GrowthArc, ...] = ()

    def vulnerability(self, vulnerability_id: str) -> Vulnerability | None:
        return next((row for row in self.vulnerabilities if row.id == vulnerability_id), None)

    def strength(self, strength_id: str) -> Strength | None:
        return next((row for row in self.strengths if row.id == strength_id), None)
