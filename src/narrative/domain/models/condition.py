from __future__ import annotations

from dataclasses import dataclass, field
from typing import Mapping


@dataclass(frozen=True)
class PatternRange:
    min: int | None = None
    max: int | None = None


@dataclass(frozen=True)
class StateCondition:
    """Conjunction of optional clauses; an absent clause always holds."""

    character_id: str | None = None
    trust_min: int | None = None
    trust_max: int | None = None
    relationship: tuple[str, ...] = ()
    has_knowledge_flags: tuple[str, ...] = ()
    lacks_knowledge_flags: tuple[str, ...] = ()
    has_global_flags: tuple[str, ...] = ()
    lacks_global_flags: tuple[str, ...] = ()
    patterns: Mapping[str, PatternRange] = field(default_factory=dict)
    mysteries: Mapping[str, str] = field(default_factory=dict)
    required_combos: tuple[str, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not any(
            (
                self.trust_min is not None,
                self.trust_max is not None,
                self.relationship,
                self.has_knowledge_flags,
                self.lacks_knowledge_flags,
                self.has_global_flags,
                self.lacks_global_flags,
                self.patterns,
                self.mysteries,
                self.required_combos,
            )
        )

    @property
    def is_character_scoped(self) -> bool:
        return any(
            (
                self.trust_min is not None,
                self.trust_max is not None,
                self.relationship,
                self.has_knowledge_flags,
                self.lacks_knowledge_flags,
            )
        )

    def describe(self) -> dict[str, object]:
        """Compact, log-friendly rendering of the clauses that are set."""
        rows: dict[str, object] = {}
        if self.character_id:
            rows["character_id"] = self.character_id
        if self.trust_min is not None or self.trust_max is not None:
            rows["trust"] = {"min": self.trust_min, "max": self.trust_max}
        for name in (
            "relationship",
            "has_knowledge_flags",
            "lacks_knowledge_flags",
            "has_global_flags",
            "lacks_global_flags",
            "required_combos",
        ):
            value = getattr(self, name)
            if value:
                rows[name] = list(value)
        if self.patterns:
            rows["patterns"] = {key: {"min": row.min, "max": row.max} for key, row in self.patterns.items()}
        if self.mysteries:
            rows["mysteries"] = dict(self.mysteries)
        return rows


ALWAYS = StateCondition()


@dataclass(frozen=True)
class PatternCombo:
    id: str
    name: str
    pattern_requirements: Mapping[str, int] = field(default_factory=dict)
    required_flags: tuple[str, ...] = ()
    description: str = ""
