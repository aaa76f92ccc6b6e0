from __future__ import annotations

from typing import Mapping, Sequence


class NarrativeError(RuntimeError):
    """Base class for narrative engine failures."""


class NarrativeIntegrityError(NarrativeError):
    """Broken authored content: dangling references, dead ends, bad gates."""

    def __init__(
        self,
        message: str,
        *,
        node_id: str | None = None,
        character_id: str | None = None,
        condition: Mapping[str, object] | None = None,
    ) -> None:
        super().__init__(message)
        self.node_id = node_id
        self.character_id = character_id
        self.condition = dict(condition or {})

    def context(self) -> dict[str, object]:
        return {
            "node_id": self.node_id,
            "character_id": self.character_id,
            "condition": self.condition,
        }


class DeadEndError(NarrativeIntegrityError):
    """A non-terminal node left the player with nothing to select."""


class RequiredStateViolation(NarrativeIntegrityError):
    """A node was entered while its required state did not hold."""


class StaleChoiceError(NarrativeError):
    """A submitted choice is not part of the currently presented set."""

    def __init__(self, choice_id: str, node_id: str) -> None:
        super().__init__(f"Choice '{choice_id}' is not offered at node '{node_id}'")
        self.choice_id = choice_id
        self.node_id = node_id


class ContentValidationError(NarrativeError):
    def __init__(self, errors: Sequence[str]) -> None:
        self.errors = list(errors)
        super().__init__(f"Narrative content invalid ({len(self.errors)} errors)")


class SnapshotCorruptError(NarrativeError):
    """Raised when a persisted snapshot cannot be parsed or validated."""

    def __init__(self, errors: Sequence[str]) -> None:
        self.errors = list(errors)
        super().__init__("; ".join(self.errors) or "snapshot corrupt")
