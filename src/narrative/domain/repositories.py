from abc import ABC, abstractmethod
from typing import Callable, Dict, List, Optional, Tuple

from narrative.domain.models.dialogue import DialogueNode
from narrative.domain.models.state import PlayerState


class GraphLookup(ABC):
    """Read-only view over authored dialogue graphs."""

    @abstractmethod
    def get_node(self, node_id: str) -> Optional[DialogueNode]:
        raise NotImplementedError

    @abstractmethod
    def find_character_for_node(self, node_id: str) -> Optional[str]:
        raise NotImplementedError

    @abstractmethod
    def entry_points(self) -> Dict[str, str]:
        """Character id to well-known entry node id."""
        raise NotImplementedError


class PlayerStateRepository(ABC):
    """Key-value store of serialized player snapshots, one document per player."""

    @abstractmethod
    def load_document(self, player_id: str) -> Optional[str]:
        raise NotImplementedError

    @abstractmethod
    def save_document(self, player_id: str, schema_version: int, document: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def delete(self, player_id: str) -> None:
        raise NotImplementedError


class TelemetrySink(ABC):
    @abstractmethod
    def write_batch(self, rows: List[tuple[str, str]]) -> None:
        """Persist (event_type, payload_json) rows."""
        raise NotImplementedError


class PlayerSnapshotStore(ABC):
    @abstractmethod
    def load_state(self, player_id: str, default_factory: Callable[[], PlayerState]) -> Tuple[PlayerState, bool]:
        """Return the stored state (or a fresh default) and whether it was restored."""
        raise NotImplementedError

    @abstractmethod
    def save_state(self, state: PlayerState) -> None:
        raise NotImplementedError

    @abstractmethod
    def discard(self, player_id: str) -> None:
        raise NotImplementedError
