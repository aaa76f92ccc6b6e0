from __future__ import annotations

import logging
from typing import Callable

from narrative.domain.models.state import PlayerState
from narrative.domain.repositories import PlayerSnapshotStore, PlayerStateRepository
from narrative.infrastructure.db.snapshot_codec import SNAPSHOT_SCHEMA_VERSION, dumps_snapshot, load_snapshot


logger = logging.getLogger(__name__)


class RepositorySnapshotStore(PlayerSnapshotStore):
    """Validates snapshots on the way in and serializes them on the way out."""

    def __init__(self, repository: PlayerStateRepository) -> None:
        self._repository = repository

    def load_state(self, player_id: str, default_factory: Callable[[], PlayerState]) -> tuple[PlayerState, bool]:
        try:
            raw = self._repository.load_document(player_id)
        except Exception:
            logger.exception("Snapshot read failed; starting from a fresh state", extra={"player_id": player_id})
            return default_factory(), False
        return load_snapshot(raw, player_id=player_id, default_factory=default_factory)

    def save_state(self, state: PlayerState) -> None:
        self._repository.save_document(state.player_id, SNAPSHOT_SCHEMA_VERSION, dumps_snapshot(state))

    def discard(self, player_id: str) -> None:
        self._repository.delete(player_id)
