from __future__ import annotations

from typing import Dict, List, Optional

from narrative.domain.repositories import PlayerStateRepository, TelemetrySink


class InMemoryPlayerStateRepository(PlayerStateRepository):
    def __init__(self) -> None:
        self._documents: Dict[str, tuple[int, str]] = {}

    def load_document(self, player_id: str) -> Optional[str]:
        row = self._documents.get(player_id)
        return row[1] if row is not None else None

    def save_document(self, player_id: str, schema_version: int, document: str) -> None:
        self._documents[player_id] = (int(schema_version), str(document))

    def delete(self, player_id: str) -> None:
        self._documents.pop(player_id, None)


class InMemoryTelemetrySink(TelemetrySink):
    def __init__(self) -> None:
        self.rows: List[tuple[str, str]] = []

    def write_batch(self, rows: List[tuple[str, str]]) -> None:
        self.rows.extend(rows)
