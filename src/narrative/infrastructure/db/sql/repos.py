from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import text
from sqlalchemy.orm import sessionmaker

from narrative.domain.repositories import PlayerStateRepository, TelemetrySink


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class SqlPlayerStateRepository(PlayerStateRepository):
    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    def load_document(self, player_id: str) -> Optional[str]:
        with self._session_factory() as session:
            row = session.execute(
                text("SELECT payload_json FROM player_snapshot WHERE player_id = :pid"),
                {"pid": str(player_id)},
            ).first()
        return str(row.payload_json) if row is not None else None

    def save_document(self, player_id: str, schema_version: int, document: str) -> None:
        with self._session_factory.begin() as session:
            dialect = session.bind.dialect.name if session.bind is not None else "sqlite"
            if dialect == "mysql":
                statement = """
                    INSERT INTO player_snapshot (player_id, schema_version, payload_json, updated_at)
                    VALUES (:pid, :version, :payload, :updated)
                    ON DUPLICATE KEY UPDATE
                        schema_version = VALUES(schema_version),
                        payload_json = VALUES(payload_json),
                        updated_at = VALUES(updated_at)
                """
            else:
                statement = """
                    INSERT INTO player_snapshot (player_id, schema_version, payload_json, updated_at)
                    VALUES (:pid, :version, :payload, :updated)
                    ON CONFLICT(player_id) DO UPDATE SET
                        schema_version = excluded.schema_version,
                        payload_json = excluded.payload_json,
                        updated_at = excluded.updated_at
                """
            session.execute(
                text(statement),
                {
                    "pid": str(player_id),
                    "version": int(schema_version),
                    "payload": str(document),
                    "updated": _now(),
                },
            )

    def delete(self, player_id: str) -> None:
        with self._session_factory.begin() as session:
            session.execute(text("DELETE FROM player_snapshot WHERE player_id = :pid"), {"pid": str(player_id)})


class SqlTelemetryOutbox(TelemetrySink):
    """Local outbox table; shipping rows elsewhere is left to an external process."""

    def __init__(self, session_factory: sessionmaker) -> None:
        self._session_factory = session_factory

    def write_batch(self, rows: List[tuple[str, str]]) -> None:
        if not rows:
            return
        created = _now()
        with self._session_factory.begin() as session:
            session.execute(
                text(
                    "INSERT INTO telemetry_outbox (event_type, payload_json, created_at) "
                    "VALUES (:event_type, :payload, :created)"
                ),
                [
                    {"event_type": event_type, "payload": payload, "created": created}
                    for event_type, payload in rows
                ],
            )

    def count(self) -> int:
        with self._session_factory() as session:
            return int(session.execute(text("SELECT COUNT(*) FROM telemetry_outbox")).scalar_one())
