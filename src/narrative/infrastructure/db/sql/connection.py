from __future__ import annotations

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker


DEFAULT_DATABASE_URL = "sqlite:///narrative_state.db"

_SCHEMA_STATEMENTS = (
    """
    CREATE TABLE IF NOT EXISTS player_snapshot (
        player_id VARCHAR(128) PRIMARY KEY,
        schema_version INTEGER NOT NULL,
        payload_json TEXT NOT NULL,
        updated_at VARCHAR(40) NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS telemetry_outbox (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        event_type VARCHAR(64) NOT NULL,
        payload_json TEXT NOT NULL,
        created_at VARCHAR(40) NOT NULL
    )
    """,
)


def build_engine(database_url: str | None = None) -> Engine:
    return create_engine(database_url or DEFAULT_DATABASE_URL, echo=False, future=True)


def build_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


def ensure_schema(engine: Engine) -> None:
    statements = _SCHEMA_STATEMENTS
    if engine.dialect.name == "mysql":
        statements = tuple(
            statement.replace("INTEGER PRIMARY KEY AUTOINCREMENT", "BIGINT PRIMARY KEY AUTO_INCREMENT")
            for statement in statements
        )
    with engine.begin() as conn:
        for statement in statements:
            conn.execute(text(statement))
