from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv
from sqlalchemy.exc import SQLAlchemyError

from narrative.application.services.depth_matcher import DepthMatcher
from narrative.application.services.event_bus import EventBus
from narrative.application.services.narrative_engine import NarrativeEngine
from narrative.application.services.pattern_voice_selector import PatternVoiceSelector
from narrative.application.services.quest_service import QuestService, register_quest_handlers
from narrative.domain.repositories import PlayerStateRepository, TelemetrySink
from narrative.infrastructure.content.content_loader import ContentPack, default_content_path, load_content_file
from narrative.infrastructure.content.graph_registry import GraphRegistry
from narrative.infrastructure.db.inmemory.repos import InMemoryPlayerStateRepository, InMemoryTelemetrySink
from narrative.infrastructure.db.snapshot_store import RepositorySnapshotStore
from narrative.infrastructure.telemetry_queue import TelemetryQueue


logger = logging.getLogger(__name__)

_TRUTHY = {"1", "true", "yes"}


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in _TRUTHY


@dataclass(frozen=True)
class NarrativeSettings:
    database_url: str | None
    content_path: Path
    strict_integrity: bool = False
    enforce_required_state: bool = False
    ordering_variant: str = "gravity_shuffle"
    grouping_threshold: int = 4
    telemetry_enabled: bool = True
    telemetry_queue_max: int = 500
    telemetry_batch_size: int = 50
    voice_global_cooldown: int = 3
    start_character_id: str | None = None

    @classmethod
    def from_env(cls) -> "NarrativeSettings":
        return cls(
            database_url=os.getenv("NARRATIVE_DATABASE_URL") or None,
            content_path=default_content_path(),
            strict_integrity=_env_flag("NARRATIVE_STRICT_INTEGRITY", "0"),
            enforce_required_state=_env_flag("NARRATIVE_ENFORCE_REQUIRED_STATE", "0"),
            ordering_variant=os.getenv("NARRATIVE_ORDERING_VARIANT", "gravity_shuffle").strip().lower(),
            grouping_threshold=int(os.getenv("NARRATIVE_GROUPING_THRESHOLD", "4")),
            telemetry_enabled=_env_flag("NARRATIVE_TELEMETRY_ENABLED", "1"),
            telemetry_queue_max=int(os.getenv("NARRATIVE_TELEMETRY_QUEUE_MAX", "500")),
            telemetry_batch_size=int(os.getenv("NARRATIVE_TELEMETRY_BATCH_SIZE", "50")),
            voice_global_cooldown=int(os.getenv("NARRATIVE_VOICE_GLOBAL_COOLDOWN", "3")),
            start_character_id=os.getenv("NARRATIVE_START_CHARACTER") or None,
        )


@dataclass
class NarrativeRuntime:
    engine: NarrativeEngine
    registry: GraphRegistry
    content: ContentPack
    telemetry: TelemetryQueue


def _build_sql_backends(database_url: str) -> tuple[PlayerStateRepository, TelemetrySink]:
    from narrative.infrastructure.db.sql.connection import build_engine, build_session_factory, ensure_schema
    from narrative.infrastructure.db.sql.repos import SqlPlayerStateRepository, SqlTelemetryOutbox

    engine = build_engine(database_url)
    ensure_schema(engine)
    session_factory = build_session_factory(engine)
    return SqlPlayerStateRepository(session_factory), SqlTelemetryOutbox(session_factory)


def build_runtime(
    settings: NarrativeSettings,
    *,
    content: ContentPack | None = None,
    repository: PlayerStateRepository | None = None,
    telemetry_sink: TelemetrySink | None = None,
) -> NarrativeRuntime:
    pack = content if content is not None else load_content_file(settings.content_path)
    registry = GraphRegistry.build(pack.graphs, strict=True)

    if repository is None or telemetry_sink is None:
        if settings.database_url:
            sql_repository, sql_sink = _build_sql_backends(settings.database_url)
            repository = repository or sql_repository
            telemetry_sink = telemetry_sink or sql_sink
        else:
            repository = repository or InMemoryPlayerStateRepository()
            telemetry_sink = telemetry_sink or InMemoryTelemetrySink()

    event_bus = EventBus()
    telemetry = TelemetryQueue(
        telemetry_sink,
        max_size=settings.telemetry_queue_max,
        batch_size=settings.telemetry_batch_size,
        enabled=settings.telemetry_enabled,
    )
    telemetry.attach(event_bus)

    quest_service = QuestService(pack.quests, pack.story_arcs)
    engine = NarrativeEngine(
        registry,
        RepositorySnapshotStore(repository),
        event_bus=event_bus,
        depth_matcher=DepthMatcher(pack.depth_profiles),
        quest_service=quest_service,
        voice_selector=PatternVoiceSelector(pack.voice_library),
        combos=pack.combos,
        default_mysteries=pack.mysteries,
        start_character_id=settings.start_character_id,
        strict_integrity=settings.strict_integrity,
        enforce_required_state=settings.enforce_required_state,
        ordering_variant=settings.ordering_variant,
        grouping_threshold=settings.grouping_threshold,
        voice_global_cooldown=settings.voice_global_cooldown,
    )
    register_quest_handlers(event_bus=event_bus, quest_service=quest_service, state_provider=engine.get_state)
    return NarrativeRuntime(engine=engine, registry=registry, content=pack, telemetry=telemetry)


def create_narrative_engine(*, load_env: bool = True) -> NarrativeEngine:
    if load_env:
        load_dotenv()
    settings = NarrativeSettings.from_env()
    if settings.database_url:
        try:
            return build_runtime(settings).engine
        except SQLAlchemyError as exc:  # pragma: no cover - best-effort fallback
            logger.warning("Database unavailable, falling back to in-memory. Reason: %s", exc)
            return build_runtime(
                settings,
                repository=InMemoryPlayerStateRepository(),
                telemetry_sink=InMemoryTelemetrySink(),
            ).engine
    return build_runtime(settings).engine
