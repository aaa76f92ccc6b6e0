import os
import sys
from pathlib import Path
import unittest
from unittest import mock

sys.path.insert(0, str(Path(__file__).resolve().parents[2] / "src"))

from narrative.application.services.narrative_engine import NarrativeEngine
from narrative.bootstrap import NarrativeSettings, build_runtime, create_narrative_engine
from narrative.infrastructure.content.content_loader import default_content_path, load_content_file
from narrative.infrastructure.db.inmemory.repos import InMemoryTelemetrySink


class NarrativeSettingsTests(unittest.TestCase):
    def test_defaults_without_environment(self) -> None:
        with mock.patch.dict(os.environ, {}, clear=True):
            settings = NarrativeSettings.from_env()
        self.assertIsNone(settings.database_url)
        self.assertFalse(settings.strict_integrity)
        self.assertFalse(settings.enforce_required_state)
        self.assertEqual("gravity_shuffle", settings.ordering_variant)
        self.assertEqual(4, settings.grouping_threshold)
        self.assertTrue(settings.telemetry_enabled)
        self.assertEqual(50, settings.telemetry_batch_size)
        self.assertEqual(3, settings.voice_global_cooldown)
        self.assertEqual(default_content_path(), settings.content_path)

    def test_environment_overrides(self) -> None:
        env = {
            "NARRATIVE_DATABASE_URL": "sqlite:///narrative.db",
            "NARRATIVE_STRICT_INTEGRITY": "yes",
            "NARRATIVE_ORDERING_VARIANT": " Authored ",
            "NARRATIVE_GROUPING_THRESHOLD": "6",
            "NARRATIVE_TELEMETRY_ENABLED": "0",
            "NARRATIVE_START_CHARACTER": "samuel",
        }
        with mock.patch.dict(os.environ, env, clear=True):
            settings = NarrativeSettings.from_env()
        self.assertEqual("sqlite:///narrative.db", settings.database_url)
        self.assertTrue(settings.strict_integrity)
        self.assertEqual("authored", settings.ordering_variant)
        self.assertEqual(6, settings.grouping_threshold)
        self.assertFalse(settings.telemetry_enabled)
        self.assertEqual("samuel", settings.start_character_id)


class BuildRuntimeTests(unittest.TestCase):
    def test_in_memory_runtime_wires_content(self) -> None:
        settings = NarrativeSettings(database_url=None, content_path=default_content_path())
        runtime = build_runtime(settings)

        self.assertIsInstance(runtime.engine, NarrativeEngine)
        self.assertEqual({"maya", "samuel"}, set(runtime.registry.entry_points()))
        self.assertEqual(3, len(runtime.engine.quest_service.quests))
        self.assertEqual("maya_introduction", runtime.engine.start("p1").node_id)

    def test_start_character_setting_selects_entry_point(self) -> None:
        settings = NarrativeSettings(
            database_url=None,
            content_path=default_content_path(),
            start_character_id="samuel",
        )
        runtime = build_runtime(settings, content=load_content_file())
        self.assertEqual("samuel_introduction", runtime.engine.start("p1").node_id)

    def test_unknown_start_character_is_rejected(self) -> None:
        settings = NarrativeSettings(
            database_url=None,
            content_path=default_content_path(),
            start_character_id="devon",
        )
        with self.assertRaises(ValueError):
            build_runtime(settings)

    def test_disabled_telemetry_writes_nothing(self) -> None:
        sink = InMemoryTelemetrySink()
        settings = NarrativeSettings(
            database_url=None,
            content_path=default_content_path(),
            telemetry_enabled=False,
            telemetry_batch_size=1,
        )
        runtime = build_runtime(settings, telemetry_sink=sink)
        runtime.engine.start("p1")
        self.assertEqual([], sink.rows)
        self.assertEqual(0, runtime.telemetry.pending)

    def test_sqlite_url_builds_sql_backends(self) -> None:
        settings = NarrativeSettings(database_url="sqlite:///:memory:", content_path=default_content_path())
        runtime = build_runtime(settings)
        view = runtime.engine.start("p1")
        outcome = runtime.engine.select_choice("p1", view.choices.choice_ids[0])
        self.assertFalse(outcome.view.paused)


class CreateNarrativeEngineTests(unittest.TestCase):
    def test_creates_in_memory_engine_from_environment(self) -> None:
        with mock.patch.dict(os.environ, {"NARRATIVE_ORDERING_VARIANT": "authored"}, clear=True):
            engine = create_narrative_engine(load_env=False)
        view = engine.start("p1")
        self.assertEqual(
            ["maya_ask_studies", "maya_sit_quietly", "maya_ask_family"],
            view.choices.choice_ids,
        )


if __name__ == "__main__":
    unittest.main()
