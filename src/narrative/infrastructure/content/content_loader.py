"""Load a JSON narrative content pack into domain records.

Shape problems are reported as a flat list of ``path message`` strings so an
author sees every mistake at once; cross-reference problems (dangling node
ids, growth arcs naming unknown vulnerabilities) are checked afterwards on
the parsed records.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

from narrative.application.services.depth_matcher import validate_depth_profile
from narrative.application.services.quest_service import QuestService
from narrative.domain.errors import ContentValidationError
from narrative.domain.models.condition import PatternCombo, PatternRange, StateCondition
from narrative.domain.models.depth import (
    CharacterDepthProfile,
    DiscoveryCondition,
    GrowthArc,
    GrowthResult,
    GrowthTrigger,
    RevealCondition,
    Strength,
    Vulnerability,
    VulnerabilityResponses,
    VulnerabilityReward,
)
from narrative.domain.models.dialogue import (
    Choice,
    DialogueContent,
    DialogueGraph,
    DialogueNode,
    OrbRequirement,
    PatternReflection,
    SimulationContext,
    SimulationDescriptor,
    StateChange,
)
from narrative.domain.models.quest import (
    ArcUnlockCondition,
    Quest,
    QuestCondition,
    QuestReward,
    QuestType,
    StoryArc,
    StoryChapter,
)
from narrative.domain.models.voice import (
    DEFAULT_VOICE_COOLDOWN_NODES,
    PatternVoiceEntry,
    VoiceCondition,
    VoiceStyle,
    VoiceTrigger,
)
from narrative.infrastructure.content.graph_registry import GraphRegistry


DEFAULT_CONTENT_FILE = "data/content/station_content.json"

_CONDITION_LIST_KEYS = (
    "relationship",
    "has_knowledge_flags",
    "lacks_knowledge_flags",
    "has_global_flags",
    "lacks_global_flags",
    "required_combos",
)
_CHANGE_LIST_KEYS = (
    "add_knowledge_flags",
    "remove_knowledge_flags",
    "add_global_flags",
    "remove_global_flags",
)
_QUEST_TYPES = {row.value for row in QuestType}
_VOICE_TRIGGERS = {row.value for row in VoiceTrigger}
_VOICE_STYLES = {row.value for row in VoiceStyle}


@dataclass(frozen=True)
class ContentPack:
    graphs: Mapping[str, DialogueGraph]
    depth_profiles: Mapping[str, CharacterDepthProfile] = field(default_factory=dict)
    quests: tuple[Quest, ...] = ()
    story_arcs: tuple[StoryArc, ...] = ()
    voice_library: tuple[PatternVoiceEntry, ...] = ()
    combos: Mapping[str, PatternCombo] = field(default_factory=dict)
    mysteries: Mapping[str, str] = field(default_factory=dict)
    version: str = "1"


def default_content_path() -> Path:
    configured = os.getenv("NARRATIVE_CONTENT_PATH", "").strip()
    if configured:
        return Path(configured)
    project_root = Path(__file__).resolve().parents[4]
    return project_root / DEFAULT_CONTENT_FILE


# ---------------------------------------------------------------------------
# Shape validation
# ---------------------------------------------------------------------------


def _is_str_list(value: object) -> bool:
    return isinstance(value, list) and all(isinstance(item, str) for item in value)


def _is_int(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _is_int_map(value: object) -> bool:
    return isinstance(value, dict) and all(_is_int(item) for item in value.values())


def _validate_condition(owner: str, value: object, errors: list[str]) -> None:
    if value is None:
        return
    if not isinstance(value, dict):
        errors.append(f"{owner} must be an object")
        return
    for key in _CONDITION_LIST_KEYS:
        if key in value and not _is_str_list(value[key]):
            errors.append(f"{owner}.{key} must be a list of strings")
    trust = value.get("trust")
    if trust is not None:
        if not isinstance(trust, dict):
            errors.append(f"{owner}.trust must be an object")
        else:
            for bound in ("min", "max"):
                if bound in trust and not _is_int(trust[bound]):
                    errors.append(f"{owner}.trust.{bound} must be an integer")
    patterns = value.get("patterns")
    if patterns is not None:
        if not isinstance(patterns, dict):
            errors.append(f"{owner}.patterns must be an object")
        else:
            for pattern, bounds in patterns.items():
                if not isinstance(bounds, dict) or not all(_is_int(bounds[b]) for b in ("min", "max") if b in bounds):
                    errors.append(f"{owner}.patterns.{pattern} must be an object of integer min/max")
    mysteries = value.get("mysteries")
    if mysteries is not None and not (
        isinstance(mysteries, dict) and all(isinstance(item, str) for item in mysteries.values())
    ):
        errors.append(f"{owner}.mysteries must map names to strings")


def _validate_change(owner: str, value: object, errors: list[str]) -> None:
    if value is None:
        return
    if not isinstance(value, dict):
        errors.append(f"{owner} must be an object")
        return
    for key in _CHANGE_LIST_KEYS:
        if key in value and not _is_str_list(value[key]):
            errors.append(f"{owner}.{key} must be a list of strings")
    if "trust_change" in value and not _is_int(value["trust_change"]):
        errors.append(f"{owner}.trust_change must be an integer")
    if "pattern_changes" in value and not _is_int_map(value["pattern_changes"]):
        errors.append(f"{owner}.pattern_changes must map patterns to integers")


def _validate_change_list(owner: str, value: object, errors: list[str]) -> None:
    if value is None:
        return
    if not isinstance(value, list):
        errors.append(f"{owner} must be a list")
        return
    for index, row in enumerate(value):
        _validate_change(f"{owner}[{index}]", row, errors)


def _validate_node(owner: str, node: object, errors: list[str]) -> None:
    if not isinstance(node, dict):
        errors.append(f"{owner} must be an object")
        return
    if not str(node.get("node_id", "")).strip():
        errors.append(f"{owner}.node_id is required")
    content = node.get("content")
    if not isinstance(content, list) or not content:
        errors.append(f"{owner}.content must be a non-empty list")
    else:
        for index, variant in enumerate(content):
            variant_prefix = f"{owner}.content[{index}]"
            if not isinstance(variant, dict):
                errors.append(f"{variant_prefix} must be an object")
                continue
            if not str(variant.get("text", "")).strip():
                errors.append(f"{variant_prefix}.text is required")
            _validate_condition(f"{variant_prefix}.condition", variant.get("condition"), errors)
            reflections = variant.get("pattern_reflections", [])
            if not isinstance(reflections, list):
                errors.append(f"{variant_prefix}.pattern_reflections must be a list")
                continue
            for reflection_index, reflection in enumerate(reflections):
                reflection_prefix = f"{variant_prefix}.pattern_reflections[{reflection_index}]"
                if not isinstance(reflection, dict):
                    errors.append(f"{reflection_prefix} must be an object")
                    continue
                if not str(reflection.get("pattern", "")).strip():
                    errors.append(f"{reflection_prefix}.pattern is required")
                if not _is_int(reflection.get("min_level")):
                    errors.append(f"{reflection_prefix}.min_level must be an integer")
                if not isinstance(reflection.get("alt_text"), str):
                    errors.append(f"{reflection_prefix}.alt_text is required")
    choices = node.get("choices", [])
    if not isinstance(choices, list):
        errors.append(f"{owner}.choices must be a list")
    else:
        for index, choice in enumerate(choices):
            choice_prefix = f"{owner}.choices[{index}]"
            if not isinstance(choice, dict):
                errors.append(f"{choice_prefix} must be an object")
                continue
            for key in ("choice_id", "text", "next_node_id"):
                if not str(choice.get(key, "")).strip():
                    errors.append(f"{choice_prefix}.{key} is required")
            _validate_condition(f"{choice_prefix}.visible_condition", choice.get("visible_condition"), errors)
            _validate_condition(f"{choice_prefix}.enabled_condition", choice.get("enabled_condition"), errors)
            _validate_change(f"{choice_prefix}.consequence", choice.get("consequence"), errors)
            orb = choice.get("required_orb_fill")
            if orb is not None and not (
                isinstance(orb, dict) and isinstance(orb.get("pattern"), str) and _is_int(orb.get("threshold"))
            ):
                errors.append(f"{choice_prefix}.required_orb_fill must have a pattern and an integer threshold")
            if "skills" in choice and not _is_str_list(choice["skills"]):
                errors.append(f"{choice_prefix}.skills must be a list of strings")
    _validate_condition(f"{owner}.required_state", node.get("required_state"), errors)
    _validate_change_list(f"{owner}.on_enter", node.get("on_enter"), errors)
    _validate_change_list(f"{owner}.on_exit", node.get("on_exit"), errors)
    simulation = node.get("simulation")
    if simulation is not None:
        if not isinstance(simulation, dict):
            errors.append(f"{owner}.simulation must be an object")
        else:
            for key in ("type", "title", "task_description"):
                if not str(simulation.get(key, "")).strip():
                    errors.append(f"{owner}.simulation.{key} is required")
            if not isinstance(simulation.get("initial_context"), dict):
                errors.append(f"{owner}.simulation.initial_context must be an object")


def _validate_gate(owner: str, value: object, errors: list[str]) -> None:
    if value is None:
        return
    if not isinstance(value, dict):
        errors.append(f"{owner} must be an object")
        return
    if not _is_int(value.get("trust_min", 0)):
        errors.append(f"{owner}.trust_min must be an integer")
    if not _is_str_list(value.get("required_flags", [])):
        errors.append(f"{owner}.required_flags must be a list of strings")
    if "pattern_requirements" in value and not _is_int_map(value["pattern_requirements"]):
        errors.append(f"{owner}.pattern_requirements must map patterns to integers")


def _depth_rows(owner: str, profile: dict, key: str, errors: list[str]) -> list:
    rows = profile.get(key, [])
    if not isinstance(rows, list):
        errors.append(f"{owner}.{key} must be a list")
        return []
    return rows


def _validate_depth(owner: str, profile: object, errors: list[str]) -> None:
    if not isinstance(profile, dict):
        errors.append(f"{owner} must be an object")
        return
    for index, row in enumerate(_depth_rows(owner, profile, "vulnerabilities", errors)):
        prefix = f"{owner}.vulnerabilities[{index}]"
        if not isinstance(row, dict):
            errors.append(f"{prefix} must be an object")
            continue
        if not str(row.get("id", "")).strip():
            errors.append(f"{prefix}.id is required")
        if not _is_str_list(row.get("trigger_phrases")):
            errors.append(f"{prefix}.trigger_phrases must be a list of strings")
        responses = row.get("responses")
        if not isinstance(responses, dict) or not all(
            isinstance(responses.get(key), str) for key in ("early_trust", "mid_trust", "high_trust")
        ):
            errors.append(f"{prefix}.responses needs early_trust, mid_trust and high_trust text")
        reward = row.get("reward")
        if not isinstance(reward, dict) or not str(reward.get("knowledge_flag", "")).strip():
            errors.append(f"{prefix}.reward.knowledge_flag is required")
        elif not _is_int(reward.get("trust_bonus", 0)):
            errors.append(f"{prefix}.reward.trust_bonus must be an integer")
        _validate_gate(f"{prefix}.discovery", row.get("discovery"), errors)
    for index, row in enumerate(_depth_rows(owner, profile, "strengths", errors)):
        prefix = f"{owner}.strengths[{index}]"
        if not isinstance(row, dict) or not str(row.get("id", "")).strip():
            errors.append(f"{prefix}.id is required")
            continue
        _validate_gate(f"{prefix}.reveal", row.get("reveal"), errors)
    for index, row in enumerate(_depth_rows(owner, profile, "growth_arcs", errors)):
        prefix = f"{owner}.growth_arcs[{index}]"
        if not isinstance(row, dict):
            errors.append(f"{prefix} must be an object")
            continue
        for key in ("id", "vulnerability_id", "strength_id"):
            if not str(row.get(key, "")).strip():
                errors.append(f"{prefix}.{key} is required")
        _validate_gate(f"{prefix}.trigger", row.get("trigger"), errors)
        result = row.get("result")
        if not isinstance(result, dict) or not _is_str_list(result.get("global_flags_set")):
            errors.append(f"{prefix}.result.global_flags_set must be a list of strings")


def _validate_quest_condition(owner: str, value: object, errors: list[str]) -> None:
    if value is None:
        return
    if not isinstance(value, dict):
        errors.append(f"{owner} must be an object")
        return
    for key in ("has_global_flags", "has_knowledge_flags", "met_characters"):
        if key in value and not _is_str_list(value[key]):
            errors.append(f"{owner}.{key} must be a list of strings")
    for key in ("min_trust", "min_patterns"):
        if key in value and not _is_int_map(value[key]):
            errors.append(f"{owner}.{key} must map ids to integers")


def validate_content_payload(payload: object) -> list[str]:
    if not isinstance(payload, dict):
        return ["payload must be an object"]

    errors: list[str] = []
    graphs = payload.get("graphs")
    if not isinstance(graphs, dict) or not graphs:
        return ["payload.graphs must be a non-empty object"]

    for character_id, graph in graphs.items():
        owner = f"graphs.{character_id}"
        if not isinstance(graph, dict):
            errors.append(f"{owner} must be an object")
            continue
        if not str(graph.get("start_node_id", "")).strip():
            errors.append(f"{owner}.start_node_id is required")
        nodes = graph.get("nodes")
        if not isinstance(nodes, list) or not nodes:
            errors.append(f"{owner}.nodes must be a non-empty list")
            continue
        for index, node in enumerate(nodes):
            _validate_node(f"{owner}.nodes[{index}]", node, errors)

    profiles = payload.get("depth_profiles", {})
    if not isinstance(profiles, dict):
        errors.append("payload.depth_profiles must be an object")
    else:
        for character_id, profile in profiles.items():
            _validate_depth(f"depth_profiles.{character_id}", profile, errors)

    quests = payload.get("quests", [])
    if not isinstance(quests, list):
        errors.append("payload.quests must be a list")
    else:
        for index, quest in enumerate(quests):
            prefix = f"quests[{index}]"
            if not isinstance(quest, dict):
                errors.append(f"{prefix} must be an object")
                continue
            if not str(quest.get("id", "")).strip():
                errors.append(f"{prefix}.id is required")
            if quest.get("type") not in _QUEST_TYPES:
                errors.append(f"{prefix}.type must be one of {sorted(_QUEST_TYPES)}")
            _validate_quest_condition(f"{prefix}.unlock_condition", quest.get("unlock_condition"), errors)
            _validate_quest_condition(f"{prefix}.complete_condition", quest.get("complete_condition"), errors)

    arcs = payload.get("story_arcs", [])
    if not isinstance(arcs, list):
        errors.append("payload.story_arcs must be a list")
    else:
        for index, arc in enumerate(arcs):
            prefix = f"story_arcs[{index}]"
            if not isinstance(arc, dict):
                errors.append(f"{prefix} must be an object")
                continue
            if not str(arc.get("id", "")).strip():
                errors.append(f"{prefix}.id is required")
            chapters = arc.get("chapters")
            if not isinstance(chapters, list) or not chapters:
                errors.append(f"{prefix}.chapters must be a non-empty list")
                continue
            for chapter_index, chapter in enumerate(chapters):
                if not isinstance(chapter, dict) or not str(chapter.get("id", "")).strip():
                    errors.append(f"{prefix}.chapters[{chapter_index}].id is required")
                elif not str(chapter.get("completion_flag", "")).strip():
                    errors.append(f"{prefix}.chapters[{chapter_index}].completion_flag is required")
                elif not _is_str_list(chapter.get("node_ids", [])):
                    errors.append(f"{prefix}.chapters[{chapter_index}].node_ids must be a list of strings")

    voices = payload.get("voice_library", [])
    if not isinstance(voices, list):
        errors.append("payload.voice_library must be a list")
    else:
        for index, entry in enumerate(voices):
            prefix = f"voice_library[{index}]"
            if not isinstance(entry, dict):
                errors.append(f"{prefix} must be an object")
                continue
            if not str(entry.get("pattern", "")).strip():
                errors.append(f"{prefix}.pattern is required")
            if entry.get("trigger") not in _VOICE_TRIGGERS:
                errors.append(f"{prefix}.trigger must be one of {sorted(_VOICE_TRIGGERS)}")
            if entry.get("style", "whisper") not in _VOICE_STYLES:
                errors.append(f"{prefix}.style must be one of {sorted(_VOICE_STYLES)}")
            if not _is_str_list(entry.get("voices")) or not entry.get("voices"):
                errors.append(f"{prefix}.voices must be a non-empty list of strings")
            if not _is_int(entry.get("min_level", 0)):
                errors.append(f"{prefix}.min_level must be an integer")

    combos = payload.get("combos", [])
    if not isinstance(combos, list):
        errors.append("payload.combos must be a list")
    else:
        for index, combo in enumerate(combos):
            if not isinstance(combo, dict) or not str(combo.get("id", "")).strip():
                errors.append(f"combos[{index}].id is required")

    return errors


# ---------------------------------------------------------------------------
# Parsing (assumes a payload that passed validate_content_payload)
# ---------------------------------------------------------------------------


def _strings(value: Any) -> tuple[str, ...]:
    return tuple(str(item) for item in (value or ()))


def _int_map(value: Any) -> dict[str, int]:
    return {str(key): int(val) for key, val in (value or {}).items()}


def parse_condition(value: Mapping[str, Any] | None) -> StateCondition | None:
    if value is None:
        return None
    trust = value.get("trust") or {}
    return StateCondition(
        character_id=value.get("character_id"),
        trust_min=trust.get("min"),
        trust_max=trust.get("max"),
        relationship=_strings(value.get("relationship")),
        has_knowledge_flags=_strings(value.get("has_knowledge_flags")),
        lacks_knowledge_flags=_strings(value.get("lacks_knowledge_flags")),
        has_global_flags=_strings(value.get("has_global_flags")),
        lacks_global_flags=_strings(value.get("lacks_global_flags")),
        patterns={
            str(pattern): PatternRange(min=bounds.get("min"), max=bounds.get("max"))
            for pattern, bounds in (value.get("patterns") or {}).items()
        },
        mysteries={str(key): str(val) for key, val in (value.get("mysteries") or {}).items()},
        required_combos=_strings(value.get("required_combos")),
    )


def parse_change(value: Mapping[str, Any] | None) -> StateChange | None:
    if value is None:
        return None
    return StateChange(
        character_id=value.get("character_id"),
        trust_change=int(value.get("trust_change", 0)),
        set_relationship_status=value.get("set_relationship_status"),
        add_knowledge_flags=_strings(value.get("add_knowledge_flags")),
        remove_knowledge_flags=_strings(value.get("remove_knowledge_flags")),
        add_global_flags=_strings(value.get("add_global_flags")),
        remove_global_flags=_strings(value.get("remove_global_flags")),
        pattern_changes=_int_map(value.get("pattern_changes")),
        set_mysteries={str(key): str(val) for key, val in (value.get("set_mysteries") or {}).items()},
    )


def _parse_choice(row: Mapping[str, Any]) -> Choice:
    orb = row.get("required_orb_fill")
    return Choice(
        choice_id=str(row["choice_id"]),
        text=str(row["text"]),
        next_node_id=str(row["next_node_id"]),
        pattern=row.get("pattern"),
        consequence=parse_change(row.get("consequence")),
        visible_condition=parse_condition(row.get("visible_condition")),
        enabled_condition=parse_condition(row.get("enabled_condition")),
        required_orb_fill=OrbRequirement(pattern=str(orb["pattern"]), threshold=int(orb["threshold"])) if orb else None,
        skills=_strings(row.get("skills")),
        category=row.get("category"),
        preview=row.get("preview"),
    )


def _parse_node(row: Mapping[str, Any]) -> DialogueNode:
    node_id = str(row["node_id"])
    content = tuple(
        DialogueContent(
            text=str(variant["text"]),
            variation_id=str(variant.get("variation_id") or f"{node_id}_{index}"),
            emotion=variant.get("emotion"),
            condition=parse_condition(variant.get("condition")),
            pattern_reflections=tuple(
                PatternReflection(
                    pattern=str(reflection["pattern"]),
                    min_level=int(reflection["min_level"]),
                    alt_text=str(reflection["alt_text"]),
                    alt_emotion=reflection.get("alt_emotion"),
                )
                for reflection in variant.get("pattern_reflections", [])
            ),
        )
        for index, variant in enumerate(row["content"])
    )
    simulation = None
    if row.get("simulation"):
        sim = row["simulation"]
        context = sim["initial_context"]
        simulation = SimulationDescriptor(
            type=str(sim["type"]),
            title=str(sim["title"]),
            task_description=str(sim["task_description"]),
            initial_context=SimulationContext(
                label=str(context.get("label", "")),
                content=str(context.get("content", "")),
                display_style=str(context.get("display_style", "text")),
            ),
            success_feedback=str(sim.get("success_feedback", "")),
        )
    return DialogueNode(
        node_id=node_id,
        speaker=str(row.get("speaker", "")),
        content=content,
        choices=tuple(_parse_choice(choice) for choice in row.get("choices", [])),
        required_state=parse_condition(row.get("required_state")),
        on_enter=tuple(parse_change(change) for change in row.get("on_enter", [])),
        on_exit=tuple(parse_change(change) for change in row.get("on_exit", [])),
        tags=_strings(row.get("tags")),
        simulation=simulation,
        is_terminal=bool(row.get("is_terminal", False)),
    )


def _parse_depth(character_id: str, row: Mapping[str, Any]) -> CharacterDepthProfile:
    vulnerabilities = []
    for item in row.get("vulnerabilities", []):
        discovery = item.get("discovery") or {}
        reward = item["reward"]
        vulnerabilities.append(
            Vulnerability(
                id=str(item["id"]),
                name=str(item.get("name", item["id"])),
                description=str(item.get("description", "")),
                trigger_phrases=_strings(item["trigger_phrases"]),
                discovery=DiscoveryCondition(
                    trust_min=int(discovery.get("trust_min", 0)),
                    required_flags=_strings(discovery.get("required_flags")),
                    pattern_requirements=_int_map(discovery.get("pattern_requirements")),
                ),
                responses=VulnerabilityResponses(
                    early_trust=str(item["responses"]["early_trust"]),
                    mid_trust=str(item["responses"]["mid_trust"]),
                    high_trust=str(item["responses"]["high_trust"]),
                ),
                reward=VulnerabilityReward(
                    knowledge_flag=str(reward["knowledge_flag"]),
                    unlocked_dialogue_nodes=_strings(reward.get("unlocked_dialogue_nodes")),
                    trust_bonus=int(reward.get("trust_bonus", 0)),
                    thought_id=reward.get("thought_id"),
                ),
            )
        )
    strengths = []
    for item in row.get("strengths", []):
        reveal = item.get("reveal") or {}
        strengths.append(
            Strength(
                id=str(item["id"]),
                name=str(item.get("name", item["id"])),
                description=str(item.get("description", "")),
                reveal=RevealCondition(
                    trust_min=int(reveal.get("trust_min", 0)),
                    required_flags=_strings(reveal.get("required_flags")),
                ),
                help_dialogue=str(item.get("help_dialogue", "")),
                ability=item.get("ability"),
            )
        )
    arcs = []
    for item in row.get("growth_arcs", []):
        trigger = item.get("trigger") or {}
        result = item["result"]
        arcs.append(
            GrowthArc(
                id=str(item["id"]),
                name=str(item.get("name", item["id"])),
                vulnerability_id=str(item["vulnerability_id"]),
                strength_id=str(item["strength_id"]),
                trigger=GrowthTrigger(
                    trust_min=int(trigger.get("trust_min", 0)),
                    required_flags=_strings(trigger.get("required_flags")),
                ),
                transformation_lines=_strings(item.get("transformation_lines")),
                result=GrowthResult(
                    global_flags_set=_strings(result["global_flags_set"]),
                    new_dialogue_unlocked=_strings(result.get("new_dialogue_unlocked")),
                ),
            )
        )
    return CharacterDepthProfile(
        character_id=character_id,
        vulnerabilities=tuple(vulnerabilities),
        strengths=tuple(strengths),
        growth_arcs=tuple(arcs),
    )


def _parse_quest_condition(row: Mapping[str, Any] | None) -> QuestCondition:
    row = row or {}
    return QuestCondition(
        has_global_flags=_strings(row.get("has_global_flags")),
        has_knowledge_flags=_strings(row.get("has_knowledge_flags")),
        met_characters=_strings(row.get("met_characters")),
        min_trust=_int_map(row.get("min_trust")),
        min_patterns=_int_map(row.get("min_patterns")),
    )


def _parse_quest(row: Mapping[str, Any]) -> Quest:
    reward = row.get("reward")
    return Quest(
        id=str(row["id"]),
        title=str(row.get("title", row["id"])),
        description=str(row.get("description", "")),
        type=QuestType(row["type"]),
        character_id=row.get("character_id"),
        unlock_condition=_parse_quest_condition(row.get("unlock_condition")),
        complete_condition=_parse_quest_condition(row.get("complete_condition")),
        reward=QuestReward(description=str(reward.get("description", "")), unlocks=_strings(reward.get("unlocks")))
        if reward
        else None,
    )


def _parse_arc(row: Mapping[str, Any]) -> StoryArc:
    unlock = row.get("unlock_condition") or {}
    return StoryArc(
        id=str(row["id"]),
        title=str(row.get("title", row["id"])),
        description=str(row.get("description", "")),
        required_characters=_strings(row.get("required_characters")),
        chapters=tuple(
            StoryChapter(
                id=str(chapter["id"]),
                title=str(chapter.get("title", chapter["id"])),
                description=str(chapter.get("description", "")),
                node_ids=_strings(chapter.get("node_ids")),
                completion_flag=str(chapter["completion_flag"]),
                next_chapter_trigger=chapter.get("next_chapter_trigger"),
            )
            for chapter in row["chapters"]
        ),
        unlock_condition=ArcUnlockCondition(
            required_flags=_strings(unlock.get("required_flags")),
            min_trust=_int_map(unlock.get("min_trust")),
            min_patterns=_int_map(unlock.get("min_patterns")),
        ),
    )


def _parse_voice(row: Mapping[str, Any]) -> PatternVoiceEntry:
    condition = row.get("condition")
    trigger = VoiceTrigger(row["trigger"])
    character_key = (condition or {}).get("character_id") or "any"
    return PatternVoiceEntry(
        id=str(row.get("id") or f"{row['pattern']}-{trigger.value}-{character_key}"),
        pattern=str(row["pattern"]),
        min_level=int(row.get("min_level", 0)),
        trigger=trigger,
        voices=_strings(row["voices"]),
        style=VoiceStyle(row.get("style", "whisper")),
        condition=VoiceCondition(
            character_id=condition.get("character_id"),
            emotion=condition.get("emotion"),
            node_tag=condition.get("node_tag"),
        )
        if condition
        else None,
        cooldown_nodes=int(row.get("cooldown", DEFAULT_VOICE_COOLDOWN_NODES)),
        cooldown_seconds=float(row["cooldown_seconds"]) if row.get("cooldown_seconds") is not None else None,
    )


def parse_content(payload: Mapping[str, Any]) -> ContentPack:
    errors = validate_content_payload(payload)
    if errors:
        raise ContentValidationError(errors)

    graphs = {}
    for character_id, graph in payload["graphs"].items():
        nodes = {}
        for row in graph["nodes"]:
            node = _parse_node(row)
            nodes[node.node_id] = node
        graphs[str(character_id)] = DialogueGraph(
            character_id=str(character_id),
            start_node_id=str(graph["start_node_id"]),
            nodes=nodes,
            version=str(payload.get("version", "1")),
        )
    return ContentPack(
        graphs=graphs,
        depth_profiles={
            str(character_id): _parse_depth(str(character_id), row)
            for character_id, row in (payload.get("depth_profiles") or {}).items()
        },
        quests=tuple(_parse_quest(row) for row in payload.get("quests", [])),
        story_arcs=tuple(_parse_arc(row) for row in payload.get("story_arcs", [])),
        voice_library=tuple(_parse_voice(row) for row in payload.get("voice_library", [])),
        combos={
            str(row["id"]): PatternCombo(
                id=str(row["id"]),
                name=str(row.get("name", row["id"])),
                pattern_requirements=_int_map(row.get("pattern_requirements")),
                required_flags=_strings(row.get("required_flags")),
                description=str(row.get("description", "")),
            )
            for row in payload.get("combos", [])
        },
        mysteries={str(key): str(val) for key, val in (payload.get("mysteries") or {}).items()},
        version=str(payload.get("version", "1")),
    )


def validate_content_pack(pack: ContentPack) -> list[str]:
    """Cross-reference checks over a parsed pack; an empty list means loadable."""
    registry = GraphRegistry(pack.graphs)
    errors = registry.validate_integrity()
    for character_id, profile in pack.depth_profiles.items():
        if character_id not in pack.graphs:
            errors.append(f"depth_profiles.{character_id} has no dialogue graph")
        errors.extend(validate_depth_profile(profile))
        for vulnerability in profile.vulnerabilities:
            for node_id in vulnerability.reward.unlocked_dialogue_nodes:
                if registry.get_node(node_id) is None:
                    errors.append(
                        f"depth.{character_id}.vulnerabilities.{vulnerability.id} unlocks unknown node '{node_id}'"
                    )
    errors.extend(QuestService(pack.quests, pack.story_arcs).validate(registry.node_ids(), registry.characters()))
    for character_id, node in registry.iter_nodes():
        for choice in node.choices:
            for condition in (choice.visible_condition, choice.enabled_condition):
                for combo_id in condition.required_combos if condition is not None else ():
                    if combo_id not in pack.combos:
                        errors.append(
                            f"graphs.{character_id}.nodes.{node.node_id}.choices.{choice.choice_id} "
                            f"requires unknown combo '{combo_id}'"
                        )
    return errors


def load_content_file(path: str | Path | None = None) -> ContentPack:
    source = Path(path) if path is not None else default_content_path()
    payload = json.loads(source.read_text(encoding="utf-8"))
    pack = parse_content(payload)
    errors = validate_content_pack(pack)
    if errors:
        raise ContentValidationError(errors)
    return pack
