from __future__ import annotations

import json
import logging
import math
from datetime import datetime, timezone
from typing import Any, Callable, Mapping

from narrative.domain.errors import SnapshotCorruptError
from narrative.domain.models.state import (
    PATTERN_IDS,
    TRUST_MAX,
    TRUST_MIN,
    CharacterState,
    PlayerState,
    RelationshipStatus,
    clamp_pattern,
    clamp_trust,
)


logger = logging.getLogger(__name__)

SNAPSHOT_SCHEMA_VERSION = 1
_RELATIONSHIPS = {row.value for row in RelationshipStatus}


def serialize_state(state: PlayerState) -> dict[str, Any]:
    return {
        "schema_version": SNAPSHOT_SCHEMA_VERSION,
        "player_id": state.player_id,
        "saved_at": datetime.now(timezone.utc).isoformat(),
        "state": {
            "patterns": {pattern: state.pattern(pattern) for pattern in PATTERN_IDS},
            "global_flags": sorted(state.global_flags),
            "characters": {
                character_id: {
                    "trust": row.trust,
                    "knowledge_flags": sorted(row.knowledge_flags),
                    "relationship_status": row.relationship_status.value,
                    "conversation_history": list(row.conversation_history),
                }
                for character_id, row in sorted(state.characters.items())
            },
            "mysteries": dict(sorted(state.mysteries.items())),
            "current_node_id": state.current_node_id,
            "current_character_id": state.current_character_id,
            "visited_nodes": list(state.visited_nodes),
        },
    }


def dumps_snapshot(state: PlayerState) -> str:
    return json.dumps(serialize_state(state), sort_keys=True, separators=(",", ":"))


def _is_str_list(value: object) -> bool:
    return isinstance(value, list) and all(isinstance(item, str) for item in value)


def _is_number(value: object) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def validate_snapshot(document: object) -> list[str]:
    if not isinstance(document, dict):
        return ["snapshot must be an object"]
    version = document.get("schema_version")
    if version != SNAPSHOT_SCHEMA_VERSION:
        return [f"schema_version {version!r} does not match {SNAPSHOT_SCHEMA_VERSION}"]

    errors: list[str] = []
    if not isinstance(document.get("player_id"), str):
        errors.append("player_id must be a string")
    state = document.get("state")
    if not isinstance(state, dict):
        return errors + ["state must be an object"]

    patterns = state.get("patterns")
    if not isinstance(patterns, dict):
        errors.append("state.patterns must be an object")
    else:
        for pattern, value in patterns.items():
            if pattern not in PATTERN_IDS:
                errors.append(f"state.patterns.{pattern} is not a known pattern")
            elif not _is_number(value):
                errors.append(f"state.patterns.{pattern} must be a number")

    if not _is_str_list(state.get("global_flags")):
        errors.append("state.global_flags must be a list of strings")

    characters = state.get("characters")
    if not isinstance(characters, dict):
        errors.append("state.characters must be an object")
    else:
        for character_id, row in characters.items():
            prefix = f"state.characters.{character_id}"
            if not isinstance(row, dict):
                errors.append(f"{prefix} must be an object")
                continue
            if not _is_number(row.get("trust")):
                errors.append(f"{prefix}.trust must be a number")
            if not _is_str_list(row.get("knowledge_flags")):
                errors.append(f"{prefix}.knowledge_flags must be a list of strings")
            status = row.get("relationship_status", RelationshipStatus.STRANGER.value)
            if not isinstance(status, str) or status not in _RELATIONSHIPS:
                errors.append(f"{prefix}.relationship_status is not a known status")
            if not _is_str_list(row.get("conversation_history", [])):
                errors.append(f"{prefix}.conversation_history must be a list of strings")

    mysteries = state.get("mysteries", {})
    if not isinstance(mysteries, dict) or not all(isinstance(value, str) for value in mysteries.values()):
        errors.append("state.mysteries must map names to strings")
    for key in ("current_node_id", "current_character_id"):
        if not isinstance(state.get(key), str):
            errors.append(f"state.{key} must be a string")
    if not _is_str_list(state.get("visited_nodes", [])):
        errors.append("state.visited_nodes must be a list of strings")
    return errors


def deserialize_state(document: Mapping[str, Any]) -> PlayerState:
    errors = validate_snapshot(document)
    if errors:
        raise SnapshotCorruptError(errors)

    player_id = str(document["player_id"])
    body = document["state"]
    patterns: dict[str, int] = {pattern: 0 for pattern in PATTERN_IDS}
    for pattern, value in body["patterns"].items():
        score = int(value)
        if score != clamp_pattern(score):
            logger.warning(
                "Clamped out-of-range pattern score from snapshot",
                extra={"player_id": player_id, "pattern": pattern, "value": value},
            )
        patterns[pattern] = clamp_pattern(score)

    characters: dict[str, CharacterState] = {}
    for character_id, row in body["characters"].items():
        trust = int(row["trust"])
        if not TRUST_MIN <= trust <= TRUST_MAX:
            logger.warning(
                "Clamped out-of-range trust from snapshot",
                extra={"player_id": player_id, "character_id": character_id, "value": row["trust"]},
            )
        characters[str(character_id)] = CharacterState(
            character_id=str(character_id),
            trust=clamp_trust(trust),
            knowledge_flags=frozenset(row["knowledge_flags"]),
            relationship_status=RelationshipStatus(row.get("relationship_status", RelationshipStatus.STRANGER.value)),
            conversation_history=tuple(row.get("conversation_history", [])),
        )

    return PlayerState(
        player_id=player_id,
        patterns=patterns,
        global_flags=frozenset(body["global_flags"]),
        characters=characters,
        mysteries=dict(body.get("mysteries", {})),
        current_node_id=body["current_node_id"],
        current_character_id=body["current_character_id"],
        visited_nodes=tuple(body.get("visited_nodes", [])),
    )


def load_snapshot(
    raw: str | None,
    *,
    player_id: str,
    default_factory: Callable[[], PlayerState],
) -> tuple[PlayerState, bool]:
    """Decode a stored snapshot, falling back to a fresh state when it cannot be trusted.

    Returns the state and whether it was restored from the snapshot.
    """
    if raw is None:
        return default_factory(), False
    try:
        document = json.loads(raw)
        state = deserialize_state(document)
    except (ValueError, TypeError, KeyError, SnapshotCorruptError) as exc:
        # json.JSONDecodeError is a ValueError.
        logger.warning(
            "Discarding unreadable player snapshot",
            extra={"player_id": player_id, "reason": str(exc)},
        )
        return default_factory(), False
    if state.player_id != player_id:
        logger.warning(
            "Discarding snapshot stored for another player",
            extra={"player_id": player_id, "snapshot_player_id": state.player_id},
        )
        return default_factory(), False
    return state, True
