from __future__ import annotations

import random
import time
from typing import Callable, Sequence

from narrative.application.services.seed_policy import VOICE_LINE_NAMESPACE, derive_rng
from narrative.domain.models.state import PlayerState
from narrative.domain.models.voice import (
    DEFAULT_VOICE_CONFLICTS,
    NEUTRAL_TONE_TRUST,
    TONE_MODIFIERS,
    VOICE_CONFLICT_MIN_LEVEL,
    PatternVoiceEntry,
    VoiceConflict,
    VoiceContext,
    VoiceLine,
    VoiceStyle,
    VoiceTone,
    format_voice_line,
    voice_tone_for_trust,
)


DEFAULT_GLOBAL_COOLDOWN_NODES = 3


class VoiceCooldownTracker:
    """Last-fired bookkeeping for voice entries, measured in node entries and seconds."""

    def __init__(
        self,
        *,
        global_cooldown_nodes: int = DEFAULT_GLOBAL_COOLDOWN_NODES,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.global_cooldown_nodes = max(0, int(global_cooldown_nodes))
        self._clock = clock
        self.node_entry_count = 0
        self._fired_at_entry: dict[str, int] = {}
        self._fired_at_time: dict[str, float] = {}
        self._last_any_entry: int | None = None
        self.shown_conflicts: set[str] = set()

    def advance(self) -> int:
        self.node_entry_count += 1
        return self.node_entry_count

    def is_cooling(self, entry: PatternVoiceEntry) -> bool:
        fired_entry = self._fired_at_entry.get(entry.id)
        if fired_entry is not None and self.node_entry_count - fired_entry < max(0, int(entry.cooldown_nodes)):
            return True
        fired_time = self._fired_at_time.get(entry.id)
        if fired_time is not None and entry.cooldown_seconds is not None:
            return self._clock() - fired_time < float(entry.cooldown_seconds)
        return False

    def globally_blocked(self) -> bool:
        if self._last_any_entry is None:
            return False
        return self.node_entry_count - self._last_any_entry < self.global_cooldown_nodes

    def record(self, entry: PatternVoiceEntry) -> None:
        self._fired_at_entry[entry.id] = self.node_entry_count
        self._fired_at_time[entry.id] = self._clock()
        self._last_any_entry = self.node_entry_count

    def last_fired(self, entry_id: str) -> int | None:
        return self._fired_at_entry.get(entry_id)


def _matches_context(entry: PatternVoiceEntry, context: VoiceContext) -> bool:
    if entry.trigger != context.trigger:
        return False
    condition = entry.condition
    if condition is None:
        return True
    if condition.emotion and condition.emotion != context.emotion:
        return False
    if condition.character_id and condition.character_id != context.character_id:
        return False
    if condition.node_tag and condition.node_tag not in context.node_tags:
        return False
    return True


class PatternVoiceSelector:
    def __init__(
        self,
        library: Sequence[PatternVoiceEntry] = (),
        *,
        conflicts: Sequence[VoiceConflict] = DEFAULT_VOICE_CONFLICTS,
        conflict_min_level: int = VOICE_CONFLICT_MIN_LEVEL,
    ) -> None:
        self._library = tuple(entry for entry in library if entry.voices)
        self._conflicts = tuple(conflicts)
        self._conflict_min_level = int(conflict_min_level)

    @property
    def library(self) -> tuple[PatternVoiceEntry, ...]:
        return self._library

    def candidates(
        self,
        context: VoiceContext,
        state: PlayerState,
        tracker: VoiceCooldownTracker,
    ) -> list[PatternVoiceEntry]:
        return [
            entry
            for entry in self._library
            if state.pattern(entry.pattern) >= int(entry.min_level)
            and _matches_context(entry, context)
            and not tracker.is_cooling(entry)
        ]

    def select(
        self,
        context: VoiceContext,
        state: PlayerState,
        tracker: VoiceCooldownTracker,
        *,
        rng: random.Random | None = None,
    ) -> VoiceLine | None:
        if tracker.globally_blocked():
            return None
        eligible = self.candidates(context, state, tracker)
        if not eligible:
            return None

        # Strongest pattern speaks; library order breaks ties.
        entry = max(eligible, key=lambda row: state.pattern(row.pattern))
        picker = rng or derive_rng(
            VOICE_LINE_NAMESPACE,
            {
                "player_id": state.player_id,
                "node_id": context.node_id,
                "entry_id": entry.id,
                "node_entry": tracker.node_entry_count,
            },
        )
        text = picker.choice(entry.voices)
        tracker.record(entry)

        trust = state.trust_for(context.character_id) if context.character_id else NEUTRAL_TONE_TRUST
        tone = voice_tone_for_trust(trust)
        # Extreme trust overrides the authored style; otherwise it is kept.
        style = entry.style
        if tone == VoiceTone.WHISPER:
            style = VoiceStyle.WHISPER
        elif tone == VoiceTone.COMMAND:
            style = VoiceStyle.COMMAND
        return VoiceLine(
            entry_id=entry.id,
            pattern=entry.pattern,
            text=text,
            style=style,
            tone=tone,
            intensity=TONE_MODIFIERS[tone].intensity,
            display_text=format_voice_line(entry.pattern, text, tone),
        )

    def check_conflict(self, state: PlayerState, tracker: VoiceCooldownTracker) -> VoiceConflict | None:
        """First unshown conflict whose patterns all reach the minimum; each fires once per session."""
        for conflict in self._conflicts:
            if conflict.id in tracker.shown_conflicts:
                continue
            if all(state.pattern(voice.pattern) >= self._conflict_min_level for voice in conflict.voices):
                tracker.shown_conflicts.add(conflict.id)
                return conflict
        return None
