from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


DEFAULT_VOICE_COOLDOWN_NODES = 5


class VoiceTrigger(str, Enum):
    NODE_ENTER = "node_enter"
    BEFORE_CHOICES = "before_choices"
    NPC_EMOTION = "npc_emotion"


class VoiceStyle(str, Enum):
    WHISPER = "whisper"
    SPEAK = "speak"
    URGE = "urge"
    COMMAND = "command"
    OBSERVATION = "observation"


class VoiceStage(str, Enum):
    DORMANT = "dormant"
    WHISPER = "whisper"
    SPEAK = "speak"
    COMMAND = "command"


# Minimum pattern score for each stage, highest first.
VOICE_STAGE_THRESHOLDS: tuple[tuple[VoiceStage, int], ...] = (
    (VoiceStage.COMMAND, 9),
    (VoiceStage.SPEAK, 6),
    (VoiceStage.WHISPER, 3),
)


def voice_stage(level: int) -> VoiceStage:
    for stage, threshold in VOICE_STAGE_THRESHOLDS:
        if int(level) >= threshold:
            return stage
    return VoiceStage.DORMANT


@dataclass(frozen=True)
class VoiceCondition:
    character_id: str | None = None
    emotion: str | None = None
    node_tag: str | None = None


@dataclass(frozen=True)
class PatternVoiceEntry:
    id: str
    pattern: str
    min_level: int
    trigger: VoiceTrigger
    voices: tuple[str, ...]
    style: VoiceStyle = VoiceStyle.WHISPER
    condition: VoiceCondition | None = None
    cooldown_nodes: int = DEFAULT_VOICE_COOLDOWN_NODES
    cooldown_seconds: float | None = None


@dataclass(frozen=True)
class VoiceContext:
    trigger: VoiceTrigger
    node_id: str
    character_id: str | None = None
    emotion: str | None = None
    node_tags: tuple[str, ...] = ()


class VoiceTone(str, Enum):
    WHISPER = "whisper"
    SPEAK = "speak"
    URGE = "urge"
    COMMAND = "command"


# Minimum trust with the current character for each tone, highest first.
TRUST_TONE_THRESHOLDS: tuple[tuple[VoiceTone, int], ...] = (
    (VoiceTone.COMMAND, 10),
    (VoiceTone.URGE, 6),
    (VoiceTone.SPEAK, 4),
)

# Trust used when no character is in scope.
NEUTRAL_TONE_TRUST = 5


@dataclass(frozen=True)
class ToneModifier:
    prefix: str
    suffix: str
    intensity: float


TONE_MODIFIERS: dict[VoiceTone, ToneModifier] = {
    VoiceTone.WHISPER: ToneModifier(prefix="*barely audible*", suffix="", intensity=0.3),
    VoiceTone.SPEAK: ToneModifier(prefix="", suffix="", intensity=0.6),
    VoiceTone.URGE: ToneModifier(prefix="", suffix="Listen.", intensity=0.85),
    VoiceTone.COMMAND: ToneModifier(prefix="*with certainty*", suffix="", intensity=1.0),
}


def voice_tone_for_trust(trust: int) -> VoiceTone:
    for tone, threshold in TRUST_TONE_THRESHOLDS:
        if int(trust) >= threshold:
            return tone
    return VoiceTone.WHISPER


def format_voice_line(pattern: str, text: str, tone: VoiceTone) -> str:
    modifier = TONE_MODIFIERS[tone]
    parts = (modifier.prefix, f"[{pattern.upper()}]", text, modifier.suffix)
    return " ".join(part for part in parts if part).strip()


@dataclass(frozen=True)
class VoiceLine:
    entry_id: str
    pattern: str
    text: str
    style: VoiceStyle
    tone: VoiceTone = VoiceTone.SPEAK
    intensity: float = TONE_MODIFIERS[VoiceTone.SPEAK].intensity
    display_text: str = ""


@dataclass(frozen=True)
class ConflictVoice:
    pattern: str
    argument: str
    tone: str


@dataclass(frozen=True)
class VoiceConflict:
    """Two strong patterns arguing over the same moment."""

    id: str
    situation: str
    voices: tuple[ConflictVoice, ...]


# Both patterns must reach this score before their voices argue.
VOICE_CONFLICT_MIN_LEVEL = 6

DEFAULT_VOICE_CONFLICTS: tuple[VoiceConflict, ...] = (
    VoiceConflict(
        id="help_or_analyze",
        situation="Someone is struggling, but something feels off about their story.",
        voices=(
            ConflictVoice("helping", "They need you now. Trust can come later.", "urging"),
            ConflictVoice("analytical", "Wait. The details don't add up. Look closer.", "warning"),
        ),
    ),
    VoiceConflict(
        id="wait_or_build",
        situation="A problem has a quick fix, but the real issue runs deeper.",
        voices=(
            ConflictVoice("building", "Fix it now. Ships don't sail while you theorize.", "urging"),
            ConflictVoice("patience", "A patch over rot. The foundation matters more than speed.", "questioning"),
        ),
    ),
    VoiceConflict(
        id="explore_or_patience",
        situation="A door opens, but your companion isn't ready.",
        voices=(
            ConflictVoice("exploring", "The door won't stay open. Discovery waits for no one.", "urging"),
            ConflictVoice("patience", "What good is finding something if you lose someone?", "questioning"),
        ),
    ),
    VoiceConflict(
        id="analyze_or_help_crisis",
        situation="In crisis, someone asks for help, but the data suggests they're wrong.",
        voices=(
            ConflictVoice("analytical", "The numbers are clear. Helping them do the wrong thing isn't help.", "warning"),
            ConflictVoice("helping", "Being right means nothing if they feel abandoned.", "suggesting"),
        ),
    ),
    VoiceConflict(
        id="build_or_explore",
        situation="Your project is almost done, but you've glimpsed something that changes everything.",
        voices=(
            ConflictVoice("building", "Finish what you started. Perfect is the enemy of done.", "urging"),
            ConflictVoice("exploring", "What if \"done\" is the wrong thing? The new path calls.", "questioning"),
        ),
    ),
)
