from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Iterable, Mapping

from narrative.domain.models.condition import PatternCombo
from narrative.domain.models.dialogue import DialogueContent, DialogueNode, PatternReflection
from narrative.domain.models.state import PlayerState
from narrative.domain.services.condition_evaluator import evaluate


@dataclass(frozen=True)
class SelectedContent:
    text: str
    emotion: str | None
    variation_id: str
    reflected_pattern: str | None = None


def matching_reflection(content: DialogueContent, state: PlayerState) -> PatternReflection | None:
    for reflection in content.pattern_reflections:
        if state.pattern(reflection.pattern) >= int(reflection.min_level):
            return reflection
    return None


def select_content(
    node: DialogueNode,
    state: PlayerState,
    rng: random.Random,
    *,
    shown_variations: Iterable[str] = (),
    combos: Mapping[str, PatternCombo] | None = None,
) -> SelectedContent:
    eligible = [
        content
        for content in node.content
        if evaluate(content.condition, state, character_id=state.current_character_id, combos=combos)
    ] or list(node.content[:1])
    if not eligible:
        return SelectedContent(text="", emotion=None, variation_id="")

    seen = set(shown_variations)
    fresh = [content for content in eligible if content.variation_id not in seen]
    content = rng.choice(fresh or eligible)

    reflection = matching_reflection(content, state)
    if reflection is None:
        return SelectedContent(text=content.text, emotion=content.emotion, variation_id=content.variation_id)
    return SelectedContent(
        text=reflection.alt_text,
        emotion=reflection.alt_emotion or content.emotion,
        variation_id=content.variation_id,
        reflected_pattern=reflection.pattern,
    )
