from __future__ import annotations

import logging
from typing import Mapping

from narrative.application.dtos import DiscoveryHint, GrowthArcMatch, VulnerabilityMatch
from narrative.domain.models.depth import CharacterDepthProfile, Strength, Vulnerability, trust_band
from narrative.domain.models.state import PlayerState


logger = logging.getLogger(__name__)

DISCOVERY_HINT_TRUST_WINDOW = 2


def _matched_phrase(vulnerability: Vulnerability, text: str) -> str | None:
    lowered = str(text or "").lower()
    for phrase in vulnerability.trigger_phrases:
        if phrase and phrase.lower() in lowered:
            return phrase
    return None


def _discovery_met(vulnerability: Vulnerability, state: PlayerState, character_id: str) -> bool:
    row = state.character(character_id)
    if row is None:
        return False
    discovery = vulnerability.discovery
    if row.trust < discovery.trust_min:
        return False
    if any(flag not in row.knowledge_flags for flag in discovery.required_flags):
        return False
    for pattern, minimum in discovery.pattern_requirements.items():
        if state.pattern(pattern) < int(minimum):
            return False
    return True


def match_vulnerability(profile: CharacterDepthProfile, text: str, state: PlayerState) -> VulnerabilityMatch | None:
    """First vulnerability whose trigger phrase appears in ``text`` and whose discovery holds."""
    for vulnerability in profile.vulnerabilities:
        phrase = _matched_phrase(vulnerability, text)
        if phrase is None:
            continue
        if not _discovery_met(vulnerability, state, profile.character_id):
            continue
        band = trust_band(state.trust_for(profile.character_id))
        return VulnerabilityMatch(
            character_id=profile.character_id,
            vulnerability=vulnerability,
            band=band,
            response=vulnerability.responses.for_band(band),
            matched_phrase=phrase,
        )
    return None


def is_vulnerability_discovered(vulnerability: Vulnerability, state: PlayerState, character_id: str) -> bool:
    row = state.character(character_id)
    return row is not None and vulnerability.reward.knowledge_flag in row.knowledge_flags


def available_strengths(profile: CharacterDepthProfile, state: PlayerState) -> list[Strength]:
    row = state.character(profile.character_id)
    if row is None:
        return []
    revealed: list[Strength] = []
    for strength in profile.strengths:
        if row.trust < strength.reveal.trust_min:
            continue
        if any(flag not in row.knowledge_flags for flag in strength.reveal.required_flags):
            continue
        revealed.append(strength)
    return revealed


def discovery_hints(profile: CharacterDepthProfile, state: PlayerState) -> list[DiscoveryHint]:
    trust = state.trust_for(profile.character_id)
    hints: list[DiscoveryHint] = []
    for vulnerability in profile.vulnerabilities:
        if is_vulnerability_discovered(vulnerability, state, profile.character_id):
            continue
        gap = vulnerability.discovery.trust_min - trust
        if 0 < gap <= DISCOVERY_HINT_TRUST_WINDOW:
            hints.append(
                DiscoveryHint(
                    vulnerability_id=vulnerability.id,
                    vulnerability_name=vulnerability.name,
                    trust_gap=gap,
                )
            )
    return hints


def check_growth_arc(profile: CharacterDepthProfile, state: PlayerState) -> GrowthArcMatch | None:
    """Return at most one growth arc, scanning in authored order.

    Arcs whose result flags are already present never fire again. Required
    flags may be satisfied by a global flag or by the character's own
    knowledge flags.
    """
    row = state.character(profile.character_id)
    trust = row.trust if row is not None else 0
    known = set(state.global_flags) | set(row.knowledge_flags if row is not None else ())

    for arc in profile.growth_arcs:
        if any(flag in state.global_flags for flag in arc.result.global_flags_set):
            continue
        if trust < arc.trigger.trust_min:
            continue
        if any(flag not in known for flag in arc.trigger.required_flags):
            continue
        vulnerability = profile.vulnerability(arc.vulnerability_id)
        strength = profile.strength(arc.strength_id)
        if vulnerability is None or strength is None:
            logger.error(
                "Growth arc references undefined depth entries",
                extra={"character_id": profile.character_id, "arc_id": arc.id},
            )
            continue
        return GrowthArcMatch(
            character_id=profile.character_id,
            arc=arc,
            vulnerability=vulnerability,
            strength=strength,
        )
    return None


def validate_depth_profile(profile: CharacterDepthProfile) -> list[str]:
    errors: list[str] = []
    prefix = f"depth.{profile.character_id}"
    seen: set[str] = set()
    for vulnerability in profile.vulnerabilities:
        if vulnerability.id in seen:
            errors.append(f"{prefix}.vulnerabilities.{vulnerability.id} is duplicated")
        seen.add(vulnerability.id)
        if not vulnerability.trigger_phrases:
            errors.append(f"{prefix}.vulnerabilities.{vulnerability.id}.trigger_phrases must not be empty")
    for arc in profile.growth_arcs:
        if profile.vulnerability(arc.vulnerability_id) is None:
            errors.append(f"{prefix}.growth_arcs.{arc.id}.vulnerability_id references unknown '{arc.vulnerability_id}'")
        if profile.strength(arc.strength_id) is None:
            errors.append(f"{prefix}.growth_arcs.{arc.id}.strength_id references unknown '{arc.strength_id}'")
        if not arc.result.global_flags_set:
            errors.append(f"{prefix}.growth_arcs.{arc.id}.result.global_flags_set must not be empty")
    return errors


class DepthMatcher:
    """Profile lookup wrapper used by the engine facade."""

    def __init__(self, profiles: Mapping[str, CharacterDepthProfile] | None = None) -> None:
        self._profiles = dict(profiles or {})

    def profile(self, character_id: str | None) -> CharacterDepthProfile | None:
        if not character_id:
            return None
        return self._profiles.get(character_id)

    def match_vulnerability(self, character_id: str | None, text: str, state: PlayerState) -> VulnerabilityMatch | None:
        profile = self.profile(character_id)
        return match_vulnerability(profile, text, state) if profile is not None else None

    def check_growth_arc(self, character_id: str | None, state: PlayerState) -> GrowthArcMatch | None:
        profile = self.profile(character_id)
        return check_growth_arc(profile, state) if profile is not None else None

    def validate(self) -> list[str]:
        errors: list[str] = []
        for profile in self._profiles.values():
            errors.extend(validate_depth_profile(profile))
        return errors
