from __future__ import annotations

import logging
import threading
import time
import uuid
from dataclasses import dataclass, field, replace
from typing import Callable, Mapping

from narrative.application.dtos import ChoiceOutcome, NodeView, ResolvedChoiceSet
from narrative.application.services.choice_resolver import (
    DEFAULT_GROUPING_THRESHOLD,
    ORDERING_GRAVITY_SHUFFLE,
    ChoiceResolver,
)
from narrative.application.services.consequence_applier import ConsequenceApplier, apply_change
from narrative.application.services.content_selector import select_content
from narrative.application.services.depth_matcher import DepthMatcher
from narrative.application.services.event_bus import EventBus
from narrative.application.services.pattern_voice_selector import (
    DEFAULT_GLOBAL_COOLDOWN_NODES,
    PatternVoiceSelector,
    VoiceCooldownTracker,
)
from narrative.application.services.quest_service import QuestService
from narrative.application.services.seed_policy import CONTENT_VARIANT_NAMESPACE, derive_rng
from narrative.domain.errors import NarrativeIntegrityError, StaleChoiceError
from narrative.domain.events import (
    ChoicePresented,
    ChoiceSelectedUi,
    GrowthArcTriggered,
    NodeEntered,
    PlayerReset,
    PresentedChoice,
    VulnerabilityDiscovered,
)
from narrative.domain.models.condition import PatternCombo
from narrative.domain.models.quest import QuestWithStatus, StoryArc
from narrative.domain.models.state import PlayerState, create_default_state
from narrative.domain.models.voice import VoiceContext, VoiceLine, VoiceTrigger
from narrative.domain.repositories import GraphLookup, PlayerSnapshotStore


PAUSE_TEXT = "The story pauses. Something here isn't quite finished yet."


@dataclass
class _Session:
    state: PlayerState
    tracker: VoiceCooldownTracker
    lock: threading.Lock = field(default_factory=threading.Lock)
    view: NodeView | None = None
    presented: ResolvedChoiceSet | None = None
    presented_event_id: str | None = None
    presented_at: float = 0.0
    shown_variations: set[str] = field(default_factory=set)
    last_action_id: str | None = None
    last_outcome: ChoiceOutcome | None = None


class NarrativeEngine:
    """Drives one or more player sessions through the dialogue graph.

    All state transitions for a player happen under that player's lock and
    flow through the consequence applier. Telemetry and persistence are side
    channels: their failures are logged and never reach the caller.
    """

    def __init__(
        self,
        graph: GraphLookup,
        snapshot_store: PlayerSnapshotStore,
        *,
        event_bus: EventBus | None = None,
        depth_matcher: DepthMatcher | None = None,
        quest_service: QuestService | None = None,
        voice_selector: PatternVoiceSelector | None = None,
        combos: Mapping[str, PatternCombo] | None = None,
        default_mysteries: Mapping[str, str] | None = None,
        start_character_id: str | None = None,
        strict_integrity: bool = False,
        enforce_required_state: bool = False,
        ordering_variant: str = ORDERING_GRAVITY_SHUFFLE,
        grouping_threshold: int = DEFAULT_GROUPING_THRESHOLD,
        voice_global_cooldown: int = DEFAULT_GLOBAL_COOLDOWN_NODES,
        clock: Callable[[], float] = time.time,
        id_factory: Callable[[], str] = lambda: uuid.uuid4().hex,
    ) -> None:
        self._graph = graph
        self._store = snapshot_store
        self._event_bus = event_bus or EventBus()
        self._depth = depth_matcher or DepthMatcher()
        self._quests = quest_service or QuestService()
        self._voices = voice_selector or PatternVoiceSelector()
        self._combos = dict(combos or {})
        self._default_mysteries = dict(default_mysteries or {})
        self._strict = bool(strict_integrity)
        self._resolver = ChoiceResolver(
            combos=self._combos,
            ordering_variant=ordering_variant,
            grouping_threshold=grouping_threshold,
        )
        self._applier = ConsequenceApplier(
            graph,
            combos=self._combos,
            enforce_required_state=enforce_required_state,
        )
        entry_points = graph.entry_points()
        if start_character_id and start_character_id not in entry_points:
            raise ValueError(f"Unknown start character: {start_character_id}")
        self._start_character_id = start_character_id or next(iter(entry_points), "")
        self._voice_global_cooldown = int(voice_global_cooldown)
        self._clock = clock
        self._id_factory = id_factory
        self._sessions: dict[str, _Session] = {}
        self._sessions_lock = threading.Lock()
        self._logger = logging.getLogger(__name__)

    @property
    def event_bus(self) -> EventBus:
        return self._event_bus

    @property
    def quest_service(self) -> QuestService:
        return self._quests

    # -- session lifecycle -------------------------------------------------

    def start(self, player_id: str) -> NodeView:
        session = self._session(player_id)
        with session.lock:
            if session.view is None:
                session.view = self._render(session)
            return session.view

    def reset(self, player_id: str) -> NodeView:
        try:
            self._store.discard(player_id)
        except Exception:
            self._logger.exception("Snapshot discard failed", extra={"player_id": player_id})
        with self._sessions_lock:
            self._sessions.pop(player_id, None)
        self._event_bus.publish(PlayerReset(player_id=player_id))
        return self.start(player_id)

    def get_state(self, player_id: str) -> PlayerState:
        return self._session(player_id).state

    def current_view(self, player_id: str) -> NodeView:
        return self.start(player_id)

    def _session(self, player_id: str) -> _Session:
        with self._sessions_lock:
            session = self._sessions.get(player_id)
        if session is not None:
            return session
        # Repository reads stay outside the registry lock; the first insert wins a race.
        loaded = _Session(
            state=self._load_state(player_id),
            tracker=VoiceCooldownTracker(global_cooldown_nodes=self._voice_global_cooldown),
        )
        with self._sessions_lock:
            return self._sessions.setdefault(player_id, loaded)

    def _fresh_state(self, player_id: str) -> PlayerState:
        entry = self._graph.entry_points().get(self._start_character_id, "")
        state = create_default_state(
            player_id,
            character_ids=self._graph.entry_points().keys(),
            start_character_id=self._start_character_id,
            mysteries=self._default_mysteries,
        )
        node = self._graph.get_node(entry)
        if node is None:
            raise NarrativeIntegrityError(
                f"Entry node '{entry}' does not exist",
                node_id=entry,
                character_id=self._start_character_id,
            )
        return self._applier.enter(node, state)

    def _load_state(self, player_id: str) -> PlayerState:
        state, restored = self._store.load_state(player_id, lambda: self._fresh_state(player_id))
        if restored and self._graph.get_node(state.current_node_id) is None:
            self._logger.warning(
                "Snapshot points at an unknown node; starting over",
                extra={"player_id": player_id, "node_id": state.current_node_id},
            )
            return self._fresh_state(player_id)
        return state

    # -- choice handling ---------------------------------------------------

    def select_choice(
        self,
        player_id: str,
        choice_id: str,
        *,
        action_id: str | None = None,
        reaction_time_ms: int | None = None,
    ) -> ChoiceOutcome:
        session = self._session(player_id)
        with session.lock:
            if action_id is not None and action_id == session.last_action_id and session.last_outcome is not None:
                return replace(session.last_outcome, replayed=True)

            presented = session.presented
            resolved = presented.get(choice_id) if presented is not None else None
            if resolved is None or not resolved.selectable:
                raise StaleChoiceError(choice_id, session.state.current_node_id)

            if reaction_time_ms is None and session.presented_at:
                reaction_time_ms = max(0, int((self._clock() - session.presented_at) * 1000))
            self._event_bus.publish(
                ChoiceSelectedUi(
                    event_id=self._id_factory(),
                    presented_event_id=session.presented_event_id or "",
                    player_id=player_id,
                    node_id=presented.node_id,
                    choice_id=choice_id,
                    selected_index=presented.index_of(choice_id),
                    reaction_time_ms=reaction_time_ms,
                    occurred_at=self._clock(),
                )
            )

            before = session.state
            acting_character = before.current_character_id
            try:
                applied = self._applier.apply(resolved.choice, before)
            except NarrativeIntegrityError as exc:
                view = self._pause(session, exc)
                return ChoiceOutcome(view=view, state=session.state)

            state = applied.next_state
            vulnerability = self._depth.match_vulnerability(acting_character, resolved.choice.text, state)
            if vulnerability is not None:
                row = state.character(acting_character)
                if row is None or vulnerability.vulnerability.reward.knowledge_flag not in row.knowledge_flags:
                    state = apply_change(vulnerability.reward_change(), state)
                    self._event_bus.publish(
                        VulnerabilityDiscovered(
                            player_id=player_id,
                            character_id=acting_character,
                            vulnerability_id=vulnerability.vulnerability.id,
                            knowledge_flag=vulnerability.vulnerability.reward.knowledge_flag,
                        )
                    )

            growth = self._depth.check_growth_arc(acting_character, state)
            if growth is not None:
                state = apply_change(growth.result_change(), state)
                self._event_bus.publish(
                    GrowthArcTriggered(
                        player_id=player_id,
                        character_id=acting_character,
                        arc_id=growth.arc.id,
                        flags_set=tuple(growth.arc.result.global_flags_set),
                    )
                )

            session.state = state
            self._persist(state)
            view = self._render(session)
            outcome = ChoiceOutcome(
                view=view,
                state=state,
                trust_delta=state.trust_for(acting_character) - before.trust_for(acting_character)
                if acting_character
                else 0,
                vulnerability=vulnerability,
                growth_arc=growth,
                quest_updates=self._quests.diff_statuses(before, state),
            )
            if action_id is not None:
                session.last_action_id = action_id
                session.last_outcome = outcome
            return outcome

    # -- read API ----------------------------------------------------------

    def get_quests_with_status(self, player_id: str) -> list[QuestWithStatus]:
        return self._quests.get_quests_with_status(self.get_state(player_id))

    def get_arc_by_id(self, arc_id: str) -> StoryArc | None:
        return self._quests.get_arc_by_id(arc_id)

    # -- internals ---------------------------------------------------------

    def _persist(self, state: PlayerState) -> None:
        try:
            self._store.save_state(state)
        except Exception:
            self._logger.exception(
                "Snapshot write failed; continuing without persistence",
                extra={"player_id": state.player_id, "node_id": state.current_node_id},
            )

    def _pause(self, session: _Session, exc: NarrativeIntegrityError) -> NodeView:
        self._logger.error(
            "Narrative integrity fault: %s",
            exc,
            extra={
                "player_id": session.state.player_id,
                "node_id": exc.node_id or session.state.current_node_id,
                "character_id": exc.character_id or session.state.current_character_id,
                "condition": exc.condition,
            },
        )
        if self._strict:
            raise exc
        session.presented = None
        session.presented_event_id = None
        session.view = NodeView(
            player_id=session.state.player_id,
            node_id=session.state.current_node_id,
            character_id=session.state.current_character_id,
            speaker="",
            text=PAUSE_TEXT,
            paused=True,
            pause_reason=str(exc),
        )
        return session.view

    def _render(self, session: _Session) -> NodeView:
        state = session.state
        node = self._graph.get_node(state.current_node_id)
        if node is None:
            return self._pause(
                session,
                NarrativeIntegrityError(
                    f"Current node '{state.current_node_id}' does not exist",
                    node_id=state.current_node_id,
                    character_id=state.current_character_id,
                ),
            )

        entry_count = session.tracker.advance()
        rng = derive_rng(
            CONTENT_VARIANT_NAMESPACE,
            {"player_id": state.player_id, "node_id": node.node_id, "node_entry": entry_count},
        )
        content = select_content(node, state, rng, shown_variations=session.shown_variations, combos=self._combos)
        session.shown_variations.add(content.variation_id)

        try:
            resolved = self._resolver.resolve(node, state)
        except NarrativeIntegrityError as exc:
            return self._pause(session, exc)

        voice = self._select_voice(session, node.node_id, node.tags, content.emotion, has_choices=bool(resolved.choices))
        conflict = self._voices.check_conflict(state, session.tracker) if resolved.choices else None
        view = NodeView(
            player_id=state.player_id,
            node_id=node.node_id,
            character_id=state.current_character_id,
            speaker=node.speaker,
            text=content.text,
            emotion=content.emotion,
            variation_id=content.variation_id,
            choices=resolved,
            choice_groups=self._resolver.group(resolved),
            simulation=node.simulation,
            voice=voice,
            voice_conflict=conflict,
            is_terminal=node.is_terminal and not resolved.choices,
        )

        self._event_bus.publish(
            NodeEntered(
                player_id=state.player_id,
                node_id=node.node_id,
                character_id=state.current_character_id,
                node_entry_count=entry_count,
            )
        )
        session.presented = resolved
        session.presented_event_id = None
        session.presented_at = self._clock()
        if resolved.choices:
            session.presented_event_id = self._id_factory()
            view.presented_event_id = session.presented_event_id
            self._event_bus.publish(
                ChoicePresented(
                    event_id=session.presented_event_id,
                    player_id=state.player_id,
                    node_id=node.node_id,
                    character_id=state.current_character_id,
                    ordering_variant=resolved.ordering_variant,
                    choices=tuple(
                        PresentedChoice(
                            choice_id=row.choice_id,
                            index=index,
                            pattern=row.choice.pattern,
                            locked=row.locked or row.disabled,
                            mercy_unlocked=row.mercy_unlocked,
                            gravity_bucket=row.gravity_bucket,
                            gravity_weight=row.gravity_weight,
                        )
                        for index, row in enumerate(resolved.choices)
                    ),
                    occurred_at=session.presented_at,
                )
            )
        session.view = view
        return view

    def _select_voice(
        self,
        session: _Session,
        node_id: str,
        tags: tuple[str, ...],
        emotion: str | None,
        *,
        has_choices: bool,
    ) -> VoiceLine | None:
        triggers = [VoiceTrigger.NODE_ENTER]
        if emotion:
            triggers.append(VoiceTrigger.NPC_EMOTION)
        if has_choices:
            triggers.append(VoiceTrigger.BEFORE_CHOICES)
        for trigger in triggers:
            context = VoiceContext(
                trigger=trigger,
                node_id=node_id,
                character_id=session.state.current_character_id,
                emotion=emotion,
                node_tags=tags,
            )
            line = self._voices.select(context, session.state, session.tracker)
            if line is not None:
                return line
        return None
