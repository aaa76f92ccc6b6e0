from __future__ import annotations

from typing import Iterable, Sequence

from narrative.application.dtos import ArcProgress, QuestProgress
from narrative.application.services.event_bus import EventBus
from narrative.domain.events import NodeEntered, PlayerReset, QuestStatusChanged
from narrative.domain.models.quest import (
    QUEST_STATUS_ORDER,
    Quest,
    QuestStatus,
    QuestType,
    QuestWithStatus,
    StoryArc,
    StoryChapter,
    is_arc_unlock_met,
    is_quest_condition_met,
    quest_condition_checks,
)
from narrative.domain.models.state import PlayerState


def quest_status(quest: Quest, state: PlayerState) -> QuestStatus:
    if is_quest_condition_met(quest.complete_condition, state):
        return QuestStatus.COMPLETED
    if is_quest_condition_met(quest.unlock_condition, state):
        if quest.type == QuestType.CHARACTER_ARC and quest.character_id:
            row = state.character(quest.character_id)
            if row is not None and row.has_met:
                return QuestStatus.ACTIVE
        return QuestStatus.UNLOCKED
    return QuestStatus.LOCKED


def quest_progress(quest: Quest, state: PlayerState) -> QuestProgress:
    checks = quest_condition_checks(quest.complete_condition, state)
    return QuestProgress(quest_id=quest.id, satisfied=sum(1 for passed in checks if passed), total=len(checks))


def sort_quests_for_display(rows: Iterable[QuestWithStatus]) -> list[QuestWithStatus]:
    # sorted() is stable, so authored order survives within one status.
    return sorted(rows, key=lambda row: QUEST_STATUS_ORDER[row.status])


def arc_progress(arc: StoryArc, state: PlayerState) -> ArcProgress:
    completed = tuple(chapter.id for chapter in arc.chapters if chapter.completion_flag in state.global_flags)
    current = next((chapter.id for chapter in arc.chapters if chapter.completion_flag not in state.global_flags), None)
    return ArcProgress(
        arc_id=arc.id,
        unlocked=is_arc_unlock_met(arc.unlock_condition, state),
        completed_chapters=completed,
        current_chapter_id=current,
        total_chapters=len(arc.chapters),
    )


class QuestService:
    """Read-only projections of quests and story arcs over player state."""

    def __init__(self, quests: Sequence[Quest] = (), arcs: Sequence[StoryArc] = ()) -> None:
        self._quests = tuple(quests)
        self._arcs = tuple(arcs)
        self._arcs_by_id = {arc.id: arc for arc in self._arcs}

    @property
    def quests(self) -> tuple[Quest, ...]:
        return self._quests

    @property
    def arcs(self) -> tuple[StoryArc, ...]:
        return self._arcs

    def get_quests_with_status(self, state: PlayerState) -> list[QuestWithStatus]:
        rows = [
            QuestWithStatus(quest=quest, status=quest_status(quest, state), progress=quest_progress(quest, state).percent)
            for quest in self._quests
        ]
        return sort_quests_for_display(rows)

    def get_active_quests(self, state: PlayerState) -> list[Quest]:
        """Open quests in display order: active ones first, then unlocked ones."""
        open_statuses = (QuestStatus.ACTIVE, QuestStatus.UNLOCKED)
        return [row.quest for row in self.get_quests_with_status(state) if row.status in open_statuses]

    def get_completed_quests(self, state: PlayerState) -> list[Quest]:
        return [row.quest for row in self.get_quests_with_status(state) if row.status == QuestStatus.COMPLETED]

    def get_primary_quest(self, state: PlayerState) -> Quest | None:
        """Most relevant open quest: the first active one, else the first unlocked one."""
        rows = self.get_quests_with_status(state)
        for wanted in (QuestStatus.ACTIVE, QuestStatus.UNLOCKED):
            for row in rows:
                if row.status == wanted:
                    return row.quest
        return None

    def get_quest_progress(self, quest_id: str, state: PlayerState) -> QuestProgress | None:
        quest = next((row for row in self._quests if row.id == quest_id), None)
        return quest_progress(quest, state) if quest is not None else None

    def status_snapshot(self, state: PlayerState) -> dict[str, QuestStatus]:
        return {quest.id: quest_status(quest, state) for quest in self._quests}

    def diff_statuses(self, before: PlayerState, after: PlayerState) -> list[tuple[str, str, str]]:
        old = self.status_snapshot(before)
        new = self.status_snapshot(after)
        return [
            (quest_id, old[quest_id].value, new[quest_id].value)
            for quest_id in new
            if old.get(quest_id) != new[quest_id]
        ]

    def get_arc_by_id(self, arc_id: str) -> StoryArc | None:
        return self._arcs_by_id.get(arc_id)

    def is_arc_unlocked(self, arc_id: str, state: PlayerState) -> bool:
        arc = self.get_arc_by_id(arc_id)
        return arc is not None and is_arc_unlock_met(arc.unlock_condition, state)

    def get_unlocked_arcs(self, state: PlayerState) -> list[StoryArc]:
        return [arc for arc in self._arcs if is_arc_unlock_met(arc.unlock_condition, state)]

    def get_arc_progress(self, arc_id: str, state: PlayerState) -> ArcProgress | None:
        arc = self.get_arc_by_id(arc_id)
        return arc_progress(arc, state) if arc is not None else None

    def arc_for_node(self, node_id: str) -> tuple[StoryArc, StoryChapter] | None:
        for arc in self._arcs:
            for chapter in arc.chapters:
                if node_id in chapter.node_ids:
                    return arc, chapter
        return None

    def validate(self, known_node_ids: Iterable[str], known_character_ids: Iterable[str]) -> list[str]:
        nodes = set(known_node_ids)
        characters = set(known_character_ids)
        errors: list[str] = []
        seen: set[str] = set()
        for quest in self._quests:
            if quest.id in seen:
                errors.append(f"quests.{quest.id} is duplicated")
            seen.add(quest.id)
            if quest.character_id and quest.character_id not in characters:
                errors.append(f"quests.{quest.id}.character_id references unknown '{quest.character_id}'")
        for arc in self._arcs:
            for character_id in arc.required_characters:
                if character_id not in characters:
                    errors.append(f"arcs.{arc.id}.required_characters references unknown '{character_id}'")
            for chapter in arc.chapters:
                for node_id in chapter.node_ids:
                    if node_id not in nodes:
                        errors.append(f"arcs.{arc.id}.chapters.{chapter.id} references unknown node '{node_id}'")
        return errors


class QuestStatusTracker:
    """Publishes QuestStatusChanged whenever a node entry shifts a quest's derived status."""

    def __init__(self, quest_service: QuestService, event_bus: EventBus, state_provider) -> None:
        self._quest_service = quest_service
        self._event_bus = event_bus
        self._state_provider = state_provider
        self._last_seen: dict[str, dict[str, QuestStatus]] = {}

    def register_handlers(self) -> None:
        self._event_bus.subscribe(NodeEntered, self.on_node_entered, priority=50)
        self._event_bus.subscribe(PlayerReset, self.on_player_reset, priority=50)

    def forget(self, player_id: str) -> None:
        self._last_seen.pop(player_id, None)

    def on_player_reset(self, event: PlayerReset) -> None:
        self.forget(event.player_id)

    def on_node_entered(self, event: NodeEntered) -> None:
        state = self._state_provider(event.player_id)
        if state is None:
            return
        current = self._quest_service.status_snapshot(state)
        previous = self._last_seen.get(event.player_id)
        self._last_seen[event.player_id] = current
        if previous is None:
            return
        for quest_id, status in current.items():
            before = previous.get(quest_id)
            if before is not None and before != status:
                self._event_bus.publish(
                    QuestStatusChanged(
                        player_id=event.player_id,
                        quest_id=quest_id,
                        from_status=before.value,
                        to_status=status.value,
                    )
                )


def register_quest_handlers(*, event_bus: EventBus, quest_service: QuestService, state_provider) -> QuestStatusTracker:
    tracker = QuestStatusTracker(quest_service, event_bus, state_provider)
    tracker.register_handlers()
    return tracker
