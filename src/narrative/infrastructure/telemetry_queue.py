from __future__ import annotations

import json
import logging
from collections import deque
from dataclasses import asdict
from typing import Deque

from narrative.application.services.event_bus import EventBus
from narrative.domain.events import ChoicePresented, ChoiceSelectedUi
from narrative.domain.repositories import TelemetrySink


EVENT_TYPE_NAMES: dict[type, str] = {
    ChoicePresented: "choice_presented",
    ChoiceSelectedUi: "choice_selected_ui",
}


class TelemetryQueue:
    """Bounded fire-and-forget buffer between engine events and a telemetry sink.

    Nothing here raises into the caller: a full queue drops the oldest row and
    a failing sink loses the batch it was given.
    """

    def __init__(
        self,
        sink: TelemetrySink,
        *,
        max_size: int = 500,
        batch_size: int = 50,
        enabled: bool = True,
    ) -> None:
        self._sink = sink
        self._rows: Deque[tuple[str, str]] = deque()
        self._max_size = max(1, int(max_size))
        self._batch_size = max(1, int(batch_size))
        self.enabled = bool(enabled)
        self.dropped = 0
        self._logger = logging.getLogger(__name__)

    def attach(self, event_bus: EventBus) -> None:
        for event_type in EVENT_TYPE_NAMES:
            event_bus.subscribe(event_type, self.enqueue, priority=500)

    @property
    def pending(self) -> int:
        return len(self._rows)

    def enqueue(self, event: object) -> None:
        if not self.enabled:
            return
        event_type = EVENT_TYPE_NAMES.get(type(event))
        if event_type is None:
            return
        if len(self._rows) >= self._max_size:
            self._rows.popleft()
            self.dropped += 1
            self._logger.warning("Telemetry queue full; dropped oldest event", extra={"dropped": self.dropped})
        self._rows.append((event_type, json.dumps(asdict(event), sort_keys=True, default=str)))
        if len(self._rows) >= self._batch_size:
            self.flush()

    def flush(self) -> int:
        written = 0
        while self._rows:
            batch = [self._rows.popleft() for _ in range(min(self._batch_size, len(self._rows)))]
            try:
                self._sink.write_batch(batch)
            except Exception:
                self.dropped += len(batch)
                self._logger.exception(
                    "Telemetry sink failed; batch dropped",
                    extra={"batch_size": len(batch), "dropped": self.dropped},
                )
                continue
            written += len(batch)
        return written
