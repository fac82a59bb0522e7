from __future__ import annotations

from datetime import datetime
from typing import Iterable

from domain.base_types import Batch, BatchId
from domain.event_store import DataAccessFailure
from domain.events import VolumeEvent
from domain.periods import ReportingWindow


class InMemoryEventStore:
    """EventStore over plain lists, with the same filtering as the SQL store."""

    def __init__(self, batches: Iterable[Batch] = (), events: Iterable[VolumeEvent] = ()) -> None:
        self.batches: list[Batch] = list(batches)
        self.events: list[VolumeEvent] = list(events)
        self.fail_on: set[str] = set()
        self.events_for_calls = 0

    def add(self, *events: VolumeEvent) -> None:
        self.events.extend(events)

    def list_batches(self) -> list[Batch]:
        self._maybe_fail("list_batches")
        return sorted(self.batches, key=lambda batch: batch.id)

    def events_for(self, batch_ids: Iterable[BatchId], cutoff: datetime) -> dict[BatchId, list[VolumeEvent]]:
        self._maybe_fail("events_for")
        self.events_for_calls += 1
        grouped: dict[BatchId, list[VolumeEvent]] = {batch_id: [] for batch_id in batch_ids}
        for event in self._ordered():
            if event.batch_id in grouped and not event.is_deleted and event.timestamp <= cutoff:
                grouped[event.batch_id].append(event)
        return grouped

    def events_between(self, window: ReportingWindow) -> list[VolumeEvent]:
        self._maybe_fail("events_between")
        known = {batch.id for batch in self.batches}
        return [
            event
            for event in self._ordered()
            if event.batch_id in known and not event.is_deleted and window.contains(event.timestamp)
        ]

    def _ordered(self) -> list[VolumeEvent]:
        return sorted(self.events, key=lambda event: (event.timestamp, str(event.id)))

    def _maybe_fail(self, operation: str) -> None:
        if operation in self.fail_on:
            raise DataAccessFailure("store offline", operation=operation)
