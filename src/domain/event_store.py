from __future__ import annotations

from datetime import datetime
from typing import Iterable, Protocol

from .base_types import Batch, BatchId
from .events import VolumeEvent
from .periods import ReportingWindow


class DataAccessFailure(Exception):
    """The event store could not be read. Aborts the whole reconciliation run."""

    def __init__(self, message: str, *, operation: str) -> None:
        super().__init__(f"Could not read source events ({operation}): {message}")
        self.operation = operation


class EventStore(Protocol):
    """Read-only access to batches and their volume events."""

    def list_batches(self) -> list[Batch]:
        """Every non-deleted batch record, whatever its origin status."""
        ...

    def events_for(self, batch_ids: Iterable[BatchId], cutoff: datetime) -> dict[BatchId, list[VolumeEvent]]:
        """Non-deleted events at or before ``cutoff``, grouped by owning batch.

        Every requested id is present in the result; unknown ids map to an empty list.
        """
        ...

    def events_between(self, window: ReportingWindow) -> list[VolumeEvent]:
        """Non-deleted events of every non-deleted batch inside ``window``, ordered by timestamp."""
        ...
