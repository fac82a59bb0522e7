from __future__ import annotations

from datetime import datetime
from typing import Callable, Iterable

from .base_types import Batch, Classification, OriginStatus

EXCLUDED_ORIGIN_STATUSES = frozenset({OriginStatus.DUPLICATE, OriginStatus.EXCLUDED})

BatchFilter = Callable[[Batch], bool]


def is_eligible(batch: Batch) -> bool:
    """Whether ``batch`` takes part in a reconciliation run.

    Batches marked duplicate or excluded drop out, except split-derivatives and
    batches with a parent: they are transfer destinations and must stay
    reconstructable whatever their status.
    """
    if batch.origin_status not in EXCLUDED_ORIGIN_STATUSES:
        return True
    return batch.is_derived_by_split or batch.parent_batch_id is not None


def counts_as_production(batch: Batch) -> bool:
    """Whether the batch's volume may be reported as production.

    Independent of :func:`is_eligible`: juice-only batches are reconciled but are
    never production.
    """
    return batch.classification != Classification.JUICE_ONLY


def select_eligible(
    batches: Iterable[Batch],
    cutoff: datetime,
    batch_filter: BatchFilter | None = None,
) -> list[Batch]:
    """Eligible batches started at or before ``cutoff``, ordered by id."""
    selected = [
        batch
        for batch in batches
        if batch.start_timestamp <= cutoff
        and is_eligible(batch)
        and (batch_filter is None or batch_filter(batch))
    ]
    selected.sort(key=lambda batch: batch.id)
    return selected
