from __future__ import annotations

import logging
from collections.abc import Container
from datetime import datetime
from decimal import Decimal
from typing import Iterable, assert_never

from pydantic import BaseModel

from .base_types import Batch, BatchId, Classification, EventId
from .events import (
    DistillationShipment,
    DistillationStatus,
    EventKind,
    KegFill,
    MergeIn,
    MergeOut,
    MergeSource,
    PackagingRun,
    ProcessLoss,
    ProcessLossKind,
    TransferIn,
    TransferOut,
    VolumeAdjustment,
    VolumeEvent,
    counterpart_of,
)
from .policy import ReconciliationPolicy

logger = logging.getLogger(__name__)

COUNTED_DISTILLATION_STATUSES = frozenset({DistillationStatus.SENT, DistillationStatus.RECEIVED})

_ZERO = Decimal(0)


class LedgerComponents(BaseModel):
    """Per-category volume movements of one batch, or a sum over many."""

    effective_initial: Decimal = _ZERO
    merges_in_batch: Decimal = _ZERO
    merges_in_external: Decimal = _ZERO
    transfers_in: Decimal = _ZERO
    positive_adjustments: Decimal = _ZERO

    merges_out: Decimal = _ZERO
    transfers_out: Decimal = _ZERO
    transfer_loss: Decimal = _ZERO
    packaging_volume: Decimal = _ZERO
    packaging_loss: Decimal = _ZERO
    kegging_volume: Decimal = _ZERO
    kegging_loss: Decimal = _ZERO
    distillation: Decimal = _ZERO
    racking_loss: Decimal = _ZERO
    filter_loss: Decimal = _ZERO
    negative_adjustments: Decimal = _ZERO

    @property
    def inflows(self) -> Decimal:
        return (
            self.effective_initial
            + self.merges_in_batch
            + self.merges_in_external
            + self.transfers_in
            + self.positive_adjustments
        )

    @property
    def outflows(self) -> Decimal:
        return (
            self.merges_out
            + self.transfers_out
            + self.transfer_loss
            + self.packaging_volume
            + self.packaging_loss
            + self.kegging_volume
            + self.kegging_loss
            + self.distillation
            + self.racking_loss
            + self.filter_loss
            + self.negative_adjustments
        )

    @property
    def raw_net(self) -> Decimal:
        return self.inflows - self.outflows

    def plus(self, other: LedgerComponents) -> LedgerComponents:
        return LedgerComponents(**{name: value + getattr(other, name) for name, value in self._values()})

    def minus(self, other: LedgerComponents) -> LedgerComponents:
        return LedgerComponents(**{name: value - getattr(other, name) for name, value in self._values()})

    def _values(self) -> list[tuple[str, Decimal]]:
        return [(name, getattr(self, name)) for name in LedgerComponents.model_fields]

    @classmethod
    def total(cls, components: Iterable[LedgerComponents]) -> LedgerComponents:
        result = cls()
        for item in components:
            result = result.plus(item)
        return result


class CounterpartAnomaly(BaseModel):
    """A movement whose other side names a batch that cannot be resolved.

    The leg is left out of the owning batch's balance; the run continues.
    """

    batch_id: BatchId
    event_id: EventId
    event_kind: EventKind
    counterpart_batch_id: BatchId
    excluded_volume: Decimal


class BatchBalance(BaseModel):
    batch_id: BatchId
    classification: Classification
    cutoff: datetime
    components: LedgerComponents
    is_transfer_derived: bool
    zeroed_initial_volume: Decimal
    raw_net: Decimal
    clamped_volume: Decimal
    clamped_loss_volume: Decimal
    anomalies: list[CounterpartAnomaly] = []


class BatchLedgerReconstructor:
    """Replay a batch's volume events to get its balance at a point in time."""

    def __init__(self, *, policy: ReconciliationPolicy) -> None:
        self._policy = policy

    @property
    def policy(self) -> ReconciliationPolicy:
        return self._policy

    def reconstruct(
        self,
        batch: Batch,
        events: Iterable[VolumeEvent],
        cutoff: datetime,
        *,
        known_batch_ids: Container[BatchId] | None = None,
    ) -> BatchBalance:
        """Compute the clamped volume of ``batch`` as of ``cutoff``.

        Only events owned by the batch, not soft-deleted and recorded at or before
        the cutoff take part. When ``known_batch_ids`` is given, movements whose
        counterpart is not in it are dropped and reported as anomalies.
        """
        applicable = self._applicable_events(batch, events, cutoff)

        anomalies: list[CounterpartAnomaly] = []
        resolved: list[VolumeEvent] = []
        for event in applicable:
            counterpart = counterpart_of(event)
            if known_batch_ids is not None and counterpart is not None and counterpart not in known_batch_ids:
                anomaly = CounterpartAnomaly(
                    batch_id=batch.id,
                    event_id=event.id,
                    event_kind=EventKind(event.kind),
                    counterpart_batch_id=counterpart,
                    excluded_volume=_movement_volume(event),
                )
                logger.warning(
                    "Unresolved counterpart batch=%s event=%s kind=%s counterpart=%s volume=%s; leg excluded",
                    batch.id,
                    event.id,
                    event.kind,
                    counterpart,
                    anomaly.excluded_volume,
                )
                anomalies.append(anomaly)
                continue
            resolved.append(event)

        transfers_in = sum((e.volume_moved for e in resolved if isinstance(e, TransferIn)), start=_ZERO)
        is_transfer_derived = self.is_transfer_derived(batch, transfers_in)
        effective_initial = _ZERO if is_transfer_derived else batch.declared_initial_volume
        if is_transfer_derived and batch.declared_initial_volume > 0:
            logger.debug(
                "Batch %s treated as transfer-derived: transfers_in=%s declared_initial=%s",
                batch.id,
                transfers_in,
                batch.declared_initial_volume,
            )

        components = LedgerComponents(effective_initial=effective_initial)
        for event in resolved:
            self._apply(event, components)

        raw_net = components.raw_net
        return BatchBalance(
            batch_id=batch.id,
            classification=batch.classification,
            cutoff=cutoff,
            components=components,
            is_transfer_derived=is_transfer_derived,
            zeroed_initial_volume=batch.declared_initial_volume - effective_initial,
            raw_net=raw_net,
            clamped_volume=max(_ZERO, raw_net),
            clamped_loss_volume=max(_ZERO, -raw_net),
            anomalies=anomalies,
        )

    def is_transfer_derived(self, batch: Batch, transfers_in: Decimal) -> bool:
        """Whether the declared initial volume was most likely filled from a transfer."""
        if batch.parent_batch_id is None:
            return False
        return transfers_in >= batch.declared_initial_volume * self._policy.transfer_derivation_threshold

    def packaging_loss_included(self, run: PackagingRun) -> bool:
        """Whether ``declared_loss`` is already part of ``volume_taken``."""
        difference = abs(run.volume_taken - (run.expected_product_volume + run.declared_loss))
        return difference < self._policy.packaging_loss_tolerance_liters

    def _applicable_events(self, batch: Batch, events: Iterable[VolumeEvent], cutoff: datetime) -> list[VolumeEvent]:
        applicable: list[VolumeEvent] = []
        seen_transfer_legs: set[tuple[str, object]] = set()
        for event in events:
            if event.batch_id != batch.id or event.is_deleted or event.timestamp > cutoff:
                continue
            if isinstance(event, (TransferIn, TransferOut)):
                leg_key = (event.kind, event.transfer_id)
                if leg_key in seen_transfer_legs:
                    logger.debug(
                        "Skipping repeated %s leg of transfer %s on batch %s", event.kind, event.transfer_id, batch.id
                    )
                    continue
                seen_transfer_legs.add(leg_key)
            applicable.append(event)
        return applicable

    def _apply(self, event: VolumeEvent, components: LedgerComponents) -> None:
        if isinstance(event, TransferIn):
            components.transfers_in += event.volume_moved
        elif isinstance(event, TransferOut):
            components.transfers_out += event.volume_moved
            components.transfer_loss += event.volume_lost
        elif isinstance(event, MergeIn):
            if event.from_source == MergeSource.EXTERNAL_PRODUCTION:
                components.merges_in_external += event.volume_added
            else:
                components.merges_in_batch += event.volume_added
        elif isinstance(event, MergeOut):
            components.merges_out += event.volume_removed
        elif isinstance(event, PackagingRun):
            if event.voided:
                return
            components.packaging_volume += event.volume_taken
            if not self.packaging_loss_included(event):
                components.packaging_loss += event.declared_loss
        elif isinstance(event, KegFill):
            if event.voided:
                return
            components.kegging_volume += event.volume_taken
            components.kegging_loss += event.declared_loss
        elif isinstance(event, DistillationShipment):
            if event.status in COUNTED_DISTILLATION_STATUSES:
                components.distillation += event.volume_sent
        elif isinstance(event, ProcessLoss):
            if event.loss_kind == ProcessLossKind.RACKING:
                if not event.is_historical_backfill:
                    components.racking_loss += event.volume_lost
            else:
                components.filter_loss += event.volume_lost
        elif isinstance(event, VolumeAdjustment):
            if event.signed_amount > 0:
                components.positive_adjustments += event.signed_amount
            else:
                components.negative_adjustments += -event.signed_amount
        else:
            assert_never(event)


def _movement_volume(event: VolumeEvent) -> Decimal:
    if isinstance(event, TransferOut):
        return event.volume_moved + event.volume_lost
    if isinstance(event, TransferIn):
        return event.volume_moved
    if isinstance(event, MergeIn):
        return event.volume_added
    if isinstance(event, MergeOut):
        return event.volume_removed
    return _ZERO
