from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from enum import StrEnum
from typing import assert_never

from pydantic import BaseModel, ConfigDict, Field

from .base_types import Batch, BatchId, Classification, OriginStatus
from .eligibility import EXCLUDED_ORIGIN_STATUSES, counts_as_production
from .event_store import EventStore
from .events import (
    DistillationShipment,
    DistillationStatus,
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
)
from .periods import ReportingWindow
from .tax_classes import TaxClassMap

logger = logging.getLogger(__name__)


class WaterfallLine(StrEnum):
    PRODUCTION = "production"
    POSITIVE_ADJUSTMENTS = "positive_adjustments"
    SPIRITS_TRANSFERRED_IN = "spirits_transferred_in"
    SPIRITS_MERGED_IN = "spirits_merged_in"
    PACKAGING_REMOVALS = "packaging_removals"
    KEG_REMOVALS = "keg_removals"
    RACKING_LOSS = "racking_loss"
    FILTER_LOSS = "filter_loss"
    PACKAGING_LOSS = "packaging_loss"
    KEG_LOSS = "keg_loss"
    TRANSFER_LOSS = "transfer_loss"
    NEGATIVE_ADJUSTMENTS = "negative_adjustments"
    DISTILLATION = "distillation"
    TRANSFERS_TO_UNTAXED = "transfers_to_untaxed"
    MERGES_TO_UNTAXED = "merges_to_untaxed"


REMOVAL_LINES = (WaterfallLine.PACKAGING_REMOVALS, WaterfallLine.KEG_REMOVALS)
PROCESS_LOSS_LINES = (
    WaterfallLine.RACKING_LOSS,
    WaterfallLine.FILTER_LOSS,
    WaterfallLine.PACKAGING_LOSS,
    WaterfallLine.KEG_LOSS,
    WaterfallLine.TRANSFER_LOSS,
)
# Volume crossing into the comparable scope from spirits, or out of it into untaxed batches.
SPIRITS_RECEIVED_LINES = (WaterfallLine.SPIRITS_TRANSFERRED_IN, WaterfallLine.SPIRITS_MERGED_IN)
UNTAXED_OUTFLOW_LINES = (WaterfallLine.TRANSFERS_TO_UNTAXED, WaterfallLine.MERGES_TO_UNTAXED)


class WaterfallFilters(BaseModel):
    """Which events the waterfall counts.

    These rules are deliberately independent of the ledger's eligibility
    filter. Every difference between the two shows up in the variance
    decomposition, so each one is spelled out here.
    """

    model_config = ConfigDict(frozen=True)

    start_inclusive: bool = False
    end_inclusive: bool = True
    excluded_statuses: frozenset[OriginStatus] = EXCLUDED_ORIGIN_STATUSES
    status_filtered_lines: frozenset[WaterfallLine] = frozenset(
        {
            WaterfallLine.PRODUCTION,
            WaterfallLine.RACKING_LOSS,
            WaterfallLine.FILTER_LOSS,
            WaterfallLine.PACKAGING_LOSS,
            WaterfallLine.TRANSFER_LOSS,
            *SPIRITS_RECEIVED_LINES,
            *UNTAXED_OUTFLOW_LINES,
        }
    )
    excluded_classifications: frozenset[Classification] = frozenset({Classification.DISTILLATE_RESULT})
    exclude_juice_from_production: bool = True
    exclude_historical_backfill: bool = True
    apply_packaging_loss_tolerance: bool = False
    packaging_loss_tolerance_liters: Decimal = Decimal("2")
    distillation_statuses: frozenset[DistillationStatus] = frozenset(
        {DistillationStatus.SENT, DistillationStatus.RECEIVED}
    )
    count_scope_crossings: bool = True
    tax_class_map: TaxClassMap = Field(default_factory=TaxClassMap)

    def window(self, start: datetime, end: datetime) -> ReportingWindow:
        return ReportingWindow(
            start=start,
            end=end,
            start_inclusive=self.start_inclusive,
            end_inclusive=self.end_inclusive,
        )


class WaterfallTotals(BaseModel):
    window: ReportingWindow
    opening_balance: Decimal
    lines: dict[WaterfallLine, Decimal]

    def line(self, line: WaterfallLine) -> Decimal:
        return self.lines.get(line, Decimal(0))

    @property
    def production(self) -> Decimal:
        return self.line(WaterfallLine.PRODUCTION)

    @property
    def positive_adjustments(self) -> Decimal:
        return self.line(WaterfallLine.POSITIVE_ADJUSTMENTS)

    @property
    def removals(self) -> Decimal:
        return sum((self.line(line) for line in REMOVAL_LINES), start=Decimal(0))

    @property
    def process_losses(self) -> Decimal:
        """Every loss line plus negative adjustments."""
        losses = sum((self.line(line) for line in PROCESS_LOSS_LINES), start=Decimal(0))
        return losses + self.line(WaterfallLine.NEGATIVE_ADJUSTMENTS)

    @property
    def distillation(self) -> Decimal:
        return self.line(WaterfallLine.DISTILLATION)

    @property
    def spirits_received(self) -> Decimal:
        return sum((self.line(line) for line in SPIRITS_RECEIVED_LINES), start=Decimal(0))

    @property
    def untaxed_outflows(self) -> Decimal:
        return sum((self.line(line) for line in UNTAXED_OUTFLOW_LINES), start=Decimal(0))

    @property
    def ending_balance(self) -> Decimal:
        return (
            self.opening_balance
            + self.production
            + self.positive_adjustments
            + self.spirits_received
            - self.removals
            - self.process_losses
            - self.distillation
            - self.untaxed_outflows
        )


class WaterfallCalculator:
    """Aggregate opening/production/removal/loss figures straight from the event tables.

    No per-batch replay happens here. The output exists to be checked against
    the ledger aggregate.
    """

    def __init__(self, *, store: EventStore, filters: WaterfallFilters | None = None) -> None:
        self._store = store
        self._filters = filters or WaterfallFilters()

    @property
    def filters(self) -> WaterfallFilters:
        return self._filters

    def calculate(self, start: datetime, end: datetime, *, opening_balance: Decimal) -> WaterfallTotals:
        window = self._filters.window(start, end)
        batches = {batch.id: batch for batch in self._store.list_batches()}
        events = self._store.events_between(window)

        lines = dict.fromkeys(WaterfallLine, Decimal(0))
        self._add_batch_production(lines, window, batches)
        for event in events:
            if event.is_deleted or not window.contains(event.timestamp):
                continue
            self._add_event(lines, event, batches)

        totals = WaterfallTotals(window=window, opening_balance=opening_balance, lines=lines)
        logger.info(
            "Waterfall %s -> %s: production=%s removals=%s losses=%s distillation=%s ending=%s",
            start.isoformat(),
            end.isoformat(),
            totals.production,
            totals.removals,
            totals.process_losses,
            totals.distillation,
            totals.ending_balance,
        )
        return totals

    def _add_batch_production(
        self,
        lines: dict[WaterfallLine, Decimal],
        window: ReportingWindow,
        batches: dict[BatchId, Batch],
    ) -> None:
        for batch in batches.values():
            if not window.contains(batch.start_timestamp):
                continue
            # Batches with a parent or split off another batch hold moved volume, not new volume.
            if batch.parent_batch_id is not None or batch.is_derived_by_split:
                continue
            if self._is_production(batch) and self._counts(WaterfallLine.PRODUCTION, batch):
                lines[WaterfallLine.PRODUCTION] += batch.declared_initial_volume

    def _add_event(
        self,
        lines: dict[WaterfallLine, Decimal],
        event: VolumeEvent,
        batches: dict[BatchId, Batch],
    ) -> None:
        batch = batches.get(event.batch_id)
        if batch is not None and batch.classification in self._filters.excluded_classifications:
            return

        def add(line: WaterfallLine, amount: Decimal) -> None:
            if self._counts(line, batch):
                lines[line] += amount

        if isinstance(event, MergeIn):
            if event.from_source == MergeSource.EXTERNAL_PRODUCTION:
                if batch is None or self._is_production(batch):
                    add(WaterfallLine.PRODUCTION, event.volume_added)
            elif event.from_batch_id is not None and self._receives_spirits(batch, batches.get(event.from_batch_id)):
                add(WaterfallLine.SPIRITS_MERGED_IN, event.volume_added)
        elif isinstance(event, MergeOut):
            if self._sends_to_untaxed(batch, batches.get(event.to_batch_id)):
                add(WaterfallLine.MERGES_TO_UNTAXED, event.volume_removed)
        elif isinstance(event, TransferIn):
            if self._receives_spirits(batch, batches.get(event.from_batch_id)):
                add(WaterfallLine.SPIRITS_TRANSFERRED_IN, event.volume_moved)
        elif isinstance(event, TransferOut):
            add(WaterfallLine.TRANSFER_LOSS, event.volume_lost)
            if self._sends_to_untaxed(batch, batches.get(event.to_batch_id)):
                add(WaterfallLine.TRANSFERS_TO_UNTAXED, event.volume_moved)
        elif isinstance(event, PackagingRun):
            if event.voided:
                return
            add(WaterfallLine.PACKAGING_REMOVALS, event.volume_taken)
            if not (self._filters.apply_packaging_loss_tolerance and self._packaging_loss_included(event)):
                add(WaterfallLine.PACKAGING_LOSS, event.declared_loss)
        elif isinstance(event, KegFill):
            if event.voided:
                return
            add(WaterfallLine.KEG_REMOVALS, event.volume_taken)
            add(WaterfallLine.KEG_LOSS, event.declared_loss)
        elif isinstance(event, DistillationShipment):
            if event.status in self._filters.distillation_statuses:
                add(WaterfallLine.DISTILLATION, event.volume_sent)
        elif isinstance(event, ProcessLoss):
            if event.loss_kind == ProcessLossKind.RACKING:
                if not (self._filters.exclude_historical_backfill and event.is_historical_backfill):
                    add(WaterfallLine.RACKING_LOSS, event.volume_lost)
            else:
                add(WaterfallLine.FILTER_LOSS, event.volume_lost)
        elif isinstance(event, VolumeAdjustment):
            if event.signed_amount > 0:
                add(WaterfallLine.POSITIVE_ADJUSTMENTS, event.signed_amount)
            else:
                add(WaterfallLine.NEGATIVE_ADJUSTMENTS, -event.signed_amount)
        else:
            assert_never(event)

    def _counts(self, line: WaterfallLine, batch: Batch | None) -> bool:
        if line not in self._filters.status_filtered_lines:
            return True
        # A status-filtered line joins on the batch, so events of unknown batches drop out.
        return batch is not None and batch.origin_status not in self._filters.excluded_statuses

    def _receives_spirits(self, batch: Batch | None, source: Batch | None) -> bool:
        """A comparable batch taking in volume from a spirits batch."""
        if not self._filters.count_scope_crossings or batch is None or source is None:
            return False
        tax_classes = self._filters.tax_class_map
        return tax_classes.is_primary(batch.classification) and tax_classes.is_spirits(
            tax_classes.tax_class_for(source.classification)
        )

    def _sends_to_untaxed(self, batch: Batch | None, destination: Batch | None) -> bool:
        """A comparable batch moving volume into a batch with no tax class."""
        if not self._filters.count_scope_crossings or batch is None or destination is None:
            return False
        tax_classes = self._filters.tax_class_map
        return tax_classes.is_primary(batch.classification) and (
            tax_classes.tax_class_for(destination.classification) is None
        )

    def _is_production(self, batch: Batch) -> bool:
        if batch.classification in self._filters.excluded_classifications:
            return False
        return not (self._filters.exclude_juice_from_production and not counts_as_production(batch))

    def _packaging_loss_included(self, run: PackagingRun) -> bool:
        difference = abs(run.volume_taken - (run.expected_product_volume + run.declared_loss))
        return difference < self._filters.packaging_loss_tolerance_liters
