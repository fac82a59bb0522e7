from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel

from .base_types import Batch, BatchId, TaxClass
from .eligibility import BatchFilter, select_eligible
from .event_store import EventStore
from .events import VolumeEvent
from .reconstructor import BatchBalance, BatchLedgerReconstructor, CounterpartAnomaly, LedgerComponents
from .tax_classes import TaxClassMap
from .units import liters_to_wine_gallons

logger = logging.getLogger(__name__)


class TaxClassTotal(BaseModel):
    tax_class: TaxClass
    as_of: datetime
    clamped_volume: Decimal = Decimal(0)
    clamped_loss_volume: Decimal = Decimal(0)
    batch_count: int = 0

    @property
    def wine_gallons(self) -> Decimal:
        return liters_to_wine_gallons(self.clamped_volume)


class AggregationResult(BaseModel):
    """Ledger-side totals at one cutoff.

    ``primary_*`` covers batches whose tax class is neither spirits nor untaxed;
    that is the scope the waterfall cross-checks.
    """

    as_of: datetime
    totals: dict[TaxClass, TaxClassTotal]
    untaxed_volume: Decimal
    untaxed_loss_volume: Decimal
    balances: list[BatchBalance]
    components: LedgerComponents
    primary_components: LedgerComponents
    primary_volume: Decimal
    primary_loss_volume: Decimal
    spirits_classes: frozenset[TaxClass] = frozenset()
    anomalies: list[CounterpartAnomaly]

    @property
    def primary_totals(self) -> dict[TaxClass, TaxClassTotal]:
        return {tax_class: total for tax_class, total in self.totals.items() if tax_class not in self.spirits_classes}

    @property
    def spirits_totals(self) -> dict[TaxClass, TaxClassTotal]:
        return {tax_class: total for tax_class, total in self.totals.items() if tax_class in self.spirits_classes}

    @property
    def total_volume(self) -> Decimal:
        return sum((balance.clamped_volume for balance in self.balances), start=Decimal(0))

    @property
    def total_clamped_loss(self) -> Decimal:
        return sum((balance.clamped_loss_volume for balance in self.balances), start=Decimal(0))

    @property
    def clamped_balances(self) -> list[BatchBalance]:
        return [balance for balance in self.balances if balance.clamped_loss_volume > 0]

    @property
    def transfer_derived_balances(self) -> list[BatchBalance]:
        return [
            balance for balance in self.balances if balance.is_transfer_derived and balance.zeroed_initial_volume > 0
        ]


class Aggregator:
    """Run the reconstructor over every eligible batch and sum per tax class."""

    def __init__(
        self,
        *,
        store: EventStore,
        reconstructor: BatchLedgerReconstructor,
        tax_class_map: TaxClassMap | None = None,
        max_workers: int = 1,
    ) -> None:
        self._store = store
        self._reconstructor = reconstructor
        self._tax_class_map = tax_class_map or reconstructor.policy.tax_class_map
        self._max_workers = max(1, max_workers)

    def aggregate(self, cutoff: datetime, batch_filter: BatchFilter | None = None) -> AggregationResult:
        batches = self._store.list_batches()
        known_batch_ids = frozenset(batch.id for batch in batches)
        selected = select_eligible(batches, cutoff, batch_filter)
        events_by_batch = self._store.events_for([batch.id for batch in selected], cutoff)

        balances = self._reconstruct_all(selected, events_by_batch, cutoff, known_batch_ids)
        result = self._summarize(cutoff, selected, balances)
        logger.info(
            "Aggregated %d of %d batches as of %s: primary=%s L clamped_loss=%s L anomalies=%d",
            len(selected),
            len(batches),
            cutoff.isoformat(),
            result.primary_volume,
            result.total_clamped_loss,
            len(result.anomalies),
        )
        return result

    def _reconstruct_all(
        self,
        batches: list[Batch],
        events_by_batch: dict[BatchId, list[VolumeEvent]],
        cutoff: datetime,
        known_batch_ids: frozenset[BatchId],
    ) -> list[BatchBalance]:
        def reconstruct(batch: Batch) -> BatchBalance:
            return self._reconstructor.reconstruct(
                batch,
                events_by_batch.get(batch.id, []),
                cutoff,
                known_batch_ids=known_batch_ids,
            )

        if self._max_workers == 1 or len(batches) < 2:
            return [reconstruct(batch) for batch in batches]

        # map() keeps input order, so the result does not depend on scheduling.
        with ThreadPoolExecutor(max_workers=min(self._max_workers, len(batches))) as executor:
            return list(executor.map(reconstruct, batches))

    def _summarize(self, cutoff: datetime, batches: list[Batch], balances: list[BatchBalance]) -> AggregationResult:
        totals: dict[TaxClass, TaxClassTotal] = {}
        untaxed_volume = Decimal(0)
        untaxed_loss = Decimal(0)
        primary: list[BatchBalance] = []

        for batch, balance in zip(batches, balances):
            tax_class = self._tax_class_map.tax_class_for(batch.classification)
            if tax_class is None:
                untaxed_volume += balance.clamped_volume
                untaxed_loss += balance.clamped_loss_volume
                continue

            total = totals.get(tax_class)
            if total is None:
                total = totals[tax_class] = TaxClassTotal(tax_class=tax_class, as_of=cutoff)
            total.clamped_volume += balance.clamped_volume
            total.clamped_loss_volume += balance.clamped_loss_volume
            total.batch_count += 1

            if self._tax_class_map.is_primary(batch.classification):
                primary.append(balance)

        return AggregationResult(
            as_of=cutoff,
            totals=dict(sorted(totals.items())),
            untaxed_volume=untaxed_volume,
            untaxed_loss_volume=untaxed_loss,
            balances=balances,
            components=LedgerComponents.total(balance.components for balance in balances),
            primary_components=LedgerComponents.total(balance.components for balance in primary),
            primary_volume=sum((balance.clamped_volume for balance in primary), start=Decimal(0)),
            primary_loss_volume=sum((balance.clamped_loss_volume for balance in primary), start=Decimal(0)),
            spirits_classes=self._tax_class_map.spirits_classes,
            anomalies=[anomaly for balance in balances for anomaly in balance.anomalies],
        )
