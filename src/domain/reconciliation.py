from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel

from .aggregator import AggregationResult, Aggregator
from .event_store import DataAccessFailure, EventStore
from .policy import ReconciliationPolicy
from .reconstructor import BatchLedgerReconstructor
from .variance import VarianceDecomposer, VarianceDecomposition, ledger_category_totals, waterfall_category_totals
from .waterfall import WaterfallCalculator, WaterfallFilters, WaterfallTotals

logger = logging.getLogger(__name__)


class ReconciliationRun(BaseModel):
    period_start: datetime
    period_end: datetime
    opening: AggregationResult
    closing: AggregationResult
    waterfall: WaterfallTotals
    decomposition: VarianceDecomposition

    @property
    def opening_difference(self) -> Decimal:
        """Configured opening balance minus the ledger's own volume at period start."""
        return self.waterfall.opening_balance - self.opening.primary_volume


class ReconciliationService:
    """Wire the ledger aggregate, the waterfall and the decomposer into one run.

    A run either completes, possibly with a non-zero variance, or raises
    :class:`DataAccessFailure`. Nothing partial is returned.
    """

    def __init__(
        self,
        *,
        store: EventStore,
        policy: ReconciliationPolicy | None = None,
        filters: WaterfallFilters | None = None,
        max_workers: int = 1,
    ) -> None:
        policy = policy or ReconciliationPolicy()
        self._aggregator = Aggregator(
            store=store,
            reconstructor=BatchLedgerReconstructor(policy=policy),
            tax_class_map=policy.tax_class_map,
            max_workers=max_workers,
        )
        self._waterfall = WaterfallCalculator(store=store, filters=filters)
        self._decomposer = VarianceDecomposer()

    def run(self, *, period_start: datetime, period_end: datetime, opening_balance: Decimal) -> ReconciliationRun:
        if period_end < period_start:
            raise ValueError("period_end must not precede period_start")

        logger.info("Reconciling %s -> %s", period_start.isoformat(), period_end.isoformat())
        try:
            opening = self._aggregator.aggregate(period_start)
            closing = self._aggregator.aggregate(period_end)
            waterfall = self._waterfall.calculate(period_start, period_end, opening_balance=opening_balance)
        except DataAccessFailure:
            logger.error("Reconciliation %s -> %s aborted: source events unavailable", period_start, period_end)
            raise

        decomposition = self._decomposer.decompose(
            ledger_category_totals(opening, closing),
            waterfall_category_totals(waterfall),
        )
        if decomposition.total_delta != 0:
            dominant = decomposition.dominant
            logger.info(
                "Variance %s L (waterfall - ledger); largest contributor %s",
                decomposition.total_delta,
                dominant.category if dominant else "none",
            )

        return ReconciliationRun(
            period_start=period_start,
            period_end=period_end,
            opening=opening,
            closing=closing,
            waterfall=waterfall,
            decomposition=decomposition,
        )
