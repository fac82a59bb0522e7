from __future__ import annotations

from decimal import Decimal
from enum import StrEnum

from pydantic import BaseModel

from .aggregator import AggregationResult
from .waterfall import PROCESS_LOSS_LINES, WaterfallLine, WaterfallTotals


class ReconciliationCategory(StrEnum):
    OPENING_BALANCE = "opening_balance"
    PRODUCTION = "production"
    TRANSFERS = "transfers"
    MERGES = "merges"
    PACKAGING = "packaging"
    DISTILLATION = "distillation"
    ADJUSTMENTS = "adjustments"
    PROCESS_LOSSES = "process_losses"
    CLAMPING = "clamping"


_CATEGORY_ORDER = {category: index for index, category in enumerate(ReconciliationCategory)}


class CategoryTotals(BaseModel):
    """Signed contribution of each category to ending inventory.

    Inflows are positive and outflows negative, so ``grand_total`` is the
    ending balance of the side that produced the figures.
    """

    values: dict[ReconciliationCategory, Decimal]

    def value(self, category: ReconciliationCategory) -> Decimal:
        return self.values.get(category, Decimal(0))

    @property
    def grand_total(self) -> Decimal:
        return sum(self.values.values(), start=Decimal(0))


class VarianceReport(BaseModel):
    category: ReconciliationCategory
    ledger_total: Decimal
    waterfall_total: Decimal
    delta: Decimal


class VarianceDecomposition(BaseModel):
    reports: list[VarianceReport]
    ledger_grand_total: Decimal
    waterfall_grand_total: Decimal
    total_delta: Decimal

    @property
    def dominant(self) -> VarianceReport | None:
        """The category contributing most to the mismatch, if there is any mismatch."""
        if not self.reports or self.reports[0].delta == 0:
            return None
        return self.reports[0]

    @property
    def is_balanced(self) -> bool:
        return all(report.delta == 0 for report in self.reports)


def ledger_category_totals(opening: AggregationResult, closing: AggregationResult) -> CategoryTotals:
    """Split the ledger's closing primary volume into per-category period activity.

    Per batch, clamped volume equals raw net plus clamped loss, and raw net is a
    plain sum of components. The categories below therefore add up exactly to
    ``closing.primary_volume``.
    """
    period = closing.primary_components.minus(opening.primary_components)
    values = {
        ReconciliationCategory.OPENING_BALANCE: opening.primary_volume,
        ReconciliationCategory.PRODUCTION: period.effective_initial + period.merges_in_external,
        ReconciliationCategory.TRANSFERS: period.transfers_in - period.transfers_out,
        ReconciliationCategory.MERGES: period.merges_in_batch - period.merges_out,
        ReconciliationCategory.PACKAGING: -(period.packaging_volume + period.kegging_volume),
        ReconciliationCategory.DISTILLATION: -period.distillation,
        ReconciliationCategory.ADJUSTMENTS: period.positive_adjustments - period.negative_adjustments,
        ReconciliationCategory.PROCESS_LOSSES: -(
            period.transfer_loss
            + period.packaging_loss
            + period.kegging_loss
            + period.racking_loss
            + period.filter_loss
        ),
        ReconciliationCategory.CLAMPING: closing.primary_loss_volume - opening.primary_loss_volume,
    }
    return CategoryTotals(values=values)


def waterfall_category_totals(waterfall: WaterfallTotals) -> CategoryTotals:
    """Express the waterfall in the same categories; its grand total is the waterfall ending balance."""
    losses = sum((waterfall.line(line) for line in PROCESS_LOSS_LINES), start=Decimal(0))
    values = {
        ReconciliationCategory.OPENING_BALANCE: waterfall.opening_balance,
        ReconciliationCategory.PRODUCTION: waterfall.production,
        ReconciliationCategory.TRANSFERS: (
            waterfall.line(WaterfallLine.SPIRITS_TRANSFERRED_IN) - waterfall.line(WaterfallLine.TRANSFERS_TO_UNTAXED)
        ),
        ReconciliationCategory.MERGES: (
            waterfall.line(WaterfallLine.SPIRITS_MERGED_IN) - waterfall.line(WaterfallLine.MERGES_TO_UNTAXED)
        ),
        ReconciliationCategory.PACKAGING: -waterfall.removals,
        ReconciliationCategory.DISTILLATION: -waterfall.distillation,
        ReconciliationCategory.ADJUSTMENTS: (
            waterfall.positive_adjustments - waterfall.line(WaterfallLine.NEGATIVE_ADJUSTMENTS)
        ),
        ReconciliationCategory.PROCESS_LOSSES: -losses,
        ReconciliationCategory.CLAMPING: Decimal(0),
    }
    return CategoryTotals(values=values)


class VarianceDecomposer:
    def decompose(self, ledger: CategoryTotals, waterfall: CategoryTotals) -> VarianceDecomposition:
        """Compare both sides category by category.

        ``delta`` is waterfall minus ledger. Reports come largest absolute delta
        first, so the dominant cause of a mismatch is at the top.
        """
        reports = [
            VarianceReport(
                category=category,
                ledger_total=ledger.value(category),
                waterfall_total=waterfall.value(category),
                delta=waterfall.value(category) - ledger.value(category),
            )
            for category in ReconciliationCategory
        ]
        reports.sort(key=lambda report: (-abs(report.delta), _CATEGORY_ORDER[report.category]))

        return VarianceDecomposition(
            reports=reports,
            ledger_grand_total=ledger.grand_total,
            waterfall_grand_total=waterfall.grand_total,
            total_delta=sum((report.delta for report in reports), start=Decimal(0)),
        )
