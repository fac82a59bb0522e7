from __future__ import annotations

from decimal import Decimal

from domain.variance import CategoryTotals, ReconciliationCategory, VarianceDecomposer


def _totals(**values: int) -> CategoryTotals:
    return CategoryTotals(values={ReconciliationCategory(name): Decimal(value) for name, value in values.items()})


def test_deltas_are_waterfall_minus_ledger_largest_first() -> None:
    ledger = _totals(opening_balance=1000, production=300, packaging=-150, process_losses=-5)
    waterfall = _totals(opening_balance=1000, production=0, packaging=-150, process_losses=-25)

    decomposition = VarianceDecomposer().decompose(ledger, waterfall)

    assert [report.category for report in decomposition.reports[:2]] == [
        ReconciliationCategory.PRODUCTION,
        ReconciliationCategory.PROCESS_LOSSES,
    ]
    assert decomposition.reports[0].delta == Decimal(-300)
    assert decomposition.reports[1].delta == Decimal(-20)
    assert decomposition.dominant is not None
    assert decomposition.dominant.category == ReconciliationCategory.PRODUCTION
    assert not decomposition.is_balanced


def test_every_category_is_reported_and_ties_keep_category_order() -> None:
    decomposition = VarianceDecomposer().decompose(_totals(merges=5), _totals(transfers=5))

    categories = [report.category for report in decomposition.reports]
    assert set(categories) == set(ReconciliationCategory)
    assert categories[:2] == [ReconciliationCategory.TRANSFERS, ReconciliationCategory.MERGES]


def test_total_delta_matches_grand_totals() -> None:
    ledger = _totals(opening_balance=480, production=90, transfers=-12, clamping=7, distillation=-30)
    waterfall = _totals(opening_balance=500, production=100, packaging=-40, adjustments=3)

    decomposition = VarianceDecomposer().decompose(ledger, waterfall)

    assert decomposition.ledger_grand_total == Decimal(535)
    assert decomposition.waterfall_grand_total == Decimal(563)
    assert decomposition.total_delta == decomposition.waterfall_grand_total - decomposition.ledger_grand_total


def test_identical_sides_are_balanced() -> None:
    totals = _totals(opening_balance=100, packaging=-20)

    decomposition = VarianceDecomposer().decompose(totals, totals)

    assert decomposition.is_balanced
    assert decomposition.dominant is None
    assert decomposition.total_delta == Decimal(0)
