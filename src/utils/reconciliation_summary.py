from __future__ import annotations

from decimal import Decimal

from domain.aggregator import AggregationResult, TaxClassTotal
from domain.excise import ExciseTaxEstimate, calculate_hard_cider_tax
from domain.reconciliation import ReconciliationRun
from domain.units import liters_to_wine_gallons
from domain.variance import VarianceDecomposition
from domain.waterfall import WaterfallLine, WaterfallTotals

from .formatting import format_currency, format_decimal, format_gallons, format_liters, format_signed_liters


def estimate_removal_excise(
    run: ReconciliationRun, *, prior_year_gallons_used: Decimal = Decimal(0)
) -> ExciseTaxEstimate:
    """Hard-cider excise on the period's taxable removals (packaging and kegs)."""
    return calculate_hard_cider_tax(
        liters_to_wine_gallons(run.waterfall.removals),
        prior_year_gallons_used=prior_year_gallons_used,
    )


def render_tax_class_totals(result: AggregationResult) -> None:
    print(f"Ledger inventory as of {result.as_of.isoformat()}:")
    rows: list[TaxClassTotal] = list(result.totals.values())
    if not rows and result.untaxed_volume == 0:
        print("  (no eligible batches)")
        return

    class_width = max(len("Tax class"), max((len(row.tax_class.value) for row in rows), default=0), len("untaxed"))
    batches_width = max(len("Batches"), max((len(str(row.batch_count)) for row in rows), default=0))
    liters_width = max(len("Liters"), max((len(format_liters(row.clamped_volume)) for row in rows), default=0))
    gallons_width = max(len("Wine gal"), max((len(format_gallons(row.clamped_volume)) for row in rows), default=0))
    loss_width = max(len("Clamped loss"), max((len(format_liters(row.clamped_loss_volume)) for row in rows), default=0))

    header = (
        f"{'Tax class':<{class_width}} "
        f"{'Batches':>{batches_width}} "
        f"{'Liters':>{liters_width}} "
        f"{'Wine gal':>{gallons_width}} "
        f"{'Clamped loss':>{loss_width}}"
    )
    lines = [header, "-" * len(header)]
    for row in rows:
        marker = " (spirits)" if row.tax_class in result.spirits_classes else ""
        lines.append(
            f"{row.tax_class.value:<{class_width}} "
            f"{row.batch_count:>{batches_width}} "
            f"{format_liters(row.clamped_volume):>{liters_width}} "
            f"{format_gallons(row.clamped_volume):>{gallons_width}} "
            f"{format_liters(row.clamped_loss_volume):>{loss_width}}"
            f"{marker}"
        )
    if result.untaxed_volume:
        lines.append(
            f"{'untaxed':<{class_width}} "
            f"{'':>{batches_width}} "
            f"{format_liters(result.untaxed_volume):>{liters_width}} "
            f"{format_gallons(result.untaxed_volume):>{gallons_width}} "
            f"{format_liters(result.untaxed_loss_volume):>{loss_width}}"
        )

    print("\n".join(lines))
    print(f"  Comparable volume: {format_liters(result.primary_volume)} L")


def render_waterfall(waterfall: WaterfallTotals) -> None:
    print(f"Waterfall {waterfall.window.start.isoformat()} -> {waterfall.window.end.isoformat()} (L):")
    rows: list[tuple[str, Decimal]] = [("opening balance", waterfall.opening_balance)]
    rows.extend((line.value.replace("_", " "), waterfall.line(line)) for line in WaterfallLine)
    rows.append(("ending balance", waterfall.ending_balance))

    label_width = max(len(label) for label, _ in rows)
    value_width = max(len(format_liters(value)) for _, value in rows)
    for label, value in rows:
        print(f"  {label:<{label_width}} {format_liters(value):>{value_width}}")


def render_variance(decomposition: VarianceDecomposition) -> None:
    print("Variance by category (waterfall - ledger, L):")
    category_width = max(
        len("Category"), max((len(report.category.value) for report in decomposition.reports), default=0)
    )
    ledger_width = max(
        len("Ledger"),
        max((len(format_signed_liters(report.ledger_total)) for report in decomposition.reports), default=0),
    )
    waterfall_width = max(
        len("Waterfall"),
        max((len(format_signed_liters(report.waterfall_total)) for report in decomposition.reports), default=0),
    )
    delta_width = max(
        len("Delta"), max((len(format_signed_liters(report.delta)) for report in decomposition.reports), default=0)
    )

    header = (
        f"{'Category':<{category_width}} "
        f"{'Ledger':>{ledger_width}} "
        f"{'Waterfall':>{waterfall_width}} "
        f"{'Delta':>{delta_width}}"
    )
    lines = [header, "-" * len(header)]
    for report in decomposition.reports:
        lines.append(
            f"{report.category.value:<{category_width}} "
            f"{format_signed_liters(report.ledger_total):>{ledger_width}} "
            f"{format_signed_liters(report.waterfall_total):>{waterfall_width}} "
            f"{format_signed_liters(report.delta):>{delta_width}}"
        )
    print("\n".join(lines))

    if decomposition.is_balanced:
        print("  Balanced: ledger and waterfall agree.")
    else:
        print(f"  Total variance: {format_signed_liters(decomposition.total_delta)} L")


def render_flagged_batches(result: AggregationResult) -> None:
    print("Flagged batches:")
    flagged: list[str] = []
    for balance in result.clamped_balances:
        flagged.append(f"  {balance.batch_id}: clamped, {format_liters(balance.clamped_loss_volume)} L over-drawn")
    for balance in result.transfer_derived_balances:
        flagged.append(
            f"  {balance.batch_id}: transfer-derived, initial {format_decimal(balance.zeroed_initial_volume)} L ignored"
        )
    for anomaly in result.anomalies:
        flagged.append(
            f"  {anomaly.batch_id}: {anomaly.event_kind.value} names unknown batch "
            f"{anomaly.counterpart_batch_id}, {format_liters(anomaly.excluded_volume)} L excluded"
        )
    if not flagged:
        print("  (none)")
        return
    print("\n".join(flagged))


def render_excise_estimate(estimate: ExciseTaxEstimate) -> None:
    print("Hard cider excise estimate (USD):")
    print(f"  Taxable removals:      {format_liters(estimate.taxable_gallons)} gal")
    print(f"  Gross tax:             {format_currency(estimate.gross_tax)}")
    print(f"  Small producer credit: {format_currency(estimate.small_producer_credit)}")
    print(f"  Net tax owed:          {format_currency(estimate.net_tax_owed)}")


def render_reconciliation(run: ReconciliationRun, *, excise: ExciseTaxEstimate | None = None) -> None:
    render_tax_class_totals(run.closing)
    print()
    render_waterfall(run.waterfall)
    print()
    render_variance(run.decomposition)
    print()
    render_flagged_batches(run.closing)
    if excise is not None:
        print()
        render_excise_estimate(excise)

