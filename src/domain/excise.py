from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

from pydantic import BaseModel

# Federal rates for hard cider under 8.5% ABV, per wine gallon.
HARD_CIDER_TAX_RATE = Decimal("0.226")
SMALL_PRODUCER_CREDIT_PER_GALLON = Decimal("0.056")
SMALL_PRODUCER_CREDIT_LIMIT_GALLONS = Decimal(30000)

_CENTS = Decimal("0.01")
_RATE_PLACES = Decimal("0.0001")


class ExciseTaxEstimate(BaseModel):
    taxable_gallons: Decimal
    gross_tax: Decimal
    small_producer_credit: Decimal
    credit_eligible_gallons: Decimal
    net_tax_owed: Decimal
    effective_rate: Decimal


def calculate_hard_cider_tax(
    taxable_gallons: Decimal,
    prior_year_gallons_used: Decimal = Decimal(0),
) -> ExciseTaxEstimate:
    """Estimate excise tax on removals, applying the small producer credit.

    The credit covers the first 30,000 gallons removed in a calendar year;
    ``prior_year_gallons_used`` is what earlier periods of the same year consumed.
    """
    if taxable_gallons <= 0:
        zero = Decimal(0)
        return ExciseTaxEstimate(
            taxable_gallons=zero,
            gross_tax=zero,
            small_producer_credit=zero,
            credit_eligible_gallons=zero,
            net_tax_owed=zero,
            effective_rate=zero,
        )

    gross_tax = taxable_gallons * HARD_CIDER_TAX_RATE
    remaining_credit_gallons = max(Decimal(0), SMALL_PRODUCER_CREDIT_LIMIT_GALLONS - prior_year_gallons_used)
    credit_eligible_gallons = min(taxable_gallons, remaining_credit_gallons)
    credit = credit_eligible_gallons * SMALL_PRODUCER_CREDIT_PER_GALLON
    net_tax = gross_tax - credit

    return ExciseTaxEstimate(
        taxable_gallons=taxable_gallons,
        gross_tax=gross_tax.quantize(_CENTS, rounding=ROUND_HALF_UP),
        small_producer_credit=credit.quantize(_CENTS, rounding=ROUND_HALF_UP),
        credit_eligible_gallons=credit_eligible_gallons,
        net_tax_owed=net_tax.quantize(_CENTS, rounding=ROUND_HALF_UP),
        effective_rate=(net_tax / taxable_gallons).quantize(_RATE_PLACES, rounding=ROUND_HALF_UP),
    )
