from __future__ import annotations

from decimal import Decimal

import pytest
from pydantic import ValidationError

from domain.base_types import Classification, TaxClass
from domain.policy import ReconciliationPolicy
from domain.tax_classes import TaxClassMap


def test_default_mapping() -> None:
    tax_classes = TaxClassMap()

    assert tax_classes.tax_class_for(Classification.BASE_FERMENT) == TaxClass.HARD_CIDER
    assert tax_classes.tax_class_for(Classification.FORTIFIED_BLEND) == TaxClass.WINE_16_TO_21
    assert tax_classes.tax_class_for(Classification.JUICE_ONLY) is None
    assert tax_classes.tax_class_for(Classification.DISTILLATE_RESULT) == TaxClass.APPLE_BRANDY


def test_spirits_and_juice_are_outside_the_primary_scope() -> None:
    tax_classes = TaxClassMap()

    assert tax_classes.is_spirits(TaxClass.APPLE_BRANDY)
    assert not tax_classes.is_spirits(None)
    assert not tax_classes.is_primary(Classification.DISTILLATE_RESULT)
    assert not tax_classes.is_primary(Classification.JUICE_ONLY)
    assert tax_classes.is_primary(Classification.SECONDARY_FERMENT)


def test_overrides_replace_single_entries() -> None:
    tax_classes = TaxClassMap.with_overrides({Classification.FORTIFIED_BLEND: TaxClass.WINE_21_TO_24})

    assert tax_classes.tax_class_for(Classification.FORTIFIED_BLEND) == TaxClass.WINE_21_TO_24
    assert tax_classes.tax_class_for(Classification.BASE_FERMENT) == TaxClass.HARD_CIDER


def test_unmapped_classification_falls_back_to_hard_cider() -> None:
    tax_classes = TaxClassMap(mapping={})

    assert tax_classes.tax_class_for(Classification.OTHER) == TaxClass.HARD_CIDER


@pytest.mark.parametrize(
    "kwargs",
    [
        {"transfer_derivation_threshold": Decimal(0)},
        {"transfer_derivation_threshold": Decimal("1.01")},
        {"packaging_loss_tolerance_liters": Decimal(-1)},
    ],
)
def test_policy_rejects_out_of_range_values(kwargs: dict[str, Decimal]) -> None:
    with pytest.raises(ValidationError):
        ReconciliationPolicy(**kwargs)
