from __future__ import annotations

from decimal import Decimal
from enum import StrEnum

LITERS_PER_WINE_GALLON = Decimal("3.78541")
WINE_GALLONS_PER_LITER = Decimal("0.264172")


class VolumeUnit(StrEnum):
    LITER = "L"
    WINE_GALLON = "gal"


def liters_to_wine_gallons(liters: Decimal) -> Decimal:
    if liters < 0:
        return Decimal(0)
    return liters * WINE_GALLONS_PER_LITER


def wine_gallons_to_liters(gallons: Decimal) -> Decimal:
    if gallons < 0:
        return Decimal(0)
    return gallons * LITERS_PER_WINE_GALLON


def to_liters(value: Decimal, unit: VolumeUnit | str) -> Decimal:
    """Normalize a stored volume to liters."""
    unit = VolumeUnit(unit)
    if unit == VolumeUnit.WINE_GALLON:
        return wine_gallons_to_liters(value)
    return value
