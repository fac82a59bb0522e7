from __future__ import annotations

from decimal import Decimal

from domain.units import liters_to_wine_gallons


def format_decimal(value: Decimal) -> str:
    quantized = value.normalize()
    # Avoid scientific notation for integers.
    if quantized == quantized.to_integral():
        return f"{quantized:.0f}"
    return format(quantized, "f")


def format_currency(value: Decimal) -> str:
    cents = value.quantize(Decimal("0.01"))
    return f"{cents:.2f}"


def format_liters(value: Decimal) -> str:
    return f"{value.quantize(Decimal('0.01')):.2f}"


def format_signed_liters(value: Decimal) -> str:
    text = format_liters(value)
    if value > 0:
        return f"+{text}"
    return text


def format_gallons(liters: Decimal) -> str:
    return f"{liters_to_wine_gallons(liters).quantize(Decimal('0.01')):.2f}"
