"""Peso amount helpers.

Amounts travel as floats in JSON and are rounded half-up to the centavo
through ``Decimal`` so values like 45.555 land on 45.56.
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

CENT = Decimal("0.01")


def round_money(amount: float) -> float:
    return float(Decimal(str(amount)).quantize(CENT, rounding=ROUND_HALF_UP))


def to_cents(amount: Optional[float]) -> int:
    return int(Decimal(str(amount or 0)).quantize(CENT, rounding=ROUND_HALF_UP) * 100)


def from_cents(cents: int) -> float:
    return round(cents / 100, 2)
