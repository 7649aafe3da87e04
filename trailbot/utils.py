from __future__ import annotations

import random
from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal


def backoff_s(n: int) -> float:
    base = min(60, 2**max(0, n))
    return base + random.random()


def _step(precision: int) -> Decimal:
    return Decimal(1).scaleb(-precision)


def round_price(value: Decimal, precision: int) -> Decimal:
    """Half-up to `precision` decimals, like the exchange's own price formatting."""
    return Decimal(value).quantize(_step(precision), rounding=ROUND_HALF_UP)


def round_qty(value: Decimal, precision: int) -> Decimal:
    # Down, so the position never exceeds the budget.
    return Decimal(value).quantize(_step(precision), rounding=ROUND_DOWN)
