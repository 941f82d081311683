from __future__ import annotations

from decimal import ROUND_HALF_EVEN, Decimal
from typing import Any


def to_decimal(value: Any) -> Decimal:
    # str() first so binary float noise does not leak into the result.
    return value if isinstance(value, Decimal) else Decimal(str(value))


def round_half_even(value: Any, places: int = 2) -> float:
    q = Decimal(1).scaleb(-int(places))
    return float(to_decimal(value).quantize(q, rounding=ROUND_HALF_EVEN))
