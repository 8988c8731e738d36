"""
Numeric helpers shared by the dashboard and per-resource stats.

Rates are percentages rounded to 2 decimals and are 0 whenever the
denominator is 0. Missing sums count as 0.
"""
from typing import Optional, Union

Number = Union[int, float]


def percentage(numerator: Number, denominator: Number) -> float:
    if not denominator:
        return 0
    return round(numerator / denominator * 100, 2)


def average(total: Optional[Number], count: int, digits: Optional[int] = 2) -> Number:
    """Mean of ``total`` over ``count``; ``digits=None`` rounds to an int."""
    if not count:
        return 0
    value = (total or 0) / count
    if digits is None:
        return int(round(value))
    return round(value, digits)


def or_zero(value: Optional[Number]) -> Number:
    return value if value is not None else 0
