"""Small numeric helpers shared by the state modules."""

from __future__ import annotations

import math


def percentage(total: float, amount: float) -> float:
    """Return ``amount`` as a percentage of ``total``.

    Raises ValueError if ``amount`` exceeds ``total``. A zero total with a zero
    amount yields NaN.
    """
    if total < amount:
        raise ValueError(f"total must be >= amount; total={total}, amount={amount}")
    if total == 0:
        return math.nan
    return (amount / total) * 100.0


def percent_of(amount: int | float, total: int | float) -> int | float:
    """Return what percentage ``amount`` is of ``total``.

    Integer inputs give an integer result (truncated, NaN becomes 0); float
    inputs give a float result.
    """
    result = percentage(float(total), float(amount))
    if isinstance(amount, int) and isinstance(total, int):
        return 0 if math.isnan(result) else int(result)
    return result