# CashRecon - Reconciliation & Cash-Flow Forecasting for multi-brand e-commerce
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Money helpers for CashRecon.

Amounts travel through the engine as plain floats expressed in currency
units (e.g. 120.50 GBP). Whenever two amounts are compared or persisted,
they are first rounded to cents so that binary float noise never decides
whether an order and an invoice "match".

The database layer stores amounts as signed integer cents (see db.py);
`to_cents` / `from_cents` are the only conversion points.
"""

import math
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

CURRENCY_SYMBOLS: dict[str, str] = {
    "GBP": "£",
    "EUR": "€",
    "USD": "$",
}

# Average number of days in a month, used for monthly burn and runway.
DAYS_PER_MONTH = 30.44


def round_money(value: float, decimals: int = 2) -> float:
    """Round a monetary value half-up to the given number of decimals."""
    quantum = Decimal(1).scaleb(-decimals)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))


def to_cents(value: float) -> int:
    """Convert an amount in currency units to signed integer cents."""
    return int(Decimal(str(value)).scaleb(2).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def from_cents(cents: int) -> float:
    """Convert signed integer cents back to currency units."""
    return float(cents) / 100.0


def amounts_equal(a: float, b: float, tolerance: float = 0.005) -> bool:
    """Return True if both amounts are equal once rounded to cents."""
    return abs(round_money(a) - round_money(b)) <= tolerance


def pct_difference(reference: float, other: float) -> float:
    """
    Absolute difference between two amounts, as a percentage of `reference`.

    Returns 0.0 when both values are zero and ``inf`` when only the
    reference is zero (any difference is then infinitely large).
    """
    diff = abs(round_money(reference) - round_money(other))
    if diff == 0:
        return 0.0
    if reference == 0:
        return math.inf
    return diff / abs(reference) * 100.0


def pct_change(old: float, new: float) -> float:
    """Relative change from `old` to `new` in percent (0.0 if old is zero)."""
    if old == 0:
        return 0.0
    return (new - old) / abs(old) * 100.0


def safe_ratio(numerator: float, denominator: float) -> Optional[float]:
    """Return numerator / denominator, or None when the denominator is zero."""
    if denominator == 0:
        return None
    return numerator / denominator


def format_amount(
    amount: float,
    currency: str = "GBP",
    *,
    signed: bool = False,
    decimals: int = 2,
) -> str:
    """
    Format an amount for display in reasons, alerts and console tables.

    Examples
    --------
    >>> format_amount(1234.5)
    '£1,234.50'
    >>> format_amount(-20, "EUR", signed=True)
    '-€20.00'
    >>> format_amount(3, "CHF")
    'CHF 3.00'
    """
    body = f"{abs(round_money(amount, decimals)):,.{decimals}f}"
    symbol = CURRENCY_SYMBOLS.get(currency.upper())
    text = f"{symbol}{body}" if symbol else f"{currency.upper()} {body}"

    if amount < 0:
        return f"-{text}"
    if signed and amount > 0:
        return f"+{text}"
    return text
