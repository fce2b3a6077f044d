# CashRecon - Reconciliation & Cash-Flow Forecasting for multi-brand e-commerce
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Cash position, balance history and burn rate for CashRecon.

The net cash position is derived from the latest balances of bank and
credit accounts:

- bank balances are summed into `total_cash`,
- credit balances are always counted as liabilities (-abs(balance)),
  whatever sign convention the accounting provider used,
- net_position = total_cash + total_credit.

Burn rate is measured on the history of net positions (one snapshot per
day). A positive burn means cash is decreasing.
"""

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import timedelta
from typing import Literal

import pandas as pd

from .models import BalanceSnapshot, CashAccount, normalize_account_type, validate_cash_account
from .money import DAYS_PER_MONTH, pct_change, round_money

logger = logging.getLogger(__name__)

Trend = Literal["up", "down", "stable"]
BurnMethod = Literal["endpoint", "regression"]

BURN_METHODS: tuple[str, ...] = ("endpoint", "regression")
SHARED_BRAND = "SHARED"
TREND_THRESHOLD_PCT = 5.0


@dataclass(frozen=True)
class CashPosition:
    total_cash: float
    total_credit: float
    net_position: float
    accounts: tuple[CashAccount, ...] = ()


@dataclass(frozen=True)
class CashHistory:
    """Balance history with its overall direction."""

    snapshots: tuple[BalanceSnapshot, ...]
    trend: Trend
    change_percent: float


@dataclass(frozen=True)
class BurnMetrics:
    """
    Daily, weekly and monthly burn rates.

    Attributes
    ----------
    burn_rate_daily:
        Average cash consumed per day (positive = burning).
    burn_rate_weekly:
        burn_rate_daily * 7.
    burn_rate_monthly:
        burn_rate_daily * 30.44.
    is_accumulating:
        True when the balance trend over the window is non-negative.
    """

    burn_rate_daily: float = 0.0
    burn_rate_weekly: float = 0.0
    burn_rate_monthly: float = 0.0
    is_accumulating: bool = False

    @classmethod
    def from_daily(cls, daily: float, is_accumulating: bool) -> "BurnMetrics":
        return cls(
            burn_rate_daily=daily,
            burn_rate_weekly=daily * 7,
            burn_rate_monthly=daily * DAYS_PER_MONTH,
            is_accumulating=is_accumulating,
        )


# ---------------------------------------------------------------------------
# Position
# ---------------------------------------------------------------------------


def _credit_contribution(balance: float) -> float:
    return -abs(balance)


def compute_position(accounts: Iterable[CashAccount]) -> CashPosition:
    """
    Aggregate account balances into a cash position.

    Parameters
    ----------
    accounts:
        Latest balance per account. Each account is validated; an unknown
        account type raises InvalidInput.

    Returns
    -------
    CashPosition
        All zeros for an empty input.
    """
    accounts = tuple(validate_cash_account(a) for a in accounts)

    total_cash = sum(a.balance for a in accounts if a.account_type == "bank")
    total_credit = sum(
        _credit_contribution(a.balance) for a in accounts if a.account_type == "credit"
    )

    return CashPosition(
        total_cash=round_money(total_cash),
        total_credit=round_money(total_credit),
        net_position=round_money(total_cash + total_credit),
        accounts=accounts,
    )


def position_by_brand(accounts: Iterable[CashAccount]) -> dict[str, CashPosition]:
    """Compute one position per brand; accounts without a brand go to SHARED."""
    grouped: dict[str, list[CashAccount]] = {}
    for account in accounts:
        grouped.setdefault(account.brand or SHARED_BRAND, []).append(account)
    return {brand: compute_position(items) for brand, items in sorted(grouped.items())}


# ---------------------------------------------------------------------------
# History
# ---------------------------------------------------------------------------


def history_from_frame(df: pd.DataFrame) -> list[BalanceSnapshot]:
    """
    Build a daily net-position history from account balance snapshots.

    Parameters
    ----------
    df:
        DataFrame with columns `date`, `account_type` and `balance`, one
        row per account per day (see io.read_balance_snapshots).

    Returns
    -------
    list[BalanceSnapshot]
        One snapshot per date, sorted ascending.
    """
    if df.empty:
        return []

    missing = {"date", "account_type", "balance"} - set(df.columns)
    if missing:
        raise ValueError(f"Balance frame is missing columns: {sorted(missing)}")

    work = pd.DataFrame(
        {
            "date": pd.to_datetime(df["date"]).dt.date,
            "account_type": df["account_type"].map(normalize_account_type),
            "balance": df["balance"].astype(float),
        }
    )
    is_credit = work["account_type"] == "credit"
    work.loc[is_credit, "balance"] = -work.loc[is_credit, "balance"].abs()

    per_day = work.groupby("date", sort=True)["balance"].sum()
    return [
        BalanceSnapshot(date=d, balance=round_money(float(value)))
        for d, value in per_day.items()
    ]


def analyze_balance_trend(snapshots: Sequence[BalanceSnapshot]) -> CashHistory:
    """Classify the history as up / down / stable (+/- 5 % threshold)."""
    ordered = tuple(sorted(snapshots, key=lambda s: s.date))
    if len(ordered) < 2:
        return CashHistory(snapshots=ordered, trend="stable", change_percent=0.0)

    change = pct_change(ordered[0].balance, ordered[-1].balance)
    trend: Trend = "stable"
    if change > TREND_THRESHOLD_PCT:
        trend = "up"
    elif change < -TREND_THRESHOLD_PCT:
        trend = "down"

    return CashHistory(snapshots=ordered, trend=trend, change_percent=change)


# ---------------------------------------------------------------------------
# Burn
# ---------------------------------------------------------------------------


def _trailing_window(
    history: Sequence[BalanceSnapshot],
    window_days: int,
) -> list[BalanceSnapshot]:
    ordered = sorted(history, key=lambda s: s.date)
    if not ordered:
        return []
    cutoff = ordered[-1].date - timedelta(days=window_days)
    return [s for s in ordered if s.date >= cutoff]


def _endpoint_burn(window: list[BalanceSnapshot], window_days: int) -> float:
    first, last = window[0], window[-1]
    elapsed = (last.date - first.date).days or window_days
    return -(last.balance - first.balance) / elapsed


def _regression_burn(window: list[BalanceSnapshot]) -> float:
    first_date = window[0].date
    frame = pd.DataFrame(
        {
            "offset": [float((s.date - first_date).days) for s in window],
            "balance": [s.balance for s in window],
        }
    )
    variance = frame["offset"].var()
    if not variance:
        return 0.0
    slope = frame["offset"].cov(frame["balance"]) / variance
    return -float(slope)


def compute_burn(
    history: Sequence[BalanceSnapshot],
    *,
    window_days: int = 30,
    method: BurnMethod = "endpoint",
) -> BurnMetrics:
    """
    Estimate the burn rate over the trailing window of the history.

    Parameters
    ----------
    history:
        Net-position snapshots (any order).
    window_days:
        Only snapshots dated within `window_days` of the latest one are used.
    method:
        "endpoint" compares the first and last snapshots of the window;
        "regression" fits a least-squares line through all of them.

    Returns
    -------
    BurnMetrics
        All zeros (and not accumulating) when fewer than two snapshots are
        available in the window.
    """
    if method not in BURN_METHODS:
        raise ValueError(f"Unknown burn method: {method!r}")
    if window_days <= 0:
        raise ValueError("window_days must be positive.")

    window = _trailing_window(history, window_days)
    if len(window) < 2:
        logger.info("Not enough balance history to compute burn (%d snapshot)", len(window))
        return BurnMetrics()

    if method == "regression":
        daily = _regression_burn(window)
    else:
        daily = _endpoint_burn(window, window_days)

    return BurnMetrics.from_daily(daily, is_accumulating=daily <= 0)
