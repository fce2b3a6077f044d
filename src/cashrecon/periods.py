# CashRecon - Reconciliation & Cash-Flow Forecasting for multi-brand e-commerce
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Period helpers for CashRecon.

This module defines a Period value object and the date-bucketing helpers
used to group cash movements and projections by day, week, month, quarter
or year. Weeks follow the ISO convention (Monday to Sunday).
"""

from calendar import monthrange
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Literal

import pandas as pd

Granularity = Literal["day", "week", "month", "quarter", "year"]

GRANULARITIES: tuple[str, ...] = ("day", "week", "month", "quarter", "year")


@dataclass
class Period:
    """Represents a reporting period with a human-readable label."""

    start: date
    end: date
    label: str


def _today() -> date:
    """Return today's date as a date object (isolated for easier testing)."""
    return datetime.today().date()


def _check_granularity(granularity: str) -> None:
    if granularity not in GRANULARITIES:
        raise ValueError(f"Unknown granularity: {granularity!r}")


def bucket_start(d: date, granularity: Granularity) -> date:
    """Return the first day of the bucket containing `d`."""
    _check_granularity(granularity)

    if granularity == "day":
        return d
    if granularity == "week":
        return d - timedelta(days=d.weekday())
    if granularity == "month":
        return d.replace(day=1)
    if granularity == "quarter":
        first_month = 3 * ((d.month - 1) // 3) + 1
        return date(d.year, first_month, 1)
    return date(d.year, 1, 1)


def bucket_end(d: date, granularity: Granularity) -> date:
    """Return the last day of the bucket containing `d`."""
    start = bucket_start(d, granularity)

    if granularity == "day":
        return start
    if granularity == "week":
        return start + timedelta(days=6)
    if granularity == "month":
        return start.replace(day=monthrange(start.year, start.month)[1])
    if granularity == "quarter":
        last_month = start.month + 2
        return date(start.year, last_month, monthrange(start.year, last_month)[1])
    return date(start.year, 12, 31)


def bucket_label(d: date, granularity: Granularity) -> str:
    """
    Return a compact label for the bucket containing `d`.

    day: 2024-03-01, week: 2024-W09, month: 2024-03,
    quarter: 2024-Q1, year: 2024.
    """
    _check_granularity(granularity)

    if granularity == "day":
        return d.isoformat()
    if granularity == "week":
        iso_year, iso_week, _ = d.isocalendar()
        return f"{iso_year}-W{iso_week:02d}"
    if granularity == "month":
        return f"{d.year}-{d.month:02d}"
    if granularity == "quarter":
        return f"{d.year}-Q{(d.month - 1) // 3 + 1}"
    return str(d.year)


def bucket_period(d: date, granularity: Granularity) -> Period:
    """Return the full Period (start, end, label) containing `d`."""
    return Period(
        start=bucket_start(d, granularity),
        end=bucket_end(d, granularity),
        label=bucket_label(d, granularity),
    )


def bucket_series(
    df: pd.DataFrame,
    granularity: Granularity,
    *,
    date_column: str = "date",
    value_column: str = "amount",
) -> pd.DataFrame:
    """
    Sum `value_column` per date bucket.

    Parameters
    ----------
    df:
        DataFrame with at least `date_column` (date-like) and `value_column`.
    granularity:
        Bucket size (day, week, month, quarter, year).

    Returns
    -------
    pandas.DataFrame
        Columns: bucket (date of the bucket start), label, amount.
        Sorted by bucket, one row per non-empty bucket.
    """
    _check_granularity(granularity)

    if df.empty:
        return pd.DataFrame(columns=["bucket", "label", "amount"])

    dates = pd.to_datetime(df[date_column]).dt.date
    buckets = dates.map(lambda d: bucket_start(d, granularity))

    grouped = (
        pd.DataFrame({"bucket": buckets, "amount": df[value_column].astype(float)})
        .groupby("bucket", sort=True)["amount"]
        .sum()
        .reset_index()
    )
    grouped["label"] = grouped["bucket"].map(lambda d: bucket_label(d, granularity))
    grouped["amount"] = grouped["amount"].round(2)
    return grouped[["bucket", "label", "amount"]]


def days_between(start: date, end: date) -> int:
    """Signed number of days from `start` to `end`."""
    return (end - start).days


def add_months(d: date, months: int) -> date:
    """Shift `d` by whole months, clamping the day to the target month's end."""
    month_index = d.month - 1 + months
    year = d.year + month_index // 12
    month = month_index % 12 + 1
    return date(year, month, min(d.day, monthrange(year, month)[1]))


def date_range(start: date, days: int) -> list[date]:
    """Return `days + 1` consecutive dates starting at `start` (inclusive)."""
    return [start + timedelta(days=i) for i in range(days + 1)]


def filter_by_period(
    df: pd.DataFrame,
    period: Period,
    column: str = "date",
) -> pd.DataFrame:
    """
    Filter a DataFrame to keep only rows whose `column` lies within the period.

    Parameters
    ----------
    df:
        DataFrame with a date-like column.
    period:
        Period defining the [start, end] boundaries (inclusive).

    Returns
    -------
    pandas.DataFrame
        Filtered copy of the input.
    """
    values = pd.to_datetime(df[column])
    mask = (values >= pd.Timestamp(period.start)) & (
        values <= pd.Timestamp(period.end)
    )
    return df.loc[mask].copy()
