from datetime import date

import pandas as pd
import pytest

import cashrecon.periods as periods


def test_bucket_start_and_end_per_granularity() -> None:
    d = date(2024, 2, 14)  # Wednesday

    assert periods.bucket_start(d, "day") == d
    assert periods.bucket_start(d, "week") == date(2024, 2, 12)
    assert periods.bucket_end(d, "week") == date(2024, 2, 18)
    assert periods.bucket_start(d, "month") == date(2024, 2, 1)
    assert periods.bucket_end(d, "month") == date(2024, 2, 29)
    assert periods.bucket_start(d, "quarter") == date(2024, 1, 1)
    assert periods.bucket_end(d, "quarter") == date(2024, 3, 31)
    assert periods.bucket_end(d, "year") == date(2024, 12, 31)


def test_bucket_labels() -> None:
    d = date(2024, 3, 1)
    assert periods.bucket_label(d, "day") == "2024-03-01"
    assert periods.bucket_label(d, "week") == "2024-W09"
    assert periods.bucket_label(d, "month") == "2024-03"
    assert periods.bucket_label(d, "quarter") == "2024-Q1"
    assert periods.bucket_label(d, "year") == "2024"


def test_unknown_granularity_raises() -> None:
    with pytest.raises(ValueError):
        periods.bucket_start(date(2024, 1, 1), "fortnight")


def test_bucket_series_sums_per_bucket() -> None:
    df = pd.DataFrame(
        {
            "date": ["2024-01-01", "2024-01-03", "2024-01-09"],
            "amount": [10.0, 5.5, -2.0],
        }
    )
    out = periods.bucket_series(df, "week")

    assert list(out["label"]) == ["2024-W01", "2024-W02"]
    assert list(out["amount"]) == [15.5, -2.0]


def test_add_months_clamps_to_month_end() -> None:
    assert periods.add_months(date(2024, 1, 31), 1) == date(2024, 2, 29)
    assert periods.add_months(date(2023, 11, 15), 3) == date(2024, 2, 15)
    assert periods.add_months(date(2024, 3, 31), -1) == date(2024, 2, 29)


def test_date_range_is_inclusive() -> None:
    days = periods.date_range(date(2024, 1, 30), 2)
    assert days == [date(2024, 1, 30), date(2024, 1, 31), date(2024, 2, 1)]


def test_filter_by_period_inclusive_bounds() -> None:
    df = pd.DataFrame({"date": ["2024-01-31", "2024-02-01", "2024-02-29", "2024-03-01"]})
    period = periods.bucket_period(date(2024, 2, 10), "month")

    out = periods.filter_by_period(df, period)
    assert list(out["date"]) == ["2024-02-01", "2024-02-29"]
