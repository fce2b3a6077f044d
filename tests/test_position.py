from datetime import date, timedelta

import pandas as pd
import pytest

from cashrecon.errors import InvalidInput
from cashrecon.models import BalanceSnapshot, CashAccount
from cashrecon.position import (
    BurnMetrics,
    analyze_balance_trend,
    compute_burn,
    compute_position,
    history_from_frame,
    position_by_brand,
)


def _history(start: date, balances: list[float], step_days: int = 1) -> list[BalanceSnapshot]:
    return [
        BalanceSnapshot(date=start + timedelta(days=i * step_days), balance=b)
        for i, b in enumerate(balances)
    ]


def test_compute_position_counts_credit_as_liability() -> None:
    """Credit balances reduce the position whatever their sign."""
    accounts = [
        CashAccount("Main", "bank", 10000.0),
        CashAccount("Savings", "bank", 2500.50),
        CashAccount("Amex", "credit", 300.0),
        CashAccount("Visa", "credit", -200.0),
    ]
    position = compute_position(accounts)

    assert position.total_cash == 12500.50
    assert position.total_credit == -500.0
    assert position.net_position == 12000.50
    assert len(position.accounts) == 4


def test_compute_position_empty_and_invalid() -> None:
    empty = compute_position([])
    assert (empty.total_cash, empty.total_credit, empty.net_position) == (0.0, 0.0, 0.0)

    with pytest.raises(InvalidInput):
        compute_position([CashAccount("Loan", "loan", 100.0)])


def test_position_by_brand_groups_shared_accounts() -> None:
    accounts = [
        CashAccount("A bank", "bank", 1000.0, brand="brand-a"),
        CashAccount("B bank", "bank", 400.0, brand="brand-b"),
        CashAccount("Card", "credit", 50.0),
    ]
    by_brand = position_by_brand(accounts)

    assert list(by_brand) == ["SHARED", "brand-a", "brand-b"]
    assert by_brand["SHARED"].net_position == -50.0
    assert by_brand["brand-a"].net_position == 1000.0


def test_history_from_frame_nets_accounts_per_day() -> None:
    df = pd.DataFrame(
        {
            "date": ["2024-03-02", "2024-03-01", "2024-03-01", "2024-03-02"],
            "account_type": ["bank", "bank", "CREDITCARD", "credit"],
            "balance": [9500.0, 10000.0, 250.0, -300.0],
        }
    )
    history = history_from_frame(df)

    assert history == [
        BalanceSnapshot(date(2024, 3, 1), 9750.0),
        BalanceSnapshot(date(2024, 3, 2), 9200.0),
    ]
    assert history_from_frame(pd.DataFrame()) == []

    with pytest.raises(ValueError):
        history_from_frame(pd.DataFrame({"date": ["2024-03-01"]}))


def test_analyze_balance_trend() -> None:
    start = date(2024, 3, 1)

    down = analyze_balance_trend(_history(start, [10000.0, 9500.0, 9000.0]))
    assert down.trend == "down"
    assert down.change_percent == pytest.approx(-10.0)

    stable = analyze_balance_trend(_history(start, [10000.0, 10300.0]))
    assert stable.trend == "stable"

    up = analyze_balance_trend(_history(start, [10000.0, 11000.0]))
    assert up.trend == "up"

    single = analyze_balance_trend(_history(start, [10000.0]))
    assert (single.trend, single.change_percent) == ("stable", 0.0)


def test_compute_burn_endpoint() -> None:
    history = _history(date(2024, 3, 1), [10000.0, 9000.0], step_days=10)
    burn = compute_burn(history)

    assert burn.burn_rate_daily == pytest.approx(100.0)
    assert burn.burn_rate_weekly == pytest.approx(700.0)
    assert burn.burn_rate_monthly == pytest.approx(3044.0)
    assert burn.is_accumulating is False


def test_compute_burn_regression_matches_linear_history() -> None:
    history = _history(date(2024, 3, 1), [10000.0 - 50.0 * i for i in range(15)])
    burn = compute_burn(history, method="regression")

    assert burn.burn_rate_daily == pytest.approx(50.0)


def test_compute_burn_uses_trailing_window_only() -> None:
    start = date(2024, 1, 1)
    history = [
        BalanceSnapshot(start, 50000.0),
        BalanceSnapshot(start + timedelta(days=60), 10000.0),
        BalanceSnapshot(start + timedelta(days=70), 9000.0),
    ]
    burn = compute_burn(history, window_days=30)

    assert burn.burn_rate_daily == pytest.approx(100.0)


def test_compute_burn_accumulating_and_degenerate_cases() -> None:
    growing = _history(date(2024, 3, 1), [1000.0, 1300.0], step_days=3)
    burn = compute_burn(growing)
    assert burn.is_accumulating is True
    assert burn.burn_rate_daily == pytest.approx(-100.0)

    assert compute_burn(_history(date(2024, 3, 1), [1000.0])) == BurnMetrics()
    assert compute_burn([]) == BurnMetrics()

    with pytest.raises(ValueError):
        compute_burn(growing, method="average")
    with pytest.raises(ValueError):
        compute_burn(growing, window_days=0)
