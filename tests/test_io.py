from datetime import date
from pathlib import Path

import pytest

from cashrecon.io import read_balance_snapshots, read_cash_events, read_invoices, read_orders


def _csv(tmp_path: Path, name: str, content: str) -> Path:
    path = tmp_path / name
    path.write_text(content.strip() + "\n", encoding="utf-8")
    return path


def test_read_orders(tmp_path) -> None:
    path = _csv(
        tmp_path,
        "orders.csv",
        """
ID, Brand ,order_date,subtotal,total,currency,b2b_customer_name,company,raw_data
o1,brand-a,2024-03-01,"1,200.50",,gbp,Acme Ltd,,
o2,brand-b,2024-03-02,80,96,GBP,,Globex,"{""customer"": {""company"": ""Globex Corp""}}"
""",
    )
    orders = read_orders(path)

    assert [o.id for o in orders] == ["o1", "o2"]
    first, second = orders
    assert first.order_date == date(2024, 3, 1)
    assert first.subtotal == 1200.50
    assert first.total == 1200.50  # defaults to subtotal
    assert first.currency == "GBP"
    assert first.b2b_customer_name == "Acme Ltd"
    assert first.raw_data is None

    assert second.total == 96.0
    assert second.raw_data == {"customer": {"company": "Globex Corp"}, "company": "Globex"}


def test_read_orders_errors(tmp_path) -> None:
    missing = _csv(tmp_path, "a.csv", "id,brand,subtotal,currency\no1,a,10,GBP")
    with pytest.raises(ValueError, match="order_date"):
        read_orders(missing)

    bad_amount = _csv(tmp_path, "b.csv", "id,brand,order_date,subtotal,currency\no1,a,2024-03-01,ten,GBP")
    with pytest.raises(ValueError):
        read_orders(bad_amount)

    bad_json = _csv(
        tmp_path,
        "c.csv",
        "id,brand,order_date,subtotal,currency,raw_data\no1,a,2024-03-01,10,GBP,{oops",
    )
    with pytest.raises(ValueError, match="JSON"):
        read_orders(bad_json)


def test_read_invoices_defaults(tmp_path) -> None:
    path = _csv(
        tmp_path,
        "invoices.csv",
        """
id,brand,invoice_number,contact_name,invoice_date,subtotal,tax,currency,approval_status
i1,brand-a,INV-1,ACME LTD,2024-03-02,100,20,GBP,
i2,brand-a,INV-2,Globex,,50,,GBP,IGNORED
""",
    )
    first, second = read_invoices(path)

    assert first.invoice_date == date(2024, 3, 2)
    assert (first.subtotal, first.tax, first.total) == (100.0, 20.0, 120.0)
    assert first.approval_status == "pending"

    assert second.invoice_date is None
    assert (second.tax, second.total) == (0.0, 50.0)
    assert second.approval_status == "ignored"


def test_read_invoices_unknown_status(tmp_path) -> None:
    path = _csv(
        tmp_path,
        "invoices.csv",
        "id,brand,invoice_number,contact_name,subtotal,currency,approval_status\n"
        "i1,a,INV-1,Acme,10,GBP,paid",
    )
    with pytest.raises(ValueError, match="approval status"):
        read_invoices(path)


def test_read_balance_snapshots(tmp_path) -> None:
    path = _csv(
        tmp_path,
        "balances.csv",
        """
date,account_name,account_type,balance,currency,brand
2024-03-01,Main,BANK,10000,,brand-a
2024-03-01,Amex,CREDITCARD,-250.5,gbp,
""",
    )
    df = read_balance_snapshots(path)

    assert list(df.columns) == ["date", "account_name", "account_type", "balance", "currency", "brand"]
    assert list(df["account_type"]) == ["bank", "credit"]
    assert list(df["balance"]) == [10000.0, -250.5]
    assert list(df["currency"]) == ["GBP", "GBP"]
    assert list(df["brand"]) == ["brand-a", None]
    assert df.iloc[0]["date"] == date(2024, 3, 1)


def test_read_balance_snapshots_unknown_account_type(tmp_path) -> None:
    path = _csv(tmp_path, "b.csv", "date,account_name,account_type,balance\n2024-03-01,Pot,SAVINGS,1")
    with pytest.raises(ValueError, match="account_type"):
        read_balance_snapshots(path)


def test_read_cash_events_direction_from_sign(tmp_path) -> None:
    path = _csv(
        tmp_path,
        "events.csv",
        """
id,event_date,amount,category,description,status,probability_pct,is_recurring
e1,2024-03-05,500,b2b_receivable,Invoice INV-1,,85,
e2,2024-03-06,-200,opex_payment,Rent,confirmed,,yes
""",
    )
    first, second = read_cash_events(path)

    assert (first.direction, first.amount, first.probability_pct) == ("inflow", 500.0, 85.0)
    assert first.status == "forecast"
    assert (second.direction, second.amount, second.probability_pct) == ("outflow", 200.0, 100.0)
    assert second.status == "confirmed"
    assert second.is_recurring is True


def test_read_cash_events_explicit_direction_and_errors(tmp_path) -> None:
    path = _csv(
        tmp_path,
        "events.csv",
        "id,event_date,amount,category,direction\ne1,2024-03-05,300,vat_payment,OUTFLOW",
    )
    (event,) = read_cash_events(path)
    assert (event.direction, event.amount) == ("outflow", 300.0)

    bad = _csv(
        tmp_path,
        "bad.csv",
        "id,event_date,amount,category,status\ne1,2024-03-05,300,vat_payment,someday",
    )
    with pytest.raises(ValueError, match="status"):
        read_cash_events(bad)
