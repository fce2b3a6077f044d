import threading
from datetime import date, timedelta

import pandas as pd
import pytest

from cashrecon.cashflow_service import build_cashflow_report
from cashrecon.config import load_app_config
from cashrecon.db import (
    get_invoice,
    insert_balance_snapshots,
    insert_cash_events,
    upsert_invoices,
    upsert_orders,
)
from cashrecon.errors import AlreadyLinked, InvalidInput, MatchingCancelled
from cashrecon.events import OperatingExpense, generate_opex_events
from cashrecon.models import CashEvent, Invoice, Order
from cashrecon.reconciliation_service import (
    confirm_match,
    exclude_order,
    ignore_invoice,
    reconciliation_summary,
    reopen_invoice,
    restore_order,
    suggest_matches_from_db,
    unlink_match,
)

TODAY = date(2024, 3, 31)


def _order(order_id, brand="brand-a", subtotal=120.0, **kw) -> Order:
    return Order(
        id=order_id,
        brand=brand,
        order_date=date(2024, 3, 1),
        subtotal=subtotal,
        total=subtotal * 1.2,
        currency="GBP",
        b2b_customer_name=kw.pop("name", "Acme Ltd"),
        **kw,
    )


def _invoice(invoice_id, brand="brand-a", subtotal=120.0, **kw) -> Invoice:
    return Invoice(
        id=invoice_id,
        brand=brand,
        invoice_number=f"INV-{invoice_id}",
        contact_name=kw.pop("contact_name", "ACME LTD"),
        invoice_date=date(2024, 3, 2),
        subtotal=subtotal,
        tax=subtotal * 0.2,
        total=subtotal * 1.2,
        currency="GBP",
        **kw,
    )


@pytest.fixture
def app_config(tmp_path):
    config_path = tmp_path / "cashrecon_config.toml"
    config_path.write_text(
        """
[database]
path = "recon.sqlite"

[matching]
min_confidence = 30

[forecast]
horizon_days = 28
history_days = 30
""",
        encoding="utf-8",
    )
    return load_app_config(str(config_path))


@pytest.fixture
def seeded(app_config):
    db = app_config.database
    upsert_orders(
        db,
        [
            _order("o1"),
            _order("o2", subtotal=500.0, name="Globex"),
            _order("o3", brand="brand-b", subtotal=75.0, name="Initech"),
        ],
    )
    upsert_invoices(
        db,
        [
            _invoice("i1"),
            _invoice("i2", subtotal=999.0, contact_name="Someone Else"),
            _invoice("i3", brand="brand-b", subtotal=75.0, contact_name="Initech"),
        ],
    )
    return app_config


# ---------------------------------------------------------------------------
# Reconciliation
# ---------------------------------------------------------------------------


def test_suggest_matches_from_db(seeded) -> None:
    run = suggest_matches_from_db(seeded)

    pairs = {(s.order.id, s.invoice.id): s.confidence for s in run.suggestions}
    assert pairs[("o1", "i1")] == 95
    assert pairs[("o3", "i3")] == 95
    assert [o.id for o in run.unmatched_orders] == ["o2"]


def test_suggest_matches_per_brand_and_floor(seeded) -> None:
    run = suggest_matches_from_db(seeded, brand="brand-b")
    assert [(s.order.id, s.invoice.id) for s in run.suggestions] == [("o3", "i3")]

    run = suggest_matches_from_db(seeded, min_confidence=96)
    assert run.suggestions == []


def test_suggest_matches_cancelled(seeded) -> None:
    cancel = threading.Event()
    cancel.set()
    with pytest.raises(MatchingCancelled):
        suggest_matches_from_db(seeded, cancel=cancel)


def test_confirm_unlink_and_summary(seeded) -> None:
    summary = reconciliation_summary(seeded)
    assert (summary.total_orders, summary.reconciled_orders, summary.open_invoices) == (3, 0, 3)
    assert summary.reconciled_pct == 0.0

    order, invoice = confirm_match(seeded, "o1", "i1")
    assert invoice.approval_status == "approved"

    with pytest.raises(AlreadyLinked):
        confirm_match(seeded, "o2", "i1")

    # Cross-brand links follow the matching policy
    with pytest.raises(InvalidInput):
        confirm_match(seeded, "o2", "i3")

    exclude_order(seeded, "o2", "sample order")
    summary = reconciliation_summary(seeded)
    assert summary.reconciled_orders == 1
    assert summary.excluded_orders == 1
    assert summary.unreconciled_orders == 1
    assert summary.open_invoices == 2
    assert summary.reconciled_pct == 50.0

    # The confirmed pair is no longer proposed
    run = suggest_matches_from_db(seeded)
    assert ("o1", "i1") not in {(s.order.id, s.invoice.id) for s in run.all_suggestions}

    unlink_match(seeded, "o1")
    restore_order(seeded, "o2")
    summary = reconciliation_summary(seeded)
    assert (summary.reconciled_orders, summary.excluded_orders) == (0, 0)
    assert get_invoice(seeded.database, "i1").approval_status == "pending"


def test_ignore_and_reopen_invoice(seeded) -> None:
    assert ignore_invoice(seeded, "i2").approval_status == "ignored"
    assert reconciliation_summary(seeded).open_invoices == 2
    assert reopen_invoice(seeded, "i2").approval_status == "pending"


def test_summary_by_brand(seeded) -> None:
    summary = reconciliation_summary(seeded, brand="brand-b")
    assert (summary.total_orders, summary.open_invoices) == (1, 1)


# ---------------------------------------------------------------------------
# Cash flow
# ---------------------------------------------------------------------------


def _seed_balances(app_config, start_balance: float, daily_burn: float) -> None:
    rows = []
    for i in range(11):
        day = TODAY - timedelta(days=10 - i)
        rows.append(
            {
                "date": day,
                "account_name": "Main",
                "account_type": "bank",
                "balance": start_balance - daily_burn * i,
                "brand": "brand-a",
            }
        )
        rows.append(
            {
                "date": day,
                "account_name": "Card",
                "account_type": "credit",
                "balance": 500.0,
                "brand": "brand-a",
            }
        )
    insert_balance_snapshots(app_config.database, pd.DataFrame(rows))


def test_cashflow_report_end_to_end(app_config) -> None:
    _seed_balances(app_config, start_balance=21000.0, daily_burn=100.0)
    insert_cash_events(
        app_config.database,
        [
            CashEvent("in", TODAY + timedelta(days=5), "inflow", 3000.0, "b2b_receivable"),
            CashEvent("out", TODAY + timedelta(days=3), "outflow", 2500.0, "supplier_payment",
                      description="Fabric supplier"),
            CashEvent("old", TODAY - timedelta(days=3), "outflow", 999.0, "opex_payment"),
            CashEvent("far", TODAY + timedelta(days=60), "outflow", 999.0, "opex_payment"),
        ],
    )

    report = build_cashflow_report(app_config, today=TODAY)

    assert report.position.total_cash == 20000.0
    assert report.position.total_credit == -500.0
    assert report.position.net_position == 19500.0
    assert report.history.trend == "stable"
    assert report.burn.burn_rate_daily == pytest.approx(100.0)
    assert report.runway.days_remaining == pytest.approx(195.0)
    assert report.runway_text == "6.4 months"
    assert report.status == "green"

    assert report.flows.total_inflows == 3000.0
    assert report.flows.total_outflows == 2500.0

    baseline = report.projection.scenarios["baseline"]
    assert len(baseline.points) == 29
    assert baseline.summary.end_balance == pytest.approx(19500.0 - 2800.0 + 500.0)
    assert report.projection.comparison.risk_assessment == "low"

    assert [a.title for a in report.alerts] == ["Large Payment Due"]


def test_cashflow_report_with_generated_events_and_brand(app_config) -> None:
    _seed_balances(app_config, start_balance=21000.0, daily_burn=100.0)
    opex = generate_opex_events(
        [OperatingExpense("rent", "Rent", 2000.0, "monthly", date(2024, 1, 10))],
        forecast_days=28,
        today=TODAY,
    )

    report = build_cashflow_report(
        app_config, brand="brand-a", today=TODAY, horizon_days=14, extra_events=opex
    )

    assert report.brand == "brand-a"
    assert report.flows.outflows_by_category["opex"] == 2000.0
    assert len(report.projection.scenarios["baseline"].points) == 15

    other = build_cashflow_report(app_config, brand="brand-z", today=TODAY)
    assert other.position.net_position == 0.0
    assert other.runway.is_sustainable
    assert other.status == "red"


def test_cashflow_report_counts_payment_due_today(app_config) -> None:
    _seed_balances(app_config, start_balance=21000.0, daily_burn=100.0)
    insert_cash_events(
        app_config.database,
        [CashEvent("due", TODAY, "outflow", 15000.0, "supplier_payment")],
    )

    report = build_cashflow_report(app_config, today=TODAY)

    baseline = report.projection.scenarios["baseline"]
    assert report.flows.total_outflows == 15000.0
    assert baseline.summary.total_outflows == 15000.0
    assert baseline.points[0].balance == 19500.0 - 15000.0
    assert "Large Payment Due" in [a.title for a in report.alerts]


def test_cashflow_report_includes_configured_opex(tmp_path) -> None:
    config_path = tmp_path / "cashrecon_config.toml"
    config_path.write_text(
        """
[database]
path = "recon.sqlite"

[forecast]
horizon_days = 28

[[opex]]
id = "rent"
name = "Studio rent"
amount = 2000
start_date = 2024-01-10
brand = "brand-a"

[[opex]]
id = "storage"
amount = 500
start_date = 2024-01-05
brand = "brand-b"
""",
        encoding="utf-8",
    )
    app_config = load_app_config(str(config_path))
    _seed_balances(app_config, start_balance=21000.0, daily_burn=100.0)

    report = build_cashflow_report(app_config, today=TODAY)
    assert report.flows.outflows_by_category["opex"] == 2500.0
    baseline = report.projection.scenarios["baseline"]
    assert baseline.points[10].outflows == 2000.0  # 10 April
    assert baseline.points[5].outflows == 500.0  # 5 April

    brand_report = build_cashflow_report(app_config, brand="brand-a", today=TODAY)
    assert brand_report.flows.outflows_by_category["opex"] == 2000.0
