from datetime import date, timedelta

from cashrecon.matching import suggest_matches
from cashrecon.models import Invoice, Order
from cashrecon.position import BurnMetrics, CashPosition
from cashrecon.projection import CashAlert, project
from cashrecon.views import (
    SUGGESTION_COLUMNS,
    alerts_frame,
    chart_frame,
    scenario_summary_frame,
    suggestions_frame,
    unmatched_frame,
)

START = date(2024, 3, 13)  # Wednesday


def _order(order_id: str, subtotal: float) -> Order:
    return Order(order_id, "brand-a", date(2024, 3, 1), subtotal, subtotal, "GBP",
                 b2b_customer_name="Acme Ltd")


def _invoice(invoice_id: str, subtotal: float) -> Invoice:
    return Invoice(invoice_id, "brand-a", f"INV-{invoice_id}", "ACME LTD", date(2024, 3, 2),
                   subtotal, 0.0, subtotal, "GBP")


def _bundle(horizon: int):
    return project(
        CashPosition(10000.0, 0.0, 10000.0),
        BurnMetrics.from_daily(100.0, False),
        [],
        horizon,
        start_date=START,
    )


def test_suggestions_frame_columns_and_reasons() -> None:
    run = suggest_matches([_order("o1", 120.0), _order("o2", 121.0)], [_invoice("i1", 120.0)], 30)

    best = suggestions_frame(run)
    assert list(best.columns) == SUGGESTION_COLUMNS
    assert list(best["order_id"]) == ["o1"]
    assert best.iloc[0]["reasons"] == (
        "Amount matches exactly; Invoice date 1 day after order date; Customer name matches"
    )

    everything = suggestions_frame(run, include_all=True)
    assert list(everything["order_id"]) == ["o1", "o2"]
    assert list(everything["confidence"]) == [95, 85]


def test_suggestions_frame_empty_keeps_columns() -> None:
    run = suggest_matches([], [], 30)
    df = suggestions_frame(run)
    assert df.empty
    assert list(df.columns) == SUGGESTION_COLUMNS


def test_unmatched_frame_orders_and_invoices() -> None:
    df = unmatched_frame([_order("o1", 10.0)])
    assert df.iloc[0]["kind"] == "order"
    assert df.iloc[0]["name"] == "Acme Ltd"

    df = unmatched_frame([_invoice("i1", 10.0)])
    assert df.iloc[0]["kind"] == "invoice"
    assert df.iloc[0]["number"] == "INV-i1"

    assert list(unmatched_frame([]).columns) == [
        "kind", "id", "number", "brand", "date", "subtotal", "currency", "name"
    ]


def test_scenario_summary_frame() -> None:
    df = scenario_summary_frame(_bundle(10))

    assert list(df["scenario"]) == ["baseline", "optimistic", "pessimistic"]
    baseline = df[df["scenario"] == "baseline"].iloc[0]
    assert baseline["end_balance"] == 9000.0
    assert bool(baseline["goes_negative"]) is False


def test_chart_frame_daily_and_weekly() -> None:
    bundle = _bundle(14)

    daily = chart_frame(bundle, "day")
    assert len(daily) == 15
    assert list(daily.columns) == ["day", "date", "label", "baseline", "optimistic", "pessimistic"]

    weekly = chart_frame(bundle, "week")
    # Day 0, then the closing day of each ISO week (Sundays 17 and 24 Mar, then 27 Mar)
    assert list(weekly["day"]) == [0, 4, 11, 14]
    assert list(weekly["date"]) == [START + timedelta(days=d) for d in (0, 4, 11, 14)]
    assert list(weekly["label"]) == ["2024-W11", "2024-W11", "2024-W12", "2024-W13"]
    assert weekly.iloc[-1]["baseline"] == 8600.0


def test_alerts_frame() -> None:
    alerts = [
        CashAlert("critical", "Low Cash Position", "Below threshold", "Act"),
        CashAlert("info", "Large Payment Due", "Soon"),
    ]
    df = alerts_frame(alerts)
    assert list(df["severity"]) == ["critical", "info"]
    assert list(df["action"]) == ["Act", ""]
    assert alerts_frame([]).empty
