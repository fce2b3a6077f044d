# CashRecon - Reconciliation & Cash-Flow Forecasting for multi-brand e-commerce
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
View utilities for CashRecon.

This module turns engine results (match runs, projections, alerts) into
pandas DataFrames ready for console display or CSV export. The helpers do
not compute anything new: they only select, order and label columns.

The main views are:

- suggestions_frame:       one row per suggested (order, invoice) pair,
- unmatched_frame:         orders or invoices left for manual review,
- scenario_summary_frame:  one row per scenario with its summary,
- chart_frame:             balances per scenario, sampled by day / week / month,
- alerts_frame:            alerts in display order.
"""

from collections.abc import Sequence

import pandas as pd

from .matching import MatchRun
from .models import Invoice, Order
from .periods import Granularity, bucket_label, bucket_start
from .projection import CashAlert, ProjectionBundle

SUGGESTION_COLUMNS = [
    "order_id",
    "order_number",
    "brand",
    "order_date",
    "order_subtotal",
    "invoice_id",
    "invoice_number",
    "invoice_date",
    "invoice_subtotal",
    "contact_name",
    "confidence",
    "reasons",
]


def suggestions_frame(run: MatchRun, *, include_all: bool = False) -> pd.DataFrame:
    """
    Tabular view of a match run.

    Parameters
    ----------
    run:
        Result of `matching.suggest_matches`.
    include_all:
        If True, list every qualifying pair instead of the best per order.

    Returns
    -------
    pandas.DataFrame
        Columns listed in SUGGESTION_COLUMNS; `reasons` is a "; "-joined
        string. Rows keep the ranking order of the run.
    """
    suggestions = run.all_suggestions if include_all else run.suggestions
    rows = [
        {
            "order_id": s.order.id,
            "order_number": s.order.order_number or "",
            "brand": s.order.brand,
            "order_date": s.order.order_date,
            "order_subtotal": s.order.subtotal,
            "invoice_id": s.invoice.id,
            "invoice_number": s.invoice.invoice_number,
            "invoice_date": s.invoice.invoice_date,
            "invoice_subtotal": s.invoice.subtotal,
            "contact_name": s.invoice.contact_name,
            "confidence": s.confidence,
            "reasons": "; ".join(s.reasons),
        }
        for s in suggestions
    ]
    return pd.DataFrame(rows, columns=SUGGESTION_COLUMNS)


def unmatched_frame(records: Sequence[Order] | Sequence[Invoice]) -> pd.DataFrame:
    """List unmatched orders or invoices with their key fields."""
    rows = []
    for rec in records:
        if isinstance(rec, Order):
            rows.append(
                {
                    "kind": "order",
                    "id": rec.id,
                    "number": rec.order_number or "",
                    "brand": rec.brand,
                    "date": rec.order_date,
                    "subtotal": rec.subtotal,
                    "currency": rec.currency,
                    "name": rec.b2b_customer_name or rec.customer_name or "",
                }
            )
        else:
            rows.append(
                {
                    "kind": "invoice",
                    "id": rec.id,
                    "number": rec.invoice_number,
                    "brand": rec.brand,
                    "date": rec.invoice_date,
                    "subtotal": rec.subtotal,
                    "currency": rec.currency,
                    "name": rec.contact_name,
                }
            )
    columns = ["kind", "id", "number", "brand", "date", "subtotal", "currency", "name"]
    return pd.DataFrame(rows, columns=columns)


def scenario_summary_frame(bundle: ProjectionBundle) -> pd.DataFrame:
    """One row per scenario: end balance, low point and negative crossing."""
    rows = []
    for key, projection in bundle.scenarios.items():
        summary = projection.summary
        rows.append(
            {
                "scenario": key,
                "name": projection.scenario.name,
                "end_balance": summary.end_balance,
                "lowest_point": summary.lowest_point,
                "lowest_point_day": summary.lowest_point_day,
                "goes_negative": summary.goes_negative,
                "days_until_negative": summary.days_until_negative,
                "total_inflows": summary.total_inflows,
                "total_outflows": summary.total_outflows,
            }
        )
    return pd.DataFrame(rows)


def chart_frame(bundle: ProjectionBundle, granularity: Granularity = "week") -> pd.DataFrame:
    """
    Balances per scenario, keeping the last day of each bucket.

    With granularity="day" every projected day is returned. Otherwise the
    closing balance of each week / month / quarter / year is kept, plus
    the starting point (day 0) which opens the chart.

    Returns
    -------
    pandas.DataFrame
        Columns: day, date, label, then one column per scenario key.
    """
    if not bundle.chart_data:
        return pd.DataFrame(columns=["day", "date", "label"])

    df = pd.DataFrame(
        [
            {"day": p.day, "date": p.date, **p.balances}
            for p in bundle.chart_data
        ]
    )
    df["bucket"] = df["date"].map(lambda d: bucket_start(d, granularity))
    df["label"] = df["date"].map(lambda d: bucket_label(d, granularity))

    if granularity != "day":
        closing = df.groupby("bucket", sort=True).tail(1)
        df = pd.concat([df.head(1), closing]).drop_duplicates(subset="day").sort_values("day")

    scenario_cols = list(bundle.scenarios)
    return df[["day", "date", "label", *scenario_cols]].reset_index(drop=True)


def alerts_frame(alerts: Sequence[CashAlert]) -> pd.DataFrame:
    columns = ["severity", "title", "message", "action"]
    return pd.DataFrame(
        [
            {
                "severity": a.severity,
                "title": a.title,
                "message": a.message,
                "action": a.action or "",
            }
            for a in alerts
        ],
        columns=columns,
    )
