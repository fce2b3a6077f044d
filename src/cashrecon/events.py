# CashRecon - Reconciliation & Cash-Flow Forecasting for multi-brand e-commerce
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Cash event generation and aggregation for CashRecon.

Forecast events are generated from the operational data the business
already has:

- platform payouts estimated from recent sales (daily or periodic),
- operating expenses (monthly, quarterly, annual, one-time),
- unpaid purchase orders,
- ad platform charges (threshold billing or monthly invoices).

All generators are pure and take an explicit `today`, so that forecasts
are reproducible. Generated events use positive magnitudes and carry
their direction explicitly (see models.CashEvent).

Operating expenses declared in the configuration ([[opex]]) are expanded
by the cash-flow service on every report. Payouts, purchase orders and
ad spend come from systems outside this package: callers build those
events here and hand them to `build_cashflow_report(extra_events=...)`.
"""

import math
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Literal, Optional

from .models import CashEvent, Direction
from .money import DAYS_PER_MONTH, round_money
from .periods import add_months, bucket_end, days_between

PayoutPlatform = Literal["shopify", "etsy"]
PayoutFrequency = Literal["daily", "weekly", "biweekly", "monthly"]
ExpenseFrequency = Literal["monthly", "quarterly", "annual", "one_time"]

EXPENSE_FREQUENCIES: tuple[str, ...] = ("monthly", "quarterly", "annual", "one_time")

PAYOUT_PERIOD_DAYS: dict[str, int] = {
    "daily": 1,
    "weekly": 7,
    "biweekly": 14,
    "monthly": 30,
}

PAYABLE_PO_STATUSES: tuple[str, ...] = ("sent", "confirmed", "partial")
DEFAULT_PO_TERMS_DAYS = 14
REVENUE_AVERAGE_DAYS = 7


@dataclass(frozen=True)
class PayoutSchedule:
    """How and when a sales platform pays out."""

    platform: PayoutPlatform
    frequency: PayoutFrequency
    delay_days: int = 0
    probability_pct: float = 90.0


DEFAULT_PAYOUT_SCHEDULES: tuple[PayoutSchedule, ...] = (
    PayoutSchedule("shopify", "daily", delay_days=2, probability_pct=95.0),
    PayoutSchedule("etsy", "weekly", delay_days=3, probability_pct=90.0),
)


@dataclass(frozen=True)
class DailyRevenue:
    date: date
    shopify: float = 0.0
    etsy: float = 0.0


@dataclass(frozen=True)
class OperatingExpense:
    """
    A recurring or one-time operating expense.

    `payment_day` overrides the day of month on which recurring payments
    fall; when None, the day of `start_date` is used.
    """

    id: str
    name: str
    amount: float
    frequency: ExpenseFrequency
    start_date: date
    category: str = ""
    brand: Optional[str] = None
    payment_day: Optional[int] = None
    end_date: Optional[date] = None
    expense_date: Optional[date] = None


@dataclass(frozen=True)
class PurchaseOrder:
    id: str
    brand: Optional[str]
    po_number: str
    supplier_name: str
    total_amount: float
    status: str
    payment_status: Literal["unpaid", "partial", "paid"] = "unpaid"
    payment_due_date: Optional[date] = None


@dataclass(frozen=True)
class DailyAdSpend:
    date: date
    meta: float = 0.0
    google: float = 0.0
    microsoft: float = 0.0


@dataclass(frozen=True)
class AdBillingConfig:
    """
    Billing model per ad platform.

    Meta and Google charge each time accumulated spend reaches their
    threshold. Microsoft invoices the previous month's spend early in the
    month (`microsoft_invoice_day`), or bills by threshold when
    `microsoft_monthly` is False.
    """

    meta_threshold: float = 700.0
    google_threshold: float = 500.0
    microsoft_monthly: bool = True
    microsoft_threshold: float = 500.0
    microsoft_invoice_day: int = 3


@dataclass(frozen=True)
class CashFlowSummary:
    """Totals of active events, split by source and category."""

    total_inflows: float = 0.0
    total_outflows: float = 0.0
    net_flow: float = 0.0
    inflows_by_source: dict[str, float] = field(default_factory=dict)
    outflows_by_category: dict[str, float] = field(default_factory=dict)


# ---------------------------------------------------------------------------
# Platform payouts
# ---------------------------------------------------------------------------


def _schedule_for(
    platform: str,
    schedules: Iterable[PayoutSchedule],
) -> PayoutSchedule:
    for schedule in schedules:
        if schedule.platform == platform:
            return schedule
    return next(s for s in DEFAULT_PAYOUT_SCHEDULES if s.platform == platform)


def estimate_platform_payouts(
    daily_revenue: Sequence[DailyRevenue],
    schedules: Iterable[PayoutSchedule] = DEFAULT_PAYOUT_SCHEDULES,
    forecast_days: int = 30,
    *,
    today: date,
) -> list[CashEvent]:
    """
    Estimate upcoming platform payouts from the trailing 7-day revenue.

    Daily schedules pay out on weekdays only. Periodic schedules (weekly,
    biweekly, monthly) pay the accumulated average every period, shifted by
    the schedule's delay.
    """
    schedules = list(schedules)
    recent = sorted(daily_revenue, key=lambda r: r.date)[-REVENUE_AVERAGE_DAYS:]
    notes = f"Estimated from {len(recent)}-day average"

    events: list[CashEvent] = []
    for platform in ("shopify", "etsy"):
        average = sum(getattr(r, platform) for r in recent) / len(recent) if recent else 0.0
        if average <= 0:
            continue

        schedule = _schedule_for(platform, schedules)
        period = PAYOUT_PERIOD_DAYS[schedule.frequency]

        if schedule.frequency == "daily":
            dates = [today + timedelta(days=i) for i in range(forecast_days)]
            dates = [d for d in dates if d.weekday() < 5]
            description = f"{platform.capitalize()} Daily Payout"
        else:
            dates = [
                today + timedelta(days=i + schedule.delay_days)
                for i in range(0, forecast_days, period)
            ]
            description = f"{platform.capitalize()} {schedule.frequency.capitalize()} Payout"

        amount = round_money(average * period)
        for payout_date in dates:
            events.append(
                CashEvent(
                    id=f"{platform}-payout-{payout_date.isoformat()}",
                    event_date=payout_date,
                    direction="inflow",
                    amount=amount,
                    category="platform_payout",
                    description=description,
                    probability_pct=schedule.probability_pct,
                    reference_type="platform",
                    reference_id=platform,
                    is_recurring=True,
                    notes=notes,
                )
            )
    return events


# ---------------------------------------------------------------------------
# Operating expenses
# ---------------------------------------------------------------------------


def _opex_event(expense: OperatingExpense, payment_date: date) -> CashEvent:
    return CashEvent(
        id=f"opex-{expense.id}-{payment_date.isoformat()}",
        event_date=payment_date,
        direction="outflow",
        amount=abs(expense.amount),
        category="opex_payment",
        description=expense.name,
        brand=expense.brand,
        reference_type="operating_expense",
        reference_id=expense.id,
        is_recurring=expense.frequency != "one_time",
        notes=f"Category: {expense.category}" if expense.category else None,
    )


def generate_opex_events(
    expenses: Iterable[OperatingExpense],
    forecast_days: int = 90,
    *,
    today: date,
) -> list[CashEvent]:
    """
    Expand operating expenses into dated payments within the window.

    Quarterly and annual expenses recur every 3 / 12 months counted from
    their start date. A payment day past the end of a month falls on the
    month's last day.
    """
    end = today + timedelta(days=forecast_days)
    step = {"monthly": 1, "quarterly": 3, "annual": 12}

    events: list[CashEvent] = []
    for expense in expenses:
        if expense.end_date is not None and expense.end_date < today:
            continue
        if expense.start_date > end:
            continue

        if expense.frequency == "one_time":
            if expense.expense_date is not None and today <= expense.expense_date <= end:
                events.append(_opex_event(expense, expense.expense_date))
            continue

        if expense.frequency not in step:
            raise ValueError(
                f"Unknown expense frequency for {expense.id!r}: {expense.frequency!r}"
            )

        payment_day = expense.payment_day or expense.start_date.day
        month = today.replace(day=1)
        while month <= end:
            payment_date = month.replace(day=min(payment_day, bucket_end(month, "month").day))
            month_offset = (month.year - expense.start_date.year) * 12 + (
                month.month - expense.start_date.month
            )
            in_window = today <= payment_date <= end
            in_life = expense.start_date <= payment_date and (
                expense.end_date is None or payment_date <= expense.end_date
            )
            if in_window and in_life and month_offset % step[expense.frequency] == 0:
                events.append(_opex_event(expense, payment_date))
            month = add_months(month, 1)

    return events


# ---------------------------------------------------------------------------
# Purchase orders
# ---------------------------------------------------------------------------


def generate_po_payment_events(
    purchase_orders: Iterable[PurchaseOrder],
    *,
    today: date,
) -> list[CashEvent]:
    """Turn sent / confirmed / partially paid purchase orders into supplier payments."""
    events: list[CashEvent] = []
    for po in purchase_orders:
        if po.status not in PAYABLE_PO_STATUSES or po.payment_status == "paid":
            continue

        due = po.payment_due_date or today + timedelta(days=DEFAULT_PO_TERMS_DAYS)
        events.append(
            CashEvent(
                id=f"po-{po.id}",
                event_date=due,
                direction="outflow",
                amount=abs(po.total_amount),
                category="supplier_payment",
                description=f"{po.supplier_name} ({po.po_number})",
                status="confirmed" if po.payment_status == "partial" else "forecast",
                probability_pct=100.0 if po.status == "confirmed" else 90.0,
                brand=po.brand,
                reference_type="purchase_order",
                reference_id=po.id,
                notes=f"Status: {po.status}",
            )
        )
    return events


# ---------------------------------------------------------------------------
# Ad platforms
# ---------------------------------------------------------------------------


def _threshold_charges(
    platform: str,
    label: str,
    threshold: float,
    daily_spend: float,
    forecast_days: int,
    today: date,
) -> list[CashEvent]:
    if daily_spend <= 0 or threshold <= 0:
        return []

    interval = threshold / daily_spend
    notes = f"{threshold:g} threshold @ {daily_spend:.0f}/day, every {interval:.1f} days"

    events: list[CashEvent] = []
    days_from_now = interval
    number = 1
    while days_from_now <= forecast_days:
        charge_date = today + timedelta(days=math.ceil(days_from_now))
        events.append(
            CashEvent(
                id=f"{platform}-threshold-{number}-{charge_date.isoformat()}",
                event_date=charge_date,
                direction="outflow",
                amount=threshold,
                category="ad_platform_invoice",
                description=f"{label} Threshold Charge",
                probability_pct=85.0,
                reference_type="ad_platform",
                reference_id=platform,
                is_recurring=True,
                notes=notes,
            )
        )
        days_from_now += interval
        number += 1
    return events


def estimate_ad_platform_invoices(
    recent_spend: Sequence[DailyAdSpend],
    forecast_months: int = 3,
    *,
    today: date,
    billing: AdBillingConfig = AdBillingConfig(),
) -> list[CashEvent]:
    """Estimate ad platform charges from the average daily spend."""
    days = len(recent_spend) or 1
    daily_meta = sum(s.meta for s in recent_spend) / days
    daily_google = sum(s.google for s in recent_spend) / days
    daily_microsoft = sum(s.microsoft for s in recent_spend) / days
    forecast_days = forecast_months * 30

    events = _threshold_charges(
        "meta", "Meta Ads", billing.meta_threshold, daily_meta, forecast_days, today
    )
    events += _threshold_charges(
        "google", "Google Ads", billing.google_threshold, daily_google, forecast_days, today
    )

    if not billing.microsoft_monthly:
        events += _threshold_charges(
            "microsoft",
            "Microsoft Ads",
            billing.microsoft_threshold,
            daily_microsoft,
            forecast_days,
            today,
        )
    elif daily_microsoft > 0:
        monthly = round_money(daily_microsoft * DAYS_PER_MONTH)
        first_of_month = today.replace(day=1)
        for i in range(1, forecast_months + 1):
            invoice_date = add_months(first_of_month, i) + timedelta(
                days=billing.microsoft_invoice_day - 1
            )
            events.append(
                CashEvent(
                    id=f"microsoft-monthly-{invoice_date.isoformat()}",
                    event_date=invoice_date,
                    direction="outflow",
                    amount=monthly,
                    category="ad_platform_invoice",
                    description="Microsoft Ads Monthly Invoice",
                    probability_pct=95.0,
                    reference_type="ad_platform",
                    reference_id="microsoft",
                    is_recurring=True,
                    notes=f"Monthly billing @ {daily_microsoft:.0f}/day",
                )
            )
    return events


# ---------------------------------------------------------------------------
# Receivables
# ---------------------------------------------------------------------------


def receivable_probability(due_date: date, today: date) -> float:
    """Probability (0-1) of collecting a receivable, given how overdue it is."""
    overdue = days_between(due_date, today)
    if overdue < 0:
        return 0.95
    if overdue <= 30:
        return 0.85
    if overdue <= 60:
        return 0.70
    if overdue <= 90:
        return 0.50
    return 0.30


# ---------------------------------------------------------------------------
# Sorting, filtering and summaries
# ---------------------------------------------------------------------------


def sort_events_by_date(events: Iterable[CashEvent]) -> list[CashEvent]:
    return sorted(events, key=lambda e: (e.event_date, e.id))


def filter_events_by_date_range(
    events: Iterable[CashEvent],
    start: date,
    end: date,
) -> list[CashEvent]:
    """Keep events dated within [start, end] (inclusive)."""
    return [e for e in events if start <= e.event_date <= end]


def upcoming_events(
    events: Iterable[CashEvent],
    days: int = 30,
    *,
    today: date,
) -> list[CashEvent]:
    return filter_events_by_date_range(events, today, today + timedelta(days=days))


def separate_events_by_flow(
    events: Iterable[CashEvent],
) -> tuple[list[CashEvent], list[CashEvent]]:
    """Split events into (inflows, outflows), ignoring zero amounts."""
    inflows: list[CashEvent] = []
    outflows: list[CashEvent] = []
    for event in events:
        if event.amount == 0:
            continue
        (inflows if event.direction == "inflow" else outflows).append(event)
    return inflows, outflows


def active_events(events: Iterable[CashEvent]) -> list[CashEvent]:
    """Forecast and confirmed events only (paid and cancelled are history)."""
    return [e for e in events if e.is_active]


_INFLOW_SOURCES: dict[str, str] = {
    "platform_payout": "platform_payouts",
    "b2b_receivable": "b2b_receivables",
}
_OUTFLOW_CATEGORIES: dict[str, str] = {
    "supplier_payment": "supplier_payments",
    "opex_payment": "opex",
    "ad_platform_invoice": "ad_platforms",
    "vat_payment": "vat",
}


def _bucket(direction: Direction, category: str) -> str:
    mapping = _INFLOW_SOURCES if direction == "inflow" else _OUTFLOW_CATEGORIES
    return mapping.get(category, "other")


def summarize_cash_flows(events: Iterable[CashEvent]) -> CashFlowSummary:
    """
    Summarize active events by source (inflows) and category (outflows).

    Paid and cancelled events are ignored.
    """
    inflows = dict.fromkeys(("platform_payouts", "b2b_receivables", "other"), 0.0)
    outflows = dict.fromkeys(
        ("supplier_payments", "opex", "ad_platforms", "vat", "other"), 0.0
    )

    for event in active_events(events):
        target = inflows if event.direction == "inflow" else outflows
        target[_bucket(event.direction, event.category)] += abs(event.amount)

    total_in = round_money(sum(inflows.values()))
    total_out = round_money(sum(outflows.values()))
    return CashFlowSummary(
        total_inflows=total_in,
        total_outflows=total_out,
        net_flow=round_money(total_in - total_out),
        inflows_by_source={k: round_money(v) for k, v in inflows.items()},
        outflows_by_category={k: round_money(v) for k, v in outflows.items()},
    )
