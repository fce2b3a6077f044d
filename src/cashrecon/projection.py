# CashRecon - Reconciliation & Cash-Flow Forecasting for multi-brand e-commerce
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Runway, scenario projections and cash alerts for CashRecon.

Runway
------
With a positive daily burn B and a net position N, the runway is N / B
days (never negative). When cash is accumulating or flat the runway is
unbounded and reported as None.

Scenarios
---------
Each scenario replays the same horizon day by day starting from the
current net position:

    balance(0) = N + inflows(0) - outflows(0)
    balance(d) = balance(d - 1) + drift + inflows(d) - outflows(d)

where `drift = -B - |B| * burn_adjustment_pct / 100`. Scheduled events
are scaled by the scenario's inflow / outflow adjustments, and inflows can
be delayed (late customer payments). Only forecast and confirmed events
are applied.

With the default multipliers, the pessimistic end balance is never above
the baseline, and the baseline never above the optimistic one.
"""

import logging
import re
from collections import defaultdict
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Literal, Optional

from .events import active_events, upcoming_events
from .models import CashEvent
from .money import DAYS_PER_MONTH, format_amount, round_money
from .periods import _today, days_between
from .position import BurnMetrics, CashPosition

logger = logging.getLogger(__name__)

RiskLevel = Literal["low", "medium", "high"]
AlertSeverity = Literal["critical", "warning", "info"]
PositionStatus = Literal["green", "yellow", "red"]

BASELINE_KEY = "baseline"
DEFAULT_CHECKPOINT_WEEKS: tuple[int, ...] = (4, 8, 12)
MIN_ADJUSTMENT_PCT = -100.0
MAX_ADJUSTMENT_PCT = 200.0

RECOMMENDATIONS: dict[str, str] = {
    "high": (
        "Urgent action needed: cash position goes negative in the baseline "
        "scenario or within the critical runway. Reduce costs or accelerate "
        "receivables immediately."
    ),
    "medium": (
        "Caution advised: cash position could go negative in adverse "
        "conditions or end the horizon with a low balance. Build reserves or "
        "reduce discretionary spending."
    ),
    "low": "Cash position is healthy across all scenarios.",
}


# ---------------------------------------------------------------------------
# Scenarios
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Scenario:
    """
    A set of adjustments applied on top of the baseline trajectory.

    Attributes
    ----------
    key:
        Stable identifier (e.g. "baseline").
    name:
        Display name.
    burn_adjustment_pct:
        Change applied to the daily burn (+10 = 10 % more burn).
    inflow_adjustment_pct:
        Scaling of scheduled inflows (+20 = 20 % more cash in).
    outflow_adjustment_pct:
        Scaling of scheduled outflows (+10 = 10 % more cash out).
    inflow_delay_days:
        Number of days scheduled inflows are pushed back.
    description:
        Free-text explanation displayed next to the scenario.
    """

    key: str
    name: str
    burn_adjustment_pct: float = 0.0
    inflow_adjustment_pct: float = 0.0
    outflow_adjustment_pct: float = 0.0
    inflow_delay_days: int = 0
    description: str = ""

    def __post_init__(self) -> None:
        if not self.key:
            raise ValueError("Scenario key cannot be empty.")
        for label, value in (
            ("burn_adjustment_pct", self.burn_adjustment_pct),
            ("inflow_adjustment_pct", self.inflow_adjustment_pct),
            ("outflow_adjustment_pct", self.outflow_adjustment_pct),
        ):
            if not MIN_ADJUSTMENT_PCT <= value <= MAX_ADJUSTMENT_PCT:
                raise ValueError(
                    f"Scenario {self.key!r}: {label} must be between "
                    f"{MIN_ADJUSTMENT_PCT:g} and {MAX_ADJUSTMENT_PCT:g} (got {value})."
                )
        if self.inflow_delay_days < 0:
            raise ValueError(f"Scenario {self.key!r}: inflow_delay_days cannot be negative.")


DEFAULT_SCENARIOS: tuple[Scenario, ...] = (
    Scenario(
        key="baseline",
        name="Baseline",
        description="Current trajectory based on actual data",
    ),
    Scenario(
        key="optimistic",
        name="Optimistic",
        burn_adjustment_pct=-10.0,
        inflow_adjustment_pct=20.0,
        outflow_adjustment_pct=-10.0,
        description="Burn down 10%, inflows up 20%, outflows down 10%",
    ),
    Scenario(
        key="pessimistic",
        name="Pessimistic",
        burn_adjustment_pct=10.0,
        inflow_adjustment_pct=-20.0,
        outflow_adjustment_pct=10.0,
        inflow_delay_days=7,
        description="Burn up 10%, inflows down 20% and 7 days late, outflows up 10%",
    ),
)


def _signed_pct(value: float) -> str:
    return f"{value:+g}%"


def custom_scenario(
    name: str,
    *,
    burn_adjustment_pct: float = 0.0,
    inflow_adjustment_pct: float = 0.0,
    outflow_adjustment_pct: float = 0.0,
    inflow_delay_days: int = 0,
    key: Optional[str] = None,
    description: Optional[str] = None,
) -> Scenario:
    """Build a user-defined scenario, deriving its key and description."""
    slug = re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")
    if description is None:
        description = (
            f"Burn {_signed_pct(burn_adjustment_pct)}, "
            f"inflows {_signed_pct(inflow_adjustment_pct)}, "
            f"outflows {_signed_pct(outflow_adjustment_pct)}"
        )
        if inflow_delay_days:
            description += f", inflows {inflow_delay_days} days late"
    return Scenario(
        key=key or f"custom-{slug or 'scenario'}",
        name=name,
        burn_adjustment_pct=burn_adjustment_pct,
        inflow_adjustment_pct=inflow_adjustment_pct,
        outflow_adjustment_pct=outflow_adjustment_pct,
        inflow_delay_days=inflow_delay_days,
        description=description,
    )


# ---------------------------------------------------------------------------
# Runway
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RunwayMetrics:
    """
    Runway at the current burn rate.

    `days_remaining`, `weeks_remaining` and `months_remaining` are None
    when cash is not decreasing. `projected_balance` maps a checkpoint
    (in weeks) to the balance expected at that point; values may be
    negative.
    """

    days_remaining: Optional[float]
    weeks_remaining: Optional[float]
    months_remaining: Optional[float]
    projected_balance: dict[int, float] = field(default_factory=dict)

    @property
    def is_sustainable(self) -> bool:
        return self.days_remaining is None


def calculate_runway(
    current_net_position: float,
    burn: BurnMetrics,
    *,
    checkpoints_weeks: Sequence[int] = DEFAULT_CHECKPOINT_WEEKS,
) -> RunwayMetrics:
    """
    Compute the runway and the balances expected at each checkpoint.

    Examples
    --------
    >>> runway = calculate_runway(10000, BurnMetrics.from_daily(500, False))
    >>> runway.days_remaining
    20.0
    """
    daily = burn.burn_rate_daily
    projected = {
        int(week): round_money(current_net_position - daily * 7 * week)
        for week in checkpoints_weeks
    }

    if burn.is_accumulating or daily <= 0:
        return RunwayMetrics(None, None, None, projected)

    days = max(0.0, current_net_position / daily)
    return RunwayMetrics(
        days_remaining=days,
        weeks_remaining=days / 7,
        months_remaining=days / DAYS_PER_MONTH,
        projected_balance=projected,
    )


# ---------------------------------------------------------------------------
# Projection
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ProjectionPoint:
    day: int
    date: date
    balance: float
    inflows: float = 0.0
    outflows: float = 0.0


@dataclass(frozen=True)
class ProjectionSummary:
    end_balance: float
    lowest_point: float
    lowest_point_day: int
    goes_negative: bool
    days_until_negative: Optional[int]
    total_inflows: float
    total_outflows: float


@dataclass(frozen=True)
class ScenarioProjection:
    scenario: Scenario
    points: tuple[ProjectionPoint, ...]
    summary: ProjectionSummary


@dataclass(frozen=True)
class ChartPoint:
    """One day of the multi-scenario chart (balance per scenario key)."""

    day: int
    date: date
    balances: dict[str, float]


@dataclass(frozen=True)
class ScenarioComparison:
    """
    Side-by-side outcome of all scenarios with a risk assessment.

    Attributes
    ----------
    baseline_key:
        Scenario used as reference for the risk assessment.
    end_balances, goes_negative, days_until_negative:
        Per-scenario outcomes, keyed by scenario key.
    risk_assessment:
        "high", "medium" or "low".
    recommendation:
        Templated advice for the risk level.
    """

    baseline_key: str
    end_balances: dict[str, float]
    goes_negative: dict[str, bool]
    days_until_negative: dict[str, Optional[int]]
    risk_assessment: RiskLevel
    recommendation: str


@dataclass(frozen=True)
class ProjectionBundle:
    scenarios: dict[str, ScenarioProjection]
    chart_data: list[ChartPoint]
    comparison: ScenarioComparison


def _scheduled_flows(
    events: Iterable[CashEvent],
    scenario: Scenario,
    start_date: date,
    horizon_days: int,
    probability_weighted: bool,
) -> dict[int, list[float]]:
    """Return {day: [inflows, outflows]} after scenario adjustments."""
    flows: dict[int, list[float]] = defaultdict(lambda: [0.0, 0.0])
    inflow_factor = 1 + scenario.inflow_adjustment_pct / 100
    outflow_factor = 1 + scenario.outflow_adjustment_pct / 100

    for event in active_events(events):
        weight = event.probability_pct / 100 if probability_weighted else 1.0
        day = days_between(start_date, event.event_date)
        if not 0 <= day <= horizon_days:
            continue
        if event.direction == "inflow":
            day += scenario.inflow_delay_days
            amount = abs(event.amount) * inflow_factor * weight
            slot = 0
        else:
            amount = abs(event.amount) * outflow_factor * weight
            slot = 1

        # Delayed inflows can slip past the horizon.
        if day <= horizon_days:
            flows[day][slot] += amount
    return flows


def project_scenario(
    net_position: float,
    burn: BurnMetrics,
    events: Iterable[CashEvent],
    horizon_days: int,
    scenario: Scenario,
    *,
    start_date: date,
    probability_weighted: bool = False,
) -> ScenarioProjection:
    """
    Replay the horizon day by day for a single scenario.

    Events due on `start_date` are still pending: they are booked on the
    day-0 point, without drift.
    """
    daily = burn.burn_rate_daily
    drift = -daily - abs(daily) * scenario.burn_adjustment_pct / 100
    flows = _scheduled_flows(events, scenario, start_date, horizon_days, probability_weighted)

    total_in, total_out = flows.get(0, (0.0, 0.0))
    balance = net_position + total_in - total_out
    points = [
        ProjectionPoint(
            day=0,
            date=start_date,
            balance=round_money(balance),
            inflows=round_money(total_in),
            outflows=round_money(total_out),
        )
    ]
    for day in range(1, horizon_days + 1):
        inflows, outflows = flows.get(day, (0.0, 0.0))
        balance += drift + inflows - outflows
        total_in += inflows
        total_out += outflows
        points.append(
            ProjectionPoint(
                day=day,
                date=start_date + timedelta(days=day),
                balance=round_money(balance),
                inflows=round_money(inflows),
                outflows=round_money(outflows),
            )
        )

    lowest = min(points, key=lambda p: (p.balance, p.day))
    first_negative = next((p.day for p in points if p.balance < 0), None)
    summary = ProjectionSummary(
        end_balance=points[-1].balance,
        lowest_point=lowest.balance,
        lowest_point_day=lowest.day,
        goes_negative=first_negative is not None,
        days_until_negative=first_negative,
        total_inflows=round_money(total_in),
        total_outflows=round_money(total_out),
    )
    return ScenarioProjection(scenario=scenario, points=tuple(points), summary=summary)


def compare_scenarios(
    projections: dict[str, ScenarioProjection],
    *,
    critical_runway_days: int = 28,
    low_balance_threshold: float = 10000.0,
) -> ScenarioComparison:
    """
    Assess risk across scenarios.

    - high: the baseline goes negative, or any scenario goes negative
      within `critical_runway_days`;
    - medium: another scenario goes negative later in the horizon, or the
      baseline ends below `low_balance_threshold`;
    - low: otherwise.
    """
    if not projections:
        raise ValueError("At least one scenario projection is required.")

    baseline_key = BASELINE_KEY if BASELINE_KEY in projections else next(iter(projections))
    baseline = projections[baseline_key].summary

    days_negative = {k: p.summary.days_until_negative for k, p in projections.items()}
    early_negative = any(
        d is not None and d <= critical_runway_days for d in days_negative.values()
    )
    any_negative = any(d is not None for d in days_negative.values())

    risk: RiskLevel = "low"
    if baseline.goes_negative or early_negative:
        risk = "high"
    elif any_negative or baseline.end_balance < low_balance_threshold:
        risk = "medium"

    return ScenarioComparison(
        baseline_key=baseline_key,
        end_balances={k: p.summary.end_balance for k, p in projections.items()},
        goes_negative={k: p.summary.goes_negative for k, p in projections.items()},
        days_until_negative=days_negative,
        risk_assessment=risk,
        recommendation=RECOMMENDATIONS[risk],
    )


def chart_points(projections: dict[str, ScenarioProjection]) -> list[ChartPoint]:
    """Zip all scenario trajectories into one point per day."""
    if not projections:
        return []
    reference = next(iter(projections.values()))
    return [
        ChartPoint(
            day=point.day,
            date=point.date,
            balances={k: p.points[i].balance for k, p in projections.items()},
        )
        for i, point in enumerate(reference.points)
    ]


def project(
    position: CashPosition,
    burn: BurnMetrics,
    events: Iterable[CashEvent],
    horizon_days: int,
    *,
    scenarios: Sequence[Scenario] = DEFAULT_SCENARIOS,
    start_date: Optional[date] = None,
    probability_weighted: bool = False,
    critical_runway_days: int = 28,
    low_balance_threshold: float = 10000.0,
) -> ProjectionBundle:
    """
    Project the cash balance over `horizon_days` for every scenario.

    Parameters
    ----------
    position:
        Current cash position; its net position opens the day-0 balance.
    burn:
        Daily burn used as the baseline drift.
    events:
        Scheduled cash events. Paid and cancelled events are ignored, as
        are events falling before the start date or after the horizon.
        Events due on the start date are applied to the day-0 balance.
    horizon_days:
        Number of days to project (>= 1).
    scenarios:
        Scenarios to run; keys must be unique.
    start_date:
        Day 0 of the projection (defaults to today).
    probability_weighted:
        If True, each event is weighted by its probability.

    Returns
    -------
    ProjectionBundle
        Per-scenario trajectories and summaries, chart rows and the
        scenario comparison.
    """
    if horizon_days < 1:
        raise ValueError("horizon_days must be at least 1.")
    keys = [s.key for s in scenarios]
    if not keys:
        raise ValueError("At least one scenario is required.")
    if len(set(keys)) != len(keys):
        raise ValueError(f"Duplicate scenario keys: {keys}")

    start = start_date or _today()
    events = list(events)

    projections = {
        scenario.key: project_scenario(
            position.net_position,
            burn,
            events,
            horizon_days,
            scenario,
            start_date=start,
            probability_weighted=probability_weighted,
        )
        for scenario in scenarios
    }
    comparison = compare_scenarios(
        projections,
        critical_runway_days=critical_runway_days,
        low_balance_threshold=low_balance_threshold,
    )
    logger.info(
        "Projected %d scenarios over %d days from %s: risk %s",
        len(projections),
        horizon_days,
        start.isoformat(),
        comparison.risk_assessment,
    )
    return ProjectionBundle(
        scenarios=projections,
        chart_data=chart_points(projections),
        comparison=comparison,
    )


# ---------------------------------------------------------------------------
# Alerts
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AlertThresholds:
    low_cash: float = 5000.0
    critical_runway_days: int = 28
    runway_warning_weeks: float = 8.0
    large_payment: float = 2000.0
    large_payment_window_days: int = 7
    max_large_payment_alerts: int = 3


@dataclass(frozen=True)
class CashAlert:
    severity: AlertSeverity
    title: str
    message: str
    action: Optional[str] = None


def generate_alerts(
    net_position: float,
    runway: RunwayMetrics,
    comparison: Optional[ScenarioComparison] = None,
    events: Iterable[CashEvent] = (),
    *,
    thresholds: AlertThresholds = AlertThresholds(),
    today: date,
    currency: str = "GBP",
) -> list[CashAlert]:
    """
    Turn the current position, runway and projections into alerts.

    Alerts are returned in a stable order: position, runway, checkpoint
    projection, scenarios, then large upcoming payments.
    """
    alerts: list[CashAlert] = []

    if net_position < thresholds.low_cash:
        alerts.append(
            CashAlert(
                severity="critical",
                title="Low Cash Position",
                message=(
                    f"Net cash position ({format_amount(net_position, currency)}) is "
                    f"below the {format_amount(thresholds.low_cash, currency)} threshold."
                ),
                action="Review upcoming expenses and consider delaying non-essential payments.",
            )
        )

    if runway.days_remaining is not None:
        if runway.days_remaining < thresholds.critical_runway_days:
            alerts.append(
                CashAlert(
                    severity="critical",
                    title="Runway Critical",
                    message=(
                        f"Only {int(runway.days_remaining)} days of runway remaining "
                        "at current burn rate."
                    ),
                    action="Reduce costs or accelerate receivables immediately.",
                )
            )
        elif runway.weeks_remaining < thresholds.runway_warning_weeks:
            alerts.append(
                CashAlert(
                    severity="warning",
                    title="Runway Warning",
                    message=(
                        f"Only {int(runway.weeks_remaining)} weeks of runway remaining "
                        "at current burn rate."
                    ),
                    action="Consider cost reduction measures or revenue acceleration.",
                )
            )

    if runway.projected_balance:
        first_week = min(runway.projected_balance)
        if runway.projected_balance[first_week] < 0:
            alerts.append(
                CashAlert(
                    severity="critical",
                    title="Negative Balance Projected",
                    message=(
                        "At current burn rate, cash position will go negative "
                        f"within {first_week} weeks."
                    ),
                    action="Urgent action required: reduce costs or accelerate receivables.",
                )
            )

    if comparison is not None:
        for key, days in comparison.days_until_negative.items():
            if days is None:
                continue
            is_baseline = key == comparison.baseline_key
            alerts.append(
                CashAlert(
                    severity="critical" if is_baseline else "warning",
                    title="Scenario Goes Negative",
                    message=f"The {key} scenario projects a negative balance after {days} days.",
                    action=comparison.recommendation,
                )
            )

    upcoming = upcoming_events(
        active_events(events), thresholds.large_payment_window_days, today=today
    )
    large = sorted(
        (
            e
            for e in upcoming
            if e.direction == "outflow" and abs(e.amount) >= thresholds.large_payment
        ),
        key=lambda e: (e.event_date, -abs(e.amount), e.id),
    )
    for event in large[: thresholds.max_large_payment_alerts]:
        alerts.append(
            CashAlert(
                severity="info",
                title="Large Payment Due",
                message=(
                    f"{format_amount(event.amount, currency)} due on "
                    f"{event.event_date:%d %b} for {event.description or event.category}."
                ),
            )
        )

    if alerts:
        logger.info("Generated %d cash alerts", len(alerts))
    return alerts


def position_status(
    net_position: float,
    runway: RunwayMetrics,
    thresholds: AlertThresholds = AlertThresholds(),
) -> PositionStatus:
    """Traffic-light health of the cash position."""
    if net_position < thresholds.low_cash:
        return "red"
    if runway.weeks_remaining is not None and runway.weeks_remaining < thresholds.runway_warning_weeks:
        return "yellow"
    return "green"


def runway_label(runway: RunwayMetrics) -> str:
    """Short human-readable runway ("Sustainable", "6 weeks", "4.6 months")."""
    if runway.weeks_remaining is None:
        return "Sustainable"
    if runway.weeks_remaining > 52:
        return f"{runway.months_remaining:.1f}+ months"
    if runway.weeks_remaining > 12:
        return f"{runway.months_remaining:.1f} months"
    return f"{int(runway.weeks_remaining)} weeks"
