from datetime import date, timedelta

import pytest

from cashrecon.models import CashEvent
from cashrecon.position import BurnMetrics, CashPosition
from cashrecon.projection import (
    DEFAULT_SCENARIOS,
    AlertThresholds,
    Scenario,
    calculate_runway,
    compare_scenarios,
    custom_scenario,
    generate_alerts,
    position_status,
    project,
    project_scenario,
    runway_label,
)

START = date(2024, 3, 15)


def _position(net: float) -> CashPosition:
    return CashPosition(total_cash=net, total_credit=0.0, net_position=net)


def _event(event_id, day, direction, amount, **kw) -> CashEvent:
    return CashEvent(
        id=event_id,
        event_date=START + timedelta(days=day),
        direction=direction,
        amount=amount,
        category="other_inflow" if direction == "inflow" else "other_outflow",
        **kw,
    )


# ---------------------------------------------------------------------------
# Runway
# ---------------------------------------------------------------------------


def test_runway_from_burn() -> None:
    runway = calculate_runway(10000.0, BurnMetrics.from_daily(500.0, False))

    assert runway.days_remaining == 20.0
    assert runway.weeks_remaining == pytest.approx(2.857, abs=1e-3)
    assert runway.months_remaining == pytest.approx(20 / 30.44)
    assert runway.projected_balance == {4: -4000.0, 8: -18000.0, 12: -32000.0}
    assert not runway.is_sustainable


def test_runway_is_unbounded_when_accumulating() -> None:
    runway = calculate_runway(10000.0, BurnMetrics.from_daily(-100.0, True))

    assert runway.days_remaining is None
    assert runway.weeks_remaining is None
    assert runway.months_remaining is None
    assert runway.is_sustainable
    assert runway.projected_balance[4] == 12800.0


def test_runway_never_negative() -> None:
    runway = calculate_runway(-500.0, BurnMetrics.from_daily(100.0, False))
    assert runway.days_remaining == 0.0


# ---------------------------------------------------------------------------
# Scenarios
# ---------------------------------------------------------------------------


def test_scenario_validation() -> None:
    with pytest.raises(ValueError):
        Scenario(key="bad", name="Bad", burn_adjustment_pct=250.0)
    with pytest.raises(ValueError):
        Scenario(key="bad", name="Bad", inflow_adjustment_pct=-101.0)
    with pytest.raises(ValueError):
        Scenario(key="bad", name="Bad", inflow_delay_days=-1)
    with pytest.raises(ValueError):
        Scenario(key="", name="Empty")


def test_custom_scenario_key_and_description() -> None:
    scenario = custom_scenario("Big Hire!", burn_adjustment_pct=25, inflow_delay_days=3)

    assert scenario.key == "custom-big-hire"
    assert scenario.description == "Burn +25%, inflows +0%, outflows +0%, inflows 3 days late"


def test_project_scenario_day_by_day() -> None:
    events = [
        _event("in", 2, "inflow", 300.0),
        _event("out", 3, "outflow", 50.0),
        _event("paid", 2, "outflow", 999.0, status="paid"),
        _event("past", -1, "inflow", 999.0),
        _event("today", 0, "inflow", 200.0),
        _event("late", 11, "inflow", 999.0),
    ]
    baseline = project_scenario(
        1000.0,
        BurnMetrics.from_daily(100.0, False),
        events,
        10,
        DEFAULT_SCENARIOS[0],
        start_date=START,
    )

    balances = [p.balance for p in baseline.points]
    assert balances[:5] == [1200.0, 1100.0, 1300.0, 1150.0, 1050.0]
    assert baseline.points[0].date == START
    assert baseline.points[0].inflows == 200.0
    assert len(baseline.points) == 11
    assert baseline.summary.end_balance == 1000.0 + 200.0 - 100.0 * 10 + 300.0 - 50.0
    assert baseline.summary.total_inflows == 500.0
    assert baseline.summary.total_outflows == 50.0


def test_payment_due_today_is_applied_in_every_scenario() -> None:
    """A pending payment dated on the start day lowers the opening balance."""
    bundle = project(
        _position(20000.0),
        BurnMetrics(),
        [_event("supplier", 0, "outflow", 15000.0)],
        30,
        start_date=START,
    )

    baseline = bundle.scenarios["baseline"]
    assert baseline.points[0].balance == 5000.0
    assert baseline.points[0].outflows == 15000.0
    assert baseline.summary.end_balance == 5000.0
    assert baseline.summary.total_outflows == 15000.0

    ends = bundle.comparison.end_balances
    assert ends["optimistic"] == pytest.approx(20000.0 - 15000.0 * 0.9)
    assert ends["pessimistic"] == pytest.approx(20000.0 - 15000.0 * 1.1)
    assert bundle.chart_data[0].balances["baseline"] == 5000.0


def test_negative_crossing_and_lowest_point() -> None:
    projection = project_scenario(
        250.0,
        BurnMetrics.from_daily(100.0, False),
        [],
        5,
        DEFAULT_SCENARIOS[0],
        start_date=START,
    )
    assert projection.summary.goes_negative is True
    assert projection.summary.days_until_negative == 3
    assert projection.summary.lowest_point == -250.0
    assert projection.summary.lowest_point_day == 5


def test_probability_weighting() -> None:
    events = [_event("in", 1, "inflow", 1000.0, probability_pct=50.0)]
    burn = BurnMetrics()

    weighted = project_scenario(
        0.0, burn, events, 1, DEFAULT_SCENARIOS[0], start_date=START, probability_weighted=True
    )
    full = project_scenario(0.0, burn, events, 1, DEFAULT_SCENARIOS[0], start_date=START)

    assert weighted.summary.end_balance == 500.0
    assert full.summary.end_balance == 1000.0


def test_default_scenarios_are_ordered() -> None:
    events = [
        _event("in", 0, "inflow", 5000.0),
        _event("in2", 5, "inflow", 2000.0),
        _event("in3", 88, "inflow", 4000.0),
        _event("out", 10, "outflow", 1500.0),
        _event("out2", 30, "outflow", 800.0),
    ]
    bundle = project(
        _position(20000.0),
        BurnMetrics.from_daily(150.0, False),
        events,
        90,
        start_date=START,
    )
    ends = bundle.comparison.end_balances

    assert ends["pessimistic"] <= ends["baseline"] <= ends["optimistic"]
    for day in range(91):
        balances = bundle.chart_data[day].balances
        assert balances["pessimistic"] <= balances["baseline"] <= balances["optimistic"]

    # Late inflows slip past the horizon in the pessimistic scenario
    pessimistic = bundle.scenarios["pessimistic"].summary
    assert pessimistic.total_inflows == pytest.approx((5000.0 + 2000.0) * 0.8)


def test_project_validates_arguments() -> None:
    burn = BurnMetrics()
    with pytest.raises(ValueError):
        project(_position(0.0), burn, [], 0, start_date=START)
    with pytest.raises(ValueError):
        project(_position(0.0), burn, [], 10, scenarios=[], start_date=START)
    with pytest.raises(ValueError):
        project(
            _position(0.0),
            burn,
            [],
            10,
            scenarios=[DEFAULT_SCENARIOS[0], DEFAULT_SCENARIOS[0]],
            start_date=START,
        )


@pytest.mark.parametrize(
    "net, daily, expected",
    [
        (-100.0, 0.0, "high"),
        (5000.0, 100.0, "high"),  # baseline crosses zero on day 51
        (12000.0, 100.0, "medium"),  # low end balance
        (100000.0, 100.0, "low"),
    ],
)
def test_risk_assessment(net, daily, expected) -> None:
    bundle = project(
        _position(net),
        BurnMetrics.from_daily(daily, daily <= 0),
        [],
        84,
        start_date=START,
    )
    assert bundle.comparison.risk_assessment == expected
    assert bundle.comparison.recommendation


def test_compare_scenarios_requires_projections() -> None:
    with pytest.raises(ValueError):
        compare_scenarios({})


# ---------------------------------------------------------------------------
# Alerts
# ---------------------------------------------------------------------------


def test_alerts_for_critical_position() -> None:
    burn = BurnMetrics.from_daily(200.0, False)
    runway = calculate_runway(3000.0, burn)
    bundle = project(_position(3000.0), burn, [], 30, start_date=START)
    events = [
        _event("big", 3, "outflow", 2500.0, description="Fabric supplier"),
        _event("small", 3, "outflow", 100.0),
        _event("far", 20, "outflow", 9000.0),
    ]

    alerts = generate_alerts(
        3000.0, runway, bundle.comparison, events, today=START, currency="GBP"
    )
    titles = [a.title for a in alerts]

    assert titles[:3] == ["Low Cash Position", "Runway Critical", "Negative Balance Projected"]
    assert "Scenario Goes Negative" in titles
    large = [a for a in alerts if a.title == "Large Payment Due"]
    assert len(large) == 1
    assert large[0].severity == "info"
    assert large[0].message == "£2,500.00 due on 18 Mar for Fabric supplier."
    baseline_alert = next(a for a in alerts if "baseline" in a.message)
    assert baseline_alert.severity == "critical"


def test_alerts_runway_warning_and_healthy() -> None:
    warning_runway = calculate_runway(42000.0, BurnMetrics.from_daily(1000.0, False))
    alerts = generate_alerts(42000.0, warning_runway, today=START)
    assert [a.title for a in alerts] == ["Runway Warning"]
    assert alerts[0].message == "Only 6 weeks of runway remaining at current burn rate."

    healthy = calculate_runway(50000.0, BurnMetrics.from_daily(-10.0, True))
    assert generate_alerts(50000.0, healthy, today=START) == []

    limits = AlertThresholds(large_payment=50.0, max_large_payment_alerts=1)
    events = [_event("a", 1, "outflow", 60.0), _event("b", 2, "outflow", 70.0)]
    alerts = generate_alerts(50000.0, healthy, events=events, thresholds=limits, today=START)
    assert len(alerts) == 1


def test_position_status_and_runway_label() -> None:
    sustainable = calculate_runway(50000.0, BurnMetrics())
    short = calculate_runway(42000.0, BurnMetrics.from_daily(1000.0, False))
    long = calculate_runway(100000.0, BurnMetrics.from_daily(500.0, False))
    very_long = calculate_runway(1000000.0, BurnMetrics.from_daily(100.0, False))

    assert position_status(1000.0, sustainable) == "red"
    assert position_status(42000.0, short) == "yellow"
    assert position_status(50000.0, sustainable) == "green"

    assert runway_label(sustainable) == "Sustainable"
    assert runway_label(short) == "6 weeks"
    assert runway_label(long) == "6.6 months"
    assert runway_label(very_long) == "328.5+ months"
