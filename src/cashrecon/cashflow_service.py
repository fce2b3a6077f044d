# CashRecon - Reconciliation & Cash-Flow Forecasting for multi-brand e-commerce
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.


"""
High-level service building the cash-flow dashboard.

The report combines, for the whole business or a single brand:

1) the current cash position (latest balance of every account),
2) the balance history, its trend and the burn rate,
3) the runway at the current burn,
4) the scheduled cash events over the forecast horizon, plus the payments
   of the operating expenses declared in the configuration,
5) the scenario projections and their comparison,
6) the alerts derived from all of the above.

Everything is computed from the database and the configuration; the
engine modules remain pure.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Optional

from .config import AppConfig
from .db import load_balance_snapshots as _db_load_balance_snapshots
from .db import load_cash_events as _db_load_cash_events
from .db import load_latest_accounts as _db_load_latest_accounts
from .events import CashFlowSummary, generate_opex_events, summarize_cash_flows
from .models import CashEvent
from .periods import _today
from .position import (
    BurnMetrics,
    CashHistory,
    CashPosition,
    analyze_balance_trend,
    compute_burn,
    compute_position,
    history_from_frame,
)
from .projection import (
    CashAlert,
    PositionStatus,
    ProjectionBundle,
    RunwayMetrics,
    calculate_runway,
    generate_alerts,
    position_status,
    project,
    runway_label,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CashflowReport:
    """Everything the cash-flow dashboard displays."""

    today: date
    brand: Optional[str]
    position: CashPosition
    history: CashHistory
    burn: BurnMetrics
    runway: RunwayMetrics
    flows: CashFlowSummary
    projection: ProjectionBundle
    alerts: list[CashAlert]
    status: PositionStatus
    runway_text: str


def build_cashflow_report(
    app_config: AppConfig,
    *,
    brand: Optional[str] = None,
    today: Optional[date] = None,
    horizon_days: Optional[int] = None,
    extra_events: Iterable[CashEvent] = (),
) -> CashflowReport:
    """
    Build the cash-flow report from the database.

    Parameters
    ----------
    app_config:
        Global application configuration.
    brand:
        Restrict accounts, history and events to one brand (events shared
        across brands are always included).
    today:
        Reference date (defaults to today).
    horizon_days:
        Override of `forecast.horizon_days`.
    extra_events:
        Events generated by the caller (payouts, purchase orders, ad
        platforms...) added to the stored ones and to the configured
        operating expenses.
    """
    db_cfg = app_config.database
    forecast = app_config.forecast
    today = today or _today()
    horizon = horizon_days or forecast.horizon_days

    # 1) Position
    accounts = _db_load_latest_accounts(db_cfg, brand=brand)
    position = compute_position(accounts)

    # 2) History & burn
    snapshots_df = _db_load_balance_snapshots(
        db_cfg,
        start=today - timedelta(days=forecast.history_days),
        end=today,
        brand=brand,
    )
    snapshots = history_from_frame(snapshots_df)
    history = analyze_balance_trend(snapshots)
    burn = compute_burn(
        snapshots,
        window_days=forecast.history_days,
        method=forecast.burn_method,
    )

    # 3) Runway
    runway = calculate_runway(
        position.net_position,
        burn,
        checkpoints_weeks=forecast.checkpoints_weeks,
    )

    # 4) Scheduled events
    events = _db_load_cash_events(
        db_cfg,
        start=today,
        end=today + timedelta(days=horizon),
        brand=brand,
    )
    opex = [e for e in app_config.opex if brand is None or e.brand in (None, brand)]
    generated = generate_opex_events(opex, horizon, today=today)
    if generated:
        logger.info("Generated %d operating expense payments", len(generated))
    events += [
        e
        for e in (*generated, *extra_events)
        if today <= e.event_date <= today + timedelta(days=horizon)
    ]
    flows = summarize_cash_flows(events)

    # 5) Projections
    projection = project(
        position,
        burn,
        events,
        horizon,
        scenarios=app_config.scenarios,
        start_date=today,
        probability_weighted=forecast.probability_weighted,
        critical_runway_days=app_config.alerts.critical_runway_days,
        low_balance_threshold=app_config.low_balance_threshold,
    )

    # 6) Alerts
    alerts = generate_alerts(
        position.net_position,
        runway,
        projection.comparison,
        events,
        thresholds=app_config.alerts,
        today=today,
        currency=app_config.currency,
    )

    return CashflowReport(
        today=today,
        brand=brand,
        position=position,
        history=history,
        burn=burn,
        runway=runway,
        flows=flows,
        projection=projection,
        alerts=alerts,
        status=position_status(position.net_position, runway, app_config.alerts),
        runway_text=runway_label(runway),
    )
