# CashRecon - Reconciliation & Cash-Flow Forecasting for multi-brand e-commerce
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Configuration helpers for CashRecon.

This module is responsible for:
- loading the application configuration from a TOML file,
- validating the tunable parameters of the matching engine, the forecast
  and the alerts,
- exposing typed dataclasses used by the rest of the application.
"""

import tomllib
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path
from typing import Any, Optional

from .db import DatabaseConfig
from .events import EXPENSE_FREQUENCIES, OperatingExpense
from .matching import MatchSettings
from .position import BURN_METHODS
from .projection import DEFAULT_CHECKPOINT_WEEKS, DEFAULT_SCENARIOS, AlertThresholds, Scenario

DEFAULT_CONFIG_FILE = "cashrecon_config.toml"


@dataclass(frozen=True)
class ForecastConfig:
    """
    Forecast options.

    Attributes
    ----------
    horizon_days:
        Number of days projected by the scenario engine.
    history_days:
        Trailing window of balance history used to measure burn.
    burn_method:
        "endpoint" or "regression" (see position.compute_burn).
    checkpoints_weeks:
        Weeks at which the runway reports a projected balance.
    probability_weighted:
        Weight scheduled events by their probability.
    """

    horizon_days: int = 84
    history_days: int = 30
    burn_method: str = "endpoint"
    checkpoints_weeks: tuple[int, ...] = DEFAULT_CHECKPOINT_WEEKS
    probability_weighted: bool = False


@dataclass(frozen=True)
class AppConfig:
    """
    Application-wide configuration for CashRecon.

    This aggregates:
    - the database configuration (where records are stored),
    - the display currency,
    - the matching engine settings,
    - the forecast options and scenarios,
    - the alert thresholds,
    - the operating expenses expanded into forecast outflows.
    """

    database: DatabaseConfig
    currency: str
    matching: MatchSettings
    forecast: ForecastConfig
    alerts: AlertThresholds
    low_balance_threshold: float
    scenarios: tuple[Scenario, ...]
    opex: tuple[OperatingExpense, ...] = ()


def _load_toml(path: Path) -> dict[str, Any]:
    """
    Load a TOML file and return its content as a dictionary.

    Raises:
        FileNotFoundError: if the file does not exist.
        ValueError: if the TOML content cannot be parsed.
    """
    if not path.is_file():
        raise FileNotFoundError(f"Config file not found: {path}")

    try:
        return tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        raise ValueError(f"Failed to parse TOML config file: {path}") from exc


def _section(raw: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    value = raw.get(name) or {}
    if not isinstance(value, Mapping):
        raise ValueError(f"Config section [{name}] must be a table.")
    return value


def _number(section: Mapping[str, Any], key: str, default: float, where: str) -> float:
    value = section.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"Invalid value for '{where}.{key}': expected a number.")
    return float(value)


def _integer(section: Mapping[str, Any], key: str, default: int, where: str) -> int:
    value = section.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"Invalid value for '{where}.{key}': expected an integer.")
    return value


def _boolean(section: Mapping[str, Any], key: str, default: bool, where: str) -> bool:
    value = section.get(key, default)
    if not isinstance(value, bool):
        raise ValueError(f"Invalid value for '{where}.{key}': expected true or false.")
    return value


def _parse_matching(section: Mapping[str, Any]) -> MatchSettings:
    defaults = MatchSettings()
    return MatchSettings(
        min_confidence=_integer(section, "min_confidence", defaults.min_confidence, "matching"),
        match_window_days=_integer(
            section, "match_window_days", defaults.match_window_days, "matching"
        ),
        amount_tolerance_pct=_number(
            section, "amount_tolerance_pct", defaults.amount_tolerance_pct, "matching"
        ),
        rounding_tolerance=_number(
            section, "rounding_tolerance", defaults.rounding_tolerance, "matching"
        ),
        same_brand_only=_boolean(
            section, "same_brand_only", defaults.same_brand_only, "matching"
        ),
        exclusive_invoices=_boolean(
            section, "exclusive_invoices", defaults.exclusive_invoices, "matching"
        ),
    )


def _parse_forecast(section: Mapping[str, Any]) -> ForecastConfig:
    defaults = ForecastConfig()

    horizon_days = _integer(section, "horizon_days", defaults.horizon_days, "forecast")
    if horizon_days < 1:
        raise ValueError("'forecast.horizon_days' must be at least 1.")

    history_days = _integer(section, "history_days", defaults.history_days, "forecast")
    if history_days < 1:
        raise ValueError("'forecast.history_days' must be at least 1.")

    burn_method = str(section.get("burn_method", defaults.burn_method))
    if burn_method not in BURN_METHODS:
        raise ValueError(
            f"Invalid value for 'forecast.burn_method': {burn_method!r} "
            f"(expected one of {', '.join(BURN_METHODS)})."
        )

    raw_checkpoints = section.get("checkpoints_weeks", list(defaults.checkpoints_weeks))
    if not isinstance(raw_checkpoints, list) or not all(
        isinstance(w, int) and not isinstance(w, bool) and w > 0 for w in raw_checkpoints
    ):
        raise ValueError(
            "Invalid value for 'forecast.checkpoints_weeks': expected a list of "
            "positive integers."
        )

    return ForecastConfig(
        horizon_days=horizon_days,
        history_days=history_days,
        burn_method=burn_method,
        checkpoints_weeks=tuple(sorted(set(raw_checkpoints))),
        probability_weighted=_boolean(
            section, "probability_weighted", defaults.probability_weighted, "forecast"
        ),
    )


def _parse_alerts(section: Mapping[str, Any]) -> tuple[AlertThresholds, float]:
    defaults = AlertThresholds()

    critical_runway_days = _integer(
        section, "critical_runway_days", defaults.critical_runway_days, "alerts"
    )
    if critical_runway_days < 0:
        raise ValueError("'alerts.critical_runway_days' cannot be negative.")

    thresholds = AlertThresholds(
        low_cash=_number(section, "low_cash", defaults.low_cash, "alerts"),
        critical_runway_days=critical_runway_days,
        runway_warning_weeks=_number(
            section, "runway_warning_weeks", defaults.runway_warning_weeks, "alerts"
        ),
        large_payment=_number(section, "large_payment", defaults.large_payment, "alerts"),
        large_payment_window_days=_integer(
            section, "large_payment_window_days", defaults.large_payment_window_days, "alerts"
        ),
        max_large_payment_alerts=_integer(
            section, "max_large_payment_alerts", defaults.max_large_payment_alerts, "alerts"
        ),
    )
    low_balance = _number(section, "low_balance_threshold", 10000.0, "alerts")
    return thresholds, low_balance


def _parse_scenarios(section: Mapping[str, Any]) -> tuple[Scenario, ...]:
    """
    Merge [scenarios.<key>] tables over the default scenarios.

    A table for an existing key (baseline, optimistic, pessimistic)
    overrides its fields; any other key adds a new scenario.
    """
    scenarios = {s.key: s for s in DEFAULT_SCENARIOS}

    for key, table in section.items():
        if not isinstance(table, Mapping):
            raise ValueError(f"Config section [scenarios.{key}] must be a table.")
        where = f"scenarios.{key}"
        base = scenarios.get(key) or Scenario(key=key, name=str(key).capitalize())
        # Scenario.__post_init__ validates the adjustment ranges.
        scenarios[key] = Scenario(
            key=key,
            name=str(table.get("name", base.name)),
            burn_adjustment_pct=_number(
                table, "burn_adjustment_pct", base.burn_adjustment_pct, where
            ),
            inflow_adjustment_pct=_number(
                table, "inflow_adjustment_pct", base.inflow_adjustment_pct, where
            ),
            outflow_adjustment_pct=_number(
                table, "outflow_adjustment_pct", base.outflow_adjustment_pct, where
            ),
            inflow_delay_days=_integer(table, "inflow_delay_days", base.inflow_delay_days, where),
            description=str(table.get("description", base.description)),
        )

    return tuple(scenarios.values())


def _optional_date(table: Mapping[str, Any], key: str, where: str) -> Optional[date]:
    value = table.get(key)
    msg = f"Invalid value for '{where}.{key}': expected a date (YYYY-MM-DD)."
    if value is None:
        return None
    if isinstance(value, datetime):
        raise ValueError(msg)
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        raise ValueError(msg)
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise ValueError(msg) from exc


def _parse_opex(entries: Any) -> tuple[OperatingExpense, ...]:
    """
    Parse the [[opex]] array of tables into operating expenses.

    Each entry needs `id`, `amount`, `frequency` and `start_date`
    (`expense_date` for one-time expenses). `name`, `category`, `brand`,
    `payment_day` and `end_date` are optional.
    """
    if entries is None:
        return ()
    if not isinstance(entries, list):
        raise ValueError("Config key 'opex' must be an array of tables ([[opex]]).")

    expenses: list[OperatingExpense] = []
    seen: set[str] = set()
    for index, table in enumerate(entries):
        where = f"opex[{index}]"
        if not isinstance(table, Mapping):
            raise ValueError(f"Config entry {where} must be a table.")

        expense_id = str(table.get("id") or "").strip()
        if not expense_id:
            raise ValueError(f"Config entry {where} is missing 'id'.")
        if expense_id in seen:
            raise ValueError(f"Duplicate operating expense id in config: {expense_id!r}.")
        seen.add(expense_id)

        amount = _number(table, "amount", 0.0, where)
        if amount <= 0:
            raise ValueError(f"'{where}.amount' must be positive.")

        frequency = str(table.get("frequency", "monthly"))
        if frequency not in EXPENSE_FREQUENCIES:
            raise ValueError(
                f"Invalid value for '{where}.frequency': {frequency!r} "
                f"(expected one of {', '.join(EXPENSE_FREQUENCIES)})."
            )

        start_date = _optional_date(table, "start_date", where)
        expense_date = _optional_date(table, "expense_date", where)
        if frequency == "one_time" and expense_date is None:
            raise ValueError(f"'{where}.expense_date' is required for one-time expenses.")
        if start_date is None:
            if expense_date is None:
                raise ValueError(f"Config entry {where} is missing 'start_date'.")
            start_date = expense_date

        payment_day = table.get("payment_day")
        if payment_day is not None:
            payment_day = _integer(table, "payment_day", 1, where)
            if not 1 <= payment_day <= 31:
                raise ValueError(f"'{where}.payment_day' must be between 1 and 31.")

        brand = table.get("brand")
        expenses.append(
            OperatingExpense(
                id=expense_id,
                name=str(table.get("name") or expense_id),
                amount=amount,
                frequency=frequency,
                start_date=start_date,
                category=str(table.get("category") or ""),
                brand=str(brand) if brand else None,
                payment_day=payment_day,
                end_date=_optional_date(table, "end_date", where),
                expense_date=expense_date,
            )
        )

    return tuple(expenses)


def load_app_config(config_path: Optional[str] = None) -> AppConfig:
    """
    Load the CashRecon application configuration from a TOML file.

    Expected top-level sections in the TOML file
    --------------------------------------------
    [database]
        Database engine and SQLite file path.

    [display]
        Display currency (GBP by default).

    [matching]
        min_confidence, match_window_days, amount_tolerance_pct,
        rounding_tolerance, same_brand_only, exclusive_invoices.

    [forecast]
        horizon_days, history_days, burn_method, checkpoints_weeks,
        probability_weighted.

    [alerts]
        critical_runway_days, low_cash, runway_warning_weeks,
        large_payment, large_payment_window_days, low_balance_threshold.

    [scenarios.<key>]
        Optional overrides or additional scenarios.

    [[opex]]
        Recurring or one-time operating expenses added to the forecast
        as outflows (id, name, amount, frequency, start_date, ...).

    All sections are optional. File paths are resolved relative to the
    directory of the TOML file itself.

    Parameters
    ----------
    config_path:
        Path to the TOML configuration file. Defaults to
        `cashrecon_config.toml` in the current directory.

    Returns
    -------
    AppConfig
        Parsed and validated application configuration.

    Raises
    ------
    FileNotFoundError
        If the configuration file does not exist.
    ValueError
        If the file cannot be parsed or a value is out of range.
    """
    config_file = Path(config_path or DEFAULT_CONFIG_FILE).resolve()
    raw = _load_toml(config_file)
    base_dir = config_file.parent

    # 1) Database section
    database_section = _section(raw, "database")
    db_engine = str(database_section.get("engine") or "sqlite")
    db_path_raw = database_section.get("path") or "data/db/cashrecon.sqlite"
    database = DatabaseConfig(engine=db_engine, path=(base_dir / str(db_path_raw)).resolve())

    # 2) Display section
    display_section = _section(raw, "display")
    currency = str(display_section.get("currency") or "GBP").upper()

    # 3) Engine sections
    matching = _parse_matching(_section(raw, "matching"))
    forecast = _parse_forecast(_section(raw, "forecast"))
    alerts, low_balance_threshold = _parse_alerts(_section(raw, "alerts"))
    scenarios = _parse_scenarios(_section(raw, "scenarios"))
    opex = _parse_opex(raw.get("opex"))

    return AppConfig(
        database=database,
        currency=currency,
        matching=matching,
        forecast=forecast,
        alerts=alerts,
        low_balance_threshold=low_balance_threshold,
        scenarios=scenarios,
        opex=opex,
    )
