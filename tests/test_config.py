from datetime import date
from pathlib import Path

import pytest

from cashrecon.config import load_app_config


def _write(tmp_path: Path, content: str) -> Path:
    path = tmp_path / "cashrecon_config.toml"
    path.write_text(content, encoding="utf-8")
    return path


def test_defaults_with_empty_file(tmp_path) -> None:
    """An empty config file yields the documented defaults."""
    cfg = load_app_config(str(_write(tmp_path, "")))

    assert cfg.database.engine == "sqlite"
    assert cfg.database.path == (tmp_path / "data/db/cashrecon.sqlite").resolve()
    assert cfg.currency == "GBP"
    assert cfg.matching.min_confidence == 40
    assert cfg.matching.same_brand_only is True
    assert cfg.forecast.horizon_days == 84
    assert cfg.forecast.checkpoints_weeks == (4, 8, 12)
    assert cfg.alerts.critical_runway_days == 28
    assert cfg.low_balance_threshold == 10000.0
    assert [s.key for s in cfg.scenarios] == ["baseline", "optimistic", "pessimistic"]
    assert cfg.opex == ()


def test_full_config_is_parsed(tmp_path) -> None:
    content = """
[database]
engine = "sqlite"
path = "db/recon.sqlite"

[display]
currency = "eur"

[matching]
min_confidence = 55
match_window_days = 14
amount_tolerance_pct = 2.5
same_brand_only = false
exclusive_invoices = false

[forecast]
horizon_days = 30
history_days = 60
burn_method = "regression"
checkpoints_weeks = [8, 2, 8]
probability_weighted = true

[alerts]
low_cash = 1000
critical_runway_days = 14
low_balance_threshold = 2500

[scenarios.pessimistic]
inflow_delay_days = 14

[scenarios.hiring]
name = "Hiring"
burn_adjustment_pct = 25.0
"""
    cfg = load_app_config(str(_write(tmp_path, content)))

    assert cfg.database.path == (tmp_path / "db/recon.sqlite").resolve()
    assert cfg.currency == "EUR"
    assert cfg.matching.min_confidence == 55
    assert cfg.matching.match_window_days == 14
    assert cfg.matching.amount_tolerance_pct == 2.5
    assert cfg.matching.same_brand_only is False
    assert cfg.matching.exclusive_invoices is False
    assert cfg.forecast.horizon_days == 30
    assert cfg.forecast.burn_method == "regression"
    assert cfg.forecast.checkpoints_weeks == (2, 8)
    assert cfg.forecast.probability_weighted is True
    assert cfg.alerts.low_cash == 1000.0
    assert cfg.alerts.critical_runway_days == 14
    assert cfg.low_balance_threshold == 2500.0

    scenarios = {s.key: s for s in cfg.scenarios}
    assert list(scenarios) == ["baseline", "optimistic", "pessimistic", "hiring"]
    assert scenarios["pessimistic"].inflow_delay_days == 14
    # Untouched fields keep their defaults
    assert scenarios["pessimistic"].inflow_adjustment_pct == -20.0
    assert scenarios["hiring"].name == "Hiring"
    assert scenarios["hiring"].burn_adjustment_pct == 25.0


def test_missing_config_file_raises(tmp_path) -> None:
    with pytest.raises(FileNotFoundError):
        load_app_config(str(tmp_path / "missing.toml"))


@pytest.mark.parametrize(
    "content",
    [
        "this is not toml = = =",
        "[matching]\nmin_confidence = 120",
        "[matching]\nmin_confidence = \"high\"",
        "[matching]\nsame_brand_only = \"yes\"",
        "[forecast]\nhorizon_days = 0",
        "[forecast]\nburn_method = \"average\"",
        "[forecast]\ncheckpoints_weeks = [0, 4]",
        "[scenarios.crash]\nburn_adjustment_pct = 500",
        "[scenarios]\ncrash = 3",
        "database = 3",
        "[[opex]]\nid = \"rent\"\namount = 0\nstart_date = 2024-01-01",
        "[[opex]]\nid = \"rent\"\namount = 10\nfrequency = \"weekly\"\nstart_date = 2024-01-01",
        "[[opex]]\nid = \"audit\"\namount = 10\nfrequency = \"one_time\"",
        "[[opex]]\nid = \"rent\"\namount = 10\nstart_date = \"next month\"",
        "opex = 3",
    ],
)
def test_invalid_values_raise_value_error(tmp_path, content) -> None:
    with pytest.raises(ValueError):
        load_app_config(str(_write(tmp_path, content)))


def test_default_config_file_in_cwd(tmp_path, monkeypatch) -> None:
    _write(tmp_path, "[display]\ncurrency = \"USD\"\n")
    monkeypatch.chdir(tmp_path)

    assert load_app_config().currency == "USD"


def test_operating_expenses_are_parsed(tmp_path) -> None:
    content = """
[[opex]]
id = "rent"
name = "Studio rent"
amount = 2000
start_date = 2024-01-10
payment_day = 31
brand = "brand-a"

[[opex]]
id = "insurance"
amount = 1200.5
frequency = "annual"
start_date = "2023-06-01"
end_date = 2026-05-31
category = "insurance"

[[opex]]
id = "audit"
amount = 900
frequency = "one_time"
expense_date = 2024-04-20
"""
    cfg = load_app_config(str(_write(tmp_path, content)))

    rent, insurance, audit = cfg.opex
    assert (rent.name, rent.amount, rent.frequency) == ("Studio rent", 2000.0, "monthly")
    assert rent.start_date == date(2024, 1, 10)
    assert (rent.payment_day, rent.brand) == (31, "brand-a")

    assert insurance.name == "insurance"
    assert insurance.start_date == date(2023, 6, 1)
    assert insurance.end_date == date(2026, 5, 31)
    assert insurance.brand is None

    assert audit.expense_date == date(2024, 4, 20)
    assert audit.start_date == date(2024, 4, 20)


def test_duplicate_operating_expense_ids_raise(tmp_path) -> None:
    content = """
[[opex]]
id = "rent"
amount = 10
start_date = 2024-01-01

[[opex]]
id = "rent"
amount = 20
start_date = 2024-01-01
"""
    with pytest.raises(ValueError, match="Duplicate"):
        load_app_config(str(_write(tmp_path, content)))
