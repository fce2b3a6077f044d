# CashRecon - Reconciliation & Cash-Flow Forecasting for multi-brand e-commerce
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
CashRecon
---------

The reconciliation and cash-flow forecasting engine of a multi-brand
e-commerce P&L dashboard.

Main capabilities:
- fuzzy matching of B2B orders to accounting invoices, with a confidence
  score (0-100) and human-readable reasons,
- atomic, one-to-one confirmation of matches (SQLite),
- cash position from bank and credit accounts,
- balance trend, burn rate and runway,
- cash event generation (platform payouts, opex, purchase orders, ads),
- day-by-day scenario projections (baseline, optimistic, pessimistic,
  custom) with risk assessment and alerts,
- a command-line interface over a TOML configuration.

CashRecon separates the pure engine (matching, position, projection),
configuration (TOML), persistence (SQLite) and presentation (CLI).


Version: 0.1.0

Usage:
    python -m cashrecon.cli --help
"""

__all__ = ["matching", "position", "projection", "events", "views", "io"]

__version__ = "0.1.0"
