# CashRecon - Reconciliation & Cash-Flow Forecasting for multi-brand e-commerce
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Command-Line Interface (CLI) for CashRecon.

This module wires together the main building blocks of CashRecon:

- global configuration (database, matching, forecast, alerts, scenarios),
- CSV imports into the database,
- the reconciliation service (suggest, link, unlink, exclude...),
- the cash-flow service (position, burn, runway, scenarios, alerts),
- view helpers (tabular rendering).

The CLI is intentionally thin: it does not implement matching or
forecasting logic itself.


Commands
--------

    import {orders,invoices,balances,events} CSV
        Load records from a CSV file into the database.

    match [--brand B] [--min-confidence N] [--all] [--output CSV]
        Suggest invoices for unreconciled orders.

    link ORDER_ID INVOICE_ID
        Confirm a match (atomic, one-to-one).

    unlink ORDER_ID
        Undo a confirmed match.

    exclude ORDER_ID [--reason TEXT] / restore ORDER_ID
        Soft-exclude an order from reconciliation, or bring it back.

    ignore INVOICE_ID / reopen INVOICE_ID
        Ignore a pending invoice, or move an invoice back to pending.

    status [--brand B]
        Reconciliation overview.

    cashflow [--brand B] [--today YYYY-MM-DD] [--horizon-days N]
             [--granularity day|week|month]
        Cash position, burn, runway, scenario projections and alerts.


Configuration
-------------

By default, the CLI reads its configuration from ``cashrecon_config.toml``
in the current working directory. Use ``--config PATH`` to override it.
``--verbose`` enables INFO logging.
"""

import argparse
import logging
import sys
from datetime import date
from pathlib import Path
from typing import Optional

import pandas as pd

from . import __version__
from .cashflow_service import CashflowReport, build_cashflow_report
from .config import AppConfig, load_app_config
from .db import (
    init_database,
    insert_balance_snapshots,
    insert_cash_events,
    upsert_invoices,
    upsert_orders,
)
from .errors import ReconciliationError
from .io import read_balance_snapshots, read_cash_events, read_invoices, read_orders
from .money import format_amount
from .reconciliation_service import (
    confirm_match,
    exclude_order,
    ignore_invoice,
    reconciliation_summary,
    reopen_invoice,
    restore_order,
    suggest_matches_from_db,
    unlink_match,
)
from .views import (
    alerts_frame,
    chart_frame,
    scenario_summary_frame,
    suggestions_frame,
    unmatched_frame,
)

logger = logging.getLogger(__name__)

IMPORT_KINDS = ("orders", "invoices", "balances", "events")


def _build_parser() -> argparse.ArgumentParser:
    """Create and configure the argument parser for the CLI."""
    ap = argparse.ArgumentParser(
        prog="python -m cashrecon.cli",
        description=(
            "CashRecon - Reconciliation & Cash-Flow Forecasting for multi-brand "
            "e-commerce. Matches B2B orders to accounting invoices and projects "
            "cash balances under several scenarios."
        ),
    )

    ap.add_argument(
        "--version",
        action="store_true",
        help="Show the installed version of cashrecon and exit.",
    )
    ap.add_argument(
        "--config",
        dest="config_path",
        help=(
            "Path to the main TOML configuration file. "
            "If omitted, 'cashrecon_config.toml' in the current directory is used."
        ),
    )
    ap.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Log engine activity (INFO level) to stderr.",
    )

    sub = ap.add_subparsers(dest="command")

    # import
    p_import = sub.add_parser("import", help="Import records from a CSV file.")
    p_import.add_argument("kind", choices=IMPORT_KINDS, help="Type of records in the file.")
    p_import.add_argument("csv_path", metavar="CSV", help="Path to the CSV file.")

    # match
    p_match = sub.add_parser("match", help="Suggest invoices for unreconciled orders.")
    p_match.add_argument("--brand", help="Restrict to one brand.")
    p_match.add_argument(
        "--min-confidence",
        dest="min_confidence",
        type=int,
        help="Confidence floor (0-100). Defaults to matching.min_confidence.",
    )
    p_match.add_argument(
        "--all",
        dest="show_all",
        action="store_true",
        help="Show every qualifying pair instead of the best one per order.",
    )
    p_match.add_argument(
        "--output",
        dest="output_path",
        metavar="CSV",
        help="Also write the suggestions to a CSV file.",
    )

    # link / unlink
    p_link = sub.add_parser("link", help="Confirm a match between an order and an invoice.")
    p_link.add_argument("order_id", metavar="ORDER_ID")
    p_link.add_argument("invoice_id", metavar="INVOICE_ID")

    p_unlink = sub.add_parser("unlink", help="Undo a confirmed match.")
    p_unlink.add_argument("order_id", metavar="ORDER_ID")

    # exclude / restore
    p_exclude = sub.add_parser("exclude", help="Exclude an order from reconciliation.")
    p_exclude.add_argument("order_id", metavar="ORDER_ID")
    p_exclude.add_argument("--reason", help="Optional human-readable reason.")

    p_restore = sub.add_parser("restore", help="Restore an excluded order.")
    p_restore.add_argument("order_id", metavar="ORDER_ID")

    # ignore / reopen
    p_ignore = sub.add_parser("ignore", help="Ignore a pending invoice.")
    p_ignore.add_argument("invoice_id", metavar="INVOICE_ID")

    p_reopen = sub.add_parser("reopen", help="Move an invoice back to pending.")
    p_reopen.add_argument("invoice_id", metavar="INVOICE_ID")

    # status
    p_status = sub.add_parser("status", help="Show the reconciliation overview.")
    p_status.add_argument("--brand", help="Restrict to one brand.")

    # cashflow
    p_cash = sub.add_parser("cashflow", help="Show the cash-flow forecast.")
    p_cash.add_argument("--brand", help="Restrict to one brand.")
    p_cash.add_argument("--today", help="Reference date (YYYY-MM-DD). Defaults to today.")
    p_cash.add_argument(
        "--horizon-days",
        dest="horizon_days",
        type=int,
        help="Override forecast.horizon_days.",
    )
    p_cash.add_argument(
        "--granularity",
        choices=["day", "week", "month"],
        default="week",
        help="Sampling of the projection table (default: week).",
    )

    return ap


def _parse_optional_date(value: Optional[str]) -> Optional[date]:
    """
    Parse an optional CLI date argument (YYYY-MM-DD).

    Raises
    ------
    SystemExit
        If the date format is invalid.
    """
    if value is None:
        return None

    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        msg = f"Invalid date format: {value!r}. Expected YYYY-MM-DD."
        raise SystemExit(msg) from exc


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


def _handle_import(args: argparse.Namespace, config: AppConfig) -> None:
    csv_path = Path(args.csv_path)
    if not csv_path.is_file():
        raise SystemExit(f"CSV file not found: {csv_path}")

    print(f"Importing {args.kind} from {csv_path} into the database...")
    if args.kind == "orders":
        count = upsert_orders(config.database, read_orders(csv_path))
    elif args.kind == "invoices":
        count = upsert_invoices(config.database, read_invoices(csv_path))
    elif args.kind == "balances":
        count = insert_balance_snapshots(config.database, read_balance_snapshots(csv_path))
    else:
        count = insert_cash_events(config.database, read_cash_events(csv_path))
    print(f"Imported {count} {args.kind}.")


def _handle_match(args: argparse.Namespace, config: AppConfig) -> None:
    run = suggest_matches_from_db(
        config,
        brand=args.brand,
        min_confidence=args.min_confidence,
    )

    df = suggestions_frame(run, include_all=args.show_all)
    if df.empty:
        print("No match suggestions for the given criteria.")
    else:
        display = df.drop(columns=["order_number", "contact_name"])
        print(display.to_string(index=False))

    summary = run.summary()
    print()
    print(
        f"Suggestions: {summary['suggestions']} "
        f"(high: {summary['high_confidence']}, medium: {summary['medium_confidence']}, "
        f"low: {summary['low_confidence']}) | "
        f"Unmatched orders: {len(run.unmatched_orders)} | "
        f"Unmatched invoices: {len(run.unmatched_invoices)}"
    )

    if run.unmatched_orders:
        print()
        print("Orders needing manual review:")
        print(unmatched_frame(run.unmatched_orders).to_string(index=False))

    if run.skipped:
        print()
        print("Skipped records:")
        for rec in run.skipped:
            print(f"  - {rec.kind} {rec.record_id}: {rec.reason}")

    if args.output_path:
        out = Path(args.output_path)
        out.parent.mkdir(parents=True, exist_ok=True)
        df.to_csv(out, index=False)
        print(f"Suggestions written to {out}")


def _handle_status(args: argparse.Namespace, config: AppConfig) -> None:
    summary = reconciliation_summary(config, brand=args.brand)
    print(f"Orders:              {summary.total_orders}")
    print(f"  reconciled:        {summary.reconciled_orders} ({summary.reconciled_pct:.1f}%)")
    print(f"  unreconciled:      {summary.unreconciled_orders}")
    print(f"  excluded:          {summary.excluded_orders}")
    print(f"Open invoices:       {summary.open_invoices}")


def _print_cashflow_report(report: CashflowReport, config: AppConfig, granularity: str) -> None:
    cur = config.currency
    position = report.position
    burn = report.burn

    scope = f" ({report.brand})" if report.brand else ""
    print(f"Cash position{scope} as of {report.today.isoformat()} [{report.status}]")
    print(f"  Cash:          {format_amount(position.total_cash, cur)}")
    print(f"  Credit:        {format_amount(position.total_credit, cur)}")
    print(f"  Net position:  {format_amount(position.net_position, cur)}")
    print()
    print(
        f"Burn: {format_amount(burn.burn_rate_daily, cur)}/day, "
        f"{format_amount(burn.burn_rate_weekly, cur)}/week, "
        f"{format_amount(burn.burn_rate_monthly, cur)}/month"
        + (" (accumulating)" if burn.is_accumulating else "")
    )
    print(
        f"Trend: {report.history.trend} ({report.history.change_percent:+.1f}%) | "
        f"Runway: {report.runway_text}"
    )

    flows = report.flows
    print(
        f"Scheduled: in {format_amount(flows.total_inflows, cur)}, "
        f"out {format_amount(flows.total_outflows, cur)}, "
        f"net {format_amount(flows.net_flow, cur, signed=True)}"
    )

    print()
    print("Scenarios:")
    print(scenario_summary_frame(report.projection).to_string(index=False))

    comparison = report.projection.comparison
    print()
    print(f"Risk: {comparison.risk_assessment.upper()} - {comparison.recommendation}")

    print()
    print("Projection:")
    chart = chart_frame(report.projection, granularity)
    chart["date"] = chart["date"].astype(str)
    print(chart.to_string(index=False))

    if report.alerts:
        print()
        print("Alerts:")
        print(alerts_frame(report.alerts).to_string(index=False))


def _handle_cashflow(args: argparse.Namespace, config: AppConfig) -> None:
    if args.horizon_days is not None and args.horizon_days < 1:
        raise SystemExit("--horizon-days must be at least 1.")

    report = build_cashflow_report(
        config,
        brand=args.brand,
        today=_parse_optional_date(args.today),
        horizon_days=args.horizon_days,
    )
    with pd.option_context("display.width", 200, "display.max_columns", 20):
        _print_cashflow_report(report, config, args.granularity)


def _dispatch(args: argparse.Namespace, config: AppConfig) -> None:
    command = args.command

    if command == "import":
        _handle_import(args, config)
    elif command == "match":
        _handle_match(args, config)
    elif command == "link":
        order, invoice = confirm_match(config, args.order_id, args.invoice_id)
        print(f"Linked order {order.id} to invoice {invoice.invoice_number} ({invoice.id}).")
    elif command == "unlink":
        order = unlink_match(config, args.order_id)
        print(f"Unlinked order {order.id}.")
    elif command == "exclude":
        order = exclude_order(config, args.order_id, args.reason)
        print(f"Excluded order {order.id}.")
    elif command == "restore":
        order = restore_order(config, args.order_id)
        print(f"Restored order {order.id}.")
    elif command == "ignore":
        invoice = ignore_invoice(config, args.invoice_id)
        print(f"Invoice {invoice.id} is now {invoice.approval_status}.")
    elif command == "reopen":
        invoice = reopen_invoice(config, args.invoice_id)
        print(f"Invoice {invoice.id} is now {invoice.approval_status}.")
    elif command == "status":
        _handle_status(args, config)
    elif command == "cashflow":
        _handle_cashflow(args, config)


def main(argv: Optional[list[str]] = None) -> int:
    """
    Entry point for the CashRecon CLI.

    Parses command-line arguments, loads the configuration, initializes the
    database and runs the requested command. Engine errors (unknown ids,
    already linked records, invalid input) are reported on stderr with a
    non-zero exit code.
    """
    parser = _build_parser()
    args = parser.parse_args(argv)

    if args.version:
        print(f"cashrecon version {__version__}")
        return 0

    if not args.command:
        parser.print_help()
        return 1

    _configure_logging(args.verbose)

    # 1) Load application configuration
    try:
        config = load_app_config(args.config_path)
    except (FileNotFoundError, ValueError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 2

    # 2) Initialize the database (create file and schema if needed)
    init_database(config.database)

    # 3) Run the command
    try:
        _dispatch(args, config)
    except ReconciliationError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    except ValueError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 2

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
