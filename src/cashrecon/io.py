# CashRecon - Reconciliation & Cash-Flow Forecasting for multi-brand e-commerce
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
I/O module for CashRecon.

This module reads CSV exports (shop platform, accounting provider, bank
feeds, cash plans) and turns them into the records used by the engine.
Column names are case-insensitive and surrounding spaces are ignored.

Expected input formats
----------------------

1) Orders
       id, brand, order_date, subtotal, currency
   optional: total, customer_name, b2b_customer_name, order_number, company,
   raw_data (JSON object).

   ``total`` defaults to ``subtotal``. A ``company`` column is stored in the
   raw payload, where the name heuristics look for it.

2) Invoices
       id, brand, invoice_number, contact_name, subtotal, currency
   optional: invoice_date, tax, total, approval_status.

   ``tax`` defaults to 0, ``total`` to ``subtotal + tax`` and
   ``approval_status`` to ``pending``.

3) Balance snapshots
       date, account_name, account_type, balance
   optional: currency, brand.

   ``account_type`` accepts the provider spellings (BANK, CREDITCARD).

4) Cash events
       id, event_date, amount, category
   optional: direction, description, status, probability_pct, brand,
   reference_type, reference_id, is_recurring, notes.

   Without a ``direction`` column, the sign of ``amount`` gives the
   direction (positive = inflow).

If a CSV does not contain the required columns or a value cannot be
parsed, a clear ValueError is raised.
"""

import json
import os
from typing import Any, Optional, Union

import pandas as pd

from .models import (
    EVENT_STATUSES,
    CashEvent,
    Invoice,
    Order,
    normalize_account_type,
)

PathLike = Union[str, "os.PathLike[str]"]


def _read_csv(path: PathLike) -> pd.DataFrame:
    """Read a CSV file and normalize column names to lowercase."""
    df = pd.read_csv(path, dtype=str, keep_default_na=False)
    df.columns = [c.lower().strip() for c in df.columns]
    return df


def _require_columns(df: pd.DataFrame, required: set[str], kind: str) -> None:
    missing = required.difference(df.columns)
    if missing:
        cols = ", ".join(sorted(missing))
        raise ValueError(f"{kind} CSV is missing required column(s): {cols}")


def _text(rec: dict[str, Any], column: str) -> Optional[str]:
    value = rec.get(column)
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _dates(df: pd.DataFrame, column: str, *, required: bool = True) -> pd.Series:
    """Parse a date column strictly; blank cells are allowed if not required."""
    raw = df[column].astype(str).str.strip()
    blank = raw == ""
    if required and blank.any():
        raise ValueError(f"Missing values in '{column}' column.")
    try:
        parsed = pd.to_datetime(raw.where(~blank), errors="raise")
    except Exception as exc:  # noqa: BLE001
        raise ValueError(f"Invalid values in '{column}' column.") from exc
    return parsed.map(lambda ts: None if pd.isna(ts) else ts.date())


def _numbers(df: pd.DataFrame, column: str, default: Optional[float] = None) -> pd.Series:
    """Parse a numeric column; blank cells take `default` when given."""
    raw = df[column].astype(str).str.strip().str.replace(",", "", regex=False)
    values = pd.to_numeric(raw.where(raw != ""), errors="coerce")
    if default is not None:
        values = values.where(raw != "", default)
    if values.isna().any():
        raise ValueError(f"Invalid numeric values in '{column}' column.")
    return values.astype(float)


def _optional_numbers(df: pd.DataFrame, column: str, default: float) -> pd.Series:
    if column not in df.columns:
        return pd.Series([default] * len(df), index=df.index, dtype=float)
    return _numbers(df, column, default)


# ---------------------------------------------------------------------------
# Orders & invoices
# ---------------------------------------------------------------------------


def read_orders(path: PathLike) -> list[Order]:
    """
    Read B2B orders from a CSV file.

    Returns
    -------
    list[Order]
        One Order per row, in file order.

    Raises
    ------
    ValueError
        If required columns are missing or values cannot be parsed.
    """
    df = _read_csv(path)
    _require_columns(df, {"id", "brand", "order_date", "subtotal", "currency"}, "Orders")

    order_dates = _dates(df, "order_date")
    subtotals = _numbers(df, "subtotal")
    if "total" in df.columns:
        totals = _numbers(df, "total", 0.0).where(df["total"].str.strip() != "", subtotals)
    else:
        totals = subtotals

    orders: list[Order] = []
    for i, rec in enumerate(df.to_dict(orient="records")):
        raw_data: dict[str, Any] = {}
        raw_json = _text(rec, "raw_data")
        if raw_json:
            try:
                raw_data = json.loads(raw_json)
            except json.JSONDecodeError as exc:
                raise ValueError(f"Invalid JSON in 'raw_data' for order {rec['id']!r}.") from exc
            if not isinstance(raw_data, dict):
                raise ValueError(f"'raw_data' for order {rec['id']!r} must be a JSON object.")
        company = _text(rec, "company")
        if company:
            raw_data.setdefault("company", company)

        orders.append(
            Order(
                id=str(rec["id"]).strip(),
                brand=str(rec["brand"]).strip(),
                order_date=order_dates.iloc[i],
                subtotal=float(subtotals.iloc[i]),
                total=float(totals.iloc[i]),
                currency=str(rec["currency"]).strip().upper(),
                customer_name=_text(rec, "customer_name"),
                b2b_customer_name=_text(rec, "b2b_customer_name"),
                order_number=_text(rec, "order_number"),
                raw_data=raw_data or None,
            )
        )
    return orders


def read_invoices(path: PathLike) -> list[Invoice]:
    """
    Read accounting invoices from a CSV file.

    Raises
    ------
    ValueError
        If required columns are missing, values cannot be parsed or an
        approval status is unknown.
    """
    df = _read_csv(path)
    _require_columns(
        df,
        {"id", "brand", "invoice_number", "contact_name", "subtotal", "currency"},
        "Invoices",
    )

    invoice_dates = (
        _dates(df, "invoice_date", required=False)
        if "invoice_date" in df.columns
        else pd.Series([None] * len(df), index=df.index)
    )
    subtotals = _numbers(df, "subtotal")
    taxes = _optional_numbers(df, "tax", 0.0)
    if "total" in df.columns:
        totals = _numbers(df, "total", 0.0).where(df["total"].str.strip() != "", subtotals + taxes)
    else:
        totals = subtotals + taxes

    invoices: list[Invoice] = []
    for i, rec in enumerate(df.to_dict(orient="records")):
        status = (_text(rec, "approval_status") or "pending").lower()
        if status not in ("pending", "approved", "ignored"):
            raise ValueError(f"Unknown approval status {status!r} for invoice {rec['id']!r}.")
        invoices.append(
            Invoice(
                id=str(rec["id"]).strip(),
                brand=str(rec["brand"]).strip(),
                invoice_number=str(rec["invoice_number"]).strip(),
                contact_name=_text(rec, "contact_name") or "",
                invoice_date=invoice_dates.iloc[i],
                subtotal=float(subtotals.iloc[i]),
                tax=float(taxes.iloc[i]),
                total=float(totals.iloc[i]),
                currency=str(rec["currency"]).strip().upper(),
                approval_status=status,
            )
        )
    return invoices


# ---------------------------------------------------------------------------
# Balances & cash events
# ---------------------------------------------------------------------------


def read_balance_snapshots(path: PathLike) -> pd.DataFrame:
    """
    Read account balance snapshots from a CSV file.

    Returns
    -------
    pandas.DataFrame
        Columns: date (datetime.date), account_name, account_type
        ('bank' | 'credit'), balance (float), currency, brand (None when
        blank).
    """
    df = _read_csv(path)
    _require_columns(df, {"date", "account_name", "account_type", "balance"}, "Balances")

    try:
        account_types = df["account_type"].map(normalize_account_type)
    except ValueError as exc:
        raise ValueError(f"Invalid values in 'account_type' column: {exc}") from exc

    out = pd.DataFrame(
        {
            "date": _dates(df, "date"),
            "account_name": df["account_name"].astype(str).str.strip(),
            "account_type": account_types,
            "balance": _numbers(df, "balance"),
        }
    )
    currency = df["currency"] if "currency" in df.columns else pd.Series("", index=df.index)
    out["currency"] = currency.astype(str).str.strip().str.upper().replace("", "GBP")
    brand = df["brand"] if "brand" in df.columns else pd.Series("", index=df.index)
    out["brand"] = brand.astype(str).str.strip().map(lambda b: b or None)
    return out


def read_cash_events(path: PathLike) -> list[CashEvent]:
    """
    Read scheduled or historical cash events from a CSV file.

    Raises
    ------
    ValueError
        If required columns are missing, values cannot be parsed, or a
        direction / status is unknown.
    """
    df = _read_csv(path)
    _require_columns(df, {"id", "event_date", "amount", "category"}, "Cash events")

    event_dates = _dates(df, "event_date")
    amounts = _numbers(df, "amount")
    probabilities = _optional_numbers(df, "probability_pct", 100.0)

    events: list[CashEvent] = []
    for i, rec in enumerate(df.to_dict(orient="records")):
        amount = float(amounts.iloc[i])
        direction = (_text(rec, "direction") or ("inflow" if amount >= 0 else "outflow")).lower()
        if direction not in ("inflow", "outflow"):
            raise ValueError(f"Unknown direction {direction!r} for event {rec['id']!r}.")
        status = (_text(rec, "status") or "forecast").lower()
        if status not in EVENT_STATUSES:
            raise ValueError(f"Unknown status {status!r} for event {rec['id']!r}.")

        recurring = (_text(rec, "is_recurring") or "").lower() in ("1", "true", "yes")
        events.append(
            CashEvent(
                id=str(rec["id"]).strip(),
                event_date=event_dates.iloc[i],
                direction=direction,
                amount=abs(amount),
                category=str(rec["category"]).strip(),
                description=_text(rec, "description") or "",
                status=status,
                probability_pct=float(probabilities.iloc[i]),
                brand=_text(rec, "brand"),
                reference_type=_text(rec, "reference_type"),
                reference_id=_text(rec, "reference_id"),
                is_recurring=recurring,
                notes=_text(rec, "notes"),
            )
        )
    return events
