# CashRecon - Reconciliation & Cash-Flow Forecasting for multi-brand e-commerce
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.


"""
Database layer for CashRecon.

This module provides the low-level accessors used by the services and the
CLI to persist the records consumed by the engine. It is responsible for:

- Initializing the database schema (idempotent).
- Upserting orders and invoices synced from external systems.
- Linking an order to an invoice atomically (check-and-set on both sides).
- Unlinking, excluding / restoring orders and changing invoice status.
- Storing account balance snapshots and cash events.

------------------------------------------------------------------------------
Schema Overview
------------------------------------------------------------------------------

1) orders
   One row per B2B order to reconcile.

   Columns:
   - id                  TEXT    PRIMARY KEY
   - brand               TEXT    NOT NULL
   - order_date          TEXT    NOT NULL  -- ISO date "YYYY-MM-DD"
   - order_number        TEXT
   - customer_name       TEXT
   - b2b_customer_name   TEXT
   - subtotal_cents      INTEGER NOT NULL
   - total_cents         INTEGER NOT NULL
   - currency            TEXT    NOT NULL
   - raw_data            TEXT              -- JSON payload from the shop sync
   - matched_invoice_id  TEXT              -- UNIQUE when not NULL
   - excluded            INTEGER NOT NULL DEFAULT 0
   - excluded_at         TEXT
   - excluded_reason     TEXT
   - updated_at          TEXT    NOT NULL  -- UTC timestamp

   Orders are never deleted: exclusion is a soft flag.

2) invoices
   One row per accounting invoice synced from the provider.

   Columns:
   - id                  TEXT    PRIMARY KEY
   - brand               TEXT    NOT NULL
   - invoice_number      TEXT    NOT NULL
   - contact_name        TEXT
   - invoice_date        TEXT              -- ISO date, optional
   - subtotal_cents      INTEGER NOT NULL
   - tax_cents           INTEGER NOT NULL DEFAULT 0
   - total_cents         INTEGER NOT NULL
   - currency            TEXT    NOT NULL
   - approval_status     TEXT    NOT NULL DEFAULT 'pending'
                                           -- 'pending' | 'approved' | 'ignored'
   - matched_order_id    TEXT              -- UNIQUE when not NULL
   - approved_at         TEXT
   - updated_at          TEXT    NOT NULL

3) balance_snapshots
   Daily balance per bank / credit account.

   Columns:
   - id, date, account_name, account_type ('bank' | 'credit'),
     balance_cents, currency, brand
   - UNIQUE (date, account_name)

4) cash_events
   Scheduled or historical cash movements.

   Columns:
   - id, event_date, direction ('inflow' | 'outflow'), amount_cents (>= 0),
     category, description, status, probability_pct, brand,
     reference_type, reference_id, is_recurring, notes, updated_at

------------------------------------------------------------------------------
SQLite Notes
------------------------------------------------------------------------------

- All timestamps are stored as ISO-8601 text (UTC).
- Amounts are stored as signed integer cents.
- Partial unique indexes on orders.matched_invoice_id and
  invoices.matched_order_id enforce the one-to-one link at storage level.
- `link_order_invoice` runs in a single BEGIN IMMEDIATE transaction, so
  concurrent link attempts are serialized by SQLite's write lock.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any

import pandas as pd

from .errors import AlreadyLinked, InvalidInput, InvalidTransition, NotFound
from .models import (
    APPROVAL_STATUSES,
    RAW_INVOICE_KEY,
    CashAccount,
    CashEvent,
    Invoice,
    Order,
    normalize_account_type,
)
from .money import from_cents, to_cents

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DatabaseConfig:
    """
    Database configuration for CashRecon.

    Attributes
    ----------
    engine:
        Database engine identifier. Only "sqlite" is supported.
    path:
        Path to the SQLite database file.
    timeout:
        Seconds a connection waits for the write lock before failing.
    """

    engine: str
    path: Path
    timeout: float = 30.0


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _ensure_sqlite(cfg: DatabaseConfig) -> None:
    """Raise if the configuration does not refer to a supported engine."""
    if cfg.engine.lower() != "sqlite":
        msg = (
            f"Unsupported database engine: {cfg.engine!r}. "
            "Only 'sqlite' is supported for now."
        )
        raise ValueError(msg)


def _connect(cfg: DatabaseConfig) -> sqlite3.Connection:
    """
    Open a SQLite connection with foreign keys enabled.

    The caller is responsible for closing the connection.
    """
    _ensure_sqlite(cfg)
    conn = sqlite3.connect(cfg.path, timeout=cfg.timeout)
    conn.execute("PRAGMA foreign_keys = ON;")
    return conn


def _create_schema_if_needed(conn: sqlite3.Connection) -> None:
    """
    Create tables and indexes if they do not exist yet.

    This function is idempotent and can be called multiple times safely.
    """
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS orders (
            id                 TEXT    PRIMARY KEY,
            brand              TEXT    NOT NULL,
            order_date         TEXT    NOT NULL,  -- ISO date 'YYYY-MM-DD'
            order_number       TEXT,
            customer_name      TEXT,
            b2b_customer_name  TEXT,
            subtotal_cents     INTEGER NOT NULL,
            total_cents        INTEGER NOT NULL,
            currency           TEXT    NOT NULL,
            raw_data           TEXT,
            matched_invoice_id TEXT,
            excluded           INTEGER NOT NULL DEFAULT 0,
            excluded_at        TEXT,
            excluded_reason    TEXT,
            updated_at         TEXT    NOT NULL
        );
        """
    )

    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS invoices (
            id               TEXT    PRIMARY KEY,
            brand            TEXT    NOT NULL,
            invoice_number   TEXT    NOT NULL,
            contact_name     TEXT,
            invoice_date     TEXT,
            subtotal_cents   INTEGER NOT NULL,
            tax_cents        INTEGER NOT NULL DEFAULT 0,
            total_cents      INTEGER NOT NULL,
            currency         TEXT    NOT NULL,
            approval_status  TEXT    NOT NULL DEFAULT 'pending',
            -- 'pending' | 'approved' | 'ignored'
            matched_order_id TEXT,
            approved_at      TEXT,
            updated_at       TEXT    NOT NULL
        );
        """
    )

    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS balance_snapshots (
            id            INTEGER PRIMARY KEY AUTOINCREMENT,
            date          TEXT    NOT NULL,
            account_name  TEXT    NOT NULL,
            account_type  TEXT    NOT NULL,  -- 'bank' | 'credit'
            balance_cents INTEGER NOT NULL,
            currency      TEXT    NOT NULL DEFAULT 'GBP',
            brand         TEXT,
            UNIQUE (date, account_name)
        );
        """
    )

    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS cash_events (
            id              TEXT    PRIMARY KEY,
            event_date      TEXT    NOT NULL,
            direction       TEXT    NOT NULL,  -- 'inflow' | 'outflow'
            amount_cents    INTEGER NOT NULL,
            category        TEXT    NOT NULL,
            description     TEXT,
            status          TEXT    NOT NULL DEFAULT 'forecast',
            probability_pct REAL    NOT NULL DEFAULT 100,
            brand           TEXT,
            reference_type  TEXT,
            reference_id    TEXT,
            is_recurring    INTEGER NOT NULL DEFAULT 0,
            notes           TEXT,
            updated_at      TEXT    NOT NULL
        );
        """
    )

    # One-to-one link, enforced at storage level
    conn.execute(
        """
        CREATE UNIQUE INDEX IF NOT EXISTS idx_orders_matched_invoice
            ON orders(matched_invoice_id)
         WHERE matched_invoice_id IS NOT NULL;
        """
    )
    conn.execute(
        """
        CREATE UNIQUE INDEX IF NOT EXISTS idx_invoices_matched_order
            ON invoices(matched_order_id)
         WHERE matched_order_id IS NOT NULL;
        """
    )
    conn.execute("CREATE INDEX IF NOT EXISTS idx_orders_brand ON orders(brand);")
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_cash_events_date ON cash_events(event_date);"
    )

    conn.commit()


def _to_iso_date(value) -> str:
    """Convert a date-like value to ISO 'YYYY-MM-DD' string."""
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return date.fromisoformat(str(value)).isoformat()


def _now_utc_iso() -> str:
    """Return the current UTC datetime as ISO string."""
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


_ORDER_COLUMNS = (
    "id, brand, order_date, order_number, customer_name, b2b_customer_name, "
    "subtotal_cents, total_cents, currency, raw_data, matched_invoice_id, excluded"
)

_INVOICE_COLUMNS = (
    "id, brand, invoice_number, contact_name, invoice_date, subtotal_cents, "
    "tax_cents, total_cents, currency, approval_status, matched_order_id"
)

_EVENT_COLUMNS = (
    "id, event_date, direction, amount_cents, category, description, status, "
    "probability_pct, brand, reference_type, reference_id, is_recurring, notes"
)


def _row_to_order(row: tuple) -> Order:
    """
    Convert an `orders` row into an Order.

    Expected row layout: see `_ORDER_COLUMNS`.
    """
    (
        order_id,
        brand,
        order_date_str,
        order_number,
        customer_name,
        b2b_customer_name,
        subtotal_cents,
        total_cents,
        currency,
        raw_data_json,
        matched_invoice_id,
        excluded_int,
    ) = row

    return Order(
        id=order_id,
        brand=brand,
        order_date=date.fromisoformat(order_date_str),
        subtotal=from_cents(subtotal_cents),
        total=from_cents(total_cents),
        currency=currency,
        customer_name=customer_name,
        b2b_customer_name=b2b_customer_name,
        order_number=order_number,
        raw_data=json.loads(raw_data_json) if raw_data_json else None,
        matched_invoice_id=matched_invoice_id,
        excluded=bool(excluded_int),
    )


def _row_to_invoice(row: tuple) -> Invoice:
    (
        invoice_id,
        brand,
        invoice_number,
        contact_name,
        invoice_date_str,
        subtotal_cents,
        tax_cents,
        total_cents,
        currency,
        approval_status,
        matched_order_id,
    ) = row

    return Invoice(
        id=invoice_id,
        brand=brand,
        invoice_number=invoice_number,
        contact_name=contact_name or "",
        invoice_date=date.fromisoformat(invoice_date_str) if invoice_date_str else None,
        subtotal=from_cents(subtotal_cents),
        tax=from_cents(tax_cents),
        total=from_cents(total_cents),
        currency=currency,
        approval_status=approval_status,
        matched_order_id=matched_order_id,
    )


def _row_to_event(row: tuple) -> CashEvent:
    (
        event_id,
        event_date_str,
        direction,
        amount_cents,
        category,
        description,
        status,
        probability_pct,
        brand,
        reference_type,
        reference_id,
        is_recurring_int,
        notes,
    ) = row

    return CashEvent(
        id=event_id,
        event_date=date.fromisoformat(event_date_str),
        direction=direction,
        amount=from_cents(amount_cents),
        category=category,
        description=description or "",
        status=status,
        probability_pct=float(probability_pct),
        brand=brand,
        reference_type=reference_type,
        reference_id=reference_id,
        is_recurring=bool(is_recurring_int),
        notes=notes,
    )


def _fetch_order(conn: sqlite3.Connection, order_id: str) -> Order | None:
    row = conn.execute(
        f"SELECT {_ORDER_COLUMNS} FROM orders WHERE id = ?;", (order_id,)
    ).fetchone()
    return _row_to_order(row) if row else None


def _fetch_invoice(conn: sqlite3.Connection, invoice_id: str) -> Invoice | None:
    row = conn.execute(
        f"SELECT {_INVOICE_COLUMNS} FROM invoices WHERE id = ?;", (invoice_id,)
    ).fetchone()
    return _row_to_invoice(row) if row else None


def _begin_immediate(cfg: DatabaseConfig) -> sqlite3.Connection:
    """
    Open a connection in manual transaction mode and take the write lock.

    The caller must COMMIT or ROLLBACK, then close the connection.
    """
    conn = _connect(cfg)
    conn.isolation_level = None
    try:
        conn.execute("BEGIN IMMEDIATE;")
    except sqlite3.Error:
        conn.close()
        raise
    return conn


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def init_database(cfg: DatabaseConfig) -> None:
    """
    Initialize the database schema if needed.

    - Creates the SQLite file (and its parent directory) if missing.
    - Creates tables and indexes if they are missing.
    - This function is idempotent: calling it multiple times is safe.

    Raises
    ------
    ValueError
        If cfg.engine is not supported.
    sqlite3.Error
        If schema creation fails.
    """
    cfg.path.parent.mkdir(parents=True, exist_ok=True)

    conn = _connect(cfg)
    try:
        _create_schema_if_needed(conn)
    finally:
        conn.close()


# -- Orders & invoices ------------------------------------------------------


def upsert_orders(cfg: DatabaseConfig, orders: Iterable[Order]) -> int:
    """
    Insert or refresh orders coming from a sync or an import.

    Descriptive fields are overwritten. Reconciliation state
    (matched_invoice_id, exclusion) is never touched by an upsert.

    Returns
    -------
    int
        Number of rows written.
    """
    init_database(cfg)
    now = _now_utc_iso()

    rows = [
        (
            o.id,
            o.brand,
            _to_iso_date(o.order_date),
            o.order_number,
            o.customer_name,
            o.b2b_customer_name,
            to_cents(o.subtotal),
            to_cents(o.total),
            o.currency.upper(),
            json.dumps(dict(o.raw_data)) if o.raw_data else None,
            now,
        )
        for o in orders
    ]

    conn = _connect(cfg)
    try:
        conn.executemany(
            """
            INSERT INTO orders (
                id, brand, order_date, order_number, customer_name,
                b2b_customer_name, subtotal_cents, total_cents, currency,
                raw_data, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                brand = excluded.brand,
                order_date = excluded.order_date,
                order_number = excluded.order_number,
                customer_name = excluded.customer_name,
                b2b_customer_name = excluded.b2b_customer_name,
                subtotal_cents = excluded.subtotal_cents,
                total_cents = excluded.total_cents,
                currency = excluded.currency,
                raw_data = excluded.raw_data,
                updated_at = excluded.updated_at;
            """,
            rows,
        )
        conn.commit()
    finally:
        conn.close()

    logger.info("Upserted %d orders", len(rows))
    return len(rows)


def upsert_invoices(cfg: DatabaseConfig, invoices: Iterable[Invoice]) -> int:
    """
    Insert or refresh invoices synced from the accounting provider.

    Approval status and order links are only set on first insert; later
    upserts keep the local reconciliation state.
    """
    init_database(cfg)
    now = _now_utc_iso()

    rows = []
    for inv in invoices:
        if inv.approval_status not in APPROVAL_STATUSES:
            raise InvalidInput(inv.id, f"unknown approval status {inv.approval_status!r}")
        rows.append(
            (
                inv.id,
                inv.brand,
                inv.invoice_number,
                inv.contact_name,
                _to_iso_date(inv.invoice_date) if inv.invoice_date else None,
                to_cents(inv.subtotal),
                to_cents(inv.tax or 0.0),
                to_cents(inv.total),
                inv.currency.upper(),
                inv.approval_status,
                now,
            )
        )

    conn = _connect(cfg)
    try:
        conn.executemany(
            """
            INSERT INTO invoices (
                id, brand, invoice_number, contact_name, invoice_date,
                subtotal_cents, tax_cents, total_cents, currency,
                approval_status, updated_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                brand = excluded.brand,
                invoice_number = excluded.invoice_number,
                contact_name = excluded.contact_name,
                invoice_date = excluded.invoice_date,
                subtotal_cents = excluded.subtotal_cents,
                tax_cents = excluded.tax_cents,
                total_cents = excluded.total_cents,
                currency = excluded.currency,
                updated_at = excluded.updated_at;
            """,
            rows,
        )
        conn.commit()
    finally:
        conn.close()

    logger.info("Upserted %d invoices", len(rows))
    return len(rows)


def get_order(cfg: DatabaseConfig, order_id: str) -> Order | None:
    """Return a single order by id, or None if it does not exist."""
    init_database(cfg)
    conn = _connect(cfg)
    try:
        return _fetch_order(conn, order_id)
    finally:
        conn.close()


def get_invoice(cfg: DatabaseConfig, invoice_id: str) -> Invoice | None:
    """Return a single invoice by id, or None if it does not exist."""
    init_database(cfg)
    conn = _connect(cfg)
    try:
        return _fetch_invoice(conn, invoice_id)
    finally:
        conn.close()


def load_orders(
    cfg: DatabaseConfig,
    *,
    unreconciled_only: bool = False,
    brand: str | None = None,
) -> list[Order]:
    """
    Load orders sorted by date then id.

    Parameters
    ----------
    unreconciled_only:
        If True, only orders in the "unmatched" state are returned
        (not excluded, not linked, no invoice id in the raw payload).
    brand:
        Restrict to a single brand.
    """
    init_database(cfg)

    clauses: list[str] = []
    params: list[object] = []
    if unreconciled_only:
        clauses.append("excluded = 0 AND matched_invoice_id IS NULL")
    if brand is not None:
        clauses.append("brand = ?")
        params.append(brand)
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

    conn = _connect(cfg)
    try:
        rows = conn.execute(
            f"SELECT {_ORDER_COLUMNS} FROM orders {where} ORDER BY order_date, id;",
            params,
        ).fetchall()
    finally:
        conn.close()

    orders = [_row_to_order(r) for r in rows]
    if unreconciled_only:
        orders = [o for o in orders if o.state == "unmatched"]
    return orders


def load_invoices(
    cfg: DatabaseConfig,
    *,
    open_only: bool = False,
    brand: str | None = None,
) -> list[Invoice]:
    """
    Load invoices sorted by date then id.

    With `open_only=True`, only pending invoices not linked to any order are
    returned, i.e. the candidates for matching.
    """
    init_database(cfg)

    clauses: list[str] = []
    params: list[object] = []
    if open_only:
        clauses.append(
            "approval_status = 'pending' AND matched_order_id IS NULL "
            "AND id NOT IN (SELECT matched_invoice_id FROM orders "
            "WHERE matched_invoice_id IS NOT NULL)"
        )
    if brand is not None:
        clauses.append("brand = ?")
        params.append(brand)
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

    conn = _connect(cfg)
    try:
        rows = conn.execute(
            f"SELECT {_INVOICE_COLUMNS} FROM invoices {where} "
            "ORDER BY invoice_date IS NULL, invoice_date, id;",
            params,
        ).fetchall()
    finally:
        conn.close()

    return [_row_to_invoice(r) for r in rows]


def link_order_invoice(
    cfg: DatabaseConfig,
    order_id: str,
    invoice_id: str,
    *,
    allow_cross_brand: bool = False,
) -> tuple[Order, Invoice]:
    """
    Link an order to an invoice in a single atomic check-and-set.

    Both back-references are written in the same transaction, which holds
    SQLite's write lock from the first read. Of two concurrent calls
    targeting the same order or invoice, exactly one succeeds; the other
    raises AlreadyLinked. On success, the invoice is marked approved.

    Returns
    -------
    tuple[Order, Invoice]
        The linked records as stored.

    Raises
    ------
    NotFound
        If the order or the invoice does not exist.
    AlreadyLinked
        If either side already has a counterpart.
    InvalidInput
        If brands differ (and `allow_cross_brand` is False), the order is
        excluded or the invoice is ignored.
    """
    init_database(cfg)
    now = _now_utc_iso()

    conn = _begin_immediate(cfg)
    try:
        try:
            order = _fetch_order(conn, order_id)
            if order is None:
                raise NotFound("order", order_id)
            invoice = _fetch_invoice(conn, invoice_id)
            if invoice is None:
                raise NotFound("invoice", invoice_id)

            if order.state == "matched":
                raise AlreadyLinked(
                    f"Order {order_id!r} is already linked to an invoice.",
                    order_id=order_id,
                    invoice_id=order.matched_invoice_id,
                )
            holder = conn.execute(
                "SELECT id FROM orders WHERE matched_invoice_id = ?;", (invoice_id,)
            ).fetchone()
            counterpart = invoice.matched_order_id or (holder[0] if holder else None)
            if counterpart is not None:
                raise AlreadyLinked(
                    f"Invoice {invoice_id!r} is already linked to order {counterpart!r}.",
                    order_id=counterpart,
                    invoice_id=invoice_id,
                )
            if order.excluded:
                raise InvalidInput(order_id, "order is excluded from reporting")
            if invoice.approval_status == "ignored":
                raise InvalidInput(invoice_id, "invoice is ignored; reopen it first")
            if order.brand != invoice.brand and not allow_cross_brand:
                raise InvalidInput(
                    order_id,
                    f"brand mismatch (order {order.brand!r}, invoice {invoice.brand!r})",
                )

            conn.execute(
                """
                UPDATE orders
                   SET matched_invoice_id = ?, updated_at = ?
                 WHERE id = ? AND matched_invoice_id IS NULL;
                """,
                (invoice_id, now, order_id),
            )
            conn.execute(
                """
                UPDATE invoices
                   SET matched_order_id = ?,
                       approval_status = 'approved',
                       approved_at = ?,
                       updated_at = ?
                 WHERE id = ? AND matched_order_id IS NULL;
                """,
                (order_id, now, now, invoice_id),
            )
            linked_order = _fetch_order(conn, order_id)
            linked_invoice = _fetch_invoice(conn, invoice_id)
            conn.execute("COMMIT;")
        except sqlite3.IntegrityError as exc:
            conn.execute("ROLLBACK;")
            raise AlreadyLinked(
                f"Order {order_id!r} or invoice {invoice_id!r} is already linked.",
                order_id=order_id,
                invoice_id=invoice_id,
            ) from exc
        except BaseException:
            conn.execute("ROLLBACK;")
            raise
    finally:
        conn.close()

    logger.info("Linked order %s to invoice %s", order_id, invoice_id)
    return linked_order, linked_invoice


def unlink_order(cfg: DatabaseConfig, order_id: str) -> Order:
    """
    Remove the link between an order and its invoice.

    The invoice goes back to "pending" so that it can be matched again. An
    accounting invoice id recorded in the order's raw payload is dropped as
    well.

    Raises
    ------
    NotFound
        If the order does not exist.
    InvalidInput
        If the order is not linked.
    """
    init_database(cfg)
    now = _now_utc_iso()

    conn = _begin_immediate(cfg)
    try:
        try:
            order = _fetch_order(conn, order_id)
            if order is None:
                raise NotFound("order", order_id)
            if order.state != "matched":
                raise InvalidInput(order_id, "order is not linked to an invoice")

            raw = dict(order.raw_data or {})
            raw.pop(RAW_INVOICE_KEY, None)
            conn.execute(
                """
                UPDATE orders
                   SET matched_invoice_id = NULL, raw_data = ?, updated_at = ?
                 WHERE id = ?;
                """,
                (json.dumps(raw) if raw else None, now, order_id),
            )
            conn.execute(
                """
                UPDATE invoices
                   SET matched_order_id = NULL,
                       approval_status = 'pending',
                       approved_at = NULL,
                       updated_at = ?
                 WHERE matched_order_id = ? OR id = ?;
                """,
                (now, order_id, order.matched_invoice_id),
            )
            updated = _fetch_order(conn, order_id)
            conn.execute("COMMIT;")
        except BaseException:
            conn.execute("ROLLBACK;")
            raise
    finally:
        conn.close()

    logger.info("Unlinked order %s", order_id)
    return updated


def _set_order_excluded(
    cfg: DatabaseConfig,
    order_id: str,
    excluded: bool,
    reason: str | None,
) -> Order:
    init_database(cfg)
    now = _now_utc_iso()

    conn = _connect(cfg)
    try:
        order = _fetch_order(conn, order_id)
        if order is None:
            raise NotFound("order", order_id)
        if excluded and order.state == "matched":
            raise InvalidInput(order_id, "order is linked; unlink it before excluding")

        conn.execute(
            """
            UPDATE orders
               SET excluded = ?, excluded_at = ?, excluded_reason = ?, updated_at = ?
             WHERE id = ?;
            """,
            (
                1 if excluded else 0,
                now if excluded else None,
                reason if excluded else None,
                now,
                order_id,
            ),
        )
        conn.commit()
        updated = _fetch_order(conn, order_id)
    finally:
        conn.close()

    return updated


def exclude_order(cfg: DatabaseConfig, order_id: str, reason: str | None = None) -> Order:
    """Soft-exclude an order from reconciliation and reporting."""
    order = _set_order_excluded(cfg, order_id, True, reason)
    logger.info("Excluded order %s", order_id)
    return order


def restore_order(cfg: DatabaseConfig, order_id: str) -> Order:
    """Bring an excluded order back into reconciliation."""
    order = _set_order_excluded(cfg, order_id, False, None)
    logger.info("Restored order %s", order_id)
    return order


def set_invoice_status(cfg: DatabaseConfig, invoice_id: str, status: str) -> Invoice:
    """
    Apply a one-way approval transition (pending -> approved | ignored).

    Raises
    ------
    NotFound
        If the invoice does not exist.
    InvalidTransition
        If the invoice is not pending or the target status is not
        "approved" / "ignored". Use `reopen_invoice` to go back to pending.
    """
    if status not in ("approved", "ignored"):
        raise InvalidTransition(
            f"Cannot set invoice {invoice_id!r} to {status!r}; "
            "use reopen_invoice to move it back to pending."
        )

    init_database(cfg)
    now = _now_utc_iso()

    conn = _begin_immediate(cfg)
    try:
        try:
            invoice = _fetch_invoice(conn, invoice_id)
            if invoice is None:
                raise NotFound("invoice", invoice_id)
            if invoice.approval_status != "pending":
                raise InvalidTransition(
                    f"Invoice {invoice_id!r} is {invoice.approval_status}; "
                    f"only pending invoices can become {status}."
                )
            conn.execute(
                """
                UPDATE invoices
                   SET approval_status = ?, approved_at = ?, updated_at = ?
                 WHERE id = ?;
                """,
                (status, now if status == "approved" else None, now, invoice_id),
            )
            updated = _fetch_invoice(conn, invoice_id)
            conn.execute("COMMIT;")
        except BaseException:
            conn.execute("ROLLBACK;")
            raise
    finally:
        conn.close()

    logger.info("Invoice %s set to %s", invoice_id, status)
    return updated


def reopen_invoice(cfg: DatabaseConfig, invoice_id: str) -> Invoice:
    """Move an invoice back to pending and clear any order link on both sides."""
    init_database(cfg)
    now = _now_utc_iso()

    conn = _begin_immediate(cfg)
    try:
        try:
            invoice = _fetch_invoice(conn, invoice_id)
            if invoice is None:
                raise NotFound("invoice", invoice_id)
            conn.execute(
                """
                UPDATE orders
                   SET matched_invoice_id = NULL, updated_at = ?
                 WHERE matched_invoice_id = ?;
                """,
                (now, invoice_id),
            )
            conn.execute(
                """
                UPDATE invoices
                   SET approval_status = 'pending',
                       matched_order_id = NULL,
                       approved_at = NULL,
                       updated_at = ?
                 WHERE id = ?;
                """,
                (now, invoice_id),
            )
            updated = _fetch_invoice(conn, invoice_id)
            conn.execute("COMMIT;")
        except BaseException:
            conn.execute("ROLLBACK;")
            raise
    finally:
        conn.close()

    logger.info("Reopened invoice %s", invoice_id)
    return updated


# -- Balances ---------------------------------------------------------------


def insert_balance_snapshots(cfg: DatabaseConfig, df: pd.DataFrame) -> int:
    """
    Store account balance snapshots, replacing any existing row for the
    same (date, account_name).

    The DataFrame must contain `date`, `account_name`, `account_type` and
    `balance`; `currency` and `brand` are optional.
    """
    required = {"date", "account_name", "account_type", "balance"}
    missing = required.difference(df.columns)
    if missing:
        cols = ", ".join(sorted(missing))
        raise ValueError(f"DataFrame is missing required column(s): {cols}")

    init_database(cfg)

    rows: list[tuple[Any, ...]] = []
    for rec in df.to_dict(orient="records"):
        brand = rec.get("brand")
        currency = rec.get("currency")
        rows.append(
            (
                _to_iso_date(rec["date"]),
                str(rec["account_name"]),
                normalize_account_type(rec["account_type"]),
                to_cents(float(rec["balance"])),
                str(currency).upper() if isinstance(currency, str) and currency else "GBP",
                brand if isinstance(brand, str) and brand else None,
            )
        )

    conn = _connect(cfg)
    try:
        conn.executemany(
            """
            INSERT INTO balance_snapshots (
                date, account_name, account_type, balance_cents, currency, brand
            )
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(date, account_name) DO UPDATE SET
                account_type = excluded.account_type,
                balance_cents = excluded.balance_cents,
                currency = excluded.currency,
                brand = excluded.brand;
            """,
            rows,
        )
        conn.commit()
    finally:
        conn.close()

    logger.info("Stored %d balance snapshots", len(rows))
    return len(rows)


def load_balance_snapshots(
    cfg: DatabaseConfig,
    *,
    start: date | None = None,
    end: date | None = None,
    brand: str | None = None,
) -> pd.DataFrame:
    """
    Load balance snapshots as a DataFrame.

    Returns
    -------
    pandas.DataFrame
        Columns: date (datetime.date), account_name, account_type, balance,
        currency, brand. Sorted by date then account name.
    """
    init_database(cfg)

    clauses: list[str] = []
    params: list[object] = []
    if start is not None:
        clauses.append("date >= ?")
        params.append(start.isoformat())
    if end is not None:
        clauses.append("date <= ?")
        params.append(end.isoformat())
    if brand is not None:
        clauses.append("brand = ?")
        params.append(brand)
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

    conn = _connect(cfg)
    try:
        df = pd.read_sql_query(
            f"""
            SELECT date, account_name, account_type, balance_cents, currency, brand
              FROM balance_snapshots
              {where}
             ORDER BY date, account_name;
            """,
            conn,
            params=params,
        )
    finally:
        conn.close()

    columns = ["date", "account_name", "account_type", "balance", "currency", "brand"]
    if df.empty:
        return pd.DataFrame(columns=columns)

    df["date"] = pd.to_datetime(df["date"]).dt.date
    df["balance"] = df["balance_cents"].astype(float) / 100.0
    return df[columns]


def load_latest_accounts(cfg: DatabaseConfig, brand: str | None = None) -> list[CashAccount]:
    """Return the most recent balance of each account."""
    df = load_balance_snapshots(cfg, brand=brand)
    if df.empty:
        return []

    latest = df.sort_values(["date", "account_name"]).groupby("account_name").tail(1)
    return [
        CashAccount(
            name=rec["account_name"],
            account_type=rec["account_type"],
            balance=float(rec["balance"]),
            currency=rec["currency"],
            brand=rec["brand"] if isinstance(rec["brand"], str) else None,
        )
        for rec in latest.sort_values("account_name").to_dict(orient="records")
    ]


# -- Cash events ------------------------------------------------------------


def insert_cash_events(cfg: DatabaseConfig, events: Iterable[CashEvent]) -> int:
    """Insert or replace cash events by id."""
    init_database(cfg)
    now = _now_utc_iso()

    rows = [
        (
            e.id,
            _to_iso_date(e.event_date),
            e.direction,
            to_cents(abs(e.amount)),
            e.category,
            e.description,
            e.status,
            float(e.probability_pct),
            e.brand,
            e.reference_type,
            e.reference_id,
            1 if e.is_recurring else 0,
            e.notes,
            now,
        )
        for e in events
    ]

    conn = _connect(cfg)
    try:
        conn.executemany(
            f"""
            INSERT OR REPLACE INTO cash_events ({_EVENT_COLUMNS}, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?);
            """,
            rows,
        )
        conn.commit()
    finally:
        conn.close()

    logger.info("Stored %d cash events", len(rows))
    return len(rows)


def load_cash_events(
    cfg: DatabaseConfig,
    *,
    start: date | None = None,
    end: date | None = None,
    brand: str | None = None,
    statuses: Iterable[str] | None = None,
) -> list[CashEvent]:
    """
    Load cash events sorted by date then id.

    When `brand` is given, events shared across brands (no brand) are
    included as well.
    """
    init_database(cfg)

    clauses: list[str] = []
    params: list[object] = []
    if start is not None:
        clauses.append("event_date >= ?")
        params.append(start.isoformat())
    if end is not None:
        clauses.append("event_date <= ?")
        params.append(end.isoformat())
    if brand is not None:
        clauses.append("(brand = ? OR brand IS NULL)")
        params.append(brand)
    if statuses is not None:
        wanted = list(statuses)
        if not wanted:
            return []
        clauses.append(f"status IN ({', '.join('?' for _ in wanted)})")
        params.extend(wanted)
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

    conn = _connect(cfg)
    try:
        rows = conn.execute(
            f"SELECT {_EVENT_COLUMNS} FROM cash_events {where} ORDER BY event_date, id;",
            params,
        ).fetchall()
    finally:
        conn.close()

    return [_row_to_event(r) for r in rows]
