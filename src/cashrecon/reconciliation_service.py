# CashRecon - Reconciliation & Cash-Flow Forecasting for multi-brand e-commerce
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.


"""
High-level services for order / invoice reconciliation.

This module sits between:
- the low-level database helpers in `db.py`, and
- user-facing layers such as the CLI.

Responsibilities
----------------
1) Suggestions
   - Load unreconciled orders and open invoices from the database.
   - Run the matching engine with the configured settings.

2) Confirmation & undo
   - Confirm a suggestion through the atomic database link.
   - Unlink an order so that it can be matched again.
   - Exclude / restore orders and ignore / reopen invoices.

3) Overview
   - Count reconciled, unreconciled and excluded orders, and open invoices.

Design notes
------------
- The matching engine itself is pure (see matching.py); this module only
  orchestrates loading, scoring and persistence.
- Confirmation always goes through `db.link_order_invoice`, never through
  the in-memory `matching.link_match`, so that concurrent confirmations
  are serialized by the database.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from .config import AppConfig
from .db import DatabaseConfig
from .db import exclude_order as _db_exclude_order
from .db import link_order_invoice as _db_link_order_invoice
from .db import load_invoices as _db_load_invoices
from .db import load_orders as _db_load_orders
from .db import reopen_invoice as _db_reopen_invoice
from .db import restore_order as _db_restore_order
from .db import set_invoice_status as _db_set_invoice_status
from .db import unlink_order as _db_unlink_order
from .matching import CancelSignal, MatchRun, suggest_matches
from .models import Invoice, Order

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReconciliationSummary:
    """
    Reconciliation overview for dashboards.

    Attributes
    ----------
    total_orders:
        All orders known to the database (optionally for one brand).
    reconciled_orders:
        Orders linked to an invoice.
    unreconciled_orders:
        Orders still waiting for an invoice.
    excluded_orders:
        Orders soft-excluded from reconciliation.
    open_invoices:
        Pending invoices not linked to any order.
    reconciled_pct:
        reconciled / (total - excluded) * 100, 0.0 when nothing to reconcile.
    """

    total_orders: int
    reconciled_orders: int
    unreconciled_orders: int
    excluded_orders: int
    open_invoices: int
    reconciled_pct: float


def _get_db_config(app_config: AppConfig) -> DatabaseConfig:
    """Convenience helper to access the database configuration from an AppConfig."""
    return app_config.database


def suggest_matches_from_db(
    app_config: AppConfig,
    *,
    brand: Optional[str] = None,
    min_confidence: Optional[int] = None,
    cancel: Optional[CancelSignal] = None,
) -> MatchRun:
    """
    Run the matching engine over the records stored in the database.

    Parameters
    ----------
    app_config:
        Global application configuration (database and matching settings).
    brand:
        Restrict both orders and invoices to a single brand.
    min_confidence:
        Override of `matching.min_confidence` for this run.
    cancel:
        Optional cancellation signal forwarded to the engine.
    """
    db_cfg = _get_db_config(app_config)
    orders = _db_load_orders(db_cfg, unreconciled_only=True, brand=brand)
    invoices = _db_load_invoices(db_cfg, open_only=True, brand=brand)

    logger.info(
        "Running matching on %d orders and %d invoices%s",
        len(orders),
        len(invoices),
        f" for brand {brand}" if brand else "",
    )
    return suggest_matches(
        orders,
        invoices,
        min_confidence,
        settings=app_config.matching,
        cancel=cancel,
    )


def confirm_match(
    app_config: AppConfig,
    order_id: str,
    invoice_id: str,
) -> tuple[Order, Invoice]:
    """
    Confirm a suggestion: link the order and the invoice atomically.

    Cross-brand links are only allowed when the matching settings allow
    cross-brand suggestions.

    Raises
    ------
    NotFound, AlreadyLinked, InvalidInput
        See `db.link_order_invoice`.
    """
    return _db_link_order_invoice(
        _get_db_config(app_config),
        order_id,
        invoice_id,
        allow_cross_brand=not app_config.matching.same_brand_only,
    )


def unlink_match(app_config: AppConfig, order_id: str) -> Order:
    """Undo a confirmed match; the invoice goes back to pending."""
    return _db_unlink_order(_get_db_config(app_config), order_id)


def exclude_order(app_config: AppConfig, order_id: str, reason: Optional[str] = None) -> Order:
    return _db_exclude_order(_get_db_config(app_config), order_id, reason)


def restore_order(app_config: AppConfig, order_id: str) -> Order:
    return _db_restore_order(_get_db_config(app_config), order_id)


def ignore_invoice(app_config: AppConfig, invoice_id: str) -> Invoice:
    """Mark a pending invoice as ignored (never proposed again until reopened)."""
    return _db_set_invoice_status(_get_db_config(app_config), invoice_id, "ignored")


def reopen_invoice(app_config: AppConfig, invoice_id: str) -> Invoice:
    return _db_reopen_invoice(_get_db_config(app_config), invoice_id)


def reconciliation_summary(
    app_config: AppConfig,
    *,
    brand: Optional[str] = None,
) -> ReconciliationSummary:
    """Count reconciled, unreconciled and excluded orders and open invoices."""
    db_cfg = _get_db_config(app_config)
    orders = _db_load_orders(db_cfg, brand=brand)
    open_invoices = _db_load_invoices(db_cfg, open_only=True, brand=brand)

    states = [o.state for o in orders]
    reconciled = states.count("matched")
    excluded = states.count("excluded")
    unreconciled = states.count("unmatched")
    eligible = len(orders) - excluded

    return ReconciliationSummary(
        total_orders=len(orders),
        reconciled_orders=reconciled,
        unreconciled_orders=unreconciled,
        excluded_orders=excluded,
        open_invoices=len(open_invoices),
        reconciled_pct=round(reconciled / eligible * 100, 1) if eligible else 0.0,
    )
