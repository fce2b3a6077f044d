# CashRecon - Reconciliation & Cash-Flow Forecasting for multi-brand e-commerce
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Data records consumed and produced by the CashRecon engine.

The engine works on plain, immutable records supplied by a persistence or
sync layer (see db.py and io.py). Records are frozen dataclasses: mutating
operations such as linking an order to an invoice return new instances
built with `dataclasses.replace`.

Required fields are validated at the boundary by the `validate_*`
functions, which raise `InvalidInput`. Batch operations (matching) catch
these errors per record, so that one bad record never aborts the whole run.

Records
-------
- Order           : a B2B sale to reconcile.
- Invoice         : an accounting invoice synced from the provider.
- MatchSuggestion : derived (order, invoice) pair with confidence & reasons.
- CashAccount     : a bank or credit account balance.
- CashEvent       : a scheduled or historical cash movement.
- BalanceSnapshot : net cash position on a given date.
"""

import math
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date
from typing import Any, Literal, Optional

from .errors import InvalidInput

ReconciliationState = Literal["unmatched", "matched", "excluded"]
ApprovalStatus = Literal["pending", "approved", "ignored"]
AccountType = Literal["bank", "credit"]
Direction = Literal["inflow", "outflow"]
EventStatus = Literal["forecast", "confirmed", "paid", "cancelled"]

APPROVAL_STATUSES: tuple[str, ...] = ("pending", "approved", "ignored")
ACCOUNT_TYPES: tuple[str, ...] = ("bank", "credit")
DIRECTIONS: tuple[str, ...] = ("inflow", "outflow")
EVENT_STATUSES: tuple[str, ...] = ("forecast", "confirmed", "paid", "cancelled")

INFLOW_CATEGORIES: tuple[str, ...] = (
    "platform_payout",
    "b2b_receivable",
    "other_inflow",
)
OUTFLOW_CATEGORIES: tuple[str, ...] = (
    "supplier_payment",
    "opex_payment",
    "ad_platform_invoice",
    "vat_payment",
    "other_outflow",
)

# Raw-payload key written by the accounting sync once an order is reconciled.
RAW_INVOICE_KEY = "xero_invoice_id"


@dataclass(frozen=True)
class Order:
    """A sale record awaiting (or past) reconciliation with an invoice."""

    id: str
    brand: str
    order_date: date
    subtotal: float
    total: float
    currency: str
    customer_name: Optional[str] = None
    b2b_customer_name: Optional[str] = None
    order_number: Optional[str] = None
    raw_data: Optional[Mapping[str, Any]] = None
    matched_invoice_id: Optional[str] = None
    excluded: bool = False

    @property
    def state(self) -> ReconciliationState:
        if self.excluded:
            return "excluded"
        if self.matched_invoice_id or (self.raw_data or {}).get(RAW_INVOICE_KEY):
            return "matched"
        return "unmatched"


@dataclass(frozen=True)
class Invoice:
    """An accounting invoice synced from the external provider."""

    id: str
    brand: str
    invoice_number: str
    contact_name: str
    invoice_date: Optional[date]
    subtotal: float
    tax: float
    total: float
    currency: str
    approval_status: ApprovalStatus = "pending"
    matched_order_id: Optional[str] = None

    @property
    def is_open(self) -> bool:
        """True if the invoice can still be proposed as a match."""
        return self.matched_order_id is None and self.approval_status == "pending"


@dataclass(frozen=True)
class MatchSuggestion:
    """
    A scored (order, invoice) pair.

    Attributes
    ----------
    order, invoice:
        The candidate pair.
    confidence:
        Heuristic score in [0, 100].
    reasons:
        Human-readable justification, one entry per satisfied signal.
    """

    order: Order
    invoice: Invoice
    confidence: int
    reasons: tuple[str, ...]


@dataclass(frozen=True)
class CashAccount:
    """A brand-scoped bank or credit account balance."""

    name: str
    account_type: AccountType
    balance: float
    currency: str = "GBP"
    brand: Optional[str] = None


@dataclass(frozen=True)
class CashEvent:
    """
    A scheduled or historical cash movement.

    `amount` is always a non-negative magnitude; the sign comes from
    `direction`.
    """

    id: str
    event_date: date
    direction: Direction
    amount: float
    category: str
    description: str = ""
    status: EventStatus = "forecast"
    probability_pct: float = 100.0
    brand: Optional[str] = None
    reference_type: Optional[str] = None
    reference_id: Optional[str] = None
    is_recurring: bool = False
    notes: Optional[str] = None

    @property
    def signed_amount(self) -> float:
        return self.amount if self.direction == "inflow" else -self.amount

    @property
    def is_active(self) -> bool:
        """Forecast and confirmed events still affect future cash."""
        return self.status in ("forecast", "confirmed")


@dataclass(frozen=True)
class BalanceSnapshot:
    """Net cash position on a given date."""

    date: date
    balance: float


# ---------------------------------------------------------------------------
# Boundary validation
# ---------------------------------------------------------------------------


def _is_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return not math.isnan(value) and not math.isinf(value)


def _require_amount(record_id: str, name: str, value: Any) -> None:
    if value is None:
        raise InvalidInput(record_id, f"missing monetary field '{name}'")
    if not _is_number(value):
        raise InvalidInput(record_id, f"'{name}' is not a finite number: {value!r}")
    if value < 0:
        raise InvalidInput(record_id, f"'{name}' is negative ({value})")


def validate_order(order: Order) -> Order:
    """
    Check that an order carries the fields required for scoring.

    Raises
    ------
    InvalidInput
        If the id, currency or order date is missing, or if subtotal/total
        are missing, non-numeric or negative.
    """
    if not order.id:
        raise InvalidInput(None, "order without id")
    if not isinstance(order.order_date, date):
        raise InvalidInput(order.id, "missing order date")
    if not order.currency:
        raise InvalidInput(order.id, "missing currency")
    _require_amount(order.id, "subtotal", order.subtotal)
    _require_amount(order.id, "total", order.total)
    return order


def validate_invoice(invoice: Invoice) -> Invoice:
    """Check that an invoice carries the fields required for scoring."""
    if not invoice.id:
        raise InvalidInput(None, "invoice without id")
    if not invoice.currency:
        raise InvalidInput(invoice.id, "missing currency")
    if invoice.approval_status not in APPROVAL_STATUSES:
        raise InvalidInput(
            invoice.id, f"unknown approval status {invoice.approval_status!r}"
        )
    if invoice.invoice_date is not None and not isinstance(invoice.invoice_date, date):
        raise InvalidInput(invoice.id, "invoice date is not a date")
    _require_amount(invoice.id, "subtotal", invoice.subtotal)
    _require_amount(invoice.id, "total", invoice.total)
    if invoice.tax is not None and not _is_number(invoice.tax):
        raise InvalidInput(invoice.id, f"'tax' is not a finite number: {invoice.tax!r}")
    return invoice


def validate_cash_account(account: CashAccount) -> CashAccount:
    if account.account_type not in ACCOUNT_TYPES:
        raise InvalidInput(
            account.name, f"unknown account type {account.account_type!r}"
        )
    if not _is_number(account.balance):
        raise InvalidInput(account.name, f"balance is not a number: {account.balance!r}")
    return account


def validate_cash_event(event: CashEvent) -> CashEvent:
    if event.direction not in DIRECTIONS:
        raise InvalidInput(event.id, f"unknown direction {event.direction!r}")
    if event.status not in EVENT_STATUSES:
        raise InvalidInput(event.id, f"unknown status {event.status!r}")
    if not isinstance(event.event_date, date):
        raise InvalidInput(event.id, "missing event date")
    _require_amount(event.id, "amount", event.amount)
    if not 0 <= event.probability_pct <= 100:
        raise InvalidInput(
            event.id, f"probability_pct out of range ({event.probability_pct})"
        )
    return event


def normalize_account_type(raw: str) -> AccountType:
    """
    Map provider account types to the engine's vocabulary.

    The accounting provider reports BANK and CREDITCARD accounts.
    """
    value = str(raw).strip().lower().replace("_", "").replace(" ", "")
    if value == "bank":
        return "bank"
    if value in ("credit", "creditcard", "card"):
        return "credit"
    raise ValueError(f"Unknown account type: {raw!r}")


# ---------------------------------------------------------------------------
# Customer name extraction
# ---------------------------------------------------------------------------

_RAW_NAME_PATHS: tuple[tuple[str, ...], ...] = (
    ("company",),
    ("customer", "company"),
    ("billing_address", "company"),
    ("shipping_address", "company"),
)


def _dig(data: Mapping[str, Any], path: tuple[str, ...]) -> Any:
    current: Any = data
    for key in path:
        if not isinstance(current, Mapping):
            return None
        current = current.get(key)
    return current


def customer_names(order: Order) -> list[str]:
    """
    Return candidate customer names for an order, best first.

    Explicit fields come first (B2B customer name, then customer name),
    followed by company names found in the raw sync payload. Blank values
    and duplicates (case-insensitive) are dropped.
    """
    candidates: list[Any] = [order.b2b_customer_name, order.customer_name]
    if order.raw_data:
        candidates.extend(_dig(order.raw_data, path) for path in _RAW_NAME_PATHS)

    names: list[str] = []
    seen: set[str] = set()
    for value in candidates:
        if not isinstance(value, str) or not value.strip():
            continue
        key = value.strip().casefold()
        if key in seen:
            continue
        seen.add(key)
        names.append(value.strip())
    return names
