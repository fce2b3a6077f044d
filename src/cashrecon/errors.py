# CashRecon - Reconciliation & Cash-Flow Forecasting for multi-brand e-commerce
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Exceptions raised by the reconciliation and forecasting engine.

All errors are local and recoverable by the caller. None of them should be
fatal to the hosting process.
"""

from typing import Optional


class ReconciliationError(Exception):
    """Base class for all CashRecon engine errors."""


class AlreadyLinked(ReconciliationError):
    """
    An order or an invoice already has a counterpart link.

    The caller should re-fetch the current state and retry with an
    unlinked target.
    """

    def __init__(
        self,
        message: str,
        *,
        order_id: Optional[str] = None,
        invoice_id: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.order_id = order_id
        self.invoice_id = invoice_id


class NotFound(ReconciliationError, LookupError):
    """A referenced order or invoice id does not exist."""

    def __init__(self, kind: str, record_id: str) -> None:
        super().__init__(f"{kind.capitalize()} {record_id!r} not found.")
        self.kind = kind
        self.record_id = record_id


class InvalidInput(ReconciliationError, ValueError):
    """A record is malformed (negative amounts, missing monetary fields...)."""

    def __init__(self, record_id: Optional[str], reason: str) -> None:
        label = f"Record {record_id!r}" if record_id is not None else "Record"
        super().__init__(f"{label} is invalid: {reason}")
        self.record_id = record_id
        self.reason = reason


class InvalidTransition(ReconciliationError, ValueError):
    """An invoice approval status change is not allowed."""


class MatchingCancelled(ReconciliationError):
    """A matching run was aborted through its cancellation signal."""
