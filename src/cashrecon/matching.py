# CashRecon - Reconciliation & Cash-Flow Forecasting for multi-brand e-commerce
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Order / invoice matching engine for CashRecon.

Given the unreconciled B2B orders and the open accounting invoices, the
engine proposes which invoice most likely corresponds to each order, with
a confidence score (0-100) and the list of reasons behind it.

Scoring
-------
Each (order, invoice) pair is scored by summing independent signals:

| signal   | rule                                             | points |
|----------|--------------------------------------------------|--------|
| amount   | subtotals equal once rounded to cents            | 60     |
|          | difference within the rounding tolerance (£0.01) | 55     |
|          | difference within 1 %                            | 50     |
|          | difference within `amount_tolerance_pct` (5 %)   | 30     |
| date     | invoice dated the same day as the order          | 25     |
|          | 1-3 / 4-7 / 8-14 days apart                      | 20/15/10 |
|          | up to `match_window_days` (30) apart             | 5      |
| name     | exact / partial / shared token (similarity.py)   | 15/10/5 |
| currency | mismatch disqualifies the pair                   | -      |
| brand    | cross-brand pairs are skipped (`same_brand_only`)| -      |
|          | or penalised when cross-brand matching is on     | -40    |

Selection
---------
All pairs reaching `min_confidence` are ranked by descending confidence,
then earliest invoice date, then invoice id, then order id. A greedy pass
keeps the first pair seen for each order and, by default, never proposes
the same invoice twice. This is per-order greedy selection, not a globally
optimal assignment: it favours explainable results over maximum total
confidence.

Linking
-------
`link_match` confirms a suggestion over in-memory collections and returns
the updated records. The durable, concurrency-safe counterpart is
`db.link_order_invoice`, which performs the same checks inside a single
database transaction.
"""

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field, replace
from datetime import date
from typing import Literal, Optional, Protocol

from .errors import AlreadyLinked, InvalidInput, MatchingCancelled, NotFound
from .models import (
    Invoice,
    MatchSuggestion,
    Order,
    customer_names,
    validate_invoice,
    validate_order,
)
from .money import format_amount, pct_difference, to_cents
from .periods import days_between
from .similarity import DefaultNameScorer, NameSimilarity, best_name_match

logger = logging.getLogger(__name__)

HIGH_CONFIDENCE = 80
MEDIUM_CONFIDENCE = 50
CROSS_BRAND_PENALTY = 40

# (max gap in days, points), checked in order; the match window caps them.
DATE_TIERS: tuple[tuple[int, int], ...] = ((0, 25), (3, 20), (7, 15), (14, 10))
DATE_WINDOW_POINTS = 5


class CancelSignal(Protocol):
    def is_set(self) -> bool: ...


@dataclass(frozen=True)
class MatchSettings:
    """
    Tunable parameters of the matching engine.

    Attributes
    ----------
    min_confidence:
        Floor (0-100) below which a pair is not returned.
    match_window_days:
        Maximum gap between order and invoice dates that still scores.
    amount_tolerance_pct:
        Beyond this percentage difference the amount signal scores zero.
    rounding_tolerance:
        Ledger rounding difference treated as a near-exact amount match.
    same_brand_only:
        If True, cross-brand pairs are never evaluated; otherwise they are
        evaluated with a heavy penalty.
    exclusive_invoices:
        If True, an invoice is proposed for at most one order per run.
    """

    min_confidence: int = 40
    match_window_days: int = 30
    amount_tolerance_pct: float = 5.0
    rounding_tolerance: float = 0.01
    same_brand_only: bool = True
    exclusive_invoices: bool = True

    def __post_init__(self) -> None:
        if not 0 <= self.min_confidence <= 100:
            raise ValueError("min_confidence must be between 0 and 100.")
        if self.match_window_days < 0:
            raise ValueError("match_window_days cannot be negative.")
        if self.amount_tolerance_pct < 0:
            raise ValueError("amount_tolerance_pct cannot be negative.")
        if self.rounding_tolerance < 0:
            raise ValueError("rounding_tolerance cannot be negative.")


@dataclass(frozen=True)
class SignalScore:
    """Points awarded by one signal, with its reason (None if no points)."""

    points: int
    reason: Optional[str] = None


NO_SIGNAL = SignalScore(points=0)


@dataclass(frozen=True)
class SkippedRecord:
    """A record left out of scoring, with the reason why."""

    kind: Literal["order", "invoice"]
    record_id: Optional[str]
    reason: str


@dataclass(frozen=True)
class MatchRun:
    """
    Result of a matching run.

    Attributes
    ----------
    suggestions:
        Best suggestion per order, in ranking order.
    all_suggestions:
        Every pair that reached the confidence floor, in ranking order.
    unmatched_orders:
        Eligible orders with no suggestion, for manual review.
    unmatched_invoices:
        Eligible invoices not used by any suggestion.
    skipped:
        Invalid or zero-amount records excluded from scoring.
    """

    suggestions: list[MatchSuggestion]
    all_suggestions: list[MatchSuggestion] = field(default_factory=list)
    unmatched_orders: list[Order] = field(default_factory=list)
    unmatched_invoices: list[Invoice] = field(default_factory=list)
    skipped: list[SkippedRecord] = field(default_factory=list)

    def summary(self) -> dict[str, int]:
        """Counts for dashboards, mirroring the reconciliation overview."""
        used_invoices = {s.invoice.id for s in self.suggestions}
        confidences = [s.confidence for s in self.all_suggestions]
        return {
            "unreconciled_orders": len(self.suggestions) + len(self.unmatched_orders),
            "available_invoices": len(used_invoices) + len(self.unmatched_invoices),
            "suggestions": len(self.suggestions),
            "all_suggestions": len(self.all_suggestions),
            "high_confidence": sum(1 for c in confidences if c >= HIGH_CONFIDENCE),
            "medium_confidence": sum(
                1 for c in confidences if MEDIUM_CONFIDENCE <= c < HIGH_CONFIDENCE
            ),
            "low_confidence": sum(1 for c in confidences if c < MEDIUM_CONFIDENCE),
            "skipped": len(self.skipped),
        }


@dataclass(frozen=True)
class LinkResult:
    """Updated records after a confirmed link."""

    order: Order
    invoice: Invoice

    def apply(
        self,
        orders: Iterable[Order],
        invoices: Iterable[Invoice],
    ) -> tuple[list[Order], list[Invoice]]:
        """Return copies of the collections with the linked records swapped in."""
        new_orders = [self.order if o.id == self.order.id else o for o in orders]
        new_invoices = [self.invoice if i.id == self.invoice.id else i for i in invoices]
        return new_orders, new_invoices


# ---------------------------------------------------------------------------
# Signals
# ---------------------------------------------------------------------------


def score_amount(order: Order, invoice: Invoice, settings: MatchSettings) -> SignalScore:
    """Score how close the order and invoice subtotals are."""
    diff_cents = abs(to_cents(order.subtotal) - to_cents(invoice.subtotal))
    if diff_cents == 0:
        return SignalScore(60, "Amount matches exactly")

    currency = order.currency
    if diff_cents <= to_cents(settings.rounding_tolerance):
        tolerance = format_amount(settings.rounding_tolerance, currency)
        return SignalScore(55, f"Amount matches within {tolerance}")

    pct = pct_difference(order.subtotal, invoice.subtotal)
    difference = format_amount(diff_cents / 100.0, currency)
    tolerance_pct = settings.amount_tolerance_pct

    if pct <= min(1.0, tolerance_pct):
        return SignalScore(50, f"Amount within 1% ({difference} difference)")
    if pct <= tolerance_pct:
        return SignalScore(
            30, f"Amount within {tolerance_pct:g}% ({difference} difference)"
        )
    return NO_SIGNAL


def score_date(order: Order, invoice: Invoice, settings: MatchSettings) -> SignalScore:
    """Score how close the invoice date is to the order date."""
    if invoice.invoice_date is None:
        return NO_SIGNAL

    delta = days_between(order.order_date, invoice.invoice_date)
    gap = abs(delta)
    if gap > settings.match_window_days:
        return NO_SIGNAL

    if gap == 0:
        return SignalScore(DATE_TIERS[0][1], "Invoice date matches order date")

    points = DATE_WINDOW_POINTS
    for max_gap, tier_points in DATE_TIERS:
        if gap <= max_gap:
            points = tier_points
            break

    unit = "day" if gap == 1 else "days"
    side = "after" if delta > 0 else "before"
    return SignalScore(points, f"Invoice date {gap} {unit} {side} order date")


def score_name(order: Order, invoice: Invoice, scorer: NameSimilarity) -> SignalScore:
    """Score the similarity between customer and contact names."""
    match = best_name_match(customer_names(order), invoice.contact_name or "", scorer)
    if match.kind == "exact":
        return SignalScore(match.score, "Customer name matches")
    if match.kind == "partial":
        return SignalScore(match.score, "Partial customer name match")
    if match.kind == "tokens":
        return SignalScore(
            match.score, f"Customer name contains: {', '.join(match.common_tokens)}"
        )
    return NO_SIGNAL


def score_pair(
    order: Order,
    invoice: Invoice,
    settings: Optional[MatchSettings] = None,
    scorer: Optional[NameSimilarity] = None,
) -> Optional[MatchSuggestion]:
    """
    Score a single (order, invoice) pair.

    Returns
    -------
    MatchSuggestion | None
        The scored pair, or None if the pair is disqualified (currency
        mismatch, or different brands when `same_brand_only` is set).
        Pairs are returned regardless of `min_confidence`.
    """
    settings = settings or MatchSettings()
    scorer = scorer or DefaultNameScorer()

    if order.currency.upper() != invoice.currency.upper():
        return None

    cross_brand = order.brand != invoice.brand
    if cross_brand and settings.same_brand_only:
        return None

    signals = [
        score_amount(order, invoice, settings),
        score_date(order, invoice, settings),
        score_name(order, invoice, scorer),
    ]
    confidence = sum(s.points for s in signals)
    reasons = [s.reason for s in signals if s.reason]

    if cross_brand:
        confidence -= CROSS_BRAND_PENALTY
        reasons.append("Different brand (warning)")

    return MatchSuggestion(
        order=order,
        invoice=invoice,
        confidence=max(0, min(100, confidence)),
        reasons=tuple(reasons),
    )


# ---------------------------------------------------------------------------
# Batch matching
# ---------------------------------------------------------------------------


def _rank_key(suggestion: MatchSuggestion) -> tuple:
    invoice_date = suggestion.invoice.invoice_date
    return (
        -suggestion.confidence,
        invoice_date is None,
        invoice_date or date.min,
        suggestion.invoice.id,
        suggestion.order.id,
    )


def _eligible_orders(
    orders: Iterable[Order],
    skipped: list[SkippedRecord],
) -> list[Order]:
    eligible: list[Order] = []
    for order in orders:
        if order.state != "unmatched":
            continue
        try:
            validate_order(order)
        except InvalidInput as exc:
            logger.warning("Skipping order %s: %s", exc.record_id, exc.reason)
            skipped.append(SkippedRecord("order", exc.record_id, exc.reason))
            continue
        if to_cents(order.subtotal) == 0:
            logger.info("Skipping order %s: zero amount", order.id)
            skipped.append(SkippedRecord("order", order.id, "zero amount"))
            continue
        eligible.append(order)
    return eligible


def _eligible_invoices(
    invoices: Iterable[Invoice],
    linked_invoice_ids: set[str],
    skipped: list[SkippedRecord],
) -> list[Invoice]:
    eligible: list[Invoice] = []
    for invoice in invoices:
        if not invoice.is_open or invoice.id in linked_invoice_ids:
            continue
        try:
            validate_invoice(invoice)
        except InvalidInput as exc:
            logger.warning("Skipping invoice %s: %s", exc.record_id, exc.reason)
            skipped.append(SkippedRecord("invoice", exc.record_id, exc.reason))
            continue
        eligible.append(invoice)
    return eligible


def suggest_matches(
    orders: Sequence[Order],
    invoices: Sequence[Invoice],
    min_confidence: Optional[int] = None,
    *,
    settings: Optional[MatchSettings] = None,
    scorer: Optional[NameSimilarity] = None,
    cancel: Optional[CancelSignal] = None,
) -> MatchRun:
    """
    Propose the most likely invoice for each unreconciled order.

    Parameters
    ----------
    orders:
        Candidate orders. Orders that are already matched or excluded are
        ignored; invalid or zero-amount orders are reported in `skipped`.
    invoices:
        Candidate invoices. Invoices that are linked (on either side) or
        no longer pending are ignored; invalid ones are reported in
        `skipped`.
    min_confidence:
        Confidence floor (0-100). Defaults to `settings.min_confidence`.
    settings:
        Matching parameters (tolerances, window, brand policy).
    scorer:
        Customer-name similarity scorer. Defaults to DefaultNameScorer.
    cancel:
        Optional signal (e.g. threading.Event) checked before each order.

    Returns
    -------
    MatchRun
        Ranked suggestions plus unmatched and skipped records.

    Raises
    ------
    ValueError
        If `min_confidence` is outside [0, 100].
    MatchingCancelled
        If the cancellation signal is set during the run.
    """
    settings = settings or MatchSettings()
    scorer = scorer or DefaultNameScorer()
    floor = settings.min_confidence if min_confidence is None else min_confidence
    if not 0 <= floor <= 100:
        raise ValueError("min_confidence must be between 0 and 100.")

    skipped: list[SkippedRecord] = []
    linked_invoice_ids = {o.matched_invoice_id for o in orders if o.matched_invoice_id}
    candidate_orders = _eligible_orders(orders, skipped)
    candidate_invoices = _eligible_invoices(invoices, linked_invoice_ids, skipped)

    # 1) Score the bounded cross product.
    qualifying: list[MatchSuggestion] = []
    for order in candidate_orders:
        if cancel is not None and cancel.is_set():
            logger.info("Matching run cancelled after %d suggestions", len(qualifying))
            raise MatchingCancelled("Matching run was cancelled.")

        for invoice in candidate_invoices:
            suggestion = score_pair(order, invoice, settings, scorer)
            if suggestion is not None and suggestion.confidence >= floor:
                qualifying.append(suggestion)

    ranked = sorted(qualifying, key=_rank_key)

    # 2) Greedy best match per order.
    best: list[MatchSuggestion] = []
    taken_orders: set[str] = set()
    taken_invoices: set[str] = set()
    for suggestion in ranked:
        if suggestion.order.id in taken_orders:
            continue
        if settings.exclusive_invoices and suggestion.invoice.id in taken_invoices:
            continue
        best.append(suggestion)
        taken_orders.add(suggestion.order.id)
        taken_invoices.add(suggestion.invoice.id)

    run = MatchRun(
        suggestions=best,
        all_suggestions=ranked,
        unmatched_orders=[o for o in candidate_orders if o.id not in taken_orders],
        unmatched_invoices=[i for i in candidate_invoices if i.id not in taken_invoices],
        skipped=skipped,
    )
    logger.info(
        "Matched %d of %d orders against %d invoices (%d skipped records)",
        len(best),
        len(candidate_orders),
        len(candidate_invoices),
        len(skipped),
    )
    return run


# ---------------------------------------------------------------------------
# Confirming a match
# ---------------------------------------------------------------------------


def link_match(
    orders: Iterable[Order],
    invoices: Iterable[Invoice],
    order_id: str,
    invoice_id: str,
) -> LinkResult:
    """
    Confirm a match between an order and an invoice.

    Both back-references are set on new records in a single step: the
    function either returns both updated records or raises without any
    side effect.

    Raises
    ------
    NotFound
        If either id is unknown in the supplied collections.
    AlreadyLinked
        If the order or the invoice already has a counterpart.
    InvalidInput
        If the order is excluded from reporting or the invoice is ignored.
    """
    orders = list(orders)
    order = next((o for o in orders if o.id == order_id), None)
    if order is None:
        raise NotFound("order", order_id)
    invoice = next((i for i in invoices if i.id == invoice_id), None)
    if invoice is None:
        raise NotFound("invoice", invoice_id)

    if order.state == "matched":
        raise AlreadyLinked(
            f"Order {order_id!r} is already linked to an invoice.",
            order_id=order_id,
            invoice_id=order.matched_invoice_id,
        )
    counterpart = invoice.matched_order_id or next(
        (o.id for o in orders if o.matched_invoice_id == invoice_id), None
    )
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

    logger.info("Linked order %s to invoice %s", order_id, invoice_id)
    return LinkResult(
        order=replace(order, matched_invoice_id=invoice.id),
        invoice=replace(invoice, matched_order_id=order.id, approval_status="approved"),
    )
