# CashRecon - Reconciliation & Cash-Flow Forecasting for multi-brand e-commerce
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
Customer-name similarity for order / invoice matching.

Names coming from the shop platform and from the accounting provider are
rarely typed the same way ("Acme Ltd" vs "ACME LTD." vs "Acme Limited
Trading"). Both sides are normalized before comparison:

1. case-fold,
2. replace punctuation with spaces,
3. collapse whitespace and trim.

The default scorer then classifies the pair:

| kind    | rule                                                  | points |
|---------|-------------------------------------------------------|--------|
| exact   | normalized names are equal                            | 15     |
| partial | one normalized name contains the other                | 10     |
| tokens  | at least one shared token (>= 3 chars, containment ok)| 5      |
| none    | nothing in common                                     | 0      |

Every match also carries the Jaccard overlap of the two token sets. When
several customer names of an order score the same points against a
contact, the one with the larger overlap wins.

Any callable with the same signature as `DefaultNameScorer.__call__` can be
passed to the matching engine instead.
"""

import re
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Literal, Optional, Protocol

NameMatchKind = Literal["exact", "partial", "tokens", "none"]

_PUNCTUATION = re.compile(r"[^\w\s]")
_WHITESPACE = re.compile(r"\s+")

MIN_TOKEN_LENGTH = 3


@dataclass(frozen=True)
class NameMatch:
    """Outcome of comparing two customer names."""

    kind: NameMatchKind
    score: int
    common_tokens: tuple[str, ...] = ()
    overlap: float = 0.0


NO_MATCH = NameMatch(kind="none", score=0)


class NameSimilarity(Protocol):
    def __call__(self, order_name: str, contact_name: str) -> NameMatch: ...


def normalize_name(name: Optional[str]) -> str:
    """Case-fold, strip punctuation and collapse whitespace."""
    if not name:
        return ""
    text = _PUNCTUATION.sub(" ", name.casefold())
    return _WHITESPACE.sub(" ", text).strip()


def tokens(name: Optional[str], min_length: int = MIN_TOKEN_LENGTH) -> list[str]:
    """Return normalized tokens of at least `min_length` characters."""
    return [t for t in normalize_name(name).split(" ") if len(t) >= min_length]


def jaccard(a: Optional[str], b: Optional[str]) -> float:
    """Jaccard similarity of the normalized token sets (0-1)."""
    words_a = set(normalize_name(a).split())
    words_b = set(normalize_name(b).split())
    if not words_a or not words_b:
        return 0.0
    return len(words_a & words_b) / len(words_a | words_b)


@dataclass(frozen=True)
class DefaultNameScorer:
    """Rule-based scorer used by the matching engine."""

    exact_points: int = 15
    partial_points: int = 10
    token_points: int = 5

    def __call__(self, order_name: str, contact_name: str) -> NameMatch:
        left = normalize_name(order_name)
        right = normalize_name(contact_name)
        if not left or not right:
            return NO_MATCH

        overlap = jaccard(left, right)
        if left == right:
            return NameMatch(kind="exact", score=self.exact_points, overlap=overlap)

        if left in right or right in left:
            return NameMatch(kind="partial", score=self.partial_points, overlap=overlap)

        right_tokens = tokens(right)
        common = tuple(
            word
            for word in tokens(left)
            if any(other in word or word in other for other in right_tokens)
        )
        if common:
            return NameMatch(
                kind="tokens",
                score=self.token_points,
                common_tokens=common,
                overlap=overlap,
            )

        return NO_MATCH


def best_name_match(
    candidates: Iterable[str],
    contact_name: str,
    scorer: NameSimilarity,
) -> NameMatch:
    """Return the highest-scoring match among several customer names (ties: larger overlap)."""
    best = NO_MATCH
    for name in candidates:
        result = scorer(name, contact_name)
        if (result.score, result.overlap) > (best.score, best.overlap):
            best = result
    return best
