"""Reuse a user's own past category choices for a vendor.

Looks at the user's categorized transactions sharing the vendor key:

  exact   same amount (within 0.01) seen at least twice, always with
          the same category -> 0.95
  vendor  at least three past transactions, one category holding 80%
          of the weighted votes -> 0.85; a transaction the user
          categorized by hand counts 1.5 votes

Transactions of other users never contribute.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass

from spendlens.database.repository import Repository

logger = logging.getLogger(__name__)

EXACT_MIN_COUNT = 2
EXACT_CONFIDENCE = 0.95
VENDOR_MIN_COUNT = 3
VENDOR_MIN_AGREEMENT = 0.80
VENDOR_CONFIDENCE = 0.85
USER_WEIGHT = 1.5
AMOUNT_TOLERANCE = 0.01


@dataclass
class HistoricalMatch:
    category_id: str
    confidence: float
    match_level: str  # "exact" or "vendor"
    match_count: int
    agreement_pct: float


def _exact_level(rows: list[dict], amount: float) -> HistoricalMatch | None:
    same_amount = [r for r in rows if abs(r["amount"] - amount) <= AMOUNT_TOLERANCE]
    if not same_amount:
        return None
    seen = {r["category_id"] for r in same_amount}
    count = sum(r["cnt"] for r in same_amount)
    if len(seen) != 1 or count < EXACT_MIN_COUNT:
        return None
    return HistoricalMatch(seen.pop(), EXACT_CONFIDENCE, "exact", count, 1.0)


def _vendor_level(rows: list[dict]) -> HistoricalMatch | None:
    count = sum(r["cnt"] for r in rows)
    if count < VENDOR_MIN_COUNT:
        return None

    votes: dict[str, float] = defaultdict(float)
    for r in rows:
        # user-set rows already count once in cnt
        votes[r["category_id"]] += r["cnt"] + r["user_cnt"] * (USER_WEIGHT - 1)
    total = sum(votes.values())
    winner = max(votes, key=votes.get)
    share = votes[winner] / total if total else 0.0
    if share < VENDOR_MIN_AGREEMENT:
        return None
    return HistoricalMatch(winner, VENDOR_CONFIDENCE, "vendor", count, share)


def match_historical(
    user_id: str,
    vendor_key: str | None,
    amount: float,
    repo: Repository | None,
    exclude_txn_id: str | None = None,
) -> HistoricalMatch | None:
    """Category the user's history agrees on for this vendor, if any.

    ``exclude_txn_id`` keeps a transaction from voting for itself when
    it is re-resolved.
    """
    if not vendor_key or repo is None:
        return None

    rows = repo.get_historical_category_counts(user_id, vendor_key, exclude_txn_id)
    if not rows:
        return None

    match = _exact_level(rows, amount) or _vendor_level(rows)
    if match is not None:
        logger.debug(
            "History match (%s): %s from %d past transactions",
            match.match_level, match.category_id, match.match_count,
        )
    return match
