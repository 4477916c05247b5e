"""Transfer detection: pairs money leaving one account with money arriving in another.

Two transactions of the same user form an internal transfer when:
  - their amounts differ by less than the tolerance (0.01)
  - one is a DEBIT and the other a CREDIT
  - their dates are at most ``window_days`` calendar days apart
  - at least one description contains a transfer keyword
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import date

from spendlens.config import DEFAULT_TRANSFER_KEYWORDS

DEFAULT_WINDOW_DAYS = 3
DEFAULT_AMOUNT_TOLERANCE = 0.01


@dataclass(frozen=True)
class TransferCandidate:
    key: str             # transaction id, or fingerprint before insert
    date: str            # YYYY-MM-DD
    amount: float
    txn_type: str        # DEBIT or CREDIT
    description: str


@dataclass(frozen=True)
class TransferLink:
    first_key: str
    second_key: str


def has_transfer_keyword(description: str, keywords: Iterable[str]) -> bool:
    desc = description.lower()
    return any(k in desc for k in keywords)


def _day_gap(a: str, b: str) -> int:
    return abs((date.fromisoformat(a) - date.fromisoformat(b)).days)


def is_transfer_pair(
    a: TransferCandidate,
    b: TransferCandidate,
    keywords: Iterable[str] = DEFAULT_TRANSFER_KEYWORDS,
    window_days: int = DEFAULT_WINDOW_DAYS,
    tolerance: float = DEFAULT_AMOUNT_TOLERANCE,
) -> bool:
    if a.txn_type == b.txn_type:
        return False
    if abs(float(a.amount) - float(b.amount)) >= tolerance:
        return False
    if _day_gap(a.date, b.date) > window_days:
        return False
    keywords = tuple(keywords)
    return (has_transfer_keyword(a.description, keywords)
            or has_transfer_keyword(b.description, keywords))


def detect_internal_transfers(
    candidates: Sequence[TransferCandidate],
    keywords: Iterable[str] = DEFAULT_TRANSFER_KEYWORDS,
    window_days: int = DEFAULT_WINDOW_DAYS,
    tolerance: float = DEFAULT_AMOUNT_TOLERANCE,
) -> list[TransferLink]:
    """Greedy pairwise scan in input order.

    The first valid partner of a candidate claims it, and each candidate
    ends up in at most one link. Callers pass only transactions that are
    not linked yet, so re-running over full history keeps old links.
    """
    keywords = tuple(k.lower() for k in keywords)
    claimed: set[int] = set()
    links: list[TransferLink] = []

    for i, first in enumerate(candidates):
        if i in claimed:
            continue
        for j in range(i + 1, len(candidates)):
            if j in claimed:
                continue
            second = candidates[j]
            if is_transfer_pair(first, second, keywords, window_days, tolerance):
                claimed.update((i, j))
                links.append(TransferLink(first.key, second.key))
                break
    return links


def link_map(links: Iterable[TransferLink]) -> dict[str, str]:
    """Symmetric key → partner key lookup."""
    result: dict[str, str] = {}
    for link in links:
        result[link.first_key] = link.second_key
        result[link.second_key] = link.first_key
    return result
