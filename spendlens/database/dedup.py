"""Deduplication for statement imports.

Tiers (evaluated in order, first match wins):
1. File hash — SHA256 of the whole extraction file rejects re-imports
   of the same file for the same user
2. Fingerprint — SHA256(date-amount-vendor-user) matches a transaction
   already persisted for the user
3. In-batch fingerprint — a later record repeats an earlier record of
   the same batch

Tier 2 and 3 results carry the fingerprint they collided with. The first
occurrence in iteration order is always the canonical one, so running the
detector twice over the same input gives the same split.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from spendlens.parsers.base import FingerprintedTransaction

if TYPE_CHECKING:
    from spendlens.database.repository import Repository


@dataclass
class DuplicateItem:
    item: FingerprintedTransaction
    duplicate_of: str
    reason: str  # "existing" or "batch"


@dataclass
class DedupResult:
    """Split of a batch into new records and duplicates, both in input order."""
    unique: list[FingerprintedTransaction] = field(default_factory=list)
    duplicates: list[DuplicateItem] = field(default_factory=list)


def detect_duplicates(
    items: Iterable[FingerprintedTransaction],
    existing_fingerprints: Iterable[str] = (),
) -> DedupResult:
    """Partition items into unique records and duplicates."""
    existing = set(existing_fingerprints)
    seen: set[str] = set()
    result = DedupResult()

    for item in items:
        fp = item.fingerprint
        if fp in existing:
            result.duplicates.append(DuplicateItem(item, duplicate_of=fp, reason="existing"))
        elif fp in seen:
            result.duplicates.append(DuplicateItem(item, duplicate_of=fp, reason="batch"))
        else:
            seen.add(fp)
            result.unique.append(item)
    return result


class DedupEngine:
    """Run the dedup tiers against the repository for one user."""

    def __init__(self, repo: Repository):
        self.repo = repo

    # ── Tier 1: File hash ─────────────────────────────────

    def check_file_duplicate(self, user_id: str, file_hash: str) -> bool:
        """Return True if this exact file was already imported by the user.

        A failed import does not count; the file may be ingested again.
        """
        existing = self.repo.get_file_by_hash(user_id, file_hash)
        return existing is not None and existing.status != "failed"

    # ── Tiers 2 and 3: Fingerprints ───────────────────────

    def split(
        self, user_id: str, items: list[FingerprintedTransaction]
    ) -> DedupResult:
        existing = self.repo.get_fingerprints(user_id, [i.fingerprint for i in items])
        return detect_duplicates(items, existing)
