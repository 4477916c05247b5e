"""Resolution pipeline: vendor and category resolution over persisted transactions.

Used by the import pipeline for newly inserted transactions and by the
bulk commands for re-resolution. This module and the import pipeline are
the only code that writes resolution results back to transactions;
resolvers themselves only touch their own mapping tables.

Bulk requests are validated as a whole (size bounds), then processed
item by item: a missing transaction or a failing resolver becomes a
per-item error and never aborts the batch.
"""

from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass, field
from typing import Callable

from spendlens.categorize.category_resolver import (
    NOT_FOUND,
    CategoryMatch,
    CategoryResolver,
    ResolutionFailure,
)
from spendlens.categorize.vendor_cache import ValidationError
from spendlens.categorize.vendor_resolver import VendorResolution, VendorResolver
from spendlens.database.models import Transaction
from spendlens.database.repository import NotFoundError, Repository
from spendlens.parsers.base import normalize_vendor_text

logger = logging.getLogger(__name__)

DEFAULT_PACING_SECONDS = 0.1
MAX_CATEGORY_IDS = 50
MAX_VENDOR_IDS = 100
USER_SET_CONFIDENCE = 1.0


class Pacer:
    """Spaces out calls so consecutive ones start at least ``delay_seconds`` apart."""

    def __init__(
        self,
        delay_seconds: float = DEFAULT_PACING_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.delay_seconds = delay_seconds
        self._clock = clock
        self._sleep = sleep
        self._last: float | None = None

    def wait(self) -> None:
        now = self._clock()
        if self._last is not None and self.delay_seconds > 0:
            remaining = self.delay_seconds - (now - self._last)
            if remaining > 0:
                self._sleep(remaining)
                now = self._clock()
        self._last = now


@dataclass
class BulkItem:
    transaction_id: str
    success: bool
    applied: bool = False
    category: CategoryMatch | None = None
    vendor: VendorResolution | None = None
    error: ResolutionFailure | None = None


@dataclass
class BulkResult:
    results: list[BulkItem] = field(default_factory=list)
    stats: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {"results": [asdict(r) for r in self.results], "stats": dict(self.stats)}


def _check_ids(ids: list[str], limit: int) -> list[str]:
    unique = list(dict.fromkeys(i for i in ids if i))
    if not 1 <= len(unique) <= limit:
        raise ValidationError(f"Between 1 and {limit} transaction ids are required")
    return unique


class BulkResolver:
    def __init__(
        self,
        repo: Repository,
        vendor_resolver: VendorResolver,
        category_resolver: CategoryResolver,
        pacer: Pacer | None = None,
        max_category_ids: int = MAX_CATEGORY_IDS,
        max_vendor_ids: int = MAX_VENDOR_IDS,
    ):
        self.repo = repo
        self.vendor_resolver = vendor_resolver
        self.category_resolver = category_resolver
        self.pacer = pacer or Pacer()
        self.max_category_ids = max_category_ids
        self.max_vendor_ids = max_vendor_ids

    # ── Single transaction ────────────────────────────────

    def resolve_vendor_for(self, txn: Transaction, apply: bool = True) -> tuple[VendorResolution, bool]:
        """Resolve the vendor of one transaction; returns (resolution, applied)."""
        resolution = self.vendor_resolver.resolve(
            txn.vendor_name_original, txn.user_id,
            amount=f"{txn.amount:.2f}", date=txn.transaction_date,
        )
        applied = False
        if (apply
                and self.category_resolver.should_auto_apply(resolution.confidence)
                and resolution.resolved_name != txn.vendor_name):
            key = normalize_vendor_text(resolution.resolved_name)
            self.repo.update_transaction_vendor(
                txn.id, resolution.resolved_name, key, resolution.confidence
            )
            txn.vendor_name = resolution.resolved_name
            txn.vendor_key = key
            txn.vendor_confidence = resolution.confidence
            applied = True
        return resolution, applied

    def resolve_category_for(self, txn: Transaction, apply: bool = True):
        """Resolve the category of one transaction; returns (resolution, applied)."""
        resolution = self.category_resolver.resolve_category(
            txn.id, txn.vendor_name, txn.amount, txn.txn_type,
            txn.transaction_date, txn.user_id,
            vendor_name_original=txn.vendor_name_original,
        )
        match = resolution.match
        applied = False
        if (apply and match is not None
                and self.category_resolver.should_auto_apply(match.confidence)
                and match.category_id != txn.category_id):
            self.repo.update_transaction_category(
                txn.id, match.category_id, match.source, match.confidence
            )
            txn.category_id = match.category_id
            applied = True
        return resolution, applied

    # ── Bulk ──────────────────────────────────────────────

    def resolve_categories(
        self, user_id: str, ids: list[str], auto_apply: bool = False
    ) -> BulkResult:
        ids = _check_ids(ids, self.max_category_ids)
        out = BulkResult(stats={
            "total": len(ids), "categorized": 0, "unresolved": 0,
            "applied": 0, "failed": 0, "high_confidence": 0,
        })
        for txn_id in ids:
            self.pacer.wait()
            txn = self.repo.get_transaction(txn_id, user_id)
            if txn is None:
                out.results.append(_not_found(txn_id))
                out.stats["failed"] += 1
                continue

            resolution, applied = self.resolve_category_for(txn, apply=auto_apply)
            if resolution.failure is not None:
                out.results.append(BulkItem(txn_id, success=False, error=resolution.failure))
                out.stats["failed"] += 1
                continue

            out.results.append(BulkItem(
                txn_id, success=True, applied=applied, category=resolution.match
            ))
            if resolution.match is None:
                out.stats["unresolved"] += 1
                continue
            out.stats["categorized"] += 1
            if self.category_resolver.should_auto_apply(resolution.match.confidence):
                out.stats["high_confidence"] += 1
            if applied:
                out.stats["applied"] += 1

        logger.info(
            "Bulk category resolution: %d total, %d categorized, %d applied, %d failed",
            out.stats["total"], out.stats["categorized"],
            out.stats["applied"], out.stats["failed"],
        )
        return out

    def resolve_vendors(
        self, user_id: str, ids: list[str], auto_apply: bool = False
    ) -> BulkResult:
        ids = _check_ids(ids, self.max_vendor_ids)
        out = BulkResult(stats={
            "total": len(ids), "resolved": 0, "applied": 0, "failed": 0,
            "high_confidence": 0, "cached": 0, "external": 0,
        })
        for txn_id in ids:
            self.pacer.wait()
            txn = self.repo.get_transaction(txn_id, user_id)
            if txn is None:
                out.results.append(_not_found(txn_id))
                out.stats["failed"] += 1
                continue
            try:
                resolution, applied = self.resolve_vendor_for(txn, apply=auto_apply)
            except Exception as e:
                logger.exception("Vendor resolution failed for txn %s", txn_id)
                out.results.append(BulkItem(
                    txn_id, success=False,
                    error=ResolutionFailure("VENDOR_RESOLUTION_FAILED", str(e)),
                ))
                out.stats["failed"] += 1
                continue

            out.results.append(BulkItem(txn_id, success=True, applied=applied, vendor=resolution))
            out.stats["resolved"] += 1
            if resolution.cached:
                out.stats["cached"] += 1
            if resolution.source == "external":
                out.stats["external"] += 1
            if self.category_resolver.should_auto_apply(resolution.confidence):
                out.stats["high_confidence"] += 1
            if applied:
                out.stats["applied"] += 1

        logger.info(
            "Bulk vendor resolution: %d total, %d resolved, %d applied, %d failed",
            out.stats["total"], out.stats["resolved"],
            out.stats["applied"], out.stats["failed"],
        )
        return out

    # ── User corrections ──────────────────────────────────

    def correct_vendor(self, user_id: str, txn_id: str, vendor_name: str) -> Transaction:
        txn = self.repo.get_transaction(txn_id, user_id)
        if txn is None:
            raise NotFoundError("transaction", txn_id)
        self.vendor_resolver.cache.learn_from_user_correction(
            txn.vendor_name_original, vendor_name, user_id
        )
        name = vendor_name.strip()
        key = normalize_vendor_text(name)
        self.repo.update_transaction_vendor(txn.id, name, key, USER_SET_CONFIDENCE)
        txn.vendor_name, txn.vendor_key = name, key
        txn.vendor_confidence = USER_SET_CONFIDENCE
        return txn

    def correct_category(self, user_id: str, txn_id: str, category_id: str) -> Transaction:
        txn = self.repo.get_transaction(txn_id, user_id)
        if txn is None:
            raise NotFoundError("transaction", txn_id)
        self.category_resolver.learn_from_user_correction(txn.vendor_name, category_id, user_id)
        self.repo.update_transaction_category(txn.id, category_id, "user", USER_SET_CONFIDENCE)
        txn.category_id = category_id
        txn.categorization_source = "user"
        txn.categorization_confidence = USER_SET_CONFIDENCE
        return txn


def _not_found(txn_id: str) -> BulkItem:
    return BulkItem(
        txn_id, success=False,
        error=ResolutionFailure(NOT_FOUND, f"Transaction '{txn_id}' not found"),
    )
