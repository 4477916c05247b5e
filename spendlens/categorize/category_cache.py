"""Learned vendor → category mappings.

Same scoping and write policy as the vendor mapping cache: one row per
(vendor text, user_id), personal rows come only from user corrections,
and a correction made independently by enough users is promoted to a
global row.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from spendlens.categorize.vendor_cache import (
    CLEANUP_CONFIDENCE_FLOOR,
    CLEANUP_MAX_AGE_DAYS,
    CONSENSUS_SOURCE,
    HIGH_CONFIDENCE_GLOBAL,
    UPDATE_DELTA,
    USER_CORRECTION_CONFIDENCE,
    ConsensusRule,
    clamp_confidence,
    should_replace,
)
from spendlens.database.models import CategoryMapping, now_iso
from spendlens.database.repository import DuplicateMappingError, Repository
from spendlens.parsers.base import normalize_vendor_text

logger = logging.getLogger(__name__)


class CategoryMappingCache:
    """Reads and writes the category_mappings table."""

    def __init__(
        self,
        repo: Repository,
        consensus: ConsensusRule | None = None,
        high_confidence: float = HIGH_CONFIDENCE_GLOBAL,
        update_delta: float = UPDATE_DELTA,
        cleanup_floor: float = CLEANUP_CONFIDENCE_FLOOR,
        cleanup_max_age_days: int = CLEANUP_MAX_AGE_DAYS,
    ):
        self.repo = repo
        self.consensus = consensus or ConsensusRule()
        self.high_confidence = high_confidence
        self.update_delta = update_delta
        self.cleanup_floor = cleanup_floor
        self.cleanup_max_age_days = cleanup_max_age_days

    def get_user_mapping(self, vendor: str, user_id: str) -> CategoryMapping | None:
        key = normalize_vendor_text(vendor)
        if not key:
            return None
        return self.repo.get_category_mapping_by_key(key, user_id)

    def get_global_mapping(self, vendor: str) -> CategoryMapping | None:
        """The shared mapping for a vendor, if any."""
        key = normalize_vendor_text(vendor)
        if not key:
            return None
        return self.repo.get_category_mapping_by_key(key, None)

    def get_best_mapping(self, vendor: str, user_id: str | None = None) -> CategoryMapping | None:
        key = normalize_vendor_text(vendor)
        if not key:
            return None
        rows = self.repo.get_category_mappings_for_text(key)
        if not rows:
            return None
        if user_id:
            for m in rows:
                if m.user_id == user_id:
                    return m
        globals_ = [m for m in rows if m.is_global]
        for m in globals_:
            if m.confidence >= self.high_confidence:
                return m
        return globals_[0] if globals_ else rows[0]

    def cache_mapping(
        self,
        vendor: str,
        category_id: str,
        confidence: float,
        source: str,
        user_id: str | None = None,
    ) -> CategoryMapping | None:
        key = normalize_vendor_text(vendor)
        if not key:
            return None
        confidence = clamp_confidence(confidence)
        owner = user_id if (source == "user" and user_id) else None

        existing = self.repo.get_category_mapping_by_key(key, owner)
        if existing is None:
            mapping = CategoryMapping(
                vendor_text=key, category_id=category_id,
                confidence=confidence, source=source, user_id=owner,
            )
            try:
                return self.repo.insert_category_mapping(mapping)
            except DuplicateMappingError:
                existing = self.repo.get_category_mapping_by_key(key, owner)
                if existing is None:
                    raise

        if not should_replace(existing.confidence, existing.source,
                              confidence, source, self.update_delta):
            return existing
        existing.category_id = category_id
        existing.confidence = confidence
        existing.source = source
        existing.updated_at = now_iso()
        self.repo.update_category_mapping(existing)
        return existing

    def learn_from_user_correction(
        self, vendor: str, category_id: str, user_id: str
    ) -> CategoryMapping | None:
        """Store the user's category choice; promote it when users agree."""
        key = normalize_vendor_text(vendor)
        if not key:
            return None

        personal = self.repo.get_category_mapping_by_key(key, user_id)
        if personal is not None:
            personal.category_id = category_id
            personal.confidence = USER_CORRECTION_CONFIDENCE
            personal.source = "user"
            personal.updated_at = now_iso()
            self.repo.update_category_mapping(personal)
        else:
            self.cache_mapping(key, category_id, USER_CORRECTION_CONFIDENCE, "user", user_id)

        votes = [
            m.category_id
            for m in sorted(self.repo.get_category_mappings_for_text(key),
                            key=lambda m: m.created_at)
            if m.source == "user" and not m.is_global
        ]
        if not self.consensus.should_promote(votes, category_id):
            return None
        logger.info("Promoting category consensus mapping (%d corrections)", len(votes))
        return self.cache_mapping(key, category_id, self.consensus.confidence, CONSENSUS_SOURCE)

    def cleanup_mappings(self, now: datetime | None = None) -> int:
        now = now or datetime.now(timezone.utc)
        cutoff = (now - timedelta(days=self.cleanup_max_age_days)).isoformat()
        return self.repo.delete_stale_category_mappings(self.cleanup_floor, cutoff)

    def mapping_stats(self, user_id: str | None = None) -> dict:
        return self.repo.category_mapping_stats(user_id)
