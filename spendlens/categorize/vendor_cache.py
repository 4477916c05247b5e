"""Learned vendor-name mappings shared across users.

A mapping turns normalized statement text ("upi zomato 1234") into a
display name ("Zomato"). Rows are either personal (user_id set, written
only by that user's corrections) or global (user_id NULL, written by the
resolvers and by consensus promotion).

Lookup priority:
  1. the caller's own mapping
  2. a global mapping with confidence >= 0.8
  3. any global mapping
  4. the highest-confidence mapping in any scope

Write policy: one row per (text, user_id). An existing row is replaced
only when the new confidence beats it by more than 0.1, or when a user
correction replaces a non-user row. Consensus promotion always
replaces the global row.
"""

from __future__ import annotations

import logging
import re
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from spendlens.database.models import VendorMapping, now_iso
from spendlens.database.repository import (
    DuplicateMappingError,
    NotFoundError,
    Repository,
)
from spendlens.parsers.base import normalize_vendor_text

logger = logging.getLogger(__name__)

HIGH_CONFIDENCE_GLOBAL = 0.8
UPDATE_DELTA = 0.1
USER_CORRECTION_CONFIDENCE = 0.95
CLEANUP_CONFIDENCE_FLOOR = 0.3
CLEANUP_MAX_AGE_DAYS = 30
CONSENSUS_SOURCE = "learned-consensus"

CRUD_SOURCES = ("user", "llm", "google")
MAX_ORIGINAL_TEXT = 500
MAX_MAPPED_NAME = 200

_SPACES = re.compile(r"\s+")


class MappingConflictError(Exception):
    """Raised when creating a mapping that already exists for the user."""

    def __init__(self, original_text: str):
        self.original_text = original_text
        super().__init__(f"Mapping already exists for '{original_text}'")


class ValidationError(ValueError):
    """Raised when a request is malformed as a whole."""


@dataclass(frozen=True)
class ConsensusRule:
    """Promote a correction to a global mapping once enough users agree."""
    min_corrections: int = 3
    confidence: float = 0.85

    def plurality(self, names: list[str]) -> str | None:
        """Most common name; ties go to the name seen first."""
        if not names:
            return None
        return Counter(names).most_common(1)[0][0]

    def should_promote(self, names: list[str], corrected: str) -> bool:
        if len(names) < self.min_corrections:
            return False
        return self.plurality(names) == corrected


def normalize_mapped_name(name: str) -> str:
    """Collapse whitespace and title-case words written in a single case.

    Mixed-case words ("DMart", "iPhone") are kept as written.
    """
    words = _SPACES.sub(" ", name.strip()).split(" ")
    out = []
    for word in words:
        if word.isupper() or word.islower():
            out.append(word[:1].upper() + word[1:].lower())
        else:
            out.append(word)
    return " ".join(out)


def clamp_confidence(value: float) -> float:
    return max(0.0, min(1.0, float(value)))


def should_replace(existing_confidence: float, existing_source: str,
                   confidence: float, source: str,
                   delta: float = UPDATE_DELTA) -> bool:
    # consensus promotion overrides whatever global row is in place
    if source == CONSENSUS_SOURCE:
        return True
    if confidence - existing_confidence > delta:
        return True
    return source == "user" and existing_source != "user"


class VendorMappingCache:
    """Reads and writes the vendor_mappings table."""

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

    # ── Lookup ──────────────────────────────────────────────

    def get_best_mapping(self, text: str, user_id: str | None = None) -> VendorMapping | None:
        key = normalize_vendor_text(text)
        if not key:
            return None
        rows = self.repo.get_vendor_mappings_for_text(key)  # confidence desc
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
        if globals_:
            return globals_[0]
        return rows[0]

    # ── Writes ──────────────────────────────────────────────

    def cache_mapping(
        self,
        text: str,
        mapped_name: str,
        confidence: float,
        source: str,
        user_id: str | None = None,
    ) -> VendorMapping | None:
        """Store a mapping under the write policy; returns the row now in place."""
        key = normalize_vendor_text(text)
        name = normalize_mapped_name(mapped_name)
        if not key or not name:
            return None
        confidence = clamp_confidence(confidence)
        owner = user_id if (source == "user" and user_id) else None

        existing = self.repo.get_vendor_mapping_by_key(key, owner)
        if existing is None:
            mapping = VendorMapping(
                original_text=key, mapped_name=name,
                confidence=confidence, source=source, user_id=owner,
            )
            try:
                return self.repo.insert_vendor_mapping(mapping)
            except DuplicateMappingError:
                # Lost an insert race; reconcile against the winner.
                existing = self.repo.get_vendor_mapping_by_key(key, owner)
                if existing is None:
                    raise
        return self._maybe_replace(existing, name, confidence, source)

    def _maybe_replace(
        self, existing: VendorMapping, name: str, confidence: float, source: str
    ) -> VendorMapping:
        if not should_replace(existing.confidence, existing.source,
                              confidence, source, self.update_delta):
            return existing
        existing.mapped_name = name
        existing.confidence = confidence
        existing.source = source
        existing.updated_at = now_iso()
        self.repo.update_vendor_mapping(existing)
        return existing

    def learn_from_user_correction(
        self, text: str, corrected_name: str, user_id: str
    ) -> VendorMapping | None:
        """Record a user's correction, then check for cross-user consensus.

        Returns the global mapping when the correction was promoted.
        """
        key = normalize_vendor_text(text)
        name = normalize_mapped_name(corrected_name)
        if not key or not name:
            raise ValidationError("Vendor text and corrected name must not be empty")

        personal = self.repo.get_vendor_mapping_by_key(key, user_id)
        if personal is not None and personal.source == "user":
            # A user may always change their own earlier correction.
            personal.mapped_name = name
            personal.confidence = USER_CORRECTION_CONFIDENCE
            personal.updated_at = now_iso()
            self.repo.update_vendor_mapping(personal)
        else:
            self.cache_mapping(key, name, USER_CORRECTION_CONFIDENCE, "user", user_id)

        names = [
            normalize_mapped_name(m.mapped_name)
            for m in sorted(self.repo.get_vendor_mappings_for_text(key),
                            key=lambda m: m.created_at)
            if m.source == "user" and not m.is_global
        ]
        if not self.consensus.should_promote(names, name):
            return None
        logger.info("Promoting vendor consensus mapping (%d corrections)", len(names))
        return self.cache_mapping(key, name, self.consensus.confidence, CONSENSUS_SOURCE)

    # ── Maintenance ─────────────────────────────────────────

    def cleanup_mappings(self, now: datetime | None = None) -> int:
        """Delete stale low-confidence global rows; personal rows are kept."""
        now = now or datetime.now(timezone.utc)
        cutoff = (now - timedelta(days=self.cleanup_max_age_days)).isoformat()
        deleted = self.repo.delete_stale_vendor_mappings(self.cleanup_floor, cutoff)
        if deleted:
            logger.info("Removed %d stale vendor mappings", deleted)
        return deleted

    def mapping_stats(self, user_id: str | None = None) -> dict:
        return self.repo.vendor_mapping_stats(user_id)

    # ── CRUD for a user's own mappings ──────────────────────

    def list_mappings(self, user_id: str, include_global: bool = False) -> list[VendorMapping]:
        return self.repo.list_vendor_mappings(user_id, include_global)

    def create_mapping(
        self,
        user_id: str,
        original_text: str,
        mapped_name: str,
        confidence: float,
        source: str = "user",
    ) -> VendorMapping:
        _validate_text(original_text, "original_text", MAX_ORIGINAL_TEXT)
        _validate_text(mapped_name, "mapped_name", MAX_MAPPED_NAME)
        _validate_confidence(confidence)
        if source not in CRUD_SOURCES:
            raise ValidationError(f"source must be one of {', '.join(CRUD_SOURCES)}")

        key = normalize_vendor_text(original_text)
        if not key:
            raise ValidationError("original_text has no matchable characters")
        if self.repo.get_vendor_mapping_by_key(key, user_id) is not None:
            raise MappingConflictError(key)
        mapping = VendorMapping(
            original_text=key,
            mapped_name=normalize_mapped_name(mapped_name),
            confidence=float(confidence),
            source="user",
            user_id=user_id,
        )
        try:
            return self.repo.insert_vendor_mapping(mapping)
        except DuplicateMappingError as e:
            raise MappingConflictError(key) from e

    def update_mapping(
        self,
        user_id: str,
        mapping_id: str,
        mapped_name: str | None = None,
        confidence: float | None = None,
    ) -> VendorMapping:
        mapping = self._owned(user_id, mapping_id)
        if mapped_name is not None:
            _validate_text(mapped_name, "mapped_name", MAX_MAPPED_NAME)
            mapping.mapped_name = normalize_mapped_name(mapped_name)
        if confidence is not None:
            _validate_confidence(confidence)
            mapping.confidence = float(confidence)
        mapping.updated_at = now_iso()
        self.repo.update_vendor_mapping(mapping)
        return mapping

    def delete_mapping(self, user_id: str, mapping_id: str) -> None:
        self._owned(user_id, mapping_id)
        self.repo.delete_vendor_mapping(mapping_id)

    def _owned(self, user_id: str, mapping_id: str) -> VendorMapping:
        mapping = self.repo.get_vendor_mapping(mapping_id)
        if mapping is None or mapping.user_id != user_id:
            raise NotFoundError("vendor mapping", mapping_id)
        return mapping


def _validate_text(value, field_name: str, max_len: int) -> None:
    if not isinstance(value, str) or not (1 <= len(value) <= max_len):
        raise ValidationError(f"{field_name} must be 1..{max_len} characters")


def _validate_confidence(value) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError("confidence must be a number")
    if not 0.0 <= value <= 1.0:
        raise ValidationError("confidence must be between 0 and 1")
