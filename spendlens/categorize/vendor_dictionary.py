"""Static vendor dictionary: maps statement descriptors to known brands.

Match tiers (first hit wins):
  - exact: normalized text equals a descriptor (0.98)
  - prefix: normalized text starts with a descriptor (0.95)
  - pattern: "DMART*BANGALORE" against a "DMART*[LOCATION]" descriptor (0.93)
  - fuzzy: Jaccard token overlap against descriptors (capped at 0.9) and
    registered company names (capped at 0.85), floor 0.7

The dictionary is read-only after construction and is passed around as an
instance; nothing here caches module-level state.
"""

from __future__ import annotations

import csv
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from spendlens.config import Config

logger = logging.getLogger(__name__)

EXACT_CONFIDENCE = 0.98
PREFIX_CONFIDENCE = 0.95
PATTERN_CONFIDENCE = 0.93
FUZZY_DESCRIPTOR_CAP = 0.9
FUZZY_COMPANY_CAP = 0.85
FUZZY_MATCH_FLOOR = 0.7
MIN_TOKEN_LENGTH = 3

_PLACEHOLDERS = ("[LOCATION]", "[CITY]")
_STRIP = re.compile(r"[^a-z0-9*\s]")
_SPACES = re.compile(r"\s+")
_TOKEN_SPLIT = re.compile(r"[\s*]+")


@dataclass(frozen=True)
class VendorRecord:
    brand: str
    category: str
    subcategory: str = ""
    descriptors: tuple[str, ...] = field(default_factory=tuple)
    registered_company_name: str = ""


@dataclass(frozen=True)
class VendorMatch:
    brand: str
    category: str
    subcategory: str
    confidence: float
    matched_descriptor: str
    match_type: str  # "exact", "prefix", "pattern", "fuzzy"


def normalize_text(text: str) -> str:
    text = _STRIP.sub("", text.lower())
    return _SPACES.sub(" ", text).strip()


def tokenize(text: str) -> set[str]:
    return {t for t in _TOKEN_SPLIT.split(text) if len(t) >= MIN_TOKEN_LENGTH}


def jaccard(a: set[str], b: set[str]) -> float:
    if not a or not b:
        return 0.0
    return len(a & b) / len(a | b)


def _parse_descriptors(value) -> tuple[str, ...]:
    if isinstance(value, str):
        value = value.split(",")
    return tuple(d.strip() for d in (value or []) if d and str(d).strip())


def record_from_dict(data: dict) -> VendorRecord:
    brand = str(data.get("brand") or "").strip()
    if not brand:
        raise ValueError(f"Vendor record without a brand: {data!r}")
    return VendorRecord(
        brand=brand,
        category=str(data.get("category") or "").strip(),
        subcategory=str(data.get("subcategory") or "").strip(),
        descriptors=_parse_descriptors(data.get("descriptors")),
        registered_company_name=str(data.get("registered_company_name") or "").strip(),
    )


class VendorDictionary:
    """In-memory index over the static vendor table."""

    def __init__(self, records: list[VendorRecord], fuzzy_floor: float = FUZZY_MATCH_FLOOR):
        self.records = list(records)
        self.fuzzy_floor = fuzzy_floor
        # normalized descriptor -> record; first record in load order wins
        self._index: dict[str, VendorRecord] = {}
        for rec in self.records:
            for desc in rec.descriptors:
                key = normalize_text(desc)
                if key:
                    self._index.setdefault(key, rec)
        self._brands: dict[str, VendorRecord] = {}
        for rec in self.records:
            self._brands.setdefault(rec.brand.lower(), rec)
        logger.debug(
            "Vendor dictionary: %d records, %d descriptors",
            len(self.records), len(self._index),
        )

    # ── Loading ─────────────────────────────────────────────

    @classmethod
    def from_yaml(cls, path: Path | str, **kwargs) -> VendorDictionary:
        with open(path) as f:
            try:
                data = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ValueError(f"Invalid YAML in {path}: {e}") from e
        if isinstance(data, dict):
            data = data.get("vendors", [])
        return cls([record_from_dict(d) for d in data or []], **kwargs)

    @classmethod
    def from_csv(cls, path: Path | str, **kwargs) -> VendorDictionary:
        """Load the brand/descriptor CSV export (one brand per row).

        Columns: Brand, Category, Subcategory, Transaction_Descriptor,
        Registered_Company_Name. Descriptors are comma-separated.
        """
        records = []
        with open(path, newline="", encoding="utf-8") as f:
            for row in csv.DictReader(f):
                records.append(record_from_dict({
                    "brand": row.get("Brand"),
                    "category": row.get("Category"),
                    "subcategory": row.get("Subcategory"),
                    "descriptors": row.get("Transaction_Descriptor"),
                    "registered_company_name": row.get("Registered_Company_Name"),
                }))
        return cls(records, **kwargs)

    @classmethod
    def from_config(cls, config: Config) -> VendorDictionary:
        return cls(
            [record_from_dict(d) for d in config.vendors],
            fuzzy_floor=config.threshold("fuzzy_match_floor"),
        )

    # ── Matching ────────────────────────────────────────────

    def match(self, text: str) -> VendorMatch | None:
        normalized = normalize_text(text)
        if not normalized:
            return None
        return (
            self._match_exact(normalized)
            or self._match_prefix(normalized)
            or self._match_pattern(normalized)
            or self._match_fuzzy(normalized)
        )

    def _match_exact(self, normalized: str) -> VendorMatch | None:
        rec = self._index.get(normalized)
        if rec is None:
            return None
        return _build(rec, EXACT_CONFIDENCE, normalized, "exact")

    def _match_prefix(self, normalized: str) -> VendorMatch | None:
        for desc, rec in self._index.items():
            if normalized.startswith(desc):
                return _build(rec, PREFIX_CONFIDENCE, desc, "prefix")
        return None

    def _match_pattern(self, normalized: str) -> VendorMatch | None:
        if "*" not in normalized:
            return None
        base = normalized.split("*", 1)[0].strip()
        if not base:
            return None
        for rec in self.records:
            for desc in rec.descriptors:
                if not any(p in desc.upper() for p in _PLACEHOLDERS):
                    continue
                if normalize_text(desc.split("*", 1)[0]) == base:
                    return _build(rec, PATTERN_CONFIDENCE, desc, "pattern")
        return None

    def _match_fuzzy(self, normalized: str) -> VendorMatch | None:
        tokens = tokenize(normalized)
        if not tokens:
            return None
        best: VendorMatch | None = None
        best_score = 0.0
        for rec in self.records:
            for desc in rec.descriptors:
                score = jaccard(tokens, tokenize(normalize_text(desc)))
                if score > best_score and score >= self.fuzzy_floor:
                    best_score = score
                    best = _build(rec, min(FUZZY_DESCRIPTOR_CAP, score), desc, "fuzzy")
            if rec.registered_company_name:
                score = jaccard(tokens, tokenize(normalize_text(rec.registered_company_name)))
                if score > best_score and score >= self.fuzzy_floor:
                    best_score = score
                    best = _build(
                        rec, min(FUZZY_COMPANY_CAP, score),
                        rec.registered_company_name, "fuzzy",
                    )
        return best

    def find_brand(self, name: str) -> VendorRecord | None:
        """Record for an already-resolved brand name, case-insensitive."""
        return self._brands.get((name or "").strip().lower())

    # ── Context & stats ─────────────────────────────────────

    def relevant_vendors(self, text: str, limit: int = 10) -> list[VendorRecord]:
        """Records with any token overlap, best first, for prompting."""
        tokens = tokenize(normalize_text(text))
        scored = []
        for rec in self.records:
            candidates = [*rec.descriptors, rec.registered_company_name]
            score = max(
                (jaccard(tokens, tokenize(normalize_text(c))) for c in candidates if c),
                default=0.0,
            )
            if score > 0:
                scored.append((score, rec))
        # sorted() is stable, so equal scores keep load order
        scored = sorted(scored, key=lambda pair: pair[0], reverse=True)
        return [rec for _, rec in scored[:limit]]

    def stats(self) -> dict:
        return {
            "loaded": bool(self.records),
            "vendor_count": len(self.records),
            "descriptor_count": len(self._index),
        }


def _build(rec: VendorRecord, confidence: float, descriptor: str, match_type: str) -> VendorMatch:
    return VendorMatch(
        brand=rec.brand,
        category=rec.category,
        subcategory=rec.subcategory,
        confidence=round(confidence, 4),
        matched_descriptor=descriptor,
        match_type=match_type,
    )
