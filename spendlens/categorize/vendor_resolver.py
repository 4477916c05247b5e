"""Vendor name resolution: statement descriptor → display name.

Tiers (first hit wins):
  1. Learned mapping cache (personal, then global)
  2. Static vendor dictionary — result cached as a global mapping
  3. Claude — result cached as a global mapping
  4. Cleaned descriptor at confidence 0.2, never cached
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from spendlens.categorize import claude_ai
from spendlens.categorize.vendor_cache import VendorMappingCache
from spendlens.categorize.vendor_dictionary import VendorDictionary

logger = logging.getLogger(__name__)

FALLBACK_CONFIDENCE = 0.2

_RAIL_PREFIX = re.compile(r"^(UPI|NEFT|IMPS|RTGS)[:\-\s]*", re.IGNORECASE)
_ASTERISKS = re.compile(r"\*+")
_LONG_NUMBERS = re.compile(r"[0-9]{4,}")
_GATEWAYS = re.compile(r"\b(RAZOR|PAYU|BILLDESK|CCAVENUE)\d*", re.IGNORECASE)
_SPACES = re.compile(r"\s+")


@dataclass
class VendorResolution:
    original_text: str
    resolved_name: str
    confidence: float
    source: str          # mapping source, "dictionary", "external" or "fallback"
    cached: bool = False
    category_hint: str | None = None       # dictionary "category[:subcategory]"
    reasoning: str = ""


def clean_vendor_name(text: str) -> str:
    """Strip payment rails, gateway tokens and reference numbers."""
    text = _RAIL_PREFIX.sub("", text.strip())
    text = _ASTERISKS.sub(" ", text)
    text = _LONG_NUMBERS.sub("", text)
    text = _GATEWAYS.sub("", text)
    return _SPACES.sub(" ", text).strip()


def dictionary_hint(category: str, subcategory: str) -> str:
    if subcategory:
        return f"{category}:{subcategory}".lower()
    return category.lower()


class VendorResolver:
    def __init__(
        self,
        cache: VendorMappingCache,
        dictionary: VendorDictionary,
        claude_fn: claude_ai.ClaudeFn | None = None,
    ):
        self.cache = cache
        self.dictionary = dictionary
        self.claude_fn = claude_fn

    def resolve(
        self,
        text: str,
        user_id: str | None = None,
        amount: str | None = None,
        date: str | None = None,
    ) -> VendorResolution:
        # ── Tier 1: Learned mappings ──────────────────────────
        mapping = self.cache.get_best_mapping(text, user_id)
        if mapping is not None:
            scope = "personal" if mapping.user_id else "global"
            return VendorResolution(
                original_text=text,
                resolved_name=mapping.mapped_name,
                confidence=mapping.confidence,
                source=mapping.source,
                cached=True,
                category_hint=self._hint_for(mapping.mapped_name),
                reasoning=f"Found in {scope} vendor mapping cache",
            )

        # ── Tier 2: Static dictionary ─────────────────────────
        match = self.dictionary.match(text)
        if match is not None:
            self.cache.cache_mapping(text, match.brand, match.confidence, "dictionary")
            return VendorResolution(
                original_text=text,
                resolved_name=match.brand,
                confidence=match.confidence,
                source="dictionary",
                category_hint=dictionary_hint(match.category, match.subcategory),
                reasoning=f"Dictionary {match.match_type} match on '{match.matched_descriptor}'",
            )

        # ── Tier 3: Claude ────────────────────────────────────
        if self.claude_fn is not None:
            context = self.dictionary.relevant_vendors(text)
            result = claude_ai.resolve_vendor(
                text, self.claude_fn, context, amount=amount, date=date
            )
            if result is not None:
                stored = self.cache.cache_mapping(
                    text, result.business_name, result.confidence, "external"
                )
                name = stored.mapped_name if stored else result.business_name
                return VendorResolution(
                    original_text=text,
                    resolved_name=name,
                    confidence=result.confidence,
                    source="external",
                    category_hint=self._hint_for(name),
                    reasoning=result.reasoning,
                )

        # ── Tier 4: Cleaned descriptor ────────────────────────
        logger.debug("No vendor resolution for %r, using cleaned text", text)
        return VendorResolution(
            original_text=text,
            resolved_name=clean_vendor_name(text) or text.strip(),
            confidence=FALLBACK_CONFIDENCE,
            source="fallback",
            reasoning="No resolver matched, using cleaned original text",
        )

    def _hint_for(self, name: str) -> str | None:
        """Dictionary category of a resolved brand name, if it is a known brand."""
        rec = self.dictionary.find_brand(name)
        if rec is None:
            return None
        return dictionary_hint(rec.category, rec.subcategory)
