"""Category resolution: 6-step fallback chain.

Steps (in priority order):
1.  User mapping — the user's own learned vendor → category choice
1.5 History — the user's past assignments for the same vendor
2.  Learned mapping — the shared (global) vendor → category mapping
3.  Dictionary hint — the vendor dictionary's category for a known brand
4.  Keyword rules — regex rules from rules.yaml
5.  Claude — single-transaction suggestion
6.  Unresolved — no match, left for the user

Results from steps 3-5 that land on a system category are written back
as global category mappings so the next transaction for the same vendor
stops at step 2. Only results with confidence >= AUTO_APPLY_THRESHOLD
are written to the transaction.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from spendlens.categorize import claude_ai
from spendlens.categorize.categories import CategoryTree
from spendlens.categorize.category_cache import CategoryMappingCache
from spendlens.categorize.historical import match_historical
from spendlens.categorize.pattern_rules import PatternRule, match_pattern_rule
from spendlens.categorize.vendor_dictionary import VendorDictionary
from spendlens.categorize.vendor_resolver import dictionary_hint
from spendlens.database.models import CategoryMapping
from spendlens.database.repository import Repository
from spendlens.parsers.base import TXN_TYPES, normalize_vendor_text

logger = logging.getLogger(__name__)

AUTO_APPLY_THRESHOLD = 0.8
DICTIONARY_HINT_CONFIDENCE = 0.95

INVALID_REQUEST = "INVALID_REQUEST"
CATEGORIZATION_FAILED = "CATEGORIZATION_FAILED"
NOT_FOUND = "NOT_FOUND"


@dataclass
class CategoryMatch:
    category_id: str
    category_name: str
    confidence: float
    source: str  # "user", "history", "learned", "dictionary", "pattern", "external"
    reasoning: str = ""


@dataclass
class ResolutionFailure:
    code: str
    message: str


@dataclass
class CategoryResolution:
    """Outcome for one transaction: a match, nothing, or a failure."""
    transaction_id: str
    match: CategoryMatch | None = None
    failure: ResolutionFailure | None = None

    @property
    def resolved(self) -> bool:
        return self.match is not None


def should_auto_apply(confidence: float, threshold: float = AUTO_APPLY_THRESHOLD) -> bool:
    return confidence >= threshold


class CategoryResolver:
    def __init__(
        self,
        repo: Repository,
        cache: CategoryMappingCache,
        dictionary: VendorDictionary,
        category_hints: dict[str, str],
        rules: list[PatternRule],
        claude_fn: claude_ai.ClaudeFn | None = None,
        auto_apply_threshold: float = AUTO_APPLY_THRESHOLD,
    ):
        self.repo = repo
        self.cache = cache
        self.dictionary = dictionary
        self.category_hints = {k.lower(): v for k, v in category_hints.items()}
        self.rules = rules
        self.claude_fn = claude_fn
        self.auto_apply_threshold = auto_apply_threshold
        self.tree = CategoryTree(repo)

    def should_auto_apply(self, confidence: float) -> bool:
        return should_auto_apply(confidence, self.auto_apply_threshold)

    def resolve_category(
        self,
        transaction_id: str,
        vendor_name: str,
        amount: float,
        txn_type: str,
        date: str | None,
        user_id: str,
        vendor_name_original: str | None = None,
    ) -> CategoryResolution:
        result = CategoryResolution(transaction_id=transaction_id)
        problem = _validate(vendor_name, amount, txn_type)
        if problem:
            result.failure = ResolutionFailure(INVALID_REQUEST, problem)
            return result
        try:
            result.match = self._resolve(
                transaction_id, vendor_name, float(amount), txn_type, date,
                user_id, vendor_name_original,
            )
        except Exception as e:
            logger.exception("Category resolution failed for txn %s", transaction_id)
            result.failure = ResolutionFailure(CATEGORIZATION_FAILED, str(e))
        return result

    def _resolve(
        self,
        transaction_id: str,
        vendor_name: str,
        amount: float,
        txn_type: str,
        date: str | None,
        user_id: str,
        vendor_name_original: str | None,
    ) -> CategoryMatch | None:
        # Step 1: the user's own mapping
        mapping = self.cache.get_user_mapping(vendor_name, user_id)
        match = self._from_mapping(mapping, user_id, "user")
        if match:
            return match

        # Step 1.5: the user's history for this vendor
        hist = match_historical(
            user_id, normalize_vendor_text(vendor_name), amount, self.repo,
            exclude_txn_id=transaction_id,
        )
        if hist:
            cat = self.repo.get_category(hist.category_id, user_id)
            if cat is not None:
                return CategoryMatch(
                    cat.id, cat.name, hist.confidence, "history",
                    f"{hist.match_count} past transactions ({hist.match_level} match)",
                )

        # Step 2: shared learned mapping
        mapping = self.cache.get_global_mapping(vendor_name)
        match = self._from_mapping(mapping, user_id, "learned")
        if match:
            return match

        # Step 3: dictionary category hint
        match = self._from_dictionary(vendor_name, user_id)
        if match:
            return self._remember(vendor_name, match, "dictionary")

        # Step 4: keyword rules
        rule = match_pattern_rule(
            [vendor_name, vendor_name_original or ""], amount, txn_type, self.rules
        )
        if rule:
            cat = self._category_named(rule.category, user_id)
            if cat is not None:
                match = CategoryMatch(cat.id, cat.name, rule.confidence, "pattern", rule.reasoning)
                return self._remember(vendor_name, match, "pattern")

        # Step 5: Claude
        if self.claude_fn is not None:
            ext = claude_ai.categorize_single(
                vendor_name, amount, txn_type, self.tree.names(user_id),
                self.claude_fn, date=date,
            )
            if ext:
                cat = self._category_named(ext.category_name, user_id)
                if cat is not None:
                    match = CategoryMatch(
                        cat.id, cat.name, ext.confidence, "external", ext.reasoning
                    )
                    return self._remember(vendor_name, match, "external")

        logger.debug("No category found for txn %s", transaction_id)
        return None

    def _from_mapping(
        self, mapping: CategoryMapping | None, user_id: str, source: str
    ) -> CategoryMatch | None:
        if mapping is None:
            return None
        cat = self.repo.get_category(mapping.category_id, user_id)
        if cat is None:
            return None
        scope = "personal" if mapping.user_id else "shared"
        return CategoryMatch(
            cat.id, cat.name, mapping.confidence, source,
            f"Found in {scope} category mappings ({mapping.source})",
        )

    def _from_dictionary(self, vendor_name: str, user_id: str) -> CategoryMatch | None:
        rec = self.dictionary.find_brand(vendor_name)
        if rec is not None:
            category, subcategory = rec.category, rec.subcategory
        else:
            vm = self.dictionary.match(vendor_name)
            if vm is None:
                return None
            category, subcategory = vm.category, vm.subcategory

        name = (self.category_hints.get(dictionary_hint(category, subcategory))
                or self.category_hints.get(category.lower()))
        if not name:
            return None
        cat = self._category_named(name, user_id)
        if cat is None:
            return None
        return CategoryMatch(
            cat.id, cat.name, DICTIONARY_HINT_CONFIDENCE, "dictionary",
            f"Vendor dictionary lists this brand under {category}",
        )

    def _category_named(self, name: str, user_id: str):
        cat = self.tree.find_by_name(name, user_id)
        if cat is None:
            logger.warning("Category '%s' is not in the category table", name)
        return cat

    def _remember(self, vendor_name: str, match: CategoryMatch, source: str) -> CategoryMatch:
        # Shared rows may only point at system categories.
        if self.repo.get_category(match.category_id) is None:
            logger.debug("Not sharing mapping to private category %s", match.category_id)
            return match
        self.cache.cache_mapping(vendor_name, match.category_id, match.confidence, source)
        return match

    # ── Corrections ─────────────────────────────────────────

    def learn_from_user_correction(
        self, vendor_name: str, category_id: str, user_id: str
    ) -> CategoryMapping | None:
        """Store the user's category for a vendor; raises NotFoundError for unknown ids."""
        self.tree.get(category_id, user_id)
        return self.cache.learn_from_user_correction(vendor_name, category_id, user_id)


def _validate(vendor_name: str, amount, txn_type: str) -> str | None:
    if not vendor_name or not vendor_name.strip():
        return "vendor name is required"
    try:
        value = float(amount)
    except (TypeError, ValueError):
        return "amount must be a number"
    if value <= 0:
        return "amount must be positive"
    if txn_type not in TXN_TYPES:
        return "type must be DEBIT or CREDIT"
    return None
