"""Keyword rules for transactions no learned mapping or dictionary entry covers.

Rules are defined in rules.yaml under pattern_rules and evaluated in
order; the first rule whose regex matches and whose amount/type
constraints hold wins. Each rule names a system category by name.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from spendlens.config import Config

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PatternRule:
    pattern: re.Pattern
    category: str
    confidence: float
    reasoning: str = ""
    txn_type: str | None = None
    min_amount: float | None = None
    max_amount: float | None = None

    def applies(self, text: str, amount: float, txn_type: str) -> bool:
        if self.txn_type and txn_type != self.txn_type:
            return False
        if self.min_amount is not None and amount < self.min_amount:
            return False
        if self.max_amount is not None and amount > self.max_amount:
            return False
        return self.pattern.search(text) is not None


@dataclass
class RuleMatch:
    """Result of a keyword rule match."""
    category: str
    confidence: float
    reasoning: str


def compile_rules(raw_rules: list[dict]) -> list[PatternRule]:
    rules: list[PatternRule] = []
    for raw in raw_rules:
        pattern = raw.get("pattern", "")
        category = raw.get("category", "")
        # Skip empty patterns - they would match everything
        if not pattern or not category:
            logger.warning("Skipping incomplete pattern rule: %r", raw)
            continue
        try:
            compiled = re.compile(pattern, re.IGNORECASE)
        except re.error as e:
            raise ValueError(f"Invalid regex in pattern rule {pattern!r}: {e}") from e
        rules.append(PatternRule(
            pattern=compiled,
            category=category,
            confidence=float(raw.get("confidence", 0.7)),
            reasoning=raw.get("reasoning", ""),
            txn_type=raw.get("txn_type"),
            min_amount=_opt_float(raw.get("min_amount")),
            max_amount=_opt_float(raw.get("max_amount")),
        ))
    return rules


def rules_from_config(config: Config) -> list[PatternRule]:
    return compile_rules(config.pattern_rules)


def match_pattern_rule(
    texts: list[str],
    amount: float,
    txn_type: str,
    rules: list[PatternRule],
) -> RuleMatch | None:
    """Match the joined vendor texts against the rules in order."""
    text = " ".join(t for t in texts if t).lower()
    if not text:
        return None
    for rule in rules:
        if rule.applies(text, amount, txn_type):
            return RuleMatch(rule.category, rule.confidence, rule.reasoning)
    return None


def _opt_float(value) -> float | None:
    return None if value is None else float(value)
