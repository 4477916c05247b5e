"""Claude fallback for vendors and categories no local tier resolved.

Both calls go through a ``claude_fn(system, prompt) -> str`` callback so
tests can substitute canned responses. Failures never propagate: a
raised exception or an unparseable reply is logged and yields None.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Callable

from spendlens.categorize.vendor_dictionary import VendorRecord

logger = logging.getLogger(__name__)

ClaudeFn = Callable[[str, str], str]

# Category suggestions are clamped to this range.
CATEGORY_CONFIDENCE_MIN = 0.5
CATEGORY_CONFIDENCE_MAX = 0.9


@dataclass
class ExternalVendorResult:
    business_name: str
    confidence: float
    reasoning: str


@dataclass
class ExternalCategoryResult:
    category_name: str
    confidence: float
    reasoning: str


VENDOR_SYSTEM_PROMPT = (
    "You identify the business behind an Indian bank or credit-card statement "
    "descriptor. Descriptors often carry payment rails (UPI, NEFT, IMPS), "
    "gateway names (Razorpay, PayU, BillDesk), reference numbers and city "
    "names; ignore those. Prefer a brand from the known-vendors list when one "
    "fits. Return ONLY a JSON object with these fields:\n"
    '  - "business_name": the consumer-facing brand name\n'
    '  - "confidence": your confidence from 0.0 to 1.0\n'
    '  - "reasoning": brief explanation (one sentence)\n'
    "If you cannot tell, set business_name to \"\" and confidence to 0.0.\n"
    "Return ONLY the JSON object, no other text."
)

CATEGORY_SYSTEM_PROMPT = (
    "You are a personal finance categorizer for Indian consumers. Given a "
    "transaction, assign it to the most appropriate category from the list "
    "provided. Return ONLY a JSON object with these fields:\n"
    '  - "category_name": exactly one name from the list\n'
    '  - "confidence": your confidence from 0.0 to 1.0\n'
    '  - "reasoning": brief explanation (one sentence)\n'
    "If you cannot determine a category, set category_name to \"\".\n"
    "Return ONLY the JSON object, no other text."
)


def resolve_vendor(
    text: str,
    claude_fn: ClaudeFn,
    known_vendors: list[VendorRecord] | None = None,
    amount: str | None = None,
    date: str | None = None,
) -> ExternalVendorResult | None:
    """Ask Claude for the business name behind a statement descriptor."""
    lines = [f"Descriptor: {text}"]
    if amount:
        lines.append(f"Amount: INR {amount}")
    if date:
        lines.append(f"Date: {date}")
    if known_vendors:
        lines.append("")
        lines.append("Known vendors that may be related:")
        for rec in known_vendors:
            descriptors = ", ".join(rec.descriptors[:5])
            lines.append(f"- {rec.brand} ({rec.category}): {descriptors}")

    data = _call(claude_fn, VENDOR_SYSTEM_PROMPT, "\n".join(lines), "vendor")
    if data is None:
        return None
    name = str(data.get("business_name") or "").strip()
    if not name:
        return None
    return ExternalVendorResult(
        business_name=name,
        confidence=_confidence(data.get("confidence"), 0.0, 1.0),
        reasoning=str(data.get("reasoning") or ""),
    )


def categorize_single(
    vendor_name: str,
    amount: float,
    txn_type: str,
    category_names: list[str],
    claude_fn: ClaudeFn,
    date: str | None = None,
) -> ExternalCategoryResult | None:
    """Ask Claude to pick one of ``category_names`` for a transaction."""
    prompt = (
        f"Vendor: {vendor_name}\n"
        f"Amount: INR {amount:.2f}\n"
        f"Type: {txn_type}\n"
        f"Date: {date or 'unknown'}\n\n"
        f"Available categories: {', '.join(category_names)}"
    )
    data = _call(claude_fn, CATEGORY_SYSTEM_PROMPT, prompt, "category")
    if data is None:
        return None

    name = str(data.get("category_name") or "").strip()
    by_lower = {c.lower(): c for c in category_names}
    if name.lower() not in by_lower:
        if name:
            logger.warning("Claude returned unknown category '%s'", name)
        return None
    return ExternalCategoryResult(
        category_name=by_lower[name.lower()],
        confidence=_confidence(
            data.get("confidence"), CATEGORY_CONFIDENCE_MIN, CATEGORY_CONFIDENCE_MAX
        ),
        reasoning=str(data.get("reasoning") or ""),
    )


def _call(claude_fn: ClaudeFn, system: str, prompt: str, kind: str) -> dict | None:
    try:
        response = claude_fn(system, prompt)
    except Exception:
        logger.exception("Claude %s resolution failed", kind)
        return None
    return _parse_response(response)


def _parse_response(response: str) -> dict | None:
    """Parse Claude's JSON reply, tolerating a ``` fence around it."""
    text = (response or "").strip()
    if text.startswith("```"):
        lines = text.split("\n")
        lines = [line for line in lines if not line.strip().startswith("```")]
        text = "\n".join(lines)

    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        logger.error("Failed to parse Claude response: %s", text[:200])
        return None

    if not isinstance(data, dict):
        logger.error("Claude response is not a dict: %s", type(data))
        return None
    return data


def _confidence(value, low: float, high: float) -> float:
    try:
        confidence = float(value)
    except (TypeError, ValueError):
        confidence = 0.5
    return max(low, min(high, confidence))
