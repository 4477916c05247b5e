"""Base record types and fingerprinting shared by every ingestion path."""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass
from datetime import date as _date
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

TXN_TYPES = ("DEBIT", "CREDIT")

_LEADING_MARKER = re.compile(r"^(dr|cr|debit|credit)\s+")
_TRAILING_MARKER = re.compile(r"\s+(dr|cr|debit|credit)$")
_NON_WORD = re.compile(r"[^\w\s]", re.ASCII)
_WHITESPACE = re.compile(r"\s+")
_TWO_PLACES = Decimal("0.01")
_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


class InvalidTransactionError(ValueError):
    """Raised when an extracted record has an unusable amount, date or type."""

    def __init__(self, field_name: str, value, reason: str):
        self.field_name = field_name
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid {field_name} {value!r}: {reason}")


@dataclass(frozen=True)
class RawTransaction:
    """One extracted statement line, exactly as the extractor produced it."""
    date: str              # YYYY-MM-DD
    description: str
    amount: str            # non-negative decimal string
    txn_type: str          # DEBIT or CREDIT
    raw_text: str = ""
    reference_number: str = ""
    original_currency: str = ""
    original_amount: str | None = None


@dataclass(frozen=True)
class FingerprintedTransaction:
    raw: RawTransaction
    fingerprint: str
    amount: str            # normalized, two decimals

    @property
    def date(self) -> str:
        return self.raw.date

    @property
    def description(self) -> str:
        return self.raw.description

    @property
    def txn_type(self) -> str:
        return self.raw.txn_type


def normalize_vendor_text(text: str) -> str:
    """Normalize vendor text for fingerprinting and cache keys.

    - Lowercase, trim
    - Strip one leading and one trailing dr/cr/debit/credit marker
    - Replace punctuation with spaces
    - Collapse whitespace
    """
    text = text.lower().strip()
    text = _LEADING_MARKER.sub("", text)
    text = _TRAILING_MARKER.sub("", text)
    text = _NON_WORD.sub(" ", text)
    text = _WHITESPACE.sub(" ", text)
    return text.strip()


def normalize_amount(amount: str | int | float | Decimal) -> str:
    """Serialize an amount with exactly two decimals, rounding half-up.

    Raises InvalidTransactionError for anything that is not a finite number.
    """
    try:
        value = Decimal(str(amount).strip().replace(",", ""))
    except (InvalidOperation, ValueError) as e:
        raise InvalidTransactionError("amount", amount, "not a number") from e
    if not value.is_finite():
        raise InvalidTransactionError("amount", amount, "not a finite number")
    return str(value.quantize(_TWO_PLACES, rounding=ROUND_HALF_UP))


def compute_fingerprint(date: str, amount, description: str, user_id: str) -> str:
    """SHA256(date-amount-vendor-user) over normalized parts.

    The user id is part of the key, so two users never share a fingerprint.
    """
    key = f"{date}-{normalize_amount(amount)}-{normalize_vendor_text(description)}-{user_id}"
    return hashlib.sha256(key.encode("utf-8")).hexdigest()


def compute_file_hash(data: bytes) -> str:
    """Tier 1 dedup: SHA256 of the whole input file."""
    return hashlib.sha256(data).hexdigest()


def validate_raw_transaction(raw: RawTransaction) -> None:
    """Check the fields the fingerprint and the store depend on."""
    if not isinstance(raw.date, str) or not _ISO_DATE.match(raw.date):
        raise InvalidTransactionError("date", raw.date, "expected YYYY-MM-DD")
    try:
        _date.fromisoformat(raw.date)
    except ValueError as e:
        raise InvalidTransactionError("date", raw.date, "not a calendar date") from e
    if raw.txn_type not in TXN_TYPES:
        raise InvalidTransactionError("type", raw.txn_type, "expected DEBIT or CREDIT")
    if Decimal(normalize_amount(raw.amount)) < 0:
        raise InvalidTransactionError("amount", raw.amount, "must not be negative")
    if not raw.description or not raw.description.strip():
        raise InvalidTransactionError("description", raw.description, "must not be empty")


def fingerprint_transaction(raw: RawTransaction, user_id: str) -> FingerprintedTransaction:
    validate_raw_transaction(raw)
    return FingerprintedTransaction(
        raw=raw,
        fingerprint=compute_fingerprint(raw.date, raw.amount, raw.description, user_id),
        amount=normalize_amount(raw.amount),
    )


def fingerprint_transactions(
    raws: list[RawTransaction], user_id: str
) -> list[FingerprintedTransaction]:
    """Fingerprint a batch. Raises on the first invalid record."""
    return [fingerprint_transaction(r, user_id) for r in raws]
