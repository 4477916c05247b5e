"""Dataclass models matching the SQLite schema.

Each dataclass corresponds to one table. Fields match column names exactly.
All primary keys are TEXT (UUID strings generated via uuid4(), or slugs for
the seeded system categories).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from uuid import uuid4

MAPPING_SOURCES = ("dictionary", "pattern", "user", "external", "learned-consensus")


def _new_id() -> str:
    return str(uuid4())


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class StatementFile:
    user_id: str
    file_name: str
    id: str = field(default_factory=_new_id)
    file_hash: str | None = None
    status: str = "pending"
    total_transactions: int | None = None
    total_income: float | None = None
    total_expenses: float | None = None
    error_message: str | None = None
    created_at: str = field(default_factory=now_iso)
    completed_at: str | None = None


@dataclass
class RawTransactionRow:
    file_id: str
    user_id: str
    date: str
    description: str
    amount: str
    txn_type: str
    id: str = field(default_factory=_new_id)
    reference_number: str = ""
    raw_text: str = ""
    original_currency: str = ""
    original_amount: str | None = None
    fingerprint: str | None = None
    created_at: str = field(default_factory=now_iso)


@dataclass
class Transaction:
    user_id: str
    fingerprint: str
    vendor_name: str
    vendor_name_original: str
    vendor_key: str
    amount: float
    txn_type: str
    transaction_date: str
    id: str = field(default_factory=_new_id)
    file_id: str | None = None
    raw_transaction_id: str | None = None
    category_id: str | None = None
    is_duplicate: bool = False
    is_internal_transfer: bool = False
    related_transaction_id: str | None = None
    categorization_source: str | None = None
    categorization_confidence: float | None = None
    vendor_confidence: float | None = None
    created_at: str = field(default_factory=now_iso)
    updated_at: str = field(default_factory=now_iso)


@dataclass
class VendorMapping:
    original_text: str
    mapped_name: str
    confidence: float
    source: str
    id: str = field(default_factory=_new_id)
    user_id: str | None = None
    created_at: str = field(default_factory=now_iso)
    updated_at: str = field(default_factory=now_iso)

    @property
    def is_global(self) -> bool:
        return self.user_id is None


@dataclass
class CategoryMapping:
    vendor_text: str
    category_id: str
    confidence: float
    source: str
    id: str = field(default_factory=_new_id)
    user_id: str | None = None
    created_at: str = field(default_factory=now_iso)
    updated_at: str = field(default_factory=now_iso)

    @property
    def is_global(self) -> bool:
        return self.user_id is None


@dataclass
class Category:
    name: str
    id: str = field(default_factory=_new_id)
    parent_id: str | None = None
    user_id: str | None = None
    is_system: bool = False
    description: str | None = None
    created_at: str = field(default_factory=now_iso)
