"""Parser for the text-extraction collaborator's JSON output.

Accepts either ``{"transactions": [...]}`` or a bare list of records.
Each record carries date, description, amount and type; the remaining
fields are optional. ``type`` may also be given as ``txn_type``.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from spendlens.parsers.base import RawTransaction

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("date", "description", "amount")


class ExtractionFormatError(ValueError):
    """Raised when the document is not an extraction payload at all."""


def _text(value) -> str:
    if value is None:
        return ""
    return str(value)


def record_to_raw(record: dict) -> RawTransaction:
    """Build a RawTransaction from one extracted record.

    Only structural problems are checked here; value validation happens
    when the record is fingerprinted so it can be reported per item.
    """
    if not isinstance(record, dict):
        raise ExtractionFormatError(f"Expected an object, got {type(record).__name__}")
    missing = [f for f in REQUIRED_FIELDS if f not in record]
    if "type" not in record and "txn_type" not in record:
        missing.append("type")
    if missing:
        raise ExtractionFormatError(f"Record missing fields: {', '.join(missing)}")

    txn_type = record.get("type", record.get("txn_type"))
    original_amount = record.get("original_amount")
    return RawTransaction(
        date=_text(record["date"]).strip(),
        description=_text(record["description"]).strip(),
        amount=_text(record["amount"]).strip(),
        txn_type=_text(txn_type).strip().upper(),
        raw_text=_text(record.get("raw_text")),
        reference_number=_text(record.get("reference_number")),
        original_currency=_text(record.get("original_currency")),
        original_amount=None if original_amount in (None, "") else str(original_amount),
    )


def parse_payload(data) -> list[dict]:
    """Return the list of record dicts in a decoded extraction document."""
    if isinstance(data, dict):
        data = data.get("transactions")
    if not isinstance(data, list):
        raise ExtractionFormatError(
            "Expected a list of transactions or an object with a 'transactions' list"
        )
    return data


def load_extraction_file(path: Path) -> list[dict]:
    """Read and decode an extraction JSON file."""
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ExtractionFormatError(f"Invalid JSON in {path}: {e}") from e
    records = parse_payload(data)
    logger.debug("Loaded %d records from %s", len(records), path)
    return records
