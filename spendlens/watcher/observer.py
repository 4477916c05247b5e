"""File watcher: PollingObserver + ImportPipeline orchestration.

Watches a drop folder for extraction output (one sub-folder per user,
``<watch_dir>/<user_id>/*.json``), waits for file stability, validates
that the JSON is complete, then runs the import pipeline:

  received → fingerprinted → deduplicated → transfer-checked →
  persisted → vendor-resolved → category-resolved → completed

Per-item problems are collected into ``BatchResult.errors`` and never
abort the batch. The pipeline is the only writer of the files,
raw_transactions and transactions tables.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import time
from collections import Counter
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from watchdog.events import FileSystemEventHandler

from spendlens.categorize.transfer_detect import (
    DEFAULT_AMOUNT_TOLERANCE,
    DEFAULT_WINDOW_DAYS,
    TransferCandidate,
    detect_internal_transfers,
    link_map,
)
from spendlens.config import DEFAULT_TRANSFER_KEYWORDS
from spendlens.database.dedup import DedupEngine
from spendlens.database.models import RawTransactionRow, StatementFile, Transaction, now_iso
from spendlens.database.repository import DuplicateFileError, NotFoundError
from spendlens.parsers.base import (
    FingerprintedTransaction,
    InvalidTransactionError,
    compute_file_hash,
    fingerprint_transaction,
    normalize_vendor_text,
)
from spendlens.parsers.extraction_json import (
    ExtractionFormatError,
    load_extraction_file,
    parse_payload,
    record_to_raw,
)

if TYPE_CHECKING:
    from spendlens.categorize.pipeline import BulkResolver
    from spendlens.database.repository import Repository

logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = {".json"}

DEFAULT_STABILITY_SECONDS = 10
DEFAULT_CHECK_INTERVAL = 2.0
DEFAULT_POLL_INTERVAL = 30
DEFAULT_INSERT_BATCH_SIZE = 100

# Stages, in pipeline order
RECEIVED = "received"
FINGERPRINTED = "fingerprinted"
DEDUPLICATED = "deduplicated"
TRANSFER_CHECKED = "transfer-checked"
PERSISTED = "persisted"
VENDOR_RESOLVED = "vendor-resolved"
CATEGORY_RESOLVED = "category-resolved"
COMPLETED = "completed"

STAGES = (
    RECEIVED, FINGERPRINTED, DEDUPLICATED, TRANSFER_CHECKED,
    PERSISTED, VENDOR_RESOLVED, CATEGORY_RESOLVED, COMPLETED,
)


@dataclass
class ItemError:
    stage: str
    ref: str        # record index, fingerprint or transaction id
    code: str
    message: str


@dataclass
class BatchResult:
    """Result of importing one statement."""
    file_name: str
    status: str  # "completed", "duplicate", "failed"
    file_id: str | None = None
    stage: str = RECEIVED
    received: int = 0
    inserted: int = 0
    duplicates: int = 0
    transfers_linked: int = 0
    vendors_resolved: int = 0
    categorized: int = 0
    transaction_ids: list[str] = field(default_factory=list)
    errors: list[ItemError] = field(default_factory=list)
    error_message: str | None = None

    def to_dict(self) -> dict:
        return {
            "file_name": self.file_name,
            "file_id": self.file_id,
            "status": self.status,
            "stage": self.stage,
            "received": self.received,
            "inserted": self.inserted,
            "duplicates": self.duplicates,
            "transfers_linked": self.transfers_linked,
            "vendors_resolved": self.vendors_resolved,
            "categorized": self.categorized,
            "transaction_ids": list(self.transaction_ids),
            "errors": [vars(e) for e in self.errors],
            "error_message": self.error_message,
        }


class FileStabilityError(Exception):
    """Raised when a file fails post-stability validation."""


class RetryError(ValueError):
    """Raised when a file cannot be retried."""


# ── File stability & validation ──────────────────────────


def wait_for_stable(
    filepath: Path,
    stability_seconds: int = DEFAULT_STABILITY_SECONDS,
    check_interval: float = DEFAULT_CHECK_INTERVAL,
    max_wait: float = 300.0,
) -> None:
    """Wait until file size and mtime are unchanged for ``stability_seconds``.

    Raises:
        TimeoutError: If the file doesn't stabilize within max_wait.
    """
    prev = None
    stable_since: float | None = None
    start = time.monotonic()

    while True:
        if time.monotonic() - start > max_wait:
            raise TimeoutError(f"File did not stabilize within {max_wait}s: {filepath}")

        stat = filepath.stat()
        current = (stat.st_size, stat.st_mtime)
        if current == prev:
            if stable_since is None:
                stable_since = time.monotonic()
            if time.monotonic() - stable_since >= stability_seconds:
                return
        else:
            stable_since = None
        prev = current
        time.sleep(check_interval)


def validate_file_completeness(filepath: Path) -> None:
    """An extraction file is complete once it is non-empty, valid JSON."""
    data = filepath.read_bytes()
    if not data.strip():
        raise FileStabilityError(f"Empty extraction file: {filepath}")
    try:
        json.loads(data)
    except json.JSONDecodeError as e:
        raise FileStabilityError(f"Extraction file is not complete JSON: {filepath}") from e


# ── Import pipeline ──────────────────────────────────────


class ImportPipeline:
    """Turn extracted statement records into persisted, resolved transactions.

    Args:
        repo: Database repository.
        resolution: BulkResolver used for per-transaction vendor and
            category resolution.
        transfer_keywords / transfer_window_days / transfer_tolerance:
            internal transfer matching parameters.
        insert_batch_size: Transactions per insert chunk.
        pace_external: Pause between items when an external resolver is
            configured.
    """

    def __init__(
        self,
        repo: Repository,
        resolution: BulkResolver,
        transfer_keywords=DEFAULT_TRANSFER_KEYWORDS,
        transfer_window_days: int = DEFAULT_WINDOW_DAYS,
        transfer_tolerance: float = DEFAULT_AMOUNT_TOLERANCE,
        insert_batch_size: int = DEFAULT_INSERT_BATCH_SIZE,
        pace_external: bool = True,
    ):
        self.repo = repo
        self.dedup = DedupEngine(repo)
        self.resolution = resolution
        self.transfer_keywords = tuple(transfer_keywords)
        self.transfer_window_days = transfer_window_days
        self.transfer_tolerance = transfer_tolerance
        self.insert_batch_size = insert_batch_size
        self.pace_external = pace_external

    # ── Files ─────────────────────────────────────────────

    def process_file(self, filepath: Path, user_id: str) -> BatchResult:
        """Import one extraction JSON file for a user.

        Re-imports of a byte-identical file are reported as "duplicate",
        unless the earlier import failed, in which case it is retried.
        """
        filepath = Path(filepath)
        file_name = filepath.name
        if filepath.suffix.lower() not in SUPPORTED_EXTENSIONS:
            return BatchResult(
                file_name=file_name, status="failed",
                error_message=f"Unsupported file extension: {filepath.suffix}",
            )

        file_hash = compute_file_hash(filepath.read_bytes())
        if self.dedup.check_file_duplicate(user_id, file_hash):
            logger.info("Duplicate file skipped: %s", file_name)
            return BatchResult(file_name=file_name, status="duplicate")

        try:
            records = load_extraction_file(filepath)
        except ExtractionFormatError as e:
            logger.error("Unreadable extraction file %s: %s", file_name, e)
            return BatchResult(file_name=file_name, status="failed", error_message=str(e))

        return self.process_statement(user_id, file_name, records, file_hash=file_hash)

    def retry_file(self, file_id: str, user_id: str) -> BatchResult:
        """Re-run a failed import from the raw records stored for it.

        Transactions persisted before the failure stay; fingerprint dedup
        drops them from the rerun.

        Raises:
            NotFoundError: No such file for this user.
            RetryError: The file did not fail, or nothing was stored for it.
        """
        sf = self.repo.get_file(file_id, user_id)
        if sf is None:
            raise NotFoundError("file", file_id)
        if sf.status != "failed":
            raise RetryError(f"File {file_id} is {sf.status}; only failed imports can be retried")
        rows = self.repo.get_raw_transactions_by_file(file_id)
        if not rows:
            raise RetryError(f"No records were stored for file {file_id}; ingest it again")
        return self.process_statement(
            user_id, sf.file_name, [_raw_record(r) for r in rows], resume=sf,
        )

    def _open_file(
        self, user_id: str, file_name: str, file_hash: str | None
    ) -> StatementFile | None:
        """New file row, the failed row for the same bytes, or None for a duplicate."""
        sf = StatementFile(user_id=user_id, file_name=file_name,
                           file_hash=file_hash, status="processing")
        try:
            return self.repo.insert_file(sf)
        except DuplicateFileError:
            existing = self.repo.get_file_by_hash(user_id, file_hash)
            if existing is not None and existing.status == "failed":
                return existing
            logger.info("Duplicate file (race): %s", file_name)
            return None

    def _reopen(self, sf: StatementFile) -> Counter:
        """Reset a failed file for another run.

        Returns the fingerprints of raw rows kept because a persisted
        transaction points at them; those are not stored twice.
        """
        logger.info("Retrying failed import %s", sf.file_name)
        self.repo.delete_unreferenced_raw_transactions(sf.id)
        self.repo.update_file_status(sf.id, "processing", error_message=None, completed_at=None)
        sf.status = "processing"
        return Counter(r.fingerprint for r in self.repo.get_raw_transactions_by_file(sf.id))

    def process_statement(
        self,
        user_id: str,
        file_name: str,
        records,
        file_hash: str | None = None,
        resume: StatementFile | None = None,
    ) -> BatchResult:
        """Run every stage over one statement's extracted records.

        ``resume`` is a failed file row to import into instead of a new one.
        """
        result = BatchResult(file_name=file_name, status="completed")
        sf = resume or self._open_file(user_id, file_name, file_hash)
        if sf is None:
            result.status = "duplicate"
            return result
        kept = self._reopen(sf) if sf.status == "failed" else None
        result.file_id = sf.id

        try:
            records = parse_payload(records)
            result.received = len(records)

            items, raw_ids = self._fingerprint(user_id, sf.id, records, result, kept)

            result.stage = DEDUPLICATED
            split = self.dedup.split(user_id, items)
            result.duplicates = len(split.duplicates)
            for dup in split.duplicates:
                logger.debug("Duplicate record (%s) %s", dup.reason, dup.duplicate_of[:12])

            result.stage = TRANSFER_CHECKED
            txns = self._build_transactions(user_id, sf.id, split.unique, raw_ids)

            result.stage = PERSISTED
            inserted = self._persist(txns, result)
            result.inserted = len(inserted)
            result.transaction_ids = [t.id for t in inserted]
            result.transfers_linked = sum(1 for t in inserted if t.is_internal_transfer) // 2

            self._resolve(inserted, result)

            result.stage = COMPLETED
            self._complete(sf.id)
        except Exception as e:
            logger.exception("Import failed for %s at stage %s", file_name, result.stage)
            result.status = "failed"
            result.error_message = str(e)
            self.repo.update_file_status(
                sf.id, "failed", error_message=str(e), completed_at=now_iso(),
            )
            return result

        logger.info(
            "Imported %s: %d received, %d new, %d duplicates, %d transfers, %d errors",
            file_name, result.received, result.inserted, result.duplicates,
            result.transfers_linked, len(result.errors),
        )
        return result

    # ── Stages ────────────────────────────────────────────

    def _fingerprint(
        self,
        user_id: str,
        file_id: str,
        records: list,
        result: BatchResult,
        kept: Counter | None = None,
    ) -> tuple[list[FingerprintedTransaction], dict[str, str]]:
        """Store every well-formed record as a raw row and fingerprint the valid ones.

        Returns the fingerprinted items and a fingerprint → raw row id map
        (first occurrence wins, matching dedup's canonical record).
        ``kept`` counts raw rows a retried file already holds.
        """
        kept = Counter(kept or {})
        rows: list[RawTransactionRow] = []
        items: list[FingerprintedTransaction] = []
        raw_ids: dict[str, str] = {}
        for index, record in enumerate(records):
            try:
                raw = record_to_raw(record)
            except ExtractionFormatError as e:
                result.errors.append(ItemError(RECEIVED, str(index), "INVALID_RECORD", str(e)))
                continue

            row = RawTransactionRow(
                file_id=file_id, user_id=user_id, date=raw.date,
                description=raw.description, amount=raw.amount,
                txn_type=raw.txn_type, reference_number=raw.reference_number,
                raw_text=raw.raw_text, original_currency=raw.original_currency,
                original_amount=raw.original_amount,
            )
            try:
                item = fingerprint_transaction(raw, user_id)
            except InvalidTransactionError as e:
                result.errors.append(
                    ItemError(FINGERPRINTED, str(index), "INVALID_TRANSACTION", str(e))
                )
            else:
                row.fingerprint = item.fingerprint
                items.append(item)
                if kept[item.fingerprint] > 0:
                    kept[item.fingerprint] -= 1
                    continue
                raw_ids.setdefault(item.fingerprint, row.id)
            rows.append(row)

        if rows:
            self.repo.insert_raw_transactions_batch(rows)
        result.stage = FINGERPRINTED
        return items, raw_ids

    def _build_transactions(
        self,
        user_id: str,
        file_id: str,
        items: list[FingerprintedTransaction],
        raw_ids: dict[str, str],
    ) -> list[Transaction]:
        txns = [
            Transaction(
                user_id=user_id,
                fingerprint=item.fingerprint,
                vendor_name=item.description,
                vendor_name_original=item.description,
                vendor_key=normalize_vendor_text(item.description),
                amount=float(item.amount),
                txn_type=item.txn_type,
                transaction_date=item.date,
                file_id=file_id,
                raw_transaction_id=raw_ids.get(item.fingerprint),
            )
            for item in items
        ]
        links = detect_internal_transfers(
            [_candidate(t, t.fingerprint) for t in txns],
            self.transfer_keywords, self.transfer_window_days, self.transfer_tolerance,
        )
        partners = link_map(links)
        by_fp = {t.fingerprint: t for t in txns}
        for t in txns:
            partner_fp = partners.get(t.fingerprint)
            if partner_fp is not None:
                t.is_internal_transfer = True
                t.related_transaction_id = by_fp[partner_fp].id
        return txns

    def _persist(self, txns: list[Transaction], result: BatchResult) -> list[Transaction]:
        """Insert in chunks; a failed chunk is reported and earlier chunks stay."""
        inserted: list[Transaction] = []
        missing_ids: set[str] = set()
        size = self.insert_batch_size
        for start in range(0, len(txns), size):
            chunk = txns[start : start + size]
            try:
                stored = self._insert_chunk(chunk, result)
            except Exception as e:
                logger.exception("Insert failed for chunk at offset %d", start)
                for t in chunk:
                    missing_ids.add(t.id)
                    result.errors.append(ItemError(PERSISTED, t.id, "PERSIST_FAILED", str(e)))
                continue
            stored_ids = {t.id for t in stored}
            missing_ids.update(t.id for t in chunk if t.id not in stored_ids)
            inserted.extend(stored)

        # A transfer leg whose partner never made it in is not a transfer.
        for t in inserted:
            if t.related_transaction_id in missing_ids:
                self.repo.unlink_transfer(t.id)
                t.is_internal_transfer = False
                t.related_transaction_id = None
        return inserted

    def _insert_chunk(self, chunk: list[Transaction], result: BatchResult) -> list[Transaction]:
        """Insert one chunk; returns the transactions actually stored.

        When an overlapping import stored some of the same fingerprints
        after dedup ran, those rows count as duplicates and the rest of
        the chunk is inserted.
        """
        try:
            self.repo.insert_transactions_batch(chunk)
            return chunk
        except sqlite3.IntegrityError:
            persisted = self.repo.get_fingerprints(
                chunk[0].user_id, [t.fingerprint for t in chunk]
            )
            if not persisted:
                raise
        remaining = [t for t in chunk if t.fingerprint not in persisted]
        result.duplicates += len(chunk) - len(remaining)
        logger.info("%d transactions were stored by another import", len(chunk) - len(remaining))
        if remaining:
            self.repo.insert_transactions_batch(remaining)
        return remaining

    def _resolve(self, inserted: list[Transaction], result: BatchResult) -> None:
        external = (self.resolution.vendor_resolver.claude_fn is not None
                    or self.resolution.category_resolver.claude_fn is not None)

        result.stage = VENDOR_RESOLVED
        for t in inserted:
            if external and self.pace_external:
                self.resolution.pacer.wait()
            try:
                self.resolution.resolve_vendor_for(t, apply=True)
                result.vendors_resolved += 1
            except Exception as e:
                logger.exception("Vendor resolution failed for txn %s", t.id)
                result.errors.append(
                    ItemError(VENDOR_RESOLVED, t.id, "VENDOR_RESOLUTION_FAILED", str(e))
                )

        result.stage = CATEGORY_RESOLVED
        for t in inserted:
            if external and self.pace_external:
                self.resolution.pacer.wait()
            resolution, applied = self.resolution.resolve_category_for(t, apply=True)
            if resolution.failure is not None:
                result.errors.append(ItemError(
                    CATEGORY_RESOLVED, t.id, resolution.failure.code, resolution.failure.message,
                ))
            elif applied:
                result.categorized += 1

    def _complete(self, file_id: str) -> None:
        # Totals cover everything stored for the file, including rows
        # persisted by an earlier failed attempt.
        stored = self.repo.get_transactions_by_file(file_id)
        spend = [t for t in stored if not t.is_internal_transfer]
        self.repo.update_file_status(
            file_id, "completed",
            total_transactions=len(stored),
            total_income=round(sum(t.amount for t in spend if t.txn_type == "CREDIT"), 2),
            total_expenses=round(sum(t.amount for t in spend if t.txn_type == "DEBIT"), 2),
            completed_at=now_iso(),
        )

    # ── Full-history transfer linking ─────────────────────

    def relink_transfers(self, user_id: str) -> int:
        """Pair the user's still-unlinked transactions across all files.

        Existing links are never touched, so running this twice links
        nothing new the second time.
        """
        txns = self.repo.get_unlinked_transactions(user_id)
        links = detect_internal_transfers(
            [_candidate(t, t.id) for t in txns],
            self.transfer_keywords, self.transfer_window_days, self.transfer_tolerance,
        )
        for link in links:
            self.repo.link_transfer(link.first_key, link.second_key)
        if links:
            logger.info("Linked %d internal transfers", len(links))
        return len(links)


def _candidate(t: Transaction, key: str) -> TransferCandidate:
    return TransferCandidate(
        key=key, date=t.transaction_date, amount=t.amount,
        txn_type=t.txn_type, description=t.vendor_name_original,
    )


def _raw_record(row: RawTransactionRow) -> dict:
    return {
        "date": row.date,
        "description": row.description,
        "amount": row.amount,
        "type": row.txn_type,
        "reference_number": row.reference_number,
        "raw_text": row.raw_text,
        "original_currency": row.original_currency,
        "original_amount": row.original_amount,
    }


# ── File watcher ─────────────────────────────────────────


class FileWatcher(FileSystemEventHandler):
    """Watch a drop folder for extraction output using PollingObserver.

    Files are expected at ``<watch_dir>/<user_id>/<name>.json``; the
    sub-folder name is the owning user. With ``user_id`` set, the folder
    belongs to that one user and files sit directly inside it. Files are
    processed sequentially to avoid database contention.
    """

    def __init__(
        self,
        watch_dir: Path,
        pipeline: ImportPipeline,
        stability_seconds: int = DEFAULT_STABILITY_SECONDS,
        check_interval: float = DEFAULT_CHECK_INTERVAL,
        user_id: str | None = None,
    ):
        self.watch_dir = Path(watch_dir)
        self.pipeline = pipeline
        self.user_id = user_id
        self.stability_seconds = stability_seconds
        self.check_interval = check_interval
        self._observer = None

    def start(self) -> None:
        from watchdog.observers.polling import PollingObserver

        self.watch_dir.mkdir(parents=True, exist_ok=True)
        self._observer = PollingObserver(timeout=DEFAULT_POLL_INTERVAL)
        self._observer.schedule(
            self, str(self.watch_dir), recursive=self.user_id is None
        )
        self._observer.start()
        logger.info("Watching %s for extraction files", self.watch_dir)

    def stop(self) -> None:
        if self._observer is not None:
            self._observer.stop()
            self._observer.join()
            self._observer = None
            logger.info("File watcher stopped")

    def user_for(self, filepath: Path) -> str | None:
        """The owning user of a dropped file, or None if it is misplaced."""
        try:
            rel = Path(filepath).resolve().relative_to(self.watch_dir.resolve())
        except ValueError:
            return None
        if self.user_id is not None:
            return self.user_id if len(rel.parts) == 1 else None
        if len(rel.parts) != 2:
            return None
        return rel.parts[0]

    def on_created(self, event) -> None:
        if event.is_directory:
            return
        filepath = Path(event.src_path)
        if filepath.suffix.lower() not in SUPPORTED_EXTENSIONS:
            return
        user_id = self.user_for(filepath)
        if user_id is None:
            logger.warning("Ignoring %s: not inside a user folder", filepath.name)
            return
        logger.info("New file detected: %s", filepath.name)
        self._process_file(filepath, user_id)

    def _process_file(self, filepath: Path, user_id: str) -> BatchResult:
        """Wait for stability, validate, then import."""
        try:
            wait_for_stable(
                filepath,
                stability_seconds=self.stability_seconds,
                check_interval=self.check_interval,
            )
            validate_file_completeness(filepath)
            result = self.pipeline.process_file(filepath, user_id)
            logger.info(
                "Import result for %s: %s (new=%d, dup=%d, errors=%d)",
                filepath.name, result.status, result.inserted,
                result.duplicates, len(result.errors),
            )
            return result
        except (FileStabilityError, TimeoutError) as e:
            logger.error("File not importable: %s", e)
            return BatchResult(file_name=filepath.name, status="failed", error_message=str(e))
        except Exception as e:
            logger.exception("Unexpected error processing %s", filepath.name)
            return BatchResult(file_name=filepath.name, status="failed", error_message=str(e))
