"""Repository: CRUD operations against SQLite using raw SQL.

All methods take/return dataclass instances from models.py.
Connection management uses a single connection with WAL mode and
foreign keys enabled.

Every user-facing lookup takes the caller's user id; a row owned by
someone else is reported exactly like a missing row.
"""

from __future__ import annotations

import sqlite3
from pathlib import Path

from .models import (
    Category,
    CategoryMapping,
    RawTransactionRow,
    StatementFile,
    Transaction,
    VendorMapping,
)

# SQLite's default host-parameter limit is 999 on older builds.
_IN_CHUNK = 500


class DuplicateFileError(Exception):
    """Raised when the user already imported a file with the same hash."""

    def __init__(self, file_hash: str, existing_file_id: str | None = None):
        self.file_hash = file_hash
        self.existing_file_id = existing_file_id
        super().__init__(f"File with file_hash '{file_hash}' already imported")


class DuplicateMappingError(Exception):
    """Raised when a mapping insert hits the (text, user) unique index."""

    def __init__(self, table: str, text: str, user_id: str | None):
        self.table = table
        self.text = text
        self.user_id = user_id
        scope = f"user {user_id}" if user_id else "global scope"
        super().__init__(f"{table} already has a row for '{text}' in {scope}")


class NotFoundError(LookupError):
    """Raised when a row does not exist or is not visible to the caller."""

    def __init__(self, kind: str, key: str):
        self.kind = kind
        self.key = key
        super().__init__(f"{kind} '{key}' not found")


class Repository:
    def __init__(self, db_path: str = ":memory:"):
        self.db_path = db_path
        self._conn: sqlite3.Connection | None = None

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA foreign_keys = ON")
            self._conn.execute("PRAGMA journal_mode = WAL")
        return self._conn

    def close(self):
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    # ── Migrations ──────────────────────────────────────────

    def apply_migrations(self, migrations_dir: Path):
        """Apply all pending SQL migrations in order.

        Each migration runs in a transaction: if the SQL fails, the
        schema_version row is not inserted, allowing retry on next startup.
        """
        self.conn.execute(
            "CREATE TABLE IF NOT EXISTS schema_version ("
            "  version INTEGER PRIMARY KEY,"
            "  description TEXT,"
            "  applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP"
            ")"
        )
        self.conn.commit()

        row = self.conn.execute(
            "SELECT MAX(version) FROM schema_version"
        ).fetchone()
        current = row[0] or 0

        for sql_file in sorted(Path(migrations_dir).glob("*.sql")):
            version = int(sql_file.name.split("_")[0])
            if version > current:
                try:
                    self.conn.execute("BEGIN")
                    # executescript auto-commits, so we split statements manually
                    for statement in sql_file.read_text().split(";"):
                        statement = statement.strip()
                        if statement:
                            self.conn.execute(statement)
                    self.conn.execute(
                        "INSERT INTO schema_version (version, description) VALUES (?, ?)",
                        (version, sql_file.stem),
                    )
                    self.conn.commit()
                except Exception:
                    self.conn.rollback()
                    raise

    # ── Files ───────────────────────────────────────────────

    def insert_file(self, sf: StatementFile) -> StatementFile:
        """Insert a statement file record.

        Raises:
            DuplicateFileError: If the user already imported a file with the
                same hash, including a concurrent import of the same file.
        """
        try:
            self.conn.execute(
                "INSERT INTO files (id, user_id, file_name, file_hash, status,"
                " total_transactions, total_income, total_expenses,"
                " error_message, created_at, completed_at)"
                " VALUES (?,?,?,?,?,?,?,?,?,?,?)",
                (sf.id, sf.user_id, sf.file_name, sf.file_hash, sf.status,
                 sf.total_transactions, sf.total_income, sf.total_expenses,
                 sf.error_message, sf.created_at, sf.completed_at),
            )
            self.conn.commit()
            return sf
        except sqlite3.IntegrityError as e:
            self.conn.rollback()
            if sf.file_hash and "UNIQUE constraint failed" in str(e):
                existing = self.get_file_by_hash(sf.user_id, sf.file_hash)
                raise DuplicateFileError(
                    sf.file_hash, existing.id if existing else None
                ) from e
            raise

    def get_file(self, file_id: str, user_id: str) -> StatementFile | None:
        row = self.conn.execute(
            "SELECT * FROM files WHERE id = ? AND user_id = ?", (file_id, user_id)
        ).fetchone()
        return self._row_to_file(row) if row else None

    def get_file_by_hash(self, user_id: str, file_hash: str) -> StatementFile | None:
        row = self.conn.execute(
            "SELECT * FROM files WHERE user_id = ? AND file_hash = ?",
            (user_id, file_hash),
        ).fetchone()
        return self._row_to_file(row) if row else None

    _FILE_UPDATE_COLS = (
        "total_transactions", "total_income", "total_expenses",
        "error_message", "completed_at",
    )

    def update_file_status(self, file_id: str, status: str, **kwargs):
        unknown = set(kwargs) - set(self._FILE_UPDATE_COLS)
        if unknown:
            raise ValueError(f"Unknown columns for update_file_status: {unknown}")

        sets = ["status = ?"]
        vals: list = [status]
        for col in self._FILE_UPDATE_COLS:
            if col in kwargs:
                sets.append(f"{col} = ?")
                vals.append(kwargs[col])
        vals.append(file_id)
        self.conn.execute(f"UPDATE files SET {', '.join(sets)} WHERE id = ?", vals)
        self.conn.commit()

    # ── Raw transactions ────────────────────────────────────

    def insert_raw_transactions_batch(self, rows: list[RawTransactionRow]):
        """Insert extracted lines atomically."""
        try:
            self.conn.execute("BEGIN")
            self.conn.executemany(
                "INSERT INTO raw_transactions (id, file_id, user_id, date,"
                " description, reference_number, raw_text, amount, txn_type,"
                " original_currency, original_amount, fingerprint, created_at)"
                " VALUES (?,?,?,?,?,?,?,?,?,?,?,?,?)",
                [
                    (r.id, r.file_id, r.user_id, r.date, r.description,
                     r.reference_number, r.raw_text, r.amount, r.txn_type,
                     r.original_currency, r.original_amount, r.fingerprint,
                     r.created_at)
                    for r in rows
                ],
            )
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise

    def get_raw_transactions_by_file(self, file_id: str) -> list[RawTransactionRow]:
        rows = self.conn.execute(
            "SELECT * FROM raw_transactions WHERE file_id = ? ORDER BY rowid",
            (file_id,),
        ).fetchall()
        return [self._row_to_raw(r) for r in rows]

    def delete_unreferenced_raw_transactions(self, file_id: str) -> int:
        """Drop a file's raw rows that no transaction points at."""
        cur = self.conn.execute(
            "DELETE FROM raw_transactions WHERE file_id = ?"
            " AND id NOT IN (SELECT raw_transaction_id FROM transactions"
            " WHERE file_id = ? AND raw_transaction_id IS NOT NULL)",
            (file_id, file_id),
        )
        self.conn.commit()
        return cur.rowcount

    # ── Transactions ────────────────────────────────────────

    _TXN_COLS = (
        "id", "user_id", "file_id", "raw_transaction_id", "fingerprint",
        "vendor_name", "vendor_name_original", "vendor_key", "amount",
        "txn_type", "transaction_date", "category_id", "is_duplicate",
        "is_internal_transfer", "related_transaction_id",
        "categorization_source", "categorization_confidence",
        "vendor_confidence", "created_at", "updated_at",
    )

    @staticmethod
    def _txn_values(t: Transaction) -> tuple:
        return (
            t.id, t.user_id, t.file_id, t.raw_transaction_id, t.fingerprint,
            t.vendor_name, t.vendor_name_original, t.vendor_key, t.amount,
            t.txn_type, t.transaction_date, t.category_id, int(t.is_duplicate),
            int(t.is_internal_transfer), t.related_transaction_id,
            t.categorization_source, t.categorization_confidence,
            t.vendor_confidence, t.created_at, t.updated_at,
        )

    def insert_transaction(self, txn: Transaction) -> Transaction:
        self.insert_transactions_batch([txn])
        return txn

    def insert_transactions_batch(self, txns: list[Transaction]):
        """Insert multiple transactions atomically.

        Uses a transaction wrapper so either all inserts succeed or none do.
        """
        placeholders = ",".join("?" * len(self._TXN_COLS))
        try:
            self.conn.execute("BEGIN")
            self.conn.executemany(
                f"INSERT INTO transactions ({', '.join(self._TXN_COLS)})"
                f" VALUES ({placeholders})",
                [self._txn_values(t) for t in txns],
            )
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise

    def get_transaction(self, txn_id: str, user_id: str | None = None) -> Transaction | None:
        sql = "SELECT * FROM transactions WHERE id = ?"
        params: list = [txn_id]
        if user_id is not None:
            sql += " AND user_id = ?"
            params.append(user_id)
        row = self.conn.execute(sql, params).fetchone()
        return self._row_to_transaction(row) if row else None

    def get_transactions_by_file(self, file_id: str) -> list[Transaction]:
        rows = self.conn.execute(
            "SELECT * FROM transactions WHERE file_id = ?"
            " ORDER BY transaction_date, rowid",
            (file_id,),
        ).fetchall()
        return [self._row_to_transaction(r) for r in rows]

    def get_fingerprints(self, user_id: str, fingerprints: list[str]) -> set[str]:
        """Return the subset of fingerprints already persisted for the user."""
        found: set[str] = set()
        for i in range(0, len(fingerprints), _IN_CHUNK):
            chunk = fingerprints[i : i + _IN_CHUNK]
            ph = ",".join("?" * len(chunk))
            rows = self.conn.execute(
                f"SELECT fingerprint FROM transactions"
                f" WHERE user_id = ? AND fingerprint IN ({ph})",
                [user_id, *chunk],
            ).fetchall()
            found.update(r["fingerprint"] for r in rows)
        return found

    def get_unlinked_transactions(self, user_id: str) -> list[Transaction]:
        """All of the user's transactions not yet part of a transfer pair."""
        rows = self.conn.execute(
            "SELECT * FROM transactions"
            " WHERE user_id = ? AND is_internal_transfer = 0"
            " ORDER BY transaction_date, rowid",
            (user_id,),
        ).fetchall()
        return [self._row_to_transaction(r) for r in rows]

    def link_transfer(self, first_id: str, second_id: str):
        """Mark two transactions as the two legs of one internal transfer."""
        try:
            self.conn.execute("BEGIN")
            for txn_id, partner in ((first_id, second_id), (second_id, first_id)):
                self.conn.execute(
                    "UPDATE transactions SET is_internal_transfer = 1,"
                    " related_transaction_id = ?, updated_at = CURRENT_TIMESTAMP"
                    " WHERE id = ?",
                    (partner, txn_id),
                )
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise

    def unlink_transfer(self, txn_id: str):
        self.conn.execute(
            "UPDATE transactions SET is_internal_transfer = 0,"
            " related_transaction_id = NULL, updated_at = CURRENT_TIMESTAMP"
            " WHERE id = ?",
            (txn_id,),
        )
        self.conn.commit()

    def update_transaction_vendor(
        self, txn_id: str, vendor_name: str, vendor_key: str, confidence: float
    ):
        self.conn.execute(
            "UPDATE transactions SET vendor_name = ?, vendor_key = ?,"
            " vendor_confidence = ?, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
            (vendor_name, vendor_key, confidence, txn_id),
        )
        self.conn.commit()

    def update_transaction_category(
        self, txn_id: str, category_id: str, source: str, confidence: float
    ):
        self.conn.execute(
            "UPDATE transactions SET category_id = ?, categorization_source = ?,"
            " categorization_confidence = ?, updated_at = CURRENT_TIMESTAMP"
            " WHERE id = ?",
            (category_id, source, confidence, txn_id),
        )
        self.conn.commit()

    def count_transactions_for_category(self, category_id: str) -> int:
        row = self.conn.execute(
            "SELECT COUNT(*) FROM transactions WHERE category_id = ?", (category_id,)
        ).fetchone()
        return row[0]

    # ── Historical Queries ────────────────────────────────────

    def get_historical_category_counts(
        self, user_id: str, vendor_key: str, exclude_txn_id: str | None = None
    ) -> list[dict]:
        """Category assignment counts for the user's past transactions of a vendor.

        Returns a list of dicts with keys: category_id, amount, cnt, user_cnt.
        """
        rows = self.conn.execute(
            "SELECT category_id, amount,"
            "  COUNT(*) AS cnt,"
            "  SUM(CASE WHEN categorization_source = 'user' THEN 1 ELSE 0 END) AS user_cnt"
            " FROM transactions"
            " WHERE user_id = ? AND vendor_key = ?"
            "   AND category_id IS NOT NULL AND id != ?"
            " GROUP BY category_id, amount",
            (user_id, vendor_key, exclude_txn_id or ""),
        ).fetchall()
        return [
            {
                "category_id": r["category_id"],
                "amount": r["amount"],
                "cnt": r["cnt"],
                "user_cnt": r["user_cnt"],
            }
            for r in rows
        ]

    # ── Vendor / category mappings ─────────────────────────
    #
    # Both tables share one shape: (text column, mapped value column,
    # confidence, source, user_id) with a unique natural key on
    # (text, COALESCE(user_id, '')).

    _MAPPING_TABLES = {
        "vendor_mappings": ("original_text", "mapped_name"),
        "category_mappings": ("vendor_text", "category_id"),
    }

    def _insert_mapping(self, table: str, text: str, value: str, m) -> None:
        text_col, value_col = self._MAPPING_TABLES[table]
        try:
            self.conn.execute(
                f"INSERT INTO {table} (id, {text_col}, {value_col}, confidence,"
                " source, user_id, created_at, updated_at)"
                " VALUES (?,?,?,?,?,?,?,?)",
                (m.id, text, value, m.confidence, m.source, m.user_id,
                 m.created_at, m.updated_at),
            )
            self.conn.commit()
        except sqlite3.IntegrityError as e:
            self.conn.rollback()
            if "UNIQUE constraint failed" in str(e):
                raise DuplicateMappingError(table, text, m.user_id) from e
            raise

    def _get_mapping_rows(self, table: str, where: str, params: tuple) -> list[sqlite3.Row]:
        return self.conn.execute(
            f"SELECT * FROM {table} WHERE {where}", params
        ).fetchall()

    def _update_mapping(
        self, table: str, mapping_id: str, value: str, confidence: float,
        source: str, updated_at: str,
    ):
        _, value_col = self._MAPPING_TABLES[table]
        self.conn.execute(
            f"UPDATE {table} SET {value_col} = ?, confidence = ?, source = ?,"
            " updated_at = ? WHERE id = ?",
            (value, confidence, source, updated_at, mapping_id),
        )
        self.conn.commit()

    def _delete_mapping(self, table: str, mapping_id: str) -> bool:
        cur = self.conn.execute(f"DELETE FROM {table} WHERE id = ?", (mapping_id,))
        self.conn.commit()
        return cur.rowcount > 0

    def _delete_stale_global(self, table: str, floor: float, cutoff: str) -> int:
        cur = self.conn.execute(
            f"DELETE FROM {table}"
            " WHERE user_id IS NULL AND confidence < ? AND created_at < ?",
            (floor, cutoff),
        )
        self.conn.commit()
        return cur.rowcount

    def _mapping_stats(self, table: str, user_id: str | None) -> dict:
        row = self.conn.execute(
            f"SELECT COUNT(*) AS total,"
            "  SUM(CASE WHEN user_id IS NULL THEN 1 ELSE 0 END) AS global_count,"
            "  SUM(CASE WHEN user_id = ? THEN 1 ELSE 0 END) AS user_count,"
            "  AVG(confidence) AS avg_confidence"
            f" FROM {table} WHERE user_id IS NULL OR user_id = ?",
            (user_id, user_id),
        ).fetchone()
        sources = self.conn.execute(
            f"SELECT source, COUNT(*) AS cnt FROM {table}"
            " WHERE user_id IS NULL OR user_id = ? GROUP BY source",
            (user_id,),
        ).fetchall()
        return {
            "total": row["total"],
            "global": row["global_count"] or 0,
            "user": row["user_count"] or 0,
            "avg_confidence": round(row["avg_confidence"] or 0.0, 4),
            "by_source": {r["source"]: r["cnt"] for r in sources},
        }

    # vendor_mappings

    def insert_vendor_mapping(self, m: VendorMapping) -> VendorMapping:
        self._insert_mapping("vendor_mappings", m.original_text, m.mapped_name, m)
        return m

    def get_vendor_mapping(self, mapping_id: str) -> VendorMapping | None:
        rows = self._get_mapping_rows("vendor_mappings", "id = ?", (mapping_id,))
        return self._row_to_vendor_mapping(rows[0]) if rows else None

    def get_vendor_mapping_by_key(
        self, original_text: str, user_id: str | None
    ) -> VendorMapping | None:
        rows = self._get_mapping_rows(
            "vendor_mappings",
            "original_text = ? AND COALESCE(user_id, '') = ?",
            (original_text, user_id or ""),
        )
        return self._row_to_vendor_mapping(rows[0]) if rows else None

    def get_vendor_mappings_for_text(self, original_text: str) -> list[VendorMapping]:
        """Every scope's mapping for the text, highest confidence first."""
        rows = self._get_mapping_rows(
            "vendor_mappings",
            "original_text = ? ORDER BY confidence DESC, updated_at DESC",
            (original_text,),
        )
        return [self._row_to_vendor_mapping(r) for r in rows]

    def list_vendor_mappings(
        self, user_id: str, include_global: bool = False
    ) -> list[VendorMapping]:
        where = "user_id = ?"
        if include_global:
            where = "(user_id = ? OR user_id IS NULL)"
        rows = self._get_mapping_rows(
            "vendor_mappings",
            f"{where} ORDER BY original_text, confidence DESC",
            (user_id,),
        )
        return [self._row_to_vendor_mapping(r) for r in rows]

    def update_vendor_mapping(self, m: VendorMapping):
        self._update_mapping(
            "vendor_mappings", m.id, m.mapped_name, m.confidence, m.source, m.updated_at
        )

    def delete_vendor_mapping(self, mapping_id: str) -> bool:
        return self._delete_mapping("vendor_mappings", mapping_id)

    def delete_stale_vendor_mappings(self, floor: float, cutoff: str) -> int:
        return self._delete_stale_global("vendor_mappings", floor, cutoff)

    def vendor_mapping_stats(self, user_id: str | None = None) -> dict:
        return self._mapping_stats("vendor_mappings", user_id)

    # category_mappings

    def insert_category_mapping(self, m: CategoryMapping) -> CategoryMapping:
        self._insert_mapping("category_mappings", m.vendor_text, m.category_id, m)
        return m

    def get_category_mapping_by_key(
        self, vendor_text: str, user_id: str | None
    ) -> CategoryMapping | None:
        rows = self._get_mapping_rows(
            "category_mappings",
            "vendor_text = ? AND COALESCE(user_id, '') = ?",
            (vendor_text, user_id or ""),
        )
        return self._row_to_category_mapping(rows[0]) if rows else None

    def get_category_mappings_for_text(self, vendor_text: str) -> list[CategoryMapping]:
        rows = self._get_mapping_rows(
            "category_mappings",
            "vendor_text = ? ORDER BY confidence DESC, updated_at DESC",
            (vendor_text,),
        )
        return [self._row_to_category_mapping(r) for r in rows]

    def update_category_mapping(self, m: CategoryMapping):
        self._update_mapping(
            "category_mappings", m.id, m.category_id, m.confidence, m.source, m.updated_at
        )

    def delete_stale_category_mappings(self, floor: float, cutoff: str) -> int:
        return self._delete_stale_global("category_mappings", floor, cutoff)

    def category_mapping_stats(self, user_id: str | None = None) -> dict:
        return self._mapping_stats("category_mappings", user_id)

    # ── Categories ──────────────────────────────────────────

    def insert_category(self, cat: Category) -> Category:
        try:
            self.conn.execute(
                "INSERT INTO categories (id, name, parent_id, user_id, is_system,"
                " description, created_at) VALUES (?,?,?,?,?,?,?)",
                (cat.id, cat.name, cat.parent_id, cat.user_id, int(cat.is_system),
                 cat.description, cat.created_at),
            )
            self.conn.commit()
        except sqlite3.IntegrityError:
            self.conn.rollback()
            raise
        return cat

    def get_category(self, category_id: str, user_id: str | None = None) -> Category | None:
        """A category visible to the user: a system row or one the user owns."""
        row = self.conn.execute(
            "SELECT * FROM categories WHERE id = ?"
            " AND (user_id IS NULL OR user_id = ?)",
            (category_id, user_id),
        ).fetchone()
        return self._row_to_category(row) if row else None

    def get_category_by_name(self, name: str, user_id: str | None = None) -> Category | None:
        """Case-insensitive lookup preferring the user's own category."""
        row = self.conn.execute(
            "SELECT * FROM categories"
            " WHERE LOWER(name) = LOWER(?) AND (user_id IS NULL OR user_id = ?)"
            " ORDER BY CASE WHEN user_id IS NULL THEN 1 ELSE 0 END, parent_id IS NOT NULL"
            " LIMIT 1",
            (name, user_id),
        ).fetchone()
        return self._row_to_category(row) if row else None

    def list_categories(self, user_id: str | None = None) -> list[Category]:
        rows = self.conn.execute(
            "SELECT * FROM categories WHERE user_id IS NULL OR user_id = ?"
            " ORDER BY is_system DESC, name",
            (user_id,),
        ).fetchall()
        return [self._row_to_category(r) for r in rows]

    def count_child_categories(self, category_id: str) -> int:
        row = self.conn.execute(
            "SELECT COUNT(*) FROM categories WHERE parent_id = ?", (category_id,)
        ).fetchone()
        return row[0]

    def update_category_parent(self, category_id: str, parent_id: str | None):
        self.conn.execute(
            "UPDATE categories SET parent_id = ? WHERE id = ?", (parent_id, category_id)
        )
        self.conn.commit()

    def delete_category(self, category_id: str):
        """Delete a category together with the learned mappings pointing at it."""
        try:
            self.conn.execute("BEGIN")
            self.conn.execute(
                "DELETE FROM category_mappings WHERE category_id = ?", (category_id,)
            )
            self.conn.execute("DELETE FROM categories WHERE id = ?", (category_id,))
            self.conn.commit()
        except Exception:
            self.conn.rollback()
            raise

    # ── Row Converters ──────────────────────────────────────

    @staticmethod
    def _row_to_file(row: sqlite3.Row) -> StatementFile:
        return StatementFile(
            id=row["id"], user_id=row["user_id"], file_name=row["file_name"],
            file_hash=row["file_hash"], status=row["status"],
            total_transactions=row["total_transactions"],
            total_income=row["total_income"],
            total_expenses=row["total_expenses"],
            error_message=row["error_message"],
            created_at=row["created_at"], completed_at=row["completed_at"],
        )

    @staticmethod
    def _row_to_raw(row: sqlite3.Row) -> RawTransactionRow:
        return RawTransactionRow(
            id=row["id"], file_id=row["file_id"], user_id=row["user_id"],
            date=row["date"], description=row["description"],
            reference_number=row["reference_number"], raw_text=row["raw_text"],
            amount=row["amount"], txn_type=row["txn_type"],
            original_currency=row["original_currency"],
            original_amount=row["original_amount"],
            fingerprint=row["fingerprint"], created_at=row["created_at"],
        )

    @staticmethod
    def _row_to_transaction(row: sqlite3.Row) -> Transaction:
        return Transaction(
            id=row["id"], user_id=row["user_id"], file_id=row["file_id"],
            raw_transaction_id=row["raw_transaction_id"],
            fingerprint=row["fingerprint"], vendor_name=row["vendor_name"],
            vendor_name_original=row["vendor_name_original"],
            vendor_key=row["vendor_key"], amount=row["amount"],
            txn_type=row["txn_type"], transaction_date=row["transaction_date"],
            category_id=row["category_id"],
            is_duplicate=bool(row["is_duplicate"]),
            is_internal_transfer=bool(row["is_internal_transfer"]),
            related_transaction_id=row["related_transaction_id"],
            categorization_source=row["categorization_source"],
            categorization_confidence=row["categorization_confidence"],
            vendor_confidence=row["vendor_confidence"],
            created_at=row["created_at"], updated_at=row["updated_at"],
        )

    @staticmethod
    def _row_to_vendor_mapping(row: sqlite3.Row) -> VendorMapping:
        return VendorMapping(
            id=row["id"], original_text=row["original_text"],
            mapped_name=row["mapped_name"], confidence=row["confidence"],
            source=row["source"], user_id=row["user_id"],
            created_at=row["created_at"], updated_at=row["updated_at"],
        )

    @staticmethod
    def _row_to_category_mapping(row: sqlite3.Row) -> CategoryMapping:
        return CategoryMapping(
            id=row["id"], vendor_text=row["vendor_text"],
            category_id=row["category_id"], confidence=row["confidence"],
            source=row["source"], user_id=row["user_id"],
            created_at=row["created_at"], updated_at=row["updated_at"],
        )

    @staticmethod
    def _row_to_category(row: sqlite3.Row) -> Category:
        return Category(
            id=row["id"], name=row["name"], parent_id=row["parent_id"],
            user_id=row["user_id"], is_system=bool(row["is_system"]),
            description=row["description"], created_at=row["created_at"],
        )
