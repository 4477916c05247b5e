"""Tests for the dedup tiers."""

from spendlens.database.dedup import DedupEngine, detect_duplicates
from spendlens.database.models import StatementFile, Transaction
from spendlens.parsers.base import RawTransaction, fingerprint_transaction


def _item(description="Swiggy", amount="250", date="2024-01-15", user_id="u1"):
    raw = RawTransaction(date=date, description=description, amount=amount, txn_type="DEBIT")
    return fingerprint_transaction(raw, user_id)


class TestDetectDuplicates:
    def test_all_unique(self):
        items = [_item("Swiggy"), _item("Zomato")]
        result = detect_duplicates(items)
        assert result.unique == items
        assert result.duplicates == []

    def test_existing_fingerprint(self):
        a, b = _item("Swiggy"), _item("Zomato")
        result = detect_duplicates([a, b], existing_fingerprints={a.fingerprint})
        assert result.unique == [b]
        assert result.duplicates[0].item is a
        assert result.duplicates[0].reason == "existing"

    def test_repeat_within_batch_keeps_first(self):
        first, again = _item(amount="10"), _item(amount="10.00")
        result = detect_duplicates([first, again])
        assert result.unique == [first]
        assert result.duplicates[0].item is again
        assert result.duplicates[0].reason == "batch"
        assert result.duplicates[0].duplicate_of == first.fingerprint

    def test_idempotent(self):
        items = [_item("Swiggy"), _item("Zomato"), _item("Swiggy"), _item("Amazon")]
        existing = {items[3].fingerprint}
        once = detect_duplicates(items, existing)
        twice = detect_duplicates(items, existing)
        assert once.unique == twice.unique
        assert [d.item for d in once.duplicates] == [d.item for d in twice.duplicates]

    def test_preserves_input_order(self):
        items = [_item(str(i)) for i in range(5)]
        assert detect_duplicates(items).unique == items


class TestDedupEngine:
    def test_file_duplicate_is_per_user(self, repo):
        repo.insert_file(StatementFile(user_id="u1", file_name="a.json", file_hash="h1"))
        engine = DedupEngine(repo)
        assert engine.check_file_duplicate("u1", "h1") is True
        assert engine.check_file_duplicate("u2", "h1") is False

    def test_split_against_persisted(self, repo):
        stored = _item("Swiggy")
        repo.insert_transaction(Transaction(
            user_id="u1", fingerprint=stored.fingerprint, vendor_name="Swiggy",
            vendor_name_original="Swiggy", vendor_key="swiggy", amount=250.0,
            txn_type="DEBIT", transaction_date="2024-01-15",
        ))
        fresh = _item("Zomato")
        result = DedupEngine(repo).split("u1", [_item("Swiggy"), fresh])
        assert result.unique == [fresh]
        assert len(result.duplicates) == 1

    def test_split_ignores_other_users(self, repo):
        result = DedupEngine(repo).split("u2", [_item("Swiggy", user_id="u2")])
        assert len(result.unique) == 1
