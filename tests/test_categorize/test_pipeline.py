"""Tests for bulk resolution, pacing and user corrections."""

from unittest.mock import MagicMock

import pytest

from spendlens.categorize.category_cache import CategoryMappingCache
from spendlens.categorize.category_resolver import NOT_FOUND, CategoryResolver
from spendlens.categorize.pattern_rules import rules_from_config
from spendlens.categorize.pipeline import BulkResolver, Pacer
from spendlens.categorize.vendor_cache import ValidationError, VendorMappingCache
from spendlens.categorize.vendor_dictionary import VendorDictionary
from spendlens.categorize.vendor_resolver import VendorResolver
from spendlens.database.models import Transaction
from spendlens.database.repository import NotFoundError


@pytest.fixture
def bulk(repo, config):
    dictionary = VendorDictionary.from_config(config)
    return BulkResolver(
        repo,
        VendorResolver(VendorMappingCache(repo), dictionary),
        CategoryResolver(
            repo, CategoryMappingCache(repo), dictionary,
            config.category_hints, rules_from_config(config),
        ),
        pacer=Pacer(0),
        max_category_ids=config.bulk_limits["categories"],
        max_vendor_ids=config.bulk_limits["vendors"],
    )


def _txn(repo, vendor, amount=450.0, user_id="u1", original=None, **kw) -> Transaction:
    txn = Transaction(
        user_id=user_id,
        fingerprint=f"fp-{vendor}-{amount}-{user_id}",
        vendor_name=vendor,
        vendor_name_original=original or vendor,
        vendor_key=vendor.lower(),
        amount=amount,
        txn_type="DEBIT",
        transaction_date="2024-01-15",
        **kw,
    )
    return repo.insert_transaction(txn)


# ── Pacing ────────────────────────────────────────────────


class TestPacer:
    def test_first_call_does_not_sleep(self):
        sleep = MagicMock()
        Pacer(0.1, clock=lambda: 5.0, sleep=sleep).wait()
        sleep.assert_not_called()

    def test_spaces_out_calls(self):
        clock = iter([0.0, 0.03, 0.1, 0.5])
        sleep = MagicMock()
        pacer = Pacer(0.1, clock=lambda: next(clock), sleep=sleep)
        pacer.wait()
        pacer.wait()
        pacer.wait()
        assert sleep.call_count == 1
        assert sleep.call_args[0][0] == pytest.approx(0.07)

    def test_zero_delay(self):
        sleep = MagicMock()
        pacer = Pacer(0, clock=lambda: 1.0, sleep=sleep)
        pacer.wait()
        pacer.wait()
        sleep.assert_not_called()


# ── Bulk categories ───────────────────────────────────────


class TestResolveCategories:
    def test_missing_transaction_does_not_abort(self, bulk):
        a = _txn(bulk.repo, "Zomato")
        b = _txn(bulk.repo, "Phoenix Mall", 750.0)
        out = bulk.resolve_categories("u1", [a.id, "missing", b.id])

        assert [r.transaction_id for r in out.results] == [a.id, "missing", b.id]
        assert [r.success for r in out.results] == [True, False, True]
        assert out.results[1].error.code == NOT_FOUND
        assert out.stats["total"] == 3
        assert out.stats["categorized"] == 2
        assert out.stats["failed"] == 1

    def test_preview_does_not_write(self, bulk):
        a = _txn(bulk.repo, "Zomato")
        out = bulk.resolve_categories("u1", [a.id])
        assert out.results[0].category.category_name == "Food & Dining"
        assert not out.results[0].applied
        assert bulk.repo.get_transaction(a.id).category_id is None

    def test_auto_apply_respects_threshold(self, bulk):
        mall = _txn(bulk.repo, "Phoenix Mall", 750.0)
        atm = _txn(bulk.repo, "ATM Withdrawal", 2000.0)
        out = bulk.resolve_categories("u1", [mall.id, atm.id], auto_apply=True)

        assert out.stats["applied"] == 1
        assert out.stats["high_confidence"] == 1
        stored = bulk.repo.get_transaction(mall.id)
        assert stored.category_id == "shopping"
        assert stored.categorization_source == "pattern"
        assert stored.categorization_confidence == 0.8
        assert bulk.repo.get_transaction(atm.id).category_id is None

    def test_other_users_transaction_is_not_found(self, bulk):
        theirs = _txn(bulk.repo, "Zomato", user_id="u2")
        out = bulk.resolve_categories("u1", [theirs.id])
        assert out.results[0].error.code == NOT_FOUND

    def test_unresolved_counts(self, bulk):
        t = _txn(bulk.repo, "Mystery Vendor", 100.0)
        out = bulk.resolve_categories("u1", [t.id])
        assert out.results[0].success
        assert out.results[0].category is None
        assert out.stats["unresolved"] == 1

    def test_size_bounds(self, bulk):
        with pytest.raises(ValidationError):
            bulk.resolve_categories("u1", [])
        with pytest.raises(ValidationError):
            bulk.resolve_categories("u1", [f"t{i}" for i in range(6)])

    def test_duplicate_ids_collapse(self, bulk):
        a = _txn(bulk.repo, "Zomato")
        out = bulk.resolve_categories("u1", [a.id, a.id])
        assert out.stats["total"] == 1

    def test_paces_every_item(self, bulk):
        bulk.pacer = MagicMock()
        a = _txn(bulk.repo, "Zomato")
        bulk.resolve_categories("u1", [a.id, "missing"])
        assert bulk.pacer.wait.call_count == 2

    def test_to_dict(self, bulk):
        a = _txn(bulk.repo, "Zomato")
        data = bulk.resolve_categories("u1", [a.id]).to_dict()
        assert data["results"][0]["category"]["category_id"] == "food-dining"
        assert data["stats"]["categorized"] == 1


# ── Bulk vendors ──────────────────────────────────────────


class TestResolveVendors:
    def test_resolve_and_apply(self, bulk):
        t = _txn(bulk.repo, "ZOMATO ORDER 88812")
        out = bulk.resolve_vendors("u1", [t.id], auto_apply=True)
        assert out.results[0].vendor.resolved_name == "Zomato"
        assert out.results[0].applied
        stored = bulk.repo.get_transaction(t.id)
        assert stored.vendor_name == "Zomato"
        assert stored.vendor_key == "zomato"
        assert stored.vendor_confidence == 0.95
        assert stored.vendor_name_original == "ZOMATO ORDER 88812"

    def test_second_pass_is_cached(self, bulk):
        t = _txn(bulk.repo, "ZOMATO ORDER 88812")
        bulk.resolve_vendors("u1", [t.id])
        out = bulk.resolve_vendors("u1", [t.id])
        assert out.stats["cached"] == 1

    def test_fallback_not_applied(self, bulk):
        t = _txn(bulk.repo, "QWERTY SHOP 123456")
        out = bulk.resolve_vendors("u1", [t.id], auto_apply=True)
        assert out.results[0].vendor.source == "fallback"
        assert not out.results[0].applied
        assert out.stats["high_confidence"] == 0

    def test_resolver_error_is_per_item(self, bulk):
        a = _txn(bulk.repo, "Zomato")
        b = _txn(bulk.repo, "Swiggy")
        real = bulk.vendor_resolver.resolve
        bulk.vendor_resolver.resolve = MagicMock(
            side_effect=[RuntimeError("boom"), real("Swiggy", "u1")]
        )
        out = bulk.resolve_vendors("u1", [a.id, b.id])
        assert out.results[0].error.code == "VENDOR_RESOLUTION_FAILED"
        assert out.results[1].success
        assert out.stats["failed"] == 1
        assert out.stats["resolved"] == 1

    def test_size_bounds(self, bulk):
        with pytest.raises(ValidationError):
            bulk.resolve_vendors("u1", [f"t{i}" for i in range(6)])


# ── Corrections ───────────────────────────────────────────


class TestCorrections:
    def test_correct_vendor(self, bulk):
        t = _txn(bulk.repo, "XYZPAY*4432", original="XYZPAY*4432")
        bulk.correct_vendor("u1", t.id, "Zomato")
        stored = bulk.repo.get_transaction(t.id)
        assert stored.vendor_name == "Zomato"
        assert stored.vendor_confidence == 1.0
        mapping = bulk.repo.get_vendor_mapping_by_key("xyzpay 4432", "u1")
        assert mapping.mapped_name == "Zomato"

    def test_correct_vendor_missing(self, bulk):
        with pytest.raises(NotFoundError):
            bulk.correct_vendor("u1", "missing", "Zomato")

    def test_correct_vendor_empty_name(self, bulk):
        t = _txn(bulk.repo, "XYZPAY")
        with pytest.raises(ValidationError):
            bulk.correct_vendor("u1", t.id, "  ")

    def test_correct_category(self, bulk):
        t = _txn(bulk.repo, "Zomato")
        bulk.correct_category("u1", t.id, "entertainment")
        stored = bulk.repo.get_transaction(t.id)
        assert stored.category_id == "entertainment"
        assert stored.categorization_source == "user"
        assert stored.categorization_confidence == 1.0
        assert bulk.repo.get_category_mapping_by_key("zomato", "u1").category_id == "entertainment"

    def test_correct_category_unknown_category(self, bulk):
        t = _txn(bulk.repo, "Zomato")
        with pytest.raises(NotFoundError):
            bulk.correct_category("u1", t.id, "nope")
        assert bulk.repo.get_transaction(t.id).category_id is None
