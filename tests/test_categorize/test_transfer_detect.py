"""Tests for internal transfer detection."""

from spendlens.categorize.transfer_detect import (
    TransferCandidate,
    detect_internal_transfers,
    has_transfer_keyword,
    is_transfer_pair,
    link_map,
)


def _c(key, date, amount, txn_type, description):
    return TransferCandidate(key, date, amount, txn_type, description)


class TestIsTransferPair:
    def test_card_payment_pair(self):
        a = _c("a", "2024-01-15", 5000.0, "DEBIT", "CREDIT CARD PAYMENT")
        b = _c("b", "2024-01-16", 5000.0, "CREDIT", "PAYMENT RECEIVED")
        assert is_transfer_pair(a, b)

    def test_same_direction_rejected(self):
        a = _c("a", "2024-01-15", 5000.0, "DEBIT", "transfer")
        b = _c("b", "2024-01-15", 5000.0, "DEBIT", "transfer")
        assert not is_transfer_pair(a, b)

    def test_amount_tolerance(self):
        a = _c("a", "2024-01-15", 100.0, "DEBIT", "transfer")
        assert is_transfer_pair(a, _c("b", "2024-01-15", 100.005, "CREDIT", "x"))
        assert not is_transfer_pair(a, _c("b", "2024-01-15", 100.02, "CREDIT", "x"))

    def test_window_is_inclusive(self):
        a = _c("a", "2024-01-15", 10.0, "DEBIT", "autopay")
        assert is_transfer_pair(a, _c("b", "2024-01-18", 10.0, "CREDIT", "x"))
        assert not is_transfer_pair(a, _c("b", "2024-01-19", 10.0, "CREDIT", "x"))

    def test_needs_keyword_on_either_side(self):
        a = _c("a", "2024-01-15", 10.0, "DEBIT", "Amazon purchase")
        b = _c("b", "2024-01-15", 10.0, "CREDIT", "Refund")
        assert not is_transfer_pair(a, b)

    def test_keyword_match_case_insensitive(self):
        assert has_transfer_keyword("NEFT Internal Transfer", ["internal transfer"])


class TestDetectInternalTransfers:
    def test_pair_linked_and_purchase_left_alone(self):
        candidates = [
            _c("debit", "2024-01-15", 5000.0, "DEBIT", "CREDIT CARD PAYMENT"),
            _c("amazon", "2024-01-15", 1000.0, "DEBIT", "Amazon purchase"),
            _c("credit", "2024-01-16", 5000.0, "CREDIT", "PAYMENT RECEIVED"),
        ]
        links = detect_internal_transfers(candidates)
        assert len(links) == 1
        partners = link_map(links)
        assert partners == {"debit": "credit", "credit": "debit"}
        assert "amazon" not in partners

    def test_each_candidate_linked_once(self):
        candidates = [
            _c("d1", "2024-01-15", 100.0, "DEBIT", "transfer"),
            _c("c1", "2024-01-15", 100.0, "CREDIT", "transfer"),
            _c("c2", "2024-01-15", 100.0, "CREDIT", "transfer"),
        ]
        links = detect_internal_transfers(candidates)
        assert len(links) == 1
        assert (links[0].first_key, links[0].second_key) == ("d1", "c1")

    def test_symmetric_and_exclusive(self):
        candidates = [
            _c(str(i), "2024-01-15", 100.0, "DEBIT" if i % 2 else "CREDIT", "transfer")
            for i in range(6)
        ]
        partners = link_map(detect_internal_transfers(candidates))
        for key, partner in partners.items():
            assert partners[partner] == key
        assert len(partners) == 6

    def test_custom_keywords(self):
        candidates = [
            _c("a", "2024-01-15", 10.0, "DEBIT", "SWEEP OUT"),
            _c("b", "2024-01-15", 10.0, "CREDIT", "SWEEP IN"),
        ]
        assert detect_internal_transfers(candidates) == []
        assert len(detect_internal_transfers(candidates, keywords=["Sweep"])) == 1
