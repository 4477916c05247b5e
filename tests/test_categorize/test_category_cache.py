"""Tests for learned vendor → category mappings."""

import pytest

from spendlens.categorize.category_cache import CategoryMappingCache
from spendlens.database.models import CategoryMapping


@pytest.fixture
def cache(repo):
    return CategoryMappingCache(repo)


class TestLookup:
    def test_user_mapping(self, cache, repo):
        repo.insert_category_mapping(CategoryMapping("swiggy", "other", 0.95, "user", user_id="u1"))
        assert cache.get_user_mapping("SWIGGY", "u1").category_id == "other"
        assert cache.get_user_mapping("SWIGGY", "u2") is None

    def test_global_mapping(self, cache, repo):
        repo.insert_category_mapping(CategoryMapping("swiggy", "food-dining", 0.95, "dictionary"))
        assert cache.get_global_mapping("Swiggy").category_id == "food-dining"

    def test_best_prefers_own(self, cache, repo):
        repo.insert_category_mapping(CategoryMapping("swiggy", "food-dining", 0.95, "dictionary"))
        repo.insert_category_mapping(CategoryMapping("swiggy", "other", 0.5, "user", user_id="u1"))
        assert cache.get_best_mapping("swiggy", "u1").category_id == "other"
        assert cache.get_best_mapping("swiggy", "u2").category_id == "food-dining"


class TestCacheMapping:
    def test_global_only_for_non_user_sources(self, cache):
        m = cache.cache_mapping("Swiggy", "food-dining", 0.95, "dictionary", user_id="u1")
        assert m.is_global
        assert m.vendor_text == "swiggy"

    def test_replace_needs_delta(self, cache, repo):
        cache.cache_mapping("x", "shopping", 0.8, "pattern")
        cache.cache_mapping("x", "other", 0.85, "external")
        assert repo.get_category_mapping_by_key("x", None).category_id == "shopping"
        cache.cache_mapping("x", "other", 0.95, "dictionary")
        assert repo.get_category_mapping_by_key("x", None).category_id == "other"


class TestLearnFromUserCorrection:
    def test_personal_row_and_overwrite(self, cache, repo):
        cache.learn_from_user_correction("Swiggy", "food-dining", "u1")
        cache.learn_from_user_correction("Swiggy", "other", "u1")
        m = repo.get_category_mapping_by_key("swiggy", "u1")
        assert m.category_id == "other"
        assert m.confidence == 0.95
        assert len(repo.get_category_mappings_for_text("swiggy")) == 1

    def test_consensus_promotes_global(self, cache, repo):
        cache.learn_from_user_correction("Lifestyle", "shopping", "u1")
        cache.learn_from_user_correction("Lifestyle", "shopping", "u2")
        assert repo.get_category_mapping_by_key("lifestyle", None) is None
        promoted = cache.learn_from_user_correction("Lifestyle", "shopping", "u3")
        assert promoted.category_id == "shopping"
        assert promoted.source == "learned-consensus"
        assert promoted.confidence == 0.85

    def test_consensus_overrides_existing_global(self, cache, repo):
        cache.cache_mapping("Lifestyle", "other", 0.8, "external")
        for user in ("u1", "u2", "u3"):
            cache.learn_from_user_correction("Lifestyle", "shopping", user)
        glob = repo.get_category_mapping_by_key("lifestyle", None)
        assert glob.category_id == "shopping"
        assert glob.source == "learned-consensus"
        assert glob.confidence == 0.85

    def test_empty_vendor_ignored(self, cache):
        assert cache.learn_from_user_correction("  ", "shopping", "u1") is None
