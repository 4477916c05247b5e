"""Tests for spendlens.config — YAML configuration loader."""

from pathlib import Path

import pytest

from spendlens.config import DEFAULT_TRANSFER_KEYWORDS, Config
from tests.conftest import FIXTURE_CONFIG_DIR

REPO_CONFIG_DIR = Path(__file__).parent.parent / "config"


def _write(tmp_path, settings=None, vendors="vendors: []\n", rules="pattern_rules: []\n"):
    if settings is not None:
        (tmp_path / "settings.yaml").write_text(settings)
    (tmp_path / "vendors.yaml").write_text(vendors)
    (tmp_path / "rules.yaml").write_text(rules)
    return Config(tmp_path)


class TestConfigInit:
    def test_loads_from_config_dir(self):
        config = Config(FIXTURE_CONFIG_DIR)
        assert config.config_dir == FIXTURE_CONFIG_DIR

    def test_raises_on_missing_directory(self):
        with pytest.raises(FileNotFoundError, match="Config directory not found"):
            Config("/nonexistent/path")

    def test_raises_on_file_not_directory(self, tmp_path):
        f = tmp_path / "not_a_dir.yaml"
        f.write_text("test: true")
        with pytest.raises(FileNotFoundError, match="Config directory not found"):
            Config(f)


class TestFixtureConfig:
    def test_vendors(self):
        vendors = Config(FIXTURE_CONFIG_DIR).vendors
        assert [v["brand"] for v in vendors] == ["Swiggy", "Zomato", "Amazon", "DMart", "Nykaa"]

    def test_vendors_cached_after_first_load(self):
        config = Config(FIXTURE_CONFIG_DIR)
        assert config._vendors is None
        assert config.vendors is config.vendors

    def test_category_hints_lowercased(self):
        hints = Config(FIXTURE_CONFIG_DIR).category_hints
        assert hints["e-commerce:beauty"] == "Personal Care"
        assert hints["food delivery"] == "Food & Dining"

    def test_pattern_rules(self):
        rules = Config(FIXTURE_CONFIG_DIR).pattern_rules
        assert len(rules) == 4
        assert rules[2]["min_amount"] == 500.01

    def test_settings(self):
        config = Config(FIXTURE_CONFIG_DIR)
        assert config.insert_batch_size == 2
        assert config.pacing_delay == 0
        assert config.bulk_limits == {"categories": 5, "vendors": 5}
        assert config.consensus == {"min_corrections": 3, "confidence": 0.85}
        assert config.threshold("auto_apply") == 0.8


class TestDefaults:
    def test_missing_settings_file_uses_defaults(self, tmp_path):
        config = _write(tmp_path)
        assert config.settings == {}
        assert config.transfer_keywords == DEFAULT_TRANSFER_KEYWORDS
        assert config.transfer_window_days == 3
        assert config.transfer_amount_tolerance == 0.01
        assert config.insert_batch_size == 100
        assert config.pacing_delay == 0.1
        assert config.bulk_limits == {"categories": 50, "vendors": 100}
        assert config.cleanup_max_age_days == 30
        assert config.thresholds["cache_update_delta"] == 0.1

    def test_partial_threshold_override(self, tmp_path):
        config = _write(tmp_path, settings="thresholds:\n  auto_apply: 0.9\n")
        assert config.threshold("auto_apply") == 0.9
        assert config.threshold("fuzzy_match_floor") == 0.7

    def test_custom_transfer_keywords(self, tmp_path):
        config = _write(tmp_path, settings="transfers:\n  keywords: [SWEEP, Self Transfer]\n")
        assert config.transfer_keywords == ("sweep", "self transfer")

    def test_bare_vendor_list(self, tmp_path):
        config = _write(tmp_path, vendors="- brand: Zomato\n  category: Food Delivery\n")
        assert config.vendors[0]["brand"] == "Zomato"


class TestErrors:
    def test_unknown_threshold(self, tmp_path):
        config = _write(tmp_path, settings="thresholds:\n  auto_aply: 0.9\n")
        with pytest.raises(ValueError, match="Unknown threshold"):
            _ = config.thresholds

    def test_non_positive_batch_size(self, tmp_path):
        config = _write(tmp_path, settings="ingest:\n  insert_batch_size: 0\n")
        with pytest.raises(ValueError):
            _ = config.insert_batch_size

    def test_settings_must_be_mapping(self, tmp_path):
        config = _write(tmp_path, settings="- a\n- b\n")
        with pytest.raises(ValueError, match="mapping"):
            _ = config.settings

    def test_invalid_yaml(self, tmp_path):
        config = _write(tmp_path, rules="pattern_rules: [unclosed\n")
        with pytest.raises(ValueError, match="Invalid YAML"):
            _ = config.rules

    def test_empty_file(self, tmp_path):
        config = _write(tmp_path, vendors="")
        with pytest.raises(ValueError, match="Empty config file"):
            _ = config.vendors

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError, match="rules.yaml"):
            _ = Config(tmp_path).rules


class TestShippedConfig:
    """The config/ directory at the repository root loads cleanly."""

    def test_loads(self):
        config = Config(REPO_CONFIG_DIR)
        assert config.vendors
        assert config.pattern_rules
        assert config.category_hints
        assert 0 < config.threshold("auto_apply") <= 1
