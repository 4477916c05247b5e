"""Shared test fixtures."""

from pathlib import Path

import pytest

from spendlens.config import Config
from spendlens.database.repository import Repository

# Test fixture config directory with synthetic data
FIXTURE_CONFIG_DIR = Path(__file__).parent / "fixtures" / "config"
FIXTURES_DIR = Path(__file__).parent / "fixtures"
MIGRATIONS_DIR = Path(__file__).parent.parent / "spendlens" / "database" / "migrations"


@pytest.fixture
def repo():
    r = Repository(":memory:")
    r.apply_migrations(MIGRATIONS_DIR)
    yield r
    r.close()


@pytest.fixture
def config():
    return Config(FIXTURE_CONFIG_DIR)
