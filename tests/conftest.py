"""Shared fixtures for Stock Trend Visualizer tests."""

import json
import sys
from pathlib import Path

import pytest

# Ensure project root is importable
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from run_pipeline import load_config  # noqa: E402
from schemas import RunConfig  # noqa: E402

FIXTURES = Path(__file__).resolve().parent / "fixtures"


@pytest.fixture
def cfg() -> RunConfig:
    """Load and validate the production config.yaml."""
    return load_config(ROOT / "config.yaml")


@pytest.fixture
def sample_records():
    """7 companies over 3 days plus 3 malformed records.

    Alpha  mc 900,  closes 10 / 11 / 12.1 (stored out of date order)
    Beta   mc 1200, closes 20 / 19 / 19
    Gamma  mc 300,  single record
    Delta  no market cap
    Epsilon mc 600, zero baseline close
    Zeta   mc 1200 (ties Beta, appears later)
    Eta    mc 0
    """
    with open(FIXTURES / "sample_sector.json") as f:
        return json.load(f)


@pytest.fixture
def valid_records(sample_records):
    """Fixture records without the malformed tail."""
    return sample_records[:-3]
