"""Shared fixtures: a fake GraphQL upstream and engine configuration."""
import sys
from pathlib import Path

import pytest

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from gqlexporter.config import Config
from gqlexporter.engine import ScrapeEngine
from tests.fakes import ENDPOINT, FakeUpstream


@pytest.fixture
def upstream():
    return FakeUpstream()


@pytest.fixture
def config(tmp_path):
    queries_dir = tmp_path / "queries"
    queries_dir.mkdir()
    return Config(**{
        "graphql": {"url": ENDPOINT, "queries_dir": str(queries_dir), "timeout_s": 5},
        "cache": {"directory": str(tmp_path / "cache"), "expiration_minutes": 60},
    })


@pytest.fixture
def engine(config, upstream):
    engine = ScrapeEngine(config, http=upstream.client())
    yield engine
    engine.close()
