"""
Shared pytest fixtures for storage engine tests.
"""

import tempfile

import pytest
import pytest_asyncio

from segstore.config import EngineConfig
from segstore.engine.engine import Engine
from segstore.engine.segment_store import SegmentStore


class FakeClock:
    """Deterministic millisecond clock."""

    def __init__(self, start: int = 1_650_000_000_000) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int = 1) -> int:
        self.now += ms
        return self.now


@pytest.fixture
def temp_dir():
    """Provide a temporary directory that is cleaned up after test."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config(temp_dir):
    return EngineConfig(database_path=temp_dir)


@pytest.fixture
def store(config, clock):
    """Provide a SegmentStore with a fresh active segment."""
    segment_store = SegmentStore(config, clock=clock)
    segment_store.open_active(None)
    return segment_store


@pytest_asyncio.fixture
async def engine(temp_dir, clock):
    """Provide an initialized async Engine instance."""
    async with Engine(database_path=temp_dir, clock=clock) as eng:
        yield eng


@pytest_asyncio.fixture
async def engine_small_threshold(temp_dir, clock):
    """Provide an Engine that seals the active segment on every non-empty checkpoint."""
    async with Engine(database_path=temp_dir, clock=clock, persist_after_MB=0.000001) as eng:
        yield eng


@pytest.fixture
def sample_items():
    """Provide sample key-value pairs for testing."""
    return [(f"k{i}", f"v{i}") for i in range(1, 11)]
