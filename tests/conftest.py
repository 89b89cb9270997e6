"""
Shared pytest fixtures for the call worker tests.

Provides an in-memory key-value store, a controllable clock and a lease
store wired to both.
"""

import pytest

from callworker.core.kv_store import InMemoryKeyValueStore
from callworker.core.lease_store import LeaseStore
from callworker.core.models import WorkItem


class FakeClock:
    """Manually advanced wall clock (seconds)."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def kv():
    return InMemoryKeyValueStore()


@pytest.fixture
def lease_store(kv, clock):
    return LeaseStore(kv, staleness_seconds=180, clock=clock)


@pytest.fixture
def work_item():
    return WorkItem(
        target_sequence="+15551230001",
        artifact_name="job-42.mp3",
        duration_seconds=45,
        origin_identity="+15550000001",
    )
