"""
Pytest Configuration and Fixtures.

This file configures pytest and provides shared fixtures for all tests.
"""
import sys
from pathlib import Path

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from tests.fakes import (  # noqa: E402
    FakeAnalytics,
    FakeClock,
    FakeContent,
    FakeGradebook,
    FakeIdentity,
    FakeProficiency,
    FakeProgressCache,
    FakeStreak,
)
from xp_engine.state.attempts import AttemptStateRepository  # noqa: E402
from xp_engine.state.read_time import ReadTimeRepository  # noqa: E402
from xp_engine.state.store import InMemoryStateStore  # noqa: E402


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests (in-memory collaborators)")
    config.addinivalue_line("markers", "smoke: Smoke tests for CLI commands")
    config.addinivalue_line("markers", "slow: Slow tests")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their location."""
    for item in items:
        # Mark based on test file location
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
        elif "smoke" in str(item.fspath):
            item.add_marker(pytest.mark.smoke)


@pytest.fixture(scope="session")
def project_root():
    """Return the project root directory."""
    return PROJECT_ROOT


@pytest.fixture
def clock():
    """Controllable UTC wall clock."""
    return FakeClock()


@pytest.fixture
def store():
    """Fresh in-memory state store."""
    return InMemoryStateStore()


@pytest.fixture
def attempts(store, clock):
    """Attempt repository with a short lock wait."""
    return AttemptStateRepository(store, clock=clock, lock_wait_seconds=0.2, poll_interval=0.01)


@pytest.fixture
def read_time_repo(store):
    """Read-time repository with a short lock wait."""
    return ReadTimeRepository(store, lock_wait_seconds=0.2, poll_interval=0.01)


@pytest.fixture
def gradebook():
    return FakeGradebook()


@pytest.fixture
def analytics():
    return FakeAnalytics()


@pytest.fixture
def identity():
    return FakeIdentity("user-1")


@pytest.fixture
def content():
    return FakeContent()


@pytest.fixture
def proficiency():
    return FakeProficiency()


@pytest.fixture
def streak():
    return FakeStreak()


@pytest.fixture
def progress_cache():
    return FakeProgressCache()
