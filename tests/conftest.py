from datetime import datetime, timezone

import pytest

from cadence.application.scheduler.policy import SchedulingPolicy
from cadence.application.scheduler.service import SchedulerService
from cadence.domain.progress.models import Card
from cadence.infrastructure.adapters.memory_store import InMemoryProgressStore

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def policy():
    """Default policy: learning 20m/60m, relearning 20m, graduate after 1 day."""
    return SchedulingPolicy()


@pytest.fixture
def cards():
    return [Card(card_id=f"c{i}", question=f"Question {i}", category="python") for i in range(1, 5)]


@pytest.fixture
def store(cards):
    return InMemoryProgressStore(cards=cards)


@pytest.fixture
def service(store, policy):
    return SchedulerService(repo=store, catalog=store, policy=policy, clock=lambda: T0)


@pytest.fixture
def mock_home(tmp_path, monkeypatch):
    """Mocks Path.home() to point to a temp dir."""
    home = tmp_path / "home"
    home.mkdir()

    # Mocking HOME to a temp directory to isolate config and database
    monkeypatch.setenv("HOME", str(home))
    return home
