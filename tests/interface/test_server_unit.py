from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from cadence.application.scheduler.service import SchedulerService
from cadence.consts import VERSION
from cadence.domain.errors import PersistenceError
from cadence.domain.progress.models import Card
from cadence.infrastructure.adapters.memory_store import InMemoryProgressStore
from cadence.server import app, get_scheduler

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)

client = TestClient(app)


@pytest.fixture
def scheduler():
    store = InMemoryProgressStore(cards=[Card(card_id="c1", question="Q1?"), Card(card_id="c2")])
    service = SchedulerService(repo=store, catalog=store, clock=lambda: T0)
    app.dependency_overrides[get_scheduler] = lambda: service
    yield service
    app.dependency_overrides.clear()


def attempt(learner_id="L", card_id="c1", is_correct=True, **extra):
    payload = {"learner_id": learner_id, "card_id": card_id, "is_correct": is_correct, **extra}
    return client.post("/attempts", json=payload)


def test_health_check():
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert data["version"] == VERSION


def test_get_version():
    response = client.get("/version")
    assert response.status_code == 200
    assert response.json() == {"version": VERSION}


def test_record_attempt(scheduler):
    response = attempt(is_correct=False)

    assert response.status_code == 200
    data = response.json()
    assert data["state"] == "learning"
    assert data["step"] == 0
    assert datetime.fromisoformat(data["due_at"]) == T0 + timedelta(minutes=20)
    assert data["last_correct"] is False


def test_record_attempt_with_explicit_time_and_key(scheduler):
    at = (T0 + timedelta(hours=1)).isoformat()
    first = attempt(now=at, attempt_id="k1")
    second = attempt(now=at, attempt_id="k1")

    assert first.status_code == 200
    assert second.json() == first.json()
    assert datetime.fromisoformat(first.json()["due_at"]) == T0 + timedelta(hours=2)


def test_invalid_identifier_is_400(scheduler):
    response = attempt(learner_id="   ")
    assert response.status_code == 400
    assert "learner_id" in response.json()["detail"]


def test_malformed_body_is_422(scheduler):
    response = client.post("/attempts", json={"learner_id": "L"})
    assert response.status_code == 422


def test_storage_failure_is_503():
    failing = MagicMock()
    failing.record_attempt = AsyncMock(side_effect=PersistenceError("database is locked"))
    app.dependency_overrides[get_scheduler] = lambda: failing
    try:
        response = attempt()
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 503
    assert "database is locked" in response.json()["detail"]


def test_due_lists_unseen_then_due(scheduler):
    attempt(card_id="c1", is_correct=False)

    response = client.get(
        "/learners/L/due", params={"now": (T0 + timedelta(minutes=30)).isoformat()}
    )
    assert response.status_code == 200
    items = response.json()
    assert [i["card_id"] for i in items] == ["c2", "c1"]
    assert items[0]["progress"] is None
    assert items[1]["question"] == "Q1?"
    assert items[1]["progress"]["state"] == "learning"


def test_due_excluding_recent(scheduler):
    attempt(card_id="c1", is_correct=False)

    response = client.get(
        "/learners/L/due",
        params={"now": (T0 + timedelta(minutes=25)).isoformat(), "exclude_recent_minutes": 30},
    )
    assert [i["card_id"] for i in response.json()] == ["c2"]


def test_due_summary(scheduler):
    attempt(card_id="c1", is_correct=True)

    data = client.get("/learners/L/due/summary").json()
    assert data["due_now"] == 1
    assert data["due_in_next_hour"] == 1
    assert data["total"] == 2


def test_progress_endpoints(scheduler):
    assert client.get("/learners/L/progress/c1").status_code == 404

    attempt(card_id="c1", is_correct=True)
    attempt(card_id="c2", is_correct=False)

    single = client.get("/learners/L/progress/c1")
    assert single.status_code == 200
    assert single.json()["step"] == 1

    listed = client.get("/learners/L/progress").json()
    assert [p["card_id"] for p in listed] == ["c2", "c1"]


def test_history_and_activity(scheduler):
    attempt(card_id="c1", is_correct=False)
    attempt(card_id="c1", is_correct=True, now=(T0 + timedelta(minutes=20)).isoformat())

    history = client.get("/learners/L/progress/c1/history", params={"limit": 1}).json()
    assert len(history) == 1
    assert history[0]["is_correct"] is True

    activity = client.get(f"/learners/L/activity/{T0.date().isoformat()}").json()
    assert activity == {"learner_id": "L", "day": "2026-03-02", "study_count": 2}


def test_prune_attempts_endpoint(scheduler):
    attempt(card_id="c1", is_correct=False)
    attempt(card_id="c2", is_correct=True, now=(T0 + timedelta(days=6)).isoformat())

    response = client.delete(
        "/learners/L/attempts", params={"now": (T0 + timedelta(days=8)).isoformat()}
    )
    assert response.status_code == 200
    assert response.json() == {"learner_id": "L", "deleted_count": 1}

    assert client.get("/learners/L/progress/c1/history").json() == []
    assert client.get("/learners/L/progress/c1").status_code == 200


def test_prune_attempts_rejects_negative_window(scheduler):
    response = client.delete("/learners/L/attempts", params={"older_than_days": -1})
    assert response.status_code == 400
