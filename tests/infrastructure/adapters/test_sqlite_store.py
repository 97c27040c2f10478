import sqlite3
from datetime import datetime, timedelta, timezone

import pytest

from cadence.application.scheduler.service import SchedulerService
from cadence.domain.errors import PersistenceError
from cadence.domain.progress.models import Card
from cadence.infrastructure.adapters.sqlite_store import (
    SqliteProgressStore,
    from_millis,
    to_millis,
)

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)
MIN = timedelta(minutes=1)
DAY = timedelta(days=1)


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "progress.sqlite3"


@pytest.fixture
def sqlite_store(db_path):
    return SqliteProgressStore(db_path)


@pytest.fixture
def sqlite_service(sqlite_store):
    return SchedulerService(repo=sqlite_store, catalog=sqlite_store, clock=lambda: T0)


def create_legacy_table(db_path):
    conn = sqlite3.connect(db_path)
    conn.execute(
        "CREATE TABLE user_progress ("
        "learner_id TEXT NOT NULL, card_id TEXT NOT NULL, due_at INTEGER NOT NULL, "
        "review_count INTEGER NOT NULL DEFAULT 0, last_correct INTEGER NOT NULL DEFAULT 0, "
        "PRIMARY KEY (learner_id, card_id))"
    )
    conn.execute(
        "INSERT INTO user_progress VALUES (?, ?, ?, ?, ?)",
        ("L", "legacy", to_millis(T0 - DAY), 2, 1),
    )
    conn.commit()
    conn.close()


def test_millis_conversion():
    assert to_millis(datetime(1970, 1, 1, 0, 0, 1, tzinfo=timezone.utc)) == 1000
    assert from_millis(to_millis(T0)) == T0


@pytest.mark.asyncio
async def test_record_round_trip(sqlite_service, sqlite_store):
    record = await sqlite_service.record_attempt("L", "c1", False, now=T0)

    row = await sqlite_store.get_row("L", "c1")
    assert row.state == "learning"
    assert row.step == 0
    assert row.due_at == record.due_at
    assert row.ease_factor == pytest.approx(2.5)
    assert row.last_correct is False
    assert row.important is False

    assert await sqlite_service.get_progress("L", "c1") == record


@pytest.mark.asyncio
async def test_progress_survives_reopening(db_path, sqlite_service):
    await sqlite_service.record_attempt("L", "c1", True, now=T0)

    reopened = SqliteProgressStore(db_path)
    row = await reopened.get_row("L", "c1")
    assert (row.state, row.step, row.due_at) == ("learning", 1, T0 + 60 * MIN)
    assert await reopened.get_study_count("L", T0.date()) == 1


@pytest.mark.asyncio
async def test_legacy_table_is_upgraded_and_normalized(db_path):
    create_legacy_table(db_path)
    store = SqliteProgressStore(db_path)

    columns = {r[1] for r in sqlite3.connect(db_path).execute("PRAGMA table_info(user_progress)")}
    assert {"state", "current_step", "ease_factor", "important"} <= columns

    row = await store.get_row("L", "legacy")
    assert row.state is None
    assert row.ease_factor is None

    service = SchedulerService(repo=store, catalog=store)
    record = await service.record_attempt("L", "legacy", True, now=T0)
    assert record.state == "review"
    assert record.review_count == 3
    assert record.due_at == T0 + 5 * DAY


@pytest.mark.asyncio
async def test_important_flag_is_not_overwritten(db_path, sqlite_store, sqlite_service):
    await sqlite_service.record_attempt("L", "c1", True, now=T0)
    conn = sqlite3.connect(db_path)
    conn.execute("UPDATE user_progress SET important = 1 WHERE card_id = 'c1'")
    conn.commit()
    conn.close()

    record = await sqlite_service.record_attempt("L", "c1", True, now=T0 + 60 * MIN)
    assert record.important is True
    assert (await sqlite_store.get_row("L", "c1")).important is True


@pytest.mark.asyncio
async def test_history_and_recent_attempts(sqlite_service, sqlite_store):
    await sqlite_service.record_attempt("L", "c1", False, now=T0)
    await sqlite_service.record_attempt("L", "c1", True, now=T0 + 20 * MIN)
    await sqlite_service.record_attempt("L", "c2", True, now=T0 + 30 * MIN)

    history = await sqlite_store.get_history("L", "c1", limit=10)
    assert [h.is_correct for h in history] == [True, False]
    assert history[0].attempted_at == T0 + 20 * MIN

    recent = await sqlite_store.recent_attempts("L", T0 + 10 * MIN)
    assert [a.card_id for a in recent] == ["c1", "c2"]


@pytest.mark.asyncio
async def test_attempt_id_is_applied_once(sqlite_service):
    first = await sqlite_service.record_attempt("L", "c1", True, now=T0, attempt_id="k")
    again = await sqlite_service.record_attempt("L", "c1", True, now=T0 + DAY, attempt_id="k")

    assert again == first
    assert await sqlite_service.study_count("L", T0.date()) == 1
    assert await sqlite_service.study_count("L", (T0 + DAY).date()) == 0


@pytest.mark.asyncio
async def test_cards_are_listed_in_insertion_order(sqlite_store):
    written = await sqlite_store.upsert_cards(
        [Card(card_id="b", question="B?"), Card(card_id="a", question="A?")]
    )
    assert written == 2
    await sqlite_store.upsert_cards([Card(card_id="b", question="B again?")])

    cards = await sqlite_store.list_cards()
    assert [c.card_id for c in cards] == ["b", "a"]
    assert cards[0].question == "B again?"
    assert await sqlite_store.upsert_cards([]) == 0


@pytest.mark.asyncio
async def test_due_items_from_sqlite(sqlite_service, sqlite_store):
    await sqlite_store.upsert_cards([Card(card_id="c1"), Card(card_id="c2")])
    await sqlite_service.record_attempt("L", "c1", False, now=T0)

    items = await sqlite_service.due_items("L", now=T0 + 20 * MIN)
    assert [(i.card.card_id, i.is_new) for i in items] == [("c2", True), ("c1", False)]


@pytest.mark.asyncio
async def test_failed_transaction_rolls_back(sqlite_store):
    with pytest.raises(RuntimeError):
        async with sqlite_store.transaction() as tx:
            await tx.increment_study_count("L", T0.date())
            raise RuntimeError("boom")

    assert await sqlite_store.get_study_count("L", T0.date()) == 0


@pytest.mark.asyncio
async def test_sqlite_errors_become_persistence_errors(sqlite_store):
    with pytest.raises(PersistenceError):
        async with sqlite_store.transaction() as tx:
            tx.conn.execute("INSERT INTO missing_table VALUES (1)")


def test_unopenable_path_raises_persistence_error(tmp_path):
    with pytest.raises(PersistenceError):
        SqliteProgressStore(tmp_path)


def corrupt_column(db_path, column, value):
    conn = sqlite3.connect(db_path)
    conn.execute(f"UPDATE user_progress SET {column} = ? WHERE card_id = 'c1'", (value,))
    conn.commit()
    conn.close()


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "column, value",
    [("ease_factor", "abc"), ("current_step", "x"), ("review_count", "n/a"), ("due_at", "soon")],
)
async def test_text_in_numeric_column_does_not_block_scheduling(
    db_path, sqlite_store, sqlite_service, column, value
):
    await sqlite_store.upsert_cards([Card(card_id="c1"), Card(card_id="c2")])
    await sqlite_service.record_attempt("L", "c1", False, now=T0)
    await sqlite_service.record_attempt("L", "c2", False, now=T0)
    corrupt_column(db_path, column, value)

    items = await sqlite_service.due_items("L", now=T0 + 20 * MIN)
    assert [i.card.card_id for i in items] == ["c1", "c2"]
    assert len(await sqlite_service.list_progress("L")) == 2
    assert (await sqlite_service.due_summary("L", now=T0 + 20 * MIN)).total == 2

    record = await sqlite_service.record_attempt("L", "c1", True, now=T0 + 20 * MIN)
    assert record.ease_factor == pytest.approx(2.5)
    assert record.due_at > T0 + 20 * MIN


@pytest.mark.asyncio
async def test_sub_millisecond_time_round_trips(sqlite_service):
    now = T0 + timedelta(microseconds=123456)
    record = await sqlite_service.record_attempt("L", "c1", False, now=now)

    assert record.due_at == T0 + timedelta(milliseconds=123) + 20 * MIN
    assert await sqlite_service.get_progress("L", "c1") == record
    history = await sqlite_service.card_history("L", "c1")
    assert history[0].attempted_at == T0 + timedelta(milliseconds=123)


@pytest.mark.asyncio
async def test_prune_attempts_deletes_only_old_entries(sqlite_service, sqlite_store):
    await sqlite_service.record_attempt("L", "c1", False, now=T0, attempt_id="old")
    await sqlite_service.record_attempt("L", "c1", True, now=T0 + 6 * DAY, attempt_id="fresh")
    await sqlite_service.record_attempt("other", "c1", True, now=T0)

    deleted = await sqlite_service.prune_attempts("L", now=T0 + 8 * DAY)

    assert deleted == 1
    history = await sqlite_store.get_history("L", "c1", limit=10)
    assert [h.attempt_id for h in history] == ["fresh"]
    assert len(await sqlite_store.get_history("other", "c1", limit=10)) == 1
    assert await sqlite_service.study_count("L", T0.date()) == 1

    # The retained key is still honoured.
    before = await sqlite_service.get_progress("L", "c1")
    again = await sqlite_service.record_attempt(
        "L", "c1", True, now=T0 + 8 * DAY, attempt_id="fresh"
    )
    assert again == before
