"""
SQLite Progress Store — Infrastructure adapter for a local SQLite database.

Implements both ProgressRepository and CardCatalog. Every transaction uses its
own connection and ``BEGIN IMMEDIATE``, so two attempts on the same pair from
different processes are serialized by SQLite's write lock.
"""

import logging
import sqlite3
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import date, datetime, timedelta, timezone
from pathlib import Path

from cadence.domain import constants as C
from cadence.domain.errors import PersistenceError
from cadence.domain.progress.models import AttemptEntry, Card, ProgressRecord, StoredRow
from cadence.domain.progress.ports import CardCatalog, ProgressRepository, ProgressTransaction

logger = logging.getLogger(__name__)

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

SCHEMA = """
CREATE TABLE IF NOT EXISTS cards (
    card_id TEXT PRIMARY KEY,
    question TEXT,
    category TEXT,
    card_type TEXT
);
CREATE TABLE IF NOT EXISTS user_progress (
    learner_id TEXT NOT NULL,
    card_id TEXT NOT NULL,
    due_at INTEGER NOT NULL,
    review_count INTEGER NOT NULL DEFAULT 0,
    last_correct INTEGER NOT NULL DEFAULT 0,
    PRIMARY KEY (learner_id, card_id)
);
CREATE TABLE IF NOT EXISTS session_attempts (
    entry_id TEXT PRIMARY KEY,
    learner_id TEXT NOT NULL,
    card_id TEXT NOT NULL,
    attempted_at INTEGER NOT NULL,
    is_correct INTEGER NOT NULL,
    attempt_id TEXT
);
CREATE INDEX IF NOT EXISTS idx_attempts_learner_time
    ON session_attempts (learner_id, attempted_at);
CREATE UNIQUE INDEX IF NOT EXISTS idx_attempts_key
    ON session_attempts (learner_id, attempt_id) WHERE attempt_id IS NOT NULL;
CREATE TABLE IF NOT EXISTS daily_activity (
    learner_id TEXT NOT NULL,
    day TEXT NOT NULL,
    study_count INTEGER NOT NULL DEFAULT 0,
    PRIMARY KEY (learner_id, day)
);
"""

# Columns added after the first release. Nullable so legacy rows survive.
PROGRESS_COLUMNS = {
    "state": "TEXT",
    "current_step": "INTEGER",
    "ease_factor": "REAL",
    "important": "INTEGER",
}

PROGRESS_SELECT = (
    "SELECT learner_id, card_id, due_at, state, current_step, review_count, "
    "ease_factor, last_correct, important FROM user_progress"
)

ATTEMPT_SELECT = (
    "SELECT entry_id, learner_id, card_id, attempted_at, is_correct, attempt_id "
    "FROM session_attempts"
)


def to_millis(moment: datetime) -> int:
    return (moment - EPOCH) // timedelta(milliseconds=1)


def from_millis(millis: int) -> datetime:
    return EPOCH + timedelta(milliseconds=millis)


def _due_at(row: sqlite3.Row) -> datetime:
    millis = row["due_at"]
    if isinstance(millis, (int, float)):
        try:
            return from_millis(int(millis))
        except (OverflowError, ValueError):
            pass
    # Unreadable due time: present the card now rather than never.
    logger.warning(
        f"Progress row {row['learner_id']}/{row['card_id']} has due_at {millis!r}; "
        "treating it as due"
    )
    return EPOCH


def _row_to_stored(row: sqlite3.Row) -> StoredRow:
    return StoredRow(
        learner_id=row["learner_id"],
        card_id=row["card_id"],
        due_at=_due_at(row),
        state=row["state"],
        step=row["current_step"],
        review_count=row["review_count"],
        ease_factor=row["ease_factor"],
        last_correct=None if row["last_correct"] is None else bool(row["last_correct"]),
        important=None if row["important"] is None else bool(row["important"]),
    )


def _row_to_attempt(row: sqlite3.Row) -> AttemptEntry:
    return AttemptEntry(
        entry_id=row["entry_id"],
        learner_id=row["learner_id"],
        card_id=row["card_id"],
        attempted_at=from_millis(row["attempted_at"]),
        is_correct=bool(row["is_correct"]),
        attempt_id=row["attempt_id"],
    )


class _SqliteTransaction(ProgressTransaction):
    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    async def get_row(self, learner_id: str, card_id: str) -> StoredRow | None:
        row = self.conn.execute(
            f"{PROGRESS_SELECT} WHERE learner_id = ? AND card_id = ?",
            (learner_id, card_id),
        ).fetchone()
        return _row_to_stored(row) if row else None

    async def find_attempt(self, learner_id: str, attempt_id: str) -> AttemptEntry | None:
        row = self.conn.execute(
            f"{ATTEMPT_SELECT} WHERE learner_id = ? AND attempt_id = ?",
            (learner_id, attempt_id),
        ).fetchone()
        return _row_to_attempt(row) if row else None

    async def put_record(self, record: ProgressRecord) -> None:
        # "important" is written on insert only; its owner updates it elsewhere.
        self.conn.execute(
            "INSERT INTO user_progress (learner_id, card_id, due_at, state, current_step, "
            "review_count, ease_factor, last_correct, important) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?) "
            "ON CONFLICT (learner_id, card_id) DO UPDATE SET "
            "due_at = excluded.due_at, state = excluded.state, "
            "current_step = excluded.current_step, review_count = excluded.review_count, "
            "ease_factor = excluded.ease_factor, last_correct = excluded.last_correct",
            (
                record.learner_id,
                record.card_id,
                to_millis(record.due_at),
                record.state,
                record.step,
                record.review_count,
                record.ease_factor,
                int(record.last_correct),
                int(record.important),
            ),
        )

    async def append_attempt(self, entry: AttemptEntry) -> None:
        self.conn.execute(
            "INSERT INTO session_attempts "
            "(entry_id, learner_id, card_id, attempted_at, is_correct, attempt_id) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (
                entry.entry_id,
                entry.learner_id,
                entry.card_id,
                to_millis(entry.attempted_at),
                int(entry.is_correct),
                entry.attempt_id,
            ),
        )

    async def increment_study_count(self, learner_id: str, day: date) -> int:
        self.conn.execute(
            "INSERT INTO daily_activity (learner_id, day, study_count) VALUES (?, ?, 1) "
            "ON CONFLICT (learner_id, day) DO UPDATE SET study_count = study_count + 1",
            (learner_id, day.isoformat()),
        )
        row = self.conn.execute(
            "SELECT study_count FROM daily_activity WHERE learner_id = ? AND day = ?",
            (learner_id, day.isoformat()),
        ).fetchone()
        return row["study_count"]


class SqliteProgressStore(ProgressRepository, CardCatalog):
    """
    Stores cards, progress rows, the attempt log and daily counters in one SQLite file.

    Timestamps are stored as integer milliseconds since the Unix epoch (UTC).
    """

    def __init__(self, db_path: Path, busy_timeout_ms: int = C.BUSY_TIMEOUT_MS):
        self.db_path = Path(db_path)
        self.busy_timeout_ms = busy_timeout_ms
        self._ensure_schema()

    def _connect(self) -> sqlite3.Connection:
        try:
            conn = sqlite3.connect(
                self.db_path,
                timeout=self.busy_timeout_ms / 1000.0,
                isolation_level=None,
            )
        except sqlite3.Error as e:
            logger.error(f"Could not open progress database {self.db_path}: {e}")
            raise PersistenceError(f"cannot open {self.db_path}: {e}") from e
        conn.row_factory = sqlite3.Row
        return conn

    def _ensure_schema(self) -> None:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = self._connect()
        try:
            conn.executescript(SCHEMA)
            existing = {row["name"] for row in conn.execute("PRAGMA table_info(user_progress)")}
            for column, decl in PROGRESS_COLUMNS.items():
                if column not in existing:
                    logger.info(f"Adding column user_progress.{column}")
                    conn.execute(f"ALTER TABLE user_progress ADD COLUMN {column} {decl}")
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_progress_learner_due "
                "ON user_progress (learner_id, due_at)"
            )
        except sqlite3.Error as e:
            logger.error(f"Schema setup failed for {self.db_path}: {e}")
            raise PersistenceError(f"schema setup failed: {e}") from e
        finally:
            conn.close()

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[ProgressTransaction]:
        conn = self._connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
            yield _SqliteTransaction(conn)
            conn.execute("COMMIT")
        except sqlite3.Error as e:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            logger.error(f"Progress transaction failed: {e}")
            raise PersistenceError(str(e)) from e
        except BaseException:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        finally:
            conn.close()

    def _query(self, sql: str, params: tuple = ()) -> list[sqlite3.Row]:
        conn = self._connect()
        try:
            return conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            logger.error(f"Progress query failed: {e}")
            raise PersistenceError(str(e)) from e
        finally:
            conn.close()

    async def get_row(self, learner_id: str, card_id: str) -> StoredRow | None:
        rows = self._query(
            f"{PROGRESS_SELECT} WHERE learner_id = ? AND card_id = ?", (learner_id, card_id)
        )
        return _row_to_stored(rows[0]) if rows else None

    async def list_rows(self, learner_id: str) -> list[StoredRow]:
        rows = self._query(f"{PROGRESS_SELECT} WHERE learner_id = ?", (learner_id,))
        return [_row_to_stored(r) for r in rows]

    async def get_history(self, learner_id: str, card_id: str, limit: int) -> list[AttemptEntry]:
        rows = self._query(
            f"{ATTEMPT_SELECT} WHERE learner_id = ? AND card_id = ? "
            "ORDER BY attempted_at DESC, rowid DESC LIMIT ?",
            (learner_id, card_id, limit),
        )
        return [_row_to_attempt(r) for r in rows]

    async def recent_attempts(self, learner_id: str, since: datetime) -> list[AttemptEntry]:
        rows = self._query(
            f"{ATTEMPT_SELECT} WHERE learner_id = ? AND attempted_at >= ? ORDER BY attempted_at",
            (learner_id, to_millis(since)),
        )
        return [_row_to_attempt(r) for r in rows]

    async def get_study_count(self, learner_id: str, day: date) -> int:
        rows = self._query(
            "SELECT study_count FROM daily_activity WHERE learner_id = ? AND day = ?",
            (learner_id, day.isoformat()),
        )
        return rows[0]["study_count"] if rows else 0

    async def prune_attempts(self, learner_id: str, before: datetime) -> int:
        async with self.transaction() as tx:
            cursor = tx.conn.execute(
                "DELETE FROM session_attempts WHERE learner_id = ? AND attempted_at < ?",
                (learner_id, to_millis(before)),
            )
            deleted = cursor.rowcount
        return deleted

    async def list_cards(self) -> list[Card]:
        rows = self._query(
            "SELECT card_id, question, category, card_type FROM cards ORDER BY rowid"
        )
        return [
            Card(
                card_id=r["card_id"],
                question=r["question"],
                category=r["category"],
                card_type=r["card_type"],
            )
            for r in rows
        ]

    async def upsert_cards(self, cards: list[Card]) -> int:
        if not cards:
            return 0

        async with self.transaction() as tx:
            tx.conn.executemany(
                "INSERT INTO cards (card_id, question, category, card_type) VALUES (?, ?, ?, ?) "
                "ON CONFLICT (card_id) DO UPDATE SET question = excluded.question, "
                "category = excluded.category, card_type = excluded.card_type",
                [(c.card_id, c.question, c.category, c.card_type) for c in cards],
            )
        return len(cards)
