"""
In-Memory Progress Store — process-local adapter for tests, demos and the "memory" backend.

Transactions are serialized by an asyncio lock and stage their writes on
copies that replace the live tables only on a clean exit.
"""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import date, datetime

from cadence.domain.progress.models import AttemptEntry, Card, ProgressRecord, StoredRow
from cadence.domain.progress.ports import CardCatalog, ProgressRepository, ProgressTransaction


def _to_row(record: ProgressRecord) -> StoredRow:
    return StoredRow(
        learner_id=record.learner_id,
        card_id=record.card_id,
        due_at=record.due_at,
        state=record.state,
        step=record.step,
        review_count=record.review_count,
        ease_factor=record.ease_factor,
        last_correct=record.last_correct,
        important=record.important,
    )


class _Tables:
    def __init__(self):
        self.progress: dict[tuple[str, str], StoredRow] = {}
        self.attempts: list[AttemptEntry] = []
        self.activity: dict[tuple[str, date], int] = {}

    def copy(self) -> "_Tables":
        clone = _Tables()
        clone.progress = dict(self.progress)
        clone.attempts = list(self.attempts)
        clone.activity = dict(self.activity)
        return clone


class _MemoryTransaction(ProgressTransaction):
    def __init__(self, tables: _Tables):
        self.tables = tables

    async def get_row(self, learner_id: str, card_id: str) -> StoredRow | None:
        return self.tables.progress.get((learner_id, card_id))

    async def find_attempt(self, learner_id: str, attempt_id: str) -> AttemptEntry | None:
        for entry in self.tables.attempts:
            if entry.learner_id == learner_id and entry.attempt_id == attempt_id:
                return entry
        return None

    async def put_record(self, record: ProgressRecord) -> None:
        key = (record.learner_id, record.card_id)
        row = _to_row(record)
        existing = self.tables.progress.get(key)
        if existing is not None:
            # The important flag belongs to another collaborator; keep what is stored.
            row.important = existing.important
        self.tables.progress[key] = row

    async def append_attempt(self, entry: AttemptEntry) -> None:
        self.tables.attempts.append(entry)

    async def increment_study_count(self, learner_id: str, day: date) -> int:
        key = (learner_id, day)
        self.tables.activity[key] = self.tables.activity.get(key, 0) + 1
        return self.tables.activity[key]


class InMemoryProgressStore(ProgressRepository, CardCatalog):
    """Keeps every table in dictionaries; nothing survives the process."""

    def __init__(self, cards: list[Card] | None = None):
        self._cards: dict[str, Card] = {}
        self._tables = _Tables()
        self._lock = asyncio.Lock()
        for card in cards or []:
            self._cards[card.card_id] = card

    def seed_row(self, row: StoredRow) -> None:
        """Insert a raw row as-is, bypassing the scheduler (legacy imports, fixtures)."""
        self._tables.progress[(row.learner_id, row.card_id)] = row

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[ProgressTransaction]:
        async with self._lock:
            staged = self._tables.copy()
            yield _MemoryTransaction(staged)
            self._tables = staged

    async def get_row(self, learner_id: str, card_id: str) -> StoredRow | None:
        return self._tables.progress.get((learner_id, card_id))

    async def list_rows(self, learner_id: str) -> list[StoredRow]:
        return [row for (lid, _), row in self._tables.progress.items() if lid == learner_id]

    async def get_history(self, learner_id: str, card_id: str, limit: int) -> list[AttemptEntry]:
        matching = [
            e for e in self._tables.attempts if e.learner_id == learner_id and e.card_id == card_id
        ]
        matching.reverse()
        matching.sort(key=lambda e: e.attempted_at, reverse=True)
        return matching[:limit]

    async def recent_attempts(self, learner_id: str, since: datetime) -> list[AttemptEntry]:
        return [
            e
            for e in self._tables.attempts
            if e.learner_id == learner_id and e.attempted_at >= since
        ]

    async def get_study_count(self, learner_id: str, day: date) -> int:
        return self._tables.activity.get((learner_id, day), 0)

    async def prune_attempts(self, learner_id: str, before: datetime) -> int:
        async with self.transaction() as tx:
            kept = [
                e
                for e in tx.tables.attempts
                if e.learner_id != learner_id or e.attempted_at >= before
            ]
            deleted = len(tx.tables.attempts) - len(kept)
            tx.tables.attempts = kept
        return deleted

    async def list_cards(self) -> list[Card]:
        return list(self._cards.values())

    async def upsert_cards(self, cards: list[Card]) -> int:
        for card in cards:
            self._cards[card.card_id] = card
        return len(cards)
