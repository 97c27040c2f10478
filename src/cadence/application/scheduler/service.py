"""
Scheduler Service — Application layer orchestrator.

Owns the two operations the rest of the product calls: recording an attempt
and listing the cards due for a learner. Storage and the card catalog are
reached through ports only.
"""

import logging
from collections.abc import Callable
from datetime import date, datetime, timedelta, timezone

from ulid import ULID

from cadence.domain import constants as C
from cadence.domain.errors import InvalidInputError
from cadence.domain.progress.models import (
    AttemptEntry,
    DueItem,
    DueSummary,
    ProgressRecord,
    Unseen,
)
from cadence.domain.progress.ports import CardCatalog, ProgressRepository

from .due_buckets import summarize_due
from .migration import ensure_utc, normalize
from .policy import SchedulingPolicy
from .transitions import next_progress

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _require_id(name: str, value: object) -> str:
    if not isinstance(value, str) or not value.strip():
        raise InvalidInputError(f"{name} must be a non-empty string, got {value!r}")
    return value


class SchedulerService:
    """
    Application service for spaced-repetition scheduling.

    Follows Dependency Inversion: depends on the ProgressRepository and
    CardCatalog abstractions, not on concrete adapters. Holds no locks;
    isolation of concurrent attempts is the repository transaction's job.
    """

    def __init__(
        self,
        repo: ProgressRepository,
        catalog: CardCatalog,
        policy: SchedulingPolicy | None = None,
        clock: Callable[[], datetime] = utc_now,
        min_session_size: int = C.MIN_SESSION_SIZE,
    ):
        """
        Args:
            repo: The repository (port) holding progress rows.
            catalog: The card catalog (port) listing studyable cards.
            policy: Optional custom policy; uses the defaults if not provided.
            clock: Source of "now" when a caller does not inject one.
            min_session_size: Floor used when filtering recently attempted cards.
        """
        self._repo = repo
        self._catalog = catalog
        self.policy = policy or SchedulingPolicy()
        self._clock = clock
        self._min_session_size = min_session_size

    def _now(self, now: datetime | None) -> datetime:
        moment = ensure_utc(now) if now is not None else ensure_utc(self._clock())
        # Millisecond precision, the resolution stores persist.
        return moment.replace(microsecond=moment.microsecond // 1000 * 1000)

    async def record_attempt(
        self,
        learner_id: str,
        card_id: str,
        is_correct: bool,
        now: datetime | None = None,
        attempt_id: str | None = None,
    ) -> ProgressRecord:
        """
        Apply one answer to a pair and return its new progress.

        The read, the transition and all writes (progress row, attempt log,
        daily study counter) happen in a single repository transaction.

        Args:
            learner_id: Learner identifier.
            card_id: Card identifier.
            is_correct: Outcome of the answer.
            now: Time of the attempt; defaults to the service clock.
            attempt_id: Optional client key. An attempt id already applied for
                this learner is not applied again; the stored record is returned.

        Raises:
            InvalidInputError: Malformed identifiers or outcome. Nothing is written.
            PersistenceError: The store failed; the transaction was rolled back.
        """
        learner_id = _require_id("learner_id", learner_id)
        card_id = _require_id("card_id", card_id)
        if not isinstance(is_correct, bool):
            raise InvalidInputError(f"is_correct must be a bool, got {is_correct!r}")
        if attempt_id is not None:
            attempt_id = _require_id("attempt_id", attempt_id)

        now = self._now(now)

        async with self._repo.transaction() as tx:
            if attempt_id is not None:
                prior = await tx.find_attempt(learner_id, attempt_id)
                if prior is not None:
                    if prior.card_id != card_id:
                        raise InvalidInputError(
                            f"attempt_id {attempt_id!r} was already used for card {prior.card_id!r}"
                        )
                    row = await tx.get_row(learner_id, card_id)
                    if row is not None:
                        logger.info(
                            f"Duplicate attempt {attempt_id} for {learner_id}/{card_id} ignored"
                        )
                        return normalize(row, self.policy)

            row = await tx.get_row(learner_id, card_id)
            current = (
                Unseen(learner_id=learner_id, card_id=card_id)
                if row is None
                else normalize(row, self.policy)
            )

            record = next_progress(current, is_correct, now, self.policy)

            await tx.put_record(record)
            await tx.append_attempt(
                AttemptEntry(
                    entry_id=str(ULID()),
                    learner_id=learner_id,
                    card_id=card_id,
                    attempted_at=now,
                    is_correct=is_correct,
                    attempt_id=attempt_id,
                )
            )
            await tx.increment_study_count(learner_id, now.date())

        logger.debug(
            f"Recorded attempt {learner_id}/{card_id} correct={is_correct}: "
            f"{record.state} step={record.step} due={record.due_at.isoformat()}"
        )
        return record

    async def due_items(
        self,
        learner_id: str,
        now: datetime | None = None,
        exclude_recent: timedelta | None = None,
    ) -> list[DueItem]:
        """
        List every card the learner has never seen plus every card due at ``now``.

        Unseen cards come first in catalog order, then seen cards by due time.

        Args:
            learner_id: Learner identifier.
            now: Evaluation time; defaults to the service clock.
            exclude_recent: If set, drop cards attempted within this window.
                When that leaves fewer than the minimum session size, recently
                attempted cards that were answered correctly and are still due
                are added back.
        """
        learner_id = _require_id("learner_id", learner_id)
        now = self._now(now)

        cards = await self._catalog.list_cards()
        records = await self._load_records(learner_id)

        unseen: list[DueItem] = []
        seen: list[DueItem] = []
        for card in cards:
            record = records.get(card.card_id)
            if record is None:
                unseen.append(DueItem(card=card))
            elif record.is_due(now):
                seen.append(DueItem(card=card, progress=record))
        seen.sort(key=lambda item: item.progress.due_at)
        items = unseen + seen

        if exclude_recent is None:
            return items

        attempts = await self._repo.recent_attempts(learner_id, now - exclude_recent)
        recent_ids = {a.card_id for a in attempts}
        correct_ids = {a.card_id for a in attempts if a.is_correct}

        filtered = [item for item in items if item.card.card_id not in recent_ids]
        if len(filtered) < self._min_session_size:
            filtered.extend(item for item in items if item.card.card_id in correct_ids)
        return filtered

    async def due_summary(self, learner_id: str, now: datetime | None = None) -> DueSummary:
        """Count the learner's cards per due bucket (now, 15 min, hour, today, tomorrow)."""
        learner_id = _require_id("learner_id", learner_id)
        now = self._now(now)

        cards = await self._catalog.list_cards()
        records = await self._load_records(learner_id)
        return summarize_due([c.card_id for c in cards], records, now)

    async def get_progress(self, learner_id: str, card_id: str) -> ProgressRecord | None:
        learner_id = _require_id("learner_id", learner_id)
        card_id = _require_id("card_id", card_id)

        row = await self._repo.get_row(learner_id, card_id)
        if row is None:
            return None
        return normalize(row, self.policy)

    async def list_progress(self, learner_id: str) -> list[ProgressRecord]:
        """All progress records of a learner, soonest due first."""
        learner_id = _require_id("learner_id", learner_id)
        records = await self._load_records(learner_id)
        return sorted(records.values(), key=lambda r: r.due_at)

    async def card_history(
        self, learner_id: str, card_id: str, limit: int = C.CARD_HISTORY_LIMIT
    ) -> list[AttemptEntry]:
        learner_id = _require_id("learner_id", learner_id)
        card_id = _require_id("card_id", card_id)
        return await self._repo.get_history(learner_id, card_id, max(0, limit))

    async def study_count(self, learner_id: str, day: date) -> int:
        """Number of attempts the learner made on ``day`` (UTC)."""
        learner_id = _require_id("learner_id", learner_id)
        return await self._repo.get_study_count(learner_id, day)

    async def prune_attempts(
        self,
        learner_id: str,
        older_than: timedelta = timedelta(days=C.ATTEMPT_RETENTION_DAYS),
        now: datetime | None = None,
    ) -> int:
        """
        Delete a learner's attempt log entries older than ``older_than``.

        Progress records and daily counters are untouched. Attempt ids of
        pruned entries are forgotten, so idempotency holds only within the
        retention window.

        Returns:
            The number of entries deleted.
        """
        learner_id = _require_id("learner_id", learner_id)
        if older_than < timedelta(0):
            raise InvalidInputError(f"older_than must not be negative, got {older_than}")
        now = self._now(now)

        deleted = await self._repo.prune_attempts(learner_id, now - older_than)
        logger.info(f"Pruned {deleted} attempts older than {older_than} for learner {learner_id}")
        return deleted

    async def _load_records(self, learner_id: str) -> dict[str, ProgressRecord]:
        rows = await self._repo.list_rows(learner_id)
        return {row.card_id: normalize(row, self.policy) for row in rows}
