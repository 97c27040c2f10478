"""
Domain models for per-(learner, card) scheduling progress.

These are pure data structures with no I/O or external dependencies.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Literal

CardState = Literal["new", "learning", "review", "relearning"]

CARD_STATES: tuple[CardState, ...] = ("new", "learning", "review", "relearning")


@dataclass(frozen=True)
class Card:
    """
    A flashcard as seen by the scheduler.

    Owned by the content collaborator; the scheduler only relies on ``card_id``.
    """

    card_id: str
    question: str | None = None
    category: str | None = None
    card_type: str | None = None


@dataclass(frozen=True)
class Unseen:
    """The learner has never attempted this card: no progress record exists."""

    learner_id: str
    card_id: str


@dataclass(frozen=True)
class ProgressRecord:
    """
    Scheduling state for one (learner, card) pair.

    Attributes:
        state: Current phase. ``new`` only appears on unnormalized rows.
        step: Index into the step list of ``learning``/``relearning``; 0 otherwise.
        due_at: UTC timestamp at or after which the pair is presented again.
        review_count: Reviews completed in the ``review`` state. Sizes the next interval.
        ease_factor: Interval growth multiplier, kept within the policy bounds.
        last_correct: Outcome of the most recent attempt. Diagnostic only.
        important: Flag owned by another collaborator; never read by the scheduler.
    """

    learner_id: str
    card_id: str
    state: CardState
    step: int
    due_at: datetime
    review_count: int
    ease_factor: float
    last_correct: bool = False
    important: bool = False

    def is_due(self, now: datetime) -> bool:
        return self.due_at <= now


Progress = Unseen | ProgressRecord


@dataclass(frozen=True)
class AttemptEntry:
    """
    A single answered card, as logged by ``record_attempt``.

    ``attempt_id`` is the optional client-supplied idempotency key.
    """

    entry_id: str
    learner_id: str
    card_id: str
    attempted_at: datetime
    is_correct: bool
    attempt_id: str | None = None


@dataclass(frozen=True)
class DueItem:
    """A card eligible for presentation, with its progress if it has any."""

    card: Card
    progress: ProgressRecord | None = None

    @property
    def is_new(self) -> bool:
        return self.progress is None


@dataclass
class DueSummary:
    """Counts of cards grouped by how soon they come due."""

    due_now: int = 0
    due_in_15_minutes: int = 0
    due_in_next_hour: int = 0
    due_today: int = 0
    due_tomorrow: int = 0

    @property
    def total(self) -> int:
        return (
            self.due_now
            + self.due_in_15_minutes
            + self.due_in_next_hour
            + self.due_today
            + self.due_tomorrow
        )


@dataclass
class StoredRow:
    """
    A progress row exactly as persisted, before normalization.

    Legacy rows predate the learning/relearning design and may lack
    ``state``, ``step`` and ``ease_factor``.
    """

    learner_id: str
    card_id: str
    due_at: datetime
    state: str | None = None
    step: int | None = None
    review_count: int | None = None
    ease_factor: float | None = None
    last_correct: bool | None = None
    important: bool | None = None
