"""
Ports (interfaces) for progress persistence and card lookup.

These define the contract that infrastructure adapters must implement.
Application services depend on these abstractions, not concrete implementations.
"""

from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from datetime import date, datetime

from .models import AttemptEntry, Card, ProgressRecord, StoredRow


class ProgressTransaction(ABC):
    """
    A unit of work against the progress store.

    Everything done through one transaction is committed together when the
    owning context manager exits cleanly, and rolled back otherwise.
    """

    @abstractmethod
    async def get_row(self, learner_id: str, card_id: str) -> StoredRow | None:
        """Read the raw progress row for a pair, or None if the pair is unseen."""
        pass

    @abstractmethod
    async def find_attempt(self, learner_id: str, attempt_id: str) -> AttemptEntry | None:
        """Look up a previously applied attempt by its client-supplied key."""
        pass

    @abstractmethod
    async def put_record(self, record: ProgressRecord) -> None:
        """Insert or fully replace the progress row for ``record``'s pair."""
        pass

    @abstractmethod
    async def append_attempt(self, entry: AttemptEntry) -> None:
        pass

    @abstractmethod
    async def increment_study_count(self, learner_id: str, day: date) -> int:
        """Bump the learner's study counter for ``day`` and return the new value."""
        pass


class ProgressRepository(ABC):
    """
    Port for reading and writing scheduling progress.

    Implementations:
        - SqliteProgressStore: SQLite file, one connection per transaction.
        - InMemoryProgressStore: process-local dictionaries, for tests and demos.
    """

    @abstractmethod
    def transaction(self) -> AbstractAsyncContextManager[ProgressTransaction]:
        """
        Open an isolated read-modify-write transaction.

        Raises:
            PersistenceError: If the store cannot be opened or the commit fails.
        """
        pass

    @abstractmethod
    async def get_row(self, learner_id: str, card_id: str) -> StoredRow | None:
        pass

    @abstractmethod
    async def list_rows(self, learner_id: str) -> list[StoredRow]:
        """Return every progress row of a learner, in no particular order."""
        pass

    @abstractmethod
    async def get_history(self, learner_id: str, card_id: str, limit: int) -> list[AttemptEntry]:
        """Return up to ``limit`` attempts on a pair, most recent first."""
        pass

    @abstractmethod
    async def recent_attempts(self, learner_id: str, since: datetime) -> list[AttemptEntry]:
        """Return the learner's attempts made at or after ``since``."""
        pass

    @abstractmethod
    async def get_study_count(self, learner_id: str, day: date) -> int:
        pass

    @abstractmethod
    async def prune_attempts(self, learner_id: str, before: datetime) -> int:
        """Delete the learner's attempts made before ``before``. Returns the number deleted."""
        pass


class CardCatalog(ABC):
    """
    Port for the set of cards a learner can study.

    The catalog belongs to the content collaborator; the scheduler only lists it.
    """

    @abstractmethod
    async def list_cards(self) -> list[Card]:
        pass

    @abstractmethod
    async def upsert_cards(self, cards: list[Card]) -> int:
        """Insert or update cards by id. Returns the number written."""
        pass
