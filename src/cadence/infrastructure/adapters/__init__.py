# Infrastructure Adapters Package
from .card_loader import CardFileError, load_cards
from .memory_store import InMemoryProgressStore
from .sqlite_store import SqliteProgressStore

__all__ = ["CardFileError", "InMemoryProgressStore", "SqliteProgressStore", "load_cards"]
