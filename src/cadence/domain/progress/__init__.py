# Domain Progress Package
from .models import (
    CARD_STATES,
    AttemptEntry,
    Card,
    CardState,
    DueItem,
    DueSummary,
    Progress,
    ProgressRecord,
    StoredRow,
    Unseen,
)
from .ports import CardCatalog, ProgressRepository, ProgressTransaction

__all__ = [
    "CARD_STATES",
    "AttemptEntry",
    "Card",
    "CardState",
    "DueItem",
    "DueSummary",
    "Progress",
    "ProgressRecord",
    "StoredRow",
    "Unseen",
    "CardCatalog",
    "ProgressRepository",
    "ProgressTransaction",
]
