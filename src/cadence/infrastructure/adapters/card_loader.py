"""Loads a card catalog from a YAML file.

Accepted shapes::

    cards:
      - id: py-gil
        question: What does the GIL serialize?
        category: python
        type: basic

or a bare top-level list of the same mappings.
"""

import logging
from pathlib import Path
from typing import Any

import yaml  # type: ignore

from cadence.domain.progress.models import Card

logger = logging.getLogger(__name__)


class CardFileError(ValueError):
    """The card file is not valid YAML or does not describe a list of cards."""


def parse_cards(data: Any) -> list[Card]:
    if isinstance(data, dict):
        data = data.get("cards")
    if not isinstance(data, list):
        raise CardFileError("expected a list of cards or a mapping with a 'cards' list")

    cards: list[Card] = []
    seen: set[str] = set()
    for index, entry in enumerate(data):
        if not isinstance(entry, dict):
            raise CardFileError(f"card #{index} is not a mapping")

        card_id = entry.get("id")
        if card_id is None or not str(card_id).strip():
            raise CardFileError(f"card #{index} has no id")
        card_id = str(card_id)

        if card_id in seen:
            logger.warning(f"Duplicate card id {card_id!r} in card file; keeping the last one")
            cards = [c for c in cards if c.card_id != card_id]
        seen.add(card_id)

        cards.append(
            Card(
                card_id=card_id,
                question=entry.get("question"),
                category=entry.get("category"),
                card_type=entry.get("type"),
            )
        )
    return cards


def load_cards(path: Path) -> list[Card]:
    try:
        data = yaml.safe_load(Path(path).read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        raise CardFileError(f"{path}: invalid YAML: {e}") from e
    return parse_cards(data)
