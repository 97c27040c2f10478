"""
Normalization of stored progress rows into well-formed ProgressRecords.

Rows written before the learning/relearning design lack ``state``, ``step``
and ``ease_factor``. Those cards were already being reviewed, so they are
treated as mature ``review`` cards. Corrupt values are repaired rather than
rejected, so a bad row never makes a card unschedulable.
"""

import logging
import math
from datetime import datetime, timezone

from cadence.domain.progress.models import CARD_STATES, ProgressRecord, StoredRow

from .policy import SchedulingPolicy

logger = logging.getLogger(__name__)


def ensure_utc(moment: datetime) -> datetime:
    """Treat naive datetimes as UTC; convert aware ones to UTC."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def _as_int(value: object) -> int | None:
    """Integral value of a stored field, or None if it holds anything else."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return None


def _as_float(value: object) -> float | None:
    """Finite numeric value of a stored field, or None if it holds anything else."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    value = float(value)
    return value if math.isfinite(value) else None


def normalize(row: StoredRow, policy: SchedulingPolicy) -> ProgressRecord:
    """
    Convert a raw row to a ProgressRecord with every field populated.

    SQLite does not enforce column types, so any field may hold a value of the
    wrong type. Such values are replaced, never raised on.

    Defaults:
        state -> "review", step -> 0, ease_factor -> policy default,
        review_count -> 0, last_correct -> False, important -> False.
    """
    repairs: list[str] = []

    state = row.state
    if state is None:
        state = "review"
        repairs.append("state=review (legacy)")
    elif state not in CARD_STATES:
        repairs.append(f"state {state!r} -> review")
        state = "review"
    elif state == "new":
        # A stored "new" row has been seen once; resume at the first learning step.
        state = "learning"
        repairs.append("state new -> learning")

    step = 0 if row.step is None else _as_int(row.step)
    if step is None:
        repairs.append(f"step {row.step!r} -> 0")
        step = 0
    if row.state == "new":
        step = 0
    steps = policy.steps_for(state)
    if step < 0:
        repairs.append(f"step {step} -> 0")
        step = 0
    elif not steps and step != 0:
        repairs.append(f"step {step} -> 0 in {state}")
        step = 0
    elif steps and step > len(steps) - 1:
        repairs.append(f"step {step} -> {len(steps) - 1}")
        step = len(steps) - 1

    if row.ease_factor is None:
        ease = policy.default_ease_factor
    else:
        ease = _as_float(row.ease_factor)
        if ease is None:
            repairs.append(f"ease_factor {row.ease_factor!r} -> default")
            ease = policy.default_ease_factor
        elif ease != policy.clamp_ease(ease):
            repairs.append(f"ease_factor {ease} clamped")
            ease = policy.clamp_ease(ease)

    review_count = 0 if row.review_count is None else _as_int(row.review_count)
    if review_count is None:
        repairs.append(f"review_count {row.review_count!r} -> 0")
        review_count = 0
    elif review_count < 0:
        repairs.append(f"review_count {review_count} -> 0")
        review_count = 0

    if repairs:
        logger.warning(
            f"Normalized progress row {row.learner_id}/{row.card_id}: {', '.join(repairs)}"
        )

    return ProgressRecord(
        learner_id=row.learner_id,
        card_id=row.card_id,
        state=state,
        step=step,
        due_at=ensure_utc(row.due_at),
        review_count=review_count,
        ease_factor=ease,
        last_correct=bool(row.last_correct),
        important=bool(row.important),
    )
