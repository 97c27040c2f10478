"""
State machine for a single attempt on a (learner, card) pair.

    unseen -> learning -> review <-> relearning

This is a pure computation module with no I/O: the next record is built as a
whole new value from the current one, and the caller writes it once.
"""

import logging
from dataclasses import replace
from datetime import datetime, timedelta

from cadence.domain.progress.models import Progress, ProgressRecord, Unseen

from .policy import SchedulingPolicy

logger = logging.getLogger(__name__)


def review_interval_days(review_count: int, ease_factor: float) -> int:
    """
    Days until the next review.

    Sized from the review count *before* this review is counted, so the first
    review after graduation gets the shortest interval.
    """
    return max(1, round(max(0, review_count) * ease_factor))


def next_progress(
    current: Progress,
    is_correct: bool,
    now: datetime,
    policy: SchedulingPolicy,
) -> ProgressRecord:
    """
    Compute the record that results from answering ``current`` at ``now``.

    A first attempt on an unseen card enters ``learning`` at step 0 and is then
    graded like any learning attempt, so a correct first answer passes step 0
    and schedules step 1. Rows written by the earlier scheduler stored step 0
    after every first attempt; those cards just repeat step 0 once.

    Args:
        current: Unseen for a first attempt, else the normalized stored record.
        is_correct: Outcome of the attempt.
        now: UTC timestamp of the attempt.
        policy: Steps, intervals and ease bounds.

    Returns:
        The complete next ProgressRecord. ``due_at`` is never before ``now``.
    """
    if isinstance(current, Unseen):
        # First exposure always enters learning at step 0, then counts as one
        # learning attempt.
        start = ProgressRecord(
            learner_id=current.learner_id,
            card_id=current.card_id,
            state="learning",
            step=0,
            due_at=now,
            review_count=0,
            ease_factor=policy.default_ease_factor,
        )
        return _cramming(start, policy.learning_steps, is_correct, now, policy)

    if current.state in ("learning", "new"):
        return _cramming(
            replace(current, state="learning"), policy.learning_steps, is_correct, now, policy
        )
    if current.state == "relearning":
        return _cramming(current, policy.relearning_steps, is_correct, now, policy)
    if current.state == "review":
        return _review(current, is_correct, now, policy)

    raise ValueError(f"unnormalized progress state: {current.state!r}")


def _cramming(
    current: ProgressRecord,
    steps: tuple[timedelta, ...],
    is_correct: bool,
    now: datetime,
    policy: SchedulingPolicy,
) -> ProgressRecord:
    """Shared rule for learning and relearning: advance on success, repeat on failure."""
    step = min(max(current.step, 0), len(steps) - 1)

    if not is_correct:
        return replace(
            current,
            step=step,
            due_at=now + steps[step],
            last_correct=False,
        )

    next_step = step + 1
    if next_step >= len(steps):
        # Graduation. Learning starts the review count from zero; relearning
        # resumes the count the card had when it lapsed.
        review_count = 0 if current.state == "learning" else current.review_count
        logger.info(
            f"Card {current.card_id} graduated from {current.state} "
            f"for learner {current.learner_id}"
        )
        return replace(
            current,
            state="review",
            step=0,
            review_count=review_count,
            due_at=now + policy.graduate_interval,
            last_correct=True,
        )

    return replace(
        current,
        step=next_step,
        due_at=now + steps[next_step],
        last_correct=True,
    )


def _review(
    current: ProgressRecord,
    is_correct: bool,
    now: datetime,
    policy: SchedulingPolicy,
) -> ProgressRecord:
    ease = policy.clamp_ease(current.ease_factor)

    if not is_correct:
        logger.info(
            f"Card {current.card_id} lapsed for learner {current.learner_id} "
            f"after {current.review_count} reviews"
        )
        return replace(
            current,
            state="relearning",
            step=0,
            ease_factor=policy.clamp_ease(ease - policy.ease_factor_down),
            due_at=now + policy.relearning_steps[0],
            last_correct=False,
        )

    interval = review_interval_days(current.review_count, ease)
    logger.debug(
        f"Card {current.card_id} reviewed: count={current.review_count} "
        f"ease={ease:.2f} interval={interval}d"
    )
    return replace(
        current,
        step=0,
        review_count=max(0, current.review_count) + 1,
        ease_factor=policy.clamp_ease(ease + policy.ease_factor_up),
        due_at=now + timedelta(days=interval),
        last_correct=True,
    )
