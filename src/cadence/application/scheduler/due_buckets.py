"""
Grouping of a learner's cards by how soon they come due.

Feeds dashboard and library "due count" displays. Pure computation, no I/O.
"""

from datetime import datetime, time, timedelta

from cadence.domain import constants as C
from cadence.domain.progress.models import DueSummary, ProgressRecord


def end_of_day(moment: datetime) -> datetime:
    """Last representable instant of ``moment``'s calendar day, same timezone."""
    return datetime.combine(moment.date(), time.max, tzinfo=moment.tzinfo)


def summarize_due(
    card_ids: list[str],
    records: dict[str, ProgressRecord],
    now: datetime,
) -> DueSummary:
    """
    Count cards per due bucket.

    Unseen and overdue cards are due now. Later buckets are exclusive of the
    earlier ones; cards due after the end of tomorrow are not counted.
    """
    soon = now + timedelta(minutes=C.SOON_WINDOW_MINUTES)
    next_hour = now + timedelta(minutes=C.NEXT_HOUR_WINDOW_MINUTES)
    today_end = end_of_day(now)
    tomorrow_end = today_end + timedelta(days=1)

    summary = DueSummary()
    for card_id in card_ids:
        record = records.get(card_id)
        if record is None or record.due_at <= now:
            summary.due_now += 1
        elif record.due_at <= soon:
            summary.due_in_15_minutes += 1
        elif record.due_at <= next_hour:
            summary.due_in_next_hour += 1
        elif record.due_at <= today_end:
            summary.due_today += 1
        elif record.due_at <= tomorrow_end:
            summary.due_tomorrow += 1
    return summary
