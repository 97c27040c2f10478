# Application Scheduler Package
from .due_buckets import summarize_due
from .migration import normalize
from .policy import SchedulingPolicy
from .service import SchedulerService
from .transitions import next_progress, review_interval_days

__all__ = [
    "SchedulingPolicy",
    "SchedulerService",
    "next_progress",
    "normalize",
    "review_interval_days",
    "summarize_due",
]
