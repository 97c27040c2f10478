import logging
import time
from contextlib import asynccontextmanager
from datetime import date, datetime, timedelta
from typing import NoReturn

from fastapi import Depends, FastAPI, HTTPException
from pydantic import BaseModel

from cadence.application.scheduler.service import SchedulerService
from cadence.consts import VERSION
from cadence.domain import constants as C
from cadence.domain.errors import InvalidInputError, PersistenceError
from cadence.domain.progress.models import AttemptEntry, DueItem, ProgressRecord

# Setup logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("cadence.server")

_scheduler: SchedulerService | None = None


def get_scheduler() -> SchedulerService:
    """Build the process-wide scheduler from configuration on first use."""
    global _scheduler
    if _scheduler is None:
        from cadence.application.config import resolve_config
        from cadence.application.factory import build_scheduler

        _scheduler = build_scheduler(resolve_config())
    return _scheduler


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info(f"Cadence Server v{VERSION} starting up...")
    yield
    # Shutdown
    logger.info("Cadence Server shutting down...")


app = FastAPI(
    title="Cadence Server",
    description="Spaced-repetition scheduling for flashcard study sessions.",
    version=VERSION,
    lifespan=lifespan,
)


class HealthResponse(BaseModel):
    status: str
    version: str
    uptime_seconds: float


class AttemptRequest(BaseModel):
    learner_id: str
    card_id: str
    is_correct: bool
    # Optional overrides; the server clock is used otherwise.
    now: datetime | None = None
    attempt_id: str | None = None


class ProgressResponse(BaseModel):
    learner_id: str
    card_id: str
    state: str
    step: int
    due_at: datetime
    review_count: int
    ease_factor: float
    last_correct: bool
    important: bool

    @classmethod
    def from_record(cls, record: ProgressRecord) -> "ProgressResponse":
        return cls(
            learner_id=record.learner_id,
            card_id=record.card_id,
            state=record.state,
            step=record.step,
            due_at=record.due_at,
            review_count=record.review_count,
            ease_factor=record.ease_factor,
            last_correct=record.last_correct,
            important=record.important,
        )


class DueItemResponse(BaseModel):
    card_id: str
    question: str | None = None
    category: str | None = None
    card_type: str | None = None
    progress: ProgressResponse | None = None

    @classmethod
    def from_item(cls, item: DueItem) -> "DueItemResponse":
        return cls(
            card_id=item.card.card_id,
            question=item.card.question,
            category=item.card.category,
            card_type=item.card.card_type,
            progress=ProgressResponse.from_record(item.progress) if item.progress else None,
        )


class DueSummaryResponse(BaseModel):
    due_now: int
    due_in_15_minutes: int
    due_in_next_hour: int
    due_today: int
    due_tomorrow: int
    total: int


class AttemptEntryResponse(BaseModel):
    entry_id: str
    card_id: str
    attempted_at: datetime
    is_correct: bool
    attempt_id: str | None = None

    @classmethod
    def from_entry(cls, entry: AttemptEntry) -> "AttemptEntryResponse":
        return cls(
            entry_id=entry.entry_id,
            card_id=entry.card_id,
            attempted_at=entry.attempted_at,
            is_correct=entry.is_correct,
            attempt_id=entry.attempt_id,
        )


class ActivityResponse(BaseModel):
    learner_id: str
    day: date
    study_count: int


start_time = time.time()


def _raise_http(e: Exception) -> NoReturn:
    if isinstance(e, InvalidInputError):
        raise HTTPException(status_code=400, detail=str(e)) from e
    if isinstance(e, PersistenceError):
        logger.error(f"Storage failure: {e}")
        raise HTTPException(status_code=503, detail=f"storage unavailable: {e}") from e
    raise e


@app.get("/health", response_model=HealthResponse)
async def health_check():
    """
    Simple health check to verify server is reachable.
    """
    return HealthResponse(status="ok", version=VERSION, uptime_seconds=time.time() - start_time)


@app.get("/version")
async def get_version():
    return {"version": VERSION}


@app.post("/attempts", response_model=ProgressResponse)
async def record_attempt(
    req: AttemptRequest, scheduler: SchedulerService = Depends(get_scheduler)
):
    """
    Record one answered card and return the pair's new progress.
    """
    try:
        record = await scheduler.record_attempt(
            req.learner_id,
            req.card_id,
            req.is_correct,
            now=req.now,
            attempt_id=req.attempt_id,
        )
    except (InvalidInputError, PersistenceError) as e:
        _raise_http(e)
    return ProgressResponse.from_record(record)


@app.get("/learners/{learner_id}/due", response_model=list[DueItemResponse])
async def due_items(
    learner_id: str,
    now: datetime | None = None,
    exclude_recent_minutes: int | None = None,
    scheduler: SchedulerService = Depends(get_scheduler),
):
    """
    Cards the learner has never seen plus cards due at ``now``.
    Pass ``exclude_recent_minutes`` to skip cards answered moments ago.
    """
    window = (
        timedelta(minutes=exclude_recent_minutes) if exclude_recent_minutes is not None else None
    )
    try:
        items = await scheduler.due_items(learner_id, now=now, exclude_recent=window)
    except (InvalidInputError, PersistenceError) as e:
        _raise_http(e)
    return [DueItemResponse.from_item(item) for item in items]


@app.get("/learners/{learner_id}/due/summary", response_model=DueSummaryResponse)
async def due_summary(
    learner_id: str,
    now: datetime | None = None,
    scheduler: SchedulerService = Depends(get_scheduler),
):
    try:
        summary = await scheduler.due_summary(learner_id, now=now)
    except (InvalidInputError, PersistenceError) as e:
        _raise_http(e)
    return DueSummaryResponse(
        due_now=summary.due_now,
        due_in_15_minutes=summary.due_in_15_minutes,
        due_in_next_hour=summary.due_in_next_hour,
        due_today=summary.due_today,
        due_tomorrow=summary.due_tomorrow,
        total=summary.total,
    )


@app.get("/learners/{learner_id}/progress", response_model=list[ProgressResponse])
async def list_progress(learner_id: str, scheduler: SchedulerService = Depends(get_scheduler)):
    try:
        records = await scheduler.list_progress(learner_id)
    except (InvalidInputError, PersistenceError) as e:
        _raise_http(e)
    return [ProgressResponse.from_record(r) for r in records]


@app.get("/learners/{learner_id}/progress/{card_id}", response_model=ProgressResponse)
async def get_progress(
    learner_id: str, card_id: str, scheduler: SchedulerService = Depends(get_scheduler)
):
    try:
        record = await scheduler.get_progress(learner_id, card_id)
    except (InvalidInputError, PersistenceError) as e:
        _raise_http(e)
    if record is None:
        raise HTTPException(status_code=404, detail=f"no progress for {learner_id}/{card_id}")
    return ProgressResponse.from_record(record)


@app.get(
    "/learners/{learner_id}/progress/{card_id}/history",
    response_model=list[AttemptEntryResponse],
)
async def card_history(
    learner_id: str,
    card_id: str,
    limit: int = 10,
    scheduler: SchedulerService = Depends(get_scheduler),
):
    try:
        entries = await scheduler.card_history(learner_id, card_id, limit=limit)
    except (InvalidInputError, PersistenceError) as e:
        _raise_http(e)
    return [AttemptEntryResponse.from_entry(entry) for entry in entries]


@app.get("/learners/{learner_id}/activity/{day}", response_model=ActivityResponse)
async def activity(
    learner_id: str, day: date, scheduler: SchedulerService = Depends(get_scheduler)
):
    try:
        count = await scheduler.study_count(learner_id, day)
    except (InvalidInputError, PersistenceError) as e:
        _raise_http(e)
    return ActivityResponse(learner_id=learner_id, day=day, study_count=count)


class PruneResponse(BaseModel):
    learner_id: str
    deleted_count: int


@app.delete("/learners/{learner_id}/attempts", response_model=PruneResponse)
async def prune_attempts(
    learner_id: str,
    older_than_days: int = C.ATTEMPT_RETENTION_DAYS,
    now: datetime | None = None,
    scheduler: SchedulerService = Depends(get_scheduler),
):
    """
    Delete attempt log entries older than ``older_than_days``.
    Progress and daily counters are kept.
    """
    try:
        deleted = await scheduler.prune_attempts(
            learner_id, older_than=timedelta(days=older_than_days), now=now
        )
    except (InvalidInputError, PersistenceError) as e:
        _raise_http(e)
    return PruneResponse(learner_id=learner_id, deleted_count=deleted)
