"""
Scheduler Factory
Centralizes the logic for selecting the storage adapter and wiring the service.
"""

import logging

from cadence.application.config import AppConfig
from cadence.application.scheduler.policy import SchedulingPolicy
from cadence.application.scheduler.service import SchedulerService
from cadence.infrastructure.adapters.memory_store import InMemoryProgressStore
from cadence.infrastructure.adapters.sqlite_store import SqliteProgressStore

logger = logging.getLogger(__name__)


def get_progress_store(config: AppConfig) -> SqliteProgressStore | InMemoryProgressStore:
    """
    Returns the store implementation selected by ``config.backend``.

    Both stores implement ProgressRepository and CardCatalog.
    """
    if config.backend == "memory":
        logger.info("Backend: in-memory (nothing is persisted)")
        return InMemoryProgressStore()

    logger.info(f"Backend: SQLite at {config.database_path}")
    return SqliteProgressStore(config.database_path, busy_timeout_ms=config.busy_timeout_ms)


def build_scheduler(
    config: AppConfig,
    store: SqliteProgressStore | InMemoryProgressStore | None = None,
) -> SchedulerService:
    """Wire a SchedulerService from configuration, reusing ``store`` when given."""
    if store is None:
        store = get_progress_store(config)
    return SchedulerService(
        repo=store,
        catalog=store,
        policy=SchedulingPolicy.from_config(config),
        min_session_size=config.min_session_size,
    )
