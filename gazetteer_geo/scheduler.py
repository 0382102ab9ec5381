"""
Scheduler module using APScheduler.
Rebuilds and republishes the gazetteer index at a configurable interval
while the previous snapshot keeps serving reads.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

if TYPE_CHECKING:
    from gazetteer_geo.engine import DisambiguationEngine

logger = logging.getLogger(__name__)

JOB_ID = "gazetteer_index_rebuild"

_scheduler: BackgroundScheduler | None = None


def _rebuild_job(engine: DisambiguationEngine) -> None:
    """Wrapper that catches exceptions so the scheduler doesn't die on failure."""
    try:
        handle = engine.build_index()
        logger.info("Scheduled index rebuild published v%d (%d places)", handle.version, handle.places)
    except Exception as e:
        logger.error("Scheduled index rebuild failed: %s", e, exc_info=True)


def create_scheduler(engine: DisambiguationEngine) -> BackgroundScheduler:
    """Create and configure the APScheduler instance."""
    global _scheduler
    interval = engine.settings.index.rebuild_interval_minutes

    _scheduler = BackgroundScheduler()
    _scheduler.add_job(
        _rebuild_job,
        trigger=IntervalTrigger(minutes=interval),
        args=[engine],
        id=JOB_ID,
        name="Gazetteer index rebuild",
        replace_existing=True,
        max_instances=1,
    )

    logger.info("Scheduler configured: index rebuilds every %d minutes", interval)
    return _scheduler


def start_scheduler(engine: DisambiguationEngine) -> BackgroundScheduler | None:
    """Start the scheduler (non-blocking)."""
    if not engine.settings.index.scheduler_enabled:
        logger.info("Scheduler disabled via config")
        return None

    scheduler = create_scheduler(engine)
    scheduler.start()
    logger.info("Scheduler started")
    return scheduler


def stop_scheduler() -> None:
    """Stop the scheduler gracefully."""
    global _scheduler
    if _scheduler is not None:
        if _scheduler.running:
            _scheduler.shutdown(wait=True)
        logger.info("Scheduler stopped")
        _scheduler = None
