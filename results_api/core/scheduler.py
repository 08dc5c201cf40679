"""APScheduler configuration for deferred background jobs."""

import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Annotated, Any
from uuid import uuid4

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.schedulers.base import BaseScheduler
from apscheduler.triggers.date import DateTrigger
from fastapi import Depends, Request

logger = logging.getLogger(__name__)


def create_scheduler() -> AsyncIOScheduler:
    """Create and configure the scheduler (not started)."""
    scheduler = AsyncIOScheduler(
        timezone="UTC",
        job_defaults={
            "coalesce": True,  # Combine missed runs
            "max_instances": 1,
            "misfire_grace_time": 3600,  # Allow 1 hour grace period for missed jobs
        },
    )
    logger.info("Scheduler initialized")
    return scheduler


def start_scheduler(scheduler: AsyncIOScheduler) -> None:
    """Start the scheduler."""
    if not scheduler.running:
        scheduler.start()
        logger.info("Scheduler started")


def stop_scheduler(scheduler: AsyncIOScheduler) -> None:
    """Stop the scheduler gracefully."""
    if scheduler.running:
        scheduler.shutdown(wait=True)
        logger.info("Scheduler stopped")


def schedule_once(
    scheduler: BaseScheduler,
    func: Callable[..., Any],
    delay_seconds: float,
    name: str,
    args: list[Any] | None = None,
) -> str:
    """Run ``func`` once after ``delay_seconds``; returns the job id."""
    job_id = f"{name}-{uuid4().hex[:12]}"
    run_date = datetime.now(timezone.utc) + timedelta(seconds=delay_seconds)
    scheduler.add_job(
        func,
        trigger=DateTrigger(run_date=run_date),
        args=args or [],
        id=job_id,
        name=name,
    )
    logger.info(f"Scheduled job {job_id} at {run_date.isoformat()}")
    return job_id


def get_scheduler(request: Request) -> AsyncIOScheduler:
    """Scheduler configured on the running application."""
    return request.app.state.scheduler


Scheduler = Annotated[AsyncIOScheduler, Depends(get_scheduler)]
