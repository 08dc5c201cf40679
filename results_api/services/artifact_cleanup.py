"""Removal of stored files that no longer belong to a result batch."""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field

from apscheduler.schedulers.base import BaseScheduler

from results_api.core.config import settings
from results_api.core.scheduler import schedule_once
from results_api.core.storage import StorageClient

logger = logging.getLogger(__name__)


@dataclass
class CleanupReport:
    """Outcome of one cleanup attempt."""

    attempt: int
    deleted: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    retry_scheduled: bool = False


class ArtifactCleanupService:
    """Deletes storage keys concurrently and retries failures later.

    Failures never propagate: each one is logged and, while attempts remain,
    the failed keys are handed to the scheduler for another run.
    """

    def __init__(
        self,
        storage: StorageClient,
        scheduler: BaseScheduler | None = None,
        max_attempts: int | None = None,
        retry_delay_seconds: float | None = None,
        max_workers: int = 4,
    ):
        self.storage = storage
        self.scheduler = scheduler
        self.max_attempts = max_attempts or settings.CLEANUP_MAX_ATTEMPTS
        self.retry_delay_seconds = (
            retry_delay_seconds
            if retry_delay_seconds is not None
            else settings.CLEANUP_RETRY_DELAY_SECONDS
        )
        self.max_workers = max_workers

    def cleanup(self, keys: list[str], attempt: int = 1) -> CleanupReport:
        report = CleanupReport(attempt=attempt)
        if not keys:
            return report

        with ThreadPoolExecutor(max_workers=min(len(keys), self.max_workers)) as executor:
            futures = {executor.submit(self.storage.delete_file, key): key for key in keys}
            for future in as_completed(futures):
                key = futures[future]
                try:
                    future.result()
                    report.deleted.append(key)
                except Exception as e:
                    logger.warning(f"[CLEANUP] Failed to delete {key} (attempt {attempt}): {e}")
                    report.failed.append(key)

        if report.failed:
            if attempt < self.max_attempts and self.scheduler is not None:
                schedule_once(
                    self.scheduler,
                    self.cleanup,
                    self.retry_delay_seconds,
                    name="artifact-cleanup",
                    args=[list(report.failed), attempt + 1],
                )
                report.retry_scheduled = True
            else:
                logger.error(
                    f"[CLEANUP] Giving up on {len(report.failed)} files after {attempt} attempts: {report.failed}"
                )

        logger.info(
            f"[CLEANUP] Attempt {attempt}: deleted={len(report.deleted)}, failed={len(report.failed)}"
        )
        return report
