"""
Notification Scheduler

Daily job that:
1. Scans inventory for low stock
2. Scans inventory for items close to expiry
3. Creates and dispatches a notification for every hit

A second interval job settles pending Expo receipts. Both run via
APScheduler once start() is called; nothing runs at import time.

Runs are single-flight: a trigger that fires while a run is still in progress
is skipped, never queued or cancelled.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from .detection import DetectionJobs
from .engine import NotificationEngine
from .models import NotificationRequest
from .receipts import ReceiptReconciler

logger = logging.getLogger(__name__)

DETECTION_JOB_ID = "notification-checks"
RECEIPTS_JOB_ID = "expo-receipts"


@dataclass(frozen=True)
class RunSummary:
    low_stock: int
    expiry: int
    created: int
    muted: int


class NotificationScheduler:
    """Scheduler for inventory detection jobs and receipt reconciliation."""

    # Default schedule: every day at 09:00 UTC
    DEFAULT_HOUR = 9
    DEFAULT_MINUTE = 0

    # Receipt checks every N minutes
    RECEIPT_INTERVAL_MINUTES = 15

    def __init__(
        self,
        jobs: DetectionJobs,
        engine: NotificationEngine,
        reconciler: Optional[ReceiptReconciler] = None,
        hour: int = DEFAULT_HOUR,
        minute: int = DEFAULT_MINUTE,
        receipt_interval_minutes: int = RECEIPT_INTERVAL_MINUTES,
        timezone: str = "UTC",
    ):
        """
        Initialize scheduler.

        Args:
            jobs: Detection jobs over the inventory snapshot
            engine: NotificationEngine used to create notifications
            reconciler: Optional Expo receipt reconciler
            hour: Hour of the daily run
            minute: Minute of the daily run
            receipt_interval_minutes: Period of the receipt job
            timezone: Timezone the daily trigger is evaluated in
        """
        self.jobs = jobs
        self.engine = engine
        self.reconciler = reconciler
        self.hour = hour
        self.minute = minute
        self.receipt_interval_minutes = receipt_interval_minutes
        self.timezone = timezone
        self._running = False
        self._scheduler: Optional[AsyncIOScheduler] = None

    @property
    def is_running(self) -> bool:
        """True while a detection run is in progress."""
        return self._running

    @property
    def started(self) -> bool:
        return self._scheduler is not None

    async def run_once(self) -> Optional[RunSummary]:
        """
        Run low-stock then expiry detection and create their notifications.

        Returns:
            RunSummary, or None if another run was already in progress
        """
        if self._running:
            logger.info("[PUSH] Notification checks already running, skipping trigger")
            return None
        self._running = True
        try:
            logger.info("[PUSH] Running notification checks")
            low_stock = await self.jobs.low_stock()
            low_created, low_muted = await self._create_all(low_stock)
            expiring = await self.jobs.expiry()
            exp_created, exp_muted = await self._create_all(expiring)
            summary = RunSummary(
                low_stock=len(low_stock),
                expiry=len(expiring),
                created=low_created + exp_created,
                muted=low_muted + exp_muted,
            )
            logger.info(
                f"[PUSH] Notification checks complete: {summary.low_stock} low stock, "
                f"{summary.expiry} expiring, {summary.created} created, {summary.muted} muted"
            )
            return summary
        finally:
            self._running = False

    async def _create_all(self, requests: List[NotificationRequest]) -> Tuple[int, int]:
        # Provider calls are bounded by the router's pool, not here
        results = await asyncio.gather(
            *(self.engine.notify(request) for request in requests),
            return_exceptions=True,
        )
        errors = [r for r in results if isinstance(r, BaseException)]
        if errors:
            raise errors[0]
        created = sum(1 for r in results if r is not None)
        return created, len(results) - created

    async def reconcile_receipts(self) -> int:
        if self.reconciler is None:
            return 0
        receipts = await self.reconciler.reconcile_due()
        return len(receipts)

    async def _scheduled_run(self):
        try:
            await self.run_once()
        except Exception as e:
            logger.error(f"[PUSH] Notification checks failed: {e!r}")

    async def _scheduled_receipts(self):
        try:
            await self.reconcile_receipts()
        except Exception as e:
            logger.error(f"[PUSH] Receipt reconciliation failed: {e!r}")

    def start(self):
        """Register jobs and start the background scheduler. Needs a running event loop."""
        if self._scheduler is not None:
            return
        scheduler = AsyncIOScheduler(timezone=self.timezone)
        scheduler.add_job(
            self._scheduled_run,
            CronTrigger(hour=self.hour, minute=self.minute, timezone=self.timezone),
            id=DETECTION_JOB_ID,
            max_instances=1,
            coalesce=True,
        )
        if self.reconciler is not None:
            scheduler.add_job(
                self._scheduled_receipts,
                IntervalTrigger(minutes=self.receipt_interval_minutes),
                id=RECEIPTS_JOB_ID,
                max_instances=1,
                coalesce=True,
            )
        scheduler.start()
        self._scheduler = scheduler
        logger.info(
            f"[PUSH] Scheduler started: daily checks at {self.hour:02d}:{self.minute:02d} "
            f"{self.timezone}"
        )

    def stop(self):
        """Stop triggering new runs. A run already in progress finishes on its own."""
        if self._scheduler is None:
            return
        self._scheduler.shutdown(wait=False)
        self._scheduler = None
        logger.info("[PUSH] Scheduler stopped")

    def job_ids(self) -> List[str]:
        if self._scheduler is None:
            return []
        return [job.id for job in self._scheduler.get_jobs()]
