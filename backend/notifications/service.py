"""
Notification Service - wires the push delivery engine together.

Handles:
- Building classifier, router, lifecycle manager, reconciler and engine
  from PushSettings and injected store/inventory/transports
- Starting and stopping the scheduler
- Closing transport HTTP clients
"""

import logging
from dataclasses import dataclass
from typing import Optional

from common.settings import PushSettings
from transports.registry import TransportSet, load_transports

from .detection import DetectionJobs
from .devices import DeviceLifecycleManager
from .engine import NotificationEngine
from .receipts import ReceiptReconciler
from .router import DispatchRouter
from .scheduler import NotificationScheduler
from .store import InventorySource, NotificationRecordStore
from .tokens import TokenClassifier

logger = logging.getLogger(__name__)


@dataclass
class NotificationService:
    """Fully wired notification components."""
    settings: PushSettings
    store: NotificationRecordStore
    transports: TransportSet
    classifier: TokenClassifier
    router: DispatchRouter
    lifecycle: DeviceLifecycleManager
    reconciler: ReceiptReconciler
    engine: NotificationEngine
    jobs: DetectionJobs
    scheduler: NotificationScheduler

    @classmethod
    def build(
        cls,
        settings: PushSettings,
        store: NotificationRecordStore,
        inventory: InventorySource,
        transports: Optional[TransportSet] = None,
    ) -> "NotificationService":
        """
        Build every component from settings.

        Raises:
            ConfigurationError: If real transports are selected without credentials
        """
        transports = transports or load_transports(settings)
        classifier = TokenClassifier.from_settings(settings)
        router = DispatchRouter(
            transports.expo,
            transports.fcm,
            classifier=classifier,
            concurrency=settings.push_concurrency,
        )
        lifecycle = DeviceLifecycleManager(store)
        reconciler = ReceiptReconciler(
            transports.expo,
            lifecycle,
            delay_seconds=settings.expo_receipt_delay_seconds,
        )
        engine = NotificationEngine(
            store,
            router,
            lifecycle,
            reconciler=reconciler,
            timeout_seconds=settings.notification_timeout_seconds,
        )
        jobs = DetectionJobs(inventory, expiry_horizon_days=settings.expiry_horizon_days)
        scheduler = NotificationScheduler(
            jobs,
            engine,
            reconciler=reconciler,
            hour=settings.cron_hour,
            minute=settings.cron_minute,
            receipt_interval_minutes=settings.receipt_interval_minutes,
        )
        logger.info(
            f"[PUSH] Notification service ready (mode={settings.mode}, "
            f"tokens={settings.token_mode}, concurrency={settings.push_concurrency})"
        )
        return cls(
            settings=settings,
            store=store,
            transports=transports,
            classifier=classifier,
            router=router,
            lifecycle=lifecycle,
            reconciler=reconciler,
            engine=engine,
            jobs=jobs,
            scheduler=scheduler,
        )

    def start(self):
        self.scheduler.start()

    async def close(self):
        """Stop scheduling, let in-flight dispatches finish, close HTTP clients."""
        self.scheduler.stop()
        await self.engine.drain()
        await self.transports.aclose()
