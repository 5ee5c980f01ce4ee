"""
Notification Engine - creates notifications and drives them to a final status.

Per notification:
    pending --(>=1 successful attempt)--> sent
    pending --(no devices, or no attempt succeeded)--> failed
    sent --(user reads it)--> read

Status updates are conditional on the stored status, so attempts may land in
any order: the first success tips the record to `sent` and nothing can move it
back. Dispatch waits at most `timeout_seconds`; slower attempts finish in the
background and still apply their transition while the record is pending.
"""

import asyncio
import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence, Set, Union

from common.errors import InvalidTransitionError, StoreError

from .devices import DeviceLifecycleManager
from .models import (
    DeliveryAttempt,
    Device,
    Notification,
    NotificationRequest,
    NotificationStatus,
    NotificationType,
    Priority,
    is_type_enabled,
)
from .receipts import ReceiptReconciler
from .router import DispatchRouter
from .store import NotificationRecordStore

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0

TEST_TITLE = "Test notification"
TEST_MESSAGE = "This is a test notification to confirm that push delivery works."


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class NotificationEngine:
    """Orchestrates persistence, routing, status transitions and device retirement."""

    def __init__(
        self,
        store: NotificationRecordStore,
        router: DispatchRouter,
        lifecycle: DeviceLifecycleManager,
        reconciler: Optional[ReceiptReconciler] = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.router = router
        self.lifecycle = lifecycle
        self.reconciler = reconciler
        self.timeout_seconds = timeout_seconds
        self.clock = clock
        self._background: Set[asyncio.Task] = set()
        self._detached: Set[asyncio.Task] = set()

    # ==================== Creation & dispatch ====================

    async def create(self, request: Union[NotificationRequest, Notification]) -> Notification:
        """
        Persist a notification and dispatch it to the user's active devices.

        Returns:
            The notification with the best status known when dispatch finished
            or the timeout elapsed

        Raises:
            StoreError: If the record cannot be persisted or devices cannot be loaded
        """
        if isinstance(request, NotificationRequest):
            notification = request.to_notification()
        else:
            notification = request
        notification = replace(notification, status=NotificationStatus.PENDING)

        notification_id = await self.store.create(notification)
        notification = replace(notification, id=notification_id)

        devices = await self.store.find_active_devices(notification.user_id)
        if not devices:
            logger.info(f"[PUSH] No active devices for user {notification.user_id}")
            await self._transition(notification_id, NotificationStatus.FAILED)
            return await self._current(notification)

        task = asyncio.create_task(self._dispatch(notification, devices))
        self._background.add(task)
        task.add_done_callback(self._dispatch_done)
        try:
            await asyncio.wait_for(asyncio.shield(task), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            self._detached.add(task)
            logger.warning(
                f"[PUSH] Dispatch of notification {notification_id} exceeded "
                f"{self.timeout_seconds}s, finishing in background"
            )
        return await self._current(notification)

    async def notify(self, request: NotificationRequest) -> Optional[Notification]:
        """create() unless the user switched this notification type off."""
        settings = await self.store.get_notification_settings(request.user_id)
        if not is_type_enabled(settings, request.type):
            logger.info(
                f"[PUSH] {request.type.value} notifications disabled for user {request.user_id}"
            )
            return None
        return await self.create(request)

    async def send_test(self, user_id: str) -> Notification:
        return await self.create(NotificationRequest(
            user_id=user_id,
            type=NotificationType.GENERIC,
            title=TEST_TITLE,
            message=TEST_MESSAGE,
            priority=Priority.HIGH,
        ))

    async def _dispatch(
        self, notification: Notification, devices: Sequence[Device]
    ) -> List[DeliveryAttempt]:
        async def on_attempt(attempt: DeliveryAttempt) -> None:
            if attempt.succeeded:
                await self._transition(notification.id, NotificationStatus.SENT)

        attempts = await self.router.route(notification, devices, on_attempt=on_attempt)

        succeeded = sum(1 for a in attempts if a.succeeded)
        final = NotificationStatus.SENT if succeeded else NotificationStatus.FAILED
        await self._transition(notification.id, final)

        # Retire dead tokens only once every device has been tried
        for attempt in attempts:
            if attempt.requests_deactivation:
                await self._retire(attempt)

        if self.reconciler is not None:
            self.reconciler.track(attempts)

        logger.info(
            f"[PUSH] Notification {notification.id} ({notification.type.value}): "
            f"{succeeded}/{len(attempts)} delivered, status {final.value}"
        )
        return attempts

    async def _retire(self, attempt: DeliveryAttempt) -> None:
        try:
            await self.lifecycle.mark_inactive(attempt.token, attempt.error_code or "hard-fail")
        except StoreError as e:
            logger.error(f"[PUSH] Could not deactivate device {str(attempt.token)[:20]}...: {e}")

    def _dispatch_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        detached = task in self._detached
        self._detached.discard(task)
        if task.cancelled() or not detached:
            return
        error = task.exception()
        if error is not None:
            logger.error(f"[PUSH] Background dispatch failed: {error!r}")

    async def drain(self) -> None:
        """Wait for every background dispatch to finish."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def _transition(self, notification_id: str, status: NotificationStatus) -> bool:
        applied = await self.store.update_status(notification_id, status, self.clock())
        if not applied:
            logger.debug(f"Notification {notification_id}: transition to {status.value} not applied")
        return applied

    async def _current(self, notification: Notification) -> Notification:
        stored = await self.store.get(notification.id)
        return stored or notification

    # ==================== Read state ====================

    async def mark_read(self, notification_id: str, user_id: str) -> Optional[Notification]:
        """
        Mark a delivered notification as read.

        Returns:
            Updated notification, or None if it does not exist for this user

        Raises:
            InvalidTransitionError: If the notification was never delivered
        """
        notification = await self.store.get(notification_id)
        if notification is None or notification.user_id != user_id:
            return None
        if notification.status == NotificationStatus.READ:
            return notification
        if not notification.status.can_transition_to(NotificationStatus.READ):
            raise InvalidTransitionError(
                notification_id, notification.status.value, NotificationStatus.READ.value
            )
        await self._transition(notification_id, NotificationStatus.READ)
        return await self.store.get(notification_id)

    async def mark_all_read(self, user_id: str) -> int:
        return await self.store.mark_all_read(user_id, self.clock())

    async def unread_count(self, user_id: str) -> int:
        return await self.store.count_unread(user_id)

    async def list_for_user(self, user_id: str, limit: int = 100) -> List[Notification]:
        return await self.store.list_for_user(user_id, limit)

    # ==================== Preferences ====================

    async def get_settings(self, user_id: str) -> Dict[str, Any]:
        return await self.store.get_notification_settings(user_id)

    async def update_settings(self, user_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        """Merge `changes` into the user's notification settings."""
        return await self.store.update_notification_settings(user_id, changes)
