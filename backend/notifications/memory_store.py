from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from common.errors import StoreError

from .models import Device, Notification, NotificationStatus, StockItem


class InMemoryNotificationStore:
    """
    Process-local NotificationRecordStore for tests and demo mode.

    Mirrors the Mongo store's semantics: status updates are conditional on
    the current status, device deactivation matches by token.
    """

    def __init__(self, devices: Optional[Iterable[Device]] = None) -> None:
        self.notifications: Dict[str, Notification] = {}
        self.devices: Dict[str, Device] = {}
        self.settings: Dict[str, Dict[str, Any]] = {}
        self.status_history: Dict[str, List[NotificationStatus]] = {}
        self.fail_writes = False
        self.fail_device_writes = False
        self._next_id = 0
        for device in devices or []:
            self.add_device(device)

    def add_device(self, device: Device) -> Device:
        if device.id is None:
            device = replace(device, id=f"device-{len(self.devices) + 1}")
        self.devices[device.token] = device
        return device

    def device(self, token: str) -> Optional[Device]:
        return self.devices.get(token)

    async def create(self, notification: Notification) -> str:
        if self.fail_writes:
            raise StoreError("create notification failed: store unavailable")
        self._next_id += 1
        notification_id = str(self._next_id)
        self.notifications[notification_id] = replace(notification, id=notification_id)
        self.status_history[notification_id] = [notification.status]
        return notification_id

    async def get(self, notification_id: str) -> Optional[Notification]:
        return self.notifications.get(notification_id)

    async def update_status(
        self, notification_id: str, status: NotificationStatus, timestamp: datetime
    ) -> bool:
        if self.fail_writes:
            raise StoreError("update status failed: store unavailable")
        current = self.notifications.get(notification_id)
        if current is None or not current.status.can_transition_to(status):
            return False
        self.notifications[notification_id] = current.with_status(status, timestamp)
        self.status_history[notification_id].append(status)
        return True

    async def find_active_devices(self, user_id: str) -> List[Device]:
        return [d for d in self.devices.values() if d.user_id == user_id and d.is_active]

    async def deactivate_device(self, token: str, user_id: Optional[str] = None) -> int:
        if self.fail_device_writes:
            raise StoreError("deactivate device failed: store unavailable")
        device = self.devices.get(token)
        if device is None or (user_id is not None and device.user_id != user_id):
            return 0
        self.devices[token] = replace(device, is_active=False)
        return 1

    async def list_for_user(self, user_id: str, limit: int = 100) -> List[Notification]:
        mine = [n for n in self.notifications.values() if n.user_id == user_id]
        mine.sort(key=lambda n: n.created_at, reverse=True)
        return mine[:limit]

    async def count_unread(self, user_id: str) -> int:
        return sum(
            1 for n in self.notifications.values()
            if n.user_id == user_id and n.status == NotificationStatus.SENT
        )

    async def mark_all_read(self, user_id: str, timestamp: datetime) -> int:
        count = 0
        for notification_id, n in list(self.notifications.items()):
            if n.user_id == user_id and n.status == NotificationStatus.SENT:
                await self.update_status(notification_id, NotificationStatus.READ, timestamp)
                count += 1
        return count

    async def get_notification_settings(self, user_id: str) -> Dict[str, Any]:
        return dict(self.settings.get(user_id, {}))

    async def update_notification_settings(
        self, user_id: str, changes: Dict[str, Any]
    ) -> Dict[str, Any]:
        self.settings.setdefault(user_id, {}).update(changes)
        return dict(self.settings[user_id])


class InMemoryInventorySource:
    def __init__(self, items: Optional[Iterable[StockItem]] = None) -> None:
        self.items: List[StockItem] = list(items or [])
        self.reads = 0

    async def list_stock_items(self) -> List[StockItem]:
        self.reads += 1
        return list(self.items)
