"""
Notification Record Store - persistence for notifications, devices and settings.

The engine talks to the NotificationRecordStore protocol only. Production
uses MongoNotificationStore (motor); tests and demo mode use
InMemoryNotificationStore from memory_store.py.
"""

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol

from bson import ObjectId
from bson.errors import InvalidId
from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import DESCENDING
from pymongo.errors import PyMongoError

from common.errors import StoreError

from .models import (
    Device,
    Notification,
    NotificationStatus,
    StockItem,
    allowed_sources,
)

logger = logging.getLogger(__name__)

# Timestamp field written alongside each target status
STATUS_TIMESTAMP_FIELDS = {
    NotificationStatus.SENT: "sent_at",
    NotificationStatus.READ: "read_at",
}


class NotificationRecordStore(Protocol):
    async def create(self, notification: Notification) -> str:
        ...

    async def get(self, notification_id: str) -> Optional[Notification]:
        ...

    async def update_status(
        self, notification_id: str, status: NotificationStatus, timestamp: datetime
    ) -> bool:
        """Apply the transition only if the current status allows it."""
        ...

    async def find_active_devices(self, user_id: str) -> List[Device]:
        ...

    async def deactivate_device(self, token: str, user_id: Optional[str] = None) -> int:
        """Deactivate registrations holding `token`, only the user's own when `user_id` is set."""
        ...

    async def list_for_user(self, user_id: str, limit: int = 100) -> List[Notification]:
        ...

    async def count_unread(self, user_id: str) -> int:
        ...

    async def mark_all_read(self, user_id: str, timestamp: datetime) -> int:
        ...

    async def get_notification_settings(self, user_id: str) -> Dict[str, Any]:
        ...

    async def update_notification_settings(
        self, user_id: str, changes: Dict[str, Any]
    ) -> Dict[str, Any]:
        ...


class InventorySource(Protocol):
    async def list_stock_items(self) -> List[StockItem]:
        ...


@contextmanager
def _store_errors(operation: str):
    try:
        yield
    except PyMongoError as e:
        logger.error(f"Store operation {operation} failed: {e}")
        raise StoreError(f"{operation} failed: {e}") from e


def _object_id(value: str) -> Optional[ObjectId]:
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        return None


class MongoNotificationStore:
    """MongoDB-backed store (motor)."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db

    async def ensure_indexes(self):
        """Create MongoDB indexes for queries."""
        with _store_errors("ensure_indexes"):
            await self.db.notifications.create_index("user_id")
            await self.db.notifications.create_index([("created_at", DESCENDING)])
            await self.db.user_devices.create_index("user_id")
            await self.db.user_devices.create_index("token", unique=True)

    async def create(self, notification: Notification) -> str:
        with _store_errors("create notification"):
            result = await self.db.notifications.insert_one(notification.to_mongo_doc())
        return str(result.inserted_id)

    async def get(self, notification_id: str) -> Optional[Notification]:
        oid = _object_id(notification_id)
        if oid is None:
            return None
        with _store_errors("get notification"):
            doc = await self.db.notifications.find_one({"_id": oid})
        return Notification.from_mongo_doc(doc) if doc else None

    async def update_status(
        self, notification_id: str, status: NotificationStatus, timestamp: datetime
    ) -> bool:
        oid = _object_id(notification_id)
        if oid is None:
            return False
        update: Dict[str, Any] = {"status": status.value}
        ts_field = STATUS_TIMESTAMP_FIELDS.get(status)
        if ts_field:
            update[ts_field] = timestamp
        sources = [s.value for s in allowed_sources(status)]
        with _store_errors("update status"):
            result = await self.db.notifications.update_one(
                {"_id": oid, "status": {"$in": sources}},
                {"$set": update},
            )
        return result.modified_count == 1

    async def find_active_devices(self, user_id: str) -> List[Device]:
        with _store_errors("find devices"):
            docs = await self.db.user_devices.find(
                {"user_id": user_id, "is_active": True}
            ).to_list(length=None)
        return [Device.from_mongo_doc(doc) for doc in docs]

    async def deactivate_device(self, token: str, user_id: Optional[str] = None) -> int:
        query: Dict[str, Any] = {"token": token}
        if user_id is not None:
            query["user_id"] = user_id
        with _store_errors("deactivate device"):
            result = await self.db.user_devices.update_many(
                query,
                {"$set": {"is_active": False}},
            )
        return result.matched_count

    async def list_for_user(self, user_id: str, limit: int = 100) -> List[Notification]:
        with _store_errors("list notifications"):
            docs = await self.db.notifications.find(
                {"user_id": user_id}
            ).sort("created_at", DESCENDING).to_list(length=limit)
        return [Notification.from_mongo_doc(doc) for doc in docs]

    async def count_unread(self, user_id: str) -> int:
        with _store_errors("count unread"):
            return await self.db.notifications.count_documents(
                {"user_id": user_id, "status": NotificationStatus.SENT.value}
            )

    async def mark_all_read(self, user_id: str, timestamp: datetime) -> int:
        with _store_errors("mark all read"):
            result = await self.db.notifications.update_many(
                {"user_id": user_id, "status": NotificationStatus.SENT.value},
                {"$set": {"status": NotificationStatus.READ.value, "read_at": timestamp}},
            )
        return result.modified_count

    async def get_notification_settings(self, user_id: str) -> Dict[str, Any]:
        with _store_errors("get settings"):
            doc = await self.db.users.find_one(
                {"user_id": user_id}, {"notification_settings": 1}
            )
        return dict((doc or {}).get("notification_settings") or {})

    async def update_notification_settings(
        self, user_id: str, changes: Dict[str, Any]
    ) -> Dict[str, Any]:
        update = {f"notification_settings.{key}": value for key, value in changes.items()}
        with _store_errors("update settings"):
            if update:
                await self.db.users.update_one(
                    {"user_id": user_id}, {"$set": update}, upsert=True
                )
        return await self.get_notification_settings(user_id)


class MongoInventorySource:
    """Reads the inventory snapshot from the `stocks` collection."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db

    async def list_stock_items(self) -> List[StockItem]:
        with _store_errors("list stock"):
            docs = await self.db.stocks.find({}).to_list(length=None)
        return [StockItem.from_mongo_doc(doc) for doc in docs]
