"""
Tests for store.py - MongoNotificationStore queries against a mocked motor database

Asserts the filters and updates sent to each collection and the mapping of
PyMongoError to StoreError.
"""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from bson import ObjectId
from pymongo import DESCENDING
from pymongo.errors import PyMongoError, ServerSelectionTimeoutError

from common.errors import StoreError
from notifications.models import Notification, NotificationStatus, NotificationType
from notifications.store import MongoInventorySource, MongoNotificationStore

AT = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)
OID = ObjectId()
TOKEN = "ExponentPushToken[aaaaaaaaaaaaaaaaaaaaaa]"


def _cursor(docs):
    cursor = MagicMock()
    cursor.sort.return_value = cursor
    cursor.to_list = AsyncMock(return_value=docs)
    return cursor


@pytest.fixture
def db():
    return MagicMock()


@pytest.fixture
def store(db):
    return MongoNotificationStore(db)


class TestUpdateStatus:
    CASES = [
        (NotificationStatus.SENT, ["pending"], {"status": "sent", "sent_at": AT}),
        (NotificationStatus.FAILED, ["pending"], {"status": "failed"}),
        (NotificationStatus.READ, ["sent"], {"status": "read", "read_at": AT}),
    ]

    @pytest.mark.parametrize("target,sources,update", CASES)
    @pytest.mark.asyncio
    async def test_conditional_filter(self, db, store, target, sources, update):
        db.notifications.update_one = AsyncMock(return_value=MagicMock(modified_count=1))

        assert await store.update_status(str(OID), target, AT) is True

        db.notifications.update_one.assert_awaited_once_with(
            {"_id": OID, "status": {"$in": sources}},
            {"$set": update},
        )

    @pytest.mark.asyncio
    async def test_nothing_reenters_pending(self, db, store):
        db.notifications.update_one = AsyncMock(return_value=MagicMock(modified_count=0))

        assert await store.update_status(str(OID), NotificationStatus.PENDING, AT) is False

        query = db.notifications.update_one.await_args.args[0]
        assert query["status"] == {"$in": []}

    @pytest.mark.asyncio
    async def test_no_match_is_not_applied(self, db, store):
        db.notifications.update_one = AsyncMock(return_value=MagicMock(modified_count=0))

        assert await store.update_status(str(OID), NotificationStatus.SENT, AT) is False

    @pytest.mark.asyncio
    async def test_invalid_id_skips_query(self, db, store):
        db.notifications.update_one = AsyncMock()

        assert await store.update_status("not-an-id", NotificationStatus.SENT, AT) is False
        db.notifications.update_one.assert_not_awaited()


class TestDevices:
    @pytest.mark.asyncio
    async def test_deactivate_by_token(self, db, store):
        db.user_devices.update_many = AsyncMock(return_value=MagicMock(matched_count=2))

        assert await store.deactivate_device(TOKEN) == 2

        db.user_devices.update_many.assert_awaited_once_with(
            {"token": TOKEN}, {"$set": {"is_active": False}}
        )

    @pytest.mark.asyncio
    async def test_deactivate_scoped_to_user(self, db, store):
        db.user_devices.update_many = AsyncMock(return_value=MagicMock(matched_count=0))

        assert await store.deactivate_device(TOKEN, user_id="user-2") == 0

        db.user_devices.update_many.assert_awaited_once_with(
            {"token": TOKEN, "user_id": "user-2"}, {"$set": {"is_active": False}}
        )

    @pytest.mark.asyncio
    async def test_find_active_devices(self, db, store):
        db.user_devices.find.return_value = _cursor([
            {"_id": OID, "user_id": "user-1", "token": TOKEN, "provider": "expo"},
        ])

        devices = await store.find_active_devices("user-1")

        db.user_devices.find.assert_called_once_with({"user_id": "user-1", "is_active": True})
        assert [d.token for d in devices] == [TOKEN]
        assert devices[0].id == str(OID)


class TestReadState:
    @pytest.mark.asyncio
    async def test_mark_all_read_writes_read_at(self, db, store):
        db.notifications.update_many = AsyncMock(return_value=MagicMock(modified_count=3))

        assert await store.mark_all_read("user-1", AT) == 3

        db.notifications.update_many.assert_awaited_once_with(
            {"user_id": "user-1", "status": "sent"},
            {"$set": {"status": "read", "read_at": AT}},
        )

    @pytest.mark.asyncio
    async def test_count_unread(self, db, store):
        db.notifications.count_documents = AsyncMock(return_value=4)

        assert await store.count_unread("user-1") == 4
        db.notifications.count_documents.assert_awaited_once_with(
            {"user_id": "user-1", "status": "sent"}
        )

    @pytest.mark.asyncio
    async def test_list_newest_first(self, db, store):
        doc = Notification(
            user_id="user-1", type=NotificationType.GENERIC, title="t", message="m",
        ).to_mongo_doc()
        cursor = _cursor([{**doc, "_id": OID}])
        db.notifications.find.return_value = cursor

        notifications = await store.list_for_user("user-1", limit=20)

        cursor.sort.assert_called_once_with("created_at", DESCENDING)
        cursor.to_list.assert_awaited_once_with(length=20)
        assert [n.id for n in notifications] == [str(OID)]


class TestSettings:
    @pytest.mark.asyncio
    async def test_update_merges_dotted_keys(self, db, store):
        db.users.update_one = AsyncMock()
        db.users.find_one = AsyncMock(return_value={
            "notification_settings": {"lowStockAlerts": False, "expiryAlerts": True},
        })

        merged = await store.update_notification_settings("user-1", {"lowStockAlerts": False})

        db.users.update_one.assert_awaited_once_with(
            {"user_id": "user-1"},
            {"$set": {"notification_settings.lowStockAlerts": False}},
            upsert=True,
        )
        assert merged == {"lowStockAlerts": False, "expiryAlerts": True}

    @pytest.mark.asyncio
    async def test_empty_update_skips_write(self, db, store):
        db.users.update_one = AsyncMock()
        db.users.find_one = AsyncMock(return_value=None)

        assert await store.update_notification_settings("user-1", {}) == {}
        db.users.update_one.assert_not_awaited()


class TestErrors:
    CASES = [
        ("update_status", "update_one", (str(OID), NotificationStatus.SENT, AT)),
        ("mark_all_read", "update_many", ("user-1", AT)),
        ("count_unread", "count_documents", ("user-1",)),
    ]

    @pytest.mark.parametrize("method,call,args", CASES)
    @pytest.mark.asyncio
    async def test_pymongo_error_becomes_store_error(self, db, store, method, call, args):
        setattr(db.notifications, call, AsyncMock(side_effect=PyMongoError("connection reset")))

        with pytest.raises(StoreError):
            await getattr(store, method)(*args)

    @pytest.mark.asyncio
    async def test_deactivate_error(self, db, store):
        db.user_devices.update_many = AsyncMock(
            side_effect=ServerSelectionTimeoutError("no servers")
        )

        with pytest.raises(StoreError):
            await store.deactivate_device(TOKEN)

    @pytest.mark.asyncio
    async def test_inventory_read_error(self, db):
        cursor = MagicMock()
        cursor.to_list = AsyncMock(side_effect=PyMongoError("cursor killed"))
        db.stocks.find.return_value = cursor

        with pytest.raises(StoreError):
            await MongoInventorySource(db).list_stock_items()
