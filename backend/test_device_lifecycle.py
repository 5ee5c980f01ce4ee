import asyncio

import pytest

from notifications.devices import DeviceLifecycleManager
from notifications.memory_store import InMemoryNotificationStore
from notifications.models import Device

TOKEN = "ExponentPushToken[aaaaaaaaaaaaaaaaaaaaaa]"
OTHER = "ExponentPushToken[bbbbbbbbbbbbbbbbbbbbbb]"


def _store():
    return InMemoryNotificationStore([
        Device(user_id="user-1", token=TOKEN),
        Device(user_id="user-1", token=OTHER),
    ])


@pytest.mark.asyncio
async def test_mark_inactive_excludes_device():
    store = _store()
    manager = DeviceLifecycleManager(store)

    assert await manager.mark_inactive(TOKEN, "DeviceNotRegistered") is True

    active = await store.find_active_devices("user-1")
    assert [d.token for d in active] == [OTHER]


@pytest.mark.asyncio
async def test_idempotent():
    store = _store()
    manager = DeviceLifecycleManager(store)

    await manager.mark_inactive(TOKEN)
    await manager.mark_inactive(TOKEN)

    assert store.device(TOKEN).is_active is False
    assert store.device(OTHER).is_active is True


@pytest.mark.asyncio
async def test_concurrent_calls_same_token():
    store = _store()
    manager = DeviceLifecycleManager(store)

    results = await asyncio.gather(*(manager.mark_inactive(TOKEN) for _ in range(5)))

    assert all(results)
    assert store.device(TOKEN).is_active is False


@pytest.mark.asyncio
async def test_unknown_token_creates_nothing():
    store = _store()
    manager = DeviceLifecycleManager(store)

    assert await manager.mark_inactive("ExponentPushToken[never-registered]") is False
    assert store.device("ExponentPushToken[never-registered]") is None
    assert len(store.devices) == 2


@pytest.mark.asyncio
async def test_user_scope_leaves_other_users_devices():
    store = _store()
    manager = DeviceLifecycleManager(store)

    assert await manager.mark_inactive(TOKEN, user_id="user-2") is False
    assert store.device(TOKEN).is_active is True

    assert await manager.mark_inactive(TOKEN, user_id="user-1") is True
    assert store.device(TOKEN).is_active is False
