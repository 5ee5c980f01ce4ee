from fastapi import FastAPI, APIRouter, HTTPException, Header, Request
from dotenv import load_dotenv
from starlette.middleware.cors import CORSMiddleware
from motor.motor_asyncio import AsyncIOMotorClient
from contextlib import asynccontextmanager
import logging
from pathlib import Path
from pydantic import BaseModel
from typing import List, Optional
from datetime import datetime

from common.errors import ConfigurationError, InvalidTransitionError, StoreError
from common.settings import PushSettings
from notifications import Notification, NotificationService
from notifications.memory_store import InMemoryInventorySource, InMemoryNotificationStore
from notifications.store import MongoInventorySource, MongoNotificationStore

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

# Set up logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


async def connect_to_mongo(settings: PushSettings):
    """Open the MongoDB connection and return (client, db)."""
    client = AsyncIOMotorClient(settings.mongo_url, serverSelectionTimeoutMS=5000)
    await client.admin.command('ping')
    logger.info("MongoDB connection successful")
    return client, client[settings.db_name]


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = PushSettings.from_env()
    client = None
    if settings.uses_fake_transports:
        logger.info(f"[PUSH] {settings.mode} mode: using in-memory store and fake transports")
        store = InMemoryNotificationStore()
        inventory = InMemoryInventorySource()
    else:
        client, db = await connect_to_mongo(settings)
        store = MongoNotificationStore(db)
        await store.ensure_indexes()
        inventory = MongoInventorySource(db)

    try:
        service = NotificationService.build(settings, store, inventory)
    except ConfigurationError:
        if client is not None:
            client.close()
        raise

    app.state.service = service
    service.start()
    try:
        yield
    finally:
        await service.close()
        if client is not None:
            client.close()


app = FastAPI(title="Fallah Notifications", lifespan=lifespan)
api_router = APIRouter(prefix="/api/notifications")


# ==================== Models ====================

class NotificationResponse(BaseModel):
    id: str
    type: str
    title: str
    message: str
    priority: str
    status: str
    related_model_type: Optional[str] = None
    related_model_id: Optional[str] = None
    sent_at: Optional[datetime] = None
    read_at: Optional[datetime] = None
    created_at: datetime

    @classmethod
    def from_notification(cls, notification: Notification) -> "NotificationResponse":
        return cls(
            id=notification.id,
            type=notification.type.value,
            title=notification.title,
            message=notification.message,
            priority=notification.priority.value,
            status=notification.status.value,
            related_model_type=notification.related_model_type,
            related_model_id=(
                None if notification.related_model_id is None
                else str(notification.related_model_id)
            ),
            sent_at=notification.sent_at,
            read_at=notification.read_at,
            created_at=notification.created_at,
        )


class NotificationListResponse(BaseModel):
    notifications: List[NotificationResponse]
    count: int


class UnreadCountResponse(BaseModel):
    count: int


class MarkAllReadResponse(BaseModel):
    success: bool
    updated: int


class NotificationSettings(BaseModel):
    lowStockAlerts: Optional[bool] = None
    expiryAlerts: Optional[bool] = None
    maintenanceAlerts: Optional[bool] = None
    vaccinationAlerts: Optional[bool] = None
    breedingAlerts: Optional[bool] = None


class UnregisterResponse(BaseModel):
    success: bool
    deactivated: bool


# ==================== Routes ====================

def _service(request: Request) -> NotificationService:
    return request.app.state.service


def _unavailable(action: str, error: StoreError) -> HTTPException:
    logger.error(f"[PUSH] Error {action}: {error}")
    return HTTPException(status_code=503, detail="Notification store unavailable")


@api_router.get("", response_model=NotificationListResponse)
async def list_notifications(
    request: Request,
    limit: int = 100,
    x_user_id: str = Header(...),
):
    """Newest notifications first."""
    try:
        notifications = await _service(request).engine.list_for_user(x_user_id, limit)
    except StoreError as e:
        raise _unavailable("listing notifications", e)
    return NotificationListResponse(
        notifications=[NotificationResponse.from_notification(n) for n in notifications],
        count=len(notifications),
    )


@api_router.get("/unread-count", response_model=UnreadCountResponse)
async def unread_count(request: Request, x_user_id: str = Header(...)):
    try:
        count = await _service(request).engine.unread_count(x_user_id)
    except StoreError as e:
        raise _unavailable("counting unread notifications", e)
    return UnreadCountResponse(count=count)


@api_router.put("/read-all", response_model=MarkAllReadResponse)
async def mark_all_read(request: Request, x_user_id: str = Header(...)):
    try:
        updated = await _service(request).engine.mark_all_read(x_user_id)
    except StoreError as e:
        raise _unavailable("marking notifications read", e)
    return MarkAllReadResponse(success=True, updated=updated)


@api_router.get("/settings", response_model=NotificationSettings)
async def get_settings(request: Request, x_user_id: str = Header(...)):
    try:
        settings = await _service(request).engine.get_settings(x_user_id)
    except StoreError as e:
        raise _unavailable("loading notification settings", e)
    return NotificationSettings(**settings)


@api_router.put("/settings", response_model=NotificationSettings)
async def update_settings(
    body: NotificationSettings,
    request: Request,
    x_user_id: str = Header(...),
):
    """Merge the provided flags into the user's notification settings."""
    changes = body.model_dump(exclude_none=True)
    try:
        settings = await _service(request).engine.update_settings(x_user_id, changes)
    except StoreError as e:
        raise _unavailable("updating notification settings", e)
    return NotificationSettings(**settings)


@api_router.post("/test", response_model=NotificationResponse)
async def send_test_notification(request: Request, x_user_id: str = Header(...)):
    """Send a test push notification to the caller's devices."""
    try:
        notification = await _service(request).engine.send_test(x_user_id)
    except StoreError as e:
        raise _unavailable("sending test notification", e)
    return NotificationResponse.from_notification(notification)


@api_router.put("/{notification_id}/read", response_model=NotificationResponse)
async def mark_read(notification_id: str, request: Request, x_user_id: str = Header(...)):
    try:
        notification = await _service(request).engine.mark_read(notification_id, x_user_id)
    except InvalidTransitionError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except StoreError as e:
        raise _unavailable("marking notification read", e)
    if notification is None:
        raise HTTPException(status_code=404, detail="Notification not found")
    return NotificationResponse.from_notification(notification)


@api_router.delete("/devices/{token}", response_model=UnregisterResponse)
async def unregister_device(token: str, request: Request, x_user_id: str = Header(...)):
    """Stop delivering to one of the caller's push tokens (logout, uninstall)."""
    try:
        deactivated = await _service(request).lifecycle.mark_inactive(
            token, reason=f"unregistered by user {x_user_id}", user_id=x_user_id
        )
    except StoreError as e:
        raise _unavailable("unregistering device", e)
    return UnregisterResponse(success=True, deactivated=deactivated)


# Add CORS middleware first, before including router
app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router)
