"""
Notifications package - push delivery for farm inventory alerts

Submodules:
- models: Notifications, devices, delivery attempts, inventory rows
- tokens: Push token classification
- router: Provider routing for one notification
- engine: Creation, dispatch and status transitions
- receipts: Expo receipt reconciliation
- devices: Device deactivation
- detection: Low-stock and expiry detection
- scheduler: Daily detection trigger
- store / memory_store: Record store implementations
- service: Component wiring
"""

from .models import (
    Device,
    DeliveryAttempt,
    Notification,
    NotificationRequest,
    NotificationStatus,
    NotificationType,
    Priority,
    StockItem,
)
from .tokens import TokenClassifier, classify_token
from .engine import NotificationEngine
from .scheduler import NotificationScheduler
from .service import NotificationService

__all__ = [
    "Device",
    "DeliveryAttempt",
    "Notification",
    "NotificationRequest",
    "NotificationStatus",
    "NotificationType",
    "Priority",
    "StockItem",
    "TokenClassifier",
    "classify_token",
    "NotificationEngine",
    "NotificationScheduler",
    "NotificationService",
]
