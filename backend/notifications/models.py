"""
Notification domain models.

Defines notifications, registered devices, per-device delivery attempts and
the inventory snapshot rows the detection jobs scan.
"""

from dataclasses import dataclass, asdict, replace
from datetime import datetime, timezone
from typing import Optional, Dict, Any
from enum import Enum

from transports.contracts import DeliveryOutcome, Provider


class NotificationType(str, Enum):
    """Kinds of farm events that raise notifications."""
    LOW_STOCK = "low_stock"
    EXPIRY = "expiry"
    MAINTENANCE = "maintenance"
    VACCINATION = "vaccination"
    BREEDING = "breeding"
    GENERIC = "generic"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class NotificationStatus(str, Enum):
    """Lifecycle: pending -> sent|failed, sent -> read."""
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"
    READ = "read"

    def can_transition_to(self, target: "NotificationStatus") -> bool:
        return target in ALLOWED_TRANSITIONS[self]


ALLOWED_TRANSITIONS = {
    NotificationStatus.PENDING: frozenset({NotificationStatus.SENT, NotificationStatus.FAILED}),
    NotificationStatus.SENT: frozenset({NotificationStatus.READ}),
    NotificationStatus.FAILED: frozenset(),
    NotificationStatus.READ: frozenset(),
}


def allowed_sources(target: NotificationStatus) -> frozenset:
    """Statuses from which `target` may be entered."""
    return frozenset(s for s, targets in ALLOWED_TRANSITIONS.items() if target in targets)


# Per-user setting key that mutes each notification type
PREFERENCE_KEYS = {
    NotificationType.LOW_STOCK: "lowStockAlerts",
    NotificationType.EXPIRY: "expiryAlerts",
    NotificationType.MAINTENANCE: "maintenanceAlerts",
    NotificationType.VACCINATION: "vaccinationAlerts",
    NotificationType.BREEDING: "breedingAlerts",
}


def is_type_enabled(settings: Optional[Dict[str, Any]], notification_type: NotificationType) -> bool:
    """A type is enabled unless the user's settings explicitly turn it off."""
    key = PREFERENCE_KEYS.get(notification_type)
    if key is None or not settings:
        return True
    return settings.get(key) is not False


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Notification:
    """A notification addressed to one user."""
    user_id: str
    type: NotificationType
    title: str
    message: str
    priority: Priority = Priority.MEDIUM
    status: NotificationStatus = NotificationStatus.PENDING
    related_model_type: Optional[str] = None
    related_model_id: Optional[str] = None
    scheduled_for: Optional[datetime] = None
    sent_at: Optional[datetime] = None
    read_at: Optional[datetime] = None
    created_at: datetime = None
    id: Optional[str] = None

    def __post_init__(self):
        if self.created_at is None:
            object.__setattr__(self, 'created_at', _now())

    def with_status(self, status: NotificationStatus, at: datetime) -> "Notification":
        """Copy with a new status and the matching timestamp field set."""
        if status == NotificationStatus.SENT:
            return replace(self, status=status, sent_at=at)
        if status == NotificationStatus.READ:
            return replace(self, status=status, read_at=at)
        return replace(self, status=status)

    def push_data(self) -> Dict[str, str]:
        """Deep-link payload echoed to the client with every push."""
        return {
            "notificationId": self.id or "",
            "type": self.type.value,
            "relatedModelType": self.related_model_type or "",
            "relatedModelId": "" if self.related_model_id is None else str(self.related_model_id),
        }

    def to_mongo_doc(self) -> dict:
        """Convert to MongoDB document."""
        doc = asdict(self)
        doc.pop('id')
        doc['type'] = self.type.value
        doc['priority'] = self.priority.value
        doc['status'] = self.status.value
        return doc

    @classmethod
    def from_mongo_doc(cls, doc: dict) -> "Notification":
        return cls(
            id=str(doc['_id']),
            user_id=doc['user_id'],
            type=NotificationType(doc['type']),
            title=doc['title'],
            message=doc['message'],
            priority=Priority(doc.get('priority', Priority.MEDIUM.value)),
            status=NotificationStatus(doc.get('status', NotificationStatus.PENDING.value)),
            related_model_type=doc.get('related_model_type'),
            related_model_id=doc.get('related_model_id'),
            scheduled_for=doc.get('scheduled_for'),
            sent_at=doc.get('sent_at'),
            read_at=doc.get('read_at'),
            created_at=doc.get('created_at'),
        )


@dataclass(frozen=True)
class Device:
    """A push registration for a user's device."""
    user_id: str
    token: str
    provider: Provider = Provider.UNKNOWN  # set once at registration
    is_active: bool = True
    last_active: Optional[datetime] = None
    id: Optional[str] = None

    def to_mongo_doc(self) -> dict:
        """Convert to MongoDB document."""
        doc = asdict(self)
        doc.pop('id')
        doc['provider'] = self.provider.value
        return doc

    @classmethod
    def from_mongo_doc(cls, doc: dict) -> "Device":
        return cls(
            id=str(doc['_id']),
            user_id=doc['user_id'],
            token=doc['token'],
            provider=Provider(doc.get('provider', Provider.UNKNOWN.value)),
            is_active=doc.get('is_active', True),
            last_active=doc.get('last_active'),
        )


@dataclass(frozen=True)
class DeliveryAttempt:
    """Outcome of dispatching one notification to one device. Not persisted."""
    notification_id: Optional[str]
    device_id: Optional[str]
    token: str
    transport: Provider
    outcome: DeliveryOutcome
    error_code: Optional[str] = None
    ticket_id: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.outcome == DeliveryOutcome.SUCCESS

    @property
    def requests_deactivation(self) -> bool:
        return self.outcome == DeliveryOutcome.HARD_FAIL


@dataclass(frozen=True)
class NotificationRequest:
    """What a detection job wants sent; the engine turns it into a Notification."""
    user_id: str
    type: NotificationType
    title: str
    message: str
    priority: Priority = Priority.HIGH
    related_model_type: Optional[str] = None
    related_model_id: Optional[str] = None

    def to_notification(self) -> Notification:
        return Notification(
            user_id=self.user_id,
            type=self.type,
            title=self.title,
            message=self.message,
            priority=self.priority,
            related_model_type=self.related_model_type,
            related_model_id=self.related_model_id,
        )


@dataclass(frozen=True)
class StockItem:
    """One row of the inventory snapshot."""
    id: str
    user_id: str
    name: str
    quantity: float
    minimum_quantity: Optional[float] = None
    unit: str = ""
    expiry_date: Optional[datetime] = None
    model_type: str = "Stock"

    @classmethod
    def from_mongo_doc(cls, doc: dict) -> "StockItem":
        return cls(
            id=str(doc['_id']),
            user_id=doc['user_id'],
            name=doc.get('name', ''),
            quantity=doc.get('quantity', 0),
            minimum_quantity=doc.get('minimum_quantity'),
            unit=doc.get('unit', ''),
            expiry_date=doc.get('expiry_date'),
            model_type=doc.get('model_type', 'Stock'),
        )
