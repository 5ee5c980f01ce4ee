"""
Detection jobs - turn an inventory snapshot into notification requests.

detect_low_stock and detect_expiring are pure: same snapshot and clock in,
same requests out. DetectionJobs only adds the snapshot read.
"""

import math
from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Optional

from .models import NotificationRequest, NotificationType, Priority, StockItem
from .store import InventorySource

DEFAULT_EXPIRY_HORIZON_DAYS = 30

LOW_STOCK_TITLE = "Low stock: {name}"
LOW_STOCK_MESSAGE = "{name} is running low ({amount} left)"
EXPIRY_TITLE = "Expiry alert: {name}"
EXPIRY_MESSAGE = "{name} expires in {days} day{plural}"


def _format_quantity(value: float) -> str:
    return f"{value:g}"


def _aware(value: datetime) -> datetime:
    # MongoDB hands back naive UTC datetimes
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def detect_low_stock(items: Iterable[StockItem]) -> List[NotificationRequest]:
    """Items at or under their minimum quantity. Items without a minimum are skipped."""
    requests = []
    for item in items:
        if item.minimum_quantity is None or item.quantity > item.minimum_quantity:
            continue
        requests.append(NotificationRequest(
            user_id=item.user_id,
            type=NotificationType.LOW_STOCK,
            title=LOW_STOCK_TITLE.format(name=item.name),
            message=LOW_STOCK_MESSAGE.format(
                name=item.name,
                amount=f"{_format_quantity(item.quantity)} {item.unit}".strip(),
            ),
            priority=Priority.HIGH,
            related_model_type=item.model_type,
            related_model_id=item.id,
        ))
    return requests


def detect_expiring(
    items: Iterable[StockItem],
    now: datetime,
    horizon_days: int = DEFAULT_EXPIRY_HORIZON_DAYS,
) -> List[NotificationRequest]:
    """Items whose expiry date falls within [now, now + horizon_days]."""
    now = _aware(now)
    horizon = now + timedelta(days=horizon_days)
    requests = []
    for item in items:
        if item.expiry_date is None:
            continue
        expiry = _aware(item.expiry_date)
        if not now <= expiry <= horizon:
            continue
        days = math.ceil((expiry - now).total_seconds() / 86400)
        requests.append(NotificationRequest(
            user_id=item.user_id,
            type=NotificationType.EXPIRY,
            title=EXPIRY_TITLE.format(name=item.name),
            message=EXPIRY_MESSAGE.format(
                name=item.name, days=days, plural="" if days == 1 else "s"
            ),
            priority=Priority.HIGH,
            related_model_type=item.model_type,
            related_model_id=item.id,
        ))
    return requests


class DetectionJobs:
    """Reads the inventory snapshot and runs the detectors over it."""

    def __init__(
        self,
        inventory: InventorySource,
        expiry_horizon_days: int = DEFAULT_EXPIRY_HORIZON_DAYS,
    ):
        self.inventory = inventory
        self.expiry_horizon_days = expiry_horizon_days

    async def low_stock(self) -> List[NotificationRequest]:
        return detect_low_stock(await self.inventory.list_stock_items())

    async def expiry(self, now: Optional[datetime] = None) -> List[NotificationRequest]:
        now = now or datetime.now(timezone.utc)
        return detect_expiring(
            await self.inventory.list_stock_items(), now, self.expiry_horizon_days
        )
