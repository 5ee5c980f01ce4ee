from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol


class Provider(str, Enum):
    """Push provider a device token belongs to."""
    EXPO = "expo"
    FCM = "fcm"
    UNKNOWN = "unknown"


class DeliveryOutcome(str, Enum):
    """Per-device result of one dispatch."""
    SUCCESS = "success"
    SOFT_FAIL = "soft_fail"
    HARD_FAIL = "hard_fail"


@dataclass(frozen=True)
class PushMessage:
    """Provider-neutral message addressed to one device token."""
    token: str
    title: str
    body: str
    data: Dict[str, str] = field(default_factory=dict)
    priority: str = "default"  # "default" | "normal" | "high"
    sound: str = "default"
    badge: Optional[int] = None
    channel_id: Optional[str] = None


@dataclass(frozen=True)
class PushTicket:
    """Expo acceptance ticket; one per input message, in input order."""
    status: str  # "ok" | "error"
    id: Optional[str] = None
    message: Optional[str] = None
    error: Optional[str] = None
    outcome: DeliveryOutcome = DeliveryOutcome.SUCCESS


@dataclass(frozen=True)
class PushReceipt:
    """Expo delivery receipt for a previously accepted ticket."""
    ticket_id: str
    status: str  # "ok" | "error"
    message: Optional[str] = None
    error: Optional[str] = None
    outcome: DeliveryOutcome = DeliveryOutcome.SUCCESS


@dataclass(frozen=True)
class SendResult:
    """Outcome of a unary send."""
    outcome: DeliveryOutcome
    message_id: Optional[str] = None
    error_code: Optional[str] = None
    via: Optional[str] = None  # "primary" | "legacy"
    details: Optional[Dict[str, Any]] = None


class PushTransport(Protocol):
    """Capability set every push provider client offers."""

    provider: Provider

    async def send_batch(self, messages: List[PushMessage]) -> List[PushTicket]:
        ...

    async def send_one(self, message: PushMessage) -> SendResult:
        ...

    async def reconcile_receipts(self, ticket_ids: List[str]) -> List[PushReceipt]:
        ...

    async def aclose(self) -> None:
        ...
