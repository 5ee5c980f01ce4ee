from .contracts import (
    DeliveryOutcome,
    Provider,
    PushMessage,
    PushReceipt,
    PushTicket,
    PushTransport,
    SendResult,
)
from .registry import TransportSet, load_transports

__all__ = [
    "DeliveryOutcome",
    "Provider",
    "PushMessage",
    "PushReceipt",
    "PushTicket",
    "PushTransport",
    "SendResult",
    "TransportSet",
    "load_transports",
]
