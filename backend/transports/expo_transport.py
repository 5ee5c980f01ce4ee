"""
Expo Push Transport

Sends push notifications via the Expo Push API.
https://docs.expo.dev/push-notifications/sending-notifications/

Delivery is two-phase: the send endpoint answers with one ticket per message
(acceptance), and the receipts endpoint later reports the delivery outcome
for every accepted ticket id.
"""

import logging
from typing import Any, Dict, Iterator, List, Optional, Sequence, TypeVar

import httpx

from common.errors import ProviderRejectedError, ProviderTransientError
from common.retry import retry_async

from .contracts import (
    DeliveryOutcome,
    Provider,
    PushMessage,
    PushReceipt,
    PushTicket,
    SendResult,
)
from .http import make_client, post_json

logger = logging.getLogger(__name__)

EXPO_PUSH_API_URL = "https://exp.host/--/api/v2/push/send"
EXPO_RECEIPTS_API_URL = "https://exp.host/--/api/v2/push/getReceipts"

# Provider limits
DEFAULT_CHUNK_SIZE = 100
DEFAULT_RECEIPT_CHUNK_SIZE = 300

# Ticket and receipt errors that prove the registration is unusable
EXPO_HARD_FAIL_ERRORS = frozenset({
    "DeviceNotRegistered",
    "InvalidCredentials",
    "MessageTooBig",
    "MessageRateExceeded",
})

T = TypeVar("T")


def chunked(items: Sequence[T], size: int) -> Iterator[List[T]]:
    """Split `items` into consecutive lists of at most `size` elements."""
    if size < 1:
        raise ValueError("chunk size must be >= 1")
    for start in range(0, len(items), size):
        yield list(items[start:start + size])


def classify_expo_error(error: Optional[str]) -> DeliveryOutcome:
    """Map an Expo `details.error` value to a delivery outcome."""
    if error in EXPO_HARD_FAIL_ERRORS:
        return DeliveryOutcome.HARD_FAIL
    return DeliveryOutcome.SOFT_FAIL


def to_expo_message(message: PushMessage) -> Dict[str, Any]:
    """Build the Expo wire message for one device."""
    payload: Dict[str, Any] = {
        "to": message.token,
        "title": message.title,
        "body": message.body,
        "sound": message.sound,
        "priority": "high" if message.priority == "high" else "default",
    }
    if message.data:
        payload["data"] = message.data
    if message.badge is not None:
        payload["badge"] = message.badge
    if message.channel_id:
        payload["channelId"] = message.channel_id
    return payload


def parse_ticket(raw: Dict[str, Any]) -> PushTicket:
    """Parse one ticket object from the send endpoint."""
    status = raw.get("status", "error")
    if status == "ok":
        return PushTicket(status="ok", id=raw.get("id"))
    error = (raw.get("details") or {}).get("error")
    return PushTicket(
        status="error",
        id=raw.get("id"),
        message=raw.get("message"),
        error=error,
        outcome=classify_expo_error(error),
    )


def parse_receipt(ticket_id: str, raw: Dict[str, Any]) -> PushReceipt:
    """Parse one receipt object from the receipts endpoint."""
    status = raw.get("status", "error")
    if status == "ok":
        return PushReceipt(ticket_id=ticket_id, status="ok")
    error = (raw.get("details") or {}).get("error")
    return PushReceipt(
        ticket_id=ticket_id,
        status="error",
        message=raw.get("message"),
        error=error,
        outcome=classify_expo_error(error),
    )


class ExpoTransport:
    """Batched client for the Expo push relay."""

    provider = Provider.EXPO

    def __init__(
        self,
        access_token: Optional[str] = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        receipt_chunk_size: int = DEFAULT_RECEIPT_CHUNK_SIZE,
        retry_attempts: int = 3,
        retry_backoff_ms: int = 500,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize Expo transport.

        Args:
            access_token: Optional Expo access token (enhanced push security)
            chunk_size: Max messages per send request
            receipt_chunk_size: Max ticket ids per receipts request
            retry_attempts: Attempts per request on transient failures
            retry_backoff_ms: Base backoff between attempts
            client: Optional preconfigured httpx.AsyncClient
        """
        self.access_token = access_token
        self.chunk_size = chunk_size
        self.receipt_chunk_size = receipt_chunk_size
        self.retry_attempts = retry_attempts
        self.retry_backoff_ms = retry_backoff_ms
        self.client = client or make_client()

    async def send_batch(self, messages: List[PushMessage]) -> List[PushTicket]:
        """
        Send messages in provider-sized chunks.

        Returns:
            One ticket per input message, in input order. A chunk whose request
            fails outright yields soft-fail tickets for all of its messages.
        """
        tickets: List[PushTicket] = []
        for chunk in chunked(messages, self.chunk_size):
            tickets.extend(await self._send_chunk_safely(chunk))
        return tickets

    async def send_one(self, message: PushMessage) -> SendResult:
        ticket = (await self.send_batch([message]))[0]
        return SendResult(
            outcome=ticket.outcome,
            message_id=ticket.id,
            error_code=ticket.error,
            via="expo",
        )

    async def reconcile_receipts(self, ticket_ids: List[str]) -> List[PushReceipt]:
        """
        Fetch receipts for accepted tickets.

        Ids the provider has no receipt for yet are omitted from the result, as
        are ids of a chunk whose request failed; callers retry those later.
        """
        receipts: List[PushReceipt] = []
        for chunk in chunked(ticket_ids, self.receipt_chunk_size):
            try:
                data = await retry_async(
                    lambda chunk=chunk: self._fetch_receipts(chunk),
                    self.retry_attempts,
                    self.retry_backoff_ms,
                    label="expo receipts",
                )
            except (ProviderTransientError, ProviderRejectedError) as e:
                logger.warning(f"[PUSH] Expo receipts chunk of {len(chunk)} failed: {e}")
                continue
            for ticket_id in chunk:
                raw = data.get(ticket_id)
                if raw is not None:
                    receipts.append(parse_receipt(ticket_id, raw))
        return receipts

    async def _send_chunk_safely(self, chunk: List[PushMessage]) -> List[PushTicket]:
        try:
            tickets = await retry_async(
                lambda: self._send_chunk(chunk),
                self.retry_attempts,
                self.retry_backoff_ms,
                label="expo send",
            )
        except ProviderTransientError as e:
            return [_failed_ticket("TransportError", str(e)) for _ in chunk]
        except ProviderRejectedError as e:
            logger.warning(f"[PUSH] Expo rejected chunk of {len(chunk)}: {e} {e.body}")
            return [_failed_ticket(e.code or "ProviderRejected", str(e)) for _ in chunk]

        if len(tickets) != len(chunk):
            logger.error(
                f"[PUSH] Expo returned {len(tickets)} tickets for {len(chunk)} messages"
            )
            return [_failed_ticket("TicketMismatch", "ticket count mismatch") for _ in chunk]
        return tickets

    async def _send_chunk(self, chunk: List[PushMessage]) -> List[PushTicket]:
        response = await post_json(
            self.client,
            EXPO_PUSH_API_URL,
            [to_expo_message(m) for m in chunk],
            self._get_headers(),
            label="expo send",
        )
        body = response.json()
        errors = body.get("errors")
        data = body.get("data")
        if errors and not data:
            code = errors[0].get("code")
            raise ProviderRejectedError(
                errors[0].get("message", "Expo request error"),
                code=code,
                status_code=response.status_code,
                body=body,
            )
        if isinstance(data, dict):
            data = [data]
        return [parse_ticket(raw) for raw in data or []]

    async def _fetch_receipts(self, ticket_ids: List[str]) -> Dict[str, Any]:
        response = await post_json(
            self.client,
            EXPO_RECEIPTS_API_URL,
            {"ids": ticket_ids},
            self._get_headers(),
            label="expo receipts",
        )
        return response.json().get("data") or {}

    def _get_headers(self) -> dict:
        """Get HTTP headers for Expo API."""
        headers = {"Accept": "application/json", "Content-Type": "application/json"}
        if self.access_token:
            headers["Authorization"] = f"Bearer {self.access_token}"
        return headers

    async def aclose(self):
        """Close HTTP client."""
        await self.client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()


def _failed_ticket(error: str, message: str) -> PushTicket:
    return PushTicket(
        status="error",
        message=message,
        error=error,
        outcome=DeliveryOutcome.SOFT_FAIL,
    )
