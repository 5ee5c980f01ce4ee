from __future__ import annotations

import asyncio
from typing import Dict, List, Optional

from .contracts import (
    DeliveryOutcome,
    Provider,
    PushMessage,
    PushReceipt,
    PushTicket,
    PushTransport,
    SendResult,
)
from .expo_transport import chunked, classify_expo_error
from .fcm_transport import FCM_HARD_FAIL_CODES


class _Recorder:
    def __init__(self, delay: float = 0.0) -> None:
        self.delay = delay
        self.closed = False

    async def _pause(self) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)

    async def aclose(self) -> None:
        self.closed = True


class FakeExpoTransport(_Recorder, PushTransport):
    """
    Deterministic Expo stand-in.

    `ticket_errors` maps a token to the Expo error its ticket carries;
    `receipt_errors` maps a token to the error its receipt carries.
    """

    provider = Provider.EXPO

    def __init__(
        self,
        ticket_errors: Optional[Dict[str, str]] = None,
        receipt_errors: Optional[Dict[str, str]] = None,
        chunk_size: int = 100,
        delay: float = 0.0,
    ) -> None:
        _Recorder.__init__(self, delay)
        self.ticket_errors = dict(ticket_errors or {})
        self.receipt_errors = dict(receipt_errors or {})
        self.chunk_size = chunk_size
        self.batch_calls: List[List[PushMessage]] = []
        self.chunk_calls: List[List[PushMessage]] = []
        self.receipt_calls: List[List[str]] = []
        self._ticket_tokens: Dict[str, str] = {}
        self._counter = 0

    async def send_batch(self, messages: List[PushMessage]) -> List[PushTicket]:
        self.batch_calls.append(list(messages))
        tickets: List[PushTicket] = []
        for chunk in chunked(messages, self.chunk_size):
            self.chunk_calls.append(chunk)
            await self._pause()
            for message in chunk:
                tickets.append(self._ticket_for(message))
        return tickets

    async def send_one(self, message: PushMessage) -> SendResult:
        ticket = (await self.send_batch([message]))[0]
        return SendResult(ticket.outcome, message_id=ticket.id, error_code=ticket.error, via="expo")

    async def reconcile_receipts(self, ticket_ids: List[str]) -> List[PushReceipt]:
        self.receipt_calls.append(list(ticket_ids))
        receipts = []
        for ticket_id in ticket_ids:
            token = self._ticket_tokens.get(ticket_id)
            if token is None:
                continue
            error = self.receipt_errors.get(token)
            if error:
                receipts.append(PushReceipt(
                    ticket_id=ticket_id,
                    status="error",
                    message=error,
                    error=error,
                    outcome=classify_expo_error(error),
                ))
            else:
                receipts.append(PushReceipt(ticket_id=ticket_id, status="ok"))
        return receipts

    def _ticket_for(self, message: PushMessage) -> PushTicket:
        error = self.ticket_errors.get(message.token)
        if error:
            return PushTicket(
                status="error",
                message=error,
                error=error,
                outcome=classify_expo_error(error),
            )
        self._counter += 1
        ticket_id = f"fake-ticket-{self._counter}"
        self._ticket_tokens[ticket_id] = message.token
        return PushTicket(status="ok", id=ticket_id)


class FakeFCMTransport(_Recorder, PushTransport):
    """
    Deterministic FCM stand-in.

    `errors` maps a token to the normalized error code its send returns;
    codes in FCM_HARD_FAIL_CODES hard-fail, anything else soft-fails.
    """

    provider = Provider.FCM

    def __init__(
        self,
        errors: Optional[Dict[str, str]] = None,
        delay: float = 0.0,
        delays: Optional[Dict[str, float]] = None,
    ) -> None:
        _Recorder.__init__(self, delay)
        self.errors = dict(errors or {})
        self.delays = dict(delays or {})
        self.sent: List[PushMessage] = []

    async def send_one(self, message: PushMessage) -> SendResult:
        self.sent.append(message)
        delay = self.delays.get(message.token, self.delay)
        if delay:
            await asyncio.sleep(delay)
        code = self.errors.get(message.token)
        if code is None:
            return SendResult(
                DeliveryOutcome.SUCCESS,
                message_id=f"fake-fcm-{len(self.sent)}",
                via="primary",
            )
        if code in FCM_HARD_FAIL_CODES:
            return SendResult(DeliveryOutcome.HARD_FAIL, error_code=code, via="primary")
        return SendResult(DeliveryOutcome.SOFT_FAIL, error_code=code, via="legacy")

    async def send_batch(self, messages: List[PushMessage]) -> List[PushTicket]:
        tickets = []
        for message in messages:
            result = await self.send_one(message)
            tickets.append(PushTicket(
                status="ok" if result.outcome == DeliveryOutcome.SUCCESS else "error",
                id=result.message_id,
                error=result.error_code,
                outcome=result.outcome,
            ))
        return tickets

    async def reconcile_receipts(self, ticket_ids: List[str]) -> List[PushReceipt]:
        return []
