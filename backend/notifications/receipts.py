"""
Expo receipt reconciliation.

A ticket only confirms Expo accepted a message. Receipts, fetched some
minutes later, report whether it reached the device. Hard-fail receipts
retire the device; notification status is never revisited (it only moves
forward).
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Iterable, List, Optional

from transports.contracts import DeliveryOutcome, Provider, PushReceipt, PushTransport

from .devices import DeviceLifecycleManager
from .models import DeliveryAttempt

logger = logging.getLogger(__name__)

# Expo keeps receipts for roughly a day
MAX_RECEIPT_AGE = timedelta(hours=24)


@dataclass(frozen=True)
class PendingTicket:
    ticket_id: str
    token: str
    notification_id: Optional[str]
    sent_at: datetime
    due_at: datetime


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ReceiptReconciler:
    """Tracks accepted Expo tickets and settles them against receipts."""

    def __init__(
        self,
        transport: PushTransport,
        lifecycle: DeviceLifecycleManager,
        delay_seconds: int = 900,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.transport = transport
        self.lifecycle = lifecycle
        self.delay = timedelta(seconds=delay_seconds)
        self.clock = clock
        self._pending: Dict[str, PendingTicket] = {}

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def pending(self) -> List[PendingTicket]:
        return list(self._pending.values())

    def track(self, attempts: Iterable[DeliveryAttempt]) -> int:
        """Queue accepted Expo tickets for a later receipt check. Returns how many."""
        now = self.clock()
        added = 0
        for attempt in attempts:
            if attempt.transport != Provider.EXPO or not attempt.succeeded or not attempt.ticket_id:
                continue
            self._pending[attempt.ticket_id] = PendingTicket(
                ticket_id=attempt.ticket_id,
                token=attempt.token,
                notification_id=attempt.notification_id,
                sent_at=now,
                due_at=now + self.delay,
            )
            added += 1
        return added

    async def reconcile_due(self, now: Optional[datetime] = None) -> List[PushReceipt]:
        """
        Fetch receipts for every ticket whose delay has elapsed.

        Tickets without a receipt yet stay queued until MAX_RECEIPT_AGE.
        """
        now = now or self.clock()
        due = [t for t in self._pending.values() if t.due_at <= now]
        if not due:
            return []

        # Claim before awaiting so an overlapping run cannot fetch them twice
        for ticket in due:
            del self._pending[ticket.ticket_id]

        try:
            receipts = await self.transport.reconcile_receipts([t.ticket_id for t in due])
        except Exception:
            for ticket in due:
                self._pending[ticket.ticket_id] = ticket
            raise
        by_id = {r.ticket_id: r for r in receipts}

        for ticket in due:
            receipt = by_id.get(ticket.ticket_id)
            if receipt is None:
                if now - ticket.sent_at < MAX_RECEIPT_AGE:
                    self._pending[ticket.ticket_id] = ticket
                else:
                    logger.warning(f"[PUSH] Dropping ticket {ticket.ticket_id}: no receipt after 24h")
                continue
            await self._settle(ticket, receipt)

        logger.info(
            f"[PUSH] Receipt reconciliation: {len(receipts)} receipts for {len(due)} tickets, "
            f"{self.pending_count} still pending"
        )
        return receipts

    async def _settle(self, ticket: PendingTicket, receipt: PushReceipt) -> None:
        if receipt.status == "ok":
            return
        if receipt.outcome == DeliveryOutcome.HARD_FAIL:
            await self.lifecycle.mark_inactive(ticket.token, receipt.error or "receipt-error")
        else:
            logger.warning(
                f"[PUSH] Receipt error for notification {ticket.notification_id}: "
                f"{receipt.error or receipt.message}"
            )
