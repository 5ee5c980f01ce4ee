"""
Dispatch routing - splits a notification's devices across push providers.

Expo devices go out in one batch call; FCM devices get one unary call each.
All provider calls share a bounded pool of slots. The router never mutates
state itself: every outcome flows back as a DeliveryAttempt.
"""

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional, Sequence

from common.errors import InvalidTokenError, ProviderRejectedError, ProviderTransientError
from transports.contracts import (
    DeliveryOutcome,
    Provider,
    PushMessage,
    PushTransport,
)

from .models import DeliveryAttempt, Device, Notification, Priority
from .tokens import TokenClassification, TokenClassifier

logger = logging.getLogger(__name__)

AttemptCallback = Callable[[DeliveryAttempt], Awaitable[None]]

DEFAULT_CONCURRENCY = 8


def build_message(notification: Notification, token: str) -> PushMessage:
    """Provider-neutral push message for one device."""
    return PushMessage(
        token=token,
        title=notification.title,
        body=notification.message,
        data=notification.push_data(),
        priority="high" if notification.priority == Priority.HIGH else "default",
        badge=1,
    )


def resolve_provider(device: Device, classification: TokenClassification) -> Provider:
    """
    Transport to use for a valid token.

    A provider stored on the device at registration wins over the classifier;
    tokens of unknown provider (lenient mode) are sent through FCM.
    """
    if device.provider in (Provider.EXPO, Provider.FCM):
        return device.provider
    if classification.provider == Provider.EXPO:
        return Provider.EXPO
    return Provider.FCM


class DispatchRouter:
    """Routes one notification to a user's active devices."""

    def __init__(
        self,
        expo: PushTransport,
        fcm: PushTransport,
        classifier: Optional[TokenClassifier] = None,
        concurrency: int = DEFAULT_CONCURRENCY,
    ):
        self.expo = expo
        self.fcm = fcm
        self.classifier = classifier or TokenClassifier()
        self._slots = asyncio.Semaphore(concurrency)

    async def route(
        self,
        notification: Notification,
        devices: Sequence[Device],
        on_attempt: Optional[AttemptCallback] = None,
    ) -> List[DeliveryAttempt]:
        """
        Dispatch `notification` to the active subset of `devices`.

        Args:
            notification: Persisted notification (id set)
            devices: Candidate devices; inactive ones are ignored
            on_attempt: Awaited for each attempt as soon as it is known

        Returns:
            One DeliveryAttempt per active device
        """
        attempts: List[DeliveryAttempt] = []

        async def emit(attempt: DeliveryAttempt) -> None:
            attempts.append(attempt)
            if on_attempt is not None:
                await on_attempt(attempt)

        expo_devices: List[Device] = []
        fcm_devices: List[Device] = []
        for device in devices:
            if not device.is_active:
                continue
            try:
                classification = self.classifier.require_valid(device.token)
            except InvalidTokenError as e:
                logger.warning(f"[PUSH] Invalid push token: {e}")
                await emit(DeliveryAttempt(
                    notification_id=notification.id,
                    device_id=device.id,
                    token=device.token,
                    transport=Provider.UNKNOWN,
                    outcome=DeliveryOutcome.HARD_FAIL,
                    error_code=e.code,
                ))
                continue
            if resolve_provider(device, classification) == Provider.EXPO:
                expo_devices.append(device)
            else:
                fcm_devices.append(device)

        sends = []
        if expo_devices:
            sends.append(self._send_expo(notification, expo_devices, emit))
        sends.extend(self._send_fcm(notification, device, emit) for device in fcm_devices)
        await asyncio.gather(*sends)
        return attempts

    async def _send_expo(
        self,
        notification: Notification,
        devices: List[Device],
        emit: AttemptCallback,
    ) -> None:
        messages = [build_message(notification, d.token) for d in devices]
        try:
            async with self._slots:
                tickets = await self.expo.send_batch(messages)
        except (ProviderTransientError, ProviderRejectedError) as e:
            logger.warning(f"[PUSH] Expo batch for notification {notification.id} failed: {e}")
            for device in devices:
                await emit(self._attempt(notification, device, Provider.EXPO,
                                         DeliveryOutcome.SOFT_FAIL, "provider-error"))
            return

        for device, ticket in zip(devices, tickets):
            await emit(self._attempt(
                notification, device, Provider.EXPO, ticket.outcome,
                ticket.error, ticket.id if ticket.status == "ok" else None,
            ))

    async def _send_fcm(
        self,
        notification: Notification,
        device: Device,
        emit: AttemptCallback,
    ) -> None:
        try:
            async with self._slots:
                result = await self.fcm.send_one(build_message(notification, device.token))
        except (ProviderTransientError, ProviderRejectedError) as e:
            logger.warning(f"[PUSH] FCM send for notification {notification.id} failed: {e}")
            await emit(self._attempt(notification, device, Provider.FCM,
                                     DeliveryOutcome.SOFT_FAIL, "provider-error"))
            return
        await emit(self._attempt(
            notification, device, Provider.FCM, result.outcome, result.error_code,
        ))

    @staticmethod
    def _attempt(
        notification: Notification,
        device: Device,
        transport: Provider,
        outcome: DeliveryOutcome,
        error_code: Optional[str] = None,
        ticket_id: Optional[str] = None,
    ) -> DeliveryAttempt:
        return DeliveryAttempt(
            notification_id=notification.id,
            device_id=device.id,
            token=device.token,
            transport=transport,
            outcome=outcome,
            error_code=error_code,
            ticket_id=ticket_id,
        )
