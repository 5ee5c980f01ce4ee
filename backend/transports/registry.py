from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from common.errors import ConfigurationError
from common.settings import PushSettings

from .contracts import PushTransport
from .expo_transport import ExpoTransport
from .fake_transports import FakeExpoTransport, FakeFCMTransport
from .fcm_transport import FCMTransport

logger = logging.getLogger(__name__)


@dataclass
class TransportSet:
    expo: PushTransport
    fcm: PushTransport

    async def aclose(self) -> None:
        await self.expo.aclose()
        await self.fcm.aclose()


def _build_prod(settings: PushSettings) -> TransportSet:
    return TransportSet(
        expo=ExpoTransport(
            access_token=settings.expo_access_token,
            chunk_size=settings.expo_chunk_size,
            receipt_chunk_size=settings.expo_receipt_chunk_size,
            retry_attempts=settings.retry_attempts,
            retry_backoff_ms=settings.retry_backoff_ms,
        ),
        fcm=FCMTransport(
            server_key=settings.fcm_server_key,
            project_id=settings.fcm_project_id,
            access_token=settings.fcm_access_token,
            retry_attempts=settings.retry_attempts,
            retry_backoff_ms=settings.retry_backoff_ms,
        ),
    )


def _build_fake(settings: PushSettings) -> TransportSet:
    return TransportSet(
        expo=FakeExpoTransport(chunk_size=settings.expo_chunk_size),
        fcm=FakeFCMTransport(),
    )


def load_transports(settings: Optional[PushSettings] = None) -> TransportSet:
    """
    Build the transport pair for the configured mode.

    "demo" and "test" modes get deterministic fakes; every other mode gets the
    real HTTP transports.

    Raises:
        ConfigurationError: If production FCM credentials are missing
    """
    settings = settings or PushSettings.from_env()
    if settings.uses_fake_transports:
        logger.info(f"[PUSH] Using fake transports (mode={settings.mode})")
        return _build_fake(settings)
    try:
        return _build_prod(settings)
    except ConfigurationError:
        logger.error("[PUSH] Push transports are not configured")
        raise
