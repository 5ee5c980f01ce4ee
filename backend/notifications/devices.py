"""
Device lifecycle - retires dead push registrations.

Deactivation is the only device mutation this service performs; registration
and reactivation belong to the device registration flow.
"""

import logging
from typing import Optional

from .store import NotificationRecordStore

logger = logging.getLogger(__name__)


class DeviceLifecycleManager:
    """Marks device registrations inactive."""

    def __init__(self, store: NotificationRecordStore):
        self.store = store

    async def mark_inactive(
        self, token: str, reason: str = "", user_id: Optional[str] = None
    ) -> bool:
        """
        Set is_active=False for every registration holding `token`.

        Idempotent and safe to call concurrently for the same token: the only
        transition is true -> false, so the last write wins harmlessly.

        Args:
            token: Push token to retire
            reason: Provider error code or caller context, for the log
            user_id: Restrict the update to this user's registrations

        Returns:
            True if a matching registration exists
        """
        matched = await self.store.deactivate_device(token, user_id=user_id)
        if matched:
            logger.info(f"[PUSH] Marked device {token[:20]}... inactive ({reason or 'unspecified'})")
        else:
            logger.debug(f"[PUSH] No registration for token {token[:20]}...")
        return matched > 0
