"""
FCM Push Transport

Unary delivery to Firebase Cloud Messaging device tokens.

Primary path is the HTTP v1 send API (bearer token). Any failure that does
not prove the token dead falls back once to the legacy HTTP endpoint, which
authenticates with the server key.
"""

import logging
from typing import Any, Callable, Dict, List, Optional, Union

import httpx

from common.errors import ConfigurationError, ProviderRejectedError, ProviderTransientError
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

FCM_V1_URL_TEMPLATE = "https://fcm.googleapis.com/v1/projects/{project_id}/messages:send"
FCM_LEGACY_URL = "https://fcm.googleapis.com/fcm/send"

DEFAULT_CHANNEL_ID = "fallah_notification_channel"
DEFAULT_ICON = "ic_notification"

# Primary errors proving the token is dead; no fallback is attempted
FCM_HARD_FAIL_CODES = frozenset({
    "invalid-argument",
    "invalid-recipient",
    "registration-token-not-registered",
})

# HTTP v1 FcmError.errorCode / google.rpc status -> normalized code
_V1_ERROR_CODES = {
    "UNREGISTERED": "registration-token-not-registered",
    "NOT_FOUND": "registration-token-not-registered",
    "INVALID_ARGUMENT": "invalid-argument",
    "SENDER_ID_MISMATCH": "invalid-recipient",
    "QUOTA_EXCEEDED": "message-rate-exceeded",
    "THIRD_PARTY_AUTH_ERROR": "third-party-auth-error",
    "UNAVAILABLE": "server-unavailable",
    "INTERNAL": "internal-error",
    "PERMISSION_DENIED": "permission-denied",
    "UNAUTHENTICATED": "unauthenticated",
}

AccessToken = Union[str, Callable[[], str]]


def normalize_v1_error(body: Dict[str, Any]) -> str:
    """Reduce an HTTP v1 error body to a single normalized code."""
    error = body.get("error") or {}
    if not isinstance(error, dict):
        return "unknown-error"
    for detail in error.get("details") or []:
        code = detail.get("errorCode")
        if code:
            return _V1_ERROR_CODES.get(code, code.lower().replace("_", "-"))
    status = error.get("status")
    if status:
        return _V1_ERROR_CODES.get(status, status.lower().replace("_", "-"))
    return "unknown-error"


def build_v1_message(message: PushMessage, channel_id: str = DEFAULT_CHANNEL_ID) -> Dict[str, Any]:
    """Build the HTTP v1 request body for one token."""
    high = message.priority == "high"
    aps: Dict[str, Any] = {"sound": message.sound}
    if message.badge is not None:
        aps["badge"] = message.badge
    return {
        "message": {
            "token": message.token,
            "notification": {"title": message.title, "body": message.body},
            "data": dict(message.data),
            "android": {
                "priority": "high" if high else "normal",
                "notification": {
                    "channel_id": message.channel_id or channel_id,
                    "sound": message.sound,
                },
            },
            "apns": {
                "headers": {"apns-priority": "10" if high else "5"},
                "payload": {"aps": aps},
            },
        }
    }


def build_legacy_message(message: PushMessage, channel_id: str = DEFAULT_CHANNEL_ID) -> Dict[str, Any]:
    """Build the legacy HTTP request body for one token."""
    data = dict(message.data)
    data.setdefault("click_action", "FLUTTER_NOTIFICATION_CLICK")
    return {
        "to": message.token,
        "priority": "high",
        "content_available": True,
        "notification": {
            "title": message.title,
            "body": message.body,
            "sound": message.sound,
            "icon": DEFAULT_ICON,
        },
        "data": data,
        "android": {
            "priority": "high",
            "notification": {
                "sound": message.sound,
                "icon": DEFAULT_ICON,
                "channel_id": message.channel_id or channel_id,
            },
        },
    }


class FCMTransport:
    """Unary FCM client with primary + legacy fallback."""

    provider = Provider.FCM

    def __init__(
        self,
        server_key: Optional[str] = None,
        project_id: Optional[str] = None,
        access_token: Optional[AccessToken] = None,
        retry_attempts: int = 3,
        retry_backoff_ms: int = 500,
        channel_id: str = DEFAULT_CHANNEL_ID,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize FCM transport.

        Args:
            server_key: Legacy API server key
            project_id: Firebase project for the HTTP v1 API
            access_token: OAuth2 bearer token, or a callable returning a fresh one
            retry_attempts: Attempts per endpoint on transient failures
            retry_backoff_ms: Base backoff between attempts
            channel_id: Android notification channel
            client: Optional preconfigured httpx.AsyncClient

        Raises:
            ConfigurationError: If neither primary nor legacy credentials are set
        """
        self.server_key = server_key or None
        self.project_id = project_id or None
        self.access_token = access_token or None
        if not self.has_legacy and not self.has_primary:
            raise ConfigurationError(
                "FCM requires FCM_SERVER_KEY or FCM_PROJECT_ID + FCM_ACCESS_TOKEN"
            )
        self.retry_attempts = retry_attempts
        self.retry_backoff_ms = retry_backoff_ms
        self.channel_id = channel_id
        self.client = client or make_client()

    @property
    def has_primary(self) -> bool:
        return bool(self.project_id and self.access_token)

    @property
    def has_legacy(self) -> bool:
        return bool(self.server_key)

    async def send_one(self, message: PushMessage) -> SendResult:
        """
        Deliver one message.

        Hard-fail only when the primary API names the token dead; every other
        failure path ends in a single legacy attempt, then soft-fail.
        """
        primary_error: Optional[str] = None

        if self.has_primary:
            try:
                message_id = await retry_async(
                    lambda: self._send_primary(message),
                    self.retry_attempts,
                    self.retry_backoff_ms,
                    label="fcm primary",
                )
                return SendResult(DeliveryOutcome.SUCCESS, message_id=message_id, via="primary")
            except ProviderRejectedError as e:
                primary_error = e.code or "rejected"
                if primary_error in FCM_HARD_FAIL_CODES:
                    logger.info(
                        f"[PUSH] FCM token {message.token[:20]}... is dead ({primary_error})"
                    )
                    return SendResult(
                        DeliveryOutcome.HARD_FAIL,
                        error_code=primary_error,
                        via="primary",
                        details=e.body,
                    )
                logger.warning(f"[PUSH] FCM primary rejected message: {primary_error}")
            except ProviderTransientError as e:
                primary_error = "unavailable"
                logger.warning(f"[PUSH] FCM primary unavailable, falling back: {e}")

        if not self.has_legacy:
            return SendResult(DeliveryOutcome.SOFT_FAIL, error_code=primary_error, via="primary")

        try:
            message_id = await retry_async(
                lambda: self._send_legacy(message),
                self.retry_attempts,
                self.retry_backoff_ms,
                label="fcm legacy",
            )
        except ProviderRejectedError as e:
            logger.warning(f"[PUSH] FCM legacy rejected message: {e.code or e}")
            return SendResult(
                DeliveryOutcome.SOFT_FAIL,
                error_code=e.code or primary_error or "rejected",
                via="legacy",
                details=e.body,
            )
        except ProviderTransientError as e:
            logger.warning(f"[PUSH] FCM legacy failed: {e}")
            return SendResult(DeliveryOutcome.SOFT_FAIL, error_code="unavailable", via="legacy")
        return SendResult(DeliveryOutcome.SUCCESS, message_id=message_id, via="legacy")

    async def send_batch(self, messages: List[PushMessage]) -> List[PushTicket]:
        """FCM has no batch endpoint here; messages are sent one by one."""
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
        """Single-phase provider: nothing to reconcile."""
        return []

    async def _send_primary(self, message: PushMessage) -> str:
        url = FCM_V1_URL_TEMPLATE.format(project_id=self.project_id)
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self._bearer_token()}",
        }
        try:
            response = await post_json(
                self.client, url, build_v1_message(message, self.channel_id), headers,
                label="fcm primary",
            )
        except ProviderRejectedError as e:
            e.code = normalize_v1_error(e.body)
            raise
        return response.json().get("name", "")

    async def _send_legacy(self, message: PushMessage) -> str:
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"key={self.server_key}",
        }
        response = await post_json(
            self.client, FCM_LEGACY_URL, build_legacy_message(message, self.channel_id), headers,
            label="fcm legacy",
        )
        body = response.json()
        results = body.get("results") or [{}]
        error = results[0].get("error")
        if body.get("failure") or error:
            if error in ("Unavailable", "InternalServerError"):
                raise ProviderTransientError(f"fcm legacy returned {error}")
            raise ProviderRejectedError(
                f"fcm legacy returned {error}",
                code=error,
                status_code=response.status_code,
                body=body,
            )
        return str(results[0].get("message_id") or body.get("multicast_id") or "")

    def _bearer_token(self) -> str:
        if callable(self.access_token):
            return self.access_token()
        return self.access_token

    async def aclose(self):
        """Close HTTP client."""
        await self.client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()
