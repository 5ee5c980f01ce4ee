"""
Push Delivery Errors

Error taxonomy shared by transports, stores and the notification engine.
Only ConfigurationError and StoreError are allowed to escape to callers of
the engine; the rest are absorbed into per-device delivery outcomes.
"""

from typing import Any, Dict, Optional


class PushError(Exception):
    """Base class for push delivery errors."""


class InvalidTokenError(PushError):
    """Token rejected by classification or confirmed dead by a provider."""

    def __init__(self, token: str, code: str = "invalid-token"):
        super().__init__(f"{code}: {token[:20]}...")
        self.token = token
        self.code = code


class ProviderTransientError(PushError):
    """Timeout, network failure, 429 or 5xx from a push provider."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ProviderRejectedError(PushError):
    """Non-token 4xx rejection. Not retried."""

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
        body: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.code = code
        self.status_code = status_code
        self.body = body or {}


class ConfigurationError(PushError):
    """Missing or invalid configuration, fatal at startup."""


class StoreError(PushError):
    """Persistence failure in the notification record store."""


class InvalidTransitionError(PushError):
    """Requested notification status change is not a forward transition."""

    def __init__(self, notification_id: str, current: str, target: str):
        super().__init__(f"Notification {notification_id} cannot move from {current} to {target}")
        self.notification_id = notification_id
        self.current = current
        self.target = target
