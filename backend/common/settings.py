"""
Push delivery configuration.

Read once from the environment (after load_dotenv in server.py) and passed
explicitly to every component that needs it.
"""

import os
from dataclasses import dataclass, field
from typing import Mapping, Optional, Tuple

from .errors import ConfigurationError

TOKEN_MODE_STRICT = "strict"
TOKEN_MODE_LENIENT = "lenient"

DEFAULT_SANDBOX_MARKERS = ("test", "mock", "dev")


def _int(env: Mapping[str, str], key: str, default: int, minimum: int = 0) -> int:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ConfigurationError(f"{key} must be an integer, got {raw!r}")
    if value < minimum:
        raise ConfigurationError(f"{key} must be >= {minimum}, got {value}")
    return value


def _float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ConfigurationError(f"{key} must be a number, got {raw!r}")
    if value <= 0:
        raise ConfigurationError(f"{key} must be > 0, got {value}")
    return value


@dataclass(frozen=True)
class PushSettings:
    """Runtime configuration for the push delivery engine."""
    push_concurrency: int = 8
    notification_timeout_seconds: float = 10.0
    expo_chunk_size: int = 100
    expo_receipt_chunk_size: int = 300
    expo_access_token: Optional[str] = None
    expo_receipt_delay_seconds: int = 900
    fcm_server_key: Optional[str] = None
    fcm_project_id: Optional[str] = None
    fcm_access_token: Optional[str] = None
    retry_attempts: int = 3
    retry_backoff_ms: int = 500
    token_mode: str = TOKEN_MODE_STRICT
    sandbox_markers: Tuple[str, ...] = field(default=DEFAULT_SANDBOX_MARKERS)
    mode: str = "prod"  # "prod" | "demo" | "test"
    cron_hour: int = 9
    cron_minute: int = 0
    receipt_interval_minutes: int = 15
    expiry_horizon_days: int = 30
    mongo_url: str = "mongodb://localhost:27017"
    db_name: str = "fallah"

    @property
    def lenient_tokens(self) -> bool:
        return self.token_mode == TOKEN_MODE_LENIENT

    @property
    def uses_fake_transports(self) -> bool:
        return self.mode in {"demo", "test"}

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "PushSettings":
        """
        Build settings from environment variables.

        Raises:
            ConfigurationError: On malformed values
        """
        env = os.environ if env is None else env

        token_mode = env.get("PUSH_TOKEN_MODE", TOKEN_MODE_STRICT).strip().lower()
        if token_mode not in (TOKEN_MODE_STRICT, TOKEN_MODE_LENIENT):
            raise ConfigurationError(
                f"PUSH_TOKEN_MODE must be 'strict' or 'lenient', got {token_mode!r}"
            )

        markers_raw = env.get("PUSH_SANDBOX_MARKERS")
        if markers_raw is None:
            markers = DEFAULT_SANDBOX_MARKERS
        else:
            markers = tuple(m.strip() for m in markers_raw.split(",") if m.strip())

        cron_hour = _int(env, "NOTIFICATION_CRON_HOUR", 9)
        cron_minute = _int(env, "NOTIFICATION_CRON_MINUTE", 0)
        if cron_hour > 23 or cron_minute > 59:
            raise ConfigurationError(
                f"Invalid notification cron time {cron_hour:02d}:{cron_minute:02d}"
            )

        return cls(
            push_concurrency=_int(env, "PUSH_CONCURRENCY", 8, minimum=1),
            notification_timeout_seconds=_float(env, "PUSH_NOTIFICATION_TIMEOUT_SECONDS", 10.0),
            expo_chunk_size=_int(env, "EXPO_CHUNK_SIZE", 100, minimum=1),
            expo_receipt_chunk_size=_int(env, "EXPO_RECEIPT_CHUNK_SIZE", 300, minimum=1),
            expo_access_token=env.get("EXPO_ACCESS_TOKEN") or None,
            expo_receipt_delay_seconds=_int(env, "EXPO_RECEIPT_DELAY_SECONDS", 900),
            fcm_server_key=env.get("FCM_SERVER_KEY") or None,
            fcm_project_id=env.get("FCM_PROJECT_ID") or None,
            fcm_access_token=env.get("FCM_ACCESS_TOKEN") or None,
            retry_attempts=_int(env, "RETRY_ATTEMPTS", 3, minimum=1),
            retry_backoff_ms=_int(env, "RETRY_BACKOFF_MS", 500),
            token_mode=token_mode,
            sandbox_markers=markers,
            mode=env.get("PUSH_MODE", "prod").strip().lower(),
            cron_hour=cron_hour,
            cron_minute=cron_minute,
            receipt_interval_minutes=_int(env, "RECEIPT_INTERVAL_MINUTES", 15, minimum=1),
            expiry_horizon_days=_int(env, "EXPIRY_HORIZON_DAYS", 30, minimum=1),
            mongo_url=env.get("MONGO_URL", "mongodb://localhost:27017"),
            db_name=env.get("DB_NAME", "fallah"),
        )
