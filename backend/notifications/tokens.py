"""
Push token classification - pure, deterministic, no I/O.

Decides which provider a raw registration string belongs to:

1. Empty or non-string -> invalid
2. Expo token shape -> expo
3. Sandbox/test marker present -> fcm (lets fixtures exercise the FCM path)
4. Contains ':' , longer than 20 chars, only [A-Za-z0-9_-:] -> fcm
5. Anything else -> valid/unknown in lenient mode, invalid in strict mode

Expo shape is checked before sandbox markers so that every well-formed Expo
token classifies as expo, even one whose random part happens to spell a marker.
"""

import re
from dataclasses import dataclass
from typing import Any, Sequence

from common.errors import InvalidTokenError
from common.settings import DEFAULT_SANDBOX_MARKERS, PushSettings
from transports.contracts import Provider

EXPO_TOKEN_PREFIXES = ("ExponentPushToken[", "ExpoPushToken[")
# Legacy prefixes/markers issued by older clients and the simulator
EXPO_LEGACY_PREFIX = "ExpoToken"
EXPO_SIMULATOR_MARKER = "ExpoSimulatedToken"

_EXPO_UUID_RE = re.compile(
    r"^[a-z\d]{8}-[a-z\d]{4}-[a-z\d]{4}-[a-z\d]{4}-[a-z\d]{12}$", re.IGNORECASE
)
_FCM_CHARSET_RE = re.compile(r"^[A-Za-z0-9_\-:]+$")
FCM_MIN_LENGTH = 20


@dataclass(frozen=True)
class TokenClassification:
    valid: bool
    provider: Provider


INVALID = TokenClassification(valid=False, provider=Provider.UNKNOWN)


def is_expo_token(token: str) -> bool:
    if token.startswith(EXPO_TOKEN_PREFIXES) and token.endswith("]"):
        return True
    if token.startswith(EXPO_LEGACY_PREFIX) or EXPO_SIMULATOR_MARKER in token:
        return True
    return bool(_EXPO_UUID_RE.match(token))


def looks_like_fcm_token(token: str) -> bool:
    return (
        ":" in token
        and len(token) > FCM_MIN_LENGTH
        and bool(_FCM_CHARSET_RE.match(token))
    )


def has_sandbox_marker(token: str, markers: Sequence[str] = DEFAULT_SANDBOX_MARKERS) -> bool:
    return any(marker in token for marker in markers)


def classify_token(
    token: Any,
    lenient: bool = False,
    sandbox_markers: Sequence[str] = DEFAULT_SANDBOX_MARKERS,
) -> TokenClassification:
    """
    Classify a raw device token.

    Args:
        token: Raw registration string
        lenient: Accept unrecognized tokens as provider=unknown instead of invalid
        sandbox_markers: Substrings marking test/mock/dev tokens

    Returns:
        TokenClassification(valid, provider)
    """
    if not isinstance(token, str) or not token:
        return INVALID
    if is_expo_token(token):
        return TokenClassification(True, Provider.EXPO)
    if has_sandbox_marker(token, sandbox_markers):
        return TokenClassification(True, Provider.FCM)
    if looks_like_fcm_token(token):
        return TokenClassification(True, Provider.FCM)
    if lenient:
        return TokenClassification(True, Provider.UNKNOWN)
    return INVALID


class TokenClassifier:
    """classify_token bound to a configured strictness mode."""

    def __init__(
        self,
        lenient: bool = False,
        sandbox_markers: Sequence[str] = DEFAULT_SANDBOX_MARKERS,
    ):
        self.lenient = lenient
        self.sandbox_markers = tuple(sandbox_markers)

    @classmethod
    def from_settings(cls, settings: PushSettings) -> "TokenClassifier":
        return cls(lenient=settings.lenient_tokens, sandbox_markers=settings.sandbox_markers)

    def classify(self, token: Any) -> TokenClassification:
        return classify_token(token, self.lenient, self.sandbox_markers)

    def require_valid(self, token: Any) -> TokenClassification:
        """classify(), raising InvalidTokenError when the token cannot be sent to."""
        classification = self.classify(token)
        if not classification.valid:
            raise InvalidTokenError(str(token))
        return classification

    def __call__(self, token: Any) -> TokenClassification:
        return self.classify(token)
