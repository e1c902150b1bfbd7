"""
Classify yt-dlp error text into the platform-failure taxonomy.

The pattern tables are plain data: new platform-block phrases go in the
lists below, control flow does not change. Bot-detection patterns are
checked before session-expiry patterns; the not-found table comes last.
"""

from dataclasses import dataclass

from tubescribe.core.error_codes import ErrorKind


class FailureKind:
    BOT_DETECTED = "BOT_DETECTED"
    SESSION_EXPIRED = "SESSION_EXPIRED"
    NOT_FOUND = "NOT_FOUND"
    OTHER = "OTHER"


BOT_DETECTION_PATTERNS = [
    "Sign in to confirm you're not a bot",
    "confirm you're not a bot",
    "Sign in to confirm your age",
    "bot detection",
    "HTTP Error 403",
    "HTTP Error 429",
    "Too Many Requests",
    "are you a robot",
    "captcha",
]

SESSION_EXPIRED_PATTERNS = [
    "cookies are not valid",
    "cookies have expired",
    "cookies are no longer valid",
    "Login required",
    "Please sign in",
    "session has expired",
]

NOT_FOUND_PATTERNS = [
    "Video unavailable",
    "This video is unavailable",
    "Private video",
    "This video has been removed",
    "HTTP Error 404",
    "does not exist",
]

_USER_MESSAGES = {
    FailureKind.BOT_DETECTED: "The video platform is blocking requests; cookies may need to be refreshed.",
    FailureKind.SESSION_EXPIRED: "The platform session has expired; re-export cookies from a logged-in browser.",
    FailureKind.NOT_FOUND: "The video is unavailable or private.",
    FailureKind.OTHER: "Failed to access the video.",
}

_TABLES = [
    (FailureKind.BOT_DETECTED, BOT_DETECTION_PATTERNS),
    (FailureKind.SESSION_EXPIRED, SESSION_EXPIRED_PATTERNS),
    (FailureKind.NOT_FOUND, NOT_FOUND_PATTERNS),
]

_ERROR_KINDS = {
    FailureKind.BOT_DETECTED: ErrorKind.PLATFORM_BLOCKED,
    FailureKind.SESSION_EXPIRED: ErrorKind.SESSION_EXPIRED,
    FailureKind.NOT_FOUND: ErrorKind.NOT_FOUND,
}


@dataclass(frozen=True)
class Classification:
    kind: str
    is_retryable_locally: bool
    user_message: str
    matched_pattern: str | None = None

    @property
    def is_auth_failure(self) -> bool:
        return self.kind in (FailureKind.BOT_DETECTED, FailureKind.SESSION_EXPIRED)


def classify(raw_error_text: str | None) -> Classification:
    """Case-insensitive substring match; first match wins."""
    text = (raw_error_text or "").lower()
    for kind, patterns in _TABLES:
        for pattern in patterns:
            if pattern.lower() in text:
                return Classification(kind, False, _USER_MESSAGES[kind], pattern)
    return Classification(FailureKind.OTHER, True, _USER_MESSAGES[FailureKind.OTHER])


def to_error_kind(classification: Classification, default: str = ErrorKind.UNKNOWN) -> str:
    return _ERROR_KINDS.get(classification.kind, default)
