"""Heuristic rate-limit detection on Claude CLI stderr text."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
import math
import re

from convoy.config import DEFAULT_RETRY_SECONDS


@dataclass(frozen=True)
class RateLimitInfo:
    is_rate_limited: bool
    retry_after_seconds: int = 0
    reset_at: datetime | None = None
    message: str = ""


NOT_RATE_LIMITED = RateLimitInfo(is_rate_limited=False)


class RateLimitDetector:
    """Classifies error text as a rate limit and extracts the retry delay."""

    PATTERNS = (
        re.compile(r"rate[_\s-]?limit", re.IGNORECASE),
        re.compile(r"too many requests", re.IGNORECASE),
        re.compile(r"\b429\b"),
        re.compile(r"quota\s+(?:exceeded|exhausted)", re.IGNORECASE),
        re.compile(r"token.*exhaust", re.IGNORECASE),
    )

    # "retry in 2 minutes", "try again in 30s", "wait 1 hour"
    RETRY_AFTER = re.compile(
        r"(?:retry|try again|wait).*?(\d+)\s*"
        r"(seconds?|secs?|s|minutes?|mins?|m|hours?|hrs?|h)\b",
        re.IGNORECASE,
    )
    # "resets at 14:30", "reset 3:05:10 pm"
    RESET_AT = re.compile(
        r"reset.*?(\d{1,2}):(\d{2})(?::(\d{2}))?(?:\s*([ap]\.?m\.?))?",
        re.IGNORECASE,
    )

    UNIT_SECONDS = {"s": 1, "m": 60, "h": 3600}
    MESSAGE_LIMIT = 200

    def __init__(self, default_retry_seconds: int = DEFAULT_RETRY_SECONDS) -> None:
        self._default_retry = default_retry_seconds

    def is_rate_limited(self, text: str) -> bool:
        return any(p.search(text) for p in self.PATTERNS)

    def detect(self, text: str, now: datetime | None = None) -> RateLimitInfo:
        """Classify accumulated error text.

        Args:
            text: Error-stream text accumulated since the prompt began
            now: Reference time for absolute reset clocks (defaults to now)

        Returns:
            NOT_RATE_LIMITED, or info with a retry delay in seconds
        """
        if not text or not self.is_rate_limited(text):
            return NOT_RATE_LIMITED

        retry_after = self._default_retry
        reset_at = None

        match = self.RETRY_AFTER.search(text)
        if match:
            unit = match.group(2).lower()
            # "min"/"m" -> minutes, "hr"/"h" -> hours, everything else seconds
            key = "m" if unit.startswith("m") else "h" if unit.startswith("h") else "s"
            retry_after = int(match.group(1)) * self.UNIT_SECONDS[key]

        match = self.RESET_AT.search(text)
        if match:
            reference = now or datetime.now()
            reset_at = self._resolve_reset(match, reference)
            if reset_at is not None:
                delta = (reset_at - reference).total_seconds()
                retry_after = max(0, math.ceil(delta))

        return RateLimitInfo(
            is_rate_limited=True,
            retry_after_seconds=retry_after,
            reset_at=reset_at,
            message=text.strip()[: self.MESSAGE_LIMIT],
        )

    def _resolve_reset(self, match: re.Match[str], now: datetime) -> datetime | None:
        """Turn a clock time into the next datetime at or after ``now``."""
        hour, minute = int(match.group(1)), int(match.group(2))
        second = int(match.group(3) or 0)
        meridiem = (match.group(4) or "").replace(".", "").lower()
        if meridiem:
            if not 1 <= hour <= 12:
                return None
            hour = hour % 12 + (12 if meridiem == "pm" else 0)
        if hour > 23 or minute > 59 or second > 59:
            return None

        reset = now.replace(hour=hour, minute=minute, second=second, microsecond=0)
        if reset <= now:
            reset += timedelta(days=1)
        return reset


_detector = RateLimitDetector()


def detect_rate_limit(text: str, now: datetime | None = None) -> RateLimitInfo:
    """Module-level shortcut using the default detector."""
    return _detector.detect(text, now)


def format_wait_time(seconds: int) -> str:
    """Human-readable countdown ("45 seconds", "2m 30s", "1h 5m")."""
    seconds = max(0, int(seconds))
    if seconds < 60:
        return f"{seconds} second{'s' if seconds != 1 else ''}"
    if seconds < 3600:
        minutes, secs = divmod(seconds, 60)
        if secs:
            return f"{minutes}m {secs}s"
        return f"{minutes} minute{'s' if minutes != 1 else ''}"
    hours, rest = divmod(seconds, 3600)
    minutes = rest // 60
    if minutes:
        return f"{hours}h {minutes}m"
    return f"{hours} hour{'s' if hours != 1 else ''}"
