"""Tracking of Xero rate-limit signals.

Xero reports the calls left in each tier on every response and, on a 429, names
the tier that was exceeded in `X-Rate-Limit-Problem`. The tracker only records
what it sees; deciding how long to wait is up to the executor.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Mapping

logger = logging.getLogger(__name__)

PROBLEM_HEADER = "X-Rate-Limit-Problem"
RETRY_AFTER_HEADER = "Retry-After"


class RateLimitType(str, Enum):
    MINUTE = "minute"
    DAILY = "daily"
    APP_MINUTE = "app_minute"


REMAINING_HEADERS = {
    RateLimitType.MINUTE: "X-MinLimit-Remaining",
    RateLimitType.DAILY: "X-DayLimit-Remaining",
    RateLimitType.APP_MINUTE: "X-AppMinLimit-Remaining",
}

# Published quotas, used to compare how close each tier is to running out.
NOMINAL_LIMITS = {
    RateLimitType.MINUTE: 60,
    RateLimitType.DAILY: 5000,
    RateLimitType.APP_MINUTE: 10000,
}

_PROBLEM_VALUES = {
    "minute": RateLimitType.MINUTE,
    "day": RateLimitType.DAILY,
    "daily": RateLimitType.DAILY,
    "appminute": RateLimitType.APP_MINUTE,
    "app_minute": RateLimitType.APP_MINUTE,
    "app-minute": RateLimitType.APP_MINUTE,
}

# Unrecognised or missing problem headers are treated as the app-wide tier,
# which gets the longest backoff.
FALLBACK_LIMIT_TYPE = RateLimitType.APP_MINUTE


@dataclass(frozen=True)
class RateLimitState:
    limit_type: RateLimitType
    remaining: int | None = None
    reset_at: datetime | None = None
    remaining_by_tier: dict[RateLimitType, int] = field(default_factory=dict)
    observed_at: datetime | None = None


def classify(headers: Mapping[str, str]) -> RateLimitType:
    """Map the 429 problem header to a tier, falling back to the app-wide tier."""
    value = _get(headers, PROBLEM_HEADER)
    if value is None:
        logger.warning("429 without %s header, assuming %s", PROBLEM_HEADER, FALLBACK_LIMIT_TYPE.value)
        return FALLBACK_LIMIT_TYPE
    limit_type = _PROBLEM_VALUES.get(value.strip().lower())
    if limit_type is None:
        logger.warning("Unrecognised %s value %r, assuming %s", PROBLEM_HEADER, value, FALLBACK_LIMIT_TYPE.value)
        return FALLBACK_LIMIT_TYPE
    return limit_type


def retry_after_seconds(headers: Mapping[str, str]) -> float | None:
    value = _get(headers, RETRY_AFTER_HEADER)
    if value is None:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        logger.warning("Ignoring non-numeric %s header %r", RETRY_AFTER_HEADER, value)
        return None


def _get(headers: Mapping[str, str], name: str) -> str | None:
    # httpx.Headers is case-insensitive, plain dicts are not
    value = headers.get(name)
    if value is None:
        lowered = name.lower()
        for key, candidate in headers.items():
            if key.lower() == lowered:
                return candidate
    return value


def _remaining_by_tier(headers: Mapping[str, str]) -> dict[RateLimitType, int]:
    remaining = {}
    for limit_type, header in REMAINING_HEADERS.items():
        value = _get(headers, header)
        if value is None:
            continue
        try:
            remaining[limit_type] = int(value)
        except ValueError:
            logger.warning("Ignoring non-numeric %s header %r", header, value)
    return remaining


class RateLimitTracker:
    """Last observed rate-limit state for one client session.

    The state is a frozen snapshot replaced in a single assignment, so readers
    always see a consistent limit type and reset time.
    """

    def __init__(self):
        self._state = RateLimitState(limit_type=RateLimitType.MINUTE)

    @property
    def state(self) -> RateLimitState:
        return self._state

    def update(self, headers: Mapping[str, str], status_code: int, now: datetime | None = None) -> RateLimitState:
        now = now or datetime.now(timezone.utc)
        by_tier = _remaining_by_tier(headers)
        wait = retry_after_seconds(headers)
        reset_at = now + timedelta(seconds=wait) if wait is not None else None

        if status_code == 429:
            limit_type = classify(headers)
            remaining = by_tier.get(limit_type, 0)
        elif by_tier:
            limit_type = min(by_tier, key=lambda tier: by_tier[tier] / NOMINAL_LIMITS[tier])
            remaining = by_tier[limit_type]
        else:
            return self._state

        self._state = RateLimitState(
            limit_type=limit_type,
            remaining=remaining,
            reset_at=reset_at,
            remaining_by_tier=by_tier,
            observed_at=now,
        )
        logger.debug("Rate limit state: %s remaining=%s reset_at=%s", limit_type.value, remaining, reset_at)
        return self._state

    def pre_dispatch_delay(self, now: datetime | None = None) -> float:
        """Seconds to hold the next request back, 0 when it may go straight away."""
        state = self._state
        if state.limit_type is RateLimitType.DAILY:
            return 0.0
        if state.remaining != 0 or state.reset_at is None:
            return 0.0
        now = now or datetime.now(timezone.utc)
        return max(0.0, (state.reset_at - now).total_seconds())
