"""Step clock — day offsets between sequence steps and retry backoff."""

from datetime import datetime, timedelta

from onboarding_control.config import RETRY_BASE_SECONDS, RETRY_MAX_SECONDS


def offset_from(previous_day: int, next_day: int) -> timedelta:
    """Wait between two steps, in whole days.

    Non-increasing day numbers return zero so the step fires immediately.
    The first step of a run is measured from day 0.
    """
    if next_day > previous_day:
        return timedelta(days=next_day - previous_day)
    return timedelta(0)


def resume_at(now: datetime, previous_day: int, next_day: int) -> datetime:
    """Absolute time the next step may run, given the day just finished."""
    return now + offset_from(previous_day, next_day)


def retry_backoff(attempt: int, base_seconds: int = RETRY_BASE_SECONDS,
                  max_seconds: int = RETRY_MAX_SECONDS) -> timedelta:
    """Exponential backoff for the ``attempt``-th transient failure, capped."""
    attempt = max(attempt, 1)
    # Cap the exponent before shifting so long outages don't build huge ints.
    seconds = base_seconds * (2 ** min(attempt - 1, 32))
    return timedelta(seconds=min(seconds, max_seconds))
