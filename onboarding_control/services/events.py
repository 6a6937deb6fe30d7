"""Member event shapes — builders, validation and match predicates."""

from datetime import datetime, timezone
from typing import Callable

SEQUENCE_STARTED = "sequence_started"
EMAIL_SENT = "email_sent"
EMAIL_FAILED = "email_failed"
SEQUENCE_COMPLETED = "sequence_completed"

EVENT_TYPES = (SEQUENCE_STARTED, EMAIL_SENT, EMAIL_FAILED, SEQUENCE_COMPLETED)

# Keys every event_data payload must carry, per event type
_REQUIRED_KEYS = {
    SEQUENCE_STARTED: ("run_id", "sequence_length"),
    EMAIL_SENT: ("run_id", "step", "day", "delivery_id", "latency_ms", "subject"),
    EMAIL_FAILED: ("run_id", "step", "day", "subject", "error", "permanent", "attempt"),
    SEQUENCE_COMPLETED: ("run_id", "total_days"),
}

_INT_KEYS = ("step", "day", "latency_ms", "sequence_length", "total_days", "attempt")


def validate_event(event: dict) -> dict:
    """Check an event has a known type, an owner, and a complete payload.

    Raises ValueError describing the first problem found.
    """
    event_type = event.get("event_type")
    if event_type not in _REQUIRED_KEYS:
        raise ValueError(f"Unknown event type: {event_type!r}")
    if not event.get("user_id"):
        raise ValueError(f"{event_type} event has no user_id")

    data = event.get("event_data")
    if not isinstance(data, dict):
        raise ValueError(f"{event_type} event_data must be an object")
    missing = [k for k in _REQUIRED_KEYS[event_type] if k not in data]
    if missing:
        raise ValueError(f"{event_type} event_data missing {', '.join(missing)}")

    for key in _INT_KEYS:
        if key in data:
            value = data[key]
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise ValueError(f"{event_type} {key} must be a non-negative integer, got {value!r}")
    return event


def build_event(user_id: str, member_email: str, event_type: str, event_data: dict,
                created_at: datetime | None = None) -> dict:
    """Build and validate a member event row."""
    created_at = created_at or datetime.now(timezone.utc)
    return validate_event({
        "user_id": user_id,
        "member_email": member_email,
        "event_type": event_type,
        "event_data": dict(event_data),
        "created_at": created_at.isoformat(),
    })


def for_run(run_id: str) -> Callable[[dict], bool]:
    """Predicate matching event_data belonging to a run."""
    return lambda data: (data or {}).get("run_id") == run_id


def for_step(run_id: str, step: int) -> Callable[[dict], bool]:
    """Predicate matching event_data for one step of a run.

    ``step`` is the step's zero-based position in the run, so steps sharing a
    day are told apart.
    """
    return lambda data: (data or {}).get("run_id") == run_id and (data or {}).get("step") == step
