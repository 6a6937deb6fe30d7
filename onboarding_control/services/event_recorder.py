"""Event recorder — append-only member events in Supabase."""

from typing import Callable

from onboarding_control import supabase_client as db
from onboarding_control.services.events import validate_event


class SupabaseEventRecorder:
    """Stores member events in the ``member_events`` table. Rows are never updated."""

    def append(self, event: dict) -> dict:
        validate_event(event)
        return db.insert_member_event(
            event["user_id"],
            event.get("member_email", ""),
            event["event_type"],
            event["event_data"],
            created_at=event.get("created_at"),
        )

    def has_event(self, user_id: str, event_type: str,
                  predicate: Callable[[dict], bool] | None = None) -> bool:
        rows = db.select(db.MEMBER_EVENTS, columns="event_data",
                         match={"user_id": user_id, "event_type": event_type})
        if predicate is None:
            return bool(rows)
        return any(predicate(row.get("event_data") or {}) for row in rows)

    def events_for_run(self, user_id: str, run_id: str) -> list[dict]:
        """All events a run recorded, oldest first."""
        rows = db.select(db.MEMBER_EVENTS, match={"user_id": user_id}, order="created_at")
        return [r for r in rows if (r.get("event_data") or {}).get("run_id") == run_id]
