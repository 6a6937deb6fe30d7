"""Sequence content — per-user lookup for the runner and the editor API."""

import logging

from onboarding_control import supabase_client as db
from onboarding_control.config import DEFAULT_USER_ID
from onboarding_control.sequences import DEFAULT_SEQUENCE, normalize_steps

logger = logging.getLogger(__name__)


class SupabaseContentLookup:
    """Finds the step list a user should run.

    A member without a sequence of their own gets the one saved by
    ``fallback_user_id`` (the dashboard owner). Returns None when neither exists.
    """

    def __init__(self, fallback_user_id: str | None = DEFAULT_USER_ID):
        self.fallback_user_id = fallback_user_id

    def get_active_sequence(self, user_id: str) -> list[dict] | None:
        row = db.get_active_sequence_row(user_id)
        if row is None and self.fallback_user_id and self.fallback_user_id != user_id:
            row = db.get_active_sequence_row(self.fallback_user_id)
        if row is None:
            return None
        steps = normalize_steps(row.get("content"))
        return steps or None


def get_sequence(user_id: str) -> dict:
    """Sequence shown in the editor: the user's saved one, else the default."""
    row = db.get_active_sequence_row(user_id)
    if row is None:
        return {
            "id": DEFAULT_SEQUENCE["id"],
            "name": DEFAULT_SEQUENCE["name"],
            "steps": [dict(s) for s in DEFAULT_SEQUENCE["steps"]],
            "is_default": True,
        }
    return {
        "id": row.get("id"),
        "name": row.get("name") or DEFAULT_SEQUENCE["name"],
        "steps": normalize_steps(row.get("content")),
        "updated_at": row.get("updated_at"),
        "is_default": False,
    }


def save_sequence(user_id: str, name: str, steps: list) -> dict:
    """Validate and save a user's sequence. Raises InvalidStep on bad content."""
    normalized = normalize_steps(steps)
    row = db.save_sequence(user_id, name or DEFAULT_SEQUENCE["name"], normalized)
    db.log_action("sequence_saved", "sequence", user_id, f"{len(normalized)} steps")
    logger.info("Saved %d-step sequence for %s", len(normalized), user_id)
    return {"id": row.get("id"), "name": row.get("name"), "steps": normalized}
