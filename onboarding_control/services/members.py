"""Members — status marker updates and dashboard listing."""

from onboarding_control import supabase_client as db


class SupabaseStatusSink:
    """Writes the runner's progress label onto the member row."""

    def set_status(self, user_id: str, label: str, **fields) -> dict:
        return db.update_member(user_id, {"sequence_status": label, **fields})


def list_active_members(limit: int = 50) -> list[dict]:
    """Pending and active members, shaped for the dashboard."""
    return [
        {
            "id": m.get("id"),
            "user_id": m.get("whop_user_id"),
            "email": m.get("email"),
            "status": m.get("status"),
            "sequence_status": m.get("sequence_status"),
            "current_day": m.get("current_day"),
            "joined_at": m.get("joined_at"),
        }
        for m in db.get_members(limit=limit)
    ]
