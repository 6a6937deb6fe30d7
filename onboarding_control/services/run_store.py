"""Run store — sequence run checkpoints in Supabase."""

from datetime import datetime

from onboarding_control import supabase_client as db


class SupabaseRunStore:
    """Persists one row per sequence run in ``sequence_runs``."""

    def create(self, run: dict) -> dict:
        return db.insert(db.SEQUENCE_RUNS, run) or run

    def get(self, run_id: str) -> dict | None:
        return db.get_sequence_run(run_id)

    def save(self, run: dict) -> dict | None:
        """Write a run checkpoint. Returns None if the stored run is no longer running."""
        data = {k: v for k, v in run.items() if k != "id"}
        return db.update(db.SEQUENCE_RUNS, data, {"id": run["id"], "status": "running"}) or None

    def list_running(self, user_id: str) -> list[dict]:
        return db.select(db.SEQUENCE_RUNS, match={"user_id": user_id, "status": "running"})

    def list_due(self, now: datetime) -> list[dict]:
        return db.get_due_sequence_runs(now.isoformat())
