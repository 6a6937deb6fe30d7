"""Dashboard aggregation queries — Supabase."""

from onboarding_control import supabase_client as db
from onboarding_control.services.events import EMAIL_SENT

_ACTIVE_STATUSES = ("pending", "active")

# Pipeline log labels per event type
_LOG_STATUS = {
    "sequence_started": "STARTED",
    "email_sent": "SENT",
    "email_failed": "FAILED",
    "sequence_completed": "COMPLETED",
}


def member_stats() -> dict:
    """Member counts and completion rate."""
    members = db.select(db.MEMBERS, columns="status")
    total = len(members)
    active = sum(1 for m in members if m.get("status") in _ACTIVE_STATUSES)
    completed = sum(1 for m in members if m.get("status") == "completed")
    return {
        "active_members": active,
        "total_members": total,
        "completed_members": completed,
        "completion_rate": round(completed / total * 100) if total else 0,
    }


def average_delivery_latency(limit: int = 200) -> int | None:
    """Mean ``latency_ms`` over recent sends, or None with no sends yet."""
    sends = db.get_member_events(event_type=EMAIL_SENT, limit=limit)
    latencies = [
        (e.get("event_data") or {}).get("latency_ms") for e in sends
    ]
    latencies = [v for v in latencies if isinstance(v, int)]
    if not latencies:
        return None
    return round(sum(latencies) / len(latencies))


def _describe(event: dict) -> str:
    data = event.get("event_data") or {}
    who = event.get("member_email") or event.get("user_id", "")
    event_type = event.get("event_type")
    if event_type == "sequence_started":
        return f"Enrolled {who} in {data.get('sequence_length', '?')}-step sequence"
    if event_type == "email_sent":
        return f"Email sent to {who}: Day {data.get('day')} {data.get('subject', '')}".rstrip()
    if event_type == "email_failed":
        return f"Email to {who} failed on day {data.get('day')}: {data.get('error', '')}"
    if event_type == "sequence_completed":
        return f"Sequence completed for {who}"
    return f"{event_type} for {who}"


def pipeline_log(limit: int = 20) -> list[dict]:
    """Recent member events as dashboard log lines, newest first."""
    return [
        {
            "time": e.get("created_at"),
            "message": _describe(e),
            "status": _LOG_STATUS.get(e.get("event_type"), "OK"),
        }
        for e in db.get_member_events(limit=limit)
    ]


def dashboard_metrics(log_limit: int = 20) -> dict:
    """Everything the dashboard overview shows."""
    return {
        **member_stats(),
        "delivery_latency_ms": average_delivery_latency(),
        "running_runs": db.count(db.SEQUENCE_RUNS, {"status": "running"}),
        "pipelines_log": pipeline_log(limit=log_limit),
    }
