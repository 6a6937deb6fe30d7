"""Supabase connection and query helpers for the onboarding tables."""

import threading
from datetime import datetime, timezone

from supabase import Client, create_client

from onboarding_control.config import SUPABASE_SERVICE_KEY, SUPABASE_URL

_client: Client | None = None
_client_lock = threading.Lock()

MEMBERS = "members"
SEQUENCES = "sequences"
MEMBER_EVENTS = "member_events"
SEQUENCE_RUNS = "sequence_runs"
AUDIT_LOG = "audit_log"


def get_client() -> Client:
    """Return the Supabase client singleton (thread-safe)."""
    global _client
    if _client is None:
        with _client_lock:
            if _client is None:
                if not SUPABASE_URL or not SUPABASE_SERVICE_KEY:
                    raise RuntimeError("SUPABASE_URL and SUPABASE_SERVICE_KEY must be set")
                _client = create_client(SUPABASE_URL, SUPABASE_SERVICE_KEY)
    return _client


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Generic helpers
# ---------------------------------------------------------------------------

def _table(name: str):
    """Return a table query builder."""
    return get_client().table(name)


def insert(table: str, data: dict) -> dict:
    """Insert a row and return it."""
    result = _table(table).insert(data).execute()
    return result.data[0] if result.data else {}


def upsert(table: str, data: dict, on_conflict: str = "") -> dict:
    """Upsert a row and return it."""
    if on_conflict:
        q = _table(table).upsert(data, on_conflict=on_conflict)
    else:
        q = _table(table).upsert(data)
    result = q.execute()
    return result.data[0] if result.data else {}


def update(table: str, data: dict, match: dict) -> dict:
    """Update rows matching conditions."""
    q = _table(table).update(data)
    for k, v in match.items():
        q = q.eq(k, v)
    result = q.execute()
    return result.data[0] if result.data else {}


def select(table: str, columns: str = "*", match: dict | None = None,
           order: str | None = None, order_desc: bool = False,
           limit: int | None = None, offset: int | None = None) -> list[dict]:
    """Select rows with optional filtering, ordering, and pagination."""
    q = _table(table).select(columns)
    if match:
        for k, v in match.items():
            q = q.eq(k, v)
    if order:
        q = q.order(order, desc=order_desc)
    if limit:
        q = q.limit(limit)
    if offset:
        q = q.range(offset, offset + (limit or 100) - 1)
    result = q.execute()
    return result.data or []


def select_one(table: str, columns: str = "*", match: dict | None = None) -> dict | None:
    """Select a single row."""
    rows = select(table, columns, match, limit=1)
    return rows[0] if rows else None


def count(table: str, match: dict | None = None) -> int:
    """Count rows matching conditions."""
    q = _table(table).select("*", count="exact")
    if match:
        for k, v in match.items():
            q = q.eq(k, v)
    result = q.execute()
    return result.count or 0


# ---------------------------------------------------------------------------
# Members
# ---------------------------------------------------------------------------

def upsert_member(user_id: str, email: str, status: str = "pending") -> dict:
    """Create or refresh a member by Whop user id.

    A member already mid-sequence only has their email refreshed.
    """
    existing = select_one(MEMBERS, match={"whop_user_id": user_id})
    if existing and existing.get("status") == "active":
        return update_member(user_id, {"email": email})
    return upsert(MEMBERS, {
        "whop_user_id": user_id,
        "email": email,
        "status": status,
        "current_day": 0,
        "joined_at": _now(),
    }, on_conflict="whop_user_id")


def update_member(user_id: str, data: dict) -> dict:
    """Update a member by Whop user id."""
    data["updated_at"] = _now()
    return update(MEMBERS, data, {"whop_user_id": user_id})


def get_members(statuses: tuple[str, ...] = ("pending", "active"), limit: int = 50) -> list[dict]:
    """Get members in the given statuses, newest first."""
    q = _table(MEMBERS).select("*").in_("status", list(statuses))
    q = q.order("joined_at", desc=True).limit(limit)
    result = q.execute()
    return result.data or []


# ---------------------------------------------------------------------------
# Sequences (content)
# ---------------------------------------------------------------------------

def get_active_sequence_row(user_id: str) -> dict | None:
    """Get the most recently updated active sequence for a user."""
    q = _table(SEQUENCES).select("*").eq("user_id", user_id).eq("active", True)
    q = q.order("updated_at", desc=True).limit(1)
    result = q.execute()
    return result.data[0] if result.data else None


def save_sequence(user_id: str, name: str, content: list[dict]) -> dict:
    """Upsert a user's active sequence content."""
    return upsert(SEQUENCES, {
        "user_id": user_id,
        "name": name,
        "content": content,
        "active": True,
        "updated_at": _now(),
    }, on_conflict="user_id")


# ---------------------------------------------------------------------------
# Member events (append-only)
# ---------------------------------------------------------------------------

def insert_member_event(user_id: str, member_email: str, event_type: str,
                        event_data: dict, created_at: str | None = None) -> dict:
    """Append a member event."""
    return insert(MEMBER_EVENTS, {
        "user_id": user_id,
        "member_email": member_email,
        "event_type": event_type,
        "event_data": event_data,
        "created_at": created_at or _now(),
    })


def get_member_events(user_id: str | None = None, event_type: str | None = None,
                      limit: int = 100) -> list[dict]:
    """Get member events, newest first."""
    match = {}
    if user_id:
        match["user_id"] = user_id
    if event_type:
        match["event_type"] = event_type
    return select(MEMBER_EVENTS, match=match or None,
                  order="created_at", order_desc=True, limit=limit)


# ---------------------------------------------------------------------------
# Sequence runs
# ---------------------------------------------------------------------------

def get_sequence_run(run_id: str) -> dict | None:
    """Get a sequence run by ID."""
    return select_one(SEQUENCE_RUNS, match={"id": run_id})


def get_sequence_runs(status: str | None = None, limit: int = 50) -> list[dict]:
    """Get recent sequence runs, optionally filtered by status."""
    match = {"status": status} if status else None
    return select(SEQUENCE_RUNS, match=match, order="started_at",
                  order_desc=True, limit=limit)


def get_due_sequence_runs(now: str) -> list[dict]:
    """Get running sequence runs whose resume time has passed."""
    q = _table(SEQUENCE_RUNS).select("*").eq("status", "running").lte("resume_at", now)
    q = q.order("resume_at")
    result = q.execute()
    return result.data or []


# ---------------------------------------------------------------------------
# Audit Log
# ---------------------------------------------------------------------------

def log_action(action: str, entity_type: str = "", entity_id: str = "", details: str = "") -> dict:
    """Log an operator-visible action."""
    return insert(AUDIT_LOG, {
        "action": action,
        "entity_type": entity_type,
        "entity_id": entity_id,
        "details": details,
        "created_at": _now(),
    })


def get_audit_log(limit: int = 50) -> list[dict]:
    """Get recent audit log entries."""
    return select(AUDIT_LOG, order="created_at", order_desc=True, limit=limit)
