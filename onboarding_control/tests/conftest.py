"""Shared fixtures for Onboarding Control tests.

Provides:
- fake_db: patches supabase_client with an in-memory fake
- client: FastAPI test client wired to the fake DB and a fake mailer
- in-memory runner collaborators (content, delivery, recorder, store, clock)
- sample data factories for members, sequences, runs
"""

import copy
import os
import uuid
from collections import defaultdict
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest

# Set env vars before any app imports
os.environ.setdefault("SUPABASE_URL", "https://fake.supabase.co")
os.environ.setdefault("SUPABASE_SERVICE_KEY", "fake-key")
os.environ.setdefault("WEBHOOK_SECRET", "test-secret-123")
os.environ.setdefault("WHOP_WEBHOOK_SECRET", "whop-secret-456")
os.environ.setdefault("RESEND_API_KEY", "")

from onboarding_control.services import events  # noqa: E402
from onboarding_control.services.sequence_runner import (  # noqa: E402
    SequenceRunner,
    parse_timestamp,
)

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# In-memory fake Supabase
# ---------------------------------------------------------------------------

class FakeQueryResult:
    def __init__(self, data=None, count=None):
        self.data = data or []
        self.count = count


class FakeQueryBuilder:
    """Mimics the supabase-py query builder chain.

    Results are copies, like rows decoded from a real response; writes go
    through ``insert``, ``upsert`` and ``update`` only.
    """

    def __init__(self, store, table_name):
        self._store = store
        self._table = table_name
        self._filters = []
        self._order_col = None
        self._order_desc = False
        self._limit_val = None
        self._range_start = None
        self._range_end = None
        self._columns = "*"
        self._count_mode = None
        self._upsert_data = None
        self._upsert_conflict = None
        self._update_data = None
        self._insert_data = None

    def select(self, columns="*", count=None):
        self._columns = columns
        self._count_mode = count
        return self

    def insert(self, data):
        self._insert_data = data
        return self

    def upsert(self, data, on_conflict=None):
        self._upsert_data = data
        self._upsert_conflict = on_conflict
        return self

    def update(self, data):
        self._update_data = data
        return self

    def eq(self, col, val):
        self._filters.append(("eq", col, val))
        return self

    def in_(self, col, vals):
        self._filters.append(("in", col, list(vals)))
        return self

    def lte(self, col, val):
        self._filters.append(("lte", col, val))
        return self

    def order(self, col, desc=False):
        self._order_col = col
        self._order_desc = desc
        return self

    def limit(self, n):
        self._limit_val = n
        return self

    def range(self, start, end):
        self._range_start = start
        self._range_end = end
        return self

    def _match(self, row):
        for op, col, val in self._filters:
            row_val = row.get(col)
            if op == "eq" and row_val != val:
                return False
            if op == "in" and row_val not in val:
                return False
            if op == "lte" and (row_val is None or str(row_val) > str(val)):
                return False
        return True

    def execute(self):
        table = self._store[self._table]

        if self._insert_data is not None:
            row = copy.deepcopy(self._insert_data)
            if "id" not in row:
                row["id"] = str(uuid.uuid4())
            table.append(row)
            return FakeQueryResult(data=[copy.deepcopy(row)])

        if self._upsert_data is not None:
            row = copy.deepcopy(self._upsert_data)
            if self._upsert_conflict:
                conflict_cols = [c.strip() for c in self._upsert_conflict.split(",")]
                for existing in table:
                    if all(existing.get(c) == row.get(c) for c in conflict_cols):
                        existing.update(row)
                        return FakeQueryResult(data=[copy.deepcopy(existing)])
            if "id" not in row:
                row["id"] = str(uuid.uuid4())
            table.append(row)
            return FakeQueryResult(data=[copy.deepcopy(row)])

        if self._update_data is not None:
            updated = []
            for row in table:
                if self._match(row):
                    row.update(copy.deepcopy(self._update_data))
                    updated.append(copy.deepcopy(row))
            return FakeQueryResult(data=updated)

        # SELECT
        rows = [r for r in table if self._match(r)]

        if self._order_col:
            rows.sort(
                key=lambda r: r.get(self._order_col) or "",
                reverse=self._order_desc,
            )

        total = len(rows)

        if self._range_start is not None:
            rows = rows[self._range_start:self._range_end + 1]
        elif self._limit_val is not None:
            rows = rows[:self._limit_val]

        return FakeQueryResult(
            data=copy.deepcopy(rows),
            count=total if self._count_mode else None,
        )


class FakeDB:
    """In-memory store keyed by table name."""

    def __init__(self):
        self.store = defaultdict(list)

    def table(self, name):
        return FakeQueryBuilder(self.store, name)


@pytest.fixture
def fake_db():
    """Provides a clean in-memory DB and patches supabase_client._table."""
    db = FakeDB()

    def fake_table(name):
        return FakeQueryBuilder(db.store, name)

    with patch("onboarding_control.supabase_client._table", side_effect=fake_table):
        with patch("onboarding_control.supabase_client.get_client", return_value=MagicMock()):
            yield db


# ---------------------------------------------------------------------------
# In-memory runner collaborators
# ---------------------------------------------------------------------------

class FakeClock:
    """Controllable clock; call it for the current time."""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class FakeDelivery:
    """Records sends; ``fail(subject, *errors)`` queues errors for a subject."""

    def __init__(self):
        self.sent: list[dict] = []
        self._failures: dict[str, list[Exception]] = defaultdict(list)

    def fail(self, subject: str, *errors: Exception) -> None:
        self._failures[subject].extend(errors)

    def send(self, address: str, subject: str, body: str) -> dict:
        if self._failures[subject]:
            raise self._failures[subject].pop(0)
        self.sent.append({"address": address, "subject": subject, "body": body})
        return {"delivery_id": f"msg-{len(self.sent)}"}

    @property
    def subjects(self) -> list[str]:
        return [s["subject"] for s in self.sent]


class InMemoryContent:
    def __init__(self, sequences: dict | None = None):
        self.sequences = sequences or {}

    def get_active_sequence(self, user_id: str):
        return copy.deepcopy(self.sequences.get(user_id))


class InMemoryEventRecorder:
    """Append-only event list; ``fail_next(n)`` makes the next n appends raise."""

    def __init__(self):
        self.events: list[dict] = []
        self._fail_remaining = 0

    def fail_next(self, n: int) -> None:
        self._fail_remaining = n

    def append(self, event: dict) -> None:
        if self._fail_remaining:
            self._fail_remaining -= 1
            raise ConnectionError("database unavailable")
        events.validate_event(event)
        self.events.append(copy.deepcopy(event))

    def has_event(self, user_id, event_type, predicate=None) -> bool:
        return any(
            e["user_id"] == user_id and e["event_type"] == event_type
            and (predicate is None or predicate(e["event_data"]))
            for e in self.events
        )

    def of_type(self, event_type: str) -> list[dict]:
        return [e for e in self.events if e["event_type"] == event_type]

    @property
    def types(self) -> list[str]:
        return [e["event_type"] for e in self.events]


class InMemoryStatusSink:
    def __init__(self):
        self.labels: list[tuple[str, str]] = []
        self.broken = False

    def set_status(self, user_id: str, label: str, **fields) -> None:
        if self.broken:
            raise ConnectionError("members table unavailable")
        self.labels.append((user_id, label))


class InMemoryRunStore:
    """Run rows kept as deep copies, like a real database round trip.

    ``save`` only writes over a running row, like the Supabase store.
    """

    def __init__(self):
        self.rows: dict[str, dict] = {}

    def create(self, run: dict) -> dict:
        self.rows[run["id"]] = copy.deepcopy(run)
        return copy.deepcopy(run)

    def get(self, run_id: str):
        row = self.rows.get(run_id)
        return copy.deepcopy(row) if row else None

    def save(self, run: dict):
        stored = self.rows.get(run["id"])
        if stored is None or stored["status"] != "running":
            return None
        self.rows[run["id"]] = copy.deepcopy(run)
        return copy.deepcopy(run)

    def list_running(self, user_id: str) -> list[dict]:
        return [copy.deepcopy(r) for r in self.rows.values()
                if r["user_id"] == user_id and r["status"] == "running"]

    def list_due(self, now: datetime) -> list[dict]:
        return [copy.deepcopy(r) for r in self.rows.values()
                if r["status"] == "running" and r.get("resume_at")
                and parse_timestamp(r["resume_at"]) <= now]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def delivery():
    return FakeDelivery()


@pytest.fixture
def recorder():
    return InMemoryEventRecorder()


@pytest.fixture
def status_sink():
    return InMemoryStatusSink()


@pytest.fixture
def store():
    return InMemoryRunStore()


@pytest.fixture
def content():
    return InMemoryContent()


@pytest.fixture
def audit():
    return MagicMock()


@pytest.fixture
def runner(content, delivery, recorder, status_sink, store, clock, audit):
    return SequenceRunner(
        content=content,
        delivery=delivery,
        recorder=recorder,
        status_sink=status_sink,
        store=store,
        clock=clock,
        audit=audit,
    )


@pytest.fixture
def client(fake_db, delivery):
    """Sync test client for the FastAPI app with mocked DB and mailer."""
    from fastapi.testclient import TestClient

    from onboarding_control import supabase_client as db
    from onboarding_control.app import create_app
    from onboarding_control.services.content import SupabaseContentLookup
    from onboarding_control.services.event_recorder import SupabaseEventRecorder
    from onboarding_control.services.members import SupabaseStatusSink
    from onboarding_control.services.run_store import SupabaseRunStore

    @asynccontextmanager
    async def noop_lifespan(app):
        yield

    app = create_app(runner=SequenceRunner(
        content=SupabaseContentLookup(),
        delivery=delivery,
        recorder=SupabaseEventRecorder(),
        status_sink=SupabaseStatusSink(),
        store=SupabaseRunStore(),
        audit=db.log_action,
    ))
    # Keep the scheduler out of tests
    app.router.lifespan_context = noop_lifespan

    with TestClient(app) as c:
        yield c


# ---------------------------------------------------------------------------
# Data factories
# ---------------------------------------------------------------------------

def make_steps(*days: int) -> list[dict]:
    return [
        {"day": d, "subject": f"Day {d} subject", "body": f"Body for day {d}\nSecond line"}
        for d in days
    ]


def make_member(**overrides):
    defaults = {
        "id": str(uuid.uuid4()),
        "whop_user_id": "user_member",
        "email": "member@example.com",
        "status": "pending",
        "sequence_status": None,
        "current_day": 0,
        "joined_at": datetime.now(timezone.utc).isoformat(),
    }
    defaults.update(overrides)
    return defaults


def make_sequence_row(**overrides):
    defaults = {
        "id": str(uuid.uuid4()),
        "user_id": "dev_user",
        "name": "Quick Win",
        "content": make_steps(1, 2, 5),
        "active": True,
        "updated_at": datetime.now(timezone.utc).isoformat(),
    }
    defaults.update(overrides)
    return defaults


def make_run(**overrides):
    now = datetime.now(timezone.utc).isoformat()
    steps = overrides.pop("steps_remaining", make_steps(1, 2))
    defaults = {
        "id": str(uuid.uuid4()),
        "user_id": "user_run",
        "contact_address": "run@example.com",
        "steps_remaining": steps,
        "step_count": len(steps),
        "last_completed_day": 0,
        "started_at": now,
        "resume_at": now,
        "attempts": 0,
        "last_error": None,
        "started_recorded": True,
        "pending_sent": None,
        "status": "running",
        "completed_at": None,
        "updated_at": now,
    }
    defaults.update(overrides)
    return defaults
