"""Shared fixtures for Cancel Flow tests.

Provides:
- fake_db: patches supabase_client with an in-memory fake (with per-table
  failure injection)
- client: FastAPI TestClient wired to the app, scheduler disabled
- sample data factories for subscriptions, cancellations, events, journeys
"""

import os
import uuid
from collections import defaultdict
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest

# Set env vars before any cancel_flow imports
os.environ.setdefault("SUPABASE_URL", "https://fake.supabase.co")
os.environ.setdefault("SUPABASE_SERVICE_KEY", "fake-key")
os.environ.setdefault("ADMIN_SECRET", "test-admin-secret")
os.environ.setdefault("PAYMENT_STUB_DELAY_SECONDS", "0")
os.environ.setdefault("ENABLE_AB_TESTING", "true")
os.environ.setdefault("ENABLE_ANALYTICS", "true")


# ---------------------------------------------------------------------------
# In-memory fake Supabase
# ---------------------------------------------------------------------------

class FakeQueryResult:
    def __init__(self, data=None, count=None):
        self.data = data or []
        self.count = count


class FakeQueryBuilder:
    """Mimics the supabase-py query builder chain."""

    def __init__(self, db, table_name):
        self._db = db
        self._store = db.store
        self._table = table_name
        self._filters = []
        self._order_col = None
        self._order_desc = False
        self._limit_val = None
        self._columns = "*"
        self._count_mode = None
        self._upsert_data = None
        self._upsert_conflict = None
        self._ignore_duplicates = False
        self._update_data = None
        self._delete_mode = False
        self._insert_data = None

    def select(self, columns="*", count=None):
        self._columns = columns
        self._count_mode = count
        return self

    def insert(self, data):
        self._insert_data = data
        return self

    def upsert(self, data, on_conflict=None, ignore_duplicates=False):
        self._upsert_data = data
        self._upsert_conflict = on_conflict
        self._ignore_duplicates = ignore_duplicates
        return self

    def update(self, data):
        self._update_data = data
        return self

    def delete(self):
        self._delete_mode = True
        return self

    def eq(self, col, val):
        self._filters.append(("eq", col, val))
        return self

    def gte(self, col, val):
        self._filters.append(("gte", col, val))
        return self

    def lte(self, col, val):
        self._filters.append(("lte", col, val))
        return self

    def lt(self, col, val):
        self._filters.append(("lt", col, val))
        return self

    def order(self, col, desc=False):
        self._order_col = col
        self._order_desc = desc
        return self

    def limit(self, n):
        self._limit_val = n
        return self

    def _match(self, row):
        for op, col, val in self._filters:
            row_val = row.get(col)
            if op == "eq" and row_val != val:
                return False
            if op == "gte" and (row_val is None or str(row_val) < str(val)):
                return False
            if op == "lte" and (row_val is None or str(row_val) > str(val)):
                return False
            if op == "lt" and (row_val is None or str(row_val) >= str(val)):
                return False
        return True

    def _op(self):
        if self._insert_data is not None:
            return "insert"
        if self._upsert_data is not None:
            return "upsert"
        if self._update_data is not None:
            return "update"
        if self._delete_mode:
            return "delete"
        return "select"

    def execute(self):
        self._db.calls.append((self._table, self._op()))
        failure = self._db.failures.get((self._table, self._op())) or \
            self._db.failures.get((self._table, None))
        if failure is not None:
            raise failure

        table = self._store[self._table]

        if self._insert_data is not None:
            row = dict(self._insert_data)
            if "id" not in row:
                row["id"] = str(uuid.uuid4())
            row.setdefault("created_at", datetime.now(timezone.utc).isoformat())
            table.append(row)
            return FakeQueryResult(data=[row])

        if self._upsert_data is not None:
            row = dict(self._upsert_data)
            if self._upsert_conflict:
                conflict_cols = [c.strip() for c in self._upsert_conflict.split(",")]
                for existing in table:
                    if all(existing.get(c) == row.get(c) for c in conflict_cols):
                        if self._ignore_duplicates:
                            return FakeQueryResult(data=[])
                        existing.update(row)
                        return FakeQueryResult(data=[existing])
            if "id" not in row:
                row["id"] = str(uuid.uuid4())
            row.setdefault("created_at", datetime.now(timezone.utc).isoformat())
            table.append(row)
            return FakeQueryResult(data=[row])

        if self._update_data is not None:
            updated = []
            for row in table:
                if self._match(row):
                    row.update(self._update_data)
                    updated.append(row)
            return FakeQueryResult(data=updated)

        if self._delete_mode:
            remaining = [r for r in table if not self._match(r)]
            removed = [r for r in table if self._match(r)]
            table.clear()
            table.extend(remaining)
            return FakeQueryResult(data=removed)

        # SELECT
        rows = [r for r in table if self._match(r)]

        if self._order_col:
            rows.sort(
                key=lambda r: r.get(self._order_col, ""),
                reverse=self._order_desc,
            )

        total = len(rows)

        if self._limit_val is not None:
            rows = rows[:self._limit_val]

        return FakeQueryResult(
            data=rows,
            count=total if self._count_mode else None,
        )


class FakeDB:
    """In-memory store keyed by table name."""

    def __init__(self):
        self.store = defaultdict(list)
        self.failures = {}
        self.calls = []

    def table(self, name):
        return FakeQueryBuilder(self, name)

    def fail(self, table, exc, op=None):
        """Make queries on `table` (optionally only `op`) raise `exc`."""
        self.failures[(table, op)] = exc

    def ops(self, table, op):
        return sum(1 for t, o in self.calls if t == table and o == op)

    def clear(self):
        self.store.clear()
        self.failures.clear()
        self.calls.clear()


@pytest.fixture
def fake_db():
    """Provides a clean in-memory DB and patches supabase_client._table."""
    db = FakeDB()

    def fake_table(name):
        return FakeQueryBuilder(db, name)

    with patch("cancel_flow.supabase_client._table", side_effect=fake_table):
        with patch("cancel_flow.supabase_client.get_client", return_value=MagicMock()):
            yield db


@pytest.fixture
def offline_error():
    """A connectivity failure as raised by the HTTP transport."""
    import httpx
    return httpx.ConnectError("connection refused")


@pytest.fixture
def rejected_error():
    """A query rejected by PostgREST."""
    from postgrest.exceptions import APIError
    return APIError({"message": "new row violates row-level security policy",
                     "code": "42501", "hint": None, "details": None})


@pytest.fixture
def paid():
    """Payment function that always succeeds, recording its calls."""
    calls = []

    async def payment(user_id, original_price, downsell_price):
        calls.append((user_id, original_price, downsell_price))
        return {"success": True, "transaction_id": "txn_test_123", "error": None}

    payment.calls = calls
    return payment


@pytest.fixture
def declined():
    """Payment function that always fails."""
    calls = []

    async def payment(user_id, original_price, downsell_price):
        calls.append((user_id, original_price, downsell_price))
        return {"success": False, "transaction_id": None,
                "error": "Payment processing failed (stub simulation)"}

    payment.calls = calls
    return payment


@pytest.fixture
def client(fake_db):
    """Sync test client for FastAPI app with mocked DB."""
    from contextlib import asynccontextmanager

    from fastapi.testclient import TestClient

    from cancel_flow.app import create_app

    @asynccontextmanager
    async def noop_lifespan(app):
        yield

    app = create_app()
    # Keep APScheduler out of tests
    app.router.lifespan_context = noop_lifespan

    with TestClient(app) as c:
        yield c


# ---------------------------------------------------------------------------
# Data factories
# ---------------------------------------------------------------------------

def _now():
    return datetime.now(timezone.utc).isoformat()


def make_subscription(**overrides):
    defaults = {
        "id": str(uuid.uuid4()),
        "user_id": "user-1",
        "monthly_price": 2500,
        "status": "active",
        "created_at": _now(),
        "updated_at": _now(),
    }
    defaults.update(overrides)
    return defaults


def make_cancellation(**overrides):
    defaults = {
        "id": str(uuid.uuid4()),
        "user_id": "user-1",
        "downsell_variant": "B",
        "reason": None,
        "accepted_downsell": False,
        "amount": None,
        "feedback": None,
        "created_at": _now(),
        "updated_at": _now(),
    }
    defaults.update(overrides)
    return defaults


def make_event(**overrides):
    defaults = {
        "id": str(uuid.uuid4()),
        "event_name": "cancel_popup_opened",
        "event_category": "engagement",
        "session_id": "session-1",
        "user_id": "user-1",
        "variant": "A",
        "test_name": None,
        "event_properties": {},
        "user_properties": None,
        "created_at": _now(),
    }
    defaults.update(overrides)
    return defaults


def make_journey(**overrides):
    defaults = {
        "id": str(uuid.uuid4()),
        "session_id": "session-1",
        "user_id": "user-1",
        "variant": "A",
        "flow_path": "main_entry->offer->offer_feedback->cancellation_reasons->cancelled",
        "total_steps": 4,
        "completed_steps": 4,
        "completion_rate": 100,
        "time_to_complete": 60,
        "journey_outcome": "completed",
        "abandonment_step": None,
        "steps_data": [],
        "metadata": {},
        "created_at": _now(),
    }
    defaults.update(overrides)
    return defaults


def make_daily_metrics(**overrides):
    defaults = {
        "date": "2026-10-18",
        "total_users": 10,
        "total_sessions": 10,
        "cancellation_attempts": 5,
        "cancellations_completed": 2,
        "downsell_offers_shown": 5,
        "downsell_offers_accepted": 1,
        "monthly_revenue_at_risk": 5000,
        "revenue_saved_by_downsell": 1500,
        "average_customer_value": 2500,
        "variant_a_users": 5,
        "variant_b_users": 5,
        "variant_a_conversions": 1,
        "variant_b_conversions": 1,
        "step_1_completions": 10,
        "step_2_completions": 8,
        "step_3_completions": 6,
        "step_4_completions": 3,
        "step_5_completions": 2,
    }
    defaults.update(overrides)
    return defaults
