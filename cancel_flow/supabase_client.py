"""Supabase connection and query helpers for the cancellation flow tables."""

import threading
from datetime import datetime, timezone

import httpx
from postgrest.exceptions import APIError
from supabase import Client, create_client

from cancel_flow.config import SUPABASE_SERVICE_KEY, SUPABASE_URL

_client: Client | None = None
_client_lock = threading.Lock()


class DataAccessError(Exception):
    """Raised when a Supabase query cannot be completed."""


class DatabaseUnavailable(DataAccessError):
    """Raised when the database could not be reached (connect, timeout, network)."""


class QueryFailed(DataAccessError):
    """Raised when the database rejected the query."""


def get_client() -> Client:
    """Return the Supabase client singleton (thread-safe)."""
    global _client
    if _client is None:
        with _client_lock:
            if _client is None:
                if not SUPABASE_URL or not SUPABASE_SERVICE_KEY:
                    raise DatabaseUnavailable("SUPABASE_URL and SUPABASE_SERVICE_KEY must be set")
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


def _execute(q):
    """Run a query, mapping client failures onto DataAccessError subclasses."""
    try:
        return q.execute()
    except httpx.TransportError as e:
        raise DatabaseUnavailable(str(e) or e.__class__.__name__) from e
    except APIError as e:
        raise QueryFailed(e.message or str(e)) from e


def insert(table: str, data: dict) -> dict:
    """Insert a row and return it."""
    result = _execute(_table(table).insert(data))
    return result.data[0] if result.data else {}


def upsert(table: str, data: dict, on_conflict: str = "",
           ignore_duplicates: bool = False) -> dict:
    """Upsert a row and return it.

    With ignore_duplicates an existing conflicting row is left untouched and
    an empty dict is returned.
    """
    if on_conflict:
        q = _table(table).upsert(data, on_conflict=on_conflict,
                                 ignore_duplicates=ignore_duplicates)
    else:
        q = _table(table).upsert(data, ignore_duplicates=ignore_duplicates)
    result = _execute(q)
    return result.data[0] if result.data else {}


def update(table: str, data: dict, match: dict) -> dict:
    """Update rows matching conditions."""
    q = _table(table).update(data)
    for k, v in match.items():
        q = q.eq(k, v)
    result = _execute(q)
    return result.data[0] if result.data else {}


def select(table: str, columns: str = "*", match: dict | None = None,
           order: str | None = None, order_desc: bool = False,
           limit: int | None = None) -> list[dict]:
    """Select rows with optional filtering, ordering and limit."""
    q = _table(table).select(columns)
    if match:
        for k, v in match.items():
            q = q.eq(k, v)
    if order:
        q = q.order(order, desc=order_desc)
    if limit:
        q = q.limit(limit)
    result = _execute(q)
    return result.data or []


def select_one(table: str, columns: str = "*", match: dict | None = None,
               order: str | None = None, order_desc: bool = False) -> dict | None:
    """Select a single row."""
    rows = select(table, columns, match, order=order, order_desc=order_desc, limit=1)
    return rows[0] if rows else None


def select_between(table: str, start: str, end: str | None = None,
                   column: str = "created_at", columns: str = "*",
                   match: dict | None = None, exclusive_end: bool = False) -> list[dict]:
    """Select rows whose `column` falls within [start, end]."""
    q = _table(table).select(columns).gte(column, start)
    if end is not None:
        q = q.lt(column, end) if exclusive_end else q.lte(column, end)
    if match:
        for k, v in match.items():
            q = q.eq(k, v)
    result = _execute(q)
    return result.data or []


# ---------------------------------------------------------------------------
# Subscriptions
# ---------------------------------------------------------------------------

def get_active_subscription(user_id: str) -> dict | None:
    """Most recent active subscription for a user."""
    return select_one("subscriptions", match={"user_id": user_id, "status": "active"},
                      order="created_at", order_desc=True)


def update_subscription(user_id: str, data: dict, only_status: str | None = "active") -> dict:
    """Update a user's subscription rows, by default only those still active."""
    data["updated_at"] = _now()
    match = {"user_id": user_id}
    if only_status:
        match["status"] = only_status
    return update("subscriptions", data, match)


# ---------------------------------------------------------------------------
# Cancellations (one authoritative row per user, keyed by user_id)
# ---------------------------------------------------------------------------

def get_latest_cancellation(user_id: str, columns: str = "*") -> dict | None:
    """Latest cancellation record for a user."""
    return select_one("cancellations", columns=columns, match={"user_id": user_id},
                      order="created_at", order_desc=True)


def insert_cancellation_if_absent(user_id: str, variant: str) -> dict:
    """Create the user's cancellation row unless one already exists.

    Returns the new row, or {} if another writer got there first.
    """
    return upsert("cancellations", {
        "user_id": user_id,
        "downsell_variant": variant,
        "accepted_downsell": False,
        "reason": None,
    }, on_conflict="user_id", ignore_duplicates=True)


def upsert_cancellation(data: dict) -> dict:
    """Write the user's cancellation row in one statement (last write wins)."""
    data["updated_at"] = _now()
    return upsert("cancellations", data, on_conflict="user_id")


# ---------------------------------------------------------------------------
# Analytics
# ---------------------------------------------------------------------------

def record_event(event: dict) -> dict:
    """Insert an analytics event."""
    return insert("analytics_events", event)


def record_journey(journey: dict) -> dict:
    """Insert a finished user journey."""
    return insert("user_journeys", journey)


def delete_events_before(cutoff: str) -> list:
    """Delete analytics events created before the cutoff timestamp."""
    result = _execute(_table("analytics_events").delete().lt("created_at", cutoff))
    return result.data or []


# ---------------------------------------------------------------------------
# Rollups
# ---------------------------------------------------------------------------

def upsert_daily_metrics(row: dict) -> dict:
    """Upsert one daily_metrics row keyed by date."""
    return upsert("daily_metrics", row, on_conflict="date")


def get_recent_daily_metrics(limit: int = 7) -> list[dict]:
    """Most recent daily_metrics rows, newest first."""
    return select("daily_metrics", order="date", order_desc=True, limit=limit)


def upsert_cohort(row: dict) -> dict:
    """Upsert one user_cohorts row keyed by (cohort_month, variant)."""
    return upsert("user_cohorts", row, on_conflict="cohort_month,variant")
