"""Daily analytics ETL.

run_daily_etl(date):
  1. Compute the day's rollup from analytics_events, user_journeys and
     cancellations (queried in parallel).
  2. Upsert it into daily_metrics, one row per date.
  3. Refresh the user_cohorts rows for the month.
  4. Delete raw events past the retention window.
  5. Compare the two most recent rollups and store automated insights.

Any failure in steps 1-3 or 5 aborts the run. Cleanup failures are logged.

The cohort retention rates and the insight thresholds are assumptions, not
measurements: they come from config and the A/B "significance" check is a
plain threshold, not a statistical test.
"""

import asyncio
import logging
import math
import time
from datetime import date, datetime, timedelta, timezone

from cancel_flow import supabase_client as db
from cancel_flow.config import (
    COHORT_MRR_PER_USER,
    COHORT_RETENTION_RATES,
    DEFAULT_MONTHLY_PRICE,
    EVENT_RETENTION_DAYS,
    INSIGHT_AB_DELTA,
    INSIGHT_AB_MIN_USERS,
    INSIGHT_CONVERSION_DELTA,
    INSIGHT_REVENUE_MULTIPLIER,
    REVENUE_PER_CANCELLATION,
    REVENUE_SAVED_PER_DOWNSELL,
)
from cancel_flow.services.ab_testing import VARIANTS

logger = logging.getLogger(__name__)

COHORT_WINDOW_DAYS = 30


def day_window(day: str) -> tuple[str, str]:
    """Inclusive UTC bounds of a YYYY-MM-DD day."""
    return f"{day}T00:00:00.000Z", f"{day}T23:59:59.999Z"


def _count(rows: list[dict], event_name: str) -> int:
    return sum(1 for r in rows if r.get("event_name") == event_name)


def _step_count(events: list[dict], step_number: int) -> int:
    return sum(
        1 for e in events
        if e.get("event_name") == "journey_step_completed"
        and (e.get("event_properties") or {}).get("stepNumber") == step_number
    )


def calculate_funnel_steps(events: list[dict], journeys: list[dict]) -> dict:
    return {
        "step_1_completions": _count(events, "cancel_popup_opened"),
        "step_2_completions": _step_count(events, 1),
        "step_3_completions": _step_count(events, 2),
        "step_4_completions": _step_count(events, 3),
        "step_5_completions": sum(1 for j in journeys if j.get("journey_outcome") == "completed"),
    }


def compute_daily_metrics(day: str, events: list[dict], journeys: list[dict],
                          cancellations: list[dict]) -> dict:
    """Pure rollup of one day's rows into a daily_metrics row."""
    sessions = {e.get("session_id") for e in events}
    users = {e.get("user_id") for e in events if e.get("user_id")}

    completed = sum(1 for j in journeys if j.get("journey_outcome") == "completed")
    downsell_accepted = _count(events, "downsell_offer_accepted")

    variant_journeys = {v: [j for j in journeys if j.get("variant") == v] for v in VARIANTS}
    variant_conversions = {
        v: sum(1 for j in rows if j.get("journey_outcome") == "completed")
        for v, rows in variant_journeys.items()
    }

    return {
        "date": day,
        "total_users": len(users),
        "total_sessions": len(sessions),
        "cancellation_attempts": _count(events, "cancellation_attempt_started"),
        "cancellations_completed": completed,
        "downsell_offers_shown": _count(events, "downsell_offer_presented"),
        "downsell_offers_accepted": downsell_accepted,
        "monthly_revenue_at_risk": max(completed, len(cancellations)) * REVENUE_PER_CANCELLATION,
        "revenue_saved_by_downsell": downsell_accepted * REVENUE_SAVED_PER_DOWNSELL,
        "average_customer_value": DEFAULT_MONTHLY_PRICE,
        "variant_a_users": len(variant_journeys["A"]),
        "variant_b_users": len(variant_journeys["B"]),
        "variant_a_conversions": variant_conversions["A"],
        "variant_b_conversions": variant_conversions["B"],
        **calculate_funnel_steps(events, journeys),
    }


async def calculate_daily_metrics(day: str) -> dict:
    """Fetch the day's rows in parallel and roll them up.

    One failed query fails the whole batch.
    """
    start, end = day_window(day)
    events, journeys, cancellations = await asyncio.gather(
        asyncio.to_thread(db.select_between, "analytics_events", start, end),
        asyncio.to_thread(db.select_between, "user_journeys", start, end),
        asyncio.to_thread(db.select_between, "cancellations", start, end),
    )
    return compute_daily_metrics(day, events, journeys, cancellations)


def upsert_daily_metrics(metrics: dict) -> dict:
    return db.upsert_daily_metrics(metrics)


def retention_metrics(size: int, rates=COHORT_RETENTION_RATES) -> list[int]:
    """Projected retained users per month for a cohort of `size` users."""
    return [math.floor(size * rate + 0.5) for rate in rates]


def process_cohort_data(target: date) -> list[dict]:
    """Rebuild this month's cohort rows from user_identified events."""
    month_start = datetime(target.year, target.month, 1, tzinfo=timezone.utc)
    window_end = month_start + timedelta(days=COHORT_WINDOW_DAYS)
    cohort_month = month_start.date().isoformat()

    users = db.select_between(
        "analytics_events", cohort_month, window_end.isoformat(),
        columns="user_id, variant, created_at",
        match={"event_name": "user_identified"},
        exclusive_end=True,
    )
    if not users:
        return []

    rows = []
    for variant in VARIANTS:
        size = sum(1 for u in users if u.get("variant") == variant)
        if size == 0:
            continue
        retained = retention_metrics(size)
        row = {
            "cohort_month": cohort_month,
            "variant": variant,
            "initial_users": size,
            "initial_mrr": size * COHORT_MRR_PER_USER,
        }
        for month, count in enumerate(retained, start=1):
            row[f"month_{month}_retention"] = count
            row[f"month_{month}_mrr"] = count * COHORT_MRR_PER_USER
        db.upsert_cohort(row)
        rows.append(row)
    return rows


def cleanup_old_data(now: datetime | None = None) -> int:
    """Delete analytics events older than the retention window. Never raises."""
    now = now or datetime.now(timezone.utc)
    cutoff = (now - timedelta(days=EVENT_RETENTION_DAYS)).isoformat()
    try:
        deleted = db.delete_events_before(cutoff)
    except db.DataAccessError as e:
        logger.warning("Failed to clean up old analytics events: %s", e)
        return 0
    logger.info("Deleted %d analytics events older than %s", len(deleted), cutoff)
    return len(deleted)


def _rate(part: int, whole: int) -> float:
    return part / whole * 100 if whole > 0 else 0.0


def build_insights(today: dict, yesterday: dict) -> list[dict]:
    """Threshold checks between two daily_metrics rows."""
    insights = []

    rate_today = _rate(today.get("cancellations_completed", 0), today.get("total_sessions", 0))
    rate_yesterday = _rate(yesterday.get("cancellations_completed", 0),
                           yesterday.get("total_sessions", 0))
    if abs(rate_today - rate_yesterday) > INSIGHT_CONVERSION_DELTA:
        insights.append({
            "type": "conversion_rate_change",
            "severity": "high",
            "message": f"Conversion rate changed by {rate_today - rate_yesterday:.1f}% "
                       "compared to yesterday",
            "value": rate_today,
            "previousValue": rate_yesterday,
        })

    saved_today = today.get("revenue_saved_by_downsell", 0)
    saved_yesterday = yesterday.get("revenue_saved_by_downsell", 0)
    if saved_today > saved_yesterday * INSIGHT_REVENUE_MULTIPLIER:
        insights.append({
            "type": "revenue_improvement",
            "severity": "positive",
            "message": f"Downsell strategy saved significantly more revenue today: ${saved_today}",
            "value": saved_today,
            "previousValue": saved_yesterday,
        })

    a_users = today.get("variant_a_users", 0)
    b_users = today.get("variant_b_users", 0)
    a_rate = _rate(today.get("variant_a_conversions", 0), a_users)
    b_rate = _rate(today.get("variant_b_conversions", 0), b_users)
    if abs(a_rate - b_rate) > INSIGHT_AB_DELTA and \
            a_users >= INSIGHT_AB_MIN_USERS and b_users >= INSIGHT_AB_MIN_USERS:
        insights.append({
            "type": "ab_test_significance",
            "severity": "medium",
            "message": f"Significant difference in A/B test results: "
                       f"A={a_rate:.1f}%, B={b_rate:.1f}%",
            "value": {"variantA": a_rate, "variantB": b_rate},
            "previousValue": None,
        })

    return insights


def generate_insights() -> list[dict]:
    """Compare the two latest rollups and store any insights as events."""
    recent = db.get_recent_daily_metrics(limit=7)
    if len(recent) < 2:
        return []

    insights = build_insights(recent[0], recent[1])
    for insight in insights:
        db.record_event({
            "event_name": "automated_insight",
            "event_category": "system",
            "session_id": f"system_{int(time.time() * 1000)}",
            "event_properties": insight,
            "created_at": datetime.now(timezone.utc).isoformat(),
        })
    if insights:
        logger.info("Generated %d insights: %s", len(insights),
                    ", ".join(i["type"] for i in insights))
    return insights


async def run_daily_etl(target_date: date | None = None) -> dict:
    """Run the full ETL for one UTC day (default today)."""
    target = target_date or datetime.now(timezone.utc).date()
    day = target.isoformat()
    logger.info("Running daily ETL for %s", day)

    try:
        metrics = await calculate_daily_metrics(day)
        await asyncio.to_thread(upsert_daily_metrics, metrics)
        cohorts = await asyncio.to_thread(process_cohort_data, target)
        deleted = await asyncio.to_thread(cleanup_old_data)
        insights = await asyncio.to_thread(generate_insights)
    except Exception:
        logger.exception("ETL process failed for %s", day)
        raise

    logger.info("ETL completed successfully for %s", day)
    return {
        "date": day,
        "metrics": metrics,
        "cohorts": cohorts,
        "events_deleted": deleted,
        "insights": insights,
    }


async def get_realtime_metrics(now: datetime | None = None) -> dict:
    """Today's activity so far, with revenue in dollars."""
    now = now or datetime.now(timezone.utc)
    start = now.replace(hour=0, minute=0, second=0, microsecond=0).isoformat()

    events, journeys = await asyncio.gather(
        asyncio.to_thread(db.select_between, "analytics_events", start),
        asyncio.to_thread(db.select_between, "user_journeys", start),
    )

    completed = sum(1 for j in journeys if j.get("journey_outcome") == "completed")
    accepted = _count(events, "downsell_offer_accepted")
    return {
        "sessions_today": len({e.get("session_id") for e in events}),
        "cancellations_today": completed,
        "downsell_accepted_today": accepted,
        "revenue_at_risk_today": completed * REVENUE_PER_CANCELLATION // 100,
        "revenue_saved_today": accepted * REVENUE_SAVED_PER_DOWNSELL // 100,
    }
