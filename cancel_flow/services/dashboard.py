"""Marketing dashboard aggregates over a trailing window of days."""

import asyncio
import logging
from collections import Counter
from datetime import date, datetime, timedelta, timezone

from cancel_flow import supabase_client as db
from cancel_flow.config import REVENUE_PER_CANCELLATION, REVENUE_SAVED_PER_DOWNSELL

logger = logging.getLogger(__name__)


def _rate(part: int, whole: int) -> float:
    return part / whole * 100 if whole > 0 else 0.0


def _variant_result(journeys: list[dict], variant: str) -> dict:
    rows = [j for j in journeys if j.get("variant") == variant]
    conversions = sum(1 for j in rows if j.get("journey_outcome") == "completed")
    return {"users": len(rows), "conversions": conversions, "rate": _rate(conversions, len(rows))}


def _cohort_label(cohort_month: str) -> str:
    return date.fromisoformat(cohort_month[:10]).strftime("%b %Y")


def process_analytics_data(cancellations: list[dict], events: list[dict],
                           journeys: list[dict], daily_metrics: list[dict],
                           cohorts: list[dict] | None = None) -> dict:
    """Turn raw rows into the dashboard payload. Revenue figures are dollars."""
    total_sessions = len({e.get("session_id") for e in events})
    total_cancellations = len(cancellations)
    completed = [j for j in journeys if j.get("journey_outcome") == "completed"]
    downsell_accepted = sum(1 for j in journeys if j.get("journey_outcome") == "downsell_accepted")

    times = [j.get("time_to_complete") or 0 for j in completed]
    reasons = Counter(c.get("reason") or "Unknown" for c in cancellations)

    return {
        "total_users": total_sessions,
        "total_sessions": total_sessions,
        "conversion_rate": _rate(total_cancellations, total_sessions),
        "downsell_acceptance_rate": _rate(downsell_accepted, total_cancellations),
        "average_time_to_complete": sum(times) / len(times) if times else 0,
        "revenue_at_risk": total_cancellations * REVENUE_PER_CANCELLATION // 100,
        "revenue_saved": downsell_accepted * REVENUE_SAVED_PER_DOWNSELL // 100,
        "top_cancellation_reasons": [
            {"name": name, "value": value} for name, value in reasons.most_common(5)
        ],
        "ab_test_results": {
            "variant_a": _variant_result(journeys, "A"),
            "variant_b": _variant_result(journeys, "B"),
        },
        "daily_trends": [
            {
                "date": m.get("date"),
                "cancellations": m.get("cancellations_completed", 0),
                "downsell_accepted": m.get("downsell_offers_accepted", 0),
                "revenue": m.get("revenue_saved_by_downsell", 0),
            }
            for m in daily_metrics
        ],
        "funnel": [
            {"name": "Popup Opened", "value": total_sessions},
            {"name": "Started Flow", "value": len(journeys)},
            {"name": "Reached Reasons",
             "value": sum(1 for j in journeys if (j.get("completed_steps") or 0) >= 3)},
            {"name": "Completed Cancel", "value": len(completed)},
            {"name": "Accepted Downsell", "value": downsell_accepted},
        ],
        "cohorts": [
            {
                "cohort": _cohort_label(c["cohort_month"]),
                "variant": c.get("variant"),
                "month0": c.get("initial_users", 0),
                "month1": c.get("month_1_retention", 0),
                "month2": c.get("month_2_retention", 0),
                "month3": c.get("month_3_retention", 0),
            }
            for c in cohorts or []
        ],
    }


async def fetch_dashboard(days: int = 30, now: datetime | None = None) -> dict:
    """Query the trailing `days` window in parallel and build the dashboard."""
    now = now or datetime.now(timezone.utc)
    start = now - timedelta(days=days)
    start_iso = start.isoformat()
    start_day = start.date().isoformat()
    start_month = start.date().replace(day=1).isoformat()

    cancellations, events, journeys, daily_metrics, cohorts = await asyncio.gather(
        asyncio.to_thread(db.select_between, "cancellations", start_iso),
        asyncio.to_thread(db.select_between, "analytics_events", start_iso),
        asyncio.to_thread(db.select_between, "user_journeys", start_iso),
        asyncio.to_thread(db.select_between, "daily_metrics", start_day, column="date"),
        asyncio.to_thread(db.select_between, "user_cohorts", start_month, column="cohort_month"),
    )
    logger.info("Dashboard for %d days: %d events, %d journeys, %d cancellations",
                days, len(events), len(journeys), len(cancellations))

    daily_metrics = sorted(daily_metrics, key=lambda m: m.get("date") or "")
    cohorts = sorted(cohorts, key=lambda c: (c.get("cohort_month") or "", c.get("variant") or ""))
    return process_analytics_data(cancellations, events, journeys, daily_metrics, cohorts)
