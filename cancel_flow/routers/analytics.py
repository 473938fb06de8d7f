"""Analytics router — dashboard aggregates, realtime counters and the ETL trigger."""

import logging
from datetime import date

from fastapi import APIRouter, Header, HTTPException, Query

from cancel_flow import supabase_client as db
from cancel_flow.config import ADMIN_SECRET
from cancel_flow.services.dashboard import fetch_dashboard
from cancel_flow.services.data_pipeline import get_realtime_metrics, run_daily_etl

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/analytics", tags=["Analytics"])


def _unavailable(e: db.DataAccessError) -> HTTPException:
    status = 503 if isinstance(e, db.DatabaseUnavailable) else 502
    return HTTPException(status_code=status, detail=f"Analytics query failed: {e}")


@router.get("/dashboard")
async def dashboard(days: int = Query(30, ge=1, le=365, description="Trailing window in days")):
    try:
        return await fetch_dashboard(days)
    except db.DataAccessError as e:
        logger.error("Dashboard query failed: %s", e)
        raise _unavailable(e)


@router.get("/realtime")
async def realtime():
    try:
        return await get_realtime_metrics()
    except db.DataAccessError as e:
        logger.error("Realtime metrics failed: %s", e)
        raise _unavailable(e)


@router.post("/etl")
async def trigger_etl(
    target_date: str | None = Query(None, alias="date", description="YYYY-MM-DD, default today"),
    authorization: str = Header(""),
):
    """Run the daily ETL now. Requires the admin bearer token."""
    if ADMIN_SECRET:
        expected = f"Bearer {ADMIN_SECRET}"
        if authorization != expected:
            raise HTTPException(status_code=401, detail="Invalid admin secret")

    day = None
    if target_date:
        try:
            day = date.fromisoformat(target_date)
        except ValueError:
            raise HTTPException(status_code=400, detail="date must be YYYY-MM-DD")

    try:
        return await run_daily_etl(day)
    except db.DataAccessError as e:
        raise _unavailable(e)
