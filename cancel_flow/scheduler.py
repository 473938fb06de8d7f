"""APScheduler — runs the analytics ETL once a day."""

import logging
from datetime import datetime, timedelta, timezone

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from cancel_flow.config import ETL_HOUR, ETL_MINUTE
from cancel_flow.services.data_pipeline import run_daily_etl

logger = logging.getLogger(__name__)

scheduler = AsyncIOScheduler(timezone="UTC")


@scheduler.scheduled_job("cron", hour=ETL_HOUR, minute=ETL_MINUTE, id="daily_etl")
async def daily_etl():
    """Roll up the previous UTC day into daily_metrics."""
    yesterday = datetime.now(timezone.utc).date() - timedelta(days=1)
    try:
        result = await run_daily_etl(yesterday)
        logger.info(
            "Daily ETL: %s sessions, %s cancellations, %d insights",
            result["metrics"]["total_sessions"],
            result["metrics"]["cancellations_completed"],
            len(result["insights"]),
        )
    except Exception as e:
        logger.error("Daily ETL failed: %s", e)
