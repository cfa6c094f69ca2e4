"""Background scheduler task for the daily analytics rollup"""
import asyncio
import logging

from toolsblog.core.config import settings
from toolsblog.core.metrics import analytics_rollups_counter
from toolsblog.db.redis import get_cache
from toolsblog.db.session import SessionLocal
from toolsblog.services.analytics_service import AnalyticsService

logger = logging.getLogger(__name__)

ROLLUP_LOCK_KEY = "lock:analytics-rollup"


def run_analytics_rollup():
    """Record yesterday's rollup once across all workers"""
    cache = get_cache()
    token = cache.acquire_lock(ROLLUP_LOCK_KEY, timeout=300)
    if token is None:
        logger.debug("Analytics rollup already running elsewhere")
        return None
    db = SessionLocal()
    try:
        return AnalyticsService(db, cache).record_daily_metrics()
    finally:
        db.close()
        cache.release_lock(ROLLUP_LOCK_KEY, token)


async def analytics_rollup_task():
    """Periodically ensure yesterday's rollup exists (idempotent per day)"""
    while True:
        try:
            await asyncio.to_thread(run_analytics_rollup)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            analytics_rollups_counter.labels(status="error").inc()
            logger.error(f"Analytics rollup failed: {e}", exc_info=True)
        await asyncio.sleep(settings.ANALYTICS_ROLLUP_INTERVAL_SECONDS)
