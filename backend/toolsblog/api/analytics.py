"""Analytics API routes"""
import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from toolsblog.core.config import settings
from toolsblog.db.redis import Cache, get_cache
from toolsblog.db.session import get_db
from toolsblog.services.analytics_service import AnalyticsService

router = APIRouter(prefix=f"{settings.API_PREFIX}/analytics", tags=["analytics"])
logger = logging.getLogger(__name__)


def get_analytics_service(db: Session = Depends(get_db), cache: Cache = Depends(get_cache)) -> AnalyticsService:
    return AnalyticsService(db, cache)


@router.post("/rollup")
def run_rollup(
    day: Optional[date] = Query(default=None),
    service: AnalyticsService = Depends(get_analytics_service),
):
    """Record the daily rollup (defaults to yesterday); a no-op if it exists"""
    return {"success": True, "data": service.record_daily_metrics(day).to_dict()}


@router.get("/metrics")
def get_metrics(
    start_date: date = Query(alias="startDate"),
    end_date: date = Query(alias="endDate"),
    group_by: str = Query(default="day", alias="groupBy"),
    service: AnalyticsService = Depends(get_analytics_service),
):
    return {"success": True, "data": service.get_metrics_by_date_range(start_date, end_date, group_by)}


@router.get("/revenue-projection")
def get_revenue_projection(
    months: int = Query(default=6),
    service: AnalyticsService = Depends(get_analytics_service),
):
    return {"success": True, "data": service.get_revenue_projection(months)}
