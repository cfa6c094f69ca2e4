"""Affiliate tracking API routes"""
import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from toolsblog.core.config import settings
from toolsblog.db.redis import Cache, get_cache
from toolsblog.db.session import get_db
from toolsblog.schemas.affiliate import ConversionRequest, TrackClickRequest
from toolsblog.services.affiliate_service import AffiliateService, ClickTrackingData

router = APIRouter(prefix=f"{settings.API_PREFIX}/affiliate", tags=["affiliate"])
logger = logging.getLogger(__name__)


def get_affiliate_service(db: Session = Depends(get_db), cache: Cache = Depends(get_cache)) -> AffiliateService:
    return AffiliateService(db, cache)


@router.post("/clicks", status_code=201)
def track_click(body: TrackClickRequest, service: AffiliateService = Depends(get_affiliate_service)):
    tracking = body.tracking_data
    click = service.track_click(ClickTrackingData(
        blog_post_id=body.blog_post_id,
        tool_name=body.tool_name,
        affiliate_network=body.affiliate_network,
        ip=tracking.ip,
        user_agent=tracking.user_agent,
        referrer=tracking.referrer,
        utm_source=tracking.utm_source,
        utm_medium=tracking.utm_medium,
        utm_campaign=tracking.utm_campaign,
    ))
    return {"success": True, "data": click.to_dict()}


@router.post("/clicks/{click_id}/conversion")
def record_conversion(
    click_id: int,
    body: ConversionRequest,
    service: AffiliateService = Depends(get_affiliate_service),
):
    click = service.record_conversion(click_id, body.conversion_value)
    return {"success": True, "data": click.to_dict()}


@router.get("/users/{user_id}/stats")
def get_stats(
    user_id: int,
    start_date: Optional[datetime] = Query(default=None, alias="startDate"),
    end_date: Optional[datetime] = Query(default=None, alias="endDate"),
    service: AffiliateService = Depends(get_affiliate_service),
):
    return {"success": True, "data": service.get_stats(user_id, start_date, end_date)}


@router.get("/users/{user_id}/top-tools")
def get_top_tools(
    user_id: int,
    limit: int = Query(default=5, ge=1, le=50),
    service: AffiliateService = Depends(get_affiliate_service),
):
    return {"success": True, "data": service.get_top_tools(user_id, limit)}
