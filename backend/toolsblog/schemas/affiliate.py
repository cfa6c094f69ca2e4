"""Pydantic schemas for affiliate tracking"""
from typing import Optional

from pydantic import Field

from toolsblog.schemas.base import CamelModel


class TrackingData(CamelModel):
    ip: str = Field(min_length=1, max_length=64)
    user_agent: Optional[str] = Field(default=None, max_length=512)
    referrer: Optional[str] = Field(default=None, max_length=1024)
    utm_source: Optional[str] = None
    utm_medium: Optional[str] = None
    utm_campaign: Optional[str] = None


class TrackClickRequest(CamelModel):
    blog_post_id: int = Field(gt=0)
    tool_name: str = Field(min_length=1, max_length=255)
    affiliate_network: str
    tracking_data: TrackingData


class ConversionRequest(CamelModel):
    conversion_value: float = Field(ge=0)
