"""Pydantic schemas for users and posts"""
from typing import List, Optional

from pydantic import Field

from toolsblog.schemas.base import CamelModel


class CreateUserRequest(CamelModel):
    email: str
    name: Optional[str] = None
    role: str = "user"


class AffiliateProduct(CamelModel):
    tool_name: str
    affiliate_id: str
    network: str
    commission: float = Field(ge=0, le=100)


class CreatePostRequest(CamelModel):
    author_id: int = Field(gt=0)
    title: str = Field(min_length=1, max_length=255)
    status: str = "draft"
    is_premium: bool = False
    affiliate_products: List[AffiliateProduct] = []


class RecordTrafficRequest(CamelModel):
    views: int = Field(default=1, ge=0)
    unique_visitors: int = Field(default=0, ge=0)
    time_on_page: Optional[float] = Field(default=None, ge=0)
    bounces: int = Field(default=0, ge=0)
