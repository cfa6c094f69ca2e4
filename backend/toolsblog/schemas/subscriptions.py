"""Pydantic schemas for subscriptions"""
from typing import Literal, Optional

from pydantic import Field

from toolsblog.schemas.base import CamelModel


class CreateSubscriptionRequest(CamelModel):
    user_id: int = Field(gt=0)
    plan: str  # 'basic', 'pro', 'enterprise'
    provider: Literal["stripe", "paddle"]
    payment_method_id: Optional[str] = None


class ChangePlanRequest(CamelModel):
    plan: str
