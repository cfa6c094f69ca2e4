"""Subscriptions API routes"""
import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from toolsblog.core.config import settings
from toolsblog.db.redis import Cache, get_cache
from toolsblog.db.session import get_db
from toolsblog.schemas.subscriptions import ChangePlanRequest, CreateSubscriptionRequest
from toolsblog.services.plans import list_plans
from toolsblog.services.providers.registry import ProviderRegistry, get_providers
from toolsblog.services.reconciliation_service import ReconciliationService
from toolsblog.services.subscription_service import SubscriptionService

router = APIRouter(prefix=f"{settings.API_PREFIX}/subscriptions", tags=["subscriptions"])
logger = logging.getLogger(__name__)


def get_subscription_service(
    db: Session = Depends(get_db),
    cache: Cache = Depends(get_cache),
    providers: ProviderRegistry = Depends(get_providers),
) -> SubscriptionService:
    return SubscriptionService(db, cache, providers)


@router.get("/plans")
def get_plans():
    """Available plans with prices and features"""
    return {"success": True, "data": list_plans()}


@router.get("/stats/by-plan")
def get_plan_stats(service: SubscriptionService = Depends(get_subscription_service)):
    """Active subscription count and revenue per plan"""
    return {"success": True, "data": service.active_subscriptions_by_plan()}


@router.post("", status_code=201)
def create_subscription(
    body: CreateSubscriptionRequest,
    service: SubscriptionService = Depends(get_subscription_service),
):
    subscription = service.create_subscription(
        body.user_id, body.plan, body.provider, body.payment_method_id
    )
    return {"success": True, "data": subscription.to_dict()}


@router.get("/users/{user_id}")
def list_user_subscriptions(user_id: int, service: SubscriptionService = Depends(get_subscription_service)):
    return {"success": True, "data": [s.to_dict() for s in service.list_user_subscriptions(user_id)]}


@router.get("/{subscription_id}")
def get_subscription(subscription_id: int, service: SubscriptionService = Depends(get_subscription_service)):
    return {"success": True, "data": service.get_subscription(subscription_id)}


@router.patch("/{subscription_id}")
def change_plan(
    subscription_id: int,
    body: ChangePlanRequest,
    service: SubscriptionService = Depends(get_subscription_service),
):
    subscription = service.change_plan(subscription_id, body.plan)
    return {"success": True, "data": subscription.to_dict()}


@router.delete("/{subscription_id}")
def cancel_subscription(subscription_id: int, service: SubscriptionService = Depends(get_subscription_service)):
    subscription = service.cancel_subscription(subscription_id)
    return {"success": True, "data": subscription.to_dict()}


@router.post("/{subscription_id}/resync")
def resync_subscription(
    subscription_id: int,
    db: Session = Depends(get_db),
    cache: Cache = Depends(get_cache),
    providers: ProviderRegistry = Depends(get_providers),
):
    """Re-read a subscription from its provider and reconcile local state"""
    subscription = ReconciliationService(db, cache, providers).resync_subscription(subscription_id)
    return {"success": True, "data": subscription.to_dict()}
