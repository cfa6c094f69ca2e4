"""Subscription plan catalogue"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from toolsblog.core.config import settings
from toolsblog.core.exceptions import InvalidPlanError
from toolsblog.models.subscription import SubscriptionPlan


@dataclass(frozen=True)
class PlanConfig:
    key: str
    name: str
    price: Decimal
    feature_names: Tuple[str, ...]

    @property
    def currency(self) -> str:
        return settings.DEFAULT_CURRENCY

    def features(self) -> List[Dict]:
        """Ordered feature list stored on the subscription"""
        return [{"name": name, "enabled": True} for name in self.feature_names]

    def price_ref(self, provider: str) -> str:
        """Provider-side price identifier for this plan"""
        refs = {
            "stripe": {
                "basic": settings.STRIPE_PRICE_BASIC,
                "pro": settings.STRIPE_PRICE_PRO,
                "enterprise": settings.STRIPE_PRICE_ENTERPRISE,
            },
            "paddle": {
                "basic": settings.PADDLE_PRICE_BASIC,
                "pro": settings.PADDLE_PRICE_PRO,
                "enterprise": settings.PADDLE_PRICE_ENTERPRISE,
            },
        }
        try:
            return refs[provider][self.key]
        except KeyError:
            raise InvalidPlanError(f"No {provider} price configured for plan {self.key}")


PLANS: Dict[str, PlanConfig] = {
    SubscriptionPlan.BASIC.value: PlanConfig(
        key="basic",
        name="Basic",
        price=Decimal("15.00"),
        feature_names=("Full blog access", "Email updates", "Community access"),
    ),
    SubscriptionPlan.PRO.value: PlanConfig(
        key="pro",
        name="Pro",
        price=Decimal("29.00"),
        feature_names=("Basic features", "Premium content", "Priority support", "No ads"),
    ),
    SubscriptionPlan.ENTERPRISE.value: PlanConfig(
        key="enterprise",
        name="Enterprise",
        price=Decimal("39.00"),
        feature_names=("Pro features", "Custom solutions", "Dedicated support", "API access"),
    ),
}


def get_plan(plan_key: str) -> PlanConfig:
    """Resolve a plan key (case-insensitive).

    Raises:
        InvalidPlanError: if the key is not one of basic/pro/enterprise
    """
    plan = PLANS.get((plan_key or "").strip().lower())
    if plan is None:
        raise InvalidPlanError(f"Invalid subscription plan: {plan_key}")
    return plan


def plan_for_price(provider: str, price_ref: Optional[str]) -> Optional[PlanConfig]:
    """Reverse lookup from a provider price id, None when unknown"""
    if not price_ref:
        return None
    for plan in PLANS.values():
        if plan.price_ref(provider) == price_ref:
            return plan
    return None


def list_plans() -> List[Dict]:
    return [
        {
            "key": plan.key,
            "name": plan.name,
            "price": float(plan.price),
            "currency": plan.currency,
            "features": list(plan.feature_names),
        }
        for plan in PLANS.values()
    ]
