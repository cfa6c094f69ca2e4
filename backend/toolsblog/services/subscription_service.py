"""Subscription lifecycle: creation, plan change, cancellation and read side"""
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from toolsblog.core.config import settings
from toolsblog.core.exceptions import (
    AlreadySubscribedError, MissingPaymentMethodError, NotActiveError, ProviderError, ValidationError
)
from toolsblog.core.metrics import subscription_operations_counter
from toolsblog.db.redis import (
    Cache, PLAN_STATS_KEY, subscription_key, subscription_lock_key, user_subscription_lock_key
)
from toolsblog.db.repository import Repository
from toolsblog.models.subscription import PaymentProviderName, Subscription, SubscriptionStatus
from toolsblog.models.user import User
from toolsblog.services.plans import get_plan
from toolsblog.services.providers.registry import ProviderRegistry
from toolsblog.services.subscription_state import (
    advance_period_end, invalidate_subscription_caches, mark_canceled, set_plan, sync_user_mirror
)

logger = logging.getLogger("billing")

# Statuses that count as "the user already has a subscription". A past_due
# subscription does not: subscribing again replaces it.
LIVE_STATUSES = (
    SubscriptionStatus.ACTIVE.value,
    SubscriptionStatus.PENDING.value,
)


class SubscriptionService:
    """Orchestrates provider calls, local writes and cache invalidation.

    Every mutating operation runs in the order: provider call, local commit,
    cache invalidation. A provider failure leaves no local state behind.
    """

    def __init__(self, db: Session, cache: Cache, providers: ProviderRegistry):
        self.db = db
        self.cache = cache
        self.providers = providers
        self.subscriptions = Repository(Subscription, db)
        self.users = Repository(User, db)

    # ========================================================================
    # CREATION
    # ========================================================================

    def create_subscription(
        self,
        user_id: int,
        plan: str,
        provider: str,
        payment_method_id: Optional[str] = None,
    ) -> Subscription:
        """Create a subscription with the provider, then record it locally.

        Args:
            user_id: Owning user
            plan: basic, pro or enterprise
            provider: stripe or paddle
            payment_method_id: Provider payment method, required for stripe

        Returns:
            The new Subscription (status active or pending)

        Raises:
            InvalidPlanError, ValidationError, MissingPaymentMethodError, NotFoundError,
            AlreadySubscribedError, ProviderError
        """
        plan_config = get_plan(plan)
        adapter = self.providers.get(provider)
        if adapter.name == PaymentProviderName.STRIPE.value and not payment_method_id:
            raise MissingPaymentMethodError("Payment method ID is required for Stripe")
        user = self.users.get(user_id)

        with self.cache.lock(user_subscription_lock_key(user.id)):
            existing = self.db.query(Subscription).filter(
                Subscription.user_id == user.id,
                Subscription.status.in_(LIVE_STATUSES),
            ).first()
            if existing:
                subscription_operations_counter.labels(operation="create", status="rejected").inc()
                raise AlreadySubscribedError(
                    f"User already has a {existing.status} subscription ({existing.plan})"
                )

            self._supersede_past_due(user)

            customer_id = self._ensure_customer(user, adapter, payment_method_id)

            try:
                result = adapter.create_subscription(
                    customer_id, plan_config.price_ref(adapter.name), payment_method_id
                )
            except ProviderError:
                subscription_operations_counter.labels(operation="create", status="provider_error").inc()
                raise

            subscription = Subscription(
                user_id=user.id,
                plan=plan_config.key,
                provider=adapter.name,
                external_id=result.external_id,
                status=result.status.value,
                price=plan_config.price,
                currency=plan_config.currency,
                current_period_end=result.current_period_end,
                features=plan_config.features(),
                cancel_at_period_end=False,
            )
            try:
                self.db.add(subscription)
                self.db.flush()
                sync_user_mirror(self.db, user)
                self.db.commit()
            except IntegrityError:
                self.db.rollback()
                # Provider record now has no local row; left for manual cleanup
                logger.error(
                    f"Local insert failed for {adapter.name} subscription {result.external_id} "
                    f"(user {user.id}); provider record left without local counterpart"
                )
                subscription_operations_counter.labels(operation="create", status="error").inc()
                raise
            self.db.refresh(subscription)

        invalidate_subscription_caches(self.cache, subscription)
        subscription_operations_counter.labels(operation="create", status="success").inc()
        logger.info(
            f"Created {adapter.name} subscription {subscription.external_id} "
            f"for user {user.id} on plan {plan_config.key} ({subscription.status})"
        )
        return subscription

    def _supersede_past_due(self, user: User) -> None:
        """Cancel the user's past_due subscriptions before a new one is created.

        The provider is canceled first; a ProviderError leaves the old row untouched.
        """
        stale = self.db.query(Subscription).filter(
            Subscription.user_id == user.id,
            Subscription.status == SubscriptionStatus.PAST_DUE.value,
        ).all()
        for old in stale:
            adapter = self.providers.get(old.provider)
            with self.cache.lock(subscription_lock_key(old.external_id)):
                try:
                    adapter.cancel_subscription(old.external_id)
                except ProviderError:
                    subscription_operations_counter.labels(operation="supersede", status="provider_error").inc()
                    raise
                self.db.refresh(old)
                if old.status != SubscriptionStatus.CANCELED.value:
                    mark_canceled(old, datetime.now(timezone.utc))
                sync_user_mirror(self.db, user)
                self.db.commit()
            invalidate_subscription_caches(self.cache, old)
            subscription_operations_counter.labels(operation="supersede", status="success").inc()
            logger.info(f"Replaced past_due subscription {old.id} ({old.external_id}) for user {user.id}")

    def _ensure_customer(self, user: User, adapter, payment_method_id: Optional[str]) -> str:
        """Resolve the provider customer and cache its id on the user"""
        customer_id = adapter.ensure_customer(user, payment_method_id)
        if user.customer_id_for(adapter.name) != customer_id:
            if adapter.name == PaymentProviderName.STRIPE.value:
                user.stripe_customer_id = customer_id
            else:
                user.paddle_customer_id = customer_id
            self.db.commit()
        return customer_id

    # ========================================================================
    # PLAN CHANGE / CANCELLATION
    # ========================================================================

    def change_plan(self, subscription_id: int, new_plan: str) -> Subscription:
        plan_config = get_plan(new_plan)
        subscription = self.subscriptions.get(subscription_id)
        if subscription.status == SubscriptionStatus.CANCELED.value:
            raise NotActiveError("Cannot change the plan of a canceled subscription")
        if subscription.plan == plan_config.key:
            raise ValidationError(f"Subscription is already on the {plan_config.key} plan")

        adapter = self.providers.get(subscription.provider)
        with self.cache.lock(subscription_lock_key(subscription.external_id)):
            try:
                result = adapter.update_subscription(
                    subscription.external_id, plan_config.price_ref(adapter.name)
                )
            except ProviderError:
                subscription_operations_counter.labels(operation="change_plan", status="provider_error").inc()
                raise

            self.db.refresh(subscription)
            set_plan(subscription, plan_config)
            advance_period_end(subscription, result.current_period_end)
            sync_user_mirror(self.db, subscription.user)
            self.db.commit()

        invalidate_subscription_caches(self.cache, subscription)
        subscription_operations_counter.labels(operation="change_plan", status="success").inc()
        logger.info(f"Subscription {subscription.id} moved to plan {plan_config.key}")
        return subscription

    def cancel_subscription(self, subscription_id: int) -> Subscription:
        subscription = self.subscriptions.get(subscription_id)
        if subscription.status != SubscriptionStatus.ACTIVE.value:
            raise NotActiveError("Subscription is not active")

        adapter = self.providers.get(subscription.provider)
        with self.cache.lock(subscription_lock_key(subscription.external_id)):
            try:
                adapter.cancel_subscription(subscription.external_id)
            except ProviderError:
                subscription_operations_counter.labels(operation="cancel", status="provider_error").inc()
                raise

            self.db.refresh(subscription)
            if subscription.status != SubscriptionStatus.CANCELED.value:
                mark_canceled(subscription, datetime.now(timezone.utc))
            sync_user_mirror(self.db, subscription.user)
            self.db.commit()

        invalidate_subscription_caches(self.cache, subscription)
        subscription_operations_counter.labels(operation="cancel", status="success").inc()
        logger.info(f"Canceled subscription {subscription.id} ({subscription.external_id})")
        return subscription

    # ========================================================================
    # READ SIDE
    # ========================================================================

    def get_subscription(self, subscription_id: int) -> Dict:
        cached = self.cache.get_json(subscription_key(subscription_id))
        if cached is not None:
            return cached
        data = self.subscriptions.get(subscription_id).to_dict()
        self.cache.set_json(subscription_key(subscription_id), data, settings.CACHE_TTL_SHORT)
        return data

    def list_user_subscriptions(self, user_id: int) -> List[Subscription]:
        self.users.get(user_id)
        return self.db.query(Subscription).filter(
            Subscription.user_id == user_id
        ).order_by(Subscription.id.desc()).all()

    def active_subscriptions_by_plan(self) -> Dict[str, Dict]:
        """Count and monthly revenue of active subscriptions per plan"""
        def load():
            rows = self.db.query(
                Subscription.plan,
                func.count(Subscription.id),
                func.coalesce(func.sum(Subscription.price), 0),
            ).filter(
                Subscription.status == SubscriptionStatus.ACTIVE.value
            ).group_by(Subscription.plan).all()
            return {
                plan: {"count": count, "revenue": float(Decimal(str(revenue)))}
                for plan, count, revenue in rows
            }

        return self.cache.remember(PLAN_STATS_KEY, settings.CACHE_TTL_MEDIUM, load)

    def total_revenue(self, subscription_id: int) -> Decimal:
        return self.subscriptions.get(subscription_id).total_revenue()
