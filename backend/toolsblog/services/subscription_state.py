"""Subscription state machine and field-level mutators

Each mutator touches exactly the fields named in it. Services compose them
instead of copying dicts onto models, so one operation cannot overwrite a
field another operation owns.
"""
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from toolsblog.core.exceptions import InvalidTransitionError
from toolsblog.db.redis import Cache, PLAN_STATS_KEY, subscription_key, user_profile_key
from toolsblog.models.billing_record import BillingRecord
from toolsblog.models.subscription import Subscription, SubscriptionStatus
from toolsblog.models.user import User
from toolsblog.services.plans import PlanConfig

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    SubscriptionStatus.PENDING: {SubscriptionStatus.ACTIVE, SubscriptionStatus.CANCELED},
    SubscriptionStatus.ACTIVE: {SubscriptionStatus.PAST_DUE, SubscriptionStatus.CANCELED},
    SubscriptionStatus.PAST_DUE: {SubscriptionStatus.ACTIVE, SubscriptionStatus.CANCELED},
    SubscriptionStatus.CANCELED: set(),
}


def can_transition(current, target) -> bool:
    current, target = SubscriptionStatus(current), SubscriptionStatus(target)
    return current == target or target in ALLOWED_TRANSITIONS[current]


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ============================================================================
# FIELD MUTATORS
# ============================================================================

def set_status(subscription: Subscription, status: SubscriptionStatus) -> bool:
    """Move status along the state machine, returning True if it changed.

    Raises:
        InvalidTransitionError: if the transition is not allowed
    """
    if not can_transition(subscription.status, status):
        raise InvalidTransitionError(
            f"Cannot move subscription {subscription.id} from {subscription.status} to {status.value}"
        )
    if subscription.status == status.value:
        return False
    logger.info(f"Subscription {subscription.id} status {subscription.status} -> {status.value}")
    subscription.status = status.value
    return True


def advance_period_end(subscription: Subscription, period_end: Optional[datetime]) -> bool:
    """Set current_period_end only if the new value is later"""
    period_end = _as_utc(period_end)
    if period_end is None:
        return False
    stored = _as_utc(subscription.current_period_end)
    if stored is not None and period_end <= stored:
        return False
    subscription.current_period_end = period_end
    return True


def set_last_event_at(subscription: Subscription, occurred_at: Optional[datetime]) -> None:
    occurred_at = _as_utc(occurred_at)
    stored = _as_utc(subscription.last_event_at)
    if occurred_at is not None and (stored is None or occurred_at > stored):
        subscription.last_event_at = occurred_at


def set_plan(subscription: Subscription, plan: PlanConfig) -> None:
    subscription.plan = plan.key
    subscription.price = plan.price
    subscription.features = plan.features()


def mark_canceled(subscription: Subscription, canceled_at: datetime = None) -> None:
    set_status(subscription, SubscriptionStatus.CANCELED)
    if subscription.canceled_at is None:
        subscription.canceled_at = canceled_at or datetime.now(timezone.utc)
    subscription.cancel_at_period_end = False


def append_billing_record(
    db: Session,
    subscription: Subscription,
    reference: str,
    amount: Decimal,
    currency: str,
    outcome: str,
    occurred_at: datetime = None,
) -> Optional[BillingRecord]:
    """Append one billing entry unless ``reference`` was already recorded"""
    existing = db.query(BillingRecord).filter(
        BillingRecord.subscription_id == subscription.id,
        BillingRecord.reference == reference,
    ).first()
    if existing:
        logger.info(f"Billing record {reference} already stored for subscription {subscription.id}")
        return None
    record = BillingRecord(
        subscription_id=subscription.id,
        reference=reference,
        amount=amount if amount is not None else Decimal("0.00"),
        currency=currency or subscription.currency,
        outcome=outcome,
        occurred_at=occurred_at or datetime.now(timezone.utc),
    )
    subscription.billing_history.append(record)
    db.flush()
    return record


# ============================================================================
# ENTITLEMENT MIRROR
# ============================================================================

MIRROR_PRIORITY = {
    SubscriptionStatus.ACTIVE.value: 0,
    SubscriptionStatus.PAST_DUE.value: 1,
    SubscriptionStatus.PENDING.value: 2,
    SubscriptionStatus.CANCELED.value: 3,
}


def current_subscription_for(db: Session, user_id: int) -> Optional[Subscription]:
    """The subscription the user's entitlement mirror should reflect.

    A live subscription wins over a canceled one; ties go to the newest.
    """
    subscriptions = db.query(Subscription).filter(Subscription.user_id == user_id).all()
    if not subscriptions:
        return None
    return min(subscriptions, key=lambda s: (MIRROR_PRIORITY.get(s.status, 4), -s.id))


def sync_user_mirror(db: Session, user: User) -> None:
    """Recompute the user's entitlement mirror from their subscriptions"""
    db.flush()
    subscription = current_subscription_for(db, user.id)
    if subscription is None:
        user.subscription_status = None
        user.subscription_plan = None
        user.subscription_provider = None
        user.subscription_external_id = None
        user.subscription_is_active = False
        user.subscription_expires_at = None
        user.subscription_canceled_at = None
        return
    write_user_mirror(user, subscription)


def write_user_mirror(user: User, subscription: Subscription) -> None:
    """Copy the subscription's entitlement onto the user record"""
    user.subscription_status = subscription.status
    user.subscription_plan = subscription.plan
    user.subscription_provider = subscription.provider
    user.subscription_external_id = subscription.external_id
    user.subscription_is_active = subscription.status == SubscriptionStatus.ACTIVE.value
    user.subscription_expires_at = subscription.current_period_end
    user.subscription_canceled_at = subscription.canceled_at


def invalidate_subscription_caches(cache: Optional[Cache], subscription: Subscription) -> None:
    if cache is None:
        return
    cache.delete(
        subscription_key(subscription.id),
        user_profile_key(subscription.user_id),
        PLAN_STATS_KEY,
    )
