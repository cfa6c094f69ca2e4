"""Subscription lifecycle operation tests"""
from decimal import Decimal

import pytest

from toolsblog.core.exceptions import (
    AlreadySubscribedError, ConcurrentUpdateError, InvalidPlanError, MissingPaymentMethodError,
    NotActiveError, NotFoundError, ProviderError, ValidationError,
)
from toolsblog.db.redis import PLAN_STATS_KEY, subscription_key, user_profile_key, user_subscription_lock_key
from toolsblog.models.subscription import Subscription
from toolsblog.services.subscription_service import SubscriptionService
from toolsblog.services.user_service import get_user_profile


@pytest.fixture
def service(db_session, cache, providers):
    return SubscriptionService(db_session, cache, providers)


@pytest.mark.critical
class TestCreateSubscription:
    def test_stripe_subscription_is_created_and_mirrored(self, service, test_user, stripe_provider, db_session):
        subscription = service.create_subscription(test_user.id, "pro", "stripe", "pm_card_visa")

        assert subscription.id is not None
        assert subscription.status == "active"
        assert subscription.plan == "pro"
        assert subscription.price == Decimal("29.00")
        assert subscription.currency == "EUR"
        assert [f["name"] for f in subscription.features] == [
            "Basic features", "Premium content", "Priority support", "No ads"
        ]
        assert [call[0] for call in stripe_provider.calls] == ["ensure_customer", "create_subscription"]
        assert stripe_provider.calls[1][2] == "price_pro"

        db_session.refresh(test_user)
        assert test_user.stripe_customer_id == f"cus_stripe_{test_user.id}"
        assert test_user.subscription_status == "active"
        assert test_user.subscription_plan == "pro"
        assert test_user.subscription_external_id == subscription.external_id
        assert test_user.has_active_subscription() is True

    def test_paddle_subscription_starts_pending(self, service, test_user, paddle_provider):
        subscription = service.create_subscription(test_user.id, "basic", "paddle")

        assert subscription.status == "pending"
        assert subscription.provider == "paddle"
        assert test_user.subscription_is_active is False

    def test_already_subscribed_makes_no_external_calls(self, service, test_user, stripe_provider, paddle_provider):
        service.create_subscription(test_user.id, "basic", "stripe", "pm_card_visa")
        stripe_provider.calls.clear()

        with pytest.raises(AlreadySubscribedError):
            service.create_subscription(test_user.id, "pro", "stripe", "pm_card_visa")
        with pytest.raises(AlreadySubscribedError):
            service.create_subscription(test_user.id, "pro", "paddle")

        assert stripe_provider.external_calls == 0
        assert paddle_provider.external_calls == 0

    def test_pending_subscription_also_blocks_a_second_one(self, service, test_user, stripe_provider):
        service.create_subscription(test_user.id, "basic", "paddle")
        with pytest.raises(AlreadySubscribedError):
            service.create_subscription(test_user.id, "basic", "stripe", "pm_card_visa")
        assert stripe_provider.external_calls == 0

    def test_stripe_requires_payment_method(self, service, test_user, stripe_provider):
        with pytest.raises(MissingPaymentMethodError):
            service.create_subscription(test_user.id, "basic", "stripe")
        assert stripe_provider.external_calls == 0

    def test_invalid_plan(self, service, test_user):
        with pytest.raises(InvalidPlanError):
            service.create_subscription(test_user.id, "platinum", "stripe", "pm_card_visa")

    def test_unknown_provider(self, service, test_user):
        with pytest.raises(ValidationError):
            service.create_subscription(test_user.id, "basic", "braintree")

    def test_unknown_user(self, service):
        with pytest.raises(NotFoundError):
            service.create_subscription(9999, "basic", "stripe", "pm_card_visa")

    def test_provider_failure_leaves_no_local_row(self, service, test_user, stripe_provider, db_session):
        stripe_provider.failures["create_subscription"] = ProviderError("card declined", provider="stripe")

        with pytest.raises(ProviderError):
            service.create_subscription(test_user.id, "basic", "stripe", "pm_card_declined")

        assert db_session.query(Subscription).count() == 0
        db_session.refresh(test_user)
        assert test_user.subscription_status is None

    def test_concurrent_creation_is_rejected_while_locked(self, service, test_user, cache, monkeypatch):
        monkeypatch.setattr("toolsblog.core.config.settings.SUBSCRIPTION_LOCK_WAIT", 0.1)
        token = cache.acquire_lock(user_subscription_lock_key(test_user.id), timeout=30)
        assert token is not None

        with pytest.raises(ConcurrentUpdateError):
            service.create_subscription(test_user.id, "basic", "stripe", "pm_card_visa")

    def test_resubscribe_after_cancellation(self, service, test_user):
        first = service.create_subscription(test_user.id, "basic", "stripe", "pm_card_visa")
        service.cancel_subscription(first.id)

        second = service.create_subscription(test_user.id, "pro", "stripe", "pm_card_visa")
        assert second.id != first.id
        assert test_user.subscription_plan == "pro"
        assert test_user.subscription_status == "active"

    def test_resubscribe_replaces_past_due_subscription(self, service, test_user, stripe_provider, db_session):
        first = service.create_subscription(test_user.id, "basic", "stripe", "pm_card_visa")
        first.status = "past_due"
        db_session.commit()
        with pytest.raises(NotActiveError):
            service.cancel_subscription(first.id)

        second = service.create_subscription(test_user.id, "pro", "stripe", "pm_card_visa")

        db_session.refresh(first)
        assert first.status == "canceled"
        assert first.canceled_at is not None
        assert ("cancel_subscription", first.external_id) in stripe_provider.calls
        assert second.status == "active"
        assert test_user.subscription_plan == "pro"
        assert test_user.subscription_is_active is True

    def test_failed_replacement_keeps_past_due_subscription(self, service, test_user, stripe_provider, db_session):
        first = service.create_subscription(test_user.id, "basic", "stripe", "pm_card_visa")
        first.status = "past_due"
        db_session.commit()
        stripe_provider.failures["cancel_subscription"] = ProviderError("timeout", provider="stripe")

        with pytest.raises(ProviderError):
            service.create_subscription(test_user.id, "pro", "stripe", "pm_card_visa")

        db_session.refresh(first)
        assert first.status == "past_due"
        assert db_session.query(Subscription).filter(Subscription.user_id == test_user.id).count() == 1


@pytest.mark.critical
class TestChangePlan:
    def test_change_plan(self, service, test_user, stripe_provider):
        subscription = service.create_subscription(test_user.id, "basic", "stripe", "pm_card_visa")
        changed = service.change_plan(subscription.id, "enterprise")

        assert changed.plan == "enterprise"
        assert changed.price == Decimal("39.00")
        assert changed.features[-1] == {"name": "API access", "enabled": True}
        assert ("update_subscription", subscription.external_id, "price_enterprise") in stripe_provider.calls
        assert test_user.subscription_plan == "enterprise"

    def test_same_plan_is_rejected(self, service, test_user):
        subscription = service.create_subscription(test_user.id, "basic", "stripe", "pm_card_visa")
        with pytest.raises(ValidationError):
            service.change_plan(subscription.id, "basic")

    def test_canceled_subscription_cannot_change_plan(self, service, test_user):
        subscription = service.create_subscription(test_user.id, "basic", "stripe", "pm_card_visa")
        service.cancel_subscription(subscription.id)
        with pytest.raises(NotActiveError):
            service.change_plan(subscription.id, "pro")

    def test_provider_failure_keeps_old_plan(self, service, test_user, stripe_provider, db_session):
        subscription = service.create_subscription(test_user.id, "basic", "stripe", "pm_card_visa")
        stripe_provider.failures["update_subscription"] = ProviderError("boom", provider="stripe")

        with pytest.raises(ProviderError):
            service.change_plan(subscription.id, "pro")
        db_session.refresh(subscription)
        assert subscription.plan == "basic"


@pytest.mark.critical
class TestCancelSubscription:
    def test_cancel(self, service, test_user, stripe_provider):
        subscription = service.create_subscription(test_user.id, "basic", "stripe", "pm_card_visa")
        canceled = service.cancel_subscription(subscription.id)

        assert canceled.status == "canceled"
        assert canceled.canceled_at is not None
        assert canceled.cancel_at_period_end is False
        assert ("cancel_subscription", subscription.external_id) in stripe_provider.calls
        assert test_user.subscription_status == "canceled"
        assert test_user.has_active_subscription() is False

    def test_cancel_pending_is_not_active(self, service, test_user):
        subscription = service.create_subscription(test_user.id, "basic", "paddle")
        with pytest.raises(NotActiveError):
            service.cancel_subscription(subscription.id)

    def test_cancel_twice(self, service, test_user):
        subscription = service.create_subscription(test_user.id, "basic", "stripe", "pm_card_visa")
        service.cancel_subscription(subscription.id)
        with pytest.raises(NotActiveError):
            service.cancel_subscription(subscription.id)


@pytest.mark.high
class TestReadSideAndCaching:
    def test_get_subscription_is_cached(self, service, test_user, cache):
        subscription = service.create_subscription(test_user.id, "basic", "stripe", "pm_card_visa")

        data = service.get_subscription(subscription.id)
        assert data["externalId"] == subscription.external_id
        assert cache.get_json(subscription_key(subscription.id))["plan"] == "basic"

    def test_mutation_invalidates_cached_views(self, service, test_user, cache, db_session):
        subscription = service.create_subscription(test_user.id, "basic", "stripe", "pm_card_visa")
        service.get_subscription(subscription.id)
        get_user_profile(db_session, cache, test_user.id)
        service.active_subscriptions_by_plan()

        service.change_plan(subscription.id, "pro")

        assert cache.get_json(subscription_key(subscription.id)) is None
        assert cache.get_json(user_profile_key(test_user.id)) is None
        assert cache.get_json(PLAN_STATS_KEY) is None
        assert service.get_subscription(subscription.id)["plan"] == "pro"

    def test_active_subscriptions_by_plan(self, service, test_user, db_session):
        from toolsblog.services.user_service import create_user

        other = create_user(db_session, "other@example.com")
        service.create_subscription(test_user.id, "pro", "stripe", "pm_card_visa")
        service.create_subscription(other.id, "pro", "stripe", "pm_card_visa")

        assert service.active_subscriptions_by_plan() == {"pro": {"count": 2, "revenue": 58.0}}

    def test_list_user_subscriptions_newest_first(self, service, test_user):
        first = service.create_subscription(test_user.id, "basic", "stripe", "pm_card_visa")
        service.cancel_subscription(first.id)
        second = service.create_subscription(test_user.id, "pro", "stripe", "pm_card_visa")

        assert [s.id for s in service.list_user_subscriptions(test_user.id)] == [second.id, first.id]

    def test_total_revenue_without_payments(self, service, test_user):
        subscription = service.create_subscription(test_user.id, "basic", "stripe", "pm_card_visa")
        assert service.total_revenue(subscription.id) == Decimal("0")
