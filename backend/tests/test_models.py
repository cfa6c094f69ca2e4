"""Database integrity tests"""
import pytest
from datetime import datetime, timezone, timedelta
from decimal import Decimal
from sqlalchemy.exc import IntegrityError

from toolsblog.models.affiliate_click import AffiliateClick
from toolsblog.models.analytics import Analytics
from toolsblog.models.billing_record import BillingRecord
from toolsblog.models.subscription import Subscription, SubscriptionStatus
from toolsblog.models.webhook_event import WebhookEvent
from toolsblog.services.subscription_state import (
    advance_period_end, can_transition, current_subscription_for, set_status
)
from toolsblog.core.exceptions import InvalidTransitionError


def make_subscription(db_session, user, external_id="sub_1", status="active", **extra):
    subscription = Subscription(
        user_id=user.id,
        plan="basic",
        provider="stripe",
        external_id=external_id,
        status=status,
        price=Decimal("15.00"),
        currency="EUR",
        features=[],
        **extra,
    )
    db_session.add(subscription)
    db_session.commit()
    return subscription


@pytest.mark.critical
class TestSubscriptionConstraints:
    def test_one_active_subscription_per_user(self, test_user, db_session):
        make_subscription(db_session, test_user, "sub_a")
        with pytest.raises(IntegrityError):
            make_subscription(db_session, test_user, "sub_b")
        db_session.rollback()

    def test_canceled_history_is_allowed(self, test_user, db_session):
        make_subscription(db_session, test_user, "sub_old1", status="canceled")
        make_subscription(db_session, test_user, "sub_old2", status="canceled")
        make_subscription(db_session, test_user, "sub_new")
        assert len(test_user.subscriptions) == 3

    def test_external_id_is_unique(self, test_user, author, db_session):
        make_subscription(db_session, test_user, "sub_dup")
        with pytest.raises(IntegrityError):
            make_subscription(db_session, author, "sub_dup")
        db_session.rollback()

    def test_external_id_is_immutable(self, test_user, db_session):
        subscription = make_subscription(db_session, test_user, "sub_fixed")
        with pytest.raises(ValueError):
            subscription.external_id = "sub_other"

    def test_billing_reference_is_unique_per_subscription(self, test_user, db_session):
        subscription = make_subscription(db_session, test_user)
        now = datetime.now(timezone.utc)
        db_session.add(BillingRecord(subscription_id=subscription.id, reference="in_1", amount=Decimal("15"),
                                     currency="EUR", outcome="succeeded", occurred_at=now))
        db_session.commit()
        db_session.add(BillingRecord(subscription_id=subscription.id, reference="in_1", amount=Decimal("15"),
                                     currency="EUR", outcome="succeeded", occurred_at=now))
        with pytest.raises(IntegrityError):
            db_session.commit()
        db_session.rollback()

    def test_webhook_event_is_unique_per_provider(self, db_session):
        db_session.add(WebhookEvent(provider="stripe", event_id="evt_1", event_type="invoice.paid", payload={}))
        db_session.add(WebhookEvent(provider="paddle", event_id="evt_1", event_type="transaction.paid", payload={}))
        db_session.commit()
        db_session.add(WebhookEvent(provider="stripe", event_id="evt_1", event_type="invoice.paid", payload={}))
        with pytest.raises(IntegrityError):
            db_session.commit()
        db_session.rollback()

    def test_one_analytics_row_per_day(self, db_session):
        db_session.add(Analytics(date=datetime(2024, 1, 1).date(), top_performing_posts=[]))
        db_session.commit()
        db_session.add(Analytics(date=datetime(2024, 1, 1).date(), top_performing_posts=[]))
        with pytest.raises(IntegrityError):
            db_session.commit()
        db_session.rollback()


@pytest.mark.high
class TestSubscriptionModel:
    def test_to_dict_uses_camel_case(self, test_user, db_session):
        data = make_subscription(db_session, test_user).to_dict()
        assert data["externalId"] == "sub_1"
        assert data["cancelAtPeriodEnd"] is False
        assert data["billingHistory"] == []

    def test_state_machine(self):
        assert can_transition("pending", "active")
        assert can_transition("active", "past_due")
        assert can_transition("past_due", "active")
        assert can_transition("active", "canceled")
        assert not can_transition("canceled", "active")
        assert not can_transition("active", "pending")
        assert not can_transition("pending", "past_due")

    def test_set_status_rejects_invalid_transition(self, test_user, db_session):
        subscription = make_subscription(db_session, test_user, status="canceled")
        with pytest.raises(InvalidTransitionError):
            set_status(subscription, SubscriptionStatus.ACTIVE)

    def test_period_end_only_advances(self, test_user, db_session):
        now = datetime.now(timezone.utc)
        subscription = make_subscription(db_session, test_user, current_period_end=now)
        assert advance_period_end(subscription, now - timedelta(days=1)) is False
        assert advance_period_end(subscription, None) is False
        assert advance_period_end(subscription, now + timedelta(days=1)) is True

    def test_mirror_source_prefers_live_subscription(self, test_user, db_session):
        make_subscription(db_session, test_user, "sub_live")
        make_subscription(db_session, test_user, "sub_dead", status="canceled")
        assert current_subscription_for(db_session, test_user.id).external_id == "sub_live"


@pytest.mark.medium
class TestAffiliateModels:
    def test_blog_post_product_lookup(self, blog_post):
        assert blog_post.find_affiliate_product("Figma", "impact")["affiliateId"] == "fig-123"
        assert blog_post.find_affiliate_product("Figma", "paddle") is None

    def test_click_to_dict_nests_tracking_data(self, blog_post, author, db_session):
        click = AffiliateClick(
            user_id=author.id, blog_post_id=blog_post.id, tool_name="Figma", affiliate_network="impact",
            affiliate_id="fig-123", commission=Decimal("10"), ip="1.2.3.4", utm_campaign="spring",
        )
        db_session.add(click)
        db_session.commit()

        data = click.to_dict()
        assert data["trackingData"] == {
            "ip": "1.2.3.4", "userAgent": None, "referrer": None,
            "utmSource": None, "utmMedium": None, "utmCampaign": "spring",
        }
        assert data["converted"] is False
        assert data["conversionValue"] is None
