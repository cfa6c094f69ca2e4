"""API route tests"""
import json
import time
from datetime import date
from unittest.mock import patch

import pytest
from fastapi import status
from fastapi.testclient import TestClient

from toolsblog.main import app
from toolsblog.core.exceptions import ProviderError
from toolsblog.models.subscription import Subscription, SubscriptionStatus

from conftest import PADDLE_WEBHOOK_SECRET
from test_providers import paddle_signature

API = "/api/v1"


def subscribe(client, user_id, plan="basic", provider="stripe"):
    body = {"userId": user_id, "plan": plan, "provider": provider}
    if provider == "stripe":
        body["paymentMethodId"] = "pm_card_visa"
    return client.post(f"{API}/subscriptions", json=body)


@pytest.mark.critical
class TestErrorEnvelope:
    def test_not_found(self, client):
        response = client.get(f"{API}/subscriptions/999")
        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.json() == {
            "success": False,
            "error": {"code": "NOT_FOUND", "message": "Subscription not found"},
        }

    def test_request_validation_is_400(self, client):
        response = client.post(f"{API}/subscriptions", json={"plan": "basic", "provider": "stripe"})
        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    def test_unexpected_error_is_generic_500(self, client):
        raw_client = TestClient(app, raise_server_exceptions=False)
        with patch(
            "toolsblog.api.subscriptions.list_plans", side_effect=RuntimeError("secret internals")
        ):
            response = raw_client.get(f"{API}/subscriptions/plans")

        assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
        assert response.json() == {
            "success": False,
            "error": {"code": "SERVER_ERROR", "message": "An unexpected error occurred"},
        }
        assert "secret" not in response.text

    def test_provider_error_carries_provider_code(self, client, test_user, stripe_provider):
        stripe_provider.failures["create_subscription"] = ProviderError(
            "Your card was declined.", provider="stripe", provider_code="card_declined"
        )
        response = subscribe(client, test_user.id)

        assert response.status_code == status.HTTP_502_BAD_GATEWAY
        assert response.json()["error"] == {
            "code": "PROVIDER_ERROR",
            "message": "Your card was declined.",
            "provider": "stripe",
            "providerCode": "card_declined",
        }


@pytest.mark.critical
class TestSubscriptionRoutes:
    def test_plans(self, client):
        response = client.get(f"{API}/subscriptions/plans")
        assert response.status_code == status.HTTP_200_OK
        plans = {p["key"]: p for p in response.json()["data"]}
        assert plans["basic"]["price"] == 15.0
        assert plans["enterprise"]["currency"] == "EUR"

    def test_create_get_change_cancel(self, client, test_user):
        created = subscribe(client, test_user.id)
        assert created.status_code == status.HTTP_201_CREATED
        subscription = created.json()["data"]
        assert subscription["status"] == "active"
        assert subscription["userId"] == test_user.id

        fetched = client.get(f"{API}/subscriptions/{subscription['id']}")
        assert fetched.json()["data"]["externalId"] == subscription["externalId"]

        changed = client.patch(f"{API}/subscriptions/{subscription['id']}", json={"plan": "pro"})
        assert changed.status_code == status.HTTP_200_OK
        assert changed.json()["data"]["plan"] == "pro"

        canceled = client.delete(f"{API}/subscriptions/{subscription['id']}")
        assert canceled.json()["data"]["status"] == "canceled"

        listed = client.get(f"{API}/subscriptions/users/{test_user.id}")
        assert [s["id"] for s in listed.json()["data"]] == [subscription["id"]]

    def test_already_subscribed_is_409(self, client, test_user, stripe_provider):
        subscribe(client, test_user.id)
        stripe_provider.calls.clear()

        response = subscribe(client, test_user.id, plan="pro")
        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.json()["error"]["code"] == "ALREADY_SUBSCRIBED"
        assert stripe_provider.external_calls == 0

    def test_missing_payment_method(self, client, test_user):
        response = client.post(
            f"{API}/subscriptions", json={"userId": test_user.id, "plan": "basic", "provider": "stripe"}
        )
        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["error"]["code"] == "MISSING_PAYMENT_METHOD"

    def test_invalid_plan(self, client, test_user):
        response = subscribe(client, test_user.id, plan="gold")
        assert response.json()["error"]["code"] == "INVALID_PLAN"

    def test_stats_by_plan(self, client, test_user):
        subscribe(client, test_user.id, plan="enterprise")
        response = client.get(f"{API}/subscriptions/stats/by-plan")
        assert response.json()["data"] == {"enterprise": {"count": 1, "revenue": 39.0}}

    def test_resync(self, client, test_user, stripe_provider):
        subscription = subscribe(client, test_user.id).json()["data"]
        stripe_provider.remote[subscription["externalId"]].native_status = "past_due"
        stripe_provider.remote[subscription["externalId"]].status = SubscriptionStatus.PAST_DUE

        response = client.post(f"{API}/subscriptions/{subscription['id']}/resync")
        assert response.json()["data"]["status"] == "past_due"


@pytest.mark.critical
class TestWebhookRoutes:
    def _paddle_event(self, event_id="evt_api_1", subscription_id="sub_unknown"):
        return {
            "event_id": event_id,
            "event_type": "subscription.updated",
            "occurred_at": "2024-05-01T12:00:00Z",
            "data": {"id": subscription_id, "status": "active", "items": [{"price": {"id": "pri_basic"}}]},
        }

    def test_bad_signature_is_400(self, client, db_session):
        body = json.dumps(self._paddle_event())
        response = client.post(
            f"{API}/webhooks/paddle",
            content=body,
            headers={"Paddle-Signature": f"ts={int(time.time())};h1=deadbeef"},
        )
        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["error"]["code"] == "INVALID_SIGNATURE"

    def test_unknown_subscription_is_acknowledged(self, client, db_session):
        body = json.dumps(self._paddle_event())
        response = client.post(
            f"{API}/webhooks/paddle",
            content=body,
            headers={"Paddle-Signature": paddle_signature(PADDLE_WEBHOOK_SECRET, body)},
        )
        assert response.status_code == status.HTTP_200_OK
        assert response.json() == {"status": "discarded"}
        assert db_session.query(Subscription).count() == 0

    def test_stripe_event_updates_subscription(self, client, test_user, db_session):
        subscription = subscribe(client, test_user.id).json()["data"]
        event = {
            "id": "evt_api_2",
            "type": "customer.subscription.updated",
            "created": int(time.time()),
            "data": {"object": {"id": subscription["externalId"], "status": "past_due"}},
        }
        response = client.post(f"{API}/webhooks/stripe", content=json.dumps(event))
        assert response.json() == {"status": "processed"}

        again = client.post(f"{API}/webhooks/stripe", content=json.dumps(event))
        assert again.json() == {"status": "duplicate"}

        fetched = client.get(f"{API}/subscriptions/{subscription['id']}")
        assert fetched.json()["data"]["status"] == "past_due"

    def test_unknown_provider_is_400(self, client):
        response = client.post(f"{API}/webhooks/braintree", content="{}")
        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_apply_failure_is_5xx(self, client, test_user, stripe_provider):
        subscription = subscribe(client, test_user.id).json()["data"]
        stripe_provider.failures["retrieve_subscription"] = ProviderError("timeout", provider="stripe")
        # No status on the object forces a provider re-read
        event = {
            "id": "evt_api_3",
            "type": "customer.subscription.updated",
            "created": int(time.time()),
            "data": {"object": {"id": subscription["externalId"]}},
        }
        response = client.post(f"{API}/webhooks/stripe", content=json.dumps(event))
        assert response.status_code >= 500


@pytest.mark.high
class TestAffiliateRoutes:
    def _click(self, client, post_id, ip="1.2.3.4"):
        return client.post(f"{API}/affiliate/clicks", json={
            "blogPostId": post_id,
            "toolName": "Figma",
            "affiliateNetwork": "impact",
            "trackingData": {"ip": ip, "userAgent": "pytest", "utmSource": "newsletter"},
        })

    def test_click_conversion_and_stats(self, client, blog_post, author):
        created = self._click(client, blog_post.id)
        assert created.status_code == status.HTTP_201_CREATED
        click = created.json()["data"]
        assert click["trackingData"]["utmSource"] == "newsletter"

        duplicate = self._click(client, blog_post.id)
        assert duplicate.json()["data"]["id"] == click["id"]

        converted = client.post(
            f"{API}/affiliate/clicks/{click['id']}/conversion", json={"conversionValue": 100}
        )
        assert converted.json()["data"]["commissionEarned"] == 10.0

        again = client.post(f"{API}/affiliate/clicks/{click['id']}/conversion", json={"conversionValue": 100})
        assert again.status_code == status.HTTP_409_CONFLICT
        assert again.json()["error"]["code"] == "ALREADY_CONVERTED"

        stats = client.get(f"{API}/affiliate/users/{author.id}/stats").json()["data"]
        assert stats["clicks"] == 1
        assert stats["revenue"] == 10.0

        tools = client.get(f"{API}/affiliate/users/{author.id}/top-tools").json()["data"]
        assert tools[0]["toolName"] == "Figma"

        profile = client.get(f"{API}/users/{author.id}").json()["data"]
        assert profile["affiliateData"]["earnings"] == 10.0

    def test_invalid_product(self, client, blog_post):
        response = client.post(f"{API}/affiliate/clicks", json={
            "blogPostId": blog_post.id,
            "toolName": "Unknown",
            "affiliateNetwork": "impact",
            "trackingData": {"ip": "1.2.3.4"},
        })
        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["error"]["message"] == "Invalid affiliate product"


@pytest.mark.high
class TestAnalyticsRoutes:
    def test_rollup_metrics_and_projection(self, client):
        first = client.post(f"{API}/analytics/rollup", params={"day": "2024-03-04"})
        assert first.status_code == status.HTTP_200_OK
        assert first.json()["data"]["date"] == "2024-03-04"
        client.post(f"{API}/analytics/rollup", params={"day": "2024-03-04"})

        metrics = client.get(
            f"{API}/analytics/metrics",
            params={"startDate": "2024-03-01", "endDate": "2024-03-31", "groupBy": "month"},
        ).json()["data"]
        assert len(metrics) == 1
        assert metrics[0]["days"] == 1

        projection = client.get(f"{API}/analytics/revenue-projection", params={"months": 2}).json()["data"]
        assert len(projection) == 2

    def test_invalid_group_by(self, client):
        response = client.get(
            f"{API}/analytics/metrics",
            params={"startDate": date(2024, 3, 1).isoformat(), "endDate": "2024-03-31", "groupBy": "hour"},
        )
        assert response.status_code == status.HTTP_400_BAD_REQUEST


@pytest.mark.medium
class TestUserAndPostRoutes:
    def test_create_user_and_post(self, client):
        user = client.post(f"{API}/users", json={"email": "New@Example.com", "name": "New", "role": "author"})
        assert user.status_code == status.HTTP_201_CREATED
        user_id = user.json()["data"]["id"]
        assert user.json()["data"]["email"] == "new@example.com"

        duplicate = client.post(f"{API}/users", json={"email": "new@example.com"})
        assert duplicate.status_code == status.HTTP_400_BAD_REQUEST

        post = client.post(f"{API}/posts", json={
            "authorId": user_id,
            "title": "Ten Tools We Love",
            "status": "published",
            "affiliateProducts": [
                {"toolName": "Figma", "affiliateId": "fig-1", "network": "impact", "commission": 12.5}
            ],
        })
        assert post.status_code == status.HTTP_201_CREATED
        data = post.json()["data"]
        assert data["slug"] == "ten-tools-we-love"
        assert data["affiliateProducts"][0]["commission"] == 12.5

        fetched = client.get(f"{API}/posts/{data['id']}")
        assert fetched.json()["data"]["title"] == "Ten Tools We Love"

    def test_post_with_unknown_network(self, client, author):
        response = client.post(f"{API}/posts", json={
            "authorId": author.id,
            "title": "Bad",
            "affiliateProducts": [{"toolName": "X", "affiliateId": "x", "network": "amazon", "commission": 5}],
        })
        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_record_post_traffic(self, client, blog_post):
        client.get(f"{API}/posts/{blog_post.id}")
        response = client.post(
            f"{API}/posts/{blog_post.id}/analytics",
            json={"views": 4, "uniqueVisitors": 3, "timeOnPage": 45.0, "bounces": 1},
        )
        assert response.status_code == status.HTTP_200_OK
        assert response.json()["data"]["views"] == 4
        assert response.json()["data"]["averageTimeOnPage"] == 45.0

        # Cached post view was dropped
        assert client.get(f"{API}/posts/{blog_post.id}").json()["data"]["analytics"]["views"] == 4

    def test_record_traffic_rejects_negative_views(self, client, blog_post):
        response = client.post(f"{API}/posts/{blog_post.id}/analytics", json={"views": -1})
        assert response.status_code == status.HTTP_400_BAD_REQUEST


@pytest.mark.medium
class TestHealthAndMetrics:
    def test_health(self, client):
        assert client.get("/health").json() == {
            "status": "healthy", "checks": {"database": "ok", "redis": "ok"}
        }

    def test_health_degraded_when_database_is_down(self, client):
        with patch("toolsblog.main.check_db", side_effect=RuntimeError("connection refused")):
            response = client.get("/health")
        assert response.status_code == status.HTTP_503_SERVICE_UNAVAILABLE
        assert response.json()["checks"] == {"database": "unavailable", "redis": "ok"}

    def test_prometheus_metrics(self, client, test_user):
        subscribe(client, test_user.id)
        response = client.get("/metrics")
        assert response.status_code == status.HTTP_200_OK
        assert "subscription_operations_total" in response.text
