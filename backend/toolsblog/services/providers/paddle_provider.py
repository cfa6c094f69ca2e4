"""Paddle Billing adapter"""
import hashlib
import hmac
import json
import logging
import time
from typing import Any, Dict, Mapping, Optional

import httpx

from toolsblog.core.config import settings
from toolsblog.core.exceptions import ProviderError, WebhookSignatureError
from toolsblog.models.subscription import SubscriptionStatus
from toolsblog.services.providers.base import (
    EventKind, NormalizedEvent, PaymentProvider, ProviderSubscription,
    coerce_timestamp, convert_minor_amount, get_path, get_value,
)

logger = logging.getLogger(__name__)

PAYMENT_SUCCEEDED_EVENT_TYPES = {"transaction.completed", "transaction.paid"}
PAYMENT_FAILED_EVENT_TYPES = {"transaction.payment_failed"}

# Seconds of clock skew tolerated on the Paddle-Signature timestamp
SIGNATURE_TOLERANCE = 300


def build_paddle_client(api_key: str = None, base_url: str = None, timeout: float = None) -> httpx.Client:
    """httpx client for the Paddle Billing API with a bounded timeout"""
    return httpx.Client(
        base_url=base_url or settings.PADDLE_API_BASE,
        headers={
            "Authorization": f"Bearer {api_key or settings.PADDLE_API_KEY}",
            "Content-Type": "application/json",
        },
        timeout=timeout or settings.PROVIDER_TIMEOUT_SECONDS,
    )


class PaddleProvider(PaymentProvider):
    name = "paddle"
    active_statuses = frozenset({"active", "trialing"})
    canceled_statuses = frozenset({"canceled"})

    def __init__(self, client: httpx.Client, webhook_secret: str = ""):
        self.client = client
        self.webhook_secret = webhook_secret

    def _request(self, method: str, path: str, action: str, **kwargs) -> Dict[str, Any]:
        """Send one API request and return the response ``data`` object.

        Raises:
            ProviderError: on transport failure or a non-2xx response
        """
        try:
            response = self.client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"Paddle {action} transport error: {e}")
            raise ProviderError(f"Paddle {action} failed", provider=self.name, provider_code="transport_error")

        if response.status_code >= 400:
            try:
                error = response.json().get("error") or {}
            except ValueError:
                error = {}
            code = error.get("code")
            logger.error(f"Paddle {action} failed: HTTP {response.status_code} code={code} detail={error.get('detail')}")
            raise ProviderError(
                error.get("detail") or f"Paddle {action} failed",
                provider=self.name,
                provider_code=code,
            )
        return response.json().get("data") or {}

    def _to_subscription(self, data: Dict[str, Any]) -> ProviderSubscription:
        native = get_value(data, "status")
        items = get_value(data, "items") or []
        return ProviderSubscription(
            external_id=get_value(data, "id"),
            status=self.map_status(native),
            current_period_end=coerce_timestamp(
                get_path(data, "current_billing_period", "ends_at") or get_value(data, "next_billed_at")
            ),
            plan_ref=get_path(items[0], "price", "id") if items else None,
            native_status=native,
        )

    # ------------------------------------------------------------------
    # Customers
    # ------------------------------------------------------------------

    def ensure_customer(self, user, payment_method_ref: Optional[str] = None) -> str:
        if user.paddle_customer_id:
            return user.paddle_customer_id
        body = {"email": user.email}
        if user.name:
            body["name"] = user.name
        try:
            customer = self._request("POST", "/customers", "customer creation", json=body)
        except ProviderError as e:
            if e.provider_code != "customer_already_exists":
                raise
            existing = self._find_customer_by_email(user.email)
            if existing is None:
                raise
            customer = existing
        logger.info(f"Using Paddle customer {customer.get('id')} for user {user.id}")
        return customer["id"]

    def _find_customer_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        try:
            response = self.client.get("/customers", params={"email": email})
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error(f"Paddle customer lookup failed: {e}")
            return None
        customers = response.json().get("data") or []
        return customers[0] if customers else None

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def create_subscription(
        self, customer_ref: str, plan_ref: str, payment_method_ref: Optional[str] = None
    ) -> ProviderSubscription:
        """Subscriptions are created by billing a transaction for a recurring price"""
        transaction = self._request(
            "POST",
            "/transactions",
            "subscription creation",
            json={
                "customer_id": customer_ref,
                "items": [{"price_id": plan_ref, "quantity": 1}],
                "collection_mode": "manual",
                "status": "billed",
                "billing_details": {"payment_terms": {"interval": "day", "frequency": 14}},
            },
        )
        external_id = transaction.get("subscription_id")
        if not external_id and transaction.get("id"):
            transaction = self._request("GET", f"/transactions/{transaction['id']}", "transaction lookup")
            external_id = transaction.get("subscription_id")
        if not external_id:
            raise ProviderError("Paddle did not return a subscription id", provider=self.name)

        # Billed but unpaid until the transaction completes
        return ProviderSubscription(
            external_id=external_id,
            status=SubscriptionStatus.PENDING,
            current_period_end=coerce_timestamp(get_path(transaction, "billing_period", "ends_at")),
            plan_ref=plan_ref,
            native_status=transaction.get("status"),
        )

    def update_subscription(self, external_id: str, new_plan_ref: str) -> ProviderSubscription:
        data = self._request(
            "PATCH",
            f"/subscriptions/{external_id}",
            "plan change",
            json={
                "items": [{"price_id": new_plan_ref, "quantity": 1}],
                "proration_billing_mode": "prorated_immediately",
            },
        )
        return self._to_subscription(data)

    def cancel_subscription(self, external_id: str) -> None:
        current = self.retrieve_subscription(external_id)
        if current.native_status in self.canceled_statuses:
            logger.info(f"Paddle subscription {external_id} already canceled")
            return
        self._request(
            "POST",
            f"/subscriptions/{external_id}/cancel",
            "cancellation",
            json={"effective_from": "immediately"},
        )

    def retrieve_subscription(self, external_id: str) -> ProviderSubscription:
        return self._to_subscription(self._request("GET", f"/subscriptions/{external_id}", "retrieve"))

    # ------------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------------

    def verify_webhook(self, payload: bytes, headers: Mapping[str, str]) -> Dict[str, Any]:
        body = payload.decode("utf-8") if isinstance(payload, bytes) else payload
        if self.webhook_secret:
            self._verify_signature(body, headers.get("paddle-signature"))
        elif settings.ENVIRONMENT == "production":
            raise WebhookSignatureError("Paddle webhook secret is not configured")
        try:
            return json.loads(body)
        except ValueError:
            raise WebhookSignatureError("Invalid webhook payload")

    def _verify_signature(self, body: str, signature: Optional[str]) -> None:
        """Check ``Paddle-Signature: ts=<unix>;h1=<hex hmac>`` over ``"<ts>:<body>"``"""
        if not signature:
            raise WebhookSignatureError("Missing Paddle-Signature header")
        parts = dict(
            part.split("=", 1) for part in signature.split(";") if "=" in part
        )
        ts, received = parts.get("ts"), parts.get("h1")
        if not ts or not received:
            raise WebhookSignatureError("Malformed Paddle-Signature header")
        try:
            if abs(time.time() - int(ts)) > SIGNATURE_TOLERANCE:
                raise WebhookSignatureError("Paddle signature timestamp outside tolerance")
        except ValueError:
            raise WebhookSignatureError("Malformed Paddle-Signature header")
        expected = hmac.new(
            self.webhook_secret.encode("utf-8"),
            f"{ts}:{body}".encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()
        if not hmac.compare_digest(expected, received):
            logger.warning("Invalid Paddle webhook signature")
            raise WebhookSignatureError("Invalid signature")

    def normalize_event(self, event: Dict[str, Any]) -> NormalizedEvent:
        event_type = get_value(event, "event_type", "")
        data = get_value(event, "data") or {}
        normalized = NormalizedEvent(
            provider=self.name,
            event_id=get_value(event, "event_id"),
            event_type=event_type,
            kind=None,
            occurred_at=coerce_timestamp(get_value(event, "occurred_at")),
            payload=event,
        )

        if event_type.startswith("subscription."):
            sub = self._to_subscription(data)
            normalized.kind = EventKind.STATUS_CHANGED
            normalized.external_id = sub.external_id
            normalized.native_status = sub.native_status
            normalized.status = sub.status if sub.native_status else None
            normalized.period_end = sub.current_period_end
            normalized.plan_ref = sub.plan_ref
        elif event_type in PAYMENT_SUCCEEDED_EVENT_TYPES or event_type in PAYMENT_FAILED_EVENT_TYPES:
            succeeded = event_type in PAYMENT_SUCCEEDED_EVENT_TYPES
            currency = (get_value(data, "currency_code") or settings.DEFAULT_CURRENCY).upper()
            normalized.kind = EventKind.PAYMENT_SUCCEEDED if succeeded else EventKind.PAYMENT_FAILED
            normalized.status = SubscriptionStatus.ACTIVE if succeeded else SubscriptionStatus.PAST_DUE
            normalized.external_id = get_value(data, "subscription_id")
            normalized.reference = get_value(data, "id")
            normalized.amount = convert_minor_amount(
                get_path(data, "details", "totals", "grand_total"), currency
            )
            normalized.currency = currency
            normalized.period_end = coerce_timestamp(get_path(data, "billing_period", "ends_at"))
        return normalized
