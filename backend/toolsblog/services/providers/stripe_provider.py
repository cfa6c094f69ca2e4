"""Stripe adapter"""
import json
import logging
from typing import Any, Dict, Mapping, Optional

import stripe

from toolsblog.core.config import settings
from toolsblog.core.exceptions import ProviderError, WebhookSignatureError
from toolsblog.models.subscription import SubscriptionStatus
from toolsblog.services.providers.base import (
    EventKind, NormalizedEvent, PaymentProvider, ProviderSubscription,
    coerce_timestamp, convert_minor_amount, get_path, get_value,
)

logger = logging.getLogger(__name__)

STATUS_EVENT_TYPES = {
    "customer.subscription.created",
    "customer.subscription.updated",
    "customer.subscription.deleted",
    "customer.subscription.paused",
    "customer.subscription.resumed",
}
PAYMENT_SUCCEEDED_EVENT_TYPES = {"invoice.paid", "invoice.payment_succeeded"}
PAYMENT_FAILED_EVENT_TYPES = {"invoice.payment_failed"}


def build_stripe_client(api_key: str = None, timeout: float = None) -> stripe.StripeClient:
    """StripeClient with a bounded request timeout"""
    return stripe.StripeClient(
        api_key or settings.STRIPE_SECRET_KEY,
        http_client=stripe.RequestsClient(timeout=timeout or settings.PROVIDER_TIMEOUT_SECONDS),
        max_network_retries=1,
    )


class StripeProvider(PaymentProvider):
    name = "stripe"
    pending_statuses = frozenset({"incomplete"})
    active_statuses = frozenset({"active", "trialing"})
    canceled_statuses = frozenset({"canceled", "incomplete_expired"})

    def __init__(self, client, webhook_secret: str = ""):
        self.client = client
        self.webhook_secret = webhook_secret

    def _error(self, action: str, exc: Exception) -> ProviderError:
        code = getattr(exc, "code", None)
        logger.error(f"Stripe {action} failed: {exc} (code={code})")
        message = getattr(exc, "user_message", None) or f"Stripe {action} failed"
        return ProviderError(message, provider=self.name, provider_code=code)

    def _to_subscription(self, sub: Any, creating: bool = False) -> ProviderSubscription:
        native = get_value(sub, "status")
        first_item = (get_path(sub, "items", "data") or [None])[0]
        # Newer API versions moved the billing period onto the subscription item
        period_end = get_value(sub, "current_period_end") or get_value(first_item, "current_period_end")
        return ProviderSubscription(
            external_id=get_value(sub, "id"),
            status=self.map_creation_status(native) if creating else self.map_status(native),
            current_period_end=coerce_timestamp(period_end),
            plan_ref=get_path(first_item, "price", "id"),
            native_status=native,
        )

    # ------------------------------------------------------------------
    # Customers
    # ------------------------------------------------------------------

    def ensure_customer(self, user, payment_method_ref: Optional[str] = None) -> str:
        try:
            if user.stripe_customer_id:
                customer_id = user.stripe_customer_id
                if payment_method_ref:
                    self.client.v1.payment_methods.attach(
                        payment_method_ref, params={"customer": customer_id}
                    )
                    self.client.v1.customers.update(
                        customer_id,
                        params={"invoice_settings": {"default_payment_method": payment_method_ref}},
                    )
                return customer_id

            params = {
                "email": user.email,
                "metadata": {"user_id": str(user.id)},
            }
            if user.name:
                params["name"] = user.name
            if payment_method_ref:
                params["payment_method"] = payment_method_ref
                params["invoice_settings"] = {"default_payment_method": payment_method_ref}
            customer = self.client.v1.customers.create(params=params)
        except stripe.StripeError as e:
            raise self._error("customer setup", e)

        customer_id = get_value(customer, "id")
        logger.info(f"Created Stripe customer {customer_id} for user {user.id}")
        return customer_id

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------

    def create_subscription(
        self, customer_ref: str, plan_ref: str, payment_method_ref: Optional[str] = None
    ) -> ProviderSubscription:
        params = {
            "customer": customer_ref,
            "items": [{"price": plan_ref}],
            "payment_behavior": "default_incomplete",
            "expand": ["latest_invoice"],
        }
        if payment_method_ref:
            params["default_payment_method"] = payment_method_ref
        try:
            sub = self.client.v1.subscriptions.create(params=params)
        except stripe.StripeError as e:
            raise self._error("subscription creation", e)
        return self._to_subscription(sub, creating=True)

    def update_subscription(self, external_id: str, new_plan_ref: str) -> ProviderSubscription:
        try:
            # Item ids live on the provider record, never trust a local copy
            current = self.client.v1.subscriptions.retrieve(external_id)
            items = get_path(current, "items", "data") or []
            if not items:
                raise ProviderError(
                    f"Stripe subscription {external_id} has no items", provider=self.name
                )
            sub = self.client.v1.subscriptions.update(
                external_id,
                params={
                    "items": [{"id": get_value(items[0], "id"), "price": new_plan_ref}],
                    "proration_behavior": "create_prorations",
                },
            )
        except stripe.StripeError as e:
            raise self._error("plan change", e)
        return self._to_subscription(sub)

    def cancel_subscription(self, external_id: str) -> None:
        try:
            current = self.client.v1.subscriptions.retrieve(external_id)
            if get_value(current, "status") in self.canceled_statuses:
                logger.info(f"Stripe subscription {external_id} already canceled")
                return
            self.client.v1.subscriptions.cancel(external_id)
        except stripe.StripeError as e:
            raise self._error("cancellation", e)

    def retrieve_subscription(self, external_id: str) -> ProviderSubscription:
        try:
            sub = self.client.v1.subscriptions.retrieve(external_id)
        except stripe.StripeError as e:
            raise self._error("retrieve", e)
        return self._to_subscription(sub)

    # ------------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------------

    def verify_webhook(self, payload: bytes, headers: Mapping[str, str]) -> Dict[str, Any]:
        body = payload.decode("utf-8") if isinstance(payload, bytes) else payload
        if self.webhook_secret:
            sig_header = headers.get("stripe-signature")
            if not sig_header:
                raise WebhookSignatureError("Missing stripe-signature header")
            try:
                stripe.WebhookSignature.verify_header(body, sig_header, self.webhook_secret)
            except stripe.SignatureVerificationError as e:
                logger.warning(f"Invalid Stripe webhook signature: {e}")
                raise WebhookSignatureError("Invalid signature")
        elif settings.ENVIRONMENT == "production":
            raise WebhookSignatureError("Stripe webhook secret is not configured")
        try:
            return json.loads(body)
        except ValueError:
            raise WebhookSignatureError("Invalid webhook payload")

    def normalize_event(self, event: Dict[str, Any]) -> NormalizedEvent:
        event_type = get_value(event, "type", "")
        obj = get_path(event, "data", "object") or {}
        normalized = NormalizedEvent(
            provider=self.name,
            event_id=get_value(event, "id"),
            event_type=event_type,
            kind=None,
            occurred_at=coerce_timestamp(get_value(event, "created")),
            payload=event,
        )

        if event_type in STATUS_EVENT_TYPES:
            # "incomplete" means the first invoice is still open: pending, not past_due
            sub = self._to_subscription(obj, creating=True)
            normalized.kind = EventKind.STATUS_CHANGED
            normalized.external_id = sub.external_id
            normalized.native_status = sub.native_status
            normalized.status = sub.status if sub.native_status else None
            normalized.period_end = sub.current_period_end
            normalized.plan_ref = sub.plan_ref
            if event_type == "customer.subscription.deleted":
                normalized.status = SubscriptionStatus.CANCELED
        elif event_type in PAYMENT_SUCCEEDED_EVENT_TYPES or event_type in PAYMENT_FAILED_EVENT_TYPES:
            succeeded = event_type in PAYMENT_SUCCEEDED_EVENT_TYPES
            currency = (get_value(obj, "currency") or settings.DEFAULT_CURRENCY).upper()
            amount_field = "amount_paid" if succeeded else "amount_due"
            normalized.kind = EventKind.PAYMENT_SUCCEEDED if succeeded else EventKind.PAYMENT_FAILED
            normalized.status = SubscriptionStatus.ACTIVE if succeeded else SubscriptionStatus.PAST_DUE
            normalized.external_id = self._invoice_subscription_id(obj)
            normalized.reference = get_value(obj, "id")
            normalized.amount = convert_minor_amount(get_value(obj, amount_field), currency)
            normalized.currency = currency
            normalized.period_end = self._invoice_period_end(obj)
        return normalized

    @staticmethod
    def _invoice_subscription_id(invoice: Any) -> Optional[str]:
        subscription = get_value(invoice, "subscription") or get_path(
            invoice, "parent", "subscription_details", "subscription"
        )
        if subscription is not None and not isinstance(subscription, str):
            subscription = get_value(subscription, "id")
        return subscription

    @staticmethod
    def _invoice_period_end(invoice: Any):
        period_end = None
        for line in get_path(invoice, "lines", "data") or []:
            line_end = coerce_timestamp(get_path(line, "period", "end"))
            if line_end and (period_end is None or line_end > period_end):
                period_end = line_end
        return period_end
