"""Webhook-driven subscription reconciliation"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from toolsblog.core.exceptions import ValidationError
from toolsblog.core.metrics import webhook_events_counter
from toolsblog.db.redis import Cache, subscription_lock_key
from toolsblog.db.repository import Repository
from toolsblog.models.subscription import Subscription, SubscriptionStatus
from toolsblog.models.webhook_event import WebhookEvent
from toolsblog.services.plans import plan_for_price
from toolsblog.services.providers.base import EventKind, NormalizedEvent
from toolsblog.services.providers.registry import ProviderRegistry
from toolsblog.services.subscription_state import (
    advance_period_end, append_billing_record, can_transition, invalidate_subscription_caches,
    mark_canceled, set_last_event_at, set_plan, set_status, sync_user_mirror,
)

logger = logging.getLogger("webhooks")

OUTCOME_PROCESSED = "processed"
OUTCOME_DUPLICATE = "duplicate"
OUTCOME_DISCARDED = "discarded"
OUTCOME_IGNORED = "ignored"
OUTCOME_FAILED = "failed"


# ============================================================================
# DELIVERY LOG
# ============================================================================

def log_webhook_event(event: NormalizedEvent, db: Session) -> WebhookEvent:
    """Get or create the delivery log row for an event (committed immediately)"""
    query = db.query(WebhookEvent).filter(
        WebhookEvent.provider == event.provider,
        WebhookEvent.event_id == event.event_id,
    )
    webhook_event = query.first()
    if webhook_event:
        return webhook_event
    webhook_event = WebhookEvent(
        provider=event.provider,
        event_id=event.event_id,
        event_type=event.event_type,
        external_id=event.external_id,
        payload=event.payload,
        processed=False,
    )
    db.add(webhook_event)
    try:
        db.commit()
    except IntegrityError:
        # Concurrent delivery of the same event inserted first
        db.rollback()
        return query.one()
    db.refresh(webhook_event)
    return webhook_event


def mark_webhook_event(
    webhook_event: WebhookEvent, outcome: str, db: Session, error_message: str = None
) -> None:
    """Record the outcome on the log row; the caller commits"""
    webhook_event.outcome = outcome
    webhook_event.error_message = error_message
    webhook_event.processed = outcome != OUTCOME_FAILED
    webhook_event.processed_at = datetime.now(timezone.utc)


def _is_newer(occurred_at: Optional[datetime], last_event_at: Optional[datetime], yields_ties: bool = False) -> bool:
    if occurred_at is None or last_event_at is None:
        return True
    if last_event_at.tzinfo is None:
        last_event_at = last_event_at.replace(tzinfo=timezone.utc)
    if yields_ties:
        return occurred_at > last_event_at
    return occurred_at >= last_event_at


class ReconciliationService:
    """Applies provider events to local subscription state.

    Safe under at-least-once, out-of-order delivery:
    - the delivery log short-circuits events already processed
    - billing entries are keyed by provider invoice/transaction reference
    - status only follows events at least as new as the last applied one,
      except cancellation which is terminal and always wins
    - current_period_end only moves forward
    """

    def __init__(self, db: Session, cache: Cache, providers: ProviderRegistry):
        self.db = db
        self.cache = cache
        self.providers = providers
        self.subscriptions = Repository(Subscription, db)

    def handle_webhook(self, provider: str, payload: bytes, headers: Mapping[str, str]) -> Dict[str, Any]:
        """Verify, normalize and apply one webhook delivery.

        Returns:
            {"status": processed|duplicate|discarded|ignored}

        Raises:
            WebhookSignatureError: bad signature (not retried usefully)
            Exception: any failure applying a known subscription's event, so the
                provider redelivers
        """
        adapter = self.providers.get(provider)
        raw_event = adapter.verify_webhook(payload, headers)
        event = adapter.normalize_event(raw_event)
        if not event.event_id:
            raise ValidationError("Webhook event has no id")

        webhook_event = log_webhook_event(event, self.db)
        if webhook_event.processed:
            logger.info(f"{provider} event {event.event_id} already processed, skipping")
            webhook_events_counter.labels(provider=provider, outcome=OUTCOME_DUPLICATE).inc()
            return {"status": OUTCOME_DUPLICATE}

        if event.kind is None:
            logger.debug(f"Ignoring unhandled {provider} event type {event.event_type}")
            return self._finish(webhook_event, OUTCOME_IGNORED)

        if not event.external_id:
            logger.warning(f"{provider} event {event.event_id} ({event.event_type}) has no subscription id")
            return self._finish(webhook_event, OUTCOME_DISCARDED)

        try:
            outcome = self.apply_event(event)
            return self._finish(webhook_event, outcome)
        except Exception as e:
            self.db.rollback()
            logger.error(
                f"Failed to apply {provider} event {event.event_id} for {event.external_id}: {e}",
                exc_info=True,
            )
            mark_webhook_event(webhook_event, OUTCOME_FAILED, self.db, error_message=str(e)[:2000])
            self.db.commit()
            webhook_events_counter.labels(provider=provider, outcome=OUTCOME_FAILED).inc()
            raise

    def _finish(self, webhook_event: WebhookEvent, outcome: str) -> Dict[str, Any]:
        mark_webhook_event(webhook_event, outcome, self.db)
        self.db.commit()
        webhook_events_counter.labels(provider=webhook_event.provider, outcome=outcome).inc()
        return {"status": outcome}

    # ========================================================================
    # APPLY
    # ========================================================================

    def apply_event(self, event: NormalizedEvent) -> str:
        """Apply a normalized event under the per-subscription lock.

        Flushes but does not commit when the event is discarded; commits the
        subscription, billing and mirror changes otherwise.
        """
        with self.cache.lock(subscription_lock_key(event.external_id)):
            subscription = self.db.query(Subscription).filter(
                Subscription.external_id == event.external_id
            ).first()
            if subscription is None or subscription.provider != event.provider:
                logger.warning(
                    f"Discarding {event.provider} event {event.event_id}: "
                    f"no local subscription for {event.external_id}"
                )
                return OUTCOME_DISCARDED

            if event.status is None and not event.is_payment:
                event = self._resync_event(subscription, event)

            self._apply(subscription, event)
            sync_user_mirror(self.db, subscription.user)
            self.db.commit()

        invalidate_subscription_caches(self.cache, subscription)
        return OUTCOME_PROCESSED

    def _resync_event(self, subscription: Subscription, event: NormalizedEvent) -> NormalizedEvent:
        """Fill a status-less event from the provider's current record"""
        adapter = self.providers.get(subscription.provider)
        current = adapter.retrieve_subscription(subscription.external_id)
        logger.info(
            f"Re-synced {subscription.external_id} from {subscription.provider}: {current.native_status}"
        )
        event.status = current.status
        event.native_status = current.native_status
        event.plan_ref = current.plan_ref or event.plan_ref
        if current.current_period_end and (event.period_end is None or current.current_period_end > event.period_end):
            event.period_end = current.current_period_end
        # The provider's record is current as of now
        event.occurred_at = datetime.now(timezone.utc)
        return event

    def _apply(self, subscription: Subscription, event: NormalizedEvent) -> None:
        # Stripe timestamps are per second; a failed payment loses a same-second tie
        newer = _is_newer(
            event.occurred_at,
            subscription.last_event_at,
            yields_ties=event.kind == EventKind.PAYMENT_FAILED,
        )
        already_canceled = subscription.status == SubscriptionStatus.CANCELED.value

        if already_canceled:
            if event.status and event.status != SubscriptionStatus.CANCELED:
                logger.info(
                    f"Subscription {subscription.id} is canceled; ignoring {event.status.value} "
                    f"from {event.event_type}"
                )
        elif event.status == SubscriptionStatus.CANCELED:
            mark_canceled(subscription, event.occurred_at)
        elif event.status is not None and newer:
            if can_transition(subscription.status, event.status):
                set_status(subscription, event.status)
            else:
                logger.warning(
                    f"Ignoring transition {subscription.status} -> {event.status.value} "
                    f"for subscription {subscription.id}"
                )
        elif event.status is not None:
            logger.info(
                f"Stale {event.event_type} for subscription {subscription.id}; "
                f"status left at {subscription.status}"
            )

        advance_period_end(subscription, event.period_end)

        if event.is_payment and event.reference:
            outcome = "succeeded" if event.kind == EventKind.PAYMENT_SUCCEEDED else "failed"
            append_billing_record(
                self.db,
                subscription,
                reference=event.reference,
                amount=event.amount,
                currency=event.currency,
                outcome=outcome,
                occurred_at=event.occurred_at,
            )

        if (
            event.kind == EventKind.STATUS_CHANGED
            and event.plan_ref
            and newer
            and subscription.status != SubscriptionStatus.CANCELED.value
        ):
            plan = plan_for_price(subscription.provider, event.plan_ref)
            if plan and plan.key != subscription.plan:
                logger.info(f"Subscription {subscription.id} plan {subscription.plan} -> {plan.key} (provider)")
                set_plan(subscription, plan)

        set_last_event_at(subscription, event.occurred_at)

    # ========================================================================
    # RESYNC
    # ========================================================================

    def resync_subscription(self, subscription_id: int) -> Subscription:
        """Re-read one subscription from its provider and apply it locally"""
        subscription = self.subscriptions.get(subscription_id)
        event = NormalizedEvent(
            provider=subscription.provider,
            event_id=f"resync:{subscription.external_id}",
            event_type="resync",
            kind=EventKind.STATUS_CHANGED,
            external_id=subscription.external_id,
        )
        self.apply_event(event)
        self.db.refresh(subscription)
        return subscription
