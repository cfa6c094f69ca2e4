"""Payment provider capability interface and normalized value types"""
import enum
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Mapping, Optional

from toolsblog.models.subscription import SubscriptionStatus

ZERO_DECIMAL_CURRENCIES = {
    "bif", "clp", "djf", "gnf", "jpy", "kmf", "krw", "mga",
    "pyg", "rwf", "ugx", "vnd", "vuv", "xaf", "xof", "xpf",
}


class EventKind(str, enum.Enum):
    STATUS_CHANGED = "status-changed"
    PAYMENT_SUCCEEDED = "payment-succeeded"
    PAYMENT_FAILED = "payment-failed"


@dataclass
class ProviderSubscription:
    """Provider subscription state with the native status already mapped"""
    external_id: str
    status: SubscriptionStatus
    current_period_end: Optional[datetime] = None
    plan_ref: Optional[str] = None
    native_status: Optional[str] = None


@dataclass
class NormalizedEvent:
    """Provider webhook reduced to what reconciliation needs.

    ``kind`` is None for event types the provider sends that we do not act on.
    ``status`` is None when the event does not carry a subscription status.
    """
    provider: str
    event_id: str
    event_type: str
    kind: Optional[EventKind]
    external_id: Optional[str] = None
    status: Optional[SubscriptionStatus] = None
    native_status: Optional[str] = None
    occurred_at: Optional[datetime] = None
    period_end: Optional[datetime] = None
    plan_ref: Optional[str] = None
    reference: Optional[str] = None
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_payment(self) -> bool:
        return self.kind in (EventKind.PAYMENT_SUCCEEDED, EventKind.PAYMENT_FAILED)


# ============================================================================
# PAYLOAD ACCESS HELPERS
# ============================================================================

def get_value(obj: Any, key: str, default=None):
    """Read a key from a provider object (supports both dict and attribute access)."""
    if obj is None:
        return default
    if isinstance(obj, Mapping):
        value = obj.get(key, default)
    else:
        try:
            value = obj[key]
        except (KeyError, TypeError, IndexError):
            value = getattr(obj, key, default)
    return default if value is None else value


def get_path(obj: Any, *keys, default=None):
    for key in keys:
        obj = get_value(obj, key)
        if obj is None:
            return default
    return obj


def coerce_timestamp(value: Any) -> Optional[datetime]:
    """Epoch seconds or ISO-8601 string to an aware UTC datetime"""
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    if isinstance(value, str):
        text = value.strip()
        if text.isdigit():
            return datetime.fromtimestamp(int(text), tz=timezone.utc)
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None


def convert_minor_amount(value: Any, currency: Optional[str]) -> Decimal:
    """Minor currency units (cents) to a 2dp Decimal"""
    if value in (None, "", [], {}):
        return Decimal("0.00")
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        return Decimal("0.00")
    divisor = Decimal("1") if currency and currency.lower() in ZERO_DECIMAL_CURRENCIES else Decimal("100")
    return (amount / divisor).quantize(Decimal("0.01"))


# ============================================================================
# CAPABILITY INTERFACE
# ============================================================================

class PaymentProvider(ABC):
    """Uniform capability set over one payment provider.

    Implementations raise ``ProviderError`` for every provider or transport
    failure and never return provider-native status strings unmapped.
    """

    name: str = ""

    # Native statuses that mean "created but awaiting first payment"
    pending_statuses = frozenset()
    active_statuses = frozenset()
    canceled_statuses = frozenset()

    def map_status(self, native_status: Optional[str]) -> SubscriptionStatus:
        """Map a native status onto active/canceled/past_due.

        Anything unrecognised maps to past_due so it is flagged, never silently active.
        """
        native = (native_status or "").lower()
        if native in self.active_statuses:
            return SubscriptionStatus.ACTIVE
        if native in self.canceled_statuses:
            return SubscriptionStatus.CANCELED
        return SubscriptionStatus.PAST_DUE

    def map_creation_status(self, native_status: Optional[str]) -> SubscriptionStatus:
        if (native_status or "").lower() in self.pending_statuses:
            return SubscriptionStatus.PENDING
        return self.map_status(native_status)

    @abstractmethod
    def ensure_customer(self, user, payment_method_ref: Optional[str] = None) -> str:
        """Return the provider customer id for user, creating it when missing"""

    @abstractmethod
    def create_subscription(
        self, customer_ref: str, plan_ref: str, payment_method_ref: Optional[str] = None
    ) -> ProviderSubscription:
        ...

    @abstractmethod
    def update_subscription(self, external_id: str, new_plan_ref: str) -> ProviderSubscription:
        ...

    @abstractmethod
    def cancel_subscription(self, external_id: str) -> None:
        """Cancel immediately; already-canceled subscriptions are not an error"""

    @abstractmethod
    def retrieve_subscription(self, external_id: str) -> ProviderSubscription:
        ...

    @abstractmethod
    def verify_webhook(self, payload: bytes, headers: Mapping[str, str]) -> Dict[str, Any]:
        """Check the delivery signature and return the decoded event.

        Raises:
            WebhookSignatureError: if the signature is missing or invalid
        """

    @abstractmethod
    def normalize_event(self, event: Dict[str, Any]) -> NormalizedEvent:
        ...
