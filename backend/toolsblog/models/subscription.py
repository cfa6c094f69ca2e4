"""Subscription model"""
import enum
from decimal import Decimal
from sqlalchemy import (
    Column, Integer, String, DateTime, Boolean, Numeric, JSON, ForeignKey, Index, text
)
from sqlalchemy.orm import relationship, validates
from datetime import datetime, timezone
from toolsblog.models.base import Base


class SubscriptionStatus(str, enum.Enum):
    PENDING = "pending"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"


class SubscriptionPlan(str, enum.Enum):
    BASIC = "basic"
    PRO = "pro"
    ENTERPRISE = "enterprise"


class PaymentProviderName(str, enum.Enum):
    STRIPE = "stripe"
    PADDLE = "paddle"


class Subscription(Base):
    """A user's entitlement to a paid plan, mirrored from the payment provider"""
    __tablename__ = "subscriptions"
    __table_args__ = (
        # A user may hold many historical subscriptions but only one active one
        Index(
            "uq_subscriptions_active_user",
            "user_id",
            unique=True,
            sqlite_where=text("status = 'active'"),
            postgresql_where=text("status = 'active'"),
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    plan = Column(String(50), nullable=False)  # 'basic', 'pro', 'enterprise'
    provider = Column(String(50), nullable=False)  # 'stripe', 'paddle'
    external_id = Column(String(255), unique=True, nullable=False, index=True)
    status = Column(String(50), nullable=False, default=SubscriptionStatus.PENDING.value, index=True)
    price = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="EUR")
    current_period_end = Column(DateTime(timezone=True), nullable=True)
    features = Column(JSON, nullable=False, default=list)  # [{"name": ..., "enabled": ...}]
    cancel_at_period_end = Column(Boolean, default=False, nullable=False)
    canceled_at = Column(DateTime(timezone=True), nullable=True)
    last_event_at = Column(DateTime(timezone=True), nullable=True)  # occurred_at of newest applied webhook
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc), nullable=False)

    # Relationships
    user = relationship("User", back_populates="subscriptions")
    billing_history = relationship(
        "BillingRecord",
        back_populates="subscription",
        order_by="BillingRecord.id",
        cascade="all, delete-orphan",
    )

    @validates("external_id")
    def validate_external_id(self, key, value):
        if self.external_id is not None and value != self.external_id:
            raise ValueError("external_id is immutable once set")
        if not value:
            raise ValueError("external_id is required")
        return value

    def total_revenue(self) -> Decimal:
        """Sum of succeeded billing records"""
        return sum(
            (Decimal(record.amount) for record in self.billing_history if record.outcome == "succeeded"),
            Decimal("0"),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "userId": self.user_id,
            "plan": self.plan,
            "provider": self.provider,
            "externalId": self.external_id,
            "status": self.status,
            "price": float(self.price) if self.price is not None else None,
            "currency": self.currency,
            "currentPeriodEnd": self.current_period_end.isoformat() if self.current_period_end else None,
            "features": list(self.features or []),
            "cancelAtPeriodEnd": self.cancel_at_period_end,
            "canceledAt": self.canceled_at.isoformat() if self.canceled_at else None,
            "billingHistory": [record.to_dict() for record in self.billing_history],
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }
