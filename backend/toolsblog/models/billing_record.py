"""BillingRecord model"""
from sqlalchemy import Column, Integer, String, DateTime, Numeric, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from toolsblog.models.base import Base


class BillingRecord(Base):
    """Append-only payment outcome for a subscription.

    ``reference`` is the provider's invoice or transaction id; the unique
    constraint makes redelivered payment webhooks a no-op.
    """
    __tablename__ = "billing_records"
    __table_args__ = (
        UniqueConstraint("subscription_id", "reference", name="uq_billing_records_subscription_reference"),
    )

    id = Column(Integer, primary_key=True, index=True)
    subscription_id = Column(Integer, ForeignKey("subscriptions.id", ondelete="CASCADE"), nullable=False, index=True)
    reference = Column(String(255), nullable=False)
    amount = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), nullable=False)
    outcome = Column(String(20), nullable=False)  # 'succeeded', 'failed'
    occurred_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    subscription = relationship("Subscription", back_populates="billing_history")

    def to_dict(self) -> dict:
        return {
            "reference": self.reference,
            "amount": float(self.amount),
            "currency": self.currency,
            "outcome": self.outcome,
            "timestamp": self.occurred_at.isoformat() if self.occurred_at else None,
        }
