"""User model"""
from sqlalchemy import Column, Integer, String, DateTime, Boolean, Numeric
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from toolsblog.models.base import Base


class User(Base):
    """User accounts with a denormalized subscription entitlement mirror"""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=True)
    role = Column(String(50), default="user", nullable=False)  # 'user', 'author', 'admin'
    stripe_customer_id = Column(String(255), nullable=True, index=True)
    paddle_customer_id = Column(String(255), nullable=True, index=True)

    # Entitlement mirror - written through by the subscription services, never authoritative
    subscription_status = Column(String(50), nullable=True)
    subscription_plan = Column(String(50), nullable=True)
    subscription_provider = Column(String(50), nullable=True)
    subscription_external_id = Column(String(255), nullable=True)
    subscription_is_active = Column(Boolean, default=False, nullable=False)
    subscription_expires_at = Column(DateTime(timezone=True), nullable=True)
    subscription_canceled_at = Column(DateTime(timezone=True), nullable=True)

    # Affiliate counters
    referral_code = Column(String(64), unique=True, nullable=True)
    affiliate_clicks = Column(Integer, default=0, nullable=False)
    affiliate_conversions = Column(Integer, default=0, nullable=False)
    affiliate_earnings = Column(Numeric(12, 2), default=0, nullable=False)

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc), nullable=False)

    # Relationships
    subscriptions = relationship("Subscription", back_populates="user", order_by="Subscription.id")
    blog_posts = relationship("BlogPost", back_populates="author")

    def has_active_subscription(self, now: datetime = None) -> bool:
        """Fast entitlement check against the mirror"""
        if not self.subscription_is_active or self.subscription_status != "active":
            return False
        if self.subscription_expires_at is None:
            return True
        now = now or datetime.now(timezone.utc)
        expires_at = self.subscription_expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return expires_at > now

    def customer_id_for(self, provider: str):
        if provider == "stripe":
            return self.stripe_customer_id
        if provider == "paddle":
            return self.paddle_customer_id
        return None
