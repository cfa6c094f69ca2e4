"""WebhookEvent model"""
from sqlalchemy import Column, Integer, String, Boolean, Text, JSON, DateTime, UniqueConstraint
from datetime import datetime, timezone
from toolsblog.models.base import Base


class WebhookEvent(Base):
    """Provider webhook delivery log for idempotency"""
    __tablename__ = "webhook_events"
    __table_args__ = (
        UniqueConstraint("provider", "event_id", name="uq_webhook_events_provider_event"),
    )

    id = Column(Integer, primary_key=True, index=True)
    provider = Column(String(50), nullable=False, index=True)
    event_id = Column(String(255), nullable=False, index=True)
    event_type = Column(String(100), nullable=False, index=True)
    external_id = Column(String(255), nullable=True, index=True)
    processed = Column(Boolean, default=False, nullable=False)
    outcome = Column(String(50), nullable=True)  # 'processed', 'discarded', 'ignored', 'failed'
    payload = Column(JSON, nullable=False)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    processed_at = Column(DateTime(timezone=True), nullable=True)
