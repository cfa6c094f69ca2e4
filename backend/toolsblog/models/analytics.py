"""Analytics model"""
from sqlalchemy import Column, Integer, String, Date, DateTime, Numeric, Float, JSON
from datetime import datetime, timezone
from toolsblog.models.base import Base


class Analytics(Base):
    """Daily metrics rollup, one row per calendar day"""
    __tablename__ = "analytics"

    id = Column(Integer, primary_key=True, index=True)
    date = Column(Date, unique=True, nullable=False, index=True)

    # Revenue
    revenue_total = Column(Numeric(12, 2), default=0, nullable=False)
    revenue_affiliate = Column(Numeric(12, 2), default=0, nullable=False)
    revenue_subscriptions = Column(Numeric(12, 2), default=0, nullable=False)
    revenue_sponsored = Column(Numeric(12, 2), default=0, nullable=False)
    currency = Column(String(3), default="EUR", nullable=False)

    # Traffic
    page_views = Column(Integer, default=0, nullable=False)
    unique_visitors = Column(Integer, default=0, nullable=False)
    average_session_duration = Column(Float, default=0.0, nullable=False)
    bounce_rate = Column(Float, default=0.0, nullable=False)

    # Conversions
    affiliate_clicks = Column(Integer, default=0, nullable=False)
    affiliate_conversions = Column(Integer, default=0, nullable=False)
    subscription_signups = Column(Integer, default=0, nullable=False)
    conversion_rate = Column(Float, default=0.0, nullable=False)

    # Content
    total_posts = Column(Integer, default=0, nullable=False)
    premium_posts = Column(Integer, default=0, nullable=False)
    top_performing_posts = Column(JSON, nullable=False, default=list)  # [{"postId", "title", "revenue", "views"}]

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    def to_dict(self) -> dict:
        return {
            "date": self.date.isoformat(),
            "revenue": {
                "total": float(self.revenue_total),
                "affiliate": float(self.revenue_affiliate),
                "subscriptions": float(self.revenue_subscriptions),
                "sponsored": float(self.revenue_sponsored),
                "currency": self.currency,
            },
            "traffic": {
                "pageViews": self.page_views,
                "uniqueVisitors": self.unique_visitors,
                "averageSessionDuration": self.average_session_duration,
                "bounceRate": self.bounce_rate,
            },
            "conversions": {
                "affiliateClicks": self.affiliate_clicks,
                "affiliateConversions": self.affiliate_conversions,
                "subscriptionSignups": self.subscription_signups,
                "conversionRate": self.conversion_rate,
            },
            "content": {
                "totalPosts": self.total_posts,
                "premiumPosts": self.premium_posts,
                "topPerformingPosts": list(self.top_performing_posts or []),
            },
        }
