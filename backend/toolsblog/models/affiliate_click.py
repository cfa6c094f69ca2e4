"""AffiliateClick model"""
from sqlalchemy import Column, Integer, String, DateTime, Boolean, Numeric, ForeignKey, Index
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from toolsblog.models.base import Base


class AffiliateClick(Base):
    """A click on an affiliate link, optionally converted later"""
    __tablename__ = "affiliate_clicks"
    __table_args__ = (
        Index("ix_affiliate_clicks_dedup", "ip", "tool_name", "clicked_at"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)  # post author
    blog_post_id = Column(Integer, ForeignKey("blog_posts.id", ondelete="CASCADE"), nullable=False, index=True)
    tool_name = Column(String(255), nullable=False)
    affiliate_network = Column(String(50), nullable=False)  # 'paddle', 'stripe', 'impact', 'clickbank'
    affiliate_id = Column(String(255), nullable=False)
    commission = Column(Numeric(5, 2), nullable=False)  # percent

    # Tracking data
    ip = Column(String(64), nullable=False)
    user_agent = Column(String(512), nullable=True)
    referrer = Column(String(1024), nullable=True)
    utm_source = Column(String(255), nullable=True)
    utm_medium = Column(String(255), nullable=True)
    utm_campaign = Column(String(255), nullable=True)

    converted = Column(Boolean, default=False, nullable=False)
    conversion_value = Column(Numeric(12, 2), nullable=True)
    commission_earned = Column(Numeric(12, 2), nullable=True)
    clicked_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False, index=True)
    converted_at = Column(DateTime(timezone=True), nullable=True, index=True)

    blog_post = relationship("BlogPost", back_populates="clicks")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "userId": self.user_id,
            "blogPostId": self.blog_post_id,
            "toolName": self.tool_name,
            "affiliateNetwork": self.affiliate_network,
            "affiliateId": self.affiliate_id,
            "commission": float(self.commission),
            "trackingData": {
                "ip": self.ip,
                "userAgent": self.user_agent,
                "referrer": self.referrer,
                "utmSource": self.utm_source,
                "utmMedium": self.utm_medium,
                "utmCampaign": self.utm_campaign,
            },
            "converted": self.converted,
            "conversionValue": float(self.conversion_value) if self.conversion_value is not None else None,
            "commissionEarned": float(self.commission_earned) if self.commission_earned is not None else None,
            "clickedAt": self.clicked_at.isoformat() if self.clicked_at else None,
            "convertedAt": self.converted_at.isoformat() if self.converted_at else None,
        }
