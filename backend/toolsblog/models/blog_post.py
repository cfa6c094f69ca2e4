"""BlogPost model"""
from sqlalchemy import Column, Integer, String, DateTime, Boolean, Numeric, Float, JSON, ForeignKey
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from toolsblog.models.base import Base


class BlogPost(Base):
    """Blog article with the affiliate products it links to and its traffic counters"""
    __tablename__ = "blog_posts"

    id = Column(Integer, primary_key=True, index=True)
    author_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    slug = Column(String(255), unique=True, nullable=False, index=True)
    status = Column(String(20), default="draft", nullable=False, index=True)  # 'draft', 'published', 'archived'
    is_premium = Column(Boolean, default=False, nullable=False)
    # [{"toolName", "affiliateId", "network", "commission"}]
    affiliate_products = Column(JSON, nullable=False, default=list)

    # Counters (incremented in SQL, never read-modify-write)
    views = Column(Integer, default=0, nullable=False)
    unique_visitors = Column(Integer, default=0, nullable=False)
    average_time_on_page = Column(Float, default=0.0, nullable=False)
    bounces = Column(Integer, default=0, nullable=False)
    affiliate_clicks = Column(Integer, default=0, nullable=False)
    conversions = Column(Integer, default=0, nullable=False)
    revenue = Column(Numeric(12, 2), default=0, nullable=False)
    analytics_updated_at = Column(DateTime(timezone=True), nullable=True, index=True)

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc), nullable=False)

    author = relationship("User", back_populates="blog_posts")
    clicks = relationship("AffiliateClick", back_populates="blog_post")

    def find_affiliate_product(self, tool_name: str, network: str):
        for product in self.affiliate_products or []:
            if product.get("toolName") == tool_name and product.get("network") == network:
                return product
        return None
