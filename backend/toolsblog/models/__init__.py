"""SQLAlchemy models package - imports all models so they register with Base.metadata"""
from toolsblog.models.base import Base
from toolsblog.models.user import User
from toolsblog.models.subscription import Subscription
from toolsblog.models.billing_record import BillingRecord
from toolsblog.models.webhook_event import WebhookEvent
from toolsblog.models.blog_post import BlogPost
from toolsblog.models.affiliate_click import AffiliateClick
from toolsblog.models.analytics import Analytics

# Export all for convenience
__all__ = [
    "Base", "User", "Subscription", "BillingRecord", "WebhookEvent",
    "BlogPost", "AffiliateClick", "Analytics"
]
