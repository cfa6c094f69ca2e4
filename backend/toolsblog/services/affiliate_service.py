"""Affiliate click tracking and conversion counters"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List, Optional

from sqlalchemy import case, func, update
from sqlalchemy.orm import Session

from toolsblog.core.config import settings
from toolsblog.core.exceptions import AlreadyConvertedError, NotFoundError, ValidationError
from toolsblog.core.metrics import affiliate_events_counter
from toolsblog.db.redis import (
    Cache, affiliate_stats_key, affiliate_top_tools_key, blog_post_key, user_profile_key
)
from toolsblog.db.repository import Repository
from toolsblog.models.affiliate_click import AffiliateClick
from toolsblog.models.blog_post import BlogPost
from toolsblog.models.user import User

logger = logging.getLogger("affiliate")

AFFILIATE_NETWORKS = ("paddle", "stripe", "impact", "clickbank")
CENT = Decimal("0.01")


@dataclass
class ClickTrackingData:
    blog_post_id: int
    tool_name: str
    affiliate_network: str
    ip: str
    user_agent: Optional[str] = None
    referrer: Optional[str] = None
    utm_source: Optional[str] = None
    utm_medium: Optional[str] = None
    utm_campaign: Optional[str] = None


def calculate_commission(conversion_value: Decimal, commission_percent: Decimal) -> Decimal:
    return (Decimal(str(conversion_value)) * Decimal(str(commission_percent)) / Decimal("100")).quantize(
        CENT, rounding=ROUND_HALF_UP
    )


class AffiliateService:
    def __init__(self, db: Session, cache: Cache):
        self.db = db
        self.cache = cache
        self.clicks = Repository(AffiliateClick, db)
        self.posts = Repository(BlogPost, db)

    def track_click(self, data: ClickTrackingData, now: datetime = None) -> AffiliateClick:
        """Record a click, or return the existing one for the same ip/tool within the window"""
        if data.affiliate_network not in AFFILIATE_NETWORKS:
            raise ValidationError(f"Unknown affiliate network: {data.affiliate_network}")
        if not data.ip:
            raise ValidationError("Tracking data must include an ip")

        post = self.db.get(BlogPost, data.blog_post_id)
        if post is None:
            raise NotFoundError("Blog post not found")
        product = post.find_affiliate_product(data.tool_name, data.affiliate_network)
        if product is None:
            raise ValidationError("Invalid affiliate product")

        now = now or datetime.now(timezone.utc)
        window_start = now - timedelta(hours=settings.AFFILIATE_DEDUP_WINDOW_HOURS)

        with self.cache.lock(f"lock:affiliate-click:{data.ip}:{data.tool_name}", timeout=5, wait=2):
            duplicate = self.db.query(AffiliateClick).filter(
                AffiliateClick.ip == data.ip,
                AffiliateClick.tool_name == data.tool_name,
                AffiliateClick.clicked_at >= window_start,
            ).order_by(AffiliateClick.clicked_at.desc()).first()
            if duplicate:
                logger.debug(f"Duplicate click detected: ip={data.ip} tool={data.tool_name}")
                affiliate_events_counter.labels(event="duplicate_click").inc()
                return duplicate

            click = self.clicks.create(
                commit=False,
                user_id=post.author_id,
                blog_post_id=post.id,
                tool_name=data.tool_name,
                affiliate_network=data.affiliate_network,
                affiliate_id=product.get("affiliateId") or "",
                commission=Decimal(str(product.get("commission") or 0)),
                ip=data.ip,
                user_agent=data.user_agent,
                referrer=data.referrer,
                utm_source=data.utm_source,
                utm_medium=data.utm_medium,
                utm_campaign=data.utm_campaign,
                clicked_at=now,
            )
            self.db.execute(
                update(BlogPost).where(BlogPost.id == post.id).values(
                    affiliate_clicks=BlogPost.affiliate_clicks + 1
                )
            )
            self.db.execute(
                update(User).where(User.id == post.author_id).values(
                    affiliate_clicks=User.affiliate_clicks + 1
                )
            )
            self.db.commit()
            self.db.refresh(click)

        self._invalidate(post.author_id, post.id)
        affiliate_events_counter.labels(event="click").inc()
        return click

    def record_conversion(self, click_id: int, conversion_value) -> AffiliateClick:
        """Mark a click converted (one way) and credit the commission.

        Raises:
            NotFoundError: unknown click
            AlreadyConvertedError: the click was converted before
        """
        try:
            value = Decimal(str(conversion_value)).quantize(CENT)
        except ArithmeticError:
            raise ValidationError("Conversion value must be a number")
        if value < 0:
            raise ValidationError("Conversion value cannot be negative")

        click = self.clicks.get(click_id)
        if click.converted:
            raise AlreadyConvertedError("Click already converted")
        commission_earned = calculate_commission(value, click.commission)

        # Guarded one-way transition; a concurrent conversion loses here
        result = self.db.execute(
            update(AffiliateClick)
            .where(AffiliateClick.id == click.id, AffiliateClick.converted.is_(False))
            .values(
                converted=True,
                conversion_value=value,
                commission_earned=commission_earned,
                converted_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            self.db.rollback()
            raise AlreadyConvertedError("Click already converted")

        self.db.execute(
            update(BlogPost).where(BlogPost.id == click.blog_post_id).values(
                conversions=BlogPost.conversions + 1,
                revenue=BlogPost.revenue + commission_earned,
            )
        )
        self.db.execute(
            update(User).where(User.id == click.user_id).values(
                affiliate_conversions=User.affiliate_conversions + 1,
                affiliate_earnings=User.affiliate_earnings + commission_earned,
            )
        )
        self.db.commit()
        self.db.refresh(click)

        self._invalidate(click.user_id, click.blog_post_id)
        affiliate_events_counter.labels(event="conversion").inc()
        logger.info(f"Click {click.id} converted: value={value} commission={commission_earned}")
        return click

    def get_stats(self, user_id: int, start_date: datetime = None, end_date: datetime = None) -> Dict:
        suffix = f"{start_date.isoformat() if start_date else 'all'}:{end_date.isoformat() if end_date else 'all'}"

        def load():
            clicks_query = self.db.query(func.count(AffiliateClick.id)).filter(AffiliateClick.user_id == user_id)
            conversions_query = self.db.query(
                func.count(AffiliateClick.id),
                func.coalesce(func.sum(AffiliateClick.commission_earned), 0),
            ).filter(AffiliateClick.user_id == user_id, AffiliateClick.converted.is_(True))
            if start_date:
                clicks_query = clicks_query.filter(AffiliateClick.clicked_at >= start_date)
                conversions_query = conversions_query.filter(AffiliateClick.converted_at >= start_date)
            if end_date:
                clicks_query = clicks_query.filter(AffiliateClick.clicked_at <= end_date)
                conversions_query = conversions_query.filter(AffiliateClick.converted_at <= end_date)

            clicks = clicks_query.scalar() or 0
            conversions, revenue = conversions_query.one()
            revenue = float(revenue or 0)
            return {
                "clicks": clicks,
                "conversions": conversions,
                "revenue": round(revenue, 2),
                "conversionRate": (conversions / clicks) * 100 if clicks else 0,
                "averageOrderValue": round(revenue / conversions, 2) if conversions else 0,
            }

        return self.cache.remember(affiliate_stats_key(user_id, suffix), settings.CACHE_TTL_MEDIUM, load)

    def get_top_tools(self, user_id: int, limit: int = 5) -> List[Dict]:
        def load():
            conversions = func.sum(case((AffiliateClick.converted.is_(True), 1), else_=0))
            revenue = func.coalesce(func.sum(AffiliateClick.commission_earned), 0)
            rows = self.db.query(
                AffiliateClick.tool_name,
                func.count(AffiliateClick.id),
                conversions,
                revenue,
            ).filter(
                AffiliateClick.user_id == user_id
            ).group_by(AffiliateClick.tool_name).order_by(revenue.desc()).limit(limit).all()
            return [
                {
                    "toolName": tool_name,
                    "clicks": clicks,
                    "conversions": int(converted or 0),
                    "revenue": float(earned or 0),
                    "conversionRate": (int(converted or 0) / clicks) * 100 if clicks else 0,
                }
                for tool_name, clicks, converted, earned in rows
            ]

        return self.cache.remember(affiliate_top_tools_key(user_id, limit), settings.CACHE_TTL_MEDIUM, load)

    def _invalidate(self, user_id: int, post_id: int) -> None:
        self.cache.delete_pattern(affiliate_stats_key(user_id, "*"))
        self.cache.delete_pattern(affiliate_top_tools_key(user_id, "*"))
        self.cache.delete(blog_post_key(post_id), user_profile_key(user_id))
