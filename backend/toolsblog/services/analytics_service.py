"""Daily analytics rollup and reporting"""
import logging
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from toolsblog.core.config import settings
from toolsblog.core.exceptions import ValidationError
from toolsblog.core.metrics import analytics_rollups_counter
from toolsblog.db.redis import ANALYTICS_METRICS_PATTERN, ANALYTICS_PROJECTION_PATTERN, Cache
from toolsblog.models.affiliate_click import AffiliateClick
from toolsblog.models.analytics import Analytics
from toolsblog.models.billing_record import BillingRecord
from toolsblog.models.blog_post import BlogPost
from toolsblog.models.subscription import Subscription

logger = logging.getLogger("analytics")

GROUP_BY_OPTIONS = ("day", "week", "month", "year")
PROJECTION_HISTORY_DAYS = 90
TOP_POSTS_LIMIT = 10


def day_window(day: date):
    """[day 00:00, next day 00:00) in UTC"""
    start = datetime.combine(day, time.min, tzinfo=timezone.utc)
    return start, start + timedelta(days=1)


def _money(value) -> Decimal:
    return Decimal(str(value or 0)).quantize(Decimal("0.01"))


class AnalyticsService:
    def __init__(self, db: Session, cache: Cache):
        self.db = db
        self.cache = cache

    # ========================================================================
    # ROLLUP
    # ========================================================================

    def record_daily_metrics(self, day: Optional[date] = None) -> Analytics:
        """Compute and store the rollup for ``day`` (default: yesterday, UTC).

        Re-running for a day that already has a record returns that record untouched.
        """
        day = day or (datetime.now(timezone.utc).date() - timedelta(days=1))
        existing = self.db.query(Analytics).filter(Analytics.date == day).first()
        if existing:
            logger.info(f"Analytics for {day.isoformat()} already recorded")
            analytics_rollups_counter.labels(status="skipped").inc()
            return existing

        start, end = day_window(day)
        revenue = self._revenue_metrics(start, end)
        traffic = self._traffic_metrics(start, end)
        conversions = self._conversion_metrics(start, end)
        content = self._content_metrics(start, end)

        record = Analytics(date=day, currency=settings.DEFAULT_CURRENCY, **revenue, **traffic, **conversions, **content)
        self.db.add(record)
        try:
            self.db.commit()
        except IntegrityError:
            # Another worker recorded the same day first
            self.db.rollback()
            analytics_rollups_counter.labels(status="skipped").inc()
            return self.db.query(Analytics).filter(Analytics.date == day).one()
        self.db.refresh(record)

        self.clear_metrics_cache()
        analytics_rollups_counter.labels(status="success").inc()
        logger.info(f"Recorded analytics for {day.isoformat()}: revenue={record.revenue_total}")
        return record

    def _revenue_metrics(self, start: datetime, end: datetime) -> Dict:
        affiliate = self.db.query(func.coalesce(func.sum(AffiliateClick.commission_earned), 0)).filter(
            AffiliateClick.converted.is_(True),
            AffiliateClick.converted_at >= start,
            AffiliateClick.converted_at < end,
        ).scalar()
        subscriptions = self.db.query(func.coalesce(func.sum(BillingRecord.amount), 0)).filter(
            BillingRecord.outcome == "succeeded",
            BillingRecord.occurred_at >= start,
            BillingRecord.occurred_at < end,
        ).scalar()
        affiliate, subscriptions, sponsored = _money(affiliate), _money(subscriptions), Decimal("0.00")
        return {
            "revenue_total": affiliate + subscriptions + sponsored,
            "revenue_affiliate": affiliate,
            "revenue_subscriptions": subscriptions,
            "revenue_sponsored": sponsored,
        }

    def _traffic_metrics(self, start: datetime, end: datetime) -> Dict:
        page_views, unique_visitors, session_seconds, bounces = self.db.query(
            func.coalesce(func.sum(BlogPost.views), 0),
            func.coalesce(func.sum(BlogPost.unique_visitors), 0),
            func.coalesce(func.sum(BlogPost.views * BlogPost.average_time_on_page), 0),
            func.coalesce(func.sum(BlogPost.bounces), 0),
        ).filter(
            BlogPost.analytics_updated_at >= start,
            BlogPost.analytics_updated_at < end,
        ).one()
        return {
            "page_views": int(page_views),
            "unique_visitors": int(unique_visitors),
            "average_session_duration": float(session_seconds) / page_views if page_views else 0.0,
            "bounce_rate": (float(bounces) / page_views) * 100 if page_views else 0.0,
        }

    def _conversion_metrics(self, start: datetime, end: datetime) -> Dict:
        clicks = self.db.query(func.count(AffiliateClick.id)).filter(
            AffiliateClick.clicked_at >= start,
            AffiliateClick.clicked_at < end,
        ).scalar() or 0
        conversions = self.db.query(func.count(AffiliateClick.id)).filter(
            AffiliateClick.converted.is_(True),
            AffiliateClick.converted_at >= start,
            AffiliateClick.converted_at < end,
        ).scalar() or 0
        signups = self.db.query(func.count(Subscription.id)).filter(
            Subscription.created_at >= start,
            Subscription.created_at < end,
        ).scalar() or 0
        return {
            "affiliate_clicks": clicks,
            "affiliate_conversions": conversions,
            "subscription_signups": signups,
            "conversion_rate": (conversions / clicks) * 100 if clicks else 0.0,
        }

    def _content_metrics(self, start: datetime, end: datetime) -> Dict:
        published = self.db.query(BlogPost).filter(BlogPost.status == "published")
        top_posts = published.filter(
            BlogPost.analytics_updated_at >= start,
            BlogPost.analytics_updated_at < end,
        ).order_by(BlogPost.revenue.desc(), BlogPost.id).limit(TOP_POSTS_LIMIT).all()
        return {
            "total_posts": published.count(),
            "premium_posts": published.filter(BlogPost.is_premium.is_(True)).count(),
            "top_performing_posts": [
                {"postId": post.id, "title": post.title, "views": post.views, "revenue": float(post.revenue)}
                for post in top_posts
            ],
        }

    # ========================================================================
    # REPORTING
    # ========================================================================

    def get_metrics_by_date_range(self, start_date: date, end_date: date, group_by: str = "day") -> List[Dict]:
        """Rollups between two dates (inclusive), summed per day/week/month/year"""
        if group_by not in GROUP_BY_OPTIONS:
            raise ValidationError(f"group_by must be one of {', '.join(GROUP_BY_OPTIONS)}")
        if start_date > end_date:
            raise ValidationError("start_date must not be after end_date")

        cache_key = f"analytics:metrics:{start_date.isoformat()}:{end_date.isoformat()}:{group_by}"

        def load():
            rows = self.db.query(Analytics).filter(
                Analytics.date >= start_date,
                Analytics.date <= end_date,
            ).order_by(Analytics.date).all()
            groups: Dict[date, List[Analytics]] = {}
            for row in rows:
                groups.setdefault(_period_start(row.date, group_by), []).append(row)
            return [_combine(period, members) for period, members in groups.items()]

        return self.cache.remember(cache_key, settings.CACHE_TTL_LONG, load)

    def get_revenue_projection(self, months: int = 6) -> List[Dict]:
        """Compound the average daily revenue growth of recent rollups forward, one point per 30 days"""
        if months < 1 or months > 36:
            raise ValidationError("months must be between 1 and 36")
        cache_key = f"analytics:revenue-projection:{months}"

        def load():
            history = self.db.query(Analytics.date, Analytics.revenue_total).order_by(
                Analytics.date.desc()
            ).limit(PROJECTION_HISTORY_DAYS).all()

            growth_rates = []
            for newer, older in zip(history, history[1:]):
                if older.revenue_total and older.revenue_total > 0:
                    growth_rates.append(float((newer.revenue_total - older.revenue_total) / older.revenue_total))
            avg_growth = sum(growth_rates) / len(growth_rates) if growth_rates else 0.0

            projection = []
            today = datetime.now(timezone.utc).date()
            revenue = float(history[0].revenue_total) if history else 0.0
            for i in range(1, months * 30 + 1):
                revenue *= 1 + avg_growth
                if i % 30 == 0:
                    point = today + timedelta(days=i)
                    projection.append({
                        "month": point.replace(day=1).isoformat(),
                        "projected": round(revenue * 30),
                    })
            return projection

        return self.cache.remember(cache_key, settings.CACHE_TTL_LONG, load)

    def clear_metrics_cache(self) -> None:
        self.cache.delete_pattern(ANALYTICS_METRICS_PATTERN)
        self.cache.delete_pattern(ANALYTICS_PROJECTION_PATTERN)


def _period_start(day: date, group_by: str) -> date:
    if group_by == "week":
        return day - timedelta(days=day.weekday())
    if group_by == "month":
        return day.replace(day=1)
    if group_by == "year":
        return day.replace(month=1, day=1)
    return day


def _combine(period: date, rows: List[Analytics]) -> Dict:
    """Sum counters and revenue across rows; rates are view/click weighted"""
    page_views = sum(r.page_views for r in rows)
    clicks = sum(r.affiliate_clicks for r in rows)
    conversions = sum(r.affiliate_conversions for r in rows)
    session_seconds = sum(r.average_session_duration * r.page_views for r in rows)
    bounces = sum(r.bounce_rate * r.page_views / 100 for r in rows)
    latest = rows[-1]
    return {
        "date": period.isoformat(),
        "days": len(rows),
        "revenue": {
            "total": float(sum(_money(r.revenue_total) for r in rows)),
            "affiliate": float(sum(_money(r.revenue_affiliate) for r in rows)),
            "subscriptions": float(sum(_money(r.revenue_subscriptions) for r in rows)),
            "sponsored": float(sum(_money(r.revenue_sponsored) for r in rows)),
            "currency": latest.currency,
        },
        "traffic": {
            "pageViews": page_views,
            "uniqueVisitors": sum(r.unique_visitors for r in rows),
            "averageSessionDuration": session_seconds / page_views if page_views else 0.0,
            "bounceRate": (bounces / page_views) * 100 if page_views else 0.0,
        },
        "conversions": {
            "affiliateClicks": clicks,
            "affiliateConversions": conversions,
            "subscriptionSignups": sum(r.subscription_signups for r in rows),
            "conversionRate": (conversions / clicks) * 100 if clicks else 0.0,
        },
        "content": {
            "totalPosts": latest.total_posts,
            "premiumPosts": latest.premium_posts,
            "topPerformingPosts": list(latest.top_performing_posts or []),
        },
    }
