"""Blog posts as far as monetization needs them"""
import logging
import re
from datetime import datetime, timezone
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from toolsblog.core.config import settings
from toolsblog.core.exceptions import NotFoundError, ValidationError
from toolsblog.db.redis import Cache, blog_post_key
from toolsblog.db.repository import Repository
from toolsblog.models.blog_post import BlogPost
from toolsblog.models.user import User
from toolsblog.services.affiliate_service import AFFILIATE_NETWORKS

logger = logging.getLogger(__name__)

POST_STATUSES = ("draft", "published", "archived")


def slugify(title: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", title.lower()).strip("-")


def _check_products(products: List[Dict]) -> List[Dict]:
    checked = []
    for product in products or []:
        if product.get("network") not in AFFILIATE_NETWORKS:
            raise ValidationError(f"Unknown affiliate network: {product.get('network')}")
        commission = float(product.get("commission", 0))
        if not 0 <= commission <= 100:
            raise ValidationError("Commission must be a percentage between 0 and 100")
        if not product.get("toolName") or not product.get("affiliateId"):
            raise ValidationError("Affiliate products need a toolName and affiliateId")
        checked.append({
            "toolName": product["toolName"],
            "affiliateId": product["affiliateId"],
            "network": product["network"],
            "commission": commission,
        })
    return checked


def create_post(
    db: Session,
    author_id: int,
    title: str,
    status: str = "draft",
    is_premium: bool = False,
    affiliate_products: Optional[List[Dict]] = None,
    slug: Optional[str] = None,
) -> BlogPost:
    Repository(User, db).get(author_id)
    if status not in POST_STATUSES:
        raise ValidationError(f"Unknown post status: {status}")
    posts = Repository(BlogPost, db)
    slug = slug or slugify(title)
    if not slug:
        raise ValidationError("Title must contain letters or digits")
    if posts.exists(slug=slug):
        raise ValidationError(f"Slug already in use: {slug}")
    return posts.create(
        author_id=author_id,
        title=title,
        slug=slug,
        status=status,
        is_premium=is_premium,
        affiliate_products=_check_products(affiliate_products),
    )


def post_to_dict(post: BlogPost) -> Dict:
    return {
        "id": post.id,
        "authorId": post.author_id,
        "title": post.title,
        "slug": post.slug,
        "status": post.status,
        "isPremium": post.is_premium,
        "affiliateProducts": list(post.affiliate_products or []),
        "analytics": {
            "views": post.views,
            "uniqueVisitors": post.unique_visitors,
            "averageTimeOnPage": post.average_time_on_page,
            "bounces": post.bounces,
            "affiliateClicks": post.affiliate_clicks,
            "conversions": post.conversions,
            "revenue": float(post.revenue or 0),
            "lastUpdated": post.analytics_updated_at.isoformat() if post.analytics_updated_at else None,
        },
    }


def get_post(db: Session, cache: Cache, post_id: int) -> Dict:
    return cache.remember(
        blog_post_key(post_id),
        settings.CACHE_TTL_SHORT,
        lambda: post_to_dict(Repository(BlogPost, db).get(post_id)),
    )


def update_analytics(
    db: Session,
    cache: Cache,
    post_id: int,
    views: int = 1,
    unique_visitors: int = 0,
    time_on_page: Optional[float] = None,
    bounces: int = 0,
    now: Optional[datetime] = None,
) -> BlogPost:
    """Add a batch of traffic to a post's counters.

    ``time_on_page`` is the batch's mean seconds per view; it is folded into the
    running average weighted by view count.
    """
    if min(views, unique_visitors, bounces) < 0 or (time_on_page is not None and time_on_page < 0):
        raise ValidationError("Traffic counters cannot be negative")
    if bounces > views:
        raise ValidationError("Bounces cannot exceed views")

    post = db.query(BlogPost).filter(BlogPost.id == post_id).with_for_update().first()
    if post is None:
        raise NotFoundError("Blog post not found")

    previous_views = post.views or 0
    total_views = previous_views + views
    if views and time_on_page is not None:
        post.average_time_on_page = (
            (post.average_time_on_page or 0.0) * previous_views + time_on_page * views
        ) / total_views
    post.views = total_views
    post.unique_visitors = (post.unique_visitors or 0) + unique_visitors
    post.bounces = (post.bounces or 0) + bounces
    post.analytics_updated_at = now or datetime.now(timezone.utc)
    db.commit()
    db.refresh(post)

    cache.delete(blog_post_key(post.id))
    logger.debug(f"Post {post.id} traffic +{views} views, total {post.views}")
    return post
