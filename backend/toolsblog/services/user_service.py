"""User accounts and cached profiles"""
import logging
import secrets
from typing import Dict, Optional

from sqlalchemy.orm import Session

from toolsblog.core.config import settings
from toolsblog.core.exceptions import ValidationError
from toolsblog.db.redis import Cache, user_profile_key
from toolsblog.db.repository import Repository
from toolsblog.models.user import User

logger = logging.getLogger(__name__)

ROLES = ("user", "author", "admin")


def create_user(db: Session, email: str, name: Optional[str] = None, role: str = "user") -> User:
    """Create a user with a fresh referral code.

    Raises:
        ValidationError: duplicate email or unknown role
    """
    email = (email or "").strip().lower()
    if not email or "@" not in email:
        raise ValidationError("A valid email is required")
    if role not in ROLES:
        raise ValidationError(f"Unknown role: {role}")
    users = Repository(User, db)
    if users.exists(email=email):
        raise ValidationError("Email already registered")
    user = users.create(email=email, name=name, role=role, referral_code=secrets.token_urlsafe(8))
    logger.info(f"Created user {user.id}")
    return user


def user_profile(user: User) -> Dict:
    return {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "role": user.role,
        "subscription": {
            "status": user.subscription_status,
            "plan": user.subscription_plan,
            "provider": user.subscription_provider,
            "externalId": user.subscription_external_id,
            "isActive": user.has_active_subscription(),
            "expiresAt": user.subscription_expires_at.isoformat() if user.subscription_expires_at else None,
            "canceledAt": user.subscription_canceled_at.isoformat() if user.subscription_canceled_at else None,
        },
        "affiliateData": {
            "referralCode": user.referral_code,
            "clicks": user.affiliate_clicks,
            "conversions": user.affiliate_conversions,
            "earnings": float(user.affiliate_earnings or 0),
        },
    }


def get_user_profile(db: Session, cache: Cache, user_id: int) -> Dict:
    """Profile with entitlement mirror and affiliate counters, cached until the next mutation"""
    return cache.remember(
        user_profile_key(user_id),
        settings.CACHE_TTL_SHORT,
        lambda: user_profile(Repository(User, db).get(user_id)),
    )
