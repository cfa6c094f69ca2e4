"""User and blog post API routes"""
import logging

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from toolsblog.core.config import settings
from toolsblog.db.redis import Cache, get_cache
from toolsblog.db.session import get_db
from toolsblog.schemas.users import CreatePostRequest, CreateUserRequest, RecordTrafficRequest
from toolsblog.services.content_service import create_post, get_post, post_to_dict, update_analytics
from toolsblog.services.user_service import create_user, get_user_profile, user_profile

router = APIRouter(prefix=settings.API_PREFIX, tags=["users"])
logger = logging.getLogger(__name__)


@router.post("/users", status_code=201)
def register_user(body: CreateUserRequest, db: Session = Depends(get_db)):
    user = create_user(db, body.email, body.name, body.role)
    return {"success": True, "data": user_profile(user)}


@router.get("/users/{user_id}")
def get_user(user_id: int, db: Session = Depends(get_db), cache: Cache = Depends(get_cache)):
    return {"success": True, "data": get_user_profile(db, cache, user_id)}


@router.post("/posts", status_code=201)
def add_post(body: CreatePostRequest, db: Session = Depends(get_db)):
    post = create_post(
        db,
        author_id=body.author_id,
        title=body.title,
        status=body.status,
        is_premium=body.is_premium,
        affiliate_products=[p.model_dump(by_alias=True) for p in body.affiliate_products],
    )
    return {"success": True, "data": post_to_dict(post)}


@router.get("/posts/{post_id}")
def read_post(post_id: int, db: Session = Depends(get_db), cache: Cache = Depends(get_cache)):
    return {"success": True, "data": get_post(db, cache, post_id)}


@router.post("/posts/{post_id}/analytics")
def record_post_traffic(
    post_id: int,
    body: RecordTrafficRequest,
    db: Session = Depends(get_db),
    cache: Cache = Depends(get_cache),
):
    """Add a batch of page views to a post (fed by the frontend tracker)"""
    post = update_analytics(
        db, cache, post_id,
        views=body.views,
        unique_visitors=body.unique_visitors,
        time_on_page=body.time_on_page,
        bounces=body.bounces,
    )
    return {"success": True, "data": post_to_dict(post)["analytics"]}
