"""Engine and session factory"""
from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker

from toolsblog.core.config import settings
from toolsblog.models.base import Base


def engine_options(url: str) -> dict:
    """SQLite (tests, local runs) shares one connection across threads; servers get a pool"""
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    return {
        "pool_pre_ping": True,
        "pool_recycle": 3600,
        "pool_size": settings.DB_POOL_SIZE,
        "max_overflow": settings.DB_MAX_OVERFLOW,
    }


engine = create_engine(settings.DATABASE_URL, **engine_options(settings.DATABASE_URL))
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    """Request-scoped session dependency"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db():
    """Create missing tables. Schema changes go through the alembic revisions."""
    Base.metadata.create_all(bind=engine)


def check_db() -> bool:
    with engine.connect() as connection:
        connection.execute(text("SELECT 1"))
    return True
