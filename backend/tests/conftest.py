"""Shared pytest fixtures for test suite"""
import os
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Generator
from unittest.mock import MagicMock, patch

import fakeredis
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# Settings are read at import time
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ.setdefault("ENVIRONMENT", "development")
os.environ["ENABLE_BACKGROUND_TASKS"] = "False"

# Add backend directory to Python path
backend_dir = Path(__file__).parent.parent
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

from toolsblog.main import app
from toolsblog.db.redis import Cache, get_cache
from toolsblog.db.session import get_db
from toolsblog.models import Base
from toolsblog.models.blog_post import BlogPost
from toolsblog.models.subscription import SubscriptionStatus
from toolsblog.models.user import User
from toolsblog.services.providers.base import ProviderSubscription
from toolsblog.services.providers.paddle_provider import PaddleProvider
from toolsblog.services.providers.registry import ProviderRegistry, get_providers
from toolsblog.services.providers.stripe_provider import StripeProvider
from toolsblog.services.user_service import create_user


PADDLE_WEBHOOK_SECRET = "pdl_ntfset_test_secret"

# SQLite in-memory database for testing
TEST_DATABASE_URL = "sqlite:///:memory:"

# Create test engine with StaticPool for in-memory database
test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

# Create test session factory
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


# ============================================================================
# FAKE PROVIDERS
# ============================================================================

class RecordingProviderMixin:
    """Replaces the outbound calls of a real adapter with an in-memory record.

    Webhook verification and normalization stay those of the real adapter.
    """

    creation_status = SubscriptionStatus.ACTIVE

    def _reset(self):
        self.calls = []
        self.failures = {}
        self.remote = {}
        self._counter = 0

    def _record(self, operation, *args):
        self.calls.append((operation,) + args)
        error = self.failures.get(operation)
        if error is not None:
            raise error

    def ensure_customer(self, user, payment_method_ref=None):
        self._record("ensure_customer", user.id, payment_method_ref)
        return user.customer_id_for(self.name) or f"cus_{self.name}_{user.id}"

    def create_subscription(self, customer_ref, plan_ref, payment_method_ref=None):
        self._record("create_subscription", customer_ref, plan_ref, payment_method_ref)
        self._counter += 1
        sub = ProviderSubscription(
            external_id=f"sub_{self.name}_{self._counter}",
            status=self.creation_status,
            current_period_end=datetime.now(timezone.utc) + timedelta(days=30),
            plan_ref=plan_ref,
            native_status=self.creation_status.value,
        )
        self.remote[sub.external_id] = sub
        return sub

    def update_subscription(self, external_id, new_plan_ref):
        self._record("update_subscription", external_id, new_plan_ref)
        sub = self.remote.setdefault(
            external_id, ProviderSubscription(external_id=external_id, status=SubscriptionStatus.ACTIVE)
        )
        sub.plan_ref = new_plan_ref
        return sub

    def cancel_subscription(self, external_id):
        self._record("cancel_subscription", external_id)
        if external_id in self.remote:
            self.remote[external_id].status = SubscriptionStatus.CANCELED
            self.remote[external_id].native_status = "canceled"

    def retrieve_subscription(self, external_id):
        self._record("retrieve_subscription", external_id)
        return self.remote.setdefault(
            external_id,
            ProviderSubscription(external_id=external_id, status=SubscriptionStatus.ACTIVE, native_status="active"),
        )

    @property
    def external_calls(self):
        return len(self.calls)


class FakeStripeProvider(RecordingProviderMixin, StripeProvider):
    def __init__(self):
        super().__init__(MagicMock(), webhook_secret="")
        self._reset()


class FakePaddleProvider(RecordingProviderMixin, PaddleProvider):
    creation_status = SubscriptionStatus.PENDING

    def __init__(self):
        super().__init__(MagicMock(), webhook_secret=PADDLE_WEBHOOK_SECRET)
        self._reset()


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture(scope="function")
def db_session() -> Generator[Session, None, None]:
    """Create a fresh SQLite in-memory database session for each test"""
    # Create all tables
    Base.metadata.create_all(bind=test_engine)

    # Create session
    session = TestSessionLocal()

    try:
        yield session
    finally:
        session.close()
        # Drop all tables after test
        Base.metadata.drop_all(bind=test_engine)


@pytest.fixture(scope="function")
def mock_redis():
    """Redis replaced by fakeredis"""
    return fakeredis.FakeStrictRedis(decode_responses=True)


@pytest.fixture(scope="function")
def cache(mock_redis) -> Cache:
    return Cache(mock_redis)


@pytest.fixture(scope="function")
def providers() -> ProviderRegistry:
    return ProviderRegistry([FakeStripeProvider(), FakePaddleProvider()])


@pytest.fixture(scope="function")
def stripe_provider(providers):
    return providers.get("stripe")


@pytest.fixture(scope="function")
def paddle_provider(providers):
    return providers.get("paddle")


@pytest.fixture(scope="function")
def client(db_session: Session, cache: Cache, providers: ProviderRegistry) -> Generator[TestClient, None, None]:
    """FastAPI test client with test database, fakeredis cache and fake providers"""

    # Override get_db dependency to use test database
    def override_get_db():
        try:
            yield db_session
        finally:
            pass  # Don't close session here, handled by fixture

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_cache] = lambda: cache
    app.dependency_overrides[get_providers] = lambda: providers

    try:
        # Disable OpenTelemetry instrumentation and external connections in tests
        with patch('toolsblog.core.otel.initialize_otel', return_value=False):
            with patch('toolsblog.main.init_db'):
                with patch('toolsblog.main.get_redis_client', return_value=cache.client):
                    with TestClient(app) as test_client:
                        yield test_client
    finally:
        # Cleanup - always clear overrides
        app.dependency_overrides.clear()


@pytest.fixture(scope="function")
def test_user(db_session: Session) -> User:
    return create_user(db_session, "reader@example.com", name="Test Reader")


@pytest.fixture(scope="function")
def author(db_session: Session) -> User:
    return create_user(db_session, "author@example.com", name="Test Author", role="author")


@pytest.fixture(scope="function")
def blog_post(db_session: Session, author: User) -> BlogPost:
    """Published post linking two affiliate products"""
    post = BlogPost(
        author_id=author.id,
        title="Best Design Tools",
        slug="best-design-tools",
        status="published",
        affiliate_products=[
            {"toolName": "Figma", "affiliateId": "fig-123", "network": "impact", "commission": 10},
            {"toolName": "Notion", "affiliateId": "not-456", "network": "paddle", "commission": 25},
        ],
    )
    db_session.add(post)
    db_session.commit()
    db_session.refresh(post)
    return post
