"""
Affirmly Backend — Test Configuration (conftest.py)
====================================================

What:  Shared pytest fixtures for the entire test suite.
How:   An in-memory SQLite database (aiosqlite) with the real schema, fake
       payment gateway / push service built from unittest.mock, and an
       HTTPX AsyncClient wired to a fresh app through dependency_overrides.

Fixture Hierarchy (all function-scoped):
    ├── engine / session_factory / db_session: empty schema per test
    ├── make_user: inserts a user row
    ├── fake_gateway: MagicMock PaymentGateway with AsyncMock methods
    ├── fake_push: MagicMock PushService with AsyncMock methods
    └── test_client: app + overrides (db, gateway, push, broadcaster)
"""

import os

# Settings are read at import time: configure before any app import
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["STRIPE_SECRET_KEY"] = "sk_test_not_real"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"
os.environ["STRIPE_MONTHLY_PRICE_ID"] = "price_monthly_test"
os.environ["STRIPE_YEARLY_PRICE_ID"] = "price_yearly_test"
os.environ["FRONTEND_URL"] = "http://localhost:3000"
os.environ["JWT_SECRET"] = "test-jwt-secret"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["RETRY_MIN_WAIT"] = "0"
os.environ["RETRY_MAX_WAIT"] = "1"
os.environ["LOG_LEVEL"] = "WARNING"

import random  # noqa: E402
import uuid  # noqa: E402
from datetime import datetime, timezone  # noqa: E402
from unittest.mock import AsyncMock, MagicMock  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

import app.models  # noqa: E402,F401
from app.database import Base, build_session_factory, get_db_session  # noqa: E402
from app.models.user import User  # noqa: E402
from app.security import create_access_token  # noqa: E402
from app.services.payment_gateway import (  # noqa: E402
    CheckoutSession,
    GatewaySubscription,
    PaymentGateway,
)
from app.services.push_service import PushService  # noqa: E402


# ══════════════════════════════════════════════════════════════════════════
# Database
# ══════════════════════════════════════════════════════════════════════════

@pytest_asyncio.fixture
async def engine():
    # StaticPool: every session shares the one in-memory database
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest_asyncio.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def make_user(db_session):
    """
    Insert a user and return it.

    Usage:
        user = await make_user(fcm_token="tok-1")
    """
    async def _make_user(**overrides) -> User:
        user_id = overrides.pop("id", uuid.uuid4())
        fields = {
            "email": f"{user_id.hex[:10]}@example.com",
            "first_name": "Test",
            "last_name": "User",
            "is_admin": False,
            "fcm_token": None,
            "created_at": datetime.now(timezone.utc),
        }
        fields.update(overrides)
        user = User(id=user_id, **fields)
        db_session.add(user)
        await db_session.commit()
        return user

    return _make_user


@pytest.fixture
def auth_headers():
    """Bearer header for a user: `auth_headers(user)`."""
    def _auth_headers(user: User) -> dict:
        return {"Authorization": f"Bearer {create_access_token(user.id)}"}

    return _auth_headers


# ══════════════════════════════════════════════════════════════════════════
# External Collaborators
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def fake_gateway():
    """
    PaymentGateway double.

    Defaults describe a paid monthly checkout for an active subscription;
    tests override return values/side effects as needed.
    """
    gateway = MagicMock(spec=PaymentGateway)
    gateway.create_checkout_session = AsyncMock(
        return_value=CheckoutSession(id="cs_test_123", url="https://checkout.stripe.com/c/pay/cs_test_123")
    )
    gateway.retrieve_session = AsyncMock()
    gateway.retrieve_subscription = AsyncMock(
        return_value=GatewaySubscription(
            id="sub_123",
            status="active",
            customer_id="cus_123",
            current_period_start=datetime(2030, 1, 1, tzinfo=timezone.utc),
            current_period_end=datetime(2030, 2, 1, tzinfo=timezone.utc),
        )
    )
    gateway.cancel_at_period_end = AsyncMock(return_value=None)
    return gateway


@pytest.fixture
def fake_push():
    push = MagicMock(spec=PushService)
    push.send = AsyncMock(return_value="projects/test/messages/1")
    push.validate_token = AsyncMock(return_value=True)
    return push


@pytest.fixture
def seeded_rng():
    return random.Random(1234)


# ══════════════════════════════════════════════════════════════════════════
# HTTP Client
# ══════════════════════════════════════════════════════════════════════════

@pytest_asyncio.fixture
async def test_client(session_factory, fake_gateway, fake_push):
    """
    HTTPX AsyncClient talking to a fresh app.

    The lifespan is not run, so the scheduler never starts. The app's
    broadcaster is rebuilt on the test database and fake push service.
    """
    from app.dependencies import get_broadcaster, get_payment_gateway, get_push_service
    from app.main import create_app
    from app.services.affirmation_scheduler import AffirmationBroadcaster

    application = create_app()
    broadcaster = AffirmationBroadcaster(session_factory, fake_push, batch_size=2)

    async def _db_override():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    application.dependency_overrides[get_db_session] = _db_override
    application.dependency_overrides[get_payment_gateway] = lambda: fake_gateway
    application.dependency_overrides[get_push_service] = lambda: fake_push
    application.dependency_overrides[get_broadcaster] = lambda: broadcaster

    transport = ASGITransport(app=application)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
