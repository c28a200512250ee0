"""
Test configuration and fixtures.

Provides:
- In-memory SQLite database, schema created per test
- Users, a companion profile and JWT session tokens
- In-process Redis double for cache and counter tests
- Fake payment and calendar providers
- HTTPX AsyncClient with dependency overrides
"""
import os
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from fnmatch import fnmatch
from typing import AsyncGenerator, Generator

# Configure before the application modules read settings
os.environ["TESTING"] = "1"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["FERNET_KEY"] = "YWFhYWFhYWFhYWFhYWFhYWFhYWFhYWFhYWFhYWFhYWE="
os.environ["INTERNAL_SECRET"] = "test-internal-secret"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test"
os.environ.pop("REDIS_URL", None)

import pytest
from httpx import ASGITransport, AsyncClient
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from positivenrg.core.cache import CacheClient
from positivenrg.core.deps import (
    COOKIE_NAME,
    get_cache,
    get_calendar_provider,
    get_db,
    get_payment_provider,
)
from positivenrg.core.errors import UpstreamError
from positivenrg.core.security import create_session_token
from positivenrg.db.base import Base
from positivenrg.db.enums import Role
from positivenrg.db.models import HumanCompanion, User
from positivenrg.main import app
from positivenrg.schemas.auth import Actor
from positivenrg.services.calendar_service import BusyWindow
from positivenrg.services.payment_service import PaymentIntentHandle


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture(scope="function")
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture(scope="function")
def db(engine) -> Generator[Session, None, None]:
    """Session on a fresh in-memory schema. App code may commit freely."""
    session = sessionmaker(bind=engine, autoflush=False)()
    yield session
    session.close()


def _make_user(db: Session, name: str, role: Role = Role.USER) -> User:
    user = User(
        id=uuid.uuid4(),
        email=f"{name}-{uuid.uuid4().hex[:8]}@test.com",
        name=name.title(),
        role=role.value,
        token_version=1,
    )
    db.add(user)
    db.commit()
    return user


@pytest.fixture
def booker(db: Session) -> User:
    return _make_user(db, "booker")


@pytest.fixture
def other_user(db: Session) -> User:
    return _make_user(db, "other")


@pytest.fixture
def companion_user(db: Session) -> User:
    return _make_user(db, "companion")


@pytest.fixture
def admin_user(db: Session) -> User:
    return _make_user(db, "admin", Role.ADMIN)


@pytest.fixture
def companion(db: Session, companion_user: User) -> HumanCompanion:
    """Active companion at 5000/hour with a 30 minute minimum, in UTC."""
    profile = HumanCompanion(
        id=uuid.uuid4(),
        user_id=companion_user.id,
        display_name="Sam",
        bio="Good listener",
        price_per_hour=5000,
        currency="GBP",
        minimum_duration=30,
        timezone="UTC",
        details={"schema_version": 1, "tags": ["listening"]},
        is_active=True,
        is_available=True,
        is_verified=True,
    )
    db.add(profile)
    db.commit()
    return profile


def actor_for(user: User) -> Actor:
    return Actor(user_id=user.id, role=Role(user.role), email=user.email, name=user.name)


@pytest.fixture
def slot_start() -> datetime:
    """A Monday 10:00 UTC well in the future."""
    return datetime(2030, 1, 7, 10, 0, tzinfo=timezone.utc)


@pytest.fixture
def slot_end(slot_start: datetime) -> datetime:
    return slot_start + timedelta(hours=1)


# =============================================================================
# Redis / Provider Doubles
# =============================================================================

class FakeRedis:
    """In-process stand-in for the redis-py calls the cache makes."""

    def __init__(self):
        self.store: dict[str, object] = {}
        self.ttls: dict[str, int] = {}

    def get(self, key):
        value = self.store.get(key)
        if isinstance(value, int):
            return str(value).encode()
        return value

    def setex(self, key, ttl, value):
        self.store[key] = value.encode() if isinstance(value, str) else value
        self.ttls[key] = ttl

    def delete(self, *keys):
        removed = 0
        for key in keys:
            if self.store.pop(key, None) is not None:
                removed += 1
            self.ttls.pop(key, None)
        return removed

    def scan_iter(self, match="*"):
        return [key for key in list(self.store) if fnmatch(key, match)]

    def incr(self, key):
        self.store[key] = int(self.store.get(key, 0)) + 1
        return self.store[key]

    def expire(self, key, ttl, nx=False):
        if nx and key in self.ttls:
            return False
        self.ttls[key] = ttl
        return True

    def pipeline(self, transaction=True):
        return FakePipeline(self)


class FakePipeline:
    """Queues commands and applies them on execute, like a MULTI block."""

    def __init__(self, redis):
        self.redis = redis
        self.commands = []

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.commands = []

    def incr(self, key):
        self.commands.append(("incr", (key,), {}))
        return self

    def expire(self, key, ttl, nx=False):
        self.commands.append(("expire", (key, ttl), {"nx": nx}))
        return self

    def execute(self):
        results = [getattr(self.redis, name)(*args, **kwargs) for name, args, kwargs in self.commands]
        self.commands = []
        return results


class BrokenRedis:
    """Every call fails the way an unreachable server does."""

    def __getattr__(self, name):
        def fail(*args, **kwargs):
            raise RedisConnectionError("connection refused")

        return fail


@dataclass
class FakePaymentProvider:
    intents: list[dict] = field(default_factory=list)
    refunds: list[tuple[str, int]] = field(default_factory=list)
    fail: bool = False
    intent_status: str = "requires_payment_method"

    def create_payment_intent(self, amount, currency, metadata, idempotency_key=None):
        if self.fail:
            raise UpstreamError("Payment provider unavailable", service="stripe")
        intent_id = f"pi_test_{len(self.intents) + 1}"
        self.intents.append(
            {"id": intent_id, "amount": amount, "currency": currency, "metadata": metadata}
        )
        return PaymentIntentHandle(
            id=intent_id, client_secret=f"{intent_id}_secret", status=self.intent_status
        )

    def retrieve_payment_intent(self, payment_intent_id):
        return PaymentIntentHandle(
            id=payment_intent_id,
            client_secret=f"{payment_intent_id}_secret",
            status=self.intent_status,
        )

    def refund(self, payment_intent_id, amount):
        if self.fail:
            raise UpstreamError("Refund failed", service="stripe")
        self.refunds.append((payment_intent_id, amount))
        return f"re_test_{len(self.refunds)}"


@dataclass
class FakeCalendarProvider:
    busy: list[BusyWindow] = field(default_factory=list)
    fail: bool = False
    calls: int = 0

    def get_busy_windows(self, companion, start, end):
        self.calls += 1
        if self.fail:
            raise UpstreamError("Calendar request failed", service="google_calendar")
        return list(self.busy)


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def cache(fake_redis: FakeRedis) -> CacheClient:
    return CacheClient(fake_redis)


@pytest.fixture
def payments() -> FakePaymentProvider:
    return FakePaymentProvider()


@pytest.fixture
def calendar() -> FakeCalendarProvider:
    return FakeCalendarProvider()


# =============================================================================
# Auth / Client Fixtures
# =============================================================================

@dataclass
class TestAuth:
    """Test authentication context."""
    user: User
    token: str
    cookie_name: str = COOKIE_NAME


def auth_for(user: User) -> TestAuth:
    token = create_session_token(
        user_id=user.id,
        role=user.role,
        token_version=user.token_version,
    )
    return TestAuth(user=user, token=token)


@pytest.fixture
def override_deps(db: Session, cache: CacheClient, payments, calendar):
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_cache] = lambda: cache
    app.dependency_overrides[get_payment_provider] = lambda: payments
    app.dependency_overrides[get_calendar_provider] = lambda: calendar
    yield
    app.dependency_overrides.clear()


@pytest.fixture
async def client(override_deps) -> AsyncGenerator[AsyncClient, None]:
    """Unauthenticated AsyncClient for public endpoints."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c


@pytest.fixture
def client_for(override_deps):
    """
    Factory for authenticated clients with JWT cookie and CSRF header.

    Usage:
        async with client_for(booker) as c: ...
    """
    def make(user: User) -> AsyncClient:
        auth = auth_for(user)
        return AsyncClient(
            transport=ASGITransport(app=app),
            base_url="http://test",
            cookies={auth.cookie_name: auth.token},
            headers={"X-Requested-With": "XMLHttpRequest"},  # CSRF header
        )

    return make
