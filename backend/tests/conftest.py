"""Shared test configuration and fixtures.

Every test gets a fresh SQLite database file (aiosqlite) with all tables
created, so tests that open several sessions (the reconciliation job) see
each other's committed writes exactly as they would on PostgreSQL.
"""

import asyncio
import uuid
from collections.abc import AsyncGenerator
from datetime import datetime

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from dashboard.auth.jwt import create_token_pair
from dashboard.auth.passwords import hash_password
from dashboard.billing.dependencies import get_billing_gateway
from dashboard.billing.gateway import InvoicePreview, SubscriptionSnapshot
from dashboard.database import Base, get_db
from dashboard.main import app
from dashboard.models.subscription import Subscription
from dashboard.models.user import User


class FakeBillingGateway:
    """In-memory BillingGateway that records every call in order.

    ``fail_operations`` makes an operation answer False for every ref;
    ``fail_refs`` does the same for every operation on one ref; ``raise_for_refs``
    makes calls on a ref raise instead (e.g. a timeout escaping the adapter).
    """

    def __init__(self) -> None:
        self.calls: list[tuple[str, str]] = []
        self.fail_operations: set[str] = set()
        self.fail_refs: set[str] = set()
        self.raise_for_refs: dict[str, Exception] = {}
        self.snapshots: dict[str, SubscriptionSnapshot] = {}
        self.invoices: dict[str, InvoicePreview] = {}
        self.delay: float = 0.0
        self.in_flight = 0
        self.max_in_flight = 0

    @property
    def operations(self) -> list[str]:
        return [operation for operation, _ in self.calls]

    async def _mutate(self, operation: str, ref: str) -> bool:
        self.calls.append((operation, ref))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if ref in self.raise_for_refs:
                raise self.raise_for_refs[ref]
            return operation not in self.fail_operations and ref not in self.fail_refs
        finally:
            self.in_flight -= 1

    async def cancel_at_period_end(self, subscription_ref: str) -> bool:
        return await self._mutate("cancel_at_period_end", subscription_ref)

    async def resume_auto_renew(self, subscription_ref: str) -> bool:
        return await self._mutate("resume_auto_renew", subscription_ref)

    async def pause_collection(self, subscription_ref: str) -> bool:
        return await self._mutate("pause_collection", subscription_ref)

    async def resume_collection(self, subscription_ref: str) -> bool:
        return await self._mutate("resume_collection", subscription_ref)

    async def fetch_subscription(self, subscription_ref: str) -> SubscriptionSnapshot | None:
        self.calls.append(("fetch_subscription", subscription_ref))
        return self.snapshots.get(subscription_ref)

    async def fetch_upcoming_invoice(self, customer_ref: str) -> InvoicePreview | None:
        self.calls.append(("fetch_upcoming_invoice", customer_ref))
        return self.invoices.get(customer_ref)


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def test_engine(tmp_path):
    """Engine on a throwaway SQLite file with all tables created."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def gateway() -> FakeBillingGateway:
    return FakeBillingGateway()


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------


@pytest.fixture
def make_user(db_session: AsyncSession):
    """Async factory for users (owners by default)."""

    async def _make_user(role: str = "owner", is_active: bool = True) -> User:
        unique = uuid.uuid4().hex[:8]
        user = User(
            email=f"user-{unique}@test.com",
            hashed_password=hash_password("testpass123"),
            name="Test User",
            is_active=is_active,
            role=role,
        )
        db_session.add(user)
        await db_session.flush()
        return user

    return _make_user


@pytest.fixture
def make_subscription(db_session: AsyncSession, make_user):
    """Async factory for an owner plus subscription.

    Defaults to an active paid subscription with Stripe references.
    """

    async def _make_subscription(
        owner: User | None = None,
        status: str = "active",
        billing: bool = True,
        paused_at: datetime | None = None,
        pause_ends_at: datetime | None = None,
        cancel_at_period_end: bool = False,
        plan: str = "growth",
    ) -> Subscription:
        owner = owner or await make_user()
        unique = uuid.uuid4().hex[:8]
        subscription = Subscription(
            owner_id=owner.id,
            owner=owner,
            plan=plan,
            status=status,
            stripe_customer_id=f"cus_{unique}" if billing else None,
            stripe_subscription_id=f"sub_{unique}" if billing else None,
            current_period_start=datetime(2026, 2, 15),
            current_period_end=datetime(2026, 3, 15),
            paused_at=paused_at,
            pause_ends_at=pause_ends_at,
            cancel_at_period_end=cancel_at_period_end,
            version=1,
        )
        db_session.add(subscription)
        await db_session.flush()
        return subscription

    return _make_subscription


@pytest.fixture
def auth_headers_for():
    """Build Authorization headers for a user."""

    def _headers(user: User) -> dict[str, str]:
        tokens = create_token_pair(str(user.id))
        return {"Authorization": f"Bearer {tokens['access_token']}"}

    return _headers


# ---------------------------------------------------------------------------
# HTTP client
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def client(
    db_session: AsyncSession, gateway: FakeBillingGateway
) -> AsyncGenerator[AsyncClient, None]:
    """httpx AsyncClient wired to the test DB session and the fake gateway."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_billing_gateway] = lambda: gateway

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac

    app.dependency_overrides.clear()
