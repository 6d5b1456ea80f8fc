"""Shared test fixtures: single in-memory test DB, frozen clock, seeded account."""
from __future__ import annotations

import os

os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")

from datetime import datetime, timezone

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession

# Use a shared in-memory DB with check_same_thread=False and StaticPool
# This ensures all connections see the same in-memory database.
from sqlalchemy.pool import StaticPool

from config.settings import settings
from src.db.tables import Base
from src.db.engine import get_session
import src.db.affiliate_tables  # noqa: F401
from src.services.clock import FrozenClock, get_clock

TEST_DB_URL = "sqlite+aiosqlite:///file:test?mode=memory&cache=shared&uri=true"

T0 = datetime(2026, 3, 10, 12, 0, tzinfo=timezone.utc)
ADMIN_KEY = "test-admin-key"

test_engine = create_async_engine(
    TEST_DB_URL,
    echo=False,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestSession = async_sessionmaker(test_engine, expire_on_commit=False, class_=AsyncSession)


async def override_get_session():
    async with TestSession() as session:
        yield session


# Import app and override BEFORE any test module imports app
from src.api.main import app  # noqa: E402

app.dependency_overrides[get_session] = override_get_session


@pytest_asyncio.fixture(autouse=True)
async def setup_db():
    """Create tables before each test; dropping the pooled connection wipes them after."""
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield

    from src.middleware.metrics import metrics
    metrics.reset()

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await test_engine.dispose()


@pytest.fixture
def clock():
    """Frozen clock shared by the app (via dependency override) and the test."""
    frozen = FrozenClock(T0)
    app.dependency_overrides[get_clock] = lambda: frozen
    yield frozen
    app.dependency_overrides.pop(get_clock, None)


@pytest_asyncio.fixture
async def session():
    """A session for service-level tests. Not for use alongside `client`."""
    async with TestSession() as s:
        yield s


@pytest.fixture
def session_factory():
    return TestSession


@pytest.fixture
def t0():
    return T0


@pytest_asyncio.fixture
async def account(clock):
    """A committed affiliate account at the default 5% rate."""
    from src.services.accounts import create_affiliate_account

    async with TestSession() as s:
        acct = await create_affiliate_account(
            s, "Test Affiliate", "affiliate@example.com", "secret123", commission_rate=5, clock=clock,
        )
        await s.commit()
    return acct


@pytest.fixture
def auth_headers(account):
    from src.auth import create_access_token
    return {"Authorization": f"Bearer {create_access_token(account.id)}"}


@pytest.fixture
def admin_headers(monkeypatch):
    monkeypatch.setattr(settings, "ADMIN_API_KEY", ADMIN_KEY)
    return {"X-Admin-Key": ADMIN_KEY}


@pytest.fixture
def make_click(clock):
    """Record a click at the clock's current time and commit it."""
    from src.db.repository import ClickLedger

    async def _make(account, product_id="prod-1", platform="amazon", user_id=None):
        async with TestSession() as s:
            click = await ClickLedger(s, clock=clock).record_click(
                affiliate_id=account.affiliate_id,
                user_id=user_id or account.id,
                product_id=product_id,
                platform=platform,
                source_url="https://example.com/deals",
                redirect_url=f"https://www.amazon.in/dp/{product_id}?tag=smartcompare-20",
            )
            await s.commit()
        return click

    return _make


@pytest.fixture
def convert_click(clock):
    """Convert a click through the attribution engine at the clock's current time."""
    from src.services.attribution import AttributionEngine

    async def _convert(click_id, amount):
        async with TestSession() as s:
            result = await AttributionEngine(s, clock=clock).convert(click_id, amount)
            await s.commit()
        return result

    return _convert


@pytest_asyncio.fixture
async def client():
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
