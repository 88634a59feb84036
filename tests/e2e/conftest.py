"""
E2E test fixtures for the BaiTech API.

Provides:
- An in-process FastAPI test app with the pricing, matching and booking
  routes registered
- httpx AsyncClient wired via ASGI transport (no network needed)
- An async in-memory SQLite database per test for isolation
- Seed data: a customer, technicians around Nairobi, an admin and the
  default pricing configuration installed as version 1

Requests authenticate with real HS256 access tokens, so the full
route -> dependency -> service -> DB flow is exercised.
"""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator

import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from baitech.models import Base
from baitech.services.auth_service import create_access_token

from tests.conftest import SEED_FILE

# ---------------------------------------------------------------------------
# Test IDs (stable across tests so cross-references work)
# ---------------------------------------------------------------------------

CUSTOMER_ID = uuid.UUID("aaaaaaaa-aaaa-aaaa-aaaa-aaaaaaaaaaaa")
OTHER_CUSTOMER_ID = uuid.UUID("abababab-abab-abab-abab-abababababab")
PLUMBER_ID = uuid.UUID("bbbbbbbb-bbbb-bbbb-bbbb-bbbbbbbbbbbb")
PRO_PLUMBER_ID = uuid.UUID("cccccccc-cccc-cccc-cccc-cccccccccccc")
ELECTRICIAN_ID = uuid.UUID("eeeeeeee-eeee-eeee-eeee-eeeeeeeeeeee")
NAKURU_PLUMBER_ID = uuid.UUID("ffffffff-ffff-ffff-ffff-ffffffffffff")
ADMIN_ID = uuid.UUID("dddddddd-dddd-dddd-dddd-dddddddddddd")

# Nairobi CBD and two nearby neighbourhoods
CBD = {"latitude": -1.2864, "longitude": 36.8172}
WESTLANDS = {"latitude": -1.2676, "longitude": 36.8108}
KILIMANI = {"latitude": -1.2921, "longitude": 36.7856}

# Wednesday 12:00 in Nairobi, far enough ahead that the derived urgency is low
WEDNESDAY_NOON = "2030-01-16T09:00:00Z"

WEEKDAY_AVAILABILITY = [
    {"day_of_week": day, "start_time": "08:00", "end_time": "18:00", "is_available": True}
    for day in (1, 2, 3, 4, 5, 6)
]


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------

TEST_DB_URL = "sqlite+aiosqlite://"


@pytest_asyncio.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield a session bound to a fresh in-memory database."""
    engine = create_async_engine(
        TEST_DB_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    async with session_factory() as session:
        yield session
        await session.rollback()

    await engine.dispose()


# ---------------------------------------------------------------------------
# Seed data
# ---------------------------------------------------------------------------

async def _seed_users(db: AsyncSession) -> None:
    from baitech.models.user import (
        SubscriptionPlan,
        SubscriptionStatus,
        User,
        UserRole,
    )

    now = datetime.now(timezone.utc)

    customer = User(
        id=CUSTOMER_ID,
        email="amina@test.baitech.co.ke",
        first_name="Amina",
        last_name="Njeri",
        role=UserRole.CUSTOMER,
        latitude=CBD["latitude"],
        longitude=CBD["longitude"],
        total_bookings=3,
    )
    other_customer = User(
        id=OTHER_CUSTOMER_ID,
        email="peter@test.baitech.co.ke",
        first_name="Peter",
        last_name="Kamau",
        role=UserRole.CUSTOMER,
        total_bookings=0,
    )
    # Standard tier: 4 years, 4.2 stars, 30 jobs
    plumber = User(
        id=PLUMBER_ID,
        email="brian@test.baitech.co.ke",
        first_name="Brian",
        last_name="Otieno",
        role=UserRole.TECHNICIAN,
        is_verified=True,
        latitude=WESTLANDS["latitude"],
        longitude=WESTLANDS["longitude"],
        rating_average=4.2,
        rating_count=18,
        experience_years=4,
        completed_bookings=30,
        total_bookings=32,
        avg_response_time_min=20.0,
        completion_rate=93.0,
        hourly_rate=800,
        skills=[{"category": "plumbing", "years_of_experience": 4, "verified": True}],
        availability=WEEKDAY_AVAILABILITY,
    )
    # Senior tier with an active Pro subscription
    pro_plumber = User(
        id=PRO_PLUMBER_ID,
        email="grace@test.baitech.co.ke",
        first_name="Grace",
        last_name="Wanjiku",
        role=UserRole.TECHNICIAN,
        is_verified=True,
        latitude=KILIMANI["latitude"],
        longitude=KILIMANI["longitude"],
        rating_average=4.6,
        rating_count=64,
        experience_years=6,
        completed_bookings=60,
        total_bookings=63,
        avg_response_time_min=10.0,
        completion_rate=95.0,
        hourly_rate=1200,
        skills=[{"category": "plumbing", "years_of_experience": 6, "verified": True}],
        availability=WEEKDAY_AVAILABILITY,
        subscription_plan=SubscriptionPlan.PRO,
        subscription_status=SubscriptionStatus.ACTIVE,
        subscription_end_date=now + timedelta(days=30),
    )
    electrician = User(
        id=ELECTRICIAN_ID,
        email="kevin@test.baitech.co.ke",
        first_name="Kevin",
        last_name="Mwangi",
        role=UserRole.TECHNICIAN,
        latitude=WESTLANDS["latitude"],
        longitude=WESTLANDS["longitude"],
        rating_average=4.8,
        rating_count=40,
        experience_years=9,
        skills=[{"category": "electrical", "years_of_experience": 9, "verified": True}],
    )
    nakuru_plumber = User(
        id=NAKURU_PLUMBER_ID,
        email="james@test.baitech.co.ke",
        first_name="James",
        last_name="Kiprop",
        role=UserRole.TECHNICIAN,
        latitude=-0.3031,
        longitude=36.0800,
        rating_average=4.9,
        rating_count=120,
        experience_years=12,
        skills=[{"category": "plumbing", "years_of_experience": 12, "verified": True}],
    )
    admin = User(
        id=ADMIN_ID,
        email="ops@test.baitech.co.ke",
        first_name="Ops",
        last_name="Admin",
        role=UserRole.ADMIN,
    )

    db.add_all([customer, other_customer, plumber, pro_plumber, electrician, nakuru_plumber, admin])
    await db.flush()


async def _seed_pricing(db: AsyncSession) -> None:
    from baitech.services.pricingConfigService import bootstrap_config

    with open(SEED_FILE, encoding="utf-8") as fh:
        seed = json.load(fh)
    await bootstrap_config(db, seed["rules"], name=seed["name"], notes=seed.get("notes"))


@pytest_asyncio.fixture
async def seeded_db(db_session: AsyncSession) -> AsyncSession:
    """A database session with users and the v1 pricing configuration."""
    await _seed_users(db_session)
    await _seed_pricing(db_session)
    await db_session.commit()
    return db_session


@pytest_asyncio.fixture
async def unpriced_db(db_session: AsyncSession) -> AsyncSession:
    """Users only; no pricing configuration has been installed."""
    await _seed_users(db_session)
    await db_session.commit()
    return db_session


# ---------------------------------------------------------------------------
# FastAPI test application
# ---------------------------------------------------------------------------

def _create_test_app(db_session_override: AsyncSession):
    """Build a FastAPI app with all routes registered and the DB dependency
    overridden to use the test session."""
    from fastapi import FastAPI

    from baitech.api.deps import get_db
    from baitech.api.routes.bookings import router as bookings_router
    from baitech.api.routes.matching import router as matching_router
    from baitech.api.routes.pricing import router as pricing_router

    app = FastAPI(title="BaiTech Test")

    async def _override_get_db():
        try:
            yield db_session_override
            await db_session_override.commit()
        except Exception:
            await db_session_override.rollback()
            raise

    app.dependency_overrides[get_db] = _override_get_db

    app.include_router(pricing_router, prefix="/api/v1")
    app.include_router(matching_router, prefix="/api/v1")
    app.include_router(bookings_router, prefix="/api/v1")

    return app


@pytest_asyncio.fixture
async def client(seeded_db: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """httpx AsyncClient connected to the test app via ASGI transport."""
    app = _create_test_app(seeded_db)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest_asyncio.fixture
async def unpriced_client(unpriced_db: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    app = _create_test_app(unpriced_db)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def auth_headers(user_id: uuid.UUID) -> dict[str, str]:
    token, _ = create_access_token(user_id)
    return {"Authorization": f"Bearer {token}"}


async def find_plumbers(client: AsyncClient, **overrides):
    """POST /api/v1/matching/find-technicians as the seeded customer."""
    payload = {
        "service_category": "plumbing",
        "latitude": CBD["latitude"],
        "longitude": CBD["longitude"],
        "urgency": "low",
        "description": "Leaking kitchen pipe",
    }
    payload.update(overrides)
    return await client.post(
        "/api/v1/matching/find-technicians",
        json=payload,
        headers=auth_headers(CUSTOMER_ID),
    )


async def match_for(client: AsyncClient, technician_id: uuid.UUID) -> dict:
    """Run a search and return the suggestion for ``technician_id``."""
    resp = await find_plumbers(client)
    assert resp.status_code == 200
    for match in resp.json()["matches"]:
        if match["technician"]["id"] == str(technician_id):
            return match
    raise AssertionError(f"technician {technician_id} was not suggested")


async def backdate_expiry(db: AsyncSession, matching_id: str) -> None:
    """Push a suggestion's expiry into the past."""
    from baitech.models.matching import Matching

    await db.execute(
        update(Matching)
        .where(Matching.id == uuid.UUID(matching_id))
        .values(expires_at=datetime.now(timezone.utc) - timedelta(minutes=5))
    )
    await db.commit()
