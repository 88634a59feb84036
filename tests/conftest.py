"""
Shared pytest fixtures for BaiTech unit tests.

Provides mock database sessions, the default pricing ruleset and sample
users that mirror production ORM models without a live database.
"""

import json
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from baitech.models.matching import Matching, MatchingPreference, MatchStatus
from baitech.models.taxonomy import ServiceCategory, UrgencyLevel
from baitech.models.user import (
    SubscriptionPlan,
    SubscriptionStatus,
    User,
    UserRole,
    UserStatus,
)
from baitech.services.pricingConfigService import ActivePricingConfig
from baitech.services.pricingRules import PricingRules

SEED_FILE = Path(__file__).resolve().parent.parent / "seeds" / "pricing_config.json"

# Wednesday 2026-10-21 09:00 UTC == 12:00 in Nairobi, outside every time surcharge
WEEKDAY_NOON = datetime(2026, 10, 21, 9, 0, tzinfo=timezone.utc)
# Saturday 2026-10-24 09:00 UTC == 12:00 in Nairobi, weekend surcharge
SATURDAY_NOON = datetime(2026, 10, 24, 9, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Database session mock
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_db() -> AsyncMock:
    """Async mock of ``AsyncSession``.

    Supports ``db.execute()``, ``db.add()``, ``db.flush()`` and
    ``db.commit()`` out of the box. Tests configure
    ``mock_db.execute.return_value`` to control query results.
    """
    session = AsyncMock()
    session.add = MagicMock()
    session.flush = AsyncMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    return session


def scalar_result(value):
    """A mock ``Result`` whose ``scalar_one_or_none()`` returns *value*."""
    result = MagicMock()
    result.scalar_one_or_none.return_value = value
    result.scalar_one.return_value = value
    return result


def scalars_result(values):
    """A mock ``Result`` whose ``scalars().all()`` returns *values*."""
    result = MagicMock()
    result.scalars.return_value.all.return_value = list(values)
    return result


# ---------------------------------------------------------------------------
# Pricing configuration
# ---------------------------------------------------------------------------


@pytest.fixture
def default_rules() -> PricingRules:
    """The default Kenyan ruleset shipped in seeds/pricing_config.json."""
    with open(SEED_FILE, encoding="utf-8") as fh:
        return PricingRules.model_validate(json.load(fh)["rules"])


@pytest.fixture
def active_config(default_rules: PricingRules) -> ActivePricingConfig:
    return ActivePricingConfig(
        id=uuid.uuid4(),
        version=3,
        name="Default Pricing Configuration",
        rules=default_rules,
    )


# ---------------------------------------------------------------------------
# User fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def sample_customer() -> User:
    """A returning customer in Nairobi CBD."""
    user = MagicMock(spec=User)
    user.id = uuid.uuid4()
    user.email = "wanjiru@example.co.ke"
    user.first_name = "Wanjiru"
    user.last_name = "Kamau"
    user.role = UserRole.CUSTOMER
    user.status = UserStatus.ACTIVE
    user.latitude = -1.2864
    user.longitude = 36.8172
    user.total_bookings = 3
    return user


def make_technician(
    *,
    latitude: float = -1.2921,
    longitude: float = 36.8219,
    category: ServiceCategory = ServiceCategory.PLUMBING,
    rating_average: float = 4.5,
    rating_count: int = 20,
    experience_years: int = 6,
    completed_bookings: int = 60,
    plan: SubscriptionPlan = SubscriptionPlan.FREE,
    first_name: str = "Otieno",
) -> User:
    """A MagicMock technician with a full directory profile."""
    user = MagicMock(spec=User)
    user.id = uuid.uuid4()
    user.email = f"{first_name.lower()}@example.co.ke"
    user.first_name = first_name
    user.last_name = "Fundi"
    user.role = UserRole.TECHNICIAN
    user.status = UserStatus.ACTIVE
    user.is_verified = True
    user.latitude = latitude
    user.longitude = longitude
    user.rating_average = rating_average
    user.rating_count = rating_count
    user.experience_years = experience_years
    user.completed_bookings = completed_bookings
    user.total_bookings = completed_bookings + 2
    user.avg_response_time_min = 15.0
    user.completion_rate = 95.0
    user.hourly_rate = Decimal("900.00")
    user.skills = [
        {
            "category": category.value,
            "name": "General",
            "years_of_experience": experience_years,
            "verified": True,
        }
    ]
    user.availability = [
        {"day_of_week": d, "start_time": "08:00", "end_time": "18:00", "is_available": True}
        for d in range(1, 6)
    ]
    user.subscription_plan = plan
    user.subscription_status = SubscriptionStatus.ACTIVE
    user.subscription_end_date = None
    return user


@pytest.fixture
def sample_technician() -> User:
    """A Senior-tier plumber about 0.8 km from Nairobi CBD."""
    return make_technician()


# ---------------------------------------------------------------------------
# Matching fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def sample_preferences(sample_customer) -> MatchingPreference:
    prefs = MagicMock(spec=MatchingPreference)
    prefs.user_id = sample_customer.id
    prefs.max_distance_km = 50.0
    prefs.min_rating = None
    prefs.custom_weights = None
    prefs.preferred_technician_ids = []
    prefs.blocked_technicians = []
    prefs.blocked_ids = set()
    prefs.total_matches = 0
    prefs.successful_bookings = 0
    prefs.last_match_request = None
    return prefs


@pytest.fixture
def sample_matching(sample_customer, sample_technician) -> Matching:
    matching = MagicMock(spec=Matching)
    matching.id = uuid.uuid4()
    matching.session_id = uuid.uuid4()
    matching.customer_id = sample_customer.id
    matching.technician_id = sample_technician.id
    matching.service_category = ServiceCategory.PLUMBING
    matching.latitude = -1.2864
    matching.longitude = 36.8172
    matching.urgency = UrgencyLevel.MEDIUM
    matching.description = "Leaking kitchen pipe"
    matching.status = MatchStatus.SUGGESTED
    matching.booking_id = None
    matching.viewed_at = None
    matching.responded_at = None
    matching.expires_at = datetime(2026, 10, 24, 9, 0, tzinfo=timezone.utc)
    return matching
