"""
BaiTech SQLAlchemy Models
=========================

Central import point for all ORM models. Import ``Base`` from here for the
``create_all`` convenience in tests and the seed script.

Usage::

    from baitech.models import Base, User, PricingConfig, Booking
"""

# -- Base & Mixins --
from .base import Base, TimestampMixin, UUIDPrimaryKeyMixin

# -- Taxonomy --
from .taxonomy import ServiceCategory, UrgencyLevel

# -- Users --
from .user import (
    SubscriptionPlan,
    SubscriptionStatus,
    User,
    UserRole,
    UserStatus,
)

# -- Pricing --
from .pricing import PricingConfig

# -- Matching --
from .matching import Matching, MatchingPreference, MatchStatus

# -- Bookings --
from .booking import Booking, BookingFeeStatus, BookingSource, BookingStatus

__all__ = [
    # Base
    "Base",
    "TimestampMixin",
    "UUIDPrimaryKeyMixin",
    # Taxonomy
    "ServiceCategory",
    "UrgencyLevel",
    # Users
    "SubscriptionPlan",
    "SubscriptionStatus",
    "User",
    "UserRole",
    "UserStatus",
    # Pricing
    "PricingConfig",
    # Matching
    "Matching",
    "MatchingPreference",
    "MatchStatus",
    # Bookings
    "Booking",
    "BookingFeeStatus",
    "BookingSource",
    "BookingStatus",
]
