"""
SQLAlchemy model for the users table.

The pricing and matching core only reads the directory fields it needs:
role, status, location, rating, stats, skills, availability and subscription.
"""

import enum
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import Boolean, DateTime, Enum, Float, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, JSONDocument, TimestampMixin, UUIDPrimaryKeyMixin, as_utc


class UserRole(str, enum.Enum):
    CUSTOMER = "customer"
    TECHNICIAN = "technician"
    ADMIN = "admin"
    SUPPORT = "support"


class UserStatus(str, enum.Enum):
    ACTIVE = "active"
    SUSPENDED = "suspended"
    DEACTIVATED = "deactivated"


class SubscriptionPlan(str, enum.Enum):
    FREE = "free"
    PRO = "pro"
    PREMIUM = "premium"


class SubscriptionStatus(str, enum.Enum):
    ACTIVE = "active"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    PAST_DUE = "past_due"


# Ranking boost per plan while the subscription is current.
SUBSCRIPTION_BOOST: dict[SubscriptionPlan, float] = {
    SubscriptionPlan.FREE: 1.0,
    SubscriptionPlan.PRO: 1.5,
    SubscriptionPlan.PREMIUM: 2.0,
}


def subscription_is_current(
    status: Optional[SubscriptionStatus],
    end_date: Optional[datetime],
    now: datetime,
) -> bool:
    """An active subscription whose end date (if any) is still in the future."""
    if status != SubscriptionStatus.ACTIVE:
        return False
    end = as_utc(end_date)
    return end is None or end > now


def subscription_boost(
    plan: Optional[SubscriptionPlan],
    status: Optional[SubscriptionStatus],
    end_date: Optional[datetime],
    now: datetime,
) -> float:
    if plan is None or not subscription_is_current(status, end_date, now):
        return 1.0
    return SUBSCRIPTION_BOOST.get(plan, 1.0)


class User(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "users"

    # Identity
    email: Mapped[str] = mapped_column(String(320), unique=True, nullable=False)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)

    # Role & status
    role: Mapped[UserRole] = mapped_column(
        Enum(UserRole, name="user_role"), nullable=False, default=UserRole.CUSTOMER
    )
    status: Mapped[UserStatus] = mapped_column(
        Enum(UserStatus, name="user_status"), nullable=False, default=UserStatus.ACTIVE
    )
    is_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Location (last known)
    latitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    longitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    # Rating
    rating_average: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    rating_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Stats
    experience_years: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    completed_bookings: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_bookings: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    avg_response_time_min: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    completion_rate: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    hourly_rate: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)

    # Technician profile
    skills: Mapped[list[Any]] = mapped_column(JSONDocument, nullable=False, default=list)
    availability: Mapped[list[Any]] = mapped_column(
        JSONDocument, nullable=False, default=list
    )

    # Subscription
    subscription_plan: Mapped[SubscriptionPlan] = mapped_column(
        Enum(SubscriptionPlan, name="subscription_plan"),
        nullable=False,
        default=SubscriptionPlan.FREE,
    )
    subscription_status: Mapped[SubscriptionStatus] = mapped_column(
        Enum(SubscriptionStatus, name="subscription_status"),
        nullable=False,
        default=SubscriptionStatus.ACTIVE,
    )
    subscription_end_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email!r}, role={self.role})>"
