"""
SQLAlchemy model for bookings and their escrowed booking fee.

The booking carries a frozen price breakdown snapshot taken when it was
created; later config versions never change it.
"""

import enum
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import DateTime, Enum, Float, ForeignKey, Integer, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, JSONDocument, TimestampMixin, UUIDPrimaryKeyMixin
from .taxonomy import ServiceCategory, UrgencyLevel


class BookingStatus(str, enum.Enum):
    PENDING = "pending"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    VERIFIED = "verified"
    CANCELLED = "cancelled"
    DISPUTED = "disputed"


class BookingSource(str, enum.Enum):
    DIRECT = "direct"
    AI_MATCHING = "ai_matching"


class BookingFeeStatus(str, enum.Enum):
    PENDING = "pending"
    HELD = "held"
    RELEASED = "released"
    REFUNDED = "refunded"


class Booking(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    __tablename__ = "bookings"

    booking_number: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)

    # Parties
    customer_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    technician_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True
    )
    preferred_technician_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    matching_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("matchings.id", ondelete="SET NULL"), nullable=True
    )

    # Service
    service_category: Mapped[ServiceCategory] = mapped_column(
        Enum(ServiceCategory, name="service_category"), nullable=False
    )
    service_type: Mapped[str] = mapped_column(String(200), nullable=False, default="general")
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    latitude: Mapped[float] = mapped_column(Float, nullable=False)
    longitude: Mapped[float] = mapped_column(Float, nullable=False)
    urgency: Mapped[UrgencyLevel] = mapped_column(
        Enum(UrgencyLevel, name="urgency_level"), nullable=False
    )
    scheduled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    estimated_duration_hours: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    status: Mapped[BookingStatus] = mapped_column(
        Enum(BookingStatus, name="booking_status"), nullable=False, default=BookingStatus.PENDING
    )
    source: Mapped[BookingSource] = mapped_column(
        Enum(BookingSource, name="booking_source"), nullable=False, default=BookingSource.DIRECT
    )

    # Pricing snapshot
    pricing: Mapped[dict[str, Any]] = mapped_column(JSONDocument, nullable=False)
    config_version: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="KES")
    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    # Booking fee escrow
    booking_fee_percentage: Mapped[int] = mapped_column(Integer, nullable=False, default=20)
    booking_fee_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    booking_fee_status: Mapped[BookingFeeStatus] = mapped_column(
        Enum(BookingFeeStatus, name="booking_fee_status"),
        nullable=False,
        default=BookingFeeStatus.PENDING,
    )
    booking_fee_paid_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    booking_fee_released_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    booking_fee_refunded_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    payment_reference: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    @property
    def visible_technician_id(self) -> Optional[uuid.UUID]:
        """The technician as the customer may see it: hidden until the fee is held."""
        if self.booking_fee_status in (BookingFeeStatus.HELD, BookingFeeStatus.RELEASED):
            return self.technician_id
        return None

    def __repr__(self) -> str:
        return (
            f"<Booking(id={self.id}, number={self.booking_number!r}, "
            f"status={self.status}, fee={self.booking_fee_status})>"
        )
