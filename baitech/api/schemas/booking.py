"""
Pydantic v2 schemas for the Bookings API.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from baitech.models.booking import (
    Booking,
    BookingFeeStatus,
    BookingSource,
    BookingStatus,
)
from baitech.models.taxonomy import ServiceCategory, UrgencyLevel


class CreateBookingRequest(BaseModel):
    """Direct booking without going through matching."""

    service_category: str = Field(min_length=1, max_length=50, description="Case-insensitive")
    service_type: Optional[str] = Field(default=None, max_length=200)
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    urgency: Optional[UrgencyLevel] = None
    scheduled_at: Optional[datetime] = None
    description: Optional[str] = Field(default=None, max_length=2000)
    estimated_duration_hours: Optional[float] = Field(default=None, gt=0)
    preferred_technician_id: Optional[uuid.UUID] = None


class ConfirmBookingFeeRequest(BaseModel):
    payment_reference: Optional[str] = Field(default=None, max_length=100)


def _without_technician(pricing: dict[str, Any]) -> dict[str, Any]:
    details = pricing.get("details") or {}
    if "technician" not in details:
        return pricing
    details = {k: v for k, v in details.items() if k != "technician"}
    return {**pricing, "details": details}


class BookingFeeStateOut(BaseModel):
    percentage: int
    amount: float
    status: BookingFeeStatus
    paid_at: Optional[datetime] = None
    released_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None


class BookingOut(BaseModel):
    id: uuid.UUID
    booking_number: str
    customer_id: uuid.UUID
    technician_id: Optional[uuid.UUID] = Field(
        default=None, description="Hidden from the customer until the booking fee is held"
    )
    matching_id: Optional[uuid.UUID] = None
    service_category: ServiceCategory
    service_type: str
    description: Optional[str] = None
    urgency: UrgencyLevel
    scheduled_at: Optional[datetime] = None
    status: BookingStatus
    source: BookingSource
    currency: str
    total_amount: float
    config_version: int
    booking_fee: BookingFeeStateOut
    pricing: dict[str, Any]
    created_at: Optional[datetime] = None

    @classmethod
    def from_booking(cls, booking: Booking, *, viewer_id: uuid.UUID) -> "BookingOut":
        """Render a booking for ``viewer_id``; the customer sees the technician
        only once the fee is held."""
        pricing = booking.pricing
        if viewer_id == booking.customer_id:
            technician_id = booking.visible_technician_id
            if technician_id is None:
                pricing = _without_technician(pricing)
        else:
            technician_id = booking.technician_id
        return cls(
            id=booking.id,
            booking_number=booking.booking_number,
            customer_id=booking.customer_id,
            technician_id=technician_id,
            matching_id=booking.matching_id,
            service_category=booking.service_category,
            service_type=booking.service_type,
            description=booking.description,
            urgency=booking.urgency,
            scheduled_at=booking.scheduled_at,
            status=booking.status,
            source=booking.source,
            currency=booking.currency,
            total_amount=float(booking.total_amount),
            config_version=booking.config_version,
            booking_fee=BookingFeeStateOut(
                percentage=booking.booking_fee_percentage,
                amount=float(booking.booking_fee_amount),
                status=booking.booking_fee_status,
                paid_at=booking.booking_fee_paid_at,
                released_at=booking.booking_fee_released_at,
                refunded_at=booking.booking_fee_refunded_at,
            ),
            pricing=pricing,
            created_at=booking.created_at,
        )
