"""
Bookings API Routes
===================

Routes:
  POST /api/v1/bookings                               -- Direct booking
  GET  /api/v1/bookings/{id}                          -- Booking detail
  POST /api/v1/bookings/{id}/booking-fee/confirm      -- Customer paid the fee (held)
  POST /api/v1/bookings/{id}/booking-fee/release      -- Admin: pay out held fee
  POST /api/v1/bookings/{id}/booking-fee/refund       -- Admin: refund held fee
"""

from __future__ import annotations

import uuid
from typing import Optional

from fastapi import APIRouter, HTTPException, status

from baitech.api.deps import AdminUser, CurrentUser, DBSession
from baitech.api.routes.pricing import parse_category
from baitech.api.schemas.booking import (
    BookingOut,
    ConfirmBookingFeeRequest,
    CreateBookingRequest,
)
from baitech.services import bookingService, matchingEngine
from baitech.services.geoService import GeoPoint
from baitech.services.pricingErrors import InvalidBookingFeeError, PricingErrorCode

router = APIRouter(prefix="/bookings", tags=["Bookings"])


BOOKING_ERRORS = (
    bookingService.BookingNotFoundError,
    bookingService.BookingNotAuthorizedError,
    bookingService.BookingPricingError,
    bookingService.BookingFeeTransitionError,
    InvalidBookingFeeError,
    matchingEngine.TechnicianNotFoundError,
)


def booking_error_to_http(exc: Exception) -> HTTPException:
    """Translate a booking-service exception into an HTTP error."""
    if isinstance(exc, bookingService.BookingPricingError):
        code = (
            status.HTTP_503_SERVICE_UNAVAILABLE
            if exc.code == PricingErrorCode.CONFIG_NOT_FOUND
            else status.HTTP_400_BAD_REQUEST
        )
        return HTTPException(
            status_code=code,
            detail={"code": exc.code.value, "message": exc.message},
        )
    if isinstance(exc, InvalidBookingFeeError):
        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"code": exc.code.value, "message": str(exc)},
        )
    if isinstance(exc, (bookingService.BookingNotFoundError, matchingEngine.TechnicianNotFoundError)):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, bookingService.BookingNotAuthorizedError):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc))
    return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))


# ---------------------------------------------------------------------------
# POST /api/v1/bookings
# ---------------------------------------------------------------------------

@router.post(
    "",
    response_model=BookingOut,
    status_code=status.HTTP_201_CREATED,
    summary="Create a booking directly",
    description=(
        "Prices the request against the active configuration and creates a "
        "booking with a pending 20% booking fee. A preferred technician is "
        "assigned once the fee is held."
    ),
)
async def create_booking(
    db: DBSession,
    user: CurrentUser,
    body: CreateBookingRequest,
) -> BookingOut:
    try:
        booking = await bookingService.create_direct_booking(
            db,
            user.id,
            bookingService.DirectBookingRequest(
                service_category=parse_category(body.service_category),
                location=GeoPoint(body.latitude, body.longitude),
                service_type=body.service_type,
                urgency=body.urgency,
                scheduled_at=body.scheduled_at,
                description=body.description,
                estimated_duration_hours=body.estimated_duration_hours,
                preferred_technician_id=body.preferred_technician_id,
            ),
        )
    except BOOKING_ERRORS as exc:
        raise booking_error_to_http(exc)
    return BookingOut.from_booking(booking, viewer_id=user.id)


# ---------------------------------------------------------------------------
# GET /api/v1/bookings/{id}
# ---------------------------------------------------------------------------

@router.get(
    "/{booking_id}",
    response_model=BookingOut,
    summary="Get a booking",
    description="The customer sees the technician only once the booking fee is held.",
)
async def get_booking(
    db: DBSession,
    user: CurrentUser,
    booking_id: uuid.UUID,
) -> BookingOut:
    try:
        booking = await bookingService.get_booking_for_user(db, booking_id, user)
    except BOOKING_ERRORS as exc:
        raise booking_error_to_http(exc)
    return BookingOut.from_booking(booking, viewer_id=user.id)


# ---------------------------------------------------------------------------
# Booking fee escrow
# ---------------------------------------------------------------------------

@router.post(
    "/{booking_id}/booking-fee/confirm",
    response_model=BookingOut,
    summary="Confirm the booking fee payment",
)
async def confirm_booking_fee(
    db: DBSession,
    user: CurrentUser,
    booking_id: uuid.UUID,
    body: Optional[ConfirmBookingFeeRequest] = None,
) -> BookingOut:
    try:
        booking = await bookingService.confirm_booking_fee(
            db,
            booking_id,
            user.id,
            body.payment_reference if body else None,
        )
    except BOOKING_ERRORS as exc:
        raise booking_error_to_http(exc)
    return BookingOut.from_booking(booking, viewer_id=user.id)


@router.post(
    "/{booking_id}/booking-fee/release",
    response_model=BookingOut,
    summary="Release the held booking fee",
)
async def release_booking_fee(
    db: DBSession,
    admin: AdminUser,
    booking_id: uuid.UUID,
) -> BookingOut:
    try:
        booking = await bookingService.release_booking_fee(db, booking_id)
    except BOOKING_ERRORS as exc:
        raise booking_error_to_http(exc)
    return BookingOut.from_booking(booking, viewer_id=admin.id)


@router.post(
    "/{booking_id}/booking-fee/refund",
    response_model=BookingOut,
    summary="Refund the held booking fee",
)
async def refund_booking_fee(
    db: DBSession,
    admin: AdminUser,
    booking_id: uuid.UUID,
) -> BookingOut:
    try:
        booking = await bookingService.refund_booking_fee(db, booking_id)
    except BOOKING_ERRORS as exc:
        raise booking_error_to_http(exc)
    return BookingOut.from_booking(booking, viewer_id=admin.id)
