"""
Booking Service -- turns accepted matches and direct requests into bookings
and drives the booking-fee escrow.

Every booking is priced at creation time against the active configuration
and carries that breakdown as a frozen snapshot. Pricing fails closed: if
the price cannot be computed no booking is written and the match stays open.

Booking-fee escrow::

    pending --(customer pays)--> held --(job completed/verified)--> released
                                      '--(cancellation/dispute)---> refunded

The assigned technician is only revealed to the customer once the fee is
held (see ``Booking.visible_technician_id``).
"""

from __future__ import annotations

import logging
import random
import string
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from baitech.models.base import utcnow
from baitech.models.booking import (
    Booking,
    BookingFeeStatus,
    BookingSource,
    BookingStatus,
)
from baitech.models.matching import MatchStatus
from baitech.models.taxonomy import ServiceCategory, UrgencyLevel
from baitech.models.user import User, UserRole
from baitech.services.bookingStateManager import (
    RELEASABLE_STATUSES,
    REFUNDABLE_STATUSES,
    validate_booking_transition,
    validate_fee_transition,
)
from baitech.services.geoService import GeoPoint, point_of
from baitech.services.matchingEngine import (
    InvalidMatchTransitionError,
    MatchExpiredError,
    TechnicianNotFoundError,
    expire_if_stale,
    get_or_create_preferences,
    load_customer_matching,
    transition_match,
)
from baitech.services.matchStateManager import validate_match_transition
from baitech.services.pricingEngine import (
    PriceBreakdown,
    PricingParams,
    PricingResult,
    calculate_price,
)
from baitech.services.pricingErrors import InvalidBookingFeeError, PricingErrorCode

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class BookingNotFoundError(Exception):
    def __init__(self, booking_id: uuid.UUID) -> None:
        self.booking_id = booking_id
        super().__init__(f"Booking with id '{booking_id}' not found.")


class BookingNotAuthorizedError(Exception):
    def __init__(self, booking_id: uuid.UUID) -> None:
        self.booking_id = booking_id
        super().__init__(f"Not authorized to access booking '{booking_id}'.")


class BookingPricingError(Exception):
    """The booking could not be priced; carries the pricing failure code."""

    def __init__(self, code: PricingErrorCode, message: str) -> None:
        self.code = code
        self.message = message
        super().__init__(f"Failed to calculate booking price: {message}")


class BookingFeeTransitionError(Exception):
    def __init__(self, message: str) -> None:
        super().__init__(message)


# ---------------------------------------------------------------------------
# DTOs
# ---------------------------------------------------------------------------

@dataclass
class MatchAcceptance:
    """Scheduling details the customer supplies when accepting a match."""
    scheduled_at: Optional[datetime] = None
    service_type: Optional[str] = None
    description: Optional[str] = None
    estimated_duration_hours: Optional[float] = None


@dataclass
class DirectBookingRequest:
    service_category: ServiceCategory
    location: GeoPoint
    service_type: Optional[str] = None
    urgency: Optional[UrgencyLevel] = None
    scheduled_at: Optional[datetime] = None
    description: Optional[str] = None
    estimated_duration_hours: Optional[float] = None
    preferred_technician_id: Optional[uuid.UUID] = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def generate_booking_number() -> str:
    """Human-readable booking number in BK-XXXXXXXX format.

    Uniqueness is enforced by the database constraint.
    """
    chars = string.ascii_uppercase + string.digits
    suffix = "".join(random.choices(chars, k=8))
    return f"BK-{suffix}"


def _require_breakdown(result: PricingResult) -> PriceBreakdown:
    """Unwrap a pricing result, failing closed on any pricing failure."""
    if not result.success or result.breakdown is None:
        error = result.error
        if error is not None and error.code == PricingErrorCode.INVALID_BOOKING_FEE:
            raise InvalidBookingFeeError(None)
        if error is None:
            raise BookingPricingError(PricingErrorCode.CONFIG_NOT_FOUND, "No pricing result")
        raise BookingPricingError(error.code, error.message)

    breakdown = result.breakdown
    if breakdown.booking_fee.amount <= 0:
        raise InvalidBookingFeeError(breakdown.booking_fee.amount)
    return breakdown


def _new_booking(
    *,
    customer_id: uuid.UUID,
    breakdown: PriceBreakdown,
    service_category: ServiceCategory,
    location: GeoPoint,
    source: BookingSource,
    scheduled_at: Optional[datetime],
    description: Optional[str],
    estimated_duration_hours: Optional[float],
    preferred_technician_id: Optional[uuid.UUID] = None,
    matching_id: Optional[uuid.UUID] = None,
) -> Booking:
    service_price = breakdown.details.get("service_price", {})
    urgency = breakdown.details.get("urgency", {}).get("level", UrgencyLevel.MEDIUM.value)
    return Booking(
        booking_number=generate_booking_number(),
        customer_id=customer_id,
        technician_id=None,
        preferred_technician_id=preferred_technician_id,
        matching_id=matching_id,
        service_category=service_category,
        service_type=service_price.get("service_type", "general"),
        description=description,
        latitude=location.latitude,
        longitude=location.longitude,
        urgency=UrgencyLevel(urgency),
        scheduled_at=scheduled_at,
        estimated_duration_hours=estimated_duration_hours,
        status=BookingStatus.PENDING,
        source=source,
        pricing=breakdown.to_dict(),
        config_version=breakdown.config_version,
        currency=breakdown.currency,
        total_amount=breakdown.total_amount,
        booking_fee_percentage=breakdown.booking_fee.percentage,
        booking_fee_amount=breakdown.booking_fee.amount,
        booking_fee_status=BookingFeeStatus.PENDING,
    )


async def _get_user(db: AsyncSession, user_id: uuid.UUID) -> Optional[User]:
    result = await db.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def _get_booking(db: AsyncSession, booking_id: uuid.UUID) -> Booking:
    result = await db.execute(select(Booking).where(Booking.id == booking_id))
    booking = result.scalar_one_or_none()
    if booking is None:
        raise BookingNotFoundError(booking_id)
    return booking


def _move_fee(booking: Booking, target: BookingFeeStatus) -> None:
    result = validate_fee_transition(booking.booking_fee_status, target)
    if not result.allowed:
        raise BookingFeeTransitionError(result.reason or "Invalid booking fee transition.")
    booking.booking_fee_status = target


def _move_booking(booking: Booking, target: BookingStatus) -> None:
    result = validate_booking_transition(booking.status, target)
    if not result.allowed:
        raise BookingFeeTransitionError(result.reason or "Invalid booking transition.")
    booking.status = target


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------

async def accept_match(
    db: AsyncSession,
    matching_id: uuid.UUID,
    customer_id: uuid.UUID,
    schedule: MatchAcceptance,
    *,
    now: Optional[datetime] = None,
) -> Booking:
    """Accept a suggested match and create its booking.

    Steps:
    1. Load the match and check it belongs to the customer
    2. Validate the match can still move to ``accepted``
    3. Re-price the request with the matched technician
    4. Create the booking (fee pending, technician hidden until the fee is held)
    5. Mark the match accepted and bump the customer's booking counter

    Raises:
        MatchingNotFoundError: Unknown match.
        MatchNotAuthorizedError: The match belongs to another customer.
        MatchExpiredError: The match has expired; its status is flushed first.
        InvalidMatchTransitionError: The match is already closed.
        TechnicianNotFoundError: The matched technician no longer exists.
        BookingPricingError: Pricing failed; nothing is written.
        InvalidBookingFeeError: The booking fee would not be positive.
    """
    now = now or utcnow()

    # 1-2. Authorise and validate
    matching = await load_customer_matching(db, matching_id, customer_id)
    if expire_if_stale(matching, now):
        await db.flush()
        raise MatchExpiredError(matching_id)
    check = validate_match_transition(matching.status, MatchStatus.ACCEPTED)
    if not check.allowed:
        raise InvalidMatchTransitionError(check.reason or "Match cannot be accepted.")

    technician = await _get_user(db, matching.technician_id)
    if technician is None or technician.role != UserRole.TECHNICIAN:
        raise TechnicianNotFoundError(matching.technician_id)

    # 3. Price with the matched technician
    service_location = GeoPoint(matching.latitude, matching.longitude)
    result = await calculate_price(
        db,
        PricingParams(
            service_category=matching.service_category,
            service_type=schedule.service_type,
            urgency=matching.urgency,
            service_location=service_location,
            technician_location=point_of(technician),
            technician_id=technician.id,
            scheduled_at=schedule.scheduled_at,
            customer_id=customer_id,
        ),
        now=now,
    )
    try:
        breakdown = _require_breakdown(result)
    except (BookingPricingError, InvalidBookingFeeError):
        logger.warning("Match %s not accepted: pricing failed", matching_id)
        raise

    # 4. Booking
    booking = _new_booking(
        customer_id=customer_id,
        breakdown=breakdown,
        service_category=matching.service_category,
        location=service_location,
        source=BookingSource.AI_MATCHING,
        scheduled_at=schedule.scheduled_at,
        description=schedule.description or matching.description,
        estimated_duration_hours=schedule.estimated_duration_hours,
        preferred_technician_id=technician.id,
        matching_id=matching.id,
    )
    db.add(booking)
    await db.flush()

    # 5. Close the match
    transition_match(matching, MatchStatus.ACCEPTED, now)
    matching.booking_id = booking.id
    preferences = await get_or_create_preferences(db, customer_id)
    preferences.successful_bookings = (preferences.successful_bookings or 0) + 1
    await db.flush()

    logger.info(
        "Match %s accepted: booking %s created (%s %s, fee %s)",
        matching_id,
        booking.booking_number,
        booking.total_amount,
        booking.currency,
        booking.booking_fee_amount,
    )
    return booking


async def create_direct_booking(
    db: AsyncSession,
    customer_id: uuid.UUID,
    request: DirectBookingRequest,
    *,
    now: Optional[datetime] = None,
) -> Booking:
    """Create a booking without going through matching.

    When a preferred technician is named their tier and location are used
    for pricing; they are assigned once the booking fee is held.

    Raises:
        TechnicianNotFoundError: The preferred technician does not exist.
        BookingPricingError: Pricing failed; nothing is written.
        InvalidBookingFeeError: The booking fee would not be positive.
    """
    now = now or utcnow()

    technician_location: Optional[GeoPoint] = None
    if request.preferred_technician_id is not None:
        technician = await _get_user(db, request.preferred_technician_id)
        if technician is None or technician.role != UserRole.TECHNICIAN:
            raise TechnicianNotFoundError(request.preferred_technician_id)
        technician_location = point_of(technician)

    result = await calculate_price(
        db,
        PricingParams(
            service_category=request.service_category,
            service_type=request.service_type,
            urgency=request.urgency,
            service_location=request.location,
            technician_location=technician_location,
            technician_id=request.preferred_technician_id,
            scheduled_at=request.scheduled_at,
            customer_id=customer_id,
        ),
        now=now,
    )
    breakdown = _require_breakdown(result)

    booking = _new_booking(
        customer_id=customer_id,
        breakdown=breakdown,
        service_category=request.service_category,
        location=request.location,
        source=BookingSource.DIRECT,
        scheduled_at=request.scheduled_at,
        description=request.description,
        estimated_duration_hours=request.estimated_duration_hours,
        preferred_technician_id=request.preferred_technician_id,
    )
    db.add(booking)
    await db.flush()

    logger.info(
        "Direct booking %s created for customer %s (%s %s)",
        booking.booking_number,
        customer_id,
        booking.total_amount,
        booking.currency,
    )
    return booking


# ---------------------------------------------------------------------------
# Booking-fee escrow
# ---------------------------------------------------------------------------

async def confirm_booking_fee(
    db: AsyncSession,
    booking_id: uuid.UUID,
    customer_id: uuid.UUID,
    payment_reference: Optional[str] = None,
    *,
    now: Optional[datetime] = None,
) -> Booking:
    """Record the customer's fee payment: fee pending -> held.

    The preferred technician (if any) is assigned and the booking moves to
    ``assigned``.
    """
    now = now or utcnow()
    booking = await _get_booking(db, booking_id)
    if booking.customer_id != customer_id:
        raise BookingNotAuthorizedError(booking_id)

    _move_fee(booking, BookingFeeStatus.HELD)
    booking.booking_fee_paid_at = now
    booking.payment_reference = payment_reference

    if booking.preferred_technician_id is not None:
        _move_booking(booking, BookingStatus.ASSIGNED)
        booking.technician_id = booking.preferred_technician_id

    await db.flush()
    logger.info("Booking fee held for %s (ref=%s)", booking.booking_number, payment_reference)
    return booking


async def release_booking_fee(
    db: AsyncSession,
    booking_id: uuid.UUID,
    *,
    now: Optional[datetime] = None,
) -> Booking:
    """Pay the held fee out once the job is completed or verified."""
    now = now or utcnow()
    booking = await _get_booking(db, booking_id)
    if booking.status not in RELEASABLE_STATUSES:
        raise BookingFeeTransitionError(
            f"Booking fee can only be released for completed or verified bookings, "
            f"not '{booking.status.value}'."
        )

    _move_fee(booking, BookingFeeStatus.RELEASED)
    booking.booking_fee_released_at = now
    await db.flush()

    logger.info("Booking fee released for %s", booking.booking_number)
    return booking


async def refund_booking_fee(
    db: AsyncSession,
    booking_id: uuid.UUID,
    *,
    now: Optional[datetime] = None,
) -> Booking:
    """Return the held fee to the customer and cancel the booking.

    A disputed booking keeps its status; resolution happens separately.
    """
    now = now or utcnow()
    booking = await _get_booking(db, booking_id)
    if booking.status not in REFUNDABLE_STATUSES:
        raise BookingFeeTransitionError(
            f"Booking fee cannot be refunded for a '{booking.status.value}' booking."
        )

    _move_fee(booking, BookingFeeStatus.REFUNDED)
    booking.booking_fee_refunded_at = now
    if booking.status not in (BookingStatus.CANCELLED, BookingStatus.DISPUTED):
        _move_booking(booking, BookingStatus.CANCELLED)

    await db.flush()
    logger.info("Booking fee refunded for %s", booking.booking_number)
    return booking


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

async def get_booking_for_user(
    db: AsyncSession,
    booking_id: uuid.UUID,
    user: User,
) -> Booking:
    """Load a booking visible to ``user``: its customer, its assigned
    technician, or an admin.

    Callers render the customer view through ``visible_technician_id``.
    """
    booking = await _get_booking(db, booking_id)
    if user.role in (UserRole.ADMIN, UserRole.SUPPORT):
        return booking
    if user.id == booking.customer_id:
        return booking
    if booking.technician_id is not None and user.id == booking.technician_id:
        return booking
    raise BookingNotAuthorizedError(booking_id)
