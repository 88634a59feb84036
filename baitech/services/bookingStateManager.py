"""
Booking State Manager
=====================

Two small state machines for bookings.

Booking fee (escrowed deposit)::

    pending --> held --> released   (job completed / verified)
                   '---> refunded   (cancellation or dispute)

Booking status::

    pending --> assigned --> in_progress --> completed --> verified
       |           |              |              '--> disputed
       '-----------+--------------+--> cancelled
                                  '--> disputed

    disputed --> verified | cancelled   (dispute resolution)

Status moves forward only, apart from the cancellation and dispute
rollbacks listed above.
"""

from __future__ import annotations

from baitech.models.booking import BookingFeeStatus, BookingStatus
from baitech.services.matchStateManager import TransitionResult

VALID_FEE_TRANSITIONS: dict[BookingFeeStatus, set[BookingFeeStatus]] = {
    BookingFeeStatus.PENDING: {BookingFeeStatus.HELD},
    BookingFeeStatus.HELD: {BookingFeeStatus.RELEASED, BookingFeeStatus.REFUNDED},
    BookingFeeStatus.RELEASED: set(),
    BookingFeeStatus.REFUNDED: set(),
}

VALID_BOOKING_TRANSITIONS: dict[BookingStatus, set[BookingStatus]] = {
    BookingStatus.PENDING: {BookingStatus.ASSIGNED, BookingStatus.CANCELLED},
    BookingStatus.ASSIGNED: {
        BookingStatus.IN_PROGRESS,
        BookingStatus.CANCELLED,
        BookingStatus.DISPUTED,
    },
    BookingStatus.IN_PROGRESS: {
        BookingStatus.COMPLETED,
        BookingStatus.CANCELLED,
        BookingStatus.DISPUTED,
    },
    BookingStatus.COMPLETED: {BookingStatus.VERIFIED, BookingStatus.DISPUTED},
    BookingStatus.VERIFIED: set(),
    BookingStatus.DISPUTED: {BookingStatus.VERIFIED, BookingStatus.CANCELLED},
    BookingStatus.CANCELLED: set(),
}

# Booking statuses in which the held fee may be paid out or returned
RELEASABLE_STATUSES: frozenset[BookingStatus] = frozenset({
    BookingStatus.COMPLETED,
    BookingStatus.VERIFIED,
})
REFUNDABLE_STATUSES: frozenset[BookingStatus] = frozenset({
    BookingStatus.PENDING,
    BookingStatus.ASSIGNED,
    BookingStatus.CANCELLED,
    BookingStatus.DISPUTED,
})


def validate_fee_transition(
    current: BookingFeeStatus, target: BookingFeeStatus
) -> TransitionResult:
    if target in VALID_FEE_TRANSITIONS.get(current, set()):
        return TransitionResult(allowed=True)
    return TransitionResult(
        allowed=False,
        reason=f"Booking fee cannot move from '{current.value}' to '{target.value}'.",
    )


def validate_booking_transition(
    current: BookingStatus, target: BookingStatus
) -> TransitionResult:
    if target in VALID_BOOKING_TRANSITIONS.get(current, set()):
        return TransitionResult(allowed=True)
    return TransitionResult(
        allowed=False,
        reason=f"Booking cannot move from '{current.value}' to '{target.value}'.",
    )
