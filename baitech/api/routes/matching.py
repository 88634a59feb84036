"""
Matching API Routes
===================

REST endpoints for finding technicians and responding to suggestions.

Routes:
  POST   /api/v1/matching/find-technicians        -- Ranked technicians for a request
  GET    /api/v1/matching/my-matches              -- The caller's suggestions
  GET    /api/v1/matching/preferences             -- Matching preferences
  PUT    /api/v1/matching/preferences             -- Update preferences
  POST   /api/v1/matching/block/{technician_id}   -- Block a technician
  DELETE /api/v1/matching/block/{technician_id}   -- Unblock a technician
  GET    /api/v1/matching/{id}                    -- One suggestion
  POST   /api/v1/matching/{id}/accept             -- Accept and create a booking
  POST   /api/v1/matching/{id}/reject             -- Reject a suggestion
  POST   /api/v1/matching/{id}/feedback           -- Feedback on a suggestion
"""

from __future__ import annotations

import uuid
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from baitech.api.deps import CurrentUser, DBSession
from baitech.api.routes.bookings import BOOKING_ERRORS, booking_error_to_http
from baitech.api.schemas.booking import BookingOut
from baitech.api.schemas.matching import (
    AcceptMatchRequest,
    BlockTechnicianRequest,
    FindTechniciansRequest,
    FindTechniciansResponse,
    MatchFeedbackRequest,
    MatchingOut,
    MatchingPreferenceOut,
    MatchOut,
    RejectMatchRequest,
    TechnicianSummaryOut,
    UpdatePreferencesRequest,
)
from baitech.models.matching import MatchStatus
from baitech.models.taxonomy import ServiceCategory
from baitech.services import bookingService, matchingEngine
from baitech.services.geoService import GeoPoint

router = APIRouter(prefix="/matching", tags=["Matching"])


_MATCH_ERROR_STATUS: dict[type[Exception], int] = {
    matchingEngine.MatchingNotFoundError: status.HTTP_404_NOT_FOUND,
    matchingEngine.TechnicianNotFoundError: status.HTTP_404_NOT_FOUND,
    matchingEngine.MatchNotAuthorizedError: status.HTTP_403_FORBIDDEN,
    matchingEngine.InvalidMatchTransitionError: status.HTTP_409_CONFLICT,
    matchingEngine.MatchExpiredError: status.HTTP_409_CONFLICT,
}
_MATCH_ERRORS = tuple(_MATCH_ERROR_STATUS)


def _match_error_to_http(exc: Exception) -> HTTPException:
    return HTTPException(status_code=_MATCH_ERROR_STATUS[type(exc)], detail=str(exc))


async def _expired_to_http(db: AsyncSession, exc: matchingEngine.MatchExpiredError) -> HTTPException:
    # The expired status must outlive the request's rollback
    await db.commit()
    return _match_error_to_http(exc)


def _match_out(result: matchingEngine.MatchResult) -> MatchOut:
    technician = result.technician
    scored = result.scored
    return MatchOut(
        matching_id=result.matching.id,
        rank=scored.rank,
        technician=TechnicianSummaryOut(
            id=technician.id,
            name=f"{technician.first_name} {technician.last_name}",
            rating_average=technician.rating_average or 0.0,
            rating_count=technician.rating_count or 0,
            experience_years=technician.experience_years or 0,
            completed_bookings=technician.completed_bookings or 0,
            hourly_rate=float(technician.hourly_rate) if technician.hourly_rate is not None else None,
            is_verified=bool(technician.is_verified),
        ),
        distance_km=scored.candidate.distance_km,
        scores=scored.scores.as_dict(),
        base_score=scored.base_score,
        overall_score=scored.overall,
        boost_multiplier=scored.boost_multiplier,
        is_boosted=scored.is_boosted,
        match_reasons=scored.reasons,
        expires_at=result.matching.expires_at,
    )


# ---------------------------------------------------------------------------
# POST /api/v1/matching/find-technicians
# ---------------------------------------------------------------------------

@router.post(
    "/find-technicians",
    response_model=FindTechniciansResponse,
    summary="Find and rank technicians for a service request",
    description=(
        "Filters active technicians by skill, distance, block-list and minimum "
        "rating, scores them on nine weighted criteria, applies the "
        "subscription boost and returns the top suggestions."
    ),
)
async def find_technicians(
    db: DBSession,
    user: CurrentUser,
    body: FindTechniciansRequest,
) -> FindTechniciansResponse:
    result = await matchingEngine.find_technicians(
        db,
        user.id,
        matchingEngine.MatchRequest(
            service_category=body.service_category,
            location=GeoPoint(body.latitude, body.longitude),
            urgency=body.urgency,
            budget=body.budget,
            preferred_date=body.preferred_date,
            description=body.description,
        ),
        max_results=body.max_results,
    )
    return FindTechniciansResponse(
        session_id=result.session_id,
        total_candidates=result.total_candidates,
        total_scored=result.total_scored,
        skipped=result.skipped,
        max_distance_km=result.max_distance_km,
        matches=[_match_out(m) for m in result.matches],
    )


# ---------------------------------------------------------------------------
# GET /api/v1/matching/my-matches
# ---------------------------------------------------------------------------

@router.get(
    "/my-matches",
    response_model=list[MatchingOut],
    summary="List the caller's suggestions, newest first",
)
async def list_my_matches(
    db: DBSession,
    user: CurrentUser,
    category: Optional[ServiceCategory] = None,
    match_status: Optional[MatchStatus] = Query(default=None, alias="status"),
) -> list[MatchingOut]:
    matches = await matchingEngine.list_my_matches(
        db, user.id, category=category, status=match_status
    )
    return [MatchingOut.model_validate(m) for m in matches]


# ---------------------------------------------------------------------------
# Preferences
# ---------------------------------------------------------------------------

@router.get(
    "/preferences",
    response_model=MatchingPreferenceOut,
    summary="Get matching preferences",
)
async def get_preferences(db: DBSession, user: CurrentUser) -> MatchingPreferenceOut:
    preferences = await matchingEngine.get_or_create_preferences(db, user.id)
    return MatchingPreferenceOut.model_validate(preferences)


@router.put(
    "/preferences",
    response_model=MatchingPreferenceOut,
    summary="Update matching preferences",
)
async def update_preferences(
    db: DBSession,
    user: CurrentUser,
    body: UpdatePreferencesRequest,
) -> MatchingPreferenceOut:
    try:
        preferences = await matchingEngine.update_preferences(
            db,
            user.id,
            max_distance_km=body.max_distance_km,
            min_rating=body.min_rating,
            custom_weights=body.custom_weights,
            clear_custom_weights=body.reset_custom_weights,
            preferred_technician_ids=body.preferred_technician_ids,
        )
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(exc),
        )
    return MatchingPreferenceOut.model_validate(preferences)


@router.post(
    "/block/{technician_id}",
    response_model=MatchingPreferenceOut,
    summary="Exclude a technician from future searches",
)
async def block_technician(
    db: DBSession,
    user: CurrentUser,
    technician_id: uuid.UUID,
    body: Optional[BlockTechnicianRequest] = None,
) -> MatchingPreferenceOut:
    try:
        preferences = await matchingEngine.block_technician(
            db, user.id, technician_id, body.reason if body else None
        )
    except matchingEngine.TechnicianNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    return MatchingPreferenceOut.model_validate(preferences)


@router.delete(
    "/block/{technician_id}",
    response_model=MatchingPreferenceOut,
    summary="Remove a technician from the block-list",
)
async def unblock_technician(
    db: DBSession,
    user: CurrentUser,
    technician_id: uuid.UUID,
) -> MatchingPreferenceOut:
    preferences = await matchingEngine.unblock_technician(db, user.id, technician_id)
    return MatchingPreferenceOut.model_validate(preferences)


# ---------------------------------------------------------------------------
# Single suggestion
# ---------------------------------------------------------------------------

@router.get(
    "/{matching_id}",
    response_model=MatchingOut,
    summary="Get one suggestion",
    description="Opening a suggested match as its customer marks it viewed.",
)
async def get_matching(
    db: DBSession,
    user: CurrentUser,
    matching_id: uuid.UUID,
) -> MatchingOut:
    try:
        matching = await matchingEngine.get_matching(db, matching_id, user.id)
    except _MATCH_ERRORS as exc:
        raise _match_error_to_http(exc)
    return MatchingOut.model_validate(matching)


@router.post(
    "/{matching_id}/accept",
    response_model=BookingOut,
    status_code=status.HTTP_201_CREATED,
    summary="Accept a suggestion and create a booking",
    description=(
        "Re-prices the request with the matched technician and creates a "
        "booking whose 20% booking fee is pending. Nothing is written if "
        "pricing fails."
    ),
)
async def accept_match(
    db: DBSession,
    user: CurrentUser,
    matching_id: uuid.UUID,
    body: AcceptMatchRequest,
) -> BookingOut:
    try:
        booking = await bookingService.accept_match(
            db,
            matching_id,
            user.id,
            bookingService.MatchAcceptance(
                scheduled_at=body.scheduled_at,
                service_type=body.service_type,
                description=body.description,
                estimated_duration_hours=body.estimated_duration_hours,
            ),
        )
    except matchingEngine.MatchExpiredError as exc:
        raise await _expired_to_http(db, exc)
    except _MATCH_ERRORS as exc:
        raise _match_error_to_http(exc)
    except BOOKING_ERRORS as exc:
        raise booking_error_to_http(exc)
    return BookingOut.from_booking(booking, viewer_id=user.id)


@router.post(
    "/{matching_id}/reject",
    response_model=MatchingOut,
    summary="Reject a suggestion",
)
async def reject_match(
    db: DBSession,
    user: CurrentUser,
    matching_id: uuid.UUID,
    body: RejectMatchRequest,
) -> MatchingOut:
    try:
        matching = await matchingEngine.reject_match(db, matching_id, user.id, body.reason)
    except matchingEngine.MatchExpiredError as exc:
        raise await _expired_to_http(db, exc)
    except _MATCH_ERRORS as exc:
        raise _match_error_to_http(exc)
    return MatchingOut.model_validate(matching)


@router.post(
    "/{matching_id}/feedback",
    response_model=MatchingOut,
    summary="Leave feedback on a suggestion",
)
async def add_feedback(
    db: DBSession,
    user: CurrentUser,
    matching_id: uuid.UUID,
    body: MatchFeedbackRequest,
) -> MatchingOut:
    try:
        matching = await matchingEngine.add_match_feedback(
            db, matching_id, user.id, body.model_dump(exclude_none=True)
        )
    except _MATCH_ERRORS as exc:
        raise _match_error_to_http(exc)
    return MatchingOut.model_validate(matching)
