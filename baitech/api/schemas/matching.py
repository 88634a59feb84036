"""
Pydantic v2 schemas for the Technician Matching API.

Schemas for finding technicians, reading and responding to suggestions,
and managing the customer's matching preferences.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from baitech.models.matching import MatchStatus
from baitech.models.taxonomy import ServiceCategory, UrgencyLevel


# ---------------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------------

class FindTechniciansRequest(BaseModel):
    """Request body for finding technicians for a service request."""

    service_category: ServiceCategory
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    urgency: UrgencyLevel = UrgencyLevel.MEDIUM
    budget: Optional[Decimal] = Field(default=None, ge=0)
    preferred_date: Optional[datetime] = None
    description: Optional[str] = Field(default=None, max_length=2000)
    max_results: Optional[int] = Field(default=None, ge=1, le=50)


class TechnicianSummaryOut(BaseModel):
    id: uuid.UUID
    name: str
    rating_average: float
    rating_count: int
    experience_years: int
    completed_bookings: int
    hourly_rate: Optional[float] = None
    is_verified: bool


class MatchOut(BaseModel):
    """One ranked suggestion with its score breakdown."""

    matching_id: uuid.UUID
    rank: int
    technician: TechnicianSummaryOut
    distance_km: float
    scores: dict[str, float]
    base_score: float
    overall_score: float
    boost_multiplier: float
    is_boosted: bool
    match_reasons: list[dict[str, Any]]
    expires_at: Optional[datetime] = None


class FindTechniciansResponse(BaseModel):
    session_id: uuid.UUID
    total_candidates: int = Field(description="Technicians evaluated before hard filters")
    total_scored: int
    skipped: int = Field(description="Candidates dropped because their lookup failed")
    max_distance_km: float
    matches: list[MatchOut]


# ---------------------------------------------------------------------------
# Suggestions
# ---------------------------------------------------------------------------

class MatchingOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    session_id: uuid.UUID
    customer_id: uuid.UUID
    technician_id: uuid.UUID
    service_category: ServiceCategory
    urgency: UrgencyLevel
    distance_km: float
    scores: dict[str, Any]
    match_reasons: list[Any]
    rank: int
    status: MatchStatus
    booking_id: Optional[uuid.UUID] = None
    rejection_reason: Optional[str] = None
    feedback: Optional[dict[str, Any]] = None
    viewed_at: Optional[datetime] = None
    responded_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class AcceptMatchRequest(BaseModel):
    scheduled_at: Optional[datetime] = None
    service_type: Optional[str] = Field(default=None, max_length=200)
    description: Optional[str] = Field(default=None, max_length=2000)
    estimated_duration_hours: Optional[float] = Field(default=None, gt=0)


class RejectMatchRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)


class MatchFeedbackRequest(BaseModel):
    rating: int = Field(ge=1, le=5)
    was_helpful: Optional[bool] = None
    comment: Optional[str] = Field(default=None, max_length=2000)


# ---------------------------------------------------------------------------
# Preferences
# ---------------------------------------------------------------------------

class BlockedTechnicianOut(BaseModel):
    technician_id: str
    reason: Optional[str] = None
    blocked_at: Optional[str] = None


class MatchingPreferenceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: uuid.UUID
    max_distance_km: float
    min_rating: Optional[float] = None
    custom_weights: Optional[dict[str, float]] = None
    preferred_technician_ids: list[str]
    blocked_technicians: list[BlockedTechnicianOut]
    total_matches: int
    successful_bookings: int
    last_match_request: Optional[datetime] = None


class UpdatePreferencesRequest(BaseModel):
    max_distance_km: Optional[float] = Field(default=None, gt=0, le=500)
    min_rating: Optional[float] = Field(default=None, ge=0, le=5)
    custom_weights: Optional[dict[str, float]] = Field(
        default=None, description="Criterion weights; normalised to sum to 1"
    )
    reset_custom_weights: bool = False
    preferred_technician_ids: Optional[list[uuid.UUID]] = None


class BlockTechnicianRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)
