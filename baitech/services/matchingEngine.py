"""
Technician Matching Engine
==========================

Finds, scores and ranks technicians for a customer's service request and
manages the lifecycle of the resulting suggestions.

HARD FILTERS (must pass ALL):
  - Role is technician and the account is active
  - Has a skill in the requested service category
  - Has location coordinates
  - Within the customer's maximum search distance
  - Not on the customer's block-list
  - Meets the customer's minimum rating, unless the technician has no
    ratings yet (new technicians stay visible)

SOFT RANKING: weighted nine-criterion score with the subscription boost
applied on top (see ``algorithms.matchScoring``).

Each returned suggestion is persisted as a ``Matching`` row in status
``suggested``. Viewing, rejecting and feedback change that row only; they
never re-rank a finished search.

Key functions:
  - find_technicians       -- query -> hard filter -> score -> rank -> persist
  - get_matching           -- read one suggestion (customer view marks it viewed)
  - reject_match / add_match_feedback
  - get_or_create_preferences / update_preferences
  - block_technician / unblock_technician
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Mapping, Optional, Sequence
from zoneinfo import ZoneInfo

from sqlalchemy import or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from baitech.algorithms.matchScoring import (
    DEFAULT_MATCH_WEIGHTS,
    MatchWeights,
    ScoredCandidate,
    ScoringCandidate,
    ScoringContext,
    rank_candidates,
    score_candidate,
)
from baitech.core.config import settings
from baitech.models.base import as_utc, utcnow
from baitech.models.matching import Matching, MatchingPreference, MatchStatus
from baitech.models.taxonomy import ServiceCategory, UrgencyLevel
from baitech.models.user import (
    SubscriptionPlan,
    SubscriptionStatus,
    User,
    UserRole,
    UserStatus,
    subscription_boost,
)
from baitech.services.geoService import GeoPoint, filter_by_radius
from baitech.services.matchStateManager import (
    OPEN_MATCH_STATUSES,
    validate_match_transition,
)
from baitech.services.pricingConfigService import get_active_config
from baitech.services.pricingErrors import ConfigNotFoundError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

ALGORITHM_VERSION = "1.1"
ALGORITHM_MODEL = "weighted_scoring_with_subscription_boost"


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class MatchingNotFoundError(Exception):
    def __init__(self, matching_id: uuid.UUID) -> None:
        self.matching_id = matching_id
        super().__init__(f"Matching with id '{matching_id}' not found.")


class MatchNotAuthorizedError(Exception):
    def __init__(self, matching_id: uuid.UUID) -> None:
        self.matching_id = matching_id
        super().__init__(f"Not authorized to act on matching '{matching_id}'.")


class InvalidMatchTransitionError(Exception):
    def __init__(self, message: str) -> None:
        super().__init__(message)


class MatchExpiredError(InvalidMatchTransitionError):
    """The match passed its expiry; the caller should persist the expired status."""

    def __init__(self, matching_id: uuid.UUID) -> None:
        self.matching_id = matching_id
        super().__init__("Match has expired.")


class TechnicianNotFoundError(Exception):
    def __init__(self, technician_id: uuid.UUID) -> None:
        self.technician_id = technician_id
        super().__init__(f"Technician with id '{technician_id}' not found.")


class TechnicianLookupError(Exception):
    """A candidate's directory record could not be read during scoring."""

    def __init__(self, technician_id: uuid.UUID) -> None:
        self.technician_id = technician_id
        super().__init__(f"Lookup of technician '{technician_id}' failed.")


# ---------------------------------------------------------------------------
# DTOs
# ---------------------------------------------------------------------------

@dataclass
class MatchRequest:
    service_category: ServiceCategory
    location: GeoPoint
    urgency: UrgencyLevel = UrgencyLevel.MEDIUM
    budget: Optional[Decimal] = None
    preferred_date: Optional[datetime] = None
    description: Optional[str] = None


@dataclass
class MatchResult:
    matching: Matching
    technician: User
    scored: ScoredCandidate


@dataclass
class MatchSearchResult:
    session_id: uuid.UUID
    matches: list[MatchResult] = field(default_factory=list)
    total_candidates: int = 0
    total_scored: int = 0
    skipped: int = 0
    max_distance_km: float = 0.0
    min_rating: Optional[float] = None


@dataclass(frozen=True)
class _Subscription:
    plan: SubscriptionPlan
    status: SubscriptionStatus
    end_date: Optional[datetime]


# ---------------------------------------------------------------------------
# Hard filter checks
# ---------------------------------------------------------------------------

def _has_skill(technician: User, category: ServiceCategory) -> bool:
    return any(
        skill.get("category") == category.value for skill in (technician.skills or [])
    )


def _passes_min_rating(technician: User, min_rating: Optional[float]) -> bool:
    """Technicians without any rating are never excluded by a minimum."""
    if not min_rating:
        return True
    if (technician.rating_count or 0) == 0:
        return True
    return (technician.rating_average or 0.0) >= min_rating


def _weights_for(preferences: MatchingPreference) -> MatchWeights:
    if not preferences.custom_weights:
        return DEFAULT_MATCH_WEIGHTS
    try:
        return MatchWeights.from_mapping(preferences.custom_weights)
    except ValueError as exc:
        logger.warning(
            "Ignoring invalid custom weights for user %s: %s", preferences.user_id, exc
        )
        return DEFAULT_MATCH_WEIGHTS


async def _matching_timezone(db: AsyncSession) -> ZoneInfo:
    """Zone of the active pricing ruleset; the configured default when none is active."""
    try:
        config = await get_active_config(db)
    except ConfigNotFoundError:
        return ZoneInfo(settings.pricing_timezone)
    return config.rules.tzinfo


async def _preferred_local_time(
    db: AsyncSession, request: MatchRequest, now: datetime
) -> Optional[datetime]:
    if request.preferred_date is not None:
        moment = as_utc(request.preferred_date)
    elif request.urgency == UrgencyLevel.EMERGENCY:
        moment = as_utc(now)
    else:
        return None
    return moment.astimezone(await _matching_timezone(db))


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------

async def _query_technicians(db: AsyncSession) -> Sequence[User]:
    stmt = select(User).where(
        User.role == UserRole.TECHNICIAN,
        User.status == UserStatus.ACTIVE,
        User.latitude.is_not(None),
        User.longitude.is_not(None),
    )
    result = await db.execute(stmt)
    return result.scalars().all()


async def _get_subscription(db: AsyncSession, technician_id: uuid.UUID) -> _Subscription:
    """Read the technician's current subscription straight from the directory.

    The read runs in a savepoint so a failed statement only rolls back this
    lookup and the search can skip the candidate.

    Raises:
        TechnicianLookupError: If the technician no longer exists.
        SQLAlchemyError: If the read fails.
    """
    stmt = select(
        User.subscription_plan, User.subscription_status, User.subscription_end_date
    ).where(User.id == technician_id)
    async with db.begin_nested():
        row = (await db.execute(stmt)).one_or_none()
    if row is None:
        raise TechnicianLookupError(technician_id)
    return _Subscription(plan=row[0], status=row[1], end_date=row[2])


async def _get_technician(db: AsyncSession, technician_id: uuid.UUID) -> User:
    result = await db.execute(
        select(User).where(User.id == technician_id, User.role == UserRole.TECHNICIAN)
    )
    technician = result.scalar_one_or_none()
    if technician is None:
        raise TechnicianNotFoundError(technician_id)
    return technician


async def get_matching_by_id(db: AsyncSession, matching_id: uuid.UUID) -> Matching:
    result = await db.execute(select(Matching).where(Matching.id == matching_id))
    matching = result.scalar_one_or_none()
    if matching is None:
        raise MatchingNotFoundError(matching_id)
    return matching


async def load_customer_matching(
    db: AsyncSession, matching_id: uuid.UUID, customer_id: uuid.UUID
) -> Matching:
    """Load a matching that belongs to ``customer_id``.

    Raises:
        MatchingNotFoundError: Unknown id.
        MatchNotAuthorizedError: The matching belongs to another customer.
    """
    matching = await get_matching_by_id(db, matching_id)
    if matching.customer_id != customer_id:
        raise MatchNotAuthorizedError(matching_id)
    return matching


def transition_match(matching: Matching, target: MatchStatus, now: datetime) -> None:
    """Apply a validated status change to a matching (not flushed)."""
    result = validate_match_transition(matching.status, target)
    if not result.allowed:
        raise InvalidMatchTransitionError(result.reason or "Invalid match transition.")

    matching.status = target
    if target == MatchStatus.VIEWED:
        matching.viewed_at = now
    elif target in (MatchStatus.ACCEPTED, MatchStatus.REJECTED):
        matching.responded_at = now


def expire_if_stale(matching: Matching, now: datetime) -> bool:
    """Move an open matching past its expiry to ``expired``. Returns True if moved."""
    expires_at = as_utc(matching.expires_at)
    if matching.status in OPEN_MATCH_STATUSES and expires_at is not None and expires_at <= now:
        transition_match(matching, MatchStatus.EXPIRED, now)
        return True
    return False


# ---------------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------------

def _build_candidate(
    technician: User,
    distance_km: float,
    subscription: _Subscription,
    boost: float,
) -> ScoringCandidate:
    return ScoringCandidate(
        technician=technician,
        technician_id=technician.id,
        distance_km=distance_km,
        skills=list(technician.skills or []),
        availability=list(technician.availability or []),
        rating_average=technician.rating_average or 0.0,
        rating_count=technician.rating_count or 0,
        experience_years=technician.experience_years or 0,
        hourly_rate=float(technician.hourly_rate) if technician.hourly_rate is not None else None,
        avg_response_time_min=technician.avg_response_time_min,
        completion_rate=technician.completion_rate,
        total_bookings=technician.total_bookings or 0,
        subscription_plan=subscription.plan,
        boost_multiplier=boost,
    )


async def find_technicians(
    db: AsyncSession,
    customer_id: uuid.UUID,
    request: MatchRequest,
    *,
    now: Optional[datetime] = None,
    max_results: Optional[int] = None,
) -> MatchSearchResult:
    """Find and rank technicians for a customer's request.

    Pipeline:
    1. Load (or create) the customer's matching preferences
    2. Query active technicians with location data
    3. Apply hard filters (skill, rating, block-list, radius)
    4. Score each candidate; a candidate whose directory lookup fails is skipped
    5. Rank by boosted score and keep the top N
    6. Persist the returned suggestions and update preference counters

    Args:
        db: Async database session.
        customer_id: The requesting customer's user id.
        request: Category, location, urgency, budget and preferred date.
        now: Reference time (defaults to now, UTC).
        max_results: Maximum suggestions to return (default from settings).

    Returns:
        MatchSearchResult with the persisted suggestions in rank order.
    """
    now = now or utcnow()
    max_results = max_results or settings.match_max_results
    session_id = uuid.uuid4()

    # 1. Preferences
    preferences = await get_or_create_preferences(db, customer_id)
    max_distance = preferences.max_distance_km or settings.match_default_max_distance_km
    blocked = preferences.blocked_ids

    # 2. Candidate pool
    technicians = await _query_technicians(db)
    total_candidates = len(technicians)

    # 3. Hard filters
    eligible = [
        t
        for t in technicians
        if t.id != customer_id
        and _has_skill(t, request.service_category)
        and _passes_min_rating(t, preferences.min_rating)
        and str(t.id) not in blocked
    ]
    nearby = filter_by_radius(eligible, request.location, max_distance)

    logger.info(
        "Matching %s for customer %s: %d technicians, %d eligible, %d within %.1fkm",
        request.service_category.value,
        customer_id,
        total_candidates,
        len(eligible),
        len(nearby),
        max_distance,
    )

    # 4. Score
    weights = _weights_for(preferences)
    context = ScoringContext(
        service_category=request.service_category.value,
        max_distance_km=max_distance,
        budget=float(request.budget) if request.budget is not None else None,
        preferred_local_time=await _preferred_local_time(db, request, now),
        preferred_technician_ids=frozenset(
            str(t) for t in (preferences.preferred_technician_ids or [])
        ),
    )

    scored: list[ScoredCandidate] = []
    skipped = 0
    for td in nearby:
        technician = td.technician
        try:
            subscription = await _get_subscription(db, technician.id)
        except (TechnicianLookupError, SQLAlchemyError) as exc:
            skipped += 1
            logger.warning("Skipping technician %s during scoring: %s", technician.id, exc)
            continue

        boost = subscription_boost(
            subscription.plan, subscription.status, subscription.end_date, now
        )
        candidate = _build_candidate(technician, td.distance_km, subscription, boost)
        scored.append(score_candidate(candidate, context, weights))

    # 5. Rank
    ranked = rank_candidates(scored, max_results)

    # 6. Persist
    expires_at = now + timedelta(hours=settings.match_expiry_hours)
    matches: list[MatchResult] = []
    for item in ranked:
        matching = Matching(
            session_id=session_id,
            customer_id=customer_id,
            technician_id=item.candidate.technician_id,
            service_category=request.service_category,
            latitude=request.location.latitude,
            longitude=request.location.longitude,
            urgency=request.urgency,
            budget=request.budget,
            preferred_date=request.preferred_date,
            description=request.description,
            scores={
                **item.scores.as_dict(),
                "base_score": item.base_score,
                "overall": item.overall,
                "pro_boost": item.boost_multiplier,
            },
            distance_km=item.candidate.distance_km,
            algorithm={
                "version": ALGORITHM_VERSION,
                "model": ALGORITHM_MODEL,
                "weights": weights.as_dict(),
                "boost_applied": item.is_boosted,
                "boost_multiplier": item.boost_multiplier,
            },
            match_reasons=item.reasons,
            rank=item.rank,
            status=MatchStatus.SUGGESTED,
            expires_at=expires_at,
        )
        db.add(matching)
        matches.append(MatchResult(matching=matching, technician=item.candidate.technician, scored=item))

    preferences.last_match_request = now
    preferences.total_matches = (preferences.total_matches or 0) + len(matches)
    await db.flush()

    logger.info(
        "Matching session %s: %d scored, %d skipped, returning %d (top score %.2f)",
        session_id,
        len(scored),
        skipped,
        len(matches),
        ranked[0].overall if ranked else 0.0,
    )

    return MatchSearchResult(
        session_id=session_id,
        matches=matches,
        total_candidates=total_candidates,
        total_scored=len(scored),
        skipped=skipped,
        max_distance_km=max_distance,
        min_rating=preferences.min_rating,
    )


# ---------------------------------------------------------------------------
# Suggestion lifecycle
# ---------------------------------------------------------------------------

async def get_matching(
    db: AsyncSession,
    matching_id: uuid.UUID,
    user_id: uuid.UUID,
    *,
    now: Optional[datetime] = None,
) -> Matching:
    """Read a suggestion as its customer or technician.

    The customer opening a ``suggested`` match moves it to ``viewed``.
    """
    now = now or utcnow()
    matching = await get_matching_by_id(db, matching_id)
    if user_id not in (matching.customer_id, matching.technician_id):
        raise MatchNotAuthorizedError(matching_id)

    changed = expire_if_stale(matching, now)
    if user_id == matching.customer_id and matching.status == MatchStatus.SUGGESTED:
        transition_match(matching, MatchStatus.VIEWED, now)
        changed = True
    if changed:
        await db.flush()
    return matching


async def list_my_matches(
    db: AsyncSession,
    user_id: uuid.UUID,
    *,
    category: Optional[ServiceCategory] = None,
    status: Optional[MatchStatus] = None,
    limit: int = 50,
) -> list[Matching]:
    stmt = select(Matching).where(
        or_(Matching.customer_id == user_id, Matching.technician_id == user_id)
    )
    if category is not None:
        stmt = stmt.where(Matching.service_category == category)
    if status is not None:
        stmt = stmt.where(Matching.status == status)
    stmt = stmt.order_by(Matching.created_at.desc(), Matching.rank).limit(limit)

    result = await db.execute(stmt)
    return list(result.scalars().all())


async def reject_match(
    db: AsyncSession,
    matching_id: uuid.UUID,
    customer_id: uuid.UUID,
    reason: Optional[str] = None,
    *,
    now: Optional[datetime] = None,
) -> Matching:
    now = now or utcnow()
    matching = await load_customer_matching(db, matching_id, customer_id)
    if expire_if_stale(matching, now):
        await db.flush()
        raise MatchExpiredError(matching_id)

    transition_match(matching, MatchStatus.REJECTED, now)
    matching.rejection_reason = reason
    await db.flush()

    logger.info("Customer %s rejected match %s", customer_id, matching_id)
    return matching


async def add_match_feedback(
    db: AsyncSession,
    matching_id: uuid.UUID,
    customer_id: uuid.UUID,
    feedback: Mapping[str, Any],
    *,
    now: Optional[datetime] = None,
) -> Matching:
    """Attach customer feedback to a suggestion. Rankings are left as they are."""
    now = now or utcnow()
    matching = await load_customer_matching(db, matching_id, customer_id)
    matching.feedback = {**dict(feedback), "submitted_at": now.isoformat()}
    await db.flush()

    logger.info("Feedback recorded on match %s", matching_id)
    return matching


# ---------------------------------------------------------------------------
# Preferences
# ---------------------------------------------------------------------------

async def get_or_create_preferences(
    db: AsyncSession, user_id: uuid.UUID
) -> MatchingPreference:
    result = await db.execute(
        select(MatchingPreference).where(MatchingPreference.user_id == user_id)
    )
    preferences = result.scalar_one_or_none()
    if preferences is not None:
        return preferences

    preferences = MatchingPreference(
        user_id=user_id,
        max_distance_km=settings.match_default_max_distance_km,
        preferred_technician_ids=[],
        blocked_technicians=[],
        total_matches=0,
        successful_bookings=0,
    )
    db.add(preferences)
    await db.flush()
    return preferences


async def update_preferences(
    db: AsyncSession,
    user_id: uuid.UUID,
    *,
    max_distance_km: Optional[float] = None,
    min_rating: Optional[float] = None,
    custom_weights: Optional[Mapping[str, float]] = None,
    clear_custom_weights: bool = False,
    preferred_technician_ids: Optional[Sequence[uuid.UUID]] = None,
) -> MatchingPreference:
    """Update the fields that were given; custom weights are normalised.

    Raises:
        ValueError: If the custom weights name unknown criteria or are all zero.
    """
    preferences = await get_or_create_preferences(db, user_id)

    if max_distance_km is not None:
        preferences.max_distance_km = max_distance_km
    if min_rating is not None:
        preferences.min_rating = min_rating or None
    if clear_custom_weights:
        preferences.custom_weights = None
    elif custom_weights is not None:
        preferences.custom_weights = MatchWeights.normalised(custom_weights).as_dict()
    if preferred_technician_ids is not None:
        preferences.preferred_technician_ids = [str(t) for t in preferred_technician_ids]

    await db.flush()
    return preferences


async def block_technician(
    db: AsyncSession,
    user_id: uuid.UUID,
    technician_id: uuid.UUID,
    reason: Optional[str] = None,
    *,
    now: Optional[datetime] = None,
) -> MatchingPreference:
    now = now or utcnow()
    await _get_technician(db, technician_id)
    preferences = await get_or_create_preferences(db, user_id)

    if str(technician_id) not in preferences.blocked_ids:
        # Reassign so the JSON column is flagged dirty
        preferences.blocked_technicians = [
            *(preferences.blocked_technicians or []),
            {
                "technician_id": str(technician_id),
                "reason": reason,
                "blocked_at": now.isoformat(),
            },
        ]
        await db.flush()
        logger.info("User %s blocked technician %s", user_id, technician_id)
    return preferences


async def unblock_technician(
    db: AsyncSession,
    user_id: uuid.UUID,
    technician_id: uuid.UUID,
) -> MatchingPreference:
    preferences = await get_or_create_preferences(db, user_id)
    remaining = [
        entry
        for entry in (preferences.blocked_technicians or [])
        if entry.get("technician_id") != str(technician_id)
    ]
    if len(remaining) != len(preferences.blocked_technicians or []):
        preferences.blocked_technicians = remaining
        await db.flush()
        logger.info("User %s unblocked technician %s", user_id, technician_id)
    return preferences
