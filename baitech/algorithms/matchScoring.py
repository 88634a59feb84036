"""
Match Scoring Algorithm
=======================

Scores technician candidates against a service request on nine fixed
criteria, each normalised to 0-100:

  1. Skill match          (default weight 0.25)
  2. Location proximity   (0.20) -- inverse of distance within the search radius
  3. Availability         (0.15) -- weekly schedule vs. the preferred time
  4. Rating               (0.15)
  5. Experience level     (0.10)
  6. Price fit            (0.05) -- hourly rate vs. the customer's budget
  7. Response time        (0.05)
  8. Completion rate      (0.03)
  9. Customer preference  (0.02) -- technicians the customer favourited

The base score is the weighted sum (0-100). A subscription boost is then
multiplied onto it (free 1.0, pro 1.5, premium 2.0, only while the
subscription is current); the boost never touches the weights.

Ranking sorts by boosted score descending, ties broken by the unboosted
base score. The module is pure: no I/O, no clock reads.
"""

from __future__ import annotations

import enum
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, time
from typing import Any, Mapping, Optional

from baitech.models.user import SubscriptionPlan


class MatchCriterion(str, enum.Enum):
    SKILL_MATCH = "skill_match"
    LOCATION_PROXIMITY = "location_proximity"
    AVAILABILITY = "availability"
    RATING = "rating"
    EXPERIENCE_LEVEL = "experience_level"
    PRICE_FIT = "price_fit"
    RESPONSE_TIME = "response_time"
    COMPLETION_RATE = "completion_rate"
    CUSTOMER_PREFERENCE = "customer_preference"


# Normalisation constants
NEUTRAL_SCORE: float = 50.0
UNRATED_SCORE: float = 60.0            # New technicians are not buried
SKILL_BASE_SCORE: float = 70.0
SKILL_VERIFIED_BONUS: float = 15.0
SKILL_POINTS_PER_YEAR: float = 1.5
MAX_SKILL_YEARS: float = 10.0
MAX_EXPERIENCE_YEARS: float = 10.0
MAX_RESPONSE_TIME_MIN: float = 60.0
MAX_RATING: float = 5.0

AVAILABLE_AT_TIME_SCORE: float = 100.0
AVAILABLE_ANY_TIME_SCORE: float = 80.0
AVAILABLE_SAME_DAY_SCORE: float = 60.0
UNAVAILABLE_SCORE: float = 20.0

WEIGHT_SUM_TOLERANCE: float = 0.01
DEFAULT_TOP_N: int = 10


# ---------------------------------------------------------------------------
# Weights
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class MatchWeights:
    """One weight per criterion; weights are non-negative and sum to 1.0."""

    skill_match: float = 0.25
    location_proximity: float = 0.20
    availability: float = 0.15
    rating: float = 0.15
    experience_level: float = 0.10
    price_fit: float = 0.05
    response_time: float = 0.05
    completion_rate: float = 0.03
    customer_preference: float = 0.02

    def __post_init__(self) -> None:
        for f in fields(self):
            value = getattr(self, f.name)
            if value < 0:
                raise ValueError(f"Weight for '{f.name}' must be >= 0, got {value}")
        total = self.total()
        if abs(total - 1.0) > WEIGHT_SUM_TOLERANCE:
            raise ValueError(f"Match weights must sum to 1.0, got {total:.4f}")

    def total(self) -> float:
        return sum(getattr(self, f.name) for f in fields(self))

    def for_criterion(self, criterion: MatchCriterion) -> float:
        return getattr(self, criterion.value)

    def as_dict(self) -> dict[str, float]:
        return asdict(self)

    @staticmethod
    def _check_keys(mapping: Mapping[str, float]) -> None:
        known = {c.value for c in MatchCriterion}
        unknown = sorted(set(mapping) - known)
        if unknown:
            raise ValueError(f"Unknown match criteria: {', '.join(unknown)}")

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, float]) -> "MatchWeights":
        """Build from a full or partial mapping; missing criteria weigh 0."""
        cls._check_keys(mapping)
        return cls(**{c.value: float(mapping.get(c.value, 0.0)) for c in MatchCriterion})

    @classmethod
    def normalised(cls, mapping: Mapping[str, float]) -> "MatchWeights":
        """Rescale a mapping of relative weights so they sum to 1.0."""
        cls._check_keys(mapping)
        for name, value in mapping.items():
            if value < 0:
                raise ValueError(f"Weight for '{name}' must be >= 0, got {value}")
        total = sum(float(v) for v in mapping.values())
        if total <= 0:
            raise ValueError("At least one match weight must be positive")
        return cls(
            **{c.value: float(mapping.get(c.value, 0.0)) / total for c in MatchCriterion}
        )


DEFAULT_MATCH_WEIGHTS = MatchWeights()


# ---------------------------------------------------------------------------
# Inputs / outputs
# ---------------------------------------------------------------------------

@dataclass
class ScoringCandidate:
    """Directory data for one technician, already within the search radius."""

    technician: Any
    technician_id: Any
    distance_km: float
    skills: list[dict[str, Any]] = field(default_factory=list)
    availability: list[dict[str, Any]] = field(default_factory=list)
    rating_average: float = 0.0
    rating_count: int = 0
    experience_years: float = 0.0
    hourly_rate: Optional[float] = None
    avg_response_time_min: Optional[float] = None
    completion_rate: Optional[float] = None
    total_bookings: int = 0
    subscription_plan: Optional[SubscriptionPlan] = None
    boost_multiplier: float = 1.0


@dataclass(frozen=True)
class ScoringContext:
    service_category: str
    max_distance_km: float
    budget: Optional[float] = None
    preferred_local_time: Optional[datetime] = None
    preferred_technician_ids: frozenset[str] = frozenset()


@dataclass
class CriterionScores:
    skill_match: float = 0.0
    location_proximity: float = 0.0
    availability: float = 0.0
    rating: float = 0.0
    experience_level: float = 0.0
    price_fit: float = 0.0
    response_time: float = 0.0
    completion_rate: float = 0.0
    customer_preference: float = 0.0

    def get(self, criterion: MatchCriterion) -> float:
        return getattr(self, criterion.value)

    def as_dict(self) -> dict[str, float]:
        return asdict(self)


@dataclass
class ScoredCandidate:
    candidate: ScoringCandidate
    scores: CriterionScores
    base_score: float
    boost_multiplier: float
    overall: float
    reasons: list[dict[str, Any]] = field(default_factory=list)
    rank: int = 0

    @property
    def is_boosted(self) -> bool:
        return self.boost_multiplier > 1.0


# ---------------------------------------------------------------------------
# Criterion scores
# ---------------------------------------------------------------------------

def _clamp(value: float) -> float:
    return max(0.0, min(100.0, value))


def _score_skill(skills: list[dict[str, Any]], category: str) -> float:
    """70 for having the skill, +15 verified, +1.5 per year up to 10 years."""
    best = 0.0
    for skill in skills:
        if skill.get("category") != category:
            continue
        years = min(float(skill.get("years_of_experience") or 0), MAX_SKILL_YEARS)
        score = SKILL_BASE_SCORE + years * SKILL_POINTS_PER_YEAR
        if skill.get("verified"):
            score += SKILL_VERIFIED_BONUS
        best = max(best, _clamp(score))
    return best


def _score_proximity(distance_km: float, max_distance_km: float) -> float:
    """Closer is better: 0 km = 100, the search radius or beyond = 0."""
    if max_distance_km <= 0 or distance_km <= 0:
        return 100.0
    return _clamp((1 - distance_km / max_distance_km) * 100.0)


def _parse_slot_time(value: Optional[str], default: time) -> time:
    if not value:
        return default
    hours, minutes = value.split(":")[:2]
    return time(int(hours), int(minutes))


def _score_availability(
    slots: list[dict[str, Any]], preferred_local_time: Optional[datetime]
) -> float:
    """Weekly schedule vs. the preferred time (local, 0 = Sunday)."""
    open_slots = [slot for slot in slots if slot.get("is_available", True)]
    if not slots:
        return NEUTRAL_SCORE
    if not open_slots:
        return UNAVAILABLE_SCORE
    if preferred_local_time is None:
        return AVAILABLE_ANY_TIME_SCORE

    day = (preferred_local_time.weekday() + 1) % 7
    at = preferred_local_time.time().replace(second=0, microsecond=0)
    same_day = [slot for slot in open_slots if slot.get("day_of_week") == day]
    for slot in same_day:
        start = _parse_slot_time(slot.get("start_time"), time(0, 0))
        end = _parse_slot_time(slot.get("end_time"), time(23, 59))
        if start <= at <= end:
            return AVAILABLE_AT_TIME_SCORE
    if same_day:
        return AVAILABLE_SAME_DAY_SCORE
    return UNAVAILABLE_SCORE


def _score_rating(average: float, count: int) -> float:
    if count <= 0:
        return UNRATED_SCORE
    return _clamp(average / MAX_RATING * 100.0)


def _score_experience(years: float) -> float:
    return _clamp(min(years, MAX_EXPERIENCE_YEARS) / MAX_EXPERIENCE_YEARS * 100.0)


def _score_price_fit(hourly_rate: Optional[float], budget: Optional[float]) -> float:
    if hourly_rate is None or budget is None or hourly_rate <= 0 or budget <= 0:
        return NEUTRAL_SCORE
    if hourly_rate <= budget:
        return 100.0
    return _clamp(budget / hourly_rate * 100.0)


def _score_response_time(response_time_min: Optional[float]) -> float:
    """Faster is better: 0 min = 100, MAX_RESPONSE_TIME_MIN+ = 0."""
    if response_time_min is None:
        return NEUTRAL_SCORE
    if response_time_min <= 0:
        return 100.0
    if response_time_min >= MAX_RESPONSE_TIME_MIN:
        return 0.0
    return (MAX_RESPONSE_TIME_MIN - response_time_min) / MAX_RESPONSE_TIME_MIN * 100.0


def _score_completion(completion_rate: Optional[float], total_bookings: int) -> float:
    if total_bookings <= 0 or completion_rate is None:
        return NEUTRAL_SCORE
    return _clamp(completion_rate)


def _score_preference(technician_id: Any, preferred_ids: frozenset[str]) -> float:
    return 100.0 if str(technician_id) in preferred_ids else NEUTRAL_SCORE


def compute_criterion_scores(
    candidate: ScoringCandidate, context: ScoringContext
) -> CriterionScores:
    return CriterionScores(
        skill_match=round(_score_skill(candidate.skills, context.service_category), 2),
        location_proximity=round(
            _score_proximity(candidate.distance_km, context.max_distance_km), 2
        ),
        availability=round(
            _score_availability(candidate.availability, context.preferred_local_time), 2
        ),
        rating=round(_score_rating(candidate.rating_average, candidate.rating_count), 2),
        experience_level=round(_score_experience(candidate.experience_years), 2),
        price_fit=round(_score_price_fit(candidate.hourly_rate, context.budget), 2),
        response_time=round(_score_response_time(candidate.avg_response_time_min), 2),
        completion_rate=round(
            _score_completion(candidate.completion_rate, candidate.total_bookings), 2
        ),
        customer_preference=_score_preference(
            candidate.technician_id, context.preferred_technician_ids
        ),
    )


def weighted_score(scores: CriterionScores, weights: MatchWeights) -> float:
    return round(
        sum(scores.get(c) * weights.for_criterion(c) for c in MatchCriterion), 2
    )


# ---------------------------------------------------------------------------
# Match reasons
# ---------------------------------------------------------------------------

def generate_match_reasons(
    scored: ScoredCandidate, weights: MatchWeights
) -> list[dict[str, Any]]:
    """Human-readable, threshold-based explanations. Ranking ignores them."""
    scores = scored.scores
    candidate = scored.candidate
    reasons: list[dict[str, Any]] = []

    def add(criterion: MatchCriterion, text: str) -> None:
        reasons.append(
            {
                "reason": text,
                "weight": weights.for_criterion(criterion),
                "score": scores.get(criterion),
            }
        )

    if scores.skill_match >= 90:
        add(MatchCriterion.SKILL_MATCH, "Expert in required service category")
    elif scores.skill_match >= 75:
        add(MatchCriterion.SKILL_MATCH, "Highly skilled in required service")
    if scores.location_proximity >= 85:
        add(MatchCriterion.LOCATION_PROXIMITY, "Very close to your location")
    if scores.availability >= 90:
        add(MatchCriterion.AVAILABILITY, "Available at your preferred time")
    if scores.rating >= 80 and candidate.rating_count > 0:
        add(MatchCriterion.RATING, f"Highly rated ({candidate.rating_average:.1f}/5.0)")
    if scores.experience_level >= 80:
        add(
            MatchCriterion.EXPERIENCE_LEVEL,
            f"{int(candidate.experience_years)}+ years of experience",
        )
    if scores.completion_rate >= 85:
        add(MatchCriterion.COMPLETION_RATE, "High job completion rate")
    if scores.response_time >= 85:
        add(MatchCriterion.RESPONSE_TIME, "Fast response time")
    if scores.customer_preference >= 100:
        add(MatchCriterion.CUSTOMER_PREFERENCE, "One of your preferred technicians")

    if scored.is_boosted:
        badge = (
            "Premium Verified Technician"
            if candidate.subscription_plan == SubscriptionPlan.PREMIUM
            else "Pro Verified Technician"
        )
        reasons.insert(
            0,
            {
                "reason": badge,
                "weight": round(scored.boost_multiplier - 1.0, 2),
                "score": 100.0,
                "is_pro": True,
            },
        )

    return reasons


# ---------------------------------------------------------------------------
# Scoring & ranking
# ---------------------------------------------------------------------------

def score_candidate(
    candidate: ScoringCandidate,
    context: ScoringContext,
    weights: MatchWeights = DEFAULT_MATCH_WEIGHTS,
) -> ScoredCandidate:
    scores = compute_criterion_scores(candidate, context)
    base = weighted_score(scores, weights)
    boost = candidate.boost_multiplier if candidate.boost_multiplier > 0 else 1.0

    scored = ScoredCandidate(
        candidate=candidate,
        scores=scores,
        base_score=base,
        boost_multiplier=boost,
        overall=round(base * boost, 2),
    )
    scored.reasons = generate_match_reasons(scored, weights)
    return scored


def rank_candidates(
    scored: list[ScoredCandidate],
    top_n: int = DEFAULT_TOP_N,
) -> list[ScoredCandidate]:
    """Sort by boosted score, then base score, then distance; keep the top N."""
    ranked = sorted(
        scored,
        key=lambda s: (-s.overall, -s.base_score, s.candidate.distance_km),
    )[:top_n]
    for position, item in enumerate(ranked, start=1):
        item.rank = position
    return ranked
