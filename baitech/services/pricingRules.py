"""
Pricing Rules
=============

Typed, validated representation of a pricing configuration document.

A ``PricingConfig`` row stores its rules as a JSON document; every read goes
through ``PricingRules.model_validate`` so the engine only ever sees checked
values: multipliers are non-negative, tier bounds are ordered, unknown keys
are rejected and the timezone is a real IANA zone.

The lookups the price calculator needs (service price, distance tier,
urgency multiplier, time-of-day multiplier, technician tier, discount) live
on the structs themselves.
"""

from __future__ import annotations

import copy
import enum
from dataclasses import dataclass
from datetime import datetime, time
from decimal import Decimal
from typing import Any, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from baitech.core.config import settings
from baitech.models.taxonomy import ServiceCategory, UrgencyLevel

GENERAL_SERVICE_TYPE = "general"

_TIME_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"


class PriceUnit(str, enum.Enum):
    FIXED = "fixed"
    PER_HOUR = "per_hour"
    PER_UNIT = "per_unit"
    PER_SQM = "per_sqm"


class AmountType(str, enum.Enum):
    PERCENTAGE = "percentage"
    FLAT = "flat"


def to_decimal(value: float | int | Decimal) -> Decimal:
    """Convert a config number to ``Decimal`` without binary float noise."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


class _RulesModel(BaseModel):
    model_config = ConfigDict(extra="forbid")


# ---------------------------------------------------------------------------
# Service prices
# ---------------------------------------------------------------------------

class ServicePrice(_RulesModel):
    service_category: ServiceCategory
    service_type: str = Field(min_length=1, max_length=200)
    base_price: float = Field(ge=0)
    price_unit: PriceUnit = PriceUnit.FIXED
    estimated_duration: int = Field(default=60, ge=0, description="Minutes")
    description: Optional[str] = None
    is_active: bool = True

    def same_service(self, category: ServiceCategory, service_type: str) -> bool:
        """Same category and type (case-insensitive), active or not."""
        return (
            self.service_category == category
            and self.service_type.strip().lower() == service_type.strip().lower()
        )

    def matches(self, category: ServiceCategory, service_type: str) -> bool:
        return self.is_active and self.same_service(category, service_type)


# ---------------------------------------------------------------------------
# Distance
# ---------------------------------------------------------------------------

class DistanceTier(_RulesModel):
    min_distance: float = Field(ge=0)
    max_distance: float = Field(ge=0)
    price_per_km: float = Field(default=0, ge=0)
    flat_fee: float = Field(default=0, ge=0)

    @model_validator(mode="after")
    def _ordered_bounds(self) -> "DistanceTier":
        if self.min_distance > self.max_distance:
            raise ValueError(
                f"distance tier min_distance {self.min_distance} exceeds "
                f"max_distance {self.max_distance}"
            )
        return self

    @property
    def label(self) -> str:
        return f"{self.min_distance:g}-{self.max_distance:g}km"


class DistancePricing(_RulesModel):
    enabled: bool = True
    max_service_distance: float = Field(default=50, gt=0)
    tiers: list[DistanceTier] = Field(default_factory=list)

    def get_tier(self, distance_km: float) -> Optional[DistanceTier]:
        """First tier (by lower bound) whose inclusive range holds the distance."""
        for tier in sorted(self.tiers, key=lambda t: t.min_distance):
            if tier.min_distance <= distance_km <= tier.max_distance:
                return tier
        return None


# ---------------------------------------------------------------------------
# Urgency
# ---------------------------------------------------------------------------

class UrgencyMultipliers(_RulesModel):
    low: float = Field(default=1.0, ge=0)
    medium: float = Field(default=1.2, ge=0)
    high: float = Field(default=1.5, ge=0)
    emergency: float = Field(default=2.0, ge=0)

    def for_level(self, level: UrgencyLevel) -> float:
        return getattr(self, level.value)


# ---------------------------------------------------------------------------
# Time of day
# ---------------------------------------------------------------------------

def _parse_hhmm(value: str) -> time:
    hours, minutes = value.split(":")
    return time(int(hours), int(minutes))


def day_of_week(moment: datetime) -> int:
    """Day index with 0 = Sunday, 6 = Saturday."""
    return (moment.weekday() + 1) % 7


class TimeSchedule(_RulesModel):
    name: str
    days_of_week: list[int] = Field(default_factory=list)
    start_time: Optional[str] = Field(default=None, pattern=_TIME_PATTERN)
    end_time: Optional[str] = Field(default=None, pattern=_TIME_PATTERN)
    multiplier: float = Field(default=1.0, ge=0)
    is_active: bool = True

    @field_validator("days_of_week")
    @classmethod
    def _valid_days(cls, days: list[int]) -> list[int]:
        for day in days:
            if not 0 <= day <= 6:
                raise ValueError(f"day_of_week {day} outside 0 (Sunday) .. 6 (Saturday)")
        return days

    def applies_at(self, local_moment: datetime) -> bool:
        if not self.is_active or day_of_week(local_moment) not in self.days_of_week:
            return False
        if self.start_time is None or self.end_time is None:
            return True

        current = local_moment.time().replace(second=0, microsecond=0)
        start = _parse_hhmm(self.start_time)
        end = _parse_hhmm(self.end_time)
        if start <= end:
            return start <= current <= end
        # Window wraps past midnight
        return current >= start or current <= end


class TimePricing(_RulesModel):
    enabled: bool = True
    schedules: list[TimeSchedule] = Field(default_factory=list)

    def get_multiplier(self, local_moment: datetime) -> tuple[float, Optional[TimeSchedule]]:
        """Highest multiplier among the schedules covering the moment.

        Schedules do not stack; with none applicable the multiplier is 1.
        """
        if not self.enabled:
            return 1.0, None

        matched = [s for s in self.schedules if s.applies_at(local_moment)]
        if not matched:
            return 1.0, None
        best = max(matched, key=lambda s: s.multiplier)
        return best.multiplier, best


# ---------------------------------------------------------------------------
# Technician tiers
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TechnicianStats:
    experience_years: float
    rating: float
    completed_jobs: int


class TechnicianTier(_RulesModel):
    tier_name: str
    min_experience: float = Field(default=0, ge=0)
    min_rating: Optional[float] = Field(default=None, ge=0, le=5)
    min_completed_jobs: Optional[int] = Field(default=None, ge=0)
    price_multiplier: float = Field(default=1.0, ge=0)
    description: Optional[str] = None

    def admits(self, stats: TechnicianStats) -> bool:
        if stats.experience_years < self.min_experience:
            return False
        # Zero or missing gates are not enforced
        if self.min_rating and stats.rating < self.min_rating:
            return False
        if self.min_completed_jobs and stats.completed_jobs < self.min_completed_jobs:
            return False
        return True


DEFAULT_TIER = TechnicianTier(tier_name="Standard", price_multiplier=1.0)


class TechnicianTiers(_RulesModel):
    enabled: bool = True
    tiers: list[TechnicianTier] = Field(default_factory=list)

    def classify(self, stats: TechnicianStats) -> TechnicianTier:
        """Highest-experience tier whose every gate passes, else Standard."""
        for tier in sorted(self.tiers, key=lambda t: t.min_experience, reverse=True):
            if tier.admits(stats):
                return tier
        return DEFAULT_TIER


# ---------------------------------------------------------------------------
# Discounts
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CustomerHistory:
    total_bookings: int

    @property
    def is_first_booking(self) -> bool:
        return self.total_bookings == 0


@dataclass(frozen=True)
class DiscountDecision:
    amount: Decimal
    reason: Optional[str] = None


class FirstTimeCustomerDiscount(_RulesModel):
    enabled: bool = False
    type: AmountType = AmountType.PERCENTAGE
    value: float = Field(default=0, ge=0)


class LoyaltyThreshold(_RulesModel):
    min_bookings: int = Field(ge=0)
    discount: float = Field(ge=0, le=100, description="Percentage off the subtotal")


class LoyaltyDiscount(_RulesModel):
    enabled: bool = False
    thresholds: list[LoyaltyThreshold] = Field(default_factory=list)

    def threshold_for(self, total_bookings: int) -> Optional[LoyaltyThreshold]:
        reached = [t for t in self.thresholds if total_bookings >= t.min_bookings]
        if not reached:
            return None
        return max(reached, key=lambda t: t.min_bookings)


class Discounts(_RulesModel):
    first_time_customer: FirstTimeCustomerDiscount = Field(
        default_factory=FirstTimeCustomerDiscount
    )
    loyalty: LoyaltyDiscount = Field(default_factory=LoyaltyDiscount)

    def calculate(self, customer: CustomerHistory, subtotal: Decimal) -> DiscountDecision:
        """First-time discount for customers without bookings, else loyalty.

        The discount never exceeds the subtotal.
        """
        amount = Decimal("0")
        reason: Optional[str] = None

        first = self.first_time_customer
        if customer.is_first_booking and first.enabled:
            if first.type == AmountType.PERCENTAGE:
                amount = subtotal * to_decimal(first.value) / Decimal("100")
            else:
                amount = to_decimal(first.value)
            reason = "First-time customer discount"
        elif self.loyalty.enabled:
            threshold = self.loyalty.threshold_for(customer.total_bookings)
            if threshold is not None and threshold.discount > 0:
                amount = subtotal * to_decimal(threshold.discount) / Decimal("100")
                reason = f"Loyalty discount ({threshold.min_bookings}+ bookings)"

        amount = min(amount, subtotal)
        if amount <= 0:
            return DiscountDecision(amount=Decimal("0"))
        return DiscountDecision(amount=amount, reason=reason)


# ---------------------------------------------------------------------------
# Fees
# ---------------------------------------------------------------------------

class PlatformFee(_RulesModel):
    type: AmountType = AmountType.PERCENTAGE
    value: float = Field(default=15, ge=0)

    def amount_on(self, total: Decimal) -> Decimal:
        if self.type == AmountType.PERCENTAGE:
            return total * to_decimal(self.value) / Decimal("100")
        return to_decimal(self.value)


class TaxRule(_RulesModel):
    enabled: bool = True
    name: str = "VAT"
    rate: float = Field(default=16, ge=0, le=100)


# ---------------------------------------------------------------------------
# Whole document
# ---------------------------------------------------------------------------

class PricingRules(_RulesModel):
    currency: str = Field(
        default_factory=lambda: settings.default_currency, min_length=3, max_length=3
    )
    timezone: str = Field(default_factory=lambda: settings.pricing_timezone)

    service_prices: list[ServicePrice] = Field(default_factory=list)
    distance_pricing: DistancePricing = Field(default_factory=DistancePricing)
    urgency_multipliers: UrgencyMultipliers = Field(default_factory=UrgencyMultipliers)
    time_pricing: TimePricing = Field(default_factory=TimePricing)
    technician_tiers: TechnicianTiers = Field(default_factory=TechnicianTiers)
    discounts: Discounts = Field(default_factory=Discounts)
    platform_fee: PlatformFee = Field(default_factory=PlatformFee)
    tax: TaxRule = Field(default_factory=TaxRule)

    min_booking_price: float = Field(default=500, ge=0)
    max_booking_price: float = Field(default=100000, gt=0)

    @field_validator("timezone")
    @classmethod
    def _known_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown timezone '{value}'") from exc
        return value

    @model_validator(mode="after")
    def _unique_service_prices(self) -> "PricingRules":
        seen: set[tuple[ServiceCategory, str]] = set()
        for entry in self.service_prices:
            key = (entry.service_category, entry.service_type.strip().lower())
            if key in seen:
                raise ValueError(
                    f"Duplicate service price {entry.service_category.value}/{entry.service_type}"
                )
            seen.add(key)
        return self

    @model_validator(mode="after")
    def _ordered_price_bounds(self) -> "PricingRules":
        if self.min_booking_price > self.max_booking_price:
            raise ValueError(
                f"min_booking_price {self.min_booking_price} exceeds "
                f"max_booking_price {self.max_booking_price}"
            )
        return self

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)

    def get_service_price(
        self, category: ServiceCategory, service_type: str
    ) -> Optional[ServicePrice]:
        """Exact active ``(category, type)`` entry, or None. No fallback here."""
        for entry in self.service_prices:
            if entry.matches(category, service_type):
                return entry
        return None

    def find_service_entry(
        self, category: ServiceCategory, service_type: str
    ) -> Optional[ServicePrice]:
        """The ``(category, type)`` entry whether active or not."""
        for entry in self.service_prices:
            if entry.same_service(category, service_type):
                return entry
        return None

    def services_in(self, category: ServiceCategory) -> list[ServicePrice]:
        return [
            entry
            for entry in self.service_prices
            if entry.is_active and entry.service_category == category
        ]

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json")

    def with_changes(self, changes: dict[str, Any]) -> "PricingRules":
        """Return a new validated ruleset with ``changes`` deep-merged in.

        Nested objects merge key by key; lists and scalars are replaced.
        """
        document = _deep_merge(self.to_document(), changes)
        return PricingRules.model_validate(document)


def _deep_merge(base: dict[str, Any], changes: dict[str, Any]) -> dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in changes.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged
