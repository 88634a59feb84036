"""
Pricing Engine
==============

Turns a service request into a multi-factor price breakdown against the
active pricing configuration.

Order of operations (each step feeds the next):

1. Base price: resolved service price x quantity (``general`` fallback on type).
2. Distance fee: tier flat fee + km x tier rate, when distance pricing is on
   and both locations are known. Beyond the max service distance the request
   fails.
3. Urgency multiplier: pinned by the caller, or derived from hours until the
   scheduled time (<=4h emergency, <=24h high, <=72h medium, else low; past
   dates are medium).
4. Time-of-day multiplier from the schedule rules, evaluated in the
   config's local timezone.
5. Technician tier multiplier (highest-experience tier whose gates all pass).
6. Subtotal = (base + distance) x urgency x time x tier.
7. Discount: first-time customer, else loyalty. Subtracted from the subtotal.
8. Total = subtotal - discount.
9. Clamp total into [min_booking_price, max_booking_price].
10. Platform fee on the clamped total.
11. Tax on the platform fee.
12. Technician payout = total - platform fee - tax.
13. Booking fee = 20% of the total; remaining = total - booking fee.
14. Money fields are rounded (half up, 2 places) once, at the end.

Failures are returned as a tagged ``PricingResult`` with ``success=False``;
``calculate_price`` never raises a pricing failure to its caller.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from baitech.models.base import as_utc, utcnow
from baitech.models.taxonomy import ServiceCategory, UrgencyLevel
from baitech.models.user import User, UserRole
from baitech.services.geoService import GeoPoint, point_of, pricing_distance
from baitech.services.pricingConfigService import (
    ActivePricingConfig,
    get_active_config,
    resolve_service_price,
)
from baitech.services.pricingErrors import (
    InvalidBookingFeeError,
    PricingError,
    PricingErrorCode,
    ServiceAreaExceededError,
)
from baitech.services.pricingRules import (
    CustomerHistory,
    PricingRules,
    TechnicianStats,
    to_decimal,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Refundable deposit held in escrow before a technician is assigned
BOOKING_FEE_PERCENTAGE = 20

# Hours-until-service thresholds for urgency derivation, checked in order
URGENCY_THRESHOLDS_HOURS: tuple[tuple[float, UrgencyLevel], ...] = (
    (4, UrgencyLevel.EMERGENCY),
    (24, UrgencyLevel.HIGH),
    (72, UrgencyLevel.MEDIUM),
)

# Catalog upper bound relative to the base price, approximating stacked multipliers
CATALOG_PRICE_RANGE_FACTOR = Decimal("2.5")

_CENT = Decimal("0.01")
_HUNDRED = Decimal("100")


def _round_money(value: Decimal) -> Decimal:
    return value.quantize(_CENT, rounding=ROUND_HALF_UP)


# ---------------------------------------------------------------------------
# DTOs
# ---------------------------------------------------------------------------

@dataclass
class PricingParams:
    """Inputs of one price calculation."""
    service_category: ServiceCategory
    service_type: Optional[str] = None
    urgency: Optional[UrgencyLevel] = None
    service_location: Optional[GeoPoint] = None
    technician_location: Optional[GeoPoint] = None
    technician_id: Optional[uuid.UUID] = None
    scheduled_at: Optional[datetime] = None
    customer_id: Optional[uuid.UUID] = None
    quantity: int = 1


@dataclass(frozen=True)
class TechnicianSnapshot:
    """The directory data the tier classification needs."""
    id: uuid.UUID
    name: str
    stats: TechnicianStats


@dataclass
class BookingFee:
    percentage: int
    amount: Decimal
    remaining_amount: Decimal


@dataclass
class PriceBreakdown:
    """Full, rounded result of a price calculation."""
    base_price: Decimal
    distance_fee: Decimal
    urgency_multiplier: float
    time_multiplier: float
    technician_multiplier: float
    subtotal: Decimal
    discount: Decimal
    total_amount: Decimal
    platform_fee: Decimal
    tax: Decimal
    technician_payout: Decimal
    booking_fee: BookingFee
    currency: str
    config_version: int
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def distance_km(self) -> Optional[float]:
        distance = self.details.get("distance")
        return distance["kilometers"] if distance else None

    def to_dict(self) -> dict[str, Any]:
        """JSON-safe snapshot with money as plain numbers."""
        return {
            "base_price": float(self.base_price),
            "distance_fee": float(self.distance_fee),
            "urgency_multiplier": self.urgency_multiplier,
            "time_multiplier": self.time_multiplier,
            "technician_multiplier": self.technician_multiplier,
            "subtotal": float(self.subtotal),
            "discount": float(self.discount),
            "total_amount": float(self.total_amount),
            "platform_fee": float(self.platform_fee),
            "tax": float(self.tax),
            "technician_payout": float(self.technician_payout),
            "booking_fee": {
                "percentage": self.booking_fee.percentage,
                "amount": float(self.booking_fee.amount),
                "remaining_amount": float(self.booking_fee.remaining_amount),
            },
            "currency": self.currency,
            "config_version": self.config_version,
            "details": self.details,
        }


@dataclass(frozen=True)
class PricingFailure:
    code: PricingErrorCode
    message: str


@dataclass
class PricingResult:
    success: bool
    breakdown: Optional[PriceBreakdown] = None
    error: Optional[PricingFailure] = None

    @classmethod
    def succeeded(cls, breakdown: PriceBreakdown) -> "PricingResult":
        return cls(success=True, breakdown=breakdown)

    @classmethod
    def failed(cls, exc: PricingError) -> "PricingResult":
        return cls(success=False, error=PricingFailure(code=exc.code, message=str(exc)))


@dataclass
class TechnicianPrice:
    technician_id: uuid.UUID
    name: str
    rating: float
    completed_jobs: int
    experience_years: int
    distance_km: float
    pricing: PriceBreakdown


@dataclass
class PriceComparison:
    comparisons: list[TechnicianPrice]
    cheapest: Optional[TechnicianPrice]
    most_expensive: Optional[TechnicianPrice]


@dataclass
class CatalogEntry:
    service_category: ServiceCategory
    service_type: str
    base_price: Decimal
    price_unit: str
    estimated_duration: int
    description: Optional[str]
    price_min: Decimal
    price_max: Decimal


@dataclass
class ServiceCatalog:
    category: ServiceCategory
    currency: str
    config_version: int
    services: list[CatalogEntry]


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------

def derive_urgency(scheduled_at: datetime, now: datetime) -> UrgencyLevel:
    """Urgency from the hours left until the scheduled time."""
    hours_until = (as_utc(scheduled_at) - as_utc(now)).total_seconds() / 3600
    if hours_until < 0:
        return UrgencyLevel.MEDIUM
    for limit, level in URGENCY_THRESHOLDS_HOURS:
        if hours_until <= limit:
            return level
    return UrgencyLevel.LOW


def technician_snapshot(user: User) -> TechnicianSnapshot:
    return TechnicianSnapshot(
        id=user.id,
        name=f"{user.first_name} {user.last_name}",
        stats=TechnicianStats(
            experience_years=user.experience_years or 0,
            rating=user.rating_average or 0.0,
            completed_jobs=user.completed_bookings or 0,
        ),
    )


def compute_breakdown(
    rules: PricingRules,
    params: PricingParams,
    *,
    config_version: int,
    now: datetime,
    customer: Optional[CustomerHistory] = None,
    technician: Optional[TechnicianSnapshot] = None,
) -> PriceBreakdown:
    """Run the pricing steps against a validated ruleset.

    Pure: every input, including the current time, is passed in.

    Raises:
        UnknownCategoryError: The service cannot be priced, even via fallback.
        ServiceAreaExceededError: The technician is beyond the service radius.
        InvalidBookingFeeError: The booking fee would not be positive.
    """
    details: dict[str, Any] = {}

    # 1. Base price
    entry, used_fallback = resolve_service_price(
        rules, params.service_category, params.service_type
    )
    unit_price = to_decimal(entry.base_price)
    base_price = unit_price * params.quantity
    details["service_price"] = {
        "requested_type": params.service_type,
        "service_type": entry.service_type,
        "used_fallback": used_fallback,
        "price": float(unit_price),
        "unit": entry.price_unit.value,
        "quantity": params.quantity,
        "total": float(base_price),
        "estimated_duration": entry.estimated_duration,
    }

    # 2. Distance fee
    distance_fee = Decimal("0")
    distance_rules = rules.distance_pricing
    if distance_rules.enabled and params.service_location and params.technician_location:
        distance = pricing_distance(params.service_location, params.technician_location)
        if distance > distance_rules.max_service_distance:
            raise ServiceAreaExceededError(distance, distance_rules.max_service_distance)

        tier = distance_rules.get_tier(distance)
        if tier is not None:
            distance_fee = to_decimal(tier.flat_fee) + to_decimal(distance) * to_decimal(
                tier.price_per_km
            )
        details["distance"] = {
            "kilometers": distance,
            "tier": (
                {
                    "range": tier.label,
                    "price_per_km": tier.price_per_km,
                    "flat_fee": tier.flat_fee,
                }
                if tier is not None
                else None
            ),
            "fee": float(distance_fee),
        }

    # 3. Urgency
    if params.urgency is not None:
        urgency = params.urgency
        auto_calculated = False
    elif params.scheduled_at is not None:
        urgency = derive_urgency(params.scheduled_at, now)
        auto_calculated = True
    else:
        urgency = UrgencyLevel.MEDIUM
        auto_calculated = False
    urgency_multiplier = rules.urgency_multipliers.for_level(urgency)
    details["urgency"] = {
        "level": urgency.value,
        "multiplier": urgency_multiplier,
        "auto_calculated": auto_calculated,
    }

    # 4. Time of day
    moment = as_utc(params.scheduled_at) if params.scheduled_at is not None else as_utc(now)
    local_moment = moment.astimezone(rules.tzinfo)
    time_multiplier, schedule = rules.time_pricing.get_multiplier(local_moment)
    details["timing"] = {
        "scheduled_at": moment.isoformat(),
        "local_time": local_moment.isoformat(),
        "timezone": rules.timezone,
        "schedule": schedule.name if schedule is not None else None,
        "multiplier": time_multiplier,
        "is_peak_time": time_multiplier > 1,
    }

    # 5. Technician tier
    technician_multiplier = 1.0
    if technician is not None and rules.technician_tiers.enabled:
        tier = rules.technician_tiers.classify(technician.stats)
        technician_multiplier = tier.price_multiplier
        details["technician"] = {
            "id": str(technician.id),
            "name": technician.name,
            "tier": tier.tier_name,
            "multiplier": technician_multiplier,
            "experience": technician.stats.experience_years,
            "rating": technician.stats.rating,
            "completed_jobs": technician.stats.completed_jobs,
        }

    # 6. Subtotal
    subtotal = (
        (base_price + distance_fee)
        * to_decimal(urgency_multiplier)
        * to_decimal(time_multiplier)
        * to_decimal(technician_multiplier)
    )

    # 7. Discount
    discount = Decimal("0")
    if customer is not None:
        decision = rules.discounts.calculate(customer, subtotal)
        discount = decision.amount
        details["discount"] = {
            "applied": discount > 0,
            "amount": float(_round_money(discount)),
            "reasons": [decision.reason] if decision.reason else [],
        }

    # 8. Total
    total = subtotal - discount

    # 9. Clamp before anything is derived from the total
    min_price = to_decimal(rules.min_booking_price)
    max_price = to_decimal(rules.max_booking_price)
    if total < min_price:
        details["price_adjustment"] = {
            "reason": "Minimum booking price applied",
            "original_price": float(_round_money(total)),
            "adjusted_price": float(min_price),
        }
        total = min_price
    elif total > max_price:
        details["price_adjustment"] = {
            "reason": "Maximum booking price cap applied",
            "original_price": float(_round_money(total)),
            "adjusted_price": float(max_price),
        }
        total = max_price

    total_amount = _round_money(total)

    # 10. Platform fee
    platform_fee_raw = rules.platform_fee.amount_on(total_amount)
    platform_fee = _round_money(platform_fee_raw)
    details["platform_fee"] = {
        "type": rules.platform_fee.type.value,
        "value": rules.platform_fee.value,
        "amount": float(platform_fee),
        "note": "Deducted from technician earnings",
    }

    # 11. Tax on the platform fee
    tax = Decimal("0.00")
    if rules.tax.enabled:
        tax = _round_money(platform_fee_raw * to_decimal(rules.tax.rate) / _HUNDRED)
        details["tax"] = {
            "name": rules.tax.name,
            "rate": rules.tax.rate,
            "amount": float(tax),
            "note": f"{rules.tax.name} on platform fee, deducted from technician earnings",
        }

    # 12. Technician payout
    technician_payout = total_amount - platform_fee - tax

    # 13. Booking fee
    booking_fee_amount = _round_money(
        total_amount * Decimal(BOOKING_FEE_PERCENTAGE) / _HUNDRED
    )
    if booking_fee_amount <= 0:
        raise InvalidBookingFeeError(booking_fee_amount)
    remaining_amount = total_amount - booking_fee_amount
    details["booking_fee"] = {
        "percentage": BOOKING_FEE_PERCENTAGE,
        "amount": float(booking_fee_amount),
        "remaining_amount": float(remaining_amount),
        "description": "Refundable booking deposit (required before matching)",
        "refundable": True,
        "held_in_escrow": True,
    }

    # 14. Round the remaining money fields
    return PriceBreakdown(
        base_price=_round_money(base_price),
        distance_fee=_round_money(distance_fee),
        urgency_multiplier=urgency_multiplier,
        time_multiplier=time_multiplier,
        technician_multiplier=technician_multiplier,
        subtotal=_round_money(subtotal),
        discount=_round_money(discount),
        total_amount=total_amount,
        platform_fee=platform_fee,
        tax=tax,
        technician_payout=technician_payout,
        booking_fee=BookingFee(
            percentage=BOOKING_FEE_PERCENTAGE,
            amount=booking_fee_amount,
            remaining_amount=remaining_amount,
        ),
        currency=rules.currency,
        config_version=config_version,
        details=details,
    )


# ---------------------------------------------------------------------------
# Directory lookups
# ---------------------------------------------------------------------------

async def _get_user(db: AsyncSession, user_id: uuid.UUID) -> Optional[User]:
    result = await db.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def _get_customer_history(
    db: AsyncSession, customer_id: Optional[uuid.UUID]
) -> Optional[CustomerHistory]:
    if customer_id is None:
        return None
    customer = await _get_user(db, customer_id)
    if customer is None:
        return None
    return CustomerHistory(total_bookings=customer.total_bookings or 0)


async def _get_technician(
    db: AsyncSession, technician_id: Optional[uuid.UUID]
) -> Optional[User]:
    if technician_id is None:
        return None
    technician = await _get_user(db, technician_id)
    if technician is None or technician.role != UserRole.TECHNICIAN:
        return None
    return technician


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------

async def _calculate_with_config(
    db: AsyncSession,
    config: ActivePricingConfig,
    params: PricingParams,
    now: datetime,
) -> PricingResult:
    technician = await _get_technician(db, params.technician_id)
    if technician is not None and params.technician_location is None:
        params = replace(params, technician_location=point_of(technician))
    customer = await _get_customer_history(db, params.customer_id)

    try:
        breakdown = compute_breakdown(
            config.rules,
            params,
            config_version=config.version,
            now=now,
            customer=customer,
            technician=technician_snapshot(technician) if technician is not None else None,
        )
    except PricingError as exc:
        logger.warning(
            "Pricing failed for %s/%s: [%s] %s",
            params.service_category.value,
            params.service_type,
            exc.code.value,
            exc,
        )
        return PricingResult.failed(exc)

    if "price_adjustment" in breakdown.details:
        logger.info(
            "Price for %s/%s clamped: %s",
            params.service_category.value,
            params.service_type,
            breakdown.details["price_adjustment"]["reason"],
        )
    logger.debug("Price breakdown details: %s", breakdown.details)
    logger.info(
        "Calculated price %s %s for %s/%s (config v%d)",
        breakdown.total_amount,
        breakdown.currency,
        params.service_category.value,
        params.service_type,
        config.version,
    )
    return PricingResult.succeeded(breakdown)


async def calculate_price(
    db: AsyncSession,
    params: PricingParams,
    *,
    now: Optional[datetime] = None,
) -> PricingResult:
    """Price a service request against the active configuration.

    When ``technician_id`` names a known technician, their tier is applied and,
    unless a technician location was given, their location is used for the
    distance fee.

    Args:
        db: Async database session.
        params: The request to price.
        now: Reference time for urgency derivation (defaults to now, UTC).

    Returns:
        A ``PricingResult``; on failure ``success`` is False and ``error``
        carries the failure code and message.
    """
    now = now or utcnow()
    try:
        config = await get_active_config(db)
    except PricingError as exc:
        logger.error("Pricing unavailable: %s", exc)
        return PricingResult.failed(exc)

    return await _calculate_with_config(db, config, params, now)


async def get_estimate(
    db: AsyncSession,
    params: PricingParams,
    customer_location: Optional[GeoPoint] = None,
    *,
    now: Optional[datetime] = None,
) -> PricingResult:
    """Price a request before a technician is chosen.

    The customer's location stands in for the technician's when computing
    the distance fee; without it the service location is used (no distance).
    """
    estimate_params = replace(
        params,
        technician_id=None,
        technician_location=customer_location or params.service_location,
    )
    return await calculate_price(db, estimate_params, now=now)


async def compare_technician_prices(
    db: AsyncSession,
    base_params: PricingParams,
    technician_ids: Sequence[uuid.UUID],
    *,
    now: Optional[datetime] = None,
) -> PriceComparison:
    """Price the same request once per technician, cheapest first.

    Unknown technicians and failed calculations are left out.

    Raises:
        ConfigNotFoundError: If there is no active configuration.
    """
    now = now or utcnow()
    config = await get_active_config(db)

    prices: list[TechnicianPrice] = []
    for technician_id in technician_ids:
        technician = await _get_technician(db, technician_id)
        if technician is None:
            logger.info("Skipping unknown technician %s in price comparison", technician_id)
            continue

        result = await _calculate_with_config(
            db,
            config,
            replace(
                base_params,
                technician_id=technician.id,
                technician_location=point_of(technician),
            ),
            now,
        )
        if not result.success:
            continue

        breakdown = result.breakdown
        prices.append(
            TechnicianPrice(
                technician_id=technician.id,
                name=f"{technician.first_name} {technician.last_name}",
                rating=technician.rating_average or 0.0,
                completed_jobs=technician.completed_bookings or 0,
                experience_years=technician.experience_years or 0,
                distance_km=breakdown.distance_km or 0.0,
                pricing=breakdown,
            )
        )

    prices.sort(key=lambda p: p.pricing.total_amount)
    return PriceComparison(
        comparisons=prices,
        cheapest=prices[0] if prices else None,
        most_expensive=prices[-1] if prices else None,
    )


async def get_service_catalog(db: AsyncSession, category: ServiceCategory) -> ServiceCatalog:
    """Active services of a category with an indicative price range.

    Raises:
        ConfigNotFoundError: If there is no active configuration.
    """
    config = await get_active_config(db)
    services = [
        CatalogEntry(
            service_category=entry.service_category,
            service_type=entry.service_type,
            base_price=_round_money(to_decimal(entry.base_price)),
            price_unit=entry.price_unit.value,
            estimated_duration=entry.estimated_duration,
            description=entry.description,
            price_min=_round_money(to_decimal(entry.base_price)),
            price_max=_round_money(to_decimal(entry.base_price) * CATALOG_PRICE_RANGE_FACTOR),
        )
        for entry in config.rules.services_in(category)
    ]
    return ServiceCatalog(
        category=category,
        currency=config.currency,
        config_version=config.version,
        services=services,
    )
