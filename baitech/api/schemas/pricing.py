"""
Pydantic v2 schemas for the Pricing API.

Request bodies for price calculation, estimates, comparisons and catalog
lookups, plus the admin schemas for publishing configuration versions.
Money is returned as plain numbers rounded to 2 places.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from baitech.models.taxonomy import ServiceCategory, UrgencyLevel
from baitech.services.pricingRules import PriceUnit


# ---------------------------------------------------------------------------
# Shared
# ---------------------------------------------------------------------------

class LocationIn(BaseModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)


class PricingErrorOut(BaseModel):
    code: str
    message: str


# ---------------------------------------------------------------------------
# Calculate / estimate
# ---------------------------------------------------------------------------

class PriceCalculationRequest(BaseModel):
    """Request body for pricing a service."""

    service_category: str = Field(min_length=1, max_length=50, description="Case-insensitive")
    service_type: Optional[str] = Field(
        default=None,
        max_length=200,
        description="Falls back to the category's 'general' price when unknown",
    )
    urgency: Optional[UrgencyLevel] = Field(
        default=None,
        description="Pins the urgency; otherwise derived from scheduled_at",
    )
    service_location: Optional[LocationIn] = None
    technician_location: Optional[LocationIn] = None
    technician_id: Optional[uuid.UUID] = None
    scheduled_at: Optional[datetime] = None
    quantity: int = Field(default=1, ge=1, le=1000)


class PriceEstimateRequest(PriceCalculationRequest):
    """Pre-match estimate; the customer's location stands in for the technician's."""

    customer_location: Optional[LocationIn] = None


class BookingFeeOut(BaseModel):
    percentage: int
    amount: float
    remaining_amount: float


class PriceBreakdownOut(BaseModel):
    base_price: float
    distance_fee: float
    urgency_multiplier: float
    time_multiplier: float
    technician_multiplier: float
    subtotal: float
    discount: float
    total_amount: float
    platform_fee: float
    tax: float
    technician_payout: float
    booking_fee: BookingFeeOut
    currency: str
    config_version: int
    details: dict[str, Any]


class PriceCalculationResponse(BaseModel):
    success: bool
    pricing: PriceBreakdownOut


# ---------------------------------------------------------------------------
# Compare
# ---------------------------------------------------------------------------

class PriceComparisonRequest(PriceCalculationRequest):
    technician_ids: list[uuid.UUID] = Field(min_length=1, max_length=20)


class TechnicianPriceOut(BaseModel):
    technician_id: uuid.UUID
    name: str
    rating: float
    completed_jobs: int
    experience_years: int
    distance_km: float
    pricing: PriceBreakdownOut


class PriceComparisonResponse(BaseModel):
    comparisons: list[TechnicianPriceOut]
    cheapest: Optional[TechnicianPriceOut] = None
    most_expensive: Optional[TechnicianPriceOut] = None


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------

class CatalogEntryOut(BaseModel):
    service_type: str
    base_price: float
    price_unit: str
    estimated_duration: int
    description: Optional[str] = None
    price_min: float
    price_max: float


class ServiceCatalogResponse(BaseModel):
    category: ServiceCategory
    currency: str
    config_version: int
    services: list[CatalogEntryOut]


class ServiceTypesResponse(BaseModel):
    category: ServiceCategory
    service_types: list[str]


class ValidateServiceRequest(BaseModel):
    service_category: str = Field(min_length=1, max_length=50)
    service_type: str = Field(min_length=1, max_length=200)


class ValidateServiceResponse(BaseModel):
    valid: bool
    service_type: str
    resolved_type: Optional[str] = None
    uses_fallback: bool
    suggestions: list[str]


# ---------------------------------------------------------------------------
# Admin: configuration versions
# ---------------------------------------------------------------------------

class PricingConfigOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    version: int
    is_active: bool
    currency: str
    notes: Optional[str] = None
    created_by: Optional[uuid.UUID] = None
    effective_from: Optional[datetime] = None
    created_at: Optional[datetime] = None
    rules: dict[str, Any]


class PricingConfigSummaryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    version: int
    is_active: bool
    currency: str
    notes: Optional[str] = None
    created_at: Optional[datetime] = None


class PricingConfigHistoryResponse(BaseModel):
    items: list[PricingConfigSummaryOut]
    total: int
    page: int
    page_size: int


class PublishConfigRequest(BaseModel):
    """Partial changes deep-merged into the active ruleset as a new version."""

    changes: dict[str, Any] = Field(min_length=1)
    name: Optional[str] = Field(default=None, max_length=200)
    notes: Optional[str] = Field(default=None, max_length=2000)


class ServicePriceIn(BaseModel):
    service_category: ServiceCategory
    service_type: str = Field(min_length=1, max_length=200)
    base_price: float = Field(ge=0)
    price_unit: PriceUnit = PriceUnit.FIXED
    estimated_duration: int = Field(default=60, ge=0)
    description: Optional[str] = None
    is_active: bool = True


class ServicePriceUpdate(BaseModel):
    base_price: Optional[float] = Field(default=None, ge=0)
    price_unit: Optional[PriceUnit] = None
    estimated_duration: Optional[int] = Field(default=None, ge=0)
    description: Optional[str] = None
    is_active: Optional[bool] = None
