"""
Pricing API Routes
==================

Routes:
  POST /api/v1/pricing/calculate                 -- Price a service request
  POST /api/v1/pricing/estimate                  -- Pre-match estimate
  POST /api/v1/pricing/compare                   -- Same request priced per technician
  GET  /api/v1/pricing/catalog/{category}        -- Services with price ranges
  GET  /api/v1/pricing/service-types/{category}  -- Known service types
  POST /api/v1/pricing/validate-service          -- Check a type, suggest close names

Admin:
  GET  /api/v1/pricing/config                    -- Active configuration
  GET  /api/v1/pricing/config/history            -- All versions, newest first
  POST /api/v1/pricing/config                    -- Publish a new version
  POST /api/v1/pricing/config/services           -- Add a service price
  PUT  /api/v1/pricing/config/services/{category}/{service_type}
"""

from __future__ import annotations

from typing import NoReturn, Optional

from fastapi import APIRouter, HTTPException, Query, status

from baitech.api.deps import AdminUser, CurrentUser, DBSession
from baitech.api.schemas.pricing import (
    CatalogEntryOut,
    LocationIn,
    PriceBreakdownOut,
    PriceCalculationRequest,
    PriceCalculationResponse,
    PriceComparisonRequest,
    PriceComparisonResponse,
    PriceEstimateRequest,
    PricingConfigHistoryResponse,
    PricingConfigOut,
    PricingConfigSummaryOut,
    PublishConfigRequest,
    ServiceCatalogResponse,
    ServicePriceIn,
    ServicePriceUpdate,
    ServiceTypesResponse,
    TechnicianPriceOut,
    ValidateServiceRequest,
    ValidateServiceResponse,
)
from baitech.core.config import settings
from baitech.models.taxonomy import ServiceCategory
from baitech.services import pricingConfigService, pricingEngine
from baitech.services.geoService import GeoPoint, point_of
from baitech.services.pricingErrors import ConfigNotFoundError, PricingErrorCode
from baitech.services.pricingRules import ServicePrice

router = APIRouter(prefix="/pricing", tags=["Pricing"])

_FAILURE_STATUS: dict[PricingErrorCode, int] = {
    PricingErrorCode.CONFIG_NOT_FOUND: status.HTTP_503_SERVICE_UNAVAILABLE,
    PricingErrorCode.UNKNOWN_CATEGORY: status.HTTP_400_BAD_REQUEST,
    PricingErrorCode.SERVICE_AREA_EXCEEDED: status.HTTP_400_BAD_REQUEST,
    PricingErrorCode.INVALID_BOOKING_FEE: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _point(location: Optional[LocationIn]) -> Optional[GeoPoint]:
    if location is None:
        return None
    return GeoPoint(location.latitude, location.longitude)


def _params(body: PriceCalculationRequest, customer_id) -> pricingEngine.PricingParams:
    return pricingEngine.PricingParams(
        service_category=parse_category(body.service_category),
        service_type=body.service_type,
        urgency=body.urgency,
        service_location=_point(body.service_location),
        technician_location=_point(body.technician_location),
        technician_id=body.technician_id,
        scheduled_at=body.scheduled_at,
        customer_id=customer_id,
        quantity=body.quantity,
    )


def _raise_failure(code: PricingErrorCode, message: str) -> NoReturn:
    raise HTTPException(
        status_code=_FAILURE_STATUS.get(code, status.HTTP_400_BAD_REQUEST),
        detail={"code": code.value, "message": message},
    )


def _unwrap(result: pricingEngine.PricingResult) -> PriceCalculationResponse:
    if not result.success:
        _raise_failure(result.error.code, result.error.message)
    return PriceCalculationResponse(
        success=True,
        pricing=PriceBreakdownOut(**result.breakdown.to_dict()),
    )


def parse_category(value: str) -> ServiceCategory:
    """Resolve a category name case-insensitively; unknown names are a 400."""
    try:
        return ServiceCategory(value.lower())
    except ValueError:
        _raise_failure(PricingErrorCode.UNKNOWN_CATEGORY, f"Unknown service category '{value}'")


async def _active_config(db: DBSession) -> pricingConfigService.ActivePricingConfig:
    try:
        return await pricingConfigService.get_active_config(db)
    except ConfigNotFoundError as exc:
        _raise_failure(exc.code, str(exc))


# ---------------------------------------------------------------------------
# POST /api/v1/pricing/calculate
# ---------------------------------------------------------------------------

@router.post(
    "/calculate",
    response_model=PriceCalculationResponse,
    summary="Calculate the price of a service request",
    description=(
        "Applies base price, distance fee, urgency, time-of-day and technician "
        "tier multipliers, customer discounts, booking price bounds, platform "
        "fee, tax and the 20% booking fee against the active configuration."
    ),
)
async def calculate_price(
    db: DBSession,
    user: CurrentUser,
    body: PriceCalculationRequest,
) -> PriceCalculationResponse:
    result = await pricingEngine.calculate_price(db, _params(body, user.id))
    return _unwrap(result)


# ---------------------------------------------------------------------------
# POST /api/v1/pricing/estimate
# ---------------------------------------------------------------------------

@router.post(
    "/estimate",
    response_model=PriceCalculationResponse,
    summary="Estimate the price before a technician is chosen",
)
async def get_estimate(
    db: DBSession,
    user: CurrentUser,
    body: PriceEstimateRequest,
) -> PriceCalculationResponse:
    result = await pricingEngine.get_estimate(
        db,
        _params(body, user.id),
        customer_location=_point(body.customer_location) or point_of(user),
    )
    return _unwrap(result)


# ---------------------------------------------------------------------------
# POST /api/v1/pricing/compare
# ---------------------------------------------------------------------------

@router.post(
    "/compare",
    response_model=PriceComparisonResponse,
    summary="Compare the price of one request across technicians",
)
async def compare_prices(
    db: DBSession,
    user: CurrentUser,
    body: PriceComparisonRequest,
) -> PriceComparisonResponse:
    try:
        comparison = await pricingEngine.compare_technician_prices(
            db, _params(body, user.id), body.technician_ids
        )
    except ConfigNotFoundError as exc:
        _raise_failure(exc.code, str(exc))

    def _out(price: Optional[pricingEngine.TechnicianPrice]) -> Optional[TechnicianPriceOut]:
        if price is None:
            return None
        return TechnicianPriceOut(
            technician_id=price.technician_id,
            name=price.name,
            rating=price.rating,
            completed_jobs=price.completed_jobs,
            experience_years=price.experience_years,
            distance_km=price.distance_km,
            pricing=PriceBreakdownOut(**price.pricing.to_dict()),
        )

    return PriceComparisonResponse(
        comparisons=[_out(p) for p in comparison.comparisons],
        cheapest=_out(comparison.cheapest),
        most_expensive=_out(comparison.most_expensive),
    )


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------

@router.get(
    "/catalog/{category}",
    response_model=ServiceCatalogResponse,
    summary="Services of a category with indicative price ranges",
)
async def get_catalog(db: DBSession, category: str) -> ServiceCatalogResponse:
    try:
        catalog = await pricingEngine.get_service_catalog(db, parse_category(category))
    except ConfigNotFoundError as exc:
        _raise_failure(exc.code, str(exc))

    return ServiceCatalogResponse(
        category=catalog.category,
        currency=catalog.currency,
        config_version=catalog.config_version,
        services=[
            CatalogEntryOut(
                service_type=entry.service_type,
                base_price=float(entry.base_price),
                price_unit=entry.price_unit,
                estimated_duration=entry.estimated_duration,
                description=entry.description,
                price_min=float(entry.price_min),
                price_max=float(entry.price_max),
            )
            for entry in catalog.services
        ],
    )


@router.get(
    "/service-types/{category}",
    response_model=ServiceTypesResponse,
    summary="Known service types of a category",
)
async def get_service_types(db: DBSession, category: str) -> ServiceTypesResponse:
    resolved = parse_category(category)
    config = await _active_config(db)
    return ServiceTypesResponse(
        category=resolved,
        service_types=pricingConfigService.get_service_types(config.rules, resolved),
    )


@router.post(
    "/validate-service",
    response_model=ValidateServiceResponse,
    summary="Check a service type and suggest close matches",
)
async def validate_service(
    db: DBSession,
    body: ValidateServiceRequest,
) -> ValidateServiceResponse:
    config = await _active_config(db)
    result = pricingConfigService.validate_service_type(
        config.rules, parse_category(body.service_category), body.service_type
    )
    return ValidateServiceResponse(
        valid=result.valid,
        service_type=result.service_type,
        resolved_type=result.resolved_type,
        uses_fallback=result.uses_fallback,
        suggestions=result.suggestions,
    )


# ---------------------------------------------------------------------------
# Admin: configuration
# ---------------------------------------------------------------------------

@router.get(
    "/config",
    response_model=PricingConfigOut,
    summary="Active pricing configuration",
)
async def get_active_config(db: DBSession, admin: AdminUser) -> PricingConfigOut:
    config = await _active_config(db)
    row = await pricingConfigService.get_config_version(db, config.version)
    return PricingConfigOut.model_validate(row)


@router.get(
    "/config/history",
    response_model=PricingConfigHistoryResponse,
    summary="Pricing configuration versions, newest first",
)
async def get_config_history(
    db: DBSession,
    admin: AdminUser,
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=settings.default_page_size, ge=1, le=settings.max_page_size),
) -> PricingConfigHistoryResponse:
    rows, total = await pricingConfigService.list_config_history(
        db, page=page, page_size=page_size
    )
    return PricingConfigHistoryResponse(
        items=[PricingConfigSummaryOut.model_validate(r) for r in rows],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.post(
    "/config",
    response_model=PricingConfigOut,
    status_code=status.HTTP_201_CREATED,
    summary="Publish a new configuration version",
    description=(
        "Deep-merges the changes into the active ruleset, validates the result "
        "and activates it as the next version. The previous version is kept "
        "for history."
    ),
)
async def publish_config(
    db: DBSession,
    admin: AdminUser,
    body: PublishConfigRequest,
) -> PricingConfigOut:
    try:
        row = await pricingConfigService.publish_new_version(
            db,
            body.changes,
            created_by=admin.id,
            name=body.name,
            notes=body.notes,
        )
    except ConfigNotFoundError as exc:
        _raise_failure(exc.code, str(exc))
    except pricingConfigService.InvalidPricingConfigError as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(exc),
        )
    return PricingConfigOut.model_validate(row)


@router.post(
    "/config/services",
    response_model=PricingConfigOut,
    status_code=status.HTTP_201_CREATED,
    summary="Add a service price (publishes a new version)",
)
async def add_service_price(
    db: DBSession,
    admin: AdminUser,
    body: ServicePriceIn,
) -> PricingConfigOut:
    try:
        row = await pricingConfigService.add_service_price(
            db,
            ServicePrice.model_validate(body.model_dump()),
            created_by=admin.id,
        )
    except ConfigNotFoundError as exc:
        _raise_failure(exc.code, str(exc))
    except pricingConfigService.DuplicateServicePriceError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    except pricingConfigService.InvalidPricingConfigError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))
    return PricingConfigOut.model_validate(row)


@router.put(
    "/config/services/{category}/{service_type}",
    response_model=PricingConfigOut,
    summary="Update a service price (publishes a new version)",
)
async def update_service_price(
    db: DBSession,
    admin: AdminUser,
    category: str,
    service_type: str,
    body: ServicePriceUpdate,
) -> PricingConfigOut:
    changes = body.model_dump(mode="json", exclude_unset=True)
    if not changes:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="No changes supplied.",
        )
    try:
        row = await pricingConfigService.update_service_price(
            db,
            parse_category(category),
            service_type,
            changes,
            created_by=admin.id,
        )
    except ConfigNotFoundError as exc:
        _raise_failure(exc.code, str(exc))
    except pricingConfigService.ServicePriceNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    except pricingConfigService.InvalidPricingConfigError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc))
    return PricingConfigOut.model_validate(row)
