"""
Pricing failure taxonomy.

The calculator raises these internally; ``pricingEngine.calculate_price``
converts them into a tagged ``PricingResult`` so callers branch on
``success`` instead of catching.
"""

from __future__ import annotations

import enum


class PricingErrorCode(str, enum.Enum):
    CONFIG_NOT_FOUND = "CONFIG_NOT_FOUND"
    UNKNOWN_CATEGORY = "UNKNOWN_CATEGORY"
    SERVICE_AREA_EXCEEDED = "SERVICE_AREA_EXCEEDED"
    INVALID_BOOKING_FEE = "INVALID_BOOKING_FEE"


class PricingError(Exception):
    code: PricingErrorCode


class ConfigNotFoundError(PricingError):
    code = PricingErrorCode.CONFIG_NOT_FOUND

    def __init__(self) -> None:
        super().__init__("No active pricing configuration found")


class UnknownCategoryError(PricingError):
    code = PricingErrorCode.UNKNOWN_CATEGORY

    def __init__(self, category: str, service_type: str) -> None:
        self.category = category
        self.service_type = service_type
        super().__init__(
            f"No pricing found for service type '{service_type}' or the 'general' "
            f"fallback in category '{category}'"
        )


class ServiceAreaExceededError(PricingError):
    code = PricingErrorCode.SERVICE_AREA_EXCEEDED

    def __init__(self, distance_km: float, max_distance_km: float) -> None:
        self.distance_km = distance_km
        self.max_distance_km = max_distance_km
        super().__init__(
            f"Service location is {distance_km}km away, exceeds maximum service "
            f"distance of {max_distance_km}km"
        )


class InvalidBookingFeeError(PricingError):
    code = PricingErrorCode.INVALID_BOOKING_FEE

    def __init__(self, amount: object) -> None:
        self.amount = amount
        super().__init__(f"Computed booking fee {amount} is not a positive amount")
