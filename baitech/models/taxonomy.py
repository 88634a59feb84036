"""
Service taxonomy enums shared by pricing, matching and bookings.
"""

import enum


class ServiceCategory(str, enum.Enum):
    PLUMBING = "plumbing"
    ELECTRICAL = "electrical"
    CARPENTRY = "carpentry"
    MASONRY = "masonry"
    PAINTING = "painting"
    HVAC = "hvac"
    WELDING = "welding"
    OTHER = "other"


class UrgencyLevel(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    EMERGENCY = "emergency"
