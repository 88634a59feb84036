"""
Geo Service
===========

Great-circle distance helpers shared by the pricing and matching engines.

Pricing bills distance at 2 decimal places; matching filters and scores on
1 decimal place. Both round the same haversine result so the two never
disagree by more than the rounding step.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Optional, Sequence

# Earth's mean radius in kilometres
EARTH_RADIUS_KM: float = 6371.0

PRICING_DISTANCE_PLACES = 2
MATCHING_DISTANCE_PLACES = 1


@dataclass(frozen=True)
class GeoPoint:
    latitude: float
    longitude: float


def haversine_distance(
    lat1: float,
    lon1: float,
    lat2: float,
    lon2: float,
) -> float:
    """Calculate the great-circle distance between two points using the
    haversine formula.

    Args:
        lat1: Latitude of point 1 in decimal degrees.
        lon1: Longitude of point 1 in decimal degrees.
        lat2: Latitude of point 2 in decimal degrees.
        lon2: Longitude of point 2 in decimal degrees.

    Returns:
        Distance in kilometres, unrounded.
    """
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    delta_lat = math.radians(lat2 - lat1)
    delta_lon = math.radians(lon2 - lon1)

    a = (
        math.sin(delta_lat / 2) ** 2
        + math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(delta_lon / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_KM * c


def pricing_distance(origin: GeoPoint, destination: GeoPoint) -> float:
    """Distance in km rounded to 2 decimals, as billed by the price calculator."""
    return round(
        haversine_distance(
            origin.latitude, origin.longitude, destination.latitude, destination.longitude
        ),
        PRICING_DISTANCE_PLACES,
    )


def matching_distance(origin: GeoPoint, destination: GeoPoint) -> float:
    """Distance in km rounded to 1 decimal, as used for radius filtering and scoring."""
    return round(
        haversine_distance(
            origin.latitude, origin.longitude, destination.latitude, destination.longitude
        ),
        MATCHING_DISTANCE_PLACES,
    )


def point_of(obj: Any) -> Optional[GeoPoint]:
    """Return the ``GeoPoint`` of anything with ``latitude``/``longitude``, or None."""
    lat = getattr(obj, "latitude", None)
    lon = getattr(obj, "longitude", None)
    if lat is None or lon is None:
        return None
    return GeoPoint(float(lat), float(lon))


@dataclass
class TechnicianDistance:
    """A technician paired with their distance from the service location."""

    technician: Any
    distance_km: float


def filter_by_radius(
    technicians: Sequence[Any],
    center: GeoPoint,
    radius_km: float,
) -> list[TechnicianDistance]:
    """Keep technicians with coordinates whose matching distance is within
    ``radius_km`` of ``center`` (inclusive).

    Returns:
        List of TechnicianDistance objects sorted by distance (closest first).
    """
    results: list[TechnicianDistance] = []

    for technician in technicians:
        location = point_of(technician)
        if location is None:
            continue

        distance = matching_distance(center, location)
        if distance <= radius_km:
            results.append(TechnicianDistance(technician=technician, distance_km=distance))

    results.sort(key=lambda td: td.distance_km)
    return results
