"""
radius_utils.py — Distance and "nearby" primitives shared by every component.

Two notions of "near" are used:

    1. Degree box (cheap, approximate) — selects candidates.
       A radius of r km becomes ±r/111 degrees on BOTH latitude and
       longitude. Longitude degrees shrink with latitude, so the box is
       wider than the circle away from the equator. The box maps directly
       onto a store's indexed range scan.

    2. Haversine (exact, great-circle) — used for reporting and sorting
       distances once candidates are selected.

Haversine formula for P₁(φ₁, λ₁) and P₂(φ₂, λ₂):

    a = sin²(Δφ / 2) + cos(φ₁) · cos(φ₂) · sin²(Δλ / 2)
    c = 2 · atan2(√a, √(1 − a))
    d = R · c,   R = 6371 km
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Tuple

from backend.app.core.errors import ValidationError

EARTH_RADIUS_KM: float = 6371.0
KM_PER_DEGREE: float = 111.0


@dataclass(frozen=True)
class Coordinate:
    """A geographic point in decimal degrees."""
    latitude: float
    longitude: float

    def __post_init__(self) -> None:
        validate_coordinates(self.latitude, self.longitude)

    def to_dict(self) -> dict:
        return {"lat": self.latitude, "lng": self.longitude}


@dataclass(frozen=True)
class DegreeBox:
    """Axis-aligned lat/lon box (inclusive bounds)."""
    min_lat: float
    max_lat: float
    min_lon: float
    max_lon: float

    def contains(self, lat: float, lon: float) -> bool:
        return (self.min_lat <= lat <= self.max_lat
                and self.min_lon <= lon <= self.max_lon)


def validate_coordinates(latitude: float, longitude: float) -> None:
    """
    Reject out-of-range coordinates.

    Raises ValidationError; values are never clamped.
    """
    if latitude is None or not -90.0 <= latitude <= 90.0:
        raise ValidationError(
            f"Latitude must be in [-90, 90], got {latitude}", field="latitude",
        )
    if longitude is None or not -180.0 <= longitude <= 180.0:
        raise ValidationError(
            f"Longitude must be in [-180, 180], got {longitude}", field="longitude",
        )


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Great-circle distance in km.

    >>> round(haversine_km(12.9716, 77.5946, 12.9762, 77.5993), 2)
    0.72
    >>> haversine_km(0, 0, 0, 0)
    0.0
    """
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = (
        math.sin(d_phi / 2.0) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2.0) ** 2
    )
    c = 2.0 * math.atan2(math.sqrt(a), math.sqrt(1.0 - a))
    return EARTH_RADIUS_KM * c


def distance_between(a: Coordinate, b: Coordinate) -> float:
    return haversine_km(a.latitude, a.longitude, b.latitude, b.longitude)


def degree_box(latitude: float, longitude: float, radius_km: float) -> DegreeBox:
    """
    The ±radius_km/111 degree box around a point.

    Not corrected for latitude (see module docstring).
    """
    delta = radius_km / KM_PER_DEGREE
    return DegreeBox(
        min_lat=latitude - delta,
        max_lat=latitude + delta,
        min_lon=longitude - delta,
        max_lon=longitude + delta,
    )


def tolerance_box(latitude: float, longitude: float, tolerance_deg: float) -> DegreeBox:
    """Box of a fixed angular half-width (e.g. 0.001° ≈ 100 m)."""
    return DegreeBox(
        min_lat=latitude - tolerance_deg,
        max_lat=latitude + tolerance_deg,
        min_lon=longitude - tolerance_deg,
        max_lon=longitude + tolerance_deg,
    )


def interpolate(a: Coordinate, b: Coordinate, fraction: float) -> Coordinate:
    """Linear interpolation in degree space (fine over route-segment lengths)."""
    return Coordinate(
        a.latitude + (b.latitude - a.latitude) * fraction,
        a.longitude + (b.longitude - a.longitude) * fraction,
    )


def bounds_of(*points: Coordinate) -> Tuple[Coordinate, Coordinate]:
    """(southwest, northeast) corners enclosing the given points."""
    lats = [p.latitude for p in points]
    lons = [p.longitude for p in points]
    return Coordinate(min(lats), min(lons)), Coordinate(max(lats), max(lons))
