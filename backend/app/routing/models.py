"""
Route and assessment value types (derived per request, never persisted).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from backend.app.spatial.radius_utils import Coordinate, bounds_of, haversine_km

WALKING_SPEED_KMH = 5.0


class TransportMode(str, Enum):
    WALKING   = "walking"
    DRIVING   = "driving"
    BICYCLING = "bicycling"
    TRANSIT   = "transit"


class RouteTier(str, Enum):
    RECOMMENDED     = "recommended"
    MINOR_CAUTION   = "minor_caution"
    USE_CAUTION     = "use_caution"
    NOT_RECOMMENDED = "not_recommended"
    AVOID           = "avoid"

    @property
    def label(self) -> str:
        return self.value.replace("_", " ")


TIER_MESSAGES: Dict[RouteTier, str] = {
    RouteTier.RECOMMENDED: "Safe route - recommended",
    RouteTier.MINOR_CAUTION: "Generally safe - minor caution advised",
    RouteTier.USE_CAUTION: "Use caution - some safety concerns",
    RouteTier.NOT_RECOMMENDED: "Not recommended - significant safety risks",
    RouteTier.AVOID: "Avoid this route - high safety risks",
}


def tier_for(score: float) -> RouteTier:
    """
    >>> tier_for(100)
    <RouteTier.RECOMMENDED: 'recommended'>
    >>> tier_for(40).value
    'use_caution'
    """
    if score >= 80:
        return RouteTier.RECOMMENDED
    if score >= 60:
        return RouteTier.MINOR_CAUTION
    if score >= 40:
        return RouteTier.USE_CAUTION
    if score >= 20:
        return RouteTier.NOT_RECOMMENDED
    return RouteTier.AVOID


@dataclass(frozen=True)
class Route:
    """
    One candidate route from the directions source.

    ``polyline`` is the provider's encoded overview polyline, passed through
    untouched. ``bounds`` is (southwest, northeast) or None.
    """
    summary: str
    duration_s: int
    distance_m: int
    bounds: Optional[Tuple[Coordinate, Coordinate]] = None
    waypoints: Tuple[Coordinate, ...] = ()
    polyline: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "summary": self.summary,
            "duration": self.duration_s,
            "distance": self.distance_m,
            "bounds": (
                {"southwest": self.bounds[0].to_dict(), "northeast": self.bounds[1].to_dict()}
                if self.bounds else None
            ),
            "waypoints": [p.to_dict() for p in self.waypoints],
            "polyline": self.polyline,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Route":
        bounds = data.get("bounds")
        return cls(
            summary=data.get("summary", ""),
            duration_s=int(data["duration"]),
            distance_m=int(data["distance"]),
            bounds=(
                (
                    Coordinate(bounds["southwest"]["lat"], bounds["southwest"]["lng"]),
                    Coordinate(bounds["northeast"]["lat"], bounds["northeast"]["lng"]),
                )
                if bounds else None
            ),
            waypoints=tuple(Coordinate(p["lat"], p["lng"]) for p in data.get("waypoints", [])),
            polyline=data.get("polyline", ""),
        )


def direct_route(origin: Coordinate, destination: Coordinate) -> Route:
    """Straight-line stand-in when no routing source answers (5 km/h walk)."""
    km = haversine_km(origin.latitude, origin.longitude,
                      destination.latitude, destination.longitude)
    return Route(
        summary="Direct route",
        duration_s=round(km / WALKING_SPEED_KMH * 3600),
        distance_m=round(km * 1000),
        bounds=bounds_of(origin, destination),
        waypoints=(origin, destination),
    )


@dataclass(frozen=True)
class CrowdHit:
    location_id: str
    name: str
    density: str
    percentage: float
    lat: float
    lng: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.location_id,
            "name": self.name,
            "density": self.density,
            "percentage": round(self.percentage, 2),
            "lat": self.lat,
            "lng": self.lng,
        }


@dataclass(frozen=True)
class EmergencyHit:
    alert_id: str
    alert_type: str
    severity: str
    location: str
    lat: float
    lng: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.alert_id,
            "type": self.alert_type,
            "severity": self.severity,
            "location": self.location,
            "lat": self.lat,
            "lng": self.lng,
        }


@dataclass(frozen=True)
class RouteAssessment:
    route: Route
    safety_score: int
    tier: RouteTier
    warnings: Tuple[str, ...] = ()
    crowded_areas: Tuple[CrowdHit, ...] = ()
    emergency_areas: Tuple[EmergencyHit, ...] = ()
    detour_percent: float = 0.0

    @property
    def recommendation(self) -> str:
        return TIER_MESSAGES[self.tier]

    def to_dict(self) -> Dict[str, Any]:
        data = self.route.to_dict()
        data.update({
            "safety_score": self.safety_score,
            "tier": self.tier.value,
            "tier_label": self.tier.label,
            "recommendation": self.recommendation,
            "warnings": list(self.warnings),
            "crowded_areas": [h.to_dict() for h in self.crowded_areas],
            "emergency_areas": [h.to_dict() for h in self.emergency_areas],
            "detour_percent": round(self.detour_percent, 1),
        })
        return data


@dataclass
class SafeRoutesResult:
    recommended: Optional[RouteAssessment]
    alternatives: List[RouteAssessment] = field(default_factory=list)
    summary: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "recommended_route": self.recommended.to_dict() if self.recommended else None,
            "alternative_routes": [a.to_dict() for a in self.alternatives],
            "safety_analysis": self.summary,
        }
