"""
models.py — Crowd location value type and the density state machine.

═══════════════════════════════════════════════════════════════════════════
DENSITY LEVELS
═══════════════════════════════════════════════════════════════════════════

    density_percentage = min(estimated_count / max_capacity × 100, 100)

    Percentage      Level        alert_active
    ──────────      ────────     ────────────
    ≥ 90            CRITICAL     yes
    ≥ 70            HIGH         yes
    ≥ 40            MEDIUM       no
    <  40           LOW          no

Locations are immutable. ``update_density(location, count)`` returns the
next value; nothing mutates a location in place, so a record read from the
store can be compared against the store's current version before writing.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from backend.app.core.errors import ValidationError
from backend.app.spatial.radius_utils import validate_coordinates

HISTORY_LIMIT = 24


class DensityLevel(str, Enum):
    LOW      = "low"
    MEDIUM   = "medium"
    HIGH     = "high"
    CRITICAL = "critical"


class LocationCategory(str, Enum):
    """Kinds of places where crowds gather."""
    EVENT     = "event"
    TRANSPORT = "transport"
    SHOPPING  = "shopping"
    RELIGIOUS = "religious"
    STADIUM   = "stadium"
    FESTIVAL  = "festival"
    OTHER     = "other"


# (lower bound %, level), checked top-down
DENSITY_THRESHOLDS: Tuple[Tuple[float, DensityLevel], ...] = (
    (90.0, DensityLevel.CRITICAL),
    (70.0, DensityLevel.HIGH),
    (40.0, DensityLevel.MEDIUM),
)

ALERTING_LEVELS = frozenset({DensityLevel.HIGH, DensityLevel.CRITICAL})


def _now() -> datetime:
    return datetime.now(timezone.utc)


def parse_category(value: Any) -> LocationCategory:
    try:
        return LocationCategory(value)
    except ValueError:
        raise ValidationError(
            f"Unknown location category '{value}'",
            field="category",
            allowed=[c.value for c in LocationCategory],
        )


def parse_density_level(value: Any) -> DensityLevel:
    try:
        return DensityLevel(value)
    except ValueError:
        raise ValidationError(
            f"Unknown density level '{value}'",
            field="density_level",
            allowed=[d.value for d in DensityLevel],
        )


def classify_density(percentage: float) -> DensityLevel:
    """Map a capacity percentage onto a density level."""
    for lower_bound, level in DENSITY_THRESHOLDS:
        if percentage >= lower_bound:
            return level
    return DensityLevel.LOW


def validate_count(count: int) -> None:
    if count is None or count < 0:
        raise ValidationError(
            f"estimated_count must be non-negative, got {count}",
            field="estimated_count",
        )


def density_percentage(count: int, max_capacity: int) -> float:
    return min(count * 100.0 / max_capacity, 100.0)


def alert_message_for(name: str, level: DensityLevel) -> str:
    if level == DensityLevel.CRITICAL:
        return (
            f"CRITICAL: Extremely high crowd density at {name}. Avoid this "
            f"area immediately for your safety. Consider alternative routes."
        )
    if level == DensityLevel.HIGH:
        return (
            f"WARNING: High crowd density detected at {name}. Exercise "
            f"caution and consider alternative locations or routes."
        )
    return ""


@dataclass(frozen=True)
class DensitySample:
    """One history entry."""
    timestamp: datetime
    count: int
    density_level: DensityLevel

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "count": self.count,
            "density_level": self.density_level.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DensitySample":
        return cls(
            timestamp=datetime.fromisoformat(data["timestamp"]),
            count=int(data["count"]),
            density_level=DensityLevel(data["density_level"]),
        )


@dataclass(frozen=True)
class CrowdLocation:
    """
    A monitored place and its current occupancy.

    Attributes
    ----------
    max_capacity : int
        People the place holds safely (≥ 1).
    history : tuple of DensitySample
        Most recent samples, oldest first, at most HISTORY_LIMIT.
    version : int
        Bumped by the store on every successful write.
    """
    id: str
    name: str
    category: LocationCategory
    latitude: float
    longitude: float
    max_capacity: int
    estimated_count: int = 0
    density_percentage: float = 0.0
    density_level: DensityLevel = DensityLevel.LOW
    alert_active: bool = False
    alert_message: str = ""
    history: Tuple[DensitySample, ...] = ()
    created_at: datetime = field(default_factory=_now)
    last_updated: datetime = field(default_factory=_now)
    version: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "location_name": self.name,
            "location_type": self.category.value,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "max_capacity": self.max_capacity,
            "estimated_count": self.estimated_count,
            "density_percentage": round(self.density_percentage, 2),
            "current_density": self.density_level.value,
            "alert_active": self.alert_active,
            "alert_message": self.alert_message,
            "created_at": self.created_at.isoformat(),
            "last_updated": self.last_updated.isoformat(),
        }

    def to_document(self) -> Dict[str, Any]:
        """Lossless form for persistence."""
        doc = self.to_dict()
        doc["density_percentage"] = self.density_percentage
        doc["density_history"] = [s.to_dict() for s in self.history]
        return doc

    @classmethod
    def from_document(cls, doc: Dict[str, Any], version: int = 0) -> "CrowdLocation":
        return cls(
            id=doc["id"],
            name=doc["location_name"],
            category=LocationCategory(doc["location_type"]),
            latitude=float(doc["latitude"]),
            longitude=float(doc["longitude"]),
            max_capacity=int(doc["max_capacity"]),
            estimated_count=int(doc["estimated_count"]),
            density_percentage=float(doc["density_percentage"]),
            density_level=DensityLevel(doc["current_density"]),
            alert_active=bool(doc["alert_active"]),
            alert_message=doc.get("alert_message", ""),
            history=tuple(
                DensitySample.from_dict(s) for s in doc.get("density_history", [])
            ),
            created_at=datetime.fromisoformat(doc["created_at"]),
            last_updated=datetime.fromisoformat(doc["last_updated"]),
            version=version,
        )


def new_location(
    name: str,
    category: Any,
    latitude: float,
    longitude: float,
    max_capacity: int,
    *,
    location_id: Optional[str] = None,
) -> CrowdLocation:
    """Validate inputs and build an empty location (count 0, no history)."""
    if not name or not str(name).strip():
        raise ValidationError("Location name is required", field="location_name")
    validate_coordinates(latitude, longitude)
    if max_capacity is None or max_capacity < 1:
        raise ValidationError(
            f"max_capacity must be at least 1, got {max_capacity}",
            field="max_capacity",
        )
    return CrowdLocation(
        id=location_id or str(uuid.uuid4()),
        name=str(name).strip(),
        category=parse_category(category),
        latitude=float(latitude),
        longitude=float(longitude),
        max_capacity=int(max_capacity),
    )


def update_density(
    location: CrowdLocation,
    new_count: int,
    now: Optional[datetime] = None,
) -> CrowdLocation:
    """
    Apply a new head-count and return the next location value.

    Recomputes percentage, level and alert state from scratch and appends
    a history sample, keeping only the most recent HISTORY_LIMIT.
    """
    validate_count(new_count)
    now = now or _now()
    count = int(new_count)
    percentage = density_percentage(count, location.max_capacity)
    level = classify_density(percentage)
    alerting = level in ALERTING_LEVELS

    sample = DensitySample(timestamp=now, count=count, density_level=level)
    history = (location.history + (sample,))[-HISTORY_LIMIT:]

    return replace(
        location,
        estimated_count=count,
        density_percentage=percentage,
        density_level=level,
        alert_active=alerting,
        alert_message=alert_message_for(location.name, level) if alerting else "",
        history=history,
        last_updated=now,
    )
