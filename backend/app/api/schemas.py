"""
Pydantic schemas shared by the crowd and emergency routers.

Coordinates are range-checked here, at the boundary; out-of-range input
is rejected with 400 VALIDATION_ERROR rather than clamped.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from backend.app.routing.models import TransportMode
from backend.app.spatial.radius_utils import Coordinate


def envelope(data: Any, message: Optional[str] = None) -> Dict[str, Any]:
    """Standard success body: ``{success, data, [message], timestamp}``."""
    body: Dict[str, Any] = {"success": True, "data": data}
    if message:
        body["message"] = message
    body["timestamp"] = datetime.now(timezone.utc).isoformat()
    return body


# ---------------------------------------------------------------------------
# Shared
# ---------------------------------------------------------------------------

class LatLng(BaseModel):
    lat: float = Field(..., ge=-90.0, le=90.0, examples=[12.9716])
    lng: float = Field(..., ge=-180.0, le=180.0, examples=[77.5946])

    def to_coordinate(self) -> Coordinate:
        return Coordinate(self.lat, self.lng)


# ---------------------------------------------------------------------------
# Crowd
# ---------------------------------------------------------------------------

class CreateLocationRequest(BaseModel):
    """Register a new crowd-monitoring location."""
    location_name: str = Field(..., min_length=1, examples=["Stadium A"])
    location_type: str = Field("other", examples=["stadium"])
    latitude: float = Field(..., ge=-90.0, le=90.0, examples=[12.9784])
    longitude: float = Field(..., ge=-180.0, le=180.0, examples=[77.5996])
    max_capacity: int = Field(1000, ge=1, examples=[40000])
    initial_count: int = Field(0, ge=0, examples=[2000])


class UpdateDensityRequest(BaseModel):
    estimated_count: int = Field(..., ge=0, examples=[950])


class SimulateRequest(BaseModel):
    latitude: float = Field(..., ge=-90.0, le=90.0, examples=[12.9716])
    longitude: float = Field(..., ge=-180.0, le=180.0, examples=[77.5946])
    radius: float = Field(1.0, gt=0, le=50.0, description="Radius in km", examples=[5.0])


# ---------------------------------------------------------------------------
# Emergency
# ---------------------------------------------------------------------------

class CreateAlertRequest(BaseModel):
    """User report of an emergency."""
    alert_type: str = Field(..., examples=["stampede_risk"])
    severity: Optional[str] = Field(None, examples=["high"])
    location_name: str = Field(..., min_length=1, examples=["Chinnaswamy Stadium"])
    latitude: float = Field(..., ge=-90.0, le=90.0, examples=[12.9784])
    longitude: float = Field(..., ge=-180.0, le=180.0, examples=[77.5996])
    description: str = Field(..., min_length=1, examples=["Gate 3 crush forming"])
    reporter_id: Optional[str] = Field(None, examples=["user-42"])
    broadcast_radius: Optional[int] = Field(
        None, ge=100, le=10000, description="Metres", examples=[1000],
    )


class ConfirmAlertRequest(BaseModel):
    user_id: str = Field(..., min_length=1, examples=["user-7"])
    confirmed: bool = Field(True)


class ResolveAlertRequest(BaseModel):
    resolved_by: str = Field("system", min_length=1, examples=["control_room"])


class SafeRoutesRequest(BaseModel):
    origin: LatLng
    destination: LatLng
    avoid_crowds: bool = True
    avoid_emergencies: bool = True
    transport_mode: TransportMode = TransportMode.WALKING
    max_detour_percent: float = Field(50.0, ge=0, le=500.0)


class EvacuationRoutesRequest(BaseModel):
    current_location: LatLng
    emergency_location: LatLng
    evacuation_radius: float = Field(2.0, gt=0, le=50.0, description="Radius in km")
    max_routes: int = Field(3, ge=1, le=10)
