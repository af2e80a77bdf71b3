"""
FastAPI routes: crowd-density monitoring.

    GET  /api/v1/crowd/nearby                — crowd alerts around a user
    GET  /api/v1/crowd/alerts                — all alert-active locations
    GET  /api/v1/crowd/locations             — list (filter by category / density)
    GET  /api/v1/crowd/locations/{id}        — one location with recent history
    POST /api/v1/crowd/locations             — register a location
    POST /api/v1/crowd/locations/{id}/update — push a new head-count
    POST /api/v1/crowd/simulate              — synthetic update around a point
    GET  /api/v1/crowd/constants             — categories and density levels
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from backend.app.api.schemas import (
    CreateLocationRequest,
    SimulateRequest,
    UpdateDensityRequest,
    envelope,
)
from backend.app.container import ServiceContainer, get_container
from backend.app.core.errors import NotFoundError
from backend.app.crowd.models import DENSITY_THRESHOLDS, DensityLevel, LocationCategory

router = APIRouter(prefix="/api/v1/crowd", tags=["crowd"])

HISTORY_WINDOW = 12


@router.get("/nearby", summary="Crowd alerts near a point")
async def nearby_crowd_alerts(
    lat: float = Query(..., ge=-90, le=90, examples=[12.9716]),
    lon: float = Query(..., ge=-180, le=180, examples=[77.5946]),
    radius: float = Query(5.0, gt=0, le=50, description="Radius in km"),
    container: ServiceContainer = Depends(get_container),
):
    result = await container.tracker.check_user_location(lat, lon, radius)
    return envelope(result)


@router.get("/alerts", summary="All active crowd alerts")
async def active_crowd_alerts(container: ServiceContainer = Depends(get_container)):
    alerts = [loc.to_dict() for loc in await container.tracker.find_active_alerts()]
    return envelope({
        "alerts": alerts,
        "total_count": len(alerts),
        "critical_count": sum(1 for a in alerts if a["current_density"] == DensityLevel.CRITICAL.value),
        "high_count": sum(1 for a in alerts if a["current_density"] == DensityLevel.HIGH.value),
    })


@router.get("/locations", summary="List monitored locations")
async def list_locations(
    category: Optional[str] = Query(None, examples=["stadium"]),
    density: Optional[str] = Query(None, examples=["critical"]),
    container: ServiceContainer = Depends(get_container),
):
    locations = await container.tracker.list_locations(category, density)
    return envelope({
        "locations": [loc.to_dict() for loc in locations],
        "total_count": len(locations),
        "filters_applied": {"category": category, "density": density},
    })


@router.get("/locations/{location_id}", summary="Location details with recent history")
async def get_location(
    location_id: str,
    container: ServiceContainer = Depends(get_container),
):
    location = await container.tracker.get_location(location_id)
    if location is None:
        raise NotFoundError("CrowdLocation", id=location_id)
    data = location.to_dict()
    data["density_history"] = [s.to_dict() for s in location.history[-HISTORY_WINDOW:]]
    return envelope(data)


@router.post(
    "/locations",
    status_code=status.HTTP_201_CREATED,
    summary="Register a crowd-monitoring location",
)
async def create_location(
    body: CreateLocationRequest,
    container: ServiceContainer = Depends(get_container),
):
    location = await container.tracker.register(
        body.location_name,
        body.location_type,
        body.latitude,
        body.longitude,
        body.max_capacity,
        body.initial_count,
    )
    return envelope(location.to_dict(), "Crowd monitoring location added successfully")


@router.post("/locations/{location_id}/update", summary="Push a new head-count")
async def update_location_density(
    location_id: str,
    body: UpdateDensityRequest,
    container: ServiceContainer = Depends(get_container),
):
    before = await container.tracker.get_location(location_id)
    if before is None:
        raise NotFoundError("CrowdLocation", id=location_id)
    location = await container.tracker.update_density(location_id, body.estimated_count)
    data = location.to_dict()
    data["previous_density"] = before.density_level.value
    data["density_changed"] = before.density_level != location.density_level
    return envelope(data)


@router.post("/simulate", summary="Simulate crowd detection around a point")
async def simulate_detection(
    body: SimulateRequest,
    container: ServiceContainer = Depends(get_container),
):
    updates = await container.tracker.simulate_detection(
        body.latitude, body.longitude, body.radius,
    )
    return envelope({"updates": updates, "locations_updated": len(updates)})


@router.get("/constants", summary="Location categories and density thresholds")
async def crowd_constants():
    return envelope({
        "location_types": [c.value for c in LocationCategory],
        "density_levels": [d.value for d in DensityLevel],
        "density_thresholds": {level.value: bound for bound, level in DENSITY_THRESHOLDS},
    })
