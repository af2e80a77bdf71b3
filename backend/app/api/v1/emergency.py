"""
FastAPI routes: emergency alerts, safe routing and evacuation.

    POST /api/v1/emergency/alert                 — report an emergency (201)
    GET  /api/v1/emergency/nearby                — valid alerts near a point
    POST /api/v1/emergency/confirm/{alert_id}    — community vote
    POST /api/v1/emergency/resolve/{alert_id}    — close an alert
    POST /api/v1/emergency/safe-routes           — safety-ranked routes
    POST /api/v1/emergency/evacuation-routes     — evacuation plan
    GET  /api/v1/emergency/stats                 — counts by type
    GET  /api/v1/emergency/constants             — alert types, severities
    POST /api/v1/emergency/detect                — run hotspot detection now
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status

from backend.app.api.schemas import (
    ConfirmAlertRequest,
    CreateAlertRequest,
    EvacuationRoutesRequest,
    ResolveAlertRequest,
    SafeRoutesRequest,
    envelope,
)
from backend.app.container import ServiceContainer, get_container
from backend.app.emergency.broadcast import notification_message
from backend.app.emergency.models import AlertType, ResponseActionType, Severity
from backend.app.routing.models import RouteTier

router = APIRouter(prefix="/api/v1/emergency", tags=["emergency"])


@router.post(
    "/alert",
    status_code=status.HTTP_201_CREATED,
    summary="Report an emergency",
    description="Creates the alert, estimates broadcast reach and, for "
                "critical alerts, records automatic response actions.",
)
async def create_alert(
    body: CreateAlertRequest,
    container: ServiceContainer = Depends(get_container),
):
    alert = await container.registry.create(**body.model_dump())
    data = alert.to_dict()
    data["broadcast_message"] = notification_message(alert)
    return envelope(data, "Emergency alert created and broadcasted")


@router.get("/nearby", summary="Active emergencies near a point")
async def nearby_alerts(
    lat: float = Query(..., ge=-90, le=90, examples=[12.9716]),
    lon: float = Query(..., ge=-180, le=180, examples=[77.5946]),
    radius: float = Query(5.0, gt=0, le=50, description="Radius in km"),
    container: ServiceContainer = Depends(get_container),
):
    alerts = [a.to_dict() for a in await container.registry.find_nearby_active(lat, lon, radius)]
    return envelope({
        "alerts": alerts,
        "total_count": len(alerts),
        "critical_count": sum(1 for a in alerts if a["severity"] == Severity.CRITICAL.value),
    })


@router.post("/confirm/{alert_id}", summary="Confirm or deny an alert")
async def confirm_alert(
    alert_id: str,
    body: ConfirmAlertRequest,
    container: ServiceContainer = Depends(get_container),
):
    result = await container.registry.confirm(alert_id, body.user_id, body.confirmed)
    return envelope(result)


@router.post("/resolve/{alert_id}", summary="Resolve an alert")
async def resolve_alert(
    alert_id: str,
    body: ResolveAlertRequest,
    container: ServiceContainer = Depends(get_container),
):
    alert = await container.registry.resolve(alert_id, body.resolved_by)
    return envelope(alert.to_dict(), "Emergency alert resolved")


@router.post("/safe-routes", summary="Safety-ranked routes between two points")
async def safe_routes(
    body: SafeRoutesRequest,
    container: ServiceContainer = Depends(get_container),
):
    result = await container.scorer.get_safe_routes(
        body.origin.to_coordinate(),
        body.destination.to_coordinate(),
        avoid_crowds=body.avoid_crowds,
        avoid_emergencies=body.avoid_emergencies,
        max_detour_percent=body.max_detour_percent,
        transport_mode=body.transport_mode,
    )
    return envelope(result.to_dict())


@router.post("/evacuation-routes", summary="Evacuation routes away from an emergency")
async def evacuation_routes(
    body: EvacuationRoutesRequest,
    container: ServiceContainer = Depends(get_container),
):
    plan = await container.planner.get_evacuation_routes(
        body.current_location.to_coordinate(),
        body.emergency_location.to_coordinate(),
        evacuation_radius_km=body.evacuation_radius,
        max_routes=body.max_routes,
    )
    return envelope(plan)


@router.get("/stats", summary="Alert statistics")
async def emergency_stats(container: ServiceContainer = Depends(get_container)):
    return envelope(await container.registry.stats())


@router.get("/constants", summary="Alert types and severities")
async def emergency_constants():
    return envelope({
        "emergency_types": [t.value for t in AlertType],
        "emergency_severity": [s.value for s in Severity],
        "response_actions": [a.value for a in ResponseActionType],
        "route_tiers": {t.value: t.label for t in RouteTier},
    })


@router.post("/detect", summary="Run emergency detection now")
async def run_detection(container: ServiceContainer = Depends(get_container)):
    created = await container.detector.detect_emergency_situations()
    return envelope(
        {"alerts_created": len(created), "alerts": [a.to_dict() for a in created]},
        "Emergency detection completed",
    )
