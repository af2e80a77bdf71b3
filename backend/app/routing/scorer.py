"""
scorer.py — RouteSafetyScorer: score, filter and rank candidate routes.

═══════════════════════════════════════════════════════════════════════════
SCORING
═══════════════════════════════════════════════════════════════════════════

Points are sampled evenly along the route, one per kilometre (twice the
crowd check radius) and never fewer than 6. A hotspot sitting on the route
is out of reach of the neighbouring samples. At each point:

    crowd locations within 0.5 km      critical −30   high −15
    valid emergencies within 1 km      critical −50   high −30
                                       medium   −15   low  −5   other −10

Penalties accumulate over every point and every hit: a hotspot within
reach of two sample points costs twice (sustained exposure). The score
starts at 100 and is clamped at 0.

    score ≥ 80  recommended        ≥ 40  use caution       < 20  avoid
    score ≥ 60  minor caution      ≥ 20  not recommended

If the analysis itself fails the route gets a neutral 50 with the warning
"Unable to analyze route safety"; trip planning is never blocked.

═══════════════════════════════════════════════════════════════════════════
RANKING (get_safe_routes)
═══════════════════════════════════════════════════════════════════════════

    detour % = (duration − fastest) / fastest × 100

Candidates are sorted by score (ties: shorter duration first); those over
``max_detour_percent`` are dropped. The fastest candidate has a 0 % detour,
so at least one route always survives.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from datetime import datetime
from typing import Dict, List, Optional, Protocol, Set

from backend.app.core.errors import UpstreamUnavailable, ValidationError
from backend.app.crowd.models import DensityLevel
from backend.app.crowd.tracker import CrowdDensityTracker
from backend.app.emergency.models import Severity
from backend.app.emergency.registry import EmergencyAlertRegistry
from backend.app.routing.models import (
    CrowdHit,
    EmergencyHit,
    Route,
    RouteAssessment,
    SafeRoutesResult,
    TransportMode,
    direct_route,
    tier_for,
)
from backend.app.spatial.radius_utils import Coordinate, distance_between, interpolate

logger = logging.getLogger(__name__)

CROWD_CHECK_RADIUS_KM = 0.5
EMERGENCY_CHECK_RADIUS_KM = 1.0
MIN_SAMPLE_POINTS = 6
SAMPLE_INTERVAL_KM = 2 * CROWD_CHECK_RADIUS_KM

CROWD_PENALTIES: Dict[DensityLevel, int] = {
    DensityLevel.CRITICAL: 30,
    DensityLevel.HIGH: 15,
}
SEVERITY_PENALTIES: Dict[Severity, int] = {
    Severity.CRITICAL: 50,
    Severity.HIGH: 30,
    Severity.MEDIUM: 15,
    Severity.LOW: 5,
}
DEFAULT_SEVERITY_PENALTY = 10

NEUTRAL_SCORE = 50
NEUTRAL_WARNING = "Unable to analyze route safety"


class RouteSource(Protocol):
    async def get_routes(
        self, origin: Coordinate, destination: Coordinate, mode: TransportMode,
    ) -> List[Route]:
        ...


def sample_points(
    route: Route,
    interval_km: float = SAMPLE_INTERVAL_KM,
    minimum: int = MIN_SAMPLE_POINTS,
) -> List[Coordinate]:
    """
    Evenly spaced points along the waypoint path, endpoints included.

    Without waypoints the bounding-box diagonal (southwest → northeast)
    stands in for the path. A zero-length path yields its single point.
    """
    if len(route.waypoints) >= 2:
        path = list(route.waypoints)
    elif route.bounds is not None:
        path = list(route.bounds)
    else:
        raise ValueError(f"Route '{route.summary}' has no geometry to sample")

    lengths = [distance_between(a, b) for a, b in zip(path, path[1:])]
    total = sum(lengths)
    if total == 0:
        return [path[0]]

    count = max(minimum, int(total // interval_km) + 1)
    points = []
    segment, walked = 0, 0.0
    for i in range(count):
        target = total * i / (count - 1)
        while segment < len(lengths) - 1 and walked + lengths[segment] < target:
            walked += lengths[segment]
            segment += 1
        seg_len = lengths[segment]
        fraction = 0.0 if seg_len == 0 else min(1.0, (target - walked) / seg_len)
        points.append(interpolate(path[segment], path[segment + 1], fraction))
    return points


class RouteSafetyScorer:

    def __init__(
        self,
        tracker: CrowdDensityTracker,
        registry: EmergencyAlertRegistry,
        source: Optional[RouteSource] = None,
        *,
        sample_interval_km: float = SAMPLE_INTERVAL_KM,
    ):
        self.tracker = tracker
        self.registry = registry
        self.source = source
        self.sample_interval_km = sample_interval_km

    async def assess(
        self,
        route: Route,
        avoid_crowds: bool = True,
        avoid_emergencies: bool = True,
        now: Optional[datetime] = None,
    ) -> RouteAssessment:
        try:
            return await self._assess(route, avoid_crowds, avoid_emergencies, now)
        except Exception as e:
            logger.warning("Route safety analysis failed for '%s': %s", route.summary, e)
            return RouteAssessment(
                route=route,
                safety_score=NEUTRAL_SCORE,
                tier=tier_for(NEUTRAL_SCORE),
                warnings=(NEUTRAL_WARNING,),
            )

    async def _assess(
        self,
        route: Route,
        avoid_crowds: bool,
        avoid_emergencies: bool,
        now: Optional[datetime],
    ) -> RouteAssessment:
        score = 100
        warnings: List[str] = []
        crowded: List[CrowdHit] = []
        emergencies: List[EmergencyHit] = []

        for point in sample_points(route, self.sample_interval_km):
            if avoid_crowds:
                nearby = await self.tracker.find_nearby(
                    point.latitude, point.longitude, CROWD_CHECK_RADIUS_KM,
                )
                for loc in nearby:
                    penalty = CROWD_PENALTIES.get(loc.density_level)
                    if penalty is None:
                        continue
                    score -= penalty
                    crowded.append(CrowdHit(
                        location_id=loc.id,
                        name=loc.name,
                        density=loc.density_level.value,
                        percentage=loc.density_percentage,
                        lat=loc.latitude,
                        lng=loc.longitude,
                    ))
                    warnings.append(
                        f"{loc.density_level.value.capitalize()} crowd density at {loc.name}"
                    )

            if avoid_emergencies:
                alerts = await self.registry.find_nearby_active(
                    point.latitude, point.longitude, EMERGENCY_CHECK_RADIUS_KM, now,
                )
                for alert in alerts:
                    score -= SEVERITY_PENALTIES.get(alert.severity, DEFAULT_SEVERITY_PENALTY)
                    emergencies.append(EmergencyHit(
                        alert_id=alert.id,
                        alert_type=alert.alert_type.value,
                        severity=alert.severity.value,
                        location=alert.location_name,
                        lat=alert.latitude,
                        lng=alert.longitude,
                    ))
                    warnings.append(
                        f"{alert.severity.value.upper()} {alert.alert_type.value} "
                        f"at {alert.location_name}"
                    )

        score = max(0, score)
        return RouteAssessment(
            route=route,
            safety_score=score,
            tier=tier_for(score),
            warnings=tuple(warnings),
            crowded_areas=tuple(crowded),
            emergency_areas=tuple(emergencies),
        )

    async def _candidate_routes(
        self, origin: Coordinate, destination: Coordinate, mode: TransportMode,
    ) -> List[Route]:
        routes: List[Route] = []
        if self.source is not None:
            try:
                routes = await self.source.get_routes(origin, destination, mode)
            except UpstreamUnavailable as e:
                logger.warning("Routing source unavailable, using direct route: %s", e.message)
        if not routes:
            routes = [direct_route(origin, destination)]
        return routes

    async def get_safe_routes(
        self,
        origin: Coordinate,
        destination: Coordinate,
        avoid_crowds: bool = True,
        avoid_emergencies: bool = True,
        max_detour_percent: float = 50.0,
        transport_mode: TransportMode = TransportMode.WALKING,
        now: Optional[datetime] = None,
    ) -> SafeRoutesResult:
        if max_detour_percent < 0:
            raise ValidationError(
                f"max_detour_percent must be non-negative, got {max_detour_percent}",
                field="max_detour_percent",
            )
        routes = await self._candidate_routes(origin, destination, TransportMode(transport_mode))
        assessed = await asyncio.gather(*(
            self.assess(r, avoid_crowds, avoid_emergencies, now) for r in routes
        ))

        fastest = min(a.route.duration_s for a in assessed)
        ranked = sorted(
            (_with_detour(a, fastest) for a in assessed),
            key=lambda a: (-a.safety_score, a.route.duration_s),
        )
        acceptable = [a for a in ranked if a.detour_percent <= max_detour_percent]
        recommended = acceptable[0]

        crowd_ids: Set[str] = {h.location_id for a in assessed for h in a.crowded_areas}
        alert_ids: Set[str] = {h.alert_id for a in assessed for h in a.emergency_areas}
        crowd_on_route = {h.location_id for h in recommended.crowded_areas}
        alerts_on_route = {h.alert_id for h in recommended.emergency_areas}

        summary = {
            "crowded_areas_avoided": len(crowd_ids - crowd_on_route),
            "emergency_areas_avoided": len(alert_ids - alerts_on_route),
            "crowded_areas_on_route": len(crowd_on_route),
            "emergency_areas_on_route": len(alerts_on_route),
            "routes_evaluated": len(assessed),
            "routes_rejected_for_detour": len(ranked) - len(acceptable),
        }
        logger.info(
            "Ranked %d routes; recommended '%s' scores %d",
            len(assessed), recommended.route.summary, recommended.safety_score,
            extra={"safety_score": recommended.safety_score},
        )
        return SafeRoutesResult(
            recommended=recommended,
            alternatives=acceptable[1:3],
            summary=summary,
        )


def _with_detour(assessment: RouteAssessment, fastest_s: int) -> RouteAssessment:
    if fastest_s <= 0:
        return replace(assessment, detour_percent=0.0)
    detour = (assessment.route.duration_s - fastest_s) / fastest_s * 100.0
    return replace(assessment, detour_percent=detour)
