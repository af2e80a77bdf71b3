"""
evacuation.py — EvacuationPlanner: ranked routes away from an epicenter.

    1. Drop catalog destinations within ``evacuation_radius_km`` of the epicenter
    2. Rank the rest by distance from the caller (nearest first)
    3. Route to the top ``max_routes`` with a 100 % detour allowance
    4. Instructions come from the first routed destination, or generic
       guidance when nothing qualifies
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from backend.app.routing.scorer import RouteSafetyScorer
from backend.app.spatial.radius_utils import Coordinate, distance_between

logger = logging.getLogger(__name__)

EVACUATION_DETOUR_PERCENT = 100.0

CATEGORY_SAFETY: Dict[str, int] = {
    "park": 90,
    "open_space": 85,
    "stadium": 80,
    "hospital": 75,
    "school": 70,
}
DEFAULT_CATEGORY_SAFETY = 60

GENERIC_INSTRUCTIONS = [
    "Move away from the emergency area",
    "Seek open spaces",
    "Follow local authorities' instructions",
]


@dataclass(frozen=True)
class SafeDestination:
    name: str
    location: Coordinate
    category: str

    @property
    def safety_level(self) -> int:
        return CATEGORY_SAFETY.get(self.category, DEFAULT_CATEGORY_SAFETY)


BENGALURU_SAFE_DESTINATIONS: Sequence[SafeDestination] = (
    SafeDestination("Cubbon Park", Coordinate(12.9762, 77.5993), "park"),
    SafeDestination("Lalbagh Botanical Garden", Coordinate(12.9507, 77.5848), "park"),
    SafeDestination("Bangalore Palace Grounds", Coordinate(12.9988, 77.5916), "open_space"),
    SafeDestination("Kanteerava Stadium", Coordinate(12.9698, 77.5986), "stadium"),
    SafeDestination("Freedom Park", Coordinate(12.9716, 77.5946), "park"),
)


def evacuation_instructions(routes: List[Dict[str, Any]]) -> List[str]:
    if not routes:
        return list(GENERIC_INSTRUCTIONS)
    primary = routes[0]
    minutes = round(primary["route"]["duration"] / 60)
    return [
        f"Head towards {primary['destination']}",
        f"Estimated travel time: {minutes} minutes",
        "Stay calm and move steadily",
        "Avoid running to prevent panic",
        "Help others if safe to do so",
        "Follow instructions from emergency personnel",
    ]


class EvacuationPlanner:

    def __init__(
        self,
        scorer: RouteSafetyScorer,
        destinations: Optional[Sequence[SafeDestination]] = None,
    ):
        self.scorer = scorer
        self.destinations = (
            BENGALURU_SAFE_DESTINATIONS if destinations is None else destinations
        )

    def find_safe_destinations(
        self,
        current: Coordinate,
        epicenter: Coordinate,
        radius_km: float,
    ) -> List[Dict[str, Any]]:
        """Destinations strictly beyond ``radius_km`` of the epicenter, nearest to ``current`` first."""
        candidates = [
            {
                "destination": d,
                "distance_from_current": distance_between(current, d.location),
                "safety_level": d.safety_level,
            }
            for d in self.destinations
            if distance_between(epicenter, d.location) > radius_km
        ]
        candidates.sort(key=lambda c: c["distance_from_current"])
        return candidates

    async def get_evacuation_routes(
        self,
        current: Coordinate,
        epicenter: Coordinate,
        evacuation_radius_km: float = 2.0,
        max_routes: int = 3,
    ) -> Dict[str, Any]:
        safe = self.find_safe_destinations(current, epicenter, evacuation_radius_km)

        routes: List[Dict[str, Any]] = []
        for candidate in safe[:max_routes]:
            destination: SafeDestination = candidate["destination"]
            result = await self.scorer.get_safe_routes(
                current,
                destination.location,
                avoid_crowds=True,
                avoid_emergencies=True,
                max_detour_percent=EVACUATION_DETOUR_PERCENT,
            )
            if result.recommended is None:
                continue
            routes.append({
                "destination": destination.name,
                "destination_type": destination.category,
                "destination_location": destination.location.to_dict(),
                "distance_km": round(candidate["distance_from_current"], 2),
                "route": result.recommended.to_dict(),
                "estimated_safety": candidate["safety_level"],
            })

        if not routes:
            logger.warning(
                "No safe evacuation destination beyond %.1f km of (%.4f, %.4f)",
                evacuation_radius_km, epicenter.latitude, epicenter.longitude,
            )
        return {
            "evacuation_routes": routes,
            "emergency_location": epicenter.to_dict(),
            "evacuation_radius": evacuation_radius_km,
            "instructions": evacuation_instructions(routes),
        }
