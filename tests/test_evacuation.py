"""
test_evacuation.py — Evacuation destination selection and route planning.

Run with:
    pytest tests/test_evacuation.py -v
"""

from __future__ import annotations

import asyncio

from backend.app.crowd.tracker import CrowdDensityTracker
from backend.app.emergency.broadcast import AlertBroadcaster
from backend.app.emergency.registry import EmergencyAlertRegistry
from backend.app.routing.evacuation import (
    GENERIC_INSTRUCTIONS,
    EvacuationPlanner,
    SafeDestination,
)
from backend.app.routing.scorer import RouteSafetyScorer
from backend.app.spatial.radius_utils import Coordinate
from backend.app.storage.memory import MemoryAlertStore, MemoryLocationStore

FREEDOM_PARK = Coordinate(12.9716, 77.5946)


def run(coro):
    return asyncio.run(coro)


def _make_planner(destinations=None):
    tracker = CrowdDensityTracker(MemoryLocationStore())
    store = MemoryAlertStore()
    registry = EmergencyAlertRegistry(store, AlertBroadcaster(tracker, store))
    scorer = RouteSafetyScorer(tracker, registry, None)
    return EvacuationPlanner(scorer, destinations)


class TestSafeDestination:

    def test_safety_by_category(self):
        assert SafeDestination("P", FREEDOM_PARK, "park").safety_level == 90
        assert SafeDestination("H", FREEDOM_PARK, "hospital").safety_level == 75

    def test_unknown_category_default(self):
        assert SafeDestination("M", FREEDOM_PARK, "mall").safety_level == 60


class TestFindSafeDestinations:
    """Filtering by the evacuation radius and ranking by proximity."""

    def test_excludes_destinations_inside_radius(self):
        planner = _make_planner()
        safe = planner.find_safe_destinations(FREEDOM_PARK, FREEDOM_PARK, 2.0)
        names = [c["destination"].name for c in safe]
        assert names == ["Lalbagh Botanical Garden", "Bangalore Palace Grounds"]

    def test_sorted_by_distance_from_caller(self):
        planner = _make_planner()
        current = Coordinate(13.0100, 77.5900)
        safe = planner.find_safe_destinations(current, FREEDOM_PARK, 2.0)
        assert safe[0]["destination"].name == "Bangalore Palace Grounds"
        distances = [c["distance_from_current"] for c in safe]
        assert distances == sorted(distances)

    def test_boundary_is_exclusive(self):
        planner = _make_planner([SafeDestination("Here", FREEDOM_PARK, "park")])
        assert planner.find_safe_destinations(FREEDOM_PARK, FREEDOM_PARK, 0.0) == []


class TestGetEvacuationRoutes:
    """Full plan with routes and instructions."""

    def test_plan_shape(self):
        planner = _make_planner()
        plan = run(planner.get_evacuation_routes(FREEDOM_PARK, FREEDOM_PARK))
        assert plan["emergency_location"] == {"lat": 12.9716, "lng": 77.5946}
        assert plan["evacuation_radius"] == 2.0
        routes = plan["evacuation_routes"]
        assert [r["destination"] for r in routes] == [
            "Lalbagh Botanical Garden", "Bangalore Palace Grounds",
        ]
        assert routes[0]["estimated_safety"] == 90
        assert routes[0]["route"]["summary"] == "Direct route"
        assert routes[0]["route"]["safety_score"] == 100

    def test_instructions_follow_primary_route(self):
        planner = _make_planner()
        plan = run(planner.get_evacuation_routes(FREEDOM_PARK, FREEDOM_PARK))
        instructions = plan["instructions"]
        assert instructions[0] == "Head towards Lalbagh Botanical Garden"
        assert instructions[1].startswith("Estimated travel time: ")
        assert instructions[1].endswith(" minutes")

    def test_max_routes(self):
        planner = _make_planner()
        plan = run(planner.get_evacuation_routes(FREEDOM_PARK, FREEDOM_PARK, max_routes=1))
        assert len(plan["evacuation_routes"]) == 1

    def test_nothing_qualifies_gives_generic_instructions(self):
        planner = _make_planner()
        plan = run(planner.get_evacuation_routes(
            FREEDOM_PARK, FREEDOM_PARK, evacuation_radius_km=50.0,
        ))
        assert plan["evacuation_routes"] == []
        assert plan["instructions"] == GENERIC_INSTRUCTIONS
