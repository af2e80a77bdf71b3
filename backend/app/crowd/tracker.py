"""
tracker.py — CrowdDensityTracker: crowd state, nearby queries, simulation.

The tracker is the only writer of crowd locations that goes through the
optimistic write loop (``read_modify_write``). It owns an
ActiveLocationCache of alert-active locations:

    write through tracker ──► cache updated in place
    write elsewhere       ──► caller invokes tracker.invalidate_active_cache()
    cache older than TTL  ──► next find_active_alerts() reloads from store
"""

from __future__ import annotations

import logging
import random
import time
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from backend.app.core.config import settings
from backend.app.crowd.models import (
    CrowdLocation,
    DensityLevel,
    LocationCategory,
    new_location,
    parse_category,
    parse_density_level,
    update_density,
    validate_count,
)
from backend.app.crowd.simulation import simulated_count
from backend.app.spatial.radius_utils import degree_box, haversine_km, validate_coordinates
from backend.app.storage.base import LocationStore, read_modify_write

logger = logging.getLogger(__name__)

RESOURCE = "CrowdLocation"

SAMPLE_LOCATIONS: List[Dict[str, Any]] = [
    {
        "name": "Bengaluru City Railway Station",
        "category": LocationCategory.TRANSPORT,
        "latitude": 12.9762, "longitude": 77.6033,
        "max_capacity": 5000, "initial_count": 1200,
    },
    {
        "name": "Commercial Street",
        "category": LocationCategory.SHOPPING,
        "latitude": 12.9716, "longitude": 77.6412,
        "max_capacity": 3000, "initial_count": 800,
    },
    {
        "name": "Chinnaswamy Stadium",
        "category": LocationCategory.STADIUM,
        "latitude": 12.9784, "longitude": 77.5996,
        "max_capacity": 40000, "initial_count": 2000,
    },
    {
        "name": "ISKCON Temple",
        "category": LocationCategory.RELIGIOUS,
        "latitude": 12.9434, "longitude": 77.6009,
        "max_capacity": 2000, "initial_count": 600,
    },
    {
        "name": "Brigade Road",
        "category": LocationCategory.SHOPPING,
        "latitude": 12.9716, "longitude": 77.6412,
        "max_capacity": 4000, "initial_count": 1500,
    },
]


def _by_density(locations: List[CrowdLocation]) -> List[CrowdLocation]:
    return sorted(locations, key=lambda loc: loc.density_percentage, reverse=True)


class ActiveLocationCache:
    """Alert-active locations keyed by id, reloaded after ``ttl_seconds``."""

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, CrowdLocation] = {}
        self._loaded_at: Optional[float] = None

    @property
    def is_fresh(self) -> bool:
        return (
            self._loaded_at is not None
            and self._clock() - self._loaded_at < self.ttl_seconds
        )

    def load(self, locations: List[CrowdLocation]) -> None:
        self._entries = {loc.id: loc for loc in locations if loc.alert_active}
        self._loaded_at = self._clock()

    def apply(self, location: CrowdLocation) -> None:
        if location.alert_active:
            self._entries[location.id] = location
        else:
            self._entries.pop(location.id, None)

    def invalidate(self) -> None:
        self._entries.clear()
        self._loaded_at = None

    def values(self) -> List[CrowdLocation]:
        return list(self._entries.values())


class CrowdDensityTracker:
    """Per-location crowd state backed by a LocationStore."""

    def __init__(
        self,
        store: LocationStore,
        *,
        cache_ttl_seconds: Optional[float] = None,
        max_write_attempts: Optional[int] = None,
        rng: Optional[random.Random] = None,
    ):
        self.store = store
        self.active_cache = ActiveLocationCache(
            settings.ACTIVE_CACHE_TTL_SECONDS if cache_ttl_seconds is None
            else cache_ttl_seconds
        )
        self.max_write_attempts = max_write_attempts or settings.MAX_WRITE_RETRIES
        self._rng = rng or random.Random()

    # ── Writes ──────────────────────────────────────────────────────────

    async def register(
        self,
        name: str,
        category: Any,
        latitude: float,
        longitude: float,
        max_capacity: int,
        initial_count: int = 0,
        now: Optional[datetime] = None,
    ) -> CrowdLocation:
        location = update_density(
            new_location(name, category, latitude, longitude, max_capacity),
            initial_count,
            now,
        )
        stored = await self.store.add(location)
        self.active_cache.apply(stored)
        logger.info(
            "Registered crowd location %s (%s, capacity %d)",
            stored.name, stored.category.value, stored.max_capacity,
            extra={"location_id": stored.id, "density_level": stored.density_level.value},
        )
        return stored

    async def update_density(
        self,
        location_id: str,
        new_count: int,
        now: Optional[datetime] = None,
    ) -> CrowdLocation:
        validate_count(new_count)

        stored = await read_modify_write(
            self.store,
            location_id,
            lambda loc: update_density(loc, new_count, now),
            resource=RESOURCE,
            max_attempts=self.max_write_attempts,
        )
        self.active_cache.apply(stored)
        logger.info(
            "Updated crowd density for %s: %d people (%.1f%%)",
            stored.name, stored.estimated_count, stored.density_percentage,
            extra={"location_id": stored.id, "density_level": stored.density_level.value},
        )
        return stored

    def invalidate_active_cache(self) -> None:
        self.active_cache.invalidate()

    # ── Reads ───────────────────────────────────────────────────────────

    async def get_location(self, location_id: str) -> Optional[CrowdLocation]:
        return await self.store.get(location_id)

    async def list_locations(
        self,
        category: Optional[Any] = None,
        density_level: Optional[Any] = None,
    ) -> List[CrowdLocation]:
        wanted_category = parse_category(category) if category else None
        wanted_level = parse_density_level(density_level) if density_level else None
        locations = [
            loc for loc in await self.store.list_all()
            if (wanted_category is None or loc.category == wanted_category)
            and (wanted_level is None or loc.density_level == wanted_level)
        ]
        return _by_density(locations)

    async def find_nearby(
        self, latitude: float, longitude: float, radius_km: float,
    ) -> List[CrowdLocation]:
        """Locations inside the ±radius_km/111° box, densest first."""
        validate_coordinates(latitude, longitude)
        found = await self.store.find_in_box(degree_box(latitude, longitude, radius_km))
        return _by_density(found)

    async def find_active_alerts(self) -> List[CrowdLocation]:
        if not self.active_cache.is_fresh:
            self.active_cache.load(await self.store.list_all())
        return _by_density(self.active_cache.values())

    async def check_user_location(
        self, latitude: float, longitude: float, radius_km: float = 5.0,
    ) -> Dict[str, Any]:
        """Crowd alerts around a user, nearest first."""
        nearby = await self.find_nearby(latitude, longitude, radius_km)
        alerts = []
        for loc in nearby:
            if not (loc.alert_active or loc.density_level in (DensityLevel.HIGH, DensityLevel.CRITICAL)):
                continue
            alerts.append({
                "id": loc.id,
                "location_name": loc.name,
                "location_type": loc.category.value,
                "current_density": loc.density_level.value,
                "density_percentage": round(loc.density_percentage, 2),
                "estimated_count": loc.estimated_count,
                "alert_message": loc.alert_message,
                "distance_km": round(
                    haversine_km(latitude, longitude, loc.latitude, loc.longitude), 1,
                ),
                "latitude": loc.latitude,
                "longitude": loc.longitude,
            })
        alerts.sort(key=lambda a: a["distance_km"])

        return {
            "user_location": {"latitude": latitude, "longitude": longitude},
            "nearby_alerts": alerts,
            "total_alerts": len(alerts),
            "critical_alerts": sum(
                1 for a in alerts if a["current_density"] == DensityLevel.CRITICAL.value
            ),
        }

    # ── Simulation & seeding ────────────────────────────────────────────

    async def simulate_detection(
        self,
        latitude: float,
        longitude: float,
        radius_km: float = 1.0,
        now: Optional[datetime] = None,
    ) -> List[Dict[str, Any]]:
        """
        Push a synthetic head-count to every location in range.

        ``now`` drives the hour/weekday pattern; it defaults to local time.
        """
        moment = now or datetime.now().astimezone()
        updates = []
        for location in await self.find_nearby(latitude, longitude, radius_km):
            count = simulated_count(location.category, location.max_capacity, moment, self._rng)
            updated = await self.update_density(location.id, count, now)
            updates.append({
                "id": updated.id,
                "location_name": updated.name,
                "old_density": location.density_level.value,
                "new_count": count,
                "new_density": updated.density_level.value,
                "alert_active": updated.alert_active,
            })
        return updates

    async def seed_sample_locations(self) -> int:
        """Insert the demonstration locations that are not present yet."""
        created = 0
        for sample in SAMPLE_LOCATIONS:
            if await self.store.find_by_name(sample["name"]) is not None:
                continue
            await self.register(
                sample["name"], sample["category"],
                sample["latitude"], sample["longitude"],
                sample["max_capacity"], sample["initial_count"],
            )
            created += 1
        if created:
            logger.info("Seeded %d sample crowd locations", created)
        return created

