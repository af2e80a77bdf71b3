"""
Service wiring — builds the component graph once per application.

    stores ──► CrowdDensityTracker ──► AlertBroadcaster ──► EmergencyAlertRegistry
                      │                                           │
                      └──────────────► EmergencyDetector ◄────────┘
                      └──► RouteSafetyScorer ◄── DirectionsClient
                                  └──► EvacuationPlanner

Routers receive the container through the ``get_container`` dependency;
tests override that dependency with a container of their own.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncEngine

from backend.app.core.config import Settings, settings as default_settings
from backend.app.core.database import close_db, create_engine, create_session_factory, init_db
from backend.app.crowd.tracker import CrowdDensityTracker
from backend.app.emergency.broadcast import AlertBroadcaster
from backend.app.emergency.detector import EmergencyDetector
from backend.app.emergency.registry import EmergencyAlertRegistry
from backend.app.jobs.scheduler import PeriodicJobRunner
from backend.app.routing.directions import DirectionsClient
from backend.app.routing.evacuation import EvacuationPlanner
from backend.app.routing.scorer import RouteSafetyScorer, RouteSource
from backend.app.storage.base import AlertStore, LocationStore
from backend.app.storage.memory import MemoryAlertStore, MemoryLocationStore
from backend.app.storage.sql import SQLAlertStore, SQLLocationStore

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    location_store: LocationStore
    alert_store: AlertStore
    tracker: CrowdDensityTracker
    broadcaster: AlertBroadcaster
    registry: EmergencyAlertRegistry
    detector: EmergencyDetector
    directions: Optional[DirectionsClient]
    scorer: RouteSafetyScorer
    planner: EvacuationPlanner
    scheduler: PeriodicJobRunner
    engine: Optional[AsyncEngine] = None

    @classmethod
    def from_stores(
        cls,
        location_store: LocationStore,
        alert_store: AlertStore,
        *,
        route_source: Optional[RouteSource] = None,
        config: Optional[Settings] = None,
        engine: Optional[AsyncEngine] = None,
    ) -> "ServiceContainer":
        config = config or default_settings
        tracker = CrowdDensityTracker(
            location_store,
            cache_ttl_seconds=config.ACTIVE_CACHE_TTL_SECONDS,
            max_write_attempts=config.MAX_WRITE_RETRIES,
        )
        broadcaster = AlertBroadcaster(
            tracker, alert_store, max_write_attempts=config.MAX_WRITE_RETRIES,
        )
        registry = EmergencyAlertRegistry(
            alert_store, broadcaster, max_write_attempts=config.MAX_WRITE_RETRIES,
        )
        detector = EmergencyDetector(tracker, registry)
        scorer = RouteSafetyScorer(tracker, registry, route_source)
        container = cls(
            location_store=location_store,
            alert_store=alert_store,
            tracker=tracker,
            broadcaster=broadcaster,
            registry=registry,
            detector=detector,
            directions=route_source if isinstance(route_source, DirectionsClient) else None,
            scorer=scorer,
            planner=EvacuationPlanner(scorer),
            scheduler=PeriodicJobRunner(),
            engine=engine,
        )
        container._register_jobs(config)
        return container

    @classmethod
    async def build(cls, config: Optional[Settings] = None) -> "ServiceContainer":
        """Create stores for the configured backend and wire everything."""
        config = config or default_settings
        engine = None
        if config.STORAGE_BACKEND == "sql":
            engine = create_engine(config.DATABASE_URL)
            await init_db(engine)
            sessions = create_session_factory(engine)
            location_store, alert_store = SQLLocationStore(sessions), SQLAlertStore(sessions)
        elif config.STORAGE_BACKEND == "memory":
            location_store, alert_store = MemoryLocationStore(), MemoryAlertStore()
        else:
            raise ValueError(f"Unknown STORAGE_BACKEND '{config.STORAGE_BACKEND}'")

        logger.info("Storage backend: %s", config.STORAGE_BACKEND)
        return cls.from_stores(
            location_store,
            alert_store,
            route_source=DirectionsClient(),
            config=config,
            engine=engine,
        )

    def _register_jobs(self, config: Settings) -> None:
        async def simulate_crowds() -> Any:
            return await self.tracker.simulate_detection(
                config.SIMULATION_CENTER_LAT,
                config.SIMULATION_CENTER_LON,
                config.SIMULATION_RADIUS_KM,
            )

        self.scheduler.add_job(
            "crowd_simulation", simulate_crowds, config.CROWD_SIMULATION_INTERVAL_SECONDS,
        )
        self.scheduler.add_job(
            "emergency_detection", self.detector.run_cycle,
            config.EMERGENCY_DETECTION_INTERVAL_SECONDS,
        )

    async def close(self) -> None:
        await self.scheduler.stop()
        if self.directions is not None:
            await self.directions.close()
        if self.engine is not None:
            await close_db(self.engine)


def get_container(request: Request) -> ServiceContainer:
    """FastAPI dependency: the container built during application startup."""
    return request.app.state.container
