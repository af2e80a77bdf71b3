"""
Health check aggregation — deep health probe for all subsystems.

Checks:
    • Record storage (memory or SQL)
    • Cache connectivity (Redis, when enabled)
    • Directions provider configuration
    • Background scheduler

Returns a structured health report suitable for:
    - Kubernetes liveness/readiness probes
    - Load balancer health checks
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List

from backend.app.core import cache
from backend.app.core.config import settings
from backend.app.jobs.scheduler import JobStatus

if TYPE_CHECKING:
    from backend.app.container import ServiceContainer

logger = logging.getLogger(__name__)


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"  # partial functionality
    UNHEALTHY = "unhealthy"


@dataclass
class ComponentHealth:
    name: str
    status: HealthStatus = HealthStatus.HEALTHY
    latency_ms: float = 0.0
    message: str = ""
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "name": self.name,
            "status": self.status.value,
            "latency_ms": round(self.latency_ms, 2),
        }
        if self.message:
            d["message"] = self.message
        if self.details:
            d["details"] = self.details
        return d


@dataclass
class HealthReport:
    status: HealthStatus = HealthStatus.HEALTHY
    version: str = settings.APP_VERSION
    environment: str = settings.ENVIRONMENT
    timestamp: str = ""
    uptime_seconds: float = 0.0
    components: List[ComponentHealth] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "version": self.version,
            "environment": self.environment,
            "timestamp": self.timestamp or datetime.now(timezone.utc).isoformat(),
            "uptime_seconds": round(self.uptime_seconds, 1),
            "components": [c.to_dict() for c in self.components],
        }


_start_time = time.monotonic()


async def check_storage(container: "ServiceContainer") -> ComponentHealth:
    comp = ComponentHealth(name="storage")
    start = time.monotonic()
    try:
        await container.location_store.ping()
        await container.alert_store.ping()
        comp.message = f"{settings.STORAGE_BACKEND} backend reachable"
        comp.details = {
            "location_store": type(container.location_store).__name__,
            "alert_store": type(container.alert_store).__name__,
        }
    except Exception as e:
        comp.status = HealthStatus.UNHEALTHY
        comp.message = str(e)
    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


async def check_redis() -> ComponentHealth:
    """Redis is optional: off counts as healthy, unreachable as degraded."""
    comp = ComponentHealth(name="redis")
    start = time.monotonic()
    ok = await cache.ping()
    if ok is None:
        comp.message = "Caching disabled"
    elif ok:
        comp.message = "Cache available"
    else:
        comp.status = HealthStatus.DEGRADED
        comp.message = "Cache unreachable; directions are fetched uncached"
    comp.latency_ms = (time.monotonic() - start) * 1000
    return comp


async def check_directions(container: "ServiceContainer") -> ComponentHealth:
    comp = ComponentHealth(name="directions")
    if container.directions is None or not container.directions.configured:
        comp.status = HealthStatus.DEGRADED
        comp.message = "No directions API key; routes fall back to direct paths"
    else:
        comp.message = "Directions provider configured"
        comp.details = {"timeout_seconds": container.directions.timeout}
    return comp


async def check_scheduler(container: "ServiceContainer") -> ComponentHealth:
    comp = ComponentHealth(name="scheduler")
    states = container.scheduler.states()
    comp.details = {"jobs": [s.to_dict() for s in states]}
    if not container.scheduler.running:
        comp.message = "Scheduler not running"
        if settings.SCHEDULER_ENABLED:
            comp.status = HealthStatus.DEGRADED
    elif any(s.status == JobStatus.FAILED for s in states):
        comp.status = HealthStatus.DEGRADED
        comp.message = "Last cycle of a job failed"
    else:
        comp.message = "Running"
    return comp


async def run_health_check(container: "ServiceContainer") -> HealthReport:
    """Run all health checks and aggregate into a report."""
    report = HealthReport(
        timestamp=datetime.now(timezone.utc).isoformat(),
        uptime_seconds=time.monotonic() - _start_time,
    )

    checks = [
        check_storage(container),
        check_redis(),
        check_directions(container),
        check_scheduler(container),
    ]
    for coro in checks:
        report.components.append(await coro)

    statuses = [c.status for c in report.components]
    if HealthStatus.UNHEALTHY in statuses:
        report.status = HealthStatus.UNHEALTHY
    elif HealthStatus.DEGRADED in statuses:
        report.status = HealthStatus.DEGRADED
    else:
        report.status = HealthStatus.HEALTHY

    if report.status != HealthStatus.HEALTHY:
        logger.warning("Health check %s", report.status.value)
    return report
