"""
detector.py — EmergencyDetector: turns critical crowd hotspots into alerts.

A location is a hotspot when it is critical, alert-active and at or above
AUTO_DETECT_THRESHOLD percent of capacity. One auto-raised stampede_risk
alert is kept per hotspot: while a valid stampede_risk alert exists within
±0.001° (~100 m), re-detection is suppressed.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from backend.app.crowd.models import DensityLevel
from backend.app.crowd.tracker import CrowdDensityTracker
from backend.app.emergency.models import AlertType, EmergencyAlert, Severity
from backend.app.emergency.registry import EmergencyAlertRegistry

logger = logging.getLogger(__name__)

AUTO_DETECT_THRESHOLD = 95.0
AUTO_DETECT_RADIUS_M = 2000
AUTO_DETECT_REPORTER = "system_auto_detect"
HOTSPOT_TOLERANCE_DEG = 0.001


class EmergencyDetector:

    def __init__(self, tracker: CrowdDensityTracker, registry: EmergencyAlertRegistry):
        self.tracker = tracker
        self.registry = registry

    async def detect_emergency_situations(
        self, now: Optional[datetime] = None,
    ) -> List[EmergencyAlert]:
        """Raise a stampede_risk alert for each new hotspot; returns the created alerts."""
        created: List[EmergencyAlert] = []
        for location in await self.tracker.find_active_alerts():
            if location.density_level != DensityLevel.CRITICAL:
                continue

            existing = await self.registry.find_active_at(
                location.latitude, location.longitude,
                AlertType.STAMPEDE_RISK, HOTSPOT_TOLERANCE_DEG, now,
            )
            if existing is not None or location.density_percentage < AUTO_DETECT_THRESHOLD:
                continue

            alert = await self.registry.create(
                now=now,
                alert_type=AlertType.STAMPEDE_RISK,
                severity=Severity.CRITICAL,
                location_name=location.name,
                latitude=location.latitude,
                longitude=location.longitude,
                description=(
                    f"Critical overcrowding detected: {location.density_percentage:.1f}% "
                    f"capacity ({location.estimated_count} people)"
                ),
                reporter_id=AUTO_DETECT_REPORTER,
                auto_verify=True,
                broadcast_radius=AUTO_DETECT_RADIUS_M,
            )
            logger.warning(
                "Auto-raised stampede risk at %s (%.1f%%)",
                location.name, location.density_percentage,
                extra={"alert_id": alert.id, "location_id": location.id},
            )
            created.append(alert)
        return created

    async def run_cycle(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """One scheduler tick: hotspot detection, then the expiry sweep."""
        created = await self.detect_emergency_situations(now)
        expired = await self.registry.cleanup_expired(now)
        return {
            "alerts_created": len(created),
            "alert_ids": [a.id for a in created],
            "alerts_expired": expired,
        }
