"""
broadcast.py — Reach estimation and automatic response actions.

═══════════════════════════════════════════════════════════════════════════
REACH ESTIMATE
═══════════════════════════════════════════════════════════════════════════

    r = broadcast_radius / 1000                        (km)

    crowd data in range:   reach = ⌊0.3 × Σ estimated_count⌋
    no crowd data / error: reach = ⌊π · r² · 1000 · 0.2⌋

The fallback assumes an urban density of 1000 people/km² and 20 % app
penetration. It is an approximation for sizing a broadcast, not a count
of delivered messages. A 1 km radius with no crowd data gives 628.

═══════════════════════════════════════════════════════════════════════════
RESPONSE ACTIONS (critical alerts only, appended, never replaced)
═══════════════════════════════════════════════════════════════════════════

    any type            → police_notified
    medical_emergency   → + medical_dispatched
    fire_hazard         → + evacuation_started
"""

from __future__ import annotations

import logging
import math
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from backend.app.core.config import settings
from backend.app.core.errors import CrowdSafetyError
from backend.app.crowd.tracker import CrowdDensityTracker
from backend.app.emergency.models import (
    AlertType,
    EmergencyAlert,
    ResponseAction,
    ResponseActionType,
    Severity,
    append_actions,
    record_reach,
)
from backend.app.storage.base import AlertStore, read_modify_write

logger = logging.getLogger(__name__)

APP_PENETRATION = 0.3
FALLBACK_URBAN_DENSITY = 1000
FALLBACK_PENETRATION = 0.2

NOTIFICATION_TEMPLATES: Dict[AlertType, str] = {
    AlertType.STAMPEDE_RISK: "🚨 STAMPEDE RISK at {name}. Avoid this area immediately!",
    AlertType.OVERCROWDING: "⚠️ Severe overcrowding at {name}. Consider alternative routes.",
    AlertType.BLOCKED_EXIT: "🚪 Exit blocked at {name}. Use alternative exits.",
    AlertType.PANIC_SITUATION: "😰 Panic situation reported at {name}. Stay calm and avoid area.",
    AlertType.MEDICAL_EMERGENCY: "🏥 Medical emergency at {name}. Give way to emergency vehicles.",
    AlertType.FIRE_HAZARD: "🔥 Fire hazard at {name}. Evacuate immediately!",
    AlertType.STRUCTURAL_ISSUE: "🏗️ Structural issue at {name}. Area unsafe, avoid immediately.",
}


def notification_message(alert: EmergencyAlert) -> str:
    template = NOTIFICATION_TEMPLATES.get(alert.alert_type)
    if template is None:
        return f"⚠️ Emergency alert at {alert.location_name}: {alert.description}"
    return template.format(name=alert.location_name)


def fallback_reach(radius_km: float) -> int:
    """
    >>> fallback_reach(1.0)
    628
    """
    area = math.pi * radius_km * radius_km
    return math.floor(area * FALLBACK_URBAN_DENSITY * FALLBACK_PENETRATION)


def response_actions_for(
    alert: EmergencyAlert, now: Optional[datetime] = None,
) -> Tuple[ResponseAction, ...]:
    if alert.severity != Severity.CRITICAL:
        return ()
    now = now or datetime.now(timezone.utc)
    actions: List[ResponseAction] = [
        ResponseAction(
            ResponseActionType.POLICE_NOTIFIED, now,
            "Automatic notification sent to local police control room",
        ),
    ]
    if alert.alert_type == AlertType.MEDICAL_EMERGENCY:
        actions.append(ResponseAction(
            ResponseActionType.MEDICAL_DISPATCHED, now, "Ambulance dispatch requested",
        ))
    if alert.alert_type == AlertType.FIRE_HAZARD:
        actions.append(ResponseAction(
            ResponseActionType.EVACUATION_STARTED, now,
            "Fire department notified, evacuation procedures initiated",
        ))
    return tuple(actions)


class AlertBroadcaster:
    """Estimates broadcast reach and records automatic response actions."""

    def __init__(
        self,
        tracker: CrowdDensityTracker,
        store: AlertStore,
        *,
        max_write_attempts: Optional[int] = None,
    ):
        self.tracker = tracker
        self.store = store
        self.max_write_attempts = max_write_attempts or settings.MAX_WRITE_RETRIES

    async def estimate_reach(self, latitude: float, longitude: float, radius_km: float) -> int:
        try:
            nearby = await self.tracker.find_nearby(latitude, longitude, radius_km)
        except CrowdSafetyError as exc:
            logger.warning("Crowd lookup failed for reach estimate: %s", exc.message)
            nearby = []
        if not nearby:
            return fallback_reach(radius_km)
        return math.floor(sum(loc.estimated_count for loc in nearby) * APP_PENETRATION)

    async def broadcast(self, alert: EmergencyAlert) -> Tuple[EmergencyAlert, Dict[str, Any]]:
        """Persist ``notifications_sent`` and return (alert, broadcast summary)."""
        reach = await self.estimate_reach(
            alert.latitude, alert.longitude, alert.broadcast_radius / 1000.0,
        )
        stored = await read_modify_write(
            self.store,
            alert.id,
            lambda a: record_reach(a, reach),
            resource="EmergencyAlert",
            max_attempts=self.max_write_attempts,
        )
        logger.info(
            "Broadcasted emergency alert to ~%d users", reach,
            extra={"alert_id": alert.id},
        )
        return stored, {
            "alert_id": stored.id,
            "message": notification_message(stored),
            "estimated_recipients": reach,
            "broadcast_radius": stored.broadcast_radius,
        }

    async def trigger_response(self, alert: EmergencyAlert) -> EmergencyAlert:
        """Append automatic response actions for critical alerts."""
        if alert.severity != Severity.CRITICAL:
            return alert
        actions = response_actions_for(alert)
        stored = await read_modify_write(
            self.store,
            alert.id,
            lambda a: append_actions(a, actions),
            resource="EmergencyAlert",
            max_attempts=self.max_write_attempts,
        )
        logger.info(
            "Triggered %d emergency response actions for alert %s",
            len(actions), alert.id,
            extra={"alert_id": alert.id},
        )
        return stored

