"""
registry.py — EmergencyAlertRegistry: alert lifecycle over an AlertStore.

Every mutation (broadcast reach, response actions, confirmations,
resolution, expiry) is a pure transition from ``emergency.models`` applied
through ``read_modify_write``, so concurrent requests and the periodic
sweep never overwrite each other's changes.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set

from backend.app.core.config import settings
from backend.app.core.errors import ConcurrencyConflict, NotFoundError
from backend.app.emergency.broadcast import AlertBroadcaster
from backend.app.emergency.models import (
    SEVERITY_RANK,
    EmergencyAlert,
    apply_confirmation,
    confirmation_ratio,
    expire,
    is_valid,
    new_alert,
    parse_alert_type,
    resolve_alert,
)
from backend.app.spatial.radius_utils import degree_box, tolerance_box, validate_coordinates
from backend.app.storage.base import AlertStore, read_modify_write

logger = logging.getLogger(__name__)

RESOURCE = "EmergencyAlert"


def _now() -> datetime:
    return datetime.now(timezone.utc)


class EmergencyAlertRegistry:

    def __init__(
        self,
        store: AlertStore,
        broadcaster: AlertBroadcaster,
        *,
        max_write_attempts: Optional[int] = None,
    ):
        self.store = store
        self.broadcaster = broadcaster
        self.max_write_attempts = max_write_attempts or settings.MAX_WRITE_RETRIES

    async def _write(self, alert_id: str, mutate) -> EmergencyAlert:
        return await read_modify_write(
            self.store, alert_id, mutate,
            resource=RESOURCE, max_attempts=self.max_write_attempts,
        )

    # ── Lifecycle ───────────────────────────────────────────────────────

    async def create(self, now: Optional[datetime] = None, **report: Any) -> EmergencyAlert:
        """
        Validate and persist a report, broadcast it and, for critical
        alerts, trigger the automatic response actions.

        Accepts the keyword arguments of ``emergency.models.new_alert``.
        """
        alert = await self.store.add(new_alert(now=now, **report))
        logger.info(
            "Created %s emergency alert %s at %s",
            alert.severity.value, alert.alert_type.value, alert.location_name,
            extra={"alert_id": alert.id},
        )

        alert, _ = await self.broadcaster.broadcast(alert)
        alert = await self.broadcaster.trigger_response(alert)
        return alert

    async def confirm(
        self,
        alert_id: str,
        user_id: str,
        confirmed: bool = True,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        now = now or _now()

        def vote(alert: EmergencyAlert) -> EmergencyAlert:
            if not is_valid(alert, now):
                raise NotFoundError(RESOURCE, id=alert_id, reason="expired or resolved")
            return apply_confirmation(alert, user_id, confirmed, now)

        alert = await self._write(alert_id, vote)
        if not alert.active:
            logger.info("Alert %s rejected by community", alert_id, extra={"alert_id": alert_id})
        return {
            "alert_id": alert.id,
            "confirmation_ratio": confirmation_ratio(alert),
            "verified": alert.verified,
            "active": alert.active,
        }

    async def resolve(
        self,
        alert_id: str,
        resolved_by: str = "system",
        now: Optional[datetime] = None,
    ) -> EmergencyAlert:
        alert = await self._write(alert_id, lambda a: resolve_alert(a, resolved_by, now))
        logger.info("Resolved alert %s (%s)", alert_id, resolved_by, extra={"alert_id": alert_id})
        return alert

    async def cleanup_expired(self, now: Optional[datetime] = None) -> int:
        """Deactivate every active, expired alert; returns how many changed."""
        now = now or _now()
        swept: Set[str] = set()

        def sweep(alert: EmergencyAlert) -> EmergencyAlert:
            result = expire(alert, now)
            if result is alert:
                swept.discard(alert.id)
            else:
                swept.add(alert.id)
            return result

        candidates = [
            a for a in await self.store.list_all()
            if a.active and now >= a.expires_at
        ]
        for alert in candidates:
            try:
                await self._write(alert.id, sweep)
            except ConcurrencyConflict as exc:
                logger.warning("Skipping expiry of %s: %s", alert.id, exc.message)

        logger.info("Cleaned up %d expired emergency alerts", len(swept))
        return len(swept)

    # ── Queries ─────────────────────────────────────────────────────────

    async def get(self, alert_id: str) -> Optional[EmergencyAlert]:
        return await self.store.get(alert_id)

    async def find_nearby_active(
        self,
        latitude: float,
        longitude: float,
        radius_km: float = 5.0,
        now: Optional[datetime] = None,
    ) -> List[EmergencyAlert]:
        """Valid alerts in the degree box, most severe first, then newest."""
        validate_coordinates(latitude, longitude)
        now = now or _now()
        found = [
            a for a in await self.store.find_in_box(degree_box(latitude, longitude, radius_km))
            if is_valid(a, now)
        ]
        found.sort(key=lambda a: a.created_at, reverse=True)
        found.sort(key=lambda a: SEVERITY_RANK[a.severity], reverse=True)
        return found

    async def find_active_at(
        self,
        latitude: float,
        longitude: float,
        alert_type: Any,
        tolerance_deg: float = 0.001,
        now: Optional[datetime] = None,
    ) -> Optional[EmergencyAlert]:
        """A valid alert of ``alert_type`` within ±tolerance_deg of a point."""
        kind = parse_alert_type(alert_type)
        now = now or _now()
        for alert in await self.store.find_in_box(tolerance_box(latitude, longitude, tolerance_deg)):
            if alert.alert_type == kind and is_valid(alert, now):
                return alert
        return None

    async def stats(self) -> Dict[str, Any]:
        alerts = await self.store.list_all()
        grouped: Dict[str, List[EmergencyAlert]] = defaultdict(list)
        for alert in alerts:
            grouped[alert.alert_type.value].append(alert)

        by_type = [
            {
                "alert_type": kind,
                "count": len(items),
                "active_count": sum(1 for a in items if a.active),
                "avg_notifications": round(
                    sum(a.notifications_sent for a in items) / len(items), 2,
                ),
            }
            for kind, items in sorted(grouped.items())
        ]
        return {
            "total_alerts": len(alerts),
            "active_alerts": sum(1 for a in alerts if a.active),
            "by_type": by_type,
            "last_updated": _now().isoformat(),
        }
