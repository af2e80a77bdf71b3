"""
models.py — EmergencyAlert value type and its lifecycle transitions.

═══════════════════════════════════════════════════════════════════════════
LIFECYCLE
═══════════════════════════════════════════════════════════════════════════

    created ──► active ──┬── resolve(by)                 ──► inactive
                         ├── ratio ≤ 0.3 with ≥ 5 votes  ──► inactive ("community_rejected")
                         └── now ≥ expires_at (sweep)    ──► inactive

    is_valid(now)  ⟺  active ∧ now < expires_at

Confirmation voting (on the post-vote set, verify check first):

    not verified ∧ ratio ≥ 0.7 ∧ votes ≥ 3   →  verified_by = "community_verified"
    ratio ≤ 0.3 ∧ votes ≥ 5                  →  resolve("community_rejected")

All transitions are pure: they take an alert and return a new one.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from backend.app.core.errors import ValidationError
from backend.app.spatial.radius_utils import validate_coordinates

DEFAULT_EXPIRY = timedelta(hours=2)
DEFAULT_BROADCAST_RADIUS_M = 1000
MIN_BROADCAST_RADIUS_M = 100
MAX_BROADCAST_RADIUS_M = 10000

VERIFY_RATIO = 0.7
VERIFY_MIN_VOTES = 3
REJECT_RATIO = 0.3
REJECT_MIN_VOTES = 5


class AlertType(str, Enum):
    STAMPEDE_RISK     = "stampede_risk"
    OVERCROWDING      = "overcrowding"
    BLOCKED_EXIT      = "blocked_exit"
    PANIC_SITUATION   = "panic_situation"
    MEDICAL_EMERGENCY = "medical_emergency"
    FIRE_HAZARD       = "fire_hazard"
    STRUCTURAL_ISSUE  = "structural_issue"


class Severity(str, Enum):
    LOW      = "low"
    MEDIUM   = "medium"
    HIGH     = "high"
    CRITICAL = "critical"


SEVERITY_RANK: Dict[Severity, int] = {
    Severity.LOW: 1,
    Severity.MEDIUM: 2,
    Severity.HIGH: 3,
    Severity.CRITICAL: 4,
}


class ResponseActionType(str, Enum):
    POLICE_NOTIFIED    = "police_notified"
    MEDICAL_DISPATCHED = "medical_dispatched"
    EVACUATION_STARTED = "evacuation_started"
    AREA_CORDONED      = "area_cordoned"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def parse_alert_type(value: Any) -> AlertType:
    try:
        return AlertType(value)
    except ValueError:
        raise ValidationError(
            f"Unknown alert type '{value}'",
            field="alert_type",
            allowed=[t.value for t in AlertType],
        )


def parse_severity(value: Any) -> Severity:
    try:
        return Severity(value)
    except ValueError:
        raise ValidationError(
            f"Unknown severity '{value}'",
            field="severity",
            allowed=[s.value for s in Severity],
        )


@dataclass(frozen=True)
class Confirmation:
    user_id: str
    confirmed: bool
    timestamp: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "confirmed": self.confirmed,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Confirmation":
        return cls(
            user_id=data["user_id"],
            confirmed=bool(data["confirmed"]),
            timestamp=datetime.fromisoformat(data["timestamp"]),
        )


@dataclass(frozen=True)
class ResponseAction:
    action_type: ResponseActionType
    timestamp: datetime
    details: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action_type": self.action_type.value,
            "timestamp": self.timestamp.isoformat(),
            "details": self.details,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ResponseAction":
        return cls(
            action_type=ResponseActionType(data["action_type"]),
            timestamp=datetime.fromisoformat(data["timestamp"]),
            details=data.get("details", ""),
        )


@dataclass(frozen=True)
class EmergencyAlert:
    """
    A reported or auto-detected emergency.

    ``broadcast_radius`` is in metres; ``notifications_sent`` is the
    estimated number of users reached by the broadcast.
    """
    id: str
    alert_type: AlertType
    severity: Severity
    location_name: str
    latitude: float
    longitude: float
    description: str
    created_at: datetime
    expires_at: datetime
    broadcast_radius: int = DEFAULT_BROADCAST_RADIUS_M
    reporter_id: str = "anonymous"
    verified: bool = False
    verified_by: Optional[str] = None
    active: bool = True
    resolved_at: Optional[datetime] = None
    confirmations: Tuple[Confirmation, ...] = ()
    response_actions: Tuple[ResponseAction, ...] = ()
    notifications_sent: int = 0
    version: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "alert_type": self.alert_type.value,
            "severity": self.severity.value,
            "location_name": self.location_name,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "description": self.description,
            "broadcast_radius": self.broadcast_radius,
            "reporter_id": self.reporter_id,
            "verified": self.verified,
            "verified_by": self.verified_by,
            "active": self.active,
            "created_at": self.created_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
            "confirmation_ratio": round(confirmation_ratio(self), 4),
            "confirmations": len(self.confirmations),
            "response_actions": [a.to_dict() for a in self.response_actions],
            "notifications_sent": self.notifications_sent,
        }

    def to_document(self) -> Dict[str, Any]:
        doc = self.to_dict()
        doc["confirmations"] = [c.to_dict() for c in self.confirmations]
        del doc["confirmation_ratio"]
        return doc

    @classmethod
    def from_document(cls, doc: Dict[str, Any], version: int = 0) -> "EmergencyAlert":
        resolved = doc.get("resolved_at")
        return cls(
            id=doc["id"],
            alert_type=AlertType(doc["alert_type"]),
            severity=Severity(doc["severity"]),
            location_name=doc["location_name"],
            latitude=float(doc["latitude"]),
            longitude=float(doc["longitude"]),
            description=doc.get("description", ""),
            created_at=datetime.fromisoformat(doc["created_at"]),
            expires_at=datetime.fromisoformat(doc["expires_at"]),
            broadcast_radius=int(doc["broadcast_radius"]),
            reporter_id=doc.get("reporter_id", "anonymous"),
            verified=bool(doc.get("verified", False)),
            verified_by=doc.get("verified_by"),
            active=bool(doc["active"]),
            resolved_at=datetime.fromisoformat(resolved) if resolved else None,
            confirmations=tuple(Confirmation.from_dict(c) for c in doc.get("confirmations", [])),
            response_actions=tuple(
                ResponseAction.from_dict(a) for a in doc.get("response_actions", [])
            ),
            notifications_sent=int(doc.get("notifications_sent", 0)),
            version=version,
        )


# ═══════════════════════════════════════════════════════════════════════════
# Construction & pure transitions
# ═══════════════════════════════════════════════════════════════════════════

def new_alert(
    *,
    alert_type: Any,
    location_name: str,
    latitude: float,
    longitude: float,
    description: str = "",
    severity: Any = None,
    reporter_id: Optional[str] = None,
    broadcast_radius: Optional[int] = None,
    expires_at: Optional[datetime] = None,
    auto_verify: bool = False,
    now: Optional[datetime] = None,
) -> EmergencyAlert:
    """Validate a report and build a fresh, active alert."""
    kind = parse_alert_type(alert_type)
    level = parse_severity(severity) if severity is not None else Severity.MEDIUM
    if not location_name or not str(location_name).strip():
        raise ValidationError("location_name is required", field="location_name")
    validate_coordinates(latitude, longitude)

    radius = DEFAULT_BROADCAST_RADIUS_M if broadcast_radius is None else int(broadcast_radius)
    if not MIN_BROADCAST_RADIUS_M <= radius <= MAX_BROADCAST_RADIUS_M:
        raise ValidationError(
            f"broadcast_radius must be in [{MIN_BROADCAST_RADIUS_M}, "
            f"{MAX_BROADCAST_RADIUS_M}] metres, got {radius}",
            field="broadcast_radius",
        )

    now = now or _now()
    return EmergencyAlert(
        id=str(uuid.uuid4()),
        alert_type=kind,
        severity=level,
        location_name=str(location_name).strip(),
        latitude=float(latitude),
        longitude=float(longitude),
        description=description or "",
        created_at=now,
        expires_at=expires_at or now + DEFAULT_EXPIRY,
        broadcast_radius=radius,
        reporter_id=reporter_id or "anonymous",
        verified=auto_verify,
        verified_by="system" if auto_verify else None,
    )


def is_valid(alert: EmergencyAlert, now: Optional[datetime] = None) -> bool:
    """Active and strictly before ``expires_at``."""
    return alert.active and (now or _now()) < alert.expires_at


def confirmation_ratio(alert: EmergencyAlert) -> float:
    if not alert.confirmations:
        return 0.0
    confirmed = sum(1 for c in alert.confirmations if c.confirmed)
    return confirmed / len(alert.confirmations)


def resolve_alert(
    alert: EmergencyAlert,
    resolved_by: str = "system",
    now: Optional[datetime] = None,
) -> EmergencyAlert:
    return replace(
        alert,
        active=False,
        resolved_at=now or _now(),
        verified_by=resolved_by,
    )


def apply_confirmation(
    alert: EmergencyAlert,
    user_id: str,
    confirmed: bool = True,
    now: Optional[datetime] = None,
) -> EmergencyAlert:
    """
    Record a user's vote (replacing any earlier vote by the same user),
    then run the verify check followed by the reject check.
    """
    now = now or _now()
    votes = tuple(c for c in alert.confirmations if c.user_id != user_id)
    votes += (Confirmation(user_id=user_id, confirmed=bool(confirmed), timestamp=now),)
    updated = replace(alert, confirmations=votes)

    ratio = confirmation_ratio(updated)
    if not updated.verified and ratio >= VERIFY_RATIO and len(votes) >= VERIFY_MIN_VOTES:
        updated = replace(updated, verified=True, verified_by="community_verified")
    if ratio <= REJECT_RATIO and len(votes) >= REJECT_MIN_VOTES:
        updated = resolve_alert(updated, "community_rejected", now)
    return updated


def append_actions(alert: EmergencyAlert, actions: Tuple[ResponseAction, ...]) -> EmergencyAlert:
    return replace(alert, response_actions=alert.response_actions + tuple(actions))


def expire(alert: EmergencyAlert, now: datetime) -> EmergencyAlert:
    """Sweep transition: deactivate an active, expired alert; otherwise no-op."""
    if alert.active and now >= alert.expires_at:
        return replace(alert, active=False, resolved_at=now)
    return alert


def record_reach(alert: EmergencyAlert, reach: int) -> EmergencyAlert:
    if alert.notifications_sent == reach:
        return alert
    return replace(alert, notifications_sent=reach)
