"""
test_emergency_registry.py — Emergency alert lifecycle, voting and broadcast.

Covers:
    • Alert construction defaults and validation
    • Validity window and resolution
    • Community confirmation (vote replacement, verify, reject)
    • Expiry sweep
    • Nearby queries and statistics
    • Reach estimation and automatic response actions

Run with:
    pytest tests/test_emergency_registry.py -v
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from backend.app.core.errors import NotFoundError, ValidationError
from backend.app.crowd.tracker import CrowdDensityTracker
from backend.app.emergency.broadcast import (
    AlertBroadcaster,
    fallback_reach,
    notification_message,
    response_actions_for,
)
from backend.app.emergency.models import (
    DEFAULT_EXPIRY,
    AlertType,
    ResponseActionType,
    Severity,
    apply_confirmation,
    confirmation_ratio,
    expire,
    is_valid,
    new_alert,
)
from backend.app.emergency.registry import EmergencyAlertRegistry
from backend.app.storage.memory import MemoryAlertStore, MemoryLocationStore


# ═══════════════════════════════════════════════════════════════════════════
# Test Fixtures
# ═══════════════════════════════════════════════════════════════════════════

LAT = 12.9716
LON = 77.5946
T0 = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


def run(coro):
    return asyncio.run(coro)


def _make_services():
    tracker = CrowdDensityTracker(MemoryLocationStore())
    store = MemoryAlertStore()
    broadcaster = AlertBroadcaster(tracker, store)
    registry = EmergencyAlertRegistry(store, broadcaster)
    return tracker, broadcaster, registry


def _make_alert(**overrides):
    report = dict(
        alert_type="overcrowding",
        location_name="MG Road Metro",
        latitude=LAT,
        longitude=LON,
        now=T0,
    )
    report.update(overrides)
    return new_alert(**report)


def _create(registry, **overrides):
    report = dict(
        alert_type="overcrowding",
        location_name="MG Road Metro",
        latitude=LAT,
        longitude=LON,
    )
    report.update(overrides)
    return run(registry.create(**report))


def _vote(alert, *votes):
    for i, confirmed in enumerate(votes):
        alert = apply_confirmation(alert, f"user-{i}", confirmed, T0)
    return alert


# ═══════════════════════════════════════════════════════════════════════════
# Section 1: Alert Model
# ═══════════════════════════════════════════════════════════════════════════

class TestNewAlert:
    """Defaults and validation."""

    def test_defaults(self):
        alert = _make_alert()
        assert alert.severity == Severity.MEDIUM
        assert alert.broadcast_radius == 1000
        assert alert.reporter_id == "anonymous"
        assert alert.expires_at == T0 + DEFAULT_EXPIRY
        assert alert.active is True
        assert alert.verified is False
        assert alert.confirmations == ()

    def test_auto_verify(self):
        alert = _make_alert(auto_verify=True)
        assert alert.verified is True
        assert alert.verified_by == "system"

    def test_unknown_type(self):
        with pytest.raises(ValidationError) as exc:
            _make_alert(alert_type="alien_invasion")
        assert exc.value.details["field"] == "alert_type"

    def test_unknown_severity(self):
        with pytest.raises(ValidationError):
            _make_alert(severity="apocalyptic")

    @pytest.mark.parametrize("radius", [99, 10001])
    def test_radius_out_of_range(self, radius):
        with pytest.raises(ValidationError):
            _make_alert(broadcast_radius=radius)

    @pytest.mark.parametrize("radius", [100, 10000])
    def test_radius_bounds_accepted(self, radius):
        assert _make_alert(broadcast_radius=radius).broadcast_radius == radius

    def test_bad_coordinates(self):
        with pytest.raises(ValidationError):
            _make_alert(longitude=200.0)


class TestValidity:
    """is_valid and expire transitions."""

    def test_valid_before_expiry(self):
        alert = _make_alert()
        assert is_valid(alert, T0 + DEFAULT_EXPIRY - timedelta(seconds=1))

    def test_invalid_at_expiry(self):
        alert = _make_alert()
        assert not is_valid(alert, T0 + DEFAULT_EXPIRY)

    def test_expire_noop_before_deadline(self):
        alert = _make_alert()
        assert expire(alert, T0) is alert

    def test_expire_sets_resolved_at(self):
        alert = _make_alert()
        when = T0 + DEFAULT_EXPIRY
        expired = expire(alert, when)
        assert expired.active is False
        assert expired.resolved_at == when


# ═══════════════════════════════════════════════════════════════════════════
# Section 2: Community Confirmation
# ═══════════════════════════════════════════════════════════════════════════

class TestConfirmation:
    """Vote bookkeeping and thresholds."""

    def test_ratio_empty(self):
        assert confirmation_ratio(_make_alert()) == 0.0

    def test_ratio(self):
        alert = _vote(_make_alert(), True, True, False, True)
        assert confirmation_ratio(alert) == 0.75

    def test_same_user_vote_replaced(self):
        alert = _make_alert()
        alert = apply_confirmation(alert, "u1", True, T0)
        alert = apply_confirmation(alert, "u1", False, T0)
        assert len(alert.confirmations) == 1
        assert confirmation_ratio(alert) == 0.0

    def test_two_votes_do_not_verify(self):
        alert = _vote(_make_alert(), True, True)
        assert alert.verified is False

    def test_three_positive_votes_verify(self):
        alert = _vote(_make_alert(), True, True, True)
        assert alert.verified is True
        assert alert.verified_by == "community_verified"
        assert alert.active is True

    def test_already_verified_keeps_verifier(self):
        alert = _vote(_make_alert(auto_verify=True), True, True, True)
        assert alert.verified_by == "system"

    def test_four_negative_votes_keep_active(self):
        alert = _vote(_make_alert(), False, False, False, False)
        assert alert.active is True

    def test_five_negative_votes_reject(self):
        alert = _vote(_make_alert(), False, False, False, False, False)
        assert alert.active is False
        assert alert.verified_by == "community_rejected"
        assert alert.resolved_at == T0

    def test_ratio_exactly_reject_threshold(self):
        # 3 of 10 confirmed → 0.3
        alert = _vote(_make_alert(), *([True] * 3 + [False] * 7))
        assert alert.active is False


class TestRegistryConfirm:
    """confirm() through the store."""

    def test_confirm_returns_summary(self):
        _, _, registry = _make_services()
        alert = _create(registry)
        result = run(registry.confirm(alert.id, "u1", True))
        assert result == {
            "alert_id": alert.id,
            "confirmation_ratio": 1.0,
            "verified": False,
            "active": True,
        }

    def test_confirm_unknown(self):
        _, _, registry = _make_services()
        with pytest.raises(NotFoundError):
            run(registry.confirm("nope", "u1"))

    def test_confirm_expired(self):
        _, _, registry = _make_services()
        alert = _create(registry)
        later = alert.expires_at + timedelta(minutes=1)
        with pytest.raises(NotFoundError):
            run(registry.confirm(alert.id, "u1", True, now=later))

    def test_confirm_resolved(self):
        _, _, registry = _make_services()
        alert = _create(registry)
        run(registry.resolve(alert.id, "officer-7"))
        with pytest.raises(NotFoundError):
            run(registry.confirm(alert.id, "u1"))

    def test_community_rejection_via_registry(self):
        _, _, registry = _make_services()
        alert = _create(registry)
        for i in range(5):
            result = run(registry.confirm(alert.id, f"u{i}", False))
        assert result["active"] is False
        assert run(registry.get(alert.id)).verified_by == "community_rejected"


# ═══════════════════════════════════════════════════════════════════════════
# Section 3: Lifecycle Through The Registry
# ═══════════════════════════════════════════════════════════════════════════

class TestRegistryLifecycle:
    """create, resolve, cleanup_expired."""

    def test_create_persists_reach(self):
        _, _, registry = _make_services()
        alert = _create(registry)
        stored = run(registry.get(alert.id))
        assert stored.notifications_sent == 628
        assert stored.version >= 2

    def test_create_invalid_stores_nothing(self):
        _, _, registry = _make_services()
        with pytest.raises(ValidationError):
            _create(registry, broadcast_radius=50)
        assert run(registry.stats())["total_alerts"] == 0

    def test_resolve(self):
        _, _, registry = _make_services()
        alert = _create(registry)
        resolved = run(registry.resolve(alert.id, "officer-7", now=T0))
        assert resolved.active is False
        assert resolved.verified_by == "officer-7"
        assert resolved.resolved_at == T0

    def test_resolve_unknown(self):
        _, _, registry = _make_services()
        with pytest.raises(NotFoundError):
            run(registry.resolve("missing"))

    def test_cleanup_expired_idempotent(self):
        _, _, registry = _make_services()
        old = _create(registry, now=T0)
        fresh = _create(registry, now=T0 + timedelta(hours=3))
        sweep_at = T0 + timedelta(hours=3)

        assert run(registry.cleanup_expired(sweep_at)) == 1
        assert run(registry.cleanup_expired(sweep_at)) == 0
        assert run(registry.get(old.id)).active is False
        assert run(registry.get(fresh.id)).active is True

    def test_custom_expiry(self):
        _, _, registry = _make_services()
        alert = _create(registry, now=T0, expires_at=T0 + timedelta(minutes=10))
        assert run(registry.cleanup_expired(T0 + timedelta(minutes=10))) == 1
        assert run(registry.get(alert.id)).active is False


class TestRegistryQueries:
    """find_nearby_active, find_active_at, stats."""

    def test_nearby_orders_by_severity_then_newest(self):
        _, _, registry = _make_services()
        now = datetime.now(timezone.utc)
        low = _create(registry, severity="low", now=now)
        high_old = _create(registry, severity="high", now=now - timedelta(minutes=5))
        high_new = _create(registry, severity="high", now=now)
        found = run(registry.find_nearby_active(LAT, LON, 1.0))
        assert [a.id for a in found] == [high_new.id, high_old.id, low.id]

    def test_nearby_excludes_inactive_and_far(self):
        _, _, registry = _make_services()
        resolved = _create(registry)
        run(registry.resolve(resolved.id))
        _create(registry, latitude=LAT + 1.0)
        kept = _create(registry)
        found = run(registry.find_nearby_active(LAT, LON, 5.0))
        assert [a.id for a in found] == [kept.id]

    def test_find_active_at_tolerance(self):
        _, _, registry = _make_services()
        alert = _create(registry, alert_type="stampede_risk")
        hit = run(registry.find_active_at(LAT + 0.0005, LON, "stampede_risk"))
        assert hit is not None and hit.id == alert.id
        assert run(registry.find_active_at(LAT + 0.01, LON, "stampede_risk")) is None
        assert run(registry.find_active_at(LAT, LON, "fire_hazard")) is None

    def test_find_active_at_ignores_expired(self):
        _, _, registry = _make_services()
        alert = _create(registry, alert_type="stampede_risk", now=T0)
        later = alert.expires_at + timedelta(seconds=1)
        assert run(registry.find_active_at(LAT, LON, "stampede_risk", now=later)) is None

    def test_stats(self):
        _, _, registry = _make_services()
        _create(registry, alert_type="overcrowding")
        resolved = _create(registry, alert_type="overcrowding")
        _create(registry, alert_type="fire_hazard")
        run(registry.resolve(resolved.id))

        stats = run(registry.stats())
        assert stats["total_alerts"] == 3
        assert stats["active_alerts"] == 2
        by_type = {row["alert_type"]: row for row in stats["by_type"]}
        assert by_type["overcrowding"]["count"] == 2
        assert by_type["overcrowding"]["active_count"] == 1
        assert by_type["fire_hazard"]["avg_notifications"] == 628


# ═══════════════════════════════════════════════════════════════════════════
# Section 4: Broadcast & Response
# ═══════════════════════════════════════════════════════════════════════════

class TestReachEstimate:
    """Crowd-based and fallback reach."""

    def test_fallback_one_km(self):
        assert fallback_reach(1.0) == 628

    def test_fallback_when_no_crowd(self):
        _, broadcaster, _ = _make_services()
        assert run(broadcaster.estimate_reach(LAT, LON, 1.0)) == 628

    def test_crowd_based(self):
        tracker, broadcaster, _ = _make_services()
        run(tracker.register("A", "event", LAT, LON, 5000, 1500))
        run(tracker.register("B", "event", LAT + 0.001, LON, 5000, 500))
        assert run(broadcaster.estimate_reach(LAT, LON, 1.0)) == 600

    def test_fallback_when_lookup_fails(self):
        _, broadcaster, _ = _make_services()
        # latitude outside the valid range makes the crowd lookup fail
        assert run(broadcaster.estimate_reach(95.0, LON, 1.0)) == 628

    def test_broadcast_summary(self):
        _, broadcaster, registry = _make_services()
        alert = _create(registry, alert_type="fire_hazard")
        stored, summary = run(broadcaster.broadcast(alert))
        assert summary["estimated_recipients"] == 628
        assert summary["message"].startswith("🔥 Fire hazard at MG Road Metro")
        assert stored.notifications_sent == 628


class TestResponseActions:
    """Automatic actions for critical alerts."""

    def test_non_critical_none(self):
        assert response_actions_for(_make_alert(severity="high")) == ()

    def test_critical_police(self):
        actions = response_actions_for(_make_alert(severity="critical"), T0)
        assert [a.action_type for a in actions] == [ResponseActionType.POLICE_NOTIFIED]

    def test_critical_medical(self):
        alert = _make_alert(severity="critical", alert_type="medical_emergency")
        assert [a.action_type for a in response_actions_for(alert, T0)] == [
            ResponseActionType.POLICE_NOTIFIED,
            ResponseActionType.MEDICAL_DISPATCHED,
        ]

    def test_critical_fire(self):
        alert = _make_alert(severity="critical", alert_type="fire_hazard")
        assert [a.action_type for a in response_actions_for(alert, T0)] == [
            ResponseActionType.POLICE_NOTIFIED,
            ResponseActionType.EVACUATION_STARTED,
        ]

    def test_create_records_actions(self):
        _, _, registry = _make_services()
        alert = _create(registry, severity="critical", alert_type="medical_emergency")
        stored = run(registry.get(alert.id))
        assert len(stored.response_actions) == 2

    def test_create_non_critical_no_actions(self):
        _, _, registry = _make_services()
        alert = _create(registry, severity="medium")
        assert run(registry.get(alert.id)).response_actions == ()

    def test_trigger_twice_appends(self):
        _, broadcaster, registry = _make_services()
        alert = _create(registry, severity="critical")
        again = run(broadcaster.trigger_response(alert))
        assert len(again.response_actions) == 2


class TestNotificationMessage:

    def test_every_type_has_template(self):
        for kind in AlertType:
            message = notification_message(_make_alert(alert_type=kind.value))
            assert "MG Road Metro" in message
