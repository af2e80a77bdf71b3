"""
test_crowd_tracker.py — Crowd density state machine and tracker service.

Covers:
    • Density classification and alert state
    • History retention (bounded, ordered)
    • Input validation (capacity, counts, categories, coordinates)
    • Nearby / active-alert queries and the active-location cache
    • Optimistic writes (version bumps, conflict exhaustion)
    • Synthetic load simulation and sample seeding

Run with:
    pytest tests/test_crowd_tracker.py -v
"""

from __future__ import annotations

import asyncio
import random
from datetime import datetime, timedelta, timezone

import pytest

from backend.app.core.errors import ConcurrencyConflict, NotFoundError, ValidationError
from backend.app.crowd.models import (
    HISTORY_LIMIT,
    DensityLevel,
    LocationCategory,
    classify_density,
    new_location,
    update_density,
)
from backend.app.crowd.simulation import crowd_multiplier, simulated_count
from backend.app.crowd.tracker import (
    SAMPLE_LOCATIONS,
    ActiveLocationCache,
    CrowdDensityTracker,
)
from backend.app.storage.memory import MemoryLocationStore


# ═══════════════════════════════════════════════════════════════════════════
# Test Fixtures
# ═══════════════════════════════════════════════════════════════════════════

MG_ROAD_LAT = 12.9750
MG_ROAD_LON = 77.6060

# Saturday 18:00 UTC
SATURDAY_EVENING = datetime(2024, 6, 15, 18, 0, tzinfo=timezone.utc)


def run(coro):
    return asyncio.run(coro)


def _make_tracker(**kwargs) -> CrowdDensityTracker:
    return CrowdDensityTracker(MemoryLocationStore(), **kwargs)


def _register(tracker, name="Stadium A", category="stadium",
              lat=MG_ROAD_LAT, lon=MG_ROAD_LON, capacity=1000, count=0):
    return run(tracker.register(name, category, lat, lon, capacity, count))


class _ConflictingStore(MemoryLocationStore):
    """Every compare-and-set loses the race."""

    def __init__(self):
        super().__init__()
        self.attempts = 0

    async def compare_and_set(self, record, expected_version):
        self.attempts += 1
        return None


class _FakeClock:

    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


# ═══════════════════════════════════════════════════════════════════════════
# Section 1: Density State Machine
# ═══════════════════════════════════════════════════════════════════════════

class TestClassifyDensity:
    """Percentage → level boundaries."""

    @pytest.mark.parametrize("pct,level", [
        (0.0, DensityLevel.LOW),
        (39.99, DensityLevel.LOW),
        (40.0, DensityLevel.MEDIUM),
        (69.99, DensityLevel.MEDIUM),
        (70.0, DensityLevel.HIGH),
        (89.99, DensityLevel.HIGH),
        (90.0, DensityLevel.CRITICAL),
        (100.0, DensityLevel.CRITICAL),
    ])
    def test_boundaries(self, pct, level):
        assert classify_density(pct) == level


class TestUpdateDensity:
    """Pure transition on CrowdLocation."""

    def _location(self, capacity=1000):
        return new_location("Gate 3", "event", MG_ROAD_LAT, MG_ROAD_LON, capacity)

    def test_new_location_starts_empty(self):
        loc = self._location()
        assert loc.estimated_count == 0
        assert loc.density_level == DensityLevel.LOW
        assert loc.alert_active is False
        assert loc.history == ()

    def test_does_not_mutate_input(self):
        loc = self._location()
        updated = update_density(loc, 800)
        assert loc.estimated_count == 0
        assert updated.estimated_count == 800

    @pytest.mark.parametrize("count,level,alerting", [
        (100, DensityLevel.LOW, False),
        (500, DensityLevel.MEDIUM, False),
        (750, DensityLevel.HIGH, True),
        (950, DensityLevel.CRITICAL, True),
    ])
    def test_alert_tracks_level(self, count, level, alerting):
        updated = update_density(self._location(), count)
        assert updated.density_level == level
        assert updated.alert_active is alerting
        assert bool(updated.alert_message) is alerting

    @pytest.mark.parametrize("capacity", [1, 2, 3, 7, 10, 99, 1000, 4999, 50000])
    def test_alert_iff_high_or_critical_across_counts(self, capacity):
        rng = random.Random(capacity)
        counts = set(range(0, 3 * capacity + 2)) if capacity <= 10 else {
            0, 1, capacity - 1, capacity, capacity + 1, 2 * capacity,
            *(rng.randint(0, 2 * capacity) for _ in range(200)),
        }
        for count in sorted(counts):
            updated = update_density(self._location(capacity), count)
            expected = min(count * 100.0 / capacity, 100.0)
            assert updated.density_percentage == expected
            assert updated.density_level == classify_density(expected)
            assert updated.alert_active is (
                updated.density_level in (DensityLevel.HIGH, DensityLevel.CRITICAL)
            )

    def test_critical_message(self):
        updated = update_density(self._location(), 950)
        assert updated.alert_message.startswith("CRITICAL:")
        assert "Gate 3" in updated.alert_message

    def test_high_message(self):
        updated = update_density(self._location(), 750)
        assert updated.alert_message.startswith("WARNING:")

    def test_percentage_capped_at_100(self):
        updated = update_density(self._location(), 5000)
        assert updated.density_percentage == 100.0
        assert updated.estimated_count == 5000

    def test_exact_percentage(self):
        assert update_density(self._location(), 950).density_percentage == 95.0

    def test_dropping_below_high_clears_alert(self):
        loc = update_density(self._location(), 950)
        loc = update_density(loc, 100)
        assert loc.alert_active is False
        assert loc.alert_message == ""

    def test_history_bounded_and_ordered(self):
        loc = self._location(capacity=100)
        start = datetime(2024, 1, 1, tzinfo=timezone.utc)
        for i in range(30):
            loc = update_density(loc, i, start + timedelta(minutes=i))
        assert len(loc.history) == HISTORY_LIMIT
        assert [s.count for s in loc.history] == list(range(6, 30))
        stamps = [s.timestamp for s in loc.history]
        assert stamps == sorted(stamps)

    def test_negative_count_rejected(self):
        with pytest.raises(ValidationError):
            update_density(self._location(), -1)


class TestNewLocationValidation:
    """Construction-time validation."""

    def test_zero_capacity(self):
        with pytest.raises(ValidationError) as exc:
            new_location("X", "event", MG_ROAD_LAT, MG_ROAD_LON, 0)
        assert exc.value.details["field"] == "max_capacity"

    def test_unknown_category(self):
        with pytest.raises(ValidationError) as exc:
            new_location("X", "nightclub", MG_ROAD_LAT, MG_ROAD_LON, 10)
        assert "allowed" in exc.value.details

    def test_bad_latitude(self):
        with pytest.raises(ValidationError):
            new_location("X", "event", 95.0, MG_ROAD_LON, 10)

    def test_blank_name(self):
        with pytest.raises(ValidationError):
            new_location("   ", "event", MG_ROAD_LAT, MG_ROAD_LON, 10)


# ═══════════════════════════════════════════════════════════════════════════
# Section 2: Tracker Writes
# ═══════════════════════════════════════════════════════════════════════════

class TestTrackerWrites:
    """register / update_density through the store."""

    def test_register_stores_version_1(self):
        tracker = _make_tracker()
        loc = _register(tracker, count=200)
        assert loc.version == 1
        assert loc.estimated_count == 200
        assert len(loc.history) == 1

    def test_update_bumps_version(self):
        tracker = _make_tracker()
        loc = _register(tracker)
        updated = run(tracker.update_density(loc.id, 950))
        assert updated.version == 2
        assert updated.density_level == DensityLevel.CRITICAL
        stored = run(tracker.get_location(loc.id))
        assert stored == updated

    def test_update_unknown_id(self):
        tracker = _make_tracker()
        with pytest.raises(NotFoundError) as exc:
            run(tracker.update_density("missing", 10))
        assert exc.value.status_code == 404

    def test_update_negative_count(self):
        tracker = _make_tracker()
        loc = _register(tracker)
        with pytest.raises(ValidationError):
            run(tracker.update_density(loc.id, -5))

    def test_conflict_after_max_attempts(self):
        store = _ConflictingStore()
        tracker = CrowdDensityTracker(store, max_write_attempts=3)
        loc = run(tracker.register("Gate", "event", MG_ROAD_LAT, MG_ROAD_LON, 100))
        with pytest.raises(ConcurrencyConflict) as exc:
            run(tracker.update_density(loc.id, 50))
        assert store.attempts == 3
        assert exc.value.status_code == 409


# ═══════════════════════════════════════════════════════════════════════════
# Section 3: Queries
# ═══════════════════════════════════════════════════════════════════════════

class TestTrackerQueries:
    """find_nearby, list_locations, check_user_location."""

    def test_find_nearby_sorted_by_density(self):
        tracker = _make_tracker()
        _register(tracker, name="Quiet", count=100)
        _register(tracker, name="Busy", count=900, lon=MG_ROAD_LON + 0.002)
        _register(tracker, name="Medium", count=500, lat=MG_ROAD_LAT + 0.002)
        found = run(tracker.find_nearby(MG_ROAD_LAT, MG_ROAD_LON, 1.0))
        assert [loc.name for loc in found] == ["Busy", "Medium", "Quiet"]

    def test_find_nearby_excludes_far(self):
        tracker = _make_tracker()
        _register(tracker, name="Near")
        _register(tracker, name="Far", lat=MG_ROAD_LAT + 0.5)
        found = run(tracker.find_nearby(MG_ROAD_LAT, MG_ROAD_LON, 5.0))
        assert [loc.name for loc in found] == ["Near"]

    def test_find_nearby_invalid_coordinates(self):
        tracker = _make_tracker()
        with pytest.raises(ValidationError):
            run(tracker.find_nearby(120.0, MG_ROAD_LON, 1.0))

    def test_list_locations_filters(self):
        tracker = _make_tracker()
        _register(tracker, name="Stadium", category="stadium", count=950)
        _register(tracker, name="Mall", category="shopping", count=100)
        assert [l.name for l in run(tracker.list_locations(category="shopping"))] == ["Mall"]
        assert [l.name for l in run(tracker.list_locations(density_level="critical"))] == ["Stadium"]
        assert len(run(tracker.list_locations())) == 2

    def test_list_locations_unknown_filter(self):
        tracker = _make_tracker()
        with pytest.raises(ValidationError):
            run(tracker.list_locations(density_level="extreme"))

    def test_check_user_location_only_high_and_critical(self):
        tracker = _make_tracker()
        _register(tracker, name="Far Critical", count=950, lat=MG_ROAD_LAT + 0.018)
        _register(tracker, name="Near High", count=750, lat=MG_ROAD_LAT + 0.0045)
        _register(tracker, name="Calm", count=100)
        result = run(tracker.check_user_location(MG_ROAD_LAT, MG_ROAD_LON, 5.0))
        names = [a["location_name"] for a in result["nearby_alerts"]]
        assert names == ["Near High", "Far Critical"]
        assert result["total_alerts"] == 2
        assert result["critical_alerts"] == 1
        assert result["nearby_alerts"][0]["distance_km"] == 0.5


# ═══════════════════════════════════════════════════════════════════════════
# Section 4: Active-Location Cache
# ═══════════════════════════════════════════════════════════════════════════

class TestActiveLocationCache:
    """TTL-bounded cache of alert-active locations."""

    def test_fresh_until_ttl(self):
        clock = _FakeClock()
        cache = ActiveLocationCache(30, clock=clock)
        assert not cache.is_fresh
        cache.load([])
        assert cache.is_fresh
        clock.now += 30
        assert not cache.is_fresh

    def test_load_keeps_only_alerting(self):
        cache = ActiveLocationCache(30)
        base = new_location("A", "event", MG_ROAD_LAT, MG_ROAD_LON, 100)
        cache.load([update_density(base, 95), update_density(base, 10)])
        assert len(cache.values()) == 1

    def test_tracker_writes_update_cache(self):
        tracker = _make_tracker()
        loc = _register(tracker, count=950)
        assert [l.id for l in run(tracker.find_active_alerts())] == [loc.id]
        run(tracker.update_density(loc.id, 10))
        assert run(tracker.find_active_alerts()) == []

    def test_external_write_visible_after_invalidate(self):
        tracker = _make_tracker()
        loc = _register(tracker, count=10)
        assert run(tracker.find_active_alerts()) == []

        # write that bypasses the tracker
        hot = update_density(loc, 990)
        run(tracker.store.compare_and_set(hot, loc.version))
        assert run(tracker.find_active_alerts()) == []

        tracker.invalidate_active_cache()
        assert [l.id for l in run(tracker.find_active_alerts())] == [loc.id]

    def test_active_alerts_sorted_by_density(self):
        tracker = _make_tracker()
        _register(tracker, name="High", count=750)
        _register(tracker, name="Critical", count=980)
        names = [l.name for l in run(tracker.find_active_alerts())]
        assert names == ["Critical", "High"]


# ═══════════════════════════════════════════════════════════════════════════
# Section 5: Simulation & Seeding
# ═══════════════════════════════════════════════════════════════════════════

class TestCrowdMultiplier:
    """Hour/weekday occupancy patterns."""

    def test_stadium_weekend_evening(self):
        assert crowd_multiplier(LocationCategory.STADIUM, 18, True) == 0.95

    def test_stadium_weekday(self):
        assert crowd_multiplier(LocationCategory.STADIUM, 18, False) == 0.1

    def test_transport_rush_hour(self):
        assert crowd_multiplier(LocationCategory.TRANSPORT, 8, False) == 0.8
        assert crowd_multiplier(LocationCategory.TRANSPORT, 12, False) == 0.3

    def test_default_pattern(self):
        assert crowd_multiplier(LocationCategory.OTHER, 12, False) == 0.3
        assert crowd_multiplier(LocationCategory.OTHER, 12, True) == 0.4

    def test_jitter_bounds(self):
        rng = random.Random(42)
        counts = [
            simulated_count(LocationCategory.STADIUM, 1000, SATURDAY_EVENING, rng)
            for _ in range(200)
        ]
        assert min(counts) >= 760
        assert max(counts) <= 1140


class TestSimulateDetection:
    """Synthetic load pushed through the tracker."""

    def test_deterministic_with_seeded_rng(self):
        tracker = _make_tracker(rng=random.Random(7))
        loc = _register(tracker, count=0)
        updates = run(tracker.simulate_detection(
            MG_ROAD_LAT, MG_ROAD_LON, 1.0, now=SATURDAY_EVENING,
        ))
        expected = simulated_count(
            LocationCategory.STADIUM, 1000, SATURDAY_EVENING, random.Random(7),
        )
        assert len(updates) == 1
        assert updates[0]["id"] == loc.id
        assert updates[0]["new_count"] == expected
        assert updates[0]["old_density"] == "low"
        assert updates[0]["alert_active"] is True
        assert run(tracker.get_location(loc.id)).estimated_count == expected

    def test_only_locations_in_range(self):
        tracker = _make_tracker(rng=random.Random(1))
        _register(tracker, name="Near")
        _register(tracker, name="Far", lat=MG_ROAD_LAT + 0.2)
        updates = run(tracker.simulate_detection(
            MG_ROAD_LAT, MG_ROAD_LON, 1.0, now=SATURDAY_EVENING,
        ))
        assert [u["location_name"] for u in updates] == ["Near"]


class TestSeedSampleLocations:
    """Idempotent demo seeding."""

    def test_seeds_once(self):
        tracker = _make_tracker()
        assert run(tracker.seed_sample_locations()) == len(SAMPLE_LOCATIONS)
        assert run(tracker.seed_sample_locations()) == 0
        assert len(run(tracker.list_locations())) == len(SAMPLE_LOCATIONS)

    def test_sample_values(self):
        tracker = _make_tracker()
        run(tracker.seed_sample_locations())
        station = run(tracker.store.find_by_name("Bengaluru City Railway Station"))
        assert station.estimated_count == 1200
        assert station.density_percentage == 24.0
        assert station.density_level == DensityLevel.LOW
