"""
Synthetic crowd load — stands in for a real crowd-sensing feed.

Occupancy is modelled as a fraction of capacity that depends on the
location category, the hour of day and whether it is a weekend:

    multiplier = pattern(category, hour, weekend) × jitter
    jitter     = 0.8 + U[0, 1) × 0.4          (±20 %)
    new_count  = floor(max_capacity × multiplier)

Categories without a pattern use 0.3 on weekdays and 0.4 at weekends.
"""

from __future__ import annotations

import math
import random
from datetime import datetime
from typing import Callable, Dict, Optional, Tuple

from backend.app.crowd.models import LocationCategory

# Each entry: (weekday rule, weekend rule); a rule maps hour → multiplier.
HourRule = Callable[[int], float]


def _between(*windows: Tuple[int, int], inside: float, outside: float) -> HourRule:
    def rule(hour: int) -> float:
        for start, end in windows:
            if start <= hour <= end:
                return inside
        return outside
    return rule


def _flat(value: float) -> HourRule:
    return lambda hour: value


CROWD_PATTERNS: Dict[LocationCategory, Tuple[HourRule, HourRule]] = {
    LocationCategory.TRANSPORT: (
        _between((7, 9), (17, 19), inside=0.8, outside=0.3),
        _between((10, 18), inside=0.6, outside=0.2),
    ),
    LocationCategory.SHOPPING: (
        _between((18, 21), inside=0.7, outside=0.4),
        _between((11, 20), inside=0.9, outside=0.3),
    ),
    LocationCategory.RELIGIOUS: (
        _between((6, 8), (18, 20), inside=0.6, outside=0.2),
        _between((6, 12), inside=0.8, outside=0.3),
    ),
    LocationCategory.EVENT: (
        _flat(0.3),
        _between((15, 22), inside=0.9, outside=0.4),
    ),
    LocationCategory.STADIUM: (
        _flat(0.1),
        _between((16, 20), inside=0.95, outside=0.1),
    ),
    LocationCategory.FESTIVAL: (
        _between((18, 23), inside=0.8, outside=0.3),
        _between((10, 23), inside=0.9, outside=0.4),
    ),
}

DEFAULT_PATTERN: Tuple[HourRule, HourRule] = (_flat(0.3), _flat(0.4))


def is_weekend(moment: datetime) -> bool:
    return moment.weekday() >= 5


def crowd_multiplier(category: LocationCategory, hour: int, weekend: bool) -> float:
    """
    Base occupancy fraction for a category at a given hour.

    >>> crowd_multiplier(LocationCategory.STADIUM, 18, True)
    0.95
    >>> crowd_multiplier(LocationCategory.OTHER, 3, False)
    0.3
    """
    weekday_rule, weekend_rule = CROWD_PATTERNS.get(category, DEFAULT_PATTERN)
    return weekend_rule(hour) if weekend else weekday_rule(hour)


def simulated_count(
    category: LocationCategory,
    max_capacity: int,
    moment: datetime,
    rng: Optional[random.Random] = None,
) -> int:
    rng = rng or random
    multiplier = crowd_multiplier(category, moment.hour, is_weekend(moment))
    multiplier *= 0.8 + rng.random() * 0.4
    return math.floor(max_capacity * multiplier)
