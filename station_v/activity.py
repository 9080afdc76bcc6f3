"""Temporal activity model ("Afterhours Protocol").

Maps local wall-clock time to an interval multiplier. Values below 1 make
the network busier, values above 1 make it quieter. Afterhours mode has
its own table, tilted towards nocturnal activity.
"""

from __future__ import annotations

from datetime import datetime


def is_weekend(now: datetime) -> bool:
    return now.weekday() >= 5


def is_afterhours(now: datetime) -> bool:
    """Late night: 22:00–06:00 on weekends, 23:00–05:00 on weekdays."""
    hour = now.hour
    if is_weekend(now):
        return hour >= 22 or hour < 6
    return hour >= 23 or hour < 5


def _afterhours_multiplier(hour: int, weekend: bool) -> float:
    if hour >= 22 or hour < 6:
        return 0.4 if weekend else 0.5
    if hour < 12:
        return 0.8
    if hour < 17:
        return 2.0
    return 1.2


def _standard_multiplier(hour: int, weekend: bool) -> float:
    if 6 <= hour < 12:
        return 0.9 if weekend else 0.8
    if 12 <= hour < 17:
        return 0.95 if weekend else 1.0
    if 17 <= hour < 21:
        return 0.7
    if hour >= 21:
        return 0.9 if weekend else 1.3
    return 2.5


def activity_multiplier(now: datetime, afterhours: bool | None = None) -> float:
    """Interval multiplier for ``now``; ``afterhours`` forces a table when given."""
    weekend = is_weekend(now)
    if afterhours is None:
        afterhours = is_afterhours(now)
    if afterhours:
        return _afterhours_multiplier(now.hour, weekend)
    return _standard_multiplier(now.hour, weekend)


def adjusted_interval(base: float, now: datetime) -> float:
    """Scale a base interval (any unit) by the current activity multiplier."""
    return float(round(base * activity_multiplier(now)))


def dm_probability(base: float, now: datetime, multiplier: float = 1.5, cap: float = 50.0) -> float:
    """Per-actor DM trigger probability in percent, boosted late at night."""
    if is_afterhours(now):
        return min(base * multiplier, cap)
    return base
