from __future__ import annotations

import math
from typing import Any


METERS_PER_KILOMETER = 1000.0
METERS_PER_MILE = 1609.34

COMPASS_POINTS = ("N", "NE", "E", "SE", "S", "SW", "W", "NW")
COMPASS_FALLBACK = "N/A"
PACE_PLACEHOLDER = "--:--"


def as_float(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return None
    return None


def as_int(value: Any) -> int | None:
    parsed = as_float(value)
    if parsed is None or not math.isfinite(parsed):
        return None
    return int(round(parsed))


def seconds_to_hms(value: Any, *, none_value: str = "N/A") -> str:
    parsed = as_float(value)
    if parsed is None or not math.isfinite(parsed) or parsed < 0:
        return none_value
    total = int(round(parsed))
    hours = total // 3600
    minutes = (total % 3600) // 60
    seconds = total % 60
    if hours > 0:
        return f"{hours}:{minutes:02d}:{seconds:02d}"
    return f"{minutes}:{seconds:02d}"


def pace_seconds(unit_distance_m: float, speed_mps: Any) -> float:
    """Seconds needed to cover ``unit_distance_m`` at ``speed_mps``.

    Raises ``ValueError`` for a missing, zero or negative speed so callers
    decide how that lap renders.
    """
    speed = as_float(speed_mps)
    if speed is None or not math.isfinite(speed) or speed <= 0:
        raise ValueError(f"Cannot compute pace from speed {speed_mps!r}")
    return unit_distance_m / speed


def mps_to_pace_per_km(speed_mps: Any) -> str:
    return seconds_to_hms(pace_seconds(METERS_PER_KILOMETER, speed_mps))


def mps_to_pace_per_mile(speed_mps: Any) -> str:
    return seconds_to_hms(pace_seconds(METERS_PER_MILE, speed_mps))


def meters_to_km(value: Any, *, include_unit: bool = True, none_value: str = "N/A") -> str:
    meters = as_float(value)
    if meters is None or meters < 0:
        return none_value
    km = f"{meters / METERS_PER_KILOMETER:.2f}"
    if include_unit:
        return f"{km} km"
    return km


def degrees_to_compass(value: Any) -> str:
    """Bucket a heading to the nearest 45 degree compass point."""
    degrees = as_float(value)
    if degrees is None or not math.isfinite(degrees):
        return COMPASS_FALLBACK
    normalized = degrees % 360.0
    index = int((normalized + 22.5) // 45.0) % len(COMPASS_POINTS)
    return COMPASS_POINTS[index]
