"""
Geospatial helpers.

Pure functions behind the proximity view: great-circle distance, initial bearing,
an 8-point compass label, and the compass needle angle. Device orientation readings
are normalized here as well, because platforms disagree on the sign convention.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from math import asin, atan2, cos, degrees, radians, sin, sqrt
from typing import Any, Mapping

EARTH_RADIUS_KM = 6371.0

COMPASS_LABELS: tuple[str, ...] = ("N", "NE", "E", "SE", "S", "SW", "W", "NW")


@dataclass(frozen=True)
class GeoPoint:
    """A latitude/longitude pair in decimal degrees."""

    lat: float
    lng: float


def distance_km(a: GeoPoint, b: GeoPoint) -> float:
    """Haversine great-circle distance in kilometers."""
    lat1 = radians(a.lat)
    lat2 = radians(b.lat)
    dlat = lat2 - lat1
    dlng = radians(b.lng - a.lng)

    h = sin(dlat / 2) ** 2 + cos(lat1) * cos(lat2) * sin(dlng / 2) ** 2
    # Rounding can push h a hair above 1 for near-antipodal points.
    h = min(1.0, max(0.0, h))
    return 2 * EARTH_RADIUS_KM * asin(sqrt(h))


def bearing_deg(a: GeoPoint, b: GeoPoint) -> float:
    """Initial bearing from `a` to `b` in [0, 360), 0 = true north, clockwise."""
    lat1 = radians(a.lat)
    lat2 = radians(b.lat)
    dlng = radians(b.lng - a.lng)

    y = sin(dlng) * cos(lat2)
    x = cos(lat1) * sin(lat2) - sin(lat1) * cos(lat2) * cos(dlng)
    deg = (degrees(atan2(y, x)) + 360.0) % 360.0
    # (-tiny + 360) % 360 can round to exactly 360.0.
    return 0.0 if deg >= 360.0 else deg


def compass_label(deg: float) -> str:
    """Map a bearing to one of the 8 compass points."""
    idx = _round_half_up(float(deg) / 45.0) % 8
    return COMPASS_LABELS[idx]


def needle_angle(bearing: float, device_heading: float | None) -> float:
    """Angle to rotate a compass needle on screen.

    With a live device heading the needle is screen-relative; without one it
    falls back to the north-relative bearing.
    """
    if device_heading is None:
        return bearing
    return (bearing - device_heading + 360.0) % 360.0


def normalize_heading(reading: Mapping[str, Any] | None) -> float | None:
    """Normalize an orientation reading to degrees clockwise from north.

    Two conventions are accepted:
    - `webkitCompassHeading`: already clockwise from magnetic north (iOS Safari).
    - `alpha`: counter-clockwise rotation about the z axis (W3C DeviceOrientation);
      only meaningful as a compass heading when the event is `absolute`.

    Returns None when the reading carries no usable heading.
    """
    if not reading:
        return None

    webkit = reading.get("webkitCompassHeading")
    if _is_finite_number(webkit):
        return float(webkit) % 360.0

    alpha = reading.get("alpha")
    if _is_finite_number(alpha) and bool(reading.get("absolute", False)):
        return (360.0 - float(alpha)) % 360.0

    return None


def format_distance_text(km: float | None) -> str:
    """Human-friendly distance: "nearby" under 50 m, then m, then km."""
    if km is None:
        return ""
    if km < 0.05:
        return "nearby"
    if km < 1:
        return f"{_round_half_up(km * 1000)} m"
    if km < 20:
        return f"{km:.1f} km"
    return f"{_round_half_up(km)} km"


def is_valid_coordinate(lat: Any, lng: Any) -> bool:
    if not (_is_finite_number(lat) and _is_finite_number(lng)):
        return False
    return -90.0 <= float(lat) <= 90.0 and -180.0 <= float(lng) <= 180.0


def _is_finite_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def _round_half_up(value: float) -> int:
    # Python's round() is half-to-even; sector and distance boundaries round up.
    return int(math.floor(value + 0.5))
