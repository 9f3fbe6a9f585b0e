# streetlights/services/geo.py
import math
from typing import Any, Tuple

EARTH_RADIUS_M = 6371000.0
# Destination projection uses the WGS84 equatorial radius
PROJECTION_RADIUS_M = 6378137.0


def _latlng(p: Any) -> Tuple[float, float]:
    if isinstance(p, (tuple, list)):
        return float(p[0]), float(p[1])
    return float(p.lat), float(p.lng)


def distance_meters(a: Any, b: Any) -> float:
    """Haversine great-circle distance between two (lat, lng) points."""
    lat1, lng1 = _latlng(a)
    lat2, lng2 = _latlng(b)
    p1, p2 = math.radians(lat1), math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dl = math.radians(lng2 - lng1)
    s = math.sin(dphi / 2) ** 2 + math.cos(p1) * math.cos(p2) * math.sin(dl / 2) ** 2
    return 2 * EARTH_RADIUS_M * math.asin(math.sqrt(min(1.0, s)))


def bearing_degrees(a: Any, b: Any) -> float:
    """Initial bearing from a to b, degrees in [0, 360)."""
    lat1, lng1 = _latlng(a)
    lat2, lng2 = _latlng(b)
    p1, p2 = math.radians(lat1), math.radians(lat2)
    dl = math.radians(lng2 - lng1)
    y = math.sin(dl) * math.cos(p2)
    x = math.cos(p1) * math.sin(p2) - math.sin(p1) * math.cos(p2) * math.cos(dl)
    return (math.degrees(math.atan2(y, x)) + 360.0) % 360.0


def destination_point(origin: Any, distance_m: float, bearing_deg: float) -> Tuple[float, float]:
    """Project `origin` forward by distance_m along bearing_deg. Returns (lat, lng)."""
    lat0, lng0 = _latlng(origin)
    try:
        dist = max(0.0, float(distance_m))
    except (TypeError, ValueError):
        dist = 0.0
    if not math.isfinite(dist):
        dist = 0.0
    try:
        brng = math.radians(float(bearing_deg))
    except (TypeError, ValueError):
        brng = 0.0

    lat1 = math.radians(lat0)
    lon1 = math.radians(lng0)
    ang = dist / PROJECTION_RADIUS_M

    lat2 = math.asin(math.sin(lat1) * math.cos(ang) + math.cos(lat1) * math.sin(ang) * math.cos(brng))
    lon2 = lon1 + math.atan2(
        math.sin(brng) * math.sin(ang) * math.cos(lat1),
        math.cos(ang) - math.sin(lat1) * math.sin(lat2),
    )
    return math.degrees(lat2), ((math.degrees(lon2) + 540.0) % 360.0) - 180.0
