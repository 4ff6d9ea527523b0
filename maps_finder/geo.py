"""Geospatial helpers."""
from __future__ import annotations

import math
import re
from typing import Dict, Optional, Tuple

from . import config
from .models import Coordinate

_LAT_LNG_RE = re.compile(r"^(-?\d+\.?\d*),\s*(-?\d+\.?\d*)$")


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    r = config.EARTH_RADIUS_M
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lon2 - lon1)

    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return r * c


def distance_m(a: Coordinate, b: Coordinate) -> float:
    return haversine_m(a.latitude, a.longitude, b.latitude, b.longitude)


def _wrap_longitude(lon: float) -> float:
    if lon > 180.0:
        return lon - 360.0
    if lon < -180.0:
        return lon + 360.0
    return lon


def circle_to_bounds(center: Coordinate, radius_m: float) -> Dict[str, float]:
    """Enclosing rectangle of a circle (equirectangular approximation)."""
    r = config.EARTH_RADIUS_M
    lat_offset = math.degrees(radius_m / r)
    cos_lat = max(0.01, math.cos(math.radians(center.latitude)))
    lon_offset = math.degrees(radius_m / (r * cos_lat))
    if lon_offset >= 180.0:
        west, east = -180.0, 180.0
    else:
        west = _wrap_longitude(center.longitude - lon_offset)
        east = _wrap_longitude(center.longitude + lon_offset)
    return {
        "north": min(90.0, center.latitude + lat_offset),
        "south": max(-90.0, center.latitude - lat_offset),
        "east": east,
        "west": west,
    }


def bounds_contains(bounds: Dict[str, float], point: Coordinate) -> bool:
    """West greater than east means the box crosses the antimeridian."""
    if not bounds["south"] <= point.latitude <= bounds["north"]:
        return False
    west, east = bounds["west"], bounds["east"]
    if west <= east:
        return west <= point.longitude <= east
    return point.longitude >= west or point.longitude <= east


def match_lat_lng(text: str) -> Optional[Tuple[float, float]]:
    """Return the numeric pair if ``text`` is a literal "lat,lng" string."""
    match = _LAT_LNG_RE.match(text.strip())
    if not match:
        return None
    return float(match.group(1)), float(match.group(2))
