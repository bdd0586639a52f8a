"""Utility helpers for the gourmet finder backend."""

from __future__ import annotations

import math
import re
from typing import Optional, Tuple

DEFAULT_RADIUS_M = 5000.0

_RADIUS_PATTERN = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(km|m)\s*$", re.I)
_LAT_LNG_PATTERN = re.compile(r"(-?\d{1,2}(?:\.\d+)?)\s*,\s*(-?\d{1,3}(?:\.\d+)?)")


def mask_secret(value: Optional[str], visible: int = 4) -> str:
    if not value:
        return "unset"
    if len(value) <= visible * 2:
        return "*" * len(value)
    return f"{value[:visible]}...{value[-visible:]}"


def parse_radius_meters(radius: Optional[str]) -> float:
    """Map a radius descriptor ("250m", "1km", ...) to metres.

    "unlimited" and anything unparseable fall back to 5km.
    """
    if not radius:
        return DEFAULT_RADIUS_M
    match = _RADIUS_PATTERN.match(str(radius))
    if not match:
        return DEFAULT_RADIUS_M
    value = float(match.group(1))
    if match.group(2).lower() == "km":
        value *= 1000.0
    if value <= 0:
        return DEFAULT_RADIUS_M
    return value


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance in kilometers."""
    R = 6371.0
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lng2 - lng1)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return R * c


def format_distance(km: float) -> str:
    if km < 1:
        return f"{round(km * 1000)}m"
    return f"{km:.1f}km"


def parse_lat_lng(text: Optional[str]) -> Optional[Tuple[float, float]]:
    """Pull a "lat,lng" pair out of free text, e.g. a geolocated location field."""
    if not text:
        return None
    match = _LAT_LNG_PATTERN.search(text)
    if not match:
        return None
    lat, lng = float(match.group(1)), float(match.group(2))
    if not (-90.0 <= lat <= 90.0 and -180.0 <= lng <= 180.0):
        return None
    return lat, lng
