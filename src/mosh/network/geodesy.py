"""Great-circle helpers working on (lon, lat) WGS84 pairs."""

from __future__ import annotations

import math
from typing import Tuple

EARTH_RADIUS_M = 6371000.0
METERS_PER_DEGREE = EARTH_RADIUS_M * math.pi / 180.0
# pads query boxes so they contain the whole haversine disc
_WINDOW_PAD = 1.01

Coordinate = Tuple[float, float]


def haversine_m(a: Coordinate, b: Coordinate) -> float:
    """Approximate great-circle distance in meters between two (lon, lat) points."""
    lon1, lat1 = a
    lon2, lat2 = b
    rad_lat1, rad_lat2 = math.radians(lat1), math.radians(lat2)
    dlat = rad_lat2 - rad_lat1
    dlon = math.radians(lon2 - lon1)
    h = math.sin(dlat / 2) ** 2 + math.cos(rad_lat1) * math.cos(rad_lat2) * math.sin(dlon / 2) ** 2
    return 2 * EARTH_RADIUS_M * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def degree_window(lat: float, radius_m: float) -> Tuple[float, float]:
    """Return (dlon, dlat) half-widths of a box covering ``radius_m`` around ``lat``."""
    dlat = radius_m * _WINDOW_PAD / METERS_PER_DEGREE
    cos_lat = max(math.cos(math.radians(lat)), 1e-6)
    dlon = radius_m * _WINDOW_PAD / (METERS_PER_DEGREE * cos_lat)
    return dlon, dlat


def is_valid_coordinate(coord: object) -> bool:
    if not isinstance(coord, (list, tuple)) or len(coord) < 2:
        return False
    lon, lat = coord[0], coord[1]
    if isinstance(lon, bool) or isinstance(lat, bool):
        return False
    if not isinstance(lon, (int, float)) or not isinstance(lat, (int, float)):
        return False
    if math.isnan(lon) or math.isnan(lat):
        return False
    return -180.0 <= lon <= 180.0 and -90.0 <= lat <= 90.0
