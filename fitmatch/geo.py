"""Great-circle distance helpers."""

from __future__ import annotations

import math
from typing import Protocol

EARTH_RADIUS_KM = 6371.0


class HasLatLon(Protocol):
    @property
    def lat(self) -> float: ...

    @property
    def lon(self) -> float: ...


def distance_km(first: HasLatLon, second: HasLatLon) -> float:
    """Return the Haversine distance between two points in kilometres.

    Inputs are degrees. NaN coordinates propagate to a NaN result.
    """

    sin = math.sin
    cos = math.cos
    radians = math.radians
    lat1_rad = radians(first.lat)
    lat2_rad = radians(second.lat)
    delta_lat = lat2_rad - lat1_rad
    delta_lon = radians(second.lon - first.lon)
    sin_half_lat = sin(delta_lat / 2.0)
    sin_half_lon = sin(delta_lon / 2.0)
    a = sin_half_lat**2 + cos(lat1_rad) * cos(lat2_rad) * sin_half_lon**2
    c = 2.0 * math.atan2(math.sqrt(a), math.sqrt(1.0 - a))
    return EARTH_RADIUS_KM * c


__all__ = ["EARTH_RADIUS_KM", "distance_km"]
