from __future__ import annotations

from dataclasses import dataclass
from math import asin, cos, radians, sin, sqrt

EARTH_RADIUS_M = 6371000.0


@dataclass(frozen=True, slots=True)
class Coordinate:
    lat: float
    lon: float


@dataclass(frozen=True, slots=True)
class GeofenceResult:
    within_geofence: bool
    distance_m: float | None


def distance_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    lat1_rad = radians(lat1)
    lon1_rad = radians(lon1)
    lat2_rad = radians(lat2)
    lon2_rad = radians(lon2)

    delta_lat = lat2_rad - lat1_rad
    delta_lon = lon2_rad - lon1_rad

    a = sin(delta_lat / 2) ** 2 + cos(lat1_rad) * cos(lat2_rad) * sin(delta_lon / 2) ** 2
    # Rounding can push `a` a hair above 1 for antipodal points.
    c = 2 * asin(sqrt(min(1.0, a)))
    return EARTH_RADIUS_M * c


def validate_geofence(
    site_center: Coordinate,
    radius_m: float,
    observed: Coordinate | None,
) -> GeofenceResult:
    """Decide whether an observed position lies inside a site's circle.

    A missing observation is never a pass: it is reported as outside with an
    unknown distance, and the caller decides what that means.
    """
    if observed is None:
        return GeofenceResult(within_geofence=False, distance_m=None)

    distance_value = distance_m(site_center.lat, site_center.lon, observed.lat, observed.lon)
    return GeofenceResult(
        within_geofence=distance_value <= radius_m,
        distance_m=distance_value,
    )


def coordinate_or_none(lat: float | None, lon: float | None) -> Coordinate | None:
    if lat is None or lon is None:
        return None
    return Coordinate(lat=lat, lon=lon)
