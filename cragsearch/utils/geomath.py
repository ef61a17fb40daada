# Great-circle distance, coordinate validity and map framing.

import math
from math import radians, sin, cos, sqrt, asin
from numbers import Real
from typing import Any, Iterable, Optional, Tuple

from cragsearch.core.config import settings
from cragsearch.models.dto import GeoPoint, Region

# Earth's radius in kilometers
R = 6371.0

def haversine(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Calculate the great-circle distance between two points
    on the Earth (specified in decimal degrees) using the Haversine formula.

    Args:
        lat1: Latitude of point 1.
        lon1: Longitude of point 1.
        lat2: Latitude of point 2.
        lon2: Longitude of point 2.

    Returns:
        Distance between the two points in kilometers.
    """
    lat1, lon1, lat2, lon2 = map(radians, [lat1, lon1, lat2, lon2])

    dlon = lon2 - lon1
    dlat = lat2 - lat1

    a = sin(dlat / 2)**2 + cos(lat1) * cos(lat2) * sin(dlon / 2)**2
    # Rounding can push a a hair above 1 for antipodal points
    c = 2 * asin(sqrt(min(1.0, a)))

    return R * c

def distance_km(a: GeoPoint, b: GeoPoint) -> float:
    """Haversine distance between two valid points. Callers check validity first."""
    return haversine(a.lat, a.lng, b.lat, b.lng)

def _components(p: Any) -> Optional[Tuple[Any, Any]]:
    if isinstance(p, GeoPoint):
        return p.lat, p.lng
    if isinstance(p, dict):
        return p.get("lat"), p.get("lng")
    return None

def _is_finite_number(value: Any) -> bool:
    # bool is an int subclass but never a coordinate
    return isinstance(value, Real) and not isinstance(value, bool) and math.isfinite(value)

def is_valid_point(p: Any) -> bool:
    """True iff p has finite numeric lat and lng. Accepts GeoPoint or a {'lat', 'lng'} mapping."""
    parts = _components(p)
    if parts is None:
        return False
    return _is_finite_number(parts[0]) and _is_finite_number(parts[1])

def as_point(p: Any) -> Optional[GeoPoint]:
    """GeoPoint for a valid point-like value, None otherwise."""
    if not is_valid_point(p):
        return None
    if isinstance(p, GeoPoint):
        return p
    return GeoPoint(lat=float(p["lat"]), lng=float(p["lng"]))

def fallback_region() -> Region:
    return Region(
        center=GeoPoint(lat=settings.FALLBACK_CENTER_LAT, lng=settings.FALLBACK_CENTER_LNG),
        lat_span=settings.DEFAULT_SPAN,
        lng_span=settings.DEFAULT_SPAN,
    )

def region_from(
    points: Iterable[Any],
    min_lat_span: float = 0.02,
    min_lng_span: float = 0.02,
    zoom_scale: float = 1.0,
) -> Region:
    """
    Frame every valid point with a little padding.

    Invalid points are ignored. With nothing left to frame the configured fallback
    region is returned, so the result never carries non-finite values. Spans never
    drop below the requested minimums, which keeps a single point (or a cluster of
    identical points) visible; zoom_scale < 1 tightens the frame, > 1 loosens it.
    """
    valid = [p for p in (as_point(p) for p in points) if p is not None]
    if not valid:
        return fallback_region()

    lats = [p.lat for p in valid]
    lngs = [p.lng for p in valid]
    min_lat, max_lat = min(lats), max(lats)
    min_lng, max_lng = min(lngs), max(lngs)

    lat_span = max(max_lat - min_lat + settings.REGION_PADDING, min_lat_span) * zoom_scale
    lng_span = max(max_lng - min_lng + settings.REGION_PADDING, min_lng_span) * zoom_scale
    if not (math.isfinite(lat_span) and math.isfinite(lng_span)):
        return fallback_region()

    return Region(
        center=GeoPoint(lat=(min_lat + max_lat) / 2, lng=(min_lng + max_lng) / 2),
        lat_span=lat_span,
        lng_span=lng_span,
    )
