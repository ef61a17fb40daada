# Ring sanitization, point-in-ring containment and boundary lookup.

import logging
from typing import Any, Callable, Iterable, List, Optional, Sequence, TypeVar

from cragsearch.core.errors import InvalidGeometry
from cragsearch.models.dto import BoundaryPolygon, GeoPoint
from cragsearch.utils.geomath import as_point

logger = logging.getLogger(__name__)

T = TypeVar("T")

MIN_RING_POINTS = 3

def sanitize(ring: Optional[Iterable[Any]]) -> List[GeoPoint]:
    """Drop every point that is not a finite lat/lng pair. Order is kept."""
    if not ring:
        return []
    return [p for p in (as_point(p) for p in ring) if p is not None]

def contains(point: GeoPoint, ring: Sequence[GeoPoint]) -> bool:
    """
    Even-odd ray cast: count crossings of a ray from the point towards +inf
    longitude, one edge per consecutive vertex pair including last -> first.

    Rings with fewer than 3 points have no interior.
    """
    n = len(ring)
    if n < MIN_RING_POINTS:
        return False

    lat, lng = point.lat, point.lng
    inside = False
    j = n - 1
    for i in range(n):
        xi, yi = ring[i].lng, ring[i].lat
        xj, yj = ring[j].lng, ring[j].lat

        # The straddle test guarantees yj != yi before dividing
        if (yi > lat) != (yj > lat) and lng < (xj - xi) * (lat - yi) / (yj - yi) + xi:
            inside = not inside
        j = i
    return inside

def find_enclosing(point: Any, candidates: Iterable[BoundaryPolygon]) -> Optional[str]:
    """
    Id of the first candidate whose sanitized ring contains the point.

    Candidates are scanned in the order given; overlapping boundaries resolve to
    the first match. Degenerate rings are skipped, never raised on.
    """
    p = as_point(point)
    if p is None:
        return None

    for candidate in candidates:
        ring = sanitize(candidate.ring)
        if len(ring) < MIN_RING_POINTS:
            logger.debug(f"Skipping boundary {candidate.id}: only {len(ring)} valid points")
            continue
        if contains(p, ring):
            return candidate.id
    return None

def close_ring(points: Optional[Iterable[Any]]) -> Optional[List[GeoPoint]]:
    """
    Prepare a freshly drawn boundary for persistence: sanitize, then repeat the
    first point at the end unless the ring is already closed. None when fewer than
    3 valid points remain.
    """
    ring = sanitize(points)
    if len(ring) < MIN_RING_POINTS:
        return None
    if ring[0] != ring[-1]:
        ring.append(ring[0])
    return ring

def points_in_ring(
    items: Sequence[T],
    ring: Optional[Sequence[Any]],
    coordinate: Callable[[T], Optional[GeoPoint]],
) -> List[T]:
    """Items whose coordinate lies inside the ring. No usable ring means no narrowing."""
    clean = sanitize(ring)
    if len(clean) < MIN_RING_POINTS:
        return list(items)
    kept = []
    for item in items:
        p = as_point(coordinate(item))
        if p is not None and contains(p, clean):
            kept.append(item)
    return kept

def finalize_ring(points: Optional[Iterable[Any]]) -> List[GeoPoint]:
    """close_ring for the save path: a degenerate boundary is an error the editor must show."""
    points = list(points or [])
    ring = close_ring(points)
    if ring is None:
        raise InvalidGeometry(len(sanitize(points)))
    return ring
