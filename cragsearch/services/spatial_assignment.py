# Pre-fills the container (sector) of a point dropped while editing an area map.
# The result is a suggestion for a new child entity; nothing is persisted here.

import logging
from typing import Sequence

from cragsearch.core.errors import StoreUnavailable
from cragsearch.models.dto import Assignment, AssignmentPolicy, BoundaryPolygon, GeoPoint
from cragsearch.services.catalog_store import CatalogStore
from cragsearch.utils.polygon import find_enclosing

logger = logging.getLogger(__name__)

def assign_point(
    point: GeoPoint,
    polygons: Sequence[BoundaryPolygon],
    policy: AssignmentPolicy = AssignmentPolicy.UNSCOPED,
) -> Assignment:
    """First boundary containing the point wins; otherwise apply the caller's policy."""
    container_id = find_enclosing(point, polygons)
    if container_id is not None:
        return Assignment(container_id=container_id, matched=True)
    if policy == AssignmentPolicy.FIRST_AVAILABLE and polygons:
        return Assignment(container_id=polygons[0].id, matched=False)
    return Assignment()

class SpatialAssigner:
    """Loads the boundaries of a parent scope and resolves dropped points against them."""

    def __init__(self, store: CatalogStore):
        self.store = store

    async def assign(
        self,
        parent_scope_id: str,
        point: GeoPoint,
        policy: AssignmentPolicy = AssignmentPolicy.UNSCOPED,
    ) -> Assignment:
        try:
            polygons = await self.store.get_enclosing_polygons(parent_scope_id)
        except StoreUnavailable as e:
            # Advisory only: without boundaries the point is simply unscoped
            logger.warning(f"Boundaries for {parent_scope_id} unavailable: {e}")
            polygons = []
        return assign_point(point, polygons, policy)
