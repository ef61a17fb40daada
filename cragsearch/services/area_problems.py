# Browsing the problems of one area: fetch once, then narrow in memory on every
# filter change without going back to the store.

import logging
from typing import Dict, List, Optional, Sequence, Tuple

from cragsearch.core.errors import StoreUnavailable
from cragsearch.models.dto import (
    AreaProblemsView,
    BoulderMarker,
    EntityKind,
    FilterCriteria,
    GeoPoint,
    ProblemEntity,
)
from cragsearch.services.catalog_store import CatalogStore
from cragsearch.services.filter_pipeline import apply_filters
from cragsearch.services.normalize import normalize_rows
from cragsearch.utils.geomath import as_point, region_from
from cragsearch.utils.polygon import points_in_ring

logger = logging.getLogger(__name__)


def boulder_markers(problems: List[ProblemEntity]) -> List[BoulderMarker]:
    """One map marker per boulder that has a position, counting its visible problems."""
    markers: Dict[str, BoulderMarker] = {}
    for p in problems:
        point = as_point(p.coordinate)
        if point is None or p.boulder_id is None:
            continue
        existing = markers.get(p.boulder_id)
        if existing is not None:
            markers[p.boulder_id] = existing.model_copy(update={"problem_count": existing.problem_count + 1})
        else:
            markers[p.boulder_id] = BoulderMarker(
                id=p.boulder_id,
                name=p.boulder_name or "",
                problem_count=1,
                coordinate=point,
                sector_id=p.sector_id,
            )
    return list(markers.values())


class AreaProblemBrowser:
    """Holds the full problem list of one area.

    The list is loaded by `load()` and never modified afterwards; `browse()` builds
    a fresh filtered view for every set of criteria.
    """

    def __init__(self, store: CatalogStore):
        self.store = store
        self.area_id: Optional[str] = None
        self.problems: Tuple[ProblemEntity, ...] = ()

    async def load(self, area_id: str) -> int:
        self.area_id = area_id
        try:
            rows = await self.store.list_area_problems(area_id)
        except StoreUnavailable as e:
            logger.error(f"Area problems fetch error for {area_id}: {e}")
            self.problems = ()
            return 0

        ratings: Dict[str, float] = {}
        problem_ids = [str(r["id"]) for r in rows if r.get("id") is not None]
        if problem_ids:
            try:
                ratings = await self.store.get_problem_ratings(problem_ids)
            except StoreUnavailable as e:
                # Ratings are decoration; the problem list still stands
                logger.warning(f"Problem ratings unavailable for {area_id}: {e}")

        self.problems = tuple(normalize_rows(EntityKind.PROBLEM, rows, ratings))
        logger.info(f"Loaded {len(self.problems)} problems for area {area_id}.")
        return len(self.problems)

    def browse(self, criteria: FilterCriteria, boundary: Optional[Sequence[GeoPoint]] = None) -> AreaProblemsView:
        """Filtered view; with a boundary, markers outside the drawn area are left off the map."""
        problems = apply_filters(self.problems, criteria)
        markers = points_in_ring(boulder_markers(problems), boundary, lambda m: m.coordinate)
        return AreaProblemsView(
            problems=problems,
            boulders=markers,
            total_count=len(self.problems),
            region=region_from([m.coordinate for m in markers]),
        )
