# HTTP surface for search, location lookup, map framing and boundary editing.

import logging
from typing import List, Optional

from fastapi import APIRouter, HTTPException, Query, Request, status

from cragsearch.core.errors import InvalidGeometry, LocationUnavailable
from cragsearch.models.dto import (
    Assignment,
    AssignPointRequest,
    AreaProblemsView,
    ErrorResponse,
    FilterCriteria,
    FinalizeBoundaryRequest,
    FinalizeBoundaryResponse,
    GeoPoint,
    LocationRequest,
    Region,
    RegionRequest,
    SearchHit,
    SearchRequest,
    SearchResponse,
    SortMode,
)
from cragsearch.models.scales import Style, grade_to_label, style_to_label
from cragsearch.services.area_problems import AreaProblemBrowser
from cragsearch.services.search_engine import SearchEngine
from cragsearch.services.spatial_assignment import SpatialAssigner
from cragsearch.utils.geomath import as_point, distance_km, region_from
from cragsearch.utils.polygon import finalize_ring

router = APIRouter()
logger = logging.getLogger(__name__)


def _hits(entities, origin: Optional[GeoPoint]) -> List[SearchHit]:
    hits = []
    for entity in entities:
        distance = None
        point = as_point(entity.coordinate)
        if origin is not None and point is not None:
            distance = round(distance_km(origin, point), 2)
        labels = {}
        if entity.kind == "problem":
            labels = {"grade_label": grade_to_label(entity.avg_grade), "style_label": style_to_label(entity.style)}
        hits.append(SearchHit(entity=entity, distance_km=distance, **labels))
    return hits


# ----------------------------------------------------------------------
# Search
# ----------------------------------------------------------------------
@router.post("/search", response_model=SearchResponse)
async def search(request: Request, data: SearchRequest):
    """Search areas, sectors and problems; each kind comes back as its own ranked list."""
    engine: SearchEngine = request.app.state.engine
    query = data.to_query()
    results = await engine.run(query)

    origin = as_point(query.user_location) if results.sort_applied == SortMode.PROXIMITY else None
    return SearchResponse(
        areas=_hits(results.areas, origin),
        sectors=_hits(results.sectors, origin),
        problems=_hits(results.problems, origin),
        sort_applied=results.sort_applied,
        location_required=results.location_required,
    )


@router.post(
    "/location",
    response_model=GeoPoint,
    responses={422: {"model": ErrorResponse}},
)
async def locate(request: Request, data: LocationRequest):
    """Resolve the user's position for proximity sort."""
    engine: SearchEngine = request.app.state.engine
    try:
        return await engine.locate(data.address)
    except LocationUnavailable as e:
        logger.warning(f"Location lookup failed ({e.code}): {e.reason}")
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=ErrorResponse(error=e.code, detail=e.reason).model_dump(),
        )


# ----------------------------------------------------------------------
# Map framing
# ----------------------------------------------------------------------
@router.post("/region", response_model=Region)
async def region(data: RegionRequest):
    return region_from(data.points, data.min_lat_span, data.min_lng_span, data.zoom_scale)


# ----------------------------------------------------------------------
# Boundary editing
# ----------------------------------------------------------------------
@router.post("/areas/{area_id}/assign-point", response_model=Assignment)
async def assign_point(request: Request, area_id: str, data: AssignPointRequest):
    """Suggest the sector a newly placed boulder belongs to."""
    assigner: SpatialAssigner = request.app.state.assigner
    return await assigner.assign(area_id, data.point, data.policy)


@router.post(
    "/boundaries/finalize",
    response_model=FinalizeBoundaryResponse,
    responses={422: {"model": ErrorResponse}},
)
async def finalize_boundary(data: FinalizeBoundaryRequest):
    """Sanitize and close a freshly drawn ring before it is saved."""
    try:
        ring = finalize_ring(data.points)
    except InvalidGeometry as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=ErrorResponse(
                error="INVALID_GEOMETRY",
                detail="Please add at least 3 valid points to define the boundary.",
                context={"valid_points": str(e.valid_points)},
            ).model_dump(),
        )
    return FinalizeBoundaryResponse(ring=ring, point_count=len(ring))


# ----------------------------------------------------------------------
# Area problem browser
# ----------------------------------------------------------------------
@router.get("/areas/{area_id}/problems", response_model=AreaProblemsView)
async def area_problems(
    request: Request,
    area_id: str,
    q: str = "",
    min_grade: Optional[float] = None,
    max_grade: Optional[float] = None,
    styles: List[Style] = Query([]),
    sector_id: Optional[str] = None,
    boulder_id: Optional[str] = None,
):
    browser = AreaProblemBrowser(request.app.state.store)
    await browser.load(area_id)
    criteria = FilterCriteria(
        text=q,
        min_grade=min_grade,
        max_grade=max_grade,
        styles=frozenset(styles),
        sector_id=sector_id,
        boulder_id=boulder_id,
    )
    return browser.browse(criteria)
