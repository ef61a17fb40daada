# The single place where raw PostgREST rows become SearchableEntity values.
# Embedded relations (sector -> area, problem -> boulder -> sector/area) may come
# back as an object, a one-element list or null; all of that is resolved here.

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional

from pydantic import ValidationError

from cragsearch.models.dto import (
    AreaEntity,
    EntityKind,
    ProblemEntity,
    SearchableEntity,
    SectorEntity,
)
from cragsearch.models.scales import parse_style
from cragsearch.utils.geomath import as_point

logger = logging.getLogger(__name__)


def embedded(value: Any) -> Optional[Mapping[str, Any]]:
    if isinstance(value, list):
        value = value[0] if value else None
    return value if isinstance(value, Mapping) else None


def _embedded_name(row: Mapping[str, Any], relation: str) -> Optional[str]:
    related = embedded(row.get(relation))
    return related.get("name") if related else None


def _coordinate(row: Optional[Mapping[str, Any]]):
    if not row:
        return None
    return as_point({"lat": row.get("lat"), "lng": row.get("lng")})


def _area(row: Mapping[str, Any]) -> AreaEntity:
    return AreaEntity(
        id=str(row["id"]),
        name=row.get("name") or "",
        description=row.get("description"),
        boulder_count=row.get("boulder_count") or 0,
        coordinate=_coordinate(row),
    )


def _sector(row: Mapping[str, Any]) -> SectorEntity:
    return SectorEntity(
        id=str(row["id"]),
        name=row.get("name") or "",
        area_id=str(row.get("area_id") or ""),
        area_name=_embedded_name(row, "areas") or "",
        coordinate=_coordinate(row),
    )


def _problem(row: Mapping[str, Any], ratings: Optional[Mapping[str, float]] = None) -> ProblemEntity:
    boulder = embedded(row.get("boulders"))
    problem_id = str(row["id"])
    boulder_id = row.get("boulder_id") or (boulder.get("id") if boulder else None)
    sector_id = boulder.get("sector_id") if boulder else None
    return ProblemEntity(
        id=problem_id,
        name=row.get("name") or "",
        avg_grade=row.get("avg_grade"),
        vote_count=row.get("vote_count") or 0,
        style=parse_style(row.get("style")),
        coordinate=_coordinate(boulder),
        boulder_id=str(boulder_id) if boulder_id is not None else None,
        boulder_name=boulder.get("name") if boulder else None,
        sector_id=str(sector_id) if sector_id is not None else None,
        sector_name=_embedded_name(boulder, "sectors") if boulder else None,
        area_id=str(boulder.get("area_id") or "") if boulder else "",
        area_name=(_embedded_name(boulder, "areas") or "") if boulder else "",
        avg_rating=(ratings or {}).get(problem_id),
    )


def normalize_row(
    kind: EntityKind,
    row: Mapping[str, Any],
    ratings: Optional[Mapping[str, float]] = None,
) -> SearchableEntity:
    """Build the entity for one raw row. Raises KeyError/ValidationError on malformed rows."""
    if kind == EntityKind.AREA:
        return _area(row)
    if kind == EntityKind.SECTOR:
        return _sector(row)
    return _problem(row, ratings)


def normalize_rows(
    kind: EntityKind,
    rows: Iterable[Mapping[str, Any]],
    ratings: Optional[Mapping[str, float]] = None,
) -> List[SearchableEntity]:
    """Normalize a response, skipping (and logging) rows that cannot be read."""
    entities: List[SearchableEntity] = []
    for row in rows:
        try:
            entities.append(normalize_row(kind, row, ratings))
        except (KeyError, TypeError, AttributeError, ValidationError) as e:
            row_id = row.get("id") if isinstance(row, Mapping) else None
            logger.warning(f"Dropping malformed {kind.value} row {row_id!r}: {e}")
    return entities


def rating_map(rows: Iterable[Dict[str, Any]]) -> Dict[str, float]:
    """problem_avg_rating rows -> {problem_id: avg_rating}."""
    ratings: Dict[str, float] = {}
    for r in rows:
        if r.get("problem_id") is not None and r.get("avg_rating") is not None:
            ratings[str(r["problem_id"])] = float(r["avg_rating"])
    return ratings
