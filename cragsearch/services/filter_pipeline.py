# In-memory narrowing of already fetched entities.
# Every function returns a new list and leaves its input untouched. An unset
# filter returns the candidates as given, in the same order.

from typing import AbstractSet, List, Optional, Sequence

from cragsearch.core.config import settings
from cragsearch.models.dto import FilterCriteria, ProblemEntity, SearchableEntity
from cragsearch.models.scales import Style


def normalized_text(text: Optional[str]) -> str:
    """Lower-cased, trimmed query text, or "" when it is too short to filter on."""
    q = (text or "").strip()
    if len(q) < settings.MIN_QUERY_LENGTH:
        return ""
    return q.lower()


def _haystack(entity: SearchableEntity) -> List[str]:
    fields = [entity.name]
    if isinstance(entity, ProblemEntity):
        fields.extend([entity.boulder_name, entity.sector_name])
    return [f.lower() for f in fields if f]


def filter_text(candidates: Sequence[SearchableEntity], text: Optional[str]) -> List[SearchableEntity]:
    q = normalized_text(text)
    if not q:
        return list(candidates)
    return [e for e in candidates if any(q in field for field in _haystack(e))]


def filter_grade(
    candidates: Sequence[SearchableEntity],
    min_grade: Optional[float] = None,
    max_grade: Optional[float] = None,
) -> List[SearchableEntity]:
    if min_grade is None and max_grade is None:
        return list(candidates)

    kept = []
    for e in candidates:
        grade = getattr(e, "avg_grade", None)
        if grade is None:
            continue
        if min_grade is not None and grade < min_grade:
            continue
        if max_grade is not None and grade > max_grade:
            continue
        kept.append(e)
    return kept


def filter_styles(candidates: Sequence[SearchableEntity], styles: Optional[AbstractSet[Style]]) -> List[SearchableEntity]:
    if not styles:
        return list(candidates)
    return [e for e in candidates if getattr(e, "style", None) is not None and e.style in styles]


def filter_scope(
    candidates: Sequence[SearchableEntity],
    sector_id: Optional[str] = None,
    boulder_id: Optional[str] = None,
) -> List[SearchableEntity]:
    kept = list(candidates)
    if sector_id:
        kept = [e for e in kept if getattr(e, "sector_id", None) == sector_id]
    if boulder_id:
        kept = [e for e in kept if getattr(e, "boulder_id", None) == boulder_id]
    return kept


def apply_filters(candidates: Sequence[SearchableEntity], criteria: FilterCriteria) -> List[SearchableEntity]:
    """AND of the text, grade, style and hierarchy-scope filters."""
    result = filter_text(candidates, criteria.text)
    result = filter_grade(result, criteria.min_grade, criteria.max_grade)
    result = filter_styles(result, criteria.styles)
    return filter_scope(result, criteria.sector_id, criteria.boulder_id)
