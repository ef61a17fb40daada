# Read access to the remote catalog (Supabase / PostgREST) and an in-memory
# stand-in with the same row shapes for local development and tests.

import asyncio
import json
import logging
import os
import random
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, Set

import httpx
from pydantic import BaseModel, Field

from cragsearch.core.config import settings
from cragsearch.core.errors import StoreUnavailable
from cragsearch.models.dto import BoundaryPolygon, EntityKind
from cragsearch.services.normalize import embedded, rating_map
from cragsearch.utils.polygon import sanitize

logger = logging.getLogger(__name__)

Row = Dict[str, Any]

TABLES = {
    EntityKind.AREA: "areas",
    EntityKind.SECTOR: "sectors",
    EntityKind.PROBLEM: "problems",
}

SELECTS = {
    EntityKind.AREA: "id,name,description,boulder_count,lat,lng",
    EntityKind.SECTOR: "id,name,area_id,lat,lng,areas(name)",
    EntityKind.PROBLEM: (
        "id,name,avg_grade,vote_count,style,boulder_id,"
        "boulders(id,name,lat,lng,sector_id,area_id,sectors(name),areas(name))"
    ),
}

# Same embed, but inner-joined so filters on boulder columns drop the problem row
PROBLEM_INNER_SELECT = (
    "id,name,avg_grade,vote_count,style,boulder_id,"
    "boulders!inner(id,name,lat,lng,sector_id,area_id,sectors(name),areas(name))"
)


class CatalogStore(Protocol):
    """What the search engine needs from the catalog backend."""
    async def search_by_name(self, kind: EntityKind, substring: str, limit: int) -> List[Row]: ...
    async def list_with_coordinate(self, kind: EntityKind, limit: int) -> List[Row]: ...
    async def get_enclosing_polygons(self, parent_scope_id: str) -> List[BoundaryPolygon]: ...
    async def list_area_problems(self, area_id: str) -> List[Row]: ...
    async def get_problem_ratings(self, problem_ids: List[str]) -> Dict[str, float]: ...


LIKE_ESCAPES = str.maketrans({"\\": "\\\\", "%": "\\%", "_": "\\_"})


def search_text(substring: str) -> Optional[str]:
    """User text without PostgREST's '*' wildcard, or None when too little is left to search on."""
    cleaned = substring.replace("*", "").strip()
    if len(cleaned) < settings.MIN_QUERY_LENGTH:
        return None
    return cleaned


def _ilike_pattern(text: str) -> str:
    # LIKE metacharacters in user text match literally
    return f"ilike.*{text.translate(LIKE_ESCAPES)}*"


def _boundaries(rows: Iterable[Mapping[str, Any]]) -> List[BoundaryPolygon]:
    return [
        BoundaryPolygon(id=str(r["id"]), name=r.get("name"), ring=sanitize(r.get("polygon_coords")))
        for r in rows
        if r.get("id") is not None
    ]


class SupabaseCatalogStore:
    """
    PostgREST client for the hosted catalog.

    Timeouts are retried with exponential backoff; any other transport or HTTP
    failure is raised as StoreUnavailable so the caller can degrade that one
    entity kind instead of the whole search.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
        max_retries: Optional[int] = None,
        initial_backoff: Optional[float] = None,
    ):
        base_url = base_url or settings.SUPABASE_URL
        api_key = api_key or settings.SUPABASE_ANON_KEY
        if not base_url:
            raise ValueError("SUPABASE_URL is not set in the environment")
        self.rest_url = f"{base_url.rstrip('/')}/rest/v1"
        self.headers = {"Accept": "application/json"}
        if api_key:
            self.headers["apikey"] = api_key
            self.headers["Authorization"] = f"Bearer {api_key}"
        self._client = client
        self.max_retries = settings.STORE_MAX_RETRIES if max_retries is None else max_retries
        self.initial_backoff = settings.STORE_INITIAL_BACKOFF if initial_backoff is None else initial_backoff

    async def _fetch(self, client: httpx.AsyncClient, table: str, params: Dict[str, Any]) -> List[Row]:
        response = await client.get(f"{self.rest_url}/{table}", params=params, headers=self.headers)
        response.raise_for_status()
        data = response.json()
        if not isinstance(data, list):
            raise StoreUnavailable(table, "unexpected response body")
        return data

    async def _get(self, scope: str, table: str, params: Dict[str, Any]) -> List[Row]:
        for attempt in range(self.max_retries + 1):
            try:
                if self._client is not None:
                    return await self._fetch(self._client, table, params)
                async with httpx.AsyncClient(timeout=settings.STORE_TIMEOUT) as client:
                    return await self._fetch(client, table, params)
            except httpx.TimeoutException:
                logger.warning(f"Catalog query for {scope} timed out (attempt {attempt + 1}).")
                if attempt < self.max_retries:
                    wait_time = self.initial_backoff * (2 ** attempt) + random.uniform(0, 0.1)
                    await asyncio.sleep(wait_time)
            except httpx.HTTPStatusError as e:
                logger.error(f"Catalog returned status {e.response.status_code} for {scope}")
                raise StoreUnavailable(scope, f"status {e.response.status_code}") from e
            except httpx.HTTPError as e:
                logger.error(f"Catalog transport error for {scope}: {e}")
                raise StoreUnavailable(scope, str(e) or type(e).__name__) from e
            except ValueError as e:
                # Body was not JSON
                raise StoreUnavailable(scope, "invalid JSON") from e
        raise StoreUnavailable(scope, "timed out")

    async def search_by_name(self, kind: EntityKind, substring: str, limit: int) -> List[Row]:
        text = search_text(substring)
        if text is None:
            logger.debug(f"Skipping {kind.value} search: nothing left to match in {substring!r}")
            return []
        params: Dict[str, Any] = {
            "select": SELECTS[kind],
            "name": _ilike_pattern(text),
            "limit": limit,
        }
        if kind == EntityKind.AREA:
            # Sub-areas are reached through their parent
            params["parent_id"] = "is.null"
        if kind in (EntityKind.AREA, EntityKind.SECTOR):
            params["order"] = "name"
        return await self._get(kind.value, TABLES[kind], params)

    async def list_with_coordinate(self, kind: EntityKind, limit: int) -> List[Row]:
        params: Dict[str, Any] = {"limit": limit}
        if kind == EntityKind.PROBLEM:
            params["select"] = PROBLEM_INNER_SELECT
            params["boulders.lat"] = "not.is.null"
            params["boulders.lng"] = "not.is.null"
        else:
            params["select"] = SELECTS[kind]
            params["lat"] = "not.is.null"
            params["lng"] = "not.is.null"
            if kind == EntityKind.AREA:
                params["parent_id"] = "is.null"
        return await self._get(kind.value, TABLES[kind], params)

    async def get_enclosing_polygons(self, parent_scope_id: str) -> List[BoundaryPolygon]:
        rows = await self._get(
            "boundaries",
            "sectors",
            {
                "select": "id,name,polygon_coords",
                "area_id": f"eq.{parent_scope_id}",
                "polygon_coords": "not.is.null",
                "order": "sort_order,name",
            },
        )
        return _boundaries(rows)

    async def list_area_problems(self, area_id: str) -> List[Row]:
        return await self._get(
            "area_problems",
            "problems",
            {
                "select": (
                    "id,name,avg_grade,vote_count,style,boulder_id,"
                    "boulders!inner(id,name,lat,lng,sector_id,area_id,sectors(name))"
                ),
                "boulders.area_id": f"eq.{area_id}",
                "order": "sort_order,name",
            },
        )

    async def get_problem_ratings(self, problem_ids: List[str]) -> Dict[str, float]:
        if not problem_ids:
            return {}
        rows = await self._get(
            "ratings",
            "problem_avg_rating",
            {
                "select": "problem_id,avg_rating",
                "problem_id": f"in.({','.join(problem_ids)})",
            },
        )
        return rating_map(rows)


# --- In-memory store ---

class CatalogFixture(BaseModel):
    """Root model for a catalog fixture file (rows in PostgREST embed shape)."""
    areas: List[Row] = Field(default_factory=list)
    sectors: List[Row] = Field(default_factory=list)
    problems: List[Row] = Field(default_factory=list)
    boundaries: Dict[str, List[Row]] = Field(default_factory=dict, description="area id -> sector boundary rows")
    ratings: Dict[str, float] = Field(default_factory=dict)


def _has_coordinate(kind: EntityKind, row: Mapping[str, Any]) -> bool:
    source = embedded(row.get("boulders")) if kind == EntityKind.PROBLEM else row
    return bool(source) and source.get("lat") is not None and source.get("lng") is not None


class InMemoryCatalogStore:
    """
    Catalog held in process memory, answering the same queries as the PostgREST
    store. Kinds listed in `unavailable` fail with StoreUnavailable.
    """

    def __init__(self, fixture: Optional[CatalogFixture] = None, unavailable: Iterable[str] = ()):
        self.fixture = fixture or CatalogFixture()
        self.unavailable: Set[str] = set(unavailable)
        self.calls: List[tuple] = []

    @classmethod
    def from_file(cls, file_path: str) -> "InMemoryCatalogStore":
        """Load a JSON fixture; a missing or invalid file yields an empty catalog."""
        try:
            with open(file_path, "r", encoding="utf-8") as f:
                data = json.load(f)
            fixture = CatalogFixture.model_validate(data)
            logger.info(
                f"Loaded catalog fixture: {len(fixture.areas)} areas, "
                f"{len(fixture.sectors)} sectors, {len(fixture.problems)} problems."
            )
            return cls(fixture)
        except FileNotFoundError:
            logger.error(f"Catalog fixture not found at: {file_path}")
        except Exception as e:
            logger.error(f"Error loading or validating catalog fixture: {e}")
        return cls()

    def _check(self, scope: str):
        if scope in self.unavailable:
            raise StoreUnavailable(scope, "simulated outage")

    def _rows(self, kind: EntityKind) -> List[Row]:
        rows = getattr(self.fixture, TABLES[kind])
        if kind == EntityKind.AREA:
            rows = [r for r in rows if r.get("parent_id") is None]
        return rows

    async def search_by_name(self, kind: EntityKind, substring: str, limit: int) -> List[Row]:
        self.calls.append(("search_by_name", kind, substring, limit))
        self._check(kind.value)
        text = search_text(substring)
        if text is None:
            return []
        needle = text.lower()
        rows = [r for r in self._rows(kind) if needle in (r.get("name") or "").lower()]
        if kind in (EntityKind.AREA, EntityKind.SECTOR):
            rows = sorted(rows, key=lambda r: r.get("name") or "")
        return [dict(r) for r in rows[:limit]]

    async def list_with_coordinate(self, kind: EntityKind, limit: int) -> List[Row]:
        self.calls.append(("list_with_coordinate", kind, limit))
        self._check(kind.value)
        rows = [r for r in self._rows(kind) if _has_coordinate(kind, r)]
        return [dict(r) for r in rows[:limit]]

    async def get_enclosing_polygons(self, parent_scope_id: str) -> List[BoundaryPolygon]:
        self.calls.append(("get_enclosing_polygons", parent_scope_id))
        self._check("boundaries")
        return _boundaries(self.fixture.boundaries.get(parent_scope_id, []))

    async def list_area_problems(self, area_id: str) -> List[Row]:
        self.calls.append(("list_area_problems", area_id))
        self._check("area_problems")
        rows = []
        for r in self.fixture.problems:
            boulder = embedded(r.get("boulders"))
            if boulder and str(boulder.get("area_id")) == area_id:
                rows.append(dict(r))
        return rows

    async def get_problem_ratings(self, problem_ids: List[str]) -> Dict[str, float]:
        self.calls.append(("get_problem_ratings", tuple(problem_ids)))
        self._check("ratings")
        return {pid: self.fixture.ratings[pid] for pid in problem_ids if pid in self.fixture.ratings}


def default_fixture_path() -> str:
    return os.path.join(os.path.dirname(__file__), "..", "..", "data", "catalog.json")
