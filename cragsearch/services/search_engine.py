# Debounced multi-entity catalog search with in-memory filtering and ranking.

import asyncio
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Set, Tuple

import structlog

from cragsearch.core.config import settings
from cragsearch.core.errors import LocationUnavailable
from cragsearch.models.dto import (
    EntityKind,
    GeoPoint,
    SearchableEntity,
    SearchQuery,
    SearchResults,
    SortMode,
)
from cragsearch.services.catalog_store import CatalogStore
from cragsearch.services.filter_pipeline import filter_grade, filter_styles, normalized_text
from cragsearch.services.location import resolve_location
from cragsearch.services.normalize import normalize_rows
from cragsearch.utils.geomath import as_point, distance_km

logger = structlog.get_logger(__name__)

# (delay_seconds, callback) -> handle with .cancel()
Scheduler = Callable[[float, Callable[[], None]], Any]
LocationResolver = Callable[[str], Awaitable[GeoPoint]]


class EngineState(str, Enum):
    IDLE = "idle"
    DEBOUNCING = "debouncing"
    FETCHING = "fetching"
    READY = "ready"


def result_limit(kind: EntityKind) -> int:
    if kind == EntityKind.AREA:
        return settings.AREA_RESULT_LIMIT
    if kind == EntityKind.SECTOR:
        return settings.SECTOR_RESULT_LIMIT
    return settings.PROBLEM_RESULT_LIMIT


def has_text_query(query: SearchQuery) -> bool:
    return bool(normalized_text(query.text))


def user_location(query: SearchQuery) -> Optional[GeoPoint]:
    """The query's location when it is usable for proximity sort."""
    if query.sort_mode != SortMode.PROXIMITY:
        return None
    return as_point(query.user_location)


def should_dispatch(query: SearchQuery) -> bool:
    """A name fragment of at least two characters, or a 'browse nearby' request."""
    return has_text_query(query) or user_location(query) is not None


def popularity(entity: SearchableEntity) -> Optional[int]:
    if entity.kind == "problem":
        return entity.vote_count
    # Areas and sectors carry no vote count and keep store (name) order
    return None


def rank_by_popularity(entities: Sequence[SearchableEntity]) -> List[SearchableEntity]:
    if not entities or popularity(entities[0]) is None:
        return list(entities)
    return sorted(entities, key=lambda e: popularity(e) or 0, reverse=True)


def rank_by_proximity(entities: Sequence[SearchableEntity], origin: GeoPoint) -> List[SearchableEntity]:
    """Nearest first. Entities without a valid coordinate are dropped."""
    located: List[Tuple[float, int, SearchableEntity]] = []
    for index, entity in enumerate(entities):
        point = as_point(entity.coordinate)
        if point is None:
            continue
        located.append((distance_km(origin, point), index, entity))
    located.sort(key=lambda item: (item[0], item[1]))
    return [entity for _, _, entity in located]


def rank(entities: Sequence[SearchableEntity], query: SearchQuery) -> List[SearchableEntity]:
    """Rank one bucket. Proximity without a location leaves the bucket in store order."""
    if query.sort_mode == SortMode.PROXIMITY:
        origin = user_location(query)
        if origin is None:
            return list(entities)
        return rank_by_proximity(entities, origin)
    return rank_by_popularity(entities)


class SearchEngine:
    """Owns one logical "current query" for a search screen.

    - `update()` is called on every input change. Text edits are collapsed by a
      debounce timer; at most one dispatch is pending at any time. A change that
      leaves the text alone (filters, sort mode, location) dispatches at once.
    - Every dispatch is tagged with a generation number. A response whose
      generation is older than the latest dispatch is dropped, so a slow early
      query never overwrites a later one.
    - `run()` performs a single search with no debounce and no state changes
      beyond the results it returns; the HTTP API uses it directly.
    """

    def __init__(
        self,
        store: CatalogStore,
        debounce_ms: Optional[int] = None,
        scheduler: Optional[Scheduler] = None,
        on_results: Optional[Callable[[SearchResults], None]] = None,
        location_resolver: LocationResolver = resolve_location,
    ):
        self.store = store
        self.debounce_ms = debounce_ms
        self.on_results = on_results
        self._scheduler = scheduler
        self._location_resolver = location_resolver

        self.state = EngineState.IDLE
        self.results = SearchResults.empty()
        self.location_error: Optional[str] = None
        self.generation = 0
        self._pending_timer: Any = None
        self._pending_query: Optional[SearchQuery] = None
        self._last_text: Optional[str] = None
        self._in_flight: Set[asyncio.Future] = set()

    # --- Scheduling ---

    def _schedule(self, delay: float, callback: Callable[[], None]) -> Any:
        if self._scheduler is not None:
            return self._scheduler(delay, callback)
        return asyncio.get_running_loop().call_later(delay, callback)

    @property
    def debounce_seconds(self) -> float:
        debounce_ms = settings.SEARCH_DEBOUNCE_MS if self.debounce_ms is None else self.debounce_ms
        return debounce_ms / 1000

    def cancel_pending(self) -> None:
        if self._pending_timer is not None:
            self._pending_timer.cancel()
        self._pending_timer = None
        self._pending_query = None

    def update(self, query: SearchQuery) -> None:
        """Feed the latest input. A text edit restarts the debounce window."""
        self.cancel_pending()
        text = query.text.strip()
        text_changed = text != self._last_text
        self._last_text = text

        if not should_dispatch(query):
            # Too short and not browsing nearby: clear without contacting the store.
            # Bumping the generation also retires any response still in flight.
            self.generation += 1
            self.results = SearchResults.empty(self.generation)
            self.state = EngineState.IDLE
            if self.on_results:
                self.on_results(self.results)
            return

        if not text_changed:
            self.dispatch(query)
            return

        self._pending_query = query
        self._pending_timer = self._schedule(self.debounce_seconds, self._fire)
        self.state = EngineState.DEBOUNCING

    def _fire(self) -> None:
        query = self._pending_query
        self._pending_timer = None
        self._pending_query = None
        if query is not None:
            self.dispatch(query)

    def dispatch(self, query: SearchQuery) -> asyncio.Future:
        """Start a search right away, superseding every earlier dispatch."""
        self.generation += 1
        generation = self.generation
        self.state = EngineState.FETCHING
        logger.info("search_dispatched", generation=generation, text=query.text, sort=query.sort_mode.value)

        task = asyncio.ensure_future(self._execute(query, generation))
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)
        return task

    async def _execute(self, query: SearchQuery, generation: int) -> None:
        results = await self.run(query, generation)
        self._accept(results)

    def _accept(self, results: SearchResults) -> bool:
        if results.generation != self.generation:
            logger.info("search_stale_response_dropped", generation=results.generation, latest=self.generation)
            return False
        self.results = results
        if self._pending_timer is None:
            self.state = EngineState.READY
        if self.on_results:
            self.on_results(results)
        return True

    async def wait_idle(self) -> None:
        """Wait for every dispatched search to settle."""
        while self._in_flight:
            await asyncio.gather(*list(self._in_flight))

    # --- Location ---

    async def locate(self, address: str) -> GeoPoint:
        """Resolve a position. Raises LocationUnavailable."""
        return await self._location_resolver(address)

    async def fetch_location(self, address: str) -> Optional[GeoPoint]:
        """
        Resolve the user's position on explicit request.

        Failure is kept in `location_error` for the caller to show; the sort mode
        is left alone, so proximity sort never quietly turns into popularity sort.
        """
        try:
            point = await self.locate(address)
        except LocationUnavailable as e:
            logger.warning("location_unavailable", reason=e.reason, code=e.code)
            self.location_error = e.reason
            return None
        self.location_error = None
        return point

    # --- Search ---

    async def _fetch_kind(self, kind: EntityKind, query: SearchQuery, text_mode: bool) -> List[SearchableEntity]:
        limit = result_limit(kind)
        if text_mode:
            rows = await self.store.search_by_name(kind, query.text.strip(), limit)
        else:
            rows = await self.store.list_with_coordinate(kind, limit)
        return normalize_rows(kind, rows)

    async def _fetch_all(self, query: SearchQuery) -> Dict[EntityKind, Tuple[SearchableEntity, ...]]:
        text_mode = has_text_query(query)
        kinds = [kind for kind in EntityKind if query.entity_types.enabled(kind)]
        outcomes = await asyncio.gather(
            *(self._fetch_kind(kind, query, text_mode) for kind in kinds),
            return_exceptions=True,
        )

        candidates: Dict[EntityKind, Tuple[SearchableEntity, ...]] = {kind: () for kind in EntityKind}
        for kind, outcome in zip(kinds, outcomes):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                # One kind failing empties that bucket only
                logger.warning("search_kind_failed", kind=kind.value, error=str(outcome), error_type=type(outcome).__name__)
                continue
            candidates[kind] = tuple(outcome)
        return candidates

    async def run(self, query: SearchQuery, generation: Optional[int] = None) -> SearchResults:
        """Fetch, filter and rank once. Never raises for store failures."""
        generation = self.generation if generation is None else generation
        if not should_dispatch(query):
            return SearchResults.empty(generation)

        candidates = await self._fetch_all(query)

        problems = filter_grade(candidates[EntityKind.PROBLEM], query.min_grade, query.max_grade)
        problems = filter_styles(problems, query.styles)

        location_required = query.sort_mode == SortMode.PROXIMITY and user_location(query) is None
        results = SearchResults(
            areas=rank(candidates[EntityKind.AREA], query),
            sectors=rank(candidates[EntityKind.SECTOR], query),
            problems=rank(problems, query),
            generation=generation,
            sort_applied=None if location_required else query.sort_mode,
            location_required=location_required,
        )
        logger.info(
            "search_completed",
            generation=generation,
            areas=len(results.areas),
            sectors=len(results.sectors),
            problems=len(results.problems),
        )
        return results
