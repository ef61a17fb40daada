import asyncio

from cragsearch.core.config import settings
from cragsearch.core.errors import LocationUnavailable
from cragsearch.models.dto import EntityKind, EntityTypes, GeoPoint, SearchQuery, SortMode
from cragsearch.models.scales import Style
from cragsearch.services.catalog_store import CatalogFixture, InMemoryCatalogStore
from cragsearch.services.search_engine import (
    EngineState,
    SearchEngine,
    popularity,
    rank_by_popularity,
    result_limit,
    should_dispatch,
)

from tests.conftest import FakeScheduler, problem_row

HERE = GeoPoint(lat=37.3325, lng=-118.5705)


def q(text="", **kwargs):
    return SearchQuery(text=text, **kwargs)


def ids(entities):
    return [e.id for e in entities]


def search_calls(store):
    return [c for c in store.calls if c[0] == "search_by_name"]


class GatedStore(InMemoryCatalogStore):
    """Holds name searches for one substring until the gate opens."""

    def __init__(self, fixture, slow_text):
        super().__init__(fixture)
        self.slow_text = slow_text
        self.gate = None

    async def search_by_name(self, kind, substring, limit):
        if substring == self.slow_text:
            await self.gate.wait()
        return await super().search_by_name(kind, substring, limit)


def test_should_dispatch():
    assert should_dispatch(q("ma")) is True
    assert should_dispatch(q(" m ")) is False
    assert should_dispatch(q("", sort_mode=SortMode.PROXIMITY, user_location=HERE)) is True
    # A location only counts when proximity sort asks for it
    assert should_dispatch(q("", user_location=HERE)) is False
    assert should_dispatch(q("", sort_mode=SortMode.PROXIMITY)) is False


def test_debounce_collapses_typing_into_one_dispatch(store):
    scheduler = FakeScheduler()
    received = []
    engine = SearchEngine(store, debounce_ms=300, scheduler=scheduler, on_results=received.append)

    async def scenario():
        scheduler.advance_to(0.0)
        engine.update(q("m"))
        scheduler.advance_to(0.05)
        engine.update(q("ma"))
        assert engine.state == EngineState.DEBOUNCING
        scheduler.advance_to(0.34)
        engine.update(q("man"))
        assert len(scheduler.pending()) == 1
        scheduler.advance_to(1.0)
        await engine.wait_idle()

    asyncio.run(scenario())

    calls = search_calls(store)
    assert len(calls) == 3
    assert {c[2] for c in calls} == {"man"}
    assert engine.state == EngineState.READY
    # One clear for "m", one result set for "man"
    assert len(received) == 2
    assert received[-1].generation == engine.generation
    assert ids(engine.results.problems) == ["p4", "p2", "p1", "p3"]


def test_debounce_with_event_loop_timer(store):
    engine = SearchEngine(store, debounce_ms=10)

    async def scenario():
        engine.update(q("mandala"))
        engine.update(q("mandala d"))
        await asyncio.sleep(0.1)
        await engine.wait_idle()

    asyncio.run(scenario())

    assert {c[2] for c in search_calls(store)} == {"mandala d"}
    assert ids(engine.results.problems) == ["p4"]


def test_filter_change_dispatches_without_debounce(store):
    scheduler = FakeScheduler()
    engine = SearchEngine(store, debounce_ms=300, scheduler=scheduler)

    async def scenario():
        engine.update(q("mandala"))
        assert engine.state == EngineState.DEBOUNCING
        assert len(scheduler.pending()) == 1
        scheduler.advance_to(1.0)
        await engine.wait_idle()
        assert len(search_calls(store)) == 3

        engine.update(q("mandala", min_grade=8))
        assert engine.state == EngineState.FETCHING
        assert scheduler.pending() == []
        await engine.wait_idle()

    asyncio.run(scenario())

    assert len(search_calls(store)) == 6
    assert ids(engine.results.problems) == ["p4"]
    assert engine.state == EngineState.READY


def test_sort_change_cancels_pending_text_timer(store):
    scheduler = FakeScheduler()
    engine = SearchEngine(store, debounce_ms=300, scheduler=scheduler)

    async def scenario():
        engine.update(q("mandala"))
        engine.update(q("mandala", sort_mode=SortMode.PROXIMITY, user_location=HERE))
        assert scheduler.pending() == []
        await engine.wait_idle()

    asyncio.run(scenario())

    assert len(search_calls(store)) == 3
    assert engine.results.sort_applied == SortMode.PROXIMITY


def test_limits_and_debounce_follow_current_settings(store, monkeypatch):
    monkeypatch.setattr(settings, "PROBLEM_RESULT_LIMIT", 1)
    monkeypatch.setattr(settings, "SEARCH_DEBOUNCE_MS", 50)
    scheduler = FakeScheduler()
    engine = SearchEngine(store, scheduler=scheduler)

    assert result_limit(EntityKind.PROBLEM) == 1
    assert engine.debounce_seconds == 0.05
    engine.update(q("mandala"))
    assert scheduler.pending()[0].due == 0.05

    results = asyncio.run(engine.run(q("mandala")))
    problem_calls = [c for c in search_calls(store) if c[1] == EntityKind.PROBLEM]
    assert problem_calls[0][3] == 1
    assert len(results.problems) == 1


def test_short_query_clears_without_contacting_store(store):
    received = []
    engine = SearchEngine(store, scheduler=FakeScheduler(), on_results=received.append)

    engine.update(q("m"))

    assert store.calls == []
    assert engine.state == EngineState.IDLE
    assert received[0].total() == 0
    assert asyncio.run(engine.run(q("a "))).total() == 0
    assert store.calls == []


def test_grade_range_with_popularity_sort():
    fixture = CatalogFixture(
        problems=[
            problem_row("p1", "The Mandala", grade=7, votes=12, lat=37.33, lng=-118.57),
            problem_row("p2", "Mandala Left", grade=3, votes=30, lat=37.33, lng=-118.57),
        ]
    )
    engine = SearchEngine(InMemoryCatalogStore(fixture))

    results = asyncio.run(engine.run(q("mandala", min_grade=5, max_grade=9)))

    assert [p.name for p in results.problems] == ["The Mandala"]
    assert results.sort_applied == SortMode.POPULARITY


def test_popularity_sort_per_kind(store):
    engine = SearchEngine(store)
    results = asyncio.run(engine.run(q("mandala")))

    # Areas and sectors in store (name) order, problems by votes
    assert ids(results.areas) == ["a3", "a1", "a2"]
    assert ids(results.sectors) == ["s2", "s1"]
    assert ids(results.problems) == ["p4", "p2", "p1", "p3"]
    assert results.location_required is False


def test_popularity_ranking_is_stable():
    fixture_store = InMemoryCatalogStore(
        CatalogFixture(
            problems=[
                problem_row("x1", "Tie One", votes=5),
                problem_row("x2", "Tie Two", votes=5),
                problem_row("x3", "Top Tie", votes=9),
            ]
        )
    )
    results = asyncio.run(SearchEngine(fixture_store).run(q("tie")))
    assert ids(results.problems) == ["x3", "x1", "x2"]
    assert popularity(results.problems[0]) == 9
    assert rank_by_popularity([]) == []


def test_style_filter_applies_to_problems_only(store):
    engine = SearchEngine(store)
    results = asyncio.run(engine.run(q("mandala", styles=frozenset({Style.SLAB}))))

    assert ids(results.problems) == ["p2"]
    assert len(results.areas) == 3
    assert len(results.sectors) == 2


def test_proximity_sort_orders_by_distance_and_drops_unlocated(store):
    engine = SearchEngine(store)
    results = asyncio.run(engine.run(q("mandala", sort_mode=SortMode.PROXIMITY, user_location=HERE)))

    assert ids(results.areas) == ["a1", "a3"]
    assert ids(results.sectors) == ["s1"]
    # p1 and p2 share a boulder; ties keep store order
    assert ids(results.problems) == ["p1", "p2", "p4"]
    assert results.sort_applied == SortMode.PROXIMITY
    assert results.location_required is False


def test_proximity_without_location_is_flagged_not_downgraded(store):
    engine = SearchEngine(store)
    results = asyncio.run(engine.run(q("mandala", sort_mode=SortMode.PROXIMITY)))

    assert results.location_required is True
    assert results.sort_applied is None
    # Store order, not popularity order
    assert ids(results.areas) == ["a3", "a1", "a2"]
    assert ids(results.problems) == ["p1", "p2", "p3", "p4"]


def test_location_only_browse_lists_located_entities(store):
    engine = SearchEngine(store)
    results = asyncio.run(engine.run(q("", sort_mode=SortMode.PROXIMITY, user_location=HERE)))

    assert search_calls(store) == []
    listed = [c[1] for c in store.calls if c[0] == "list_with_coordinate"]
    assert listed == [EntityKind.AREA, EntityKind.SECTOR, EntityKind.PROBLEM]
    assert ids(results.areas) == ["a1", "a3"]
    assert ids(results.sectors) == ["s1"]
    assert ids(results.problems) == ["p1", "p2", "p4"]


def test_unavailable_kind_empties_only_its_bucket(catalog):
    store = InMemoryCatalogStore(catalog, unavailable={"sector"})
    results = asyncio.run(SearchEngine(store).run(q("mandala")))

    assert results.sectors == []
    assert len(results.areas) == 3
    assert len(results.problems) == 4


def test_disabled_entity_types_are_not_fetched(store):
    query = q("mandala", entity_types=EntityTypes(area=False, sector=False))
    results = asyncio.run(SearchEngine(store).run(query))

    assert [c[1] for c in search_calls(store)] == [EntityKind.PROBLEM]
    assert results.areas == []
    assert results.sectors == []
    assert len(results.problems) == 4


def test_stale_response_never_overwrites_newer_one(catalog):
    store = GatedStore(catalog, slow_text="mandala")
    received = []
    engine = SearchEngine(store, on_results=received.append)

    async def scenario():
        store.gate = asyncio.Event()
        engine.dispatch(q("mandala"))
        latest = engine.dispatch(q("direct"))
        await latest
        assert ids(engine.results.problems) == ["p4"]
        store.gate.set()
        await engine.wait_idle()

    asyncio.run(scenario())

    assert [r.generation for r in received] == [2]
    assert ids(engine.results.problems) == ["p4"]
    assert engine.results.areas == []
    assert engine.state == EngineState.READY


def test_clearing_retires_in_flight_search(catalog):
    store = GatedStore(catalog, slow_text="mandala")
    received = []
    engine = SearchEngine(store, scheduler=FakeScheduler(), on_results=received.append)

    async def scenario():
        store.gate = asyncio.Event()
        engine.dispatch(q("mandala"))
        engine.update(q(""))
        store.gate.set()
        await engine.wait_idle()

    asyncio.run(scenario())

    assert engine.results.total() == 0
    assert engine.state == EngineState.IDLE
    assert len(received) == 1


def test_fetch_location_failure_is_reported_and_cleared(store):
    outcomes = [LocationUnavailable("Location permission denied.", code="PERMISSION_DENIED"), HERE]

    async def resolver(address):
        outcome = outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    engine = SearchEngine(store, location_resolver=resolver)

    assert asyncio.run(engine.fetch_location("here")) is None
    assert engine.location_error == "Location permission denied."

    assert asyncio.run(engine.fetch_location("here")) == HERE
    assert engine.location_error is None
