import pytest

from cragsearch.services.catalog_store import CatalogFixture, InMemoryCatalogStore


def area_row(id, name, lat=None, lng=None, boulder_count=0, description=None):
    return {
        "id": id,
        "name": name,
        "description": description,
        "boulder_count": boulder_count,
        "lat": lat,
        "lng": lng,
        "parent_id": None,
    }


def sector_row(id, name, area_id="a1", area_name="Area One", lat=None, lng=None):
    return {"id": id, "name": name, "area_id": area_id, "lat": lat, "lng": lng, "areas": {"name": area_name}}


def problem_row(
    id,
    name,
    grade=None,
    votes=0,
    style=None,
    lat=None,
    lng=None,
    boulder_id="b1",
    boulder_name="Boulder One",
    sector_id="s1",
    sector_name="Sector One",
    area_id="a1",
    area_name="Area One",
):
    return {
        "id": id,
        "name": name,
        "avg_grade": grade,
        "vote_count": votes,
        "style": style,
        "boulder_id": boulder_id,
        "boulders": {
            "id": boulder_id,
            "name": boulder_name,
            "lat": lat,
            "lng": lng,
            "sector_id": sector_id,
            "area_id": area_id,
            "sectors": {"name": sector_name} if sector_name else None,
            "areas": {"name": area_name},
        },
    }


class FakeTimer:
    def __init__(self, due, callback):
        self.due = due
        self.callback = callback
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class FakeScheduler:
    """Manual clock for debounce tests: timers fire only when advance_to() passes them."""

    def __init__(self):
        self.now = 0.0
        self.timers = []

    def __call__(self, delay, callback):
        timer = FakeTimer(self.now + delay, callback)
        self.timers.append(timer)
        return timer

    def pending(self):
        return [t for t in self.timers if not t.cancelled]

    def advance_to(self, t):
        self.now = t
        for timer in list(self.timers):
            if not timer.cancelled and timer.due <= t:
                timer.cancelled = True
                timer.callback()


@pytest.fixture
def scheduler():
    return FakeScheduler()


@pytest.fixture
def catalog():
    fixture = CatalogFixture(
        areas=[
            area_row("a1", "Mandala Flats", lat=37.33, lng=-118.57, boulder_count=12),
            area_row("a2", "Mandala Hills", boulder_count=40),
            area_row("a3", "Far Mandala", lat=40.0, lng=-105.0, boulder_count=3),
        ],
        sectors=[
            sector_row("s1", "Mandala Sector", lat=37.332, lng=-118.570),
            sector_row("s2", "Another Mandala", lat=None, lng=None),
        ],
        problems=[
            problem_row("p1", "The Mandala", grade=7, votes=12, style="OVERHANG", lat=37.3325, lng=-118.5705),
            problem_row("p2", "Mandala Left", grade=3, votes=30, style="SLAB", lat=37.3325, lng=-118.5705),
            problem_row("p3", "Mandala Right", grade=None, votes=4, style=None, lat=None, lng=None, boulder_id="b2"),
            problem_row("p4", "Mandala Direct", grade=9, votes=50, style="ROOF", lat=37.40, lng=-118.44, boulder_id="b3", sector_id="s2", sector_name="Another Mandala"),
        ],
        boundaries={
            "a1": [
                {"id": "s1", "name": "Mandala Sector", "polygon_coords": [
                    {"lat": 0, "lng": 0}, {"lat": 0, "lng": 2}, {"lat": 2, "lng": 2}, {"lat": 2, "lng": 0},
                ]},
                {"id": "s2", "name": "Another Mandala", "polygon_coords": [
                    {"lat": 5, "lng": 5}, {"lat": 5, "lng": 7}, {"lat": 7, "lng": 7}, {"lat": 7, "lng": 5},
                ]},
            ],
        },
        ratings={"p1": 4.5},
    )
    return fixture


@pytest.fixture
def store(catalog):
    return InMemoryCatalogStore(catalog)
