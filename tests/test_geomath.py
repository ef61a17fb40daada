import math

import pytest

from cragsearch.core.config import settings
from cragsearch.models.dto import GeoPoint
from cragsearch.utils.geomath import as_point, distance_km, haversine, is_valid_point, region_from

POINTS = [
    GeoPoint(lat=0, lng=0),
    GeoPoint(lat=37.3289, lng=-118.5772),
    GeoPoint(lat=-33.86, lng=151.21),
    GeoPoint(lat=89.9, lng=179.9),
    GeoPoint(lat=-45.0, lng=-179.5),
]


@pytest.mark.parametrize("a", POINTS)
@pytest.mark.parametrize("b", POINTS)
def test_distance_is_symmetric(a, b):
    assert distance_km(a, b) == distance_km(b, a)


@pytest.mark.parametrize("a", POINTS)
def test_distance_to_self_is_zero(a):
    assert distance_km(a, a) == 0


def test_one_degree_of_latitude_is_about_111_km():
    assert haversine(0, 0, 1, 0) == pytest.approx(111.19, abs=0.01)


def test_antipodal_distance_is_half_circumference():
    d = distance_km(GeoPoint(lat=0, lng=0), GeoPoint(lat=0, lng=180))
    assert d == pytest.approx(math.pi * 6371.0)


@pytest.mark.parametrize(
    "value, expected",
    [
        (GeoPoint(lat=1.5, lng=2.5), True),
        ({"lat": 1, "lng": 2}, True),
        (GeoPoint(lat=float("nan"), lng=0), False),
        (GeoPoint(lat=0, lng=float("inf")), False),
        ({"lat": None, "lng": 2}, False),
        ({"lat": "1", "lng": 2}, False),
        ({"lat": True, "lng": 2}, False),
        ({"lng": 2}, False),
        (None, False),
        ((1, 2), False),
    ],
)
def test_is_valid_point(value, expected):
    assert is_valid_point(value) is expected


def test_as_point_converts_mappings():
    assert as_point({"lat": 1, "lng": 2}) == GeoPoint(lat=1.0, lng=2.0)
    assert as_point({"lat": float("nan"), "lng": 2}) is None


def test_region_from_empty_returns_fallback():
    region = region_from([])
    assert region.center.lat == settings.FALLBACK_CENTER_LAT
    assert region.center.lng == settings.FALLBACK_CENTER_LNG
    assert region.lat_span == settings.DEFAULT_SPAN
    assert region.lng_span == settings.DEFAULT_SPAN
    for value in (region.center.lat, region.center.lng, region.lat_span, region.lng_span):
        assert math.isfinite(value)


def test_region_from_only_invalid_points_returns_fallback():
    region = region_from([GeoPoint(lat=float("nan"), lng=1), {"lat": None, "lng": None}])
    assert region.center.lat == settings.FALLBACK_CENTER_LAT


def test_region_from_single_point_uses_minimum_span():
    region = region_from([GeoPoint(lat=10, lng=20)])
    assert region.center == GeoPoint(lat=10, lng=20)
    assert region.lat_span == pytest.approx(0.02)
    assert region.lng_span == pytest.approx(0.02)


def test_region_from_pads_wide_extent_and_scales():
    points = [GeoPoint(lat=0, lng=0), GeoPoint(lat=1, lng=2), GeoPoint(lat=float("nan"), lng=50)]
    region = region_from(points, zoom_scale=0.5)
    assert region.center == GeoPoint(lat=0.5, lng=1.0)
    assert region.lat_span == pytest.approx((1 + 0.005) * 0.5)
    assert region.lng_span == pytest.approx((2 + 0.005) * 0.5)


def test_region_from_respects_custom_minimums():
    region = region_from([GeoPoint(lat=0, lng=0), GeoPoint(lat=0.001, lng=0.001)], min_lat_span=0.5, min_lng_span=0.25)
    assert region.lat_span == pytest.approx(0.5)
    assert region.lng_span == pytest.approx(0.25)
