import pytest
from geopy.distance import great_circle

from halfway import geo
from halfway.models import Coordinate

from conftest import COVENT_GARDEN, WESTMINSTER


NEW_YORK = Coordinate(40.7128, -74.0060)
LONDON = Coordinate(51.5074, -0.1278)
SYDNEY = Coordinate(-33.8688, 151.2093)


def _reference(a: Coordinate, b: Coordinate) -> float:
    return great_circle((a.lat, a.lng), (b.lat, b.lng), radius=geo.EARTH_RADIUS_M / 1000.0).meters


def test_midpoint_of_two_london_origins():
    mid = geo.midpoint([WESTMINSTER, COVENT_GARDEN])
    assert mid.lat == pytest.approx(51.5081, abs=1e-4)
    assert mid.lng == pytest.approx(-0.1333, abs=1e-4)


def test_midpoint_is_arithmetic_mean_of_many():
    mid = geo.midpoint([Coordinate(0.0, 0.0), Coordinate(2.0, 4.0), Coordinate(4.0, 2.0)])
    assert mid == Coordinate(2.0, 2.0)


def test_midpoint_requires_input():
    with pytest.raises(ValueError):
        geo.midpoint([])


def test_midpoint_lies_between_origins_and_is_equidistant():
    mid = geo.midpoint([WESTMINSTER, COVENT_GARDEN])
    d_am = geo.distance(WESTMINSTER, mid)
    d_mb = geo.distance(mid, COVENT_GARDEN)
    d_ab = geo.distance(WESTMINSTER, COVENT_GARDEN)
    # On the path: going through the midpoint adds (almost) nothing
    assert d_am + d_mb == pytest.approx(d_ab, rel=1e-6)
    # Mean of lat/lng is equidistant to well under a meter at city scale
    assert d_am == pytest.approx(d_mb, rel=1e-3)


@pytest.mark.parametrize("a,b", [
    (WESTMINSTER, COVENT_GARDEN),
    (LONDON, NEW_YORK),
    (NEW_YORK, SYDNEY),
    (Coordinate(0.0, 179.9), Coordinate(0.0, -179.9)),
])
def test_distance_matches_reference_great_circle(a, b):
    assert geo.distance(a, b) == pytest.approx(_reference(a, b), rel=1e-9, abs=1e-6)


def test_distance_to_self_is_zero():
    for point in (WESTMINSTER, NEW_YORK, SYDNEY, Coordinate(90.0, 0.0)):
        assert geo.distance(point, point) == 0.0


def test_distance_is_symmetric():
    assert geo.distance(LONDON, SYDNEY) == geo.distance(SYDNEY, LONDON)
    assert geo.distance(WESTMINSTER, COVENT_GARDEN) == geo.distance(COVENT_GARDEN, WESTMINSTER)


def test_london_to_new_york_is_about_5570_km():
    assert geo.distance(LONDON, NEW_YORK) == pytest.approx(5_570_000, rel=0.01)


def test_max_search_radius_has_5km_floor_for_close_origins():
    assert geo.max_search_radius([WESTMINSTER, COVENT_GARDEN]) == geo.MIN_SLIDER_RADIUS_M
    assert geo.max_search_radius([]) == geo.MIN_SLIDER_RADIUS_M


def test_max_search_radius_scales_with_spread_and_caps_at_20km():
    # ~20 km apart -> 70% is ~14 km
    far = Coordinate(WESTMINSTER.lat + 0.18, WESTMINSTER.lng)
    radius = geo.max_search_radius([WESTMINSTER, far])
    assert 13_000 < radius < 15_000
    assert geo.max_search_radius([LONDON, NEW_YORK]) == geo.MAX_SLIDER_RADIUS_M
