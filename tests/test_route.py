import pytest

from conftest import equator_route, meridian_route
from scenicwalk.errors import InvalidRoute
from scenicwalk.models import Coordinate
from scenicwalk.route import RouteProfile, total_length, validate_route


def test_total_length_sums_segments():
    assert total_length(meridian_route(100, 250, 50)) == pytest.approx(400)


def test_total_length_of_degenerate_routes_is_zero():
    assert total_length([]) == 0
    assert total_length([Coordinate(1, 2)]) == 0


def test_cumulative_table_is_non_decreasing():
    profile = RouteProfile(meridian_route(10, 0, 30))
    assert profile.cumulative == sorted(profile.cumulative)
    assert profile.cumulative[0] == 0


def test_point_at_distance_clamps_to_endpoints():
    route = meridian_route(100, 100)
    profile = RouteProfile(route)
    assert profile.point_at_distance(-5) == route[0]
    assert profile.point_at_distance(0) == route[0]
    assert profile.point_at_distance(200) == route[-1]
    assert profile.point_at_distance(10_000) == route[-1]


def test_point_at_distance_interpolates_within_segment():
    route = meridian_route(100, 100)
    point = RouteProfile(route).point_at_distance(150)
    assert point.lng == 0
    assert point.lat == pytest.approx((route[1].lat + route[2].lat) / 2)


def test_zero_length_segment_returns_its_start():
    route = [Coordinate(0, 0), Coordinate(0, 0)]
    profile = RouteProfile(route)
    assert profile.total_length() == 0
    assert profile.point_at_distance(0) == route[0]


def test_bearing_at_distance_uses_containing_segment():
    north = meridian_route(100)
    east = equator_route(100, lng=0.0)
    # North for 100 m, then east from the end of that leg
    turn = north + [Coordinate(north[-1].lat, north[-1].lng + (east[-1].lng - east[0].lng))]
    profile = RouteProfile(turn)
    assert profile.bearing_at_distance(50) == pytest.approx(0, abs=0.01)
    assert profile.bearing_at_distance(150) == pytest.approx(90, abs=0.01)


def test_bearing_needs_two_points():
    with pytest.raises(InvalidRoute):
        RouteProfile([Coordinate(0, 0)]).bearing_at_distance(0)


def test_validate_route():
    validate_route(meridian_route(10))
    with pytest.raises(InvalidRoute):
        validate_route([Coordinate(0, 0)])
    with pytest.raises(InvalidRoute):
        validate_route([Coordinate(0, 0), Coordinate(91, 0)])
    with pytest.raises(InvalidRoute):
        validate_route([Coordinate(0, 0), Coordinate(0, -181)])
