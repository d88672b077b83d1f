import math

import pytest

from conftest import meridian_route
from scenicwalk.arrows import ArrowIconCache, ArrowPlanner, arrow_svg, plan
from scenicwalk.models import Coordinate
from scenicwalk.route import total_length


def test_arrow_count_policy():
    planner = ArrowPlanner()
    assert planner.arrow_count(49.9) == 0
    assert planner.arrow_count(50) == 3
    assert planner.arrow_count(200) == 3
    assert planner.arrow_count(600) == 4
    assert planner.arrow_count(1500) == 10
    assert planner.arrow_count(3000) == 20
    assert planner.arrow_count(50_000) == 20
    assert planner.arrow_count(math.nan) == 0


def test_summary_for_600m_route():
    summary = ArrowPlanner()._summary_for_length(600.0)
    assert summary.count == 4
    assert summary.spacing == pytest.approx(150)
    assert summary.first_offset == pytest.approx(45)
    assert summary.repeat_percent == pytest.approx(25)
    assert summary.offset_percent == pytest.approx(7.5)
    assert summary.as_css() == {"repeat": "25.0%", "offset": "7.5%"}


def test_straight_600m_route_gets_four_arrows_pointing_north():
    route = meridian_route(150.001, 150.001, 150.001, 150.001)
    arrows = plan(route)

    assert [a.distance for a in arrows] == pytest.approx([45, 195, 345, 495], abs=0.01)
    for arrow in arrows:
        assert arrow.bearing == pytest.approx(0, abs=1e-6)
        assert arrow.position.lng == 0
    assert arrows[0].position.lat == pytest.approx(route[0].lat + 45 / 111_194.93, rel=1e-4)


def test_route_shorter_than_minimum_gets_no_arrows():
    route = meridian_route(30)
    planner = ArrowPlanner()
    assert planner.plan(route) == []
    assert planner.summary(route) is None


def test_degenerate_routes_get_no_arrows():
    assert plan([]) == []
    assert plan([Coordinate(1, 1)]) == []
    assert plan([Coordinate(1, 1), Coordinate(1, 1)]) == []


def test_short_route_is_clamped_to_minimum_count():
    route = meridian_route(100)
    arrows = plan(route)
    assert len(arrows) == 3
    assert [a.distance for a in arrows] == pytest.approx([10, 43.33, 76.67], abs=0.01)


def test_long_route_is_clamped_to_maximum_count():
    route = meridian_route(*([500] * 10))
    arrows = plan(route)
    assert len(arrows) == 20
    assert arrows[1].distance - arrows[0].distance == pytest.approx(250)


def test_placements_stay_on_route_and_increase():
    route = meridian_route(120, 35, 410, 77, 260)
    length = total_length(route)
    arrows = plan(route)
    distances = [a.distance for a in arrows]
    assert distances == sorted(distances)
    assert all(0 < d < length for d in distances)
    assert all(0 <= a.bearing < 360 for a in arrows)


def test_arrows_follow_turns():
    north = meridian_route(300.01)
    corner = north[-1]
    east_end = Coordinate(corner.lat, corner.lng + 300.01 / 111_194.93)
    arrows = plan(north + [east_end])

    assert len(arrows) == 4
    for arrow in arrows:
        expected = 0 if arrow.distance < 300 else 90
        assert arrow.bearing == pytest.approx(expected, abs=0.01)


def test_plan_is_deterministic():
    route = meridian_route(220, 180, 330)
    assert plan(route) == plan(route)


def test_planner_overrides():
    planner = ArrowPlanner(base_spacing=100, min_count=1, max_count=5, first_offset_fraction=0.5)
    arrows = planner.plan(meridian_route(300.001))
    assert [a.distance for a in arrows] == pytest.approx([50, 150, 250], abs=0.01)


def test_arrow_svg_is_rotated():
    svg = arrow_svg(90)
    assert svg.startswith("<svg")
    assert "rotate(90 11.0 11.0)" in svg


def test_icon_cache_keeps_at_most_36_icons():
    rendered = []

    def render(bearing):
        rendered.append(bearing)
        return f"icon-{bearing}"

    cache = ArrowIconCache(render=render, bucket=10)
    for i in range(1000):
        cache.get(i * 0.73 % 360)

    assert len(cache) <= 36
    assert sorted(rendered) == sorted(set(rendered))
    assert cache.hits + cache.misses == 1000
    assert cache.misses == len(cache)


def test_icon_cache_shares_icons_within_a_bucket():
    cache = ArrowIconCache()
    assert cache.get(91) is cache.get(89)
    assert cache.get(359) is cache.get(1)
    assert len(cache) == 2
