"""Cumulative-distance profile of a walking route."""

from __future__ import annotations

from bisect import bisect_right
from typing import Sequence

from .errors import InvalidRoute
from .geo import distance_meters, bearing_degrees
from .models import Coordinate


def validate_route(route: Sequence[Coordinate]) -> None:
    """Raise InvalidRoute unless the route can be stored as an event route"""
    if len(route) < 2:
        raise InvalidRoute("A route needs at least 2 points")
    for i, point in enumerate(route):
        if not point.is_valid():
            raise InvalidRoute(f"Point {i} is out of range: ({point.lat}, {point.lng})")


class RouteProfile:
    """Distance table over a route for point and bearing lookups.

    ``cumulative[i]`` is the walking distance from the first point to point ``i``.
    Positions between points are interpolated linearly in lat/lng, which is
    close enough for the short tap-drawn segments routes are made of.
    """

    def __init__(self, route: Sequence[Coordinate]):
        self.points: list[Coordinate] = list(route)
        self.cumulative: list[float] = [0.0] if self.points else []
        for i in range(len(self.points) - 1):
            step = distance_meters(self.points[i], self.points[i + 1])
            self.cumulative.append(self.cumulative[-1] + step)

    def total_length(self) -> float:
        if len(self.points) < 2:
            return 0.0
        return self.cumulative[-1]

    def _segment_index(self, d: float) -> int:
        """Index i of the segment [i, i+1] whose cumulative range contains d"""
        i = bisect_right(self.cumulative, d) - 1
        return max(0, min(i, len(self.points) - 2))

    def point_at_distance(self, d: float) -> Coordinate:
        if not self.points:
            raise InvalidRoute("Empty route has no points")
        if len(self.points) == 1 or d <= 0:
            return self.points[0]
        if d >= self.total_length():
            return self.points[-1]

        i = self._segment_index(d)
        start, end = self.points[i], self.points[i + 1]
        seg_length = self.cumulative[i + 1] - self.cumulative[i]
        if seg_length == 0:
            return start
        t = (d - self.cumulative[i]) / seg_length
        return Coordinate(
            lat=start.lat + (end.lat - start.lat) * t,
            lng=start.lng + (end.lng - start.lng) * t,
        )

    def bearing_at_distance(self, d: float) -> float:
        """Bearing of the segment that contains d (not smoothed across vertices)"""
        if len(self.points) < 2:
            raise InvalidRoute("A route needs at least 2 points for a bearing")
        i = self._segment_index(d)
        return bearing_degrees(self.points[i], self.points[i + 1])


def total_length(route: Sequence[Coordinate]) -> float:
    return RouteProfile(route).total_length()
