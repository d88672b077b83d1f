"""Direction arrow placement along a route."""

from __future__ import annotations

import math
from typing import Callable, Optional, Sequence

from .config import CONFIG
from .geo import quantize_bearing
from .models import ArrowPlacement, ArrowSummary, Coordinate
from .route import RouteProfile


class ArrowPlanner:
    """Spacing policy that turns a route into arrow placements.

    Both the explicit placement list and the percentage summary come from the
    same count/spacing computation, so arrow density matches whichever
    rendering primitive a surface uses.
    """

    def __init__(self, base_spacing: Optional[float] = None,
                 min_count: Optional[int] = None, max_count: Optional[int] = None,
                 first_offset_fraction: Optional[float] = None,
                 min_route_length: Optional[float] = None):
        self.base_spacing = base_spacing if base_spacing is not None else CONFIG["arrow_base_spacing"]
        self.min_count = min_count if min_count is not None else CONFIG["arrow_min_count"]
        self.max_count = max_count if max_count is not None else CONFIG["arrow_max_count"]
        self.first_offset_fraction = (first_offset_fraction if first_offset_fraction is not None
                                      else CONFIG["arrow_first_offset_fraction"])
        self.min_route_length = (min_route_length if min_route_length is not None
                                 else CONFIG["arrow_min_route_length"])

    def arrow_count(self, length: float) -> int:
        """Number of arrows for a route of this length (0 below the minimum length)"""
        if not length >= self.min_route_length:
            return 0
        count = math.floor(length / self.base_spacing)
        return max(self.min_count, min(self.max_count, count))

    def summary(self, route: Sequence[Coordinate]) -> Optional[ArrowSummary]:
        """Canonical count/spacing for a route, or None if it gets no arrows"""
        length = RouteProfile(route).total_length()
        return self._summary_for_length(length)

    def _summary_for_length(self, length: float) -> Optional[ArrowSummary]:
        count = self.arrow_count(length)
        if count == 0:
            return None
        spacing = length / count
        repeat_percent = 100 / count
        return ArrowSummary(
            count=count,
            spacing=spacing,
            first_offset=spacing * self.first_offset_fraction,
            repeat_percent=repeat_percent,
            offset_percent=repeat_percent * self.first_offset_fraction,
        )

    def plan(self, route: Sequence[Coordinate]) -> list[ArrowPlacement]:
        profile = RouteProfile(route)
        length = profile.total_length()
        summary = self._summary_for_length(length)
        if summary is None:
            return []

        arrows = []
        for i in range(summary.count):
            d = summary.first_offset + i * summary.spacing
            if d >= length:
                break
            arrows.append(ArrowPlacement(
                position=profile.point_at_distance(d),
                bearing=profile.bearing_at_distance(d),
                distance=d,
            ))
        return arrows


def plan(route: Sequence[Coordinate]) -> list[ArrowPlacement]:
    """Plan arrows with the configured policy"""
    return ArrowPlanner().plan(route)


def arrow_svg(bearing: int, size: int = 22, color: str = "#16a34a") -> str:
    """Inline SVG of an arrow pointing along the given bearing"""
    half = size / 2
    return (
        f'<svg xmlns="http://www.w3.org/2000/svg" width="{size}" height="{size}" '
        f'viewBox="0 0 {size} {size}">'
        f'<g transform="rotate({bearing} {half} {half})">'
        f'<path d="M {half} 2 L {size - 4} {size - 3} L {half} {size - 7} L 4 {size - 3} Z" '
        f'fill="{color}" stroke="white" stroke-width="1.5"/>'
        f'</g></svg>'
    )


class ArrowIconCache:
    """Memoizes rendered arrow icons per quantized bearing.

    Keys are ``quantize_bearing(bearing, bucket)``, so a 10 degree bucket
    never holds more than 36 icons no matter how many arrows are drawn.
    """

    def __init__(self, render: Callable[[int], str] = arrow_svg, bucket: Optional[float] = None):
        self.render = render
        self.bucket = bucket if bucket is not None else CONFIG["arrow_icon_bucket_degrees"]
        self._icons: dict[int, str] = {}
        self.hits = 0
        self.misses = 0

    def get(self, bearing: float) -> str:
        key = quantize_bearing(bearing, self.bucket)
        icon = self._icons.get(key)
        if icon is None:
            self.misses += 1
            icon = self.render(key)
            self._icons[key] = icon
        else:
            self.hits += 1
        return icon

    def __len__(self) -> int:
        return len(self._icons)
