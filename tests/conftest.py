"""Shared pytest fixtures: in-memory store, fake clock and location sources."""
from __future__ import annotations

import math
import os
import sys

import pytest

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from scenicwalk.events import EventService
from scenicwalk.geo import EARTH_RADIUS
from scenicwalk.logger import Logger
from scenicwalk.models import BroadcastMode, Coordinate, LocationSample
from scenicwalk.permissions import PermissionGate, StaticPermissionSource
from scenicwalk.session import BroadcastSession, InlinePublisher
from scenicwalk.store import MemoryStore

METERS_PER_DEGREE = EARTH_RADIUS * math.pi / 180


# --- Factory helpers -------------------------------------------------
def meridian_route(*segments_m: float, lat: float = 0.0, lng: float = 0.0) -> list[Coordinate]:
    """Route heading due north from (lat, lng) with the given segment lengths"""
    route = [Coordinate(lat, lng)]
    for length in segments_m:
        lat += length / METERS_PER_DEGREE
        route.append(Coordinate(lat, lng))
    return route


def equator_route(*segments_m: float, lng: float = 0.0) -> list[Coordinate]:
    """Route heading due east along the equator"""
    route = [Coordinate(0.0, lng)]
    for length in segments_m:
        lng += length / METERS_PER_DEGREE
        route.append(Coordinate(0.0, lng))
    return route


class FakeClock:
    """Monotonic clock the test moves by hand"""

    def __init__(self, start: float = 0.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakeSource:
    """Location source returning queued fixes, then repeating the last answer"""

    def __init__(self, *fixes):
        self.fixes = list(fixes) or [LocationSample(51.5, -0.12, 0, accuracy=5.0)]
        self.calls = 0

    def get_location(self, timeout: int = 30):
        self.calls += 1
        if len(self.fixes) > 1:
            return self.fixes.pop(0)
        return self.fixes[0]

    def get_status(self) -> str:
        return "fake"


class FakeStream:
    """Stand-in for PositionStream; tests push fixes through session.on_position"""

    def __init__(self, source, on_fix, on_failure=None, **kwargs):
        self.source = source
        self.on_fix = on_fix
        self.on_failure = on_failure
        self.started = False
        self.stopped = False

    def start(self):
        self.started = True

    def stop(self):
        self.stopped = True


# --- Fixtures --------------------------------------------------------
@pytest.fixture
def logger():
    return Logger(echo=False)


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def events(store, logger):
    return EventService(store, logger)


@pytest.fixture
def walk_route():
    return meridian_route(300, 300)


@pytest.fixture
def event(events, walk_route):
    return events.create_event("Harbour loop", "1234", walk_route)


@pytest.fixture
def manual_event(events, walk_route):
    return events.create_event("Quiet walk", "4321", walk_route, BroadcastMode.MANUAL)


@pytest.fixture
def make_session(store, clock, logger):
    """Build a BroadcastSession that runs writes inline and never starts threads"""

    def factory(event, source=None, denied=None, store=store, **kwargs):
        gate = PermissionGate(StaticPermissionSource(denied=denied))
        kwargs.setdefault("publisher", InlinePublisher())
        kwargs.setdefault("stream_factory", FakeStream)
        kwargs.setdefault("wall_clock", lambda: 1_700_000_000_000)
        return BroadcastSession(
            event, store, source or FakeSource(), gate,
            logger=logger, clock=clock, **kwargs
        )

    return factory
