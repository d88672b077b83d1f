"""Scenic Walk - Group walks with a shared route and the organizer's live position."""

from .config import CONFIG
from .models import (
    ArrowPlacement,
    ArrowSummary,
    BroadcastMode,
    Coordinate,
    EventStatus,
    Freshness,
    LocationSample,
    PermissionKind,
    SavedEvent,
    SessionState,
    WalkEvent,
)
from .errors import (
    EventNotFound,
    InvalidCredential,
    InvalidEvent,
    InvalidRoute,
    LocationUnavailable,
    PermissionDenied,
    PublishFailed,
    ScenicWalkError,
    StoreError,
)
from .logger import Logger
from .geo import (
    haversine_distance,
    bearing_between,
    bearing_to_compass,
    distance_meters,
    bearing_degrees,
    quantize_bearing,
)
from .route import RouteProfile, total_length, validate_route
from .arrows import ArrowIconCache, ArrowPlanner, arrow_svg, plan
from .freshness import describe, freshness, is_stale, now_ms
from .permissions import GateResult, PermissionGate, StaticPermissionSource, TermuxPermissionSource
from .store import FirebaseStore, MemoryStore, Subscription, event_path, location_path
from .events import EventService
from .location import FixedLocation, LocationPlayback, LocationRecorder, PositionStream, TermuxLocation
from .session import BroadcastSession, InlinePublisher, LatestPublisher
from .storage import LocalStore
from .background import BackgroundBroadcaster, BroadcastController
from .map_view import create_event_map, create_map
from .live_map import LiveMapServer, MapClickLocation
from .__main__ import main

__all__ = [
    "CONFIG",
    "ArrowPlacement",
    "ArrowSummary",
    "BroadcastMode",
    "Coordinate",
    "EventStatus",
    "Freshness",
    "LocationSample",
    "PermissionKind",
    "SavedEvent",
    "SessionState",
    "WalkEvent",
    "EventNotFound",
    "InvalidCredential",
    "InvalidEvent",
    "InvalidRoute",
    "LocationUnavailable",
    "PermissionDenied",
    "PublishFailed",
    "ScenicWalkError",
    "StoreError",
    "Logger",
    "haversine_distance",
    "bearing_between",
    "bearing_to_compass",
    "distance_meters",
    "bearing_degrees",
    "quantize_bearing",
    "RouteProfile",
    "total_length",
    "validate_route",
    "ArrowIconCache",
    "ArrowPlanner",
    "arrow_svg",
    "plan",
    "describe",
    "freshness",
    "is_stale",
    "now_ms",
    "GateResult",
    "PermissionGate",
    "StaticPermissionSource",
    "TermuxPermissionSource",
    "FirebaseStore",
    "MemoryStore",
    "Subscription",
    "event_path",
    "location_path",
    "EventService",
    "FixedLocation",
    "LocationPlayback",
    "LocationRecorder",
    "PositionStream",
    "TermuxLocation",
    "BroadcastSession",
    "InlinePublisher",
    "LatestPublisher",
    "LocalStore",
    "BackgroundBroadcaster",
    "BroadcastController",
    "create_event_map",
    "create_map",
    "LiveMapServer",
    "MapClickLocation",
    "main",
]
