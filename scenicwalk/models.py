"""Data classes for Scenic Walk."""

from dataclasses import dataclass, asdict, field
from enum import Enum
from typing import Optional


class EventStatus(Enum):
    ACTIVE = "active"
    ENDED = "ended"


class BroadcastMode(Enum):
    CONTINUOUS = "continuous"
    MANUAL = "manual"


class SessionState(Enum):
    IDLE = "idle"
    ACTIVE = "active"
    STOPPED = "stopped"


class Freshness(Enum):
    """What a participant should be shown for the organizer's position"""
    WAITING = "waiting"  # no sample at all: never broadcast, or stopped
    LIVE = "live"
    STALE = "stale"  # a sample exists but the broadcast was interrupted


class PermissionKind(Enum):
    LOCATION = "location"
    BACKGROUND_LOCATION = "backgroundLocation"
    NOTIFICATION = "notification"


@dataclass(frozen=True)
class Coordinate:
    lat: float
    lng: float

    def to_dict(self) -> dict:
        return {"lat": self.lat, "lng": self.lng}

    @classmethod
    def from_dict(cls, d: dict) -> "Coordinate":
        return cls(lat=float(d["lat"]), lng=float(d["lng"]))

    def is_valid(self) -> bool:
        return -90 <= self.lat <= 90 and -180 <= self.lng <= 180


@dataclass(frozen=True)
class ArrowPlacement:
    """One direction arrow: where it sits and which way it points"""
    position: Coordinate
    bearing: float  # degrees, [0, 360)
    distance: float  # meters along the route


@dataclass(frozen=True)
class ArrowSummary:
    """Percentage form of an arrow plan, for renderers that repeat a symbol along a path"""
    count: int
    spacing: float  # meters
    first_offset: float  # meters
    repeat_percent: float
    offset_percent: float

    def as_css(self) -> dict:
        return {
            "repeat": f"{self.repeat_percent:.1f}%",
            "offset": f"{self.offset_percent:.1f}%",
        }


@dataclass
class LocationSample:
    lat: float
    lng: float
    timestamp: int  # milliseconds since epoch
    accuracy: Optional[float] = None

    @property
    def coordinate(self) -> Coordinate:
        return Coordinate(self.lat, self.lng)

    def to_dict(self) -> dict:
        d = {"lat": self.lat, "lng": self.lng, "timestamp": self.timestamp}
        if self.accuracy is not None:
            d["accuracy"] = self.accuracy
        return d

    @classmethod
    def from_dict(cls, d: dict) -> "LocationSample":
        accuracy = d.get("accuracy")
        return cls(
            lat=float(d["lat"]),
            lng=float(d["lng"]),
            timestamp=int(d.get("timestamp") or 0),
            accuracy=float(accuracy) if accuracy is not None else None,
        )


@dataclass
class WalkEvent:
    id: str
    name: str
    created_at: int  # milliseconds since epoch
    organizer_pin: str
    route: list[Coordinate] = field(default_factory=list)
    status: EventStatus = EventStatus.ACTIVE
    broadcast_mode: BroadcastMode = BroadcastMode.CONTINUOUS

    @property
    def is_active(self) -> bool:
        return self.status is EventStatus.ACTIVE

    def to_dict(self) -> dict:
        """Store record shape (camelCase keys, shared with the web and mobile clients)"""
        return {
            "id": self.id,
            "name": self.name,
            "createdAt": self.created_at,
            "organizerPin": self.organizer_pin,
            "route": [p.to_dict() for p in self.route],
            "status": self.status.value,
            "broadcastMode": self.broadcast_mode.value,
        }

    @classmethod
    def from_dict(cls, d: dict, event_id: str = "") -> "WalkEvent":
        route = []
        raw_route = d.get("route") or []
        # The store returns sparse arrays as dicts keyed by index
        if isinstance(raw_route, dict):
            raw_route = [raw_route[k] for k in sorted(raw_route, key=int)]
        for point in raw_route:
            if isinstance(point, dict) and "lat" in point and "lng" in point:
                route.append(Coordinate.from_dict(point))
        return cls(
            id=d.get("id") or event_id,
            name=d.get("name") or "Unnamed Event",
            created_at=int(d.get("createdAt") or 0),
            organizer_pin=str(d.get("organizerPin") or ""),
            route=route,
            status=EventStatus(d.get("status") or "active"),
            broadcast_mode=BroadcastMode(d.get("broadcastMode") or "continuous"),
        )


@dataclass
class SavedEvent:
    """An event this device created or joined as organizer"""
    id: str
    name: str
    pin: str
    created_at: int

    def to_dict(self) -> dict:
        return asdict(self)
