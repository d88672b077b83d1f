"""Walk event operations over the real-time store."""

from __future__ import annotations

import time
import uuid
from typing import Callable, Optional, Sequence

from .config import CONFIG
from .errors import EventNotFound, InvalidCredential, InvalidEvent
from .logger import Logger
from .models import (
    BroadcastMode, Coordinate, EventStatus, LocationSample, WalkEvent,
)
from .route import validate_route
from .store import Store, Subscription, event_path, location_path


def new_event_id(length: Optional[int] = None) -> str:
    length = length or CONFIG["event_id_length"]
    return uuid.uuid4().hex[:length]


class EventService:
    """Create, look up and change walk events.

    An event is written once at creation; afterwards only its status changes.
    Ending or deleting an event also removes the organizer's last position.
    """

    def __init__(self, store: Store, logger: Optional[Logger] = None):
        self.store = store
        self.logger = logger or Logger()

    def create_event(self, name: str, pin: str, route: Sequence[Coordinate],
                     mode: BroadcastMode = BroadcastMode.CONTINUOUS) -> WalkEvent:
        name = (name or "").strip()
        if not name:
            raise InvalidEvent("Please enter an event name")
        if len(pin) != CONFIG["pin_length"]:
            raise InvalidEvent(f"Please enter a {CONFIG['pin_length']}-character PIN")
        validate_route(route)

        event = WalkEvent(
            id=new_event_id(),
            name=name,
            created_at=int(time.time() * 1000),
            organizer_pin=pin,
            route=list(route),
            status=EventStatus.ACTIVE,
            broadcast_mode=mode,
        )
        self.store.set(event_path(event.id), event.to_dict())
        self.logger.log("Event created", {
            "event_id": event.id, "name": event.name,
            "points": len(event.route), "mode": mode.value,
        })
        return event

    def get_event(self, event_id: str) -> WalkEvent:
        data = self.store.get(event_path(event_id))
        if not isinstance(data, dict):
            raise EventNotFound(event_id)
        return WalkEvent.from_dict(data, event_id=event_id)

    def verify_pin(self, event_id: str, pin: str) -> WalkEvent:
        """Return the event if the PIN matches.

        PINs are stored in plaintext and there is no attempt limit.
        """
        event = self.get_event(event_id)
        if event.organizer_pin != pin:
            self.logger.log("Incorrect PIN", {"event_id": event_id})
            raise InvalidCredential("Incorrect PIN")
        return event

    def set_status(self, event_id: str, status: EventStatus):
        self.get_event(event_id)
        self.store.set(f"{event_path(event_id)}/status", status.value)
        self.logger.log("Event status changed", {"event_id": event_id, "status": status.value})

    def end_event(self, event_id: str):
        self.set_status(event_id, EventStatus.ENDED)
        self.store.delete(location_path(event_id))

    def reactivate_event(self, event_id: str):
        self.set_status(event_id, EventStatus.ACTIVE)

    def delete_event(self, event_id: str):
        self.store.delete(event_path(event_id))
        self.store.delete(location_path(event_id))
        self.logger.log("Event deleted", {"event_id": event_id})

    def list_events(self, status: Optional[EventStatus] = None) -> list[WalkEvent]:
        """All events, newest first"""
        data = self.store.get("events")
        if not isinstance(data, dict):
            return []
        events = [
            WalkEvent.from_dict(value, event_id=key)
            for key, value in data.items() if isinstance(value, dict)
        ]
        if status is not None:
            events = [e for e in events if e.status is status]
        return sorted(events, key=lambda e: e.created_at, reverse=True)

    def get_location(self, event_id: str) -> Optional[LocationSample]:
        data = self.store.get(location_path(event_id))
        return LocationSample.from_dict(data) if isinstance(data, dict) else None

    def subscribe_event(self, event_id: str,
                        callback: Callable[[Optional[WalkEvent]], None]) -> Subscription:
        def on_value(data):
            callback(WalkEvent.from_dict(data, event_id=event_id) if isinstance(data, dict) else None)
        return self.store.subscribe(event_path(event_id), on_value)

    def subscribe_location(self, event_id: str,
                           callback: Callable[[Optional[LocationSample]], None]) -> Subscription:
        def on_value(data):
            callback(LocationSample.from_dict(data) if isinstance(data, dict) else None)
        return self.store.subscribe(location_path(event_id), on_value)
