"""Central error types used across the application."""

from __future__ import annotations

from .models import PermissionKind


class ScenicWalkError(RuntimeError):
    """Base error for Scenic Walk failures."""


class PermissionDenied(ScenicWalkError):
    """Raised when a platform permission needed for broadcasting is missing."""

    def __init__(self, kind: PermissionKind, message: str = ""):
        self.kind = kind
        super().__init__(message or f"Permission denied: {kind.value}")


class LocationUnavailable(ScenicWalkError):
    """Raised when the platform could not produce a position fix."""


class StoreError(ScenicWalkError):
    """Raised when a read, delete, or subscription against the store fails."""


class PublishFailed(StoreError):
    """Raised when a location write to the store did not complete."""


class InvalidCredential(ScenicWalkError):
    """Raised when an entered organizer PIN does not match the stored PIN."""


class EventNotFound(ScenicWalkError):
    """Raised when no walk event exists for the requested id."""

    def __init__(self, event_id: str):
        self.event_id = event_id
        super().__init__(f"Event not found: {event_id}")


class InvalidRoute(ScenicWalkError):
    """Raised when a route cannot be used for an event."""


class InvalidEvent(ScenicWalkError):
    """Raised when event details fail validation at creation time."""


__all__ = [
    "ScenicWalkError",
    "PermissionDenied",
    "LocationUnavailable",
    "StoreError",
    "PublishFailed",
    "InvalidCredential",
    "EventNotFound",
    "InvalidRoute",
    "InvalidEvent",
]
