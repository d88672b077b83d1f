"""Permission checks that must pass before broadcasting can start."""

import shutil
from dataclasses import dataclass
from typing import Optional, Protocol

from .config import CONFIG
from .errors import PermissionDenied
from .models import PermissionKind


MESSAGES = {
    PermissionKind.LOCATION: (
        "Location permission denied. Please grant permission to broadcast your location."
    ),
    PermissionKind.BACKGROUND_LOCATION: (
        "Background location permission required for continuous broadcasting."
    ),
    PermissionKind.NOTIFICATION: (
        "Notification permission required to show that your location is being broadcast."
    ),
}


class PermissionSource(Protocol):
    """Platform permission API"""

    def location_services_enabled(self) -> bool: ...

    def is_granted(self, kind: PermissionKind) -> bool: ...


@dataclass
class GateResult:
    granted: bool
    missing: Optional[PermissionKind] = None
    message: Optional[str] = None

    def raise_for_denied(self):
        if not self.granted:
            raise PermissionDenied(self.missing, self.message or "")


class PermissionGate:
    """Ordered permission checks; performs no state transition itself.

    Foreground location is confirmed before background location is asked
    about, and notification comes last.
    """

    def __init__(self, source: PermissionSource,
                 require_background: Optional[bool] = None,
                 require_notification: Optional[bool] = None):
        self.source = source
        self.require_background = (require_background if require_background is not None
                                   else CONFIG["require_background_permission"])
        self.require_notification = (require_notification if require_notification is not None
                                     else CONFIG["require_notification_permission"])

    def steps(self) -> list[PermissionKind]:
        steps = [PermissionKind.LOCATION]
        if self.require_background:
            steps.append(PermissionKind.BACKGROUND_LOCATION)
        if self.require_notification:
            steps.append(PermissionKind.NOTIFICATION)
        return steps

    def check(self) -> GateResult:
        if not self.source.location_services_enabled():
            return GateResult(
                granted=False,
                missing=PermissionKind.LOCATION,
                message="Location services are disabled. Please enable them in settings.",
            )
        for kind in self.steps():
            if not self.source.is_granted(kind):
                return GateResult(granted=False, missing=kind, message=MESSAGES[kind])
        return GateResult(granted=True)


class StaticPermissionSource:
    """Permission answers fixed up front (command line flags, tests)"""

    def __init__(self, services_enabled: bool = True, denied: Optional[set] = None):
        self.services_enabled = services_enabled
        self.denied = set(denied or ())
        self.queries: list[PermissionKind] = []

    def location_services_enabled(self) -> bool:
        return self.services_enabled

    def is_granted(self, kind: PermissionKind) -> bool:
        self.queries.append(kind)
        return kind not in self.denied


class TermuxPermissionSource:
    """Permission answers on Android via Termux:API.

    Termux grants location to the termux-location helper as a whole, so the
    best available signal is whether the helper binaries are installed.
    Background work runs under Termux's own wake lock, which needs the
    notification helper to show the ongoing indicator.
    """

    def location_services_enabled(self) -> bool:
        return shutil.which("termux-location") is not None

    def is_granted(self, kind: PermissionKind) -> bool:
        if kind is PermissionKind.LOCATION or kind is PermissionKind.BACKGROUND_LOCATION:
            return shutil.which("termux-location") is not None
        if kind is PermissionKind.NOTIFICATION:
            return shutil.which("termux-notification") is not None
        raise ValueError(f"Unknown permission kind: {kind}")
