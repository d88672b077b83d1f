"""Background broadcast worker and its foreground controller.

The worker owns the BroadcastSession and runs on its own thread. The two
sides share nothing but two queues: commands go in ("start" with an event
id and name, "stop", "publish", "status", "shutdown") and updates come out as
``{"type": ..., "data": ...}`` dicts ("location", "state", "error").
"""

import queue
import threading
from typing import Callable, Optional

from .errors import ScenicWalkError
from .events import EventService
from .logger import Logger
from .models import LocationSample, SessionState
from .permissions import PermissionGate
from .session import BroadcastSession
from .storage import LocalStore
from .store import Store


class BackgroundBroadcaster:
    """Worker context that keeps broadcasting while the foreground is away"""

    def __init__(self, events: EventService, store: Store, source, gate: PermissionGate,
                 local: LocalStore, logger: Optional[Logger] = None,
                 session_factory: Callable[..., BroadcastSession] = BroadcastSession):
        self.events = events
        self.store = store
        self.source = source
        self.gate = gate
        self.local = local
        self.logger = logger or Logger()
        self.session_factory = session_factory
        self.commands: queue.Queue = queue.Queue()
        self.updates: queue.Queue = queue.Queue()
        self._thread: Optional[threading.Thread] = None
        # Only touched from the worker thread
        self._session: Optional[BroadcastSession] = None

    # --- foreground-facing API (message passing only) -------------------

    def start_service(self, event_id: str, event_name: str):
        self.local.set_broadcasting_event(event_id, event_name)
        if self._thread is None or not self._thread.is_alive():
            self._thread = threading.Thread(target=self._run, daemon=True)
            self._thread.start()
        self.commands.put(("start", {"event_id": event_id, "event_name": event_name}))

    def stop_service(self, wait: bool = True, timeout: Optional[float] = None):
        self.local.set_broadcasting_event(None)
        if self._thread is None or not self._thread.is_alive():
            return
        done = threading.Event()
        self.commands.put(("stop", done))
        if wait:
            done.wait(timeout)

    def publish_once(self):
        """Ask the worker for one manual publish"""
        self.commands.put(("publish", None))

    def is_running(self, event_id: Optional[str] = None, timeout: float = 2.0) -> bool:
        """Ask the worker whether it is actively broadcasting (for event_id, if given)"""
        if self._thread is None or not self._thread.is_alive():
            return False
        reply: queue.Queue = queue.Queue()
        self.commands.put(("status", reply))
        try:
            status = reply.get(timeout=timeout)
        except queue.Empty:
            return False
        if status["state"] != SessionState.ACTIVE.value:
            return False
        return event_id is None or status["event_id"] == event_id

    def shutdown(self, timeout: Optional[float] = None):
        if self._thread is None:
            return
        self.commands.put(("shutdown", None))
        self._thread.join(timeout)

    # --- worker context -------------------------------------------------

    def _post(self, msg_type: str, data: dict):
        self.updates.put({"type": msg_type, "data": data})

    def _run(self):
        while True:
            command, payload = self.commands.get()
            try:
                if self._dispatch(command, payload):
                    return
            except Exception as e:
                # One failed command must not take the worker down with it
                self.logger.log("Background command failed", {"command": command, "error": repr(e)})
                self._post("error", {"kind": type(e).__name__, "message": str(e)})

    def _dispatch(self, command: str, payload) -> bool:
        """Handle one command; True means the worker should exit"""
        if command == "start":
            self._handle_start(payload)
        elif command == "stop":
            try:
                self._handle_stop()
            finally:
                payload.set()
        elif command == "status":
            payload.put(self._status())
        elif command == "publish":
            self._handle_publish()
        elif command == "shutdown":
            self._handle_stop()
            return True
        else:
            self.logger.log("Unknown background command", {"command": command})
        return False

    def _status(self) -> dict:
        if self._session is None:
            return {"state": SessionState.IDLE.value, "event_id": None}
        return self._session.get_status()

    def _handle_start(self, payload: dict):
        event_id = payload.get("event_id")
        event_name = payload.get("event_name")
        if event_id is None:
            marker = self.local.get_broadcasting_event()
            if marker:
                event_id, event_name = marker
        if event_id is None:
            return
        self.logger.log("Background start", {"event_id": event_id, "event_name": event_name})

        if self._session is not None:
            if self._session.event_id == event_id and self._session.state is SessionState.ACTIVE:
                return
            self._session.stop()

        try:
            event = self.events.get_event(event_id)
        except ScenicWalkError as e:
            self._start_failed(event_id, e)
            return

        session = self.session_factory(
            event, self.store, self.source, self.gate, logger=self.logger,
            on_publish=self._on_publish,
            on_error=self._on_error,
            on_state=lambda state: self._post("state", {"event_id": event_id, "state": state.value}),
        )
        self._session = session
        try:
            session.start()
        except ScenicWalkError as e:
            self._start_failed(event_id, e)
            return
        session.follow_event(self.events)

    def _start_failed(self, event_id: str, error: ScenicWalkError):
        self.local.set_broadcasting_event(None)
        self._on_error(error)
        self._post("state", {"event_id": event_id, "state": SessionState.IDLE.value})

    def _handle_publish(self):
        if self._session is None or self._session.state is not SessionState.ACTIVE:
            self._post("error", {"kind": "ScenicWalkError", "message": "Not broadcasting"})
            return
        try:
            self._session.publish_once()
        except ScenicWalkError as e:
            self._on_error(e)

    def _handle_stop(self):
        if self._session is not None:
            self.logger.log("Background stop", {"event_id": self._session.event_id})
            self._session.stop()

    def _on_publish(self, sample: LocationSample):
        self._post("location", sample.to_dict())

    def _on_error(self, error: ScenicWalkError):
        data = {"kind": type(error).__name__, "message": str(error)}
        kind = getattr(error, "kind", None)
        if kind is not None:
            data["permission"] = kind.value
        self._post("error", data)


class BroadcastController:
    """Foreground view of the broadcast.

    ``is_broadcasting`` is an optimistic cache; ``resume`` replaces it with
    the worker's actual state and clears a marker left behind by a worker
    that is no longer running.
    """

    def __init__(self, broadcaster: BackgroundBroadcaster, local: LocalStore,
                 logger: Optional[Logger] = None):
        self.broadcaster = broadcaster
        self.local = local
        self.logger = logger or Logger()
        self.is_broadcasting = False
        self.last_sample: Optional[LocationSample] = None
        self.last_error: Optional[dict] = None

    def start(self, event_id: str, event_name: str):
        self.broadcaster.start_service(event_id, event_name)
        self.is_broadcasting = True

    def stop(self):
        self.broadcaster.stop_service()
        self.is_broadcasting = False

    def publish_once(self):
        self.broadcaster.publish_once()

    def resume(self) -> bool:
        marker = self.local.get_broadcasting_event()
        event_id = marker[0] if marker else None
        running = self.broadcaster.is_running(event_id)
        if marker and not running:
            self.logger.log("Clearing stale broadcasting marker", {"event_id": event_id})
            self.local.set_broadcasting_event(None)
        self.is_broadcasting = running
        return running

    def poll_updates(self) -> list[dict]:
        """Drain pending updates from the worker and apply them"""
        updates = []
        while True:
            try:
                update = self.broadcaster.updates.get_nowait()
            except queue.Empty:
                break
            updates.append(update)
            if update["type"] == "location":
                self.last_sample = LocationSample.from_dict(update["data"])
            elif update["type"] == "error":
                self.last_error = update["data"]
            elif update["type"] == "state":
                self.is_broadcasting = update["data"]["state"] == SessionState.ACTIVE.value
        return updates
