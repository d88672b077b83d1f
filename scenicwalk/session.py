"""Organizer broadcast session: publishes the organizer's live position."""

from __future__ import annotations

import threading
import time
from dataclasses import replace
from typing import Callable, Optional

from .config import CONFIG
from .errors import (
    LocationUnavailable, PublishFailed, ScenicWalkError, StoreError,
)
from .freshness import now_ms
from .location import PositionStream
from .logger import Logger
from .models import BroadcastMode, EventStatus, LocationSample, SessionState, WalkEvent
from .permissions import PermissionGate
from .store import Store, Subscription, location_path


class InlinePublisher:
    """Runs store writes on the caller's thread"""

    def submit(self, task: Callable[[], None]):
        task()

    def run_last(self, task: Callable[[], None]):
        task()

    def cancel_pending(self):
        pass


class LatestPublisher:
    """Runs store writes on one worker thread, newest pending write wins.

    A write submitted while another is still waiting replaces it, so a slow
    or hung write is superseded by the next one rather than queued behind.
    Writes that do run, run in submission order.
    """

    def __init__(self, logger: Optional[Logger] = None):
        self.logger = logger or Logger()
        self._cond = threading.Condition()
        self._pending: Optional[Callable[[], None]] = None
        self._thread: Optional[threading.Thread] = None
        self._closed = False

    def submit(self, task: Callable[[], None]):
        with self._cond:
            if self._closed:
                return
            self._pending = task
            if self._thread is None or not self._thread.is_alive():
                self._thread = threading.Thread(target=self._run, daemon=True)
                self._thread.start()
            self._cond.notify()

    def cancel_pending(self):
        with self._cond:
            self._pending = None

    def run_last(self, task: Callable[[], None]):
        """Run task after any in-flight write, then shut the worker down.

        Blocks until the task has run.
        """
        done = threading.Event()

        def final():
            try:
                task()
            finally:
                done.set()

        with self._cond:
            if self._thread is None or not self._thread.is_alive():
                self._closed = True
                self._pending = None
                run_here = True
            else:
                self._pending = final
                self._closed = True
                self._cond.notify()
                run_here = False
        if run_here:
            final()
        done.wait()

    def _run(self):
        while True:
            with self._cond:
                while self._pending is None:
                    if self._closed:
                        return
                    self._cond.wait()
                task = self._pending
                self._pending = None
            try:
                task()
            except Exception as e:
                # Keep the worker alive; the next write replaces this one
                self.logger.log("Write task failed", {"error": repr(e)})


class BroadcastSession:
    """Idle -> Active -> Stopped lifecycle for one organizer device.

    Starting requires the permission gate to pass, then publishes one fix
    straight away. Continuous mode then publishes from the position stream no
    more often than ``min_interval`` seconds apart (monotonic clock); manual
    mode publishes only on ``publish_once``. Stopping deletes the published
    position so participants see no position rather than an old one. A stopped
    session cannot be restarted; make a new one.
    """

    def __init__(self, event: WalkEvent, store: Store, source, gate: PermissionGate,
                 logger: Optional[Logger] = None,
                 min_interval: Optional[float] = None,
                 grace_period: Optional[float] = None,
                 poll_interval: Optional[float] = None,
                 clock: Callable[[], float] = time.monotonic,
                 wall_clock: Callable[[], int] = now_ms,
                 publisher=None,
                 stream_factory: Optional[Callable[..., PositionStream]] = None,
                 on_publish: Optional[Callable[[LocationSample], None]] = None,
                 on_error: Optional[Callable[[ScenicWalkError], None]] = None,
                 on_state: Optional[Callable[[SessionState], None]] = None):
        self.event = event
        self.event_id = event.id
        self.mode = event.broadcast_mode
        self.store = store
        self.source = source
        self.gate = gate
        self.logger = logger or Logger()
        self.min_interval = min_interval if min_interval is not None else CONFIG["publish_min_interval"]
        self.grace_period = grace_period if grace_period is not None else CONFIG["location_grace_period"]
        self.poll_interval = poll_interval
        self.clock = clock
        self.wall_clock = wall_clock
        self.publisher = publisher or LatestPublisher(self.logger)
        self.stream_factory = stream_factory or PositionStream
        self.on_publish = on_publish
        self.on_error = on_error
        self.on_state = on_state

        self.state = SessionState.IDLE
        self.last_published_at: Optional[float] = None  # monotonic, when last accepted
        self.last_sample: Optional[LocationSample] = None
        self.publish_count = 0
        self.failure_count = 0
        self.stream: Optional[PositionStream] = None
        self._last_fix_at: Optional[float] = None
        self._unavailable_reported = False
        self._event_subscription: Optional[Subscription] = None
        self._lock = threading.RLock()

    # --- lifecycle ------------------------------------------------------

    def _set_state(self, state: SessionState):
        self.state = state
        self.logger.log("Session state", {"event_id": self.event_id, "state": state.value,
                                          "mode": self.mode.value})
        if self.on_state:
            self.on_state(state)

    def start(self):
        """Idle -> Active. Raises PermissionDenied (staying Idle) if the gate fails"""
        with self._lock:
            if self.state is SessionState.ACTIVE:
                return
            if self.state is SessionState.STOPPED:
                raise ScenicWalkError("Session already stopped; start a new session")

            result = self.gate.check()
            if not result.granted:
                self.logger.log("Permission missing", {"event_id": self.event_id,
                                                       "permission": result.missing.value})
                result.raise_for_denied()

            self._set_state(SessionState.ACTIVE)
            self._last_fix_at = self.clock()

        # Low-latency first fix, in either mode
        fix = self.source.get_location(CONFIG["gps_timeout"])
        if fix:
            self._accept_fix(fix, force=True)
        else:
            self._fix_failed()

        if self.mode is BroadcastMode.CONTINUOUS:
            self._start_stream()
        elif self.mode is BroadcastMode.MANUAL:
            pass
        else:
            raise ValueError(f"Unhandled broadcast mode: {self.mode}")

    def _start_stream(self):
        kwargs = {"logger": self.logger}
        if self.poll_interval is not None:
            kwargs["poll_interval"] = self.poll_interval
        self.stream = self.stream_factory(self.source, self.on_position, self._fix_failed, **kwargs)
        self.stream.start()

    def stop(self):
        """Active -> Stopped, deleting the published position. Idempotent"""
        with self._lock:
            if self.state is SessionState.STOPPED:
                return
            was_active = self.state is SessionState.ACTIVE
            self._set_state(SessionState.STOPPED)
            if self.stream:
                self.stream.stop()
                self.stream = None
            if self._event_subscription:
                self._event_subscription.cancel()
                self._event_subscription = None

        self.publisher.cancel_pending()
        if was_active:
            self.publisher.run_last(self._clear)
        else:
            self.publisher.run_last(lambda: None)

    def follow_event(self, events):
        """Stop automatically when the event is ended or deleted"""
        def on_event(event: Optional[WalkEvent]):
            if event is None or event.status is EventStatus.ENDED:
                if self.state is SessionState.ACTIVE:
                    self.logger.log("Event no longer active, stopping", {"event_id": self.event_id})
                    self.stop()

        subscription = events.subscribe_event(self.event_id, on_event)
        if self.state is SessionState.STOPPED:
            subscription.cancel()
        else:
            self._event_subscription = subscription

    # --- publishing -----------------------------------------------------

    def on_position(self, fix: LocationSample):
        """Position stream callback; throttled to one publish per min_interval"""
        self._accept_fix(fix, force=False)

    def publish_once(self) -> LocationSample:
        """One publish for an explicit user action"""
        if self.state is not SessionState.ACTIVE:
            raise ScenicWalkError(f"Cannot publish while session is {self.state.value}")
        fix = self.source.get_location(CONFIG["gps_timeout"])
        if not fix:
            raise LocationUnavailable("Could not get location")
        return self._accept_fix(fix, force=True)

    def _accept_fix(self, fix: LocationSample, force: bool) -> Optional[LocationSample]:
        with self._lock:
            if self.state is not SessionState.ACTIVE:
                return None
            now = self.clock()
            self._last_fix_at = now
            self._unavailable_reported = False
            if not force and self.last_published_at is not None:
                if now - self.last_published_at < self.min_interval:
                    return None
            self.last_published_at = now
            sample = replace(fix, timestamp=self.wall_clock())
        self.publisher.submit(lambda: self._publish(sample))
        return sample

    def _publish(self, sample: LocationSample):
        if self.state is not SessionState.ACTIVE:
            return
        try:
            self.store.set(location_path(self.event_id), sample.to_dict())
        except StoreError as e:
            self.failure_count += 1
            self.logger.log("Publish failed", {"event_id": self.event_id, "error": str(e)})
            self._report(PublishFailed(str(e)))
            return
        self.publish_count += 1
        self.last_sample = sample
        self.logger.log("Published location", {
            "event_id": self.event_id, "lat": sample.lat, "lng": sample.lng,
            "accuracy": sample.accuracy, "mode": self.mode.value,
        })
        if self.on_publish:
            self.on_publish(sample)

    def _clear(self):
        try:
            self.store.delete(location_path(self.event_id))
            self.logger.log("Cleared location", {"event_id": self.event_id})
        except StoreError as e:
            self.failure_count += 1
            self.logger.log("Clear failed", {"event_id": self.event_id, "error": str(e)})
            self._report(PublishFailed(f"Could not clear location: {e}"))

    # --- errors ---------------------------------------------------------

    def _fix_failed(self):
        with self._lock:
            if self.state is not SessionState.ACTIVE or self._unavailable_reported:
                return
            if self._last_fix_at is None or self.clock() - self._last_fix_at < self.grace_period:
                return
            self._unavailable_reported = True
        self.logger.log("Location unavailable", {"event_id": self.event_id,
                                                 "grace_period": self.grace_period})
        self._report(LocationUnavailable(
            f"No location fix for {self.grace_period:.0f}s"
        ))

    def _report(self, error: ScenicWalkError):
        if self.on_error:
            self.on_error(error)

    def get_status(self) -> dict:
        return {
            "event_id": self.event_id,
            "state": self.state.value,
            "mode": self.mode.value,
            "publish_count": self.publish_count,
            "failure_count": self.failure_count,
            "last_sample": self.last_sample.to_dict() if self.last_sample else None,
        }
