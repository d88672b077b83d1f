import threading

import pytest

from conftest import FakeSource
from scenicwalk.errors import (
    LocationUnavailable, PermissionDenied, PublishFailed, ScenicWalkError, StoreError,
)
from scenicwalk.freshness import freshness
from scenicwalk.models import Freshness, LocationSample, PermissionKind, SessionState
from scenicwalk.session import LatestPublisher
from scenicwalk.store import MemoryStore


class FailingStore(MemoryStore):
    """Memory store whose location writes fail until ``fail`` is cleared"""

    def __init__(self):
        super().__init__()
        self.fail = True

    def set(self, path, value):
        if self.fail and path.startswith("locations/"):
            raise StoreError("network unreachable")
        super().set(path, value)


def fix(lat=51.5, lng=-0.12):
    return LocationSample(lat, lng, timestamp=0, accuracy=6.0)


def location_writes(store, event):
    return [value for path, value in store.writes if path == f"locations/{event.id}"]


def test_start_publishes_first_fix_immediately(make_session, store, event):
    session = make_session(event)
    session.start()

    assert session.state is SessionState.ACTIVE
    assert session.publish_count == 1
    record = store.get(f"locations/{event.id}")
    assert record == {"lat": 51.5, "lng": -0.12, "timestamp": 1_700_000_000_000, "accuracy": 5.0}
    assert session.stream.started


def test_continuous_mode_throttles_to_min_interval(make_session, store, clock, event):
    session = make_session(event)
    session.start()

    # A fix every 2 seconds for 12 seconds
    for _ in range(6):
        clock.advance(2)
        session.on_position(fix())

    assert session.publish_count == 2
    assert len(location_writes(store, event)) == 2


def test_throttle_uses_monotonic_clock_not_sample_time(make_session, clock, event):
    session = make_session(event)
    session.start()
    clock.advance(3)
    session.on_position(LocationSample(1, 1, timestamp=10**13))
    assert session.publish_count == 1


def test_start_is_idempotent_while_active(make_session, event):
    session = make_session(event)
    session.start()
    session.start()
    assert session.publish_count == 1


def test_permission_denied_keeps_session_idle(make_session, store, event):
    session = make_session(event, denied={PermissionKind.BACKGROUND_LOCATION})

    with pytest.raises(PermissionDenied) as excinfo:
        session.start()

    assert excinfo.value.kind is PermissionKind.BACKGROUND_LOCATION
    assert session.state is SessionState.IDLE
    assert session.stream is None
    assert location_writes(store, event) == []


def test_stop_clears_published_location(make_session, store, event):
    session = make_session(event)
    session.start()
    stream = session.stream
    session.stop()

    assert session.state is SessionState.STOPPED
    assert stream.stopped
    assert store.get(f"locations/{event.id}") is None
    assert location_writes(store, event)[-1] is None
    assert freshness(None, 0) is Freshness.WAITING


def test_stop_is_idempotent(make_session, store, event):
    session = make_session(event)
    session.start()
    session.stop()
    writes = len(store.writes)
    session.stop()
    assert len(store.writes) == writes


def test_stop_from_idle_writes_nothing(make_session, store, event):
    session = make_session(event)
    session.stop()
    assert session.state is SessionState.STOPPED
    assert location_writes(store, event) == []


def test_stopped_session_cannot_restart(make_session, event):
    session = make_session(event)
    session.start()
    session.stop()
    with pytest.raises(ScenicWalkError):
        session.start()


def test_no_publish_after_stop(make_session, store, clock, event):
    session = make_session(event)
    session.start()
    session.stop()
    clock.advance(60)
    session.on_position(fix())
    assert session.publish_count == 1
    assert store.get(f"locations/{event.id}") is None


def test_publish_failure_keeps_session_active(make_session, clock, event):
    failing = FailingStore()
    errors = []
    session = make_session(event, store=failing, on_error=errors.append)
    session.start()

    assert session.state is SessionState.ACTIVE
    assert session.failure_count == 1
    assert isinstance(errors[0], PublishFailed)

    failing.fail = False
    clock.advance(10)
    session.on_position(fix())
    assert session.publish_count == 1
    assert failing.get(f"locations/{event.id}")["lat"] == 51.5


def test_location_unavailable_reported_once_after_grace_period(make_session, clock, event):
    errors = []
    session = make_session(event, source=FakeSource(None), on_error=errors.append,
                           grace_period=30)
    session.start()
    assert session.state is SessionState.ACTIVE
    assert errors == []

    clock.advance(29)
    session._fix_failed()
    assert errors == []

    clock.advance(2)
    session._fix_failed()
    session._fix_failed()
    assert len(errors) == 1
    assert isinstance(errors[0], LocationUnavailable)

    # A fix resets the window
    session.on_position(fix())
    clock.advance(31)
    session._fix_failed()
    assert len(errors) == 2


def test_manual_mode_publishes_only_on_request(make_session, clock, manual_event):
    session = make_session(manual_event)
    session.start()
    assert session.stream is None
    assert session.publish_count == 1

    clock.advance(1)
    sample = session.publish_once()
    assert session.publish_count == 2
    assert sample.timestamp == 1_700_000_000_000


def test_publish_once_needs_active_session_and_fix(make_session, manual_event):
    session = make_session(manual_event, source=FakeSource(fix(), None))
    with pytest.raises(ScenicWalkError):
        session.publish_once()
    session.start()
    with pytest.raises(LocationUnavailable):
        session.publish_once()


def test_callbacks(make_session, event):
    published, states = [], []
    session = make_session(event, on_publish=published.append, on_state=states.append)
    session.start()
    session.stop()
    assert [s.lat for s in published] == [51.5]
    assert states == [SessionState.ACTIVE, SessionState.STOPPED]


def test_follow_event_stops_when_event_ends(make_session, events, store, event):
    session = make_session(event)
    session.start()
    session.follow_event(events)

    events.end_event(event.id)

    assert session.state is SessionState.STOPPED
    assert store.get(f"locations/{event.id}") is None


def test_follow_event_stops_when_event_deleted(make_session, events, event):
    session = make_session(event)
    session.start()
    session.follow_event(events)
    events.delete_event(event.id)
    assert session.state is SessionState.STOPPED


def test_get_status(make_session, event):
    session = make_session(event)
    session.start()
    status = session.get_status()
    assert status["event_id"] == event.id
    assert status["state"] == "active"
    assert status["mode"] == "continuous"
    assert status["publish_count"] == 1
    assert status["last_sample"]["lat"] == 51.5


# --- LatestPublisher -------------------------------------------------
def test_latest_publisher_supersedes_pending_writes():
    publisher = LatestPublisher()
    started, release, newer_done = threading.Event(), threading.Event(), threading.Event()
    order = []

    def slow():
        started.set()
        release.wait(5)
        order.append("slow")

    def newer():
        order.append("newer")
        newer_done.set()

    publisher.submit(slow)
    assert started.wait(5)
    publisher.submit(lambda: order.append("older"))
    publisher.submit(newer)
    release.set()
    assert newer_done.wait(5)
    publisher.run_last(lambda: order.append("clear"))

    assert order == ["slow", "newer", "clear"]


def test_latest_publisher_ignores_submits_after_close():
    publisher = LatestPublisher()
    order = []
    publisher.run_last(lambda: order.append("clear"))
    publisher.submit(lambda: order.append("late"))
    assert order == ["clear"]


def test_session_with_threaded_publisher_clears_last(make_session, store, event):
    session = make_session(event, publisher=LatestPublisher())
    session.start()
    session.stop()
    assert store.get(f"locations/{event.id}") is None
    assert location_writes(store, event)[-1] is None


def test_latest_publisher_survives_failing_write():
    publisher = LatestPublisher()
    ran = []
    failed, next_done = threading.Event(), threading.Event()

    def boom():
        failed.set()
        raise RuntimeError("listener blew up")

    def next_write():
        ran.append("next")
        next_done.set()

    publisher.submit(boom)
    assert failed.wait(5)
    publisher.submit(next_write)
    assert next_done.wait(5)
    assert ran == ["next"]
    publisher.run_last(lambda: None)


def test_failing_publish_callback_does_not_stop_later_publishes(make_session, store, clock, event):
    first, published = threading.Event(), threading.Event()
    calls = []

    def on_publish(sample):
        calls.append(sample)
        if len(calls) == 1:
            first.set()
            raise RuntimeError("listener blew up")
        published.set()

    session = make_session(event, publisher=LatestPublisher(), on_publish=on_publish)
    session.start()
    assert first.wait(5)
    clock.advance(11)
    session.on_position(fix(lat=51.6))

    assert published.wait(5)
    assert session.publish_count == 2
    assert store.get(f"locations/{event.id}")["lat"] == 51.6
    session.stop()
