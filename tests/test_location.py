import json
import subprocess
import threading

from conftest import FakeSource
from scenicwalk.location import (
    FixedLocation,
    LocationPlayback,
    LocationRecorder,
    PositionStream,
    TermuxLocation,
)
from scenicwalk.logger import Logger
from scenicwalk.models import LocationSample


def test_termux_location_parses_fix(monkeypatch):
    output = json.dumps({"latitude": 51.5, "longitude": -0.12, "accuracy": 8.4})
    monkeypatch.setattr(
        "scenicwalk.location.subprocess.run",
        lambda *a, **k: subprocess.CompletedProcess(a[0], 0, stdout=output, stderr=""),
    )
    gps = TermuxLocation()
    fix = gps.get_location()
    assert (fix.lat, fix.lng, fix.accuracy) == (51.5, -0.12, 8.4)
    assert fix.timestamp > 0
    assert gps.get_status() == "GPS OK, accuracy 8m"


def test_termux_location_counts_failures(monkeypatch):
    def timeout(*a, **k):
        raise subprocess.TimeoutExpired(a[0], 30)

    monkeypatch.setattr("scenicwalk.location.subprocess.run", timeout)
    gps = TermuxLocation()
    assert gps.get_location() is None
    assert gps.get_location() is None
    assert gps.consecutive_failures == 2
    assert "timeout" in gps.get_status()


def test_termux_location_missing_helper(monkeypatch):
    def missing(*a, **k):
        raise FileNotFoundError("termux-location")

    monkeypatch.setattr("scenicwalk.location.subprocess.run", missing)
    gps = TermuxLocation()
    assert gps.get_location() is None
    assert gps.last_error == "termux-location not installed"


def test_record_then_play_back(tmp_path):
    path = str(tmp_path / "trace.json")
    recorder = LocationRecorder(FixedLocation(48.85, 2.35, accuracy=3), path)
    recorder.get_location()
    recorder.get_location()
    recorder.save()

    playback = LocationPlayback(path, speed=10)
    first = playback.get_location()
    assert (first.lat, first.lng, first.accuracy) == (48.85, 2.35, 3)
    assert playback.get_location() is not None
    assert playback.is_finished()
    assert playback.get_location() is None


def test_playback_skips_failed_entries(tmp_path):
    path = tmp_path / "trace.json"
    path.write_text(json.dumps({"trace": [
        {"elapsed": 0, "location": None, "status": "no fix"},
        {"elapsed": 4, "location": {"lat": 1, "lng": 2, "timestamp": 5}, "status": "ok"},
    ]}))
    playback = LocationPlayback(str(path), speed=2)
    assert playback.get_location() is None
    assert playback.consecutive_failures == 1
    assert playback.get_poll_interval() == 2
    fix = playback.get_location()
    assert fix.lat == 1
    # Re-stamped to the playback time
    assert fix.timestamp > 5


def test_position_stream_delivers_fixes_until_stopped():
    fixes = []
    got_three = threading.Event()

    def on_fix(sample):
        fixes.append(sample)
        if len(fixes) >= 3:
            got_three.set()

    stream = PositionStream(FakeSource(), on_fix, poll_interval=0.01, logger=Logger(echo=False))
    stream.start()
    assert got_three.wait(5)
    stream.stop()
    assert not stream.running
    assert all(isinstance(f, LocationSample) for f in fixes)


def test_position_stream_reports_failures_and_ends_with_source(tmp_path):
    path = tmp_path / "trace.json"
    path.write_text(json.dumps({"trace": [
        {"elapsed": 0, "location": {"lat": 1, "lng": 2, "timestamp": 5}, "status": "ok"},
        {"elapsed": 0.1, "location": None, "status": "no fix"},
    ]}))
    fixes, failures = [], []
    stream = PositionStream(LocationPlayback(str(path), speed=100), fixes.append,
                            lambda: failures.append(1), logger=Logger(echo=False))
    stream.start()
    stream._thread.join(5)

    assert len(fixes) == 1
    assert len(failures) >= 1
