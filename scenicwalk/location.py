"""Location fix sources, recording/playback, and the polling position stream."""

import json
import subprocess
import threading
import time
from datetime import datetime
from typing import Callable, Optional

from .config import CONFIG
from .freshness import now_ms
from .logger import Logger
from .models import LocationSample


class TermuxLocation:
    """GPS access via Termux API"""

    def __init__(self, provider: str = "gps"):
        self.provider = provider
        self.last_location: Optional[LocationSample] = None
        self.consecutive_failures = 0
        self.last_error: Optional[str] = None

    def get_location(self, timeout: int = 30) -> Optional[LocationSample]:
        """Get current location using termux-location"""
        try:
            result = subprocess.run(
                ["termux-location", "-p", self.provider, "-r", "once"],
                capture_output=True,
                text=True,
                timeout=timeout
            )

            if result.returncode != 0:
                return self._failed(result.stderr.strip() if result.stderr else "unknown error")

            if not result.stdout or not result.stdout.strip():
                return self._failed("empty response")

            data = json.loads(result.stdout)
            location = LocationSample(
                lat=data["latitude"],
                lng=data["longitude"],
                accuracy=data.get("accuracy"),
                timestamp=now_ms()
            )
            self.last_location = location
            self.consecutive_failures = 0
            self.last_error = None
            return location

        except subprocess.TimeoutExpired:
            return self._failed("timeout")
        except (json.JSONDecodeError, KeyError) as e:
            return self._failed(f"bad response: {e}")
        except FileNotFoundError:
            return self._failed("termux-location not installed")

    def _failed(self, reason: str) -> None:
        self.consecutive_failures += 1
        self.last_error = reason
        return None

    def get_status(self) -> str:
        """Get GPS status string"""
        if self.consecutive_failures == 0:
            acc = f", accuracy {self.last_location.accuracy:.0f}m" if self.last_location and self.last_location.accuracy else ""
            return f"GPS OK{acc}"
        else:
            return f"GPS: {self.consecutive_failures} consecutive failures ({self.last_error})"


class FixedLocation:
    """Always reports the same position (testing without GPS)"""

    def __init__(self, lat: float, lng: float, accuracy: Optional[float] = None):
        self.lat = lat
        self.lng = lng
        self.accuracy = accuracy
        self.last_location: Optional[LocationSample] = None
        self.consecutive_failures = 0

    def get_location(self, timeout: int = 30) -> Optional[LocationSample]:
        self.last_location = LocationSample(self.lat, self.lng, now_ms(), self.accuracy)
        return self.last_location

    def get_status(self) -> str:
        return f"Fixed position ({self.lat:.5f}, {self.lng:.5f})"


class LocationRecorder:
    """Records a location trace to file"""

    def __init__(self, source, record_path: str):
        self.source = source
        self.record_path = record_path
        self.trace: list[dict] = []
        self.start_time = time.time()

    def get_location(self, timeout: int = 30) -> Optional[LocationSample]:
        """Get location and record it"""
        location = self.source.get_location(timeout)

        # Record even failed attempts
        entry = {
            "elapsed": time.time() - self.start_time,
            "timestamp": time.time(),
            "location": location.to_dict() if location else None,
            "status": self.source.get_status()
        }
        self.trace.append(entry)

        return location

    def get_status(self) -> str:
        return self.source.get_status()

    def save(self):
        """Save trace to file"""
        with open(self.record_path, "w") as f:
            json.dump({
                "recorded_at": datetime.now().isoformat(),
                "trace": self.trace
            }, f, indent=2)
        print(f"Location trace saved to {self.record_path} ({len(self.trace)} entries)")


class LocationPlayback:
    """Plays back a recorded location trace"""

    def __init__(self, playback_path: str, speed: float = 1.0):
        self.playback_path = playback_path
        self.speed = speed
        self.trace: list[dict] = []
        self.index = 0
        self.last_location: Optional[LocationSample] = None
        self.consecutive_failures = 0

        with open(playback_path) as f:
            data = json.load(f)
            self.trace = data["trace"]
        print(f"Loaded location trace from {playback_path} ({len(self.trace)} entries)")

    def get_location(self, timeout: int = 30) -> Optional[LocationSample]:
        """Get next location from trace sequentially"""
        if self.index >= len(self.trace):
            return None

        entry = self.trace[self.index]
        self.index += 1

        if entry["location"]:
            # Re-stamp so played-back fixes look current to participants
            location = LocationSample.from_dict(entry["location"])
            location.timestamp = now_ms()
            self.last_location = location
            self.consecutive_failures = 0
            return location
        else:
            self.consecutive_failures += 1
            return None

    def get_poll_interval(self) -> float:
        """Get the interval to wait between polls based on trace timing and speed"""
        if self.index <= 0 or self.index >= len(self.trace):
            return CONFIG["gps_poll_interval"] / self.speed

        prev_elapsed = self.trace[self.index - 1].get("elapsed", 0)
        curr_elapsed = self.trace[self.index].get("elapsed", 0)
        delta = curr_elapsed - prev_elapsed

        interval = delta / self.speed
        return max(0.1, min(interval, 5.0))

    def is_finished(self) -> bool:
        return self.index >= len(self.trace)

    def get_status(self) -> str:
        progress = f"{self.index}/{len(self.trace)}"
        if self.consecutive_failures == 0:
            return f"Playback OK ({progress})"
        else:
            return f"Playback: {self.consecutive_failures} failures ({progress})"


class PositionStream:
    """Polls a location source on a background thread.

    Fixes go to ``on_fix``, failed polls to ``on_failure``. The stream knows
    nothing about publishing; it keeps polling however slow the consumer is.
    """

    def __init__(self, source, on_fix: Callable[[LocationSample], None],
                 on_failure: Optional[Callable[[], None]] = None,
                 poll_interval: Optional[float] = None, timeout: Optional[int] = None,
                 logger: Optional[Logger] = None):
        self.source = source
        self.on_fix = on_fix
        self.on_failure = on_failure
        self.poll_interval = poll_interval if poll_interval is not None else CONFIG["gps_poll_interval"]
        self.timeout = timeout if timeout is not None else CONFIG["gps_timeout"]
        self.logger = logger or Logger()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive() and not self._stop.is_set()

    def start(self):
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._run, daemon=True)
        self._thread.start()

    def stop(self):
        self._stop.set()

    def _interval(self) -> float:
        if hasattr(self.source, "get_poll_interval"):
            return self.source.get_poll_interval()
        return self.poll_interval

    def _run(self):
        while not self._stop.is_set():
            location = self.source.get_location(self.timeout)
            if self._stop.is_set():
                break
            if location:
                self.on_fix(location)
            else:
                if self.on_failure:
                    self.on_failure()
                if hasattr(self.source, "is_finished") and self.source.is_finished():
                    self.logger.log("Location source finished")
                    break
            self._stop.wait(self._interval())
