"""Staleness of the organizer's last published position, as seen by participants."""

import time
from typing import Optional

from .config import CONFIG
from .models import Freshness, LocationSample


def now_ms() -> int:
    return int(time.time() * 1000)


def is_stale(sample: LocationSample, now: int, threshold_ms: Optional[int] = None) -> bool:
    """True iff the sample is strictly older than the threshold (60s by default)"""
    if threshold_ms is None:
        threshold_ms = CONFIG["stale_threshold_ms"]
    return (now - sample.timestamp) > threshold_ms


def freshness(sample: Optional[LocationSample], now: int,
              threshold_ms: Optional[int] = None) -> Freshness:
    """Classify a possibly-absent sample; absence is not the same as staleness"""
    if sample is None:
        return Freshness.WAITING
    if is_stale(sample, now, threshold_ms):
        return Freshness.STALE
    return Freshness.LIVE


def seconds_since(sample: LocationSample, now: int) -> int:
    return max(0, (now - sample.timestamp) // 1000)


def describe(sample: Optional[LocationSample], now: int,
             threshold_ms: Optional[int] = None) -> str:
    """Participant-facing status line"""
    state = freshness(sample, now, threshold_ms)
    if state is Freshness.WAITING:
        return "Waiting for organizer"
    if state is Freshness.LIVE:
        return f"Updated {seconds_since(sample, now)}s ago"
    if state is Freshness.STALE:
        return f"Last seen {seconds_since(sample, now)}s ago (stale)"
    raise ValueError(f"Unhandled freshness state: {state}")
