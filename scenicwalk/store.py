"""Real-time key-value store clients.

The store holds one current value per key; writes replace, there is no
history, and subscribers are pushed the new value whenever it changes.
``FirebaseStore`` talks to a Firebase Realtime Database over its REST API
(streaming subscriptions use server-sent events). ``MemoryStore`` keeps the
same contract in process, for tests and offline runs.
"""

from __future__ import annotations

import copy
import json
import threading
import time
from typing import Any, Callable, Optional, Protocol

import requests

from .config import CONFIG
from .errors import StoreError
from .logger import Logger


def event_path(event_id: str) -> str:
    return f"events/{event_id}"


def location_path(event_id: str) -> str:
    return f"locations/{event_id}"


class Subscription:
    """Handle returned by ``subscribe``; call it (or ``cancel``) to stop updates"""

    def __init__(self, on_cancel: Callable[[], None]):
        self._on_cancel = on_cancel
        self.cancelled = False

    def cancel(self):
        if self.cancelled:
            return
        self.cancelled = True
        self._on_cancel()

    __call__ = cancel


class Store(Protocol):
    def get(self, path: str) -> Any: ...

    def set(self, path: str, value: Any) -> None: ...

    def delete(self, path: str) -> None: ...

    def subscribe(self, path: str, callback: Callable[[Any], None]) -> Subscription: ...


def _split(path: str) -> list[str]:
    return [p for p in path.strip("/").split("/") if p]


def _get_in(tree: Any, parts: list[str]) -> Any:
    node = tree
    for part in parts:
        if not isinstance(node, dict) or part not in node:
            return None
        node = node[part]
    return node


def _set_in(tree: dict, parts: list[str], value: Any) -> dict:
    """Set value at parts inside tree, pruning empty parents on delete"""
    if not parts:
        return value if isinstance(value, dict) else {}
    node = tree
    trail = []
    for part in parts[:-1]:
        child = node.get(part)
        if not isinstance(child, dict):
            child = {}
            node[part] = child
        trail.append((node, part))
        node = child
    if value is None:
        node.pop(parts[-1], None)
        # Firebase has no empty objects: drop parents left empty
        while trail and not node:
            parent, key = trail.pop()
            parent.pop(key, None)
            node = parent
    else:
        node[parts[-1]] = value
    return tree


class MemoryStore:
    """In-process store with synchronous change notification"""

    def __init__(self):
        self._tree: dict = {}
        self._lock = threading.RLock()
        self._subscribers: dict[int, tuple[list[str], Callable[[Any], None]]] = {}
        self._next_id = 0
        self.writes: list[tuple[str, Any]] = []

    def get(self, path: str) -> Any:
        with self._lock:
            return copy.deepcopy(_get_in(self._tree, _split(path)))

    def set(self, path: str, value: Any) -> None:
        parts = _split(path)
        with self._lock:
            # Round-trip through JSON so callers can't alias stored values
            stored = json.loads(json.dumps(value)) if value is not None else None
            self._tree = _set_in(self._tree, parts, stored)
            self.writes.append((path, stored))
            listeners = [
                (sub_parts, cb) for sub_parts, cb in self._subscribers.values()
                if sub_parts[:len(parts)] == parts or parts[:len(sub_parts)] == sub_parts
            ]
        for sub_parts, cb in listeners:
            cb(self.get("/".join(sub_parts)))

    def delete(self, path: str) -> None:
        self.set(path, None)

    def subscribe(self, path: str, callback: Callable[[Any], None]) -> Subscription:
        parts = _split(path)
        with self._lock:
            sub_id = self._next_id
            self._next_id += 1
            self._subscribers[sub_id] = (parts, callback)
        callback(self.get(path))

        def remove():
            with self._lock:
                self._subscribers.pop(sub_id, None)

        return Subscription(remove)


class FirebaseStore:
    """Firebase Realtime Database REST client"""

    def __init__(self, base_url: Optional[str] = None, auth: Optional[str] = None,
                 timeout: Optional[float] = None, session: Optional[requests.Session] = None,
                 logger: Optional[Logger] = None):
        base_url = base_url if base_url is not None else CONFIG["store_url"]
        if not base_url:
            raise StoreError("No database URL configured (set SCENICWALK_DATABASE_URL)")
        self.base_url = base_url.rstrip("/")
        self.auth = auth if auth is not None else CONFIG["store_auth"]
        self.timeout = timeout if timeout is not None else CONFIG["store_timeout"]
        self.session = session or requests.Session()
        self.logger = logger or Logger()

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path.strip('/')}.json"

    def _params(self) -> dict:
        return {"auth": self.auth} if self.auth else {}

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        try:
            response = self.session.request(
                method, self._url(path), params=self._params(),
                timeout=self.timeout, **kwargs
            )
            response.raise_for_status()
            return response
        except requests.RequestException as e:
            raise StoreError(f"{method} {path} failed: {e}") from e

    def get(self, path: str) -> Any:
        return self._request("GET", path).json()

    def set(self, path: str, value: Any) -> None:
        if value is None:
            self.delete(path)
            return
        self._request("PUT", path, data=json.dumps(value),
                      headers={"Content-Type": "application/json"})

    def delete(self, path: str) -> None:
        self._request("DELETE", path)

    def subscribe(self, path: str, callback: Callable[[Any], None]) -> Subscription:
        stream = _EventStream(self, path, callback)
        stream.start()
        return Subscription(stream.stop)


class _EventStream:
    """Background reader for one REST streaming subscription"""

    def __init__(self, store: FirebaseStore, path: str, callback: Callable[[Any], None]):
        self.store = store
        self.path = path
        self.callback = callback
        self.value: Any = None
        self._running = False
        self._response: Optional[requests.Response] = None
        self._thread: Optional[threading.Thread] = None

    def start(self):
        self._running = True
        self._thread = threading.Thread(target=self._run, daemon=True)
        self._thread.start()

    def stop(self):
        self._running = False
        response = self._response
        if response is not None:
            response.close()

    def _run(self):
        retry = CONFIG["store_stream_retry"]
        while self._running:
            try:
                self._read_stream()
            except (requests.RequestException, ValueError) as e:
                if not self._running:
                    break
                self.store.logger.log("Subscription dropped, reconnecting",
                                      {"path": self.path, "error": str(e), "retry_in": retry})
            except Exception:
                # Closing the response from stop() can surface as any I/O error
                if not self._running:
                    break
                raise
            if self._running:
                time.sleep(retry)

    def _read_stream(self):
        response = self.store.session.get(
            self.store._url(self.path), params=self.store._params(),
            headers={"Accept": "text/event-stream"}, stream=True,
            timeout=(self.store.timeout, None),
        )
        self._response = response
        response.raise_for_status()
        self.store.logger.log("Subscribed", {"path": self.path})

        event_name = None
        for raw in response.iter_lines(decode_unicode=True):
            if not self._running:
                return
            if raw is None:
                continue
            line = raw.strip()
            if line.startswith("event:"):
                event_name = line[len("event:"):].strip()
            elif line.startswith("data:"):
                data = line[len("data:"):].strip()
                self.handle(event_name, data)
                event_name = None
            if event_name in ("cancel", "auth_revoked"):
                raise ValueError(f"stream closed by server ({event_name})")

    def handle(self, event_name: Optional[str], data: str):
        """Apply one server-sent event to the local copy and notify"""
        if event_name not in ("put", "patch") or not data:
            return
        payload = json.loads(data)
        parts = _split(payload.get("path", "/"))
        body = payload.get("data")
        if event_name == "put":
            if not parts:
                self.value = body
            else:
                root = self.value if isinstance(self.value, dict) else {}
                self.value = _set_in(root, parts, body) or None
        else:
            target = _get_in(self.value, parts) if parts else self.value
            merged = dict(target) if isinstance(target, dict) else {}
            for key, val in (body or {}).items():
                if val is None:
                    merged.pop(key, None)
                else:
                    merged[key] = val
            if not parts:
                self.value = merged or None
            else:
                root = self.value if isinstance(self.value, dict) else {}
                self.value = _set_in(root, parts, merged or None) or None
        self.callback(copy.deepcopy(self.value))
