"""Live map server: route, arrows and organizer position in the browser."""

import asyncio
import http.server
import json
import queue
import socketserver
import threading
import time
import webbrowser
from functools import partial
from typing import Optional, Sequence

import websockets

from .arrows import ArrowIconCache, ArrowPlanner
from .config import CONFIG
from .freshness import describe, freshness, now_ms
from .models import Coordinate, LocationSample
from .route import total_length


LIVE_MAP_HTML = '''<!DOCTYPE html>
<html>
<head>
    <title>Scenic Walk</title>
    <meta charset="utf-8" />
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <link rel="stylesheet" href="https://unpkg.com/leaflet@1.9.4/dist/leaflet.css" />
    <script src="https://unpkg.com/leaflet@1.9.4/dist/leaflet.js"></script>
    <style>
        * { margin: 0; padding: 0; box-sizing: border-box; }
        body { font-family: -apple-system, BlinkMacSystemFont, "Segoe UI", Roboto, sans-serif; height: 100vh; display: flex; flex-direction: column; }
        header { background: #14532d; color: white; padding: 12px 20px; display: flex; justify-content: space-between; align-items: center; }
        header h1 { font-size: 18px; font-weight: 600; }
        .status-badge { background: #22c55e; padding: 4px 12px; border-radius: 12px; font-size: 12px; }
        .status-badge.disconnected { background: #ef4444; }
        .main-content { display: flex; flex: 1; overflow: hidden; }
        #map { flex: 1; min-width: 0; }
        .panel { width: 340px; background: #f8fafc; display: flex; flex-direction: column; border-left: 1px solid #e2e8f0; }
        .panel-section { padding: 16px; border-bottom: 1px solid #e2e8f0; }
        .panel-section h2 { font-size: 12px; text-transform: uppercase; color: #64748b; margin-bottom: 12px; letter-spacing: 0.5px; }
        .state-value { font-size: 16px; font-weight: 600; color: #1e293b; }
        .state-value.waiting { color: #64748b; }
        .state-value.stale { color: #b45309; }
        .logs-section { flex: 1; display: flex; flex-direction: column; min-height: 0; }
        .logs-container { flex: 1; overflow-y: auto; padding: 12px; background: #1e293b; font-family: "SF Mono", Monaco, monospace; font-size: 12px; color: #e2e8f0; }
        .log-entry { margin-bottom: 6px; line-height: 1.4; }
        .click-hint { position: absolute; bottom: 20px; left: 50%; transform: translateX(-50%); background: rgba(0,0,0,0.8); color: white; padding: 8px 16px; border-radius: 20px; font-size: 13px; z-index: 1000; pointer-events: none; }
        .arrow-icon { background: none; border: none; }
    </style>
</head>
<body>
    <header>
        <h1 id="title">Scenic Walk</h1>
        <span id="connection-status" class="status-badge disconnected">Disconnected</span>
    </header>
    <div class="main-content">
        <div id="map"><div class="click-hint" id="hint">{{HINT}}</div></div>
        <div class="panel">
            <div class="panel-section">
                <h2>Organizer</h2>
                <div class="state-value waiting" id="organizer-status">Waiting for organizer</div>
            </div>
            <div class="panel-section">
                <h2>Route</h2>
                <div class="state-value" id="route-info">-</div>
            </div>
            <div class="panel-section logs-section">
                <h2>Log</h2>
                <div class="logs-container" id="logs"></div>
            </div>
        </div>
    </div>
    <script>
        var map = L.map('map').setView([38.9072, -77.0369], 14);
        L.tileLayer('https://{s}.tile.openstreetmap.org/{z}/{x}/{y}.png', {
            attribution: '&copy; OpenStreetMap contributors'
        }).addTo(map);

        var ws = null;
        var routeLayer = null;
        var organizerMarker = null;
        var fitted = false;

        function connect() {
            ws = new WebSocket('ws://' + window.location.hostname + ':{{WS_PORT}}');
            ws.onopen = function() {
                document.getElementById('connection-status').textContent = 'Connected';
                document.getElementById('connection-status').classList.remove('disconnected');
            };
            ws.onclose = function() {
                document.getElementById('connection-status').textContent = 'Disconnected';
                document.getElementById('connection-status').classList.add('disconnected');
                setTimeout(connect, 2000);
            };
            ws.onmessage = function(event) {
                var msg = JSON.parse(event.data);
                switch(msg.type) {
                    case 'route': displayRoute(msg.data); break;
                    case 'organizer': updateOrganizer(msg.data); break;
                    case 'log': addLog(msg.data.message, msg.data.data); break;
                }
            };
        }

        function displayRoute(data) {
            if (routeLayer) map.removeLayer(routeLayer);
            routeLayer = L.layerGroup().addTo(map);
            if (data.title) document.getElementById('title').textContent = data.title;
            if (data.route.length > 0) {
                L.polyline(data.route, {color: '#16a34a', weight: 4}).addTo(routeLayer);
                L.circleMarker(data.route[0], {radius: 8, fillColor: '#16a34a', color: '#fff', weight: 2, fillOpacity: 1}).addTo(routeLayer);
            }
            data.arrows.forEach(function(a) {
                var icon = L.divIcon({html: a.icon, className: 'arrow-icon', iconSize: [22, 22], iconAnchor: [11, 11]});
                L.marker([a.lat, a.lng], {icon: icon, interactive: false}).addTo(routeLayer);
            });
            document.getElementById('route-info').textContent =
                Math.round(data.length) + ' m, ' + data.arrows.length + ' arrows';
            if (!fitted && data.route.length > 1) {
                map.fitBounds(L.latLngBounds(data.route), {padding: [50, 50]});
                fitted = true;
            }
        }

        function updateOrganizer(data) {
            var el = document.getElementById('organizer-status');
            el.textContent = data.status;
            el.className = 'state-value ' + data.freshness;
            if (!data.sample) {
                if (organizerMarker) { map.removeLayer(organizerMarker); organizerMarker = null; }
                return;
            }
            var pos = [data.sample.lat, data.sample.lng];
            var color = data.freshness === 'stale' ? '#9ca3af' : '#2563eb';
            if (organizerMarker) {
                organizerMarker.setLatLng(pos);
                organizerMarker.setStyle({fillColor: color});
            } else {
                organizerMarker = L.circleMarker(pos, {radius: 10, fillColor: color, color: '#fff', weight: 3, fillOpacity: 1}).addTo(map);
            }
        }

        function addLog(message, data) {
            var logs = document.getElementById('logs');
            var entry = document.createElement('div');
            entry.className = 'log-entry';
            entry.textContent = '[' + new Date().toLocaleTimeString() + '] ' + message + (data ? ' ' + JSON.stringify(data) : '');
            logs.appendChild(entry);
            logs.scrollTop = logs.scrollHeight;
            while (logs.children.length > 100) logs.removeChild(logs.firstChild);
        }

        map.on('click', function(e) {
            if (ws && ws.readyState === WebSocket.OPEN) {
                ws.send(JSON.stringify({type: 'click', data: {lat: e.latlng.lat, lng: e.latlng.lng}}));
            }
        });

        connect();
    </script>
</body>
</html>'''


class LiveMapServer:
    """HTTP and WebSocket server for the live map.

    The browser is a rendering surface: it draws what it is sent and
    reports map clicks back, which land in ``clicks``.
    """

    def __init__(self, http_port: Optional[int] = None, ws_port: Optional[int] = None,
                 hint: str = "", planner: Optional[ArrowPlanner] = None,
                 icons: Optional[ArrowIconCache] = None):
        self.http_port = http_port or CONFIG["live_map_http_port"]
        self.ws_port = ws_port or CONFIG["live_map_ws_port"]
        self.hint = hint
        self.planner = planner or ArrowPlanner()
        self.icons = icons or ArrowIconCache()
        self.clicks: queue.Queue = queue.Queue()
        self.http_thread = None
        self.ws_thread = None
        self.ws_loop = None
        self.connected_clients: set = set()
        self._running = False
        # Replayed to browsers that connect late
        self._last: dict[str, dict] = {}

    def start(self, open_browser: bool = True):
        """Start HTTP and WebSocket servers in background threads"""
        self._running = True

        self.http_thread = threading.Thread(target=self._run_http_server, daemon=True)
        self.http_thread.start()

        self.ws_thread = threading.Thread(target=self._run_ws_server, daemon=True)
        self.ws_thread.start()

        # Give servers time to start
        time.sleep(0.5)

        url = f"http://localhost:{self.http_port}"
        print(f"Live map available at: {url}")
        if open_browser:
            webbrowser.open(url)

    def _run_http_server(self):
        handler = partial(_LiveMapHTTPHandler, self.ws_port, self.hint)
        socketserver.TCPServer.allow_reuse_address = True
        with socketserver.TCPServer(("", self.http_port), handler) as httpd:
            httpd.timeout = 0.5
            while self._running:
                httpd.handle_request()

    def _run_ws_server(self):
        self.ws_loop = asyncio.new_event_loop()
        asyncio.set_event_loop(self.ws_loop)

        async def handler(websocket):
            self.connected_clients.add(websocket)
            try:
                for message in list(self._last.values()):
                    await websocket.send(json.dumps(message))
                async for message in websocket:
                    self.handle_message(message)
            finally:
                self.connected_clients.discard(websocket)

        async def main():
            try:
                async with websockets.serve(handler, "localhost", self.ws_port):
                    while self._running:
                        await asyncio.sleep(0.1)
            except OSError as e:
                print(f"WebSocket server error: {e}")

        self.ws_loop.run_until_complete(main())

    def handle_message(self, message: str):
        """Queue map clicks sent by the browser"""
        try:
            data = json.loads(message)
        except json.JSONDecodeError:
            return
        if data.get("type") == "click":
            point = data.get("data", {})
            try:
                self.clicks.put(Coordinate(lat=float(point["lat"]), lng=float(point["lng"])))
            except (KeyError, TypeError, ValueError):
                return

    def _send_message(self, msg_type: str, data: dict, remember: bool = False):
        message = {"type": msg_type, "data": data}
        if remember:
            self._last[msg_type] = message
        if not self.connected_clients or not self.ws_loop:
            return
        text = json.dumps(message)

        async def send_to_all():
            for client in list(self.connected_clients):
                try:
                    await client.send(text)
                except websockets.ConnectionClosed:
                    self.connected_clients.discard(client)

        asyncio.run_coroutine_threadsafe(send_to_all(), self.ws_loop)

    def route_message(self, route: Sequence[Coordinate], title: str = "") -> dict:
        arrows = self.planner.plan(route)
        summary = self.planner.summary(route)
        return {
            "title": title,
            "route": [[p.lat, p.lng] for p in route],
            "length": total_length(route),
            "arrows": [
                {"lat": a.position.lat, "lng": a.position.lng, "bearing": a.bearing,
                 "icon": self.icons.get(a.bearing)}
                for a in arrows
            ],
            "summary": summary.as_css() if summary else None,
        }

    def send_route(self, route: Sequence[Coordinate], title: str = ""):
        self._send_message("route", self.route_message(route, title), remember=True)

    def organizer_message(self, sample: Optional[LocationSample], now: Optional[int] = None) -> dict:
        now = now if now is not None else now_ms()
        return {
            "sample": sample.to_dict() if sample else None,
            "freshness": freshness(sample, now).value,
            "status": describe(sample, now),
        }

    def send_organizer(self, sample: Optional[LocationSample], now: Optional[int] = None):
        self._send_message("organizer", self.organizer_message(sample, now), remember=True)

    def send_log(self, message: str, data: Optional[dict] = None):
        self._send_message("log", {"message": message, "data": data})

    def get_click(self, timeout: float = 30) -> Optional[Coordinate]:
        """Block until the map is clicked"""
        try:
            return self.clicks.get(timeout=timeout)
        except queue.Empty:
            return None

    def stop(self):
        self._running = False


class _LiveMapHTTPHandler(http.server.SimpleHTTPRequestHandler):
    """HTTP handler that serves the live map page"""

    def __init__(self, ws_port: int, hint: str, *args, **kwargs):
        self.ws_port = ws_port
        self.hint = hint
        super().__init__(*args, **kwargs)

    def do_GET(self):
        if self.path == '/' or self.path == '/index.html':
            self.send_response(200)
            self.send_header('Content-type', 'text/html')
            self.end_headers()
            html = (LIVE_MAP_HTML
                    .replace('{{WS_PORT}}', str(self.ws_port))
                    .replace('{{HINT}}', self.hint or "Live view"))
            self.wfile.write(html.encode())
        else:
            self.send_error(404)

    def log_message(self, format, *args):
        pass


class MapClickLocation:
    """Location source that reports wherever the map was last clicked"""

    def __init__(self, server: LiveMapServer):
        self.server = server
        self.last_location: Optional[LocationSample] = None
        self.consecutive_failures = 0

    def get_location(self, timeout: int = 30) -> Optional[LocationSample]:
        """Latest click, or the previous position if the map wasn't clicked again"""
        click = None
        try:
            while True:
                click = self.server.clicks.get_nowait()
        except queue.Empty:
            pass
        if click is None and self.last_location is None:
            click = self.server.get_click(timeout=timeout)
        if click is not None:
            self.last_location = LocationSample(click.lat, click.lng, now_ms(), accuracy=0)
        if self.last_location is None:
            self.consecutive_failures += 1
            return None
        self.consecutive_failures = 0
        return LocationSample(self.last_location.lat, self.last_location.lng, now_ms(), accuracy=0)

    def get_status(self) -> str:
        return "Live map (click map to move the organizer)"


def draw_route(server: LiveMapServer, done: threading.Event,
               title: str = "New route") -> list[Coordinate]:
    """Collect clicked points into a route until ``done`` is set"""
    route: list[Coordinate] = []
    server.send_route(route, title)
    while not done.is_set():
        point = server.get_click(timeout=0.5)
        if point is None:
            continue
        route.append(point)
        server.send_route(route, title)
        server.send_log("Point added", {"points": len(route)})
    return route
