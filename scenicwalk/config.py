"""Configuration settings for Scenic Walk."""

import os

CONFIG = {
    # Arrow placement along a route
    "arrow_base_spacing": 150,  # meters between arrows before clamping
    "arrow_min_count": 3,
    "arrow_max_count": 20,
    "arrow_first_offset_fraction": 0.30,  # first arrow at 30% of one spacing interval
    "arrow_min_route_length": 50,  # meters - shorter routes get no arrows
    "arrow_icon_bucket_degrees": 10,  # rotated arrow icons are cached per bucket
    # Broadcasting
    "publish_min_interval": 10,  # seconds (monotonic) between continuous publishes
    "gps_poll_interval": 2,  # seconds between position fixes in the stream
    "gps_timeout": 30,  # seconds to wait for a single fix
    "location_grace_period": 30,  # seconds without any fix before surfacing an error
    "update_poll_interval": 0.5,  # seconds between checks for broadcast worker updates
    # Participant side
    "stale_threshold_ms": 60_000,  # sample older than this is stale
    # Real-time store (Firebase Realtime Database REST API)
    "store_url": os.environ.get("SCENICWALK_DATABASE_URL", ""),
    "store_auth": os.environ.get("SCENICWALK_DATABASE_SECRET"),
    "store_timeout": 10,  # seconds per REST request
    "store_stream_retry": 5,  # seconds before reconnecting a dropped subscription
    # Events
    "pin_length": 4,
    "event_id_length": 8,
    # On-device storage
    "storage_path": os.environ.get("SCENICWALK_STORAGE", "scenicwalk.db"),
    # Permission gate - platforms that need a distinct grant for these
    "require_background_permission": True,
    "require_notification_permission": True,
    # Live map server
    "live_map_http_port": 8765,
    "live_map_ws_port": 8766,
}
