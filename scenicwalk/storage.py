"""On-device storage: saved organizer events and the broadcasting marker."""

import sqlite3
from datetime import datetime
from typing import Optional

from .config import CONFIG
from .models import SavedEvent


class LocalStore:
    """SQLite database for events this device organizes"""

    def __init__(self, db_path: Optional[str] = None):
        self.conn = sqlite3.connect(db_path or CONFIG["storage_path"], check_same_thread=False)
        self._init_schema()

    def _init_schema(self):
        """Create database tables"""
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS saved_events (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                pin TEXT NOT NULL,
                created_at INTEGER NOT NULL,
                saved_at TEXT NOT NULL
            )
        """)
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS broadcasting (
                slot INTEGER PRIMARY KEY CHECK (slot = 0),
                event_id TEXT NOT NULL,
                event_name TEXT,
                started_at TEXT NOT NULL
            )
        """)
        self.conn.commit()

    def save_event(self, event: SavedEvent):
        """Save an event, replacing any earlier entry with the same id"""
        now = datetime.now().isoformat()
        self.conn.execute("""
            INSERT INTO saved_events (id, name, pin, created_at, saved_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                name = excluded.name,
                pin = excluded.pin,
                created_at = excluded.created_at,
                saved_at = excluded.saved_at
        """, (event.id, event.name, event.pin, event.created_at, now))
        self.conn.commit()

    def remove_event(self, event_id: str):
        self.conn.execute("DELETE FROM saved_events WHERE id = ?", (event_id,))
        self.conn.commit()

    def get_events(self) -> list[SavedEvent]:
        """Saved events, most recently saved first"""
        cursor = self.conn.execute(
            "SELECT id, name, pin, created_at FROM saved_events ORDER BY saved_at DESC, rowid DESC"
        )
        return [SavedEvent(id=row[0], name=row[1], pin=row[2], created_at=row[3])
                for row in cursor.fetchall()]

    def get_stored_pin(self, event_id: str) -> Optional[str]:
        cursor = self.conn.execute("SELECT pin FROM saved_events WHERE id = ?", (event_id,))
        row = cursor.fetchone()
        return row[0] if row else None

    def set_broadcasting_event(self, event_id: Optional[str], event_name: Optional[str] = None):
        """Record which event is broadcasting, or clear the marker with None"""
        if event_id is None:
            self.conn.execute("DELETE FROM broadcasting")
        else:
            self.conn.execute("""
                INSERT INTO broadcasting (slot, event_id, event_name, started_at)
                VALUES (0, ?, ?, ?)
                ON CONFLICT(slot) DO UPDATE SET
                    event_id = excluded.event_id,
                    event_name = excluded.event_name,
                    started_at = excluded.started_at
            """, (event_id, event_name, datetime.now().isoformat()))
        self.conn.commit()

    def get_broadcasting_event(self) -> Optional[tuple[str, Optional[str]]]:
        """(event_id, event_name) of the marked event, if any"""
        cursor = self.conn.execute("SELECT event_id, event_name FROM broadcasting WHERE slot = 0")
        row = cursor.fetchone()
        return (row[0], row[1]) if row else None

    def close(self):
        self.conn.close()
