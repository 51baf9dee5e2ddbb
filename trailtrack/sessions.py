"""Append-only archive of saved sessions."""

import json
from datetime import datetime, timezone
from typing import Optional

from .config import CONFIG
from .errors import InvalidSession, StorageError
from .logger import Logger
from .models import SavedSession, TrackingSession
from .store import KeyValueStore
from .timer import Clock


def iso_date(epoch_ms: int) -> str:
    """UTC ISO-8601 timestamp with millisecond precision and a Z suffix"""
    dt = datetime.fromtimestamp(epoch_ms / 1000, tz=timezone.utc)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


class SessionStore:
    """Saved sessions, stored as one JSON list under a single key"""

    def __init__(self, store: KeyValueStore, clock: Clock, logger: Optional[Logger] = None):
        self.store = store
        self.clock = clock
        self.logger = logger or Logger(echo=False)

    @property
    def key(self) -> str:
        return CONFIG["sessions_key"]

    def _load(self) -> list[SavedSession]:
        raw = self.store.get(self.key)
        if not raw:
            return []
        try:
            records = json.loads(raw)
            return [SavedSession.from_dict(r) for r in records]
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            self.logger.log("Saved sessions unreadable, treating as empty", {"error": str(e)})
            return []

    def save(self, name: str, session: TrackingSession) -> SavedSession:
        """Append the session under ``name``; raises InvalidSession or StorageError"""
        if not name or not name.strip():
            raise InvalidSession("route name must not be empty")
        if session.is_empty:
            raise InvalidSession("route has no points")

        now = self.clock.now_ms()
        saved = SavedSession(
            id=now,
            name=name.strip(),
            iso_date=iso_date(now),
            total_distance_km=session.total_distance_km,
            elapsed_ms=session.elapsed_ms,
            data=tuple(session.route_log),
        )
        sessions = self._load()
        sessions.append(saved)
        self.store.set(self.key, json.dumps([s.to_dict() for s in sessions]))
        self.logger.log("Session saved", {
            "id": saved.id,
            "name": saved.name,
            "points": len(saved.data),
            "distance_km": round(saved.total_distance_km, 3),
        })
        return saved

    def list(self) -> list[SavedSession]:
        """All saved sessions, oldest first; unreadable storage yields []"""
        try:
            return self._load()
        except StorageError as e:
            self.logger.log("Saved sessions unavailable", {"error": str(e)})
            return []

    def clear_all(self, include_backup: bool = False):
        """Remove every saved session (irreversible)"""
        self.store.remove(self.key)
        if include_backup:
            self.store.remove(CONFIG["backup_key"])
        self.logger.log("All saved sessions cleared", {"include_backup": include_backup})
