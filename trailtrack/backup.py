"""Crash-safe snapshots of the route being recorded."""

import json
from typing import Callable, Optional

from .config import CONFIG
from .errors import StorageError
from .logger import Logger
from .models import BackupSnapshot, Lifecycle, TrackingSession
from .render import MapRenderer, NullRenderer
from .store import KeyValueStore
from .timer import Clock, TimerHandle


class BackupManager:
    """Owns the single backup slot and the periodic snapshot timer.

    The timer only reads state through ``snapshot_source`` and writes whole
    snapshots, so a stored snapshot always reflects a fix boundary.
    """

    def __init__(self, store: KeyValueStore, clock: Clock,
                 renderer: Optional[MapRenderer] = None,
                 logger: Optional[Logger] = None,
                 notify: Optional[Callable[[str], None]] = None):
        self.store = store
        self.clock = clock
        self.renderer = renderer or NullRenderer()
        self.logger = logger or Logger(echo=False)
        self.notify = notify
        self._timer: Optional[TimerHandle] = None
        self._snapshot_source: Optional[Callable[[], BackupSnapshot]] = None

    @property
    def key(self) -> str:
        return CONFIG["backup_key"]

    @property
    def timer_running(self) -> bool:
        return self._timer is not None

    def start_timer(self, snapshot_source: Callable[[], BackupSnapshot]):
        """(Re)start the periodic snapshot timer from zero"""
        self.stop_timer()
        self._snapshot_source = snapshot_source
        self._timer = self.clock.call_every(CONFIG["backup_interval_ms"], self._tick)

    def stop_timer(self):
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _tick(self):
        if self._snapshot_source is None:
            return
        snapshot = self._snapshot_source()
        if snapshot.route_log:
            self.write_snapshot(snapshot)

    def write_snapshot(self, snapshot: BackupSnapshot) -> bool:
        """Replace the stored snapshot; failures are reported, never raised"""
        try:
            self.store.set(self.key, json.dumps(snapshot.to_dict()))
        except StorageError as e:
            self.logger.log("Backup write failed", {"error": str(e)})
            if self.notify:
                self.notify(f"Could not back up the current route: {e}")
            return False
        self.logger.log("Backup written", {
            "points": len(snapshot.route_log),
            "distance_km": round(snapshot.total_distance_km, 3),
        })
        return True

    def _discard(self, reason: str):
        self.logger.log("Discarding backup", {"reason": reason})
        self._remove()

    def _remove(self):
        try:
            self.store.remove(self.key)
        except StorageError as e:
            self.logger.log("Backup removal failed", {"error": str(e)})

    def check_for_unsaved_route(self) -> Optional[BackupSnapshot]:
        """Return a snapshot worth restoring, discarding stale, empty or corrupt ones"""
        try:
            raw = self.store.get(self.key)
        except StorageError as e:
            self.logger.log("Backup unreadable", {"error": str(e)})
            return None
        if not raw:
            return None

        try:
            snapshot = BackupSnapshot.from_dict(json.loads(raw))
        except (json.JSONDecodeError, KeyError, TypeError, ValueError, AttributeError) as e:
            self._discard(f"corrupt: {e}")
            return None

        age_ms = self.clock.now_ms() - snapshot.backup_time_ms
        if age_ms > CONFIG["backup_max_age_ms"]:
            self._discard(f"stale ({age_ms / 3600000:.1f}h old)")
            return None
        if not snapshot.route_log:
            self._discard("empty route")
            return None

        self.logger.log("Unsaved route found", {
            "points": len(snapshot.route_log),
            "distance_km": round(snapshot.total_distance_km, 3),
            "age_ms": age_ms,
        })
        return snapshot

    def restore_from_backup(self, snapshot: BackupSnapshot, session: TrackingSession):
        """Load the snapshot into ``session`` (left Idle) and redraw the path"""
        session.route_log = list(snapshot.route_log)
        session.path_points = list(snapshot.path_points)
        session.total_distance_km = snapshot.total_distance_km
        session.elapsed_ms = snapshot.elapsed_ms
        session.started_at_ms = snapshot.started_at_ms
        session.last_accepted_coords = session.path_points[-1] if session.path_points else None
        # Restoring never resumes live tracking, whatever the stored flags say
        session.lifecycle = Lifecycle.IDLE

        self.renderer.clear_route()
        for prev, curr in zip(session.path_points, session.path_points[1:]):
            self.renderer.add_route_segment(prev, curr)
        if session.last_accepted_coords is not None:
            self.renderer.update_marker_position(session.last_accepted_coords)

        self.logger.log("Route restored from backup", {
            "points": len(session.route_log),
            "path_points": len(session.path_points),
            "distance_km": round(session.total_distance_km, 3),
        })

    def clear_backup(self):
        """Remove the stored snapshot and stop the timer"""
        self.stop_timer()
        self._remove()
        self.logger.log("Backup cleared")
