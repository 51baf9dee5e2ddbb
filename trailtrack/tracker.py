"""Tracking lifecycle: start, pause/resume, stop and the save-or-discard prompt."""

import asyncio
from datetime import datetime
from typing import Any, Optional

from .backup import BackupManager
from .config import CONFIG
from .errors import InvalidSession, PositionError, StorageError, UnsupportedSource
from .filter import PositionFilter
from .geo import DistanceAccumulator, format_distance
from .gps import PositionSource, SubscribeOptions
from .logger import Logger
from .models import (
    BackupSnapshot, Coords, Fix, Lifecycle, LOCATION, PHOTO, RoutePoint,
    SavedSession, TEXT, TrackingSession,
)
from .prompts import DecisionSurface
from .render import MapRenderer, NullRenderer
from .sessions import SessionStore
from .timer import Clock, ElapsedClock, format_duration

# Outcomes of the save-or-discard protocol
EMPTY = "empty"
SAVED = "saved"
DISCARDED = "discarded"
KEPT = "kept"


class TrackingStateMachine:
    """Owns the TrackingSession and mediates the position source and timers.

    States: IDLE -> TRACKING <-> PAUSED, and TRACKING/PAUSED -> STOPPED -> IDLE.
    STOPPED lasts only while the save-or-discard protocol is awaiting the user.
    """

    def __init__(self, source: Optional[PositionSource], clock: Clock,
                 sessions: SessionStore, backup: BackupManager,
                 decisions: DecisionSurface,
                 renderer: Optional[MapRenderer] = None,
                 logger: Optional[Logger] = None,
                 position_filter: Optional[PositionFilter] = None):
        self.source = source
        self.clock = clock
        self.sessions = sessions
        self.backup = backup
        self.decisions = decisions
        self.renderer = renderer or NullRenderer()
        self.logger = logger or Logger(echo=False)
        self.filter = position_filter or PositionFilter()

        self.session = TrackingSession()
        self.distance = DistanceAccumulator()
        self.elapsed = ElapsedClock(clock)

        # set when the save dialogue ended unresolved and the route went to the backup slot
        self.has_parked_route = False
        self._subscription: Optional[int] = None
        self._generation = 0
        self.stop_task: Optional[asyncio.Task] = None

    # -- state -----------------------------------------------------------

    @property
    def lifecycle(self) -> Lifecycle:
        return self.session.lifecycle

    def _set_lifecycle(self, lifecycle: Lifecycle):
        previous = self.session.lifecycle
        self.session.lifecycle = lifecycle
        self.logger.log("Lifecycle", {"from": previous.value, "to": lifecycle.value})

    @property
    def is_tracking(self) -> bool:
        return self.lifecycle in (Lifecycle.TRACKING, Lifecycle.PAUSED)

    @property
    def is_paused(self) -> bool:
        return self.lifecycle == Lifecycle.PAUSED

    def _sync_elapsed(self):
        if self.elapsed.running:
            self.session.elapsed_ms = self.elapsed.elapsed_ms()

    # -- position source -------------------------------------------------

    def _subscribe(self):
        self._generation += 1
        generation = self._generation

        # Callbacks from an earlier subscription are dropped even if the
        # source delivers them after unsubscribe.
        def on_fix(fix: Fix):
            if generation != self._generation:
                self.logger.log("Dropped late fix", {"lat": fix.lat, "lng": fix.lng})
                return
            self.handle_fix(fix)

        def on_error(error: PositionError):
            if generation != self._generation:
                return
            self.handle_source_error(error)

        self._subscription = self.source.subscribe(on_fix, on_error, SubscribeOptions())

    def _unsubscribe(self):
        self._generation += 1
        if self._subscription is not None:
            self.source.unsubscribe(self._subscription)
            self._subscription = None

    # -- transitions -----------------------------------------------------

    def start(self, keep_route: bool = False) -> bool:
        """Begin tracking from IDLE; returns False if already tracking.

        ``keep_route`` continues a restored route instead of clearing it.
        A route left unresolved by the save dialogue is never cleared here:
        start() returns False until it is saved, discarded or continued.
        Raises UnsupportedSource when there is no usable position source.
        """
        if self.lifecycle != Lifecycle.IDLE:
            self.logger.log("Start ignored", {"lifecycle": self.lifecycle.value})
            return False
        if self.source is None or not self.source.is_available():
            raise UnsupportedSource("no position source available")
        if self.has_parked_route and not keep_route and not self.session.is_empty:
            self.logger.log("Start refused - unsaved route pending", self.summary())
            self.decisions.notify("Save or discard the unsaved route before starting a new one.")
            return False

        now = self.clock.now_ms()
        self.has_parked_route = False
        if keep_route and not self.session.is_empty:
            offset = self.session.elapsed_ms
            self.distance.reset(self.session.total_distance_km)
            if self.session.started_at_ms is None:
                self.session.started_at_ms = now
        else:
            offset = 0
            self.session.clear()
            self.distance.reset()
            self.elapsed.reset()
            self.renderer.clear_route()
            self.session.started_at_ms = now

        self._subscribe()
        self.elapsed.start(offset)
        self._set_lifecycle(Lifecycle.TRACKING)
        self.backup.start_timer(self.snapshot)
        self.logger.log("Tracking started", {
            "started_at_ms": self.session.started_at_ms,
            "continued": keep_route,
        })
        return True

    def pause(self) -> bool:
        if self.lifecycle != Lifecycle.TRACKING:
            return False
        self._unsubscribe()
        self.elapsed.pause()
        self._sync_elapsed()
        self._set_lifecycle(Lifecycle.PAUSED)
        if not self.session.is_empty:
            self.backup.write_snapshot(self.snapshot())
        self.backup.stop_timer()
        return True

    def resume(self) -> bool:
        if self.lifecycle != Lifecycle.PAUSED:
            return False
        self._subscribe()
        self.elapsed.resume()
        self._set_lifecycle(Lifecycle.TRACKING)
        self.backup.start_timer(self.snapshot)
        return True

    def toggle_pause(self) -> bool:
        """Pause while tracking, resume while paused; False otherwise"""
        if self.lifecycle == Lifecycle.TRACKING:
            return self.pause()
        if self.lifecycle == Lifecycle.PAUSED:
            return self.resume()
        self.logger.log("Cannot pause - tracking not active")
        return False

    def halt(self) -> bool:
        """Synchronous half of stop(): cancel subscription, clock and backup timer"""
        if not self.is_tracking:
            return False
        self._unsubscribe()
        self._sync_elapsed()
        self.elapsed.stop()
        self.backup.stop_timer()
        self._set_lifecycle(Lifecycle.STOPPED)
        self.logger.log("Tracking stopped", self.summary())
        return True

    async def stop(self) -> bool:
        """Stop tracking and run the save-or-discard protocol"""
        if not self.halt():
            self.logger.log("Tracking not active")
            return False
        await self.finish_session()
        return True

    async def finish_session(self) -> str:
        """Run the save-or-discard protocol, then return to IDLE.

        Also used for a restored route that the user chose not to continue.
        """
        if self.lifecycle not in (Lifecycle.STOPPED, Lifecycle.IDLE):
            raise RuntimeError(f"cannot finish a session while {self.lifecycle.value}")
        self.session.lifecycle = Lifecycle.STOPPED
        try:
            return await self._save_or_discard()
        finally:
            self._set_lifecycle(Lifecycle.IDLE)

    def cleanup(self):
        """Shut down without prompting; an unsaved route stays in the backup slot"""
        was_tracking = self.is_tracking
        self._unsubscribe()
        self._sync_elapsed()
        self.elapsed.stop()
        if was_tracking and not self.session.is_empty:
            self.backup.write_snapshot(self.snapshot())
        self.backup.stop_timer()
        self.session.lifecycle = Lifecycle.IDLE

    # -- fixes and errors ------------------------------------------------

    def handle_fix(self, fix: Fix) -> bool:
        """Apply one fix; returns True if it was accepted into the route"""
        if self.lifecycle != Lifecycle.TRACKING:
            return False

        result = self.filter.evaluate(fix, self.session.last_accepted_coords)
        if not result.accepted:
            self.logger.log("Fix rejected", {
                "reason": result.reason,
                "accuracy": fix.accuracy,
                "distance_km": result.distance_km,
            })
            return False

        current = fix.coords
        previous = self.session.last_accepted_coords
        if previous is not None:
            self.distance.add_segment(previous, current)
            self.session.total_distance_km = self.distance.total_km
            self.renderer.add_route_segment(previous, current)

        timestamp = fix.timestamp if fix.timestamp is not None else self.clock.now_ms()
        self.session.route_log.append(RoutePoint.location(fix, timestamp))
        self.session.path_points.append(current)
        self.session.last_accepted_coords = current
        self._sync_elapsed()
        self.renderer.update_marker_position(current)

        self.logger.log("Fix accepted", {
            "lat": round(fix.lat, 6),
            "lng": round(fix.lng, 6),
            "accuracy": fix.accuracy,
            "total_km": round(self.session.total_distance_km, 4),
        })
        return True

    def handle_source_error(self, error: PositionError):
        """Permission loss ends the session; other errors are warnings"""
        self.logger.log("Position source error", {"code": error.code, "message": error.message})
        self.decisions.notify(error.describe())
        if error.is_fatal and self.halt():
            self.stop_task = asyncio.get_running_loop().create_task(self.finish_session())

    def add_annotation(self, kind: str, content: Any, coords: Optional[Coords] = None) -> bool:
        """Append a photo or text point; content is stored as given"""
        if kind not in (PHOTO, TEXT):
            raise ValueError(f"annotations must be {PHOTO!r} or {TEXT!r}, not {kind!r}")
        if not self.is_tracking:
            return False
        point = RoutePoint(
            kind=kind,
            timestamp=self.clock.now_ms(),
            coords=coords or self.session.last_accepted_coords,
            content=content,
        )
        self.session.route_log.append(point)
        self.logger.log("Annotation added", {"kind": kind})
        return True

    # -- snapshots -------------------------------------------------------

    def snapshot(self) -> BackupSnapshot:
        self._sync_elapsed()
        return BackupSnapshot.from_session(self.session, self.clock.now_ms())

    def restore_from_backup(self, snapshot: BackupSnapshot) -> bool:
        """Load a snapshot into the idle session; tracking is not resumed"""
        if self.lifecycle != Lifecycle.IDLE:
            return False
        self.elapsed.reset()
        self.backup.restore_from_backup(snapshot, self.session)
        self.distance.reset(self.session.total_distance_km)
        return True

    # -- save or discard -------------------------------------------------

    def stats(self) -> dict:
        self._sync_elapsed()
        return {
            "lifecycle": self.lifecycle.value,
            "is_tracking": self.is_tracking,
            "is_paused": self.is_paused,
            "total_distance_km": self.session.total_distance_km,
            "elapsed_ms": self.session.elapsed_ms,
            "point_count": len(self.session.route_log),
        }

    def summary(self) -> dict:
        return {
            "locations": self.session.count(LOCATION),
            "photos": self.session.count(PHOTO),
            "notes": self.session.count(TEXT),
            "distance_km": round(self.session.total_distance_km, 3),
            "duration": format_duration(self.session.elapsed_ms),
        }

    def summary_text(self) -> str:
        s = self.summary()
        return (
            "Route Summary:\n"
            f"  GPS Points: {s['locations']}\n"
            f"  Distance: {format_distance(self.session.total_distance_km)}\n"
            f"  Duration: {s['duration']}\n"
            f"  Photos: {s['photos']}\n"
            f"  Notes: {s['notes']}"
        )

    def default_name(self) -> str:
        now = datetime.fromtimestamp(self.clock.now_ms() / 1000)
        return now.strftime("Route %Y-%m-%d %H:%M")

    async def _save_or_discard(self) -> str:
        if self.session.is_empty:
            self.logger.log("No route data to save")
            return EMPTY

        rounds = CONFIG["max_save_rounds"]
        for round_number in range(1, rounds + 1):
            wants_to_save = await self.decisions.confirm(
                f"{self.summary_text()}\n\nWould you like to save this route?"
            )
            if wants_to_save:
                saved = await self._save_flow()
                if saved is not None:
                    self._clear_route()
                    return SAVED
            elif await self.decisions.confirm(
                "Are you sure you want to discard this route? All data will be lost!"
            ):
                self._clear_route()
                self.decisions.notify("Route discarded")
                self.logger.log("Route discarded")
                return DISCARDED
            self.logger.log("Save prompt unresolved", {"round": round_number, "of": rounds})

        # Out of rounds: park the route in the backup slot for the next startup
        self.backup.write_snapshot(self.snapshot())
        self.has_parked_route = True
        self.decisions.notify("Route not saved. It will be offered for recovery next time.")
        self.logger.log("Route kept as backup", self.summary())
        return KEPT

    async def _save_flow(self) -> Optional[SavedSession]:
        default = self.default_name()
        name = await self.decisions.prompt_text("Enter a name for this route:", default)
        if name is None:
            if await self.decisions.confirm(f'Use default name "{default}"?'):
                name = default
            else:
                self.logger.log("Route save cancelled by user")
                return None

        try:
            saved = self.sessions.save(name, self.session)
        except InvalidSession as e:
            self.decisions.notify(f"Cannot save route: {e}")
            self.logger.log("Save rejected", {"error": str(e)})
            return None
        except StorageError as e:
            self.decisions.notify(f"Failed to save route: {e}")
            self.logger.log("Save failed", {"error": str(e)})
            return None

        self.decisions.notify(f'"{saved.name}" saved successfully!')
        return saved

    def _clear_route(self):
        self.session.clear()
        self.has_parked_route = False
        self.distance.reset()
        self.elapsed.reset()
        self.backup.clear_backup()
        self.renderer.clear_route()
