"""Main Trailtrack application: wiring, crash recovery and the run loop."""

import asyncio
import signal
import time
from typing import Optional

from .backup import BackupManager
from .config import CONFIG
from .geo import format_distance
from .gps import PlaybackSource, PositionSource, RecordingSource
from .logger import Logger
from .prompts import ConsoleDecisions, DecisionSurface
from .render import MapRenderer
from .sessions import SessionStore
from .store import KeyValueStore
from .timer import Clock, format_duration
from .tracker import KEPT, TrackingStateMachine

# Outcomes of startup()
NO_BACKUP = "no_backup"
DECLINED = "declined"
CONTINUE = "continue"


class TrailApp:
    """Main application; every collaborator is passed in explicitly"""

    def __init__(self, store: KeyValueStore, source: Optional[PositionSource], clock: Clock,
                 decisions: Optional[DecisionSurface] = None,
                 renderer: Optional[MapRenderer] = None,
                 logger: Optional[Logger] = None):
        self.store = store
        self.source = source
        self.clock = clock
        self.decisions = decisions or ConsoleDecisions()
        self.logger = logger or Logger()

        self.sessions = SessionStore(store, clock, self.logger)
        self.backup = BackupManager(store, clock, renderer, self.logger, notify=self.decisions.notify)
        self.tracker = TrackingStateMachine(
            source, clock, self.sessions, self.backup, self.decisions,
            renderer=renderer, logger=self.logger,
        )
        self.stop_task: Optional[asyncio.Task] = None
        self.last_log_update = 0.0

    async def startup(self) -> str:
        """Offer to recover a route left behind by an unexpected shutdown.

        Returns NO_BACKUP, DECLINED, CONTINUE (restored, keep tracking it) or
        the save-or-discard outcome for a restored route.
        """
        snapshot = self.backup.check_for_unsaved_route()
        if snapshot is None:
            return NO_BACKUP

        wants_restore = await self.decisions.confirm(
            f"Unsaved route found ({len(snapshot.path_points)} GPS points, "
            f"{format_distance(snapshot.total_distance_km)}, "
            f"{format_duration(snapshot.elapsed_ms)}). Would you like to restore it?"
        )
        if not wants_restore:
            self.backup.clear_backup()
            self.logger.log("Backup declined by user")
            return DECLINED

        self.tracker.restore_from_backup(snapshot)
        if await self.decisions.confirm("Continue tracking this route?"):
            return CONTINUE
        return await self.tracker.finish_session()

    def handle_command(self, command: str):
        """Remote control from a connected client"""
        self.logger.log("Command received", {"command": command})
        if command == "pause":
            self.tracker.pause()
        elif command == "resume":
            self.tracker.resume()
        elif command == "stop":
            self.request_stop()

    def request_stop(self):
        if self.stop_task is None or self.stop_task.done():
            self.stop_task = asyncio.get_running_loop().create_task(self.tracker.stop())

    def periodic_update(self):
        """Handle periodic status updates"""
        now = time.time()
        if now - self.last_log_update >= CONFIG["log_interval"]:
            self.logger.log("STATE", self.tracker.stats())
            self.last_log_update = now

    def is_playback_finished(self) -> bool:
        source = self.source.inner if isinstance(self.source, RecordingSource) else self.source
        if isinstance(source, PlaybackSource):
            return source.is_finished()
        return False

    def _pending_tasks(self) -> list[asyncio.Task]:
        return [t for t in (self.stop_task, self.tracker.stop_task) if t is not None and not t.done()]

    async def run(self):
        """Recover, track until stopped, then shut down cleanly"""
        print("\n=== Trailtrack ===")
        print("Press Ctrl+C to stop\n")

        loop = asyncio.get_running_loop()
        try:
            loop.add_signal_handler(signal.SIGINT, self.request_stop)
        except (NotImplementedError, RuntimeError):
            pass  # signal handlers are unavailable on some platforms

        try:
            outcome = await self.startup()
            if outcome == KEPT:
                self.logger.log("Unsaved route left in backup, not starting a new route")
                return
            self.tracker.start(keep_route=outcome == CONTINUE)

            while self.tracker.is_tracking or self._pending_tasks():
                if self.is_playback_finished() and self.tracker.is_tracking and not self._pending_tasks():
                    print("\nPlayback finished")
                    self.logger.log("Playback finished")
                    self.request_stop()
                self.periodic_update()
                await asyncio.sleep(CONFIG["loop_interval"])

            for task in (self.stop_task, self.tracker.stop_task):
                if task is not None:
                    await task
        finally:
            try:
                loop.remove_signal_handler(signal.SIGINT)
            except (NotImplementedError, RuntimeError):
                pass
            self.tracker.cleanup()

            if isinstance(self.source, RecordingSource):
                self.source.save()
                self.logger.log("GPS trace saved", {"path": self.source.record_path,
                                                    "entries": len(self.source.trace)})

            sessions = self.sessions.list()
            self.logger.log("Run summary", {"saved_sessions": len(sessions)})
            self.logger.close()
