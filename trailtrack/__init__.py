"""Trailtrack - GPS trail logger with crash-safe route recording."""

from .config import CONFIG
from .errors import (
    TrailError,
    UnsupportedSource,
    InvalidSession,
    StorageError,
    StorageFullError,
    PositionError,
)
from .models import (
    Lifecycle,
    Coords,
    Fix,
    RoutePoint,
    TrackingSession,
    SavedSession,
    BackupSnapshot,
)
from .logger import Logger
from .geo import haversine_distance, distance_between, format_distance, DistanceAccumulator
from .filter import PositionFilter, FilterResult
from .timer import LoopClock, ElapsedClock, format_duration
from .gps import SubscribeOptions, TermuxSource, RecordingSource, PlaybackSource
from .bridge import WebSocketBridge
from .render import NullRenderer
from .store import MemoryStore, SQLiteStore, storage_usage
from .sessions import SessionStore
from .backup import BackupManager
from .prompts import ConsoleDecisions
from .tracker import TrackingStateMachine
from .app import TrailApp
from .__main__ import main

__all__ = [
    "CONFIG",
    "TrailError",
    "UnsupportedSource",
    "InvalidSession",
    "StorageError",
    "StorageFullError",
    "PositionError",
    "Lifecycle",
    "Coords",
    "Fix",
    "RoutePoint",
    "TrackingSession",
    "SavedSession",
    "BackupSnapshot",
    "Logger",
    "haversine_distance",
    "distance_between",
    "format_distance",
    "DistanceAccumulator",
    "PositionFilter",
    "FilterResult",
    "LoopClock",
    "ElapsedClock",
    "format_duration",
    "SubscribeOptions",
    "TermuxSource",
    "RecordingSource",
    "PlaybackSource",
    "WebSocketBridge",
    "NullRenderer",
    "MemoryStore",
    "SQLiteStore",
    "storage_usage",
    "SessionStore",
    "BackupManager",
    "ConsoleDecisions",
    "TrackingStateMachine",
    "TrailApp",
    "main",
]
