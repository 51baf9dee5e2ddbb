"""Data classes for Trailtrack.

Persisted records use the camelCase field names shared with the mobile
client's storage format. ``from_dict`` also accepts the legacy names written
by earlier clients (``type``, ``date``, ``totalDistance``, ``elapsedTime``,
``routeData``, ``timestamp``).
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class Lifecycle(Enum):
    IDLE = "idle"
    TRACKING = "tracking"
    PAUSED = "paused"
    STOPPED = "stopped"


LOCATION = "location"
PHOTO = "photo"
TEXT = "text"
POINT_KINDS = (LOCATION, PHOTO, TEXT)


@dataclass(frozen=True)
class Coords:
    lat: float
    lng: float

    def to_dict(self) -> dict:
        return {"lat": self.lat, "lng": self.lng}

    @classmethod
    def from_dict(cls, d: dict) -> "Coords":
        lng = d["lng"] if "lng" in d else d["lon"]
        return cls(lat=float(d["lat"]), lng=float(lng))


@dataclass(frozen=True)
class Fix:
    """A raw reading from a position source"""
    lat: float
    lng: float
    accuracy: float  # meters
    timestamp: Optional[int] = None  # epoch ms

    @property
    def coords(self) -> Coords:
        return Coords(self.lat, self.lng)


@dataclass(frozen=True)
class RoutePoint:
    """One entry of a session timeline; never modified after it is appended"""
    kind: str
    timestamp: int  # epoch ms
    coords: Optional[Coords] = None
    accuracy: Optional[float] = None
    content: Any = None

    @classmethod
    def location(cls, fix: Fix, timestamp: int) -> "RoutePoint":
        return cls(kind=LOCATION, timestamp=timestamp, coords=fix.coords, accuracy=fix.accuracy)

    def to_dict(self) -> dict:
        d: dict = {"kind": self.kind, "timestamp": self.timestamp}
        if self.coords is not None:
            d["coords"] = self.coords.to_dict()
        if self.accuracy is not None:
            d["accuracy"] = self.accuracy
        if self.content is not None:
            d["content"] = self.content
        return d

    @classmethod
    def from_dict(cls, d: dict) -> "RoutePoint":
        kind = d["kind"] if "kind" in d else d["type"]
        if kind not in POINT_KINDS:
            raise ValueError(f"unknown route point kind: {kind!r}")
        coords = d.get("coords")
        return cls(
            kind=kind,
            timestamp=int(d["timestamp"]),
            coords=Coords.from_dict(coords) if coords else None,
            accuracy=d.get("accuracy"),
            content=d.get("content"),
        )


@dataclass
class TrackingSession:
    """Working state of the route currently being recorded"""
    route_log: list[RoutePoint] = field(default_factory=list)
    path_points: list[Coords] = field(default_factory=list)
    total_distance_km: float = 0.0
    elapsed_ms: int = 0
    started_at_ms: Optional[int] = None
    last_accepted_coords: Optional[Coords] = None
    lifecycle: Lifecycle = Lifecycle.IDLE

    def clear(self):
        """Drop all route data; the lifecycle is left to the state machine"""
        self.route_log = []
        self.path_points = []
        self.total_distance_km = 0.0
        self.elapsed_ms = 0
        self.started_at_ms = None
        self.last_accepted_coords = None

    @property
    def is_empty(self) -> bool:
        return not self.route_log

    def count(self, kind: str) -> int:
        return sum(1 for p in self.route_log if p.kind == kind)


@dataclass(frozen=True)
class SavedSession:
    id: int  # creation time, epoch ms
    name: str
    iso_date: str
    total_distance_km: float
    elapsed_ms: int
    data: tuple[RoutePoint, ...]

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "isoDate": self.iso_date,
            "totalDistanceKm": self.total_distance_km,
            "elapsedMs": self.elapsed_ms,
            "data": [p.to_dict() for p in self.data],
        }

    @classmethod
    def from_dict(cls, d: dict) -> "SavedSession":
        return cls(
            id=int(d["id"]),
            name=str(d["name"]),
            iso_date=d.get("isoDate", d.get("date", "")),
            total_distance_km=float(d.get("totalDistanceKm", d.get("totalDistance", 0.0))),
            elapsed_ms=int(d.get("elapsedMs", d.get("elapsedTime", 0))),
            data=tuple(RoutePoint.from_dict(p) for p in d["data"]),
        )


@dataclass(frozen=True)
class BackupSnapshot:
    """Single-slot mirror of an in-progress TrackingSession"""
    route_log: tuple[RoutePoint, ...]
    path_points: tuple[Coords, ...]
    total_distance_km: float
    elapsed_ms: int
    started_at_ms: Optional[int]
    backup_time_ms: int
    is_tracking: bool = False
    is_paused: bool = False

    @classmethod
    def from_session(cls, session: TrackingSession, backup_time_ms: int) -> "BackupSnapshot":
        return cls(
            route_log=tuple(session.route_log),
            path_points=tuple(session.path_points),
            total_distance_km=session.total_distance_km,
            elapsed_ms=session.elapsed_ms,
            started_at_ms=session.started_at_ms,
            backup_time_ms=backup_time_ms,
            is_tracking=session.lifecycle in (Lifecycle.TRACKING, Lifecycle.PAUSED),
            is_paused=session.lifecycle == Lifecycle.PAUSED,
        )

    def to_dict(self) -> dict:
        return {
            "routeLog": [p.to_dict() for p in self.route_log],
            "pathPoints": [c.to_dict() for c in self.path_points],
            "totalDistanceKm": self.total_distance_km,
            "elapsedMs": self.elapsed_ms,
            "startedAtMs": self.started_at_ms,
            "backupTimeMs": self.backup_time_ms,
            "isTracking": self.is_tracking,
            "isPaused": self.is_paused,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "BackupSnapshot":
        raw_log = d["routeLog"] if "routeLog" in d else d["routeData"]
        route_log = tuple(RoutePoint.from_dict(p) for p in raw_log)
        if "pathPoints" in d:
            path_points = tuple(Coords.from_dict(c) for c in d["pathPoints"])
        else:
            path_points = tuple(p.coords for p in route_log if p.kind == LOCATION and p.coords)
        started_at = d.get("startedAtMs")
        return cls(
            route_log=route_log,
            path_points=path_points,
            total_distance_km=float(d.get("totalDistanceKm", d.get("totalDistance", 0.0))),
            elapsed_ms=int(d.get("elapsedMs", d.get("elapsedTime", 0))),
            started_at_ms=int(started_at) if started_at is not None else None,
            backup_time_ms=int(d["backupTimeMs"] if "backupTimeMs" in d else d["timestamp"]),
            is_tracking=bool(d.get("isTracking", False)),
            is_paused=bool(d.get("isPaused", False)),
        )
