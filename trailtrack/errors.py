"""Exceptions and error values for Trailtrack."""

from dataclasses import dataclass


class TrailError(Exception):
    """Base class for Trailtrack errors"""


class UnsupportedSource(TrailError):
    """No usable position source is available"""


class InvalidSession(TrailError):
    """A session cannot be saved (empty name or empty route)"""


class StorageError(TrailError):
    """The durable store failed to read or write"""


class StorageFullError(StorageError):
    """A write would exceed the store's quota"""


@dataclass(frozen=True)
class PositionError:
    """Error reported by a position source through its on_error callback"""
    code: str
    message: str = ""

    PERMISSION_DENIED = "permission_denied"
    UNAVAILABLE = "unavailable"
    TIMEOUT = "timeout"
    UNKNOWN = "unknown"

    CODES = (PERMISSION_DENIED, UNAVAILABLE, TIMEOUT, UNKNOWN)

    @classmethod
    def from_code(cls, code: str, message: str = "") -> "PositionError":
        """Build an error from a code string, mapping unknown codes to UNKNOWN"""
        if code not in cls.CODES:
            code = cls.UNKNOWN
        return cls(code=code, message=message)

    @property
    def is_fatal(self) -> bool:
        return self.code == self.PERMISSION_DENIED

    def describe(self) -> str:
        """Human readable description for the user"""
        text = {
            self.PERMISSION_DENIED: "Location permission denied. Please enable location access and try again.",
            self.UNAVAILABLE: "Location information unavailable. Please check your GPS settings.",
            self.TIMEOUT: "Location request timed out.",
        }.get(self.code, "An unknown error occurred.")
        if self.message:
            text += f" ({self.message})"
        return f"GPS error: {text}"
