"""Position sources: live GPS, recording and playback."""

import asyncio
import json
import shutil
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional, Protocol, Union

from .config import CONFIG
from .errors import PositionError
from .models import Fix
from .timer import Clock, TimerHandle

FixCallback = Callable[[Fix], None]
ErrorCallback = Callable[[PositionError], None]


@dataclass(frozen=True)
class SubscribeOptions:
    high_accuracy: bool = field(default_factory=lambda: CONFIG["high_accuracy"])
    max_fix_age_ms: int = field(default_factory=lambda: CONFIG["max_fix_age_ms"])
    timeout_ms: int = field(default_factory=lambda: CONFIG["fix_timeout_ms"])


class PositionSource(Protocol):
    def is_available(self) -> bool: ...

    def subscribe(self, on_fix: FixCallback, on_error: ErrorCallback,
                  options: SubscribeOptions) -> int: ...

    def unsubscribe(self, handle: int) -> None: ...


class SubscriberSet:
    """Bookkeeping shared by sources that fan fixes out to subscribers.

    Once a handle is unsubscribed its callbacks are never invoked again.
    """

    def __init__(self):
        self._next_handle = 1
        self._subscribers: dict[int, tuple[FixCallback, ErrorCallback, SubscribeOptions]] = {}

    def subscribe(self, on_fix: FixCallback, on_error: ErrorCallback,
                  options: Optional[SubscribeOptions] = None) -> int:
        handle = self._next_handle
        self._next_handle += 1
        self._subscribers[handle] = (on_fix, on_error, options or SubscribeOptions())
        return handle

    def unsubscribe(self, handle: int):
        self._subscribers.pop(handle, None)

    @property
    def has_subscribers(self) -> bool:
        return bool(self._subscribers)

    @property
    def options(self) -> SubscribeOptions:
        for _, _, options in self._subscribers.values():
            return options
        return SubscribeOptions()

    def emit_fix(self, fix: Fix):
        for handle in list(self._subscribers):
            entry = self._subscribers.get(handle)
            if entry:
                entry[0](fix)

    def emit_error(self, error: PositionError):
        for handle in list(self._subscribers):
            entry = self._subscribers.get(handle)
            if entry:
                entry[1](error)


class TermuxSource(SubscriberSet):
    """Live GPS via the Termux API, polled on the asyncio loop"""

    def __init__(self, clock: Clock, poll_interval: Optional[float] = None):
        super().__init__()
        self.clock = clock
        self.poll_interval = poll_interval if poll_interval is not None else CONFIG["gps_poll_interval"]
        self.consecutive_failures = 0
        self.last_fix: Optional[Fix] = None
        self._task: Optional[asyncio.Task] = None

    def is_available(self) -> bool:
        return shutil.which("termux-location") is not None

    def subscribe(self, on_fix: FixCallback, on_error: ErrorCallback,
                  options: Optional[SubscribeOptions] = None) -> int:
        handle = super().subscribe(on_fix, on_error, options)
        if self._task is None:
            self._task = asyncio.get_running_loop().create_task(self._poll())
        return handle

    def unsubscribe(self, handle: int):
        super().unsubscribe(handle)
        if not self.has_subscribers and self._task is not None:
            self._task.cancel()
            self._task = None

    async def _poll(self):
        while self.has_subscribers:
            result = await self.read_location(self.options)
            if isinstance(result, Fix):
                self.emit_fix(result)
            else:
                self.emit_error(result)
            await asyncio.sleep(self.poll_interval)

    async def read_location(self, options: SubscribeOptions) -> Union[Fix, PositionError]:
        """Run termux-location once and translate its outcome"""
        provider = "gps" if options.high_accuracy else "network"
        request = "once" if options.max_fix_age_ms == 0 else "last"
        try:
            proc = await asyncio.create_subprocess_exec(
                "termux-location", "-p", provider, "-r", request,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError:
            self.consecutive_failures += 1
            return PositionError(PositionError.UNAVAILABLE, "termux-location not installed")

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), options.timeout_ms / 1000)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            self.consecutive_failures += 1
            return PositionError(PositionError.TIMEOUT)

        if proc.returncode != 0:
            self.consecutive_failures += 1
            error_msg = stderr.decode().strip() if stderr else "unknown error"
            if "permission" in error_msg.lower():
                return PositionError(PositionError.PERMISSION_DENIED, error_msg)
            return PositionError(PositionError.UNAVAILABLE, error_msg)

        if not stdout or not stdout.strip():
            self.consecutive_failures += 1
            return PositionError(PositionError.UNAVAILABLE, "empty response")

        try:
            data = json.loads(stdout)
            fix = Fix(
                lat=float(data["latitude"]),
                lng=float(data["longitude"]),
                accuracy=float(data.get("accuracy", float("inf"))),
                timestamp=self.clock.now_ms(),
            )
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            self.consecutive_failures += 1
            return PositionError(PositionError.UNKNOWN, f"unparseable response: {e}")

        self.last_fix = fix
        self.consecutive_failures = 0
        return fix

    def get_status(self) -> str:
        if self.consecutive_failures == 0:
            acc = f", accuracy {self.last_fix.accuracy:.0f}m" if self.last_fix else ""
            return f"GPS OK{acc}"
        return f"GPS: {self.consecutive_failures} consecutive failures"


class RecordingSource:
    """Wraps another source and records every fix and error to a trace file"""

    def __init__(self, inner: PositionSource, record_path: str, clock: Clock):
        self.inner = inner
        self.record_path = record_path
        self.clock = clock
        self.trace: list[dict] = []
        self.start_ms = clock.now_ms()

    def is_available(self) -> bool:
        return self.inner.is_available()

    def subscribe(self, on_fix: FixCallback, on_error: ErrorCallback,
                  options: Optional[SubscribeOptions] = None) -> int:
        def record_fix(fix: Fix):
            self._record({"lat": fix.lat, "lng": fix.lng, "accuracy": fix.accuracy}, None)
            on_fix(fix)

        def record_error(error: PositionError):
            self._record(None, error.code)
            on_error(error)

        return self.inner.subscribe(record_fix, record_error, options or SubscribeOptions())

    def unsubscribe(self, handle: int):
        self.inner.unsubscribe(handle)

    def _record(self, location: Optional[dict], error: Optional[str]):
        now = self.clock.now_ms()
        entry = {
            "elapsed": (now - self.start_ms) / 1000,
            "timestamp": now,
            "location": location,
        }
        if error:
            entry["error"] = error
        self.trace.append(entry)

    def save(self):
        """Save trace to file"""
        with open(self.record_path, "w") as f:
            json.dump({
                "recorded_at": datetime.now().isoformat(),
                "trace": self.trace
            }, f, indent=2)


class PlaybackSource(SubscriberSet):
    """Plays back a recorded trace, pacing fixes by the recorded timing"""

    def __init__(self, playback_path: str, clock: Clock, speed: float = 1.0):
        super().__init__()
        self.playback_path = playback_path
        self.clock = clock
        self.speed = speed
        self.index = 0
        self._pending: Optional[TimerHandle] = None

        with open(playback_path) as f:
            data = json.load(f)
            self.trace: list[dict] = data["trace"]

    def is_available(self) -> bool:
        return True

    def subscribe(self, on_fix: FixCallback, on_error: ErrorCallback,
                  options: Optional[SubscribeOptions] = None) -> int:
        handle = super().subscribe(on_fix, on_error, options)
        if self._pending is None:
            self._schedule()
        return handle

    def unsubscribe(self, handle: int):
        super().unsubscribe(handle)
        if not self.has_subscribers and self._pending is not None:
            self._pending.cancel()
            self._pending = None

    def _schedule(self):
        if self.is_finished():
            self._pending = None
            return
        self._pending = self.clock.call_later(self.get_poll_interval() * 1000, self._step)

    def _step(self):
        self._pending = None
        if self.is_finished() or not self.has_subscribers:
            return

        entry = self.trace[self.index]
        self.index += 1

        location = entry.get("location")
        if location:
            lng = location["lng"] if "lng" in location else location["lon"]
            accuracy = location.get("accuracy")
            self.emit_fix(Fix(
                lat=location["lat"],
                lng=lng,
                accuracy=float(accuracy) if accuracy is not None else float("inf"),
                timestamp=self.clock.now_ms(),
            ))
        else:
            self.emit_error(PositionError.from_code(entry.get("error", PositionError.TIMEOUT)))

        if self.has_subscribers:
            self._schedule()

    def get_poll_interval(self) -> float:
        """Seconds to wait before the next entry, from trace timing and speed"""
        low, high = CONFIG["playback_min_interval"], CONFIG["playback_max_interval"]
        if self.index <= 0 or self.index >= len(self.trace):
            return low

        prev_elapsed = self.trace[self.index - 1].get("elapsed", 0)
        curr_elapsed = self.trace[self.index].get("elapsed", 0)
        interval = (curr_elapsed - prev_elapsed) / self.speed
        return max(low, min(interval, high))

    def is_finished(self) -> bool:
        return self.index >= len(self.trace)

    def get_status(self) -> str:
        return f"Playback ({self.index}/{len(self.trace)})"
