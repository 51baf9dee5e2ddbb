"""Clock/timer service and the elapsed-time clock."""

import asyncio
import time
from typing import Callable, Optional, Protocol


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Clock(Protocol):
    """Wall-clock time plus one-shot and periodic callbacks"""

    def now_ms(self) -> int: ...

    def call_later(self, delay_ms: float, callback: Callable[[], None]) -> TimerHandle: ...

    def call_every(self, interval_ms: float, callback: Callable[[], None]) -> TimerHandle: ...


class _Periodic:
    """Repeating callback on an asyncio loop; cancel() is final"""

    def __init__(self, loop: asyncio.AbstractEventLoop, interval_ms: float,
                 callback: Callable[[], None]):
        self._loop = loop
        self._interval = interval_ms / 1000
        self._callback = callback
        self._cancelled = False
        self._handle = loop.call_later(self._interval, self._tick)

    def _tick(self):
        if self._cancelled:
            return
        self._handle = self._loop.call_later(self._interval, self._tick)
        self._callback()

    def cancel(self):
        self._cancelled = True
        self._handle.cancel()


class LoopClock:
    """Clock backed by the running asyncio event loop"""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        return self._loop or asyncio.get_running_loop()

    def now_ms(self) -> int:
        return int(time.time() * 1000)

    def call_later(self, delay_ms: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
        return self.loop.call_later(delay_ms / 1000, callback)

    def call_every(self, interval_ms: float, callback: Callable[[], None]) -> _Periodic:
        return _Periodic(self.loop, interval_ms, callback)


class ElapsedClock:
    """Session stopwatch: freezes while paused, can start from a restored offset"""

    def __init__(self, clock: Clock):
        self.clock = clock
        self.running = False
        self.paused = False
        self._started_at = 0
        self._elapsed = 0

    def start(self, offset_ms: int = 0):
        if self.running:
            return
        self._elapsed = offset_ms
        self._started_at = self.clock.now_ms() - offset_ms
        self.running = True
        self.paused = False

    def pause(self):
        if not self.running or self.paused:
            return
        self._elapsed = self.clock.now_ms() - self._started_at
        self.paused = True

    def resume(self):
        if not self.running or not self.paused:
            return
        self._started_at = self.clock.now_ms() - self._elapsed
        self.paused = False

    def stop(self):
        if not self.running:
            return
        if not self.paused:
            self._elapsed = self.clock.now_ms() - self._started_at
        self.running = False
        self.paused = False

    def reset(self):
        self.running = False
        self.paused = False
        self._started_at = 0
        self._elapsed = 0

    def elapsed_ms(self) -> int:
        if self.running and not self.paused:
            return self.clock.now_ms() - self._started_at
        return self._elapsed


def format_duration(milliseconds: int) -> str:
    """Format a duration as '1h 2m 3s', '2m 3s' or '3s'"""
    total_seconds = int(milliseconds // 1000)
    hours = total_seconds // 3600
    minutes = (total_seconds % 3600) // 60
    seconds = total_seconds % 60

    if hours > 0:
        return f"{hours}h {minutes}m {seconds}s"
    elif minutes > 0:
        return f"{minutes}m {seconds}s"
    return f"{seconds}s"
