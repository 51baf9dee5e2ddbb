"""
Shared fakes for Trailtrack tests.

The engine only talks to its collaborators through injected objects, so
every test runs against a manual clock, a scripted position source, a
recording renderer and a scripted decision surface.
"""

from dataclasses import dataclass

import pytest

from trailtrack.backup import BackupManager
from trailtrack.gps import SubscriberSet
from trailtrack.logger import Logger
from trailtrack.models import Fix
from trailtrack.sessions import SessionStore
from trailtrack.store import MemoryStore
from trailtrack.tracker import TrackingStateMachine

START_MS = 1_700_000_000_000

# prompt_text answer meaning "accept the offered default"
DEFAULT = object()


class FakeHandle:
    def __init__(self):
        self.cancelled = False

    def cancel(self):
        self.cancelled = True


class FakeClock:
    """Manual clock: time only moves when advance() is called"""

    def __init__(self, start_ms: int = START_MS):
        self.now = start_ms
        self._timers = []  # [due_ms, seq, interval_ms or None, callback, handle]
        self._seq = 0

    def now_ms(self) -> int:
        return self.now

    def _add(self, delay_ms, interval_ms, callback):
        handle = FakeHandle()
        self._seq += 1
        self._timers.append([self.now + delay_ms, self._seq, interval_ms, callback, handle])
        return handle

    def call_later(self, delay_ms, callback):
        return self._add(delay_ms, None, callback)

    def call_every(self, interval_ms, callback):
        return self._add(interval_ms, interval_ms, callback)

    @property
    def active_timers(self) -> int:
        return sum(1 for t in self._timers if not t[4].cancelled)

    def advance(self, ms: float):
        """Move time forward, firing due callbacks in order"""
        target = self.now + ms
        while True:
            due = [t for t in self._timers if not t[4].cancelled and t[0] <= target]
            if not due:
                break
            timer = min(due, key=lambda t: (t[0], t[1]))
            self.now = timer[0]
            if timer[2] is None:
                self._timers.remove(timer)
            else:
                timer[0] += timer[2]
            timer[3]()
        self._timers = [t for t in self._timers if not t[4].cancelled]
        self.now = target


class FakeSource(SubscriberSet):
    """Position source driven by the test; keeps every callback ever subscribed"""

    def __init__(self, available: bool = True):
        super().__init__()
        self.available = available
        self.all_callbacks = {}
        self.subscribe_count = 0
        self.unsubscribe_count = 0
        self.last_options = None

    def is_available(self) -> bool:
        return self.available

    def subscribe(self, on_fix, on_error, options=None):
        handle = super().subscribe(on_fix, on_error, options)
        self.all_callbacks[handle] = (on_fix, on_error)
        self.subscribe_count += 1
        self.last_options = options
        return handle

    def unsubscribe(self, handle):
        super().unsubscribe(handle)
        self.unsubscribe_count += 1

    @property
    def active(self) -> int:
        return len(self._subscribers)

    def push(self, lat, lng, accuracy=10.0):
        self.emit_fix(Fix(lat=lat, lng=lng, accuracy=accuracy))

    def push_error(self, error):
        self.emit_error(error)

    def deliver_late(self, handle, lat, lng, accuracy=10.0):
        """Invoke a callback even if its subscription was cancelled"""
        self.all_callbacks[handle][0](Fix(lat=lat, lng=lng, accuracy=accuracy))


class RecordingRenderer:
    def __init__(self):
        self.calls = []

    def add_route_segment(self, prev, curr):
        self.calls.append(("segment", prev, curr))

    def update_marker_position(self, coords):
        self.calls.append(("marker", coords))

    def clear_route(self):
        self.calls.append(("clear",))

    def of(self, kind):
        return [c for c in self.calls if c[0] == kind]


class ScriptedDecisions:
    """Answers confirm/prompt_text from queues and records everything asked"""

    def __init__(self, confirms=(), prompts=()):
        self.confirms = list(confirms)
        self.prompts = list(prompts)
        self.asked = []
        self.notices = []

    async def confirm(self, message):
        self.asked.append(message)
        if not self.confirms:
            raise AssertionError(f"unexpected confirm: {message}")
        return self.confirms.pop(0)

    async def prompt_text(self, message, default=""):
        self.asked.append(message)
        if not self.prompts:
            raise AssertionError(f"unexpected prompt: {message}")
        answer = self.prompts.pop(0)
        return default if answer is DEFAULT else answer

    def notify(self, message):
        self.notices.append(message)


@dataclass
class Harness:
    clock: FakeClock
    store: MemoryStore
    source: FakeSource
    renderer: RecordingRenderer
    decisions: ScriptedDecisions
    logger: Logger
    sessions: SessionStore
    backup: BackupManager
    tracker: TrackingStateMachine


def build_harness(clock=None, store=None, source=None, decisions=None) -> Harness:
    clock = clock or FakeClock()
    store = store if store is not None else MemoryStore()
    source = source or FakeSource()
    decisions = decisions or ScriptedDecisions()
    renderer = RecordingRenderer()
    logger = Logger(echo=False)
    sessions = SessionStore(store, clock, logger)
    backup = BackupManager(store, clock, renderer, logger, notify=decisions.notify)
    tracker = TrackingStateMachine(source, clock, sessions, backup, decisions,
                                   renderer=renderer, logger=logger)
    return Harness(clock, store, source, renderer, decisions, logger, sessions, backup, tracker)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def harness():
    return build_harness()
