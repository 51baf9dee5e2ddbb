import asyncio
import json

import pytest

from trailtrack.config import CONFIG
from trailtrack.errors import PositionError, UnsupportedSource
from trailtrack.geo import distance_between
from trailtrack.models import Coords, Lifecycle, LOCATION, PHOTO, RoutePoint, TEXT
from trailtrack.store import MemoryStore
from trailtrack.tracker import DISCARDED, EMPTY, KEPT, SAVED

from conftest import DEFAULT, FakeSource, ScriptedDecisions, build_harness


def two_point_route(h):
    h.tracker.start()
    h.source.push(32.0000, 34.0000, accuracy=10)
    h.source.push(32.0010, 34.0000, accuracy=10)


# -- start -------------------------------------------------------------------

def test_start_enters_tracking_and_subscribes(harness):
    assert harness.tracker.start() is True
    assert harness.tracker.lifecycle == Lifecycle.TRACKING
    assert harness.source.active == 1
    options = harness.source.last_options
    assert options.high_accuracy is True
    assert options.max_fix_age_ms == 0
    assert options.timeout_ms == 15000
    assert harness.tracker.session.started_at_ms == harness.clock.now


def test_start_twice_is_a_noop(harness):
    harness.tracker.start()
    assert harness.tracker.start() is False
    assert harness.source.subscribe_count == 1


def test_start_without_source_raises():
    h = build_harness(source=FakeSource(available=False))
    with pytest.raises(UnsupportedSource):
        h.tracker.start()
    assert h.tracker.lifecycle == Lifecycle.IDLE


def test_start_clears_previous_route(harness):
    harness.tracker.session.route_log.append(RoutePoint(kind=TEXT, timestamp=1, content="old"))
    harness.tracker.session.total_distance_km = 3.0
    harness.tracker.start()
    assert harness.tracker.session.route_log == []
    assert harness.tracker.session.total_distance_km == 0.0
    assert ("clear",) in harness.renderer.calls


# -- fixes ---------------------------------------------------------------------

def test_accuracy_and_distance_scenario(harness):
    two_point_route(harness)
    session = harness.tracker.session
    assert session.total_distance_km == pytest.approx(0.111, abs=1e-3)
    assert len(harness.renderer.of("segment")) == 1
    assert len(session.path_points) == 2

    harness.source.push(32.0010, 34.0000, accuracy=150)
    assert session.total_distance_km == pytest.approx(0.111, abs=1e-3)
    assert len(session.path_points) == 2
    assert session.last_accepted_coords == Coords(32.0010, 34.0000)


def test_first_fix_adds_point_and_marker_but_no_segment(harness):
    harness.tracker.start()
    harness.source.push(32.0, 34.0)
    assert harness.tracker.session.total_distance_km == 0.0
    assert harness.renderer.of("segment") == []
    assert harness.renderer.of("marker") == [("marker", Coords(32.0, 34.0))]
    point = harness.tracker.session.route_log[0]
    assert point.kind == LOCATION
    assert point.accuracy == 10.0
    assert point.timestamp == harness.clock.now


def test_low_accuracy_fix_never_changes_state(harness):
    harness.tracker.start()
    harness.source.push(32.0, 34.0, accuracy=101)
    session = harness.tracker.session
    assert session.route_log == []
    assert session.path_points == []
    assert session.last_accepted_coords is None
    assert session.total_distance_km == 0.0


@pytest.mark.parametrize("lat, lng, accuracy", [
    (float("nan"), 34.0, 5.0),
    (32.0, float("inf"), 5.0),
    (32.0005, 34.0, float("nan")),
])
def test_non_finite_fix_never_changes_state(harness, lat, lng, accuracy):
    harness.tracker.start()
    harness.source.push(32.0, 34.0)
    harness.source.push(lat, lng, accuracy=accuracy)
    harness.source.push(32.001, 34.0)
    session = harness.tracker.session
    assert len(session.path_points) == 2
    assert session.total_distance_km == pytest.approx(0.1112, abs=1e-3)


def test_jitter_is_suppressed(harness):
    harness.tracker.start()
    harness.source.push(32.0, 34.0)
    harness.source.push(32.00001, 34.0)  # ~1 m
    assert len(harness.tracker.session.path_points) == 1


def test_total_equals_sum_over_accepted_points(harness):
    harness.tracker.start()
    raw = [
        (32.0, 34.0, 10), (32.00001, 34.0, 10), (32.0005, 34.0, 10), (32.0005, 34.0, 300),
        (32.0009, 34.0004, 20), (32.0009, 34.00041, 20), (32.002, 34.001, 50),
    ]
    totals = []
    for lat, lng, acc in raw:
        harness.source.push(lat, lng, accuracy=acc)
        totals.append(harness.tracker.session.total_distance_km)

    path = harness.tracker.session.path_points
    expected = sum(distance_between(a, b) for a, b in zip(path, path[1:]))
    assert harness.tracker.session.total_distance_km == pytest.approx(expected)
    assert totals == sorted(totals)
    for a, b in zip(path, path[1:]):
        assert distance_between(a, b) >= CONFIG["min_movement_km"]


# -- pause / resume -------------------------------------------------------------

def test_pause_resume_preserves_route_and_drops_paused_fixes(harness):
    two_point_route(harness)
    first_handle = 1
    before = (list(harness.tracker.session.route_log), harness.tracker.session.total_distance_km)

    assert harness.tracker.pause() is True
    assert harness.tracker.lifecycle == Lifecycle.PAUSED
    assert harness.source.active == 0

    # A fix that was in flight when the subscription was cancelled
    harness.source.deliver_late(first_handle, 32.0050, 34.0)
    assert (harness.tracker.session.route_log, harness.tracker.session.total_distance_km) == before

    assert harness.tracker.resume() is True
    assert harness.tracker.lifecycle == Lifecycle.TRACKING
    assert harness.source.active == 1
    assert (harness.tracker.session.route_log, harness.tracker.session.total_distance_km) == before

    # The old subscription stays dead after resuming
    harness.source.deliver_late(first_handle, 32.0050, 34.0)
    assert len(harness.tracker.session.path_points) == 2

    harness.source.push(32.0020, 34.0)
    assert len(harness.tracker.session.path_points) == 3


def test_toggle_pause(harness):
    assert harness.tracker.toggle_pause() is False
    harness.tracker.start()
    assert harness.tracker.toggle_pause() is True
    assert harness.tracker.is_paused
    assert harness.tracker.toggle_pause() is True
    assert harness.tracker.lifecycle == Lifecycle.TRACKING


def test_pause_and_resume_illegal_from_idle(harness):
    assert harness.tracker.pause() is False
    assert harness.tracker.resume() is False


def test_elapsed_clock_freezes_while_paused(harness):
    harness.tracker.start()
    harness.clock.advance(10000)
    harness.tracker.pause()
    harness.clock.advance(50000)
    assert harness.tracker.stats()["elapsed_ms"] == 10000
    harness.tracker.resume()
    harness.clock.advance(5000)
    assert harness.tracker.stats()["elapsed_ms"] == 15000


# -- annotations ----------------------------------------------------------------

def test_annotations_pass_through(harness):
    assert harness.tracker.add_annotation(TEXT, "trail closed") is False
    two_point_route(harness)
    assert harness.tracker.add_annotation(PHOTO, "data:image/jpeg;base64,AAAA") is True
    assert harness.tracker.add_annotation(TEXT, "bench here", Coords(1.0, 2.0)) is True

    photo, note = harness.tracker.session.route_log[-2:]
    assert photo.content == "data:image/jpeg;base64,AAAA"
    assert photo.coords == Coords(32.0010, 34.0000)
    assert note.coords == Coords(1.0, 2.0)
    assert len(harness.tracker.session.path_points) == 2

    with pytest.raises(ValueError):
        harness.tracker.add_annotation(LOCATION, "nope")


# -- backup timer -----------------------------------------------------------------

def test_backup_timer_runs_only_while_tracking(harness):
    harness.tracker.start()
    harness.clock.advance(30000)
    assert harness.store.get(CONFIG["backup_key"]) is None  # empty route is not backed up

    harness.source.push(32.0, 34.0)
    harness.clock.advance(30000)
    stored = json.loads(harness.store.get(CONFIG["backup_key"]))
    assert len(stored["routeLog"]) == 1
    assert stored["isTracking"] is True
    assert stored["isPaused"] is False

    harness.tracker.pause()
    assert not harness.backup.timer_running
    stored = json.loads(harness.store.get(CONFIG["backup_key"]))
    assert stored["isPaused"] is True

    harness.tracker.resume()
    assert harness.backup.timer_running


def test_backup_timer_restarts_on_resume(harness):
    harness.tracker.start()
    harness.source.push(32.0, 34.0)
    harness.clock.advance(20000)
    harness.tracker.pause()
    harness.store.remove(CONFIG["backup_key"])
    harness.tracker.resume()
    harness.clock.advance(20000)
    assert harness.store.get(CONFIG["backup_key"]) is None
    harness.clock.advance(10000)
    assert harness.store.get(CONFIG["backup_key"]) is not None


def test_backup_write_failure_does_not_interrupt_tracking():
    h = build_harness(store=MemoryStore(quota_bytes=10))
    h.tracker.start()
    h.source.push(32.0, 34.0)
    h.clock.advance(30000)
    assert h.tracker.lifecycle == Lifecycle.TRACKING
    assert any("back up" in n for n in h.decisions.notices)
    h.source.push(32.001, 34.0)
    assert len(h.tracker.session.path_points) == 2


# -- stop and save-or-discard -------------------------------------------------------

def test_stop_from_idle_returns_false(harness):
    assert asyncio.run(harness.tracker.stop()) is False


def test_stop_with_empty_route_does_not_prompt(harness):
    harness.tracker.start()
    assert asyncio.run(harness.tracker.stop()) is True
    assert harness.decisions.asked == []
    assert harness.tracker.lifecycle == Lifecycle.IDLE
    assert harness.source.active == 0


def test_stop_and_save():
    h = build_harness(decisions=ScriptedDecisions(confirms=[True], prompts=["Morning walk"]))
    two_point_route(h)
    h.tracker.add_annotation(PHOTO, "img")
    h.clock.advance(30000)
    assert h.store.get(CONFIG["backup_key"]) is not None

    assert asyncio.run(h.tracker.stop()) is True

    assert "GPS Points: 2" in h.decisions.asked[0]
    assert "Photos: 1" in h.decisions.asked[0]
    saved = h.sessions.list()
    assert [s.name for s in saved] == ["Morning walk"]
    assert len(saved[0].data) == 3
    assert saved[0].total_distance_km == pytest.approx(0.111, abs=1e-3)
    assert saved[0].elapsed_ms == 30000
    assert h.tracker.session.is_empty
    assert h.tracker.lifecycle == Lifecycle.IDLE
    assert h.store.get(CONFIG["backup_key"]) is None
    assert h.renderer.calls[-1] == ("clear",)


def test_stop_while_paused_saves():
    h = build_harness(decisions=ScriptedDecisions(confirms=[True], prompts=[DEFAULT]))
    two_point_route(h)
    h.tracker.pause()
    asyncio.run(h.tracker.stop())
    assert h.sessions.list()[0].name.startswith("Route ")


def test_cancelled_name_prompt_offers_default():
    h = build_harness(decisions=ScriptedDecisions(confirms=[True, True], prompts=[None]))
    two_point_route(h)
    asyncio.run(h.tracker.stop())
    assert h.sessions.list()[0].name == h.tracker.default_name()
    assert h.decisions.asked[2].startswith('Use default name "Route ')


def test_discard_after_confirmation():
    h = build_harness(decisions=ScriptedDecisions(confirms=[False, True]))
    two_point_route(h)
    h.clock.advance(30000)

    async def scenario():
        h.tracker.halt()
        return await h.tracker.finish_session()

    assert asyncio.run(scenario()) == DISCARDED
    assert h.sessions.list() == []
    assert h.tracker.session.is_empty
    assert h.store.get(CONFIG["backup_key"]) is None
    assert "Route discarded" in h.decisions.notices


def test_declining_discard_returns_to_save_prompt():
    h = build_harness(decisions=ScriptedDecisions(confirms=[False, False, True], prompts=["Second try"]))
    two_point_route(h)
    asyncio.run(h.tracker.stop())
    assert [s.name for s in h.sessions.list()] == ["Second try"]
    assert "Would you like to save this route?" in h.decisions.asked[2]


def test_blank_name_is_rejected_and_prompt_repeats():
    h = build_harness(decisions=ScriptedDecisions(confirms=[True, True], prompts=["   ", "Ridge loop"]))
    two_point_route(h)
    asyncio.run(h.tracker.stop())
    assert any(n.startswith("Cannot save route") for n in h.decisions.notices)
    assert [s.name for s in h.sessions.list()] == ["Ridge loop"]


def test_unresolved_prompts_keep_route_in_backup():
    rounds = CONFIG["max_save_rounds"]
    h = build_harness(decisions=ScriptedDecisions(confirms=[False, False] * rounds))

    async def scenario():
        two_point_route(h)
        h.tracker.halt()
        return await h.tracker.finish_session()

    assert asyncio.run(scenario()) == KEPT
    assert h.decisions.confirms == []
    assert h.sessions.list() == []
    assert len(h.tracker.session.path_points) == 2
    assert h.tracker.lifecycle == Lifecycle.IDLE

    snapshot = h.backup.check_for_unsaved_route()
    assert snapshot is not None
    assert len(snapshot.route_log) == 2
    assert any("offered for recovery" in n for n in h.decisions.notices)


def test_kept_route_survives_an_attempted_new_session():
    rounds = CONFIG["max_save_rounds"]
    h = build_harness(decisions=ScriptedDecisions(confirms=[False, False] * rounds))
    two_point_route(h)
    h.tracker.halt()
    assert asyncio.run(h.tracker.finish_session()) == KEPT

    assert h.tracker.start() is False
    assert h.tracker.lifecycle == Lifecycle.IDLE
    h.source.push(10.0, 10.0)
    h.clock.advance(CONFIG["backup_interval_ms"])

    assert len(h.tracker.session.path_points) == 2
    snapshot = h.backup.check_for_unsaved_route()
    assert snapshot is not None
    assert len(snapshot.path_points) == 2
    assert h.decisions.notices[-1].startswith("Save or discard")


def test_kept_route_can_be_resolved_then_a_new_session_starts():
    rounds = CONFIG["max_save_rounds"]
    h = build_harness(decisions=ScriptedDecisions(
        confirms=[False, False] * rounds + [True], prompts=["Late save"]))
    two_point_route(h)
    h.tracker.halt()
    asyncio.run(h.tracker.finish_session())

    assert asyncio.run(h.tracker.finish_session()) == SAVED
    assert [s.name for s in h.sessions.list()] == ["Late save"]
    assert h.tracker.start() is True
    assert h.tracker.session.is_empty


def test_kept_route_can_be_continued(harness):
    harness.decisions.confirms = [False, False] * CONFIG["max_save_rounds"]
    two_point_route(harness)
    harness.tracker.halt()
    asyncio.run(harness.tracker.finish_session())

    assert harness.tracker.start(keep_route=True) is True
    assert len(harness.tracker.session.path_points) == 2


def test_save_failure_from_full_store_is_retried():
    store = MemoryStore(quota_bytes=200)
    h = build_harness(store=store, decisions=ScriptedDecisions(
        confirms=[True, False, True], prompts=["Too big"]))
    two_point_route(h)
    h.tracker.halt()
    outcome = asyncio.run(h.tracker.finish_session())
    assert outcome == DISCARDED
    assert any(n.startswith("Failed to save route") for n in h.decisions.notices)


def test_empty_finish_is_silent(harness):
    assert asyncio.run(harness.tracker.finish_session()) == EMPTY
    assert harness.decisions.asked == []


def test_saved_outcome_constant():
    h = build_harness(decisions=ScriptedDecisions(confirms=[True], prompts=["x"]))
    two_point_route(h)
    h.tracker.halt()
    assert asyncio.run(h.tracker.finish_session()) == SAVED


def test_start_is_refused_while_prompting():
    h = build_harness(decisions=ScriptedDecisions(confirms=[False, True]))
    two_point_route(h)
    h.tracker.halt()
    assert h.tracker.lifecycle == Lifecycle.STOPPED
    assert h.tracker.start() is False
    asyncio.run(h.tracker.finish_session())
    assert h.tracker.start() is True


# -- source errors ------------------------------------------------------------------

def test_transient_errors_are_warnings(harness):
    harness.tracker.start()
    harness.source.push_error(PositionError(PositionError.TIMEOUT))
    harness.source.push_error(PositionError(PositionError.UNAVAILABLE))
    assert harness.tracker.lifecycle == Lifecycle.TRACKING
    assert harness.source.active == 1
    assert len(harness.decisions.notices) == 2
    assert harness.decisions.notices[0].startswith("GPS error:")


def test_permission_denied_forces_stop():
    h = build_harness(decisions=ScriptedDecisions(confirms=[False, True]))

    async def scenario():
        two_point_route(h)
        h.source.push_error(PositionError(PositionError.PERMISSION_DENIED))
        assert h.tracker.lifecycle == Lifecycle.STOPPED
        assert h.source.active == 0
        return await h.tracker.stop_task

    assert asyncio.run(scenario()) == DISCARDED
    assert h.tracker.lifecycle == Lifecycle.IDLE
    assert "permission denied" in h.decisions.notices[0].lower()


def test_cleanup_leaves_route_in_backup(harness):
    two_point_route(harness)
    harness.tracker.cleanup()
    assert harness.source.active == 0
    assert harness.clock.active_timers == 0
    assert harness.backup.check_for_unsaved_route() is not None
