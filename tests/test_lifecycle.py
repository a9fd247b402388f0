from __future__ import annotations

from datetime import timedelta

import pytest

from conftest import GUEST, HOST
from gm.api.models import MessageRole, PauseReason, SessionStatus
from gm.errors import (
    CampaignAlreadyFinished,
    Forbidden,
    InvalidCommand,
    OracleUnavailable,
    SessionFinished,
)
from gm.lifecycle import (
    configure_idle,
    enforce_idle,
    finish,
    idle_transition,
    pause,
    scan_idle_sessions,
    start_next_session,
    track_activity,
)
from gm.session_store import require_session, session_key, transact


def _paused(r, make_play_session):
    state = make_play_session()
    return pause(r=r, session_id=state.session_id, user_id=HOST, reason=PauseReason.natural)


def test_any_player_may_pause(r, make_play_session) -> None:
    state = make_play_session()
    paused = pause(r=r, session_id=state.session_id, user_id=GUEST, reason=PauseReason.interrupted)

    assert paused.session_status == SessionStatus.paused
    assert paused.pause_reason == PauseReason.interrupted

    again = pause(r=r, session_id=state.session_id, user_id=GUEST, reason=PauseReason.early)
    assert again.version == paused.version
    assert again.pause_reason == PauseReason.interrupted


def test_finish_is_host_only_and_terminal(r, make_play_session) -> None:
    state = make_play_session()
    with pytest.raises(Forbidden):
        finish(r=r, session_id=state.session_id, user_id=GUEST)

    finish(r=r, session_id=state.session_id, user_id=HOST)
    with pytest.raises(SessionFinished):
        finish(r=r, session_id=state.session_id, user_id=HOST)
    with pytest.raises(SessionFinished):
        pause(r=r, session_id=state.session_id, user_id=HOST, reason=PauseReason.natural)


@pytest.mark.asyncio
async def test_start_next_session(r, oracle, make_play_session) -> None:
    paused = _paused(r, make_play_session)

    started = await start_next_session(r=r, oracle=oracle, session_id=paused.session_id, user_id=HOST)

    assert started.session_status == SessionStatus.active
    assert started.pause_reason is None
    progress = started.world_state.session_progress
    assert progress.current_session == 2
    assert progress.current_beat == 0
    assert progress.beats_completed == 0
    assert progress.beats_planned == 14
    assert len(started.session_beats) == 14
    assert started.turn_version == paused.turn_version + 1

    recap = started.messages[-1]
    assert recap.role == MessageRole.system
    assert recap.content.startswith("## Session 2\n\n**Previously...**")
    assert oracle.recap_text in recap.content


@pytest.mark.asyncio
async def test_start_next_requires_host(r, oracle, make_play_session) -> None:
    paused = _paused(r, make_play_session)
    with pytest.raises(Forbidden):
        await start_next_session(r=r, oracle=oracle, session_id=paused.session_id, user_id=GUEST)


@pytest.mark.asyncio
async def test_start_next_requires_paused_session(r, oracle, make_play_session) -> None:
    state = make_play_session()
    with pytest.raises(InvalidCommand):
        await start_next_session(r=r, oracle=oracle, session_id=state.session_id, user_id=HOST)
    assert oracle.calls == []


@pytest.mark.asyncio
async def test_recap_failure_is_not_fatal(r, oracle, make_play_session) -> None:
    paused = _paused(r, make_play_session)
    oracle.recap_error = RuntimeError("no recap today")

    started = await start_next_session(r=r, oracle=oracle, session_id=paused.session_id, user_id=HOST)

    assert started.session_status == SessionStatus.active
    assert len(started.messages) == len(paused.messages)


@pytest.mark.asyncio
async def test_planning_failure_leaves_session_paused(r, oracle, make_play_session) -> None:
    paused = _paused(r, make_play_session)
    oracle.plan_error = RuntimeError("planner down")
    before = r.get(session_key(paused.session_id))

    with pytest.raises(OracleUnavailable):
        await start_next_session(r=r, oracle=oracle, session_id=paused.session_id, user_id=HOST)
    assert r.get(session_key(paused.session_id)) == before


@pytest.mark.asyncio
async def test_finished_campaign_cannot_start_next(r, oracle, make_play_session) -> None:
    paused = _paused(r, make_play_session)

    def win(s):
        for vc in s.world_state.resolution.victory_conditions:
            vc.achieved = True
        return s

    done = transact(r=r, session_id=paused.session_id, mutate=win)

    with pytest.raises(CampaignAlreadyFinished):
        await start_next_session(r=r, oracle=oracle, session_id=paused.session_id, user_id=HOST)

    after = require_session(r=r, session_id=paused.session_id)
    assert after.world_state.session_progress == done.world_state.session_progress
    assert after.session_status == SessionStatus.paused
    assert oracle.calls == []


@pytest.mark.asyncio
async def test_finished_campaign_checked_before_permissions(r, oracle, make_play_session) -> None:
    paused = _paused(r, make_play_session)

    def climax(s):
        s.world_state.resolution.climax_ready = True
        return s

    transact(r=r, session_id=paused.session_id, mutate=climax)
    with pytest.raises(CampaignAlreadyFinished):
        await start_next_session(r=r, oracle=oracle, session_id=paused.session_id, user_id=GUEST)


@pytest.mark.asyncio
async def test_racing_start_next_applies_once(r, oracle, make_play_session) -> None:
    import asyncio

    paused = _paused(r, make_play_session)
    results = await asyncio.gather(
        start_next_session(r=r, oracle=oracle, session_id=paused.session_id, user_id=HOST),
        start_next_session(r=r, oracle=oracle, session_id=paused.session_id, user_id=HOST),
        return_exceptions=True,
    )

    assert sum(1 for x in results if not isinstance(x, BaseException)) == 1
    final = require_session(r=r, session_id=paused.session_id)
    assert final.world_state.session_progress.current_session == 2


def test_idle_timeout_pauses_session(r, make_play_session) -> None:
    state = make_play_session()
    last = state.world_state.last_activity
    assert last is not None

    paused = enforce_idle(r=r, session_id=state.session_id, now=last + timedelta(minutes=125))

    assert paused.session_status == SessionStatus.paused
    assert paused.pause_reason == PauseReason.idle_timeout

    # Idempotent.
    again = enforce_idle(r=r, session_id=state.session_id, now=last + timedelta(minutes=130))
    assert again.version == paused.version


def test_idle_warning_fires_once(r, make_play_session) -> None:
    state = make_play_session()
    last = state.world_state.last_activity

    warned = enforce_idle(r=r, session_id=state.session_id, now=last + timedelta(minutes=95))
    assert warned.world_state.idle_warning_shown
    assert warned.session_status == SessionStatus.active

    again = enforce_idle(r=r, session_id=state.session_id, now=last + timedelta(minutes=100))
    assert again.version == warned.version

    assert idle_transition(again, now=last + timedelta(minutes=60)) is None


def test_activity_resets_idle_clock(r, make_play_session) -> None:
    state = make_play_session()
    last = state.world_state.last_activity

    enforce_idle(r=r, session_id=state.session_id, now=last + timedelta(minutes=95))
    touched = track_activity(r=r, session_id=state.session_id, now=last + timedelta(minutes=100))

    assert not touched.world_state.idle_warning_shown
    assert idle_transition(touched, now=last + timedelta(minutes=200)) == "warning"


def test_idle_detection_can_be_disabled(r, make_play_session) -> None:
    state = make_play_session()
    updated = configure_idle(
        r=r, session_id=state.session_id, user_id=HOST, auto_end_enabled=False, idle_timeout_minutes=60
    )
    assert updated.world_state.idle_timeout_minutes == 60
    assert idle_transition(updated, now=state.world_state.last_activity + timedelta(days=2)) is None


def test_idle_timeout_must_exceed_warning_lead(r, make_play_session) -> None:
    state = make_play_session()
    with pytest.raises(InvalidCommand):
        configure_idle(r=r, session_id=state.session_id, user_id=HOST, auto_end_enabled=True, idle_timeout_minutes=30)
    with pytest.raises(Forbidden):
        configure_idle(r=r, session_id=state.session_id, user_id=GUEST, auto_end_enabled=True, idle_timeout_minutes=90)


def test_scan_idle_sessions(r, make_play_session) -> None:
    stale = make_play_session()
    fresh = make_play_session()
    now = stale.world_state.last_activity + timedelta(minutes=125)

    def recent(s):
        s.world_state.last_activity = now - timedelta(minutes=5)
        return s

    transact(r=r, session_id=fresh.session_id, mutate=recent)

    changed = scan_idle_sessions(r=r, now=now)

    assert changed == {str(stale.session_id): "timeout"}
    assert require_session(r=r, session_id=stale.session_id).pause_reason == PauseReason.idle_timeout
    assert require_session(r=r, session_id=fresh.session_id).session_status == SessionStatus.active
    assert scan_idle_sessions(r=r, now=now) == {}


@pytest.mark.asyncio
async def test_undo_cannot_cross_into_previous_session(r, oracle, make_play_session) -> None:
    from gm.actions import submit_input, undo
    from gm.errors import NothingToUndo

    state = make_play_session()
    await submit_input(r=r, oracle=oracle, session_id=state.session_id, user_id=HOST, text="I search the office")
    paused = pause(r=r, session_id=state.session_id, user_id=HOST, reason=PauseReason.natural)
    assert paused.previous_world_state is not None

    started = await start_next_session(r=r, oracle=oracle, session_id=state.session_id, user_id=HOST)
    assert started.previous_world_state is None
    assert started.undo_marker is None

    with pytest.raises(NothingToUndo):
        undo(r=r, session_id=state.session_id, user_id=HOST)

    after = require_session(r=r, session_id=state.session_id)
    assert after.world_state.session_progress.current_session == 2
    assert after.world_state.session_progress.beats_planned == len(after.session_beats)
    assert after.messages[-1].content.startswith("## Session 2")
