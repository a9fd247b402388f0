"""Session Lifecycle Manager.

active -> paused -> active -> ... -> finished. Transitions are guarded by
`gm.fsm.SessionFSM` and committed through `gm.session_store.transact`, so
several observers (clients, the idle scanner) may race on the same session
without double-applying anything.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from uuid import UUID

import redis

from gm.agents.oracle import Oracle
from gm.api.models import GameSession, Message, MessageRole, PauseReason, SessionStatus, StoryBeat
from gm.campaign import get_campaign
from gm.errors import CampaignAlreadyFinished, InvalidCommand, OracleUnavailable, StaleTurnError
from gm.fsm import apply_lifecycle_event
from gm.session_store import SESSIONS_SET_KEY, get_session, require_session, transact
from gm.settings import settings_from_env
from gm.turn_processing.scene_context import scene_context_for
from gm.turn_processing.validators import validate_command

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(tz=UTC)


def campaign_is_finished(state: GameSession) -> bool:
    res = state.world_state.resolution
    return res is not None and res.is_finished


def pause(*, r: redis.Redis, session_id: UUID, user_id: str, reason: PauseReason) -> GameSession:
    def mutate(state: GameSession) -> GameSession | None:
        validate_command(state=state, user_id=user_id, command="pause")
        if state.session_status == SessionStatus.paused:
            return None
        apply_lifecycle_event(state, "pause")
        state.pause_reason = reason
        return state

    updated = transact(r=r, session_id=session_id, mutate=mutate, event="session_paused")
    logger.info("Session %s paused (%s)", session_id, updated.pause_reason)
    return updated


def finish(*, r: redis.Redis, session_id: UUID, user_id: str) -> GameSession:
    def mutate(state: GameSession) -> GameSession | None:
        validate_command(state=state, user_id=user_id, command="finish")
        apply_lifecycle_event(state, "finish")
        return state

    updated = transact(r=r, session_id=session_id, mutate=mutate, event="session_finished")
    logger.info("Session %s finished by host", session_id)
    return updated


def _check_can_start_next(state: GameSession, *, user_id: str) -> None:
    # Finished campaign is checked first so nothing else leaks into the answer.
    if campaign_is_finished(state):
        raise CampaignAlreadyFinished()
    validate_command(state=state, user_id=user_id, command="start_next_session")
    if state.session_status != SessionStatus.paused:
        raise InvalidCommand(f"Cannot start the next session while session is {state.session_status.value}")


async def _plan_beats(*, oracle: Oracle, state: GameSession, campaign, session_number: int) -> list[StoryBeat]:
    scene = scene_context_for(session=state, campaign=campaign)
    try:
        return await oracle.plan_session_beats(scene=scene, session_number=session_number)
    except Exception as e:
        logger.warning("Beat planning failed for session %s", state.session_id, exc_info=True)
        raise OracleUnavailable("Could not plan the next session; please try again") from e


async def _recap(*, oracle: Oracle, state: GameSession, campaign, session_number: int) -> str | None:
    scene = scene_context_for(session=state, campaign=campaign)
    try:
        return await oracle.recap(scene=scene, session_number=session_number)
    except Exception:
        logger.warning("Recap failed for session %s; continuing without one", state.session_id, exc_info=True)
        return None


async def start_next_session(*, r: redis.Redis, oracle: Oracle, session_id: UUID, user_id: str) -> GameSession:
    """Re-enter active play with a freshly planned session.

    Beats and recap are produced outside any transaction; the write-back
    re-validates against the stored session and refuses if another caller got
    there first.
    """

    snapshot = require_session(r=r, session_id=session_id)
    _check_can_start_next(snapshot, user_id=user_id)

    campaign = get_campaign(r=r, session_id=session_id)
    next_number = snapshot.world_state.session_progress.current_session + 1
    beats = await _plan_beats(oracle=oracle, state=snapshot, campaign=campaign, session_number=next_number)
    recap = await _recap(oracle=oracle, state=snapshot, campaign=campaign, session_number=next_number)

    def mutate(state: GameSession) -> GameSession | None:
        _check_can_start_next(state, user_id=user_id)
        if state.turn_version != snapshot.turn_version:
            raise StaleTurnError(expected=snapshot.turn_version, actual=state.turn_version)

        apply_lifecycle_event(state, "start_next")
        state.pause_reason = None

        progress = state.world_state.session_progress
        progress.current_session = next_number
        progress.current_beat = 0
        progress.beats_completed = 0
        progress.beats_planned = len(beats)
        state.session_beats = beats
        # Undo never reaches back across a session boundary.
        state.previous_world_state = None
        state.undo_marker = None

        now = _now()
        state.world_state.last_activity = now
        state.world_state.idle_warning_shown = False
        if recap:
            state.messages.append(
                Message(
                    id=f"recap-{next_number}-{state.session_id}",
                    role=MessageRole.system,
                    content=f"## Session {next_number}\n\n**Previously...** {recap}",
                )
            )
        state.turn_version += 1
        return state

    updated = transact(r=r, session_id=session_id, mutate=mutate, event="session_started")
    logger.info("Session %s: started session #%d with %d beats", session_id, next_number, len(beats))
    return updated


# ---- activity and idle detection ----


def track_activity(*, r: redis.Redis, session_id: UUID, now: datetime | None = None) -> GameSession:
    stamp = now or _now()

    def mutate(state: GameSession) -> GameSession | None:
        world = state.world_state
        world.last_activity = stamp
        world.idle_warning_shown = False
        return state

    return transact(r=r, session_id=session_id, mutate=mutate, event="activity")


def configure_idle(
    *,
    r: redis.Redis,
    session_id: UUID,
    user_id: str,
    auto_end_enabled: bool,
    idle_timeout_minutes: int,
) -> GameSession:
    lead = settings_from_env().idle_warning_lead_minutes
    if idle_timeout_minutes <= lead:
        raise InvalidCommand(f"Idle timeout must be longer than {lead} minutes")

    def mutate(state: GameSession) -> GameSession | None:
        validate_command(state=state, user_id=user_id, command="configure_idle")
        world = state.world_state
        world.auto_end_enabled = auto_end_enabled
        world.idle_timeout_minutes = idle_timeout_minutes
        world.idle_warning_shown = False
        return state

    return transact(r=r, session_id=session_id, mutate=mutate, event="idle_configured")


def idle_transition(state: GameSession, *, now: datetime) -> str | None:
    """Decide what idle detection should do to `state` right now.

    Returns "timeout", "warning" or None. Pure so every observer computes the
    same answer from the same document.
    """

    world = state.world_state
    if state.session_status != SessionStatus.active or not world.auto_end_enabled:
        return None
    if world.last_activity is None:
        return None

    idle = now - world.last_activity
    timeout = timedelta(minutes=world.idle_timeout_minutes)
    if idle >= timeout:
        return "timeout"

    lead = timedelta(minutes=settings_from_env().idle_warning_lead_minutes)
    if idle >= timeout - lead and not world.idle_warning_shown:
        return "warning"
    return None


def enforce_idle(*, r: redis.Redis, session_id: UUID, now: datetime | None = None) -> GameSession:
    """Apply idle warning/timeout. Idempotent: a second call is a no-op."""

    stamp = now or _now()
    applied: list[str] = []

    def mutate(state: GameSession) -> GameSession | None:
        action = idle_transition(state, now=stamp)
        applied.clear()
        if action == "timeout":
            apply_lifecycle_event(state, "pause")
            state.pause_reason = PauseReason.idle_timeout
            applied.append(action)
            return state
        if action == "warning":
            state.world_state.idle_warning_shown = True
            applied.append(action)
            return state
        return None

    updated = transact(r=r, session_id=session_id, mutate=mutate, event="idle_check")
    if applied:
        logger.info("Session %s idle %s applied", session_id, applied[0])
    return updated


def scan_idle_sessions(*, r: redis.Redis, now: datetime | None = None) -> dict[str, str]:
    """Run idle detection across every active session.

    Returns {session_id: "timeout"|"warning"} for sessions that changed.
    """

    stamp = now or _now()
    changed: dict[str, str] = {}
    for sid in sorted(r.smembers(SESSIONS_SET_KEY)):
        try:
            session_id = UUID(sid)
        except ValueError:
            continue
        state = get_session(r=r, session_id=session_id)
        if state is None:
            continue
        action = idle_transition(state, now=stamp)
        if action is None:
            continue
        enforce_idle(r=r, session_id=session_id, now=stamp)
        changed[sid] = action
    return changed
