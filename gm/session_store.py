from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime
from uuid import UUID, uuid4

import redis

from gm.api.models import (
    GameConcept,
    GameSession,
    Message,
    MessageRole,
    PlayerRecord,
    SessionStep,
    WorldState,
)
from gm.errors import ConflictError, Forbidden, SessionNotFound
from gm.settings import settings_from_env
from gm.streams import SessionFeed, publish_to_feed


logger = logging.getLogger(__name__)

SESSIONS_SET_KEY = "gm:sessions"
SESSION_KEY_PREFIX = "gm:session:"  # + {uuid}

Mutation = Callable[[GameSession], GameSession | None]
PipelineHook = Callable[[redis.client.Pipeline, GameSession], None]


def _now() -> datetime:
    return datetime.now(tz=UTC)


def session_key(session_id: UUID | str) -> str:
    return f"{SESSION_KEY_PREFIX}{session_id}"


def players_key(session_id: UUID | str) -> str:
    return f"{session_key(session_id)}:players"


def _state_changed_fields(*, state: GameSession, event: str) -> dict[str, str]:
    return {
        "type": event,
        "session_id": str(state.session_id),
        "version": str(state.version),
        "turn_version": str(state.turn_version),
        "status": state.session_status.value,
        "step": state.step.value,
        "active_character_id": state.active_character_id or "",
        "ts": _now().isoformat(),
    }


def save_session(*, r: redis.Redis, state: GameSession) -> None:
    """Unconditional write. Only used for brand-new sessions; everything else goes through `transact`."""

    state.last_updated_at = _now()
    r.set(session_key(state.session_id), state.model_dump_json())


def get_session(*, r: redis.Redis, session_id: UUID) -> GameSession | None:
    raw = r.get(session_key(session_id))
    if not raw:
        return None
    return GameSession.model_validate_json(raw)


def require_session(*, r: redis.Redis, session_id: UUID) -> GameSession:
    state = get_session(r=r, session_id=session_id)
    if state is None:
        raise SessionNotFound(session_id)
    return state


def transact(
    *,
    r: redis.Redis,
    session_id: UUID,
    mutate: Mutation,
    event: str = "session_updated",
    extra_watch: tuple[str, ...] = (),
    on_commit: PipelineHook | None = None,
) -> GameSession:
    """Optimistic read-modify-write of one session document.

    `mutate` receives a freshly loaded copy and returns the state to store, or
    None to leave the document untouched. Exceptions raised by `mutate` abort
    the transaction with nothing written. The session's event feed entry is
    appended inside the same MULTI block as the write.
    """

    key = session_key(session_id)
    settings = settings_from_env()
    feed = SessionFeed(session_id=str(session_id))

    with r.pipeline() as pipe:
        for attempt in range(1, settings.txn_max_retries + 1):
            try:
                pipe.watch(key, *extra_watch)
                raw = pipe.get(key)
                if not raw:
                    raise SessionNotFound(session_id)
                current = GameSession.model_validate_json(raw)

                updated = mutate(current)
                if updated is None:
                    return GameSession.model_validate_json(raw)

                updated.version += 1
                updated.last_updated_at = _now()

                pipe.multi()
                pipe.set(key, updated.model_dump_json())
                if on_commit is not None:
                    on_commit(pipe, updated)
                pipe.xadd(
                    feed.key,
                    _state_changed_fields(state=updated, event=event),
                    maxlen=settings.event_stream_maxlen,
                    approximate=True,
                )
                pipe.execute()
                return updated
            except redis.WatchError:
                logger.info("Session %s changed during transaction (attempt %d); retrying", session_id, attempt)
                continue

    raise ConflictError(f"Session {session_id} is too busy; gave up after {settings.txn_max_retries} attempts")


def notify(*, r: redis.Redis, session_id: UUID, fields: dict[str, str]) -> str:
    """Publish a transient event (no state change) to the session feed."""

    return publish_to_feed(
        r=r,
        feed=SessionFeed(session_id=str(session_id)),
        fields={"session_id": str(session_id), "ts": _now().isoformat(), **fields},
        maxlen=settings_from_env().event_stream_maxlen,
    )


def create_session(
    *,
    r: redis.Redis,
    user_id: str,
    host_name: str,
    concept: GameConcept,
) -> GameSession:
    session_id = uuid4()
    now = _now()
    settings = settings_from_env()

    welcome = (
        "Once the party is assembled, the story will begin."
        if concept.play_mode.value == "remote"
        else "First, let's create your character(s). The story will begin once the party is ready."
    )
    setting_line = concept.setting.split("\n")[0].replace("**", "")

    state = GameSession(
        session_id=session_id,
        user_id=user_id,
        created_at=now,
        last_updated_at=now,
        game=concept,
        step=SessionStep.summary,
        world_state=WorldState(
            summary=f"The game is set in {concept.setting}. The tone is {concept.tone or 'unspecified'}.",
            recent_events=["The adventure has just begun."],
            idle_timeout_minutes=settings.default_idle_timeout_minutes,
            last_activity=now,
        ),
        messages=[
            Message(
                id=f"welcome-{session_id}",
                role=MessageRole.system,
                content=f"# Welcome to {concept.name}!\n\nThis is a new adventure set in the world of **{setting_line}**.\n\n{welcome}",
            )
        ],
    )

    host = PlayerRecord(user_id=user_id, name=host_name, is_host=True, joined_at=now, last_active=now)

    with r.pipeline() as pipe:
        pipe.set(session_key(session_id), state.model_dump_json())
        pipe.hset(players_key(session_id), user_id, host.model_dump_json())
        pipe.sadd(SESSIONS_SET_KEY, str(session_id))
        pipe.execute()

    logger.info("Created session %s for user %s (%s play)", session_id, user_id, concept.play_mode.value)
    return state


def list_sessions(*, r: redis.Redis, user_id: str | None = None) -> list[GameSession]:
    ids = sorted(r.smembers(SESSIONS_SET_KEY))
    out: list[GameSession] = []
    for sid in ids:
        try:
            gid = UUID(sid)
        except ValueError:
            continue
        state = get_session(r=r, session_id=gid)
        if state is None:
            continue
        if user_id is not None and state.user_id != user_id and not is_member(r=r, session_id=gid, user_id=user_id):
            continue
        out.append(state)
    out.sort(key=lambda s: s.created_at, reverse=True)
    return out


def delete_session(*, r: redis.Redis, session_id: UUID, user_id: str) -> None:
    state = require_session(r=r, session_id=session_id)
    if state.user_id != user_id:
        raise Forbidden("Only the owner can delete a session")
    from gm.campaign import campaign_key

    feed = SessionFeed(session_id=str(session_id))
    with r.pipeline() as pipe:
        pipe.delete(session_key(session_id), players_key(session_id), campaign_key(session_id), feed.key)
        pipe.srem(SESSIONS_SET_KEY, str(session_id))
        pipe.execute()
    logger.info("Deleted session %s", session_id)


# ---- players sub-collection ----


def get_players(*, r: redis.Redis, session_id: UUID) -> list[PlayerRecord]:
    raw = r.hgetall(players_key(session_id))
    players = [PlayerRecord.model_validate_json(v) for v in raw.values()]
    players.sort(key=lambda p: p.joined_at)
    return players


def get_player(*, r: redis.Redis, session_id: UUID, user_id: str) -> PlayerRecord | None:
    raw = r.hget(players_key(session_id), user_id)
    if not raw:
        return None
    return PlayerRecord.model_validate_json(raw)


def is_member(*, r: redis.Redis, session_id: UUID, user_id: str) -> bool:
    return bool(r.hexists(players_key(session_id), user_id))


def join_session(*, r: redis.Redis, session_id: UUID, user_id: str, name: str) -> PlayerRecord:
    require_session(r=r, session_id=session_id)
    now = _now()
    existing = get_player(r=r, session_id=session_id, user_id=user_id)
    if existing is not None:
        existing.last_active = now
        existing.name = name
        record = existing
    else:
        record = PlayerRecord(user_id=user_id, name=name, joined_at=now, last_active=now)
    r.hset(players_key(session_id), user_id, record.model_dump_json())
    notify(r=r, session_id=session_id, fields={"type": "player_joined", "user_id": user_id})
    return record
