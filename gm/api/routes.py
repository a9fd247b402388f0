from __future__ import annotations

from uuid import UUID

import redis
from fastapi import APIRouter, Depends, HTTPException, Query, Response, WebSocket, WebSocketDisconnect, status

from gm.actions import submit_input, undo
from gm.agents.oracle import Oracle
from gm.api.deps import get_oracle, get_redis
from gm.api.models import (
    ActorRequest,
    AddCharacterRequest,
    CampaignStructure,
    ClaimSlotRequest,
    EventFeedResponse,
    GameConcept,
    GameSession,
    GenerateCharacterRequest,
    IdleConfigRequest,
    JoinRequest,
    PauseRequest,
    PlayerRecord,
    RegenerateConceptRequest,
    RegenerateFieldRequest,
    RenameRequest,
    SessionCreateRequest,
    SessionListResponse,
    SubmitInputRequest,
    SubmitResponse,
)
from gm.campaign import get_campaign
from gm.errors import (
    ConflictError,
    Forbidden,
    GameMasterError,
    InvalidCommand,
    OracleUnavailable,
    SessionNotFound,
    TerminalError,
)
from gm.infra.redis_client import redis_ready
from gm.lifecycle import configure_idle, enforce_idle, finish, pause, start_next_session, track_activity
from gm.session_setup import (
    add_character,
    begin_play,
    generate_character,
    regenerate_concept,
    regenerate_concept_field,
    rename_session,
)
from gm.session_store import (
    create_session,
    delete_session,
    get_players,
    get_session,
    join_session,
    list_sessions,
    require_session,
)
from gm.streams import SessionFeed, read_feed
from gm.turn_processing.turns import acknowledge_handoff, claim_slot, kick_slot
from gm.websocket_hub import hub
from gm.worker import WorkerConfig, request_campaign_build, run_idle_scan_once, run_jobs_once

router = APIRouter()


def _http_error(e: Exception) -> HTTPException:
    if isinstance(e, SessionNotFound):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(e, Forbidden):
        code = status.HTTP_403_FORBIDDEN
    elif isinstance(e, OracleUnavailable):
        code = status.HTTP_503_SERVICE_UNAVAILABLE
    elif isinstance(e, (ConflictError, TerminalError)):
        code = status.HTTP_409_CONFLICT
    elif isinstance(e, (InvalidCommand, ValueError)):
        code = status.HTTP_422_UNPROCESSABLE_ENTITY
    else:
        code = status.HTTP_500_INTERNAL_SERVER_ERROR
    return HTTPException(
        status_code=code,
        detail={
            "error": type(e).__name__,
            "message": str(e),
            "retryable": bool(getattr(e, "retryable", False)),
        },
    )


@router.websocket("/ws/session/{session_id}")
async def session_updates_ws(websocket: WebSocket, session_id: UUID) -> None:
    sid = str(session_id)
    await hub.connect(sid, websocket)

    try:
        # Keep the socket open; client can optionally send pings.
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        await hub.disconnect(sid, websocket)
    except Exception:
        await hub.disconnect(sid, websocket)
        raise


@router.get("/healthcheck")
async def healthcheck(r: redis.Redis = Depends(get_redis)) -> dict[str, str]:
    if not redis_ready(r):
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail={"status": "degraded", "redis": "down"})
    return {"status": "ok", "redis": "ok"}


# ---- sessions ----


@router.post("/sessions", response_model=GameSession, status_code=status.HTTP_201_CREATED)
async def create_session_route(payload: SessionCreateRequest, r: redis.Redis = Depends(get_redis)) -> GameSession:
    concept = GameConcept(
        name=payload.name,
        setting=payload.setting,
        tone=payload.tone,
        original_request=payload.original_request,
        play_mode=payload.play_mode,
        mechanics_visibility=payload.mechanics_visibility,
    )
    return create_session(r=r, user_id=payload.user_id, host_name=payload.host_name, concept=concept)


@router.get("/sessions", response_model=SessionListResponse)
async def list_sessions_route(user_id: str | None = None, r: redis.Redis = Depends(get_redis)) -> SessionListResponse:
    return SessionListResponse(sessions=list_sessions(r=r, user_id=user_id))


@router.get("/sessions/{session_id}", response_model=GameSession)
async def get_session_route(session_id: UUID, r: redis.Redis = Depends(get_redis)) -> GameSession:
    state = get_session(r=r, session_id=session_id)
    if state is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found")
    return state


@router.delete("/sessions/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_session_route(session_id: UUID, user_id: str, r: redis.Redis = Depends(get_redis)) -> Response:
    try:
        delete_session(r=r, session_id=session_id, user_id=user_id)
    except GameMasterError as e:
        raise _http_error(e) from e

    await hub.broadcast(str(session_id), {"type": "session_deleted", "session_id": str(session_id)})
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ---- setup: players, characters, campaign ----


@router.get("/sessions/{session_id}/players", response_model=list[PlayerRecord])
async def list_players_route(session_id: UUID, r: redis.Redis = Depends(get_redis)) -> list[PlayerRecord]:
    try:
        require_session(r=r, session_id=session_id)
    except GameMasterError as e:
        raise _http_error(e) from e
    return get_players(r=r, session_id=session_id)


@router.post("/sessions/{session_id}/players", response_model=PlayerRecord)
async def join_session_route(
    session_id: UUID,
    payload: JoinRequest,
    r: redis.Redis = Depends(get_redis),
) -> PlayerRecord:
    try:
        record = join_session(r=r, session_id=session_id, user_id=payload.user_id, name=payload.name)
    except GameMasterError as e:
        raise _http_error(e) from e

    await hub.broadcast(str(session_id), {"type": "player_joined", "session_id": str(session_id)})
    return record


@router.post("/sessions/{session_id}/characters", response_model=GameSession)
async def add_character_route(
    session_id: UUID,
    payload: AddCharacterRequest,
    r: redis.Redis = Depends(get_redis),
) -> GameSession:
    try:
        state = add_character(r=r, session_id=session_id, user_id=payload.user_id, character=payload.character)
    except GameMasterError as e:
        raise _http_error(e) from e

    await hub.session_changed(state)
    return state


@router.post("/sessions/{session_id}/characters/generate", response_model=GameSession)
async def generate_character_route(
    session_id: UUID,
    payload: GenerateCharacterRequest,
    r: redis.Redis = Depends(get_redis),
    oracle: Oracle = Depends(get_oracle),
) -> GameSession:
    try:
        state = await generate_character(
            r=r,
            oracle=oracle,
            session_id=session_id,
            user_id=payload.user_id,
            preferences=payload.preferences,
        )
    except GameMasterError as e:
        raise _http_error(e) from e

    await hub.session_changed(state)
    return state


@router.put("/sessions/{session_id}/name", response_model=GameSession)
async def rename_session_route(
    session_id: UUID,
    payload: RenameRequest,
    r: redis.Redis = Depends(get_redis),
) -> GameSession:
    try:
        state = rename_session(r=r, session_id=session_id, user_id=payload.user_id, name=payload.name)
    except GameMasterError as e:
        raise _http_error(e) from e

    await hub.session_changed(state)
    return state


@router.post("/sessions/{session_id}/concept/regenerate_field", response_model=GameSession)
async def regenerate_concept_field_route(
    session_id: UUID,
    payload: RegenerateFieldRequest,
    r: redis.Redis = Depends(get_redis),
    oracle: Oracle = Depends(get_oracle),
) -> GameSession:
    try:
        state = await regenerate_concept_field(
            r=r,
            oracle=oracle,
            session_id=session_id,
            user_id=payload.user_id,
            field=payload.field,
        )
    except GameMasterError as e:
        raise _http_error(e) from e

    await hub.session_changed(state)
    return state


@router.post("/sessions/{session_id}/concept/regenerate", response_model=GameSession)
async def regenerate_concept_route(
    session_id: UUID,
    payload: RegenerateConceptRequest,
    r: redis.Redis = Depends(get_redis),
    oracle: Oracle = Depends(get_oracle),
) -> GameSession:
    try:
        state = await regenerate_concept(
            r=r,
            oracle=oracle,
            session_id=session_id,
            user_id=payload.user_id,
            request=payload.request,
        )
    except GameMasterError as e:
        raise _http_error(e) from e

    await hub.session_changed(state)
    return state


@router.post("/sessions/{session_id}/campaign", status_code=status.HTTP_202_ACCEPTED)
async def request_campaign_route(
    session_id: UUID,
    payload: ActorRequest,
    r: redis.Redis = Depends(get_redis),
) -> dict[str, str]:
    try:
        job_id = request_campaign_build(r=r, session_id=session_id, user_id=payload.user_id)
    except GameMasterError as e:
        raise _http_error(e) from e
    return {"session_id": str(session_id), "job_id": job_id}


@router.get("/sessions/{session_id}/campaign", response_model=CampaignStructure)
async def get_campaign_route(session_id: UUID, r: redis.Redis = Depends(get_redis)) -> CampaignStructure:
    campaign = get_campaign(r=r, session_id=session_id)
    if campaign is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Campaign not built yet")
    return campaign


@router.post("/sessions/{session_id}/begin", response_model=GameSession)
async def begin_play_route(
    session_id: UUID,
    payload: ActorRequest,
    r: redis.Redis = Depends(get_redis),
) -> GameSession:
    try:
        state = begin_play(r=r, session_id=session_id, user_id=payload.user_id)
    except (GameMasterError, ValueError) as e:
        raise _http_error(e) from e

    await hub.session_changed(state)
    return state


# ---- slots ----


@router.post("/sessions/{session_id}/slots/{slot_id}/claim", response_model=GameSession)
async def claim_slot_route(
    session_id: UUID,
    slot_id: str,
    payload: ClaimSlotRequest,
    r: redis.Redis = Depends(get_redis),
) -> GameSession:
    try:
        state = claim_slot(
            r=r,
            session_id=session_id,
            slot_id=slot_id,
            user_id=payload.user_id,
            player_name=payload.player_name,
        )
    except GameMasterError as e:
        raise _http_error(e) from e

    await hub.session_changed(state)
    return state


@router.post("/sessions/{session_id}/slots/{slot_id}/kick", response_model=GameSession)
async def kick_slot_route(
    session_id: UUID,
    slot_id: str,
    payload: ActorRequest,
    r: redis.Redis = Depends(get_redis),
) -> GameSession:
    try:
        state = kick_slot(r=r, session_id=session_id, slot_id=slot_id, requested_by=payload.user_id)
    except GameMasterError as e:
        raise _http_error(e) from e

    await hub.session_changed(state)
    return state


# ---- play ----


@router.post("/sessions/{session_id}/input", response_model=SubmitResponse)
async def submit_input_route(
    session_id: UUID,
    payload: SubmitInputRequest,
    r: redis.Redis = Depends(get_redis),
    oracle: Oracle = Depends(get_oracle),
) -> SubmitResponse:
    sid = str(session_id)

    async def push_acknowledgement(character_id: str, text: str) -> None:
        await hub.broadcast(sid, {"type": "acknowledgement", "session_id": sid, "character_id": character_id, "text": text})

    try:
        result = await submit_input(
            r=r,
            oracle=oracle,
            session_id=session_id,
            user_id=payload.user_id,
            text=payload.text,
            confirmed=payload.confirmed,
            character_id=payload.character_id,
            on_acknowledgement=push_acknowledgement,
        )
    except GameMasterError as e:
        raise _http_error(e) from e

    if result.outcome != "pending_confirmation":
        await hub.session_changed(result.state)
    return SubmitResponse(
        outcome=result.outcome,
        intent=result.classification.label,
        classification_source=result.classification.source,
        session=result.state,
        confirmation_message=result.confirmation_message,
        answer=result.answer,
    )


@router.post("/sessions/{session_id}/handoff", response_model=GameSession)
async def acknowledge_handoff_route(
    session_id: UUID,
    payload: ActorRequest,
    r: redis.Redis = Depends(get_redis),
) -> GameSession:
    try:
        state = acknowledge_handoff(r=r, session_id=session_id, user_id=payload.user_id)
    except GameMasterError as e:
        raise _http_error(e) from e

    await hub.session_changed(state)
    return state


@router.post("/sessions/{session_id}/undo", response_model=GameSession)
async def undo_route(session_id: UUID, payload: ActorRequest, r: redis.Redis = Depends(get_redis)) -> GameSession:
    try:
        state = undo(r=r, session_id=session_id, user_id=payload.user_id)
    except GameMasterError as e:
        raise _http_error(e) from e

    await hub.session_changed(state)
    return state


# ---- lifecycle ----


@router.post("/sessions/{session_id}/pause", response_model=GameSession)
async def pause_route(session_id: UUID, payload: PauseRequest, r: redis.Redis = Depends(get_redis)) -> GameSession:
    try:
        state = pause(r=r, session_id=session_id, user_id=payload.user_id, reason=payload.reason)
    except GameMasterError as e:
        raise _http_error(e) from e

    await hub.session_changed(state)
    return state


@router.post("/sessions/{session_id}/next", response_model=GameSession)
async def start_next_session_route(
    session_id: UUID,
    payload: ActorRequest,
    r: redis.Redis = Depends(get_redis),
    oracle: Oracle = Depends(get_oracle),
) -> GameSession:
    try:
        state = await start_next_session(r=r, oracle=oracle, session_id=session_id, user_id=payload.user_id)
    except GameMasterError as e:
        raise _http_error(e) from e

    await hub.session_changed(state)
    return state


@router.post("/sessions/{session_id}/finish", response_model=GameSession)
async def finish_route(session_id: UUID, payload: ActorRequest, r: redis.Redis = Depends(get_redis)) -> GameSession:
    try:
        state = finish(r=r, session_id=session_id, user_id=payload.user_id)
    except GameMasterError as e:
        raise _http_error(e) from e

    await hub.session_changed(state)
    return state


@router.post("/sessions/{session_id}/activity", response_model=GameSession)
async def track_activity_route(session_id: UUID, r: redis.Redis = Depends(get_redis)) -> GameSession:
    try:
        return track_activity(r=r, session_id=session_id)
    except GameMasterError as e:
        raise _http_error(e) from e


@router.put("/sessions/{session_id}/idle", response_model=GameSession)
async def configure_idle_route(
    session_id: UUID,
    payload: IdleConfigRequest,
    r: redis.Redis = Depends(get_redis),
) -> GameSession:
    try:
        state = configure_idle(
            r=r,
            session_id=session_id,
            user_id=payload.user_id,
            auto_end_enabled=payload.auto_end_enabled,
            idle_timeout_minutes=payload.idle_timeout_minutes,
        )
    except GameMasterError as e:
        raise _http_error(e) from e

    await hub.session_changed(state)
    return state


@router.post("/sessions/{session_id}/idle_check", response_model=GameSession)
async def idle_check_route(session_id: UUID, r: redis.Redis = Depends(get_redis)) -> GameSession:
    """Any client may poke idle detection; repeated calls are harmless."""

    try:
        state = enforce_idle(r=r, session_id=session_id)
    except GameMasterError as e:
        raise _http_error(e) from e

    await hub.session_changed(state)
    return state


# ---- debug / maintenance ----


@router.get("/sessions/{session_id}/events", response_model=EventFeedResponse)
async def get_session_events_route(
    session_id: UUID,
    count: int = Query(20, ge=1, le=200),
    start: str = "-",
    end: str = "+",
    r: redis.Redis = Depends(get_redis),
) -> EventFeedResponse:
    """Debug endpoint: read a session's event stream.

    Intended for local/dev testing when redis-cli isn't available.
    """

    feed = SessionFeed(session_id=str(session_id))
    try:
        entries = read_feed(r=r, feed=feed, start=start, end=end, count=count)
    except redis.ResponseError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)) from e

    events = [{"id": eid, "fields": fields} for eid, fields in entries]
    return EventFeedResponse(session_id=str(session_id), stream=feed.key, events=events)


@router.post("/maintenance/idle_scan")
async def idle_scan_route(r: redis.Redis = Depends(get_redis)) -> dict[str, object]:
    changed = run_idle_scan_once(r=r)
    for sid in changed:
        state = get_session(r=r, session_id=UUID(sid))
        if state is not None:
            await hub.session_changed(state)
    return {"changed": changed}


@router.post("/maintenance/jobs/run_once")
async def run_jobs_once_route(
    count: int = Query(10, ge=1, le=100),
    r: redis.Redis = Depends(get_redis),
    oracle: Oracle = Depends(get_oracle),
) -> dict[str, object]:
    """Dev endpoint: handle queued background jobs without a separate worker process."""

    handled = await run_jobs_once(r=r, oracle=oracle, config=WorkerConfig(block_ms=None, count=count))
    return {"handled": handled}
