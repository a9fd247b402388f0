"""Action Resolution Pipeline.

classify -> (question: answer) | (action: validate -> consequence gate ->
acknowledge -> resolve -> atomic commit). No lock is held across oracle
calls: the session is read, the oracle consulted, and the result written back
in one optimistic transaction keyed on `turn_version`.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Literal
from uuid import UUID, uuid4

import redis

from gm.agents.oracle import Oracle
from gm.api.models import (
    ActionResolution,
    Character,
    GameSession,
    MechanicsVisibility,
    Message,
    MessageRole,
    PlayMode,
    StoryMessage,
    UndoMarker,
)
from gm.campaign import get_campaign
from gm.classification import Classification, classify_intent, is_question
from gm.consequences import assess
from gm.errors import NothingToUndo, OracleUnavailable, StaleTurnError
from gm.session_store import require_session, transact
from gm.turn_processing.scene_context import SceneContext, scene_context_for
from gm.turn_processing.turns import acting_character, advance_turn
from gm.turn_processing.validators import validate_command
from gm.world_state import apply_world_update

logger = logging.getLogger(__name__)

Outcome = Literal["answered", "pending_confirmation", "resolved"]
AcknowledgementHook = Callable[[str, str], Awaitable[None]]


@dataclass(frozen=True, slots=True)
class SubmitResult:
    outcome: Outcome
    classification: Classification
    state: GameSession
    confirmation_message: str | None = None
    answer: str | None = None


def _now() -> datetime:
    return datetime.now(tz=UTC)


def _msg_id() -> str:
    return uuid4().hex


def _touch(state: GameSession, now: datetime) -> None:
    state.world_state.last_activity = now
    state.world_state.idle_warning_shown = False


def _question_character(state: GameSession, *, user_id: str, character_id: str | None) -> Character | None:
    """Best-effort attribution for questions; asking never requires a slot."""

    if state.game.play_mode == PlayMode.remote:
        return next((c for c in state.characters if c.player_id == user_id), None)
    return state.character(character_id or state.active_character_id)


async def _answer_question(
    *,
    r: redis.Redis,
    oracle: Oracle,
    snapshot: GameSession,
    user_id: str,
    text: str,
    character_id: str | None,
    classification: Classification,
) -> SubmitResult:
    validate_command(state=snapshot, user_id=user_id, command="question")

    character = _question_character(snapshot, user_id=user_id, character_id=character_id)
    campaign = get_campaign(r=r, session_id=snapshot.session_id)
    scene = SceneContext(session=snapshot, campaign=campaign, character=character)
    try:
        answer = await oracle.answer_question(scene=scene, question=text)
    except Exception as e:
        logger.warning("Answering a question failed for session %s", snapshot.session_id, exc_info=True)
        raise OracleUnavailable("The game master could not answer right now; please try again") from e

    author = character.name if character is not None else None

    def mutate(state: GameSession) -> GameSession | None:
        validate_command(state=state, user_id=user_id, command="question")
        state.messages.append(Message(id=_msg_id(), role=MessageRole.user, content=text, author_name=author))
        state.messages.append(Message(id=_msg_id(), role=MessageRole.assistant, content=answer))
        _touch(state, _now())
        return state

    updated = transact(r=r, session_id=snapshot.session_id, mutate=mutate, event="question_answered")
    return SubmitResult(outcome="answered", classification=classification, state=updated, answer=answer)


async def _acknowledge(*, oracle: Oracle, scene: SceneContext, action: str) -> str:
    try:
        return await oracle.acknowledge(scene=scene, action=action)
    except Exception:
        logger.warning("Acknowledgement failed for session %s; using a stock line", scene.session.session_id, exc_info=True)
        name = scene.character.name if scene.character is not None else "You"
        return f"{name} makes their move..."


def _commit_resolution(
    *,
    state: GameSession,
    snapshot: GameSession,
    user_id: str,
    character: Character,
    text: str,
    acknowledgement: str,
    resolution: ActionResolution,
    campaign,
) -> GameSession:
    if state.turn_version != snapshot.turn_version:
        raise StaleTurnError(expected=snapshot.turn_version, actual=state.turn_version)
    validate_command(state=state, user_id=user_id, command="action", character_id=character.id)

    state.previous_world_state = state.world_state.model_copy(deep=True)
    state.undo_marker = UndoMarker(
        message_count=len(state.messages),
        story_message_count=len(state.story_messages),
        active_character_id=state.active_character_id,
        pending_handoff_character_id=state.pending_handoff_character_id,
    )

    state.world_state = apply_world_update(
        world=state.world_state,
        update=resolution.world_update,
        campaign=campaign,
        fallback_event=f"{character.name}: {text.strip()[:160]}",
    )

    visibility = state.game.mechanics_visibility
    mechanics = resolution.mechanics_details if visibility != MechanicsVisibility.hidden else None
    state.messages.append(Message(id=_msg_id(), role=MessageRole.user, content=text, author_name=character.name))
    state.messages.append(Message(id=_msg_id(), role=MessageRole.assistant, content=acknowledgement))
    state.messages.append(
        Message(id=_msg_id(), role=MessageRole.assistant, content=resolution.narrative_result, mechanics=mechanics)
    )
    state.story_messages.append(StoryMessage(content=acknowledgement))
    state.story_messages.append(StoryMessage(content=resolution.narrative_result))

    advance_turn(state=state)
    state.turn_version += 1
    _touch(state, _now())
    return state


async def submit_input(
    *,
    r: redis.Redis,
    oracle: Oracle,
    session_id: UUID,
    user_id: str,
    text: str,
    confirmed: bool = False,
    character_id: str | None = None,
    on_acknowledgement: AcknowledgementHook | None = None,
) -> SubmitResult:
    """Route one piece of player input through the pipeline.

    `on_acknowledgement(character_id, text)` is awaited as soon as the short
    acknowledgement exists, before resolution starts.
    """

    snapshot = require_session(r=r, session_id=session_id)
    classification = await classify_intent(text=text, oracle=oracle)
    logger.info(
        "Session %s input classified as %s (%.2f, %s)",
        session_id,
        classification.label,
        classification.confidence,
        classification.source,
    )

    if is_question(classification):
        return await _answer_question(
            r=r,
            oracle=oracle,
            snapshot=snapshot,
            user_id=user_id,
            text=text,
            character_id=character_id,
            classification=classification,
        )

    character = acting_character(state=snapshot, user_id=user_id, character_id=character_id)
    validate_command(state=snapshot, user_id=user_id, command="action", character_id=character.id)

    campaign = get_campaign(r=r, session_id=session_id)
    scene = scene_context_for(session=snapshot, campaign=campaign, character_id=character.id)

    if confirmed:
        # Cooperative model: the client says the player already saw the warning.
        logger.info("Session %s: %s submits a confirmed action (confirmed=True)", session_id, character.id)
    else:
        assessment = await assess(oracle=oracle, scene=scene, action=text)
        if assessment.needs_confirmation:
            return SubmitResult(
                outcome="pending_confirmation",
                classification=classification,
                state=snapshot,
                confirmation_message=assessment.confirmation_message,
            )

    acknowledgement = await _acknowledge(oracle=oracle, scene=scene, action=text)
    # Live only; the stored session records it together with the committed resolution.
    if on_acknowledgement is not None:
        await on_acknowledgement(character.id, acknowledgement)

    try:
        resolution = await oracle.resolve_action(scene=scene, action=text)
    except Exception as e:
        logger.warning("Action resolution failed for session %s", session_id, exc_info=True)
        raise OracleUnavailable("The game master could not resolve that action; please try again") from e

    updated = transact(
        r=r,
        session_id=session_id,
        mutate=lambda state: _commit_resolution(
            state=state,
            snapshot=snapshot,
            user_id=user_id,
            character=character,
            text=text,
            acknowledgement=acknowledgement,
            resolution=resolution,
            campaign=campaign,
        ),
        event="action_resolved",
    )
    logger.info(
        "Session %s: committed action by %s (turn_version=%d, next=%s)",
        session_id,
        character.id,
        updated.turn_version,
        updated.pending_handoff_character_id or updated.active_character_id,
    )
    return SubmitResult(outcome="resolved", classification=classification, state=updated)


def undo(*, r: redis.Redis, session_id: UUID, user_id: str) -> GameSession:
    """Restore the single stored snapshot. There is no redo."""

    def mutate(state: GameSession) -> GameSession | None:
        validate_command(state=state, user_id=user_id, command="undo")
        if state.previous_world_state is None:
            raise NothingToUndo()

        state.world_state = state.previous_world_state
        state.previous_world_state = None

        marker = state.undo_marker
        if marker is not None:
            state.messages = state.messages[: marker.message_count]
            state.story_messages = state.story_messages[: marker.story_message_count]
            state.active_character_id = marker.active_character_id
            state.pending_handoff_character_id = marker.pending_handoff_character_id
        state.undo_marker = None
        state.turn_version += 1
        _touch(state, _now())
        return state

    updated = transact(r=r, session_id=session_id, mutate=mutate, event="action_undone")
    logger.info("Session %s: last action undone", session_id)
    return updated
