from __future__ import annotations

import logging
from datetime import UTC, datetime
from uuid import UUID

import redis

from gm.agents.oracle import Oracle
from gm.api.models import (
    CampaignStructure,
    Character,
    CharacterPreferences,
    ConceptField,
    GameSession,
    Message,
    MessageRole,
    SessionStep,
    slugify,
)
from gm.campaign import campaign_key, require_campaign, starting_node
from gm.errors import InvalidCommand, OracleUnavailable
from gm.session_store import require_session, transact
from gm.turn_processing.validators import validate_command
from gm.world_state import install_campaign, start_world

logger = logging.getLogger(__name__)

MAX_CHARACTERS = 6


def _free_id(state: GameSession, base: str) -> str:
    candidate, n = base, 1
    while state.character(candidate) is not None:
        n += 1
        candidate = f"{base}-{n}"
    return candidate


def add_character(*, r: redis.Redis, session_id: UUID, user_id: str, character: Character) -> GameSession:
    """Add a character (a slot, in remote play) before play begins."""

    def mutate(state: GameSession) -> GameSession | None:
        validate_command(state=state, user_id=user_id, command="add_character")
        if len(state.characters) >= MAX_CHARACTERS:
            raise InvalidCommand(f"A party can have at most {MAX_CHARACTERS} characters")

        c = character.model_copy(deep=True)
        if not c.id.strip():
            c.id = _free_id(state, slugify(c.name) or f"character-{len(state.characters) + 1}")
        if state.character(c.id) is not None:
            raise InvalidCommand(f"Character id already in use: {c.id}")
        if c.player_id is not None and c.player_id != user_id:
            raise InvalidCommand("A new character can only be bound to the player creating it")

        state.world_state.characters.append(c)
        state.step = SessionStep.characters
        return state

    updated = transact(r=r, session_id=session_id, mutate=mutate, event="character_added")
    logger.info("Session %s: character added (%d total)", session_id, len(updated.characters))
    return updated


async def generate_character(
    *,
    r: redis.Redis,
    oracle: Oracle,
    session_id: UUID,
    user_id: str,
    preferences: CharacterPreferences | None = None,
) -> GameSession:
    """Have the designer invent a character, then add it like a hand-made one.

    Permissions and party size are checked before the oracle is asked, and
    again by `add_character` when the result is stored.
    """

    preferences = preferences or CharacterPreferences()
    snapshot = require_session(r=r, session_id=session_id)
    validate_command(state=snapshot, user_id=user_id, command="add_character")
    if len(snapshot.characters) >= MAX_CHARACTERS:
        raise InvalidCommand(f"A party can have at most {MAX_CHARACTERS} characters")

    try:
        character = await oracle.generate_character(
            concept=snapshot.game,
            existing=snapshot.characters,
            preferences=preferences,
        )
    except Exception as e:
        logger.warning("Character generation failed for session %s", session_id, exc_info=True)
        raise OracleUnavailable("Could not generate a character; please try again") from e

    character = character.model_copy(update={"id": "", "player_id": None, "is_custom": False})
    return add_character(r=r, session_id=session_id, user_id=user_id, character=character)


def rename_session(*, r: redis.Redis, session_id: UUID, user_id: str, name: str) -> GameSession:
    new_name = name.strip()
    if not new_name:
        raise InvalidCommand("Game name cannot be empty")

    def mutate(state: GameSession) -> GameSession | None:
        validate_command(state=state, user_id=user_id, command="rename")
        if state.game.name == new_name:
            return None
        state.game.name = new_name
        return state

    return transact(r=r, session_id=session_id, mutate=mutate, event="session_renamed")


async def regenerate_concept_field(
    *,
    r: redis.Redis,
    oracle: Oracle,
    session_id: UUID,
    user_id: str,
    field: ConceptField,
) -> GameSession:
    """Replace the setting or the tone with a fresh take, leaving the rest of the concept alone."""

    snapshot = require_session(r=r, session_id=session_id)
    validate_command(state=snapshot, user_id=user_id, command="edit_concept")

    try:
        value = await oracle.regenerate_concept_field(concept=snapshot.game, field=field)
    except Exception as e:
        logger.warning("Regenerating %s failed for session %s", field.value, session_id, exc_info=True)
        raise OracleUnavailable(f"Could not regenerate the {field.value}; please try again") from e
    if not value.strip():
        raise OracleUnavailable(f"Could not regenerate the {field.value}; please try again")

    def mutate(state: GameSession) -> GameSession | None:
        validate_command(state=state, user_id=user_id, command="edit_concept")
        setattr(state.game, field.value, value.strip())
        return state

    updated = transact(r=r, session_id=session_id, mutate=mutate, event="concept_field_regenerated")
    logger.info("Session %s: %s regenerated", session_id, field.value)
    return updated


async def regenerate_concept(
    *,
    r: redis.Redis,
    oracle: Oracle,
    session_id: UUID,
    user_id: str,
    request: str = "",
) -> GameSession:
    """Start the concept over from a request; a blank request reuses the original one."""

    snapshot = require_session(r=r, session_id=session_id)
    validate_command(state=snapshot, user_id=user_id, command="edit_concept")
    request = request.strip() or snapshot.game.original_request.strip() or snapshot.game.setting

    try:
        draft = await oracle.generate_concept(request=request)
    except Exception as e:
        logger.warning("Concept generation failed for session %s", session_id, exc_info=True)
        raise OracleUnavailable("Could not regenerate the game concept; please try again") from e

    def mutate(state: GameSession) -> GameSession | None:
        validate_command(state=state, user_id=user_id, command="edit_concept")
        # Play mode, rules and visibility are the host's choices and survive.
        state.game = state.game.model_copy(
            update={
                "name": draft.name,
                "setting": draft.setting,
                "tone": draft.tone,
                "original_request": request,
            }
        )
        return state

    updated = transact(r=r, session_id=session_id, mutate=mutate, event="concept_regenerated")
    logger.info("Session %s: concept regenerated as %r", session_id, updated.game.name)
    return updated


def install_built_campaign(
    *,
    r: redis.Redis,
    session_id: UUID,
    campaign: CampaignStructure,
    setting_category: str,
) -> GameSession:
    """Store a freshly built campaign and mirror it into the session.

    The campaign document and the session are written in the same
    transaction. If play is already under way this is a regeneration: the
    world moves to the new starting node and the turn moves on.
    """

    def mutate(state: GameSession) -> GameSession | None:
        if state.step == SessionStep.play:
            state.world_state = install_campaign(
                world=state.world_state,
                campaign=campaign,
                setting_category=setting_category,
            )
            state.previous_world_state = None
            state.undo_marker = None
            state.turn_version += 1
        else:
            state.world_state.setting_category = setting_category
        return state

    def write_campaign(pipe: redis.client.Pipeline, state: GameSession) -> None:
        pipe.set(campaign_key(session_id), campaign.model_dump_json())

    updated = transact(r=r, session_id=session_id, mutate=mutate, event="campaign_installed", on_commit=write_campaign)
    logger.info("Session %s: campaign installed (%d nodes, setting=%s)", session_id, len(campaign.nodes), setting_category)
    return updated


def begin_play(*, r: redis.Redis, session_id: UUID, user_id: str) -> GameSession:
    """Host starts the story once characters and campaign are ready."""

    campaign = require_campaign(r=r, session_id=session_id)

    def mutate(state: GameSession) -> GameSession | None:
        validate_command(state=state, user_id=user_id, command="begin_play")
        if not state.characters:
            raise InvalidCommand("Add at least one character before starting")

        old = state.world_state
        world = start_world(
            characters=old.characters,
            campaign=campaign,
            setting_category=old.setting_category,
            idle_timeout_minutes=old.idle_timeout_minutes,
            now=datetime.now(tz=UTC),
        )
        world.auto_end_enabled = old.auto_end_enabled
        state.world_state = world
        state.step = SessionStep.play
        state.active_character_id = state.characters[0].id
        state.pending_handoff_character_id = None

        start = starting_node(campaign)
        state.messages.append(
            Message(
                id=f"begin-{state.session_id}",
                role=MessageRole.system,
                content=f"## The story begins\n\n**{start.title}**\n\n{start.description}",
            )
        )
        state.turn_version += 1
        return state

    updated = transact(r=r, session_id=session_id, mutate=mutate, event="play_started")
    logger.info("Session %s: play started, first character %s", session_id, updated.active_character_id)
    return updated
