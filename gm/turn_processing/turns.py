from __future__ import annotations

import logging
from datetime import UTC, datetime
from uuid import UUID

import redis

from gm.api.models import Character, GameSession, PlayMode, PlayerRecord
from gm.errors import AlreadyClaimed, InvalidCommand
from gm.fsm import TurnFSM
from gm.session_store import get_player, players_key, transact
from gm.turn_processing.validators import validate_command

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(tz=UTC)


def next_character_id(*, state: GameSession) -> str | None:
    """The character after the active one in list order, wrapping."""

    chars = state.characters
    if not chars:
        return None
    ids = [c.id for c in chars]
    if state.active_character_id not in ids:
        return ids[0]
    idx = ids.index(state.active_character_id)
    return ids[(idx + 1) % len(ids)]


def acting_character(*, state: GameSession, user_id: str, character_id: str | None = None) -> Character:
    """Resolve which character an input is attributed to.

    Remote play: the slot bound to the submitting user. Hot-seat: the explicit
    character if given, otherwise whoever is active.
    """

    if state.game.play_mode == PlayMode.remote:
        owned = next((c for c in state.characters if c.player_id == user_id), None)
        if owned is None:
            raise InvalidCommand("You have not claimed a character in this session")
        if character_id is not None and character_id != owned.id:
            raise InvalidCommand("You can only act as your own character")
        return owned

    wanted = character_id or state.active_character_id
    found = state.character(wanted)
    if found is None:
        raise InvalidCommand(f"Unknown character: {wanted}")
    return found


def advance_turn(*, state: GameSession) -> None:
    """Move turn ownership on after a committed action (mutates `state`).

    Remote play moves straight to the next character. Hot-seat with more than
    one character enters `pending_handoff` until the device is passed.
    """

    nxt = next_character_id(state=state)
    if nxt is None:
        return

    if state.game.play_mode == PlayMode.local and nxt != state.active_character_id:
        fsm = TurnFSM(state)
        fsm.send("request_handoff")
        state.pending_handoff_character_id = nxt
        return

    state.active_character_id = nxt


def acknowledge_handoff(*, r: redis.Redis, session_id: UUID, user_id: str) -> GameSession:
    """Hot-seat: the next player has the device; make their character active."""

    def mutate(state: GameSession) -> GameSession | None:
        validate_command(state=state, user_id=user_id, command="handoff")
        if state.pending_handoff_character_id is None:
            # Already acknowledged by someone else.
            return None
        fsm = TurnFSM(state)
        fsm.send("acknowledge")
        state.active_character_id = state.pending_handoff_character_id
        state.pending_handoff_character_id = None
        state.turn_version += 1
        return state

    updated = transact(r=r, session_id=session_id, mutate=mutate, event="handoff_acknowledged")
    logger.info("Session %s: hand-off acknowledged, active=%s", session_id, updated.active_character_id)
    return updated


def claim_slot(*, r: redis.Redis, session_id: UUID, slot_id: str, user_id: str, player_name: str = "") -> GameSession:
    """Bind `user_id` to a character slot (remote play).

    Atomic over both the session document and the players hash, so two users
    racing for the same slot never both win.
    """

    record: dict[str, PlayerRecord] = {}

    def mutate(state: GameSession) -> GameSession | None:
        validate_command(state=state, user_id=user_id, command="claim_slot")
        slot = state.character(slot_id)
        if slot is None:
            raise InvalidCommand(f"Unknown slot: {slot_id}")
        if slot.player_id == user_id:
            return None
        if slot.player_id is not None:
            raise AlreadyClaimed(slot_id=slot_id)
        held = next((c for c in state.characters if c.player_id == user_id), None)
        if held is not None:
            raise InvalidCommand(f"You already hold slot {held.id}")

        now = _now()
        existing = get_player(r=r, session_id=session_id, user_id=user_id)
        if existing is None:
            existing = PlayerRecord(
                user_id=user_id,
                name=player_name or user_id,
                is_host=user_id == state.user_id,
                joined_at=now,
                last_active=now,
            )
        existing.claimed_character_id = slot_id
        existing.last_active = now
        record["player"] = existing

        slot.player_id = user_id
        if player_name:
            slot.player_name = player_name
        elif not slot.player_name:
            slot.player_name = existing.name
        return state

    def write_player(pipe: redis.client.Pipeline, state: GameSession) -> None:
        player = record["player"]
        pipe.hset(players_key(session_id), player.user_id, player.model_dump_json())

    updated = transact(
        r=r,
        session_id=session_id,
        mutate=mutate,
        event="slot_claimed",
        extra_watch=(players_key(session_id),),
        on_commit=write_player,
    )
    logger.info("Session %s: slot %s claimed by %s", session_id, slot_id, user_id)
    return updated


def kick_slot(*, r: redis.Redis, session_id: UUID, slot_id: str, requested_by: str) -> GameSession:
    """Host-only: release a slot back to unclaimed."""

    released: dict[str, PlayerRecord] = {}

    def mutate(state: GameSession) -> GameSession | None:
        validate_command(state=state, user_id=requested_by, command="kick")
        slot = state.character(slot_id)
        if slot is None:
            raise InvalidCommand(f"Unknown slot: {slot_id}")
        if slot.player_id is None:
            return None
        player = get_player(r=r, session_id=session_id, user_id=slot.player_id)
        if player is not None:
            player.claimed_character_id = None
            released["player"] = player
        slot.player_id = None
        slot.player_name = ""
        return state

    def write_player(pipe: redis.client.Pipeline, state: GameSession) -> None:
        player = released.get("player")
        if player is not None:
            pipe.hset(players_key(session_id), player.user_id, player.model_dump_json())

    updated = transact(
        r=r,
        session_id=session_id,
        mutate=mutate,
        event="slot_kicked",
        extra_watch=(players_key(session_id),),
        on_commit=write_player,
    )
    logger.info("Session %s: slot %s released by host", session_id, slot_id)
    return updated
