from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass

from gm.api.models import GameSession, PlayMode, SessionStatus, SessionStep
from gm.errors import Forbidden, HandoffPending, InvalidCommand, NotYourTurn, SessionFinished, SessionPaused, WrongStep


@dataclass(frozen=True, slots=True)
class ValidationContext:
    """Inputs available to validators.

    Keep this tight and serializable-ish so we can safely log it.
    """

    session_id: str
    user_id: str
    command: str
    # Resolved acting character, when the command has one.
    character_id: str | None = None


class TurnValidator(ABC):
    """A small, composable validation unit for an incoming command."""

    @abstractmethod
    def validate(self, *, ctx: ValidationContext, state: GameSession) -> None:
        raise NotImplementedError


@dataclass(frozen=True, slots=True)
class StepValidator(TurnValidator):
    allowed_steps: frozenset[SessionStep]

    def validate(self, *, ctx: ValidationContext, state: GameSession) -> None:
        if state.step not in self.allowed_steps:
            allowed = ",".join(sorted(s.value for s in self.allowed_steps))
            raise WrongStep(f"Command '{ctx.command}' not allowed in step '{state.step.value}' (allowed: {allowed})")


@dataclass(frozen=True, slots=True)
class NotFinishedValidator(TurnValidator):
    """Deny everything once the session is finished."""

    def validate(self, *, ctx: ValidationContext, state: GameSession) -> None:
        if state.session_status == SessionStatus.finished:
            raise SessionFinished()


@dataclass(frozen=True, slots=True)
class ActiveStatusValidator(TurnValidator):
    """Turn progression is frozen unless the session is active."""

    def validate(self, *, ctx: ValidationContext, state: GameSession) -> None:
        if state.session_status == SessionStatus.finished:
            raise SessionFinished()
        if state.session_status != SessionStatus.active:
            raise SessionPaused(state.session_status.value)


@dataclass(frozen=True, slots=True)
class ActiveCharacterValidator(TurnValidator):
    """Only the character whose turn it is may commit an action."""

    def validate(self, *, ctx: ValidationContext, state: GameSession) -> None:
        if ctx.character_id is None or ctx.character_id != state.active_character_id:
            raise NotYourTurn(expected_character_id=state.active_character_id)


@dataclass(frozen=True, slots=True)
class HandoffValidator(TurnValidator):
    def validate(self, *, ctx: ValidationContext, state: GameSession) -> None:
        if state.pending_handoff_character_id is not None:
            raise HandoffPending(next_character_id=state.pending_handoff_character_id)


@dataclass(frozen=True, slots=True)
class HostValidator(TurnValidator):
    def validate(self, *, ctx: ValidationContext, state: GameSession) -> None:
        if ctx.user_id != state.user_id:
            raise Forbidden(f"Only the host may {ctx.command.replace('_', ' ')}")


@dataclass(frozen=True, slots=True)
class PlayModeValidator(TurnValidator):
    mode: PlayMode

    def validate(self, *, ctx: ValidationContext, state: GameSession) -> None:
        if state.game.play_mode != self.mode:
            raise InvalidCommand(f"Command '{ctx.command}' is only available in {self.mode.value} play")


@dataclass(frozen=True, slots=True)
class ValidatorPipeline:
    validators: tuple[TurnValidator, ...]

    def validate(self, *, ctx: ValidationContext, state: GameSession) -> None:
        for v in self.validators:
            v.validate(ctx=ctx, state=state)


_PLAY = frozenset({SessionStep.play})

# Order matters: the first failing validator decides the error the player sees.
DEFAULT_COMMAND_PIPELINES: dict[str, ValidatorPipeline] = {
    "action": ValidatorPipeline(
        validators=(
            StepValidator(allowed_steps=_PLAY),
            ActiveCharacterValidator(),
            ActiveStatusValidator(),
            HandoffValidator(),
        )
    ),
    "question": ValidatorPipeline(
        validators=(
            StepValidator(allowed_steps=_PLAY),
            NotFinishedValidator(),
        )
    ),
    "undo": ValidatorPipeline(
        validators=(
            StepValidator(allowed_steps=_PLAY),
            HostValidator(),
            NotFinishedValidator(),
        )
    ),
    "handoff": ValidatorPipeline(
        validators=(
            StepValidator(allowed_steps=_PLAY),
            PlayModeValidator(mode=PlayMode.local),
            NotFinishedValidator(),
        )
    ),
    "claim_slot": ValidatorPipeline(
        validators=(
            PlayModeValidator(mode=PlayMode.remote),
            NotFinishedValidator(),
        )
    ),
    "kick": ValidatorPipeline(
        validators=(
            PlayModeValidator(mode=PlayMode.remote),
            HostValidator(),
            NotFinishedValidator(),
        )
    ),
    "add_character": ValidatorPipeline(
        validators=(
            StepValidator(allowed_steps=frozenset({SessionStep.summary, SessionStep.characters})),
            NotFinishedValidator(),
        )
    ),
    "begin_play": ValidatorPipeline(
        validators=(
            HostValidator(),
            StepValidator(allowed_steps=frozenset({SessionStep.summary, SessionStep.characters})),
            NotFinishedValidator(),
        )
    ),
    "pause": ValidatorPipeline(validators=(StepValidator(allowed_steps=_PLAY),)),
    "start_next_session": ValidatorPipeline(
        validators=(
            StepValidator(allowed_steps=_PLAY),
            HostValidator(),
        )
    ),
    "finish": ValidatorPipeline(validators=(HostValidator(),)),
    "build_campaign": ValidatorPipeline(
        validators=(
            HostValidator(),
            NotFinishedValidator(),
        )
    ),
    "configure_idle": ValidatorPipeline(validators=(HostValidator(), NotFinishedValidator())),
    "edit_concept": ValidatorPipeline(
        validators=(
            HostValidator(),
            StepValidator(allowed_steps=frozenset({SessionStep.summary, SessionStep.characters})),
            NotFinishedValidator(),
        )
    ),
    "rename": ValidatorPipeline(validators=(HostValidator(), NotFinishedValidator())),
}


def pipeline_for_command(command: str) -> ValidatorPipeline:
    pipe = DEFAULT_COMMAND_PIPELINES.get(command)
    if pipe is None:
        raise ValueError(f"Unknown command: {command}")
    return pipe


def validate_command(*, state: GameSession, user_id: str, command: str, character_id: str | None = None) -> None:
    ctx = ValidationContext(
        session_id=str(state.session_id),
        user_id=user_id,
        command=command,
        character_id=character_id,
    )
    pipeline_for_command(command).validate(ctx=ctx, state=state)
