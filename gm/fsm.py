from __future__ import annotations

from statemachine import State, StateMachine
from statemachine.exceptions import TransitionNotAllowed

from gm.api.models import GameSession, SessionStatus
from gm.errors import InvalidCommand, SessionFinished


class SessionFSM(StateMachine):
    """Lifecycle guard around `GameSession.session_status`.

    active -> paused -> active -> ... -> finished. Finished is terminal and a
    paused session only re-enters active through `start_next`.
    """

    running = State(SessionStatus.active.value, value=SessionStatus.active.value, initial=True)
    paused = State(SessionStatus.paused.value, value=SessionStatus.paused.value)
    finished = State(SessionStatus.finished.value, value=SessionStatus.finished.value, final=True)

    pause = running.to(paused)
    start_next = paused.to(running)
    finish = running.to(finished) | paused.to(finished)

    def __init__(self, session: GameSession):
        self.session = session
        super().__init__(start_value=session.session_status.value)

    def sync_status_to_model(self) -> None:
        self.session.session_status = SessionStatus(str(self.current_state_value))


class TurnFSM(StateMachine):
    """Hot-seat hand-off guard.

    After a committed action in local play the next character does not become
    active until someone acknowledges the hand-off.
    """

    awaiting_action = State("awaiting_action", value="awaiting_action", initial=True)
    pending_handoff = State("pending_handoff", value="pending_handoff")

    request_handoff = awaiting_action.to(pending_handoff)
    acknowledge = pending_handoff.to(awaiting_action)

    def __init__(self, session: GameSession):
        self.session = session
        start = "pending_handoff" if session.pending_handoff_character_id else "awaiting_action"
        super().__init__(start_value=start)


def apply_lifecycle_event(session: GameSession, event: str) -> None:
    """Run a SessionFSM event against `session`, translating refusals into domain errors."""

    fsm = SessionFSM(session)
    try:
        fsm.send(event)
    except TransitionNotAllowed as e:
        if session.session_status == SessionStatus.finished:
            raise SessionFinished() from e
        raise InvalidCommand(
            f"Cannot {event.replace('_', ' ')} while session is {session.session_status.value}"
        ) from e
    fsm.sync_status_to_model()
