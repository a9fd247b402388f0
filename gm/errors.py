from __future__ import annotations


class GameMasterError(Exception):
    """Base class for every domain error raised by the orchestration core.

    `retryable` tells callers whether the same command may succeed later
    without the player changing anything.
    """

    retryable: bool = False


class SessionNotFound(GameMasterError, LookupError):
    def __init__(self, session_id: object) -> None:
        super().__init__(f"Session not found: {session_id}")


# ---- validation: rejected synchronously, no mutation ----


class InvalidCommand(GameMasterError, ValueError):
    pass


class NotYourTurn(InvalidCommand):
    def __init__(self, *, expected_character_id: str | None) -> None:
        super().__init__(f"Not your turn (expected character_id={expected_character_id})")
        self.expected_character_id = expected_character_id


class SessionPaused(InvalidCommand):
    def __init__(self, status: str = "paused") -> None:
        super().__init__(f"Session is {status}; turns are frozen")


class HandoffPending(InvalidCommand):
    def __init__(self, *, next_character_id: str) -> None:
        super().__init__(f"Waiting for hand-off to character_id={next_character_id}")
        self.next_character_id = next_character_id


class AlreadyClaimed(InvalidCommand):
    def __init__(self, *, slot_id: str) -> None:
        super().__init__(f"Slot {slot_id} is already claimed by another player")
        self.slot_id = slot_id


class WrongStep(InvalidCommand):
    pass


# ---- permission ----


class Forbidden(GameMasterError, PermissionError):
    pass


# ---- external dependency ----


class OracleUnavailable(GameMasterError):
    retryable = True


# ---- conflict ----


class ConflictError(GameMasterError):
    retryable = True


class StaleTurnError(ConflictError):
    def __init__(self, *, expected: int, actual: int) -> None:
        super().__init__(f"Turn moved on while resolving (read turn_version={expected}, now {actual})")
        self.expected = expected
        self.actual = actual


# ---- terminal ----


class TerminalError(GameMasterError):
    pass


class CampaignAlreadyFinished(TerminalError):
    def __init__(self) -> None:
        super().__init__("Campaign is already finished")


class NothingToUndo(TerminalError):
    def __init__(self) -> None:
        super().__init__("No previous state available to undo to")


class SessionFinished(TerminalError):
    def __init__(self) -> None:
        super().__init__("Session is finished")
