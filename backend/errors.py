"""Game errors.

Every error raised by the registries and the round engine derives from
``GameError`` and carries a machine-readable ``code`` plus the HTTP status the
gateway answers with. ``soft`` errors are benign rejections (a late or
duplicate answer) that a well-behaved client has already handled locally.
"""


class GameError(Exception):
    code = "GAME_ERROR"
    status_code = 400
    soft = False

    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__doc__ or self.code)
        self.message = str(self)

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message}


# --- Validation: always rejected locally, never mutates state ---

class ValidationError(GameError):
    code = "VALIDATION_ERROR"
    status_code = 400


class InvalidUsername(ValidationError):
    """Username must be 3-20 characters"""
    code = "INVALID_USERNAME"


class InvalidRoomCode(ValidationError):
    """Room code must be 6 letters or digits"""
    code = "INVALID_ROOM_CODE"


class InvalidDifficulty(ValidationError):
    """Unknown difficulty"""
    code = "INVALID_DIFFICULTY"


class InvalidMode(ValidationError):
    """Unknown game mode"""
    code = "INVALID_MODE"


class InvalidAnswer(ValidationError):
    """Malformed answer payload"""
    code = "INVALID_ANSWER"


# --- State conflicts ---

class StateConflict(GameError):
    code = "STATE_CONFLICT"
    status_code = 409


class RoomFull(StateConflict):
    """Room is full"""
    code = "ROOM_FULL"


class InvalidState(StateConflict):
    """Action not allowed in the current room status"""
    code = "INVALID_STATE"


class NotHost(StateConflict):
    """Only the host can do that"""
    code = "NOT_HOST"


class NotInRoom(StateConflict):
    """You are not a player in this room"""
    code = "NOT_IN_ROOM"


class InsufficientPlayers(StateConflict):
    """Need 2 players to start the game"""
    code = "INSUFFICIENT_PLAYERS"


class StaleRound(StateConflict):
    """Round is over"""
    code = "STALE_ROUND"
    soft = True


class AlreadyAnswered(StateConflict):
    """Already answered this round"""
    code = "ALREADY_ANSWERED"
    soft = True


class RoomLimitReached(StateConflict):
    """Too many active rooms. Please try again later."""
    code = "ROOM_LIMIT_REACHED"
    status_code = 429


# --- Not found: terminal for the request ---

class NotFound(GameError):
    code = "NOT_FOUND"
    status_code = 404


class UserNotFound(NotFound):
    """User not found"""
    code = "USER_NOT_FOUND"


class RoomNotFound(NotFound):
    """Room not found"""
    code = "ROOM_NOT_FOUND"


# --- Server side ---

class InsufficientQuestions(GameError):
    """Not enough questions for this difficulty"""
    code = "INSUFFICIENT_QUESTIONS"
    status_code = 503
