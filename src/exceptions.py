"""Errors raised by the decision-room engine.

Every caller-facing failure is one of these classes so the HTTP layer can render
it with a single handler. ``status_code`` is the HTTP status used for that.
"""
from uuid import UUID


class DecisionRoomError(Exception):
    """Base class of all engine errors"""

    status_code = 400

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(DecisionRoomError):
    """Malformed input, rejected before anything is written"""

    status_code = 422


class NotAuthenticated(DecisionRoomError):
    status_code = 401

    def __init__(self, message: str = "User not authenticated"):
        super().__init__(message)


class NotAuthorized(DecisionRoomError):
    """Creator-only action by a non-creator, or submission not allowed"""

    status_code = 403


class NotFound(DecisionRoomError):
    status_code = 404


class RoomNotFound(NotFound):
    def __init__(self, room_id: UUID | str):
        self.room_id = room_id
        super().__init__(f"Room {room_id} not found")


class OptionNotFound(NotFound):
    def __init__(self, option_id: UUID | str):
        self.option_id = option_id
        super().__init__(f"Option {option_id} not found")


class Conflict(DecisionRoomError):
    """Duplicate vote or duplicate join"""

    status_code = 409


class InvalidPhase(Conflict):
    """The operation is not legal in the room's current phase"""


class RoomFull(DecisionRoomError):
    status_code = 409


class NotReady(DecisionRoomError):
    """Voting requested before every participant is ready"""

    status_code = 409


class Expired(DecisionRoomError):
    status_code = 410
