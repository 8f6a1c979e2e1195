"""Error taxonomy shared by the HTTP routes, the socket gateway and the
room services.

Every error carries a ``kind`` (stable name sent to clients), a human
readable ``message`` and the HTTP status used when it escapes a route.
"""


class GameError(Exception):
    kind = 'GameError'
    status_code = 400
    default_message = 'Request failed'

    def __init__(self, message=None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self):
        return {'kind': self.kind, 'message': self.message}


class ValidationError(GameError):
    kind = 'ValidationError'
    status_code = 400
    default_message = 'Invalid input'


class AuthError(GameError):
    kind = 'AuthError'
    status_code = 401
    default_message = 'Unauthorized: Invalid session'


class ForbiddenError(GameError):
    kind = 'Forbidden'
    status_code = 403
    default_message = 'Forbidden'


class NotFoundError(GameError):
    kind = 'NotFound'
    status_code = 404
    default_message = 'Room not found'


class NoActiveRoomError(NotFoundError):
    kind = 'NoActiveRoom'
    default_message = 'No active room found'


class ConflictError(GameError):
    kind = 'Conflict'
    status_code = 409
    default_message = 'Request conflicts with the current room state'


class RoomNotJoinableError(ConflictError):
    kind = 'RoomNotJoinable'


class RoomFullError(ConflictError):
    kind = 'RoomFull'
    default_message = 'Room is full'


class AlreadyInRoomError(ConflictError):
    kind = 'AlreadyInRoom'
    default_message = 'You are already playing in another room'


class NotEnoughPlayersError(ConflictError):
    kind = 'NotEnoughPlayers'
    default_message = 'You need 2 players to start the game'


class InvalidStateError(ConflictError):
    kind = 'InvalidState'


class NotYourTurnError(ConflictError):
    kind = 'NotYourTurn'
    default_message = 'Not your turn.'


class CellTakenError(ConflictError):
    kind = 'CellTaken'
    default_message = 'Square already taken.'


class StaleStateError(ConflictError):
    kind = 'StaleState'
    default_message = 'Room changed while handling the request, please retry'


class ExhaustedRetriesError(GameError):
    kind = 'ExhaustedRetries'
    status_code = 503
    default_message = 'Failed to create a unique room code after multiple attempts.'
