"""Room state machine.

Every room-affecting event (join, leave, start, move, disconnect) is
validated and applied here. Each operation returns the ordered list of
notifications the gateway must deliver; nothing in this module talks to
sockets directly. Callers that need delivery ordered with the commit
pass ``deliver``, which runs before the room lock is released.

State changes for one room run under that room's lock and commit with
an optimistic version check on the room row, so a write based on a
stale read fails with ``StaleStateError`` instead of overwriting.
"""
from contextlib import contextmanager
from typing import List

from flask import current_app
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from tictactoe import db
from tictactoe.errors import (
    AlreadyInRoomError,
    CellTakenError,
    ForbiddenError,
    InvalidStateError,
    NoActiveRoomError,
    NotEnoughPlayersError,
    NotFoundError,
    NotYourTurnError,
    RoomFullError,
    RoomNotJoinableError,
    StaleStateError,
    ValidationError,
)
from tictactoe.models import (
    ACTIVE_STATUSES,
    BOARD_SIZE,
    SIGN_X,
    STATUS_FINISHED,
    STATUS_PLAYING,
    STATUS_WAITING,
    Room,
    RoomPlayer,
    other_sign,
    utcnow,
)
from . import boards, registry
from .engine import DRAW, WINNER, evaluate
from .events import ACTOR, OTHERS, ROOM, Notification
from .locks import room_lock


@contextmanager
def _locked(code: str):
    with room_lock(code):
        # Drop cached rows so every check below sees the latest committed state
        db.session.expire_all()
        yield


def _publish(notes: List[Notification], deliver) -> List[Notification]:
    # Called while the room lock is held so same-room events go out in commit order
    if deliver is not None:
        deliver(notes)
    return notes


@contextmanager
def _transaction(code: str, room: Room):
    room.updated_at = utcnow()
    try:
        yield
        db.session.commit()
    except (StaleDataError, IntegrityError) as exc:
        db.session.rollback()
        current_app.logger.warning(f"[conflict] room={code} error={exc.__class__.__name__}")
        raise StaleStateError() from exc
    except Exception:
        db.session.rollback()
        raise


def _find_active_room(code: str, user_id: int):
    room = (
        Room.query.filter(Room.code == code, Room.status.in_(ACTIVE_STATUSES))
        .first()
    )
    if room is None or room.player_for(user_id) is None:
        return None
    return room


def _player_view(player: RoomPlayer):
    return player.to_dict() if player is not None else None


def _join_view(room: Room, user_id: int):
    return {
        'me': _player_view(room.player_for(user_id)),
        'opponent': _player_view(room.opponent_of(user_id)),
        'is_admin': room.created_by == user_id,
    }


def _game_payload(room: Room, board, winning_line=None):
    payload = {'room': room.to_dict(), 'board': board.to_dict() if board is not None else None}
    if winning_line is not None:
        payload['winning_line'] = list(winning_line)
    return payload


def _depart(code: str, room: Room, user_id: int):
    """Remove ``user_id`` and reset the room to waiting, dropping its board."""
    player = room.player_for(user_id)
    departed = {
        'id': user_id,
        'name': player.user.name,
        'username': player.user.username,
        'sign': player.sign,
    }
    stale_board_id = room.board_id
    with _transaction(code, room):
        room.players.remove(player)
        room.status = STATUS_WAITING
        room.current_turn = None
        room.winner = None
        room.board_id = None
        # The room must stop referencing the board before it is deleted
        db.session.flush()
        boards.delete_board(stale_board_id)
        leftover = boards.find_by_room_id(room.id)
        if leftover is not None:
            db.session.delete(leftover)
    return departed


def join_room(user_id: int, code: str, deliver=None) -> List[Notification]:
    code = registry.normalize_code(code)
    with _locked(code):
        room = registry.find_by_code(code)

        if room.player_for(user_id) is not None:
            # Rejoin after a dropped connection: hand back the current view
            notes = [Notification('joinSuccess', _join_view(room, user_id), ACTOR, code)]
            if room.status == STATUS_PLAYING:
                board = boards.find_by_room_id(room.id)
                if board is not None:
                    notes.append(Notification('gameStarted', _game_payload(room, board), ACTOR, code))
            current_app.logger.info(f"[rejoin] room={code} user={user_id} status={room.status}")
            return _publish(notes, deliver)

        if room.status != STATUS_WAITING:
            raise RoomNotJoinableError(f'Cannot join, room status is {room.status}')
        if len(room.players) >= room.max_players_count:
            raise RoomFullError()
        elsewhere = registry.find_active_room_for_user(user_id)
        if elsewhere is not None and elsewhere.id != room.id:
            raise AlreadyInRoomError(f'You are already in room {elsewhere.code}')

        sign = SIGN_X if not room.players else other_sign(room.players[0].sign)
        with _transaction(code, room):
            room.players.append(RoomPlayer(user_id=user_id, sign=sign))

        view = _join_view(room, user_id)
        current_app.logger.info(f"[join] room={code} user={user_id} sign={sign}")
        return _publish([
            Notification('joinSuccess', view, ACTOR, code),
            Notification('opponentJoined', {'opponent': view['me']}, OTHERS, code),
        ], deliver)


def leave_room(user_id: int, code: str, deliver=None) -> List[Notification]:
    code = registry.normalize_code(code)
    with _locked(code):
        room = _find_active_room(code, user_id)
        if room is None:
            raise NoActiveRoomError()
        departed = _depart(code, room, user_id)
        current_app.logger.info(f"[leave] room={code} user={user_id} sign={departed['sign']}")
        return _publish([
            Notification('leaveSuccess', {'message': 'Left room successfully'}, ACTOR, code),
            Notification('opponentLeft', departed, ROOM, code),
        ], deliver)


def start_game(user_id: int, code: str, deliver=None) -> List[Notification]:
    code = registry.normalize_code(code)
    with _locked(code):
        room = registry.find_by_code(code)
        if room.created_by != user_id:
            raise ForbiddenError('Only the room creator can start the game')
        if len(room.players) != 2:
            raise NotEnoughPlayersError()
        if room.status != STATUS_WAITING:
            raise InvalidStateError('Game already started or finished')

        first = room.player_with_sign(SIGN_X)
        with _transaction(code, room):
            board = boards.create_board(room.id)
            room.status = STATUS_PLAYING
            room.board_id = board.id
            room.current_turn = first.user_id
            room.winner = None

        current_app.logger.info(f"[start] room={code} board={board.id} first={first.user_id}")
        return _publish([Notification('gameStarted', _game_payload(room, board), ROOM, code)], deliver)


def make_move(user_id: int, code: str, index, deliver=None) -> List[Notification]:
    if isinstance(index, bool) or not isinstance(index, int) or not 0 <= index < BOARD_SIZE:
        raise ValidationError('Cell index must be an integer between 0 and 8')
    code = registry.normalize_code(code)
    with _locked(code):
        room = registry.find_by_code(code)
        board = boards.find_by_room_id(room.id)
        if board is None:
            raise NotFoundError('Game not found.')
        if room.status != STATUS_PLAYING:
            raise InvalidStateError('Game is not active.')
        if room.current_turn != user_id:
            raise NotYourTurnError()
        if board.cells[index] is not None:
            raise CellTakenError()

        mover = room.player_for(user_id)
        with _transaction(code, room):
            boards.record_move(board, index, mover.sign)
            result = evaluate(board.cells)
            if result.outcome == WINNER:
                room.status = STATUS_FINISHED
                room.winner = user_id
                room.current_turn = None
            elif result.outcome == DRAW:
                room.status = STATUS_FINISHED
                room.winner = None
                room.current_turn = None
            else:
                room.current_turn = room.opponent_of(user_id).user_id

        current_app.logger.info(
            f"[move] room={code} user={user_id} sign={mover.sign} index={index} outcome={result.outcome}"
        )
        return _publish([Notification('gameUpdate', _game_payload(room, board, result.line), ROOM, code)], deliver)


def disconnect(user_id: int, deliver=None) -> List[Notification]:
    """Treat a dropped connection as leaving the user's active room, if any."""
    room = registry.find_active_room_for_user(user_id)
    if room is None:
        return []
    code = room.code
    with _locked(code):
        room = _find_active_room(code, user_id)
        if room is None:
            return []
        departed = _depart(code, room, user_id)
        current_app.logger.info(f"[disconnect-cleanup] room={code} user={user_id} sign={departed['sign']}")
        return _publish([Notification('opponentLeft', departed, ROOM, code)], deliver)
