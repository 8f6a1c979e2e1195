from flask_socketio import join_room, leave_room, emit, ConnectionRefusedError
from flask import current_app, request, session
from tictactoe import socketio
from tictactoe.errors import AuthError, GameError
from tictactoe.models import User
from tictactoe import db
from tictactoe.services import sessions
from tictactoe.services.rooms import state_machine
from tictactoe.services.rooms.events import (
    ACTOR, OTHERS, ROOM, JoinRoom, LeaveRoom, MakeMove, StartGame, parse_event,
)
from typing import Dict, Any

NAMESPACE = '/ws'

# Socket id -> authenticated context for that connection
_sid_to_ctx: Dict[str, Dict[str, Any]] = {}


def _get_sid() -> str:
    # type: ignore: request.sid exists in Socket.IO context
    return request.sid  # type: ignore


def _user_group(user_id: int) -> str:
    return f"user:{user_id}"


def handle_connect(auth=None):
    token = (auth or {}).get('token') if isinstance(auth, dict) else None
    token = token or session.get('token')
    try:
        ctx = sessions.resolve_session(token)
    except AuthError as exc:
        current_app.logger.warning(f"[ws-auth] rejected sid={_get_sid()} reason={exc.message}")
        raise ConnectionRefusedError(exc.message)

    sid = _get_sid()
    _sid_to_ctx[sid] = {'user_id': ctx.user_id, 'session_id': ctx.session_id, 'token': token}
    sessions.bind_connection(ctx.session_id, sid)
    join_room(_user_group(ctx.user_id))
    user = db.session.get(User, ctx.user_id)
    current_app.logger.info(f"[ws-connect] user={ctx.user_id} sid={sid}")
    emit('connected', {'user': user.to_dict()})


def handle_disconnect(*args):
    sid = _get_sid()
    ctx = _sid_to_ctx.pop(sid, None)
    if not ctx:
        return
    user_id = ctx['user_id']
    current_app.logger.info(f"[ws-disconnect] user={user_id} sid={sid}")
    sessions.clear_connection(ctx['session_id'], sid)
    try:
        state_machine.disconnect(user_id, deliver=_broadcast)
    except GameError as exc:
        current_app.logger.info(f"[ws-disconnect] cleanup rejected user={user_id} kind={exc.kind}")
    except Exception:
        db.session.rollback()
        current_app.logger.exception(f"[ws-disconnect] cleanup failed user={user_id} sid={sid}")


def _broadcast(notes) -> None:
    # The socket is already gone, so only room-wide notifications apply
    for note in notes:
        if note.audience in (ROOM, OTHERS):
            socketio.emit(note.event, note.payload, to=note.code, namespace=NAMESPACE)


def _deliver(notes) -> None:
    for note in notes:
        if note.audience == ACTOR:
            emit(note.event, note.payload)
        elif note.audience == OTHERS:
            emit(note.event, note.payload, to=note.code, include_self=False)
        else:
            emit(note.event, note.payload, to=note.code)


def _on_join(user_id, event: JoinRoom):
    def deliver(notes):
        join_room(event.code)
        _deliver(notes)
    state_machine.join_room(user_id, event.code, deliver=deliver)


def _on_leave(user_id, event: LeaveRoom):
    def deliver(notes):
        leave_room(event.code)
        _deliver(notes)
    state_machine.leave_room(user_id, event.code, deliver=deliver)


def _on_start(user_id, event: StartGame):
    state_machine.start_game(user_id, event.code, deliver=_deliver)


def _on_move(user_id, event: MakeMove):
    state_machine.make_move(user_id, event.code, event.index, deliver=_deliver)


HANDLERS = {
    JoinRoom: _on_join,
    LeaveRoom: _on_leave,
    StartGame: _on_start,
    MakeMove: _on_move,
}

# Sent to the sender when an event fails outside the room rules
FAILURE_MESSAGES = {
    'joinRoom': 'Failed to join room',
    'leaveRoom': 'Failed to leave room',
    'startGame': 'Failed to start game',
    'makeMove': 'Failed to make move',
}


def dispatch(name: str, data) -> None:
    """Run one inbound event; errors go back to the sender only."""
    sid = _get_sid()
    ctx = _sid_to_ctx.get(sid)
    try:
        if not ctx:
            raise AuthError('Unauthorized: connection is not authenticated.')
        auth_ctx = sessions.resolve_session(ctx['token'])
        event = parse_event(name, data)
        HANDLERS[type(event)](auth_ctx.user_id, event)
    except GameError as exc:
        user_id = ctx['user_id'] if ctx else None
        current_app.logger.info(f"[{name}] rejected user={user_id} kind={exc.kind} message={exc.message}")
        emit('roomError', exc.to_dict())
    except Exception:
        db.session.rollback()
        user_id = ctx['user_id'] if ctx else None
        current_app.logger.exception(f"[{name}] failed user={user_id}")
        emit('roomError', {'kind': 'ServerError', 'message': FAILURE_MESSAGES[name]})


def _make_handler(name: str):
    def handler(data=None):
        dispatch(name, data)
    handler.__name__ = f"handle_{name}"
    return handler


def register_socketio_handlers(namespace: str = NAMESPACE) -> None:
    """Register Socket.IO event handlers on ``namespace``."""
    socketio.on_event('connect', handle_connect, namespace=namespace)
    socketio.on_event('disconnect', handle_disconnect, namespace=namespace)
    for name in ('joinRoom', 'leaveRoom', 'startGame', 'makeMove'):
        socketio.on_event(name, _make_handler(name), namespace=namespace)
