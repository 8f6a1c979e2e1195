"""Identity & session store.

Maps an opaque session token to a user and to the socket currently
bound for that session. Sessions live for a fixed retention window
counted from login, independent of activity.
"""
from collections import namedtuple
from datetime import timedelta
import re

from flask import current_app

from tictactoe import db
from tictactoe.errors import AuthError
from tictactoe.models import Session, User, utcnow

AuthContext = namedtuple('AuthContext', ['user_id', 'session_id'])

_TOKEN_RE = re.compile(r'^[0-9a-f]{32}$')


def _retention() -> timedelta:
    return timedelta(days=int(current_app.config.get('SESSION_RETENTION_DAYS', 7)))


def _is_expired(session: Session) -> bool:
    return session.created_at + _retention() <= utcnow()


def create_session(user: User) -> Session:
    """Start a new session for ``user``, dropping any previous ones."""
    removed = Session.query.filter_by(user_id=user.id).delete()
    session = Session(user_id=user.id)
    db.session.add(session)
    db.session.commit()
    current_app.logger.info(f"[session-create] user={user.id} replaced={removed}")
    return session


def resolve_session(token) -> AuthContext:
    if not token:
        raise AuthError('Unauthorized: No token provided.')
    if not isinstance(token, str) or not _TOKEN_RE.match(token):
        raise AuthError('Unauthorized: Malformed token.')
    session = db.session.get(Session, token)
    if session is None or session.user is None:
        raise AuthError('Unauthorized: Invalid session.')
    if _is_expired(session):
        db.session.delete(session)
        db.session.commit()
        raise AuthError('Unauthorized: Session expired.')
    return AuthContext(user_id=session.user_id, session_id=session.id)


def bind_connection(session_id: str, sid: str) -> None:
    session = db.session.get(Session, session_id)
    if session is None:
        return
    session.live_connection_id = sid
    db.session.commit()


def clear_connection(session_id: str, sid: str) -> None:
    """Forget the live connection, unless a newer socket already replaced it."""
    session = db.session.get(Session, session_id)
    if session is None or session.live_connection_id != sid:
        return
    session.live_connection_id = None
    db.session.commit()


def delete_session(token) -> None:
    if not token:
        return
    Session.query.filter_by(id=token).delete()
    db.session.commit()


def purge_expired_sessions() -> int:
    cutoff = utcnow() - _retention()
    removed = Session.query.filter(Session.created_at <= cutoff).delete()
    db.session.commit()
    if removed:
        current_app.logger.info(f"[session-purge] removed={removed}")
    return removed
