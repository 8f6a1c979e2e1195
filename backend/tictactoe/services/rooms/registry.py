import random
import string

from flask import current_app
from sqlalchemy.exc import IntegrityError

from tictactoe import db
from tictactoe.errors import ExhaustedRetriesError, NotFoundError
from tictactoe.models import Room, RoomPlayer, ROOM_CODE_LENGTH, STATUS_WAITING, ACTIVE_STATUSES


def generate_room_code(length=ROOM_CODE_LENGTH):
    """Generate a short, human-shareable room code."""
    return ''.join(random.choices(string.ascii_uppercase + string.digits, k=length))


def normalize_code(code) -> str:
    return (code or '').strip().upper()


def create_room(owner_id: int, code_factory=None) -> str:
    """Create a waiting room owned by ``owner_id`` and return its code.

    Collisions on the unique code are retried a bounded number of times.
    """
    cfg = current_app.config
    max_retries = int(cfg.get('ROOM_CODE_MAX_RETRIES', 10))
    code_factory = code_factory or generate_room_code

    for attempt in range(1, max_retries + 1):
        code = normalize_code(code_factory())
        if Room.query.filter_by(code=code).first() is not None:
            current_app.logger.warning(f"[room-create] code collision code={code} attempt={attempt}")
            continue
        room = Room(
            code=code,
            created_by=owner_id,
            status=STATUS_WAITING,
            max_players_count=int(cfg.get('MAX_PLAYERS', 2)),
        )
        db.session.add(room)
        try:
            db.session.commit()
        except IntegrityError:
            # Lost a race for the same code between the check and the insert
            db.session.rollback()
            current_app.logger.warning(f"[room-create] code collision on insert code={code} attempt={attempt}")
            continue
        current_app.logger.info(f"[room-create] room={code} owner={owner_id}")
        return code

    raise ExhaustedRetriesError()


def find_by_code(code) -> Room:
    room = Room.query.filter_by(code=normalize_code(code)).first()
    if room is None:
        raise NotFoundError('Room not found')
    return room


def get_status(code) -> str:
    return find_by_code(code).status


def find_active_room_for_user(user_id: int):
    return (
        Room.query.join(RoomPlayer)
        .filter(RoomPlayer.user_id == user_id, Room.status.in_(ACTIVE_STATUSES))
        .first()
    )
