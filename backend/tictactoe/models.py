from tictactoe import db, bcrypt
from flask_login import UserMixin
from datetime import datetime, timezone
import json
import uuid

SIGN_X = 'X'
SIGN_O = 'O'

STATUS_WAITING = 'waiting'
STATUS_PLAYING = 'playing'
STATUS_FINISHED = 'finished'
STATUS_ABANDONED = 'abandoned'
ACTIVE_STATUSES = (STATUS_WAITING, STATUS_PLAYING)

BOARD_SIZE = 9
ROOM_CODE_LENGTH = 6


def utcnow():
    # Naive UTC so values compare equally before and after a round trip
    # through backends without timezone support (SQLite).
    return datetime.now(timezone.utc).replace(tzinfo=None)


def other_sign(sign):
    return SIGN_O if sign == SIGN_X else SIGN_X


class User(UserMixin, db.Model):
    __tablename__ = 'user'
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(30), nullable=False)
    username = db.Column(db.String(64), unique=True, nullable=False, index=True)
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(256), nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    def set_password(self, password):
        self.password_hash = bcrypt.generate_password_hash(password).decode('utf-8')

    def check_password(self, password):
        return bcrypt.check_password_hash(self.password_hash, password)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'username': self.username,
            'email': self.email,
        }


class Session(db.Model):
    """Server side login session; ``id`` is the opaque token kept in the cookie."""
    __tablename__ = 'session'
    id = db.Column(db.String(64), primary_key=True, default=lambda: uuid.uuid4().hex)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    live_connection_id = db.Column(db.String(64), nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False, index=True)
    user = db.relationship('User')


class RoomPlayer(db.Model):
    __tablename__ = 'room_player'
    __table_args__ = (db.UniqueConstraint('room_id', 'user_id', name='uq_room_player_user'),)
    id = db.Column(db.Integer, primary_key=True)
    room_id = db.Column(db.Integer, db.ForeignKey('room.id'), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False, index=True)
    sign = db.Column(db.String(1), nullable=True)
    room = db.relationship('Room', back_populates='players')
    user = db.relationship('User')

    def to_dict(self):
        return {
            'id': self.user_id,
            'name': self.user.name,
            'username': self.user.username,
            'sign': self.sign,
        }


class Room(db.Model):
    __tablename__ = 'room'
    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(ROOM_CODE_LENGTH), unique=True, nullable=False, index=True)
    max_players_count = db.Column(db.Integer, nullable=False, default=2)
    created_by = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=False)
    status = db.Column(db.String(16), nullable=False, default=STATUS_WAITING)  # waiting, playing, finished, abandoned
    board_id = db.Column(db.Integer, db.ForeignKey('board.id', name='fk_room_board_id', use_alter=True), nullable=True)
    current_turn = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=True)
    winner = db.Column(db.Integer, db.ForeignKey('user.id'), nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=utcnow, nullable=False)
    # Optimistic lock: every UPDATE is conditional on the version read
    version = db.Column(db.Integer, nullable=False)
    players = db.relationship(
        'RoomPlayer',
        back_populates='room',
        order_by='RoomPlayer.id',
        cascade='all, delete-orphan',
    )

    __mapper_args__ = {'version_id_col': version}

    def player_for(self, user_id):
        for p in self.players:
            if p.user_id == user_id:
                return p
        return None

    def opponent_of(self, user_id):
        for p in self.players:
            if p.user_id != user_id:
                return p
        return None

    def player_with_sign(self, sign):
        for p in self.players:
            if p.sign == sign:
                return p
        return None

    def to_dict(self):
        return {
            'id': self.id,
            'code': self.code,
            'max_players_count': self.max_players_count,
            'players': [p.to_dict() for p in self.players],
            'created_by': self.created_by,
            'status': self.status,
            'board': self.board_id,
            'current_turn': self.current_turn,
            'winner': self.winner,
        }


class Board(db.Model):
    __tablename__ = 'board'
    id = db.Column(db.Integer, primary_key=True)
    room_id = db.Column(db.Integer, db.ForeignKey('room.id'), unique=True, nullable=False)
    cells_json = db.Column(db.Text, nullable=False, default=lambda: json.dumps([None] * BOARD_SIZE))
    move_history_json = db.Column(db.Text, nullable=False, default='[]')
    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    @property
    def cells(self):
        return json.loads(self.cells_json) if self.cells_json else [None] * BOARD_SIZE

    @cells.setter
    def cells(self, value):
        if len(value) != BOARD_SIZE:
            raise ValueError('Board must have exactly 9 cells')
        self.cells_json = json.dumps(list(value))

    @property
    def move_history(self):
        return json.loads(self.move_history_json) if self.move_history_json else []

    @move_history.setter
    def move_history(self, value):
        self.move_history_json = json.dumps(list(value))

    def to_dict(self):
        return {
            'id': self.id,
            'room_id': self.room_id,
            'cells': self.cells,
            'move_history': self.move_history,
        }
