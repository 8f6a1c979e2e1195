"""Typed inbound socket events and outbound notifications.

Inbound messages arrive as ``(name, payload)`` pairs. ``parse_event``
turns them into one of a closed set of event classes so the gateway can
dispatch them through a single handler table.
"""
import re
from dataclasses import dataclass
from typing import Any, Dict, Optional

from tictactoe.errors import ValidationError
from tictactoe.models import BOARD_SIZE, ROOM_CODE_LENGTH

_CODE_RE = re.compile(rf'^[A-Za-z0-9]{{{ROOM_CODE_LENGTH}}}$')

# Audiences for outbound notifications
ACTOR = 'actor'    # only the connection that sent the event
ROOM = 'room'      # every connection bound to the room code
OTHERS = 'others'  # the room, minus the sending connection


def _parse_code(payload: Dict[str, Any]) -> str:
    code = payload.get('code')
    if not isinstance(code, str) or not code.strip():
        raise ValidationError('Room code is required')
    code = code.strip()
    if not _CODE_RE.match(code):
        raise ValidationError(f'Room code must be {ROOM_CODE_LENGTH} letters or digits')
    return code.upper()


def _parse_index(payload: Dict[str, Any]) -> int:
    index = payload.get('index')
    # bool is an int subclass; reject it explicitly
    if isinstance(index, bool) or not isinstance(index, int):
        raise ValidationError('Cell index must be an integer')
    if not 0 <= index < BOARD_SIZE:
        raise ValidationError('Cell index must be between 0 and 8')
    return index


@dataclass(frozen=True)
class JoinRoom:
    code: str

    @classmethod
    def from_payload(cls, payload):
        return cls(code=_parse_code(payload))


@dataclass(frozen=True)
class LeaveRoom:
    code: str

    @classmethod
    def from_payload(cls, payload):
        return cls(code=_parse_code(payload))


@dataclass(frozen=True)
class StartGame:
    code: str

    @classmethod
    def from_payload(cls, payload):
        return cls(code=_parse_code(payload))


@dataclass(frozen=True)
class MakeMove:
    code: str
    index: int

    @classmethod
    def from_payload(cls, payload):
        return cls(code=_parse_code(payload), index=_parse_index(payload))


EVENT_TYPES = {
    'joinRoom': JoinRoom,
    'leaveRoom': LeaveRoom,
    'startGame': StartGame,
    'makeMove': MakeMove,
}


def parse_event(name: str, payload):
    event_cls = EVENT_TYPES.get(name)
    if event_cls is None:
        raise ValidationError(f'Unknown event {name}')
    if not isinstance(payload, dict):
        raise ValidationError('Event payload must be an object')
    return event_cls.from_payload(payload)


@dataclass
class Notification:
    event: str
    payload: Dict[str, Any]
    audience: str
    code: Optional[str] = None
