import threading
import time

import pytest
from sqlalchemy import text

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
from tictactoe.models import Board, Room, User
from tictactoe.services.rooms import boards, locks, registry
from tictactoe.services.rooms import state_machine as sm
from tictactoe.services.rooms.events import ACTOR, OTHERS, ROOM


def _events(notes):
    return [(n.event, n.audience) for n in notes]


@pytest.fixture()
def players(make_user):
    return make_user('Alice'), make_user('Bob'), make_user('Cara')


@pytest.fixture()
def full_room(players, make_room):
    alice, bob, _ = players
    code = make_room(alice, 'ABC123')
    sm.join_room(alice.id, code)
    sm.join_room(bob.id, code)
    return code


@pytest.fixture()
def started_room(players, full_room):
    alice = players[0]
    sm.start_game(alice.id, full_room)
    return full_room


def _room(code):
    return registry.find_by_code(code)


# ---- join ----

def test_first_joiner_is_x_and_admin(players, make_room):
    alice = players[0]
    code = make_room(alice)
    notes = sm.join_room(alice.id, code)
    assert _events(notes) == [('joinSuccess', ACTOR), ('opponentJoined', OTHERS)]
    view = notes[0].payload
    assert view['me']['sign'] == 'X'
    assert view['me']['id'] == alice.id
    assert view['opponent'] is None
    assert view['is_admin'] is True
    assert notes[1].payload == {'opponent': view['me']}
    assert notes[1].code == 'ABC123'


def test_second_joiner_gets_complement(players, make_room):
    alice, bob, _ = players
    code = make_room(alice)
    sm.join_room(alice.id, code)
    notes = sm.join_room(bob.id, code)
    view = notes[0].payload
    assert view['me']['sign'] == 'O'
    assert view['opponent']['id'] == alice.id
    assert view['opponent']['sign'] == 'X'
    assert view['is_admin'] is False
    assert [p.sign for p in _room(code).players] == ['X', 'O']


def test_join_accepts_lowercase_code(players, make_room):
    alice = players[0]
    make_room(alice, 'ABC123')
    notes = sm.join_room(alice.id, 'abc123')
    assert notes[0].code == 'ABC123'


def test_join_unknown_room(players):
    with pytest.raises(NotFoundError):
        sm.join_room(players[0].id, 'ZZZ999')


def test_join_is_idempotent(players, make_room):
    alice, bob, _ = players
    code = make_room(alice)
    sm.join_room(alice.id, code)
    sm.join_room(bob.id, code)
    version = _room(code).version

    first = sm.join_room(bob.id, code)
    second = sm.join_room(bob.id, code)
    assert _events(first) == [('joinSuccess', ACTOR)]
    assert first[0].payload == second[0].payload
    assert len(_room(code).players) == 2
    assert _room(code).version == version


def test_rejoin_while_playing_returns_board(players, started_room):
    bob = players[1]
    notes = sm.join_room(bob.id, started_room)
    assert _events(notes) == [('joinSuccess', ACTOR), ('gameStarted', ACTOR)]
    assert notes[1].payload['board']['cells'] == [None] * 9
    assert notes[1].payload['room']['status'] == 'playing'


def test_join_full_room(players, full_room):
    with pytest.raises(RoomFullError):
        sm.join_room(players[2].id, full_room)


def test_join_room_not_waiting(players, started_room):
    with pytest.raises(RoomNotJoinableError):
        sm.join_room(players[2].id, started_room)


def test_join_second_active_room_is_rejected(players, make_room):
    alice, bob, _ = players
    first = make_room(alice, 'ROOM01')
    second = make_room(bob, 'ROOM02')
    sm.join_room(alice.id, first)
    with pytest.raises(AlreadyInRoomError):
        sm.join_room(alice.id, second)


# ---- start ----

def test_start_game(players, full_room):
    alice = players[0]
    notes = sm.start_game(alice.id, full_room)
    assert _events(notes) == [('gameStarted', ROOM)]
    payload = notes[0].payload
    assert payload['board']['cells'] == [None] * 9
    assert payload['board']['move_history'] == []
    assert payload['room']['status'] == 'playing'
    assert payload['room']['current_turn'] == alice.id
    room = _room(full_room)
    assert room.board_id == payload['board']['id']
    assert room.winner is None


def test_start_requires_creator(players, full_room):
    with pytest.raises(ForbiddenError):
        sm.start_game(players[1].id, full_room)


def test_start_requires_two_players(players, make_room):
    alice = players[0]
    code = make_room(alice)
    sm.join_room(alice.id, code)
    with pytest.raises(NotEnoughPlayersError):
        sm.start_game(alice.id, code)


def test_start_twice_is_invalid(players, started_room):
    with pytest.raises(InvalidStateError):
        sm.start_game(players[0].id, started_room)
    assert Board.query.count() == 1


def test_start_unknown_room(players):
    with pytest.raises(NotFoundError):
        sm.start_game(players[0].id, 'ZZZ999')


def test_first_turn_goes_to_x_even_when_creator_is_o(players, make_room):
    alice, bob, _ = players
    code = make_room(alice)
    sm.join_room(bob.id, code)    # X
    sm.join_room(alice.id, code)  # O, creator
    notes = sm.start_game(alice.id, code)
    assert notes[0].payload['room']['current_turn'] == bob.id


# ---- moves ----

def test_move_validation(players, started_room):
    alice, bob, _ = players
    with pytest.raises(NotYourTurnError):
        sm.make_move(bob.id, started_room, 0)
    sm.make_move(alice.id, started_room, 4)
    with pytest.raises(CellTakenError):
        sm.make_move(bob.id, started_room, 4)
    with pytest.raises(ValidationError):
        sm.make_move(bob.id, started_room, 9)
    with pytest.raises(ValidationError):
        sm.make_move(bob.id, started_room, True)


def test_move_before_start(players, full_room):
    with pytest.raises(NotFoundError):
        sm.make_move(players[0].id, full_room, 0)


def test_move_after_finish_is_invalid(players, started_room):
    alice, bob, _ = players
    for user, index in [(alice, 0), (bob, 3), (alice, 1), (bob, 4), (alice, 2)]:
        sm.make_move(user.id, started_room, index)
    with pytest.raises(InvalidStateError):
        sm.make_move(bob.id, started_room, 8)


def test_turns_alternate(players, started_room):
    alice, bob, _ = players
    sequence = [(alice, 0), (bob, 1), (alice, 2), (bob, 4), (alice, 3), (bob, 5)]
    for n, (user, index) in enumerate(sequence, start=1):
        notes = sm.make_move(user.id, started_room, index)
        room = notes[0].payload['room']
        expected = alice.id if n % 2 == 0 else bob.id
        assert room['status'] == 'playing'
        assert room['current_turn'] == expected


def test_winning_scenario(players, started_room):
    alice, bob, _ = players
    moves = [(alice, 4), (bob, 0), (alice, 1), (bob, 3), (alice, 7)]
    for user, index in moves[:-1]:
        notes = sm.make_move(user.id, started_room, index)
        assert notes[0].payload['room']['status'] == 'playing'

    notes = sm.make_move(alice.id, started_room, 7)
    assert _events(notes) == [('gameUpdate', ROOM)]
    payload = notes[0].payload
    assert payload['room']['status'] == 'finished'
    assert payload['room']['winner'] == alice.id
    assert payload['room']['current_turn'] is None
    assert payload['winning_line'] == [1, 4, 7]
    assert payload['board']['cells'] == ['O', 'X', None, 'O', 'X', None, None, 'X', None]
    assert payload['board']['move_history'] == [
        {'sign': 'X', 'index': 4},
        {'sign': 'O', 'index': 0},
        {'sign': 'X', 'index': 1},
        {'sign': 'O', 'index': 3},
        {'sign': 'X', 'index': 7},
    ]


def test_draw(players, started_room):
    alice, bob, _ = players
    # X O X / X O O / O X X
    moves = [(alice, 0), (bob, 1), (alice, 2), (bob, 4), (alice, 3),
             (bob, 5), (alice, 7), (bob, 6), (alice, 8)]
    for user, index in moves:
        notes = sm.make_move(user.id, started_room, index)
        room = notes[0].payload['room']
        # exactly one of playing-with-turn / finished-without-turn holds
        assert (room['status'] == 'playing') == (room['current_turn'] is not None)
    assert room['status'] == 'finished'
    assert room['winner'] is None
    assert 'winning_line' not in notes[0].payload


# ---- leave / disconnect ----

def test_leave_waiting_room(players, full_room):
    alice, bob, _ = players
    notes = sm.leave_room(bob.id, full_room)
    assert _events(notes) == [('leaveSuccess', ACTOR), ('opponentLeft', ROOM)]
    assert notes[1].payload == {'id': bob.id, 'name': 'Bob', 'username': 'bob', 'sign': 'O'}
    room = _room(full_room)
    assert [p.user_id for p in room.players] == [alice.id]
    assert room.status == 'waiting'


def test_leave_playing_room_resets_everything(players, started_room):
    alice, bob, _ = players
    sm.make_move(alice.id, started_room, 4)
    notes = sm.leave_room(alice.id, started_room)
    assert notes[1].payload['sign'] == 'X'
    room = _room(started_room)
    assert room.status == 'waiting'
    assert room.board_id is None
    assert room.current_turn is None
    assert room.winner is None
    assert [p.user_id for p in room.players] == [bob.id]
    assert boards.find_by_room_id(room.id) is None


def test_leave_twice_reports_no_active_room(players, full_room):
    bob = players[1]
    sm.leave_room(bob.id, full_room)
    with pytest.raises(NoActiveRoomError):
        sm.leave_room(bob.id, full_room)


def test_leave_finished_room_is_rejected(players, started_room):
    alice, bob, _ = players
    for user, index in [(alice, 0), (bob, 3), (alice, 1), (bob, 4), (alice, 2)]:
        sm.make_move(user.id, started_room, index)
    with pytest.raises(NoActiveRoomError):
        sm.leave_room(bob.id, started_room)


def test_new_player_after_leave_takes_free_sign(players, full_room):
    alice, bob, cara = players
    sm.leave_room(alice.id, full_room)
    notes = sm.join_room(cara.id, full_room)
    assert notes[0].payload['me']['sign'] == 'X'
    assert notes[0].payload['opponent']['id'] == bob.id


def test_disconnect_during_game(players, started_room):
    alice, bob, _ = players
    sm.make_move(alice.id, started_room, 0)
    notes = sm.disconnect(bob.id)
    assert _events(notes) == [('opponentLeft', ROOM)]
    assert notes[0].payload['id'] == bob.id
    assert notes[0].payload['sign'] == 'O'
    room = _room(started_room)
    assert room.status == 'waiting'
    assert room.board_id is None
    assert room.current_turn is None
    assert room.winner is None
    assert Board.query.count() == 0


def test_disconnect_without_room_is_noop(players):
    assert sm.disconnect(players[2].id) == []


def test_disconnect_keeps_finished_room(players, started_room):
    alice, bob, _ = players
    for user, index in [(alice, 0), (bob, 3), (alice, 1), (bob, 4), (alice, 2)]:
        sm.make_move(user.id, started_room, index)
    assert sm.disconnect(bob.id) == []
    room = _room(started_room)
    assert room.status == 'finished'
    assert room.winner == alice.id


def test_deliver_runs_with_notifications(players, make_room):
    alice = players[0]
    code = make_room(alice)
    delivered = []
    notes = sm.join_room(alice.id, code, deliver=delivered.extend)
    assert delivered == notes


def test_stale_write_is_rejected(players, make_room, flask_app):
    alice = players[0]
    code = make_room(alice)
    room = _room(code)
    # Another writer bumped the version after our read
    db.session.execute(
        text('UPDATE room SET version = version + 1 WHERE id = :id'), {'id': room.id}
    )
    with pytest.raises(StaleStateError):
        with sm._transaction(code, room):
            room.status = 'playing'
    assert _room(code).status == 'waiting'


def test_room_lock_is_dropped_after_use():
    with locks.room_lock('LOCK01'):
        assert 'LOCK01' in locks._room_locks
        with locks.room_lock('LOCK01'):
            pass
    assert 'LOCK01' not in locks._room_locks


def _seed_race(app):
    with app.app_context():
        users = []
        for name in ('Alice', 'Bob', 'Cara'):
            user = User(name=name, username=name.lower(), email=f'{name.lower()}@example.com')
            user.set_password('password')
            db.session.add(user)
            users.append(user)
        db.session.commit()
        alice = users[0]
        db.session.add(Room(code='RACE01', created_by=alice.id, max_players_count=2))
        db.session.commit()
        sm.join_room(alice.id, 'RACE01')
        return [user.id for user in users]


def test_racing_joins_fill_last_seat_once(file_app, monkeypatch):
    alice_id, bob_id, cara_id = _seed_race(file_app)

    # Widen the gap between reading the seats and taking one
    real_lookup = registry.find_active_room_for_user

    def slow_lookup(user_id):
        time.sleep(0.05)
        return real_lookup(user_id)

    monkeypatch.setattr(registry, 'find_active_room_for_user', slow_lookup)
    start = threading.Barrier(2)
    outcomes = {}

    def contender(user_id):
        with file_app.app_context():
            start.wait()
            try:
                sm.join_room(user_id, 'RACE01')
                outcomes[user_id] = 'joined'
            except RoomFullError:
                outcomes[user_id] = 'full'
            except Exception as exc:
                outcomes[user_id] = repr(exc)

    threads = [threading.Thread(target=contender, args=(uid,)) for uid in (bob_id, cara_id)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)

    assert sorted(outcomes.values()) == ['full', 'joined']
    with file_app.app_context():
        room = registry.find_by_code('RACE01')
        winner = next(uid for uid, outcome in outcomes.items() if outcome == 'joined')
        assert [(p.user_id, p.sign) for p in room.players] == [(alice_id, 'X'), (winner, 'O')]
