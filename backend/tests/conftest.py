import os
import sys
import pytest

# Ensure the backend root (containing the `tictactoe` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
BACKEND_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..'))
if BACKEND_ROOT not in sys.path:
    sys.path.insert(0, BACKEND_ROOT)

from tictactoe import create_app, db, socketio


class TestConfig:
    TESTING = True
    SECRET_KEY = os.environ.get('SECRET_KEY', 'test-secret')
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    CLIENT_ORIGINS = ['http://localhost:5173']
    MAX_PLAYERS = 2
    ROOM_CODE_MAX_RETRIES = 10
    SESSION_RETENTION_DAYS = 7
    # Keep hashing fast in tests
    BCRYPT_LOG_ROUNDS = 4


@pytest.fixture()
def flask_app():
    application = create_app(TestConfig)
    with application.app_context():
        # Ensure models are imported so tables are created
        import tictactoe.models  # noqa: F401
        db.create_all()
        yield application
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def make_user(flask_app):
    from tictactoe.models import User

    def _make(name, password='password'):
        user = User(name=name, username=name.lower(), email=f'{name.lower()}@example.com')
        user.set_password(password)
        db.session.add(user)
        db.session.commit()
        return user
    return _make


@pytest.fixture()
def make_token(flask_app):
    from tictactoe.services.sessions import create_session

    def _make(user):
        return create_session(user).id
    return _make


@pytest.fixture()
def make_room(flask_app):
    from tictactoe.models import Room

    def _make(owner, code='ABC123'):
        room = Room(code=code, created_by=owner.id, max_players_count=2)
        db.session.add(room)
        db.session.commit()
        return room.code
    return _make


@pytest.fixture()
def sio_factory(flask_app):
    clients = []

    def _connect(token):
        test_client = socketio.test_client(
            flask_app,
            namespace='/ws',
            auth={'token': token} if token else None,
        )
        clients.append(test_client)
        return test_client

    yield _connect
    for test_client in clients:
        try:
            if test_client.is_connected('/ws'):
                test_client.disconnect(namespace='/ws')
        except Exception:
            pass


@pytest.fixture()
def file_app(tmp_path):
    """App on a file-backed SQLite store, for tests that run several threads."""
    class FileConfig(TestConfig):
        SQLALCHEMY_DATABASE_URI = f"sqlite:///{tmp_path / 'rooms.db'}"

    application = create_app(FileConfig)
    with application.app_context():
        import tictactoe.models  # noqa: F401
        db.create_all()
    yield application
    with application.app_context():
        db.drop_all()
        db.engine.dispose()
