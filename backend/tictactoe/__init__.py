from datetime import timedelta
from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_bcrypt import Bcrypt
from flask_login import LoginManager
from flask_cors import CORS
from flask_migrate import Migrate
from flask_socketio import SocketIO
import click
from config import Config

db = SQLAlchemy()
bcrypt = Bcrypt()
login_manager = LoginManager()
migrate = Migrate()
socketio = SocketIO(async_mode=None)

def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)
    # Cookie lifetime follows the server side session retention
    flask_app.config['PERMANENT_SESSION_LIFETIME'] = timedelta(
        days=flask_app.config.get('SESSION_RETENTION_DAYS', 7)
    )
    allowed_origins = flask_app.config.get('CLIENT_ORIGINS') or []

    db.init_app(flask_app)
    bcrypt.init_app(flask_app)
    login_manager.init_app(flask_app)
    migrate.init_app(flask_app, db)
    CORS(flask_app, supports_credentials=True, origins=allowed_origins)

    # Initialize Socket.IO after app is created
    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    from tictactoe.main import main
    flask_app.register_blueprint(main)

    from tictactoe.api.auth import auth
    flask_app.register_blueprint(auth, url_prefix='/api/auth')

    from tictactoe.api.rooms import rooms
    flask_app.register_blueprint(rooms, url_prefix='/api/room')

    from tictactoe.socketio_events import register_socketio_handlers
    register_socketio_handlers()

    from tictactoe.errors import GameError

    @flask_app.errorhandler(GameError)
    def handle_game_error(exc):
        return jsonify({'error': exc.message, 'kind': exc.kind}), exc.status_code

    # Flask-Login resolves the user from the session token in the signed cookie
    from tictactoe.api.auth import load_user_from_request

    login_manager.request_loader(load_user_from_request)

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({'error': 'Unauthorized: No token provided.', 'kind': 'AuthError', 'path': '/login'}), 401

    @click.command('db-reset')
    def db_reset_command():
        """Drops, recreates, and seeds the database."""
        from tictactoe.models import User
        with flask_app.app_context():
            db.drop_all()
            db.create_all()

            # Seed users
            users = ['testuser1', 'testuser2', 'testuser3']
            for u in users:
                user = User(name=u, username=u, email=f'{u}@example.com')
                user.set_password('password')
                db.session.add(user)

            db.session.commit()
            print('Database has been reset and seeded!')

    @click.command('purge-sessions')
    def purge_sessions_command():
        """Deletes sessions older than the retention window."""
        from tictactoe.services.sessions import purge_expired_sessions
        with flask_app.app_context():
            removed = purge_expired_sessions()
            print(f'Removed {removed} expired session(s).')

    flask_app.cli.add_command(db_reset_command)
    flask_app.cli.add_command(purge_sessions_command)

    return flask_app
