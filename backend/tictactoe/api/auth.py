from flask import Blueprint, g, jsonify, request, session
from flask_login import login_required, current_user
from tictactoe import db
from tictactoe.errors import AuthError, ValidationError
from tictactoe.models import User
from tictactoe.services import sessions
import re
import string
import time

auth = Blueprint('auth', __name__)

EMAIL_RE = re.compile(r'^[^\s@]+@[^\s@]+\.[^\s@]+$')
NAME_MIN, NAME_MAX = 3, 30
PASSWORD_MIN = 4


def load_user_from_request(req):
    """Flask-Login request loader: resolve the session token kept in the signed cookie."""
    token = session.get('token')
    if not token:
        return None
    try:
        ctx = sessions.resolve_session(token)
    except AuthError:
        session.pop('token', None)
        return None
    g.auth_session = ctx
    return db.session.get(User, ctx.user_id)


def _json_body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError('Request body must be a JSON object')
    return data


def _clean_name(value):
    if not isinstance(value, str):
        raise ValidationError('Please enter a valid name')
    name = value.strip()
    if not NAME_MIN <= len(name) <= NAME_MAX:
        raise ValidationError(f'Name must be between {NAME_MIN} and {NAME_MAX} characters long')
    return name


def _clean_email(value):
    if not isinstance(value, str) or not EMAIL_RE.match(value.strip()):
        raise ValidationError('Please enter a valid email')
    return value.strip().lower()


def _clean_password(value):
    if not isinstance(value, str) or len(value) < PASSWORD_MIN:
        raise ValidationError(f'Password must be {PASSWORD_MIN} characters long')
    return value


def _base36(number: int) -> str:
    digits = string.digits + string.ascii_lowercase
    out = ''
    while number:
        number, rem = divmod(number, 36)
        out = digits[rem] + out
    return out or '0'


def make_username(email: str) -> str:
    return email.split('@')[0] + _base36(int(time.time() * 1000))


@auth.route('/register', methods=['POST'])
def register():
    data = _json_body()
    name = _clean_name(data.get('name'))
    email = _clean_email(data.get('email'))
    password = _clean_password(data.get('password'))

    if User.query.filter_by(email=email).first():
        return jsonify({'error': 'Email already exists', 'kind': 'ValidationError'}), 400

    user = User(name=name, email=email, username=make_username(email))
    user.set_password(password)
    db.session.add(user)
    db.session.commit()
    return jsonify({'message': 'Registration successful'}), 201


@auth.route('/login', methods=['POST'])
def login():
    data = _json_body()
    email = _clean_email(data.get('email'))
    password = _clean_password(data.get('password'))

    user = User.query.filter_by(email=email).first()
    if not user or not user.check_password(password):
        return jsonify({'error': 'Invalid email or password', 'kind': 'AuthError'}), 401

    new_session = sessions.create_session(user)
    session.permanent = True
    session['token'] = new_session.id
    return jsonify({'message': 'Login successful'})


@auth.route('/verify-token', methods=['POST'])
def verify_token():
    if not current_user.is_authenticated:
        session.pop('token', None)
        return jsonify({'error': 'Unauthorized: Invalid session', 'kind': 'AuthError', 'path': '/login'}), 401
    return jsonify({'user': current_user.to_dict()})


@auth.route('/logout', methods=['POST'])
def logout():
    sessions.delete_session(session.pop('token', None))
    return jsonify({'message': 'Logout successful'})


@auth.route('/profile', methods=['GET'])
@login_required
def get_profile():
    return jsonify({'user': current_user.to_dict()})


@auth.route('/profile', methods=['PUT'])
@login_required
def update_profile():
    data = _json_body()
    current_user.name = _clean_name(data.get('name'))
    db.session.commit()
    return jsonify({'message': 'Profile updated successfully', 'user': current_user.to_dict()})
