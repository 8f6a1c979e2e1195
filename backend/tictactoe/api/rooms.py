from flask import Blueprint, jsonify
from flask_login import login_required, current_user
from tictactoe.models import STATUS_PLAYING, STATUS_WAITING
from tictactoe.services.rooms import registry

rooms = Blueprint('rooms', __name__)


@rooms.route('/create', methods=['POST'])
@login_required
def create_room():
    """
    Creates a new waiting room owned by the current user. The creator
    joins it over the socket like any other player.
    """
    code = registry.create_room(current_user.id)
    return jsonify({'code': code}), 201


@rooms.route('/<string:code>/status', methods=['GET'])
@login_required
def room_status(code):
    """
    Tells a client whether the room can still be joined.
    """
    status = registry.get_status(code)
    if status == STATUS_PLAYING:
        return jsonify({'error': 'Cannot join, game already started', 'status': status}), 400
    if status != STATUS_WAITING:
        return jsonify({'error': f'Cannot join, game already {status}', 'status': status}), 400
    return jsonify({'status': status}), 200
