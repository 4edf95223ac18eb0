from flask import Blueprint, jsonify, request, current_app
from predictoor.engine import get_engine
from predictoor.errors import GameError, InvalidValue, ParticipantNotFound


leaderboard = Blueprint('leaderboard', __name__)


@leaderboard.errorhandler(GameError)
def handle_game_error(exc):
    return jsonify(exc.to_dict()), exc.status_code


@leaderboard.route('', methods=['GET'])
def get_leaderboard():
    default = int(current_app.config.get('LEADERBOARD_LIMIT', 10))
    try:
        limit = int(request.args.get('limit', default))
    except ValueError:
        raise InvalidValue('limit must be an integer', field='limit')
    limit = max(1, min(limit, 100))
    return jsonify(get_engine().leaderboard.top(limit))


@leaderboard.route('/<string:participant_id>', methods=['GET'])
def get_entry(participant_id):
    entry = get_engine().leaderboard.entry_for(participant_id)
    if entry is None:
        raise ParticipantNotFound(f'No scored predictions for {participant_id}')
    return jsonify(entry.to_dict())
