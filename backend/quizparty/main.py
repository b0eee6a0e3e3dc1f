from datetime import datetime, timezone

from flask import Blueprint, jsonify

from quizparty import store
from quizparty.errors import GameError
from quizparty.models import now_ms

main = Blueprint('main', __name__)


@main.errorhandler(GameError)
def handle_game_error(exc):
    return jsonify(exc.to_dict()), exc.status_code


@main.route('/')
def index():
    return jsonify({'message': 'Welcome to the quizparty server!'})


@main.route('/server-time', methods=['GET'])
def server_time():
    """Server clock for client offset estimation."""
    timestamp = now_ms()
    return jsonify({
        'timestamp': timestamp,
        'iso': datetime.fromtimestamp(timestamp / 1000, tz=timezone.utc).isoformat(),
    })


@main.route('/quizzes', methods=['GET'])
def list_quizzes():
    return jsonify([quiz.to_dict() for quiz in store.list_quizzes()])
