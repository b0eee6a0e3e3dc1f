from flask import Blueprint, jsonify, request, current_app
import uuid

from quizparty import store
from quizparty.errors import GameError
from quizparty.models import now_ms
from quizparty.services.games.lifecycle import (
    FINISH_REASONS,
    end_session,
    exit_session,
    finish_session,
    join_session,
    leave_session,
    phase_of,
    start_session,
)
from quizparty.services.games.progress import compute_progress, live_ranking, podium_ranking
from quizparty.services.games.scoring import is_bonus, question_sequence
from quizparty.services.games.timer import countdown_remaining, time_remaining


games = Blueprint('games', __name__)


@games.errorhandler(GameError)
def handle_game_error(exc):
    return jsonify(exc.to_dict()), exc.status_code


def _countdown_sec() -> int:
    return int(current_app.config.get('COUNTDOWN_DURATION_SEC', 10))


def _session_payload(game, now=None):
    now = now if now is not None else now_ms()
    payload = game.to_dict()
    payload['phase'] = phase_of(game, now, _countdown_sec()).value
    return payload


def _int_arg(data, name, default=None):
    value = data.get(name, default)
    if value is None or isinstance(value, bool):
        raise ValueError(name)
    return int(value)


def _progress(game):
    players = store.list_players(game.id)
    answers = store.list_answers(game.id)
    return players, answers, compute_progress(players, answers, game.question_count)


@games.route('/create', methods=['POST'])
def create_game():
    data = request.get_json(silent=True) or {}
    try:
        quiz_id = _int_arg(data, 'quiz_id')
        time_limit = _int_arg(data, 'time_limit', current_app.config.get('DEFAULT_TIME_LIMIT_SEC', 300))
        question_count = _int_arg(data, 'question_count', current_app.config.get('DEFAULT_QUESTION_COUNT', 15))
    except (TypeError, ValueError) as exc:
        return jsonify({'error': f'Invalid or missing field: {exc}'}), 400
    host_id = data.get('host_id') or uuid.uuid4().hex
    game = store.create_session(
        quiz_id,
        host_id=host_id,
        time_limit=time_limit,
        question_count=question_count,
        host_name=data.get('host_name'),
    )
    return jsonify({
        'message': 'New game created!',
        'game_code': game.code,
        'host_id': host_id,
        'game': _session_payload(game),
    }), 201


@games.route('/join', methods=['POST'])
def join_game():
    data = request.get_json(silent=True) or {}
    game_code = data.get('game_code')
    name = (data.get('name') or '').strip()
    if not all([game_code, name]):
        return jsonify({'error': 'Game code and player name are required'}), 400

    game = store.read_session(code=game_code)
    player_id = data.get('player_id') or uuid.uuid4().hex
    player, created = join_session(game, player_id, name, data.get('avatar'))
    return jsonify(player.to_dict()), 201 if created else 200


@games.route('/<string:game_code>', methods=['GET'])
def get_game(game_code):
    return jsonify(_session_payload(store.read_session(code=game_code)))


@games.route('/<string:game_code>/state', methods=['GET'])
def get_game_state(game_code):
    game = store.read_session(code=game_code)
    players, answers, progress = _progress(game)
    now = now_ms()
    return jsonify({
        'game': _session_payload(game, now),
        'players': [p.to_dict() for p in players],
        'answers': [a.to_dict() for a in answers],
        'progress': [p.to_dict() for p in live_ranking(progress)],
        'time_remaining': time_remaining(game.time_limit, game.quiz_start_time, now),
        'countdown_remaining': countdown_remaining(game.countdown_start_ms, now, _countdown_sec()),
        'server_time': now,
    })


@games.route('/<string:game_code>/players', methods=['GET'])
def get_players(game_code):
    game = store.read_session(code=game_code)
    return jsonify([p.to_dict() for p in store.list_players(game.id)])


@games.route('/<string:game_code>/answers', methods=['GET'])
def get_answers(game_code):
    game = store.read_session(code=game_code)
    return jsonify([a.to_dict() for a in store.list_answers(game.id)])


@games.route('/<string:game_code>/progress', methods=['GET'])
def get_progress(game_code):
    game = store.read_session(code=game_code)
    _, _, progress = _progress(game)
    return jsonify([p.to_dict() for p in live_ranking(progress)])


@games.route('/<string:game_code>/results', methods=['GET'])
def get_results(game_code):
    """Final podium, ordered by score alone."""
    game = store.read_session(code=game_code)
    _, _, progress = _progress(game)
    return jsonify({
        'game': _session_payload(game),
        'results': [p.to_dict() for p in podium_ranking(progress)],
    })


@games.route('/<string:game_code>/questions', methods=['GET'])
def get_questions(game_code):
    player_id = request.args.get('player_id')
    if not player_id:
        return jsonify({'error': 'player_id is required'}), 400
    game = store.read_session(code=game_code)
    store.read_player(game.id, player_id)
    quiz = store.read_quiz(game.quiz_id)
    sequence = question_sequence(quiz.questions, game.question_count, seed=f"{game.id}:{player_id}")
    return jsonify(sequence)


@games.route('/<string:game_code>/start', methods=['POST'])
def start_game(game_code):
    data = request.get_json(silent=True) or {}
    game = store.read_session(code=game_code)
    game, changed = start_session(game, data.get('host_id'))
    return jsonify({'changed': changed, 'game': _session_payload(game)})


@games.route('/<string:game_code>/end', methods=['POST'])
def end_game(game_code):
    data = request.get_json(silent=True) or {}
    game = store.read_session(code=game_code)
    game, changed = end_session(game, data.get('host_id'))
    return jsonify({'changed': changed, 'game': _session_payload(game)})


@games.route('/<string:game_code>/exit', methods=['POST'])
def exit_game(game_code):
    data = request.get_json(silent=True) or {}
    game = store.read_session(code=game_code)
    removed = exit_session(game, data.get('host_id'))
    return jsonify({'removed_players': removed, 'game': _session_payload(game)})


@games.route('/<string:game_code>/finish', methods=['POST'])
def finish_game(game_code):
    """Automatic finish requested by any client; safe to repeat."""
    data = request.get_json(silent=True) or {}
    reason = data.get('reason')
    if reason not in FINISH_REASONS:
        return jsonify({'error': f"reason must be one of {', '.join(FINISH_REASONS)}"}), 400
    game = store.read_session(code=game_code)
    changed = finish_session(game, reason)
    return jsonify({'changed': changed, 'game': _session_payload(game)})


@games.route('/<string:game_code>/leave', methods=['POST'])
def leave_game(game_code):
    data = request.get_json(silent=True) or {}
    player_id = data.get('player_id')
    if not player_id:
        return jsonify({'error': 'player_id is required'}), 400
    game = store.read_session(code=game_code)
    leave_session(game, player_id)
    return jsonify({'message': 'You have left the game.'})


@games.route('/<string:game_code>/answers', methods=['POST'])
def submit_answer(game_code):
    data = request.get_json(silent=True) or {}
    player_id = data.get('player_id')
    try:
        question_index = _int_arg(data, 'question_index')
        points_earned = _int_arg(data, 'points_earned', 0)
    except (TypeError, ValueError) as exc:
        return jsonify({'error': f'Invalid or missing field: {exc}'}), 400
    if not player_id:
        return jsonify({'error': 'player_id is required'}), 400
    if points_earned < 0:
        return jsonify({'error': 'points_earned cannot be negative'}), 400

    game = store.read_session(code=game_code)
    if game.finished or not game.is_started:
        return jsonify({'error': 'Not accepting answers at this time'}), 400
    if not is_bonus(question_index) and not 0 <= question_index < game.question_count:
        return jsonify({'error': 'question_index out of range'}), 400
    store.read_player(game.id, player_id)

    answer, created = store.insert_answer(
        game,
        player_id=player_id,
        question_index=question_index,
        points_earned=points_earned,
        is_correct=bool(data.get('is_correct', False)),
    )
    return jsonify({'created': created, 'answer': answer.to_dict()}), 201 if created else 200
