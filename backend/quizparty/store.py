"""Session store: durable sessions, players and answers.

Thin, single-purpose operations over the SQLAlchemy models. Reads raise
``TransientReadFailure`` on database errors, writes roll back and raise
``WriteFailure``. Each committed write publishes the matching channel
event so subscribed clients know to re-read.
"""

from typing import List, Optional, Tuple

from flask import current_app
from sqlalchemy import case
from sqlalchemy.exc import SQLAlchemyError

from quizparty import db
from quizparty.channel import ANSWER_INSERT, PLAYER_CHANGE, SESSION_UPDATE, publish
from quizparty.errors import InvalidTransition, NotFound, TransientReadFailure, WriteFailure
from quizparty.models import BONUS_QUESTION_INDEX, Answer, Game, Player, Quiz, generate_join_code

SESSION_FIELDS = {'is_started', 'finished', 'quiz_start_time', 'countdown_start_ms'}


def _fail(action: str, exc: Exception) -> WriteFailure:
    db.session.rollback()
    current_app.logger.error(f"[write-failed] action={action} error={exc}")
    return WriteFailure(f"Failed to {action}")


def _commit(action: str) -> None:
    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        raise _fail(action, exc) from exc


# ---- Quiz catalog (read-only) ----

def list_quizzes() -> List[Quiz]:
    try:
        return Quiz.query.order_by(Quiz.id).all()
    except SQLAlchemyError as exc:
        raise TransientReadFailure('Failed to load quizzes') from exc


def read_quiz(quiz_id) -> Quiz:
    try:
        quiz = db.session.get(Quiz, quiz_id)
    except SQLAlchemyError as exc:
        raise TransientReadFailure('Failed to load quiz') from exc
    if not quiz:
        raise NotFound('Quiz not found')
    return quiz


# ---- Sessions ----

def create_session(quiz_id, host_id: str, time_limit: int, question_count: int,
                   host_name: Optional[str] = None) -> Game:
    quiz = read_quiz(quiz_id)
    if time_limit <= 0:
        raise InvalidTransition('Time limit must be a positive number of seconds')
    if question_count <= 0 or question_count > len(quiz.questions):
        raise InvalidTransition(f'Question count must be between 1 and {len(quiz.questions)}')
    length = int(current_app.config.get('JOIN_CODE_LENGTH', 6))
    game = Game(
        code=generate_join_code(length),
        quiz_id=quiz.id,
        host_id=host_id,
        host_name=host_name,
        time_limit=time_limit,
        question_count=question_count,
    )
    db.session.add(game)
    _commit('create game')
    current_app.logger.info(f"[create] game={game.id} code={game.code} quiz={quiz.id}")
    return game


def read_session(session_id: Optional[str] = None, code: Optional[str] = None) -> Game:
    """Look a session up by id or by join code.

    Codes are only unique among active sessions, so a code lookup prefers
    the active session and otherwise returns the most recent finished one
    (the results view still resolves after the quiz ends).
    """
    try:
        if session_id:
            game = db.session.get(Game, session_id)
        elif code:
            game = (
                Game.query.filter_by(code=code.upper())
                .order_by(Game.finished.asc(), Game.created_at.desc())
                .first()
            )
        else:
            game = None
    except SQLAlchemyError as exc:
        raise TransientReadFailure('Failed to load game') from exc
    if not game:
        raise NotFound('Game not found')
    return game


def update_session(game: Game, **fields) -> Game:
    unknown = set(fields) - SESSION_FIELDS
    if unknown:
        raise ValueError(f"not a lifecycle field: {', '.join(sorted(unknown))}")
    finished = fields.get('finished', game.finished)
    is_started = fields.get('is_started', game.is_started)
    if finished and is_started:
        raise InvalidTransition('A finished game cannot be running')
    for name, value in fields.items():
        setattr(game, name, value)
    db.session.add(game)
    _commit('update game')
    publish(SESSION_UPDATE, game.id, game.to_dict())
    current_app.logger.info(f"[update] game={game.id} fields={sorted(fields)}")
    return game


def claim_session(game: Game, expected: dict, **fields) -> bool:
    """Conditional lifecycle write: applies ``fields`` only while the row still matches ``expected``.

    Returns False, without publishing, when a concurrent request got there first.
    """
    unknown = (set(fields) | set(expected)) - SESSION_FIELDS
    if unknown:
        raise ValueError(f"not a lifecycle field: {', '.join(sorted(unknown))}")
    if fields.get('finished', game.finished) and fields.get('is_started', game.is_started):
        raise InvalidTransition('A finished game cannot be running')
    try:
        count = Game.query.filter_by(id=game.id, **expected).update(fields, synchronize_session=False)
    except SQLAlchemyError as exc:
        raise _fail('update game', exc) from exc
    _commit('update game')
    if not count:
        current_app.logger.info(f"[update-skip] game={game.id} expected={sorted(expected)}")
        return False
    fresh = read_session(session_id=game.id)
    publish(SESSION_UPDATE, fresh.id, fresh.to_dict())
    current_app.logger.info(f"[update] game={fresh.id} fields={sorted(fields)}")
    return True


# ---- Players ----

def list_players(session_id: str) -> List[Player]:
    try:
        return Player.query.filter_by(game_id=session_id).order_by(Player.created_at, Player.id).all()
    except SQLAlchemyError as exc:
        raise TransientReadFailure('Failed to load players') from exc


def read_player(session_id: str, player_id: str) -> Player:
    try:
        player = Player.query.filter_by(id=player_id, game_id=session_id).first()
    except SQLAlchemyError as exc:
        raise TransientReadFailure('Failed to load player') from exc
    if not player:
        raise NotFound('Player not found')
    return player


def insert_player(game: Game, player_id: str, name: str, avatar: Optional[str] = None) -> Tuple[Player, bool]:
    """Add a player; rejoining with a known id returns the existing row."""
    existing = db.session.get(Player, player_id)
    if existing:
        if existing.game_id != game.id:
            raise InvalidTransition('Player id already belongs to another game')
        return existing, False
    player = Player(id=player_id, game_id=game.id, name=name, avatar=avatar)
    db.session.add(player)
    _commit('join game')
    publish(PLAYER_CHANGE, game.id, {'event': 'insert', 'player': player.to_dict()})
    current_app.logger.info(f"[join] game={game.id} player={player.id} name={name!r}")
    return player, True


def delete_players(session_id: str, player_id: Optional[str] = None) -> int:
    query = Player.query.filter_by(game_id=session_id)
    if player_id is not None:
        query = query.filter_by(id=player_id)
    try:
        count = query.delete(synchronize_session=False)
    except SQLAlchemyError as exc:
        raise _fail('remove players', exc) from exc
    _commit('remove players')
    if count:
        publish(PLAYER_CHANGE, session_id, {'event': 'delete', 'player_id': player_id, 'count': count})
    current_app.logger.info(f"[delete-players] game={session_id} player={player_id} count={count}")
    return count


# ---- Answers ----

def list_answers(session_id: str) -> List[Answer]:
    try:
        return Answer.query.filter_by(game_id=session_id).order_by(Answer.created_at, Answer.id).all()
    except SQLAlchemyError as exc:
        raise TransientReadFailure('Failed to load answers') from exc


def insert_answer(game: Game, player_id: str, question_index: int, points_earned: int,
                  is_correct: bool = False) -> Tuple[Answer, bool]:
    """Append an answer and bump the player's denormalised counters.

    A repeated answer for the same real question returns the stored row
    without writing; bonus answers are always appended.
    """
    if question_index != BONUS_QUESTION_INDEX:
        existing = Answer.query.filter_by(
            game_id=game.id, player_id=player_id, question_index=question_index
        ).first()
        if existing:
            return existing, False

    answer = Answer(
        game_id=game.id,
        player_id=player_id,
        question_index=question_index,
        points_earned=points_earned,
        is_correct=is_correct,
    )
    db.session.add(answer)
    values = {Player.score: Player.score + points_earned}
    if question_index >= 0:
        reached = question_index + 1
        values[Player.current_question] = case(
            (Player.current_question < reached, reached),
            else_=Player.current_question,
        )
    try:
        Player.query.filter_by(id=player_id, game_id=game.id).update(values, synchronize_session=False)
    except SQLAlchemyError as exc:
        raise _fail('save answer', exc) from exc
    _commit('save answer')
    publish(ANSWER_INSERT, game.id, {'answer': answer.to_dict()})
    publish(PLAYER_CHANGE, game.id, {'event': 'update', 'player_id': player_id})
    current_app.logger.info(
        f"[answer] game={game.id} player={player_id} index={question_index} points={points_earned}"
    )
    return answer, True
