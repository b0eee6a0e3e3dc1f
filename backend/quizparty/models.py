from quizparty import db
from datetime import datetime
import json
import string
import random
import time
import uuid

BONUS_QUESTION_INDEX = -1
JOIN_CODE_ALPHABET = string.ascii_uppercase + string.digits


def now_ms() -> int:
    """Current wall-clock time as integer epoch milliseconds."""
    return int(time.time() * 1000)


class Quiz(db.Model):
    __tablename__ = 'quiz'
    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(128), nullable=False)
    description = db.Column(db.Text, nullable=True)
    difficulty_level = db.Column(db.String(32), nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    questions = db.relationship('Question', back_populates='quiz', order_by='Question.order_index')

    def to_dict(self):
        return {
            'id': self.id,
            'title': self.title,
            'description': self.description,
            'difficulty_level': self.difficulty_level,
            'question_count': len(self.questions),
        }


class Question(db.Model):
    __tablename__ = 'question'
    id = db.Column(db.Integer, primary_key=True)
    quiz_id = db.Column(db.Integer, db.ForeignKey('quiz.id'), nullable=False, index=True)
    prompt = db.Column(db.Text, nullable=False)
    choices_json = db.Column(db.Text, nullable=False, default='[]')
    correct_index = db.Column(db.Integer, nullable=False, default=0)
    order_index = db.Column(db.Integer, nullable=False, default=0)
    quiz = db.relationship('Quiz', back_populates='questions')

    @property
    def choices(self):
        return json.loads(self.choices_json or '[]')

    def to_dict(self):
        return {
            'id': self.id,
            'prompt': self.prompt,
            'choices': self.choices,
            'correct_index': self.correct_index,
            'order_index': self.order_index,
        }


def generate_join_code(length=6):
    """Generate a join code unique among sessions that are not finished."""
    while True:
        code = ''.join(random.choices(JOIN_CODE_ALPHABET, k=length))
        if not Game.query.filter_by(code=code, finished=False).first():
            return code


class Game(db.Model):
    __tablename__ = 'game'
    id = db.Column(db.String(32), primary_key=True, default=lambda: uuid.uuid4().hex)
    code = db.Column(db.String(6), nullable=False, index=True)
    quiz_id = db.Column(db.Integer, db.ForeignKey('quiz.id'), nullable=False)
    host_id = db.Column(db.String(64), nullable=False)
    host_name = db.Column(db.String(64), nullable=True)
    time_limit = db.Column(db.Integer, nullable=False)
    question_count = db.Column(db.Integer, nullable=False)
    is_started = db.Column(db.Boolean, default=False, nullable=False)
    finished = db.Column(db.Boolean, default=False, nullable=False)
    # Epoch milliseconds; the single source of truth for every timer
    quiz_start_time = db.Column(db.BigInteger, nullable=True)
    countdown_start_ms = db.Column(db.BigInteger, nullable=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    players = db.relationship('Player', back_populates='game', order_by='Player.created_at')

    def to_dict(self):
        return {
            'id': self.id,
            'code': self.code,
            'quiz_id': self.quiz_id,
            'host_name': self.host_name,
            'time_limit': self.time_limit,
            'question_count': self.question_count,
            'is_started': self.is_started,
            'finished': self.finished,
            'quiz_start_time': self.quiz_start_time,
            'countdown_start_ms': self.countdown_start_ms,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


class Player(db.Model):
    __tablename__ = 'player'
    id = db.Column(db.String(64), primary_key=True)
    game_id = db.Column(db.String(32), db.ForeignKey('game.id'), nullable=False, index=True)
    name = db.Column(db.String(64), nullable=False)
    avatar = db.Column(db.String(256), nullable=True)
    score = db.Column(db.Integer, default=0, nullable=False)
    current_question = db.Column(db.Integer, default=0, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    game = db.relationship('Game', back_populates='players')

    def to_dict(self):
        return {
            'id': self.id,
            'game_id': self.game_id,
            'name': self.name,
            'avatar': self.avatar,
            'score': self.score,
            'current_question': self.current_question,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }


class Answer(db.Model):
    __tablename__ = 'player_answer'
    id = db.Column(db.Integer, primary_key=True)
    # No foreign key to player: answers outlive players deleted on host exit
    player_id = db.Column(db.String(64), nullable=False, index=True)
    game_id = db.Column(db.String(32), db.ForeignKey('game.id'), nullable=False, index=True)
    question_index = db.Column(db.Integer, nullable=False)
    is_correct = db.Column(db.Boolean, default=False, nullable=False)
    points_earned = db.Column(db.Integer, default=0, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    @property
    def is_bonus(self):
        return self.question_index < 0

    def to_dict(self):
        return {
            'id': self.id,
            'player_id': self.player_id,
            'game_id': self.game_id,
            'question_index': self.question_index,
            'is_correct': self.is_correct,
            'points_earned': self.points_earned,
            'is_bonus': self.is_bonus,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }
