from flask import Flask
from flask_sqlalchemy import SQLAlchemy
from flask_cors import CORS
from flask_migrate import Migrate
from flask_socketio import SocketIO
import json
import logging
import click
from config import Config

db = SQLAlchemy()
migrate = Migrate()
allowed_origins = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
    "http://localhost:5173",
    "http://127.0.0.1:5173",
]
socketio = SocketIO(cors_allowed_origins=allowed_origins, async_mode=None)

SAMPLE_QUIZ = {
    'title': 'General Knowledge',
    'description': 'A short warm-up quiz',
    'difficulty_level': 'easy',
    'questions': [
        ('What is the capital of France?', ['Paris', 'Rome', 'Madrid', 'Berlin'], 0),
        ('How many legs does a spider have?', ['6', '8', '10', '12'], 1),
        ('Which planet is known as the Red Planet?', ['Venus', 'Jupiter', 'Mars', 'Saturn'], 2),
        ('What is 7 x 8?', ['54', '56', '58', '64'], 1),
        ('Which gas do plants absorb?', ['Oxygen', 'Nitrogen', 'Helium', 'Carbon dioxide'], 3),
        ('What is the largest ocean?', ['Pacific', 'Atlantic', 'Indian', 'Arctic'], 0),
    ],
}


def seed_sample_quiz():
    from quizparty.models import Quiz, Question

    quiz = Quiz(
        title=SAMPLE_QUIZ['title'],
        description=SAMPLE_QUIZ['description'],
        difficulty_level=SAMPLE_QUIZ['difficulty_level'],
    )
    db.session.add(quiz)
    for order, (prompt, choices, correct) in enumerate(SAMPLE_QUIZ['questions']):
        quiz.questions.append(
            Question(prompt=prompt, choices_json=json.dumps(choices), correct_index=correct, order_index=order)
        )
    db.session.commit()
    return quiz


def create_app(config_class=Config):
    flask_app = Flask(__name__)
    flask_app.config.from_object(config_class)
    flask_app.logger.setLevel(getattr(logging, str(flask_app.config.get('LOG_LEVEL', 'INFO')).upper(), logging.INFO))

    db.init_app(flask_app)
    migrate.init_app(flask_app, db)
    CORS(flask_app, origins=allowed_origins)

    # Initialize Socket.IO after app is created
    socketio.init_app(flask_app, cors_allowed_origins=allowed_origins)

    from quizparty.main import main
    flask_app.register_blueprint(main, url_prefix='/api')

    from quizparty.api.games import games
    flask_app.register_blueprint(games, url_prefix='/api/games')

    # Importing here binds the handlers to the initialized socketio instance
    from quizparty.socketio_events import register_socketio_handlers
    register_socketio_handlers()

    @click.command('db-reset')
    def db_reset_command():
        """Drops, recreates, and seeds the database."""
        with flask_app.app_context():
            db.drop_all()
            db.create_all()
            quiz = seed_sample_quiz()
            print(f'Database has been reset and seeded with quiz {quiz.id}!')

    flask_app.cli.add_command(db_reset_command)

    return flask_app
