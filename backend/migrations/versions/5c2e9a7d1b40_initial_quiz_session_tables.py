"""initial quiz, session, player and answer tables

Revision ID: 5c2e9a7d1b40
Revises:
Create Date: 2026-10-19 10:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '5c2e9a7d1b40'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'quiz',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('title', sa.String(length=128), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('difficulty_level', sa.String(length=32), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_table(
        'question',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('quiz_id', sa.Integer(), nullable=False),
        sa.Column('prompt', sa.Text(), nullable=False),
        sa.Column('choices_json', sa.Text(), nullable=False),
        sa.Column('correct_index', sa.Integer(), nullable=False),
        sa.Column('order_index', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['quiz_id'], ['quiz.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_question_quiz_id'), 'question', ['quiz_id'], unique=False)

    op.create_table(
        'game',
        sa.Column('id', sa.String(length=32), nullable=False),
        sa.Column('code', sa.String(length=6), nullable=False),
        sa.Column('quiz_id', sa.Integer(), nullable=False),
        sa.Column('host_id', sa.String(length=64), nullable=False),
        sa.Column('host_name', sa.String(length=64), nullable=True),
        sa.Column('time_limit', sa.Integer(), nullable=False),
        sa.Column('question_count', sa.Integer(), nullable=False),
        sa.Column('is_started', sa.Boolean(), nullable=False),
        sa.Column('finished', sa.Boolean(), nullable=False),
        sa.Column('quiz_start_time', sa.BigInteger(), nullable=True),
        sa.Column('countdown_start_ms', sa.BigInteger(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['quiz_id'], ['quiz.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_game_code'), 'game', ['code'], unique=False)

    op.create_table(
        'player',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('game_id', sa.String(length=32), nullable=False),
        sa.Column('name', sa.String(length=64), nullable=False),
        sa.Column('avatar', sa.String(length=256), nullable=True),
        sa.Column('score', sa.Integer(), nullable=False),
        sa.Column('current_question', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['game_id'], ['game.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_player_game_id'), 'player', ['game_id'], unique=False)

    # No foreign key on player_id: answers outlive removed players
    op.create_table(
        'player_answer',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('player_id', sa.String(length=64), nullable=False),
        sa.Column('game_id', sa.String(length=32), nullable=False),
        sa.Column('question_index', sa.Integer(), nullable=False),
        sa.Column('is_correct', sa.Boolean(), nullable=False),
        sa.Column('points_earned', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(['game_id'], ['game.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_player_answer_game_id'), 'player_answer', ['game_id'], unique=False)
    op.create_index(op.f('ix_player_answer_player_id'), 'player_answer', ['player_id'], unique=False)


def downgrade():
    op.drop_index(op.f('ix_player_answer_player_id'), table_name='player_answer')
    op.drop_index(op.f('ix_player_answer_game_id'), table_name='player_answer')
    op.drop_table('player_answer')
    op.drop_index(op.f('ix_player_game_id'), table_name='player')
    op.drop_table('player')
    op.drop_index(op.f('ix_game_code'), table_name='game')
    op.drop_table('game')
    op.drop_index(op.f('ix_question_quiz_id'), table_name='question')
    op.drop_table('question')
    op.drop_table('quiz')
