import random
from typing import Iterable, List

from config import Config
from quizparty.models import BONUS_QUESTION_INDEX


def points_for(is_correct: bool, points_per_correct: int = Config.POINTS_PER_CORRECT) -> int:
    """Points a player asserts for one answered question."""
    return points_per_correct if is_correct else 0


def bonus_round_due(correct_count: int, every: int = Config.BONUS_ROUND_EVERY) -> bool:
    """Every ``every``-th correct answer unlocks a bonus round."""
    return every > 0 and correct_count > 0 and correct_count % every == 0


def is_bonus(question_index: int) -> bool:
    return question_index == BONUS_QUESTION_INDEX


def next_question_index(answers: Iterable, player_id: str) -> int:
    """Where a reconnecting player resumes: one past their last real answer."""
    indices = [a.question_index for a in answers if a.player_id == player_id and a.question_index >= 0]
    return max(indices) + 1 if indices else 0


def question_sequence(questions: List, count: int, seed: str) -> List[dict]:
    """Deterministic per-player question order with shuffled choices.

    The same ``seed`` always yields the same sequence, so a reconnecting
    player lands on the same question they left.
    """
    rng = random.Random(seed)
    ordered = sorted(questions, key=lambda q: (q.order_index, q.id))
    rng.shuffle(ordered)
    sequence = []
    for position, question in enumerate(ordered[:count]):
        choices = list(enumerate(question.choices))
        rng.shuffle(choices)
        sequence.append({
            'question_index': position,
            'question_id': question.id,
            'prompt': question.prompt,
            'choices': [text for _, text in choices],
            'correct_index': next(
                (i for i, (original, _) in enumerate(choices) if original == question.correct_index),
                None,
            ),
        })
    return sequence
