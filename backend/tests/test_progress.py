import itertools
import random

from config import Config
from quizparty.client.records import AnswerRecord, PlayerRecord
from quizparty.services.games.progress import (
    all_completed,
    compute_progress,
    live_ranking,
    podium_ranking,
    rank_session,
)
from quizparty.services.games.scoring import bonus_round_due, next_question_index, points_for


def _players(*names):
    return [PlayerRecord(id=name.lower(), name=name) for name in names]


def _answers(player_id, points, start=0):
    return [AnswerRecord(player_id, start + i, p, p > 0) for i, p in enumerate(points)]


def test_answered_count_outranks_score():
    players = _players('X', 'Y')
    answers = _answers('x', [10, 0, 10, 0, 0]) + _answers('y', [10, 10, 10])
    ranked = rank_session(players, answers, 5)
    assert [(p.player_id, p.rank, p.score, p.answered_count) for p in ranked] == [
        ('x', 1, 20, 5),
        ('y', 2, 30, 3),
    ]
    assert ranked[0].completed and not ranked[0].is_active
    assert ranked[0].current_question_display == 6


def test_podium_orders_by_score_only():
    players = _players('X', 'Y')
    answers = _answers('x', [10, 0, 10, 0, 0]) + _answers('y', [10, 10, 10])
    podium = podium_ranking(compute_progress(players, answers, 5))
    assert [(p.player_id, p.rank) for p in podium] == [('y', 1), ('x', 2)]


def test_bonus_adds_score_but_not_progress():
    players = _players('A')
    answers = _answers('a', [10, 10]) + [AnswerRecord('a', -1, 45)]
    progress = compute_progress(players, answers, 5)[0]
    assert progress.score == 65
    assert progress.answered_count == 2


def test_ranking_is_sorted_for_any_answer_set():
    rng = random.Random(7)
    players = _players('A', 'B', 'C', 'D', 'E')
    for _ in range(50):
        answers = []
        for player in players:
            count = rng.randint(0, 6)
            answers += _answers(player.id, [rng.choice([0, 10]) for _ in range(count)])
        ranked = rank_session(players, answers, 6)
        for current, following in zip(ranked, ranked[1:]):
            assert (current.answered_count > following.answered_count
                    or (current.answered_count == following.answered_count and current.score >= following.score))
        assert [p.rank for p in ranked] == list(range(1, len(players) + 1))


def test_insert_order_does_not_change_result():
    players = _players('A', 'B', 'C')
    answers = (
        _answers('a', [10, 0, 10])
        + _answers('b', [10, 10])
        + _answers('c', [0, 0, 10, 10])
        + [AnswerRecord('b', -1, 30)]
    )
    expected = rank_session(players, answers, 4)
    for permutation in itertools.islice(itertools.permutations(answers), 200):
        assert rank_session(players, permutation, 4) == expected


def test_duplicate_index_counts_once():
    players = _players('A')
    answers = [AnswerRecord('a', 0, 10), AnswerRecord('a', 0, 10)]
    assert compute_progress(players, answers, 3)[0].answered_count == 1


def test_answers_from_removed_players_are_ignored():
    players = _players('A')
    answers = _answers('a', [10]) + _answers('gone', [10, 10])
    ranked = rank_session(players, answers, 3)
    assert [p.player_id for p in ranked] == ['a']


def test_ties_keep_player_order_with_distinct_ranks():
    players = _players('A', 'B')
    ranked = live_ranking(compute_progress(players, _answers('a', [10]) + _answers('b', [10]), 3))
    assert [(p.player_id, p.rank) for p in ranked] == [('a', 1), ('b', 2)]


def test_all_completed_needs_players():
    assert all_completed([]) is False
    players = _players('A', 'B')
    answers = _answers('a', [0, 0]) + _answers('b', [10])
    assert all_completed(compute_progress(players, answers, 2)) is False
    answers += _answers('b', [10], start=1)
    assert all_completed(compute_progress(players, answers, 2)) is True


def test_scoring_helpers():
    assert points_for(False) == 0
    assert points_for(True, points_per_correct=5) == 5
    assert [n for n in range(1, 10) if bonus_round_due(n, every=3)] == [3, 6, 9]
    assert bonus_round_due(0) is False
    answers = _answers('a', [10, 0, 10]) + [AnswerRecord('a', -1, 20)] + _answers('b', [10])
    assert next_question_index(answers, 'a') == 3
    assert next_question_index(answers, 'nobody') == 0


def test_scoring_defaults_follow_config():
    assert points_for(True) == Config.POINTS_PER_CORRECT
    assert bonus_round_due(Config.BONUS_ROUND_EVERY) is True
    assert bonus_round_due(Config.BONUS_ROUND_EVERY, every=0) is False
