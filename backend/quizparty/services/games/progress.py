"""Progress aggregation: answers in, ranked standings out.

Pure functions with no I/O. Both the API and the session clients call
them on full re-reads of the store, so the result never depends on the
order answers were inserted or delivered.
"""

from collections import defaultdict
from dataclasses import dataclass, replace
from typing import Iterable, List, Optional


@dataclass(frozen=True)
class PlayerProgress:
    """Derived standing of one player; recomputed, never persisted."""

    player_id: str
    name: str
    avatar: Optional[str]
    score: int
    answered_count: int
    total_questions: int
    rank: int = 0

    @property
    def current_question_display(self) -> int:
        # Exceeds total_questions once the player is done
        return self.answered_count + 1

    @property
    def is_active(self) -> bool:
        return self.answered_count < self.total_questions

    @property
    def completed(self) -> bool:
        return self.answered_count >= self.total_questions

    def to_dict(self):
        return {
            'id': self.player_id,
            'name': self.name,
            'avatar': self.avatar,
            'score': self.score,
            'answered_count': self.answered_count,
            'current_question': self.current_question_display,
            'total_questions': self.total_questions,
            'is_active': self.is_active,
            'rank': self.rank,
        }


def compute_progress(players: Iterable, answers: Iterable, question_count: int) -> List[PlayerProgress]:
    """Per-player score and answered count, in player-list order, unranked.

    ``players`` need ``id``, ``name`` and ``avatar``; ``answers`` need
    ``player_id``, ``question_index`` and ``points_earned``. Answers whose
    player is not in ``players`` are ignored. Bonus answers (negative
    index) add to the score but not to the answered count.
    """
    scores = defaultdict(int)
    answered = defaultdict(set)
    for answer in answers:
        scores[answer.player_id] += int(answer.points_earned or 0)
        if answer.question_index >= 0:
            answered[answer.player_id].add(answer.question_index)

    return [
        PlayerProgress(
            player_id=player.id,
            name=player.name,
            avatar=player.avatar,
            score=scores[player.id],
            answered_count=len(answered[player.id]),
            total_questions=question_count,
        )
        for player in players
    ]


def _assign_ranks(ordered: List[PlayerProgress]) -> List[PlayerProgress]:
    return [replace(p, rank=position + 1) for position, p in enumerate(ordered)]


def live_ranking(progress: Iterable[PlayerProgress]) -> List[PlayerProgress]:
    """Race-style leaderboard: further along first, then higher score.

    Ties on both keys keep input order and still get distinct ranks.
    """
    ordered = sorted(progress, key=lambda p: (-p.answered_count, -p.score))
    return _assign_ranks(ordered)


def podium_ranking(progress: Iterable[PlayerProgress]) -> List[PlayerProgress]:
    """Finale ordering by score alone; may disagree with ``live_ranking``."""
    ordered = sorted(progress, key=lambda p: -p.score)
    return _assign_ranks(ordered)


def rank_session(players: Iterable, answers: Iterable, question_count: int) -> List[PlayerProgress]:
    return live_ranking(compute_progress(players, answers, question_count))


def all_completed(progress: List[PlayerProgress]) -> bool:
    """True when there is at least one player and nobody is still answering."""
    return bool(progress) and all(p.completed for p in progress)
