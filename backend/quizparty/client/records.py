"""Read-only client copies of store rows, built from API payloads."""

from dataclasses import dataclass, fields
from typing import Optional


def _known(cls, data):
    names = {f.name for f in fields(cls)}
    return {k: v for k, v in (data or {}).items() if k in names}


@dataclass(frozen=True)
class SessionRecord:
    id: str
    code: str
    quiz_id: int
    time_limit: int
    question_count: int
    is_started: bool = False
    finished: bool = False
    quiz_start_time: Optional[int] = None
    countdown_start_ms: Optional[int] = None
    host_name: Optional[str] = None

    @classmethod
    def from_dict(cls, data):
        return cls(**_known(cls, data))


@dataclass(frozen=True)
class PlayerRecord:
    id: str
    name: str
    avatar: Optional[str] = None
    score: int = 0
    current_question: int = 0

    @classmethod
    def from_dict(cls, data):
        return cls(**_known(cls, data))


@dataclass(frozen=True)
class AnswerRecord:
    player_id: str
    question_index: int
    points_earned: int = 0
    is_correct: bool = False
    id: Optional[int] = None

    @classmethod
    def from_dict(cls, data):
        return cls(**_known(cls, data))
