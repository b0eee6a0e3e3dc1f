"""Session lifecycle: WAITING -> (COUNTDOWN) -> STARTED -> FINISHED.

Transition functions run on the server against the store. Each one
either writes exactly the fields it owns or raises before writing
anything. ``finish_session`` is the shared, idempotent completion path
used by auto-finish and time expiry from any client.
"""

import enum
from typing import Optional, Tuple

from flask import current_app

from quizparty import store
from quizparty.errors import InvalidTransition, NotHost
from quizparty.models import Game, now_ms as _now_ms
from .timer import COUNTDOWN_SECONDS, countdown_remaining

FINISH_REASONS = ('completed', 'expired')


class SessionPhase(str, enum.Enum):
    WAITING = 'waiting'
    COUNTDOWN = 'countdown'
    STARTED = 'started'
    FINISHED = 'finished'


def phase_of(game, now_ms: int, countdown_sec: int = COUNTDOWN_SECONDS) -> SessionPhase:
    """Derive the phase from stored flags; works on models and client records."""
    if game.finished:
        return SessionPhase.FINISHED
    if not game.is_started:
        return SessionPhase.WAITING
    if countdown_sec and game.countdown_start_ms is not None:
        left = countdown_remaining(game.countdown_start_ms, now_ms, countdown_sec)
        if left and left > 0:
            return SessionPhase.COUNTDOWN
    return SessionPhase.STARTED


def require_host(game: Game, host_id: Optional[str], action: str) -> None:
    if not host_id or host_id != game.host_id:
        current_app.logger.warning(f"[not-host] game={game.id} action={action}")
        raise NotHost(f'Only the host may {action} the quiz')


def start_session(game: Game, host_id: Optional[str], now_ms: Optional[int] = None) -> Tuple[Game, bool]:
    """Host starts the quiz. Returns ``(game, changed)``.

    Starting an already running session is a no-op and never moves
    ``quiz_start_time``.
    """
    require_host(game, host_id, 'start')
    if game.finished:
        raise InvalidTransition('Game has already finished')
    if game.is_started:
        current_app.logger.info(f"[start-skip] game={game.id} already started")
        return game, False
    if not store.list_players(game.id):
        raise InvalidTransition('No players have joined')

    started_at = now_ms if now_ms is not None else _now_ms()
    fields = {'is_started': True, 'quiz_start_time': started_at}
    if int(current_app.config.get('COUNTDOWN_DURATION_SEC', COUNTDOWN_SECONDS)) > 0:
        fields['countdown_start_ms'] = started_at
    # Only one of two racing start requests may set the epoch
    changed = store.claim_session(
        game, {'is_started': False, 'finished': False, 'quiz_start_time': None}, **fields
    )
    game = store.read_session(session_id=game.id)
    if not changed:
        current_app.logger.info(f"[start-skip] game={game.id} lost start race")
        return game, False
    current_app.logger.info(f"[start] game={game.id} quiz_start_time={game.quiz_start_time}")
    return game, True


def end_session(game: Game, host_id: Optional[str]) -> Tuple[Game, bool]:
    """Host ends the quiz early; players stay for the results view."""
    require_host(game, host_id, 'end')
    if game.finished:
        return game, False
    if not game.is_started:
        raise InvalidTransition('Game has not started')
    store.update_session(game, is_started=False, finished=True, quiz_start_time=None)
    current_app.logger.info(f"[end] game={game.id}")
    return game, True


def exit_session(game: Game, host_id: Optional[str]) -> int:
    """Host abandons the session from any phase; every player is removed."""
    require_host(game, host_id, 'exit')
    if not game.finished:
        store.update_session(game, is_started=False, finished=True, quiz_start_time=None)
    removed = store.delete_players(game.id)
    current_app.logger.info(f"[exit] game={game.id} removed_players={removed}")
    return removed


def finish_session(game: Game, reason: str) -> bool:
    """Idempotent natural finish. Returns False when nothing was written."""
    if reason not in FINISH_REASONS:
        raise InvalidTransition(f'Unknown finish reason {reason!r}')
    if game.finished:
        current_app.logger.info(f"[finish-skip] game={game.id} reason={reason} already finished")
        return False
    if not game.is_started:
        raise InvalidTransition('Game has not started')
    if not store.claim_session(game, {'finished': False, 'is_started': True}, is_started=False, finished=True):
        current_app.logger.info(f"[finish-skip] game={game.id} reason={reason} finished concurrently")
        return False
    current_app.logger.info(f"[finish] game={game.id} reason={reason}")
    return True


def join_session(game: Game, player_id: str, name: str, avatar: Optional[str] = None):
    """Join while the lobby is open; a known player id may always rejoin."""
    if game.finished or game.is_started:
        existing = [p for p in store.list_players(game.id) if p.id == player_id]
        if existing:
            return existing[0], False
        raise InvalidTransition('This game is not accepting players')
    return store.insert_player(game, player_id, name, avatar)


def leave_session(game: Game, player_id: str) -> int:
    """A player leaves the waiting room; after the start they simply go idle."""
    if game.finished or game.is_started:
        raise InvalidTransition('Players can only leave before the quiz starts')
    store.read_player(game.id, player_id)
    return store.delete_players(game.id, player_id=player_id)
