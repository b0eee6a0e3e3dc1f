"""Session-scoped client state kept converged with the store.

A ``SessionContext`` is created when a host or player enters a session
view and closed when they leave it. Push notifications and the polling
fallback both only *request* a recompute; the recompute itself always
re-reads the session, players and answers and rebuilds the snapshot from
scratch, so lost, duplicated or reordered notifications cannot desync it.
"""

import logging
import threading
from dataclasses import dataclass, replace
from typing import Callable, List, Optional, Tuple

from config import Config
from quizparty.client.records import AnswerRecord, PlayerRecord, SessionRecord
from quizparty.client.runner import ReconciliationRunner
from quizparty.client.transport import RECONNECT, TOPICS, ChannelScope
from quizparty.errors import (
    ChannelDisconnect,
    GameError,
    InvalidTransition,
    NotHost,
    TransientReadFailure,
    WriteFailure,
)
from quizparty.models import BONUS_QUESTION_INDEX
from quizparty.services.games.lifecycle import SessionPhase, phase_of
from quizparty.services.games.progress import PlayerProgress, all_completed, podium_ranking, rank_session
from quizparty.services.games.scoring import bonus_round_due, next_question_index, points_for
from quizparty.services.games.timer import CachedTimer, ExpiryLatch, ServerClock

logger = logging.getLogger(__name__)

HOST = 'host'
PLAYER = 'player'


@dataclass(frozen=True)
class ClientConfig:
    poll_active_sec: float = 1.0
    poll_idle_sec: float = 3.0
    debounce_ms: int = 250
    countdown_sec: int = 10
    read_retry_budget: int = 3
    points_per_correct: int = 10
    bonus_round_every: int = 3
    clock_resync_sec: int = 30

    @classmethod
    def from_object(cls, obj=Config):
        return cls(
            poll_active_sec=float(obj.POLL_INTERVAL_ACTIVE_SEC),
            poll_idle_sec=float(obj.POLL_INTERVAL_IDLE_SEC),
            debounce_ms=int(obj.RECOMPUTE_DEBOUNCE_MS),
            countdown_sec=int(obj.COUNTDOWN_DURATION_SEC),
            read_retry_budget=int(obj.READ_RETRY_BUDGET),
            points_per_correct=int(obj.POINTS_PER_CORRECT),
            bonus_round_every=int(obj.BONUS_ROUND_EVERY),
            clock_resync_sec=int(obj.CLOCK_RESYNC_SEC),
        )


@dataclass(frozen=True)
class SessionSnapshot:
    """One consistent read of the store plus what was derived from it."""

    session: SessionRecord
    players: Tuple[PlayerRecord, ...]
    answers: Tuple[AnswerRecord, ...]
    progress: Tuple[PlayerProgress, ...]
    phase: SessionPhase
    fetched_at_ms: int
    stale: bool = False

    @property
    def podium(self) -> List[PlayerProgress]:
        return podium_ranking(self.progress)

    def progress_for(self, player_id: str) -> Optional[PlayerProgress]:
        return next((p for p in self.progress if p.player_id == player_id), None)


class SessionContext:
    """Cached view of one session for one host or player client.

    ``snapshot`` is None until the first successful read ("no data yet");
    after a failed read the previous snapshot stays in place with
    ``stale=True`` ("read failed").
    """

    def __init__(self, backend, channel, game_code: str, role: str = PLAYER,
                 player_id: Optional[str] = None, host_id: Optional[str] = None,
                 config: Optional[ClientConfig] = None, clock: Optional[ServerClock] = None):
        if role not in (HOST, PLAYER):
            raise ValueError(f"role must be {HOST!r} or {PLAYER!r}")
        if role == HOST and not host_id:
            raise ValueError('a host context needs host_id')
        if role == PLAYER and not player_id:
            raise ValueError('a player context needs player_id')
        self.backend = backend
        self.channel = channel
        self.game_code = game_code.upper()
        self.role = role
        self.player_id = player_id
        self.host_id = host_id
        self.config = config or ClientConfig.from_object()
        self.clock = clock or ServerClock(getattr(backend, 'server_time', None), self.config.clock_resync_sec)

        self.snapshot: Optional[SessionSnapshot] = None
        self.quiz_timer = CachedTimer(0)
        self.countdown_timer = CachedTimer(self.config.countdown_sec)
        self._expiry = ExpiryLatch()
        # Set when the expiry latch fired but the finish write has not landed yet
        self._expiry_owed = False
        self._finish_requested = False
        self._read_failures = 0

        self._lock = threading.RLock()
        self._refresh_lock = threading.Lock()
        self._recompute = threading.Event()
        self._pending_reasons = set()
        self._handles = []
        self._listeners: List[Callable] = []
        self._error_listeners: List[Callable] = []
        self._runner = None
        self.opened = False
        self.closed = False

        # Client-owned navigation state; never an input to ranking
        self.current_question = 0
        self.correct_count = 0
        self.bonus_round_pending = False
        self._submitted = set()

    # ---- lifetime ----

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    def open(self, background: bool = False) -> 'SessionContext':
        """Initial load, subscriptions and (optionally) the background tasks.

        Raises ``NotFound`` when the code does not resolve; the caller
        should send the user back to the entry screen.
        """
        if self.closed:
            raise InvalidTransition('Session view already closed')
        self.clock.sync()
        snapshot = self.refresh(raise_errors=True)
        scope = ChannelScope(self.game_code, snapshot.session.id, self.player_id, self.role)
        try:
            for topic in TOPICS:
                self._handles.append(self.channel.subscribe(topic, scope, self._on_notification))
            self._handles.append(self.channel.subscribe(RECONNECT, scope, self._on_reconnect))
        except ChannelDisconnect as exc:
            logger.warning("[subscribe-failed] game=%s polling only: %s", self.game_code, exc)
        if self.role == PLAYER:
            self.restore_position()
        self.opened = True
        if background:
            self._runner = ReconciliationRunner(self)
            self._runner.start()
        logger.info("[open] game=%s role=%s phase=%s", self.game_code, self.role, snapshot.phase.value)
        return self

    def close(self) -> None:
        """Release every subscription and stop every task. Safe to repeat."""
        with self._lock:
            if self.closed:
                return
            self.closed = True
            handles, self._handles = self._handles, []
            runner, self._runner = self._runner, None
        if runner is not None:
            runner.stop()
        for handle in handles:
            self.channel.unsubscribe(handle)
        self._listeners.clear()
        self._error_listeners.clear()
        logger.info("[close] game=%s role=%s released=%d", self.game_code, self.role, len(handles))

    def add_listener(self, callback: Callable) -> Callable:
        """``callback(snapshot)`` after every refresh and tick; returns a remover."""
        self._listeners.append(callback)
        return lambda: self._listeners.remove(callback) if callback in self._listeners else None

    def add_error_listener(self, callback: Callable) -> None:
        self._error_listeners.append(callback)

    # ---- derived values ----

    @property
    def time_remaining(self) -> Optional[int]:
        return self.quiz_timer.remaining

    @property
    def countdown_remaining(self) -> Optional[int]:
        return self.countdown_timer.remaining

    @property
    def phase(self) -> Optional[SessionPhase]:
        return self.snapshot.phase if self.snapshot else None

    def poll_interval(self) -> float:
        if self.phase in (SessionPhase.STARTED, SessionPhase.COUNTDOWN):
            return self.config.poll_active_sec
        return self.config.poll_idle_sec

    # ---- reconciliation ----

    def request_recompute(self, reason: str) -> None:
        """Producers (push, poll, ticker) only signal; the consumer re-reads."""
        if self.closed:
            return
        with self._lock:
            self._pending_reasons.add(reason)
        self._recompute.set()

    @property
    def recompute_pending(self) -> bool:
        return self._recompute.is_set()

    def flush(self) -> Optional[SessionSnapshot]:
        """Run the pending recompute, if any; the runner calls this after debouncing."""
        if not self._recompute.is_set():
            return self.snapshot
        self._recompute.clear()
        with self._lock:
            reasons, self._pending_reasons = self._pending_reasons, set()
        logger.debug("[recompute] game=%s reasons=%s", self.game_code, sorted(reasons))
        return self.refresh()

    def refresh(self, raise_errors: bool = False) -> Optional[SessionSnapshot]:
        """Re-read the store and rebuild the snapshot.

        A failed read keeps the previous snapshot (marked stale) and is
        retried by the next poll or notification.
        """
        with self._refresh_lock:
            try:
                session, players, answers = self.backend.read_state(self.game_code)
                players, answers = tuple(players), tuple(answers)
            except TransientReadFailure as exc:
                self._mark_stale(exc)
                if raise_errors:
                    raise
                return self.snapshot

            now = self.clock.now_ms()
            snapshot = SessionSnapshot(
                session=session,
                players=players,
                answers=answers,
                progress=tuple(rank_session(players, answers, session.question_count)),
                phase=phase_of(session, now, self.config.countdown_sec),
                fetched_at_ms=now,
            )
            with self._lock:
                self.snapshot = snapshot
                self._read_failures = 0
                self.quiz_timer.window_sec = session.time_limit
                self.quiz_timer.resync(session.quiz_start_time if session.is_started else None, now)
                self.countdown_timer.resync(session.countdown_start_ms if session.is_started else None, now)
                if session.finished:
                    self._finish_requested = True
                    self._expiry_owed = False
            self._check_finish(snapshot)
        self._notify(snapshot)
        return snapshot

    def _mark_stale(self, exc: Exception) -> None:
        with self._lock:
            self._read_failures += 1
            failures = self._read_failures
            if self.snapshot is not None:
                self.snapshot = replace(self.snapshot, stale=True)
        if failures >= self.config.read_retry_budget:
            logger.warning("[read-failed] game=%s consecutive=%d showing last good state: %s",
                           self.game_code, failures, exc)
        else:
            logger.info("[read-retry] game=%s consecutive=%d: %s", self.game_code, failures, exc)

    def _check_finish(self, snapshot: SessionSnapshot) -> None:
        session = snapshot.session
        if session.finished or not session.is_started:
            return
        if all_completed(list(snapshot.progress)):
            self.request_finish('completed')
        else:
            self._check_expiry(session.quiz_start_time, self.quiz_timer.remaining)

    def _check_expiry(self, epoch: Optional[int], remaining: Optional[int]) -> None:
        """Fire the expired finish once, and resend it until a write succeeds."""
        if self._expiry.observe(epoch, remaining):
            self._expiry_owed = True
        if self._expiry_owed and remaining == 0:
            self.request_finish('expired')

    def check_auto_finish(self) -> bool:
        """Run the completion check on the current snapshot; True if a write was sent."""
        snapshot = self.snapshot
        if snapshot is None or snapshot.session.finished or not snapshot.session.is_started:
            return False
        if not all_completed(list(snapshot.progress)):
            return False
        return self.request_finish('completed')

    def request_finish(self, reason: str) -> bool:
        """Ask the store to finish the session; at most one request in flight per client."""
        with self._lock:
            finished = self.snapshot is not None and self.snapshot.session.finished
            if self._finish_requested or finished:
                return False
            self._finish_requested = True
        try:
            changed = self.backend.finish(self.game_code, reason)
        except (WriteFailure, InvalidTransition) as exc:
            logger.warning("[finish-failed] game=%s reason=%s: %s", self.game_code, reason, exc)
            with self._lock:
                self._finish_requested = False
            return False
        if reason == 'expired':
            self._expiry_owed = False
        logger.info("[finish-requested] game=%s reason=%s changed=%s", self.game_code, reason, changed)
        self.request_recompute('finish')
        return True

    def tick(self) -> None:
        """One local second passed; corrected by the next refresh."""
        with self._lock:
            before = self.countdown_timer.remaining
            remaining = self.quiz_timer.tick()
            countdown = self.countdown_timer.tick()
            snapshot = self.snapshot
        if snapshot is None or self.closed:
            return
        session = snapshot.session
        if session.is_started and not session.finished:
            self._check_expiry(self.quiz_timer.epoch, remaining)
            if before and countdown == 0:
                # Countdown over: re-derive the phase
                self.request_recompute('countdown')
        self._notify(snapshot)

    def _on_notification(self, payload: dict) -> None:
        snapshot = self.snapshot
        if snapshot is not None and payload.get('game_id') not in (None, snapshot.session.id):
            return
        self.request_recompute('push')

    def _on_reconnect(self, payload=None) -> None:
        self.clock.sync()
        self.request_recompute('reconnect')

    def _notify(self, snapshot: SessionSnapshot) -> None:
        for callback in list(self._listeners):
            callback(snapshot)

    def report_error(self, exc: GameError) -> None:
        for callback in list(self._error_listeners):
            callback(exc)

    # ---- intents ----

    def _require_host(self, action: str) -> None:
        if self.role != HOST:
            raise NotHost(f'Only the host may {action} the quiz')

    def _require_player(self) -> None:
        if self.role != PLAYER:
            raise InvalidTransition('Only players submit answers')

    def request_start(self) -> SessionSnapshot:
        """Host starts the quiz; rejected locally, without a write, if nobody joined."""
        self._require_host('start')
        snapshot = self.refresh(raise_errors=True)
        if snapshot.session.finished:
            raise InvalidTransition('Game has already finished')
        if snapshot.session.is_started:
            return snapshot
        if not snapshot.players:
            raise InvalidTransition('No players have joined')
        self.backend.start(self.game_code, self.host_id)
        logger.info("[start-requested] game=%s players=%d", self.game_code, len(snapshot.players))
        return self.refresh()

    def request_end(self) -> SessionSnapshot:
        self._require_host('end')
        self.backend.end(self.game_code, self.host_id)
        return self.refresh()

    def request_exit(self) -> int:
        self._require_host('exit')
        removed = self.backend.exit(self.game_code, self.host_id)
        self.refresh()
        return removed

    def leave(self) -> None:
        """Player leaves the waiting room and the view is torn down."""
        self._require_player()
        self.backend.leave(self.game_code, self.player_id)
        self.close()

    def restore_position(self) -> int:
        """Resume a reconnecting player one past their last answered question."""
        snapshot = self.snapshot
        if snapshot is None:
            return self.current_question
        own = [a for a in snapshot.answers if a.player_id == self.player_id]
        with self._lock:
            self._submitted = {a.question_index for a in own if a.question_index >= 0}
            self.correct_count = sum(1 for a in own if a.question_index >= 0 and a.is_correct)
            self.current_question = next_question_index(own, self.player_id)
        return self.current_question

    def submit_answer(self, question_index: int, points: int, is_correct: Optional[bool] = None) -> bool:
        """Record one answer; a second submit for the same question is ignored.

        Returns False when input for that question was already locked.
        """
        self._require_player()
        if question_index < 0:
            raise ValueError('use submit_bonus for bonus points')
        if is_correct is None:
            is_correct = points > 0
        with self._lock:
            if question_index in self._submitted:
                logger.debug("[answer-locked] game=%s index=%d", self.game_code, question_index)
                return False
            self._submitted.add(question_index)
        try:
            self.backend.submit_answer(self.game_code, self.player_id, question_index, points, is_correct)
        except GameError:
            with self._lock:
                self._submitted.discard(question_index)
            raise
        with self._lock:
            if is_correct:
                self.correct_count += 1
                if bonus_round_due(self.correct_count, self.config.bonus_round_every):
                    self.bonus_round_pending = True
            self.current_question = max(self.current_question, question_index + 1)
        self.refresh()
        return True

    def answer_question(self, question_index: int, is_correct: bool) -> bool:
        points = points_for(is_correct, self.config.points_per_correct)
        return self.submit_answer(question_index, points, is_correct)

    def submit_bonus(self, points: int) -> None:
        """Score from the bonus round; not tied to any question."""
        self._require_player()
        self.backend.submit_answer(self.game_code, self.player_id, BONUS_QUESTION_INDEX, int(points), False)
        with self._lock:
            self.bonus_round_pending = False
        self.refresh()
