"""Client adapters for the session store (HTTP) and event channel (Socket.IO).

``SessionContext`` only depends on the methods these classes expose, so
tests can substitute recording fakes or route the HTTP calls through the
Flask test client.
"""

import itertools
import logging
import threading
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

import requests
import socketio

from config import Config
from quizparty.client.records import AnswerRecord, PlayerRecord, SessionRecord
from quizparty.errors import (
    ChannelDisconnect,
    InvalidTransition,
    NotFound,
    NotHost,
    TransientReadFailure,
    WriteFailure,
)

logger = logging.getLogger(__name__)

NAMESPACE = '/ws'
SESSION_UPDATE = 'session_update'
PLAYER_CHANGE = 'player_change'
ANSWER_INSERT = 'answer_insert'
PRESENCE = 'presence'
# Pseudo-topic delivered locally whenever the socket reconnects
RECONNECT = 'reconnect'
TOPICS = (SESSION_UPDATE, PLAYER_CHANGE, ANSWER_INSERT)


class HttpBackend:
    """Session store operations over the JSON API."""

    def __init__(self, base_url: str = '', http=None, timeout: float = Config.HTTP_TIMEOUT_SEC):
        self.base_url = base_url.rstrip('/')
        self.http = http or requests.Session()
        self.timeout = timeout

    def _send(self, method: str, path: str, payload=None, params=None) -> Tuple[int, object]:
        response = self.http.request(
            method, f"{self.base_url}{path}", json=payload, params=params, timeout=self.timeout
        )
        try:
            body = response.json()
        except ValueError:
            body = {}
        return response.status_code, body

    @staticmethod
    def _check(status: int, body, failure):
        if status < 400:
            return body
        message = (body.get('error') if isinstance(body, dict) else None) or f'HTTP {status}'
        if status == 404:
            raise NotFound(message)
        if status == 403:
            raise NotHost(message)
        if status in (400, 409):
            raise InvalidTransition(message, status)
        raise failure(message, status)

    def _get(self, path: str, params=None):
        try:
            status, body = self._send('GET', path, params=params)
        except requests.RequestException as exc:
            raise TransientReadFailure(f'GET {path} failed: {exc}') from exc
        return self._check(status, body, TransientReadFailure)

    def _post(self, path: str, payload: dict):
        try:
            status, body = self._send('POST', path, payload=payload)
        except requests.RequestException as exc:
            raise WriteFailure(f'POST {path} failed: {exc}') from exc
        return self._check(status, body, WriteFailure)

    # ---- reads ----

    def server_time(self) -> int:
        return int(self._get('/api/server-time')['timestamp'])

    def read_session(self, game_code: str) -> SessionRecord:
        return SessionRecord.from_dict(self._get(f'/api/games/{game_code}'))

    def list_players(self, game_code: str) -> List[PlayerRecord]:
        return [PlayerRecord.from_dict(p) for p in self._get(f'/api/games/{game_code}/players')]

    def list_answers(self, game_code: str) -> List[AnswerRecord]:
        return [AnswerRecord.from_dict(a) for a in self._get(f'/api/games/{game_code}/answers')]

    def read_state(self, game_code: str) -> Tuple[SessionRecord, List[PlayerRecord], List[AnswerRecord]]:
        """Session, players and answers from one server-side read."""
        body = self._get(f'/api/games/{game_code}/state')
        return (
            SessionRecord.from_dict(body['game']),
            [PlayerRecord.from_dict(p) for p in body['players']],
            [AnswerRecord.from_dict(a) for a in body['answers']],
        )

    def questions(self, game_code: str, player_id: str) -> List[dict]:
        return self._get(f'/api/games/{game_code}/questions', params={'player_id': player_id})

    # ---- writes ----

    def create(self, quiz_id: int, host_id: str, time_limit: int, question_count: int,
               host_name: Optional[str] = None) -> SessionRecord:
        body = self._post('/api/games/create', {
            'quiz_id': quiz_id,
            'host_id': host_id,
            'host_name': host_name,
            'time_limit': time_limit,
            'question_count': question_count,
        })
        return SessionRecord.from_dict(body['game'])

    def join(self, game_code: str, player_id: str, name: str, avatar: Optional[str] = None) -> PlayerRecord:
        body = self._post('/api/games/join', {
            'game_code': game_code, 'player_id': player_id, 'name': name, 'avatar': avatar,
        })
        return PlayerRecord.from_dict(body)

    def start(self, game_code: str, host_id: str) -> SessionRecord:
        return SessionRecord.from_dict(self._post(f'/api/games/{game_code}/start', {'host_id': host_id})['game'])

    def end(self, game_code: str, host_id: str) -> SessionRecord:
        return SessionRecord.from_dict(self._post(f'/api/games/{game_code}/end', {'host_id': host_id})['game'])

    def exit(self, game_code: str, host_id: str) -> int:
        return int(self._post(f'/api/games/{game_code}/exit', {'host_id': host_id})['removed_players'])

    def finish(self, game_code: str, reason: str) -> bool:
        return bool(self._post(f'/api/games/{game_code}/finish', {'reason': reason})['changed'])

    def leave(self, game_code: str, player_id: str) -> None:
        self._post(f'/api/games/{game_code}/leave', {'player_id': player_id})

    def submit_answer(self, game_code: str, player_id: str, question_index: int, points_earned: int,
                      is_correct: bool = False) -> Tuple[AnswerRecord, bool]:
        body = self._post(f'/api/games/{game_code}/answers', {
            'player_id': player_id,
            'question_index': question_index,
            'points_earned': points_earned,
            'is_correct': is_correct,
        })
        return AnswerRecord.from_dict(body['answer']), bool(body['created'])


@dataclass(frozen=True)
class ChannelScope:
    """Subscription filter: one session, seen by one client."""

    game_code: str
    session_id: str
    player_id: Optional[str] = None
    role: str = 'player'

    def join_payload(self) -> dict:
        return {'game_code': self.game_code, 'player_id': self.player_id, 'role': self.role}


@dataclass(frozen=True)
class Subscription:
    handle: int
    topic: str
    scope: ChannelScope
    callback: Callable


class SocketChannel:
    """Event channel over a python-socketio client.

    Subscriptions are filtered by session id on delivery as well as by
    room on the server, so a late event for a previous session never
    reaches a newer subscriber.
    """

    def __init__(self, url: str, client: Optional[socketio.Client] = None, namespace: str = NAMESPACE):
        self.url = url
        self.namespace = namespace
        self.sio = client or socketio.Client(reconnection=True)
        self._lock = threading.Lock()
        self._subs: Dict[int, Subscription] = {}
        self._ids = itertools.count(1)
        self._ever_connected = False
        for topic in TOPICS + (PRESENCE,):
            self.sio.on(topic, self._make_dispatch(topic), namespace=namespace)
        self.sio.on('connect', self._on_connect, namespace=namespace)
        self.sio.on('disconnect', self._on_disconnect, namespace=namespace)

    def _make_dispatch(self, topic: str):
        def dispatch(data=None):
            self._dispatch(topic, data or {})
        return dispatch

    def _dispatch(self, topic: str, payload: dict) -> None:
        with self._lock:
            targets = [s for s in self._subs.values() if s.topic == topic]
        for sub in targets:
            if payload.get('game_id') not in (None, sub.scope.session_id):
                continue
            sub.callback(payload)

    def _scopes(self):
        with self._lock:
            return {s.scope for s in self._subs.values()}

    def _on_connect(self):
        reconnect = self._ever_connected
        self._ever_connected = True
        for scope in self._scopes():
            self.sio.emit('join_game', scope.join_payload(), namespace=self.namespace)
        if reconnect:
            logger.info("[channel-reconnect] url=%s", self.url)
            self._dispatch(RECONNECT, {})

    def _on_disconnect(self, *args):
        # Polling keeps clients converging until the socket comes back
        logger.warning("[channel-disconnect] url=%s", self.url)

    def subscribe(self, topic: str, scope: ChannelScope, callback: Callable) -> Subscription:
        if topic not in TOPICS + (PRESENCE, RECONNECT):
            raise ValueError(f"unknown topic {topic!r}")
        with self._lock:
            active = {s.scope for s in self._subs.values()}
            # The server keeps one room per socket
            if active and scope not in active:
                raise ValueError("channel is already bound to another session")
            new_scope = not active
            sub = Subscription(next(self._ids), topic, scope, callback)
            self._subs[sub.handle] = sub
        if not self.sio.connected:
            try:
                self.sio.connect(self.url, namespaces=[self.namespace])
            except socketio.exceptions.ConnectionError as exc:
                with self._lock:
                    self._subs.pop(sub.handle, None)
                raise ChannelDisconnect(f"cannot reach {self.url}: {exc}") from exc
        elif new_scope:
            self.sio.emit('join_game', scope.join_payload(), namespace=self.namespace)
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        with self._lock:
            self._subs.pop(sub.handle, None)
            remaining = {s.scope for s in self._subs.values()}
        if sub.scope in remaining or not self.sio.connected:
            return
        self.sio.emit('leave_game', sub.scope.join_payload(), namespace=self.namespace)
        if not remaining:
            self.sio.disconnect()
