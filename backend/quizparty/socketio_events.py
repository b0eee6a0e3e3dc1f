from flask_socketio import join_room, leave_room, emit
from flask import current_app, request
from quizparty import socketio, store
from quizparty.channel import NAMESPACE, PRESENCE, room_for
from quizparty.errors import NotFound, TransientReadFailure
from typing import Dict, Any


# Advisory presence only: never consulted for player-list membership
_sid_to_ctx: Dict[str, Dict[str, Any]] = {}
_presence: Dict[str, Dict[str, Dict[str, Any]]] = {}


def _get_sid() -> str:
    # request.sid exists in Socket.IO context
    return request.sid  # type: ignore[attr-defined]


def presence_for(session_id: str) -> Dict[str, Any]:
    members = _presence.get(session_id, {})
    return {
        'game_id': session_id,
        'players': sorted({m['player_id'] for m in members.values() if m.get('player_id')}),
        'host_connected': any(m.get('role') == 'host' for m in members.values()),
        'connections': len(members),
    }


def _broadcast_presence(session_id: str) -> None:
    socketio.emit(PRESENCE, presence_for(session_id), to=room_for(session_id), namespace=NAMESPACE)


def _forget(sid: str):
    ctx = _sid_to_ctx.pop(sid, None)
    if not ctx:
        return None
    members = _presence.get(ctx['game_id'], {})
    members.pop(sid, None)
    if not members:
        _presence.pop(ctx['game_id'], None)
    return ctx


def handle_connect():
    emit('connected', {'message': f'Connected to {NAMESPACE}'})


def handle_disconnect(*args):
    ctx = _forget(_get_sid())
    if not ctx:
        return
    current_app.logger.info(
        f"[presence-drop] game={ctx['game_id']} player={ctx.get('player_id')} role={ctx.get('role')}"
    )
    _broadcast_presence(ctx['game_id'])


def handle_join_game(data):
    data = data or {}
    game_code = data.get('game_code')
    if not game_code:
        emit('error', {'message': 'game_code is required'})
        return
    try:
        game = store.read_session(code=game_code)
    except (NotFound, TransientReadFailure) as exc:
        emit('error', {'message': exc.message})
        return

    sid = _get_sid()
    previous = _forget(sid)
    if previous and previous['game_id'] != game.id:
        leave_room(room_for(previous['game_id']))
        _broadcast_presence(previous['game_id'])

    room = room_for(game.id)
    join_room(room)
    ctx = {
        'game_id': game.id,
        'player_id': data.get('player_id'),
        'role': 'host' if data.get('role') == 'host' else 'player',
    }
    _sid_to_ctx[sid] = ctx
    _presence.setdefault(game.id, {})[sid] = ctx
    emit('joined', {'room': room, 'game_id': game.id})
    _broadcast_presence(game.id)


def handle_leave_game(data):
    ctx = _forget(_get_sid())
    if not ctx:
        emit('error', {'message': 'Not subscribed to a game'})
        return
    room = room_for(ctx['game_id'])
    leave_room(room)
    emit('left', {'room': room})
    _broadcast_presence(ctx['game_id'])


def handle_ping(data):
    emit('pong', data or {})


def register_socketio_handlers() -> None:
    """Register Socket.IO event handlers on the ``/ws`` namespace."""
    socketio.on_event('connect', handle_connect, namespace=NAMESPACE)
    socketio.on_event('disconnect', handle_disconnect, namespace=NAMESPACE)
    socketio.on_event('join_game', handle_join_game, namespace=NAMESPACE)
    socketio.on_event('leave_game', handle_leave_game, namespace=NAMESPACE)
    socketio.on_event('ping', handle_ping, namespace=NAMESPACE)
