"""Server side of the event channel: row-change notifications per session.

Every committed store write publishes one event to the session's room on
the ``/ws`` namespace. Delivery is best effort; clients re-read state on
any notification instead of applying the payload as a delta.
"""

from flask import current_app

from quizparty import socketio

NAMESPACE = '/ws'
SESSION_UPDATE = 'session_update'
PLAYER_CHANGE = 'player_change'
ANSWER_INSERT = 'answer_insert'
PRESENCE = 'presence'
TOPICS = (SESSION_UPDATE, PLAYER_CHANGE, ANSWER_INSERT)


def room_for(session_id: str) -> str:
    return f"game:{session_id}"


def publish(topic: str, session_id: str, payload: dict) -> None:
    if topic not in TOPICS and topic != PRESENCE:
        raise ValueError(f"unknown topic {topic!r}")
    data = dict(payload)
    data['game_id'] = session_id
    socketio.emit(topic, data, to=room_for(session_id), namespace=NAMESPACE)
    current_app.logger.debug(f"[publish] topic={topic} game={session_id}")
