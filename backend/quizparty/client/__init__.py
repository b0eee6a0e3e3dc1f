"""Client side of a quiz session: store and channel adapters plus the reconciliation loop."""

from quizparty.client.context import HOST, PLAYER, ClientConfig, SessionContext, SessionSnapshot
from quizparty.client.records import AnswerRecord, PlayerRecord, SessionRecord
from quizparty.client.runner import ReconciliationRunner
from quizparty.client.transport import ChannelScope, HttpBackend, SocketChannel, Subscription

__all__ = [
    'HOST',
    'PLAYER',
    'AnswerRecord',
    'ChannelScope',
    'ClientConfig',
    'HttpBackend',
    'PlayerRecord',
    'ReconciliationRunner',
    'SessionContext',
    'SessionRecord',
    'SessionSnapshot',
    'SocketChannel',
    'Subscription',
]
