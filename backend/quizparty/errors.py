"""Failure taxonomy shared by the server and the session clients."""


class GameError(Exception):
    """Base class; ``status_code`` is what the HTTP API answers with."""

    status_code = 500

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self):
        return {'error': self.message}


class NotFound(GameError):
    """Session, player or quiz lookup failed. Not retried."""

    status_code = 404


class InvalidTransition(GameError):
    """Rejected lifecycle action; nothing was written."""

    status_code = 400


class NotHost(InvalidTransition):
    status_code = 403


class TransientReadFailure(GameError):
    """A store read failed; callers keep their last good snapshot."""

    status_code = 503


class WriteFailure(GameError):
    """A store write failed and was rolled back."""

    status_code = 500


class ChannelDisconnect(GameError):
    """The push channel dropped. Masked by polling."""

    status_code = 503
