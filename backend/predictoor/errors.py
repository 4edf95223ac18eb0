"""Error taxonomy for the round engine.

Every error carries a machine-readable ``code`` and the HTTP status used by
the API layer, so clients can tell "too late" apart from "bad value".
"""


class GameError(Exception):
    code = 'GameError'
    status_code = 400

    def __init__(self, message, **extra):
        super().__init__(message)
        self.message = message
        self.extra = extra

    def to_dict(self):
        payload = {'error': self.message, 'code': self.code}
        payload.update(self.extra)
        return payload


class InvalidValue(GameError):
    """Malformed forecast or participant data."""
    code = 'InvalidValue'
    status_code = 400

    def __init__(self, message, field=None):
        super().__init__(message, field=field)
        self.field = field


class RoundNotFound(GameError):
    code = 'RoundNotFound'
    status_code = 404


class ParticipantNotFound(GameError):
    """No prediction or leaderboard entry for this participant."""
    code = 'ParticipantNotFound'
    status_code = 404


class RoundNotActive(GameError):
    """Submission outside the active window.

    ``reason`` is one of ``not_started``, ``locked`` or ``completed``.
    """
    code = 'RoundNotActive'
    status_code = 409

    def __init__(self, message, reason):
        super().__init__(message, reason=reason)
        self.reason = reason


class OracleUnavailable(GameError):
    """Price fetch failed. Retryable."""
    code = 'OracleUnavailable'
    status_code = 503


class ConcurrentTransitionLost(GameError):
    """A compare-and-swap lost the race; the winner already did the work."""
    code = 'ConcurrentTransitionLost'
    status_code = 409


class StoreUnavailable(GameError):
    code = 'StoreUnavailable'
    status_code = 503
