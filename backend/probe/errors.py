"""Game errors raised by the engine and mapped to HTTP responses by the API.

Each error carries a human-readable message that is safe to show to players.
"""


class GameError(Exception):
    kind = 'error'
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self):
        return {'error': self.message, 'kind': self.kind}


class NotFound(GameError):
    kind = 'not_found'
    status_code = 404


class InvalidState(GameError):
    kind = 'invalid_state'
    status_code = 409


class Unauthorized(GameError):
    kind = 'unauthorized'
    status_code = 403


class ValidationFailure(GameError):
    """Malformed input. ``reason`` is a stable code the client can switch on."""

    kind = 'validation'
    status_code = 400

    def __init__(self, message: str, reason: str):
        super().__init__(message)
        self.reason = reason

    def to_dict(self):
        payload = super().to_dict()
        payload['reason'] = self.reason
        return payload


class CapacityError(GameError):
    kind = 'capacity'
    status_code = 409


class NoEligibleTargets(CapacityError):
    pass
