"""
Errors raised by fixture generation, standings and scoring.

Every error carries a human readable message plus a ``context`` dict with the
counts and ids needed to diagnose it. The web layer turns these into JSON.
"""


class FixtureError(Exception):
    """Base class for all competition errors."""

    status_code = 400

    def __init__(self, message: str, **context):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict:
        data = {'success': False, 'error': self.message}
        data.update(self.context)
        return data


class ValidationError(FixtureError):
    """Malformed input: too few participants, bad set scores, unknown format."""

    status_code = 400


class PreconditionError(FixtureError):
    """Operation attempted out of order (e.g. knockout before pools finish)."""

    status_code = 409


class NotFoundError(FixtureError):
    """Referenced tournament, pool or match does not exist."""

    status_code = 404


class ConflictError(FixtureError):
    """Another fixture operation holds the tournament lock. Safe to retry later."""

    status_code = 409

    def to_dict(self) -> dict:
        data = super().to_dict()
        data['retryable'] = True
        return data
