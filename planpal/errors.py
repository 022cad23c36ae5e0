"""Ledger error taxonomy.

Every error is raised before any state is written, so callers can report the
message verbatim and retry-check safely.
"""


class LedgerError(Exception):
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(LedgerError):
    """Malformed input: bad amount, empty description, payer outside the split."""

    status_code = 400


class AuthorizationError(LedgerError):
    """The acting handle is not allowed to perform this operation."""

    status_code = 403


class NotFoundError(LedgerError):
    status_code = 404


class StateConflictError(LedgerError):
    """The entity is not in a state that allows the operation."""

    status_code = 409
