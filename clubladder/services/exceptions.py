"""
Service-layer errors for ladder and open-match operations.

Each error carries the HTTP status it maps to; the API layer renders them as
``{"detail": message}`` through a single exception handler.
"""


class LadderError(Exception):
    """Base class for recoverable, caller-facing service errors."""

    status_code = 400

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class AuthenticationError(LadderError):
    """Missing or invalid credential."""

    status_code = 401


class AuthorizationError(LadderError):
    """Caller is not an eligible participant or lacks the required role."""

    status_code = 403


class NotFoundError(LadderError):
    """Team, challenge, match or player does not exist."""

    status_code = 404


class InvalidStateError(LadderError):
    """Action attempted from the wrong state."""

    status_code = 400

    def __init__(self, message: str, current_state: str = None):
        if current_state is not None:
            message = f"{message} (current status: {current_state})"
        super().__init__(message)
        self.current_state = current_state


class ValidationError(LadderError):
    """Score grammar or payload violation; message names the broken rule."""

    status_code = 400


class ConflictError(LadderError):
    """Concurrent mutation or duplicate request; caller may retry from fresh state."""

    status_code = 409
