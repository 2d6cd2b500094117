"""
Lifecycle error kinds.

Every failure the engine reports is a LifecycleError subclass carrying the HTTP
status and machine-readable code the API layer renders.  Errors are raised to
the caller synchronously; the engine never retries its own mutations.
"""
from typing import Any


class LifecycleError(Exception):
    status_code: int = 400
    code: str = "LIFECYCLE_ERROR"

    def __init__(self, message: str, *, errors: list[dict[str, Any]] | None = None):
        super().__init__(message)
        self.message = message
        self.errors = errors


class ValidationError(LifecycleError):
    """Malformed or missing input. Never retried automatically."""

    status_code = 422
    code = "VALIDATION_ERROR"


class NotFound(LifecycleError):
    status_code = 404
    code = "NOT_FOUND"

    def __init__(self, resource: str = "Resource", identifier: Any = None):
        message = f"{resource} not found"
        if identifier is not None:
            message = f"{resource} {identifier} not found"
        super().__init__(message)


class InvalidTransition(LifecycleError):
    status_code = 409
    code = "INVALID_TRANSITION"


class InvalidState(LifecycleError):
    status_code = 409
    code = "INVALID_STATE"


class Conflict(LifecycleError):
    """Concurrent-mutation race lost, or duplicate pending extension."""

    status_code = 409
    code = "CONFLICT"


class Forbidden(LifecycleError):
    status_code = 403
    code = "FORBIDDEN"


class AlreadyClosed(LifecycleError):
    status_code = 409
    code = "ALREADY_CLOSED"
