"""Error taxonomy for the progression engine.

Services raise these; the global error handler turns them into JSON
responses with the matching status code. Validation and conflict errors
are expected states in normal use ("already claimed this week") and carry
a message meant for the end user.
"""

from __future__ import annotations


class ProgressionError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code: int = 500
    default_detail: str = "Progression error"

    def __init__(self, detail: str | None = None) -> None:
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class AuthenticationRequired(ProgressionError):
    status_code = 401
    default_detail = "Authentication required"


class Forbidden(ProgressionError):
    status_code = 403
    default_detail = "Forbidden"


class NotFound(ProgressionError):
    status_code = 404
    default_detail = "Not found"


class ValidationFailed(ProgressionError):
    status_code = 400
    default_detail = "Validation failed"


class Conflict(ProgressionError):
    status_code = 409
    default_detail = "Conflict"


class InternalError(ProgressionError):
    status_code = 500
    default_detail = "Internal server error"
