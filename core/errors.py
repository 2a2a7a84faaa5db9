"""
core/errors.py -- Exception taxonomy shared by every layer of the BLT API.

Route handlers and dependencies raise these; api/main.py owns the single
translation step that turns them into the JSON error envelope. Nothing below
the route boundary catches an ApiError.

Store failures are not wrapped: SQLAlchemyError propagates untouched and is
mapped to a generic 500 by its own handler, so the original traceback is
logged rather than re-raised from a wrapper.

Layer rule: core/ is the kernel. No imports from api/, auth/, or tracker/.
"""

from __future__ import annotations


class ConfigurationError(Exception):
    """A route declared a filter on a column outside its allow-list.

    Raised at import time when filter sets are built, never in response to
    user input. Not an ApiError: it must crash startup, not become a 4xx.
    """


class ApiError(Exception):
    """Base class for errors that map directly onto an HTTP status."""

    status_code: int = 500
    code: str = "internal_error"

    def __init__(self, message: str, detail: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail


class BadRequestError(ApiError):
    status_code = 400
    code = "bad_request"


class AuthenticationError(ApiError):
    status_code = 401
    code = "unauthorized"


class AuthorizationError(ApiError):
    status_code = 403
    code = "forbidden"


class NotFoundError(ApiError):
    status_code = 404
    code = "not_found"


class RateLimitError(ApiError):
    """Admission controller rejection. reset_at is epoch seconds."""

    status_code = 429
    code = "rate_limited"

    def __init__(self, message: str, reset_at: float, detail: str | None = None) -> None:
        super().__init__(message, detail)
        self.reset_at = reset_at
