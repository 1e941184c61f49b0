"""
Domain errors raised by the assignment engine and the chat assistant.

Every error is scoped to the request that raised it; the API layer maps
``status_code`` onto the HTTP response and never retries.
"""
from typing import Optional


class TugasError(Exception):
    """Base class for all request-scoped domain errors"""

    status_code = 400
    kind = "error"

    def __init__(self, message: str, detail: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail


class ValidationError(TugasError):
    """Malformed or missing input; the user must correct it"""

    status_code = 422
    kind = "validation_error"


class InvalidTransition(TugasError):
    """The assignment is not in the status the operation requires"""

    status_code = 409
    kind = "invalid_transition"


class NotAuthorized(TugasError):
    """Actor or role mismatch. The message never reveals whether the resource exists."""

    status_code = 403
    kind = "not_authorized"

    def __init__(self, message: str = "Akses ditolak", detail: Optional[str] = None):
        super().__init__(message, detail)


class NotFound(TugasError):
    status_code = 404
    kind = "not_found"


class UpstreamError(TugasError):
    """The external chat model failed or timed out"""

    status_code = 502
    kind = "upstream_error"

    def __init__(self, message: str = "Terjadi kesalahan saat memproses permintaan",
                 detail: Optional[str] = None):
        super().__init__(message, detail)
