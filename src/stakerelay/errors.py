"""Error taxonomy for the relay service.

Every error carries the HTTP status it maps to and a public message that is
safe to return to clients. ``details`` is only rendered outside production.
"""

from typing import Optional


class RelayError(Exception):
    """Base class for errors surfaced to API clients."""

    status_code = 500
    kind = "internal"

    def __init__(self, message: str, details: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.details = details
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self, include_details: bool = False) -> dict:
        body = {"error": self.message}
        if include_details and self.details:
            body["details"] = self.details
        return body


class ValidationError(RelayError):
    """Malformed or missing request fields."""

    status_code = 400
    kind = "validation"

    def __init__(self, message: str, field: Optional[str] = None, details: Optional[str] = None):
        super().__init__(message, details=details)
        self.field = field


class AuthenticationError(RelayError):
    """Signature does not match the claimed principal."""

    status_code = 401
    kind = "authentication"


class ExpiredError(RelayError):
    """Authorization deadline has passed."""

    status_code = 400
    kind = "expired"


class ReplayError(RelayError):
    """Authorization digest was already consumed."""

    status_code = 409
    kind = "replay"


class UpstreamError(RelayError):
    """Chain or network failure after retries were exhausted."""

    status_code = 502
    kind = "upstream"


class InternalError(RelayError):
    """Unexpected fault."""

    status_code = 500
    kind = "internal"
