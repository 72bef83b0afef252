# Overview: Error taxonomy shared by services and routes.

"""
Every failure a caller can see is a PosError subclass.

- http_status: what the API layer answers with
- retryable: True only when the same request may succeed later unchanged
- details: structured payload (offending lines, field names, ...)

Validation and authorization errors are raised before any write. State
machine and idempotency errors are raised after the row lock is taken, so
they always reflect the committed state.
"""
from __future__ import annotations


class PosError(Exception):
    code = "POS_ERROR"
    http_status = 400
    retryable = False

    def __init__(self, message: str, details: dict | list | None = None):
        super().__init__(message)
        self.message = message
        self.details = details if details is not None else {}

    def to_dict(self) -> dict:
        return {
            "error": self.message,
            "code": self.code,
            "details": self.details,
            "retryable": self.retryable,
        }


class Unauthorized(PosError):
    """No session, or no outlet context on the request."""
    code = "UNAUTHORIZED"
    http_status = 401


class Forbidden(PosError):
    """Caller is authenticated but not granted the outlet."""
    code = "FORBIDDEN"
    http_status = 403


class ValidationError(PosError):
    """Malformed input; caller must fix and resend."""
    code = "VALIDATION_ERROR"
    http_status = 400


class NotFound(PosError):
    code = "NOT_FOUND"
    http_status = 404


class InsufficientStock(PosError):
    """Business rule: at least one line asks for more than is on hand."""
    code = "INSUFFICIENT_STOCK"
    http_status = 400

    def __init__(self, lines: list[dict], message: str = "Insufficient stock"):
        super().__init__(message, details={"lines": lines})
        self.lines = lines


class InvalidTransition(PosError):
    """State machine violation; the client view is stale."""
    code = "INVALID_TRANSITION"
    http_status = 409


class AlreadyProcessed(PosError):
    """Idempotency guard tripped; the original effect already happened."""
    code = "ALREADY_PROCESSED"
    http_status = 409


class AlreadyFinalized(AlreadyProcessed):
    code = "ALREADY_FINALIZED"


class InternalError(PosError):
    """Storage or connectivity failure; retry with backoff."""
    code = "INTERNAL_ERROR"
    http_status = 503
    retryable = True
