"""
Domain error taxonomy for the request lifecycle core.

Every error raised by the lifecycle services is a RequestDeskError subclass
carrying a stable error code and the HTTP status it maps to. The API layer
converts them to a uniform JSON body with a single exception handler.
"""

from typing import Any, Dict, Optional


class RequestDeskError(Exception):
    """Base class for all lifecycle errors."""

    code: str = "INTERNAL_ERROR"
    status_code: int = 500
    default_detail: str = "Internal error"

    def __init__(self, detail: Optional[str] = None):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.code, "detail": self.detail}


class ValidationFailedError(RequestDeskError):
    """Malformed input or an illegal transition edge."""

    code = "VALIDATION_ERROR"
    status_code = 422
    default_detail = "Invalid request"


class AuthorizationDeniedError(RequestDeskError):
    """The actor lacks the capability for the operation."""

    code = "AUTHORIZATION_ERROR"
    status_code = 403
    default_detail = "Insufficient permissions"


class NotFoundError(RequestDeskError):
    """Unknown id, or an id outside the caller's visibility scope.

    Both cases share one message so responses cannot reveal existence.
    """

    code = "NOT_FOUND"
    status_code = 404
    default_detail = "Request not found"

    def __init__(self, detail: Optional[str] = None):
        super().__init__(detail)


class ConflictError(RequestDeskError):
    """Optimistic-concurrency precondition failed.

    `current` holds the persisted value the caller should re-read before
    retrying with an updated expected token.
    """

    code = "CONFLICT"
    status_code = 409
    default_detail = "Request was modified by someone else"

    def __init__(
        self,
        detail: Optional[str] = None,
        field: Optional[str] = None,
        current: Any = None,
    ):
        super().__init__(detail)
        self.field = field
        self.current = current

    def to_dict(self) -> Dict[str, Any]:
        body = super().to_dict()
        if self.field:
            body["field"] = self.field
            current = getattr(self.current, "value", self.current)
            body["current"] = None if current is None else str(current)
        return body


class RateLimitedError(RequestDeskError):
    """Write quota for the resource class exceeded."""

    code = "RATE_LIMITED"
    status_code = 429
    default_detail = "Too many writes, try again later"

    def __init__(self, detail: Optional[str] = None, retry_after: Optional[int] = None):
        super().__init__(detail)
        self.retry_after = retry_after
