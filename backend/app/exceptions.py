"""
Billow Backend — Custom Exception Hierarchy
============================================

What:  Application-specific exceptions for every failure the API can report.
Why:   Services raise typed errors; one set of global handlers (main.py)
       turns them into JSON responses with the right status code.
How:   Each exception carries a user-safe message and an optional context
       dict that is logged but never returned verbatim for server errors.

Exception Hierarchy:
    BillowError (base)
    ├── ValidationError            → 400 Bad Request
    ├── UnauthorizedError          → 401 Unauthorized
    ├── NotFoundError              → 404 Not Found
    ├── AmbiguousMatchError        → 409 Conflict
    ├── FileStorageError           → 500 Internal Server Error
    ├── DatabaseError              → 500 Internal Server Error
    ├── UpstreamUnavailableError   → 503 Service Unavailable
    └── CircuitBreakerOpenError    → never reaches HTTP (cache degrades)
"""

from typing import Any, Dict, Optional


class BillowError(Exception):
    """
    Base exception for all Billow application errors.

    Attributes:
        message:  User-facing error description (safe to return in API response)
        context:  Additional debug info (logged, only selectively returned)
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class ValidationError(BillowError):
    """
    Raised when client input fails validation.

    When:    Missing listing fields, missing image uploads, unknown update keys,
             bad file type or size, empty street query.
    HTTP:    400 Bad Request
    """

    def __init__(
        self,
        message: str = "Validation failed",
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if field:
            ctx["field"] = field
        super().__init__(message=message, context=ctx)
        self.field = field


class UnauthorizedError(BillowError):
    """Missing, malformed, expired or forged bearer token. HTTP 401."""

    def __init__(
        self,
        message: str = "Auth failed",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class NotFoundError(BillowError):
    """
    Raised when a requested resource does not exist.

    When:    GET /homes/{id} or DELETE /homes/{id} with an unknown id,
             or a missing uploaded file.
    HTTP:    404 Not Found

    Search with zero hits is NOT this error: the store returns an empty list
    and the route decides how to present it.
    """

    def __init__(
        self,
        resource: str = "resource",
        resource_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = f"The requested {resource} was not found"
        if resource_id:
            message = f"{resource} with ID '{resource_id}' was not found"
        ctx = context or {}
        ctx["resource"] = resource
        if resource_id:
            ctx["resource_id"] = resource_id
        super().__init__(message=message, context=ctx)


class AmbiguousMatchError(BillowError):
    """
    Raised when a match-based mutation runs under the `unique` policy and
    more than one home satisfies the filter. Nothing is modified.

    HTTP:    409 Conflict
    """

    def __init__(
        self,
        match: Dict[str, Any],
        match_count: int,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = (
            f"{match_count} homes match {match}; refine the query so exactly one matches."
        )
        ctx = context or {}
        ctx["match_count"] = match_count
        super().__init__(message=message, context=ctx)
        self.match_count = match_count


class FileStorageError(BillowError):
    """
    Raised when file system operations fail.

    When:    Disk full, permission denied, directory not writable, I/O error.
    HTTP:    500 Internal Server Error
    """

    def __init__(
        self,
        message: str = "File storage operation failed",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class DatabaseError(BillowError):
    """
    Raised when a database operation fails for a non-transient reason.

    HTTP:    500 Internal Server Error

    Security Note:
        The message returned to the client is always generic. SQL, constraint
        names and driver messages only go to the server log.
    """

    def __init__(
        self,
        message: str = "A database error occurred. Please try again later.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class UpstreamUnavailableError(BillowError):
    """
    Raised when the database is unreachable or a statement timed out.

    HTTP:    503 Service Unavailable, with Retry-After.
    The request is not retried server-side; the client may retry.
    """

    def __init__(
        self,
        message: str = "The listing database is temporarily unavailable. Please retry shortly.",
        retry_after: int = 5,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx["retry_after"] = retry_after
        super().__init__(message=message, context=ctx)
        self.retry_after = retry_after


class CircuitBreakerOpenError(BillowError):
    """
    Raised when the cache circuit breaker is OPEN.

    How circuit breaker works:
        CLOSED (normal) → failures increment counter
        → After N failures → OPEN (skip Redis for M seconds)
        → After M seconds → HALF-OPEN (allow one probe call)
        → Probe succeeds → CLOSED; probe fails → OPEN again
    """

    def __init__(
        self,
        recovery_time: int = 30,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = (
            f"Cache is bypassed after repeated failures; "
            f"next probe in approximately {recovery_time} seconds."
        )
        ctx = context or {}
        ctx["recovery_time"] = recovery_time
        super().__init__(message=message, context=ctx)
        self.recovery_time = recovery_time
