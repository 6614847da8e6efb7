# ABOUTME: This file defines custom exception classes for the Concurrent Streams API.
# ABOUTME: Each exception carries the HTTP status and error code rendered into the error envelope.

from typing import Dict, List, Optional


class ApiError(Exception):
    """Base class for errors rendered as the standard error envelope."""

    status_code = 500
    code = "INTERNAL_ERROR"
    default_message = "An internal error occurred."

    def __init__(
        self,
        message: Optional[str] = None,
        details: Optional[List[Dict[str, str]]] = None,
        headers: Optional[Dict[str, str]] = None,
        code: Optional[str] = None,
    ):
        self.message = message or self.default_message
        self.details = details or []
        self.headers = headers or {}
        if code:
            self.code = code
        super().__init__(self.message)


class ValidationFailedError(ApiError):
    """Raised when request input fails validation.
    Maps to HTTP 400 with INVALID_JSON, MISSING_REQUIRED_FIELD,
    INVALID_FIELD_VALUE or INVALID_DATE_FORMAT.
    """
    status_code = 400
    code = "INVALID_FIELD_VALUE"
    default_message = "Request validation failed."


class MissingCredentialsError(ApiError):
    """Raised when no Authorization header is supplied.
    Maps to HTTP 401.
    """
    status_code = 401
    code = "MISSING_CREDENTIALS"
    default_message = "Authorization header with a Bearer token is required."


class InvalidTokenError(ApiError):
    """Raised when the bearer token is malformed or unknown.
    Maps to HTTP 401.
    """
    status_code = 401
    code = "INVALID_TOKEN"
    default_message = "The supplied access token is invalid."


class ExpiredTokenError(ApiError):
    """Raised when the bearer token is past its expiry.
    Maps to HTTP 401.
    """
    status_code = 401
    code = "EXPIRED_TOKEN"
    default_message = "The supplied access token has expired."


class InsufficientPermissionsError(ApiError):
    """Raised when the principal lacks the capability an endpoint needs.
    Maps to HTTP 403.
    """
    status_code = 403
    code = "INSUFFICIENT_PERMISSIONS"
    default_message = "The authenticated principal may not perform this operation."


class ResourceNotFoundError(ApiError):
    """Raised when the requested content or path does not exist.
    Maps to HTTP 404.
    """
    status_code = 404
    code = "RESOURCE_NOT_FOUND"
    default_message = "The requested resource was not found."


class RateLimitExceededError(ApiError):
    """Raised when a client exceeds its request quota.
    Maps to HTTP 429.
    """
    status_code = 429
    code = "RATE_LIMIT_EXCEEDED"
    default_message = "Rate limit exceeded."


class AggregationUnavailableError(ApiError):
    """Raised when the aggregation reader cannot supply a snapshot.
    Maps to HTTP 503. ``retry_after`` is only set when the upstream supplied one.
    """
    status_code = 503
    code = "SERVICE_UNAVAILABLE"
    default_message = "Viewership data is temporarily unavailable."

    def __init__(self, message: Optional[str] = None, retry_after: Optional[int] = None):
        headers = {"Retry-After": str(retry_after)} if retry_after is not None else None
        super().__init__(message, headers=headers)
        self.retry_after = retry_after
