"""
Portal error taxonomy. Every error carries the HTTP status it is surfaced with.
"""
from typing import Any, Optional


class PortalError(Exception):
    status_code = 500
    default_message = "An internal error occurred. Please try again later."

    def __init__(self, message: Optional[str] = None, details: Any = None):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)


class ValidationError(PortalError):
    """Missing or malformed required field"""
    status_code = 400
    default_message = "Invalid request data"


class InvalidFormat(ValidationError):
    default_message = "Only JPEG, PNG, GIF and HEIC/HEIF images are allowed"


class PayloadTooLarge(ValidationError):
    default_message = "Image exceeds the maximum upload size"


class Forbidden(PortalError):
    status_code = 403
    default_message = "Access denied"


class NotFound(PortalError):
    status_code = 404
    default_message = "Not found"


class CreateFailed(PortalError):
    status_code = 500
    default_message = "Goods receipt could not be created"


class StorageInconsistency(PortalError):
    """Optional storage capability (e.g. the photo table) is not available"""
    status_code = 503
    default_message = "Photo storage is not available"


class UpstreamQueryFailure(PortalError):
    status_code = 500
    default_message = "Database query failed"


class QueryTimeout(UpstreamQueryFailure):
    """Retryable: the pool or the statement ran out of time"""
    status_code = 503
    default_message = "Database is busy, please retry"
    retry_after_seconds = 30


class Conflict(PortalError):
    status_code = 409
    default_message = "The resource was changed concurrently, please retry"
