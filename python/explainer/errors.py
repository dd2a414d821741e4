"""API error definitions.

All API errors are defined here with their corresponding HTTP status codes.
Pipeline conditions (bad image, quota, analysis failure, ...) are ApiError
subclasses so route handlers never translate them by hand.
"""

from datetime import datetime
from enum import Enum
from typing import Any


class ApiErrorCode(str, Enum):
    """Standardized error codes for the API.

    Format: E_CATEGORY_NAME
    """

    # Authentication errors (401)
    E_UNAUTHENTICATED = "E_UNAUTHENTICATED"

    # Authorization errors (403)
    E_FORBIDDEN = "E_FORBIDDEN"

    # Not found errors (404)
    E_NOT_FOUND = "E_NOT_FOUND"
    E_EXPLANATION_NOT_FOUND = "E_EXPLANATION_NOT_FOUND"

    # Validation errors (400)
    E_INVALID_REQUEST = "E_INVALID_REQUEST"
    E_INVALID_IMAGE = "E_INVALID_IMAGE"
    E_IMAGE_CONSTRAINT = "E_IMAGE_CONSTRAINT"

    # Payload too large (413)
    E_IMAGE_TOO_LARGE = "E_IMAGE_TOO_LARGE"

    # Throttling (429)
    E_QUOTA_EXCEEDED = "E_QUOTA_EXCEEDED"
    E_RATE_LIMITED = "E_RATE_LIMITED"

    # Upstream failures
    E_UPLOAD_FAILED = "E_UPLOAD_FAILED"  # 502
    E_ANALYSIS_FAILED = "E_ANALYSIS_FAILED"  # 503
    E_SIGN_UPLOAD_FAILED = "E_SIGN_UPLOAD_FAILED"  # 502

    # Server errors
    E_AUTH_UNAVAILABLE = "E_AUTH_UNAVAILABLE"  # 503
    E_INTERNAL = "E_INTERNAL"  # 500


# Error code to HTTP status mapping
ERROR_CODE_TO_STATUS: dict[ApiErrorCode, int] = {
    ApiErrorCode.E_UNAUTHENTICATED: 401,
    ApiErrorCode.E_FORBIDDEN: 403,
    ApiErrorCode.E_NOT_FOUND: 404,
    ApiErrorCode.E_EXPLANATION_NOT_FOUND: 404,
    ApiErrorCode.E_INVALID_REQUEST: 400,
    ApiErrorCode.E_INVALID_IMAGE: 400,
    ApiErrorCode.E_IMAGE_CONSTRAINT: 400,
    ApiErrorCode.E_IMAGE_TOO_LARGE: 413,
    ApiErrorCode.E_QUOTA_EXCEEDED: 429,
    ApiErrorCode.E_RATE_LIMITED: 429,
    ApiErrorCode.E_UPLOAD_FAILED: 502,
    ApiErrorCode.E_ANALYSIS_FAILED: 503,
    ApiErrorCode.E_SIGN_UPLOAD_FAILED: 502,
    ApiErrorCode.E_AUTH_UNAVAILABLE: 503,
    ApiErrorCode.E_INTERNAL: 500,
}


class ApiError(Exception):
    """Base exception for API errors.

    Attributes:
        code: The error code enum value
        message: Human-readable error message
        status_code: HTTP status code (derived from code)
        details: Extra machine-readable fields merged into the error envelope
    """

    def __init__(
        self,
        code: ApiErrorCode,
        message: str,
        details: dict[str, Any] | None = None,
    ):
        self.code = code
        self.message = message
        self.status_code = ERROR_CODE_TO_STATUS.get(code, 500)
        self.details = details or {}
        super().__init__(message)


class NotFoundError(ApiError):
    """Resource not found error."""

    def __init__(self, code: ApiErrorCode = ApiErrorCode.E_NOT_FOUND, message: str = "Not found"):
        super().__init__(code, message)


class InvalidRequestError(ApiError):
    """Invalid request error."""

    def __init__(
        self, code: ApiErrorCode = ApiErrorCode.E_INVALID_REQUEST, message: str = "Invalid request"
    ):
        super().__init__(code, message)


class InvalidImage(ApiError):
    """Image bytes could not be decoded or are not a supported format."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(ApiErrorCode.E_INVALID_IMAGE, reason)


class ImageConstraintViolation(ApiError):
    """Image decoded fine but its size or dimensions are out of bounds."""

    def __init__(self, reason: str, code: ApiErrorCode = ApiErrorCode.E_IMAGE_CONSTRAINT):
        self.reason = reason
        super().__init__(code, reason)


class UploadFailed(ApiError):
    """Object storage rejected an upload."""

    def __init__(self, message: str = "Image upload failed"):
        super().__init__(ApiErrorCode.E_UPLOAD_FAILED, message)


class QuotaExceeded(ApiError):
    """Daily explanation quota for the user's tier is used up.

    Carries the reset time so clients can tell the user when to come back.
    """

    def __init__(self, *, limit: int, tier: str, reset_at: datetime | None):
        self.limit = limit
        self.tier = tier
        self.reset_at = reset_at
        super().__init__(
            ApiErrorCode.E_QUOTA_EXCEEDED,
            f"Daily limit of {limit} explanations reached",
            details={
                "limit": limit,
                "tier": tier,
                "reset_at": reset_at.isoformat() if reset_at else None,
            },
        )


class AnalysisFailed(ApiError):
    """The vision model could not produce an analysis. Safe to retry."""

    def __init__(self, message: str = "Analysis failed, please try again"):
        super().__init__(ApiErrorCode.E_ANALYSIS_FAILED, message)


class ExplanationNotFound(NotFoundError):
    """Explanation is missing, soft-deleted, or owned by someone else."""

    def __init__(self, message: str = "Explanation not found"):
        super().__init__(ApiErrorCode.E_EXPLANATION_NOT_FOUND, message)
