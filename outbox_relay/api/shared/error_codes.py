"""
Standard Error Codes

Error codes with their HTTP status and the short label used in the
`error` field of the response envelope.
"""

from enum import Enum


class ErrorCode(str, Enum):
    """API error codes."""

    # Client errors (4xx)
    VALIDATION_ERROR = "VALIDATION_ERROR"
    UNAUTHORIZED = "UNAUTHORIZED"

    # Server errors (5xx)
    PROCESSING_FAILED = "PROCESSING_FAILED"
    DATABASE_ERROR = "DATABASE_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


# HTTP status code mapping
ERROR_STATUS_CODES = {
    ErrorCode.VALIDATION_ERROR: 400,
    ErrorCode.UNAUTHORIZED: 401,
    ErrorCode.PROCESSING_FAILED: 500,
    ErrorCode.DATABASE_ERROR: 500,
    ErrorCode.INTERNAL_ERROR: 500,
}

# Envelope labels callers match on
ERROR_LABELS = {
    ErrorCode.VALIDATION_ERROR: "ValidationError",
    ErrorCode.UNAUTHORIZED: "Unauthorized",
    ErrorCode.PROCESSING_FAILED: "Processing failed",
    ErrorCode.DATABASE_ERROR: "Processing failed",
    ErrorCode.INTERNAL_ERROR: "Processing failed",
}


def get_status_code(error_code: ErrorCode) -> int:
    """
    Get HTTP status code for an error code.

    Args:
        error_code: The error code

    Returns:
        HTTP status code (defaults to 500 if not mapped)
    """
    return ERROR_STATUS_CODES.get(error_code, 500)


def get_error_label(error_code: ErrorCode) -> str:
    return ERROR_LABELS.get(error_code, "Processing failed")
