"""
API Exception Classes

Exceptions that the error handler renders into the
{success: false, error, message} envelope.
"""

from .error_codes import ErrorCode, get_error_label, get_status_code


class APIException(Exception):
    """
    Base exception for API errors.

    The registered error handler catches these and returns the standard
    error envelope with the mapped status code.
    """

    def __init__(self, code: ErrorCode, message: str):
        self.code = code
        self.message = message
        self.status_code = get_status_code(code)
        self.label = get_error_label(code)
        super().__init__(message)


class ValidationError(APIException):
    """
    Invalid request data (bad organization id, out-of-range parameter).

    HTTP Status: 400
    """

    def __init__(self, message: str):
        super().__init__(code=ErrorCode.VALIDATION_ERROR, message=message)


class UnauthorizedError(APIException):
    """
    Missing or invalid processor credentials.

    HTTP Status: 401
    """

    def __init__(self, message: str = "Valid authentication required"):
        super().__init__(code=ErrorCode.UNAUTHORIZED, message=message)


class DatabaseError(APIException):
    """
    Store failure during a job.

    HTTP Status: 500
    """

    def __init__(self, message: str = "A database error occurred"):
        super().__init__(code=ErrorCode.DATABASE_ERROR, message=message)


class ProcessingError(APIException):
    """
    Any other failure while running a job.

    HTTP Status: 500
    """

    def __init__(self, message: str = "An internal error occurred"):
        super().__init__(code=ErrorCode.PROCESSING_FAILED, message=message)
