"""
Global Error Handler

Renders exceptions into the {success: false, error, message} envelope.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from ....core.outbox.exceptions import InvalidTenantError, StoreError
from ..error_codes import ErrorCode, get_error_label
from ..exceptions import APIException
from ..responses import ErrorResponse
from ..security import sanitize_error_message

logger = logging.getLogger(__name__)


def _envelope(status_code: int, label: str, message: str) -> JSONResponse:
    body = ErrorResponse(error=label, message=message)
    return JSONResponse(status_code=status_code, content=body.model_dump())


def register_error_handlers(app: FastAPI):
    """
    Register all error handlers on the FastAPI app.

    This function sets up exception handlers for:
    - APIException (explicit API errors)
    - InvalidTenantError and RequestValidationError (400)
    - StoreError (500, database failure)
    - Generic Exception (catch-all for unexpected errors)
    """

    @app.exception_handler(APIException)
    async def api_exception_handler(request: Request, exc: APIException):
        """Handle custom API exceptions."""
        logger.warning(
            f"API Error: {exc.code.value} - {exc.message}",
            extra={"error_code": exc.code.value, "path": request.url.path}
        )
        return _envelope(exc.status_code, exc.label, exc.message)

    @app.exception_handler(InvalidTenantError)
    async def invalid_tenant_handler(request: Request, exc: InvalidTenantError):
        logger.warning(f"Invalid organization id on {request.url.path}")
        return _envelope(400, get_error_label(ErrorCode.VALIDATION_ERROR), str(exc))

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Handle FastAPI validation errors."""
        problems = []
        for error in exc.errors():
            field = ".".join(str(loc) for loc in error["loc"])
            problems.append(f"{field}: {error['msg']}")

        logger.warning(
            f"Validation Error: {len(problems)} field(s)",
            extra={"path": request.url.path, "errors": problems}
        )
        return _envelope(
            400,
            get_error_label(ErrorCode.VALIDATION_ERROR),
            "; ".join(problems) or "Request validation failed",
        )

    @app.exception_handler(StoreError)
    async def store_error_handler(request: Request, exc: StoreError):
        logger.error(
            f"Store failure on {request.url.path}: {exc}",
            extra={"path": request.url.path}
        )
        return _envelope(
            500, get_error_label(ErrorCode.DATABASE_ERROR), sanitize_error_message(exc)
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        """Handle unexpected exceptions."""
        logger.error(
            f"Unhandled Exception: {type(exc).__name__}: {exc}",
            exc_info=exc,
            extra={"path": request.url.path}
        )
        # Don't expose internal details in production
        return _envelope(
            500, get_error_label(ErrorCode.INTERNAL_ERROR), sanitize_error_message(exc)
        )
