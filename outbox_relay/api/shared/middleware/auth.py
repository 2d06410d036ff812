"""
Processor Authentication

FastAPI dependency guarding the job endpoints. Callers present either the
shared secret in X-Processor-Secret or a bearer token from the configured
allow-list.
"""

import logging

from fastapi import Request

from ..dependencies import get_app_settings
from ..exceptions import UnauthorizedError
from ..security import SECRET_HEADER, credentials_valid

logger = logging.getLogger(__name__)


async def require_processor_auth(request: Request) -> None:
    """
    Reject the request unless it carries valid processor credentials.

    Raises:
        UnauthorizedError: no or wrong credentials
    """
    settings = get_app_settings(request)
    if not credentials_valid(
        request.headers.get(SECRET_HEADER),
        request.headers.get("Authorization"),
        settings.processor_secret,
        settings.bearer_tokens,
    ):
        logger.warning(f"Unauthorized access attempt on {request.url.path}")
        raise UnauthorizedError()
