"""
Notification Processor Endpoint

POST /functions/v1/notification-processor?org_id=<uuid>

Runs one processor invocation for the organization and reports what it
delivered. Lock contention is a successful, skipped run.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse

from ....core.outbox.exceptions import InvalidTenantError, StoreError
from ....core.outbox.processor import BatchProcessor
from ...shared.exceptions import DatabaseError, ProcessingError, ValidationError
from ...shared.middleware.auth import require_processor_auth
from ...shared.responses import ErrorResponse, ProcessorResponse
from ...shared.security import sanitize_error_message

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/functions/v1", tags=["processor"])


def get_processor(request: Request) -> BatchProcessor:
    return request.app.state.processor


@router.post(
    "/notification-processor",
    response_model=ProcessorResponse,
    response_model_by_alias=True,
    responses={400: {"model": ErrorResponse}, 401: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
    dependencies=[Depends(require_processor_auth)],
)
async def run_notification_processor(
    org_id: Optional[str] = Query(None, description="Organization UUID"),
    processor: BatchProcessor = Depends(get_processor),
):
    """Deliver pending outbox events for one organization."""
    if not org_id:
        raise ValidationError("org_id query parameter is required")

    try:
        result = await processor.process(org_id)
    except InvalidTenantError as e:
        raise ValidationError(str(e)) from e
    except StoreError as e:
        raise DatabaseError(sanitize_error_message(e)) from e
    except Exception as e:
        logger.error(f"Notification processor error for org {org_id}: {e}", exc_info=True)
        raise ProcessingError(sanitize_error_message(e)) from e

    return JSONResponse(content=ProcessorResponse.from_result(result).to_content())
