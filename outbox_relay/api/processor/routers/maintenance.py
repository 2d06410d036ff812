"""
Maintenance Endpoints

Independently schedulable jobs that run beside the processor on disjoint
rows: pruning touches delivered events only, dead-lettering undelivered
exhausted ones only.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, Request

from ....core.config import OutboxSettings
from ....core.outbox.dlq import DLQMigrator
from ....core.outbox.exceptions import StoreError
from ....core.outbox.monitoring import OutboxMonitor
from ....core.outbox.pruner import OutboxPruner
from ...shared.dependencies import get_app_settings
from ...shared.exceptions import DatabaseError, ProcessingError
from ...shared.middleware.auth import require_processor_auth
from ...shared.responses import DeadLetterResponse, ErrorResponse, PruneResponse
from ...shared.security import sanitize_error_message

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/functions/v1/outbox-maintenance",
    tags=["maintenance"],
    dependencies=[Depends(require_processor_auth)],
    responses={400: {"model": ErrorResponse}, 401: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)


def get_pruner(request: Request) -> OutboxPruner:
    return request.app.state.pruner


def get_migrator(request: Request) -> DLQMigrator:
    return request.app.state.migrator


def get_monitor(request: Request) -> OutboxMonitor:
    return request.app.state.monitor


async def _run_job(name: str, job):
    try:
        return await job
    except StoreError as e:
        raise DatabaseError(sanitize_error_message(e)) from e
    except Exception as e:
        logger.error(f"Maintenance job {name} failed: {e}", exc_info=True)
        raise ProcessingError(sanitize_error_message(e)) from e


@router.post("/prune", response_model=PruneResponse)
async def prune_delivered_events(
    retention_hours: Optional[int] = Query(None, ge=0),
    max_batch_size: Optional[int] = Query(None, ge=1),
    pruner: OutboxPruner = Depends(get_pruner),
    settings: OutboxSettings = Depends(get_app_settings),
) -> PruneResponse:
    """Delete delivered events older than the retention window."""
    result = await _run_job("prune", pruner.prune(
        retention_hours=settings.retention_hours if retention_hours is None else retention_hours,
        max_batch_size=max_batch_size or settings.prune_max_batch,
    ))
    return PruneResponse.from_result(result)


@router.post("/dead-letter", response_model=DeadLetterResponse)
async def migrate_dead_letters(
    max_delivery_attempts: Optional[int] = Query(None, ge=1),
    migrator: DLQMigrator = Depends(get_migrator),
    settings: OutboxSettings = Depends(get_app_settings),
) -> DeadLetterResponse:
    """Move exhausted undelivered events to the dead-letter store."""
    attempts = max_delivery_attempts or settings.max_attempts
    result = await _run_job("dead-letter", migrator.migrate(max_delivery_attempts=attempts))
    return DeadLetterResponse.from_result(result)


@router.get("/health")
async def outbox_health(monitor: OutboxMonitor = Depends(get_monitor)) -> Dict[str, Any]:
    """Outbox backlog, cursor lag and dead-letter statistics."""
    snapshot = await _run_job("health", monitor.snapshot())
    return {"success": True, **snapshot}
