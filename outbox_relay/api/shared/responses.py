"""
API Response Models

Wire shapes returned by the processor and maintenance endpoints.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ...core.outbox.models import MigrationResult, ProcessingResult, PruneResult


class ErrorResponse(BaseModel):
    """
    Error envelope.

    Response shape:
    {
        "success": false,
        "error": "ValidationError",
        "message": "Invalid organization id: 'abc'"
    }
    """

    success: bool = False
    error: str
    message: str


class ProcessorResponse(BaseModel):
    """
    Result of one processor invocation.

    Response shape:
    {
        "success": true,
        "processed": 12,
        "completed": true,
        "durationMs": 184,
        "organizationId": "..."
    }

    A skipped run (another processor holds the tenant lock) adds
    "skipped": true and "message": "Another processor active".
    """

    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    processed: int
    completed: bool
    duration_ms: int = Field(alias="durationMs")
    organization_id: str = Field(alias="organizationId")
    skipped: Optional[bool] = None
    message: Optional[str] = None

    @classmethod
    def from_result(cls, result: ProcessingResult) -> "ProcessorResponse":
        response = cls(
            processed=result.processed,
            completed=result.completed,
            duration_ms=result.duration_ms,
            organization_id=result.organization_id,
        )
        if result.skipped:
            response.skipped = True
            response.message = "Another processor active"
        return response

    def to_content(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class PruneResponse(BaseModel):
    success: bool = True
    deleted_count: int
    execution_time_ms: int
    oldest_remaining_delivered_event_age_hours: float

    @classmethod
    def from_result(cls, result: PruneResult) -> "PruneResponse":
        return cls(**result.to_dict())


class DeadLetterResponse(BaseModel):
    success: bool = True
    moved_count: int
    affected_tenants: List[str]

    @classmethod
    def from_result(cls, result: MigrationResult) -> "DeadLetterResponse":
        return cls(**result.to_dict())
