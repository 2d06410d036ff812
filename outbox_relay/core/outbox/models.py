"""
Outbox Models

Rows of the outbox tables and the results reported by each job.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _utcnow() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(timezone.utc)


def _as_text(value: Any) -> Any:
    # asyncpg returns uuid columns as UUID objects
    if isinstance(value, UUID):
        return str(value)
    return value


def _as_json(value: Any) -> Any:
    # jsonb comes back from asyncpg as text, as does SQLite TEXT
    if isinstance(value, (str, bytes)):
        return json.loads(value) if value else {}
    return value if value is not None else {}


class OutboxEvent(BaseModel):
    """A row in outbox_event."""

    id: str
    organization_id: str
    event_type: str
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    event_data: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_utcnow)
    delivered_at: Optional[datetime] = None
    delivery_attempts: int = 0
    last_error: Optional[str] = None

    @field_validator("id", "organization_id", "entity_id", mode="before")
    @classmethod
    def _uuid_text(cls, value):
        return _as_text(value)

    @field_validator("event_data", mode="before")
    @classmethod
    def _event_data(cls, value):
        return _as_json(value)

    @property
    def is_delivered(self) -> bool:
        return self.delivered_at is not None


class ProcessorCursor(BaseModel):
    """High-water mark for one (processor, organization) pair."""

    processor_name: str
    organization_id: str
    last_processed_event_id: str
    last_processed_at: datetime
    updated_at: datetime

    @field_validator("organization_id", "last_processed_event_id", mode="before")
    @classmethod
    def _uuid_text(cls, value):
        return _as_text(value)


class DeadLetterEntry(BaseModel):
    """An event that exhausted its delivery attempts."""

    original_event_id: str
    organization_id: str
    event_type: str
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    event_data: Dict[str, Any] = Field(default_factory=dict)
    delivery_attempts: int
    last_error: str
    failed_at: datetime = Field(default_factory=_utcnow)

    @field_validator("original_event_id", "organization_id", "entity_id", mode="before")
    @classmethod
    def _uuid_text(cls, value):
        return _as_text(value)

    @field_validator("event_data", mode="before")
    @classmethod
    def _event_data(cls, value):
        return _as_json(value)


class PublicEventPayload(BaseModel):
    """
    The only shape of an event that leaves the service.

    event_data and last_error are never part of it; unknown fields are
    rejected rather than passed through.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    id: str
    event_type: str
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None
    created_at: datetime


@dataclass
class ProcessingResult:
    """Outcome of one processor invocation for one tenant."""
    organization_id: str
    processed: int = 0
    completed: bool = False
    skipped: bool = False
    duration_ms: int = 0
    batches: int = 0
    failed_event_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "organization_id": self.organization_id,
            "processed": self.processed,
            "completed": self.completed,
            "skipped": self.skipped,
            "duration_ms": self.duration_ms,
            "batches": self.batches,
            "failed_event_id": self.failed_event_id,
        }


@dataclass
class PruneResult:
    """Outcome of one pruner invocation."""
    deleted_count: int
    execution_time_ms: int
    oldest_remaining_delivered_event_age_hours: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "deleted_count": self.deleted_count,
            "execution_time_ms": self.execution_time_ms,
            "oldest_remaining_delivered_event_age_hours": self.oldest_remaining_delivered_event_age_hours,
        }


@dataclass
class MigrationResult:
    """Outcome of one dead-letter migration."""
    moved_count: int = 0
    affected_tenants: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "moved_count": self.moved_count,
            "affected_tenants": list(self.affected_tenants),
        }
