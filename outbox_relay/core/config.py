"""
Outbox Relay Settings

Runtime knobs for the processor and the maintenance jobs, read from the
environment. Every field has a default suitable for a single-instance
deployment.
"""

import os
from dataclasses import dataclass, field
from typing import List, Optional


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() == "true"


def _env_list(name: str) -> List[str]:
    raw = os.getenv(name, "")
    return [item.strip() for item in raw.split(",") if item.strip()]


@dataclass
class OutboxSettings:
    """Settings for the outbox relay."""

    processor_name: str = "notification-processor"
    batch_size: int = 100
    max_attempts: int = 5
    max_events_per_minute: int = 1000
    invocation_timeout_seconds: float = 30.0
    timeout_buffer_seconds: float = 5.0

    lock_backend: str = "lease"  # lease | advisory | memory
    lock_ttl_seconds: int = 60

    rate_limit_backend: str = "memory"  # memory | redis
    redis_url: str = "redis://localhost:6379/0"

    broadcast_backend: str = "realtime"  # realtime | memory
    realtime_url: str = "http://localhost:54321/realtime/v1"
    realtime_api_key: Optional[str] = None
    broadcast_timeout_seconds: float = 5.0

    retention_hours: int = 48
    prune_max_batch: int = 1000
    prune_chunk_size: int = 250
    prune_pause_seconds: float = 0.05
    dlq_grace_minutes: int = 5

    notify_enabled: bool = False

    processor_secret: Optional[str] = None
    bearer_tokens: List[str] = field(default_factory=list)

    @classmethod
    def from_env(cls) -> "OutboxSettings":
        """Build settings from environment variables."""
        return cls(
            processor_name=os.getenv("OUTBOX_PROCESSOR_NAME", "notification-processor"),
            batch_size=int(os.getenv("OUTBOX_BATCH_SIZE", "100")),
            max_attempts=int(os.getenv("OUTBOX_MAX_ATTEMPTS", "5")),
            max_events_per_minute=int(os.getenv("OUTBOX_MAX_EVENTS_PER_MINUTE", "1000")),
            invocation_timeout_seconds=float(os.getenv("OUTBOX_INVOCATION_TIMEOUT_SECONDS", "30")),
            timeout_buffer_seconds=float(os.getenv("OUTBOX_TIMEOUT_BUFFER_SECONDS", "5")),
            lock_backend=os.getenv("OUTBOX_LOCK_BACKEND", "lease").lower(),
            lock_ttl_seconds=int(os.getenv("OUTBOX_LOCK_TTL_SECONDS", "60")),
            rate_limit_backend=os.getenv("OUTBOX_RATE_LIMIT_BACKEND", "memory").lower(),
            redis_url=os.getenv("REDIS_URL", "redis://localhost:6379/0"),
            broadcast_backend=os.getenv("OUTBOX_BROADCAST_BACKEND", "realtime").lower(),
            realtime_url=os.getenv("REALTIME_URL", "http://localhost:54321/realtime/v1"),
            realtime_api_key=os.getenv("REALTIME_API_KEY"),
            broadcast_timeout_seconds=float(os.getenv("OUTBOX_BROADCAST_TIMEOUT_SECONDS", "5")),
            retention_hours=int(os.getenv("OUTBOX_RETENTION_HOURS", "48")),
            prune_max_batch=int(os.getenv("OUTBOX_PRUNE_MAX_BATCH", "1000")),
            prune_chunk_size=int(os.getenv("OUTBOX_PRUNE_CHUNK_SIZE", "250")),
            prune_pause_seconds=float(os.getenv("OUTBOX_PRUNE_PAUSE_SECONDS", "0.05")),
            dlq_grace_minutes=int(os.getenv("OUTBOX_DLQ_GRACE_MINUTES", "5")),
            notify_enabled=_env_bool("OUTBOX_NOTIFY_ENABLED"),
            processor_secret=os.getenv("NOTIFICATION_PROCESSOR_SECRET"),
            bearer_tokens=_env_list("NOTIFICATION_PROCESSOR_TOKENS"),
        )

    @property
    def processing_window_seconds(self) -> float:
        """Time the processor may spend before it must stop pulling batches."""
        return max(0.0, self.invocation_timeout_seconds - self.timeout_buffer_seconds)


_settings: Optional[OutboxSettings] = None


def get_settings() -> OutboxSettings:
    """Get the process-wide settings, loading them on first use."""
    global _settings
    if _settings is None:
        _settings = OutboxSettings.from_env()
    return _settings


def reset_settings() -> None:
    """Drop cached settings (for testing)."""
    global _settings
    _settings = None
