"""
Outbox Exceptions

Errors raised by the delivery subsystem. Lock contention is not an error
and has no exception here; the processor reports it as a skipped run.
"""


class OutboxError(Exception):
    """Base class for outbox delivery errors."""


class InvalidTenantError(OutboxError):
    """The organization id is missing or not UUID-shaped."""

    def __init__(self, organization_id):
        self.organization_id = organization_id
        super().__init__(f"Invalid organization id: {organization_id!r}")


class TenantScopeError(OutboxError):
    """A store call named a tenant other than the active scope."""

    def __init__(self, requested: str, active: str):
        self.requested = requested
        self.active = active
        super().__init__(
            f"Organization {requested} is outside the active tenant scope {active}"
        )


class BroadcastError(OutboxError):
    """A publish attempt failed; the event stays pending for retry."""


class StoreError(OutboxError):
    """A store operation failed; the invocation is aborted."""


class EventTooLargeError(OutboxError):
    """event_data exceeds the serialized size cap."""

    def __init__(self, size: int, limit: int):
        self.size = size
        self.limit = limit
        super().__init__(f"event_data is {size} bytes, limit is {limit}")
