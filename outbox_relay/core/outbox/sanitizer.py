"""
Event Sanitizer

Projects an outbox row onto the public allow-list before it is broadcast.
"""

from .models import OutboxEvent, PublicEventPayload


def sanitize_event(event: OutboxEvent) -> PublicEventPayload:
    """Keep id, event_type, entity_type, entity_id and created_at; drop the rest."""
    return PublicEventPayload(
        id=event.id,
        event_type=event.event_type,
        entity_type=event.entity_type,
        entity_id=event.entity_id,
        created_at=event.created_at,
    )
