"""
Event Identifiers

Outbox ids are time-ordered UUIDs (version 7 layout): a 48-bit Unix
millisecond timestamp followed by random bits. The canonical lowercase
string of a later id compares greater than an earlier one, which is what
the per-tenant cursor relies on.
"""

import re
import secrets
import threading
import time
from typing import Optional
from uuid import UUID

from .exceptions import InvalidTenantError

NIL_EVENT_ID = "00000000-0000-0000-0000-000000000000"

_UUID_SHAPE = re.compile(
    r"^[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}$"
)

_lock = threading.Lock()
_last_ms = 0
_seq = 0


def new_event_id(now_ms: Optional[int] = None) -> str:
    """
    Generate a time-ordered event id.

    Within one millisecond a 12-bit sequence keeps ids strictly increasing
    for this process; when it wraps the timestamp is bumped by one.
    """
    global _last_ms, _seq

    with _lock:
        ms = int(time.time() * 1000) if now_ms is None else now_ms
        if ms <= _last_ms:
            _seq += 1
            if _seq > 0xFFF:
                _last_ms += 1
                _seq = 0
            ms = _last_ms
        else:
            _last_ms = ms
            _seq = 0
        seq = _seq

    value = (ms & 0xFFFFFFFFFFFF) << 80
    value |= 0x7 << 76
    value |= seq << 64
    value |= 0b10 << 62
    value |= secrets.randbits(62)
    return str(UUID(int=value))


def event_id_timestamp_ms(event_id: str) -> int:
    """Millisecond timestamp embedded in a time-ordered id."""
    return UUID(str(event_id)).int >> 80


def is_uuid_shaped(value) -> bool:
    return isinstance(value, str) and bool(_UUID_SHAPE.match(value))


def validate_organization_id(value) -> str:
    """
    Check an organization id and return its canonical lowercase form.

    Raises:
        InvalidTenantError: value is empty or not UUID-shaped
    """
    if isinstance(value, UUID):
        return str(value)
    if not is_uuid_shaped(value):
        raise InvalidTenantError(value)
    return value.lower()
