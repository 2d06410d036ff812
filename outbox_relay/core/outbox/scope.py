"""
Tenant Scope

The processor runs each invocation inside tenant_scope(org_id). Stores call
check_tenant() before touching rows, so a query for a different tenant
fails loudly instead of leaking another organization's events.
"""

import logging
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, Optional

from .exceptions import TenantScopeError

_current_tenant: ContextVar[Optional[str]] = ContextVar("outbox_tenant", default=None)


def current_tenant() -> Optional[str]:
    """Organization id of the active scope, if any."""
    return _current_tenant.get()


@contextmanager
def tenant_scope(organization_id: str) -> Iterator[str]:
    """Bind the current task to one organization."""
    token = _current_tenant.set(organization_id)
    try:
        yield organization_id
    finally:
        _current_tenant.reset(token)


def check_tenant(organization_id: str) -> str:
    """
    Refuse an organization id that differs from the active scope.

    Outside any scope (writers, maintenance jobs) every id is accepted.
    """
    active = _current_tenant.get()
    if active is not None and str(organization_id).lower() != active:
        raise TenantScopeError(str(organization_id), active)
    return organization_id


class TenantLogFilter(logging.Filter):
    """Stamps records logged inside a tenant scope with organization_id."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not getattr(record, "organization_id", None):
            tenant = _current_tenant.get()
            if tenant is not None:
                record.organization_id = tenant
        return True
