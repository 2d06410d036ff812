"""
Tests for tenant scoping.
"""

import asyncio
import logging

import pytest

from outbox_relay.core.outbox.exceptions import TenantScopeError
from outbox_relay.core.outbox.scope import (
    TenantLogFilter,
    check_tenant,
    current_tenant,
    tenant_scope,
)

from tests.helpers import ORG_A, ORG_B


class TestTenantScope:

    def test_no_scope_allows_any_tenant(self):
        assert current_tenant() is None
        assert check_tenant(ORG_B) == ORG_B

    def test_other_tenant_refused_inside_scope(self):
        with tenant_scope(ORG_A):
            assert check_tenant(ORG_A) == ORG_A
            assert check_tenant(ORG_A.upper()) == ORG_A.upper()
            with pytest.raises(TenantScopeError):
                check_tenant(ORG_B)

        assert current_tenant() is None

    def test_scope_reset_after_error(self):
        with pytest.raises(RuntimeError):
            with tenant_scope(ORG_A):
                raise RuntimeError("boom")
        assert current_tenant() is None

    @pytest.mark.asyncio
    async def test_concurrent_tasks_keep_own_scope(self):
        async def worker(org):
            with tenant_scope(org):
                await asyncio.sleep(0)
                return current_tenant()

        results = await asyncio.gather(worker(ORG_A), worker(ORG_B))

        assert results == [ORG_A, ORG_B]


class TestTenantLogFilter:

    def _record(self, **extra) -> logging.LogRecord:
        record = logging.LogRecord("outbox", logging.INFO, __file__, 1, "delivered", (), None)
        record.__dict__.update(extra)
        return record

    def test_stamps_active_tenant(self):
        record = self._record()
        with tenant_scope(ORG_A):
            assert TenantLogFilter().filter(record)
        assert record.organization_id == ORG_A

    def test_leaves_records_outside_scope(self):
        record = self._record()
        TenantLogFilter().filter(record)
        assert not hasattr(record, "organization_id")

    def test_explicit_organization_wins(self):
        record = self._record(organization_id=ORG_B)
        with tenant_scope(ORG_A):
            TenantLogFilter().filter(record)
        assert record.organization_id == ORG_B
