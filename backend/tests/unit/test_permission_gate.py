"""Unit tests for request-level permission enforcement."""

from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock
from uuid import uuid4

import pytest
from sqlalchemy import select
from sqlalchemy.dialects import postgresql

from lims.core.exceptions import PermissionDenied
from lims.core.security.gate import VISIBILITY_FILTERS, PermissionGate
from lims.core.security.permissions import (
    CAPABILITY_TABLE,
    Action,
    Capability,
    Resource,
)
from lims.db.models import Report, Sample, TestAssignment, UserRole


def _actor(role: UserRole) -> SimpleNamespace:
    return SimpleNamespace(id=uuid4(), role=role)


def _sql(statement) -> str:
    return str(statement.compile(dialect=postgresql.dialect()))


class TestCheck:
    def test_allowed_returns_decision(self) -> None:
        decision = PermissionGate().check(_actor(UserRole.ADMIN), Action.DELETE, Resource.SAMPLE)
        assert decision.allowed is True

    def test_denied_raises_with_context(self) -> None:
        with pytest.raises(PermissionDenied) as exc_info:
            PermissionGate().check(_actor(UserRole.CLIENT), Action.UPDATE, Resource.SAMPLE)

        exc = exc_info.value
        assert exc.role == "CLIENT"
        assert exc.action == "UPDATE"
        assert exc.resource == "SAMPLE"
        assert exc.reason == "role CLIENT cannot UPDATE SAMPLE"

    def test_record_context_denial_raises(self) -> None:
        with pytest.raises(PermissionDenied, match="unassigned sample"):
            PermissionGate().check(
                _actor(UserRole.ANALYST),
                Action.READ,
                Resource.SAMPLE,
                {"id": "s-1", "assigned_user_id": str(uuid4())},
            )


class TestGuard:
    @pytest.mark.asyncio
    async def test_operation_runs_when_allowed(self) -> None:
        operation = AsyncMock(return_value="done")
        result = await PermissionGate().guard(
            _actor(UserRole.LAB_MANAGER), Action.CREATE, Resource.SAMPLE, operation
        )
        assert result == "done"
        operation.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_operation_never_runs_when_denied(self) -> None:
        operation = AsyncMock()
        with pytest.raises(PermissionDenied):
            await PermissionGate().guard(
                _actor(UserRole.SALES_ACCOUNTING), Action.DELETE, Resource.SAMPLE, operation
            )
        operation.assert_not_awaited()


class TestVisibilityFilter:
    def test_unrestricted_role_gets_no_filter(self) -> None:
        gate = PermissionGate()
        assert gate.visibility_filter(_actor(UserRole.LAB_MANAGER), Resource.SAMPLE, Sample) is None

    def test_analyst_sees_assigned_samples(self) -> None:
        actor = _actor(UserRole.ANALYST)
        statement = PermissionGate().apply_visibility(
            select(Sample), actor, Resource.SAMPLE, Sample
        )
        assert "samples.assigned_user_id = " in _sql(statement)

    def test_client_sees_released_reports_of_own_samples(self) -> None:
        statement = PermissionGate().apply_visibility(
            select(Report), _actor(UserRole.CLIENT), Resource.REPORT, Report
        )
        sql = _sql(statement)
        assert "reports.status = " in sql
        assert "reports.sample_id IN (SELECT samples.id" in sql
        assert "samples.client_id = " in sql

    def test_client_tests_are_scoped_through_samples(self) -> None:
        statement = PermissionGate().apply_visibility(
            select(TestAssignment), _actor(UserRole.CLIENT), Resource.TEST, TestAssignment
        )
        assert "test_assignments.sample_id IN (SELECT samples.id" in _sql(statement)

    def test_denied_list_raises(self) -> None:
        with pytest.raises(PermissionDenied):
            PermissionGate().visibility_filter(
                _actor(UserRole.ANALYST), Resource.AUDIT_LOG, Sample
            )

    def test_every_context_read_has_a_filter(self) -> None:
        missing = {
            (resource, role)
            for (role, action, resource), capability in CAPABILITY_TABLE.items()
            if action is Action.READ
            and capability is Capability.CONTEXT
            and (resource, role) not in VISIBILITY_FILTERS
        }
        assert not missing


class TestRequireDependency:
    @pytest.mark.asyncio
    async def test_returns_actor_when_allowed(self, make_actor) -> None:
        actor = make_actor(UserRole.ADMIN)
        dependency = PermissionGate().require(Action.READ, Resource.AUDIT_LOG)
        assert await dependency(actor) is actor

    @pytest.mark.asyncio
    async def test_raises_when_denied(self, make_actor) -> None:
        dependency = PermissionGate().require(Action.READ, Resource.AUDIT_LOG)
        with pytest.raises(PermissionDenied):
            await dependency(make_actor(UserRole.CLIENT))
