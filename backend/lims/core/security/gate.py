"""
Request-level permission enforcement.

``PermissionGate`` runs the coarse capability check before a governed
operation touches storage, re-checks with record context once a record is
loaded, and narrows list queries with SQL predicates mirroring the context
rules instead of fetching everything and rejecting rows one by one.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping
from typing import Any, TypeVar

from sqlalchemy import Select, and_, false, select
from sqlalchemy.sql.elements import ColumnElement

from lims.core.exceptions import PermissionDenied
from lims.core.logging import get_logger
from lims.core.security.actor import ActorContext, CurrentActor
from lims.core.security.permissions import (
    Action,
    Capability,
    PermissionDecision,
    PermissionEngine,
    Principal,
    Resource,
)
from lims.db.models import ReportStatus, Sample, UserRole

logger = get_logger(__name__)

T = TypeVar("T")

VisibilityFilter = Callable[[Principal, Any], ColumnElement[bool]]

_VISIBILITY_FILTERS: dict[tuple[Resource, UserRole], VisibilityFilter] = {}


def visibility_filter(
    resource: Resource, role: UserRole
) -> Callable[[VisibilityFilter], VisibilityFilter]:
    """Register the row-level READ predicate for a (resource, role) pair."""

    def decorator(build: VisibilityFilter) -> VisibilityFilter:
        _VISIBILITY_FILTERS[(resource, role)] = build
        return build

    return decorator


def _client_sample_ids(actor: Principal) -> Select[Any]:
    return select(Sample.id).where(Sample.client_id == actor.id)


@visibility_filter(Resource.SAMPLE, UserRole.ANALYST)
def _analyst_samples(actor: Principal, model: Any) -> ColumnElement[bool]:
    return model.assigned_user_id == actor.id


@visibility_filter(Resource.SAMPLE, UserRole.CLIENT)
def _client_samples(actor: Principal, model: Any) -> ColumnElement[bool]:
    return model.client_id == actor.id


@visibility_filter(Resource.TEST, UserRole.ANALYST)
def _analyst_tests(actor: Principal, model: Any) -> ColumnElement[bool]:
    return model.assigned_user_id == actor.id


@visibility_filter(Resource.TEST, UserRole.CLIENT)
def _client_tests(actor: Principal, model: Any) -> ColumnElement[bool]:
    return model.sample_id.in_(_client_sample_ids(actor))


@visibility_filter(Resource.REPORT, UserRole.CLIENT)
def _client_reports(actor: Principal, model: Any) -> ColumnElement[bool]:
    return and_(
        model.status == ReportStatus.RELEASED,
        model.sample_id.in_(_client_sample_ids(actor)),
    )


@visibility_filter(Resource.JOB, UserRole.CLIENT)
def _client_jobs(actor: Principal, model: Any) -> ColumnElement[bool]:
    return model.client_id == actor.id


VISIBILITY_FILTERS: Mapping[tuple[Resource, UserRole], VisibilityFilter] = _VISIBILITY_FILTERS


class PermissionGate:
    """Enforces ``PermissionEngine`` decisions around governed operations."""

    def __init__(self, engine: PermissionEngine | None = None) -> None:
        self._engine = engine or PermissionEngine()

    def check(
        self,
        actor: Principal,
        action: Action,
        resource: Resource,
        record: Mapping[str, Any] | None = None,
    ) -> PermissionDecision:
        """Evaluate and raise ``PermissionDenied`` on a deny decision."""
        decision = self._engine.evaluate(actor, action, resource, record)
        if not decision.allowed:
            logger.info(
                "permission_denied",
                actor_id=str(actor.id),
                role=actor.role.value,
                action=action.value,
                resource=resource.value,
                record_id=record.get("id") if record else None,
                reason=decision.reason,
            )
            raise PermissionDenied(
                decision.reason or "permission denied",
                role=actor.role.value,
                action=action.value,
                resource=resource.value,
            )
        return decision

    async def guard(
        self,
        actor: Principal,
        action: Action,
        resource: Resource,
        operation: Callable[[], Awaitable[T]],
    ) -> T:
        """Run ``operation`` only after the coarse check passes."""
        self.check(actor, action, resource)
        return await operation()

    def visibility_filter(
        self, actor: Principal, resource: Resource, model: Any
    ) -> ColumnElement[bool] | None:
        """
        Row-level predicate for list reads, or None when the role sees all rows.

        A CONTEXT capability without a registered filter yields an always-false
        predicate.
        """
        self.check(actor, Action.READ, resource)
        if self._engine.capability(actor.role, Action.READ, resource) is Capability.ALLOW:
            return None
        build = VISIBILITY_FILTERS.get((resource, actor.role))
        if build is None:
            return false()
        return build(actor, model)

    def apply_visibility(
        self, statement: Select[Any], actor: Principal, resource: Resource, model: Any
    ) -> Select[Any]:
        criterion = self.visibility_filter(actor, resource, model)
        return statement if criterion is None else statement.where(criterion)

    def require(
        self, action: Action, resource: Resource
    ) -> Callable[[ActorContext], Awaitable[ActorContext]]:
        """FastAPI dependency performing the coarse check for a route."""

        async def dependency(actor: CurrentActor) -> ActorContext:
            self.check(actor, action, resource)
            return actor

        return dependency


permission_gate = PermissionGate()


def require_permission(
    action: Action, resource: Resource
) -> Callable[[ActorContext], Awaitable[ActorContext]]:
    return permission_gate.require(action, resource)
