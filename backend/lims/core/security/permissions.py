"""
Role-based permission engine with record-context refinement.

Evaluation is two-tier:

1. Capability check against ``CAPABILITY_TABLE``, an exhaustive mapping of
   every (role, action, resource) triple to ALLOW, DENY or CONTEXT.
   Triples not granted in ``_GRANTS`` are DENY.
2. Context refinement: a CONTEXT capability evaluated together with a loaded
   record is passed to the ownership rule registered for
   (resource, action). Without a record the coarse decision stands; callers
   doing record-scoped work re-evaluate once the record is loaded.

Everything here is pure: no I/O, no shared mutable state, no caching.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import Enum
from itertools import product
from types import MappingProxyType
from typing import Any, Protocol
from uuid import UUID

from lims.db.models import ReportStatus, UserRole


class Action(str, Enum):
    """Actions tied to record operations and workflow transitions."""

    CREATE = "CREATE"
    READ = "READ"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    ASSIGN = "ASSIGN"
    GENERATE_DRAFT = "GENERATE_DRAFT"
    FINALIZE = "FINALIZE"
    RELEASE = "RELEASE"


class Resource(str, Enum):
    """One tag per governed entity type."""

    JOB = "JOB"
    SAMPLE = "SAMPLE"
    TEST = "TEST"
    REPORT = "REPORT"
    TEMPLATE = "TEMPLATE"
    USER = "USER"
    LAB_SETTINGS = "LAB_SETTINGS"
    AUDIT_LOG = "AUDIT_LOG"


class Capability(str, Enum):
    ALLOW = "allow"
    DENY = "deny"
    CONTEXT = "allow_with_context"


class Principal(Protocol):
    @property
    def id(self) -> UUID: ...

    @property
    def role(self) -> UserRole: ...


@dataclass(frozen=True)
class PermissionDecision:
    """Outcome of one evaluation. Never cached across requests."""

    allowed: bool
    reason: str | None = None

    @classmethod
    def allow(cls) -> PermissionDecision:
        return cls(allowed=True)

    @classmethod
    def deny(cls, reason: str) -> PermissionDecision:
        return cls(allowed=False, reason=reason)


# =============================================================================
# Capability table
# =============================================================================

_CRUD = (Action.CREATE, Action.READ, Action.UPDATE, Action.DELETE)
_REPORT_WORKFLOW = (Action.GENERATE_DRAFT, Action.FINALIZE, Action.RELEASE)


def _allow(*actions: Action) -> dict[Action, Capability]:
    return {action: Capability.ALLOW for action in actions}


def _context(*actions: Action) -> dict[Action, Capability]:
    return {action: Capability.CONTEXT for action in actions}


_GRANTS: dict[UserRole, dict[Resource, dict[Action, Capability]]] = {
    UserRole.ADMIN: {
        Resource.JOB: _allow(*_CRUD),
        Resource.SAMPLE: _allow(*_CRUD, Action.ASSIGN),
        Resource.TEST: _allow(*_CRUD, Action.ASSIGN),
        Resource.REPORT: _allow(*_CRUD, *_REPORT_WORKFLOW),
        Resource.TEMPLATE: _allow(*_CRUD),
        Resource.USER: _allow(*_CRUD),
        Resource.LAB_SETTINGS: _allow(Action.READ, Action.UPDATE),
        # The audit trail is read-only for every role, admins included.
        Resource.AUDIT_LOG: _allow(Action.READ),
    },
    UserRole.LAB_MANAGER: {
        Resource.JOB: _allow(*_CRUD),
        Resource.SAMPLE: _allow(*_CRUD, Action.ASSIGN),
        Resource.TEST: _allow(*_CRUD, Action.ASSIGN),
        Resource.REPORT: _allow(Action.CREATE, Action.READ, Action.UPDATE, *_REPORT_WORKFLOW),
        Resource.TEMPLATE: _allow(*_CRUD),
        Resource.USER: _allow(Action.READ),
        Resource.LAB_SETTINGS: _allow(Action.READ, Action.UPDATE),
        Resource.AUDIT_LOG: _allow(Action.READ),
    },
    UserRole.ANALYST: {
        Resource.JOB: _allow(Action.READ),
        Resource.SAMPLE: _context(Action.READ, Action.UPDATE),
        Resource.TEST: _context(Action.READ, Action.UPDATE),
        Resource.REPORT: _allow(Action.READ, Action.GENERATE_DRAFT),
        Resource.TEMPLATE: _allow(Action.READ),
        Resource.LAB_SETTINGS: _allow(Action.READ),
    },
    UserRole.SALES_ACCOUNTING: {
        Resource.JOB: _allow(Action.CREATE, Action.READ, Action.UPDATE),
        Resource.SAMPLE: _allow(Action.CREATE, Action.READ),
        Resource.TEST: _allow(Action.READ),
        Resource.REPORT: _allow(Action.READ),
        Resource.TEMPLATE: _allow(Action.READ),
        Resource.LAB_SETTINGS: _allow(Action.READ),
    },
    UserRole.CLIENT: {
        Resource.JOB: _context(Action.READ),
        Resource.SAMPLE: _context(Action.READ),
        Resource.TEST: _context(Action.READ),
        Resource.REPORT: _context(Action.READ),
    },
}


def _build_capability_table() -> Mapping[tuple[UserRole, Action, Resource], Capability]:
    table: dict[tuple[UserRole, Action, Resource], Capability] = {}
    for role, action, resource in product(UserRole, Action, Resource):
        grants = _GRANTS.get(role, {}).get(resource, {})
        table[(role, action, resource)] = grants.get(action, Capability.DENY)
    return MappingProxyType(table)


CAPABILITY_TABLE = _build_capability_table()


# =============================================================================
# Context rules
# =============================================================================

ContextRule = Callable[[Principal, Mapping[str, Any]], PermissionDecision]

_CONTEXT_RULES: dict[tuple[Resource, Action], ContextRule] = {}


def context_rule(resource: Resource, *actions: Action) -> Callable[[ContextRule], ContextRule]:
    """Register an ownership predicate for (resource, action) pairs."""

    def decorator(rule: ContextRule) -> ContextRule:
        for action in actions:
            _CONTEXT_RULES[(resource, action)] = rule
        return rule

    return decorator


def _same_id(value: Any, actor_id: UUID) -> bool:
    return value is not None and str(value) == str(actor_id)


def _status_value(raw: Any) -> str:
    return raw.value if hasattr(raw, "value") else str(raw)


def _sample_client_id(record: Mapping[str, Any]) -> Any:
    sample = record.get("sample") or {}
    return sample.get("client_id")


def _no_rule_for_role(actor: Principal, resource: Resource) -> PermissionDecision:
    return PermissionDecision.deny(
        f"role {actor.role.value} has no ownership rule for {resource.value}"
    )


@context_rule(Resource.SAMPLE, Action.READ, Action.UPDATE)
def _sample_access(actor: Principal, record: Mapping[str, Any]) -> PermissionDecision:
    if actor.role is UserRole.ANALYST:
        if _same_id(record.get("assigned_user_id"), actor.id):
            return PermissionDecision.allow()
        return PermissionDecision.deny("role ANALYST cannot access unassigned sample")
    if actor.role is UserRole.CLIENT:
        if _same_id(record.get("client_id"), actor.id):
            return PermissionDecision.allow()
        return PermissionDecision.deny("role CLIENT cannot access sample of another client")
    return _no_rule_for_role(actor, Resource.SAMPLE)


@context_rule(Resource.TEST, Action.READ, Action.UPDATE)
def _test_access(actor: Principal, record: Mapping[str, Any]) -> PermissionDecision:
    if actor.role is UserRole.ANALYST:
        if _same_id(record.get("assigned_user_id"), actor.id):
            return PermissionDecision.allow()
        return PermissionDecision.deny("role ANALYST cannot access unassigned test")
    if actor.role is UserRole.CLIENT:
        if _same_id(_sample_client_id(record), actor.id):
            return PermissionDecision.allow()
        return PermissionDecision.deny("role CLIENT cannot access test of another client")
    return _no_rule_for_role(actor, Resource.TEST)


@context_rule(Resource.REPORT, Action.READ)
def _report_read(actor: Principal, record: Mapping[str, Any]) -> PermissionDecision:
    if actor.role is UserRole.CLIENT:
        if _status_value(record.get("status")) != ReportStatus.RELEASED.value:
            return PermissionDecision.deny("role CLIENT cannot read unreleased report")
        if _same_id(_sample_client_id(record), actor.id):
            return PermissionDecision.allow()
        return PermissionDecision.deny("role CLIENT cannot access report of another client")
    return _no_rule_for_role(actor, Resource.REPORT)


@context_rule(Resource.JOB, Action.READ)
def _job_read(actor: Principal, record: Mapping[str, Any]) -> PermissionDecision:
    if actor.role is UserRole.CLIENT:
        if _same_id(record.get("client_id"), actor.id):
            return PermissionDecision.allow()
        return PermissionDecision.deny("role CLIENT cannot access job of another client")
    return _no_rule_for_role(actor, Resource.JOB)


CONTEXT_RULES: Mapping[tuple[Resource, Action], ContextRule] = MappingProxyType(_CONTEXT_RULES)


# =============================================================================
# Engine
# =============================================================================


def denial_reason(role: UserRole, action: Action, resource: Resource) -> str:
    return f"role {role.value} cannot {action.value} {resource.value}"


class PermissionEngine:
    """Decision function over a capability table and context-rule registry."""

    def __init__(
        self,
        capabilities: Mapping[tuple[UserRole, Action, Resource], Capability] = CAPABILITY_TABLE,
        rules: Mapping[tuple[Resource, Action], ContextRule] = CONTEXT_RULES,
    ) -> None:
        self._capabilities = capabilities
        self._rules = rules

    def capability(self, role: UserRole, action: Action, resource: Resource) -> Capability:
        return self._capabilities.get((role, action, resource), Capability.DENY)

    def evaluate(
        self,
        actor: Principal,
        action: Action,
        resource: Resource,
        record: Mapping[str, Any] | None = None,
    ) -> PermissionDecision:
        capability = self.capability(actor.role, action, resource)
        if capability is Capability.DENY:
            return PermissionDecision.deny(denial_reason(actor.role, action, resource))
        if capability is Capability.ALLOW or record is None:
            return PermissionDecision.allow()

        rule = self._rules.get((resource, action))
        if rule is None:
            return PermissionDecision.deny(
                f"no context rule for {action.value} {resource.value}"
            )
        return rule(actor, record)


_default_engine = PermissionEngine()


def evaluate(
    actor: Principal,
    action: Action,
    resource: Resource,
    record: Mapping[str, Any] | None = None,
) -> PermissionDecision:
    """Evaluate with the built-in capability table and context rules."""
    return _default_engine.evaluate(actor, action, resource, record)
