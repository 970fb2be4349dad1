"""Security modules for actor context and permission enforcement."""

from lims.core.security.actor import ActorContext, CurrentActor, get_current_actor
from lims.core.security.gate import PermissionGate, permission_gate, require_permission
from lims.core.security.permissions import (
    CAPABILITY_TABLE,
    CONTEXT_RULES,
    Action,
    Capability,
    PermissionDecision,
    PermissionEngine,
    Resource,
    evaluate,
)

__all__ = [
    "ActorContext",
    "CurrentActor",
    "get_current_actor",
    "Action",
    "Resource",
    "Capability",
    "PermissionDecision",
    "PermissionEngine",
    "CAPABILITY_TABLE",
    "CONTEXT_RULES",
    "evaluate",
    "PermissionGate",
    "permission_gate",
    "require_permission",
]
