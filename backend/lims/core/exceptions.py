"""
Error taxonomy for the audit and authorization core.

Permission and audit failures always propagate to the caller. Routers never
catch them; the application-level exception handlers in ``lims.main`` turn
them into HTTP responses.
"""

from __future__ import annotations


class LimsError(Exception):
    """Base class for core audit/authorization errors."""


class PermissionDenied(LimsError):
    """An actor-role may not perform an action on a resource."""

    def __init__(
        self,
        reason: str,
        *,
        role: str | None = None,
        action: str | None = None,
        resource: str | None = None,
    ) -> None:
        super().__init__(reason)
        self.reason = reason
        self.role = role
        self.action = action
        self.resource = resource


class AuditWriteFailure(LimsError):
    """An application-level audit entry could not be persisted."""

    def __init__(self, table: str, record_id: str, message: str = "audit write failed") -> None:
        super().__init__(f"{message}: {table}/{record_id}")
        self.table = table
        self.record_id = record_id


class BackstopFailure(LimsError):
    """The storage backstop trigger hit a genuine storage fault."""


class ImmutableEntryViolation(LimsError):
    """An existing audit entry was about to be modified or deleted."""

    def __init__(self, entry_id: object | None = None) -> None:
        detail = "audit entries are append-only"
        if entry_id is not None:
            detail = f"{detail} (entry {entry_id})"
        super().__init__(detail)
        self.entry_id = entry_id
